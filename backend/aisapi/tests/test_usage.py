import threading

import pytest

from aisapi.utils.usage import DEEPSEEK_PRICES, CacheAccountant, PriceRow, estimated_savings, hit_rate


@pytest.fixture
def accountant() -> CacheAccountant:
    return CacheAccountant(DEEPSEEK_PRICES, default_model="deepseek-chat")


def test_compute_hit_rate_and_savings(accountant):
    info = accountant.compute(800, 200, "deepseek-chat")
    assert info.hit_tokens == 800
    assert info.miss_tokens == 200
    assert info.hit_rate == pytest.approx(0.8)
    # 800 tokens at 0.27 instead of 0.07 per million
    assert info.estimated_savings == pytest.approx(800 * 0.20 / 1_000_000)


def test_zero_tokens_yield_zero_rate():
    assert hit_rate(0, 0) == 0.0
    assert estimated_savings(0, 0, PriceRow(hit=1.0, miss=2.0, output=3.0)) == 0.0


def test_unknown_model_falls_back_to_default_prices(accountant):
    assert accountant.prices_for("deepseek-unknown") == DEEPSEEK_PRICES["deepseek-chat"]
    assert accountant.prices_for("deepseek-reasoner") == DEEPSEEK_PRICES["deepseek-reasoner"]


def test_default_model_must_be_priced():
    with pytest.raises(ValueError):
        CacheAccountant(DEEPSEEK_PRICES, default_model="nope")


def test_ledger_accumulates_and_resets(accountant):
    accountant.record(800, 200, 50, "deepseek-chat")
    accountant.record(0, 1000, 50, "deepseek-chat")

    snapshot = accountant.snapshot()
    assert snapshot.hit_tokens == 800
    assert snapshot.miss_tokens == 1200
    assert snapshot.output_tokens == 100
    assert snapshot.request_count == 2
    assert snapshot.hit_rate == pytest.approx(0.4)
    assert 0.0 <= snapshot.hit_rate <= 1.0
    assert snapshot.estimated_savings == pytest.approx(800 * 0.20 / 1_000_000)
    assert snapshot.estimated_cost == pytest.approx((800 * 0.07 + 1200 * 0.27 + 100 * 1.10) / 1_000_000)

    accountant.reset()
    snapshot = accountant.snapshot()
    assert snapshot.request_count == 0
    assert snapshot.hit_tokens == snapshot.miss_tokens == snapshot.output_tokens == 0
    assert snapshot.hit_rate == 0.0
    assert snapshot.estimated_savings == 0.0


def test_ledger_is_safe_across_threads(accountant):
    def worker():
        for _ in range(200):
            accountant.record(1, 1, 1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snapshot = accountant.snapshot()
    assert snapshot.request_count == 1600
    assert snapshot.hit_tokens == 1600
