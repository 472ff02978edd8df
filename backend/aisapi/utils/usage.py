import threading
from dataclasses import dataclass
from typing import Dict, Optional

import structlog
from pydantic import BaseModel

from aisapi.schemas import CacheInfo

logger = structlog.get_logger()

PER_MILLION = 1_000_000


@dataclass(frozen=True)
class PriceRow:
    """USD per million tokens."""

    hit: float
    miss: float
    output: float


DEEPSEEK_PRICES: Dict[str, PriceRow] = {
    "deepseek-chat": PriceRow(hit=0.07, miss=0.27, output=1.10),
    "deepseek-reasoner": PriceRow(hit=0.14, miss=0.55, output=2.19),
}


class UsageSnapshot(BaseModel):
    hit_tokens: int = 0
    miss_tokens: int = 0
    output_tokens: int = 0
    request_count: int = 0
    hit_rate: float = 0.0
    estimated_savings: float = 0.0
    estimated_cost: float = 0.0


def hit_rate(hit: int, miss: int) -> float:
    total = hit + miss
    return hit / total if total > 0 else 0.0


def estimated_savings(hit: int, miss: int, prices: PriceRow) -> float:
    """What the prompt would have cost uncached minus what it did cost."""
    uncached = (hit + miss) * prices.miss / PER_MILLION
    actual = (hit * prices.hit + miss * prices.miss) / PER_MILLION
    return uncached - actual


class CacheAccountant:
    """
    Cache-aware cost accounting for vendors that split prompt tokens into
    cache hits and misses. Keeps a cumulative ledger for the adapter's lifetime.
    """

    def __init__(self, prices: Dict[str, PriceRow], default_model: str):
        if default_model not in prices:
            raise ValueError(f"no price row for default model {default_model!r}")
        self._prices = dict(prices)
        self._default_model = default_model
        self._lock = threading.Lock()
        self._hit = 0
        self._miss = 0
        self._output = 0
        self._requests = 0
        self._savings = 0.0
        self._cost = 0.0

    def prices_for(self, model: Optional[str]) -> PriceRow:
        return self._prices.get(model or self._default_model, self._prices[self._default_model])

    def compute(self, hit: int, miss: int, model: Optional[str] = None) -> CacheInfo:
        return CacheInfo(
            hit_tokens=hit,
            miss_tokens=miss,
            hit_rate=hit_rate(hit, miss),
            estimated_savings=estimated_savings(hit, miss, self.prices_for(model)),
        )

    def record(self, hit: int, miss: int, output: int, model: Optional[str] = None) -> None:
        prices = self.prices_for(model)
        savings = estimated_savings(hit, miss, prices)
        cost = (hit * prices.hit + miss * prices.miss + output * prices.output) / PER_MILLION
        with self._lock:
            self._hit += hit
            self._miss += miss
            self._output += output
            self._requests += 1
            self._savings += savings
            self._cost += cost

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(
                hit_tokens=self._hit,
                miss_tokens=self._miss,
                output_tokens=self._output,
                request_count=self._requests,
                hit_rate=hit_rate(self._hit, self._miss),
                estimated_savings=self._savings,
                estimated_cost=self._cost,
            )

    def reset(self) -> None:
        with self._lock:
            self._hit = self._miss = self._output = self._requests = 0
            self._savings = self._cost = 0.0
        logger.info("usage_ledger_reset")
