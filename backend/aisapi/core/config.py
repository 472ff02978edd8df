from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ambient tuning for the client library. Credentials are never read here."""

    model_config = SettingsConfigDict(env_prefix="AISAPI_", extra="ignore")

    DEFAULT_TIMEOUT_SECONDS: float = 30.0

    # Retry executor
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 60.0

    # Auth strategies
    TOKEN_REFRESH_MARGIN_SECONDS: int = 24 * 60 * 60
    SIGNATURE_TTL_SECONDS: int = 3600

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False


settings = Settings()
