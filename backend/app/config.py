import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/pdv')
        self.db_pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = _env_int("DB_POOL_MAX_SIZE", 10)
        # Comma-separated list of allowed CORS origins for the cashier/admin web apps.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:5173", "http://localhost:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Hosted function that reports (and refreshes) a payment's status.
        self.payment_status_url = os.getenv("PAYMENT_STATUS_URL", "").strip()
        self.payment_status_key = os.getenv("PAYMENT_STATUS_KEY", "").strip()
        self.payment_status_timeout = _env_float("PAYMENT_STATUS_TIMEOUT_SECONDS", 10.0)
        self.payment_webhook_secret = os.getenv("PAYMENT_WEBHOOK_SECRET", "").strip()

        # 120 attempts * 5s ~= 10 minutes before a payment is reported as undetermined.
        self.settlement_max_attempts = _env_int("SETTLEMENT_MAX_ATTEMPTS", 120)
        self.settlement_interval_seconds = _env_float("SETTLEMENT_INTERVAL_SECONDS", 5.0)
        self.settlement_transient_retries = _env_int("SETTLEMENT_TRANSIENT_RETRIES", 3)
        self.settlement_retry_backoff_seconds = _env_float("SETTLEMENT_RETRY_BACKOFF_SECONDS", 2.0)

        self.stock_cache_ttl_seconds = _env_float("STOCK_CACHE_TTL_SECONDS", 300.0)
        # How long finished polls and completion handles stay answerable in memory.
        self.poll_result_retention_seconds = _env_float("POLL_RESULT_RETENTION_SECONDS", 900.0)
        self.completion_retention_seconds = _env_float("COMPLETION_RETENTION_SECONDS", 3600.0)

settings = Settings()
