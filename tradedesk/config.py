"""TradeDesk — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "OANDA_API_TOKEN",
]

_DEFAULT_SYMBOLS = "EURUSD,GBPUSD,USDJPY,XAUUSD,BTCUSD"


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    oanda_api_token: str
    oanda_environment: str  # "practice" or "live"
    db_path: str
    log_level: str
    api_port: int
    max_concurrent_scans: int
    scan_timeout_seconds: float
    cache_ttl_seconds: float
    no_trade_cache_ttl_seconds: float
    detection_cooldown_minutes: int
    detection_min_grade: str
    memory_store_max_entries: int
    sweep_interval_seconds: float
    default_symbols: tuple[str, ...]
    candle_requests_per_second: float = 20.0

    @property
    def candle_base_url(self) -> str:
        """Return the OANDA v20 API base URL used for candle data."""
        if self.oanda_environment == "live":
            return "https://api-fxtrade.oanda.com"
        return "https://api-fxpractice.oanda.com"


def _env_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or naming the malformed variable when a
    numeric setting cannot be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    symbols = tuple(
        s.strip().upper()
        for s in os.environ.get("DEFAULT_SYMBOLS", _DEFAULT_SYMBOLS).split(",")
        if s.strip()
    )

    return Config(
        oanda_api_token=os.environ["OANDA_API_TOKEN"],
        oanda_environment=os.environ.get("OANDA_ENVIRONMENT", "practice"),
        db_path=os.environ.get("DB_PATH", "data/tradedesk.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_env_number("API_PORT", "8080", int),
        max_concurrent_scans=_env_number("MAX_CONCURRENT_SCANS", "3", int),
        scan_timeout_seconds=_env_number("SCAN_TIMEOUT_SECONDS", "300", float),
        cache_ttl_seconds=_env_number("CACHE_TTL_SECONDS", "300", float),
        no_trade_cache_ttl_seconds=_env_number(
            "NO_TRADE_CACHE_TTL_SECONDS", "120", float
        ),
        detection_cooldown_minutes=_env_number(
            "DETECTION_COOLDOWN_MINUTES", "60", int
        ),
        detection_min_grade=os.environ.get("DETECTION_MIN_GRADE", "B"),
        memory_store_max_entries=_env_number(
            "MEMORY_STORE_MAX_ENTRIES", "1000", int
        ),
        sweep_interval_seconds=_env_number("SWEEP_INTERVAL_SECONDS", "300", float),
        default_symbols=symbols,
        candle_requests_per_second=_env_number(
            "CANDLE_REQUESTS_PER_SECOND", "20", float
        ),
    )
