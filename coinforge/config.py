"""CoinForge — application configuration.

Loads .env variables into a typed, immutable config object.
Defaults are applied once here; nothing downstream re-reads the environment.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_AGGRESSIVENESS_LEVELS = ("aggressive", "moderate", "conservative")
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    api_key: str
    api_secret: str
    use_proxy: bool
    direct_base_url: str
    proxy_base_url: str
    stream_url: str
    symbols: tuple[str, ...]
    timeframes: tuple[str, ...]
    poll_interval_seconds: int
    aggressiveness: str  # "aggressive", "moderate" or "conservative"
    kline_limit: int
    db_path: str
    log_level: str
    health_port: int
    test_mode: bool

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    if not items:
        raise ValueError(f"{name} must list at least one value")
    return items


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` naming the offending variable when a value is
    malformed or out of range.
    """
    load_dotenv(dotenv_path=env_path)

    aggressiveness = os.environ.get("AGGRESSIVENESS", "moderate").strip().lower()
    if aggressiveness not in _AGGRESSIVENESS_LEVELS:
        raise ValueError(
            f"AGGRESSIVENESS must be one of {', '.join(_AGGRESSIVENESS_LEVELS)}, "
            f"got '{aggressiveness}'"
        )

    poll_interval = _env_int("POLL_INTERVAL_SECONDS", "60")
    if poll_interval <= 0:
        raise ValueError("POLL_INTERVAL_SECONDS must be positive")

    kline_limit = _env_int("KLINE_LIMIT", "100")
    if kline_limit <= 0:
        raise ValueError("KLINE_LIMIT must be positive")

    return Config(
        api_key=os.environ.get("BINANCE_API_KEY", ""),
        api_secret=os.environ.get("BINANCE_API_SECRET", ""),
        use_proxy=_env_bool("USE_PROXY", "true"),
        direct_base_url=os.environ.get(
            "DIRECT_BASE_URL", "https://api.binance.com/api/v3",
        ).rstrip("/"),
        proxy_base_url=os.environ.get(
            "PROXY_BASE_URL", "https://binance-proxy.vercel.app/api",
        ).rstrip("/"),
        stream_url=os.environ.get(
            "STREAM_URL", "wss://stream.binance.com:9443/stream",
        ),
        symbols=tuple(
            s.upper() for s in _env_list("SYMBOLS", "BTCUSDT,ETHUSDT,BNBUSDT,SOLUSDT")
        ),
        timeframes=_env_list("TIMEFRAMES", "15m,1h,4h"),
        poll_interval_seconds=poll_interval,
        aggressiveness=aggressiveness,
        kline_limit=kline_limit,
        db_path=os.environ.get("DB_PATH", "data/coinforge.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=_env_int("HEALTH_PORT", "8080"),
        test_mode=_env_bool("TEST_MODE", "false"),
    )
