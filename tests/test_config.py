"""Tests for coinforge.config — environment variable loading and validation."""

import pytest

from coinforge.config import load_config

_VARS = [
    "BINANCE_API_KEY",
    "BINANCE_API_SECRET",
    "USE_PROXY",
    "DIRECT_BASE_URL",
    "PROXY_BASE_URL",
    "STREAM_URL",
    "SYMBOLS",
    "TIMEFRAMES",
    "POLL_INTERVAL_SECONDS",
    "AGGRESSIVENESS",
    "KLINE_LIMIT",
    "DB_PATH",
    "LOG_LEVEL",
    "HEALTH_PORT",
    "TEST_MODE",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure CoinForge env vars are cleared between tests."""
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def env_path(tmp_path):
    """A non-existent .env path so load_dotenv never reads a real file."""
    return str(tmp_path / "nonexistent.env")


class TestLoadConfig:
    def test_defaults(self, env_path):
        cfg = load_config(env_path)
        assert cfg.api_key == ""
        assert cfg.has_credentials is False
        assert cfg.use_proxy is True
        assert cfg.direct_base_url == "https://api.binance.com/api/v3"
        assert cfg.stream_url == "wss://stream.binance.com:9443/stream"
        assert cfg.symbols == ("BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT")
        assert cfg.timeframes == ("15m", "1h", "4h")
        assert cfg.poll_interval_seconds == 60
        assert cfg.aggressiveness == "moderate"
        assert cfg.kline_limit == 100
        assert cfg.db_path == "data/coinforge.db"
        assert cfg.log_level == "INFO"
        assert cfg.health_port == 8080
        assert cfg.test_mode is False

    def test_credentials_loaded(self, monkeypatch, env_path):
        monkeypatch.setenv("BINANCE_API_KEY", "key-abc")
        monkeypatch.setenv("BINANCE_API_SECRET", "secret-xyz")
        cfg = load_config(env_path)
        assert cfg.has_credentials is True
        assert cfg.api_secret == "secret-xyz"

    def test_symbols_uppercased_and_trimmed(self, monkeypatch, env_path):
        monkeypatch.setenv("SYMBOLS", " btcusdt , ethusdt ,")
        cfg = load_config(env_path)
        assert cfg.symbols == ("BTCUSDT", "ETHUSDT")

    @pytest.mark.parametrize("raw", ["1", "true", "YES", "on"])
    def test_truthy_booleans(self, monkeypatch, env_path, raw):
        monkeypatch.setenv("TEST_MODE", raw)
        assert load_config(env_path).test_mode is True

    def test_falsy_boolean(self, monkeypatch, env_path):
        monkeypatch.setenv("USE_PROXY", "off")
        assert load_config(env_path).use_proxy is False

    def test_trailing_slash_stripped(self, monkeypatch, env_path):
        monkeypatch.setenv("PROXY_BASE_URL", "https://proxy.example.com/api/")
        assert load_config(env_path).proxy_base_url == "https://proxy.example.com/api"

    def test_config_is_frozen(self, env_path):
        cfg = load_config(env_path)
        with pytest.raises(AttributeError):
            cfg.poll_interval_seconds = 5  # type: ignore[misc]


class TestValidation:
    def test_unknown_aggressiveness(self, monkeypatch, env_path):
        monkeypatch.setenv("AGGRESSIVENESS", "reckless")
        with pytest.raises(ValueError, match="AGGRESSIVENESS"):
            load_config(env_path)

    def test_non_positive_poll_interval(self, monkeypatch, env_path):
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0")
        with pytest.raises(ValueError, match="POLL_INTERVAL_SECONDS"):
            load_config(env_path)

    def test_unparsable_integer(self, monkeypatch, env_path):
        monkeypatch.setenv("KLINE_LIMIT", "many")
        with pytest.raises(ValueError, match="KLINE_LIMIT"):
            load_config(env_path)

    def test_empty_timeframes(self, monkeypatch, env_path):
        monkeypatch.setenv("TIMEFRAMES", " , ")
        with pytest.raises(ValueError, match="TIMEFRAMES"):
            load_config(env_path)
