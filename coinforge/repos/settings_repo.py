"""Settings repository — typed access to persisted settings in the key-value store."""

from typing import Optional

from coinforge.exchange.models import ApiPermissions, Credentials
from coinforge.repos.kv_store import KeyValueStore


CREDENTIALS_KEY = "credentials"
PROXY_MODE_KEY = "proxy_mode"
PERMISSIONS_KEY = "api_permissions"
RISK_SETTINGS_KEY = "risk_settings"
SIMULATION_MODE_KEY = "simulation_mode"


class SettingsRepo:
    """Reads and writes application settings.

    Args:
        store: Any ``KeyValueStore`` implementation.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # ── Credentials ──────────────────────────────────────────────────────

    def load_credentials(self) -> Optional[Credentials]:
        raw = self._store.get(CREDENTIALS_KEY)
        if not raw:
            return None
        creds = Credentials(api_key=raw.get("api_key", ""), secret_key=raw.get("secret_key", ""))
        return creds if creds.is_valid else None

    def save_credentials(self, credentials: Credentials) -> None:
        self._store.set(
            CREDENTIALS_KEY,
            {"api_key": credentials.api_key, "secret_key": credentials.secret_key},
        )

    def clear_credentials(self) -> None:
        self._store.remove(CREDENTIALS_KEY)
        self._store.remove(PERMISSIONS_KEY)

    # ── Flags ────────────────────────────────────────────────────────────

    def load_proxy_mode(self, default: bool = True) -> bool:
        return bool(self._store.get(PROXY_MODE_KEY, default))

    def save_proxy_mode(self, enabled: bool) -> None:
        self._store.set(PROXY_MODE_KEY, bool(enabled))

    def load_simulation_mode(self) -> bool:
        return bool(self._store.get(SIMULATION_MODE_KEY, False))

    def save_simulation_mode(self, enabled: bool) -> None:
        self._store.set(SIMULATION_MODE_KEY, bool(enabled))

    # ── Permissions cache ────────────────────────────────────────────────

    def load_permissions(self) -> Optional[ApiPermissions]:
        raw = self._store.get(PERMISSIONS_KEY)
        if not raw:
            return None
        return ApiPermissions(read=bool(raw.get("read")), trading=bool(raw.get("trading")))

    def save_permissions(self, permissions: ApiPermissions) -> None:
        self._store.set(
            PERMISSIONS_KEY,
            {"read": permissions.read, "trading": permissions.trading},
        )

    # ── Risk settings ────────────────────────────────────────────────────

    def load_risk_settings(self) -> Optional[dict]:
        return self._store.get(RISK_SETTINGS_KEY)

    def save_risk_settings(self, settings: dict) -> None:
        self._store.set(RISK_SETTINGS_KEY, settings)
