"""Request signing for authenticated exchange calls."""

import base64
import hashlib
import hmac
import time
from urllib.parse import urlencode

from coinforge.exchange.errors import NoCredentialsError
from coinforge.exchange.models import Credentials


API_KEY_HEADER = "X-MBX-APIKEY"
DEFAULT_RECV_WINDOW = 15000


def build_query(params: dict) -> str:
    """URL-encode *params* preserving insertion order."""
    return urlencode([(k, str(v)) for k, v in params.items()])


def sign_query(query: str, secret_key: str) -> str:
    """HMAC-SHA256 of *query* keyed by *secret_key*, hex encoded."""
    return hmac.new(
        secret_key.encode("utf-8"),
        query.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def secret_fingerprint(secret_key: str) -> str:
    """Obfuscated secret tail sent to the proxy instead of a signature."""
    return base64.b64encode(secret_key[-8:].encode("utf-8")).decode("ascii")


class RequestSigner:
    """Holds the credential snapshot and a server clock offset.

    Credentials are swapped atomically by replacing the frozen
    ``Credentials`` object, so concurrent signers see either the old or
    the new pair.
    """

    def __init__(self, credentials: Credentials | None = None) -> None:
        self._credentials = credentials
        self.time_offset_ms = 0

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    def set_credentials(self, credentials: Credentials | None) -> None:
        self._credentials = credentials

    def has_credentials(self) -> bool:
        return self._credentials is not None and self._credentials.is_valid

    def _require(self) -> Credentials:
        creds = self._credentials
        if creds is None or not creds.is_valid:
            raise NoCredentialsError()
        return creds

    def sign(self, query: str) -> str:
        """Sign *query* with the secret key.

        Raises ``NoCredentialsError`` when no key pair is configured.
        """
        return sign_query(query, self._require().secret_key)

    def timestamp(self) -> int:
        return int(time.time() * 1000) + self.time_offset_ms

    def signed_query(self, params: dict, recv_window: int = DEFAULT_RECV_WINDOW) -> str:
        """Encode *params* with ``recvWindow``/``timestamp`` and append the signature."""
        payload = dict(params)
        payload.setdefault("recvWindow", recv_window)
        payload["timestamp"] = self.timestamp()
        query = build_query(payload)
        return f"{query}&signature={self.sign(query)}"

    def direct_headers(self) -> dict[str, str]:
        return {API_KEY_HEADER: self._require().api_key}

    def proxy_headers(self) -> dict[str, str]:
        creds = self._require()
        return {
            "X-API-KEY": creds.api_key,
            "X-API-SECRET-HASH": secret_fingerprint(creds.secret_key),
        }
