"""Client for the Polymarket builder relayer.

Requests are authenticated with the builder HMAC scheme: the signature is
base64url(HMAC-SHA256(secret, timestamp + method + path + body)), where the
secret is stored base64url-encoded and the signed path includes the query
string.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx

from saferedeem.redeem.errors import AuthFailure, RelayerRejected, TransientNetworkError

logger = logging.getLogger(__name__)

RELAYER_URL = "https://relayer-v2.polymarket.com"
SIGNER_TYPE_SAFE = "SAFE"

# Relayer transaction lifecycle
TERMINAL_STATES = frozenset({"STATE_MINED", "STATE_CONFIRMED", "STATE_FAILED", "STATE_INVALID"})
SUCCESS_STATES = frozenset({"STATE_MINED", "STATE_CONFIRMED"})


def build_hmac_signature(
    secret: str, timestamp: str, method: str, request_path: str, body: str | None = None
) -> str:
    """Create HMAC signature for builder API authentication."""
    base64_secret = base64.urlsafe_b64decode(secret)
    message = str(timestamp) + str(method) + str(request_path)
    if body:
        message += body

    h = hmac.new(base64_secret, bytes(message, "utf-8"), hashlib.sha256)
    return base64.urlsafe_b64encode(h.digest()).decode("utf-8")


class RelayerClient:
    """Thin authenticated wrapper over the relayer's REST endpoints."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        api_passphrase: str,
        base_url: str = RELAYER_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if not all([api_key, api_secret, api_passphrase]):
            raise ValueError("Builder API credentials required for relayer submission")

        self._api_key = api_key
        self._api_secret = api_secret
        self._api_passphrase = api_passphrase
        self._clock = clock
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def __enter__(self) -> "RelayerClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _headers(self, method: str, request_path: str, body: str = "") -> dict[str, str]:
        timestamp = str(int(self._clock()))
        signature = build_hmac_signature(self._api_secret, timestamp, method, request_path, body)
        return {
            "Content-Type": "application/json",
            "POLY_BUILDER_API_KEY": self._api_key,
            "POLY_BUILDER_TIMESTAMP": timestamp,
            "POLY_BUILDER_PASSPHRASE": self._api_passphrase,
            "POLY_BUILDER_SIGNATURE": signature,
        }

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        request_path = path
        if params:
            request_path += "?" + urlencode(params)
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""

        try:
            response = self._client.request(
                method,
                request_path,
                content=body or None,
                headers=self._headers(method, request_path, body),
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Relayer {method} {path} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthFailure(
                f"Relayer rejected credentials: {response.status_code} - {response.text}"
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientNetworkError(
                f"Relayer {method} {path} returned {response.status_code} - {response.text}"
            )
        if response.status_code >= 400:
            logger.error(f"Relayer response: {response.status_code} - {response.text}")
            raise RelayerRejected(response.status_code, response.text)

        return response.json()

    def get_relay_address(self) -> str:
        """Address the relayer broadcasts from; doubles as a connectivity check."""
        data = self._request("GET", "/address")
        return data.get("address", "")

    def get_nonce(self, address: str, signer_type: str = SIGNER_TYPE_SAFE) -> int:
        """Current Safe nonce as seen by the relayer for ``address`` (the owner EOA)."""
        data = self._request("GET", "/nonce", params={"address": address, "type": signer_type})
        return int(data.get("nonce", 0))

    def submit(self, request: dict[str, Any]) -> dict[str, Any]:
        """POST a signed transaction request; returns ``transactionID`` and ``state``."""
        logger.debug(f"Relayer payload: {request}")
        return self._request("POST", "/submit", payload=request)

    def get_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Look up a relayer transaction by id."""
        data = self._request("GET", "/transaction", params={"id": transaction_id})
        if isinstance(data, list):
            return data[0] if data else {}
        return data

    def wait_for_transaction(
        self,
        transaction_id: str,
        timeout: float = 120.0,
        interval: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> dict[str, Any]:
        """Poll until the transaction reaches a terminal state or ``timeout`` elapses.

        Returns the last transaction record seen; check ``state`` for the result.
        """
        deadline = self._clock() + timeout
        record: dict[str, Any] = {}
        while True:
            record = self.get_transaction(transaction_id)
            state = record.get("state")
            if state in TERMINAL_STATES:
                return record
            if self._clock() >= deadline:
                logger.warning(
                    f"Relayer transaction {transaction_id} still {state} after {timeout}s"
                )
                return record
            sleep(interval)
