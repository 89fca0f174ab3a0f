"""PayoutUtilityAppd: payouts submitted through the ROFL appd daemon."""

import json
import logging
import time
from typing import Any

import cbor2
import httpx

from .errors import PayoutFailed
from .PayoutUtility import PayoutUtility

logger = logging.getLogger(__name__)

# Retry configuration for appd requests
MAX_RETRIES = 30  # ~30 seconds with 1s base delay
BACKOFF_BASE = 1.0
BACKOFF_MAX = 5.0

TRANSFER_GAS_LIMIT = 21_000


class PayoutUtilityAppd(PayoutUtility):
    """Payout implementation that asks appd to sign and submit a value transfer.

    Communicates with the appd via Unix domain socket or HTTP.

    :cvar ROFL_SOCKET_PATH: Default Unix socket path for appd.
    :ivar url: Optional HTTP URL or socket path override.
    :ivar max_retries: Attempts per request before giving up.
    """

    ROFL_SOCKET_PATH = "/run/rofl-appd.sock"

    def __init__(self, url: str = "", max_retries: int = MAX_RETRIES) -> None:
        """Initialize the appd payout utility.

        :param url: Optional URL or socket path. Empty uses default socket.
        :param max_retries: Attempts per request (default: 30).
        """
        self.url = url
        self.max_retries = max_retries

    def _build_transport(self) -> httpx.HTTPTransport | None:
        """Transport for reaching appd: a unix socket unless ``url`` is HTTP."""
        if self.url.startswith("http"):
            return None
        socket_path = self.url or self.ROFL_SOCKET_PATH
        logger.debug("Reaching appd over unix socket %s", socket_path)
        return httpx.HTTPTransport(uds=socket_path)

    def _appd_post(self, path: str, payload: Any) -> httpx.Response:
        """Submit a transfer request to appd, retrying while appd is unavailable.

        Only connection errors and non-2xx replies are retried. A reply that
        appd accepted is returned as is; whether the transfer went through is
        decided by the caller from the call result.

        :param path: API endpoint path.
        :param payload: JSON payload.
        :returns: HTTP response.
        :raises RuntimeError: If appd did not accept the request within max_retries.
        """
        transport = self._build_transport()
        base_url = self.url if self.url.startswith("http") else "http://localhost"

        with httpx.Client(transport=transport) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    logger.debug("appd %s <- %s (attempt %d)", path, json.dumps(payload), attempt)
                    response = client.post(base_url + path, json=payload, timeout=None)
                    if response.is_success:
                        return response
                    reason = f"{response.status_code} {response.reason_phrase}"
                except httpx.RequestError as exc:
                    reason = str(exc)
                logger.warning(
                    "appd %s rejected transfer request: %s (attempt %d/%d)",
                    path,
                    reason,
                    attempt,
                    self.max_retries,
                )
                time.sleep(min(BACKOFF_BASE * (1.5 ** (attempt - 1)), BACKOFF_MAX))

        raise RuntimeError(f"appd POST {path} failed after {self.max_retries} attempts")

    def pay_out(self, address: str, amount: int) -> Any:
        """Submit a value transfer via the appd sign-submit endpoint.

        :param address: Recipient checksum address.
        :param amount: Amount in token base units.
        :returns: Transaction result with CBOR-decoded data.
        :raises PayoutFailed: If appd is unreachable, its response is undecodable,
            or the call reverted.
        """
        to_hex = address[2:] if address.startswith("0x") else address
        payload = {
            "tx": {
                "kind": "eth",
                "data": {
                    "gas_limit": TRANSFER_GAS_LIMIT,
                    "to": to_hex.lower(),
                    "value": str(amount),
                    "data": "",
                },
            },
            "encrypted": False,
        }

        try:
            response = self._appd_post("/rofl/v1/tx/sign-submit", payload)
        except RuntimeError as exc:
            raise PayoutFailed(str(exc)) from exc

        try:
            result = response.json()
            if result.get("data"):
                result["data"] = cbor2.loads(bytes.fromhex(result["data"]))
        except (ValueError, TypeError, AttributeError, cbor2.CBORDecodeError) as exc:
            raise PayoutFailed(f"undecodable appd response for payout to {address}: {exc}") from exc
        data = result.get("data")
        if not isinstance(data, dict) or "ok" not in data:
            raise PayoutFailed(f"payout of {amount} to {address} was not confirmed: {data!r}")

        logger.info(f"Paid out {amount} to {address}")
        return result
