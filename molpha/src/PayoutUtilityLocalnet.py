"""PayoutUtilityLocalnet: payouts sent directly through Web3 for local development."""

import logging
import os
from typing import Any

from web3 import Web3

from .errors import PayoutFailed
from .PayoutUtility import PayoutUtility

logger = logging.getLogger(__name__)


class PayoutUtilityLocalnet(PayoutUtility):
    """Payout implementation for localnet development.

    Uses direct Web3 transaction submission instead of appd.

    :ivar w3: Web3 instance for transaction submission.
    """

    def __init__(self, w3: Web3 | None = None) -> None:
        """Initialize the localnet payout utility.

        :param w3: Optional Web3 instance. Creates default if not provided.
        """
        self.w3 = w3
        if w3 is None:
            rpc_url = os.environ.get("RPC_URL", "http://localhost:8545")
            self.w3 = Web3(Web3.HTTPProvider(rpc_url))

    def pay_out(self, address: str, amount: int) -> Any:
        """Send a value transfer and wait for its receipt.

        :param address: Recipient checksum address.
        :param amount: Amount in wei.
        :returns: Dict with the transaction receipt.
        :raises PayoutFailed: If submission fails or the transfer reverted.
        """
        try:
            tx_hash = self.w3.eth.send_transaction({"to": address, "value": amount})
            tx_receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        except Exception as exc:
            raise PayoutFailed(f"payout of {amount} to {address} failed: {exc}") from exc

        if tx_receipt["status"] != 1:
            raise PayoutFailed(f"payout of {amount} to {address} reverted")

        logger.info(f"Paid out {amount} to {address}")
        return {"tx_receipt": tx_receipt}
