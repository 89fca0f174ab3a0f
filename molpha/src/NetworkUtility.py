"""NetworkUtility: Web3 connection that signer payouts are transferred over."""

import logging
import os

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

logger = logging.getLogger(__name__)

LOCALNET = "sapphire-localnet"

NETWORKS = {
    "sapphire": "https://sapphire.oasis.io",
    "sapphire-testnet": "https://testnet.sapphire.oasis.io",
    LOCALNET: "http://localhost:8545",
}

# Funded development account on localnet.
LOCALNET_TREASURY_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def resolve_rpc_url(network_name: str) -> str:
    """RPC endpoint for a network. RPC_URL wins; unknown names are taken as URLs."""
    return os.environ.get("RPC_URL") or NETWORKS.get(network_name, network_name)


class NetworkUtility:
    """Web3 connection with an optional local treasury account.

    When a treasury key is configured, transfers sent through ``w3`` are signed
    locally and paid from the treasury. Localnet defaults to its funded
    development account.

    :ivar network: Network RPC URL.
    :ivar w3: Configured Web3 instance.
    :ivar treasury: Address rewards are paid from, or None if the node signs.
    """

    def __init__(self, network_name: str, treasury_key: str | None = None) -> None:
        """Initialize the network utility.

        :param network_name: Name of the network or an RPC URL.
        :param treasury_key: Optional private key of the paying account.
        """
        self.network = resolve_rpc_url(network_name)
        self.w3 = Web3(Web3.HTTPProvider(self.network))
        self.treasury: str | None = None

        if treasury_key is None and network_name == LOCALNET:
            treasury_key = LOCALNET_TREASURY_KEY
        if treasury_key is not None:
            account: LocalAccount = Account.from_key(treasury_key)
            self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
            self.w3.eth.default_account = account.address
            self.treasury = account.address
            logger.debug(f"Paying out from {account.address} on {self.network}")
