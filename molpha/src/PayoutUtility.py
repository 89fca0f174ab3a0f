"""PayoutUtility: abstract payout capability used when signers claim rewards."""

from abc import ABC, abstractmethod
from typing import Any


class PayoutUtility(ABC):
    """Abstract base class for payout implementations.

    Implementations transfer an amount to an address and raise
    :class:`~molpha.src.errors.PayoutFailed` on any failure, so the caller can
    leave its own state untouched and retry later.
    """

    @abstractmethod
    def pay_out(self, address: str, amount: int) -> Any:
        """Transfer amount to address.

        :param address: Recipient checksum address.
        :param amount: Amount in token base units (> 0).
        :returns: Implementation specific transfer result.
        :raises PayoutFailed: If the transfer did not succeed.
        """
        pass
