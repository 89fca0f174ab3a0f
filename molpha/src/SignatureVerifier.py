"""SignatureVerifier: threshold check of an aggregate signature.

Algorithm:
    1. Reject empty signer lists, degenerate signature/commitment, and lists
       shorter than the threshold
    2. Take one registry snapshot for the whole call
    3. Walk the signer indices once: each must be in bounds and strictly
       greater than its predecessor, which both enforces ascending order and
       rejects duplicates; accumulate the signer points along the way
    4. Verify the Schnorr equation against the aggregate public key

Callers must pre-sort indices. In return the verifier needs no second lookup
or sort step and its cost is linear in the number of signers.

.. code-block:: python

    >>> verifier = SignatureVerifier(registry)
    >>> result = verifier.verify(message, AggregateSignature(sig, commitment, (1, 2)), threshold=2)
    >>> result.valid
    True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from web3 import Web3

from .CurvePoint import CURVE_ORDER, IDENTITY, ZERO_ADDRESS, SignerPoint
from .errors import (
    InvalidIndex,
    InvalidSignature,
    InvalidSignerOrder,
    NotEnoughSignatures,
    error_for_code,
)
from .SchnorrScheme import verify_schnorr

if TYPE_CHECKING:
    from .SignerRegistry import SignerRegistry, SignerSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateSignature:
    """A multi-party signature over one message.

    :ivar signature: Aggregate Schnorr scalar ``s``.
    :ivar commitment: Address of the aggregate nonce point.
    :ivar signers: Strictly ascending 1-based signer slot indices.
    """

    signature: int
    commitment: str
    signers: tuple[int, ...]

    @classmethod
    def create(cls, signature: int, commitment: str, signers: Sequence[int]) -> AggregateSignature:
        return cls(signature=signature, commitment=commitment, signers=tuple(signers))

    def participation_bitmap(self) -> int:
        """Bitmap with bit ``i - 1`` set for every signer index ``i``."""
        bitmap = 0
        for index in self.signers:
            bitmap |= 1 << (index - 1)
        return bitmap


@dataclass
class VerificationResult:
    """Outcome of signature verification.

    :ivar valid: True if the signature was accepted.
    :ivar error: Failure code when rejected (e.g. ``"InvalidSignerOrder"``).
    :ivar detail: Human readable failure detail.
    :ivar aggregate_key: Aggregate public key of the accepted signer set.
    :ivar snapshot_version: Registry snapshot version the check ran against.
    """

    valid: bool
    error: str | None = None
    detail: str = ""
    aggregate_key: SignerPoint = IDENTITY
    snapshot_version: int | None = None

    def __bool__(self) -> bool:
        return self.valid

    def raise_for_error(self) -> None:
        """Raise the exception matching the failure code, if any."""
        if not self.valid:
            raise error_for_code(self.error or "InvalidSignature", self.detail)


def _fail(error: type, detail: str, snapshot: SignerSnapshot | None = None) -> VerificationResult:
    return VerificationResult(
        valid=False,
        error=error.code,
        detail=detail,
        snapshot_version=snapshot.version if snapshot is not None else None,
    )


class SignatureVerifier:
    """Validates aggregate signatures against the signer registry.

    :ivar registry: Registry whose snapshot supplies signer public keys.
    """

    def __init__(self, registry: SignerRegistry) -> None:
        self.registry = registry

    def verify(
        self,
        message: bytes,
        aggregate_signature: AggregateSignature,
        threshold: int,
    ) -> VerificationResult:
        """Verify an aggregate signature from at least ``threshold`` signers.

        :param message: Signed message bytes.
        :param aggregate_signature: Signature, commitment and signer indices.
        :param threshold: Minimum number of distinct signers required.
        :returns: VerificationResult; never raises for a bad signature.
        """
        signers = aggregate_signature.signers

        if not signers:
            return _fail(NotEnoughSignatures, "signer list is empty")
        if not 0 < aggregate_signature.signature < CURVE_ORDER:
            return _fail(InvalidSignature, "signature scalar is degenerate")
        commitment = aggregate_signature.commitment
        if not commitment or commitment.lower() == ZERO_ADDRESS:
            return _fail(InvalidSignature, "commitment is degenerate")
        if not Web3.is_address(commitment):
            return _fail(InvalidSignature, "commitment is not an address")
        if len(signers) < threshold:
            return _fail(
                NotEnoughSignatures,
                f"{len(signers)} signers supplied, {threshold} required",
            )

        # One snapshot for the whole call; concurrent add/remove cannot affect it.
        snapshot = self.registry.snapshot()
        size = len(snapshot)

        first = signers[0]
        if not 0 < first < size:
            return _fail(InvalidIndex, f"signer index {first} out of range [1, {size})", snapshot)
        aggregate = snapshot[first]

        previous = first
        for index in signers[1:]:
            if not 0 < index < size:
                return _fail(InvalidIndex, f"signer index {index} out of range [1, {size})", snapshot)
            if index <= previous:
                return _fail(
                    InvalidSignerOrder,
                    f"signer index {index} does not follow {previous} in strictly ascending order",
                    snapshot,
                )
            aggregate = aggregate + snapshot[index]
            previous = index

        if not verify_schnorr(aggregate, message, aggregate_signature.signature, commitment):
            return _fail(InvalidSignature, "signature does not match aggregate key", snapshot)

        logger.debug(
            f"Verified signature from {len(signers)} signers "
            f"against snapshot v{snapshot.version}"
        )
        return VerificationResult(
            valid=True,
            aggregate_key=aggregate,
            snapshot_version=snapshot.version,
        )
