"""SchnorrScheme: aggregate Schnorr signatures with an address commitment.

A group of signers with secrets ``x_i`` and public points ``P_i = x_i * G``
jointly signs a message:

    1. Each signer picks a nonce ``k_i``; the nonce commitment is
       ``commitment = address(sum(k_i * G))``.
    2. The challenge is
       ``e = keccak256(P.x || uint8(27 + parity(P.y)) || message || commitment) mod n``
       where ``P = sum(P_i)`` is the aggregate public key.
    3. The aggregate signature is ``s = sum(k_i + e * x_i) mod n``.

A verifier accepts iff ``address(s * G - e * P) == commitment``. Committing to
the address of ``R`` instead of ``R`` itself keeps signatures compact.

.. code-block:: python

    >>> message = Web3.keccak(text="btc/usd 64000")
    >>> signature, commitment = sign_multi([11, 22, 33], message)
    >>> aggregate = aggregate_points(SignerPoint.from_secret(x) for x in (11, 22, 33))
    >>> verify_schnorr(aggregate, message, signature, commitment)
    True
"""

from __future__ import annotations

import secrets as _secrets
from typing import Sequence

from web3 import Web3

from .CurvePoint import (
    CURVE_ORDER,
    ZERO_ADDRESS,
    SignerPoint,
    aggregate_points,
    point_to_address,
)


def _address_bytes(address: str) -> bytes:
    hex_part = address[2:] if address.startswith("0x") else address
    return bytes.fromhex(hex_part)


def challenge(aggregate: SignerPoint, message: bytes, commitment: str) -> int:
    """Compute the Schnorr challenge scalar.

    :param aggregate: Aggregate public key of the signing set.
    :param message: Signed message bytes.
    :param commitment: Address of the aggregate nonce point.
    :returns: Challenge ``e`` reduced modulo the group order.
    """
    payload = (
        aggregate.x.to_bytes(32, "big")
        + bytes([27 + aggregate.y_parity])
        + bytes(message)
        + _address_bytes(commitment)
    )
    return int.from_bytes(Web3.keccak(payload), "big") % CURVE_ORDER


def verify_schnorr(
    aggregate: SignerPoint,
    message: bytes,
    signature: int,
    commitment: str,
) -> bool:
    """Check a Schnorr signature against an aggregate public key.

    :param aggregate: Aggregate public key.
    :param message: Signed message bytes.
    :param signature: Scalar ``s``.
    :param commitment: Address of the nonce point ``R``.
    :returns: True if ``address(s*G - e*P) == commitment``.
    """
    if aggregate.is_identity or not aggregate.is_on_curve():
        return False
    if not 0 < signature < CURVE_ORDER:
        return False
    if not Web3.is_address(commitment) or commitment.lower() == ZERO_ADDRESS:
        return False

    e = challenge(aggregate, message, commitment)
    try:
        recovered = SignerPoint.from_secret(signature) + aggregate.multiply(e).negate()
    except ValueError:
        return False
    if recovered.is_identity:
        return False
    return point_to_address(recovered).lower() == commitment.lower()


def generate_nonce() -> int:
    """Draw a fresh nonce scalar in ``[1, n)``."""
    return _secrets.randbelow(CURVE_ORDER - 1) + 1


def sign_multi(
    secret_keys: Sequence[int],
    message: bytes,
    nonces: Sequence[int] | None = None,
) -> tuple[int, str]:
    """Produce an aggregate signature from a set of signer secrets.

    In production every node computes its own partial ``k_i + e*x_i`` and only
    shares ``k_i * G``; this helper runs all rounds in one process.

    :param secret_keys: Secrets of the participating signers.
    :param message: Message to sign.
    :param nonces: Optional fixed nonces, one per signer (for reproducible tests).
    :returns: Tuple of ``(signature, commitment)``.
    :raises ValueError: If no secrets are given or nonce count mismatches.
    """
    if not secret_keys:
        raise ValueError("at least one secret key is required")
    if nonces is None:
        nonces = [generate_nonce() for _ in secret_keys]
    if len(nonces) != len(secret_keys):
        raise ValueError("nonces must match secret_keys in length")

    aggregate = aggregate_points(SignerPoint.from_secret(x) for x in secret_keys)
    nonce_point = aggregate_points(SignerPoint.from_secret(k) for k in nonces)
    commitment = point_to_address(nonce_point)
    e = challenge(aggregate, message, commitment)

    signature = sum(k + e * x for k, x in zip(nonces, secret_keys)) % CURVE_ORDER
    return signature, commitment
