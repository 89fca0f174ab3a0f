"""CurvePoint: secp256k1 point representation, addition and signer addresses.

Signer public keys are kept as plain affine ``(x, y)`` integer pairs so they can
be compared, hashed and serialized without touching the curve library. Group
operations are delegated to libsecp256k1 through ``coincurve``.

The short identity of a signer is derived the same way an Ethereum address is:
the last 20 bytes of ``keccak256(x || y)``, rendered as an EIP-55 checksum string.

.. code-block:: python

    >>> a = SignerPoint.from_secret(1)
    >>> b = SignerPoint.from_secret(2)
    >>> a + b == SignerPoint.from_secret(3)
    True
    >>> (a + IDENTITY) == a
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from coincurve import PublicKey
from web3 import Web3

# secp256k1 field prime and group order.
FIELD_PRIME = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _scalar_bytes(scalar: int) -> bytes:
    return scalar.to_bytes(32, "big")


@dataclass(frozen=True)
class SignerPoint:
    """Affine secp256k1 point. ``(0, 0)`` encodes the identity (point at infinity).

    :ivar x: Affine x coordinate.
    :ivar y: Affine y coordinate.
    """

    x: int
    y: int

    @property
    def is_identity(self) -> bool:
        """True for the point at infinity."""
        return self.x == 0 and self.y == 0

    @property
    def y_parity(self) -> int:
        """Parity bit of the y coordinate."""
        return self.y & 1

    @classmethod
    def from_public_key(cls, public_key: PublicKey) -> SignerPoint:
        """Convert a coincurve public key into a point."""
        x, y = public_key.point()
        return cls(x, y)

    @classmethod
    def from_secret(cls, secret: int) -> SignerPoint:
        """Compute ``secret * G``.

        :param secret: Scalar in ``[1, n)``.
        :returns: The corresponding public point.
        :raises ValueError: If the scalar is out of range.
        """
        if not 0 < secret < CURVE_ORDER:
            raise ValueError("secret must be in [1, n)")
        return cls.from_public_key(PublicKey.from_secret(_scalar_bytes(secret)))

    @classmethod
    def from_bytes(cls, data: bytes) -> SignerPoint:
        """Parse a SEC1 encoded point (33 or 65 bytes) or 64 raw ``x || y`` bytes.

        :raises ValueError: If the encoding is not a valid curve point.
        """
        if len(data) == 64:
            data = b"\x04" + data
        return cls.from_public_key(PublicKey(data))

    def to_public_key(self) -> PublicKey:
        """Convert to a coincurve public key.

        :raises ValueError: If the point is the identity or not on the curve.
        """
        if self.is_identity:
            raise ValueError("identity point has no public key encoding")
        return PublicKey.from_point(self.x, self.y)

    def to_bytes(self) -> bytes:
        """Raw 64-byte ``x || y`` encoding."""
        return self.x.to_bytes(32, "big") + self.y.to_bytes(32, "big")

    def is_on_curve(self) -> bool:
        """Check the curve equation ``y^2 = x^3 + 7 (mod p)``."""
        if self.is_identity:
            return True
        if not (0 <= self.x < FIELD_PRIME and 0 <= self.y < FIELD_PRIME):
            return False
        return (self.y * self.y - self.x * self.x * self.x - 7) % FIELD_PRIME == 0

    def negate(self) -> SignerPoint:
        if self.is_identity:
            return self
        return SignerPoint(self.x, (-self.y) % FIELD_PRIME)

    def __add__(self, other: SignerPoint) -> SignerPoint:
        if self.is_identity:
            return other
        if other.is_identity:
            return self
        if self.x == other.x and (self.y + other.y) % FIELD_PRIME == 0:
            return IDENTITY
        combined = PublicKey.combine_keys([self.to_public_key(), other.to_public_key()])
        return SignerPoint.from_public_key(combined)

    def multiply(self, scalar: int) -> SignerPoint:
        """Compute ``scalar * self``.

        :param scalar: Any integer; reduced modulo the group order.
        """
        scalar %= CURVE_ORDER
        if scalar == 0 or self.is_identity:
            return IDENTITY
        return SignerPoint.from_public_key(
            self.to_public_key().multiply(_scalar_bytes(scalar))
        )

    @property
    def address(self) -> str:
        """EIP-55 checksum address derived from ``keccak256(x || y)``."""
        return point_to_address(self)


IDENTITY = SignerPoint(0, 0)


def point_to_address(point: SignerPoint) -> str:
    """Derive the canonical signer address of a point.

    :param point: Public key point.
    :returns: Checksum address. The identity maps to the zero address.
    """
    if point.is_identity:
        return ZERO_ADDRESS
    digest = Web3.keccak(point.to_bytes())
    return Web3.to_checksum_address("0x" + bytes(digest[12:]).hex())


def aggregate_points(points: Iterable[SignerPoint]) -> SignerPoint:
    """Sum a sequence of points.

    :param points: Points to add together.
    :returns: Their sum, or the identity for an empty sequence.
    """
    total = IDENTITY
    for point in points:
        total = total + point
    return total


def normalize_address(address: str) -> str:
    """Return the checksum form of an address.

    :raises ValueError: If the string is not a 20-byte hex address.
    """
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)
