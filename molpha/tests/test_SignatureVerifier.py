"""Unit tests for SignatureVerifier."""

import pytest
from web3 import Web3

from molpha.src.CurvePoint import CURVE_ORDER, ZERO_ADDRESS, SignerPoint, aggregate_points
from molpha.src.errors import InvalidSignerOrder
from molpha.src.SchnorrScheme import sign_multi
from molpha.src.SignatureVerifier import AggregateSignature, SignatureVerifier
from molpha.src.SignerRegistry import SignerRegistry

SECRETS = {1: 101, 2: 202, 3: 303}
MESSAGE = bytes(Web3.keccak(text="eth/usd 3100"))


@pytest.fixture
def registry() -> SignerRegistry:
    registry = SignerRegistry()
    for index in sorted(SECRETS):
        registry.add_signer(SignerPoint.from_secret(SECRETS[index]))
    return registry


@pytest.fixture
def verifier(registry: SignerRegistry) -> SignatureVerifier:
    return SignatureVerifier(registry)


def signed(indices, message: bytes = MESSAGE) -> AggregateSignature:
    signature, commitment = sign_multi([SECRETS[i] for i in indices], message, [7 + i for i in indices])
    return AggregateSignature.create(signature, commitment, indices)


class TestVerifyAccepts:
    """Test valid signatures."""

    def test_threshold_subset(self, verifier: SignatureVerifier) -> None:
        """A threshold subset of signers should verify."""
        result = verifier.verify(MESSAGE, signed([1, 2]), threshold=2)
        assert result.valid
        assert result.error is None
        assert result.snapshot_version == 3
        assert result.aggregate_key == aggregate_points(
            SignerPoint.from_secret(SECRETS[i]) for i in (1, 2)
        )

    def test_more_than_threshold(self, verifier: SignatureVerifier) -> None:
        """All signers should verify against a lower threshold."""
        assert verifier.verify(MESSAGE, signed([1, 2, 3]), threshold=2)

    def test_non_adjacent_subset(self, verifier: SignatureVerifier) -> None:
        """Any ascending subset should verify."""
        assert verifier.verify(MESSAGE, signed([1, 3]), threshold=2)

    def test_single_signer(self, verifier: SignatureVerifier) -> None:
        """Threshold 1 with one signer should verify."""
        assert verifier.verify(MESSAGE, signed([2]), threshold=1)


class TestVerifyRejects:
    """Test rejected signatures."""

    def test_empty_signers(self, verifier: SignatureVerifier) -> None:
        """An empty signer list should fail with NotEnoughSignatures."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, sig.commitment, ()), 1)
        assert not result
        assert result.error == "NotEnoughSignatures"

    def test_below_threshold(self, verifier: SignatureVerifier) -> None:
        """Fewer signers than the threshold should fail."""
        result = verifier.verify(MESSAGE, signed([1, 2]), threshold=3)
        assert result.error == "NotEnoughSignatures"

    def test_degenerate_signature(self, verifier: SignatureVerifier) -> None:
        """Zero signature or commitment should fail with InvalidSignature."""
        sig = signed([1, 2])
        zero_s = AggregateSignature(0, sig.commitment, (1, 2))
        zero_commitment = AggregateSignature(sig.signature, ZERO_ADDRESS, (1, 2))
        assert verifier.verify(MESSAGE, zero_s, 2).error == "InvalidSignature"
        assert verifier.verify(MESSAGE, zero_commitment, 2).error == "InvalidSignature"

    @pytest.mark.parametrize("commitment", ["0xZZZZ", "0x1234", "not an address", "0x" + "g" * 40])
    def test_malformed_commitment(self, verifier: SignatureVerifier, commitment: str) -> None:
        """A commitment that is not a 20-byte address should fail, not raise."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, commitment, (1, 2)), 2)
        assert not result
        assert result.error == "InvalidSignature"
        assert result.detail == "commitment is not an address"

    @pytest.mark.parametrize("indices", [(1, 1), (2, 1), (1, 3, 2), (1, 2, 2)])
    def test_order_and_duplicates(self, verifier: SignatureVerifier, indices) -> None:
        """Duplicates and descending pairs should fail with InvalidSignerOrder."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, sig.commitment, indices), 2)
        assert result.error == "InvalidSignerOrder"

    def test_order_checked_before_signature(self, verifier: SignatureVerifier) -> None:
        """A correctly signed but unsorted list should still be rejected."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, sig.commitment, (2, 1)), 2)
        assert result.error == "InvalidSignerOrder"

    @pytest.mark.parametrize("indices", [(0, 1), (1, 4), (4,)])
    def test_out_of_bounds(self, verifier: SignatureVerifier, indices) -> None:
        """Indices outside [1, count] should fail with InvalidIndex."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, sig.commitment, indices), 1)
        assert result.error == "InvalidIndex"

    def test_wrong_message(self, verifier: SignatureVerifier) -> None:
        """A signature over another message should fail."""
        other = bytes(Web3.keccak(text="eth/usd 3101"))
        assert verifier.verify(other, signed([1, 2]), 2).error == "InvalidSignature"

    def test_claimed_signers_mismatch(self, verifier: SignatureVerifier) -> None:
        """Claiming a different signer set than the one that signed should fail."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, sig.commitment, (1, 3)), 2)
        assert result.error == "InvalidSignature"

    @pytest.mark.parametrize("bit", [0, 1, 17, 128, 200, 255])
    def test_signature_bit_flip(self, verifier: SignatureVerifier, bit: int) -> None:
        """Flipping any bit of the signature scalar should fail."""
        sig = signed([1, 2])
        flipped = AggregateSignature(sig.signature ^ (1 << bit), sig.commitment, (1, 2))
        assert not verifier.verify(MESSAGE, flipped, 2)

    @pytest.mark.parametrize("position", [2, 10, 25, 41])
    def test_commitment_bit_flip(self, verifier: SignatureVerifier, position: int) -> None:
        """Flipping a bit of the commitment address should fail."""
        sig = signed([1, 2])
        chars = list(sig.commitment.lower())
        chars[position] = format(int(chars[position], 16) ^ 1, "x")
        flipped = AggregateSignature(sig.signature, "".join(chars), (1, 2))
        assert not verifier.verify(MESSAGE, flipped, 2)

    def test_signer_key_changed(self) -> None:
        """A registry holding a different key for a signer should reject."""
        registry = SignerRegistry()
        registry.add_signer(SignerPoint.from_secret(SECRETS[1]))
        registry.add_signer(SignerPoint.from_secret(SECRETS[2] ^ 1))
        result = SignatureVerifier(registry).verify(MESSAGE, signed([1, 2]), 2)
        assert result.error == "InvalidSignature"

    def test_indices_after_compaction(self, registry: SignerRegistry, verifier: SignatureVerifier) -> None:
        """After a removal the same indices name different keys and fail."""
        sig = signed([1, 2])
        registry.remove_signer(SignerPoint.from_secret(SECRETS[1]).address)
        assert verifier.verify(MESSAGE, sig, 2).error == "InvalidSignature"


class TestVerificationResult:
    """Test result helpers."""

    def test_raise_for_error(self, verifier: SignatureVerifier) -> None:
        """Failures should convert to their exception type."""
        sig = signed([1, 2])
        result = verifier.verify(MESSAGE, AggregateSignature(sig.signature, sig.commitment, (2, 1)), 2)
        with pytest.raises(InvalidSignerOrder, match="strictly ascending"):
            result.raise_for_error()

    def test_raise_for_error_valid(self, verifier: SignatureVerifier) -> None:
        """Valid results should not raise."""
        verifier.verify(MESSAGE, signed([1, 2]), 2).raise_for_error()

    def test_participation_bitmap(self) -> None:
        """Bit i-1 should be set for each signer index i."""
        assert AggregateSignature(1, ZERO_ADDRESS, (1, 2)).participation_bitmap() == 0b011
        assert AggregateSignature(1, ZERO_ADDRESS, (3, 256)).participation_bitmap() == (1 << 2) | (1 << 255)

    def test_signature_scalar_range(self) -> None:
        """Scalars at or above the group order should be rejected."""
        registry = SignerRegistry()
        registry.add_signer(SignerPoint.from_secret(5))
        sig = AggregateSignature(CURVE_ORDER, "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf", (1,))
        assert SignatureVerifier(registry).verify(MESSAGE, sig, 1).error == "InvalidSignature"
