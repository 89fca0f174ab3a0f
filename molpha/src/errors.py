"""Exception hierarchy for the oracle protocol core.

Every failure carries a stable ``code`` so callers can distinguish:

- ``ValidationError``: bad input, try again with different input.
- ``StateConflictError``: structural conflict with current state.
- ``PolicyError``: rejected by protocol policy, never retried automatically.
- ``ExternalCapabilityError``: an injected capability failed, wait and retry.

All core operations are all-or-nothing: when one of these is raised, no state
has been mutated.
"""

from __future__ import annotations


class MolphaError(Exception):
    """Base exception for all protocol errors.

    :cvar code: Stable identifier of the failure reason.
    :cvar retryable: Whether retrying the same call may succeed later.
    """

    code = "MolphaError"
    retryable = False

    def __init__(self, message: str = "") -> None:
        """Initialize the error.

        :param message: Human readable detail. Defaults to the error code.
        """
        super().__init__(message or self.code)


class ValidationError(MolphaError):
    """Raised when an input is zero, degenerate, empty or out of range."""

    code = "ValidationError"


class StateConflictError(MolphaError):
    """Raised when an operation conflicts with the current state."""

    code = "StateConflictError"


class PolicyError(MolphaError):
    """Raised when protocol policy rejects an otherwise well-formed request."""

    code = "PolicyError"


class ExternalCapabilityError(MolphaError):
    """Raised when an injected capability fails; state is left unchanged."""

    code = "ExternalCapabilityError"
    retryable = True


class InvalidKey(ValidationError):
    code = "InvalidKey"


class InvalidIndex(ValidationError):
    code = "InvalidIndex"


class EmptyBitmap(ValidationError):
    code = "EmptyBitmap"


class InvalidBatchSize(ValidationError):
    code = "InvalidBatchSize"


class InvalidFeedConfig(ValidationError):
    code = "InvalidFeedConfig"


class InvalidPricingParams(ValidationError):
    code = "InvalidPricingParams"


class ZeroValue(ValidationError):
    code = "ZeroValue"


class PastTimestamp(ValidationError):
    code = "PastTimestamp"


class FutureTimestamp(ValidationError):
    code = "FutureTimestamp"


class MinimumSubscriptionTime(ValidationError):
    code = "MinimumSubscriptionTime"


class MinimumExtensionTime(ValidationError):
    code = "MinimumExtensionTime"


class DuplicateSigner(StateConflictError):
    code = "DuplicateSigner"


class UnknownSigner(StateConflictError):
    code = "UnknownSigner"


class RegistryFull(StateConflictError):
    code = "RegistryFull"


class UnknownFeed(StateConflictError):
    code = "UnknownFeed"


class DuplicateFeed(StateConflictError):
    code = "DuplicateFeed"


class UnknownSubscription(StateConflictError):
    code = "UnknownSubscription"


class NothingToDistribute(StateConflictError):
    code = "NothingToDistribute"


class NoRewardsToClaim(StateConflictError):
    code = "NoRewardsToClaim"


class NotEnoughSignatures(PolicyError):
    code = "NotEnoughSignatures"


class InvalidSignerOrder(PolicyError):
    code = "InvalidSignerOrder"


class InvalidSignature(PolicyError):
    code = "InvalidSignature"


class Unauthorized(PolicyError):
    code = "Unauthorized"


class PayoutFailed(ExternalCapabilityError):
    code = "PayoutFailed"


ERRORS_BY_CODE: dict[str, type[MolphaError]] = {
    cls.code: cls
    for cls in (
        InvalidKey,
        InvalidIndex,
        EmptyBitmap,
        InvalidBatchSize,
        InvalidFeedConfig,
        InvalidPricingParams,
        ZeroValue,
        PastTimestamp,
        FutureTimestamp,
        MinimumSubscriptionTime,
        MinimumExtensionTime,
        DuplicateSigner,
        UnknownSigner,
        RegistryFull,
        UnknownFeed,
        DuplicateFeed,
        UnknownSubscription,
        NothingToDistribute,
        NoRewardsToClaim,
        NotEnoughSignatures,
        InvalidSignerOrder,
        InvalidSignature,
        Unauthorized,
        PayoutFailed,
    )
}


def error_for_code(code: str, message: str = "") -> MolphaError:
    """Build the exception instance matching a failure code.

    :param code: Failure code, e.g. ``"InvalidSignerOrder"``.
    :param message: Optional detail message.
    :returns: Exception instance (``MolphaError`` for unknown codes).
    """
    cls = ERRORS_BY_CODE.get(code, MolphaError)
    return cls(message or code)
