"""
Molpha Oracle Network - Protocol Core

This module provides the signer, pricing and reward core of the oracle network:
- SignerRegistry: Bounded signer set with dense slot indices and snapshots
- SignatureVerifier: Threshold check of aggregate Schnorr signatures
- PricingEngine: Fixed-point subscription pricing and signer rewards
- ParticipationLedger: Participation bitmaps and batched reward accrual
- Feed: Feed answers, history and subscriptions
- OracleNetwork: Protocol context wiring the above with injected capabilities
"""

from .AccessPolicy import ADMIN, REGISTRY_OWNER, RoleAuthorizer
from .CurvePoint import IDENTITY, SignerPoint, aggregate_points
from .Feed import Answer, Feed, Subscription
from .OracleNetwork import OracleNetwork
from .ParticipationLedger import (
    DistributionResult,
    ParticipationLedger,
    RewardAccount,
    bitmap_from_indices,
)
from .PricingEngine import SCALE, PricingEngine, PricingParams
from .SchnorrScheme import sign_multi, verify_schnorr
from .SignatureVerifier import AggregateSignature, SignatureVerifier, VerificationResult
from .SignerRegistry import MAX_SIGNERS, SignerRegistry, SignerSnapshot
from .StateStore import FilesystemStore, InMemoryStore

__all__ = [
    "ADMIN",
    "AggregateSignature",
    "Answer",
    "DistributionResult",
    "Feed",
    "FilesystemStore",
    "IDENTITY",
    "InMemoryStore",
    "MAX_SIGNERS",
    "OracleNetwork",
    "ParticipationLedger",
    "PricingEngine",
    "PricingParams",
    "REGISTRY_OWNER",
    "RewardAccount",
    "RoleAuthorizer",
    "SCALE",
    "SignatureVerifier",
    "SignerPoint",
    "SignerRegistry",
    "SignerSnapshot",
    "Subscription",
    "VerificationResult",
    "aggregate_points",
    "bitmap_from_indices",
    "sign_multi",
    "verify_schnorr",
]
