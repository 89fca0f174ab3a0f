"""OracleNetwork: protocol context tying signers, feeds, pricing and rewards together.

Data flow of an update:
    - A publish request carries an answer, an aggregate signature and the
      sorted signer indices
    - The answer is checked against the feed (non-zero, newer, not future)
    - The signature is verified against one registry snapshot with the feed's
      signer threshold
    - The participation bitmap is appended to the feed's ledger and the answer
      becomes the feed's latest value

Signers later accrue their rewards with ``distribute`` and withdraw them with
``claim`` through the injected payout capability.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from . import StateStore as state_store
from .AccessPolicy import ADMIN, REGISTRY_OWNER, Authorizer
from .CurvePoint import SignerPoint, normalize_address
from .errors import DuplicateFeed, PayoutFailed, UnknownFeed, UnknownSubscription
from .Feed import Answer, Feed, Subscription
from .ParticipationLedger import DistributionResult, ParticipationLedger
from .PayoutUtility import PayoutUtility
from .PricingEngine import PricingEngine, PricingParams
from .SignatureVerifier import AggregateSignature, SignatureVerifier
from .SignerRegistry import RegistryEvent, SignerRegistry

logger = logging.getLogger(__name__)


class OracleNetwork:
    """Owns the registry, feeds, ledgers and subscriptions of one network.

    :ivar authorizer: Role check capability.
    :ivar payout: Payout capability used by claims.
    :ivar registry: Signer registry.
    :ivar verifier: Aggregate signature verifier bound to the registry.
    :ivar pricing: Active pricing engine.
    :ivar feeds: Feeds by id.
    :ivar ledgers: Participation ledgers by feed id.
    :ivar subscriptions: Subscriptions by ``(owner, feed_id)``.
    """

    def __init__(
        self,
        authorizer: Authorizer,
        payout: PayoutUtility | None = None,
        store: state_store.StateStore | None = None,
        pricing_params: PricingParams | None = None,
        on_registry_event: Callable[[RegistryEvent], None] | None = None,
    ) -> None:
        """Initialize the network, restoring the signer registry from store if given.

        :param authorizer: Role check capability.
        :param payout: Payout capability; claims fail without one.
        :param store: Optional persistence capability.
        :param pricing_params: Pricing parameters (default: from environment).
        :param on_registry_event: Optional callback for signer add/remove events.
        """
        self.authorizer = authorizer
        self.payout = payout
        self._store = store
        if store is not None:
            self.registry = SignerRegistry.load(store, on_event=on_registry_event)
        else:
            self.registry = SignerRegistry(on_event=on_registry_event)
        self.verifier = SignatureVerifier(self.registry)
        self.pricing = PricingEngine(pricing_params or PricingParams.from_env())
        self.feeds: dict[str, Feed] = {}
        self.ledgers: dict[str, ParticipationLedger] = {}
        self.subscriptions: dict[tuple[str, str], Subscription] = {}

    def _feed(self, feed_id: str) -> Feed:
        feed = self.feeds.get(feed_id)
        if feed is None:
            raise UnknownFeed(f"feed {feed_id!r} does not exist")
        return feed

    # Administration

    def add_signer(self, caller: str, point: SignerPoint) -> int:
        """Register a signer key. Requires ADMIN."""
        self.authorizer.require_role(caller, ADMIN)
        return self.registry.add_signer(point)

    def remove_signer(self, caller: str, address: str) -> int:
        """Remove a signer with swap-with-last compaction. Requires ADMIN."""
        self.authorizer.require_role(caller, ADMIN)
        return self.registry.remove_signer(address)

    def update_pricing(self, caller: str, params: PricingParams) -> None:
        """Replace pricing parameters and refresh every ledger's reward. Requires ADMIN.

        Rewards already accrued are not recomputed.
        """
        self.authorizer.require_role(caller, ADMIN)
        self.pricing = PricingEngine(params)
        for feed_id, ledger in self.ledgers.items():
            ledger.reward_per_update = self.pricing.reward_per_update(self.feeds[feed_id])
        logger.info(f"Pricing updated: {params}")

    def create_feed(self, caller: str, feed_id: str, frequency: int, min_signatures: int) -> Feed:
        """Create a feed and its participation ledger. Requires ADMIN.

        :raises DuplicateFeed: If the feed already exists.
        :raises InvalidFeedConfig: If frequency or min_signatures is out of range.
        """
        self.authorizer.require_role(caller, ADMIN)
        if feed_id in self.feeds:
            raise DuplicateFeed(f"feed {feed_id!r} already exists")

        feed = Feed(feed_id=feed_id, frequency=frequency, min_signatures=min_signatures)
        reward = self.pricing.reward_per_update(feed)
        if self._store is not None:
            ledger = ParticipationLedger.load(feed_id, self.registry, reward, self._store)
        else:
            ledger = ParticipationLedger(feed_id, self.registry, reward)

        self.feeds[feed_id] = feed
        self.ledgers[feed_id] = ledger
        logger.info(
            f"Created feed {feed_id} (frequency={frequency}s, "
            f"min_signatures={min_signatures}, reward_per_update={reward})"
        )
        return feed

    def update_feed_config(
        self, caller: str, feed_id: str, frequency: int, min_signatures: int
    ) -> Feed:
        """Change a feed's frequency and signer threshold. Requires ADMIN.

        The new threshold applies from the next publish. The ledger's reward
        per update is recomputed; rewards already accrued and prices locked
        into open subscriptions are left as they are.

        :raises UnknownFeed: If the feed does not exist.
        :raises InvalidFeedConfig: If frequency or min_signatures is out of range.
        """
        self.authorizer.require_role(caller, ADMIN)
        feed = self._feed(feed_id)
        feed.reconfigure(frequency, min_signatures)
        self.ledgers[feed_id].reward_per_update = self.pricing.reward_per_update(feed)
        return feed

    # Updates

    def publish(
        self,
        feed_id: str,
        answer: Answer,
        signature: AggregateSignature,
        now: int | None = None,
    ) -> int:
        """Verify and commit a signed answer.

        Nothing is mutated unless every check passes.

        :param feed_id: Target feed.
        :param answer: Answer being published.
        :param signature: Aggregate signature over ``answer.signing_message(feed_id)``.
        :param now: Current unix time (default: wall clock).
        :returns: Ledger position of the recorded participation.
        :raises UnknownFeed: If the feed does not exist.
        :raises ZeroValue, PastTimestamp, FutureTimestamp: If the answer is rejected.
        :raises NotEnoughSignatures, InvalidIndex, InvalidSignerOrder, InvalidSignature:
            If verification fails.
        """
        now = int(time.time()) if now is None else now
        feed = self._feed(feed_id)
        feed.validate_answer(answer, now)

        result = self.verifier.verify(
            answer.signing_message(feed_id), signature, feed.min_signatures
        )
        if not result:
            logger.warning(f"{feed_id}: rejected update: {result.error}: {result.detail}")
            result.raise_for_error()

        index = self.ledgers[feed_id].record_participation(signature.participation_bitmap())
        feed.publish(answer, now)
        return index

    def latest_answer(self, feed_id: str) -> Answer | None:
        return self._feed(feed_id).latest_answer

    # Subscriptions

    def quote(self, feed_id: str) -> int:
        """Scaled price per second of a feed under the current pricing."""
        feed = self._feed(feed_id)
        return self.pricing.price_per_second(feed.frequency, feed.min_signatures)

    def subscribe(
        self, owner: str, feed_id: str, duration: int, now: int | None = None
    ) -> tuple[Subscription, int]:
        """Open a subscription, or extend the owner's existing one.

        :returns: Tuple of (subscription, cost).
        :raises MinimumSubscriptionTime: If duration is under one day.
        """
        owner = normalize_address(owner)
        existing = self.subscriptions.get((owner, feed_id))
        if existing is not None:
            return existing, self.extend_subscription(owner, feed_id, duration, now)

        subscription, cost = Subscription.open(owner, feed_id, self.quote(feed_id), duration, now)
        self.subscriptions[(owner, feed_id)] = subscription
        logger.info(f"{owner} subscribed to {feed_id} until {subscription.due_time} for {cost}")
        return subscription, cost

    def _subscription(self, owner: str, feed_id: str) -> Subscription:
        self._feed(feed_id)
        subscription = self.subscriptions.get((normalize_address(owner), feed_id))
        if subscription is None:
            raise UnknownSubscription(f"{owner} has no subscription to {feed_id!r}")
        return subscription

    def extend_subscription(
        self, owner: str, feed_id: str, duration: int, now: int | None = None
    ) -> int:
        """Extend a subscription at its locked-in price.

        :returns: Cost of the extension.
        :raises MinimumExtensionTime: If duration is under one day.
        """
        subscription = self._subscription(owner, feed_id)
        cost = subscription.extend(duration, now)
        logger.info(f"{subscription.owner} extended {feed_id} until {subscription.due_time}")
        return cost

    def top_up(self, owner: str, feed_id: str, amount: int) -> int:
        """Add funds to a subscription. Returns the new balance."""
        return self._subscription(owner, feed_id).top_up(amount)

    def is_subscribed(self, owner: str, feed_id: str, now: int | None = None) -> bool:
        subscription = self.subscriptions.get((normalize_address(owner), feed_id))
        return subscription is not None and subscription.is_active(now)

    # Rewards

    def distribute(self, feed_id: str, signer: str, max_batch: int) -> DistributionResult:
        """Accrue a batch of rewards for a signer. Anyone may call."""
        self._feed(feed_id)
        return self.ledgers[feed_id].distribute(signer, max_batch)

    def claim(self, caller: str, feed_id: str) -> int:
        """Pay out the caller's own pending reward on a feed."""
        return self._claim(feed_id, caller)

    def claim_for(self, caller: str, feed_id: str, signer: str) -> int:
        """Pay out a signer's pending reward on their behalf. Requires REGISTRY_OWNER."""
        self.authorizer.require_role(caller, REGISTRY_OWNER)
        return self._claim(feed_id, signer)

    def _claim(self, feed_id: str, signer: str) -> int:
        self._feed(feed_id)
        if self.payout is None:
            raise PayoutFailed("no payout capability configured")
        return self.ledgers[feed_id].claim(signer, self.payout)

