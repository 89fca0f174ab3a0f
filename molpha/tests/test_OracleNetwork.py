"""Unit tests for OracleNetwork."""

from unittest.mock import Mock

import pytest

from molpha.src.AccessPolicy import ADMIN, REGISTRY_OWNER, RoleAuthorizer
from molpha.src.CurvePoint import SignerPoint
from molpha.src.errors import (
    DuplicateFeed,
    FutureTimestamp,
    InvalidFeedConfig,
    InvalidSignature,
    MinimumSubscriptionTime,
    NotEnoughSignatures,
    PastTimestamp,
    PayoutFailed,
    Unauthorized,
    UnknownFeed,
    UnknownSigner,
    UnknownSubscription,
    ZeroValue,
)
from molpha.src.Feed import Answer
from molpha.src.OracleNetwork import OracleNetwork
from molpha.src.PayoutUtility import PayoutUtility
from molpha.src.PricingEngine import SCALE, PricingParams
from molpha.src.SchnorrScheme import sign_multi
from molpha.src.SignatureVerifier import AggregateSignature
from molpha.src.StateStore import InMemoryStore

ADMIN_ADDRESS = "0x00000000000000000000000000000000000000Aa"
OWNER_ADDRESS = "0x00000000000000000000000000000000000000Bb"
CONSUMER = "0x2B5AD5c4795c026514f8317c7a215E218DcCD6cF"

SECRET_A, SECRET_B, SECRET_C = 101, 202, 303
A = SignerPoint.from_secret(SECRET_A)
B = SignerPoint.from_secret(SECRET_B)
C = SignerPoint.from_secret(SECRET_C)

PARAMS = PricingParams(
    base_price_per_second=1_000_000,
    frequency_coefficient=10_000,
    signer_coefficient=10_000,
    reward_percentage_bps=5_000,
)
# 24 updates/day * 2 signers, reward share over 2 signers per hourly update.
PRICE_PER_SECOND = 48_000_000
REWARD_PER_UPDATE = 43_200_000_000

FEED = "btc/usd"


def sign_answer(answer: Answer, secrets: list[int], indices: list[int]) -> AggregateSignature:
    signature, commitment = sign_multi(secrets, answer.signing_message(FEED))
    return AggregateSignature.create(signature, commitment, indices)


@pytest.fixture
def payout() -> Mock:
    return Mock(spec=PayoutUtility)


@pytest.fixture
def network(payout: Mock) -> OracleNetwork:
    auth = RoleAuthorizer({ADMIN: [ADMIN_ADDRESS], REGISTRY_OWNER: [OWNER_ADDRESS]})
    network = OracleNetwork(auth, payout=payout, pricing_params=PARAMS)
    for point in (A, B, C):
        network.add_signer(ADMIN_ADDRESS, point)
    network.create_feed(ADMIN_ADDRESS, FEED, frequency=3600, min_signatures=2)
    return network


class TestAdministration:
    """Test role-gated administration."""

    def test_signers_registered(self, network: OracleNetwork) -> None:
        """Signers should occupy slots 1..3."""
        assert [i for i, _ in network.registry.signers()] == [1, 2, 3]

    def test_non_admin_rejected(self, network: OracleNetwork) -> None:
        """Non-admins should not manage signers, pricing or feeds."""
        with pytest.raises(Unauthorized):
            network.add_signer(OWNER_ADDRESS, SignerPoint.from_secret(404))
        with pytest.raises(Unauthorized):
            network.remove_signer(OWNER_ADDRESS, A.address)
        with pytest.raises(Unauthorized):
            network.update_pricing(OWNER_ADDRESS, PARAMS)
        with pytest.raises(Unauthorized):
            network.create_feed(OWNER_ADDRESS, "eth/usd", 3600, 1)
        assert network.registry.count == 3

    def test_duplicate_feed(self, network: OracleNetwork) -> None:
        """Creating an existing feed should raise DuplicateFeed."""
        with pytest.raises(DuplicateFeed):
            network.create_feed(ADMIN_ADDRESS, FEED, 3600, 2)

    def test_invalid_feed(self, network: OracleNetwork) -> None:
        """Invalid feed configuration should raise and create nothing."""
        with pytest.raises(InvalidFeedConfig):
            network.create_feed(ADMIN_ADDRESS, "eth/usd", 10, 2)
        assert "eth/usd" not in network.feeds

    def test_feed_reward(self, network: OracleNetwork) -> None:
        """New feeds should get the engine's reward per update."""
        assert network.ledgers[FEED].reward_per_update == REWARD_PER_UPDATE

    def test_update_pricing_refreshes_rewards(self, network: OracleNetwork) -> None:
        """Pricing changes should apply to existing ledgers."""
        network.update_pricing(ADMIN_ADDRESS, PricingParams(1_000_000, 10_000, 10_000, 0))
        assert network.ledgers[FEED].reward_per_update == 0
        assert network.quote(FEED) == PRICE_PER_SECOND

    def test_update_feed_config(self, network: OracleNetwork) -> None:
        """Reconfiguring should reprice the feed and refresh its ledger reward."""
        network.ledgers[FEED].reward_per_update = 1
        feed = network.update_feed_config(ADMIN_ADDRESS, FEED, frequency=7200, min_signatures=3)
        assert (feed.frequency, feed.min_signatures) == (7200, 3)
        # 12 updates/day * 3 signers under linear pricing.
        assert network.quote(FEED) == 36_000_000
        assert network.ledgers[FEED].reward_per_update == network.pricing.reward_per_update(feed)
        assert network.ledgers[FEED].reward_per_update == REWARD_PER_UPDATE

    def test_update_feed_config_rejected(self, network: OracleNetwork) -> None:
        """Invalid, unauthorized or unknown-feed reconfiguration should change nothing."""
        with pytest.raises(InvalidFeedConfig):
            network.update_feed_config(ADMIN_ADDRESS, FEED, 3600, 0)
        with pytest.raises(InvalidFeedConfig):
            network.update_feed_config(ADMIN_ADDRESS, FEED, 30, 2)
        with pytest.raises(Unauthorized):
            network.update_feed_config(OWNER_ADDRESS, FEED, 7200, 1)
        with pytest.raises(UnknownFeed):
            network.update_feed_config(ADMIN_ADDRESS, "eth/usd", 7200, 1)
        feed = network.feeds[FEED]
        assert (feed.frequency, feed.min_signatures) == (3600, 2)


class TestPublish:
    """Test verified publication."""

    def test_publish_records_participation(self, network: OracleNetwork) -> None:
        """A valid update should commit the answer and append its bitmap."""
        answer = Answer.from_int(64_000, 1000)
        index = network.publish(FEED, answer, sign_answer(answer, [SECRET_A, SECRET_B], [1, 2]), now=1000)
        assert index == 0
        assert network.latest_answer(FEED) == answer
        assert network.ledgers[FEED].bitmap(0) == 0b011

    def test_unknown_feed(self, network: OracleNetwork) -> None:
        """Publishing to a missing feed should raise UnknownFeed."""
        answer = Answer.from_int(1, 1000)
        with pytest.raises(UnknownFeed):
            network.publish("eth/usd", answer, sign_answer(answer, [SECRET_A], [1]), now=1000)

    def test_below_threshold(self, network: OracleNetwork) -> None:
        """Too few signers should raise and leave state unchanged."""
        answer = Answer.from_int(1, 1000)
        with pytest.raises(NotEnoughSignatures):
            network.publish(FEED, answer, sign_answer(answer, [SECRET_A], [1]), now=1000)
        assert network.latest_answer(FEED) is None
        assert len(network.ledgers[FEED]) == 0

    def test_signature_for_other_answer(self, network: OracleNetwork) -> None:
        """A signature over a different value should be rejected."""
        signed = Answer.from_int(1, 1000)
        published = Answer.from_int(2, 1000)
        with pytest.raises(InvalidSignature):
            network.publish(FEED, published, sign_answer(signed, [SECRET_A, SECRET_B], [1, 2]), now=1000)
        assert len(network.ledgers[FEED]) == 0

    def test_malformed_commitment(self, network: OracleNetwork) -> None:
        """A commitment that is not an address should raise InvalidSignature."""
        answer = Answer.from_int(1, 1000)
        sig = sign_answer(answer, [SECRET_A, SECRET_B], [1, 2])
        with pytest.raises(InvalidSignature, match="not an address"):
            network.publish(FEED, answer, AggregateSignature(sig.signature, "0xZZZZ", (1, 2)), now=1000)
        assert network.latest_answer(FEED) is None

    def test_new_threshold_enforced(self, network: OracleNetwork) -> None:
        """A raised threshold should apply to the next publish."""
        network.update_feed_config(ADMIN_ADDRESS, FEED, frequency=3600, min_signatures=3)
        answer = Answer.from_int(64_000, 1000)
        with pytest.raises(NotEnoughSignatures):
            network.publish(FEED, answer, sign_answer(answer, [SECRET_A, SECRET_B], [1, 2]), now=1000)
        assert len(network.ledgers[FEED]) == 0

        signature = sign_answer(answer, [SECRET_A, SECRET_B, SECRET_C], [1, 2, 3])
        assert network.publish(FEED, answer, signature, now=1000) == 0
        assert network.ledgers[FEED].bitmap(0) == 0b111

    def test_lowered_threshold(self, network: OracleNetwork) -> None:
        """A lowered threshold should accept a single signer."""
        network.update_feed_config(ADMIN_ADDRESS, FEED, frequency=3600, min_signatures=1)
        answer = Answer.from_int(64_000, 1000)
        network.publish(FEED, answer, sign_answer(answer, [SECRET_C], [3]), now=1000)
        assert network.latest_answer(FEED) == answer

    def test_answer_rules(self, network: OracleNetwork) -> None:
        """Zero, stale and future answers should be rejected before verification."""
        zero = Answer.from_int(0, 1000)
        with pytest.raises(ZeroValue):
            network.publish(FEED, zero, sign_answer(zero, [SECRET_A, SECRET_B], [1, 2]), now=1000)

        future = Answer.from_int(1, 2000)
        with pytest.raises(FutureTimestamp):
            network.publish(FEED, future, sign_answer(future, [SECRET_A, SECRET_B], [1, 2]), now=1000)

        first = Answer.from_int(1, 1000)
        network.publish(FEED, first, sign_answer(first, [SECRET_A, SECRET_B], [1, 2]), now=1000)
        stale = Answer.from_int(2, 1000)
        with pytest.raises(PastTimestamp):
            network.publish(FEED, stale, sign_answer(stale, [SECRET_A, SECRET_B], [1, 2]), now=1100)
        assert len(network.ledgers[FEED]) == 1


class TestRewardScenario:
    """Register, publish, remove, then distribute and claim."""

    def test_participation_survives_compaction(self, network: OracleNetwork, payout: Mock) -> None:
        """Participation is attributed by the slot held at distribution time."""
        answer = Answer.from_int(64_000, 1000)
        network.publish(FEED, answer, sign_answer(answer, [SECRET_A, SECRET_B], [1, 2]), now=1000)

        # Removing A moves C (the last signer) into slot 1; B keeps slot 2.
        network.remove_signer(ADMIN_ADDRESS, A.address)
        assert network.registry.index_of(C.address) == 1
        assert network.registry.index_of(B.address) == 2

        result = network.distribute(FEED, B.address, 10)
        assert (result.processed, result.remaining, result.matches) == (1, 0, 1)

        # C now holds slot 1 and is credited with A's recorded bit.
        assert network.distribute(FEED, C.address, 10).matches == 1
        with pytest.raises(UnknownSigner):
            network.distribute(FEED, A.address, 10)

        assert network.claim(B.address, FEED) == REWARD_PER_UPDATE // SCALE
        payout.pay_out.assert_called_once_with(B.address, REWARD_PER_UPDATE // SCALE)

    def test_claim_for_requires_registry_owner(self, network: OracleNetwork, payout: Mock) -> None:
        """claim_for should be gated by the registry owner role."""
        answer = Answer.from_int(1, 1000)
        network.publish(FEED, answer, sign_answer(answer, [SECRET_A, SECRET_B], [1, 2]), now=1000)
        network.distribute(FEED, A.address, 10)

        with pytest.raises(Unauthorized):
            network.claim_for(ADMIN_ADDRESS, FEED, A.address)
        assert network.claim_for(OWNER_ADDRESS, FEED, A.address) == REWARD_PER_UPDATE // SCALE
        payout.pay_out.assert_called_once_with(A.address, REWARD_PER_UPDATE // SCALE)

    def test_claim_without_payout(self) -> None:
        """Claims without a payout capability should raise PayoutFailed."""
        auth = RoleAuthorizer({ADMIN: [ADMIN_ADDRESS]})
        network = OracleNetwork(auth, pricing_params=PARAMS)
        network.add_signer(ADMIN_ADDRESS, A)
        network.create_feed(ADMIN_ADDRESS, FEED, 3600, 1)
        with pytest.raises(PayoutFailed, match="no payout capability"):
            network.claim(A.address, FEED)


class TestSubscriptions:
    """Test consumer subscriptions."""

    def test_quote(self, network: OracleNetwork) -> None:
        """quote should return the feed's price per second."""
        assert network.quote(FEED) == PRICE_PER_SECOND

    def test_subscribe_and_extend(self, network: OracleNetwork) -> None:
        """Subscriptions should be charged per second and extendable."""
        sub, cost = network.subscribe(CONSUMER, FEED, 86_400, now=0)
        assert cost == 48 * 86_400
        assert network.is_subscribed(CONSUMER, FEED, now=100)

        assert network.extend_subscription(CONSUMER, FEED, 86_400, now=100) == 48 * 86_400
        assert sub.due_time == 2 * 86_400
        assert network.top_up(CONSUMER, FEED, 10) == 2 * 48 * 86_400 + 10
        assert not network.is_subscribed(CONSUMER, FEED, now=2 * 86_400)

    def test_resubscribe_extends(self, network: OracleNetwork) -> None:
        """Subscribing again should extend the existing subscription."""
        first, _ = network.subscribe(CONSUMER, FEED, 86_400, now=0)
        second, cost = network.subscribe(CONSUMER.lower(), FEED, 86_400, now=0)
        assert second is first
        assert cost == 48 * 86_400
        assert first.due_time == 2 * 86_400

    def test_minimum_duration(self, network: OracleNetwork) -> None:
        """Subscriptions under a day should raise."""
        with pytest.raises(MinimumSubscriptionTime):
            network.subscribe(CONSUMER, FEED, 3600, now=0)
        assert not network.is_subscribed(CONSUMER, FEED, now=0)

    def test_unknown_subscription(self, network: OracleNetwork) -> None:
        """Extending a missing subscription should raise UnknownSubscription."""
        with pytest.raises(UnknownSubscription):
            network.extend_subscription(CONSUMER, FEED, 86_400, now=0)
        with pytest.raises(UnknownFeed):
            network.top_up(CONSUMER, "eth/usd", 1)


class TestPersistence:
    """Test store-backed networks."""

    def test_reload(self, payout: Mock) -> None:
        """A network on the same store should see signers and ledger entries."""
        store = InMemoryStore()
        auth = RoleAuthorizer({ADMIN: [ADMIN_ADDRESS]})
        network = OracleNetwork(auth, payout=payout, store=store, pricing_params=PARAMS)
        network.add_signer(ADMIN_ADDRESS, A)
        network.add_signer(ADMIN_ADDRESS, B)
        network.create_feed(ADMIN_ADDRESS, FEED, 3600, 2)
        answer = Answer.from_int(1, 1000)
        network.publish(FEED, answer, sign_answer(answer, [SECRET_A, SECRET_B], [1, 2]), now=1000)
        network.distribute(FEED, A.address, 10)

        restored = OracleNetwork(auth, payout=payout, store=store, pricing_params=PARAMS)
        assert restored.registry.count == 2
        restored.create_feed(ADMIN_ADDRESS, FEED, 3600, 2)
        assert len(restored.ledgers[FEED]) == 1
        assert restored.ledgers[FEED].account(A.address).pending_amount == REWARD_PER_UPDATE
        assert restored.distribute(FEED, B.address, 10).matches == 1

    def test_registry_events(self) -> None:
        """Registry events should reach the network's callback."""
        events = []
        auth = RoleAuthorizer({ADMIN: [ADMIN_ADDRESS]})
        network = OracleNetwork(auth, pricing_params=PARAMS, on_registry_event=events.append)
        network.add_signer(ADMIN_ADDRESS, A)
        assert [(e.kind, e.index) for e in events] == [("added", 1)]
