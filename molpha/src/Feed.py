"""Feed: data feed configuration, answer history and consumer subscriptions.

A feed publishes one answer per accepted update. Answers must move strictly
forward in time and may not be dated in the future. The feed keeps the latest
answer plus a ring buffer of the most recent MAX_HISTORY answers.

Subscriptions are priced per second by the pricing engine and must cover at
least one day, both when opened and when extended.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field

from web3 import Web3

from .errors import (
    FutureTimestamp,
    InvalidFeedConfig,
    MinimumExtensionTime,
    MinimumSubscriptionTime,
    PastTimestamp,
    ZeroValue,
)
from .PricingEngine import PricingEngine
from .SignerRegistry import MAX_SIGNERS

logger = logging.getLogger(__name__)

MIN_FREQUENCY = 60
MAX_FREQUENCY = 86_400
MAX_HISTORY = 20
MIN_SUBSCRIPTION_SECONDS = 86_400
ANSWER_VALUE_BYTES = 32


@dataclass(frozen=True)
class Answer:
    """A single feed value.

    :ivar value: 32-byte encoded value.
    :ivar timestamp: Unix timestamp the value was observed at.
    """

    value: bytes
    timestamp: int

    def __post_init__(self) -> None:
        if len(self.value) != ANSWER_VALUE_BYTES:
            raise ValueError(f"answer value must be {ANSWER_VALUE_BYTES} bytes")

    @classmethod
    def from_int(cls, value: int, timestamp: int) -> Answer:
        """Encode an unsigned integer value as a big-endian 32-byte answer."""
        return cls(value=value.to_bytes(ANSWER_VALUE_BYTES, "big"), timestamp=timestamp)

    @property
    def is_zero(self) -> bool:
        return not any(self.value)

    def signing_message(self, feed_id: str) -> bytes:
        """Message the signer set signs for this answer on a given feed.

        ``keccak256(feed_id || value || uint64_be(timestamp))``
        """
        return bytes(Web3.keccak(
            feed_id.encode() + self.value + self.timestamp.to_bytes(8, "big")
        ))


def _check_config(frequency: int, min_signatures: int) -> None:
    if not MIN_FREQUENCY <= frequency <= MAX_FREQUENCY:
        raise InvalidFeedConfig(f"frequency must be in [{MIN_FREQUENCY}, {MAX_FREQUENCY}] seconds")
    if not 1 <= min_signatures <= MAX_SIGNERS:
        raise InvalidFeedConfig(f"min_signatures must be in [1, {MAX_SIGNERS}]")


@dataclass
class Feed:
    """Feed configuration and published answers.

    :ivar feed_id: Unique feed name (e.g., "btc/usd").
    :ivar frequency: Seconds between expected updates.
    :ivar min_signatures: Signer threshold per update.
    :ivar latest_answer: Most recently published answer.
    :ivar history: Ring buffer of the last MAX_HISTORY answers, oldest first.
    """

    feed_id: str
    frequency: int
    min_signatures: int
    latest_answer: Answer | None = None
    history: deque[Answer] = field(default_factory=lambda: deque(maxlen=MAX_HISTORY))

    def __post_init__(self) -> None:
        if not self.feed_id:
            raise InvalidFeedConfig("feed_id must not be empty")
        _check_config(self.frequency, self.min_signatures)

    def reconfigure(self, frequency: int, min_signatures: int) -> None:
        """Change update frequency and signer threshold, keeping published answers.

        :raises InvalidFeedConfig: If frequency or min_signatures is out of range.
        """
        _check_config(frequency, min_signatures)
        self.frequency = frequency
        self.min_signatures = min_signatures
        logger.info(f"{self.feed_id}: reconfigured (frequency={frequency}s, min_signatures={min_signatures})")

    def validate_answer(self, answer: Answer, now: int | None = None) -> None:
        """Check that an answer may be published without publishing it.

        :raises ZeroValue: If the value is all zero bytes.
        :raises PastTimestamp: If not newer than the latest answer.
        :raises FutureTimestamp: If dated after ``now``.
        """
        now = int(time.time()) if now is None else now
        if answer.is_zero:
            raise ZeroValue("answer value cannot be empty")
        if self.latest_answer is not None and answer.timestamp <= self.latest_answer.timestamp:
            raise PastTimestamp(
                f"answer timestamp {answer.timestamp} is not after "
                f"{self.latest_answer.timestamp}"
            )
        if answer.timestamp > now:
            raise FutureTimestamp(f"answer timestamp {answer.timestamp} is after {now}")

    def publish(self, answer: Answer, now: int | None = None) -> None:
        """Validate and commit an answer as the latest value."""
        self.validate_answer(answer, now)
        self.latest_answer = answer
        self.history.append(answer)
        logger.info(f"{self.feed_id}: published answer at {answer.timestamp}")


@dataclass
class Subscription:
    """A consumer's paid access window to a feed.

    :ivar owner: Subscriber address.
    :ivar feed_id: Subscribed feed.
    :ivar price_per_second: Scaled price locked in when the subscription opened.
    :ivar due_time: Unix timestamp the subscription expires at.
    :ivar balance: Total amount deposited.
    """

    owner: str
    feed_id: str
    price_per_second: int
    due_time: int
    balance: int = 0

    @classmethod
    def open(
        cls,
        owner: str,
        feed_id: str,
        price_per_second: int,
        duration: int,
        now: int | None = None,
    ) -> tuple[Subscription, int]:
        """Open a subscription.

        :param duration: Seconds of access purchased (at least one day).
        :returns: Tuple of (subscription, cost).
        :raises MinimumSubscriptionTime: If duration is under one day.
        """
        if duration < MIN_SUBSCRIPTION_SECONDS:
            raise MinimumSubscriptionTime("minimum subscription time is 1 day")
        now = int(time.time()) if now is None else now
        cost = PricingEngine.price_for_span(price_per_second, duration)
        subscription = cls(
            owner=owner,
            feed_id=feed_id,
            price_per_second=price_per_second,
            due_time=now + duration,
            balance=cost,
        )
        return subscription, cost

    def is_active(self, now: int | None = None) -> bool:
        now = int(time.time()) if now is None else now
        return now < self.due_time

    def extend(self, duration: int, now: int | None = None) -> int:
        """Extend the subscription from its due time, or from now if lapsed.

        :param duration: Additional seconds (at least one day).
        :returns: Cost of the extension.
        :raises MinimumExtensionTime: If duration is under one day.
        """
        if duration < MIN_SUBSCRIPTION_SECONDS:
            raise MinimumExtensionTime("minimum extension time is 1 day")
        now = int(time.time()) if now is None else now
        cost = PricingEngine.price_for_span(self.price_per_second, duration)
        self.due_time = max(self.due_time, now) + duration
        self.balance += cost
        return cost

    def top_up(self, amount: int) -> int:
        """Add funds to the subscription.

        :returns: New balance.
        :raises ValueError: If amount is not positive.
        """
        if amount <= 0:
            raise ValueError("top-up amount must be positive")
        self.balance += amount
        return self.balance
