"""PricingEngine: fixed-point subscription pricing and per-update signer rewards.

All quantities are integers scaled by ``SCALE = 10**6`` and every division
truncates toward zero, so any host binding reproduces the same numbers bit for
bit.

Price per second:

    updatesPerDay   = ONE_DAY // frequency
    frequencyFactor = updatesPerDay ** (frequencyCoefficient / 10000)
    signersFactor   = signerThreshold ** (signerCoefficient / 10000)
    pricePerSecond  = basePrice * frequencyFactor * signersFactor / SCALE**2

Powers use ``x**a = exp(a * ln(x))`` with low-order approximations:

- ``ln(x)``: ``x = 2**k * m`` with ``m`` in ``[1, 2)``, then a 5-term Taylor
  series of ``ln(m)`` around 1. The series overestimates: the error grows with
  ``m`` and reaches about ``+0.09`` (absolute) as ``m`` approaches 2.
- ``exp(x)``: 3-term Taylor series ``1 + x + x**2/2 + x**3/6``. It
  underestimates for positive ``x``: relative error under 0.01% for
  ``x <= 0.1``, about 0.2% at ``x = 0.5`` and 1.9% at ``x = 1``.

Pricing is therefore APPROXIMATE. With coefficients up to 2000 bps the combined
relative error of each factor stays within a few percent, and the price can dip
by up to that bound where ``ln`` crosses a power of two.

.. code-block:: python

    >>> engine = PricingEngine(PricingParams(1_000_000, 10_000, 10_000, 5_000))
    >>> engine.price_per_second(frequency=3600, signer_threshold=3)
    72000000
    >>> PricingEngine.price_for_span(72_000_000, seconds=10)
    720
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Protocol

from .errors import InvalidFeedConfig, InvalidPricingParams

logger = logging.getLogger(__name__)

SCALE = 10**6
ONE_DAY = 86_400
BPS_DENOMINATOR = 10_000

# ln(2) * SCALE, truncated.
LN2_SCALED = 693_147

DEFAULT_BASE_PRICE_PER_SECOND = 100
DEFAULT_FREQUENCY_COEFFICIENT = 1_000
DEFAULT_SIGNER_COEFFICIENT = 2_000
DEFAULT_REWARD_PERCENTAGE_BPS = 5_000


def _tdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def ln_scaled(x: int) -> int:
    """Approximate ``ln(x) * SCALE`` for an unscaled integer ``x``.

    :param x: Non-negative integer. ``ln(0)`` and ``ln(1)`` are 0 by convention.
    :returns: Scaled natural logarithm.
    :raises ValueError: If x is negative.
    """
    if x < 0:
        raise ValueError("ln is undefined for negative values")
    if x <= 1:
        return 0

    k = 0
    halved = x
    while halved >= 2:
        halved //= 2
        k += 1

    m = (x * SCALE) >> k  # in [SCALE, 2*SCALE)
    u = m - SCALE

    u2 = u * u // SCALE
    u3 = u2 * u // SCALE
    u4 = u3 * u // SCALE
    u5 = u4 * u // SCALE
    ln_m = u - u2 // 2 + u3 // 3 - u4 // 4 + u5 // 5

    return k * LN2_SCALED + ln_m


def exp_scaled(x: int) -> int:
    """Approximate ``exp(x / SCALE) * SCALE`` with a 3-term Taylor series.

    :param x: Scaled exponent; intended for small magnitudes.
    :returns: Scaled result.
    """
    return (
        SCALE
        + x
        + _tdiv(x * x, 2 * SCALE)
        + _tdiv(x * x * x, 6 * SCALE * SCALE)
    )


def pow_scaled(base: int, coefficient_bps: int) -> int:
    """Approximate ``base ** (coefficient_bps / 10000) * SCALE``.

    An exponent of exactly 1 returns the exact scaled base.

    :param base: Unscaled non-negative integer base.
    :param coefficient_bps: Exponent in basis points.
    :returns: Scaled power.
    """
    if coefficient_bps == BPS_DENOMINATOR:
        return base * SCALE
    exponent = _tdiv(coefficient_bps * ln_scaled(base), BPS_DENOMINATOR)
    return exp_scaled(exponent)


@dataclass(frozen=True)
class PricingParams:
    """Protocol-wide pricing configuration.

    :ivar base_price_per_second: Base price per second, scaled by SCALE.
    :ivar frequency_coefficient: Exponent applied to updates per day, in bps.
    :ivar signer_coefficient: Exponent applied to the signer threshold, in bps.
    :ivar reward_percentage_bps: Share of revenue paid to signers, in bps.
    """

    base_price_per_second: int
    frequency_coefficient: int
    signer_coefficient: int
    reward_percentage_bps: int

    def __post_init__(self) -> None:
        if self.base_price_per_second <= 0:
            raise InvalidPricingParams("base_price_per_second must be positive")
        if self.frequency_coefficient <= 0:
            raise InvalidPricingParams("frequency_coefficient must be positive")
        if self.signer_coefficient <= 0:
            raise InvalidPricingParams("signer_coefficient must be positive")
        if not 0 <= self.reward_percentage_bps <= BPS_DENOMINATOR:
            raise InvalidPricingParams(
                f"reward_percentage_bps must be in [0, {BPS_DENOMINATOR}]"
            )

    @classmethod
    def from_env(cls) -> PricingParams:
        """Build params from environment variables, falling back to defaults.

        Reads BASE_PRICE_PER_SECOND, FREQUENCY_COEFFICIENT, SIGNERS_COEFFICIENT
        and REWARD_PERCENTAGE_BPS.
        """
        return cls(
            base_price_per_second=int(
                os.environ.get("BASE_PRICE_PER_SECOND") or DEFAULT_BASE_PRICE_PER_SECOND
            ),
            frequency_coefficient=int(
                os.environ.get("FREQUENCY_COEFFICIENT") or DEFAULT_FREQUENCY_COEFFICIENT
            ),
            signer_coefficient=int(
                os.environ.get("SIGNERS_COEFFICIENT") or DEFAULT_SIGNER_COEFFICIENT
            ),
            reward_percentage_bps=int(
                os.environ.get("REWARD_PERCENTAGE_BPS") or DEFAULT_REWARD_PERCENTAGE_BPS
            ),
        )


class FeedParams(Protocol):
    """What the pricing engine needs to know about a feed."""

    frequency: int
    min_signatures: int


class PricingEngine:
    """Computes subscription prices and signer rewards.

    :ivar params: Active pricing parameters.
    """

    def __init__(self, params: PricingParams) -> None:
        self.params = params

    def price_per_second(self, frequency: int, signer_threshold: int) -> int:
        """Scaled subscription price per second for a feed configuration.

        :param frequency: Seconds between updates (> 0).
        :param signer_threshold: Required signatures per update (> 0).
        :returns: Price per second scaled by SCALE.
        :raises InvalidFeedConfig: If frequency or threshold is not positive.
        """
        if frequency <= 0:
            raise InvalidFeedConfig("frequency must be positive")
        if signer_threshold <= 0:
            raise InvalidFeedConfig("signer threshold must be positive")

        updates_per_day = ONE_DAY // frequency
        frequency_factor = pow_scaled(updates_per_day, self.params.frequency_coefficient)
        signers_factor = pow_scaled(signer_threshold, self.params.signer_coefficient)

        price = (
            self.params.base_price_per_second * frequency_factor * signers_factor
            // (SCALE * SCALE)
        )
        logger.debug(
            f"price_per_second(frequency={frequency}, threshold={signer_threshold}) = {price} "
            f"(frequency_factor={frequency_factor}, signers_factor={signers_factor})"
        )
        return price

    @staticmethod
    def price_for_span(price_per_second: int, seconds: int) -> int:
        """Unscaled price of a subscription span.

        :param price_per_second: Scaled price per second.
        :param seconds: Span length in seconds.
        """
        return price_per_second * seconds // SCALE

    def reward_per_update(self, feed: FeedParams) -> int:
        """Scaled reward credited to each contributing signer per accepted update.

        Amortizes the reward share of one update interval's revenue across the
        feed's required signers.

        :param feed: Feed with ``frequency`` and ``min_signatures``.
        :returns: Reward scaled by SCALE.
        """
        price = self.price_per_second(feed.frequency, feed.min_signatures)
        return (
            price * feed.frequency * self.params.reward_percentage_bps
            // (feed.min_signatures * BPS_DENOMINATOR)
        )
