"""ParticipationLedger: append-only participation bitmaps and signer reward accrual.

Every accepted update appends one bitmap. Bit ``i`` (least significant bit
first) is set iff signer slot ``i + 1`` contributed to that update's signature.

Rewards are accrued per signer in bounded batches:

    1. ``distribute(signer, max_batch)`` reads the signer's current registry slot
    2. It scans at most ``max_batch`` bitmaps from the signer's cursor, counting
       those with the slot's bit set
    3. Pending reward grows by ``matches * reward_per_update`` and the cursor
       advances by the number of bitmaps scanned

Callers repeat ``distribute`` until it reports nothing remaining. The slot is
read at call time, not at recording time, so a compaction between recording and
distribution credits whichever signer now holds the recorded slot.

Pending rewards are kept scaled by ``SCALE``. ``claim`` pays out the whole token
units and keeps the fractional remainder pending.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import quote

from . import StateStore as state_store
from .CurvePoint import normalize_address
from .errors import (
    EmptyBitmap,
    InvalidBatchSize,
    InvalidIndex,
    NoRewardsToClaim,
    NothingToDistribute,
    UnknownSigner,
)
from .PayoutUtility import PayoutUtility
from .PricingEngine import SCALE
from .SignerRegistry import MAX_SIGNERS, SignerRegistry

logger = logging.getLogger(__name__)

BITMAP_KEY = "ledger/{feed}/bitmap/{index}"
LENGTH_KEY = "ledger/{feed}/length"
ACCOUNT_KEY = "ledger/{feed}/account/{address}"


def bitmap_from_indices(indices: Iterable[int]) -> int:
    """Build a participation bitmap from 1-based signer slot indices.

    :raises InvalidIndex: If an index is outside ``[1, 256]``.
    """
    bitmap = 0
    for index in indices:
        if not 1 <= index <= MAX_SIGNERS:
            raise InvalidIndex(f"signer index {index} out of range [1, {MAX_SIGNERS}]")
        bitmap |= 1 << (index - 1)
    return bitmap


@dataclass
class RewardAccount:
    """Reward state of one signer on one feed.

    :ivar signer_address: Signer checksum address.
    :ivar pending_amount: Accrued, unclaimed reward scaled by SCALE.
    :ivar last_processed_index: Number of ledger entries already distributed.
    """

    signer_address: str
    pending_amount: int = 0
    last_processed_index: int = 0

    def to_blob(self) -> bytes:
        return state_store.encode({
            "pending": self.pending_amount,
            "cursor": self.last_processed_index,
        })

    @classmethod
    def from_blob(cls, signer_address: str, blob: bytes) -> RewardAccount:
        data = state_store.decode(blob)
        return cls(signer_address, data["pending"], data["cursor"])


@dataclass(frozen=True)
class DistributionResult:
    """Outcome of one distribution batch.

    :ivar processed: Bitmaps scanned in this batch.
    :ivar remaining: Bitmaps still unprocessed for the signer.
    :ivar matches: Scanned bitmaps that had the signer's bit set.
    :ivar credited: Scaled reward added to pending.
    """

    processed: int
    remaining: int
    matches: int
    credited: int


class ParticipationLedger:
    """Per-feed participation bitmaps and reward accounts.

    :ivar feed_id: Feed this ledger belongs to.
    :ivar registry: Registry used to resolve a signer's current slot.
    :ivar reward_per_update: Scaled reward per matching bitmap.
    """

    def __init__(
        self,
        feed_id: str,
        registry: SignerRegistry,
        reward_per_update: int,
        store: state_store.StateStore | None = None,
    ) -> None:
        """Initialize an empty ledger.

        :param feed_id: Feed identifier.
        :param registry: Signer registry.
        :param reward_per_update: Scaled reward per participation (>= 0).
        :param store: Optional persistence capability.
        :raises ValueError: If reward_per_update is negative.
        """
        if reward_per_update < 0:
            raise ValueError("reward_per_update must not be negative")
        self.feed_id = feed_id
        self.registry = registry
        self.reward_per_update = reward_per_update
        self._store = store
        self._feed_key = quote(feed_id, safe="")
        self._bitmaps: list[int] = []
        self._accounts: dict[str, RewardAccount] = {}

    @classmethod
    def load(
        cls,
        feed_id: str,
        registry: SignerRegistry,
        reward_per_update: int,
        store: state_store.StateStore,
    ) -> ParticipationLedger:
        """Restore a ledger's bitmaps from a store. Accounts load on first use."""
        ledger = cls(feed_id, registry, reward_per_update, store)
        blob = store.load(LENGTH_KEY.format(feed=ledger._feed_key))
        length = state_store.decode(blob) if blob is not None else 0
        for index in range(length):
            entry = store.load(BITMAP_KEY.format(feed=ledger._feed_key, index=index))
            if entry is None:
                raise ValueError(f"{feed_id}: ledger entry {index} is missing")
            ledger._bitmaps.append(state_store.decode(entry))
        logger.info(f"Loaded ledger for {feed_id} with {length} entries")
        return ledger

    def __len__(self) -> int:
        return len(self._bitmaps)

    def bitmap(self, index: int) -> int:
        """Return the bitmap recorded at a ledger position."""
        return self._bitmaps[index]

    def account(self, address: str) -> RewardAccount:
        """Return a copy of the signer's reward account (zeroed if never touched)."""
        current = self._account(normalize_address(address))
        return RewardAccount(
            current.signer_address, current.pending_amount, current.last_processed_index
        )

    def _account(self, address: str) -> RewardAccount:
        if address in self._accounts:
            return self._accounts[address]
        account = RewardAccount(address)
        if self._store is not None:
            blob = self._store.load(self._account_key(address))
            if blob is not None:
                account = RewardAccount.from_blob(address, blob)
        self._accounts[address] = account
        return account

    def _account_key(self, address: str) -> str:
        return ACCOUNT_KEY.format(feed=self._feed_key, address=address)

    def _save_account(self, account: RewardAccount) -> None:
        if self._store is not None:
            self._store.store(self._account_key(account.signer_address), account.to_blob())
        self._accounts[account.signer_address] = account

    def record_participation(self, bitmap: int) -> int:
        """Append a participation bitmap.

        :param bitmap: Non-zero 256-bit participation bitmap.
        :returns: Ledger position of the new entry.
        :raises EmptyBitmap: If bitmap is zero.
        :raises InvalidIndex: If bitmap is negative or wider than 256 bits.
        """
        if bitmap == 0:
            raise EmptyBitmap("participation bitmap must have at least one signer")
        if bitmap < 0 or bitmap >> MAX_SIGNERS:
            raise InvalidIndex(f"participation bitmap must fit in {MAX_SIGNERS} bits")

        index = len(self._bitmaps)
        if self._store is not None:
            self._store.store(
                BITMAP_KEY.format(feed=self._feed_key, index=index), state_store.encode(bitmap)
            )
            self._store.store(
                LENGTH_KEY.format(feed=self._feed_key), state_store.encode(index + 1)
            )
        self._bitmaps.append(bitmap)
        logger.debug(f"{self.feed_id}: recorded participation {bitmap:#x} at {index}")
        return index

    def distribute(self, address: str, max_batch: int) -> DistributionResult:
        """Accrue rewards for up to ``max_batch`` unprocessed ledger entries.

        :param address: Signer address.
        :param max_batch: Maximum number of entries to scan (> 0).
        :returns: DistributionResult with processed and remaining counts.
        :raises InvalidBatchSize: If max_batch is not positive.
        :raises UnknownSigner: If the signer holds no registry slot.
        :raises NothingToDistribute: If the signer's cursor is at the ledger end.
        """
        if max_batch <= 0:
            raise InvalidBatchSize("max_batch must be positive")
        address = normalize_address(address)
        slot = self.registry.index_of(address)
        if slot == 0:
            raise UnknownSigner(f"{address} is not registered")

        current = self._account(address)
        cursor = current.last_processed_index
        unprocessed = len(self._bitmaps) - cursor
        if unprocessed <= 0:
            raise NothingToDistribute(f"{address} has no unprocessed entries on {self.feed_id}")

        processed = min(unprocessed, max_batch)
        mask = 1 << (slot - 1)
        matches = sum(1 for bitmap in self._bitmaps[cursor:cursor + processed] if bitmap & mask)
        credited = matches * self.reward_per_update

        self._save_account(RewardAccount(
            signer_address=address,
            pending_amount=current.pending_amount + credited,
            last_processed_index=cursor + processed,
        ))

        remaining = unprocessed - processed
        logger.debug(
            f"{self.feed_id}: distributed {processed} entries to {address} (slot {slot}), "
            f"{matches} matches, {remaining} remaining"
        )
        return DistributionResult(processed, remaining, matches, credited)

    def claim(self, address: str, payout: PayoutUtility) -> int:
        """Pay out the signer's pending reward in whole token units.

        The reduced account is persisted before the payout is requested. If
        the payout fails the previous account is written back and the error
        propagates, so pending only stays reduced for a payout that went out.

        :param address: Signer address.
        :param payout: Payout capability.
        :returns: Amount paid out.
        :raises NoRewardsToClaim: If less than one whole unit is pending.
        :raises PayoutFailed: If the payout capability failed.
        """
        address = normalize_address(address)
        current = self._account(address)
        amount = current.pending_amount // SCALE
        if amount == 0:
            raise NoRewardsToClaim(f"{address} has no rewards to claim on {self.feed_id}")

        self._save_account(RewardAccount(
            signer_address=address,
            pending_amount=current.pending_amount - amount * SCALE,
            last_processed_index=current.last_processed_index,
        ))
        try:
            payout.pay_out(address, amount)
        except Exception:
            logger.warning(f"{self.feed_id}: payout of {amount} to {address} failed, restoring pending")
            self._save_account(current)
            raise

        logger.info(f"{self.feed_id}: {address} claimed {amount}")
        return amount
