"""SignerRegistry: bounded set of signer public keys with dense slot indices.

Each registered signer occupies a 1-based slot. Slot 0 is a permanently empty
sentinel so that an index of 0 can mean "not registered". Removal moves the
last occupied slot into the freed one, keeping indices exactly ``1..count``;
participation bitmaps rely on this to stay fixed width.

The published signer set is an immutable :class:`SignerSnapshot`. Every add or
remove builds a new snapshot and swaps the reference, so a verification that
already holds the previous snapshot keeps a consistent view.

.. code-block:: python

    >>> registry = SignerRegistry()
    >>> a = SignerPoint.from_secret(1)
    >>> registry.add_signer(a)
    1
    >>> registry.index_of(a.address)
    1
    >>> registry.snapshot()[1] == a
    True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from . import StateStore as state_store
from .CurvePoint import IDENTITY, ZERO_ADDRESS, SignerPoint, normalize_address
from .errors import DuplicateSigner, InvalidKey, RegistryFull, UnknownSigner

logger = logging.getLogger(__name__)

MAX_SIGNERS = 256

SNAPSHOT_KEY = "registry/snapshot/{version}"
HEAD_KEY = "registry/head"


@dataclass(frozen=True)
class SignerSnapshot:
    """Immutable view of the signer set.

    :ivar version: Monotonic version, incremented on every add/remove.
    :ivar points: Signer points by slot; ``points[0]`` is the empty sentinel.
    :ivar addresses: Signer addresses by slot; ``addresses[0]`` is the zero address.
    """

    version: int
    points: tuple[SignerPoint, ...]
    addresses: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.points)

    def __getitem__(self, index: int) -> SignerPoint:
        return self.points[index]

    @property
    def count(self) -> int:
        """Number of registered signers (excluding the sentinel slot)."""
        return len(self.points) - 1


GENESIS_SNAPSHOT = SignerSnapshot(version=0, points=(IDENTITY,), addresses=(ZERO_ADDRESS,))


@dataclass(frozen=True)
class RegistryEvent:
    """Emitted after a successful registry mutation.

    :ivar kind: ``"added"`` or ``"removed"``.
    :ivar address: Address of the added/removed signer.
    :ivar index: Slot assigned (added) or freed (removed).
    :ivar moved_address: For removals, the signer relocated into ``index``.
    """

    kind: str
    address: str
    index: int
    moved_address: str | None = None


class SignerRegistry:
    """Append/remove-with-compaction store of up to MAX_SIGNERS signer keys.

    :ivar max_signers: Capacity of the registry.
    """

    def __init__(
        self,
        store: state_store.StateStore | None = None,
        on_event: Callable[[RegistryEvent], None] | None = None,
        max_signers: int = MAX_SIGNERS,
    ) -> None:
        """Initialize an empty registry at genesis.

        :param store: Optional persistence capability for snapshot blobs.
        :param on_event: Optional callback receiving add/remove events.
        :param max_signers: Capacity (default 256, the bitmap width).
        :raises ValueError: If max_signers is outside ``[1, 256]``.
        """
        if not 1 <= max_signers <= MAX_SIGNERS:
            raise ValueError(f"max_signers must be in [1, {MAX_SIGNERS}]")
        self.max_signers = max_signers
        self._store = store
        self._on_event = on_event
        self._snapshot = GENESIS_SNAPSHOT
        self._index: dict[str, int] = {}

    @classmethod
    def load(
        cls,
        store: state_store.StateStore,
        on_event: Callable[[RegistryEvent], None] | None = None,
        max_signers: int = MAX_SIGNERS,
    ) -> SignerRegistry:
        """Restore the registry from the latest persisted snapshot.

        :param store: Store previously written by a registry.
        :returns: Registry at the persisted head version, or at genesis.
        """
        registry = cls(store=store, on_event=on_event, max_signers=max_signers)
        head = store.load(HEAD_KEY)
        if head is None:
            return registry

        version = state_store.decode(head)
        blob = store.load(SNAPSHOT_KEY.format(version=version))
        if blob is None:
            raise ValueError(f"Registry head points to missing snapshot {version}")

        points = tuple(SignerPoint.from_bytes(raw) if raw else IDENTITY
                       for raw in state_store.decode(blob)["points"])
        addresses = (ZERO_ADDRESS,) + tuple(p.address for p in points[1:])
        registry._snapshot = SignerSnapshot(version, points, addresses)
        registry._index = {addr: i for i, addr in enumerate(addresses) if i > 0}
        logger.info(f"Loaded signer registry v{version} with {len(points) - 1} signers")
        return registry

    @property
    def count(self) -> int:
        return self._snapshot.count

    def snapshot(self) -> SignerSnapshot:
        """Return the current immutable signer snapshot."""
        return self._snapshot

    def index_of(self, address: str) -> int:
        """Return the 1-based slot of address, or 0 if not registered."""
        return self._index.get(normalize_address(address), 0)

    def signers(self) -> list[tuple[int, str]]:
        """List ``(index, address)`` pairs in slot order."""
        return list(enumerate(self._snapshot.addresses))[1:]

    def add_signer(self, point: SignerPoint) -> int:
        """Register a signer public key in the next free slot.

        :param point: Public key of the signer.
        :returns: Assigned 1-based slot index.
        :raises InvalidKey: If point is the identity or not on the curve.
        :raises DuplicateSigner: If the derived address is already registered.
        :raises RegistryFull: If the registry is at capacity.
        """
        if point.is_identity or not point.is_on_curve():
            raise InvalidKey("signer key must be a non-identity curve point")

        address = point.address
        if address in self._index:
            raise DuplicateSigner(f"{address} already holds slot {self._index[address]}")

        current = self._snapshot
        if current.count >= self.max_signers:
            raise RegistryFull(f"registry holds the maximum of {self.max_signers} signers")

        index = len(current.points)
        index_map = dict(self._index)
        index_map[address] = index
        self._publish(current.points + (point,), current.addresses + (address,), index_map)

        logger.info(f"Signer {address} added at index {index}")
        self._emit(RegistryEvent(kind="added", address=address, index=index))
        return index

    def remove_signer(self, address: str) -> int:
        """Remove a signer, moving the last occupied slot into its place.

        :param address: Address of the signer to remove.
        :returns: The slot index that was freed (now held by the moved signer,
            unless the removed signer was last).
        :raises UnknownSigner: If the address is not registered.
        """
        address = normalize_address(address)
        index = self._index.get(address, 0)
        if index == 0:
            raise UnknownSigner(f"{address} is not registered")

        current = self._snapshot
        points = list(current.points)
        addresses = list(current.addresses)
        index_map = dict(self._index)
        last = len(points) - 1

        moved_address = None
        if index != last:
            points[index] = points[last]
            addresses[index] = addresses[last]
            moved_address = addresses[last]
            index_map[moved_address] = index
        points.pop()
        addresses.pop()
        del index_map[address]

        self._publish(tuple(points), tuple(addresses), index_map)

        if moved_address:
            logger.info(f"Signer {address} removed from index {index}; {moved_address} moved from {last}")
        else:
            logger.info(f"Signer {address} removed from index {index}")
        self._emit(RegistryEvent(
            kind="removed", address=address, index=index, moved_address=moved_address,
        ))
        return index

    def _publish(
        self,
        points: tuple[SignerPoint, ...],
        addresses: tuple[str, ...],
        index_map: dict[str, int],
    ) -> None:
        """Persist (if configured) and atomically swap in a new snapshot."""
        version = self._snapshot.version + 1
        if self._store is not None:
            blob = {
                "version": version,
                "points": [b"" if p.is_identity else p.to_bytes() for p in points],
            }
            self._store.store(SNAPSHOT_KEY.format(version=version), state_store.encode(blob))
            self._store.store(HEAD_KEY, state_store.encode(version))

        self._snapshot = SignerSnapshot(version, points, addresses)
        self._index = index_map

    def _emit(self, event: RegistryEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)
