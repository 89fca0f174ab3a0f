"""StateStore: pluggable persistence capability for registry and ledger blobs.

The core only needs ``load(key) -> bytes | None`` and ``store(key, bytes)``.
Keys are slash separated (``registry/snapshot/3``, ``ledger/btc-usd/bitmap/17``).
Values are opaque bytes; callers encode them with CBOR via :func:`encode` and
:func:`decode`.

Implementations: InMemoryStore (tests, ephemeral nodes) and FilesystemStore
(one file per key, written atomically).
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import cbor2

logger = logging.getLogger(__name__)


def encode(value: Any) -> bytes:
    """Serialize a value to canonical CBOR."""
    return cbor2.dumps(value, canonical=True)


def decode(data: bytes) -> Any:
    """Deserialize CBOR bytes."""
    return cbor2.loads(data)


@runtime_checkable
class StateStore(Protocol):
    """Abstract key/value blob storage."""

    def load(self, key: str) -> bytes | None:
        """Return the blob stored under key, or None if absent."""
        ...

    def store(self, key: str, value: bytes) -> None:
        """Write a blob under key, replacing any previous value."""
        ...


class InMemoryStore:
    """Dict backed StateStore."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def load(self, key: str) -> bytes | None:
        return self._data.get(key)

    def store(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def keys(self) -> list[str]:
        """List stored keys in sorted order."""
        return sorted(self._data)


class FilesystemStore:
    """Local filesystem StateStore.

    Each key maps to a file below ``base_dir``. Writes go to a temporary file in
    the same directory followed by ``os.replace`` so readers never observe a
    partially written blob.

    :ivar base: Root directory of the store.
    """

    def __init__(self, base_dir: str | Path) -> None:
        """Initialize the store, creating the root directory if needed.

        :param base_dir: Directory holding the blobs.
        """
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.base.joinpath(*parts)

    def load(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def store(self, key: str, value: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Stored %d bytes at %s", len(value), key)
