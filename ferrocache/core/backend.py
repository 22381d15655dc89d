"""Remote cache backend interface and a local directory implementation.

The backend is an opaque key/value blob store with three operations:
``find`` (prefix search, newest wins), ``fetch`` and ``create``. Entries
are never overwritten or deleted. ``create`` on an existing key raises
``ArchiveExistsError``, which callers treat as success.

``LocalDirectoryBackend`` layout::

    {base}/entries/{sha256(key)[0:2]}/{sha256(key)}.json   # published metadata
    {base}/entries/{sha256(key)[0:2]}/{sha256(key)}-{nonce}.dat

An entry becomes visible when its metadata file is hard-linked into
place. ``os.link`` fails if the name exists, so concurrent writers of the
same key race on a single atomic operation and exactly one wins.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ferrocache.core.hasher import sha256_hex

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Base class for cache backend failures."""


class TransientBackendError(BackendError):
    """A retryable failure: timeout, rate limit, unavailable service."""


class ArchiveExistsError(BackendError):
    """Raised by ``create`` when the key is already taken."""


class ArchiveIntegrityError(BackendError):
    """Raised when a fetched archive does not match its recorded digest."""


class ArchiveRef(BaseModel):
    """Handle to a stored archive, as returned by ``find``."""

    model_config = ConfigDict(frozen=True)

    key: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    size_bytes: int = 0
    content_address: str = ""  # "sha256:<hex>"
    location: str = ""


@runtime_checkable
class CacheBackend(Protocol):
    """The three operations the engine needs from a cache store."""

    def find(self, key_or_prefix: str) -> ArchiveRef | None: ...

    def fetch(self, ref: ArchiveRef) -> bytes: ...

    def create(self, key: str, data: bytes) -> ArchiveRef: ...


class LocalDirectoryBackend:
    """Create-only, prefix-searchable archive store on a local filesystem.

    Parameters
    ----------
    base_path:
        Root directory for the store. Created on the first ``create``; an
        unusable path surfaces as ``TransientBackendError`` from the
        operations, never from the constructor.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._entries = self._base / "entries"

    def _meta_path(self, key: str) -> Path:
        digest = sha256_hex(key.encode("utf-8"))
        return self._entries / digest[:2] / f"{digest}.json"

    def _load_ref(self, meta_path: Path) -> ArchiveRef | None:
        try:
            return ArchiveRef.model_validate_json(meta_path.read_bytes())
        except (OSError, ValidationError, ValueError):
            logger.warning("Ignoring unreadable cache entry metadata %s", meta_path)
            return None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find(self, key_or_prefix: str) -> ArchiveRef | None:
        """Most recently created entry whose key starts with ``key_or_prefix``."""
        exact = self._meta_path(key_or_prefix)
        try:
            best: ArchiveRef | None = self._load_ref(exact) if exact.exists() else None
            candidates = list(self._entries.glob("*/*.json"))
        except OSError as exc:
            raise TransientBackendError(f"Cannot list cache entries: {exc}") from exc

        for meta_path in candidates:
            if meta_path == exact:
                continue
            ref = self._load_ref(meta_path)
            if ref is None or not ref.key.startswith(key_or_prefix):
                continue
            if best is None or (ref.created_at, ref.key) > (best.created_at, best.key):
                best = ref
        return best

    def fetch(self, ref: ArchiveRef) -> bytes:
        """Read an archive's bytes and verify them against the stored digest."""
        path = self._entries / ref.location
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise BackendError(f"Archive for {ref.key!r} is missing") from exc
        except OSError as exc:
            raise TransientBackendError(f"Cannot read archive {ref.key!r}: {exc}") from exc

        expected = ref.content_address.removeprefix("sha256:")
        if expected and sha256_hex(data) != expected:
            raise ArchiveIntegrityError(f"Archive for {ref.key!r} failed integrity check")
        return data

    # ------------------------------------------------------------------
    # Create (never overwrites)
    # ------------------------------------------------------------------

    def create(self, key: str, data: bytes) -> ArchiveRef:
        """Store ``data`` under ``key``; raise ``ArchiveExistsError`` if taken."""
        meta_path = self._meta_path(key)
        try:
            taken = meta_path.exists()
            if not taken:
                meta_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TransientBackendError(f"Cache store {self._base} is unusable: {exc}") from exc
        if taken:
            raise ArchiveExistsError(f"Cache entry already exists: {key!r}")

        nonce = secrets.token_hex(8)
        data_path = meta_path.with_name(f"{meta_path.stem}-{nonce}.dat")
        staged_meta = meta_path.with_name(f"{meta_path.stem}-{nonce}.json.tmp")

        ref = ArchiveRef(
            key=key,
            size_bytes=len(data),
            content_address=f"sha256:{sha256_hex(data)}",
            location=f"{meta_path.parent.name}/{data_path.name}",
        )
        try:
            data_path.write_bytes(data)
            staged_meta.write_text(ref.model_dump_json(), encoding="utf-8")
            os.link(staged_meta, meta_path)
        except FileExistsError as exc:
            data_path.unlink(missing_ok=True)
            raise ArchiveExistsError(f"Cache entry already exists: {key!r}") from exc
        except OSError as exc:
            data_path.unlink(missing_ok=True)
            raise TransientBackendError(f"Cannot create cache entry {key!r}: {exc}") from exc
        finally:
            staged_meta.unlink(missing_ok=True)

        logger.debug("Created cache entry %s (%d bytes)", key, len(data))
        return ref

    def keys(self) -> list[str]:
        """All stored keys, oldest first."""
        refs = [self._load_ref(p) for p in self._entries.glob("*/*.json")]
        return [r.key for r in sorted((r for r in refs if r), key=lambda r: r.created_at)]
