"""Canonical hashing helpers for fingerprints, archives and state blobs.

Every digest that ends up inside a cache key or a persisted record is
produced here, so the serialization rules stay identical between the
process that restores a cache and the process that later saves it.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, BinaryIO

# Read size used when streaming file contents into a hash.
CHUNK_SIZE = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_stream(stream: BinaryIO) -> str:
    """Return the SHA-256 hex digest of a binary stream, read in chunks."""
    hasher = hashlib.sha256()
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
        hasher.update(chunk)
    return hasher.hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's contents."""
    with open(path, "rb") as fh:
        return sha256_stream(fh)


def update_framed(hasher: Any, *fields: str) -> None:
    """Feed length-prefixed UTF-8 fields into a running hash.

    Length prefixes keep ``("ab", "c")`` and ``("a", "bc")`` distinct.
    File names that are not valid UTF-8 arrive surrogate-escaped from
    ``os.walk`` and hash as their original bytes.
    """
    for field in fields:
        encoded = field.encode("utf-8", "surrogateescape")
        hasher.update(len(encoded).to_bytes(8, "big"))
        hasher.update(encoded)
