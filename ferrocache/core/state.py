"""Inter-phase state: carrying restore provenance from main to post.

The main phase and the post phase are separate processes that share
nothing but a key/value channel provided by the CI host. The restore
snapshot crosses that boundary as one compact blob::

    b"FCST" | schema version (1 byte) | zlib(canonical JSON)

Decoding fails closed. A missing, corrupt or incompatible blob yields an
empty snapshot, which the save engine reads as "every group missed".
Individual records that do not validate are dropped the same way.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import secrets
import zlib
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from ferrocache.core.hasher import canonical_json_bytes
from ferrocache.models.records import (
    SNAPSHOT_SCHEMA_VERSION,
    RestoreRecord,
    RestoreSnapshot,
)

logger = logging.getLogger(__name__)

STATE_MAGIC = b"FCST"
_HEADER_LEN = len(STATE_MAGIC) + 1


class StateDecodeError(ValueError):
    """Raised when a state blob is corrupt or from an incompatible schema."""


class StateChannelError(RuntimeError):
    """Raised when the inter-phase channel itself cannot be used."""


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def encode_snapshot(snapshot: RestoreSnapshot) -> bytes:
    """Serialize a snapshot into the compact wire form."""
    payload = canonical_json_bytes(snapshot.model_dump(mode="json"))
    return STATE_MAGIC + bytes([SNAPSHOT_SCHEMA_VERSION]) + zlib.compress(payload, 9)


def decode_snapshot(blob: bytes) -> RestoreSnapshot:
    """Parse the wire form. Unknown fields are ignored; bad records are dropped.

    Raises
    ------
    StateDecodeError
        If the header, compression or JSON envelope is invalid, or the
        schema version is not one this code understands.
    """
    if len(blob) < _HEADER_LEN or not blob.startswith(STATE_MAGIC):
        raise StateDecodeError("State blob has no valid header")
    version = blob[len(STATE_MAGIC)]
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise StateDecodeError(
            f"State schema version {version} is not supported "
            f"(expected {SNAPSHOT_SCHEMA_VERSION})"
        )
    try:
        data: Any = json.loads(zlib.decompress(blob[_HEADER_LEN:]))
    except (zlib.error, ValueError) as exc:
        raise StateDecodeError(f"State payload is corrupt: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("records", {}), dict):
        raise StateDecodeError("State payload has an unexpected shape")

    records: list[RestoreRecord] = []
    for group_id, raw in data.get("records", {}).items():
        try:
            record = RestoreRecord.model_validate(raw)
        except ValidationError:
            logger.warning("Dropping unreadable restore record for %s", group_id)
            continue
        if record.group_id != group_id:
            logger.warning("Dropping mislabelled restore record for %s", group_id)
            continue
        records.append(record)
    return RestoreSnapshot.from_records(records)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@runtime_checkable
class StateChannel(Protocol):
    """Key/value store scoped to one job run, written in main, read in post."""

    def set(self, name: str, value: bytes) -> None: ...

    def get(self, name: str) -> bytes | None: ...


class InMemoryStateChannel:
    """Channel held in a dict; both phases must share the instance."""

    def __init__(self) -> None:
        self._values: dict[str, bytes] = {}

    def set(self, name: str, value: bytes) -> None:
        self._values[name] = bytes(value)

    def get(self, name: str) -> bytes | None:
        return self._values.get(name)


class FileStateChannel:
    """Channel backed by one file per name, for runs outside a CI host."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    def _path(self, name: str) -> Path:
        return self._dir / f"{name}.state"

    def set(self, name: str, value: bytes) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        staged = self._path(name).with_suffix(".tmp")
        staged.write_bytes(value)
        os.replace(staged, self._path(name))

    def get(self, name: str) -> bytes | None:
        try:
            return self._path(name).read_bytes()
        except FileNotFoundError:
            return None


class GitHubStateChannel:
    """GitHub Actions action state.

    ``set`` appends a ``name<<delimiter`` block to the file named by
    ``GITHUB_STATE``; the runner exposes it to the post step as the
    ``STATE_<name>`` environment variable. Values travel as base64 text.
    """

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    @classmethod
    def is_available(cls, environ: dict[str, str] | None = None) -> bool:
        env = os.environ if environ is None else environ
        return bool(env.get("GITHUB_STATE")) or env.get("GITHUB_ACTIONS") == "true"

    def set(self, name: str, value: bytes) -> None:
        state_file = self._environ.get("GITHUB_STATE")
        if not state_file:
            raise StateChannelError("GITHUB_STATE is not set; cannot save action state")
        encoded = base64.b64encode(value).decode("ascii")
        delimiter = f"ferrocache_{secrets.token_hex(8)}"
        with open(state_file, "a", encoding="utf-8") as fh:
            fh.write(f"{name}<<{delimiter}\n{encoded}\n{delimiter}\n")

    def get(self, name: str) -> bytes | None:
        raw = self._environ.get(f"STATE_{name}")
        if not raw:
            return None
        try:
            return base64.b64decode(raw.strip(), validate=True)
        except ValueError:
            logger.warning("Action state %s is not valid base64", name)
            return None


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


def export_snapshot(channel: StateChannel, name: str, snapshot: RestoreSnapshot) -> None:
    """Write the main phase's snapshot to the channel."""
    blob = encode_snapshot(snapshot)
    channel.set(name, blob)
    logger.debug("Exported restore state %s (%d records, %d bytes)",
                 name, len(snapshot.records), len(blob))


def import_snapshot(channel: StateChannel, name: str) -> RestoreSnapshot:
    """Read the main phase's snapshot, or an empty one if it cannot be used."""
    try:
        blob = channel.get(name)
    except (OSError, StateChannelError) as exc:
        logger.warning("Cannot read restore state %s (%s); assuming every group missed",
                       name, exc)
        return RestoreSnapshot.empty()
    if blob is None:
        logger.warning("No restore state %s found; assuming every group missed", name)
        return RestoreSnapshot.empty()
    try:
        return decode_snapshot(blob)
    except StateDecodeError as exc:
        logger.warning("Discarding restore state %s (%s); assuming every group missed",
                       name, exc)
        return RestoreSnapshot.empty()
