"""Change reporting between the restored tree and the tree being saved.

The main phase writes a manifest (normalized path -> content hash) of each
directory group as it left it. The post phase compares the current
manifest against it and reports what the build added, removed or changed.

Manifests stay on the runner: main and post run on the same machine, and
a manifest of a registry index is far too large for the CI host's state
channel. A manifest whose digest does not match the restore record is
ignored rather than reported against.
"""

from __future__ import annotations

import logging
import os
import secrets
import zlib
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from ferrocache.core.hasher import canonical_json_bytes, sha256_hex

logger = logging.getLogger(__name__)

RENDER_LIMIT = 50


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


class Change(BaseModel):
    """One path that differs between two manifests."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: ChangeKind


def compute_changes(before: dict[str, str], after: dict[str, str]) -> list[Change]:
    """Paths added, removed or changed going from ``before`` to ``after``, sorted by path."""
    changes: list[Change] = []
    for path in sorted(before.keys() | after.keys()):
        if path not in before:
            changes.append(Change(path=path, kind=ChangeKind.ADDED))
        elif path not in after:
            changes.append(Change(path=path, kind=ChangeKind.REMOVED))
        elif before[path] != after[path]:
            changes.append(Change(path=path, kind=ChangeKind.CHANGED))
    return changes


def count_changes(changes: list[Change]) -> dict[ChangeKind, int]:
    counts = {kind: 0 for kind in ChangeKind}
    for change in changes:
        counts[change.kind] += 1
    return counts


def render_changes(changes: list[Change], limit: int = RENDER_LIMIT) -> str:
    """One ``<kind>: <path>`` line per change, truncated after ``limit`` lines."""
    lines = [f"{c.kind.value}: {c.path}" for c in changes[:limit]]
    if len(changes) > limit:
        lines.append(f"... and {len(changes) - limit} more")
    return "\n".join(lines)


class _StoredManifest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    group_id: str
    digest: str
    entries: dict[str, str]


class ManifestStore:
    """Per-group manifests kept in a local directory between the two phases.

    Parameters
    ----------
    directory:
        Where manifests are written. Created on first save.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    def _path(self, group_id: str) -> Path:
        return self._dir / f"{sha256_hex(group_id.encode('utf-8'))[:32]}.manifest"

    def save(self, group_id: str, digest: str, entries: dict[str, str]) -> None:
        """Replace the group's manifest. ``OSError`` propagates."""
        payload = _StoredManifest(group_id=group_id, digest=digest, entries=entries)
        blob = zlib.compress(canonical_json_bytes(payload.model_dump()), 6)
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(group_id)
        staged = path.with_name(f"{path.name}.{secrets.token_hex(4)}.tmp")
        try:
            staged.write_bytes(blob)
            os.replace(staged, path)
        finally:
            staged.unlink(missing_ok=True)

    def discard(self, group_id: str) -> None:
        self._path(group_id).unlink(missing_ok=True)

    def load(self, group_id: str, digest: str) -> dict[str, str] | None:
        """The manifest recorded for ``digest``, or ``None`` if absent, damaged or outdated."""
        if not digest:
            return None
        try:
            blob = self._path(group_id).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Cannot read manifest for %s: %s", group_id, exc)
            return None
        try:
            stored = _StoredManifest.model_validate_json(zlib.decompress(blob))
        except (zlib.error, ValidationError, ValueError):
            logger.warning("Ignoring damaged manifest for %s", group_id)
            return None
        if stored.group_id != group_id or stored.digest != digest:
            logger.debug("Manifest for %s does not match digest %s", group_id, digest)
            return None
        return stored.entries
