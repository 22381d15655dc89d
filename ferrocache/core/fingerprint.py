"""Content fingerprinting for cache groups.

Two strategies, one per kind of group:

- directory groups (registry index, package cache, VCS dependencies)
  hash every file under their source directories, ordered by normalized
  path, combining each path with its content digest;
- lockfile-keyed groups (build artifacts) hash the lockfile contents plus
  the toolchain identity, since the artifact directory churns on every
  build whether or not the cache hit.

File metadata (timestamps, permissions) never enters a digest. Digests
carry an algorithm-version prefix so that changing the algorithm makes
old keys miss instead of matching the wrong content.
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ferrocache.core.hasher import sha256_file, update_framed
from ferrocache.core.paths import PathRoots
from ferrocache.models.groups import CacheGroup, GroupKind

logger = logging.getLogger(__name__)

FINGERPRINT_VERSION = "f1"
DIGEST_HEX_LENGTH = 32

_MISSING_LOCKFILE = "<missing>"


class Fingerprint(BaseModel):
    """A group's digest plus a summary of what was hashed."""

    model_config = ConfigDict(frozen=True)

    digest: str
    file_count: int = 0
    total_bytes: int = 0
    # Normalized path -> content hash (or symlink target); directory groups only.
    entries: dict[str, str] = Field(default_factory=dict, repr=False)


def _finish(hasher: Any) -> str:
    return f"{FINGERPRINT_VERSION}-{hasher.hexdigest()[:DIGEST_HEX_LENGTH]}"


def iter_files(directory: Path) -> Iterator[Path]:
    """Every file and symlink under ``directory``; symlinks are not followed."""
    for dirpath, dirnames, filenames in os.walk(directory, followlinks=False):
        base = Path(dirpath)
        for name in filenames:
            yield base / name
        for name in dirnames:
            if (base / name).is_symlink():
                yield base / name


def fingerprint_directories(group: CacheGroup, roots: PathRoots) -> Fingerprint:
    """Hash the contents of every file under the group's source directories."""
    entries: list[tuple[str, Path]] = []
    for source in group.sources:
        directory = roots.resolve(source)
        if not directory.is_dir():
            continue
        for path in iter_files(directory):
            entries.append((roots.normalize(path, source.root), path))
    entries.sort(key=lambda item: item[0])

    hasher = hashlib.sha256()
    update_framed(hasher, FINGERPRINT_VERSION, group.kind.value)
    total_bytes = 0
    manifest: dict[str, str] = {}
    for pattern, path in entries:
        if path.is_symlink():
            target = os.readlink(path)
            update_framed(hasher, pattern, "symlink", target)
            manifest[pattern] = f"symlink:{target}"
            continue
        content = sha256_file(path)
        update_framed(hasher, pattern, "file", content)
        manifest[pattern] = content
        total_bytes += path.stat().st_size

    return Fingerprint(
        digest=_finish(hasher),
        file_count=len(entries),
        total_bytes=total_bytes,
        entries=manifest,
    )


def fingerprint_lockfiles(group: CacheGroup, roots: PathRoots, toolchain: str) -> Fingerprint:
    """Hash the group's lockfiles together with the toolchain identity.

    The file count and size still describe the artifact directories, so
    callers can tell an empty build output from a populated one.
    """
    hasher = hashlib.sha256()
    update_framed(hasher, FINGERPRINT_VERSION, group.kind.value, toolchain)
    for lockfile in group.lockfiles:
        path = roots.resolve(lockfile)
        pattern = roots.normalize(path, lockfile.root)
        if path.is_file():
            update_framed(hasher, pattern, sha256_file(path))
        else:
            update_framed(hasher, pattern, _MISSING_LOCKFILE)

    file_count = 0
    total_bytes = 0
    for source in group.sources:
        directory = roots.resolve(source)
        if not directory.is_dir():
            continue
        for path in iter_files(directory):
            file_count += 1
            if not path.is_symlink():
                total_bytes += path.stat().st_size

    return Fingerprint(digest=_finish(hasher), file_count=file_count, total_bytes=total_bytes)


class Fingerprinter:
    """Dispatches each group kind to its fingerprint strategy."""

    def __init__(self, roots: PathRoots, toolchain: str) -> None:
        self._roots = roots
        self._toolchain = toolchain
        self._strategies: dict[GroupKind, Callable[[CacheGroup], Fingerprint]] = {
            GroupKind.REGISTRY_INDEX: self._directories,
            GroupKind.PACKAGE_CACHE: self._directories,
            GroupKind.VCS_DEPENDENCY_CACHE: self._directories,
            GroupKind.BUILD_ARTIFACT_CACHE: self._lockfiles,
        }

    def _directories(self, group: CacheGroup) -> Fingerprint:
        return fingerprint_directories(group, self._roots)

    def _lockfiles(self, group: CacheGroup) -> Fingerprint:
        return fingerprint_lockfiles(group, self._roots, self._toolchain)

    def fingerprint(self, group: CacheGroup) -> Fingerprint:
        result = self._strategies[group.kind](group)
        logger.debug(
            "Fingerprinted %s: %s (%d files, %d bytes)",
            group.group_id,
            result.digest,
            result.file_count,
            result.total_bytes,
        )
        return result
