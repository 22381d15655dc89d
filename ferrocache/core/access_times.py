"""Access-time tracking, used to drop cached dependencies the build no longer reads.

After restore, every regular file's access time is set a fixed offset
behind its modification time. Reading the file moves the access time
forward again; on ``relatime`` mounts this happens precisely because the
access time is older than the modification time. At save time, a unit
(a downloaded crate, a git database) whose files all still carry the
full offset was not used by the build, and is deleted before the group
is fingerprinted and archived.

Filesystems mounted ``noatime`` never move access times forward.
``supports_atime`` detects that, and pruning is skipped for the run.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import time
from datetime import timedelta
from pathlib import Path

from ferrocache.core.fingerprint import iter_files
from ferrocache.core.paths import PathRoots
from ferrocache.models.groups import CacheGroup

logger = logging.getLogger(__name__)

# Far enough back to cover coarse access-time granularity (FAT keeps days).
ACCESS_TIME_OFFSET = timedelta(hours=36)
_OFFSET_NS = int(ACCESS_TIME_OFFSET.total_seconds()) * 1_000_000_000

_SETTLE_SECONDS = 0.005


def set_atime_behind_mtime(path: Path) -> None:
    st = os.stat(path, follow_symlinks=False)
    os.utime(path, ns=(st.st_mtime_ns - _OFFSET_NS, st.st_mtime_ns))


def was_accessed(path: Path) -> bool:
    """Whether ``path`` was read since its access time was reverted.

    Only a file whose access time is still the full offset behind counts
    as unread. Files the build created after restore were never reverted.
    """
    st = os.stat(path, follow_symlinks=False)
    return st.st_mtime_ns - st.st_atime_ns < _OFFSET_NS


def supports_atime(directory: Path) -> bool:
    """Whether reading a file under ``directory`` updates its access time.

    Writes, reverts and reads a throwaway file. ``OSError`` propagates.
    """
    sample = directory / f".ferrocache-atime-{secrets.token_hex(8)}"
    try:
        sample.write_bytes(b"\0")
        set_atime_behind_mtime(sample)
        if was_accessed(sample):
            logger.warning("Unable to set file timestamps under %s", directory)
            return False
        sample.read_bytes()
        time.sleep(_SETTLE_SECONDS)
        return was_accessed(sample)
    finally:
        sample.unlink(missing_ok=True)


def revert_access_times(directory: Path) -> int:
    """Push every regular file's access time behind its mtime. Returns the file count."""
    count = 0
    for path in iter_files(directory):
        if path.is_symlink():
            continue
        set_atime_behind_mtime(path)
        count += 1
    return count


def _unit_of(path: Path, directory: Path, depth: int) -> Path:
    parts = path.relative_to(directory).parts
    return directory.joinpath(*parts[:depth])


def find_unused_units(directory: Path, depth: int) -> list[Path]:
    """Units under ``directory`` none of whose regular files was read.

    A unit is the path made of the first ``depth`` components below
    ``directory``; shallower files are units on their own. Units holding
    only symlinks count as used.
    """
    used: dict[Path, bool] = {}
    for path in iter_files(directory):
        unit = _unit_of(path, directory, depth)
        if path.is_symlink():
            used[unit] = True
            continue
        used[unit] = used.get(unit, False) or was_accessed(path)
    return sorted(unit for unit, accessed in used.items() if not accessed)


def _remove_empty_dirs(directory: Path) -> None:
    for dirpath, _dirnames, _filenames in os.walk(directory, topdown=False):
        path = Path(dirpath)
        if path != directory and not any(path.iterdir()):
            path.rmdir()


def prune_unused(group: CacheGroup, roots: PathRoots) -> list[str]:
    """Delete the group's unused units. Returns their normalized patterns.

    Groups whose kind has no prune depth are left untouched. ``OSError``
    propagates.
    """
    depth = group.kind.prune_depth
    if depth is None:
        return []
    removed: list[str] = []
    for source in group.sources:
        directory = roots.resolve(source)
        if not directory.is_dir():
            continue
        for unit in find_unused_units(directory, depth):
            if unit.is_dir() and not unit.is_symlink():
                shutil.rmtree(unit)
            else:
                unit.unlink()
            removed.append(roots.normalize(unit, source.root))
        _remove_empty_dirs(directory)
    return sorted(removed)
