"""Archive packing and extraction for cache groups.

Archives are gzip-compressed tarballs whose member names are normalized
patterns (``cargo-home/registry/cache/...``), so an archive written on
one host can be unpacked under another host's roots. File modification
times are preserved because the build tool relies on them for freshness.

Extraction writes only inside the group's declared source directories.
It overwrites files it carries and never removes anything else.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import tarfile
from pathlib import Path

from ferrocache.core.fingerprint import iter_files
from ferrocache.core.paths import PathOutsideRootError, PathRoots, split_pattern
from ferrocache.models.groups import CacheGroup

logger = logging.getLogger(__name__)


def pack_group(group: CacheGroup, roots: PathRoots) -> bytes:
    """Serialize every file under the group's source directories."""
    entries: list[tuple[str, Path]] = []
    for source in group.sources:
        directory = roots.resolve(source)
        if not directory.is_dir():
            continue
        for path in iter_files(directory):
            entries.append((roots.normalize(path, source.root), path))
    entries.sort(key=lambda item: item[0])

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for pattern, path in entries:
            info = tar.gettarinfo(str(path), arcname=pattern)
            info.uid = info.gid = 0
            info.uname = info.gname = ""
            if info.isreg():
                with open(path, "rb") as fh:
                    tar.addfile(info, fh)
            elif info.issym():
                tar.addfile(info)
    logger.debug("Packed %s: %d entries", group.group_id, len(entries))
    return buffer.getvalue()


def _allowed_sources(group: CacheGroup, roots: PathRoots) -> dict[str, Path]:
    return {roots.source_pattern(s): roots.resolve(s) for s in group.sources}


def _owning_source(pattern: str, sources: dict[str, Path]) -> Path | None:
    for prefix, directory in sources.items():
        if pattern == prefix or pattern.startswith(prefix + "/"):
            return directory
    return None


def _resolves_inside(path: Path, directory: Path) -> bool:
    real = os.path.realpath(path)
    base = os.path.realpath(directory)
    return real == base or real.startswith(base + os.sep)


def _replace_existing(target: Path) -> None:
    if target.is_symlink() or target.is_file():
        target.unlink()
    elif target.is_dir():
        shutil.rmtree(target)


def unpack_group(data: bytes, group: CacheGroup, roots: PathRoots) -> int:
    """Materialize an archive onto this host's roots.

    Returns the number of members written. Members outside the group's
    declared directories, or that would escape their root, are skipped.
    ``OSError`` from the filesystem propagates to the caller.
    """
    sources = _allowed_sources(group, roots)
    written = 0
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        for member in tar:
            if not (member.isreg() or member.issym()):
                continue
            try:
                split_pattern(member.name)
            except PathOutsideRootError:
                logger.warning("Skipping archive member with unsafe path %r", member.name)
                continue
            directory = _owning_source(member.name, sources)
            if directory is None:
                logger.warning(
                    "Skipping archive member %r outside %s", member.name, group.group_id
                )
                continue

            target = roots.denormalize(member.name)
            # A symlink restored earlier must not redirect later writes.
            if not _resolves_inside(target.parent, directory):
                logger.warning("Skipping archive member %r behind a symlink", member.name)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            if member.issym():
                if os.path.lexists(target):
                    _replace_existing(target)
                os.symlink(member.linkname, target)
            else:
                source = tar.extractfile(member)
                if source is None:
                    continue
                if target.is_symlink() or target.is_dir():
                    _replace_existing(target)
                with source, open(target, "wb") as out:
                    shutil.copyfileobj(source, out)
                os.chmod(target, member.mode & 0o777)
                os.utime(target, (member.mtime, member.mtime))
            written += 1
    logger.debug("Unpacked %s: %d entries", group.group_id, written)
    return written
