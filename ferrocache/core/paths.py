"""Path normalization between platform-native paths and portable patterns.

A normalized path is a slash-separated glob pattern anchored at a root tag::

    cargo-home/registry/index/github.com-1ecc6299db9ec823/config.json

The same (root tag, suffix) pair normalizes identically on every host,
whatever the user name, drive letter or separator convention. Glob
metacharacters inside path components are escaped as single-character
classes (``*`` -> ``[*]``) so the pattern matches only the literal path.
"""

from __future__ import annotations

import os
import re
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath
from typing import TYPE_CHECKING

from ferrocache.models.groups import RootTag, SourceDir

if TYPE_CHECKING:
    from ferrocache.config import CacheSettings

_GLOB_META = re.compile(r"([*?\[\]])")
_GLOB_ESCAPED = re.compile(r"\[([*?\[\]])\]")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")


class PathOutsideRootError(ValueError):
    """Raised when a path does not live under the root it is normalized against."""


def escape_component(component: str) -> str:
    """Escape glob metacharacters in a single path component."""
    return _GLOB_META.sub(r"[\1]", component)


def unescape_component(component: str) -> str:
    """Inverse of ``escape_component``."""
    return _GLOB_ESCAPED.sub(r"\1", component)


def _as_pure(path: str | PurePath) -> PurePath:
    """Interpret ``path`` with the flavour it was written in, not the host's."""
    if isinstance(path, PurePath):
        return path
    if _WINDOWS_DRIVE.match(path) or path.startswith("\\\\") or "\\" in path:
        return PureWindowsPath(path)
    return PurePosixPath(path)


def _relative_parts(path: PurePath) -> list[str]:
    """Path components with any drive, UNC share or root stripped."""
    parts = list(path.parts)
    if parts and path.anchor and parts[0] == path.anchor:
        parts = parts[1:]
    return [p for p in parts if p not in ("", ".")]


def _fold(parts: list[str], case_insensitive: bool) -> list[str]:
    return [p.casefold() for p in parts] if case_insensitive else parts


def normalize(path: str | PurePath, root_tag: RootTag, root: str | PurePath) -> str:
    """Convert an absolute native path into a ``<root-tag>/...`` pattern.

    Raises
    ------
    PathOutsideRootError
        If ``path`` is not ``root`` or a descendant of it.
    """
    pure_path = _as_pure(path)
    pure_root = _as_pure(root)
    path_parts = _relative_parts(pure_path)
    root_parts = _relative_parts(pure_root)
    if ".." in path_parts:
        raise PathOutsideRootError(f"Refusing to normalize non-canonical path {path!s}")

    case_insensitive = isinstance(pure_path, PureWindowsPath) or isinstance(
        pure_root, PureWindowsPath
    )
    prefix = _fold(path_parts[: len(root_parts)], case_insensitive)
    if prefix != _fold(root_parts, case_insensitive):
        raise PathOutsideRootError(f"{path!s} is not under {root_tag.value} root {root!s}")

    suffix = [escape_component(p) for p in path_parts[len(root_parts):]]
    return "/".join([root_tag.value, *suffix])


def split_pattern(pattern: str) -> tuple[RootTag, list[str]]:
    """Split a normalized pattern into its root tag and unescaped components."""
    head, _, rest = pattern.partition("/")
    try:
        tag = RootTag(head)
    except ValueError as exc:
        raise PathOutsideRootError(f"Unknown root tag in pattern {pattern!r}") from exc
    components = [unescape_component(p) for p in rest.split("/") if p]
    if any(c in ("..", ".") for c in components):
        raise PathOutsideRootError(f"Pattern {pattern!r} escapes its root")
    return tag, components


class PathRoots:
    """Maps root tags to this host's concrete directories."""

    def __init__(self, cargo_home: Path, target_dir: Path, workspace_root: Path) -> None:
        workspace = Path(os.path.abspath(workspace_root))
        target = Path(target_dir)
        if not target.is_absolute():
            target = workspace / target
        self._roots: dict[RootTag, Path] = {
            RootTag.CARGO_HOME: Path(os.path.abspath(cargo_home)),
            RootTag.TARGET_DIR: Path(os.path.abspath(target)),
            RootTag.WORKSPACE: workspace,
        }

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> PathRoots:
        return cls(settings.cargo_home, settings.target_dir, settings.workspace_root)

    def root(self, tag: RootTag) -> Path:
        return self._roots[tag]

    def resolve(self, source: SourceDir) -> Path:
        """Concrete path of a declared source directory on this host."""
        base = self._roots[source.root]
        parts = [p for p in source.subpath.split("/") if p]
        return base.joinpath(*parts) if parts else base

    def normalize(self, path: str | PurePath, tag: RootTag) -> str:
        return normalize(path, tag, self._roots[tag])

    def denormalize(self, pattern: str) -> Path:
        """Rebuild a concrete path for ``pattern`` under this host's root."""
        tag, components = split_pattern(pattern)
        base = self._roots[tag]
        return base.joinpath(*components) if components else base

    def source_pattern(self, source: SourceDir) -> str:
        """Normalized pattern of a declared source directory."""
        return self.normalize(self.resolve(source), source.root)
