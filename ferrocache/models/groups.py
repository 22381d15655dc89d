"""Cache group models — the fixed set of group kinds and their sources."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict


class GroupKind(str, Enum):
    """Closed enumeration of cacheable dependency groups."""

    REGISTRY_INDEX = "registry-index"
    PACKAGE_CACHE = "package-cache"
    VCS_DEPENDENCY_CACHE = "vcs-dependency-cache"
    BUILD_ARTIFACT_CACHE = "build-artifact-cache"

    @property
    def is_lockfile_keyed(self) -> bool:
        """Build artifacts are keyed on the lockfile, not on their own churn."""
        return self is GroupKind.BUILD_ARTIFACT_CACHE

    @property
    def prune_depth(self) -> int | None:
        """Depth below a source directory of the units dropped when unused.

        Downloaded crates are pruned file by file (``<registry>/<crate>``);
        a git database is only useful whole, so it is pruned per repository.
        ``None`` means the group is never pruned.
        """
        return _PRUNE_DEPTHS.get(self)


_PRUNE_DEPTHS = {
    GroupKind.PACKAGE_CACHE: 2,
    GroupKind.VCS_DEPENDENCY_CACHE: 1,
}


class RootTag(str, Enum):
    """Well-known roots that source directories are anchored at."""

    CARGO_HOME = "cargo-home"
    TARGET_DIR = "target-dir"
    WORKSPACE = "workspace"


class SourceDir(BaseModel):
    """A directory (or file) named relative to a well-known root.

    ``subpath`` is slash-separated and may be empty to mean the root itself.
    """

    model_config = ConfigDict(frozen=True)

    root: RootTag
    subpath: str = ""


class RecachePolicy(BaseModel):
    """Minimum age after which a restored entry is re-saved regardless of content.

    ``min_age`` of ``None`` disables time-based recaching: only a content
    change triggers a new save.
    """

    model_config = ConfigDict(frozen=True)

    min_age: timedelta | None = None

    @property
    def is_time_based(self) -> bool:
        return self.min_age is not None

    def is_stale(self, created_at: datetime | None, now: datetime | None = None) -> bool:
        """Whether an entry created at ``created_at`` is due for a refresh."""
        if self.min_age is None or created_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return now - created_at >= self.min_age


class CacheGroup(BaseModel):
    """One independently cached bundle of directories.

    Identity is ``kind`` x ``dependency_list``; two jobs with different
    dependency-list names never share entries.
    """

    model_config = ConfigDict(frozen=True)

    kind: GroupKind
    dependency_list: str
    sources: list[SourceDir]
    lockfiles: list[SourceDir] = []
    recache: RecachePolicy = RecachePolicy()

    @property
    def group_id(self) -> str:
        return f"{self.kind.value}/{self.dependency_list}"
