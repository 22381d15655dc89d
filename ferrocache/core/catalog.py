"""Group catalog — the static registry of cache groups.

Each group kind maps to a fixed set of source directories under the
well-known roots. ``GroupCatalog.groups()`` turns the enabled kinds into
concrete ``CacheGroup`` instances for the current job, dropping groups
whose directories do not exist on disk.
"""

from __future__ import annotations

import logging

from ferrocache.config import CacheSettings
from ferrocache.core.paths import PathRoots
from ferrocache.models.groups import (
    CacheGroup,
    GroupKind,
    RecachePolicy,
    RootTag,
    SourceDir,
)

logger = logging.getLogger(__name__)


GROUP_SOURCES: dict[GroupKind, list[SourceDir]] = {
    GroupKind.REGISTRY_INDEX: [SourceDir(root=RootTag.CARGO_HOME, subpath="registry/index")],
    GroupKind.PACKAGE_CACHE: [SourceDir(root=RootTag.CARGO_HOME, subpath="registry/cache")],
    GroupKind.VCS_DEPENDENCY_CACHE: [SourceDir(root=RootTag.CARGO_HOME, subpath="git/db")],
    GroupKind.BUILD_ARTIFACT_CACHE: [SourceDir(root=RootTag.TARGET_DIR, subpath="")],
}

GROUP_LOCKFILES: dict[GroupKind, list[SourceDir]] = {
    GroupKind.BUILD_ARTIFACT_CACHE: [SourceDir(root=RootTag.WORKSPACE, subpath="Cargo.lock")],
}


class GroupCatalog:
    """Builds the groups relevant to one job.

    Parameters
    ----------
    roots:
        This host's concrete root directories.
    dependency_list:
        Label partitioning jobs that must not share cached artifacts.
    enabled:
        Group kinds to consider, in order.
    policies:
        Recache policy per kind; kinds not listed get content-only recaching.
    """

    def __init__(
        self,
        roots: PathRoots,
        dependency_list: str,
        enabled: list[GroupKind],
        policies: dict[GroupKind, RecachePolicy] | None = None,
    ) -> None:
        self._roots = roots
        self._dependency_list = dependency_list
        self._enabled = list(enabled)
        self._policies = policies or {}

    @classmethod
    def from_settings(cls, settings: CacheSettings, roots: PathRoots) -> GroupCatalog:
        kinds = settings.enabled_kinds()
        return cls(
            roots,
            settings.dependency_list,
            kinds,
            {kind: settings.recache_policy(kind) for kind in kinds},
        )

    def define(self, kind: GroupKind) -> CacheGroup:
        """The group for ``kind`` with its full declared source list."""
        return CacheGroup(
            kind=kind,
            dependency_list=self._dependency_list,
            sources=list(GROUP_SOURCES[kind]),
            lockfiles=list(GROUP_LOCKFILES.get(kind, [])),
            recache=self._policies.get(kind, RecachePolicy()),
        )

    def groups(self) -> list[CacheGroup]:
        """Enabled groups that have at least one existing source directory.

        Missing directories are dropped from the group; a group left with
        none is skipped for this run.
        """
        result: list[CacheGroup] = []
        for kind in self._enabled:
            group = self.define(kind)
            present = [s for s in group.sources if self._roots.resolve(s).is_dir()]
            if not present:
                logger.info(
                    "Skipping %s: no source directory exists (%s)",
                    group.group_id,
                    ", ".join(str(self._roots.resolve(s)) for s in group.sources),
                )
                continue
            if len(present) != len(group.sources):
                group = group.model_copy(update={"sources": present})
            result.append(group)
        return result
