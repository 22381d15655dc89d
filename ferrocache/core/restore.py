"""Restore engine — fetch the best cached entry for each group.

Per group:

1. fingerprint the local directories as they are now;
2. look up the exact digest key, then the fallback prefix (newest wins);
3. on a hit, unpack the archive onto disk and fingerprint again;
4. record the key tried, the hit kind and the observed digest;
5. keep a manifest of the recorded tree for change reporting, and for
   prunable groups push access times behind modification times so the
   post phase can tell which entries the build read.

The recorded digest is always computed from the files on disk after
restoration, never copied from the key, so a save decision can never be
based on content that did not actually arrive.

Backend and filesystem failures downgrade the group to a miss with a
warning; they never fail the job. Groups are independent and are
restored concurrently.
"""

from __future__ import annotations

import logging
import tarfile
from concurrent.futures import ThreadPoolExecutor

from ferrocache.core.access_times import revert_access_times, supports_atime
from ferrocache.core.archive import unpack_group
from ferrocache.core.backend import ArchiveRef, BackendError, CacheBackend
from ferrocache.core.delta import ManifestStore
from ferrocache.core.fingerprint import Fingerprint, Fingerprinter
from ferrocache.core.key_builder import CacheKeyBuilder
from ferrocache.core.paths import PathRoots
from ferrocache.core.retry import NO_RETRY, RetryPolicy, call_with_retry
from ferrocache.models.groups import CacheGroup
from ferrocache.models.records import HitKind, RestoreRecord, RestoreSnapshot

logger = logging.getLogger(__name__)


class RestoreEngine:
    """Restores cache groups from a backend.

    Parameters
    ----------
    backend:
        The cache store to read from.
    roots:
        This host's concrete root directories.
    fingerprinter:
        Digest strategy dispatcher.
    key_builder:
        Builds exact and prefix lookup keys.
    retry:
        Policy for transient backend errors on lookup and fetch.
    max_workers:
        Upper bound on groups restored at the same time.
    manifests:
        Where to keep per-group manifests for the post phase's change
        report. ``None`` disables change reporting.
    track_access:
        Revert access times of prunable groups after restore.
    """

    def __init__(
        self,
        backend: CacheBackend,
        roots: PathRoots,
        fingerprinter: Fingerprinter,
        key_builder: CacheKeyBuilder,
        *,
        retry: RetryPolicy = NO_RETRY,
        max_workers: int = 4,
        manifests: ManifestStore | None = None,
        track_access: bool = False,
    ) -> None:
        self._backend = backend
        self._roots = roots
        self._fingerprinter = fingerprinter
        self._keys = key_builder
        self._retry = retry
        self._max_workers = max_workers
        self._manifests = manifests
        self._track_access = track_access

    def restore(self, groups: list[CacheGroup]) -> RestoreSnapshot:
        """Restore every group and return one record per group."""
        if not groups:
            return RestoreSnapshot.empty()
        workers = max(1, min(self._max_workers, len(groups)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="restore") as pool:
            records = list(pool.map(self._restore_contained, groups))
        return RestoreSnapshot.from_records(records)

    def _restore_contained(self, group: CacheGroup) -> RestoreRecord:
        try:
            return self.restore_group(group)
        except Exception as exc:  # noqa: BLE001
            logger.error("Restoring %s failed unexpectedly, treating as miss: %s",
                         group.group_id, exc)
            return RestoreRecord.miss(group)

    # ------------------------------------------------------------------
    # Per-group restore
    # ------------------------------------------------------------------

    def _lookup(self, group: CacheGroup, digest: str) -> tuple[ArchiveRef | None, HitKind]:
        exact = self._keys.build_key(group, digest).render()
        ref = call_with_retry(
            lambda: self._backend.find(exact),
            policy=self._retry,
            operation=f"find {group.group_id}",
        )
        if ref is not None:
            return ref, HitKind.EXACT

        prefix = self._keys.build_prefix(group).render()
        ref = call_with_retry(
            lambda: self._backend.find(prefix),
            policy=self._retry,
            operation=f"find {group.group_id} (fallback)",
        )
        if ref is not None:
            return ref, HitKind.FALLBACK
        return None, HitKind.MISS

    def restore_group(self, group: CacheGroup) -> RestoreRecord:
        """Restore one group. Never raises for backend or filesystem errors."""
        record, observed = self._restore(group)
        self._keep_manifest(group, record, observed)
        return self._revert_access_times(group, record)

    def _restore(self, group: CacheGroup) -> tuple[RestoreRecord, Fingerprint | None]:
        """The group's record plus the fingerprint its digest came from."""
        try:
            before = self._fingerprinter.fingerprint(group)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot fingerprint %s before restore: %s", group.group_id, exc)
            return RestoreRecord.miss(group), None

        attempted = self._keys.build_key(group, before.digest).render()
        try:
            ref, hit = self._lookup(group, before.digest)
        except BackendError as exc:
            logger.warning("Cache lookup for %s failed, treating as miss: %s",
                           group.group_id, exc)
            return RestoreRecord.miss(group, before.digest, attempted), before

        if ref is None:
            logger.info("Cache miss for %s (%s)", group.group_id, attempted)
            return RestoreRecord.miss(group, before.digest, attempted), before

        try:
            data = call_with_retry(
                lambda: self._backend.fetch(ref),
                policy=self._retry,
                operation=f"fetch {ref.key}",
            )
            count = unpack_group(data, group, self._roots)
        except BackendError as exc:
            logger.warning("Cannot fetch %s for %s, treating as miss: %s",
                           ref.key, group.group_id, exc)
            return RestoreRecord.miss(group, before.digest, attempted), before
        except (OSError, EOFError, tarfile.TarError) as exc:
            logger.warning("Restoring %s from %s failed part-way: %s",
                           group.group_id, ref.key, exc)
            return RestoreRecord.miss(group, "", attempted), None

        after = self._safe_fingerprint(group)
        logger.info("Cache %s hit for %s: restored %d entries from %s",
                    hit.value, group.group_id, count, ref.key)
        record = RestoreRecord(
            group_id=group.group_id,
            kind=group.kind,
            attempted_key=attempted,
            matched_key=ref.key,
            hit=hit,
            digest=after.digest if after else "",
            entry_created_at=ref.created_at,
        )
        return record, after

    def _safe_fingerprint(self, group: CacheGroup) -> Fingerprint | None:
        try:
            return self._fingerprinter.fingerprint(group)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot fingerprint %s after restore: %s", group.group_id, exc)
            return None

    def _keep_manifest(
        self, group: CacheGroup, record: RestoreRecord, observed: Fingerprint | None
    ) -> None:
        if self._manifests is None:
            return
        try:
            if observed is None or not record.digest or group.kind.is_lockfile_keyed:
                self._manifests.discard(group.group_id)
            else:
                self._manifests.save(group.group_id, record.digest, observed.entries)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot keep manifest for %s; no change report: %s",
                           group.group_id, exc)

    def _revert_access_times(self, group: CacheGroup, record: RestoreRecord) -> RestoreRecord:
        if not self._track_access or group.kind.prune_depth is None:
            return record
        try:
            directories = [self._roots.resolve(s) for s in group.sources]
            directories = [d for d in directories if d.is_dir()]
            if not directories or not all(supports_atime(d) for d in directories):
                logger.info("Access times are not tracked for %s; unused entries "
                            "will not be pruned", group.group_id)
                return record
            reverted = sum(revert_access_times(d) for d in directories)
        except OSError as exc:
            logger.warning("Cannot reset access times for %s: %s", group.group_id, exc)
            return record
        logger.debug("Reverted access times of %d files in %s", reverted, group.group_id)
        return record.model_copy(update={"access_times_reverted": True})
