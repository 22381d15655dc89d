"""Save engine — decide per group whether to upload, then upload safely.

Before deciding, units of prunable groups that the build never read are
deleted, and the tree is compared with the manifest the main phase kept.

Decision, in priority order:

1. an empty group is skipped;
2. an exact or fallback hit older than the group's recache policy is
   stale and is re-saved even if its content is unchanged;
3. content identical to what was restored (or found, on a miss) is
   skipped, except a lockfile-keyed group that was not restored from the
   exact entry for its lockfile;
4. if another runner already stored a fresh entry for this exact digest,
   the upload is skipped;
5. otherwise a new entry is created under a generation-stamped key.

``create`` reporting that the key exists is success: whoever won the race
stored equivalent content. Transient errors are retried with backoff,
then logged. Nothing here fails the job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from ferrocache.core.access_times import prune_unused
from ferrocache.core.archive import pack_group
from ferrocache.core.backend import ArchiveExistsError, BackendError, CacheBackend
from ferrocache.core.delta import (
    ChangeKind,
    ManifestStore,
    compute_changes,
    count_changes,
    render_changes,
)
from ferrocache.core.fingerprint import Fingerprint, Fingerprinter
from ferrocache.core.key_builder import CacheKeyBuilder, make_generation
from ferrocache.core.paths import PathRoots
from ferrocache.core.retry import NO_RETRY, RetryPolicy, call_with_retry
from ferrocache.models.groups import CacheGroup
from ferrocache.models.records import (
    HitKind,
    RestoreRecord,
    RestoreSnapshot,
    SaveAction,
    SaveOutcome,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SaveEngine:
    """Saves cache groups to a backend after the build.

    Parameters
    ----------
    backend:
        The cache store to write to.
    roots:
        This host's concrete root directories.
    fingerprinter:
        Digest strategy dispatcher.
    key_builder:
        Builds lookup and generation-stamped keys.
    retry:
        Policy for transient backend errors on lookup and create.
    max_workers:
        Upper bound on groups saved at the same time.
    clock:
        Source of "now", for generation stamps and staleness checks.
    manifests:
        Manifests kept by the main phase, for the change report.
    prune:
        Delete units the build did not read, where the main phase
        reverted their access times.
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
        clock: Callable[[], datetime] = _utcnow,
        manifests: ManifestStore | None = None,
        prune: bool = False,
    ) -> None:
        self._backend = backend
        self._roots = roots
        self._fingerprinter = fingerprinter
        self._keys = key_builder
        self._retry = retry
        self._max_workers = max_workers
        self._clock = clock
        self._manifests = manifests
        self._prune = prune

    def save(self, groups: list[CacheGroup], snapshot: RestoreSnapshot) -> list[SaveOutcome]:
        """Run the save decision for every group against its restore record."""
        if not groups:
            return []
        workers = max(1, min(self._max_workers, len(groups)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="save") as pool:
            return list(
                pool.map(lambda g: self._save_contained(g, snapshot.record_for(g)), groups)
            )

    def _save_contained(self, group: CacheGroup, record: RestoreRecord) -> SaveOutcome:
        try:
            return self.save_group(group, record)
        except Exception as exc:  # noqa: BLE001
            logger.error("Saving %s failed unexpectedly, continuing without it: %s",
                         group.group_id, exc)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.FAILED,
                               reason=f"unexpected: {exc}")

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def is_stale(self, group: CacheGroup, record: RestoreRecord) -> bool:
        """Whether a restored entry has outlived the group's recache policy."""
        if record.hit is HitKind.MISS:
            return False
        return group.recache.is_stale(record.entry_created_at, self._clock())

    def decide(
        self, group: CacheGroup, record: RestoreRecord, current: Fingerprint
    ) -> tuple[bool, str]:
        """Return ``(should_save, reason)`` for one group."""
        if current.file_count == 0:
            return False, "empty"
        if self.is_stale(group, record):
            return True, "stale"
        # A lockfile digest does not cover build output: only the exact
        # entry for this lockfile is known to hold matching artifacts.
        artifacts_unverified = group.kind.is_lockfile_keyed and record.hit is not HitKind.EXACT
        if current.digest == record.digest and not artifacts_unverified:
            return False, "unchanged"
        if record.hit is HitKind.MISS:
            return True, "miss"
        if artifacts_unverified:
            return True, "fallback"
        return True, "changed"

    # ------------------------------------------------------------------
    # Before deciding
    # ------------------------------------------------------------------

    def _prune_unused(self, group: CacheGroup, record: RestoreRecord) -> int:
        if not (self._prune and record.access_times_reverted):
            return 0
        try:
            removed = prune_unused(group, self._roots)
        except OSError as exc:
            logger.warning("Cannot prune unused entries of %s: %s", group.group_id, exc)
            return 0
        if removed:
            logger.info("Pruned %d unused entr%s from %s", len(removed),
                        "y" if len(removed) == 1 else "ies", group.group_id)
            logger.debug("Pruned from %s:\n%s", group.group_id, "\n".join(removed))
        return len(removed)

    def _report_changes(
        self, group: CacheGroup, record: RestoreRecord, current: Fingerprint
    ) -> dict[str, int]:
        if self._manifests is None or group.kind.is_lockfile_keyed:
            return {}
        before = self._manifests.load(group.group_id, record.digest)
        if before is None:
            return {}
        changes = compute_changes(before, current.entries)
        counts = count_changes(changes)
        if changes:
            logger.info("Changes in %s since restore: %d added, %d removed, %d changed",
                        group.group_id, counts[ChangeKind.ADDED],
                        counts[ChangeKind.REMOVED], counts[ChangeKind.CHANGED])
            logger.debug("Changes in %s:\n%s", group.group_id, render_changes(changes))
        return {kind.value: n for kind, n in counts.items()}

    # ------------------------------------------------------------------
    # Per-group save
    # ------------------------------------------------------------------

    def save_group(self, group: CacheGroup, record: RestoreRecord) -> SaveOutcome:
        """Decide and upload one group. Never raises for backend or filesystem errors."""
        pruned = self._prune_unused(group, record)
        try:
            current = self._fingerprinter.fingerprint(group)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot fingerprint %s, not saving: %s", group.group_id, exc)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.FAILED,
                               reason=f"fingerprint: {exc}", pruned=pruned)
        report = {"pruned": pruned, **self._report_changes(group, record, current)}

        should_save, reason = self.decide(group, record, current)
        if not should_save:
            logger.info("Not saving %s: %s (%s)", group.group_id, reason, current.digest)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.SKIPPED,
                               reason=reason, **report)

        lookup = self._keys.build_key(group, current.digest).render()
        try:
            existing = call_with_retry(
                lambda: self._backend.find(lookup),
                policy=self._retry,
                operation=f"find {group.group_id}",
            )
        except BackendError as exc:
            logger.warning("Cannot check %s for existing entries: %s", group.group_id, exc)
            existing = None
        if existing is not None and existing.key != record.matched_key and not (
            group.recache.is_stale(existing.created_at, self._clock())
        ):
            logger.info("Not saving %s: %s already holds this content",
                        group.group_id, existing.key)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.SKIPPED,
                               reason="already-cached", key=existing.key, **report)

        key = self._keys.build_key(group, current.digest, make_generation(self._clock()))
        rendered = key.render()
        try:
            data = pack_group(group, self._roots)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot archive %s, not saving: %s", group.group_id, exc)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.FAILED,
                               reason=f"archive: {exc}", key=rendered, **report)

        try:
            call_with_retry(
                lambda: self._backend.create(rendered, data),
                policy=self._retry,
                operation=f"create {rendered}",
            )
        except ArchiveExistsError:
            logger.info("Cache entry %s was created concurrently; keeping it", rendered)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.EXISTS,
                               reason=reason, key=rendered, **report)
        except BackendError as exc:
            logger.warning("Failed to save %s, continuing without it: %s",
                           group.group_id, exc)
            return SaveOutcome(group_id=group.group_id, action=SaveAction.FAILED,
                               reason=str(exc), key=rendered, **report)

        logger.info("Saved %s (%s, %d files, %d bytes archived) as %s",
                    group.group_id, reason, current.file_count, len(data), rendered)
        return SaveOutcome(group_id=group.group_id, action=SaveAction.CREATED,
                           reason=reason, key=rendered, **report)
