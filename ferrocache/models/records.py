"""Restore provenance and save outcome models.

A ``RestoreSnapshot`` is the single message handed from the main phase
to the post phase. It is built once, serialized once, and read once.
Unknown fields are ignored and missing fields default to a miss, so a
snapshot from an older or newer writer degrades instead of failing.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from ferrocache.models.groups import CacheGroup, GroupKind

SNAPSHOT_SCHEMA_VERSION = 1


class HitKind(str, Enum):
    """How a group was satisfied during restore."""

    EXACT = "exact"
    FALLBACK = "fallback"
    MISS = "miss"


class RestoreRecord(BaseModel):
    """What the main phase did for one group.

    ``digest`` is the content digest observed *after* restoration (or the
    pre-restore digest on a miss). ``entry_created_at`` is the creation
    time of the restored backend entry, used by recache policies.
    ``access_times_reverted`` is set only when every file's access time was
    pushed behind its modification time, which is what makes pruning
    unread files safe in the post phase.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    group_id: str
    kind: GroupKind | None = None
    attempted_key: str = ""
    matched_key: str | None = None
    hit: HitKind = HitKind.MISS
    digest: str = ""
    entry_created_at: datetime | None = None
    access_times_reverted: bool = False

    @classmethod
    def miss(cls, group: CacheGroup, digest: str = "", attempted_key: str = "") -> RestoreRecord:
        return cls(
            group_id=group.group_id,
            kind=group.kind,
            attempted_key=attempted_key,
            hit=HitKind.MISS,
            digest=digest,
        )


class RestoreSnapshot(BaseModel):
    """All RestoreRecords produced by one main-phase run, keyed by group id."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    records: dict[str, RestoreRecord] = {}

    @classmethod
    def empty(cls) -> RestoreSnapshot:
        return cls()

    @classmethod
    def from_records(cls, records: list[RestoreRecord]) -> RestoreSnapshot:
        return cls(records={r.group_id: r for r in records})

    def record_for(self, group: CacheGroup) -> RestoreRecord:
        """The group's record, or a miss when the main phase left none."""
        record = self.records.get(group.group_id)
        if record is None:
            return RestoreRecord.miss(group)
        return record


class SaveAction(str, Enum):
    """What the save phase did for one group."""

    CREATED = "created"
    SKIPPED = "skipped"
    EXISTS = "exists"
    FAILED = "failed"


class SaveOutcome(BaseModel):
    """Result of the save decision and upload for one group.

    ``added``, ``removed`` and ``changed`` count files that differ from what
    the main phase left on disk; all zero when no manifest was available.
    ``pruned`` counts units dropped because the build never read them.
    """

    model_config = ConfigDict(frozen=True)

    group_id: str
    action: SaveAction
    reason: str = ""
    key: str | None = None
    added: int = 0
    removed: int = 0
    changed: int = 0
    pruned: int = 0
