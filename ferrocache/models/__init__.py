"""ferrocache data models — all Pydantic v2, all frozen (immutable)."""

from ferrocache.models.groups import (
    CacheGroup,
    GroupKind,
    RecachePolicy,
    RootTag,
    SourceDir,
)
from ferrocache.models.keys import CacheKey, InvalidKeyError
from ferrocache.models.records import (
    SNAPSHOT_SCHEMA_VERSION,
    HitKind,
    RestoreRecord,
    RestoreSnapshot,
    SaveAction,
    SaveOutcome,
)

__all__ = [
    # groups
    "GroupKind",
    "RootTag",
    "SourceDir",
    "RecachePolicy",
    "CacheGroup",
    # keys
    "CacheKey",
    "InvalidKeyError",
    # records
    "SNAPSHOT_SCHEMA_VERSION",
    "HitKind",
    "RestoreRecord",
    "RestoreSnapshot",
    "SaveAction",
    "SaveOutcome",
]
