"""Adversarial tests: damaged or forged restore state must never suppress a save.

Whatever arrives on the state channel, the post phase either trusts a
well-formed record or treats the group as a miss. Bad state can cost an
extra upload, never a skipped one.
"""

from __future__ import annotations

import zlib
from pathlib import Path

import pytest

from conftest import T0, TEST_PLATFORM, FixedClock, write_tree
from ferrocache.core.catalog import GroupCatalog
from ferrocache.core.fingerprint import Fingerprinter
from ferrocache.core.hasher import canonical_json_bytes
from ferrocache.core.key_builder import CacheKeyBuilder
from ferrocache.core.save import SaveEngine
from ferrocache.core.state import (
    STATE_MAGIC,
    InMemoryStateChannel,
    encode_snapshot,
    import_snapshot,
)
from ferrocache.models.groups import GroupKind
from ferrocache.models.records import HitKind, RestoreRecord, RestoreSnapshot, SaveAction

NAME = "ferrocache-restore-state"


@pytest.fixture
def group(catalog: GroupCatalog, cargo_home: Path):
    write_tree(cargo_home / "registry" / "cache" / "idx", {"serde.crate": b"serde"})
    return catalog.define(GroupKind.PACKAGE_CACHE)


@pytest.fixture
def engine(backend, roots) -> SaveEngine:
    return SaveEngine(
        backend, roots, Fingerprinter(roots, "stable"), CacheKeyBuilder(TEST_PLATFORM),
        clock=FixedClock(T0),
    )


def _post_phase(blob: bytes | None, engine: SaveEngine, group) -> SaveAction:
    channel = InMemoryStateChannel()
    if blob is not None:
        channel.set(NAME, blob)
    snapshot = import_snapshot(channel, NAME)
    return engine.save([group], snapshot)[0].action


class TestDamagedState:
    @pytest.mark.parametrize(
        "blob",
        [
            None,
            b"",
            b"FCST",
            b"FCST\x01" + b"\x00" * 64,
            b"GARBAGE-THAT-IS-LONG-ENOUGH",
            STATE_MAGIC + b"\x07" + zlib.compress(b"{}"),
            STATE_MAGIC + b"\x01" + zlib.compress(b"[1,2,3]"),
            STATE_MAGIC + b"\x01" + zlib.compress(b"{\"records\": 5}"),
        ],
    )
    def test_damaged_state_means_save(self, blob, engine: SaveEngine, group):
        assert _post_phase(blob, engine, group) is SaveAction.CREATED

    def test_truncated_state_means_save(self, engine: SaveEngine, group, roots):
        digest = Fingerprinter(roots, "stable").fingerprint(group).digest
        good = encode_snapshot(
            RestoreSnapshot.from_records(
                [RestoreRecord(group_id=group.group_id, hit=HitKind.EXACT, digest=digest)]
            )
        )
        assert _post_phase(good[: len(good) // 2], engine, group) is SaveAction.CREATED

    def test_intact_state_is_trusted(self, engine: SaveEngine, group, roots):
        digest = Fingerprinter(roots, "stable").fingerprint(group).digest
        good = encode_snapshot(
            RestoreSnapshot.from_records(
                [RestoreRecord(group_id=group.group_id, hit=HitKind.EXACT, digest=digest)]
            )
        )
        assert _post_phase(good, engine, group) is SaveAction.SKIPPED


class TestForgedRecords:
    def test_record_filed_under_wrong_group_ignored(self, engine: SaveEngine, group, roots):
        digest = Fingerprinter(roots, "stable").fingerprint(group).digest
        payload = {
            "records": {
                group.group_id: {"group_id": "registry-index/default", "hit": "exact", "digest": digest}
            }
        }
        blob = STATE_MAGIC + b"\x01" + zlib.compress(canonical_json_bytes(payload))
        assert _post_phase(blob, engine, group) is SaveAction.CREATED

    def test_invalid_hit_kind_ignored(self, engine: SaveEngine, group, roots):
        digest = Fingerprinter(roots, "stable").fingerprint(group).digest
        payload = {"records": {group.group_id: {"group_id": group.group_id, "hit": "???", "digest": digest}}}
        blob = STATE_MAGIC + b"\x01" + zlib.compress(canonical_json_bytes(payload))
        assert _post_phase(blob, engine, group) is SaveAction.CREATED

    def test_forged_access_time_flag_prunes_nothing(self, backend, roots, group, cargo_home: Path):
        # The build never ran against reverted access times; every crate must survive.
        pruning = SaveEngine(
            backend, roots, Fingerprinter(roots, "stable"), CacheKeyBuilder(TEST_PLATFORM),
            clock=FixedClock(T0), prune=True,
        )
        payload = {
            "records": {
                group.group_id: {
                    "group_id": group.group_id,
                    "hit": "miss",
                    "digest": "",
                    "access_times_reverted": True,
                }
            }
        }
        blob = STATE_MAGIC + b"\x01" + zlib.compress(canonical_json_bytes(payload))
        assert _post_phase(blob, pruning, group) is SaveAction.CREATED
        assert (cargo_home / "registry" / "cache" / "idx" / "serde.crate").read_bytes() == b"serde"
