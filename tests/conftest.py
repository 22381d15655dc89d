"""Shared test fixtures for ferrocache."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from ferrocache.config import CacheSettings, load_settings
from ferrocache.core.backend import (
    ArchiveRef,
    BackendError,
    LocalDirectoryBackend,
    TransientBackendError,
)
from ferrocache.core.catalog import GroupCatalog
from ferrocache.core.fingerprint import Fingerprinter
from ferrocache.core.key_builder import CacheKeyBuilder
from ferrocache.core.paths import PathRoots
from ferrocache.core.state import InMemoryStateChannel
from ferrocache.models.groups import CacheGroup, GroupKind

TEST_PLATFORM = "linux-x86_64"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep host CI variables, .env files and earlier CLI logging out of tests."""
    for name in list(os.environ):
        if name.startswith(("FERROCACHE_", "GITHUB_", "STATE_")):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    logger = logging.getLogger("ferrocache")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------


def write_tree(base: Path, files: dict[str, bytes | str]) -> None:
    """Create ``files`` (slash-separated relative names) under ``base``."""
    for name, content in files.items():
        path = base.joinpath(*name.split("/"))
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)


def backdate_entry(store: Path, key: str, created_at: datetime) -> None:
    """Rewrite the recorded creation time of a LocalDirectoryBackend entry."""
    for meta in (store / "entries").glob("*/*.json"):
        data = json.loads(meta.read_text())
        if data["key"] == key:
            data["created_at"] = created_at.isoformat()
            meta.write_text(json.dumps(data))
            return
    raise AssertionError(f"no cache entry for {key}")


UNDECODABLE_NAME = b"bad\xff.crate"


def write_undecodable(directory: Path, content: bytes = b"crate") -> Path:
    """Write a file whose name is not valid UTF-8; skip where the OS refuses one."""
    if os.name != "posix":
        pytest.skip("byte file names need a POSIX filesystem")
    directory.mkdir(parents=True, exist_ok=True)
    raw = os.path.join(os.fsencode(directory), UNDECODABLE_NAME)
    try:
        with open(raw, "wb") as fh:
            fh.write(content)
    except OSError as exc:
        pytest.skip(f"filesystem rejects undecodable names: {exc}")
    return directory / os.fsdecode(UNDECODABLE_NAME)


def mark_read(path: Path) -> None:
    """Make ``path`` look read by the build: access time at its modification time."""
    st = os.stat(path)
    os.utime(path, ns=(st.st_mtime_ns, st.st_mtime_ns))


@pytest.fixture
def cargo_home(tmp_path: Path) -> Path:
    return tmp_path / "cargo"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def roots(cargo_home: Path, workspace: Path) -> PathRoots:
    """PathRoots anchored in the test's temp directory."""
    return PathRoots(cargo_home, Path("target"), workspace)


@pytest.fixture
def make_roots(tmp_path: Path) -> Callable[[str], PathRoots]:
    """Factory fixture: an independent host layout (a separate CI runner)."""

    def _factory(name: str) -> PathRoots:
        host = tmp_path / "hosts" / name
        (host / "workspace").mkdir(parents=True, exist_ok=True)
        return PathRoots(host / "cargo", Path("target"), host / "workspace")

    return _factory


@pytest.fixture
def fingerprinter(roots: PathRoots) -> Fingerprinter:
    return Fingerprinter(roots, "1.80.0-x86_64-unknown-linux-gnu")


@pytest.fixture
def key_builder() -> CacheKeyBuilder:
    return CacheKeyBuilder(TEST_PLATFORM)


@pytest.fixture
def catalog(roots: PathRoots) -> GroupCatalog:
    return GroupCatalog(roots, "default", list(GroupKind))


@pytest.fixture
def make_group() -> Callable[..., CacheGroup]:
    """Factory fixture: a catalog-defined group with optional overrides."""

    def _factory(
        kind: GroupKind = GroupKind.PACKAGE_CACHE,
        roots: PathRoots | None = None,
        **overrides: Any,
    ) -> CacheGroup:
        base_roots = roots or PathRoots(Path("/nonexistent"), Path("target"), Path("/nonexistent"))
        group = GroupCatalog(base_roots, "default", [kind]).define(kind)
        return group.model_copy(update=overrides) if overrides else group

    return _factory


# ---------------------------------------------------------------------------
# Backend, state and settings
# ---------------------------------------------------------------------------


@pytest.fixture
def backend(tmp_path: Path) -> LocalDirectoryBackend:
    """A fresh local store shared by every runner in the test."""
    return LocalDirectoryBackend(tmp_path / "store")


@pytest.fixture
def state_channel() -> InMemoryStateChannel:
    return InMemoryStateChannel()


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def make_settings(cargo_home: Path, workspace: Path, tmp_path: Path) -> Callable[..., CacheSettings]:
    """Factory fixture: validated settings pointing at the temp layout."""

    def _factory(**overrides: Any) -> CacheSettings:
        defaults: dict[str, Any] = {
            "cargo_home": cargo_home,
            "workspace_root": workspace,
            "backend_path": tmp_path / "store",
            "state_dir": tmp_path / "state",
            "retry_base_delay_seconds": 0.0,
            "prune_unaccessed": False,
            "toolchain": "1.80.0-x86_64-unknown-linux-gnu",
        }
        defaults.update(overrides)
        return load_settings(**defaults)

    return _factory


class FlakyBackend:
    """Wraps a backend and fails selected operations a number of times.

    ``failures`` maps an operation name (``find``, ``fetch``, ``create``)
    to how many leading calls raise ``error``.
    """

    def __init__(
        self,
        inner: Any,
        failures: dict[str, int],
        error: type[BackendError] = TransientBackendError,
    ) -> None:
        self.inner = inner
        self.failures = dict(failures)
        self.error = error
        self.calls: dict[str, int] = {"find": 0, "fetch": 0, "create": 0}

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.failures.get(operation, 0) > 0:
            self.failures[operation] -= 1
            raise self.error(f"{operation} unavailable")

    def find(self, key_or_prefix: str) -> ArchiveRef | None:
        self._maybe_fail("find")
        return self.inner.find(key_or_prefix)

    def fetch(self, ref: ArchiveRef) -> bytes:
        self._maybe_fail("fetch")
        return self.inner.fetch(ref)

    def create(self, key: str, data: bytes) -> ArchiveRef:
        self._maybe_fail("create")
        return self.inner.create(key, data)


@pytest.fixture
def make_flaky_backend(backend: LocalDirectoryBackend) -> Callable[..., FlakyBackend]:
    def _factory(
        failures: dict[str, int], error: type[BackendError] = TransientBackendError
    ) -> FlakyBackend:
        return FlakyBackend(backend, failures, error)

    return _factory
