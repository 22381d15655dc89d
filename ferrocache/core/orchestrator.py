"""Cache orchestrator — wires the engine together for each CI phase.

Main phase: catalog -> restore -> export state.
Post phase: import state -> catalog -> save.

The two phases run in different processes. The only thing the save
decision depends on is the ``RestoreSnapshot`` written to the state
channel; per-group manifests under ``state_dir`` feed the change report
and are ignored when missing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ferrocache.config import CacheSettings
from ferrocache.core.backend import CacheBackend, LocalDirectoryBackend
from ferrocache.core.catalog import GroupCatalog
from ferrocache.core.delta import ManifestStore
from ferrocache.core.fingerprint import Fingerprinter
from ferrocache.core.key_builder import CacheKeyBuilder
from ferrocache.core.paths import PathRoots
from ferrocache.core.restore import RestoreEngine
from ferrocache.core.retry import RetryPolicy
from ferrocache.core.save import SaveEngine
from ferrocache.core.state import (
    FileStateChannel,
    GitHubStateChannel,
    StateChannel,
    StateChannelError,
    export_snapshot,
    import_snapshot,
)
from ferrocache.models.records import RestoreSnapshot, SaveOutcome

logger = logging.getLogger(__name__)


def default_state_channel(settings: CacheSettings) -> StateChannel:
    """The CI host's state channel when available, else a local directory."""
    if GitHubStateChannel.is_available():
        return GitHubStateChannel()
    return FileStateChannel(settings.state_dir)


class CacheOrchestrator:
    """Runs the restore (main) and save (post) phases.

    Parameters
    ----------
    settings:
        Validated configuration. Obtain via ``load_settings()``.
    backend:
        Cache store. Defaults to a ``LocalDirectoryBackend`` at
        ``settings.backend_path``.
    state_channel:
        Inter-phase channel. Defaults to the CI host's, if detected.
    key_builder:
        Override the platform tag (mostly for tests).
    clock:
        Source of "now" for the save engine.
    """

    def __init__(
        self,
        settings: CacheSettings,
        *,
        backend: CacheBackend | None = None,
        state_channel: StateChannel | None = None,
        key_builder: CacheKeyBuilder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.roots = PathRoots.from_settings(settings)
        self.backend = backend or LocalDirectoryBackend(settings.backend_path)
        self.state_channel = state_channel or default_state_channel(settings)
        self.catalog = GroupCatalog.from_settings(settings, self.roots)
        self.fingerprinter = Fingerprinter(self.roots, settings.toolchain)
        self.key_builder = key_builder or CacheKeyBuilder(
            cross_platform_sharing=settings.cross_platform_sharing
        )
        retry = RetryPolicy(
            attempts=settings.upload_attempts,
            base_delay_s=settings.retry_base_delay_seconds,
        )
        self.manifests = ManifestStore(settings.state_dir / "manifests")
        self.restore_engine = RestoreEngine(
            self.backend,
            self.roots,
            self.fingerprinter,
            self.key_builder,
            retry=retry,
            max_workers=settings.max_concurrent_groups,
            manifests=self.manifests,
            track_access=settings.prune_unaccessed,
        )
        self.save_engine = SaveEngine(
            self.backend,
            self.roots,
            self.fingerprinter,
            self.key_builder,
            retry=retry,
            max_workers=settings.max_concurrent_groups,
            clock=clock or (lambda: datetime.now(timezone.utc)),
            manifests=self.manifests,
            prune=settings.prune_unaccessed,
        )

    def run_main(self) -> RestoreSnapshot:
        """Restore every present group and hand the records to the post phase."""
        groups = self.catalog.groups()
        logger.info(
            "Restoring %d cache group(s) for dependency list %r on %s",
            len(groups),
            self.settings.dependency_list,
            self.key_builder.platform_tag,
        )
        snapshot = self.restore_engine.restore(groups)
        try:
            export_snapshot(self.state_channel, self.settings.state_name, snapshot)
        except (OSError, StateChannelError) as exc:
            logger.warning("Cannot save restore state; the post phase will re-save "
                           "every group: %s", exc)
        return snapshot

    def run_post(self) -> list[SaveOutcome]:
        """Save every group whose content or age calls for it."""
        snapshot = import_snapshot(self.state_channel, self.settings.state_name)
        groups = self.catalog.groups()
        logger.info("Saving %d cache group(s) (%d restore record(s))",
                    len(groups), len(snapshot.records))
        return self.save_engine.save(groups, snapshot)
