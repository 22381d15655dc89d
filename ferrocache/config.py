"""Cache configuration — env-driven, validated before any I/O.

Centralized settings using pydantic-settings. Reads from a .env file and
FERROCACHE_* environment variables. Malformed durations and unknown group
kinds surface as ``ConfigurationError`` from ``load_settings()``, which is
the only configuration error the CLI treats as fatal.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ferrocache.core.durations import parse_duration
from ferrocache.models.groups import GroupKind, RecachePolicy


class ConfigurationError(ValueError):
    """Raised when cache configuration is invalid. Always fatal."""


class UnknownGroupKindError(ConfigurationError):
    """Raised when the group mapping names a kind that does not exist."""


def _default_groups() -> dict[str, bool]:
    return {
        GroupKind.REGISTRY_INDEX.value: True,
        GroupKind.PACKAGE_CACHE.value: True,
        GroupKind.VCS_DEPENDENCY_CACHE.value: True,
        GroupKind.BUILD_ARTIFACT_CACHE.value: False,
    }


def _default_cargo_home() -> Path:
    env = os.environ.get("CARGO_HOME")
    if env:
        return Path(env)
    return Path.home() / ".cargo"


class CacheSettings(BaseSettings):
    """Cache configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export FERROCACHE_DEPENDENCY_LIST=minimal-features
        export FERROCACHE_MIN_RECACHE_INDICES=1h
        export FERROCACHE_GROUPS='{"build-artifact-cache": true}'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FERROCACHE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    phase: str = ""

    # Group selection
    dependency_list: str = "default"
    groups: dict[str, bool] = _default_groups()

    # Recache policies (human-readable durations, blank = content-only)
    min_recache_indices: str = ""
    min_recache_crates: str = ""
    min_recache_git_repos: str = ""
    min_recache_build_artifacts: str = ""

    cross_platform_sharing: bool = False

    # Drop crates and git databases the build did not read (needs atime support)
    prune_unaccessed: bool = True

    # Well-known roots
    cargo_home: Path = Field(default_factory=_default_cargo_home)
    target_dir: Path = Path("target")
    workspace_root: Path = Path(".")
    toolchain: str = "stable"

    # Backend and inter-phase state
    backend_path: Path = Path(".ferrocache/store")
    state_dir: Path = Path(".ferrocache/state")
    state_name: str = "ferrocache-restore-state"

    # Execution
    max_concurrent_groups: int = 4
    upload_attempts: int = 3
    retry_base_delay_seconds: float = 1.0

    @field_validator("groups")
    @classmethod
    def _check_group_kinds(cls, value: dict[str, bool]) -> dict[str, bool]:
        known = {kind.value for kind in GroupKind}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(
                f"Unknown group kind(s) {', '.join(unknown)}; "
                f"expected one of {', '.join(sorted(known))}"
            )
        merged = _default_groups()
        merged.update(value)
        return merged

    @field_validator(
        "min_recache_indices",
        "min_recache_crates",
        "min_recache_git_repos",
        "min_recache_build_artifacts",
    )
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("max_concurrent_groups", "upload_attempts")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    def enabled_kinds(self) -> list[GroupKind]:
        """Enabled group kinds in declaration order."""
        return [kind for kind in GroupKind if self.groups.get(kind.value, False)]

    def recache_policy(self, kind: GroupKind) -> RecachePolicy:
        """The parsed recache policy for a group kind."""
        raw = {
            GroupKind.REGISTRY_INDEX: self.min_recache_indices,
            GroupKind.PACKAGE_CACHE: self.min_recache_crates,
            GroupKind.VCS_DEPENDENCY_CACHE: self.min_recache_git_repos,
            GroupKind.BUILD_ARTIFACT_CACHE: self.min_recache_build_artifacts,
        }[kind]
        return RecachePolicy(min_age=parse_duration(raw))


def load_settings(**overrides: object) -> CacheSettings:
    """Build and validate settings, failing fast with ``ConfigurationError``."""
    try:
        return CacheSettings(**overrides)
    except ValidationError as exc:
        messages = [
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        ]
        error_cls = (
            UnknownGroupKindError
            if any(err["loc"] and err["loc"][0] == "groups" for err in exc.errors())
            else ConfigurationError
        )
        raise error_cls("Invalid cache configuration: " + "; ".join(messages)) from exc
