"""Cache key construction.

Keys are ordered platform -> dependency list -> digest -> generation.
``build_prefix`` drops the last two so a prefix search finds any stored
digest/generation variant for the same group.
"""

from __future__ import annotations

import platform
import secrets
from datetime import datetime, timezone

from ferrocache.models.groups import CacheGroup
from ferrocache.models.keys import CacheKey

# Platform tag used when entries may be shared across operating systems.
SHARED_PLATFORM_TAG = "any"


def host_platform_tag() -> str:
    """Origin-platform tag for this host, e.g. ``linux-x86_64``."""
    system = platform.system().lower() or "unknown"
    machine = platform.machine().lower() or "unknown"
    return f"{system}-{machine}"


def make_generation(now: datetime | None = None, nonce_bytes: int = 0) -> str:
    """Time-derived generation component, sortable by creation time.

    Without a nonce, runners saving the same digest in the same second
    produce the same key and the backend keeps exactly one of them.
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    if nonce_bytes:
        return f"{stamp}-{secrets.token_hex(nonce_bytes)}"
    return stamp


class CacheKeyBuilder:
    """Builds keys for one host.

    Parameters
    ----------
    platform_tag:
        Origin-platform tag. Defaults to this host's, or to ``"any"`` when
        ``cross_platform_sharing`` is set.
    """

    def __init__(
        self,
        platform_tag: str | None = None,
        *,
        cross_platform_sharing: bool = False,
    ) -> None:
        if platform_tag is None:
            platform_tag = SHARED_PLATFORM_TAG if cross_platform_sharing else host_platform_tag()
        self.platform_tag = platform_tag

    def build_key(
        self, group: CacheGroup, digest: str, generation: str | None = None
    ) -> CacheKey:
        """Key for ``group`` at ``digest``.

        Without a generation the rendered key is the lookup key for any
        entry holding exactly this content.
        """
        return CacheKey(
            kind=group.kind,
            platform=self.platform_tag,
            dependency_list=group.dependency_list,
            digest=digest,
            generation=generation,
        )

    def build_prefix(self, group: CacheGroup) -> CacheKey:
        """Fallback prefix: platform and dependency list only."""
        return CacheKey(
            kind=group.kind,
            platform=self.platform_tag,
            dependency_list=group.dependency_list,
        )
