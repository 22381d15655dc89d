"""Structured cache keys.

Rendered form::

    ferrocache/v1/<kind>/<platform>/<dependency-list>/<digest>/<generation>

Every field is terminated by ``/`` except the generation, so the rendering
of a key with trailing fields omitted is a strict string prefix of every
fuller key that shares its leading fields.
"""

from __future__ import annotations

from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict

from ferrocache.models.groups import GroupKind

KEY_NAMESPACE = "ferrocache"
KEY_FORMAT_VERSION = "v1"


class InvalidKeyError(ValueError):
    """Raised when a string is not a well-formed rendered cache key."""


def _encode(field: str) -> str:
    return quote(field, safe="-_.~+=:")


class CacheKey(BaseModel):
    """Ordered key tuple: platform, dependency list, digest, generation."""

    model_config = ConfigDict(frozen=True)

    kind: GroupKind
    platform: str
    dependency_list: str
    digest: str | None = None
    generation: str | None = None

    @property
    def is_prefix(self) -> bool:
        """A key without a digest is a fallback prefix."""
        return self.digest is None

    def render(self) -> str:
        parts = [
            KEY_NAMESPACE,
            KEY_FORMAT_VERSION,
            self.kind.value,
            _encode(self.platform),
            _encode(self.dependency_list),
        ]
        rendered = "/".join(parts) + "/"
        if self.digest is not None:
            rendered += _encode(self.digest) + "/"
            if self.generation is not None:
                rendered += _encode(self.generation)
        return rendered

    def __str__(self) -> str:
        return self.render()

    def matches(self, rendered: str) -> bool:
        """True if ``rendered`` is this key or extends it with trailing fields."""
        return rendered.startswith(self.render())

    @classmethod
    def parse(cls, rendered: str) -> CacheKey:
        """Parse a rendered key back into its fields."""
        parts = rendered.split("/")
        if len(parts) < 6 or parts[0] != KEY_NAMESPACE or parts[1] != KEY_FORMAT_VERSION:
            raise InvalidKeyError(f"Not a {KEY_NAMESPACE} key: {rendered!r}")
        try:
            kind = GroupKind(parts[2])
        except ValueError as exc:
            raise InvalidKeyError(f"Unknown group kind in key: {parts[2]!r}") from exc

        # A prefix ends right after the dependency list (".../deps/").
        if len(parts) == 6 and parts[5]:
            raise InvalidKeyError(f"Unterminated digest field in key: {rendered!r}")
        digest = unquote(parts[5]) if len(parts) > 6 else None
        generation = unquote(parts[6]) if len(parts) > 6 and parts[6] else None
        if len(parts) > 7:
            raise InvalidKeyError(f"Too many fields in key: {rendered!r}")
        return cls(
            kind=kind,
            platform=unquote(parts[3]),
            dependency_list=unquote(parts[4]),
            digest=digest or None,
            generation=generation,
        )
