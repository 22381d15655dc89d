"""Tests for cache keys: rendering, parsing, prefix semantics."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import TEST_PLATFORM
from ferrocache.core.key_builder import (
    SHARED_PLATFORM_TAG,
    CacheKeyBuilder,
    host_platform_tag,
    make_generation,
)
from ferrocache.models.groups import GroupKind
from ferrocache.models.keys import CacheKey, InvalidKeyError

DIGEST = "f1-0123456789abcdef0123456789abcdef"


class TestCacheKeyRendering:
    def test_full_key(self):
        key = CacheKey(
            kind=GroupKind.PACKAGE_CACHE,
            platform="linux-x86_64",
            dependency_list="default",
            digest=DIGEST,
            generation="20260301T120000Z",
        )
        assert key.render() == (
            f"ferrocache/v1/package-cache/linux-x86_64/default/{DIGEST}/20260301T120000Z"
        )
        assert str(key) == key.render()

    def test_prefix_key(self):
        key = CacheKey(kind=GroupKind.REGISTRY_INDEX, platform="any", dependency_list="default")
        assert key.is_prefix
        assert key.render() == "ferrocache/v1/registry-index/any/default/"

    def test_exact_lookup_key_is_prefix_of_generations(self):
        exact = CacheKey(
            kind=GroupKind.PACKAGE_CACHE, platform="p", dependency_list="d", digest=DIGEST
        )
        full = exact.model_copy(update={"generation": "20260301T120000Z"})
        assert exact.matches(full.render())
        assert not full.is_prefix

    def test_prefix_does_not_overmatch_similar_dependency_list(self):
        prefix = CacheKey(kind=GroupKind.PACKAGE_CACHE, platform="p", dependency_list="default")
        other = CacheKey(
            kind=GroupKind.PACKAGE_CACHE, platform="p", dependency_list="default2", digest=DIGEST
        )
        assert not prefix.matches(other.render())

    def test_fields_are_escaped(self):
        key = CacheKey(
            kind=GroupKind.PACKAGE_CACHE, platform="p", dependency_list="features/a b"
        )
        assert key.render() == "ferrocache/v1/package-cache/p/features%2Fa%20b/"


class TestCacheKeyParsing:
    @pytest.mark.parametrize(
        "fields",
        [
            {"digest": None, "generation": None},
            {"digest": DIGEST, "generation": None},
            {"digest": DIGEST, "generation": "20260301T120000Z"},
        ],
    )
    def test_parse_inverts_render(self, fields):
        key = CacheKey(
            kind=GroupKind.VCS_DEPENDENCY_CACHE,
            platform="windows-amd64",
            dependency_list="all features/x",
            **fields,
        )
        assert CacheKey.parse(key.render()) == key

    @pytest.mark.parametrize(
        "rendered",
        [
            "",
            "other/v1/package-cache/p/d/",
            "ferrocache/v2/package-cache/p/d/",
            "ferrocache/v1/docker/p/d/",
            "ferrocache/v1/package-cache/p/d",
            "ferrocache/v1/package-cache/p/d/digest/gen/extra",
        ],
    )
    def test_parse_rejects_malformed(self, rendered: str):
        with pytest.raises(InvalidKeyError):
            CacheKey.parse(rendered)


class TestCacheKeyBuilder:
    def test_build_key(self, key_builder: CacheKeyBuilder, make_group):
        group = make_group(GroupKind.REGISTRY_INDEX)
        key = key_builder.build_key(group, DIGEST, "20260301T120000Z")
        assert key.platform == TEST_PLATFORM
        assert key.dependency_list == "default"
        assert key.render().startswith(key_builder.build_prefix(group).render())

    def test_identical_inputs_identical_keys(self, key_builder: CacheKeyBuilder, make_group):
        group = make_group()
        assert key_builder.build_key(group, DIGEST).render() == key_builder.build_key(group, DIGEST).render()

    def test_different_digest_different_key(self, key_builder: CacheKeyBuilder, make_group):
        group = make_group()
        other = DIGEST.replace("0", "f")
        assert key_builder.build_key(group, DIGEST).render() != key_builder.build_key(group, other).render()

    def test_different_dependency_list_different_prefix(self, key_builder: CacheKeyBuilder, make_group):
        a = make_group(dependency_list="default")
        b = make_group(dependency_list="minimal")
        assert not key_builder.build_prefix(a).matches(key_builder.build_key(b, DIGEST).render())

    def test_different_kind_different_prefix(self, key_builder: CacheKeyBuilder, make_group):
        index = make_group(GroupKind.REGISTRY_INDEX)
        crates = make_group(GroupKind.PACKAGE_CACHE)
        assert not key_builder.build_prefix(index).matches(key_builder.build_key(crates, DIGEST).render())

    def test_cross_platform_sharing_uses_shared_tag(self):
        assert CacheKeyBuilder(cross_platform_sharing=True).platform_tag == SHARED_PLATFORM_TAG

    def test_default_platform_is_host(self):
        assert CacheKeyBuilder().platform_tag == host_platform_tag()

    def test_platforms_partition_keys(self, make_group):
        group = make_group()
        linux = CacheKeyBuilder("linux-x86_64").build_prefix(group)
        windows = CacheKeyBuilder("windows-amd64").build_key(group, DIGEST)
        assert not linux.matches(windows.render())


class TestGeneration:
    def test_sortable_utc_stamp(self):
        stamp = make_generation(datetime(2026, 3, 1, 12, 0, 5, tzinfo=timezone.utc))
        assert stamp == "20260301T120005Z"

    def test_later_sorts_after_earlier(self):
        early = make_generation(datetime(2026, 3, 1, 9, 59, 59, tzinfo=timezone.utc))
        late = make_generation(datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc))
        assert early < late

    def test_nonce(self):
        stamp = make_generation(datetime(2026, 3, 1, tzinfo=timezone.utc), nonce_bytes=4)
        assert stamp.startswith("20260301T000000Z-")
        assert len(stamp.rsplit("-", 1)[1]) == 8
