"""Tests for path normalization: portability, escaping, root containment."""

from __future__ import annotations

from pathlib import Path, PurePosixPath, PureWindowsPath

import pytest

from ferrocache.core.paths import (
    PathOutsideRootError,
    PathRoots,
    escape_component,
    normalize,
    split_pattern,
    unescape_component,
)
from ferrocache.models.groups import RootTag, SourceDir


class TestNormalize:
    def test_posix_path(self):
        result = normalize(
            "/home/alice/.cargo/registry/index/config.json",
            RootTag.CARGO_HOME,
            "/home/alice/.cargo",
        )
        assert result == "cargo-home/registry/index/config.json"

    def test_windows_path(self):
        result = normalize(
            r"C:\Users\bob\.cargo\registry\index\config.json",
            RootTag.CARGO_HOME,
            r"C:\Users\bob\.cargo",
        )
        assert result == "cargo-home/registry/index/config.json"

    def test_same_suffix_same_pattern_across_platforms(self):
        posix = normalize(
            PurePosixPath("/runner/.cargo/git/db/serde-abc/HEAD"),
            RootTag.CARGO_HOME,
            PurePosixPath("/runner/.cargo"),
        )
        windows = normalize(
            PureWindowsPath(r"D:\a\_temp\.cargo\git\db\serde-abc\HEAD"),
            RootTag.CARGO_HOME,
            PureWindowsPath(r"D:\a\_temp\.cargo"),
        )
        assert posix == windows == "cargo-home/git/db/serde-abc/HEAD"

    def test_unc_prefix_is_stripped(self):
        result = normalize(
            r"\\server\share\cargo\registry\cache\a.crate",
            RootTag.CARGO_HOME,
            r"\\server\share\cargo",
        )
        assert result == "cargo-home/registry/cache/a.crate"

    def test_windows_comparison_is_case_insensitive(self):
        result = normalize(
            r"c:\USERS\Bob\.cargo\registry\Index",
            RootTag.CARGO_HOME,
            r"C:\Users\bob\.cargo",
        )
        assert result == "cargo-home/registry/Index"

    def test_root_itself(self):
        assert normalize("/work/target", RootTag.TARGET_DIR, "/work/target") == "target-dir"

    def test_outside_root_rejected(self):
        with pytest.raises(PathOutsideRootError):
            normalize("/etc/passwd", RootTag.CARGO_HOME, "/home/alice/.cargo")

    def test_sibling_with_common_prefix_rejected(self):
        with pytest.raises(PathOutsideRootError):
            normalize("/home/alice/.cargo2/x", RootTag.CARGO_HOME, "/home/alice/.cargo")

    def test_parent_reference_rejected(self):
        with pytest.raises(PathOutsideRootError):
            normalize("/home/alice/.cargo/../x", RootTag.CARGO_HOME, "/home/alice/.cargo")

    def test_glob_metacharacters_escaped(self):
        result = normalize("/c/registry/weird*[name]?.crate", RootTag.CARGO_HOME, "/c")
        assert result == "cargo-home/registry/weird[*][[]name[]][?].crate"


class TestEscaping:
    @pytest.mark.parametrize("component", ["plain", "a*b", "[x]", "q?", "*[]?*"])
    def test_unescape_inverts_escape(self, component: str):
        assert unescape_component(escape_component(component)) == component

    def test_plain_untouched(self):
        assert escape_component("serde-1.0.0.crate") == "serde-1.0.0.crate"


class TestSplitPattern:
    def test_split(self):
        tag, components = split_pattern("cargo-home/registry/weird[*].crate")
        assert tag is RootTag.CARGO_HOME
        assert components == ["registry", "weird*.crate"]

    def test_unknown_tag(self):
        with pytest.raises(PathOutsideRootError):
            split_pattern("home/user/.ssh/id_rsa")

    @pytest.mark.parametrize("pattern", ["cargo-home/../../etc", "workspace/./x", "target-dir/a/.."])
    def test_dot_components_rejected(self, pattern: str):
        with pytest.raises(PathOutsideRootError):
            split_pattern(pattern)


class TestPathRoots:
    def test_target_dir_relative_to_workspace(self, tmp_path: Path):
        roots = PathRoots(tmp_path / "cargo", Path("target"), tmp_path / "ws")
        assert roots.root(RootTag.TARGET_DIR) == tmp_path / "ws" / "target"

    def test_absolute_target_dir_kept(self, tmp_path: Path):
        roots = PathRoots(tmp_path / "cargo", tmp_path / "out", tmp_path / "ws")
        assert roots.root(RootTag.TARGET_DIR) == tmp_path / "out"

    def test_resolve_source(self, roots: PathRoots, cargo_home: Path):
        source = SourceDir(root=RootTag.CARGO_HOME, subpath="registry/index")
        assert roots.resolve(source) == cargo_home / "registry" / "index"
        assert roots.source_pattern(source) == "cargo-home/registry/index"

    def test_round_trip(self, roots: PathRoots, cargo_home: Path):
        native = cargo_home / "registry" / "cache" / "index-x" / "weird[1].crate"
        pattern = roots.normalize(native, RootTag.CARGO_HOME)
        assert roots.denormalize(pattern) == native

    def test_round_trip_across_hosts(self, make_roots):
        first, second = make_roots("first"), make_roots("second")
        native = first.root(RootTag.CARGO_HOME) / "git" / "db" / "repo" / "HEAD"
        pattern = first.normalize(native, RootTag.CARGO_HOME)
        assert second.denormalize(pattern) == second.root(RootTag.CARGO_HOME) / "git" / "db" / "repo" / "HEAD"
