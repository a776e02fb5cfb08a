"""Tests for version constraint matching."""

import pytest

from modsync.core.compat.loaders import LoaderKind, normalize_loader
from modsync.core.compat.matcher import (
    collapse_versions,
    compare_versions,
    extract_version_from_filename,
    is_release_version,
    matches
)


class TestCompareVersions:
    def test_missing_components_are_zero(self):
        assert compare_versions("1.20", "1.20.0") == 0

    def test_numeric_not_lexicographic(self):
        assert compare_versions("1.20.10", "1.20.9") == 1
        assert compare_versions("1.9", "1.10") == -1

    def test_suffix_is_ignored(self):
        assert compare_versions("1.20.4-rc1", "1.20.4") == 0


class TestMatches:
    def test_inclusive_range(self):
        assert matches(">=1.20.0 <=1.20.4", "1.20.2") is True
        assert matches(">=1.20.0 <=1.20.4", "1.20.4") is True
        assert matches(">=1.20.0 <=1.20.4", "1.20.5") is False

    def test_trailing_wildcard(self):
        assert matches("1.20.x", "1.20.6") is True
        assert matches("1.20.*", "1.20.1") is True
        assert matches("1.20.x", "1.21.0") is False

    def test_approximately_equal(self):
        assert matches("~1.20.4", "1.20.9") is True
        assert matches("~1.20.4", "1.21.0") is False

    def test_exact(self):
        assert matches("1.20.1", "1.20.1") is True
        assert matches("1.20.1", "1.20.2") is False

    def test_list_matches_any(self):
        assert matches(["1.19.4", "1.20.1"], "1.20.1") is True
        assert matches(["1.19.4", ">=1.20"], "1.20.6") is True
        assert matches(["1.19.4"], "1.20.1") is False

    @pytest.mark.parametrize("constraint,target,expected", [
        (">=1.20", "1.20.1", True),
        (">1.20.1", "1.20.1", False),
        ("<=1.19.4", "1.19.4", True),
        ("<1.20", "1.19.4", True),
        ("<1.20", "1.20", False),
    ])
    def test_single_comparators(self, constraint, target, expected):
        assert matches(constraint, target) is expected

    def test_comparator_conjunction(self):
        assert matches(">=1.20 <1.21", "1.20.6") is True
        assert matches(">=1.20 <1.21", "1.21") is False

    def test_star_matches_anything(self):
        assert matches("*", "1.7.10") is True

    def test_maven_intervals(self):
        assert matches("[1.20,1.21)", "1.20.4") is True
        assert matches("[1.20,1.21)", "1.21") is False
        assert matches("(1.20,1.21]", "1.20") is False
        assert matches("[1.20.1,)", "1.21.3") is True

    @pytest.mark.parametrize("constraint", ["", "banana", None, 12, {"a": 1}, ">= <="])
    def test_unrecognized_never_matches_and_never_raises(self, constraint):
        assert matches(constraint, "1.20.1") is False

    def test_empty_target(self):
        assert matches("1.20.1", "") is False


class TestCollapseVersions:
    def test_single_element(self):
        assert collapse_versions(["1.20.1"]) == "1.20.1"

    def test_several_become_range(self):
        assert collapse_versions(["1.20.4", "1.20.2"]) == ">=1.20.2 <=1.20.4"

    def test_collapsed_range_matches_versions_in_between(self):
        constraint = collapse_versions(["1.20.2", "1.20.4"])
        assert matches(constraint, "1.20.3") is True
        assert matches(constraint, "1.20.5") is False

    def test_empty(self):
        assert collapse_versions([]) is None


class TestFilenameHeuristics:
    def test_extracts_dashed_version(self):
        assert extract_version_from_filename("sodium-fabric-0.5.8.jar") == "0.5.8"

    def test_disabled_suffix(self):
        assert extract_version_from_filename("lithium-0.11.2.jar.disabled") == "0.11.2"

    def test_no_version(self):
        assert extract_version_from_filename("coolmod.jar") is None

    def test_release_detection(self):
        assert is_release_version("1.20.4") is True
        assert is_release_version("24w14a") is False
        assert is_release_version("1.20.5-pre1") is False
        assert is_release_version("1.20.5-rc1") is False


class TestLoaders:
    def test_aliases(self):
        assert normalize_loader("fabric-loader") == "fabric"
        assert normalize_loader("Neo-Forge") == "neoforge"
        assert LoaderKind.parse("quilt") is LoaderKind.QUILT

    def test_unknown_loader(self):
        assert LoaderKind.parse("liteloader") is None
        assert normalize_loader("LiteLoader") == "liteloader"
        assert normalize_loader(None) is None
