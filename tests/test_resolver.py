"""Tests for config tree resolution."""

from types import MappingProxyType

import pytest

from lbcfg.resolver import (
    BackendIdList,
    MissingKeyError,
    MissingKeyLevel,
    build_tree,
    resolve,
)

TREE = {"sf": {"test": {"lita": [42, 84]}}}


def test_resolve_returns_stored_ids():
    """A full path resolves to the stored id list itself."""
    result = resolve(TREE, "sf", "test", "lita")
    assert isinstance(result, BackendIdList)
    assert result.ids is TREE["sf"]["test"]["lita"]
    assert list(result) == [42, 84]
    assert len(result) == 2


def test_resolve_is_case_insensitive():
    """Lookup ignores case."""
    assert resolve(TREE, "SF", "Test", "LITA") == resolve(TREE, "sf", "test", "lita")


def test_resolve_missing_region():
    """A missing region is reported at the region level."""
    result = resolve({"sfx": TREE["sf"]}, "sf", "test", "lita")
    assert result == MissingKeyError(MissingKeyLevel.REGION, "sf")


def test_resolve_missing_environment():
    """A missing environment is reported with its region."""
    result = resolve({"sf": {"testx": {"lita": [42]}}}, "sf", "test", "lita")
    assert result == MissingKeyError(MissingKeyLevel.ENVIRONMENT, "sf", "test")


def test_resolve_missing_balancer():
    """A missing balancer is reported with the full path."""
    result = resolve({"sf": {"test": {"litax": [42]}}}, "sf", "test", "lita")
    assert result == MissingKeyError(MissingKeyLevel.BALANCER, "sf", "test", "lita")


def test_resolve_reports_shallowest_missing_segment():
    """A missing region wins even if nothing below it exists either."""
    result = resolve({}, "nowhere", "nothing", "none")
    assert result.level == MissingKeyLevel.REGION


@pytest.mark.parametrize("leaf", ["42,84", 42, {"id": 42}, None, b"42"])
def test_resolve_non_sequence_leaf_is_shape_mismatch(leaf):
    """Leaves that aren't id lists are shape mismatches."""
    result = resolve({"sf": {"test": {"lita": leaf}}}, "sf", "test", "lita")
    assert isinstance(result, MissingKeyError)
    assert result.level == MissingKeyLevel.SHAPE_MISMATCH


@pytest.mark.parametrize("tree", [
    {"sf": ["test"]},
    {"sf": {"test": "lita"}},
    {"sf": None},
])
def test_resolve_bad_intermediate_shape_does_not_raise(tree):
    """Non-mapping levels are shape mismatches, not exceptions."""
    result = resolve(tree, "sf", "test", "lita")
    assert result.level == MissingKeyLevel.SHAPE_MISMATCH


def test_resolve_accepts_tuple_and_string_ids():
    """Tuples and string ids resolve like lists."""
    tree = {"sf": {"test": {"lita": ("lb-a", "lb-b")}}}
    assert list(resolve(tree, "sf", "test", "lita")) == ["lb-a", "lb-b"]


def test_resolve_is_idempotent():
    """Resolving twice gives equal results and leaves the tree alone."""
    first = resolve(TREE, "sf", "test", "lita")
    second = resolve(TREE, "sf", "test", "lita")
    assert first == second
    assert TREE == {"sf": {"test": {"lita": [42, 84]}}}


class TestBuildTree:
    """Tests for freezing loaded configuration."""

    def test_lower_cases_keys_at_every_level(self):
        """Keys are lower-cased at every level."""
        tree = build_tree({"SF": {"Test": {"LITA": [42]}}})
        assert list(resolve(tree, "sf", "test", "lita")) == [42]

    def test_tree_is_read_only(self):
        """The frozen tree rejects writes at every level."""
        tree = build_tree(TREE)
        assert isinstance(tree, MappingProxyType)
        with pytest.raises(TypeError):
            tree["ny"] = {}
        with pytest.raises(TypeError):
            tree["sf"]["test"]["other"] = [1]

    def test_leaf_lists_become_tuples(self):
        """Id lists are stored as tuples."""
        tree = build_tree(TREE)
        assert tree["sf"]["test"]["lita"] == (42, 84)

    def test_does_not_alias_source(self):
        """Later changes to the source don't reach the tree."""
        source = {"sf": {"test": {"lita": [42]}}}
        tree = build_tree(source)
        source["sf"]["test"]["lita"].append(99)
        assert tree["sf"]["test"]["lita"] == (42,)

    def test_bad_shapes_survive_for_resolution(self):
        """Malformed leaves are kept so resolution can report them."""
        tree = build_tree({"sf": {"test": {"lita": "42"}}})
        result = resolve(tree, "sf", "test", "lita")
        assert result.level == MissingKeyLevel.SHAPE_MISMATCH
