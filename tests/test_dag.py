import pytest

from releaseci.dag import build_dag, topo_levels, transitive_dependents
from releaseci.dsl import job, sh
from releaseci.errors import ConfigurationError


def _j(name, *needs):
    return job(name, sh("noop", "true"), needs=list(needs))


def test_levels():
    adj, indeg = build_dag([_j("lint"), _j("test", "lint"), _j("fmt"), _j("release", "test", "fmt")])
    assert topo_levels(adj, indeg) == [["fmt", "lint"], ["test"], ["release"]]
    assert transitive_dependents(adj, "lint") == {"test", "release"}


def test_duplicate_names():
    with pytest.raises(ConfigurationError) as exc:
        build_dag([_j("a"), _j("a")])
    assert exc.value.details["duplicates"] == "a"


def test_missing_dependency():
    with pytest.raises(ConfigurationError):
        build_dag([_j("a", "ghost")])


def test_cycle():
    adj, indeg = build_dag([_j("a", "c"), _j("b", "a"), _j("c", "b")])
    with pytest.raises(ConfigurationError):
        topo_levels(adj, indeg)
