"""Tests for the graph builder."""

import pytest

from fabrun.dag import build_graph, find_cycle, topo_levels
from fabrun.errors import ConfigError
from fabrun.model import Action, Stage, Step

from conftest import make_stage


def test_builds_dependencies_and_dependents(diamond):
    assert diamond.order == ("A", "B", "C", "D")
    assert diamond.dependencies["D"] == ("B", "C")
    assert diamond.dependents["A"] == ("B", "C")
    assert diamond.transitive_requires("D") == {"A", "B", "C"}
    assert diamond.transitive_dependents("A") == {"B", "C", "D"}


def test_topo_levels_keep_declaration_order(diamond):
    assert topo_levels(diamond) == [["A"], ["B", "C"], ["D"]]


def test_two_step_cycle_names_both_steps():
    stage, actions = make_stage("s", ("A", ["B"]), ("B", ["A"]))
    with pytest.raises(ConfigError) as info:
        build_graph(stage, actions)
    assert info.value.cycle == ["A", "B"]
    assert "A -> B -> A" in str(info.value)


def test_cycle_members_in_traversal_order():
    stage, actions = make_stage("s", ("X",), ("A", ["C"]), ("B", ["A"]), ("C", ["B", "X"]))
    with pytest.raises(ConfigError) as info:
        build_graph(stage, actions)
    assert info.value.cycle == ["A", "C", "B"]


def test_self_dependency_is_a_cycle():
    stage, actions = make_stage("s", ("A", ["A"]))
    with pytest.raises(ConfigError, match="cycle"):
        build_graph(stage, actions)


def test_unknown_dependency():
    stage, actions = make_stage("s", ("A", ["ghost"]))
    with pytest.raises(ConfigError, match="unknown dependency"):
        build_graph(stage, actions)


def test_unknown_action():
    stage = Stage("s", (Step(action="missing"),))
    with pytest.raises(ConfigError, match="unknown action"):
        build_graph(stage, {"other": Action.command("other", "true")})


def test_duplicate_step_names():
    stage = Stage("s", (Step(action="a"), Step(action="a")))
    with pytest.raises(ConfigError, match="duplicate step names"):
        build_graph(stage, {"a": Action.command("a", "true")})


def test_same_action_twice_under_different_names():
    stage = Stage("s", (Step(action="a", name="first"), Step(action="a", name="second", requires=("first",))))
    graph = build_graph(stage, {"a": Action.command("a", "true")})
    assert graph.order == ("first", "second")
    assert graph.action_for("second").name == "a"


def test_find_cycle_on_acyclic_graph():
    assert find_cycle(["a", "b"], {"a": (), "b": ("a",)}) == []
