"""
Test 3: Dependency graph and cycle detection (graph.py)
"""

import logging

import pytest

from modulary.graph import CycleDetector, DeclaredDependencyGraph
from modulary.ids import ModuleId


def mid(key):
    return ModuleId.coerce(key)


def build(edges):
    graph = DeclaredDependencyGraph()
    for node, deps in edges.items():
        graph.set_dependencies(mid(node), [mid(d) for d in deps])
    return graph


# ============================================================================
# DeclaredDependencyGraph
# ============================================================================

class TestDeclaredDependencyGraph:

    def test_referenced_nodes_are_added(self):
        graph = build({"core.b": ["core.a"]})
        assert mid("core.a") in graph
        assert graph.dependencies_of(mid("core.a")) == []
        assert len(graph) == 2

    def test_dependents(self):
        graph = build({"x.b": ["x.a"], "x.c": ["x.a"], "x.d": []})
        assert set(graph.dependents_of(mid("x.a"))) == {mid("x.b"), mid("x.c")}

    def test_duplicate_edges_collapsed(self):
        graph = build({"x.b": ["x.a", "x.a"]})
        assert graph.dependencies_of(mid("x.b")) == [mid("x.a")]

    def test_dependencies_of_returns_copy(self):
        graph = build({"x.b": ["x.a"]})
        graph.dependencies_of(mid("x.b")).append(mid("x.z"))
        assert graph.dependencies_of(mid("x.b")) == [mid("x.a")]


# ============================================================================
# CycleDetector
# ============================================================================

class TestCycleDetector:

    def test_self_reference(self):
        graph = DeclaredDependencyGraph()
        detector = CycleDetector()
        assert detector.has_cycle(mid("x.a"), [mid("x.a")], graph)

    def test_two_node_cycle(self):
        graph = build({"x.a": ["x.b"]})
        cycle = CycleDetector().find_cycle(mid("x.b"), [mid("x.a")], graph)
        assert cycle == [mid("x.b"), mid("x.a")]

    def test_long_cycle(self):
        graph = build({"x.a": ["x.b"], "x.b": ["x.c"]})
        assert CycleDetector().has_cycle(mid("x.c"), [mid("x.a")], graph)

    def test_no_cycle(self):
        graph = build({"x.a": ["x.b"], "x.b": []})
        assert not CycleDetector().has_cycle(mid("x.c"), [mid("x.a")], graph)

    def test_diamond_is_not_a_cycle(self):
        graph = build({
            "x.b": ["x.d"],
            "x.c": ["x.d"],
            "x.d": [],
        })
        assert not CycleDetector().has_cycle(mid("x.a"), [mid("x.b"), mid("x.c")], graph)

    def test_wide_diamond_explores_shared_nodes_once(self):
        class CountingGraph:
            def __init__(self, inner):
                self.inner = inner
                self.calls = []

            def dependencies_of(self, node):
                self.calls.append(node)
                return self.inner.dependencies_of(node)

        edges = {f"x.m{i}": ["x.shared"] for i in range(20)}
        edges["x.shared"] = ["x.leaf"]
        graph = CountingGraph(build(edges))

        roots = [mid(f"x.m{i}") for i in range(20)]
        assert not CycleDetector().has_cycle(mid("x.root"), roots, graph)
        assert graph.calls.count(mid("x.shared")) == 1

    def test_proposed_edges_replace_existing(self):
        # x.a currently depends on x.b; the proposal drops that edge
        graph = build({"x.a": ["x.b"], "x.b": ["x.c"]})
        assert not CycleDetector().has_cycle(mid("x.a"), [], graph)

    def test_depth_overflow_reports_no_cycle(self, caplog):
        chain = {f"x.n{i}": [f"x.n{i + 1}"] for i in range(10)}
        graph = build(chain)
        detector = CycleDetector(max_depth=3)
        with caplog.at_level(logging.WARNING, logger="modulary.graph"):
            assert not detector.has_cycle(mid("x.n10"), [mid("x.n0")], graph)
        assert "exceeded max depth" in caplog.text

    def test_depth_overflow_as_cycle(self):
        chain = {f"x.n{i}": [f"x.n{i + 1}"] for i in range(10)}
        graph = build(chain)
        detector = CycleDetector(max_depth=3, overflow_is_cycle=True)
        assert detector.has_cycle(mid("x.top"), [mid("x.n0")], graph)

    @pytest.mark.parametrize("depth", [5, 50])
    def test_deep_cycle_within_bound(self, depth):
        chain = {f"x.n{i}": [f"x.n{i + 1}"] for i in range(depth)}
        graph = build(chain)
        assert CycleDetector().has_cycle(mid(f"x.n{depth}"), [mid("x.n0")], graph)
