"""Tests for cdrgraph_workers.analytics.network_graph."""

from datetime import datetime, timezone

import networkx as nx
import pytest

from cdrgraph_workers.analytics.network_graph import (
    ISOLATE,
    EdgeAggregate,
    NodeAggregate,
    build_graph,
    compute_graph_stats,
    detect_communities,
    edge_to_dict,
    node_to_dict,
    trim_graph,
    weighted_degree,
)


def nodes(*ids, **weighted):
    return [NodeAggregate(id=node_id, weighted_degree=weighted.get(node_id, 0)) for node_id in ids]


@pytest.fixture
def disconnected() -> nx.Graph:
    """a-b (weight 3), c-d (weight 1) and isolated e."""
    edges = [EdgeAggregate("a", "b", weight=3), EdgeAggregate("c", "d", weight=1)]
    return build_graph(edges, nodes("a", "b", "c", "d", "e")).graph


class TestBuildGraph:

    def test_nodes_and_edges(self, disconnected):
        assert sorted(disconnected.nodes) == ["a", "b", "c", "d", "e"]
        assert disconnected["a"]["b"]["weight"] == 3

    def test_self_loops_counted_not_added(self):
        result = build_graph([EdgeAggregate("a", "a", weight=4), EdgeAggregate("a", "b", weight=1)], nodes("a", "b"))
        assert result.self_loop_count == 1
        assert nx.number_of_selfloops(result.graph) == 0
        assert result.graph.number_of_edges() == 1

    def test_invalid_ids_produce_warnings(self):
        result = build_graph(
            [EdgeAggregate("a", "zz", weight=1), EdgeAggregate(None, "a", weight=1)],
            nodes("a", "  "),
        )
        assert list(result.graph.nodes) == ["a"]
        assert result.graph.number_of_edges() == 0
        assert len(result.warnings) == 3

    def test_repeated_edge_merges_weight(self):
        result = build_graph(
            [EdgeAggregate("a", "b", weight=2), EdgeAggregate("b", "a", weight=5)],
            nodes("a", "b"),
        )
        assert result.graph["a"]["b"]["weight"] == 7
        assert len(result.warnings) == 1


class TestStats:

    def test_disconnected_graph(self, disconnected):
        stats = compute_graph_stats(disconnected)
        assert stats["nodeCount"] == 5
        assert stats["edgeCount"] == 2
        assert stats["components"] == 3
        assert stats["isolates"] == 1
        assert stats["density"] == 0.2
        assert stats["maxDegree"] == 1
        assert stats["avgDegree"] == 0.8
        assert stats["maxWeightedDegree"] == 3
        assert stats["avgWeightedDegree"] == 1.6

    def test_empty_graph(self):
        stats = compute_graph_stats(nx.Graph())
        assert stats["nodeCount"] == 0
        assert stats["components"] == 0

    def test_weighted_degree_prefers_stored_value(self):
        graph = build_graph([EdgeAggregate("a", "b", weight=2)], nodes("a", "b", a=9)).graph
        assert weighted_degree(graph, "a") == 9
        assert weighted_degree(graph, "b") == 2


class TestCommunities:

    def test_components_become_communities(self, disconnected):
        result = detect_communities(disconnected, resolution=1.0, seed=0)
        assert result.assignments["a"] == result.assignments["b"] == "c0"
        assert result.assignments["c"] == result.assignments["d"] == "c1"
        assert result.assignments["e"] == ISOLATE

    def test_summaries(self, disconnected):
        summaries = {c["id"]: c for c in detect_communities(disconnected, seed=0).communities}
        assert summaries["c0"]["size"] == 2
        assert summaries["c0"]["totalEdgeWeight"] == 3
        assert [n["id"] for n in summaries["c0"]["topNodes"]] == ["a", "b"]
        assert summaries[ISOLATE]["size"] == 1
        assert summaries[ISOLATE]["totalEdgeWeight"] == 0

    def test_deterministic(self):
        graph = nx.karate_club_graph()
        graph = nx.relabel_nodes(graph, {n: f"n{n:02d}" for n in graph.nodes})
        first = detect_communities(graph, resolution=1.0, seed=42)
        second = detect_communities(graph, resolution=1.0, seed=42)
        assert first.assignments == second.assignments
        assert first.communities == second.communities

    def test_empty_graph(self):
        result = detect_communities(nx.Graph())
        assert result.assignments == {}
        assert result.communities == []


class TestTrimAndSerialize:

    def test_trim_keeps_top_weighted_with_id_ties(self):
        graph = build_graph(
            [EdgeAggregate("a", "b", weight=5), EdgeAggregate("b", "c", weight=5)],
            nodes("b", "a", "c", b=10, a=10, c=5),
        ).graph
        trimmed = trim_graph(graph, 2)
        assert set(trimmed.nodes) == {"a", "b"}
        assert trimmed.number_of_edges() == 1
        assert trimmed.has_edge("a", "b")

    def test_trim_noop_under_limit(self, disconnected):
        assert trim_graph(disconnected, 10) is disconnected

    def test_edge_to_dict_orders_endpoints(self):
        first_seen = datetime(2024, 3, 25, 9, 30, tzinfo=timezone.utc)
        document = edge_to_dict("b", "a", {"weight": 2, "first_seen": first_seen})
        assert document["id"] == "a|b"
        assert (document["source"], document["target"]) == ("a", "b")
        assert document["firstSeen"] == "2024-03-25T09:30:00+00:00"

    def test_node_to_dict(self, disconnected):
        document = node_to_dict(disconnected, "e", ISOLATE)
        assert document["id"] == "e"
        assert document["community"] == ISOLATE
        assert document["firstSeen"] is None
