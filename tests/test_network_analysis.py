"""Tests for cdrgraph_workers.analytics.network_analysis."""

from datetime import datetime, timedelta, timezone

import pytest

from cdrgraph_workers.analytics.network_analysis import (
    EMPTY_RESULT_MESSAGE,
    NetworkAnalyzer,
    NetworkQuery,
)
from cdrgraph_workers.analytics.network_graph import ISOLATE

T0 = datetime(2024, 3, 25, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
async def populated_store(store, make_event):
    """a-b x3, b-c x1 (sms), d-e x2, plus a self-call and a one-party event."""
    pairs = [("a", "b"), ("b", "a"), ("a", "b"), ("d", "e"), ("e", "d")]
    events = [
        make_event(caller_number=caller, receiver_number=receiver, timestamp_utc=T0 + timedelta(minutes=i))
        for i, (caller, receiver) in enumerate(pairs)
    ]
    events.append(make_event(caller_number="b", receiver_number="c", event_type="sms",
                             timestamp_utc=T0 + timedelta(days=1)))
    events.append(make_event(caller_number="a", receiver_number="a"))
    events.append(make_event(caller_number="f", receiver_number=None))
    await store.insert_many(events)
    return store


class TestNetworkQuery:

    def test_upload_id_required(self):
        with pytest.raises(ValueError):
            NetworkQuery(upload_id="")

    def test_event_type_validated(self):
        with pytest.raises(ValueError):
            NetworkQuery(upload_id="upload-1", event_type="fax")
        assert NetworkQuery(upload_id="upload-1", event_type="all").event_type is None
        assert NetworkQuery(upload_id="upload-1", event_type="SMS").event_type == "sms"

    def test_min_edge_weight_floor(self):
        assert NetworkQuery(upload_id="upload-1", min_edge_weight=0).min_edge_weight == 1

    def test_filter_excludes_incomplete_pairs(self):
        assert NetworkQuery(upload_id="upload-1").to_filter().complete_pairs_only

    def test_naive_bounds_localized(self):
        query = NetworkQuery(upload_id="upload-1", start=datetime(2024, 3, 1), end=T0)
        assert query.start.utcoffset() == timedelta(hours=5)
        assert query.start.astimezone(timezone.utc) == datetime(2024, 2, 29, 19, 0, tzinfo=timezone.utc)
        assert query.end is T0

    def test_to_dict(self):
        query = NetworkQuery(upload_id="upload-1", start=T0, limit_nodes=5)
        assert query.to_dict() == {
            "from": "2024-03-25T09:30:00+00:00",
            "to": None,
            "eventType": "all",
            "minEdgeWeight": 1,
            "limitNodes": 5,
            "limitEdges": None,
        }


class TestAnalyze:

    async def test_full_graph(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store, resolution=1.0, seed=0)
        result = (await analyzer.analyze(NetworkQuery(upload_id="upload-1"))).to_dict()

        nodes = {node["id"]: node for node in result["graph"]["nodes"]}
        assert set(nodes) == {"a", "b", "c", "d", "e"}
        assert nodes["b"]["degree"] == 2
        assert nodes["b"]["weightedDegree"] == 4
        assert nodes["a"]["totalEvents"] == 3

        edges = result["graph"]["edges"]
        assert [(e["id"], e["weight"]) for e in edges] == [("a|b", 3), ("d|e", 2), ("b|c", 1)]

        stats = result["stats"]
        assert stats["nodeCount"] == 5
        assert stats["edgeCount"] == 3
        assert stats["components"] == 2
        assert result["truncated"] is False
        assert result["truncationReason"] is None
        assert "message" not in result

    async def test_communities_follow_components(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store, resolution=1.0, seed=0)
        result = await analyzer.analyze(NetworkQuery(upload_id="upload-1"))
        community = {node["id"]: node["community"] for node in result.nodes}
        assert community["d"] == community["e"]
        assert community["a"] != community["d"]
        assert ISOLATE not in community.values()

    async def test_event_type_filter(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store)
        result = await analyzer.analyze(NetworkQuery(upload_id="upload-1", event_type="sms"))
        assert {node["id"] for node in result.nodes} == {"b", "c"}
        assert result.filters["eventType"] == "sms"

    async def test_time_filter(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store)
        result = await analyzer.analyze(NetworkQuery(upload_id="upload-1", start=T0 + timedelta(hours=1)))
        assert [edge["id"] for edge in result.edges] == ["b|c"]

    async def test_naive_bounds_are_reference_wall_clock(self, populated_store):
        # 14:00 in Asia/Karachi is 09:00 UTC, before every a-b and d-e event
        analyzer = NetworkAnalyzer(populated_store)
        query = NetworkQuery(upload_id="upload-1", start=datetime(2024, 3, 25, 14, 0),
                             end=datetime(2024, 3, 25, 23, 0))
        result = await analyzer.analyze(query)

        assert [edge["id"] for edge in result.edges] == ["a|b", "d|e"]
        assert result.filters["from"] == "2024-03-25T14:00:00+05:00"

    async def test_min_edge_weight_drops_unconnected_nodes(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store)
        result = await analyzer.analyze(NetworkQuery(upload_id="upload-1", min_edge_weight=2))
        assert {node["id"] for node in result.nodes} == {"a", "b", "d", "e"}

    async def test_requested_node_limit(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store)
        result = await analyzer.analyze(NetworkQuery(upload_id="upload-1", limit_nodes=2))
        assert {node["id"] for node in result.nodes} == {"a", "b"}
        assert result.truncated
        assert result.truncation_reason == "Trimmed to top 2 nodes by weighted degree as requested."

    async def test_forced_trim_over_ceiling(self, populated_store):
        analyzer = NetworkAnalyzer(populated_store, max_nodes=3, forced_trim_limit=2)
        result = await analyzer.analyze(NetworkQuery(upload_id="upload-1"))
        assert len(result.nodes) == 2
        assert result.truncation_reason == (
            "Graph exceeded 3 nodes. Trimmed to top 2 nodes by weighted degree."
        )

    async def test_empty_upload(self, store):
        analyzer = NetworkAnalyzer(store)
        result = (await analyzer.analyze(NetworkQuery(upload_id="missing"))).to_dict()
        assert result["message"] == EMPTY_RESULT_MESSAGE
        assert result["graph"] == {"nodes": [], "edges": []}
        assert result["stats"]["nodeCount"] == 0
        assert result["communities"] == []
