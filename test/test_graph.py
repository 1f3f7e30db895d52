"""Tests for kanban_workspace.graph - edge list and traversal algorithms."""

import uuid

import pytest

from kanban_workspace.graph import (
    Edge,
    EdgeDirection,
    Graph,
    build_adjacency,
    has_cycle,
    has_path,
    reachable_from,
    would_create_cycle,
)


@pytest.fixture
def ids():
    return [uuid.uuid4() for _ in range(4)]


def test_has_path_follows_chain(ids):
    a, b, c, d = ids
    adjacency = {a: [b], b: [c]}
    assert has_path(adjacency, a, c)
    assert not has_path(adjacency, c, a)
    assert not has_path(adjacency, a, d)


def test_has_path_to_self_is_true(ids):
    assert has_path({}, ids[0], ids[0])


def test_would_create_cycle(ids):
    a, b, c, _ = ids
    adjacency = {a: [b], b: [c]}
    assert would_create_cycle(adjacency, c, a)
    assert not would_create_cycle(adjacency, a, c)


def test_has_cycle_detects_loop(ids):
    a, b, c, _ = ids
    assert not has_cycle({a: [b], b: [c]})
    assert has_cycle({a: [b], b: [c], c: [a]})


def test_has_cycle_on_diamond_is_false(ids):
    a, b, c, d = ids
    assert not has_cycle({a: [b, c], b: [d], c: [d]})


def test_reachable_from_includes_start(ids):
    a, b, c, d = ids
    assert reachable_from({a: [b], b: [c]}, a) == {a, b, c}
    assert reachable_from({a: [b]}, d) == {d}


def test_build_adjacency_bidirectional_edges_go_both_ways(ids):
    a, b, _, _ = ids
    adjacency = build_adjacency(
        [Edge(source=a, target=b, label="x", direction=EdgeDirection.BIDIRECTIONAL)]
    )
    assert adjacency[a] == [b]
    assert adjacency[b] == [a]


def test_remove_edge_matches_bidirectional_either_way(ids):
    a, b, _, _ = ids
    graph = Graph([Edge(source=a, target=b, label="x", direction=EdgeDirection.BIDIRECTIONAL)])
    assert graph.remove_edge(b, a)
    assert len(graph) == 0


def test_remove_edge_directed_needs_exact_direction(ids):
    a, b, _, _ = ids
    graph = Graph([Edge(source=a, target=b, label="x")])
    assert not graph.remove_edge(b, a)
    assert graph.remove_edge(a, b)


def test_archive_node_hides_edges_from_active_queries(ids):
    a, b, c, _ = ids
    graph = Graph([Edge(source=a, target=b, label="x"), Edge(source=b, target=c, label="x")])
    graph.archive_node(b)

    assert graph.edge_count() == 2
    assert graph.active_edge_count() == 0
    assert graph.reachable_from(a) == {a}

    graph.unarchive_node(b)
    assert graph.reachable_from(a) == {a, b, c}


def test_remove_node_drops_incident_edges(ids):
    a, b, c, _ = ids
    graph = Graph([Edge(source=a, target=b, label="x"), Edge(source=c, target=a, label="x")])
    graph.remove_node(a)
    assert graph.edges == []


def test_adjacency_list_filters_by_label(ids):
    a, b, c, _ = ids
    graph = Graph([Edge(source=a, target=b, label="x"), Edge(source=b, target=c, label="y")])
    assert graph.would_create_cycle(c, a)
    assert not graph.would_create_cycle(c, a, label="x")


def test_edge_roundtrip_keeps_archive_state(ids):
    a, b, _, _ = ids
    edge = Edge(source=a, target=b, label="x")
    edge.archive()
    restored = Edge.from_dict(edge.to_dict(), str)
    assert restored.source == a
    assert restored.target == b
    assert not restored.is_active
