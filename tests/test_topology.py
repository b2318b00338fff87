from __future__ import annotations

import math

import pytest

from relaynav.errors import InvariantViolation, NoPathError, NoSuchEdgeInRouteError, RelayNotFoundError
from relaynav.model.node import Relay
from relaynav.model.position import Position
from relaynav.topology.analyzer import TopologyAnalyzer

R1, R2, R3, R4 = Relay(1001), Relay(1002), Relay(1003), Relay(1004)


def _line() -> TopologyAnalyzer:
    """2001 - 2002 - 2003 - 2004 with weights 10, 20, 30."""
    return TopologyAnalyzer.from_edges([
        {"start": 2001, "destination": 2002, "weight": 10},
        {"start": 2002, "destination": 2003, "weight": 20},
        {"start": 2003, "destination": 2004, "weight": 30},
    ])


def test_sample_distances() -> None:
    t = TopologyAnalyzer.sample()
    assert t.distance(1001, 1002) == 100.0
    assert t.distance(1001, 1004) == 150.0
    assert t.distance(1003, 1004) == 120.0
    assert t.distance(1002, 1002) == 0.0


def test_distance_is_symmetric() -> None:
    t = TopologyAnalyzer.sample()
    ids = sorted(t.relays)
    for a in ids:
        for b in ids:
            assert t.distance(a, b) == t.distance(b, a)


def test_unknown_relay_raises_not_found() -> None:
    t = TopologyAnalyzer.sample()
    with pytest.raises(RelayNotFoundError) as excinfo:
        t.distance(1001, 1999)
    assert excinfo.value.relay_id == 1999
    with pytest.raises(KeyError):
        t.relay(1999)


def test_disconnected_relays_raise_no_path() -> None:
    t = TopologyAnalyzer.sample()
    t.add_relay(1005)
    with pytest.raises(NoPathError):
        t.distance(1001, 1005)


def test_from_edges_reads_radii_and_skips_bad_records() -> None:
    t = TopologyAnalyzer.from_edges([
        {"start": 1001, "destination": 1002, "weight": 10, "startRadius": 2.0},
        {"start": 1002, "weight": 5},
        {"start": 1002, "destination": 1003, "weight": "x"},
        {"start": 1002, "destination": 1003, "weight": 4, "startRadius": 9.0},
    ])
    assert sorted(t.relays) == [1001, 1002, 1003]
    assert t.relay(1001).radius == 2.0
    assert t.relay(1002).radius == pytest.approx(math.sqrt(10))
    assert t.distance(1001, 1003) == 14.0


def test_from_edges_requires_an_edge() -> None:
    with pytest.raises(ValueError):
        TopologyAnalyzer.from_edges([{"start": 1001}])


def test_from_edges_rejects_sensor_ids() -> None:
    with pytest.raises(ValueError):
        TopologyAnalyzer.from_edges([{"start": 5, "destination": 1002, "weight": 1}])


def test_negative_weight_rejected() -> None:
    t = TopologyAnalyzer()
    with pytest.raises(ValueError):
        t.add_edge(1001, 1002, -1.0)


def test_graph_edge_position_finds_containing_edge() -> None:
    t = TopologyAnalyzer.sample()
    assert t.graph_edge_position(Position(R1, R4, 120.0, 150.0)) == Position(R2, R4, 20.0, 50.0)
    assert t.graph_edge_position(Position(R1, R4, 40.0, 150.0)) == Position(R1, R2, 40.0, 100.0)


def test_graph_edge_position_at_end_of_path() -> None:
    t = TopologyAnalyzer.sample()
    assert t.graph_edge_position(Position(R1, R4, 150.0, 150.0)) == Position(R2, R4, 50.0, 50.0)


def test_graph_edge_position_same_node_is_identity() -> None:
    t = TopologyAnalyzer.sample()
    pos = Position(R2, R2, 0.0, 0.0)
    assert t.graph_edge_position(pos) is pos


def test_graph_edge_position_rejects_offset_beyond_path() -> None:
    t = TopologyAnalyzer.sample()
    with pytest.raises(InvariantViolation):
        t.graph_edge_position(Position(R1, R4, 200.0, 150.0))


def test_total_route_position_on_route() -> None:
    t = TopologyAnalyzer.sample()
    assert t.total_route_position(Position(R2, R4, 20.0, 50.0), R1, R4) == Position(R1, R4, 120.0, 150.0)


def test_total_route_position_reversed_edge() -> None:
    t = TopologyAnalyzer.sample()
    assert t.total_route_position(Position(R4, R2, 30.0, 50.0), R1, R4).offset == 120.0
    assert t.total_route_position(Position(R2, R1, 30.0, 100.0), R1, R4).offset == 70.0


def test_total_route_position_inverts_graph_edge_position() -> None:
    t = TopologyAnalyzer.sample()
    for offset in (0.0, 12.5, 99.0, 100.0, 130.0, 150.0):
        edge = t.graph_edge_position(Position(R3, R4, offset * 0.8, 120.0))
        route = t.total_route_position(edge, R3, R4)
        assert route.offset == pytest.approx(offset * 0.8)
        assert t.graph_edge_position(route).offset == pytest.approx(edge.offset)


def test_total_route_position_degenerate_endpoints() -> None:
    t = TopologyAnalyzer.sample()
    assert t.total_route_position(Position(R4, R4, 0.0, 0.0), R1, R4) == Position(R1, R4, 150.0, 150.0)
    assert t.total_route_position(Position(R1, R1, 0.0, 0.0), R1, R4) == Position(R1, R4, 0.0, 150.0)
    assert t.total_route_position(Position(R2, R2, 0.0, 0.0), R1, R4).offset == 100.0


def test_total_route_position_contained_sub_path() -> None:
    t = _line()
    b, d = t.relay(2002), t.relay(2004)
    pos = t.total_route_position(Position(b, d, 25.0, 50.0), t.relay(2001), d)
    assert pos.offset == 35.0
    assert pos.total == 60.0


def test_total_route_position_fully_travelled_waypoint() -> None:
    t = TopologyAnalyzer.sample()
    pos = t.total_route_position(Position(R3, R2, 70.0, 70.0), R1, R4)
    assert pos == Position(R1, R4, 100.0, 150.0)


def test_total_route_position_off_route_raises() -> None:
    t = TopologyAnalyzer.sample()
    with pytest.raises(NoSuchEdgeInRouteError):
        t.total_route_position(Position(R3, R2, 10.0, 70.0), R1, R4)


def test_earliest_shared_node_where_routes_merge() -> None:
    t = TopologyAnalyzer.sample()
    assert t.earliest_shared_node(R1, R3, R4) == R2


def test_earliest_shared_node_falls_back_to_first_start() -> None:
    t = TopologyAnalyzer.sample()
    assert t.earliest_shared_node(R1, R2, R4) == R1
    assert t.earliest_shared_node(R1, R1, R2) == R1


def test_contains_edge_on_route() -> None:
    t = TopologyAnalyzer.sample()
    route = Position(R1, R4, 0.0, math.inf)
    assert t.contains(R2, R4, route)
    assert t.contains(R4, R2, route)
    assert not t.contains(R3, R2, route)


def test_contains_degenerate_route() -> None:
    t = TopologyAnalyzer.sample()
    assert t.contains(R1, R2, Position(R2, R2, 0.0, math.inf))


def test_contains_handles_missing_data() -> None:
    t = TopologyAnalyzer.sample()
    assert not t.contains(None, R2, Position(R1, R2, 0.0, 100.0))
    assert not t.contains(R1, R2, None)
