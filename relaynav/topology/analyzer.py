"""Relay topology: shortest-path distances and path/edge decompositions."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

import networkx as nx

from relaynav.errors import (
    InvariantViolation,
    NoPathError,
    NoSuchEdgeInRouteError,
    RelayNotFoundError,
)
from relaynav.model.node import Relay
from relaynav.model.position import AnyPosition, Position, same_length

log = logging.getLogger(__name__)

_SAMPLE_EDGES = [
    (1001, 1002, 100.0),
    (1003, 1002, 70.0),
    (1002, 1004, 50.0),
]


def _pairs(path: list[int]) -> list[tuple[int, int]]:
    return list(zip(path, path[1:]))


class TopologyAnalyzer:
    """Undirected weighted graph over relays.

    All queries run Dijkstra over the non-negative edge weights. Once the
    locator owns an analyzer it only reads from it.
    """

    def __init__(self) -> None:
        self._graph = nx.Graph()
        self._relays: dict[int, Relay] = {}

    @classmethod
    def sample(cls) -> TopologyAnalyzer:
        """Four relays around hub 1002, used for demos and tests."""
        topology = cls()
        for start, dest, weight in _SAMPLE_EDGES:
            topology.add_edge(start, dest, weight)
        return topology

    @classmethod
    def from_edges(cls, records: Iterable[Mapping]) -> TopologyAnalyzer:
        """Build a topology from decoded edge records.

        Each record needs `start`, `destination` and `weight` and may carry
        `startRadius` / `destinationRadius`. A relay keeps the radius of its
        first mention. Incomplete records are skipped.
        """
        topology = cls()
        loaded = 0
        for record in records:
            try:
                start = int(record["start"])
                dest = int(record["destination"])
                weight = float(record["weight"])
            except (KeyError, TypeError, ValueError):
                log.warning("edge record %r lacks start/destination/weight, skipping", record)
                continue
            for relay_id, radius_key in ((start, "startRadius"), (dest, "destinationRadius")):
                if not topology.has_relay(relay_id):
                    radius = record.get(radius_key)
                    topology.add_relay(relay_id, float(radius) if radius is not None else None)
            topology.add_edge(start, dest, weight)
            loaded += 1

        if loaded == 0:
            raise ValueError("topology contains no valid edges")
        log.debug("loaded %d edges between %d relays", loaded, len(topology.relays))
        return topology

    # -- construction -----------------------------------------------------

    def add_relay(self, relay_id: int, radius: float | None = None) -> Relay:
        relay = Relay(relay_id) if radius is None else Relay(relay_id, radius)
        self._relays[relay_id] = relay
        self._graph.add_node(relay_id)
        return relay

    def add_edge(self, start_id: int, dest_id: int, weight: float) -> None:
        if weight < 0:
            raise ValueError(f"negative weight {weight} on edge {start_id}-{dest_id}")
        for relay_id in (start_id, dest_id):
            if not self.has_relay(relay_id):
                self.add_relay(relay_id)
        self._graph.add_edge(start_id, dest_id, weight=float(weight))

    # -- lookups ----------------------------------------------------------

    @property
    def relays(self) -> Mapping[int, Relay]:
        return self._relays

    def has_relay(self, relay_id: int) -> bool:
        return relay_id in self._relays

    def relay(self, relay_id: int) -> Relay:
        try:
            return self._relays[relay_id]
        except KeyError:
            raise RelayNotFoundError(relay_id) from None

    def _weight(self, a: int, b: int) -> float:
        return self._graph[a][b]["weight"]

    def _along(self, path: list[int], index: int) -> float:
        """Length of `path` from its first vertex up to `path[index]`."""
        return sum(self._weight(a, b) for a, b in _pairs(path[: index + 1]))

    def _shortest_path(self, start_id: int, dest_id: int) -> tuple[float, list[int]]:
        for relay_id in (start_id, dest_id):
            if relay_id not in self._relays:
                raise RelayNotFoundError(relay_id)
        try:
            length, path = nx.single_source_dijkstra(
                self._graph, start_id, dest_id, weight="weight"
            )
        except nx.NetworkXNoPath:
            raise NoPathError(start_id, dest_id) from None
        return float(length), path

    # -- queries ----------------------------------------------------------

    def distance(self, src_id: int, dest_id: int) -> float:
        """Weight of the shortest path between two relays."""
        length, _ = self._shortest_path(src_id, dest_id)
        return length

    def graph_edge_position(self, position: AnyPosition) -> Position:
        """Re-express a path position relative to the one edge containing it."""
        if not position.anchored:
            raise InvariantViolation(f"cannot place {position} on an edge without its origin")
        if position.start == position.dest:
            return position

        _, path = self._shortest_path(position.start.id, position.dest.id)
        left = position.offset
        for a, b in _pairs(path):
            weight = self._weight(a, b)
            if weight >= left or same_length(weight, left):
                return Position(self._relays[a], self._relays[b], min(left, weight), weight)
            left -= weight

        raise InvariantViolation(
            f"offset {position.offset} exceeds the path from {position.start} to {position.dest}"
        )

    def total_route_position(self, edge_position: Position, start: Relay, end: Relay) -> Position:
        """Re-express an edge position relative to the route from `start` to `end`.

        The route is the shortest path between the two relays. The edge either
        lies on it (in either orientation), its shortest path is a piece of the
        route, or the position sits exactly on one of its end vertices and that
        vertex is a waypoint of the route.
        """
        length, path = self._shortest_path(start.id, end.id)
        a, b = edge_position.start.id, edge_position.dest.id

        if not self._graph.has_edge(a, b):
            if a == b:
                if b == end.id:
                    return Position(start, end, length, length)
                if a == start.id:
                    return Position(start, end, 0.0, length)

            _, sub_path = self._shortest_path(a, b)
            if a in path and b in path:
                ia, ib = path.index(a), path.index(b)
                piece = path[min(ia, ib): max(ia, ib) + 1]
                if piece == sub_path or piece == sub_path[::-1]:
                    along = self._along(path, ia)
                    offset = along + edge_position.offset if ia <= ib else along - edge_position.offset
                    return Position(start, end, offset, length)

            raise NoSuchEdgeInRouteError(
                f"{edge_position.start}-{edge_position.dest} is no piece of the route {path}"
            )

        for index, (u, v) in enumerate(_pairs(path)):
            if {u, v} == {a, b}:
                along = self._along(path, index)
                if u == a:
                    return Position(start, end, along + edge_position.offset, length)
                return Position(start, end, along + self._weight(u, v) - edge_position.offset, length)

        if edge_position.fully_travelled and b in path:
            return Position(start, end, self._along(path, path.index(b)), length)
        if same_length(edge_position.offset, 0.0) and a in path:
            return Position(start, end, self._along(path, path.index(a)), length)

        raise NoSuchEdgeInRouteError(
            f"edge {edge_position.start}-{edge_position.dest} is not on the route {path}"
        )

    def earliest_shared_node(self, start1: Relay, start2: Relay, dest: Relay) -> Relay:
        """Last vertex, walking back from `dest`, shared by the routes of both starts.

        Falls back to `start1` when one route is a tail of the other.
        """
        _, path1 = self._shortest_path(start1.id, dest.id)
        _, path2 = self._shortest_path(start2.id, dest.id)

        k = 1
        while k < len(path1) and k < len(path2):
            if path1[-1 - k] != path2[-1 - k]:
                return self._relays[path1[-k]]
            k += 1
        return start1

    def contains(
        self,
        edge_start: Relay | None,
        edge_end: Relay | None,
        position: AnyPosition | None,
    ) -> bool:
        """Whether the route described by `position` runs over the given edge."""
        if edge_start is None or edge_end is None or position is None:
            return False
        if position.start is None or position.dest is None:
            return False

        _, route = self._shortest_path(position.start.id, position.dest.id)
        if position.start == position.dest and position.start.id in route:
            return True

        if not self._graph.has_edge(edge_start.id, edge_end.id):
            return False
        edge = {edge_start.id, edge_end.id}
        return any({u, v} == edge for u, v in _pairs(route))
