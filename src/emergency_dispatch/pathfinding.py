"""Shortest-path strategies over a :class:`NetworkGraph`.

Both strategies relax edges by their effective weight (travel time scaled by
congestion) and never traverse blocked edges. An unreachable destination is
not an error: it produces an invalid :class:`PathResult` whose cost is
``INFEASIBLE``.
"""

from __future__ import annotations

import heapq
import itertools
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from emergency_dispatch.errors import InvalidArgumentError, require
from emergency_dispatch.models import Location
from emergency_dispatch.network import NetworkGraph

INFEASIBLE = math.inf


@dataclass(frozen=True)
class PathResult:
    valid: bool
    total_cost: float
    path: Tuple[Location, ...] = ()

    @classmethod
    def infeasible(cls) -> PathResult:
        return cls(valid=False, total_cost=INFEASIBLE, path=())

    @property
    def location_ids(self) -> List[str]:
        return [location.location_id for location in self.path]

    def describe(self) -> str:
        if not self.valid:
            return "No path found"
        route = " -> ".join(location.name for location in self.path)
        return f"{route} (cost {self.total_cost:.2f})"


def _reconstruct(previous: Dict[Location, Location], source: Location, destination: Location) -> List[Location]:
    path = []
    current: Optional[Location] = destination
    while current is not None:
        path.append(current)
        current = previous.get(current)
    path.reverse()
    if not path or path[0] != source:
        return []
    return path


class PathFinder(ABC):
    name = "base"

    def find_shortest_path(self, graph: NetworkGraph, source: Location, destination: Location) -> PathResult:
        require(graph, "graph")
        require(source, "source")
        require(destination, "destination")

        if source == destination:
            return PathResult(valid=True, total_cost=0.0, path=(source,))

        with graph.reading():
            if source not in graph or destination not in graph:
                return PathResult.infeasible()
            return self._search(graph, source, destination)

    @abstractmethod
    def _search(self, graph: NetworkGraph, source: Location, destination: Location) -> PathResult:
        raise NotImplementedError


class DijkstraPathFinder(PathFinder):
    """Relaxation-based search with early exit on the destination. O((V + E) log V)."""

    name = "dijkstra"

    def _search(self, graph: NetworkGraph, source: Location, destination: Location) -> PathResult:
        distances, previous = self._run(graph, source, destination)
        path = _reconstruct(previous, source, destination)
        if not path:
            return PathResult.infeasible()
        return PathResult(valid=True, total_cost=distances[destination], path=tuple(path))

    def shortest_distances_from(self, graph: NetworkGraph, source: Location) -> Dict[Location, float]:
        """One-to-all distances; unreachable locations keep ``INFEASIBLE``."""
        require(graph, "graph")
        require(source, "source")
        with graph.reading():
            distances, _ = self._run(graph, source, None)
        return distances

    @staticmethod
    def _run(
        graph: NetworkGraph, source: Location, destination: Optional[Location]
    ) -> Tuple[Dict[Location, float], Dict[Location, Location]]:
        distances = {location: INFEASIBLE for location in graph.locations()}
        distances[source] = 0.0
        previous: Dict[Location, Location] = {}
        settled = set()
        # The counter keeps heap entries comparable when distances tie.
        counter = itertools.count()
        queue = [(0.0, next(counter), source)]

        while queue:
            distance, _, current = heapq.heappop(queue)
            if current in settled:
                continue
            settled.add(current)
            if current == destination:
                break

            for edge in graph.neighbors(current):
                if edge.blocked:
                    continue
                neighbor = edge.destination
                if neighbor in settled:
                    continue
                candidate = distance + edge.effective_weight
                if candidate < distances.get(neighbor, INFEASIBLE):
                    distances[neighbor] = candidate
                    previous[neighbor] = current
                    heapq.heappush(queue, (candidate, next(counter), neighbor))

        return distances, previous


class AStarPathFinder(PathFinder):
    """Heuristic-guided search using straight-line distance to the destination.

    The heuristic is the raw Euclidean distance between coordinates. It is only
    admissible when no edge is cheaper than the straight line between its
    endpoints; on graphs where that does not hold the returned path can be
    longer than the one found by :class:`DijkstraPathFinder`. Use
    :func:`heuristic_is_consistent` to check a graph before relying on A*.
    """

    name = "astar"

    @staticmethod
    def heuristic(location: Location, destination: Location) -> float:
        return location.distance_to(destination)

    def _search(self, graph: NetworkGraph, source: Location, destination: Location) -> PathResult:
        g_score: Dict[Location, float] = {source: 0.0}
        previous: Dict[Location, Location] = {}
        closed = set()
        counter = itertools.count()
        open_set = [(self.heuristic(source, destination), next(counter), source)]

        while open_set:
            _, _, current = heapq.heappop(open_set)
            if current in closed:
                continue
            if current == destination:
                path = _reconstruct(previous, source, destination)
                if not path:
                    return PathResult.infeasible()
                return PathResult(valid=True, total_cost=g_score[current], path=tuple(path))
            closed.add(current)

            for edge in graph.neighbors(current):
                if edge.blocked or edge.destination in closed:
                    continue
                neighbor = edge.destination
                tentative = g_score[current] + edge.effective_weight
                if tentative < g_score.get(neighbor, INFEASIBLE):
                    g_score[neighbor] = tentative
                    previous[neighbor] = current
                    f_score = tentative + self.heuristic(neighbor, destination)
                    heapq.heappush(open_set, (f_score, next(counter), neighbor))

        return PathResult.infeasible()


def heuristic_is_consistent(graph: NetworkGraph, tolerance: float = 1e-9) -> bool:
    """True when every open edge costs at least the straight-line distance it spans."""
    with graph.reading():
        for location in graph.locations():
            for edge in graph.neighbors(location):
                if edge.blocked:
                    continue
                if edge.effective_weight + tolerance < edge.source.distance_to(edge.destination):
                    return False
    return True


_STRATEGIES = {
    DijkstraPathFinder.name: DijkstraPathFinder,
    AStarPathFinder.name: AStarPathFinder,
    "a*": AStarPathFinder,
}


def get_path_finder(name: str) -> PathFinder:
    try:
        return _STRATEGIES[name.lower()]()
    except KeyError as exc:
        raise InvalidArgumentError(f"Unknown path strategy: {name}") from exc


def find_shortest_path(
    graph: NetworkGraph,
    source: Location,
    destination: Location,
    strategy: str = DijkstraPathFinder.name,
) -> PathResult:
    return get_path_finder(strategy).find_shortest_path(graph, source, destination)
