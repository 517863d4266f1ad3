from __future__ import annotations

import logging
import math
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

from emergency_dispatch.errors import InvalidArgumentError, require
from emergency_dispatch.models import Edge, Location

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer. Writers are preferred once waiting."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class NetworkGraph:
    """Road network: locations keyed by id and outgoing edge lists per location.

    ``add_edge`` models an undirected road as two directed edges. Weight,
    congestion and block updates target exactly one direction, so asymmetric
    conditions can be expressed by mutating each direction separately.

    Mutations of unknown locations or missing edges are ignored and reported by
    a ``False`` return value instead of an exception.
    """

    def __init__(self) -> None:
        self._locations: Dict[str, Location] = {}
        self._adjacency: Dict[Location, List[Edge]] = {}
        self._lock = ReadWriteLock()

    def reading(self):
        return self._lock.read()

    def add_location(self, location: Location) -> None:
        require(location, "location")
        with self._lock.write():
            self._add_location(location)

    def _add_location(self, location: Location) -> None:
        if location.location_id not in self._locations:
            self._locations[location.location_id] = location
            self._adjacency[location] = []

    def remove_location(self, location_id: str) -> bool:
        with self._lock.write():
            location = self._locations.pop(location_id, None)
            if location is None:
                return False
            del self._adjacency[location]
            for edges in self._adjacency.values():
                edges[:] = [edge for edge in edges if edge.destination != location]
            return True

    def add_edge(self, source: Location, destination: Location, distance: float, travel_time: float) -> None:
        require(source, "source")
        require(destination, "destination")
        forward = Edge(source, destination, distance, travel_time)
        reverse = Edge(destination, source, distance, travel_time)
        with self._lock.write():
            self._add_location(source)
            self._add_location(destination)
            # Endpoints already registered under the same id win over the passed objects.
            forward.source = reverse.destination = self._locations[source.location_id]
            forward.destination = reverse.source = self._locations[destination.location_id]
            self._adjacency[forward.source].append(forward)
            self._adjacency[reverse.source].append(reverse)

    def _find_edge(self, source_id: str, destination_id: str) -> Optional[Edge]:
        source = self._locations.get(source_id)
        destination = self._locations.get(destination_id)
        if source is None or destination is None:
            return None
        for edge in self._adjacency[source]:
            if edge.destination == destination:
                return edge
        return None

    def edge(self, source_id: str, destination_id: str) -> Optional[Edge]:
        with self._lock.read():
            return self._find_edge(source_id, destination_id)

    def _mutate_edge(self, source_id: str, destination_id: str, attribute: str, value) -> bool:
        with self._lock.write():
            edge = self._find_edge(source_id, destination_id)
            if edge is None:
                logger.warning("Ignoring %s update for unknown edge %s->%s", attribute, source_id, destination_id)
                return False
            setattr(edge, attribute, value)
            return True

    def update_edge_weight(self, source_id: str, destination_id: str, travel_time: float) -> bool:
        if not travel_time >= 0:
            raise InvalidArgumentError(f"travel time must be non-negative, got {travel_time}")
        return self._mutate_edge(source_id, destination_id, "travel_time", travel_time)

    def set_blocked(self, source_id: str, destination_id: str, blocked: bool) -> bool:
        return self._mutate_edge(source_id, destination_id, "blocked", bool(blocked))

    def set_congestion(self, source_id: str, destination_id: str, factor: float) -> bool:
        if not math.isfinite(factor) or factor <= 0:
            raise InvalidArgumentError("congestion factor must be a positive finite number")
        return self._mutate_edge(source_id, destination_id, "congestion", factor)

    def neighbors(self, location: Optional[Location]) -> List[Edge]:
        """Outgoing edges in insertion order; callers must hold ``reading()`` or accept a snapshot."""
        edges = self._adjacency.get(location) if location is not None else None
        return list(edges) if edges else []

    def path_distance(self, path: Sequence[Location]) -> float:
        """Road distance along consecutive locations; inf when a hop has no edge."""
        total = 0.0
        with self._lock.read():
            for source, destination in zip(path, path[1:]):
                edge = self._find_edge(source.location_id, destination.location_id)
                if edge is None:
                    return math.inf
                total += edge.distance
        return total

    def get_location(self, location_id: str) -> Optional[Location]:
        return self._locations.get(location_id)

    def locations(self) -> List[Location]:
        return list(self._locations.values())

    @property
    def location_count(self) -> int:
        return len(self._locations)

    @property
    def edge_count(self) -> int:
        return sum(len(edges) for edges in self._adjacency.values()) // 2

    def __contains__(self, location: object) -> bool:
        if isinstance(location, Location):
            return location.location_id in self._locations
        return location in self._locations

    def __len__(self) -> int:
        return len(self._locations)

    def __repr__(self) -> str:
        return f"NetworkGraph(locations={self.location_count}, edges={self.edge_count})"
