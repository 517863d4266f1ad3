from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from emergency_dispatch import config
from emergency_dispatch.errors import InvalidArgumentError, require
from emergency_dispatch.models import (
    Incident,
    IncidentStatus,
    Location,
    ResponseUnit,
    UnitStatus,
)
from emergency_dispatch.network import NetworkGraph
from emergency_dispatch.pathfinding import PathFinder, PathResult, get_path_finder
from emergency_dispatch.scoring import MultiCriteriaScorer, ScoredDispatchDecision

logger = logging.getLogger(__name__)

QueueEntry = Tuple[float, int, Incident]


@dataclass(frozen=True)
class DispatchDecision:
    """A unit bound to an incident along ``path``.

    ``score`` is read in the direction of the ranking that chose the unit. For
    the closest capable unit it is path cost over severity priority and lower
    wins. For :class:`MultiCriteriaScorer` it is the weighted total and higher
    wins; ``criteria`` then holds the sub-scores and is empty otherwise.
    """

    unit: ResponseUnit
    incident: Incident
    path: PathResult
    score: float
    criteria: Dict[str, float] = field(default_factory=dict)

    @property
    def distance(self) -> float:
        return self.path.total_cost

    @property
    def scored_by_criteria(self) -> bool:
        return bool(self.criteria)

    @classmethod
    def from_scored(cls, scored: ScoredDispatchDecision) -> DispatchDecision:
        return cls(scored.unit, scored.incident, scored.path, scored.total_score, dict(scored.criteria))


class DispatchEngine:
    """Priority-ordered binding of reported incidents to response units.

    All mutating operations run under ``lock`` (re-entrant), which covers the
    whole pop, path query and bind sequence, so a unit is never bound to two
    incidents and an incident is never dispatched twice.

    Equal priority scores are served in report order.
    """

    def __init__(
        self,
        graph: NetworkGraph,
        path_finder: Optional[PathFinder] = None,
        scorer: Optional[MultiCriteriaScorer] = None,
    ) -> None:
        self.graph = require(graph, "graph")
        self.path_finder = path_finder or get_path_finder(config.PATH_STRATEGY)
        self.scorer = scorer
        self.lock = threading.RLock()
        self._queue: List[QueueEntry] = []
        self._sequence = itertools.count()
        self._active: Dict[str, Incident] = {}
        self._units: List[ResponseUnit] = []
        self._workload: Dict[str, int] = {}

    def register_unit(self, unit: ResponseUnit) -> None:
        require(unit, "unit")
        with self.lock:
            self._units.append(unit)
        logger.info("Registered unit %s (%s) at %s", unit.unit_id, unit.unit_type.value, unit.location.location_id)

    def report_incident(self, incident: Incident) -> None:
        require(incident, "incident")
        with self.lock:
            if incident.incident_id in self._active:
                raise InvalidArgumentError(f"incident {incident.incident_id} is already active")
            self._active[incident.incident_id] = incident
            heapq.heappush(self._queue, (-incident.priority_score, next(self._sequence), incident))
        logger.info(
            "Incident reported: %s %s/%s at %s",
            incident.incident_id,
            incident.incident_type.value,
            incident.severity.name,
            incident.location.location_id,
        )

    def find_best_unit(self, incident: Incident) -> Optional[DispatchDecision]:
        require(incident, "incident")
        with self.lock:
            if self.scorer is not None:
                scored = self.scorer.find_optimal_unit(incident, self.available_units(), self._workload)
                return DispatchDecision.from_scored(scored) if scored else None
            return self._closest_capable_unit(incident)

    def _closest_capable_unit(self, incident: Incident) -> Optional[DispatchDecision]:
        best: Optional[DispatchDecision] = None
        for unit in self._units:
            if not unit.is_available or not unit.can_respond_to(incident.incident_type):
                continue
            path = self.path_finder.find_shortest_path(self.graph, unit.location, incident.location)
            if not path.valid:
                continue
            score = path.total_cost / incident.severity.priority
            if best is None or score < best.score:
                best = DispatchDecision(unit, incident, path, score)
        return best

    def dispatch_next(self) -> Optional[DispatchDecision]:
        with self.lock:
            # Bounded by the current queue length so an all-stale queue cannot spin.
            for _ in range(len(self._queue)):
                entry = heapq.heappop(self._queue)
                incident = entry[2]
                if incident.status is not IncidentStatus.REPORTED:
                    logger.debug("Dropping stale queue entry for %s (%s)", incident.incident_id, incident.status.value)
                    continue

                decision = self.find_best_unit(incident)
                if decision is None:
                    heapq.heappush(self._queue, entry)
                    logger.info("No available unit for incident %s", incident.incident_id)
                    return None

                self._bind(decision)
                return decision
            return None

    def dispatch_all(self) -> List[DispatchDecision]:
        """Dispatch until the queue is empty or the head incident cannot be served."""
        decisions = []
        with self.lock:
            while True:
                decision = self.dispatch_next()
                if decision is None:
                    break
                decisions.append(decision)
        return decisions

    def dispatch_batch(self) -> List[DispatchDecision]:
        """Assign every pending incident at once through the scorer's greedy batch pass."""
        if self.scorer is None:
            raise InvalidArgumentError("batch dispatch requires a MultiCriteriaScorer")

        with self.lock:
            pending = [entry for entry in self._queue if entry[2].status is IncidentStatus.REPORTED]
            ordered = sorted(pending)
            incidents: Dict[str, Incident] = {}
            for entry in ordered:
                incidents.setdefault(entry[2].incident_id, entry[2])
            assignments = self.scorer.batch_optimize(
                list(incidents.values()), self.available_units(), self._workload
            )

            decisions = []
            for scored in assignments.values():
                decision = DispatchDecision.from_scored(scored)
                self._bind(decision)
                decisions.append(decision)

            self._queue = [entry for entry in ordered if entry[2].incident_id not in assignments]
            heapq.heapify(self._queue)
            return decisions

    def _bind(self, decision: DispatchDecision) -> None:
        incident, unit = decision.incident, decision.unit
        incident.status = IncidentStatus.DISPATCHED
        incident.assigned_unit_id = unit.unit_id
        unit.status = UnitStatus.DISPATCHED
        unit.current_incident_id = incident.incident_id
        self._workload[unit.unit_id] = self._workload.get(unit.unit_id, 0) + 1
        logger.info(
            "Dispatched %s to %s (distance %.2f)", unit.unit_id, incident.incident_id, decision.path.total_cost
        )

    def resolve_incident(self, incident_id: str) -> None:
        with self.lock:
            incident = self._active.pop(incident_id, None)
            if incident is None:
                return
            incident.status = IncidentStatus.RESOLVED

            unit = self.get_unit(incident.assigned_unit_id) if incident.assigned_unit_id else None
            if unit is not None and unit.current_incident_id == incident.incident_id:
                unit.status = UnitStatus.AVAILABLE
                unit.current_incident_id = None
                unit.location = incident.location
            incident.assigned_unit_id = None
        logger.info("Incident resolved: %s", incident_id)

    def relocate_unit(self, unit: ResponseUnit, location: Location) -> bool:
        require(location, "location")
        with self.lock:
            if not unit.is_available:
                return False
            unit.location = location
            return True

    def get_unit(self, unit_id: str) -> Optional[ResponseUnit]:
        with self.lock:
            return next((unit for unit in self._units if unit.unit_id == unit_id), None)

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        with self.lock:
            return self._active.get(incident_id)

    def units(self) -> List[ResponseUnit]:
        with self.lock:
            return list(self._units)

    def available_units(self) -> List[ResponseUnit]:
        with self.lock:
            return [unit for unit in self._units if unit.is_available]

    def active_incidents(self) -> List[Incident]:
        with self.lock:
            return list(self._active.values())

    def workload(self) -> Dict[str, int]:
        with self.lock:
            return dict(self._workload)

    @property
    def available_unit_count(self) -> int:
        return len(self.available_units())

    @property
    def pending_count(self) -> int:
        with self.lock:
            return sum(1 for entry in self._queue if entry[2].status is IncidentStatus.REPORTED)
