from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from emergency_dispatch import config
from emergency_dispatch.errors import InvalidArgumentError, require
from emergency_dispatch.models import Incident, IncidentSeverity, IncidentType, ResponseUnit, UnitType
from emergency_dispatch.network import NetworkGraph
from emergency_dispatch.pathfinding import DijkstraPathFinder, PathFinder, PathResult

logger = logging.getLogger(__name__)

MAX_USEFUL_DISTANCE = 50.0
MAX_ACCEPTABLE_MINUTES = 30.0
MAX_SHIFT_WORKLOAD = 10.0
FATIGUE_WORKLOAD = 5.0
CRITICAL_BOOST = 1.2

SPECIALIZATIONS = {
    UnitType.FIRE_ENGINE: {IncidentType.FIRE, IncidentType.HAZMAT, IncidentType.RESCUE},
    UnitType.AMBULANCE: {IncidentType.MEDICAL, IncidentType.RESCUE},
    UnitType.POLICE_CAR: {IncidentType.POLICE, IncidentType.HAZMAT},
}

# Unit types that can assist outside their specialization. Fire engines assist anywhere.
CAN_ASSIST = {
    UnitType.FIRE_ENGINE: set(IncidentType),
    UnitType.AMBULANCE: {IncidentType.MEDICAL, IncidentType.RESCUE},
    UnitType.POLICE_CAR: {IncidentType.POLICE, IncidentType.HAZMAT},
}

CRITERIA = ("distance", "time", "specialization", "availability", "load_balance", "fatigue")


@dataclass
class CriteriaWeights:
    distance: float = 0.30
    time: float = 0.25
    specialization: float = 0.20
    availability: float = 0.15
    load_balance: float = 0.07
    fatigue: float = 0.03

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in CRITERIA}


@dataclass(frozen=True)
class ScoredDispatchDecision:
    unit: ResponseUnit
    incident: Incident
    total_score: float
    criteria: Dict[str, float] = field(default_factory=dict)
    path: PathResult = field(default_factory=PathResult.infeasible)


class MultiCriteriaScorer:
    """Ranks candidate units on six normalised criteria instead of a distance ratio.

    Every sub-score lies in [0, 1]; the weighted sum is boosted for critical
    incidents. ``workload`` maps unit ids to the number of recent dispatches.
    """

    def __init__(
        self,
        graph: NetworkGraph,
        path_finder: Optional[PathFinder] = None,
        average_speed_kmh: float = config.AVERAGE_SPEED_KMH,
    ) -> None:
        self.graph = graph
        self.path_finder = path_finder or DijkstraPathFinder()
        self.average_speed_kmh = average_speed_kmh
        self._weights = CriteriaWeights()

    @property
    def weights(self) -> Dict[str, float]:
        return self._weights.as_dict()

    def set_weights(
        self,
        distance: float,
        time: float,
        specialization: float,
        availability: float,
        load_balance: float,
        fatigue: float,
    ) -> None:
        raw = (distance, time, specialization, availability, load_balance, fatigue)
        if any(value < 0 for value in raw):
            raise InvalidArgumentError("criteria weights must be non-negative")
        total = sum(raw)
        if total <= 0:
            raise InvalidArgumentError("at least one criteria weight must be positive")
        self._weights = CriteriaWeights(*(value / total for value in raw))

    def distance_score(self, distance: float) -> float:
        return 1.0 - min(distance / MAX_USEFUL_DISTANCE, 1.0)

    def time_score(self, distance: float) -> float:
        minutes = distance / self.average_speed_kmh * 60.0
        return 1.0 - min(minutes / MAX_ACCEPTABLE_MINUTES, 1.0)

    @staticmethod
    def specialization_score(unit: ResponseUnit, incident: Incident) -> float:
        specialties = SPECIALIZATIONS.get(unit.unit_type)
        if specialties is None:
            return 0.5
        if incident.incident_type in specialties:
            return 1.0
        if incident.incident_type in CAN_ASSIST.get(unit.unit_type, ()):
            return 0.6
        return 0.3

    @staticmethod
    def availability_score(workload: int) -> float:
        return 1.0 - min(workload / MAX_SHIFT_WORKLOAD, 1.0)

    @staticmethod
    def load_balance_score(workload: int, pool_average: float) -> float:
        if workload <= pool_average:
            return 1.0
        deviation = (workload - pool_average) / (pool_average + 1.0)
        return max(0.0, 1.0 - deviation)

    @staticmethod
    def fatigue_score(workload: int) -> float:
        return 1.0 - min(workload / FATIGUE_WORKLOAD, 1.0)

    def score(
        self, unit: ResponseUnit, incident: Incident, path: PathResult, workload: int, pool_average: float
    ) -> tuple[float, Dict[str, float]]:
        criteria = {
            "distance": self.distance_score(path.total_cost),
            "time": self.time_score(path.total_cost),
            "specialization": self.specialization_score(unit, incident),
            "availability": self.availability_score(workload),
            "load_balance": self.load_balance_score(workload, pool_average),
            "fatigue": self.fatigue_score(workload),
        }
        weights = self._weights.as_dict()
        total = sum(weights[name] * criteria[name] for name in CRITERIA)
        if incident.severity is IncidentSeverity.CRITICAL:
            total *= CRITICAL_BOOST
        return total, criteria

    def find_optimal_unit(
        self,
        incident: Incident,
        units: Sequence[ResponseUnit],
        workload: Optional[Mapping[str, int]] = None,
    ) -> Optional[ScoredDispatchDecision]:
        require(incident, "incident")
        if not units:
            return None
        workload = workload or {}
        pool_average = sum(workload.get(unit.unit_id, 0) for unit in units) / len(units)

        best: Optional[ScoredDispatchDecision] = None
        for unit in units:
            path = self.path_finder.find_shortest_path(self.graph, unit.location, incident.location)
            if not path.valid:
                continue
            total, criteria = self.score(unit, incident, path, workload.get(unit.unit_id, 0), pool_average)
            if best is None or total > best.total_score:
                best = ScoredDispatchDecision(unit, incident, total, criteria, path)
        return best

    def batch_optimize(
        self,
        incidents: Iterable[Incident],
        units: Sequence[ResponseUnit],
        workload: Optional[Mapping[str, int]] = None,
    ) -> Dict[str, ScoredDispatchDecision]:
        """Greedy best-first assignment: highest priority first, each unit used once.

        This is a local heuristic, not an optimal bipartite matching.
        """
        assignments: Dict[str, ScoredDispatchDecision] = {}
        remaining: List[ResponseUnit] = list(units)
        ordered = sorted(incidents, key=lambda incident: incident.priority_score, reverse=True)

        for incident in ordered:
            if not remaining:
                break
            decision = self.find_optimal_unit(incident, remaining, workload)
            if decision is None:
                logger.debug("No scored candidate for incident %s", incident.incident_id)
                continue
            assignments[incident.incident_id] = decision
            remaining.remove(decision.unit)

        return assignments
