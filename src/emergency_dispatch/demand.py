from __future__ import annotations

import logging
import math
import threading
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence

from emergency_dispatch import config
from emergency_dispatch.dispatch import DispatchEngine
from emergency_dispatch.errors import require
from emergency_dispatch.models import Incident, IncidentSeverity, IncidentType, Location, ResponseUnit
from emergency_dispatch.network import NetworkGraph
from emergency_dispatch.pathfinding import DijkstraPathFinder, PathFinder, PathResult

logger = logging.getLogger(__name__)

COVERAGE_SCALE = 10.0
OPPORTUNITY_COST_SCALE = 10.0


class IncidentHistory:
    """Sliding window of the most recent incidents reported at one location."""

    def __init__(self, location: Location, window: int = config.HISTORY_WINDOW) -> None:
        self.location = location
        self.recent: Deque[Incident] = deque(maxlen=window)
        self.total_incidents = 0
        self.type_counts: Counter = Counter()
        self.severity_counts: Counter = Counter()

    def add(self, incident: Incident) -> None:
        self.total_incidents += 1
        self.recent.append(incident)
        self.type_counts[incident.incident_type] += 1
        self.severity_counts[incident.severity] += 1

    @property
    def demand_score(self) -> float:
        # frequency * severity_sum / frequency collapses to the severity sum.
        return float(sum(incident.severity.priority for incident in self.recent))

    @property
    def recent_incident_rate(self) -> int:
        return len(self.recent)

    @property
    def most_common_type(self) -> Optional[IncidentType]:
        common = self.type_counts.most_common(1)
        return common[0][0] if common else None

    def type_distribution(self) -> Dict[IncidentType, int]:
        return dict(self.type_counts)

    def severity_distribution(self) -> Dict[IncidentSeverity, int]:
        return dict(self.severity_counts)


class DemandPredictor:
    def __init__(self, window: int = config.HISTORY_WINDOW) -> None:
        self.window = window
        self._histories: Dict[Location, IncidentHistory] = {}
        self._lock = threading.Lock()

    def record_incident(self, incident: Incident) -> None:
        require(incident, "incident")
        with self._lock:
            history = self._histories.get(incident.location)
            if history is None:
                history = self._histories[incident.location] = IncidentHistory(incident.location, self.window)
            history.add(incident)

    def history(self, location: Location) -> Optional[IncidentHistory]:
        with self._lock:
            return self._histories.get(location)

    def tracked_locations(self) -> List[Location]:
        with self._lock:
            return list(self._histories)

    def demand_score(self, location: Location) -> float:
        history = self.history(location)
        return history.demand_score if history else 0.0

    def calculate_demand_scores(self) -> Dict[Location, float]:
        with self._lock:
            return {location: history.demand_score for location, history in self._histories.items()}

    def top_n_by_demand(self, n: int) -> List[Location]:
        scores = self.calculate_demand_scores()
        ranked = sorted(scores, key=lambda location: scores[location], reverse=True)
        return ranked[: max(n, 0)]

    def incident_probability(self, location: Location) -> float:
        """Frequency heuristic in [0, 1], not a calibrated probability."""
        history = self.history(location)
        if history is None or history.total_incidents == 0:
            return 0.0
        return min(1.0, history.recent_incident_rate / 10.0)


@dataclass(frozen=True)
class RepositioningRecommendation:
    unit: ResponseUnit
    origin: Location
    target: Location
    benefit: float
    path: PathResult

    def describe(self) -> str:
        return (
            f"Reposition {self.unit.name} from {self.origin.name} to {self.target.name} "
            f"(benefit {self.benefit:.2f}, cost {self.path.total_cost:.2f})"
        )


class Repositioner:
    """Moves idle units toward locations whose demand outruns their coverage."""

    def __init__(
        self,
        graph: NetworkGraph,
        predictor: DemandPredictor,
        path_finder: Optional[PathFinder] = None,
        engine: Optional[DispatchEngine] = None,
        threshold: float = config.REPOSITIONING_THRESHOLD,
        max_per_cycle: int = config.MAX_REPOSITIONS_PER_CYCLE,
        underserved_ratio: float = config.UNDERSERVED_RATIO,
    ) -> None:
        self.graph = graph
        self.predictor = predictor
        self.path_finder = path_finder or DijkstraPathFinder()
        self.engine = engine
        self.threshold = threshold
        self.max_per_cycle = max_per_cycle
        self.underserved_ratio = underserved_ratio
        self._lock = threading.Lock()

    def coverage_score(self, location: Location, units: Sequence[ResponseUnit]) -> float:
        coverage = 0.0
        for unit in units:
            if not unit.is_available:
                continue
            path = self.path_finder.find_shortest_path(self.graph, unit.location, location)
            if path.valid:
                coverage += COVERAGE_SCALE / (1.0 + path.total_cost)
        return coverage

    def underserved_locations(
        self, demand_scores: Dict[Location, float], units: Sequence[ResponseUnit]
    ) -> List[Location]:
        """Locations with demand above ``underserved_ratio`` x coverage, largest gap first."""
        coverage = {location: self.coverage_score(location, units) for location in demand_scores}
        underserved = [
            location
            for location, demand in demand_scores.items()
            if demand > coverage[location] * self.underserved_ratio
        ]
        underserved.sort(key=lambda location: demand_scores[location] - coverage[location], reverse=True)
        return underserved

    def _best_unit_for(
        self, units: Sequence[ResponseUnit], target: Location
    ) -> tuple[Optional[ResponseUnit], Optional[PathResult]]:
        best_unit, best_path, best_cost = None, None, math.inf
        for unit in units:
            if not unit.is_available:
                continue
            path = self.path_finder.find_shortest_path(self.graph, unit.location, target)
            if not path.valid:
                continue
            cost = path.total_cost + OPPORTUNITY_COST_SCALE * self.predictor.incident_probability(unit.location)
            if cost < best_cost:
                best_unit, best_path, best_cost = unit, path, cost
        return best_unit, best_path

    @staticmethod
    def benefit(unit: ResponseUnit, target: Location, demand_scores: Dict[Location, float]) -> float:
        target_demand = demand_scores.get(target, 0.0)
        current_demand = demand_scores.get(unit.location, 0.0)
        return (target_demand - current_demand) / max(target_demand, 1.0)

    def recommend_repositioning(self, units: Sequence[ResponseUnit]) -> List[RepositioningRecommendation]:
        recommendations: List[RepositioningRecommendation] = []
        candidates = [unit for unit in units if unit.is_available]
        if not candidates:
            return recommendations

        demand_scores = self.predictor.calculate_demand_scores()
        if not demand_scores:
            return recommendations

        for target in self.underserved_locations(demand_scores, candidates):
            if len(recommendations) >= self.max_per_cycle:
                break
            unit, path = self._best_unit_for(candidates, target)
            if unit is None:
                continue
            benefit = self.benefit(unit, target, demand_scores)
            if benefit > self.threshold:
                recommendations.append(RepositioningRecommendation(unit, unit.location, target, benefit, path))
                candidates.remove(unit)

        return recommendations

    def apply_repositioning(self, recommendation: RepositioningRecommendation) -> bool:
        """Relocate instantly. Skipped when the unit left the available pool meanwhile."""
        unit, target = recommendation.unit, recommendation.target
        if self.engine is not None:
            moved = self.engine.relocate_unit(unit, target)
        else:
            with self._lock:
                moved = unit.is_available
                if moved:
                    unit.location = target
        if moved:
            logger.info("Repositioned %s to %s", unit.unit_id, target.location_id)
        else:
            logger.info("Skipped repositioning %s: no longer available", unit.unit_id)
        return moved

    def load_balance(self, units: Sequence[ResponseUnit], demand_scores: Dict[Location, float]) -> float:
        """RMS gap between available units per location and a demand-proportional share."""
        if not units:
            return math.inf
        total_demand = sum(demand_scores.values())
        if not demand_scores or total_demand <= 0:
            return 0.0

        counts = Counter(unit.location for unit in units if unit.is_available)
        squared = [
            (counts.get(location, 0) - demand / total_demand * len(units)) ** 2
            for location, demand in demand_scores.items()
        ]
        return math.sqrt(sum(squared) / len(squared))
