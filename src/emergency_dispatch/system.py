from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from emergency_dispatch import config
from emergency_dispatch.demand import DemandPredictor, Repositioner, RepositioningRecommendation
from emergency_dispatch.dispatch import DispatchDecision, DispatchEngine
from emergency_dispatch.errors import InvalidArgumentError
from emergency_dispatch.metrics import PerformanceMetrics
from emergency_dispatch.models import (
    Incident,
    IncidentSeverity,
    IncidentStatus,
    IncidentType,
    Location,
    ResponseUnit,
)
from emergency_dispatch.network import NetworkGraph
from emergency_dispatch.pathfinding import PathResult, get_path_finder
from emergency_dispatch.predictor import IncrementalIncidentPredictor
from emergency_dispatch.scoring import MultiCriteriaScorer

logger = logging.getLogger(__name__)


class EmergencyResponseSystem:
    """Wires the network, dispatch engine, demand model and metrics together."""

    def __init__(
        self,
        graph: Optional[NetworkGraph] = None,
        path_strategy: str = config.PATH_STRATEGY,
        use_scorer: bool = False,
        history_window: int = config.HISTORY_WINDOW,
    ) -> None:
        self.graph = graph if graph is not None else NetworkGraph()
        self.path_finder = get_path_finder(path_strategy)
        self.scorer = MultiCriteriaScorer(self.graph, self.path_finder) if use_scorer else None
        self.engine = DispatchEngine(self.graph, self.path_finder, self.scorer)
        self.demand = DemandPredictor(history_window)
        self.learner = IncrementalIncidentPredictor()
        self.repositioner = Repositioner(self.graph, self.demand, self.path_finder, self.engine)
        self.metrics = PerformanceMetrics()
        self._incident_ids = itertools.count(1)

    def create_incident(
        self,
        location_id: str,
        incident_type: IncidentType,
        severity: IncidentSeverity,
        incident_id: Optional[str] = None,
        reported_at: Optional[datetime] = None,
    ) -> Incident:
        location = self.graph.get_location(location_id)
        if location is None:
            raise InvalidArgumentError(f"Unknown location: {location_id}")
        incident = Incident(
            incident_id=incident_id or f"INC-{next(self._incident_ids):03d}",
            location=location,
            incident_type=incident_type,
            severity=severity,
            reported_at=reported_at or datetime.now(),
        )
        self.report_incident(incident)
        return incident

    def report_incident(self, incident: Incident) -> None:
        self.engine.report_incident(incident)
        self.demand.record_incident(incident)
        self.learner.record_actual(incident.location, incident.reported_at, 1.0)

    def register_unit(self, unit: ResponseUnit) -> None:
        self.engine.register_unit(unit)

    def _record(self, decision: DispatchDecision) -> None:
        self.metrics.record_dispatch(decision, self.graph.path_distance(decision.path.path))

    def dispatch_next(self) -> Optional[DispatchDecision]:
        decision = self.engine.dispatch_next()
        if decision is not None:
            self._record(decision)
        return decision

    def dispatch_all(self) -> List[DispatchDecision]:
        decisions = self.engine.dispatch_all()
        for decision in decisions:
            self._record(decision)
        return decisions

    def record_unserved(self) -> List[Incident]:
        """Log every incident still waiting for a unit as a failed dispatch."""
        unserved = [
            incident for incident in self.engine.active_incidents() if incident.status is IncidentStatus.REPORTED
        ]
        for incident in unserved:
            self.metrics.record_failed_dispatch(incident)
        return unserved

    def resolve_incident(self, incident_id: str) -> None:
        self.engine.resolve_incident(incident_id)

    def find_shortest_path(
        self, source: Location, destination: Location, strategy: Optional[str] = None
    ) -> PathResult:
        finder = get_path_finder(strategy) if strategy else self.path_finder
        return finder.find_shortest_path(self.graph, source, destination)

    def calculate_demand_scores(self) -> Dict[Location, float]:
        return self.demand.calculate_demand_scores()

    def incident_probability(self, location: Location, when: Optional[datetime] = None) -> float:
        return self.learner.predict_incident_probability(location, when)

    def recommend_repositioning(
        self, units: Optional[Sequence[ResponseUnit]] = None
    ) -> List[RepositioningRecommendation]:
        with self.engine.lock:
            return self.repositioner.recommend_repositioning(self.engine.units() if units is None else units)

    def apply_repositioning(self, recommendation: RepositioningRecommendation) -> bool:
        return self.repositioner.apply_repositioning(recommendation)

    def rebalance(self) -> List[RepositioningRecommendation]:
        applied = [rec for rec in self.recommend_repositioning() if self.apply_repositioning(rec)]
        if applied:
            logger.info("Rebalanced %d unit(s)", len(applied))
        return applied

    @staticmethod
    def action_plan(decision: DispatchDecision) -> List[str]:
        incident = decision.incident
        actions = [
            f"Classify {incident.incident_id} as {incident.incident_type.value} "
            f"with severity {incident.severity.name}.",
            f"Dispatch {decision.unit.unit_id} via {decision.path.describe()}.",
        ]

        if incident.severity is IncidentSeverity.CRITICAL:
            actions.append("Escalate to multi-agency response and request regional backup.")
        elif incident.severity is IncidentSeverity.HIGH:
            actions.append("Stage secondary support units and monitor progress every 3 minutes.")
        else:
            actions.append("Handle with local unit response and maintain periodic updates.")

        return actions
