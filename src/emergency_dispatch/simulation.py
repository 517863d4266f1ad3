from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from emergency_dispatch import config
from emergency_dispatch.errors import DispatchError
from emergency_dispatch.metrics import PerformanceMetrics
from emergency_dispatch.models import Incident, IncidentSeverity, IncidentStatus, IncidentType, Location
from emergency_dispatch.system import EmergencyResponseSystem

logger = logging.getLogger(__name__)

RESOLUTION_CHANCE = 0.1
BASELINE_DEMAND = 1.0
SEVERITY_MIX = (
    (0.50, IncidentSeverity.LOW),
    (0.80, IncidentSeverity.MEDIUM),
    (0.95, IncidentSeverity.HIGH),
    (1.00, IncidentSeverity.CRITICAL),
)


@dataclass
class SimulationConfig:
    incident_rate: float = config.SIM_INCIDENT_RATE
    repositioning_enabled: bool = True
    repositioning_interval: int = config.SIM_REPOSITIONING_INTERVAL
    random_seed: int = config.SIM_RANDOM_SEED
    start_time: datetime = field(default_factory=lambda: datetime(2024, 1, 1, 8, 0))


@dataclass(frozen=True)
class SimulationEvent:
    time_minutes: int
    event_type: str
    description: str


@dataclass
class SimulationResult:
    metrics: PerformanceMetrics
    events: List[SimulationEvent]
    execution_time_seconds: float
    total_incidents: int

    def events_of(self, event_type: str) -> List[SimulationEvent]:
        return [event for event in self.events if event.event_type == event_type]


class SimulationEngine:
    """Fixed one-minute timestep driver over an :class:`EmergencyResponseSystem`.

    Each step may generate one incident (Poisson arrivals at ``incident_rate``
    per hour), dispatches at most one queued incident, resolves each
    dispatched incident with a fixed per-minute chance and periodically
    rebalances idle units. Runs are reproducible for a given seed.
    """

    def __init__(self, system: EmergencyResponseSystem, sim_config: Optional[SimulationConfig] = None) -> None:
        self.system = system
        self.config = sim_config or SimulationConfig()
        self.random = random.Random(self.config.random_seed)
        self.current_minute = 0
        self._incident_counter = 0

    def run(self, duration_minutes: int) -> SimulationResult:
        if not self.system.graph.locations():
            raise DispatchError("cannot simulate on a network without locations")

        logger.info(
            "Starting simulation: %d minutes, %.2f incidents/hour, repositioning=%s",
            duration_minutes,
            self.config.incident_rate,
            self.config.repositioning_enabled,
        )
        started = time.perf_counter()
        events: List[SimulationEvent] = []

        for minute in range(duration_minutes):
            self.current_minute = minute
            if self._should_generate_incident():
                incident = self._generate_incident(minute)
                self.system.report_incident(incident)
                events.append(SimulationEvent(minute, "INCIDENT_GENERATED", incident.incident_id))

            decision = self.system.dispatch_next()
            if decision is not None:
                events.append(
                    SimulationEvent(minute, "UNIT_DISPATCHED", f"{decision.unit.name} -> {decision.incident.incident_id}")
                )

            for incident_id in self._resolve_completed():
                events.append(SimulationEvent(minute, "INCIDENT_RESOLVED", incident_id))

            interval = self.config.repositioning_interval
            if self.config.repositioning_enabled and interval > 0 and minute % interval == 0:
                for rec in self.system.rebalance():
                    events.append(SimulationEvent(minute, "UNIT_REPOSITIONED", rec.describe()))

        for incident in self.system.record_unserved():
            events.append(SimulationEvent(duration_minutes, "DISPATCH_FAILED", incident.incident_id))

        elapsed = time.perf_counter() - started
        logger.info("Simulation complete: %d incidents in %.2fs", self._incident_counter, elapsed)
        return SimulationResult(self.system.metrics, events, elapsed, self._incident_counter)

    def _should_generate_incident(self) -> bool:
        probability = 1.0 - math.exp(-self.config.incident_rate / 60.0)
        return self.random.random() < probability

    def _generate_incident(self, minute: int) -> Incident:
        location = self._select_location()
        incident_type = self.random.choice(self._incident_types())
        severity = self._select_severity()
        self._incident_counter += 1
        return Incident(
            incident_id=f"SIM-{self._incident_counter:04d}",
            location=location,
            incident_type=incident_type,
            severity=severity,
            reported_at=self.config.start_time + timedelta(minutes=minute),
        )

    def _incident_types(self) -> List[IncidentType]:
        """Types some registered unit handles primarily, in enum order; all types for an empty fleet."""
        handled = {unit.unit_type.primary_incident_type for unit in self.system.engine.units()}
        return [incident_type for incident_type in IncidentType if incident_type in handled] or list(IncidentType)

    def _select_location(self) -> Location:
        # Every location keeps a baseline weight so quiet areas still see incidents.
        locations = self.system.graph.locations()
        demand = self.system.calculate_demand_scores()
        weights = [BASELINE_DEMAND + demand.get(location, 0.0) for location in locations]

        threshold = self.random.random() * sum(weights)
        cumulative = 0.0
        for location, weight in zip(locations, weights):
            cumulative += weight
            if cumulative >= threshold:
                return location
        return locations[-1]

    def _select_severity(self) -> IncidentSeverity:
        roll = self.random.random()
        for bound, severity in SEVERITY_MIX:
            if roll < bound:
                return severity
        return IncidentSeverity.CRITICAL

    def _resolve_completed(self) -> List[str]:
        resolved = [
            incident.incident_id
            for incident in self.system.engine.active_incidents()
            if incident.status is IncidentStatus.DISPATCHED and self.random.random() < RESOLUTION_CHANCE
        ]
        for incident_id in resolved:
            self.system.resolve_incident(incident_id)
        return resolved
