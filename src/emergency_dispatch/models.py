from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from emergency_dispatch.errors import InvalidArgumentError, require


class LocationType(Enum):
    DISPATCH_CENTER = "dispatch_center"
    CITY = "city"
    INCIDENT_SITE = "incident_site"


class IncidentType(Enum):
    FIRE = "fire"
    MEDICAL = "medical"
    POLICE = "police"
    RESCUE = "rescue"
    HAZMAT = "hazmat"


class IncidentSeverity(Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def priority(self) -> int:
        return self.value


class IncidentStatus(Enum):
    REPORTED = "reported"
    DISPATCHED = "dispatched"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class UnitType(Enum):
    FIRE_ENGINE = "fire_engine"
    AMBULANCE = "ambulance"
    POLICE_CAR = "police_car"
    RESCUE_TEAM = "rescue_team"
    HAZMAT_TEAM = "hazmat_team"

    @property
    def primary_incident_type(self) -> IncidentType:
        return PRIMARY_INCIDENT_TYPE[self]


PRIMARY_INCIDENT_TYPE = {
    UnitType.FIRE_ENGINE: IncidentType.FIRE,
    UnitType.AMBULANCE: IncidentType.MEDICAL,
    UnitType.POLICE_CAR: IncidentType.POLICE,
    UnitType.RESCUE_TEAM: IncidentType.RESCUE,
    UnitType.HAZMAT_TEAM: IncidentType.HAZMAT,
}


class UnitStatus(Enum):
    AVAILABLE = "available"
    DISPATCHED = "dispatched"
    ON_SCENE = "on_scene"
    RETURNING = "returning"
    OUT_OF_SERVICE = "out_of_service"


@dataclass(eq=False)
class Location:
    """A node of the response network. Identity is the location id alone."""

    location_id: str
    name: str
    x: float
    y: float
    location_type: LocationType = LocationType.CITY

    _READ_ONLY = ("location_id", "name", "x", "y")

    def __setattr__(self, key: str, value) -> None:
        if key in self._READ_ONLY and key in self.__dict__:
            raise AttributeError(f"Location.{key} is read-only")
        super().__setattr__(key, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Location):
            return NotImplemented
        return self.location_id == other.location_id

    def __hash__(self) -> int:
        return hash(self.location_id)

    def distance_to(self, other: Location) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(eq=False)
class Edge:
    source: Location
    destination: Location
    distance: float
    travel_time: float
    congestion: float = 1.0
    blocked: bool = False

    def __post_init__(self) -> None:
        require(self.source, "source")
        require(self.destination, "destination")
        if not (self.distance >= 0 and self.travel_time >= 0):
            raise InvalidArgumentError(
                f"edge {self.source.location_id}->{self.destination.location_id} "
                f"needs non-negative distance and travel time"
            )

    @property
    def effective_weight(self) -> float:
        if self.blocked:
            return math.inf
        return self.travel_time * self.congestion


@dataclass(eq=False)
class Incident:
    incident_id: str
    location: Location
    incident_type: IncidentType
    severity: IncidentSeverity
    status: IncidentStatus = IncidentStatus.REPORTED
    reported_at: datetime = field(default_factory=datetime.now)
    assigned_unit_id: Optional[str] = None

    def __post_init__(self) -> None:
        require(self.location, "incident location")

    @property
    def priority_score(self) -> float:
        return self.severity.priority * 100.0


@dataclass(eq=False)
class ResponseUnit:
    unit_id: str
    name: str
    unit_type: UnitType
    location: Location
    status: UnitStatus = UnitStatus.AVAILABLE
    current_incident_id: Optional[str] = None

    def __post_init__(self) -> None:
        require(self.location, "unit location")

    @property
    def is_available(self) -> bool:
        return self.status is UnitStatus.AVAILABLE

    def can_respond_to(self, incident_type: IncidentType) -> bool:
        return self.unit_type.primary_incident_type is incident_type
