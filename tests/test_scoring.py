import pytest

from emergency_dispatch.errors import InvalidArgumentError
from emergency_dispatch.models import Incident, IncidentSeverity, IncidentType, ResponseUnit, UnitType
from emergency_dispatch.network import NetworkGraph
from emergency_dispatch.pathfinding import PathResult
from emergency_dispatch.scoring import MultiCriteriaScorer


def _unit(graph: NetworkGraph, unit_id: str, unit_type: UnitType, location_id: str) -> ResponseUnit:
    return ResponseUnit(unit_id, unit_id, unit_type, graph.get_location(location_id))


def test_default_weights_sum_to_one(city: NetworkGraph) -> None:
    assert sum(MultiCriteriaScorer(city).weights.values()) == pytest.approx(1.0)


def test_set_weights_normalises(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)

    scorer.set_weights(2, 2, 0, 0, 0, 0)

    assert scorer.weights["distance"] == pytest.approx(0.5)
    assert scorer.weights["time"] == pytest.approx(0.5)
    assert scorer.weights["fatigue"] == 0.0


def test_set_weights_rejects_invalid_values(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)

    with pytest.raises(InvalidArgumentError):
        scorer.set_weights(0, 0, 0, 0, 0, 0)
    with pytest.raises(InvalidArgumentError):
        scorer.set_weights(1, -1, 0, 0, 0, 0)


def test_sub_scores_stay_in_unit_interval(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)

    for distance in (0.0, 10.0, 50.0, 500.0):
        assert 0.0 <= scorer.distance_score(distance) <= 1.0
        assert 0.0 <= scorer.time_score(distance) <= 1.0
    for workload in (0, 3, 5, 10, 40):
        assert 0.0 <= scorer.availability_score(workload) <= 1.0
        assert 0.0 <= scorer.fatigue_score(workload) <= 1.0
        assert 0.0 <= scorer.load_balance_score(workload, 2.0) <= 1.0


def test_specialization_tiers(city: NetworkGraph) -> None:
    location = city.get_location("C1")
    hazmat = Incident("HZ-1", location, IncidentType.HAZMAT, IncidentSeverity.HIGH)
    fire = Incident("F-1", location, IncidentType.FIRE, IncidentSeverity.HIGH)

    engine = _unit(city, "FIRE-01", UnitType.FIRE_ENGINE, "DC1")
    ambulance = _unit(city, "MED-01", UnitType.AMBULANCE, "DC1")
    rescue = _unit(city, "SAR-01", UnitType.RESCUE_TEAM, "DC1")

    assert MultiCriteriaScorer.specialization_score(engine, hazmat) == 1.0
    assert MultiCriteriaScorer.specialization_score(ambulance, fire) == 0.3
    assert MultiCriteriaScorer.specialization_score(rescue, fire) == 0.5


def test_critical_incidents_get_boosted(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)
    unit = _unit(city, "FIRE-01", UnitType.FIRE_ENGINE, "DC1")
    location = city.get_location("C1")
    path = PathResult(valid=True, total_cost=5.0, path=(unit.location, location))

    high, _ = scorer.score(unit, Incident("A", location, IncidentType.FIRE, IncidentSeverity.HIGH), path, 0, 0.0)
    critical, _ = scorer.score(unit, Incident("B", location, IncidentType.FIRE, IncidentSeverity.CRITICAL), path, 0, 0.0)

    assert critical == pytest.approx(high * 1.2)


def test_optimal_unit_is_closest_specialist(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)
    units = [
        _unit(city, "MED-03", UnitType.AMBULANCE, "DC3"),
        _unit(city, "FIRE-02", UnitType.FIRE_ENGINE, "DC2"),
        _unit(city, "FIRE-01", UnitType.FIRE_ENGINE, "DC1"),
        _unit(city, "POL-01", UnitType.POLICE_CAR, "DC1"),
    ]
    incident = Incident("INC-1", city.get_location("C5"), IncidentType.FIRE, IncidentSeverity.HIGH)

    decision = scorer.find_optimal_unit(incident, units)

    assert decision.unit.unit_id == "FIRE-01"
    assert decision.path.total_cost == pytest.approx(10.0)
    assert decision.criteria["specialization"] == 1.0


def test_workload_steers_away_from_busy_units(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)
    units = [
        _unit(city, "MED-01", UnitType.AMBULANCE, "C1"),
        _unit(city, "MED-02", UnitType.AMBULANCE, "C1"),
    ]
    incident = Incident("INC-1", city.get_location("C2"), IncidentType.MEDICAL, IncidentSeverity.MEDIUM)

    decision = scorer.find_optimal_unit(incident, units, {"MED-01": 8})

    assert decision.unit.unit_id == "MED-02"


def test_no_reachable_candidate(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)
    incident = Incident("INC-1", city.get_location("C1"), IncidentType.FIRE, IncidentSeverity.LOW)

    assert scorer.find_optimal_unit(incident, []) is None
    assert scorer.batch_optimize([incident], []) == {}


def test_batch_optimize_orders_by_priority(city: NetworkGraph) -> None:
    scorer = MultiCriteriaScorer(city)
    units = [_unit(city, "FIRE-01", UnitType.FIRE_ENGINE, "DC1")]
    low = Incident("LOW", city.get_location("C1"), IncidentType.FIRE, IncidentSeverity.LOW)
    critical = Incident("CRIT", city.get_location("C3"), IncidentType.FIRE, IncidentSeverity.CRITICAL)

    assignments = scorer.batch_optimize([low, critical], units)

    assert list(assignments) == ["CRIT"]
    assert assignments["CRIT"].unit.unit_id == "FIRE-01"
