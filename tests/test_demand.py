import math

import pytest

from emergency_dispatch.demand import DemandPredictor, IncidentHistory, Repositioner
from emergency_dispatch.dispatch import DispatchEngine
from emergency_dispatch.models import (
    Incident,
    IncidentSeverity,
    IncidentType,
    ResponseUnit,
    UnitStatus,
    UnitType,
)
from emergency_dispatch.network import NetworkGraph


def _record(predictor: DemandPredictor, graph: NetworkGraph, location_id: str, count: int,
            severity: IncidentSeverity = IncidentSeverity.CRITICAL) -> None:
    location = graph.get_location(location_id)
    for index in range(count):
        predictor.record_incident(Incident(f"{location_id}-{index}", location, IncidentType.MEDICAL, severity))


def _ambulance(graph: NetworkGraph, unit_id: str, location_id: str) -> ResponseUnit:
    return ResponseUnit(unit_id, f"Ambulance {unit_id}", UnitType.AMBULANCE, graph.get_location(location_id))


def test_demand_score_is_severity_sum_over_window(city: NetworkGraph) -> None:
    history = IncidentHistory(city.get_location("C1"), window=10)
    for index, severity in enumerate([IncidentSeverity.LOW, IncidentSeverity.HIGH, IncidentSeverity.CRITICAL]):
        history.add(Incident(f"I{index}", city.get_location("C1"), IncidentType.FIRE, severity))

    # Frequency cancels out of frequency * average severity.
    assert history.demand_score == 1 + 3 + 4


def test_window_evicts_oldest_but_keeps_totals(city: NetworkGraph) -> None:
    predictor = DemandPredictor(window=3)
    _record(predictor, city, "C2", 5, IncidentSeverity.LOW)

    history = predictor.history(city.get_location("C2"))

    assert history.recent_incident_rate == 3
    assert history.total_incidents == 5
    assert history.type_distribution() == {IncidentType.MEDICAL: 5}
    assert predictor.demand_score(city.get_location("C2")) == 3.0


def test_untracked_locations_have_no_demand(city: NetworkGraph) -> None:
    predictor = DemandPredictor()

    assert predictor.calculate_demand_scores() == {}
    assert predictor.demand_score(city.get_location("C1")) == 0.0
    assert predictor.incident_probability(city.get_location("C1")) == 0.0


def test_incident_probability_saturates(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    _record(predictor, city, "C1", 3)
    _record(predictor, city, "C2", 12)

    assert predictor.incident_probability(city.get_location("C1")) == pytest.approx(0.3)
    assert predictor.incident_probability(city.get_location("C2")) == 1.0


def test_top_n_by_demand(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    _record(predictor, city, "C1", 1)
    _record(predictor, city, "C2", 3)
    _record(predictor, city, "C3", 2)

    assert [location.location_id for location in predictor.top_n_by_demand(2)] == ["C2", "C3"]
    assert predictor.top_n_by_demand(0) == []


def test_coverage_counts_only_available_units(city: NetworkGraph) -> None:
    repositioner = Repositioner(city, DemandPredictor())
    here = _ambulance(city, "MED-01", "C1")
    busy = _ambulance(city, "MED-02", "C1")
    busy.status = UnitStatus.DISPATCHED

    assert repositioner.coverage_score(city.get_location("C1"), [here, busy]) == pytest.approx(10.0)
    assert repositioner.coverage_score(city.get_location("C2"), [here]) == pytest.approx(10.0 / 9.0)


def test_recommends_moving_idle_unit_to_hot_spot(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    _record(predictor, city, "C3", 10)
    unit = _ambulance(city, "MED-03", "DC3")
    repositioner = Repositioner(city, predictor)

    recommendations = repositioner.recommend_repositioning([unit])

    assert len(recommendations) == 1
    rec = recommendations[0]
    assert rec.unit is unit
    assert rec.origin.location_id == "DC3"
    assert rec.target.location_id == "C3"
    assert rec.benefit == pytest.approx(1.0)
    assert rec.path.total_cost == pytest.approx(45.0)
    assert "Ambulance MED-03" in rec.describe()


def test_no_recommendation_without_idle_units_or_demand(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    busy = _ambulance(city, "MED-01", "DC1")
    busy.status = UnitStatus.DISPATCHED
    repositioner = Repositioner(city, predictor)

    assert repositioner.recommend_repositioning([_ambulance(city, "MED-02", "DC1")]) == []
    _record(predictor, city, "C3", 10)
    assert repositioner.recommend_repositioning([busy]) == []


def test_benefit_below_threshold_is_ignored(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    _record(predictor, city, "C3", 10)
    _record(predictor, city, "DC3", 8)
    repositioner = Repositioner(city, predictor)

    # (40 - 32) / 40 = 0.2 is below the default threshold.
    assert repositioner.recommend_repositioning([_ambulance(city, "MED-03", "DC3")]) == []


def test_each_cycle_is_capped_and_uses_a_unit_once(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    for location_id in ("C2", "C3", "C4", "C5"):
        _record(predictor, city, location_id, 10)
    units = [_ambulance(city, f"MED-{index}", "DC2") for index in range(4)]
    repositioner = Repositioner(city, predictor, max_per_cycle=2)

    recommendations = repositioner.recommend_repositioning(units)

    assert len(recommendations) == 2
    assert len({rec.unit.unit_id for rec in recommendations}) == 2


def test_apply_goes_through_the_engine(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    _record(predictor, city, "C3", 10)
    engine = DispatchEngine(city)
    unit = _ambulance(city, "MED-03", "DC3")
    engine.register_unit(unit)
    repositioner = Repositioner(city, predictor, engine=engine)
    rec = repositioner.recommend_repositioning(engine.units())[0]

    assert repositioner.apply_repositioning(rec) is True
    assert unit.location.location_id == "C3"


def test_apply_skips_unit_dispatched_in_the_meantime(city: NetworkGraph) -> None:
    predictor = DemandPredictor()
    _record(predictor, city, "C3", 10)
    unit = _ambulance(city, "MED-03", "DC3")
    repositioner = Repositioner(city, predictor)
    rec = repositioner.recommend_repositioning([unit])[0]

    unit.status = UnitStatus.DISPATCHED

    assert repositioner.apply_repositioning(rec) is False
    assert unit.location.location_id == "DC3"


def test_load_balance(city: NetworkGraph) -> None:
    repositioner = Repositioner(city, DemandPredictor())
    c1, c2 = city.get_location("C1"), city.get_location("C2")
    units = [_ambulance(city, "MED-01", "C1"), _ambulance(city, "MED-02", "C2")]

    assert math.isinf(repositioner.load_balance([], {c1: 1.0}))
    assert repositioner.load_balance(units, {}) == 0.0
    assert repositioner.load_balance(units, {c1: 1.0, c2: 1.0}) == pytest.approx(0.0)
    assert repositioner.load_balance(units, {c1: 1.0}) == pytest.approx(1.0)
