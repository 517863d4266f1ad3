from __future__ import annotations

import argparse
from typing import List, Optional

from emergency_dispatch.config import setup_logging
from emergency_dispatch.models import (
    IncidentSeverity,
    IncidentType,
    Location,
    LocationType,
    ResponseUnit,
    UnitType,
)
from emergency_dispatch.network import NetworkGraph
from emergency_dispatch.simulation import SimulationConfig, SimulationEngine
from emergency_dispatch.system import EmergencyResponseSystem

LOCATIONS = [
    ("DC1", "Central Dispatch", 0, 0, LocationType.DISPATCH_CENTER),
    ("DC2", "North Dispatch", 10, 10, LocationType.DISPATCH_CENTER),
    ("DC3", "South Dispatch", -10, -10, LocationType.DISPATCH_CENTER),
    ("C1", "Downtown", 2, 2, LocationType.CITY),
    ("C2", "Riverside", 5, 5, LocationType.CITY),
    ("C3", "Hillside", 8, 3, LocationType.CITY),
    ("C4", "Westend", -5, -5, LocationType.CITY),
    ("C5", "Eastside", 5, -3, LocationType.CITY),
]

ROADS = [
    ("DC1", "C1", 2.8, 5.0),
    ("DC1", "C4", 7.1, 12.0),
    ("DC1", "C5", 5.8, 10.0),
    ("C1", "C2", 4.2, 8.0),
    ("C2", "C3", 4.5, 9.0),
    ("C2", "DC2", 7.1, 13.0),
    ("C3", "DC2", 7.8, 14.0),
    ("C4", "DC3", 7.1, 12.0),
    ("C5", "C3", 6.7, 11.0),
    ("DC2", "DC3", 28.3, 45.0),
]

UNITS = [
    ("FIRE-01", "Engine 1", UnitType.FIRE_ENGINE, "DC1"),
    ("FIRE-02", "Engine 2", UnitType.FIRE_ENGINE, "DC2"),
    ("MED-01", "Ambulance 1", UnitType.AMBULANCE, "DC1"),
    ("MED-02", "Ambulance 2", UnitType.AMBULANCE, "DC2"),
    ("MED-03", "Ambulance 3", UnitType.AMBULANCE, "DC3"),
    ("POL-01", "Police Car 1", UnitType.POLICE_CAR, "DC1"),
    ("POL-02", "Police Car 2", UnitType.POLICE_CAR, "DC3"),
]

INCIDENTS = [
    ("C1", IncidentType.MEDICAL, IncidentSeverity.HIGH),
    ("C2", IncidentType.FIRE, IncidentSeverity.CRITICAL),
    ("C3", IncidentType.POLICE, IncidentSeverity.MEDIUM),
    ("C4", IncidentType.MEDICAL, IncidentSeverity.LOW),
    ("C5", IncidentType.MEDICAL, IncidentSeverity.CRITICAL),
]


def build_network() -> NetworkGraph:
    graph = NetworkGraph()
    for location_id, name, x, y, location_type in LOCATIONS:
        graph.add_location(Location(location_id, name, x, y, location_type))
    for source_id, destination_id, distance, travel_time in ROADS:
        graph.add_edge(graph.get_location(source_id), graph.get_location(destination_id), distance, travel_time)
    return graph


def build_system(path_strategy: str = "dijkstra", use_scorer: bool = False) -> EmergencyResponseSystem:
    system = EmergencyResponseSystem(build_network(), path_strategy=path_strategy, use_scorer=use_scorer)
    for unit_id, name, unit_type, location_id in UNITS:
        system.register_unit(ResponseUnit(unit_id, name, unit_type, system.graph.get_location(location_id)))
    return system


def report_demo_incidents(system: EmergencyResponseSystem) -> None:
    for location_id, incident_type, severity in INCIDENTS:
        system.create_incident(location_id, incident_type, severity)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the emergency dispatch demo on the reference network.")
    parser.add_argument("--strategy", default="dijkstra", choices=["dijkstra", "astar"])
    parser.add_argument("--scorer", action="store_true", help="rank units with the multi-criteria scorer")
    parser.add_argument("--simulate", type=int, default=0, metavar="MINUTES", help="run a simulation afterwards")
    parser.add_argument("--export", action="store_true", help="write CSV and PDF summaries to the export directory")
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    setup_logging(args.log_level or "WARNING")

    system = build_system(args.strategy, args.scorer)
    report_demo_incidents(system)
    decisions = system.dispatch_all()
    system.record_unserved()

    print("=== Emergency Dispatch Plan ===")
    print(f"Network: {system.graph.location_count} locations, {system.graph.edge_count} roads")
    print(f"Strategy: {system.path_finder.name}{' + multi-criteria scorer' if args.scorer else ''}")
    for decision in decisions:
        print(f"\n{decision.incident.incident_id} -> {decision.unit.name} ({decision.unit.unit_id})")
        for action in system.action_plan(decision):
            print(f" - {action}")

    source, destination = system.graph.get_location("DC3"), system.graph.get_location("C3")
    print("\nPath strategies DC3 -> C3:")
    for strategy in ("dijkstra", "astar"):
        print(f" - {strategy}: {system.find_shortest_path(source, destination, strategy).describe()}")

    print("\nDemand scores:")
    for location, score in sorted(system.calculate_demand_scores().items(), key=lambda item: -item[1]):
        print(f" - {location.name}: {score:.1f}")

    print()
    print(system.metrics.generate_report())

    if args.export:
        csv_path = system.metrics.export_csv()
        pdf_path = csv_path.with_suffix(".pdf")
        pdf_path.write_bytes(system.metrics.build_pdf_summary())
        print(f"\nExported {csv_path} and {pdf_path}")

    if args.simulate > 0:
        sim_system = build_system(args.strategy, args.scorer)
        result = SimulationEngine(sim_system, SimulationConfig()).run(args.simulate)
        print(f"\n=== Simulation ({args.simulate} minutes) ===")
        print(f"Incidents generated: {result.total_incidents}")
        print(f"Repositioning moves: {len(result.events_of('UNIT_REPOSITIONED'))}")
        print(result.metrics.generate_report())


if __name__ == "__main__":
    main()
