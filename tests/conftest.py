"""Shared fixtures: a three-node triangle and the eight-location reference network."""

import pytest

from emergency_dispatch.demo import build_network, build_system
from emergency_dispatch.models import Location
from emergency_dispatch.network import NetworkGraph


@pytest.fixture
def triangle() -> NetworkGraph:
    graph = NetworkGraph()
    l1 = Location("L1", "First", 0, 0)
    l2 = Location("L2", "Second", 1, 0.9)
    l3 = Location("L3", "Third", 2, 0)
    graph.add_edge(l1, l2, 1.4, 1.4)
    graph.add_edge(l2, l3, 1.4, 1.4)
    graph.add_edge(l1, l3, 2.0, 2.0)
    return graph


@pytest.fixture
def city() -> NetworkGraph:
    return build_network()


@pytest.fixture
def system():
    return build_system()
