"""
Shared test fixtures

Square network used throughout:

    A ---- B
    |      |
    D ---- C

Every side is a pair of 500 m, 50 km/h segments ("S-A-B", "S-B-A", ...).
A -> C has two equal-cost paths; the edge-id tie-break picks the one via B.
"""

import pytest

from greenroute.graph import RoadGraphModel
from greenroute.models import Intersection, RoadSegment


class FakeClock:
    """Manually advanced wall clock"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


SQUARE_COORDS = {
    "A": (0.0, 0.0),
    "B": (0.0, 0.0045),
    "C": (0.0045, 0.0045),
    "D": (0.0045, 0.0),
}

SQUARE_SIDES = [("A", "B"), ("B", "C"), ("C", "D"), ("D", "A")]


def make_intersections(coords=None, groups=None, extra=None):
    coords = coords or SQUARE_COORDS
    groups = groups or {}
    nodes = [
        Intersection(id=node_id, lat=lat, lon=lon, coordination_group=groups.get(node_id))
        for node_id, (lat, lon) in coords.items()
    ]
    for node in extra or []:
        nodes.append(node)
    return nodes


def make_segment(a, b, length_m=500.0, speed_kmh=50.0, capacity=1200.0, load=0.0):
    return RoadSegment(
        id=f"S-{a}-{b}",
        from_node=a,
        to_node=b,
        length_m=length_m,
        speed_limit_kmh=speed_kmh,
        capacity_vph=capacity,
        load=load,
    )


def make_square_segments(capacity=1200.0):
    segments = []
    for a, b in SQUARE_SIDES:
        segments.append(make_segment(a, b, capacity=capacity))
        segments.append(make_segment(b, a, capacity=capacity))
    return segments


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def graph(clock):
    """Square network loaded into a fresh graph (snapshot v1)"""
    model = RoadGraphModel(clock=clock)
    model.load_network(make_intersections(), make_square_segments())
    return model


@pytest.fixture
def graph_with_island(clock):
    """Square network plus an unconnected intersection E"""
    model = RoadGraphModel(clock=clock)
    island = Intersection(id="E", lat=0.01, lon=0.01)
    model.load_network(make_intersections(extra=[island]), make_square_segments())
    return model
