"""
Road Graph Package

Live weighted road network with copy-on-write, versioned snapshots.

Components:
- RoadGraphModel: working copy + telemetry + snapshot publication
- GraphSnapshot / SegmentView: immutable views consumed by routing
- CongestionModel: congestion penalty curve
"""

from .weights import (
    CongestionModel,
    decay_factors,
    great_circle_m,
    segment_weight,
)

from .snapshot import (
    GraphSnapshot,
    SegmentView,
    build_snapshot,
)

from .road_graph import (
    RoadGraphModel,
    get_road_graph,
    init_road_graph,
)


__all__ = [
    "CongestionModel",
    "decay_factors",
    "great_circle_m",
    "segment_weight",
    "GraphSnapshot",
    "SegmentView",
    "build_snapshot",
    "RoadGraphModel",
    "get_road_graph",
    "init_road_graph",
]
