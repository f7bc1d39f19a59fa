"""
Graph Snapshot

Immutable, versioned view of the road graph used for the whole duration
of one route or corridor computation.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple
import time

from greenroute.graph.weights import great_circle_m
from greenroute.models.network import Intersection


@dataclass(frozen=True)
class SegmentView:
    """Per-snapshot state of one road segment"""
    id: str
    from_node: str
    to_node: str
    length_m: float
    lanes: int
    speed_limit_kmh: float
    capacity_vph: float
    load: float
    base_travel_time: float
    congestion_penalty: float
    signal_delay: float
    weight: float

    @property
    def utilization(self) -> float:
        return self.load / self.capacity_vph

    @property
    def over_capacity(self) -> bool:
        return self.load > self.capacity_vph


@dataclass(frozen=True)
class GraphSnapshot:
    """
    Immutable graph view

    Adjacency lists are sorted by segment id so every search over the
    snapshot explores neighbours in the same order.
    """
    version: int
    created_at: float
    intersections: Mapping[str, Intersection]
    segments: Mapping[str, SegmentView]
    outgoing: Mapping[str, Tuple[str, ...]]
    max_speed_kmh: float = 0.0
    heuristic_scale: float = 1.0
    has_turn_restrictions: bool = False
    stale_segments: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> "GraphSnapshot":
        return build_snapshot(0, time.time(), {}, [])

    def __len__(self) -> int:
        return len(self.segments)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.intersections

    def segment(self, segment_id: str) -> SegmentView:
        return self.segments[segment_id]

    def intersection(self, node_id: str) -> Intersection:
        return self.intersections[node_id]

    def outgoing_segments(self, node_id: str) -> Tuple[SegmentView, ...]:
        return tuple(self.segments[sid] for sid in self.outgoing.get(node_id, ()))

    def utilization(self, segment_id: str, extra_load: float = 0.0) -> float:
        seg = self.segments[segment_id]
        return (seg.load + extra_load) / seg.capacity_vph

    def straight_line_m(self, a: str, b: str) -> float:
        na = self.intersections[a]
        nb = self.intersections[b]
        return great_circle_m(na.lat, na.lon, nb.lat, nb.lon)

    def summary(self) -> Dict[str, object]:
        """Convert snapshot header to dictionary for API response"""
        return {
            'version': self.version,
            'createdAt': self.created_at,
            'intersections': len(self.intersections),
            'segments': len(self.segments),
            'overCapacity': sorted(s.id for s in self.segments.values() if s.over_capacity),
            'staleSegments': list(self.stale_segments),
            'maxSpeedKmh': self.max_speed_kmh,
        }


def build_snapshot(
    version: int,
    created_at: float,
    intersections: Mapping[str, Intersection],
    segment_views: Iterable[SegmentView],
    stale_segments: Optional[Iterable[str]] = None,
) -> GraphSnapshot:
    """
    Assemble an immutable snapshot from finished segment views

    The heuristic scale is the smallest ratio of road length to straight
    line distance (capped at 1), which keeps the great-circle heuristic
    admissible even when coordinates and declared lengths disagree.
    """
    segments: Dict[str, SegmentView] = {}
    outgoing: Dict[str, list] = {node_id: [] for node_id in intersections}
    max_speed = 0.0
    scale = 1.0

    for view in segment_views:
        segments[view.id] = view
        outgoing.setdefault(view.from_node, []).append(view.id)
        max_speed = max(max_speed, view.speed_limit_kmh)

        a = intersections.get(view.from_node)
        b = intersections.get(view.to_node)
        if a is not None and b is not None:
            straight = great_circle_m(a.lat, a.lon, b.lat, b.lon)
            if straight > 0:
                scale = min(scale, view.length_m / straight)

    restricted = any(node.turn_restrictions for node in intersections.values())

    return GraphSnapshot(
        version=version,
        created_at=created_at,
        intersections=MappingProxyType(dict(intersections)),
        segments=MappingProxyType(segments),
        outgoing=MappingProxyType({k: tuple(sorted(v)) for k, v in outgoing.items()}),
        max_speed_kmh=max_speed,
        heuristic_scale=scale,
        has_turn_restrictions=restricted,
        stale_segments=tuple(sorted(stale_segments or ())),
    )
