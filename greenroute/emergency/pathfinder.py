"""
Emergency Pathfinder - Dijkstra with Corridor Weighting

Path calculation for emergency vehicles. Unlike ordinary routing the
weight excludes the congestion-load penalty (a true shortest path, not a
load-balanced one) but keeps a signal-delay estimate that is discounted
inside coordination groups. Paths are compared on
(coordination hand-offs, travel time, edge-id sequence), where a hand-off
is a step across a declared group boundary; between ungrouped
intersections travel time alone decides.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from greenroute.errors import NoRouteError, OptimizationTimeoutError
from greenroute.graph.snapshot import GraphSnapshot, SegmentView
from greenroute.graph.weights import great_circle_m
from greenroute.routing.search import SearchTimeout, best_first_search

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyRoute:
    """Route computed for an emergency vehicle"""
    node_ids: List[str]
    edge_ids: List[str]
    lengths_m: List[float]
    travel_time_s: float
    handoffs: int
    coordination_groups: int
    snapshot_version: int


class EmergencyPathfinder:
    """
    Calculate the corridor path for an emergency vehicle

    Features:
    - Dijkstra (no heuristic) over (hand-offs, travel time)
    - Congestion penalty excluded, signal delay discounted in groups
    - Arrival-time estimation along a route
    - Nearest-intersection lookup for GPS positions

    Usage:
        pathfinder = EmergencyPathfinder(config)
        route = pathfinder.find_path(snapshot, "J-0", "J-8")
        offsets = pathfinder.arrival_offsets(route.lengths_m, speed_mps=14)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize pathfinder

        Args:
            config: Emergency configuration section
        """
        config = config or {}
        self.coordinated_delay_factor = float(config.get('coordinatedDelayFactor', 0.5))
        self.search_budget = float(config.get('searchBudget', 10.0))

        # Statistics
        self.paths_found = 0
        self.paths_failed = 0

    def corridor_weight(self, snapshot: GraphSnapshot, segment: SegmentView) -> float:
        """Travel time plus signal delay, discounted for grouped intersections"""
        target = snapshot.intersections[segment.to_node]
        delay = segment.signal_delay
        if target.coordination_group is not None:
            delay *= self.coordinated_delay_factor
        return segment.base_travel_time + delay

    def find_path(self, snapshot: GraphSnapshot, origin: str, destination: str) -> EmergencyRoute:
        """
        Find the corridor path between two intersections

        Args:
            snapshot: Snapshot to search
            origin: Vehicle's current intersection ID
            destination: Target intersection ID (hospital, incident, ...)

        Returns:
            EmergencyRoute

        Raises:
            NoRouteError: If disconnected or either endpoint is unknown
            OptimizationTimeoutError: If the search budget runs out
        """
        start_time = time.monotonic()
        for node in (origin, destination):
            if not snapshot.has_node(node):
                self.paths_failed += 1
                raise NoRouteError(origin, destination, snapshot.version, reason=f"unknown intersection {node}")

        def edge_cost(seg: SegmentView):
            source = snapshot.intersections[seg.from_node]
            target = snapshot.intersections[seg.to_node]
            handoff = 1.0 if source.hands_off_to(target) else 0.0
            return (handoff, self.corridor_weight(snapshot, seg))

        try:
            result = best_first_search(
                snapshot, origin, destination,
                edge_cost=edge_cost,
                zero=(0.0, 0.0),
                deadline=start_time + self.search_budget,
            )
        except SearchTimeout as e:
            self.paths_failed += 1
            raise OptimizationTimeoutError(
                f"Emergency path {origin} -> {destination} not found within {self.search_budget:.1f}s "
                f"({e.expansions} expansions)",
                budget_s=self.search_budget,
            )

        if result is None:
            self.paths_failed += 1
            logger.error("[EMERGENCY] No path found: %s -> %s (v%d)", origin, destination, snapshot.version)
            raise NoRouteError(origin, destination, snapshot.version)

        self.paths_found += 1
        elapsed = (time.monotonic() - start_time) * 1000
        logger.info(
            "[EMERGENCY] Path found: %d intersections, %d expansions, %.1fms",
            len(result.node_ids), result.expansions, elapsed,
        )
        return EmergencyRoute(
            node_ids=list(result.node_ids),
            edge_ids=list(result.edge_ids),
            lengths_m=[snapshot.segment(sid).length_m for sid in result.edge_ids],
            travel_time_s=result.cost[1],
            handoffs=int(result.cost[0]),
            coordination_groups=self._count_groups(snapshot, result.node_ids),
            snapshot_version=snapshot.version,
        )

    @staticmethod
    def _count_groups(snapshot: GraphSnapshot, node_ids: Sequence[str]) -> int:
        """Number of declared coordination groups entered along a route"""
        runs = 0
        previous = None
        for node_id in node_ids:
            group = snapshot.intersections[node_id].coordination_group
            if group is not None and group != previous:
                runs += 1
            previous = group
        return runs

    @staticmethod
    def arrival_offsets(lengths_m: Sequence[float], speed_mps: float) -> List[float]:
        """
        Seconds from the first intersection to each intersection of a route

        Args:
            lengths_m: Route segment lengths in travel order
            speed_mps: Estimated vehicle speed

        Returns:
            One offset per intersection (len(lengths_m) + 1), starting at 0
        """
        if speed_mps <= 0:
            raise ValueError("speed must be positive")

        offsets = [0.0]
        for length in lengths_m:
            offsets.append(offsets[-1] + length / speed_mps)
        return offsets

    def nearest_intersection(self, snapshot: GraphSnapshot, lat: float, lon: float) -> Optional[str]:
        """Find the intersection closest to a GPS position"""
        best_id = None
        best_distance = float('inf')
        for node_id in sorted(snapshot.intersections):
            node = snapshot.intersections[node_id]
            distance = great_circle_m(lat, lon, node.lat, node.lon)
            if distance < best_distance:
                best_distance = distance
                best_id = node_id
        return best_id

    def nearest_index(
        self,
        snapshot: GraphSnapshot,
        node_ids: Sequence[str],
        lat: float,
        lon: float,
        start_index: int = 0,
    ) -> int:
        """
        Index of the route intersection nearest a position, never moving back

        Args:
            snapshot: Snapshot holding intersection coordinates
            node_ids: Route intersections in travel order
            lat, lon: Reported vehicle position
            start_index: Current progress index

        Returns:
            Progress index >= start_index
        """
        best_idx = start_index
        best_distance = float('inf')
        for idx in range(start_index, len(node_ids)):
            node = snapshot.intersections.get(node_ids[idx])
            if node is None:
                continue
            distance = great_circle_m(lat, lon, node.lat, node.lon)
            if distance < best_distance:
                best_distance = distance
                best_idx = idx
        return best_idx

    @staticmethod
    def get_next_junctions(path: Sequence[str], current_index: int, lookahead: int) -> List[str]:
        """
        Get the intersections held open from the current position

        Returns:
            Current intersection plus up to lookahead - 1 beyond it
        """
        if current_index < 0:
            current_index = 0
        return list(path[current_index:current_index + max(1, lookahead)])

    def get_statistics(self) -> Dict[str, Any]:
        """Get pathfinder statistics"""
        return {
            'pathsFound': self.paths_found,
            'pathsFailed': self.paths_failed,
        }
