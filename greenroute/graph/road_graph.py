"""
Road Graph Model - Live Weighted Network

Owns the canonical road graph and its dynamic per-segment weights.

Congestion updates mutate a private working copy under a single writer
lock; readers only ever see published GraphSnapshot objects, and a
publication is a plain reference swap. A computation that started on
snapshot N finishes on N even if N+1 is published meanwhile.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import networkx as nx
import numpy as np

from greenroute.errors import InvalidTopologyError, StaleTelemetryWarning, UnknownSegmentError
from greenroute.graph.snapshot import GraphSnapshot, SegmentView, build_snapshot
from greenroute.graph.weights import CongestionModel, decay_factors, segment_weight
from greenroute.models.network import Intersection, RoadSegment
from greenroute.models.routing import RoutePlan
from greenroute.models.telemetry import CongestionTelemetry

logger = logging.getLogger(__name__)


@dataclass
class _SegmentState:
    """Mutable working-copy state for one segment"""
    segment: RoadSegment
    observed_load: float
    observed_at: float
    provisional_load: float = 0.0
    last_cause: Optional[str] = None
    weight: float = 0.0
    stale_reported: bool = False


class RoadGraphModel:
    """
    Canonical road graph with copy-on-write snapshots

    Responsibilities:
    - Validate and load network topology
    - Apply congestion telemetry to the working copy
    - Decay stale congestion toward free flow
    - Publish immutable snapshots on demand
    - Hold provisional load reservations from confirmed route plans

    Usage:
        graph = RoadGraphModel(config)
        graph.load_network(intersections, segments)
        graph.apply_congestion_update("S-1", observed_load=900, cause="incident")
        snapshot = graph.publish()
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, clock: Callable[[], float] = time.time):
        """
        Initialize road graph model

        Args:
            config: Graph configuration section (congestion, decayHalfLife, ...)
            clock: Wall clock, injectable for tests
        """
        config = config or {}
        self.clock = clock
        self.congestion = CongestionModel(config.get('congestion', {}))
        self.decay_half_life = float(config.get('decayHalfLife', 300.0))
        self.stale_after = float(config.get('staleAfter', 1800.0))
        self.default_signal_delay = float(config.get('defaultSignalDelay', 8.0))

        self._lock = threading.Lock()
        self._intersections: Dict[str, Intersection] = {}
        self._states: Dict[str, _SegmentState] = {}
        self._signal_delays: Dict[str, float] = {}

        self._version = 0
        self._published: GraphSnapshot = GraphSnapshot.empty()
        self._published_at = self.clock()
        self._pending_change = 0.0
        self._dirty = False

        self._listeners: List[Callable[[str, float], None]] = []

        # Statistics
        self.updates_applied = 0
        self.updates_ignored = 0
        self.snapshots_published = 0
        self.topology_loads = 0
        self.topology_rejections = 0
        self.unreachable_intersections: List[str] = []

        logger.info("[GRAPH] Road graph model initialized (half-life %.0fs)", self.decay_half_life)

    # ============================================
    # Topology
    # ============================================

    def load_network(
        self,
        intersections: Iterable[Intersection],
        segments: Iterable[RoadSegment],
    ) -> GraphSnapshot:
        """
        Replace the network topology and publish a fresh snapshot

        Args:
            intersections: Intersection definitions
            segments: Directed road segment definitions

        Returns:
            The newly published snapshot

        Raises:
            InvalidTopologyError: If the definitions are inconsistent; the
                previously loaded topology stays active
        """
        intersections = list(intersections)
        segments = list(segments)
        problems = self._validate_topology(intersections, segments)

        if problems:
            self.topology_rejections += 1
            logger.error("[GRAPH] Topology rejected: %s", "; ".join(problems))
            raise InvalidTopologyError(f"Invalid topology: {problems[0]}", problems)

        now = self.clock()
        states = {
            seg.id: _SegmentState(segment=seg, observed_load=seg.load, observed_at=now)
            for seg in segments
        }

        with self._lock:
            self._intersections = {node.id: node for node in intersections}
            self._states = states
            self._signal_delays = {}
            for state in self._states.values():
                state.weight = self._current_weight(state, now)
            snapshot = self._publish_locked(now)

        self.topology_loads += 1
        self.unreachable_intersections = self._outside_main_component(intersections, segments)
        logger.info(
            "[GRAPH] Network loaded: %d intersections, %d segments (v%d)",
            len(intersections), len(segments), snapshot.version,
        )
        if self.unreachable_intersections:
            logger.warning(
                "[GRAPH] %d intersection(s) outside the main strongly connected component: %s",
                len(self.unreachable_intersections), ", ".join(self.unreachable_intersections[:10]),
            )
        return snapshot

    @staticmethod
    def _outside_main_component(intersections: List[Intersection], segments: List[RoadSegment]) -> List[str]:
        """Intersections that cannot both reach and be reached from the bulk of the network"""
        road_graph = nx.DiGraph()
        road_graph.add_nodes_from(node.id for node in intersections)
        road_graph.add_edges_from((seg.from_node, seg.to_node) for seg in segments)
        if road_graph.number_of_nodes() == 0:
            return []

        main = max(nx.strongly_connected_components(road_graph), key=lambda c: (len(c), sorted(c)))
        return sorted(n for n in road_graph.nodes if n not in main)

    def _validate_topology(self, intersections: List[Intersection], segments: List[RoadSegment]) -> List[str]:
        problems: List[str] = []
        node_ids = set()
        for node in intersections:
            if node.id in node_ids:
                problems.append(f"duplicate intersection id {node.id}")
            node_ids.add(node.id)

        seen: Dict[str, RoadSegment] = {}
        for seg in segments:
            if seg.from_node not in node_ids:
                problems.append(f"segment {seg.id} references unknown intersection {seg.from_node}")
            if seg.to_node not in node_ids:
                problems.append(f"segment {seg.id} references unknown intersection {seg.to_node}")
            if seg.from_node == seg.to_node:
                problems.append(f"segment {seg.id} is a self-loop at {seg.from_node}")
            previous = seen.get(seg.id)
            if previous is not None:
                if (previous.from_node, previous.to_node) == (seg.from_node, seg.to_node):
                    problems.append(
                        f"conflicting definitions of segment {seg.id} between {seg.from_node} and {seg.to_node}"
                    )
                else:
                    problems.append(f"duplicate segment id {seg.id}")
            seen[seg.id] = seg

        for node in intersections:
            for restriction in node.turn_restrictions:
                for sid in (restriction.from_segment, restriction.to_segment):
                    if sid not in seen:
                        problems.append(f"turn restriction at {node.id} references unknown segment {sid}")
        return problems

    # ============================================
    # Telemetry
    # ============================================

    def apply_congestion_update(
        self,
        segment_id: str,
        observed_load: float,
        cause: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> bool:
        """
        Apply an observed load to the working copy

        Telemetry supersedes any provisional reservation on the segment.

        Args:
            segment_id: Road segment ID
            observed_load: Observed load (vehicles/hour), may exceed capacity
            cause: Congestion cause reported by the intelligence collaborator
            timestamp: Observation time (default: now)

        Returns:
            True if applied, False if ignored as out-of-order

        Raises:
            UnknownSegmentError: If the segment is not in the network
            ValueError: If the load is negative or not finite
        """
        if not np.isfinite(observed_load) or observed_load < 0:
            raise ValueError(f"observed load must be finite and non-negative, got {observed_load}")

        now = self.clock()
        observed_at = now if timestamp is None else float(timestamp)

        with self._lock:
            state = self._states.get(segment_id)
            if state is None:
                raise UnknownSegmentError(segment_id)

            if observed_at < state.observed_at:
                self.updates_ignored += 1
                stale = True
            else:
                stale = False
                old_weight = state.weight
                state.observed_load = float(observed_load)
                state.observed_at = observed_at
                state.provisional_load = 0.0
                state.last_cause = cause
                state.stale_reported = False
                state.weight = self._current_weight(state, now)
                delta = abs(state.weight - old_weight)
                self._pending_change += delta
                self._dirty = True
                self.updates_applied += 1

        if stale:
            logger.warning(
                "[GRAPH] %s: out-of-order telemetry for %s ignored (%.1f < last %.1f)",
                StaleTelemetryWarning.__name__, segment_id, observed_at, state.observed_at,
            )
            return False

        self._notify(segment_id, delta)
        return True

    def apply_telemetry(self, telemetry: CongestionTelemetry) -> bool:
        """Apply a telemetry record from the intelligence collaborator"""
        return self.apply_congestion_update(
            telemetry.segment_id,
            telemetry.observed_load,
            cause=telemetry.congestion_cause,
            timestamp=telemetry.timestamp,
        )

    def update_signal_delay(self, intersection_id: str, seconds: float):
        """Record the signal collaborator's delay estimate for an intersection"""
        if seconds < 0 or not np.isfinite(seconds):
            raise ValueError("signal delay must be finite and non-negative")

        now = self.clock()
        total_delta = 0.0
        with self._lock:
            if intersection_id not in self._intersections:
                raise KeyError(f"Unknown intersection: {intersection_id}")
            self._signal_delays[intersection_id] = float(seconds)
            for state in self._states.values():
                if state.segment.to_node == intersection_id:
                    old_weight = state.weight
                    state.weight = self._current_weight(state, now)
                    total_delta += abs(state.weight - old_weight)
            self._pending_change += total_delta
            self._dirty = True

        self._notify(intersection_id, total_delta)

    # ============================================
    # Provisional reservations
    # ============================================

    def reserve_load(self, plan: RoutePlan):
        """Register a plan's load increments until telemetry supersedes them"""
        self._adjust_provisional(plan.load_increments, sign=1.0)

    def reserve_plans(self, plans: Iterable[RoutePlan]):
        """Reserve several plans at once; nothing is reserved if any names an unknown segment"""
        merged: Dict[str, float] = {}
        for plan in plans:
            for sid, amount in plan.load_increments.items():
                merged[sid] = merged.get(sid, 0.0) + amount
        self._adjust_provisional(merged, sign=1.0)

    def release_load(self, plan: RoutePlan):
        """Withdraw a previously reserved plan"""
        self._adjust_provisional(plan.load_increments, sign=-1.0)

    def _adjust_provisional(self, increments: Dict[str, float], sign: float):
        now = self.clock()
        total_delta = 0.0
        with self._lock:
            unknown = [sid for sid in increments if sid not in self._states]
            if unknown:
                raise UnknownSegmentError(unknown[0])
            for sid, amount in increments.items():
                state = self._states[sid]
                old_weight = state.weight
                state.provisional_load = max(0.0, state.provisional_load + sign * amount)
                state.weight = self._current_weight(state, now)
                total_delta += abs(state.weight - old_weight)
            self._pending_change += total_delta
            self._dirty = True

        self._notify("provisional", total_delta)

    # ============================================
    # Snapshots
    # ============================================

    def current_snapshot(self) -> GraphSnapshot:
        """
        Get the latest published snapshot

        Never blocks and never returns a partially built graph.
        """
        return self._published

    def publish(self) -> GraphSnapshot:
        """Build a snapshot from the working copy and publish it"""
        now = self.clock()
        with self._lock:
            snapshot = self._publish_locked(now)

        if snapshot.stale_segments:
            logger.warning(
                "[GRAPH] %s: %d segment(s) without telemetry for over %.0fs: %s",
                StaleTelemetryWarning.__name__,
                len(snapshot.stale_segments), self.stale_after,
                ", ".join(snapshot.stale_segments[:5]),
            )
        logger.debug("[GRAPH] Published snapshot v%d", snapshot.version)
        return snapshot

    def _publish_locked(self, now: float) -> GraphSnapshot:
        states = list(self._states.values())
        ages = np.array([now - s.observed_at for s in states], dtype=float)
        factors = decay_factors(ages, self.decay_half_life)

        views = []
        newly_stale = []
        for state, age, factor in zip(states, ages, factors):
            view = self._segment_view(state, float(factor))
            state.weight = view.weight
            views.append(view)
            if age > self.stale_after and state.observed_load > 0 and not state.stale_reported:
                state.stale_reported = True
                newly_stale.append(state.segment.id)

        self._version += 1
        snapshot = build_snapshot(self._version, now, self._intersections, views, newly_stale)
        self._published = snapshot
        self._published_at = now
        self._pending_change = 0.0
        self._dirty = False
        self.snapshots_published += 1
        return snapshot

    def _segment_view(self, state: _SegmentState, decay: float) -> SegmentView:
        """
        Evaluate one segment's weight

        The penalty caused by observed telemetry is multiplied by the decay
        factor, so it halves every half-life. The extra penalty from
        provisional reservations on top of it is not decayed. The reported
        load decays the same way and feeds utilisation only.
        """
        seg = state.segment
        base = seg.base_travel_time
        observed_penalty = self.congestion.penalty(base, state.observed_load, seg.capacity_vph)
        penalty = observed_penalty * decay
        if state.provisional_load > 0:
            reserved_penalty = self.congestion.penalty(
                base, state.observed_load + state.provisional_load, seg.capacity_vph,
            )
            penalty += reserved_penalty - observed_penalty
        load = state.observed_load * decay + state.provisional_load
        delay = self._signal_delay_for(seg.to_node)
        return SegmentView(
            id=seg.id,
            from_node=seg.from_node,
            to_node=seg.to_node,
            length_m=seg.length_m,
            lanes=seg.lanes,
            speed_limit_kmh=seg.speed_limit_kmh,
            capacity_vph=seg.capacity_vph,
            load=load,
            base_travel_time=base,
            congestion_penalty=penalty,
            signal_delay=delay,
            weight=segment_weight(base, penalty, delay),
        )

    def _current_weight(self, state: _SegmentState, now: float) -> float:
        age = np.array([now - state.observed_at], dtype=float)
        factor = float(decay_factors(age, self.decay_half_life)[0])
        return self._segment_view(state, factor).weight

    def _signal_delay_for(self, node_id: str) -> float:
        if node_id in self._signal_delays:
            return self._signal_delays[node_id]
        node = self._intersections.get(node_id)
        if node is None or not node.signalized:
            return 0.0
        return self.default_signal_delay

    # ============================================
    # Change tracking
    # ============================================

    @property
    def pending_change(self) -> float:
        """Sum of absolute weight deltas since the last publication"""
        return self._pending_change

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def published_at(self) -> float:
        return self._published_at

    def add_change_listener(self, callback: Callable[[str, float], None]):
        """Register a callback invoked (outside the lock) after each mutation"""
        self._listeners.append(callback)

    def _notify(self, key: str, delta: float):
        for callback in list(self._listeners):
            callback(key, delta)

    def segment_state(self, segment_id: str) -> Dict[str, Any]:
        """Working-copy state of one segment for diagnostics"""
        with self._lock:
            state = self._states.get(segment_id)
            if state is None:
                raise UnknownSegmentError(segment_id)
            return {
                'segmentId': segment_id,
                'observedLoad': state.observed_load,
                'observedAt': state.observed_at,
                'provisionalLoad': state.provisional_load,
                'cause': state.last_cause,
                'weight': state.weight,
            }

    def get_statistics(self) -> Dict[str, Any]:
        """Get graph model statistics"""
        return {
            'version': self._published.version,
            'segments': len(self._states),
            'intersections': len(self._intersections),
            'updatesApplied': self.updates_applied,
            'updatesIgnored': self.updates_ignored,
            'snapshotsPublished': self.snapshots_published,
            'topologyLoads': self.topology_loads,
            'topologyRejections': self.topology_rejections,
            'unreachableIntersections': len(self.unreachable_intersections),
            'pendingChange': self._pending_change,
            'dirty': self._dirty,
        }


# ============================================
# Global instance
# ============================================

_road_graph: Optional[RoadGraphModel] = None


def get_road_graph() -> Optional[RoadGraphModel]:
    """Get the global road graph model"""
    return _road_graph


def init_road_graph(config: Optional[Dict[str, Any]] = None, **kwargs) -> RoadGraphModel:
    """Initialize the global road graph model"""
    global _road_graph
    _road_graph = RoadGraphModel(config, **kwargs)
    return _road_graph
