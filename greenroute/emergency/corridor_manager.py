"""
Emergency Corridor Manager - Priority Corridor Lifecycle

Tracks every emergency event from detection to restoration:

    DETECTED -> ROUTED -> CORRIDOR_ACTIVE -> RESTORING -> RESTORED

Any non-terminal state may jump to RESTORING (cancellation, fail-safe).
Corridor routing runs on its own thread pool so a backlog of ordinary
route requests never delays an emergency.
"""

import asyncio
import heapq
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from greenroute.errors import EmergencyNotFoundError, NoRouteError, OptimizationTimeoutError
from greenroute.graph.road_graph import RoadGraphModel
from greenroute.graph.snapshot import GraphSnapshot
from greenroute.graph.weights import great_circle_m
from greenroute.models.emergency import (
    CorridorPlan,
    EmergencyEvent,
    EmergencyState,
    VALID_TRANSITIONS,
)
from greenroute.models.telemetry import EmergencyDetection, Location, PositionUpdate
from greenroute.emergency.corridor_planner import CorridorPlanner
from greenroute.emergency.pathfinder import EmergencyPathfinder
from greenroute.emergency.signal_coordinator import LoggingOperatorChannel, LoggingSignalCoordinator

logger = logging.getLogger(__name__)

# Hard ceiling on the restoration deadline regardless of configuration
MAX_RESTORE_DEADLINE = 60.0


class EmergencyCorridorManager:
    """
    Manage emergency events and their green corridors

    Responsibilities:
    - Register detections and keep them in a priority queue
    - Route on the emergency executor and build corridor plans
    - Resolve window conflicts between concurrent corridors
    - Slide the held-open window set as position updates arrive
    - Restore normal signal operation (fail-safe on lost tracking)

    Usage:
        manager = EmergencyCorridorManager(graph, config=config)
        event = await manager.handle_detection(detection)
        await manager.update_position(position)
        await manager.start()  # grace-period and restoration monitor
    """

    def __init__(
        self,
        graph: RoadGraphModel,
        pathfinder: Optional[EmergencyPathfinder] = None,
        planner: Optional[CorridorPlanner] = None,
        signal_coordinator=None,
        operator_channel=None,
        analytics=None,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Initialize corridor manager

        Args:
            graph: Road graph supplying snapshots
            pathfinder: EmergencyPathfinder for corridor routes
            planner: CorridorPlanner for windows and conflict deferral
            signal_coordinator: SignalCoordinator collaborator
            operator_channel: OperatorChannel for critical alerts
            analytics: AnalyticsSink for corridor outcomes
            config: Emergency configuration section
            clock: Wall clock, injectable for tests
            executor: Thread pool for corridor routing (created if omitted)
        """
        config = config or {}
        self.graph = graph
        self.pathfinder = pathfinder or EmergencyPathfinder(config)
        self.planner = planner or CorridorPlanner(self.pathfinder, config)
        self.signals = signal_coordinator or LoggingSignalCoordinator()
        self.operator = operator_channel or LoggingOperatorChannel()
        self.analytics = analytics
        self.clock = clock

        # Configuration
        self.default_speed_mps = float(config.get('defaultSpeed', 50.0)) / 3.6
        self.lookahead = int(config.get('lookaheadIntersections', 3))
        self.position_grace = float(config.get('positionGrace', 30.0))
        self.restore_deadline = min(float(config.get('restoreDeadline', 60.0)), MAX_RESTORE_DEADLINE)
        self.monitor_interval = float(config.get('monitorInterval', 1.0))
        self.history_limit = int(config.get('historyLimit', 500))

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=int(config.get('maxWorkers', 2)),
            thread_name_prefix="emergency",
        )

        # Event state
        self.events: Dict[str, EmergencyEvent] = {}
        self.history: List[EmergencyEvent] = []
        self._queue: List[Tuple[Tuple[int, float, str], str]] = []
        self._by_vehicle: Dict[str, str] = {}
        self._reported_conflicts: Set[Tuple[str, str, str]] = set()
        self._event_ids = itertools.count(1)
        self._lock = asyncio.Lock()

        # Monitoring task
        self._monitor_task: Optional[asyncio.Task] = None

        # Statistics
        self.events_detected = 0
        self.corridors_activated = 0
        self.corridors_completed = 0
        self.routing_failures = 0
        self.failsafe_restorations = 0
        self.restore_failures = 0
        self.escalations = 0
        self.conflicts_unresolved = 0
        self.invalid_transitions = 0

        logger.info(
            "[CORRIDOR] Corridor manager initialized (lookahead %d, grace %.0fs, restore deadline %.0fs)",
            self.lookahead, self.position_grace, self.restore_deadline,
        )

    # ============================================
    # Detection & routing
    # ============================================

    async def handle_detection(self, detection: EmergencyDetection) -> EmergencyEvent:
        """
        Register a detection, then route it and activate its corridor

        A routing failure leaves the event in DETECTED; it is reported to
        the operator channel and retried on the next published snapshot.
        """
        event = self.register_detection(detection)
        if event.state == EmergencyState.DETECTED and await self.route_event(event.event_id):
            await self.activate_corridor(event.event_id)
        return event

    def register_detection(self, detection: EmergencyDetection) -> EmergencyEvent:
        """
        Create a DETECTED event and queue it by priority

        A vehicle already tracked by an active event is not registered twice.
        """
        existing = self._by_vehicle.get(detection.vehicle_id)
        if existing is not None:
            logger.info("[CORRIDOR] Vehicle %s already tracked as %s", detection.vehicle_id, existing)
            return self.events[existing]

        snapshot = self.graph.current_snapshot()
        speed = detection.speed_kmh / 3.6 if detection.speed_kmh else self.default_speed_mps
        event = EmergencyEvent(
            event_id=f"EMG-{next(self._event_ids):05d}",
            vehicle_id=detection.vehicle_id,
            vehicle_type=detection.vehicle_type,
            origin=self._resolve_location(snapshot, detection.location) or "",
            destination=detection.destination,
            priority_rank=detection.priority_rank,
            detected_at=detection.timestamp,
            speed_mps=speed,
            last_report_at=detection.timestamp,
        )
        if detection.location.has_coordinates:
            event.last_position = (detection.location.lat, detection.location.lon)

        self.events[event.event_id] = event
        self._by_vehicle[event.vehicle_id] = event.event_id
        heapq.heappush(self._queue, (event.queue_key, event.event_id))
        self._record(event, 'detected', origin=event.origin, destination=event.destination)
        self.events_detected += 1

        logger.warning(
            "[CORRIDOR] Emergency detected: %s %s (%s -> %s, rank %d)",
            event.event_id, event.vehicle_type.value, event.origin, event.destination, event.priority_rank,
        )
        self._emit('emergency_detected', {
            'eventId': event.event_id,
            'vehicleId': event.vehicle_id,
            'vehicleType': event.vehicle_type.value,
            'priorityRank': event.priority_rank,
        })
        return event

    async def route_event(self, event_id: str) -> bool:
        """
        Compute the corridor route on the emergency executor

        Returns:
            True if the event moved to ROUTED
        """
        event = self._get_active(event_id)
        if event.state != EmergencyState.DETECTED:
            logger.warning("[CORRIDOR] %s not routable in state %s", event_id, event.state.value)
            return False

        snapshot = self.graph.current_snapshot()
        if not snapshot.has_node(event.origin) and event.last_position is not None:
            event.origin = self.pathfinder.nearest_intersection(snapshot, *event.last_position) or event.origin

        loop = asyncio.get_running_loop()
        try:
            route = await loop.run_in_executor(
                self.executor, self.pathfinder.find_path, snapshot, event.origin, event.destination,
            )
        except (NoRouteError, OptimizationTimeoutError) as e:
            self.routing_failures += 1
            event.last_error = str(e)
            self._record(event, 'routing_failed', error=str(e))
            await self._report('CRITICAL', f"Emergency {event_id} could not be routed: {e}", {
                'eventId': event_id,
                'origin': event.origin,
                'destination': event.destination,
                'snapshotVersion': snapshot.version,
            })
            return False

        async with self._lock:
            if event.state != EmergencyState.DETECTED:
                # Cancelled while the route was being computed
                return False
            event.node_path = route.node_ids
            event.edge_ids = route.edge_ids
            event.edge_lengths_m = route.lengths_m
            event.routed_version = route.snapshot_version
            event.travel_time_s = route.travel_time_s
            event.last_error = None
            return self._transition(event, EmergencyState.ROUTED)

    async def on_snapshot_published(self, snapshot: GraphSnapshot):
        """Retry events whose routing failed on an earlier snapshot"""
        pending = [
            e for e in self._prioritized()
            if e.state == EmergencyState.DETECTED and e.last_error is not None
        ]
        for event in pending:
            logger.info("[CORRIDOR] Retrying %s on snapshot v%d", event.event_id, snapshot.version)
            if await self.route_event(event.event_id):
                await self.activate_corridor(event.event_id)

    # ============================================
    # Corridor activation & tracking
    # ============================================

    async def activate_corridor(self, event_id: str) -> bool:
        """
        Build, reconcile and submit the corridor for a routed event

        Returns:
            True if the corridor is now active
        """
        async with self._lock:
            event = self._get_active(event_id)
            if event.state != EmergencyState.ROUTED:
                logger.warning("[CORRIDOR] %s cannot activate from %s", event_id, event.state.value)
                return False

            now = self.clock()
            event.corridor = self._build_plan(event, now)
            changed = await self._resolve_conflicts()
            if not self._transition(event, EmergencyState.CORRIDOR_ACTIVE):
                return False

            event.activated_at = now
            event.last_position_at = now
            await self._publish_plan(event)
            await self._republish(changed, skip=event)

            self.corridors_activated += 1
            logger.warning(
                "[CORRIDOR] Corridor active: %s over %d intersections (deferral %.1fs%s)",
                event_id, len(event.node_path), event.corridor.total_deferral_s,
                ", degraded" if event.corridor.degraded else "",
            )
            self._emit('corridor_activated', {
                'eventId': event_id,
                'intersections': len(event.node_path),
                'travelTime': event.travel_time_s,
                'deferral': event.corridor.total_deferral_s,
                'degraded': event.corridor.degraded,
            })
            return True

    async def update_position(self, update: PositionUpdate) -> EmergencyEvent:
        """
        Track a vehicle position report

        Advances the held-open slice, releases passed intersections and
        re-estimates downstream windows from the observed speed. Reaching
        the last intersection starts restoration.

        Raises:
            EmergencyNotFoundError: If the vehicle has no active event
        """
        async with self._lock:
            event_id = self._by_vehicle.get(update.vehicle_id)
            if event_id is None or event_id not in self.events:
                raise EmergencyNotFoundError(update.vehicle_id)
            event = self.events[event_id]

            if event.last_report_at is not None and update.timestamp < event.last_report_at:
                logger.warning(
                    "[CORRIDOR] Out-of-order position for %s ignored (%.1f < %.1f)",
                    event.vehicle_id, update.timestamp, event.last_report_at,
                )
                return event

            now = self.clock()
            elapsed = update.timestamp - event.last_report_at if event.last_report_at is not None else 0.0
            index = self._locate(event, update.location)
            self._estimate_speed(event, update.location, index, elapsed)

            event.last_report_at = update.timestamp
            event.last_position_at = now
            if update.location.has_coordinates:
                event.last_position = (update.location.lat, update.location.lon)

            if event.state != EmergencyState.CORRIDOR_ACTIVE or index is None:
                return event

            if index >= len(event.node_path) - 1:
                event.position_index = len(event.node_path) - 1
                await self._begin_restoring(event, 'destination_reached', now)
                return event

            if index > event.position_index:
                event.position_index = index
                event.corridor = self._build_plan(event, now)
                changed = await self._resolve_conflicts()
                await self._publish_plan(event)
                await self._republish(changed, skip=event)
                logger.info(
                    "[CORRIDOR] %s progress %d/%d at %.1f m/s",
                    event.event_id, index + 1, len(event.node_path), event.speed_mps,
                )
            return event

    async def cancel(self, event_id: str, reason: str = 'cancelled') -> EmergencyEvent:
        """Stop tracking an event and restore normal signal operation"""
        async with self._lock:
            event = self._get_active(event_id)
            if event.state != EmergencyState.RESTORING:
                await self._begin_restoring(event, reason, self.clock())
            return event

    # ============================================
    # Monitoring
    # ============================================

    async def tick(self, now: Optional[float] = None) -> List[str]:
        """
        Enforce position grace periods and retry pending restorations

        Returns:
            IDs of events that left the active set on this tick
        """
        now = self.clock() if now is None else now
        finished = []
        async with self._lock:
            for event in self._prioritized():
                if event.state == EmergencyState.CORRIDOR_ACTIVE:
                    silent = now - (event.last_position_at or now)
                    if silent > self.position_grace:
                        self.failsafe_restorations += 1
                        logger.warning(
                            "[CORRIDOR] No position from %s for %.0fs, restoring normal operation",
                            event.vehicle_id, silent,
                        )
                        await self._begin_restoring(event, 'position_timeout', now)
                elif event.state == EmergencyState.RESTORING:
                    await self._attempt_restore(event, now)

                if event.is_terminal:
                    finished.append(event.event_id)
        return finished

    async def start(self):
        """Start the background monitor loop"""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def stop(self):
        """Stop the background monitor loop"""
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None

    async def _monitor_loop(self):
        logger.info("[CORRIDOR] Corridor monitoring started")
        while True:
            try:
                await self.tick()
                await asyncio.sleep(self.monitor_interval)
            except asyncio.CancelledError:
                logger.info("[CORRIDOR] Corridor monitoring cancelled")
                raise
            except Exception as e:
                logger.exception("[CORRIDOR] Corridor monitoring error: %s", e)
                await asyncio.sleep(self.monitor_interval)

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)

    # ============================================
    # Restoration
    # ============================================

    async def _begin_restoring(self, event: EmergencyEvent, reason: str, now: float):
        if not self._transition(event, EmergencyState.RESTORING):
            return
        event.restoring_since = now
        event.restore_reason = reason
        await self._attempt_restore(event, now)

    async def _attempt_restore(self, event: EmergencyEvent, now: float) -> bool:
        if event.restore_requested_at is None:
            event.restore_requested_at = now

        try:
            await self.signals.restore_all(event.event_id)
        except Exception as e:
            self.restore_failures += 1
            event.last_error = f"restore failed: {e}"
            logger.error("[CORRIDOR] restore_all for %s failed: %s", event.event_id, e)

            waited = now - (event.restoring_since or now)
            if not event.restore_escalated and waited >= self.restore_deadline:
                event.restore_escalated = True
                self.escalations += 1
                await self._report(
                    'CRITICAL',
                    f"Signals for {event.event_id} not restored after {waited:.0f}s",
                    {'eventId': event.event_id, 'heldOpen': list(event.held_open), 'error': str(e)},
                )
            return False

        self._finish(event, now)
        return True

    def _finish(self, event: EmergencyEvent, now: float):
        if not self._transition(event, EmergencyState.RESTORED):
            return
        event.restored_at = now
        event.held_open = []

        self.events.pop(event.event_id, None)
        if self._by_vehicle.get(event.vehicle_id) == event.event_id:
            del self._by_vehicle[event.vehicle_id]
        self._queue = [item for item in self._queue if item[1] in self.events]
        heapq.heapify(self._queue)
        self._reported_conflicts = {key for key in self._reported_conflicts if event.event_id not in key}

        self.history.append(event)
        if len(self.history) > self.history_limit:
            self.history = self.history[-self.history_limit:]

        if event.activated_at is not None:
            self.corridors_completed += 1
        duration = now - (event.activated_at if event.activated_at is not None else event.detected_at)
        logger.info(
            "[CORRIDOR] %s restored (%s) after %.1fs",
            event.event_id, event.restore_reason, duration,
        )
        self._emit('corridor_completed', {
            'eventId': event.event_id,
            'vehicleId': event.vehicle_id,
            'reason': event.restore_reason,
            'duration': duration,
            'deferral': event.corridor.total_deferral_s if event.corridor else 0.0,
            'degraded': bool(event.corridor and event.corridor.degraded),
            'escalated': event.restore_escalated,
        })

    # ============================================
    # Helpers
    # ============================================

    def _transition(self, event: EmergencyEvent, new_state: EmergencyState) -> bool:
        if new_state not in VALID_TRANSITIONS[event.state]:
            self.invalid_transitions += 1
            logger.error(
                "[CORRIDOR] Refused transition for %s: %s -> %s",
                event.event_id, event.state.value, new_state.value,
            )
            return False
        previous = event.state
        event.state = new_state
        self._record(event, new_state.value.lower(), previous=previous.value)
        return True

    def _record(self, event: EmergencyEvent, action: str, **details):
        event.history.append({'at': self.clock(), 'action': action, **details})

    def _build_plan(self, event: EmergencyEvent, now: float) -> CorridorPlan:
        return self.planner.build_plan(
            event.event_id,
            event.node_path,
            event.edge_ids,
            event.edge_lengths_m,
            speed_mps=event.speed_mps or self.default_speed_mps,
            now=now,
            start_index=event.position_index,
            snapshot_version=event.routed_version,
        )

    async def _resolve_conflicts(self) -> List[EmergencyEvent]:
        """Reconcile all corridors in priority order, returning events whose plan moved"""
        participants = [
            e for e in self._prioritized()
            if e.corridor is not None
            and e.state in (EmergencyState.ROUTED, EmergencyState.CORRIDOR_ACTIVE)
        ]
        plans, conflicts = self.planner.resolve_conflicts([e.corridor for e in participants])

        changed = []
        for event, plan in zip(participants, plans):
            if plan is event.corridor:
                continue
            if plan.total_deferral_s > event.corridor.total_deferral_s:
                self._record(event, 'deferred', seconds=plan.total_deferral_s)
            event.corridor = plan
            changed.append(event)

        for conflict in conflicts:
            key = (conflict.event_id, conflict.intersection_id, conflict.conflicting_event_id)
            if key in self._reported_conflicts:
                continue
            self._reported_conflicts.add(key)
            self.conflicts_unresolved += 1
            await self._report('WARNING', str(conflict), {
                'eventId': conflict.event_id,
                'intersectionId': conflict.intersection_id,
                'conflictingEventId': conflict.conflicting_event_id,
                'deferral': conflict.deferral_s,
            })
            self._emit('corridor_conflict', {
                'eventId': conflict.event_id,
                'intersectionId': conflict.intersection_id,
                'conflictingEventId': conflict.conflicting_event_id,
                'deferral': conflict.deferral_s,
            })
        return changed

    async def _publish_plan(self, event: EmergencyEvent):
        """Submit the plan, hold the next windows open and release passed ones"""
        plan = event.corridor
        await self._signal('submit_corridor', plan)

        window_slice = self.planner.sliding_slice(plan, self.lookahead)
        held = [w.intersection_id for w in window_slice]
        passed = [i for i in event.held_open if i not in held]
        if passed:
            await self._signal('release', event.event_id, passed)
        await self._signal('hold_open', event.event_id, window_slice)
        event.held_open = held

    async def _republish(self, events: List[EmergencyEvent], skip: EmergencyEvent):
        for other in events:
            if other is not skip and other.state == EmergencyState.CORRIDOR_ACTIVE:
                await self._publish_plan(other)

    async def _signal(self, action: str, *args) -> bool:
        try:
            await getattr(self.signals, action)(*args)
            return True
        except Exception as e:
            logger.error("[CORRIDOR] Signal coordinator %s failed: %s", action, e)
            await self._report('WARNING', f"Signal coordinator {action} failed: {e}", {'action': action})
            return False

    async def _report(self, level: str, message: str, details: Optional[Dict[str, Any]] = None):
        try:
            await self.operator.report(level, message, details or {})
        except Exception as e:
            logger.error("[CORRIDOR] Operator channel unavailable (%s): %s", e, message)

    def _emit(self, name: str, payload: Dict[str, Any]):
        if self.analytics:
            self.analytics.record(name, payload)

    def _locate(self, event: EmergencyEvent, location: Location) -> Optional[int]:
        """Progress index for a reported location, never moving backwards"""
        if not event.node_path:
            return None
        ahead = event.node_path[event.position_index:]
        if location.intersection_id is not None and location.intersection_id in ahead:
            return event.node_path.index(location.intersection_id, event.position_index)
        if location.has_coordinates:
            return self.pathfinder.nearest_index(
                self.graph.current_snapshot(), event.node_path,
                location.lat, location.lon, event.position_index,
            )
        return None

    def _estimate_speed(self, event: EmergencyEvent, location: Location, index: Optional[int], elapsed: float):
        if elapsed <= 0:
            return
        distance = 0.0
        if location.has_coordinates and event.last_position is not None:
            distance = great_circle_m(*event.last_position, location.lat, location.lon)
        elif index is not None and index > event.position_index:
            distance = sum(event.edge_lengths_m[event.position_index:index])
        if distance > 0:
            event.speed_mps = distance / elapsed

    def _resolve_location(self, snapshot: GraphSnapshot, location: Location) -> Optional[str]:
        if location.intersection_id is not None and snapshot.has_node(location.intersection_id):
            return location.intersection_id
        if location.has_coordinates:
            return self.pathfinder.nearest_intersection(snapshot, location.lat, location.lon)
        return location.intersection_id

    def _prioritized(self) -> List[EmergencyEvent]:
        """Active events, most urgent first"""
        return [self.events[eid] for _, eid in sorted(self._queue) if eid in self.events]

    def _get_active(self, event_id: str) -> EmergencyEvent:
        event = self.events.get(event_id)
        if event is None:
            raise EmergencyNotFoundError(event_id)
        return event

    # ============================================
    # Queries
    # ============================================

    def get_event(self, event_id: str) -> EmergencyEvent:
        """Look up an active or completed event"""
        event = self.events.get(event_id)
        if event is not None:
            return event
        for past in reversed(self.history):
            if past.event_id == event_id:
                return past
        raise EmergencyNotFoundError(event_id)

    def active_events(self) -> List[EmergencyEvent]:
        return self._prioritized()

    def recent_history(self, limit: int = 20) -> List[EmergencyEvent]:
        return list(reversed(self.history[-limit:]))

    def get_statistics(self) -> Dict[str, Any]:
        """Get corridor manager statistics"""
        return {
            'activeEvents': len(self.events),
            'eventsDetected': self.events_detected,
            'corridorsActivated': self.corridors_activated,
            'corridorsCompleted': self.corridors_completed,
            'routingFailures': self.routing_failures,
            'failsafeRestorations': self.failsafe_restorations,
            'restoreFailures': self.restore_failures,
            'escalations': self.escalations,
            'conflictsUnresolved': self.conflicts_unresolved,
            'invalidTransitions': self.invalid_transitions,
            'pathfinder': self.pathfinder.get_statistics(),
        }


# ============================================
# Global instance
# ============================================

_corridor_manager: Optional[EmergencyCorridorManager] = None


def get_corridor_manager() -> Optional[EmergencyCorridorManager]:
    """Get the global corridor manager"""
    return _corridor_manager


def init_corridor_manager(graph: RoadGraphModel, **kwargs) -> EmergencyCorridorManager:
    """Initialize the global corridor manager"""
    global _corridor_manager
    _corridor_manager = EmergencyCorridorManager(graph, **kwargs)
    return _corridor_manager
