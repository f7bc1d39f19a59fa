"""
Emergency Green Corridor Tests

Tests for emergency pathfinding, corridor windows and conflict deferral,
and the corridor manager lifecycle (tracking, fail-safe, restoration).
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from greenroute.analytics import MemoryAnalyticsSink
from greenroute.emergency import (
    CorridorPlanner,
    EmergencyCorridorManager,
    EmergencyPathfinder,
    LoggingOperatorChannel,
    LoggingSignalCoordinator,
    OperatorChannel,
    SignalCoordinator,
)
from greenroute.errors import EmergencyNotFoundError, NoRouteError
from greenroute.graph import RoadGraphModel
from greenroute.models import (
    EmergencyDetection,
    EmergencyState,
    EmergencyVehicleType,
    Intersection,
    Location,
    PositionUpdate,
)
from greenroute.routing import RouteOptimizer
from greenroute.scheduler import RecalculationScheduler

from conftest import make_intersections, make_segment, make_square_segments

SPEED_50 = 50.0 / 3.6


def detection(clock, vehicle_id="AMB-1", origin="A", destination="C", rank=2, **kwargs):
    return EmergencyDetection(
        vehicle_id=vehicle_id,
        location=Location(intersection_id=origin),
        destination=destination,
        priority_rank=rank,
        timestamp=clock.now,
        **kwargs,
    )


def position(clock, vehicle_id="AMB-1", at=None, lat=None, lon=None):
    return PositionUpdate(
        vehicle_id=vehicle_id,
        location=Location(intersection_id=at, lat=lat, lon=lon),
        timestamp=clock.now,
    )


@pytest.fixture
def analytics():
    return MemoryAnalyticsSink()


@pytest.fixture
def manager(graph, clock, analytics):
    m = EmergencyCorridorManager(
        graph,
        signal_coordinator=LoggingSignalCoordinator(),
        operator_channel=LoggingOperatorChannel(),
        analytics=analytics,
        clock=clock,
    )
    yield m
    m.shutdown()


@pytest.fixture
def grouped_graph(clock):
    """
    S and T share coordination group "G"; the short way goes through the
    ungrouped X, the long way through Y which is also in "G".
    """
    nodes = [
        Intersection(id="S", lat=0.0, lon=0.0, coordination_group="G"),
        Intersection(id="X", lat=0.0, lon=0.0045),
        Intersection(id="T", lat=0.0, lon=0.009, coordination_group="G"),
        Intersection(id="Y", lat=0.004, lon=0.0045, coordination_group="G"),
    ]
    segments = [
        make_segment("S", "X", length_m=500),
        make_segment("X", "T", length_m=500),
        make_segment("S", "Y", length_m=800),
        make_segment("Y", "T", length_m=800),
    ]
    model = RoadGraphModel(clock=clock)
    model.load_network(nodes, segments)
    return model


# ============================================
# EmergencyPathfinder Tests
# ============================================

class TestEmergencyPathfinder:
    """Test emergency route calculation"""

    def test_find_path(self, graph):
        """Test a corridor path on the square"""
        route = EmergencyPathfinder().find_path(graph.current_snapshot(), "A", "C")

        assert route.node_ids == ["A", "B", "C"]
        assert route.edge_ids == ["S-A-B", "S-B-C"]
        assert route.lengths_m == [500.0, 500.0]
        assert route.coordination_groups == 0
        assert route.handoffs == 0
        assert route.snapshot_version == 1

    def test_fewer_handoffs_beat_shorter_time(self, grouped_graph):
        """Test staying in one coordination group outranks a faster path"""
        snapshot = grouped_graph.current_snapshot()

        route = EmergencyPathfinder().find_path(snapshot, "S", "T")
        ordinary = RouteOptimizer().best_route(snapshot, "S", "T")

        assert route.node_ids == ["S", "Y", "T"]
        assert route.coordination_groups == 1
        assert ordinary.node_ids == ["S", "X", "T"]

    def test_ungrouped_network_takes_fastest_path(self, clock):
        """Test without declared groups the fastest path wins over fewer edges"""
        nodes = [
            Intersection(id="A", lat=0.0, lon=0.0),
            Intersection(id="B", lat=0.0, lon=0.0012),
            Intersection(id="C", lat=0.0003, lon=0.0006),
        ]
        segments = [
            make_segment("A", "B", length_m=10000),
            make_segment("A", "C", length_m=100),
            make_segment("C", "B", length_m=100),
        ]
        model = RoadGraphModel(clock=clock)
        model.load_network(nodes, segments)

        route = EmergencyPathfinder().find_path(model.current_snapshot(), "A", "B")

        assert route.edge_ids == ["S-A-C", "S-C-B"]
        assert route.handoffs == 0
        assert route.travel_time_s == pytest.approx(2 * (100 / SPEED_50 + 8.0))

    def test_grouped_signal_delay_discounted(self, grouped_graph):
        """Test signal delay is halved at grouped intersections"""
        route = EmergencyPathfinder().find_path(grouped_graph.current_snapshot(), "S", "T")

        expected = 2 * (800 / SPEED_50 + 8.0 * 0.5)
        assert route.travel_time_s == pytest.approx(expected)

    def test_congestion_ignored(self, graph):
        """Test load on the route does not divert the emergency vehicle"""
        graph.apply_congestion_update("S-A-B", observed_load=5000)
        snapshot = graph.publish()

        route = EmergencyPathfinder().find_path(snapshot, "A", "C")

        assert route.node_ids == ["A", "B", "C"]
        assert RouteOptimizer().best_route(snapshot, "A", "C").node_ids == ["A", "D", "C"]

    def test_no_path(self, graph_with_island):
        pathfinder = EmergencyPathfinder()

        with pytest.raises(NoRouteError):
            pathfinder.find_path(graph_with_island.current_snapshot(), "A", "E")

        assert pathfinder.get_statistics() == {'pathsFound': 0, 'pathsFailed': 1}

    def test_arrival_offsets(self):
        """Test cumulative arrival offsets"""
        offsets = EmergencyPathfinder.arrival_offsets([500.0, 500.0], SPEED_50)

        assert offsets == pytest.approx([0.0, 36.0, 72.0])

        with pytest.raises(ValueError):
            EmergencyPathfinder.arrival_offsets([500.0], 0)

    def test_nearest_intersection(self, graph):
        """Test GPS positions snap to the closest intersection"""
        pathfinder = EmergencyPathfinder()

        assert pathfinder.nearest_intersection(graph.current_snapshot(), 0.0001, 0.0044) == "B"
        assert pathfinder.nearest_intersection(RoadGraphModel().current_snapshot(), 0.0, 0.0) is None

    def test_nearest_index_never_moves_back(self, graph):
        pathfinder = EmergencyPathfinder()
        snapshot = graph.current_snapshot()

        assert pathfinder.nearest_index(snapshot, ["A", "B", "C"], 0.0, 0.0, start_index=1) == 1
        assert pathfinder.nearest_index(snapshot, ["A", "B", "C"], 0.0045, 0.0045, start_index=1) == 2

    def test_get_next_junctions(self):
        """Test the held-open intersections from the current position"""
        path = ["A", "B", "C", "D"]

        assert EmergencyPathfinder.get_next_junctions(path, 1, 2) == ["B", "C"]
        assert EmergencyPathfinder.get_next_junctions(path, 3, 3) == ["D"]


# ============================================
# CorridorPlanner Tests
# ============================================

class TestCorridorPlanner:
    """Test corridor windows and conflict deferral"""

    def _plan(self, planner, event_id, now=1000.0, start_index=0):
        return planner.build_plan(
            event_id, ["A", "B", "C"], ["S-A-B", "S-B-C"], [500.0, 500.0],
            speed_mps=SPEED_50, now=now, start_index=start_index,
        )

    def test_windows_from_arrival_estimates(self):
        """Test lead and clearance around each estimated arrival"""
        plan = self._plan(CorridorPlanner(), "EMG-1")

        assert plan.intersection_ids == ["A", "B", "C"]
        assert plan.windows[0].open_at == pytest.approx(1000.0)  # never opens in the past
        assert plan.windows[0].close_at == pytest.approx(1005.0)
        assert plan.windows[1].open_at == pytest.approx(1026.0)
        assert plan.windows[1].close_at == pytest.approx(1041.0)
        assert plan.windows[2].close_at == pytest.approx(1077.0)

    def test_plan_from_progress_index(self):
        plan = self._plan(CorridorPlanner(), "EMG-1", start_index=1)

        assert plan.intersection_ids == ["B", "C"]
        assert plan.edge_ids == ["S-B-C"]
        assert plan.windows[0].open_at == pytest.approx(1000.0)

    def test_lower_priority_deferred(self):
        """Test overlapping windows push the lower-priority corridor back"""
        planner = CorridorPlanner()
        high = self._plan(planner, "EMG-H")
        low = self._plan(planner, "EMG-L")

        (resolved_high, resolved_low), unresolved = planner.resolve_conflicts([high, low])

        assert resolved_high is high
        assert unresolved == []
        assert resolved_low.total_deferral_s == pytest.approx(15.0)
        assert not resolved_low.degraded
        for mine in resolved_low.windows:
            assert not any(mine.overlaps(other) for other in high.windows)
        # Downstream windows move with the deferred one
        assert resolved_low.windows[2].open_at == pytest.approx(high.windows[2].open_at + 15.0)

    def test_deferral_bound(self):
        """Test conflicts beyond the deferral bound are reported, not hidden"""
        planner = CorridorPlanner(config={'maxDeferral': 10})
        high = self._plan(planner, "EMG-H")
        low = self._plan(planner, "EMG-L")

        (_, resolved_low), unresolved = planner.resolve_conflicts([high, low])

        assert resolved_low.degraded
        assert len(unresolved) == 1
        assert unresolved[0].event_id == "EMG-L"
        assert unresolved[0].conflicting_event_id == "EMG-H"
        assert unresolved[0].intersection_id == "B"

    def test_disjoint_corridors_untouched(self):
        planner = CorridorPlanner()
        first = self._plan(planner, "EMG-1")
        later = self._plan(planner, "EMG-2", now=2000.0)

        resolved, unresolved = planner.resolve_conflicts([first, later])

        assert resolved[1] is later
        assert unresolved == []

    def test_sliding_slice(self):
        plan = self._plan(CorridorPlanner(), "EMG-1")

        assert [w.intersection_id for w in CorridorPlanner.sliding_slice(plan, 2)] == ["A", "B"]
        assert len(CorridorPlanner.sliding_slice(plan, 10)) == 3


# ============================================
# Collaborator Interfaces
# ============================================

class TestCollaborators:
    """Test the logging collaborators satisfy their interfaces"""

    def test_protocols(self):
        assert isinstance(LoggingSignalCoordinator(), SignalCoordinator)
        assert isinstance(LoggingOperatorChannel(), OperatorChannel)

    @pytest.mark.asyncio
    async def test_operator_channel_records(self):
        channel = LoggingOperatorChannel()

        await channel.report('CRITICAL', "signals stuck", {'eventId': 'EMG-00001'})

        assert channel.alerts == [
            {'level': 'CRITICAL', 'message': "signals stuck", 'details': {'eventId': 'EMG-00001'}},
        ]


# ============================================
# EmergencyCorridorManager Tests
# ============================================

class TestCorridorLifecycle:
    """Test detection through restoration"""

    @pytest.mark.asyncio
    async def test_detection_activates_corridor(self, manager, clock, analytics):
        """Test a detection is routed and its corridor submitted"""
        event = await manager.handle_detection(detection(clock))

        assert event.event_id == "EMG-00001"
        assert event.state == EmergencyState.CORRIDOR_ACTIVE
        assert event.node_path == ["A", "B", "C"]
        assert event.held_open == ["A", "B", "C"]
        assert event.corridor.windows[1].open_at == pytest.approx(clock.now + 26.0)

        commands = [c['command'] for c in manager.signals.commands]
        assert commands == ['submit', 'hold']
        assert analytics.count('emergency_detected') == 1
        assert analytics.count('corridor_activated') == 1
        assert [h['action'] for h in event.history] == ['detected', 'routed', 'corridor_active']

    @pytest.mark.asyncio
    async def test_vehicle_tracked_once(self, manager, clock):
        """Test a repeated detection returns the existing event"""
        first = await manager.handle_detection(detection(clock))
        second = await manager.handle_detection(detection(clock))

        assert second is first
        assert manager.events_detected == 1

    @pytest.mark.asyncio
    async def test_location_from_coordinates(self, manager, clock):
        """Test a GPS-only detection snaps to the nearest intersection"""
        det = EmergencyDetection(
            vehicle_id="AMB-9",
            location=Location(lat=0.0001, lon=0.0001),
            destination="C",
            timestamp=clock.now,
        )

        event = await manager.handle_detection(det)

        assert event.origin == "A"
        assert event.state == EmergencyState.CORRIDOR_ACTIVE

    @pytest.mark.asyncio
    async def test_speed_from_detection(self, manager, clock):
        event = await manager.handle_detection(detection(clock, speed_kmh=72))

        assert event.speed_mps == pytest.approx(20.0)
        assert event.corridor.windows[1].open_at == pytest.approx(clock.now + 25.0 - 10.0)

    @pytest.mark.asyncio
    async def test_position_slides_corridor(self, graph, clock):
        """Test progress releases passed intersections and holds the next ones"""
        manager = EmergencyCorridorManager(graph, config={'lookaheadIntersections': 2}, clock=clock)
        await manager.handle_detection(detection(clock))
        assert manager.events["EMG-00001"].held_open == ["A", "B"]

        clock.advance(20)
        event = await manager.update_position(position(clock, at="B"))

        assert event.position_index == 1
        assert event.held_open == ["B", "C"]
        assert event.speed_mps == pytest.approx(25.0)
        assert event.corridor.windows[0].intersection_id == "B"
        assert event.corridor.windows[1].open_at == pytest.approx(clock.now + 10.0)
        assert {'command': 'release', 'eventId': 'EMG-00001', 'intersections': ['A']} in manager.signals.commands
        manager.shutdown()

    @pytest.mark.asyncio
    async def test_destination_reached_restores(self, manager, clock, analytics):
        """Test reaching the last intersection restores normal operation"""
        await manager.handle_detection(detection(clock))

        clock.advance(70)
        event = await manager.update_position(position(clock, at="C"))

        assert event.state == EmergencyState.RESTORED
        assert event.restore_reason == 'destination_reached'
        assert event.held_open == []
        assert manager.events == {}
        assert manager.recent_history() == [event]
        assert manager.signals.commands[-1] == {'command': 'restore', 'eventId': 'EMG-00001'}
        assert analytics.recent(1)[0]['name'] == 'corridor_completed'
        assert analytics.recent(1)[0]['payload']['duration'] == pytest.approx(70.0)

    @pytest.mark.asyncio
    async def test_out_of_order_position_ignored(self, manager, clock):
        await manager.handle_detection(detection(clock))
        stale = PositionUpdate(vehicle_id="AMB-1", location=Location(intersection_id="B"), timestamp=clock.now - 5)

        event = await manager.update_position(stale)

        assert event.position_index == 0

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, manager, clock):
        with pytest.raises(EmergencyNotFoundError):
            await manager.update_position(position(clock, vehicle_id="GHOST", at="A"))

    @pytest.mark.asyncio
    async def test_cancel(self, manager, clock):
        """Test cancellation restores signals and keeps the event queryable"""
        event = await manager.handle_detection(detection(clock))

        await manager.cancel(event.event_id, reason='false alarm')

        assert event.state == EmergencyState.RESTORED
        assert event.restore_reason == 'false alarm'
        assert manager.get_event(event.event_id) is event
        with pytest.raises(EmergencyNotFoundError):
            await manager.cancel(event.event_id)

    @pytest.mark.asyncio
    async def test_invalid_transition_refused(self, manager, clock):
        """Test lifecycle steps out of order are refused"""
        event = await manager.handle_detection(detection(clock))

        assert await manager.route_event(event.event_id) is False
        assert await manager.activate_corridor(event.event_id) is False
        assert event.state == EmergencyState.CORRIDOR_ACTIVE

        event.state = EmergencyState.RESTORED
        assert manager._transition(event, EmergencyState.ROUTED) is False
        assert manager.invalid_transitions == 1


class TestRoutingFailures:
    """Test events that cannot be routed yet"""

    @pytest.mark.asyncio
    async def test_failure_reported_and_retried_on_snapshot(self, graph_with_island, clock):
        """Test an unroutable event waits for a snapshot that connects it"""
        operator = LoggingOperatorChannel()
        manager = EmergencyCorridorManager(graph_with_island, operator_channel=operator, clock=clock)

        event = await manager.handle_detection(detection(clock, destination="E"))

        assert event.state == EmergencyState.DETECTED
        assert event.last_error is not None
        assert operator.alerts[0]['level'] == 'CRITICAL'
        assert manager.routing_failures == 1

        island = Intersection(id="E", lat=0.01, lon=0.01)
        snapshot = graph_with_island.load_network(
            make_intersections(extra=[island]),
            make_square_segments() + [make_segment("C", "E")],
        )
        await manager.on_snapshot_published(snapshot)

        assert event.state == EmergencyState.CORRIDOR_ACTIVE
        assert event.node_path == ["A", "B", "C", "E"]
        assert event.last_error is None
        manager.shutdown()

    @pytest.mark.asyncio
    async def test_routes_as_soon_as_network_loads(self, clock):
        """Test an event detected before any network routes on the topology announcement"""
        graph = RoadGraphModel(clock=clock)
        manager = EmergencyCorridorManager(graph, clock=clock)
        scheduler = RecalculationScheduler(graph)
        scheduler.add_publish_listener(manager.on_snapshot_published)

        event = await manager.handle_detection(detection(clock))
        assert event.state == EmergencyState.DETECTED

        snapshot = graph.load_network(make_intersections(), make_square_segments())
        assert scheduler.check() is None
        await scheduler.announce(snapshot)

        assert event.state == EmergencyState.CORRIDOR_ACTIVE
        assert event.node_path == ["A", "B", "C"]
        assert scheduler.get_status()['announced'] == 1
        manager.shutdown()


class TestConcurrentCorridors:
    """Test conflicts between simultaneous emergencies"""

    @pytest.mark.asyncio
    async def test_higher_priority_defers_active_corridor(self, manager, clock):
        """Test a later, more urgent emergency pushes the earlier one back"""
        low = await manager.handle_detection(detection(clock, vehicle_id="AMB-L", rank=2))
        high = await manager.handle_detection(
            detection(clock, vehicle_id="FIRE-H", rank=1, vehicle_type=EmergencyVehicleType.FIRE_TRUCK),
        )

        assert high.corridor.total_deferral_s == 0.0
        assert low.corridor.total_deferral_s == pytest.approx(15.0)
        assert not low.corridor.degraded
        assert [e.event_id for e in manager.active_events()] == [high.event_id, low.event_id]
        assert 'deferred' in [h['action'] for h in low.history]

        submits = [c['eventId'] for c in manager.signals.commands if c['command'] == 'submit']
        assert submits == [low.event_id, high.event_id, low.event_id]

    @pytest.mark.asyncio
    async def test_unresolved_conflict_degrades_and_alerts(self, graph, clock):
        """Test exceeding the deferral bound marks the plan degraded"""
        operator = LoggingOperatorChannel()
        manager = EmergencyCorridorManager(
            graph, operator_channel=operator, config={'maxDeferral': 10}, clock=clock,
        )

        await manager.handle_detection(detection(clock, vehicle_id="AMB-1", rank=1))
        low = await manager.handle_detection(detection(clock, vehicle_id="AMB-2", rank=3))

        assert low.state == EmergencyState.CORRIDOR_ACTIVE
        assert low.corridor.degraded
        assert manager.conflicts_unresolved == 1
        assert [a['level'] for a in operator.alerts] == ['WARNING']
        assert operator.alerts[0]['details']['intersectionId'] == "B"
        manager.shutdown()


class TestFailSafe:
    """Test restoration when tracking or signalling fails"""

    @pytest.mark.asyncio
    async def test_position_grace_expiry(self, manager, clock):
        """Test a silent vehicle's corridor is restored after the grace period"""
        event = await manager.handle_detection(detection(clock))

        clock.advance(29)
        assert await manager.tick() == []

        clock.advance(2)
        finished = await manager.tick()

        assert finished == [event.event_id]
        assert event.state == EmergencyState.RESTORED
        assert event.restore_reason == 'position_timeout'
        assert manager.failsafe_restorations == 1

    @pytest.mark.asyncio
    async def test_position_report_extends_grace(self, manager, clock):
        await manager.handle_detection(detection(clock))

        clock.advance(20)
        await manager.update_position(position(clock, at="A"))
        clock.advance(20)

        assert await manager.tick() == []

    @pytest.mark.asyncio
    async def test_restore_retried_then_escalated(self, manager, clock):
        """Test failed restoration is retried and escalated within 60 seconds"""
        event = await manager.handle_detection(detection(clock))
        manager.signals.restore_all = AsyncMock(side_effect=RuntimeError("controller offline"))

        await manager.cancel(event.event_id)
        assert event.state == EmergencyState.RESTORING
        assert manager.escalations == 0

        clock.advance(30)
        await manager.tick()
        assert manager.restore_failures == 2
        assert manager.escalations == 0

        clock.advance(30)
        await manager.tick()
        assert manager.escalations == 1
        assert event.restore_escalated
        critical = [a for a in manager.operator.alerts if a['level'] == 'CRITICAL']
        assert len(critical) == 1

        clock.advance(5)
        await manager.tick()
        assert manager.escalations == 1

        manager.signals.restore_all.side_effect = None
        assert await manager.tick() == [event.event_id]
        assert event.state == EmergencyState.RESTORED
        assert manager.get_statistics()['restoreFailures'] == 4

    def test_restore_deadline_capped(self, graph):
        manager = EmergencyCorridorManager(graph, config={'restoreDeadline': 300})

        assert manager.restore_deadline == 60.0
        manager.shutdown()

    @pytest.mark.asyncio
    async def test_signal_failure_reported(self, manager, clock):
        """Test a failed hold-open does not block activation"""
        manager.signals.hold_open = AsyncMock(side_effect=RuntimeError("timeout"))

        event = await manager.handle_detection(detection(clock))

        assert event.state == EmergencyState.CORRIDOR_ACTIVE
        assert any("hold_open" in a['message'] for a in manager.operator.alerts)

    @pytest.mark.asyncio
    async def test_monitor_loop_start_stop(self, graph):
        manager = EmergencyCorridorManager(graph, config={'monitorInterval': 0.01})

        await manager.start()
        await asyncio.sleep(0.05)
        await manager.stop()

        assert manager._monitor_task is None
        manager.shutdown()
