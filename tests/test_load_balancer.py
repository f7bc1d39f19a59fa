"""
Load Balancer Tests

Batch assignment across alternates, determinism, emergency bypass and
the individual-plan fallback.
"""

from collections import Counter
from unittest.mock import MagicMock

import pytest

from greenroute.graph import RoadGraphModel
from greenroute.models import PriorityClass, RouteRequest
from greenroute.routing import LoadBalancer, RouteOptimizer

from conftest import make_intersections, make_square_segments


@pytest.fixture
def tight_graph(clock):
    """Square network where each segment fits five vehicles"""
    graph = RoadGraphModel(clock=clock)
    graph.load_network(make_intersections(), make_square_segments(capacity=5.0))
    return graph


def make_batch(count, start=0.0, **kwargs):
    return [
        RouteRequest(request_id=f"rq-{i:02d}", origin="A", destination="C", requested_at=start + i, **kwargs)
        for i in range(count)
    ]


def side_counts(result):
    return Counter(plan.node_ids[1] for plan in result.assignments.values())


# ============================================
# Distribution
# ============================================

class TestDistribution:
    """Test spreading a batch over alternates"""

    def test_splits_evenly_across_capacity(self, tight_graph):
        """Test ten requests over two paths of capacity five give five each"""
        balancer = LoadBalancer(RouteOptimizer())

        result = balancer.distribute(tight_graph.current_snapshot(), make_batch(10))

        assert len(result.assignments) == 10
        assert side_counts(result) == {"B": 5, "D": 5}
        assert result.utilization_after == pytest.approx(1.0)
        assert result.saturated_segments == []
        assert not result.fallback

    def test_plans_carry_request_and_increments(self, tight_graph):
        """Test each plan is tagged and carries its load increments"""
        result = LoadBalancer(RouteOptimizer()).distribute(tight_graph.current_snapshot(), make_batch(2))

        plan = result.assignments["rq-00"]
        assert plan.request_id == "rq-00"
        assert plan.load_increments == {sid: 1.0 for sid in plan.edge_ids}
        assert plan.snapshot_version == 1

    def test_first_arrival_gets_best_path(self, tight_graph):
        """Test the earliest request keeps the optimal route"""
        batch = list(reversed(make_batch(2)))

        result = LoadBalancer(RouteOptimizer()).distribute(tight_graph.current_snapshot(), batch)

        assert result.assignments["rq-00"].node_ids == ["A", "B", "C"]
        assert result.assignments["rq-01"].node_ids == ["A", "D", "C"]

    def test_saturation_reported_when_no_alternate_fits(self, tight_graph):
        """Test overflow beyond total capacity is flagged, not dropped"""
        result = LoadBalancer(RouteOptimizer()).distribute(tight_graph.current_snapshot(), make_batch(12))

        assert len(result.assignments) == 12
        assert side_counts(result) == {"B": 6, "D": 6}
        assert result.utilization_after == pytest.approx(1.2)
        assert set(result.saturated_segments) == {"S-A-B", "S-B-C", "S-A-D", "S-D-C"}

    def test_deterministic(self, tight_graph):
        """Test identical batches on one snapshot give identical assignments"""
        snapshot = tight_graph.current_snapshot()
        balancer = LoadBalancer(RouteOptimizer())

        first = balancer.distribute(snapshot, make_batch(7))
        second = balancer.distribute(snapshot, make_batch(7))

        assert {k: v.edge_ids for k, v in first.assignments.items()} == \
            {k: v.edge_ids for k, v in second.assignments.items()}

    def test_configurable_threshold(self, tight_graph):
        """Test a lower overload threshold spreads load earlier"""
        balancer = LoadBalancer(RouteOptimizer(), {'overloadThreshold': 0.4})

        result = balancer.distribute(tight_graph.current_snapshot(), make_batch(4))

        assert side_counts(result) == {"B": 2, "D": 2}
        assert result.utilization_after == pytest.approx(0.4)

    def test_analytics_record(self, tight_graph):
        """Test a load-balancing outcome is sent to analytics"""
        analytics = MagicMock()
        balancer = LoadBalancer(RouteOptimizer(), analytics=analytics)

        balancer.distribute(tight_graph.current_snapshot(), make_batch(3))

        name, payload = analytics.record.call_args[0]
        assert name == 'load_balancing'
        assert payload['requests'] == 3
        assert payload['snapshotVersion'] == 1


# ============================================
# Special Cases
# ============================================

class TestSpecialCases:
    """Test bypass, unroutable requests and fallback"""

    def test_emergency_requests_bypass(self, tight_graph):
        """Test emergency requests are listed, not balanced"""
        batch = make_batch(2) + [
            RouteRequest(request_id="rq-emg", origin="A", destination="C", priority=PriorityClass.EMERGENCY),
        ]

        result = LoadBalancer(RouteOptimizer()).distribute(tight_graph.current_snapshot(), batch)

        assert result.bypassed == ["rq-emg"]
        assert "rq-emg" not in result.assignments
        assert len(result.assignments) == 2

    def test_unroutable_request(self, graph_with_island):
        """Test a disconnected request does not block the rest"""
        batch = [
            RouteRequest(request_id="rq-ok", origin="A", destination="C"),
            RouteRequest(request_id="rq-bad", origin="A", destination="E"),
        ]

        result = LoadBalancer(RouteOptimizer()).distribute(graph_with_island.current_snapshot(), batch)

        assert "rq-ok" in result.assignments
        assert "rq-bad" in result.unroutable

    def test_fallback_on_exhausted_budget(self, tight_graph):
        """Test an exhausted budget returns individually optimal plans"""
        balancer = LoadBalancer(RouteOptimizer())

        result = balancer.distribute(tight_graph.current_snapshot(), make_batch(4), budget_s=0.0)

        assert result.fallback
        assert balancer.fallbacks == 1
        assert len(result.assignments) == 4
        assert all(p.node_ids == ["A", "B", "C"] for p in result.assignments.values())

    def test_empty_batch(self, tight_graph):
        result = LoadBalancer(RouteOptimizer()).distribute(tight_graph.current_snapshot(), [])

        assert result.assignments == {}
        assert result.utilization_after == 0.0
