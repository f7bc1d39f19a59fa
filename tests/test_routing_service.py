"""
Routing Service Tests

Executor-backed single routes, batches, confirmation and supersession of
batches by newer snapshots.
"""

import asyncio
import threading

import pytest

from greenroute.errors import NoRouteError, UnknownSegmentError
from greenroute.models import PriorityClass, RouteRequest
from greenroute.routing import RoutingService


@pytest.fixture
def service(graph):
    s = RoutingService(graph, config={'maxWorkers': 2})
    yield s
    s.shutdown()


class TestSingleRoutes:
    """Test individual route requests"""

    @pytest.mark.asyncio
    async def test_route(self, service):
        """Test ranked plans are tagged with the request id"""
        request = RouteRequest(request_id="rq-1", origin="A", destination="C")

        plans = await service.route(request, k=2)

        assert len(plans) == 2
        assert all(p.request_id == "rq-1" for p in plans)
        assert plans[0].node_ids == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_emergency_request_rejected(self, service):
        """Test emergency requests never enter ordinary routing"""
        request = RouteRequest(origin="A", destination="C", priority=PriorityClass.EMERGENCY)

        with pytest.raises(ValueError):
            await service.route(request)

    @pytest.mark.asyncio
    async def test_no_route(self, service):
        with pytest.raises(NoRouteError):
            await service.route(RouteRequest(origin="A", destination="Z"))


class TestBatches:
    """Test batch distribution"""

    @pytest.mark.asyncio
    async def test_submit_batch(self, service):
        requests = [RouteRequest(request_id=f"rq-{i}", origin="A", destination="C") for i in range(3)]

        result = await service.submit_batch(requests)

        assert set(result.assignments) == {"rq-0", "rq-1", "rq-2"}
        assert result.snapshot_version == 1
        assert service.pending_batches == 0
        assert service.batches_completed == 1

    @pytest.mark.asyncio
    async def test_confirm_reserves_load(self, service, graph):
        """Test confirmed plans become provisional load on the graph"""
        result = await service.submit_batch([RouteRequest(request_id="rq-1", origin="A", destination="C")])

        service.confirm(result)
        snapshot = graph.publish()

        plan = result.assignments["rq-1"]
        for sid in plan.edge_ids:
            assert snapshot.segment(sid).load == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_confirm_is_all_or_nothing(self, service, graph):
        """Test a plan on a vanished segment leaves no partial reservation"""
        result = await service.submit_batch([
            RouteRequest(request_id="rq-1", origin="A", destination="C"),
            RouteRequest(request_id="rq-2", origin="B", destination="D"),
        ])
        stale = result.assignments["rq-2"]
        result.assignments["rq-2"] = stale.model_copy(
            update={'load_increments': {**stale.load_increments, "S-X-Y": 1.0}},
        )

        with pytest.raises(UnknownSegmentError):
            service.confirm(result)

        snapshot = graph.publish()
        assert all(seg.load == 0.0 for seg in snapshot.segments.values())
        assert service.get_statistics()['batchesConfirmed'] == 0

    @pytest.mark.asyncio
    async def test_superseded_batch_reruns_on_new_snapshot(self, service, graph):
        """Test a batch pending across a publication is recomputed on the newer snapshot"""
        real_distribute = service.balancer.distribute
        started = threading.Event()
        release = threading.Event()
        versions = []

        def slow_distribute(snapshot, requests, budget_s):
            versions.append(snapshot.version)
            if len(versions) == 1:
                started.set()
                release.wait(5)
            return real_distribute(snapshot, requests, budget_s)

        service.balancer.distribute = slow_distribute
        loop = asyncio.get_running_loop()

        task = asyncio.create_task(service.submit_batch([RouteRequest(origin="A", destination="C")]))
        assert await loop.run_in_executor(None, started.wait, 5)

        newer = graph.publish()
        service.on_snapshot_published(newer)
        result = await task
        release.set()

        assert result.snapshot_version == newer.version
        assert versions == [1, 2]
        assert service.batches_superseded == 1

    def test_statistics(self, service):
        stats = service.get_statistics()

        assert stats['pendingBatches'] == 0
        assert 'optimizer' in stats and 'balancer' in stats
