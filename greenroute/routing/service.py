"""
Routing Service

Serves individual and batched route requests for the routing-application
collaborator. CPU-bound searches run on a dedicated thread pool so the
event loop stays responsive; emergency routing has its own pool in the
corridor manager and never queues behind this one.

A batch still pending when a newer snapshot is published is superseded:
its result is discarded and the batch re-runs on the newest snapshot.
"""

import asyncio
import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from greenroute.graph.road_graph import RoadGraphModel
from greenroute.graph.snapshot import GraphSnapshot
from greenroute.models.routing import DistributionResult, RoutePlan, RouteRequest
from greenroute.routing.load_balancer import LoadBalancer
from greenroute.routing.optimizer import RouteOptimizer

logger = logging.getLogger(__name__)


@dataclass
class PendingBatch:
    """Batch awaiting a result computed on the latest snapshot"""
    batch_id: str
    requests: List[RouteRequest]
    budget_s: Optional[float]
    snapshot_version: int = 0
    runs: int = 0
    superseded: asyncio.Event = field(default_factory=asyncio.Event)


class RoutingService:
    """
    Executor-backed front end for RouteOptimizer and LoadBalancer

    Usage:
        service = RoutingService(graph, optimizer, balancer)
        plans = await service.route(request, k=3)
        result = await service.submit_batch(requests)
        service.confirm(result)
    """

    def __init__(
        self,
        graph: RoadGraphModel,
        optimizer: Optional[RouteOptimizer] = None,
        balancer: Optional[LoadBalancer] = None,
        config: Optional[Dict[str, Any]] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Initialize routing service

        Args:
            graph: Road graph supplying snapshots and reservations
            optimizer: RouteOptimizer for single requests
            balancer: LoadBalancer for batches
            config: Routing configuration section
            executor: Thread pool for searches (created if omitted)
        """
        config = config or {}
        self.graph = graph
        self.optimizer = optimizer or RouteOptimizer(config)
        self.balancer = balancer or LoadBalancer(self.optimizer)
        self.max_batch_reruns = int(config.get('maxBatchReruns', 3))

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=int(config.get('maxWorkers', 4)),
            thread_name_prefix="routing",
        )

        self._pending: Dict[str, PendingBatch] = {}
        self._batch_ids = itertools.count(1)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Statistics
        self.batches_completed = 0
        self.batches_superseded = 0
        self.batches_confirmed = 0

    async def route(self, request: RouteRequest, k: Optional[int] = None) -> List[RoutePlan]:
        """
        Compute ranked plans for one request on the current snapshot

        Raises:
            ValueError: For emergency requests (served by the corridor manager)
            NoRouteError / OptimizationTimeoutError: From the optimizer
        """
        if request.is_emergency:
            raise ValueError("emergency requests bypass ordinary routing")

        snapshot = self.graph.current_snapshot()
        loop = asyncio.get_running_loop()
        plans = await loop.run_in_executor(
            self.executor,
            lambda: self.optimizer.compute_routes(
                snapshot, request.origin, request.destination,
                k=k or self.optimizer.k_alternatives,
            ),
        )
        return [plan.model_copy(update={'request_id': request.request_id}) for plan in plans]

    async def submit_batch(
        self,
        requests: Sequence[RouteRequest],
        budget_s: Optional[float] = None,
    ) -> DistributionResult:
        """
        Distribute a batch, re-running it if the snapshot is superseded

        Returns:
            Result computed against the newest snapshot available when the
            final run started
        """
        self._loop = asyncio.get_running_loop()
        batch = PendingBatch(
            batch_id=f"batch-{next(self._batch_ids)}",
            requests=list(requests),
            budget_s=budget_s,
        )
        self._pending[batch.batch_id] = batch

        try:
            while True:
                snapshot = self.graph.current_snapshot()
                batch.snapshot_version = snapshot.version
                batch.runs += 1
                batch.superseded.clear()

                run = self._loop.run_in_executor(
                    self.executor, self.balancer.distribute, snapshot, batch.requests, batch.budget_s,
                )
                waiter = asyncio.ensure_future(batch.superseded.wait())
                done, _ = await asyncio.wait({run, waiter}, return_when=asyncio.FIRST_COMPLETED)

                if run in done:
                    waiter.cancel()
                    result = run.result()
                    newer = self.graph.current_snapshot().version != snapshot.version
                    if not newer or batch.runs > self.max_batch_reruns:
                        self.batches_completed += 1
                        return result
                else:
                    # Result of the stale run is discarded when it lands
                    run.add_done_callback(_discard_result)

                self.batches_superseded += 1
                if batch.runs > self.max_batch_reruns:
                    # Keep serving: one last run on the newest snapshot, no further supersession
                    snapshot = self.graph.current_snapshot()
                    batch.snapshot_version = snapshot.version
                    result = await self._loop.run_in_executor(
                        self.executor, self.balancer.distribute, snapshot, batch.requests, batch.budget_s,
                    )
                    self.batches_completed += 1
                    return result

                logger.info(
                    "[ROUTING] %s superseded on v%d, re-running on v%d",
                    batch.batch_id, snapshot.version, self.graph.current_snapshot().version,
                )
        finally:
            self._pending.pop(batch.batch_id, None)

    def on_snapshot_published(self, snapshot: GraphSnapshot):
        """Supersede pending batches computed on an older snapshot"""
        stale = [b for b in self._pending.values() if b.snapshot_version < snapshot.version]
        if not stale:
            return
        logger.debug("[ROUTING] Snapshot v%d supersedes %d pending batch(es)", snapshot.version, len(stale))
        for batch in stale:
            if self._loop is not None and self._loop.is_running():
                self._loop.call_soon_threadsafe(batch.superseded.set)
            else:
                batch.superseded.set()

    def confirm(self, result: DistributionResult):
        """
        Commit a batch's plans as provisional reservations on the road graph

        All or nothing: if the topology changed and a plan names a segment
        that no longer exists, UnknownSegmentError is raised and no load is
        reserved.
        """
        self.graph.reserve_plans(result.assignments.values())
        self.batches_confirmed += 1

    @property
    def pending_batches(self) -> int:
        return len(self._pending)

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)

    def get_statistics(self) -> Dict[str, Any]:
        """Get routing service statistics"""
        return {
            'pendingBatches': len(self._pending),
            'batchesCompleted': self.batches_completed,
            'batchesSuperseded': self.batches_superseded,
            'batchesConfirmed': self.batches_confirmed,
            'optimizer': self.optimizer.get_statistics(),
            'balancer': self.balancer.get_statistics(),
        }


def _discard_result(future: asyncio.Future):
    if not future.cancelled() and future.exception() is not None:
        logger.debug("[ROUTING] Superseded batch run failed: %s", future.exception())


# ============================================
# Global instance
# ============================================

_routing_service: Optional[RoutingService] = None


def get_routing_service() -> Optional[RoutingService]:
    """Get the global routing service"""
    return _routing_service


def init_routing_service(graph: RoadGraphModel, **kwargs) -> RoutingService:
    """Initialize the global routing service"""
    global _routing_service
    _routing_service = RoutingService(graph, **kwargs)
    return _routing_service
