"""
Load Balancer - Min-Max Fair Batch Route Assignment

Assigns a batch of concurrent route requests to candidate paths so that
no segment is pushed past the overload threshold when an alternate could
have absorbed the traffic.

Algorithm:
1. Group requests by destination cluster; fetch up to k candidates per
   (origin, destination) pair from the RouteOptimizer.
2. Greedy pass in arrival order: lowest-cost candidate that stays under
   threshold, costed with the batch's provisional load overlay.
3. Rebalance: move the latest arrivals off over-threshold segments onto
   their next-best alternate, until stable or the round bound is hit.
"""

import logging
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from greenroute.errors import NoRouteError, OptimizationTimeoutError
from greenroute.graph.snapshot import GraphSnapshot, SegmentView
from greenroute.graph.weights import CongestionModel, segment_weight
from greenroute.models.routing import DistributionResult, RoutePlan, RouteRequest
from greenroute.routing.optimizer import RouteOptimizer

logger = logging.getLogger(__name__)


class _BatchTimeout(Exception):
    """Batch budget exhausted during assignment"""


class LoadBalancer:
    """
    Distribute batched route requests across alternate paths

    Provisional load from earlier assignments in the batch is visible to
    later ones, but nothing is committed to the road graph here.

    Usage:
        balancer = LoadBalancer(optimizer, config)
        result = balancer.distribute(snapshot, requests)
        plan = result.plan_for(requests[0])
    """

    def __init__(
        self,
        optimizer: Optional[RouteOptimizer] = None,
        config: Optional[Dict[str, Any]] = None,
        congestion: Optional[CongestionModel] = None,
        analytics=None,
    ):
        """
        Initialize load balancer

        Args:
            optimizer: RouteOptimizer supplying candidate paths
            config: Load balancer configuration section
            congestion: Congestion model used to cost provisional load
            analytics: AnalyticsSink for load-balancing outcomes
        """
        config = config or {}
        self.optimizer = optimizer or RouteOptimizer()
        self.congestion = congestion or CongestionModel()
        self.analytics = analytics

        self.overload_threshold = float(config.get('overloadThreshold', 1.0))
        self.max_rebalance_rounds = int(config.get('maxRebalanceRounds', 10))
        self.vehicles_per_request = float(config.get('vehiclesPerRequest', 1.0))
        self.batch_budget = float(config.get('batchBudget', 10.0))
        self.k_candidates = int(config.get('kCandidates', self.optimizer.k_alternatives))

        # Statistics
        self.batches_distributed = 0
        self.fallbacks = 0
        self.requests_assigned = 0

    def distribute(
        self,
        snapshot: GraphSnapshot,
        requests: Sequence[RouteRequest],
        budget_s: Optional[float] = None,
    ) -> DistributionResult:
        """
        Assign each normal request in the batch to a route plan

        Emergency requests are not balanced; they are listed in
        ``bypassed`` for the corridor manager.

        Args:
            snapshot: Snapshot every assignment is computed against
            requests: Batch of route requests
            budget_s: Batch budget in seconds (default: configured)

        Returns:
            DistributionResult keyed by request id
        """
        budget = self.batch_budget if budget_s is None else budget_s
        deadline = time.monotonic() + budget
        self.batches_distributed += 1

        result = DistributionResult(snapshot_version=snapshot.version)
        ordered = self._arrival_order(requests)
        normal = []
        for request in ordered:
            if request.is_emergency:
                result.bypassed.append(request.request_id)
            else:
                normal.append(request)

        candidates: Dict[Tuple[str, str], List[RoutePlan]] = {}
        try:
            self._collect_candidates(snapshot, normal, candidates, result, deadline)
            routable = [r for r in normal if r.request_id not in result.unroutable]
            overlay, choice = self._greedy(snapshot, routable, candidates, deadline)
            result.rounds = self._rebalance(snapshot, routable, candidates, overlay, choice, deadline)
        except _BatchTimeout:
            logger.warning(
                "[BALANCER] Batch of %d did not converge within %.1fs, using individual plans",
                len(normal), budget,
            )
            return self._fallback(snapshot, normal, candidates, result)

        self._finish(snapshot, routable, candidates, overlay, choice, result)
        return result

    # ============================================
    # Phases
    # ============================================

    @staticmethod
    def _arrival_order(requests: Sequence[RouteRequest]) -> List[RouteRequest]:
        """Arrival order within destination clusters, clusters by first arrival"""
        indexed = sorted(enumerate(requests), key=lambda item: (item[1].requested_at, item[0]))
        groups: Dict[str, List[RouteRequest]] = {}
        for _, request in indexed:
            groups.setdefault(request.group_key, []).append(request)
        return [request for group in groups.values() for request in group]

    def _collect_candidates(self, snapshot, normal, candidates, result, deadline):
        for request in normal:
            key = (request.origin, request.destination)
            if key in candidates:
                continue
            self._check(deadline)
            try:
                candidates[key] = self.optimizer.compute_routes(
                    snapshot, request.origin, request.destination,
                    k=self.k_candidates, deadline=deadline,
                )
            except NoRouteError as e:
                candidates[key] = []
                logger.info("[BALANCER] %s", e)
            except OptimizationTimeoutError:
                raise _BatchTimeout()

            if candidates[key] and candidates[key][0].partial:
                raise _BatchTimeout()

        for request in normal:
            if not candidates[(request.origin, request.destination)]:
                result.unroutable[request.request_id] = (
                    f"no route {request.origin} -> {request.destination} in v{snapshot.version}"
                )

    def _greedy(self, snapshot, routable, candidates, deadline):
        overlay: Dict[str, float] = defaultdict(float)
        choice: Dict[str, int] = {}

        for request in routable:
            self._check(deadline)
            options = candidates[(request.origin, request.destination)]
            fitting = [
                (self._overlay_cost(snapshot, plan, overlay), plan.edge_ids, idx)
                for idx, plan in enumerate(options)
                if self._fits(snapshot, plan, overlay)
            ]
            if fitting:
                idx = min(fitting)[2]
            else:
                idx = min(
                    (self._peak_after(snapshot, plan, overlay),
                     self._overlay_cost(snapshot, plan, overlay),
                     plan.edge_ids, i)
                    for i, plan in enumerate(options)
                )[3]
            choice[request.request_id] = idx
            self._apply(options[idx], overlay, 1.0)

        return overlay, choice

    def _rebalance(self, snapshot, routable, candidates, overlay, choice, deadline) -> int:
        rounds = 0
        # Lowest priority first: latest arrival
        by_priority = list(reversed(routable))

        while rounds < self.max_rebalance_rounds:
            overloaded = sorted(
                sid for sid, extra in overlay.items()
                if extra > 0 and self._utilization(snapshot, sid, overlay) > self.overload_threshold
            )
            if not overloaded:
                break

            rounds += 1
            moved = False
            for sid in overloaded:
                for request in by_priority:
                    if self._utilization(snapshot, sid, overlay) <= self.overload_threshold:
                        break
                    self._check(deadline)
                    options = candidates[(request.origin, request.destination)]
                    current = options[choice[request.request_id]]
                    if sid not in current.edge_ids:
                        continue

                    self._apply(current, overlay, -1.0)
                    target = None
                    for idx, alternate in enumerate(options):
                        if alternate is current or sid in alternate.edge_ids:
                            continue
                        if self._fits(snapshot, alternate, overlay):
                            target = idx
                            break

                    if target is None:
                        self._apply(current, overlay, 1.0)
                        continue

                    choice[request.request_id] = target
                    self._apply(options[target], overlay, 1.0)
                    moved = True

            if not moved:
                break

        return rounds

    def _finish(self, snapshot, routable, candidates, overlay, choice, result):
        touched = sorted(sid for sid, extra in overlay.items() if extra > 0)
        before = np.array([snapshot.utilization(sid) for sid in touched], dtype=float)
        after = np.array([self._utilization(snapshot, sid, overlay) for sid in touched], dtype=float)

        for request in routable:
            options = candidates[(request.origin, request.destination)]
            chosen = options[choice[request.request_id]]
            result.assignments[request.request_id] = self._assigned_plan(snapshot, chosen, overlay, request)

        result.utilization_before = float(before.max()) if before.size else 0.0
        result.utilization_after = float(after.max()) if after.size else 0.0
        result.saturated_segments = [
            sid for sid, util in zip(touched, after) if util > self.overload_threshold
        ]
        self.requests_assigned += len(result.assignments)

        if result.saturated_segments:
            logger.info(
                "[BALANCER] %d segment(s) remain above %.2f with no free alternate: %s",
                len(result.saturated_segments), self.overload_threshold,
                ", ".join(result.saturated_segments[:5]),
            )

        if self.analytics:
            self.analytics.record('load_balancing', {
                'snapshotVersion': snapshot.version,
                'requests': len(routable),
                'rounds': result.rounds,
                'utilizationBefore': result.utilization_before,
                'utilizationAfter': result.utilization_after,
                'meanUtilizationAfter': float(after.mean()) if after.size else 0.0,
                'saturated': result.saturated_segments,
            })

    def _fallback(self, snapshot, normal, candidates, result) -> DistributionResult:
        self.fallbacks += 1
        result.fallback = True
        result.assignments = {}
        for request in normal:
            if request.request_id in result.unroutable:
                continue
            options = candidates.get((request.origin, request.destination))
            try:
                if not options:
                    options = self.optimizer.compute_routes(snapshot, request.origin, request.destination, k=1)
            except (NoRouteError, OptimizationTimeoutError) as e:
                result.unroutable[request.request_id] = str(e)
                continue
            best = options[0]
            result.assignments[request.request_id] = best.model_copy(update={
                'request_id': request.request_id,
                'load_increments': {sid: self.vehicles_per_request for sid in best.edge_ids},
            })
        self.requests_assigned += len(result.assignments)
        return result

    # ============================================
    # Helpers
    # ============================================

    @staticmethod
    def _check(deadline: float):
        if time.monotonic() >= deadline:
            raise _BatchTimeout()

    def _apply(self, plan: RoutePlan, overlay: Dict[str, float], sign: float):
        for sid in plan.edge_ids:
            overlay[sid] += sign * self.vehicles_per_request

    def _utilization(self, snapshot: GraphSnapshot, sid: str, overlay: Dict[str, float], extra: float = 0.0) -> float:
        return snapshot.utilization(sid, overlay.get(sid, 0.0) + extra)

    def _fits(self, snapshot, plan: RoutePlan, overlay) -> bool:
        return all(
            self._utilization(snapshot, sid, overlay, self.vehicles_per_request) <= self.overload_threshold
            for sid in plan.edge_ids
        )

    def _peak_after(self, snapshot, plan: RoutePlan, overlay) -> float:
        return max(
            (self._utilization(snapshot, sid, overlay, self.vehicles_per_request) for sid in plan.edge_ids),
            default=0.0,
        )

    def _loaded_weight(self, seg: SegmentView, extra: float) -> float:
        load = seg.load + extra
        penalty = self.congestion.penalty(seg.base_travel_time, load, seg.capacity_vph)
        return segment_weight(seg.base_travel_time, penalty, seg.signal_delay)

    def _overlay_cost(self, snapshot, plan: RoutePlan, overlay) -> float:
        return round(sum(
            self._loaded_weight(snapshot.segment(sid), overlay.get(sid, 0.0))
            for sid in plan.edge_ids
        ), 9)

    def _assigned_plan(self, snapshot, chosen: RoutePlan, overlay, request: RouteRequest) -> RoutePlan:
        cost = self._overlay_cost(snapshot, chosen, overlay)
        return chosen.model_copy(update={
            'request_id': request.request_id,
            'total_cost': cost,
            'travel_time_s': cost,
            'load_increments': {sid: self.vehicles_per_request for sid in chosen.edge_ids},
        })

    def get_statistics(self) -> Dict[str, Any]:
        """Get load balancer statistics"""
        return {
            'batchesDistributed': self.batches_distributed,
            'fallbacks': self.fallbacks,
            'requestsAssigned': self.requests_assigned,
            'overloadThreshold': self.overload_threshold,
        }
