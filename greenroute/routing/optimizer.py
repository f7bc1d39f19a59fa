"""
Route Optimizer - A* Search with Diversified Alternates

Computes ranked routes for ordinary traffic over one graph snapshot.
The first result is optimal under the snapshot's weights; alternates are
found by re-running A* with already-used segments lightly penalised, so
they are good and different rather than globally k-shortest.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from greenroute.errors import NoRouteError, OptimizationTimeoutError
from greenroute.graph.snapshot import GraphSnapshot, SegmentView
from greenroute.models.routing import RoutePlan
from greenroute.routing.search import SearchResult, SearchTimeout, best_first_search

logger = logging.getLogger(__name__)

WeightFn = Callable[[SegmentView], float]


def snapshot_weight(segment: SegmentView) -> float:
    """Default weight: the snapshot's dynamic segment weight"""
    return segment.weight


class RouteOptimizer:
    """
    Weighted shortest-path routing

    Features:
    - A* with great-circle / max-speed heuristic (admissible)
    - Deterministic tie-break on the edge-id sequence
    - Up to k diversified alternates
    - Per-request response budget with partial results

    Usage:
        optimizer = RouteOptimizer(config)
        plans = optimizer.compute_routes(snapshot, "A", "C", k=2)
    """

    # Extra attempts when a penalised re-run repeats an earlier path
    MAX_DUPLICATE_RETRIES = 2

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize route optimizer

        Args:
            config: Routing configuration section
        """
        config = config or {}
        self.k_alternatives = int(config.get('kAlternatives', 3))
        self.response_budget = float(config.get('responseBudget', 10.0))
        self.diversification_penalty = float(config.get('diversificationPenalty', 0.3))

        # Statistics
        self.requests_served = 0
        self.partial_results = 0
        self.total_expansions = 0

    def compute_routes(
        self,
        snapshot: GraphSnapshot,
        origin: str,
        destination: str,
        k: int = 1,
        weight_fn: Optional[WeightFn] = None,
        budget_s: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> List[RoutePlan]:
        """
        Compute up to k routes, best first

        Args:
            snapshot: Snapshot to route over (held for the whole call)
            origin: Start intersection ID
            destination: Destination intersection ID
            k: Number of routes requested (>= 1)
            weight_fn: Segment weight override (default: snapshot weight)
            budget_s: Response budget in seconds (default: configured)
            deadline: Absolute time.monotonic() deadline, overrides budget_s

        Returns:
            Plans ordered by total cost then edge-id sequence; every plan
            carries partial=True if the budget cut the search short

        Raises:
            NoRouteError: Origin and destination are disconnected
            OptimizationTimeoutError: Budget exhausted before any route
        """
        if k < 1:
            raise ValueError("k must be at least 1")

        for node in (origin, destination):
            if not snapshot.has_node(node):
                raise NoRouteError(origin, destination, snapshot.version, reason=f"unknown intersection {node}")

        weight = weight_fn or snapshot_weight
        budget = self.response_budget if budget_s is None else budget_s
        if deadline is None:
            deadline = time.monotonic() + budget
        heuristic = self._make_heuristic(snapshot, destination)

        self.requests_served += 1
        found: List[SearchResult] = []
        seen_paths = set()
        usage: Dict[str, int] = {}
        partial = False
        attempts = 0
        max_attempts = k + self.MAX_DUPLICATE_RETRIES

        while len(found) < k and attempts < max_attempts:
            attempts += 1
            edge_cost = self._penalised(weight, usage)
            try:
                result = best_first_search(
                    snapshot, origin, destination,
                    edge_cost=edge_cost,
                    heuristic=heuristic,
                    deadline=deadline,
                )
            except SearchTimeout as e:
                self.total_expansions += e.expansions
                partial = True
                break

            if result is None:
                if not found:
                    raise NoRouteError(origin, destination, snapshot.version)
                break

            self.total_expansions += result.expansions
            if result.edge_ids in seen_paths:
                # Same path again: raise the penalty and retry
                for sid in result.edge_ids:
                    usage[sid] = usage.get(sid, 0) + 1
                continue

            seen_paths.add(result.edge_ids)
            found.append(result)
            for sid in result.edge_ids:
                usage[sid] = usage.get(sid, 0) + 1

        if not found:
            self.partial_results += 1
            logger.warning(
                "[ROUTING] Budget %.1fs exhausted before any route %s -> %s (v%d)",
                budget, origin, destination, snapshot.version,
            )
            raise OptimizationTimeoutError(
                f"No route {origin} -> {destination} found within {budget:.1f}s",
                budget_s=budget,
            )

        if partial:
            self.partial_results += 1
            logger.warning(
                "[ROUTING] Budget exhausted %s -> %s, returning %d partial plan(s)",
                origin, destination, len(found),
            )

        plans = [self._to_plan(snapshot, r, weight, partial) for r in found]
        plans.sort(key=lambda p: (round(p.total_cost, 9), p.edge_ids))
        for rank, plan in enumerate(plans):
            plan.rank = rank
        return plans

    def best_route(
        self,
        snapshot: GraphSnapshot,
        origin: str,
        destination: str,
        weight_fn: Optional[WeightFn] = None,
    ) -> RoutePlan:
        """Compute the single best route"""
        return self.compute_routes(snapshot, origin, destination, k=1, weight_fn=weight_fn)[0]

    def _penalised(self, weight: WeightFn, usage: Dict[str, int]):
        penalty = self.diversification_penalty

        def edge_cost(seg: SegmentView):
            uses = usage.get(seg.id, 0)
            w = weight(seg)
            if uses:
                w *= (1.0 + penalty) ** uses
            return (w,)

        return edge_cost

    def _make_heuristic(self, snapshot: GraphSnapshot, destination: str):
        """
        Great-circle distance over the network's fastest speed limit

        Scaled by the snapshot's admissibility factor; never overestimates
        the remaining travel time.
        """
        max_speed_mps = snapshot.max_speed_kmh / 3.6
        if max_speed_mps <= 0:
            return None
        scale = snapshot.heuristic_scale
        cache: Dict[str, tuple] = {}

        def heuristic(node_id: str):
            value = cache.get(node_id)
            if value is None:
                value = (scale * snapshot.straight_line_m(node_id, destination) / max_speed_mps,)
                cache[node_id] = value
            return value

        return heuristic

    @staticmethod
    def _to_plan(snapshot: GraphSnapshot, result: SearchResult, weight: WeightFn, partial: bool) -> RoutePlan:
        segments = [snapshot.segment(sid) for sid in result.edge_ids]
        return RoutePlan(
            edge_ids=list(result.edge_ids),
            node_ids=list(result.node_ids),
            total_cost=sum(weight(s) for s in segments),
            travel_time_s=sum(s.weight for s in segments),
            snapshot_version=snapshot.version,
            partial=partial,
        )

    def get_statistics(self) -> Dict[str, Any]:
        """Get optimizer statistics"""
        return {
            'requestsServed': self.requests_served,
            'partialResults': self.partial_results,
            'totalExpansions': self.total_expansions,
        }
