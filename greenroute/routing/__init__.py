"""
Ordinary Traffic Routing

Components:
- RouteOptimizer: A* routes with diversified alternates
- LoadBalancer: min-max fair assignment of batched requests
- RoutingService: executor-backed serving with batch supersession
"""

from .search import (
    SearchResult,
    SearchTimeout,
    best_first_search,
)

from .optimizer import (
    RouteOptimizer,
    snapshot_weight,
)

from .load_balancer import LoadBalancer

from .service import (
    RoutingService,
    PendingBatch,
    get_routing_service,
    init_routing_service,
)


__all__ = [
    "SearchResult",
    "SearchTimeout",
    "best_first_search",
    "RouteOptimizer",
    "snapshot_weight",
    "LoadBalancer",
    "RoutingService",
    "PendingBatch",
    "get_routing_service",
    "init_routing_service",
]
