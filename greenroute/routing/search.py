"""
Best-first search over a graph snapshot

Shared engine behind the A* route optimizer and the emergency Dijkstra
pathfinder. Costs are tuples compared lexicographically; the heuristic (if
any) is added component-wise. Ties on cost are broken by the
lexicographic edge-id sequence, so results are deterministic.
"""

import heapq
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from greenroute.graph.snapshot import GraphSnapshot, SegmentView

Cost = Tuple[float, ...]
EdgeCostFn = Callable[[SegmentView], Cost]
HeuristicFn = Callable[[str], Cost]

# Rounding applied to heap priorities so float noise does not defeat
# the edge-id tie-break
_PRIORITY_DIGITS = 9


@dataclass(frozen=True)
class SearchResult:
    """Path found by best_first_search"""
    node_ids: Tuple[str, ...]
    edge_ids: Tuple[str, ...]
    cost: Cost
    expansions: int


class SearchTimeout(Exception):
    """Deadline reached before the search settled the destination"""

    def __init__(self, expansions: int):
        super().__init__(f"search deadline reached after {expansions} expansions")
        self.expansions = expansions


def _add(a: Cost, b: Cost) -> Cost:
    return tuple(x + y for x, y in zip(a, b))


def _priority(cost: Cost) -> Cost:
    return tuple(round(c, _PRIORITY_DIGITS) for c in cost)


def best_first_search(
    snapshot: GraphSnapshot,
    origin: str,
    destination: str,
    edge_cost: EdgeCostFn,
    zero: Cost = (0.0,),
    heuristic: Optional[HeuristicFn] = None,
    deadline: Optional[float] = None,
    check_every: int = 64,
) -> Optional[SearchResult]:
    """
    Find the least-cost path from origin to destination

    Search states are (intersection, incoming segment) when the snapshot
    carries turn restrictions, plain intersections otherwise.

    Args:
        snapshot: Graph snapshot to search
        origin: Start intersection ID
        destination: Goal intersection ID
        edge_cost: Cost tuple for traversing a segment (non-negative)
        zero: Zero cost tuple of the right arity
        heuristic: Admissible, consistent lower bound to the destination
        deadline: time.monotonic() value at which to give up
        check_every: Expansions between deadline checks

    Returns:
        SearchResult, or None if the destination is unreachable

    Raises:
        SearchTimeout: If the deadline passes first
    """
    if origin == destination:
        return SearchResult(node_ids=(origin,), edge_ids=(), cost=zero, expansions=0)

    track_incoming = snapshot.has_turn_restrictions
    h = heuristic or (lambda _node: zero)

    start_state = (origin, None)
    best_g: Dict[Tuple[str, Optional[str]], Cost] = {start_state: zero}
    closed = set()

    # (priority, edge path, g, node, incoming segment, node path)
    heap: List[tuple] = [(_priority(h(origin)), (), zero, origin, None, (origin,))]
    expansions = 0

    while heap:
        if deadline is not None and expansions % check_every == 0 and time.monotonic() >= deadline:
            raise SearchTimeout(expansions)

        _, edge_path, g, node, incoming, node_path = heapq.heappop(heap)
        state = (node, incoming if track_incoming else None)
        if state in closed:
            continue
        closed.add(state)
        expansions += 1

        if node == destination:
            return SearchResult(node_ids=node_path, edge_ids=edge_path, cost=g, expansions=expansions)

        intersection = snapshot.intersections[node]
        for seg in snapshot.outgoing_segments(node):
            if track_incoming and intersection.forbids(incoming, seg.id):
                continue

            next_state = (seg.to_node, seg.id if track_incoming else None)
            if next_state in closed:
                continue

            tentative = _add(g, edge_cost(seg))
            known = best_g.get(next_state)
            if known is not None and _priority(tentative) > _priority(known):
                continue
            best_g[next_state] = tentative

            heapq.heappush(heap, (
                _priority(_add(tentative, h(seg.to_node))),
                edge_path + (seg.id,),
                tentative,
                seg.to_node,
                seg.id,
                node_path + (seg.to_node,),
            ))

    return None
