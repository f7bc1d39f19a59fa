"""
Corridor Planner

Derives time windows for each intersection of an emergency route and
resolves overlaps between concurrent corridors by deferral.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from greenroute.errors import CorridorConflictUnresolved
from greenroute.models.emergency import CorridorPlan, CorridorWindow
from greenroute.emergency.pathfinder import EmergencyPathfinder

logger = logging.getLogger(__name__)


class CorridorPlanner:
    """
    Build and reconcile corridor plans

    A window opens ``windowLead`` seconds before the estimated arrival and
    closes ``windowClearance`` seconds after it. When two corridors share an
    intersection with overlapping windows, the lower-priority window is
    pushed back by exactly the overlap and every downstream window moves
    with it (the vehicle waits, so it arrives later everywhere after).
    """

    def __init__(self, pathfinder: Optional[EmergencyPathfinder] = None, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.pathfinder = pathfinder or EmergencyPathfinder(config)
        self.window_lead = float(config.get('windowLead', 10.0))
        self.window_clearance = float(config.get('windowClearance', 5.0))
        self.max_deferral = float(config.get('maxDeferral', 45.0))

    def build_plan(
        self,
        event_id: str,
        node_ids: Sequence[str],
        edge_ids: Sequence[str],
        lengths_m: Sequence[float],
        speed_mps: float,
        now: float,
        start_index: int = 0,
        snapshot_version: int = 0,
    ) -> CorridorPlan:
        """
        Derive corridor windows from the vehicle's position onward

        Args:
            event_id: Emergency event ID
            node_ids: Full route intersections
            edge_ids: Full route segments
            lengths_m: Length of each route segment
            speed_mps: Current speed estimate
            now: Time the vehicle is at node_ids[start_index]
            start_index: Progress index along the route
            snapshot_version: Snapshot the route was computed on

        Returns:
            CorridorPlan covering node_ids[start_index:]
        """
        offsets = self.pathfinder.arrival_offsets(lengths_m[start_index:], speed_mps)
        windows = []
        for node_id, offset in zip(node_ids[start_index:], offsets):
            arrival = now + offset
            windows.append(CorridorWindow(
                intersection_id=node_id,
                open_at=max(now, arrival - self.window_lead),
                close_at=arrival + self.window_clearance,
            ))

        return CorridorPlan(
            event_id=event_id,
            windows=windows,
            edge_ids=list(edge_ids[start_index:]),
            snapshot_version=snapshot_version,
            computed_at=now,
        )

    def resolve_conflicts(
        self,
        plans: Sequence[CorridorPlan],
    ) -> Tuple[List[CorridorPlan], List[CorridorConflictUnresolved]]:
        """
        Remove window overlaps between corridors

        Args:
            plans: Corridor plans in priority order (most urgent first)

        Returns:
            (resolved plans in the same order, conflicts left unresolved)
        """
        resolved: List[CorridorPlan] = []
        unresolved: List[CorridorConflictUnresolved] = []

        for plan in plans:
            windows = list(plan.windows)
            total = plan.total_deferral_s
            degraded = False
            start = 0

            while True:
                hit = self._first_overlap(windows, resolved, start)
                if hit is None:
                    break

                idx, blocker, blocker_event = hit
                shift = blocker.close_at - windows[idx].open_at
                if total + shift > self.max_deferral:
                    degraded = True
                    unresolved.append(CorridorConflictUnresolved(
                        event_id=plan.event_id,
                        intersection_id=windows[idx].intersection_id,
                        conflicting_event_id=blocker_event,
                        deferral_s=total + shift,
                    ))
                    logger.warning(
                        "[CORRIDOR] %s cannot clear %s at %s within %.0fs deferral",
                        plan.event_id, blocker_event, windows[idx].intersection_id, self.max_deferral,
                    )
                    break

                windows[idx:] = [w.shifted(shift) for w in windows[idx:]]
                total += shift
                start = idx
                logger.info(
                    "[CORRIDOR] %s deferred %.1fs at %s for %s",
                    plan.event_id, shift, windows[idx].intersection_id, blocker_event,
                )

            if windows == plan.windows and degraded == plan.degraded:
                resolved.append(plan)
            else:
                resolved.append(plan.model_copy(update={
                    'windows': windows,
                    'total_deferral_s': total,
                    'degraded': degraded,
                }))

        return resolved, unresolved

    @staticmethod
    def _first_overlap(
        windows: List[CorridorWindow],
        higher: List[CorridorPlan],
        start: int,
    ) -> Optional[Tuple[int, CorridorWindow, str]]:
        for idx in range(start, len(windows)):
            window = windows[idx]
            blockers = [
                (other, plan.event_id)
                for plan in higher
                for other in plan.windows
                if window.overlaps(other)
            ]
            if blockers:
                # Latest-closing blocker, so one shift clears them all at this intersection
                other, event_id = max(blockers, key=lambda b: (b[0].close_at, b[1]))
                return idx, other, event_id
        return None

    @staticmethod
    def sliding_slice(plan: CorridorPlan, lookahead: int) -> List[CorridorWindow]:
        """Windows currently held open: the first ``lookahead`` still ahead"""
        return list(plan.windows[:max(1, lookahead)])
