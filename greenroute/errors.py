"""
Error taxonomy for the routing and corridor core.

Algorithmic failures carry enough detail for the caller to retry or fall
back; structural failures leave the last-good graph in service.
"""

from typing import Any, List, Optional


class GreenRouteError(Exception):
    """Base class for all core errors"""


class InvalidTopologyError(GreenRouteError):
    """Malformed network load; the previous topology remains active"""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []


class UnknownSegmentError(GreenRouteError, KeyError):
    """Telemetry or reservation for a segment the graph does not know"""

    def __init__(self, segment_id: str):
        super().__init__(f"Unknown road segment: {segment_id}")
        self.segment_id = segment_id

    def __str__(self) -> str:
        return self.args[0]


class NoRouteError(GreenRouteError):
    """Origin and destination are disconnected in the snapshot"""

    def __init__(self, origin: str, destination: str, snapshot_version: int, reason: str = "disconnected"):
        super().__init__(
            f"No route {origin} -> {destination} in snapshot v{snapshot_version} ({reason})"
        )
        self.origin = origin
        self.destination = destination
        self.snapshot_version = snapshot_version
        self.reason = reason


class OptimizationTimeoutError(GreenRouteError):
    """Response budget exceeded before any usable plan was found"""

    def __init__(self, message: str, budget_s: float, partial: Optional[Any] = None):
        super().__init__(message)
        self.budget_s = budget_s
        self.partial = partial


class CorridorConflictUnresolved(GreenRouteError):
    """Window deferral bound exceeded while resolving corridor overlap"""

    def __init__(self, event_id: str, intersection_id: str, conflicting_event_id: str, deferral_s: float):
        super().__init__(
            f"Corridor {event_id} still overlaps {conflicting_event_id} at {intersection_id} "
            f"after {deferral_s:.1f}s of deferral"
        )
        self.event_id = event_id
        self.intersection_id = intersection_id
        self.conflicting_event_id = conflicting_event_id
        self.deferral_s = deferral_s


class EmergencyNotFoundError(GreenRouteError, KeyError):
    """No tracked emergency event matches the given id"""

    def __init__(self, key: str):
        super().__init__(f"Emergency event not found: {key}")
        self.key = key

    def __str__(self) -> str:
        return self.args[0]


class StaleTelemetryWarning(UserWarning):
    """Telemetry is old or out of order; logged, never raised"""
