"""
Pydantic Models Package

All data models for the routing and corridor core.
Import from here for convenience.
"""

# Network models
from .network import (
    TurnRestriction,
    Intersection,
    RoadSegment,
)

# Routing models
from .routing import (
    PriorityClass,
    RouteRequest,
    RoutePlan,
    DistributionResult,
)

# Emergency models
from .emergency import (
    EmergencyVehicleType,
    EmergencyState,
    VALID_TRANSITIONS,
    CorridorWindow,
    CorridorPlan,
    EmergencyEvent,
)

# Collaborator inputs
from .telemetry import (
    Location,
    CongestionTelemetry,
    EmergencyDetection,
    PositionUpdate,
)


__all__ = [
    "TurnRestriction",
    "Intersection",
    "RoadSegment",
    "PriorityClass",
    "RouteRequest",
    "RoutePlan",
    "DistributionResult",
    "EmergencyVehicleType",
    "EmergencyState",
    "VALID_TRANSITIONS",
    "CorridorWindow",
    "CorridorPlan",
    "EmergencyEvent",
    "Location",
    "CongestionTelemetry",
    "EmergencyDetection",
    "PositionUpdate",
]
