"""
Emergency Vehicle & Corridor Models

Emergency events, their lifecycle states and the corridor plans emitted
to the signal-coordination collaborator.
"""

from dataclasses import dataclass, field
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Tuple
import time


class EmergencyVehicleType(str, Enum):
    """Types of emergency vehicles"""
    AMBULANCE = "AMBULANCE"
    FIRE_TRUCK = "FIRE_TRUCK"
    POLICE = "POLICE"


class EmergencyState(str, Enum):
    """Emergency event lifecycle"""
    DETECTED = "DETECTED"
    ROUTED = "ROUTED"
    CORRIDOR_ACTIVE = "CORRIDOR_ACTIVE"
    RESTORING = "RESTORING"
    RESTORED = "RESTORED"


# Forward path plus fail-safe exits toward RESTORING
VALID_TRANSITIONS: Dict[EmergencyState, Tuple[EmergencyState, ...]] = {
    EmergencyState.DETECTED: (EmergencyState.ROUTED, EmergencyState.RESTORING),
    EmergencyState.ROUTED: (EmergencyState.CORRIDOR_ACTIVE, EmergencyState.RESTORING),
    EmergencyState.CORRIDOR_ACTIVE: (EmergencyState.RESTORING,),
    EmergencyState.RESTORING: (EmergencyState.RESTORED,),
    EmergencyState.RESTORED: (),
}


class CorridorWindow(BaseModel):
    """Interval during which an intersection's signal favours the corridor"""
    model_config = ConfigDict(frozen=True)

    intersection_id: str
    open_at: float
    close_at: float
    deferred_by: float = 0.0

    def overlaps(self, other: "CorridorWindow") -> bool:
        return (
            self.intersection_id == other.intersection_id
            and self.open_at < other.close_at
            and other.open_at < self.close_at
        )

    def shifted(self, seconds: float) -> "CorridorWindow":
        return CorridorWindow(
            intersection_id=self.intersection_id,
            open_at=self.open_at + seconds,
            close_at=self.close_at + seconds,
            deferred_by=self.deferred_by + seconds,
        )


class CorridorPlan(BaseModel):
    """
    Green corridor for one emergency vehicle

    Windows are ordered along the route.
    """
    event_id: str
    windows: List[CorridorWindow]
    edge_ids: List[str] = Field(default_factory=list)
    snapshot_version: int = 0
    computed_at: float = Field(default_factory=time.time)
    degraded: bool = False
    total_deferral_s: float = 0.0

    @property
    def intersection_ids(self) -> List[str]:
        return [w.intersection_id for w in self.windows]

    def window_at(self, intersection_id: str) -> Optional[CorridorWindow]:
        for window in self.windows:
            if window.intersection_id == intersection_id:
                return window
        return None


@dataclass
class EmergencyEvent:
    """
    Tracked emergency from detection to restoration

    Mutated only by EmergencyCorridorManager.
    """
    event_id: str
    vehicle_id: str
    vehicle_type: EmergencyVehicleType
    origin: str
    destination: str
    priority_rank: int
    detected_at: float
    state: EmergencyState = EmergencyState.DETECTED
    node_path: List[str] = field(default_factory=list)
    edge_ids: List[str] = field(default_factory=list)
    edge_lengths_m: List[float] = field(default_factory=list)
    routed_version: int = 0
    travel_time_s: float = 0.0
    corridor: Optional[CorridorPlan] = None
    position_index: int = 0
    held_open: List[str] = field(default_factory=list)
    last_position_at: Optional[float] = None
    last_position: Optional[Tuple[float, float]] = None
    last_report_at: Optional[float] = None
    speed_mps: float = 0.0
    restoring_since: Optional[float] = None
    restore_requested_at: Optional[float] = None
    restored_at: Optional[float] = None
    activated_at: Optional[float] = None
    restore_reason: Optional[str] = None
    restore_escalated: bool = False
    last_error: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def queue_key(self) -> Tuple[int, float, str]:
        """Priority queue ordering: urgency, then earliest detection"""
        return (self.priority_rank, self.detected_at, self.event_id)

    @property
    def is_terminal(self) -> bool:
        return self.state == EmergencyState.RESTORED

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for API response"""
        return {
            'eventId': self.event_id,
            'vehicleId': self.vehicle_id,
            'vehicleType': self.vehicle_type.value,
            'origin': self.origin,
            'destination': self.destination,
            'priorityRank': self.priority_rank,
            'detectedAt': self.detected_at,
            'state': self.state.value,
            'route': self.node_path,
            'edgeIds': self.edge_ids,
            'travelTime': self.travel_time_s,
            'positionIndex': self.position_index,
            'heldOpen': self.held_open,
            'corridor': self.corridor.model_dump() if self.corridor else None,
            'activatedAt': self.activated_at,
            'restoringSince': self.restoring_since,
            'restoredAt': self.restored_at,
            'restoreReason': self.restore_reason,
            'lastError': self.last_error,
        }
