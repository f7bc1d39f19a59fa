"""
WebSocket Event Type Definitions

Socket.IO event names and payload models for the signal-coordination
and operator collaborators.

Events are categorized as:
- Server -> Client: corridor commands, alerts, snapshot notices
- Client -> Server: channel subscriptions, vehicle positions, congestion reports
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import time


# ============================================
# Event Name Constants
# ============================================

class ServerEvent(str, Enum):
    """Events emitted from server to client"""

    # Connection
    CONNECTION_SUCCESS = "connection:success"
    SUBSCRIBE_RESPONSE = "subscribe:response"
    UNSUBSCRIBE_RESPONSE = "unsubscribe:response"
    REPORT_RESPONSE = "report:response"

    # Corridor commands for the signal coordinator
    CORRIDOR_SUBMITTED = "corridor:submitted"
    CORRIDOR_HOLD = "corridor:hold"
    CORRIDOR_RELEASE = "corridor:release"
    CORRIDOR_RESTORE = "corridor:restore"

    # Operator alerts
    OPERATOR_ALERT = "operator:alert"

    # Graph updates
    SNAPSHOT_PUBLISHED = "snapshot:published"


class ClientEvent(str, Enum):
    """Events received from client"""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    SUBSCRIBE_UPDATES = "subscribe:updates"
    UNSUBSCRIBE_UPDATES = "unsubscribe:updates"

    # Field reports
    POSITION_REPORT = "emergency:position"
    TELEMETRY_REPORT = "telemetry:congestion"


class Channel(str, Enum):
    """Broadcast rooms; each server event goes to exactly one"""

    SIGNALS = "signals"
    OPERATORS = "operators"
    SNAPSHOTS = "snapshots"

    @property
    def room(self) -> str:
        return f"channel:{self.value}"


# ============================================
# Server -> Client Data Models
# ============================================

class CorridorWindowData(BaseModel):
    """One intersection window inside a corridor payload"""
    intersectionId: str
    openAt: float
    closeAt: float
    deferredBy: float = 0.0


class CorridorSubmittedData(BaseModel):
    """Data for corridor:submitted event"""
    eventId: str
    windows: List[CorridorWindowData]
    edgeIds: List[str]
    snapshotVersion: int
    degraded: bool = False
    totalDeferral: float = 0.0
    timestamp: float = Field(default_factory=time.time)


class CorridorHoldData(BaseModel):
    """Data for corridor:hold event"""
    eventId: str
    windows: List[CorridorWindowData]
    timestamp: float = Field(default_factory=time.time)


class CorridorReleaseData(BaseModel):
    """Data for corridor:release event"""
    eventId: str
    intersectionIds: List[str]
    timestamp: float = Field(default_factory=time.time)


class CorridorRestoreData(BaseModel):
    """Data for corridor:restore event"""
    eventId: str
    timestamp: float = Field(default_factory=time.time)


class OperatorAlertData(BaseModel):
    """Data for operator:alert event"""
    level: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class SnapshotPublishedData(BaseModel):
    """Data for snapshot:published event"""
    version: int
    createdAt: float
    segments: int
    staleSegments: List[str] = Field(default_factory=list)


# ============================================
# Client -> Server Data Models
# ============================================

class SubscribeRequest(BaseModel):
    """Request to join or leave a broadcast channel"""
    channel: Channel


class ReportAck(BaseModel):
    """Reply to a field report or subscription request"""
    status: str
    accepted: int = 0
    ignored: int = 0
    message: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)
