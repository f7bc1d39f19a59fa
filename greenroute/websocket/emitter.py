"""
WebSocket Event Emitter

Socket.IO transport for the corridor collaborators. WebSocketEmitter
implements both the SignalCoordinator and the OperatorChannel interfaces,
so the corridor manager can drive a live signal controller and operator
console without knowing about sockets.

Every event goes to one channel room: corridor commands to signal
controllers, alerts to operator consoles, snapshot notices to dashboards.
Corridor commands propagate emit failures to the caller (the corridor
manager retries and escalates them); informational events only count
them.
"""

import logging
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from greenroute.graph.snapshot import GraphSnapshot
from greenroute.models.emergency import CorridorPlan, CorridorWindow
from .events import (
    Channel,
    ServerEvent,
    CorridorWindowData,
    CorridorSubmittedData,
    CorridorHoldData,
    CorridorReleaseData,
    CorridorRestoreData,
    OperatorAlertData,
    SnapshotPublishedData,
)

logger = logging.getLogger(__name__)


def _window_data(window: CorridorWindow) -> CorridorWindowData:
    return CorridorWindowData(
        intersectionId=window.intersection_id,
        openAt=window.open_at,
        closeAt=window.close_at,
        deferredBy=window.deferred_by,
    )


class WebSocketEmitter:
    """
    Socket.IO transport for signal controllers and operator consoles

    Usage:
        emitter = WebSocketEmitter(sio)
        manager = EmergencyCorridorManager(graph, signal_coordinator=emitter, operator_channel=emitter)
    """

    def __init__(self, sio):
        # sio: socketio.AsyncServer
        self.sio = sio

        self._members: Dict[Channel, Set[str]] = defaultdict(set)

        self._emit_count = 0
        self._error_count = 0
        self._errors_by_event: Dict[str, int] = defaultdict(int)
        self._unheard: Dict[str, int] = defaultdict(int)
        self._last_emit_time = 0.0

    # ============================================
    # Connection Events
    # ============================================

    async def emit_connection_success(self, sid: str):
        """Emit connection success to specific client"""
        await self._emit(
            ServerEvent.CONNECTION_SUCCESS.value,
            {
                "message": "Connected to GreenRoute",
                "timestamp": time.time(),
                "serverVersion": "1.0.0",
            },
            room=sid,
        )

    # ============================================
    # SignalCoordinator
    # ============================================

    async def submit_corridor(self, plan: CorridorPlan) -> None:
        data = CorridorSubmittedData(
            eventId=plan.event_id,
            windows=[_window_data(w) for w in plan.windows],
            edgeIds=plan.edge_ids,
            snapshotVersion=plan.snapshot_version,
            degraded=plan.degraded,
            totalDeferral=plan.total_deferral_s,
        )
        await self._emit(ServerEvent.CORRIDOR_SUBMITTED.value, data.model_dump(), channel=Channel.SIGNALS, strict=True)

    async def hold_open(self, event_id: str, windows: List[CorridorWindow]) -> None:
        data = CorridorHoldData(eventId=event_id, windows=[_window_data(w) for w in windows])
        await self._emit(ServerEvent.CORRIDOR_HOLD.value, data.model_dump(), channel=Channel.SIGNALS, strict=True)

    async def release(self, event_id: str, intersection_ids: List[str]) -> None:
        data = CorridorReleaseData(eventId=event_id, intersectionIds=list(intersection_ids))
        await self._emit(ServerEvent.CORRIDOR_RELEASE.value, data.model_dump(), channel=Channel.SIGNALS, strict=True)

    async def restore_all(self, event_id: str) -> None:
        data = CorridorRestoreData(eventId=event_id)
        await self._emit(ServerEvent.CORRIDOR_RESTORE.value, data.model_dump(), channel=Channel.SIGNALS, strict=True)

    # ============================================
    # OperatorChannel
    # ============================================

    async def report(self, level: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        data = OperatorAlertData(level=level, message=message, details=details or {})
        await self._emit(ServerEvent.OPERATOR_ALERT.value, data.model_dump(), channel=Channel.OPERATORS, strict=True)

    # ============================================
    # Graph Events
    # ============================================

    async def emit_snapshot_published(self, snapshot: GraphSnapshot):
        """Announce a new snapshot (registered as a scheduler publish listener)"""
        data = SnapshotPublishedData(
            version=snapshot.version,
            createdAt=snapshot.created_at,
            segments=len(snapshot.segments),
            staleSegments=list(snapshot.stale_segments),
        )
        await self._emit(ServerEvent.SNAPSHOT_PUBLISHED.value, data.model_dump(), channel=Channel.SNAPSHOTS)

    # ============================================
    # Channel Membership
    # ============================================

    def add_subscription(self, sid: str, channel: Channel):
        self._members[Channel(channel)].add(sid)

    def remove_subscription(self, sid: str, channel: Optional[Channel] = None):
        """Drop sid from one channel, or from all of them on disconnect"""
        channels = [Channel(channel)] if channel else list(self._members)
        for ch in channels:
            self._members[ch].discard(sid)

    def get_subscribers(self, channel: Channel) -> Set[str]:
        return set(self._members.get(Channel(channel), ()))

    # ============================================
    # Internal Methods
    # ============================================

    async def _emit(
        self,
        event: str,
        data: Any,
        room: Optional[str] = None,
        channel: Optional[Channel] = None,
        strict: bool = False,
    ):
        """
        Emit to a single client (room) or a channel room

        Args:
            event: Event name
            data: Event payload
            room: Session id for direct replies
            channel: Broadcast channel for collaborator events
            strict: Re-raise emit failures instead of only counting them
        """
        target = room or (channel.room if channel else None)
        try:
            await self.sio.emit(event, data, room=target)
        except Exception as e:
            self._error_count += 1
            self._errors_by_event[event] += 1
            logger.error("[WS] %s to %s failed: %s", event, target or "all", e)
            if strict:
                raise
            return

        self._emit_count += 1
        self._last_emit_time = time.time()
        if channel and not self._members.get(channel):
            # Delivered to an empty room; collaborator not connected
            self._unheard[channel.value] += 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "totalEmits": self._emit_count,
            "errorCount": self._error_count,
            "errorsByEvent": dict(self._errors_by_event),
            "lastEmitTime": self._last_emit_time,
            "subscribers": {ch.value: len(sids) for ch, sids in self._members.items()},
            "unheardEmits": dict(self._unheard),
        }


# Global emitter instance (initialized in main.py)
emitter: Optional[WebSocketEmitter] = None


def get_emitter() -> Optional[WebSocketEmitter]:
    return emitter


def set_emitter(e: WebSocketEmitter):
    global emitter
    emitter = e
