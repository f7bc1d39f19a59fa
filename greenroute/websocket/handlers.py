"""
WebSocket Client Event Handlers

Signal controllers and operator consoles join broadcast channels; field
units (vehicle trackers, roadside counters) push emergency positions and
congestion readings over the same socket instead of the REST API.
Registered with the Socket.IO server in main.py.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from greenroute.emergency.corridor_manager import EmergencyCorridorManager, get_corridor_manager
from greenroute.errors import EmergencyNotFoundError, UnknownSegmentError
from greenroute.graph.road_graph import RoadGraphModel, get_road_graph
from greenroute.models.telemetry import CongestionTelemetry, PositionUpdate
from .events import ClientEvent, ReportAck, ServerEvent, SubscribeRequest
from .emitter import WebSocketEmitter

logger = logging.getLogger(__name__)


class WebSocketHandlers:
    """
    Socket.IO client event handlers

    The corridor manager and road graph default to the application
    globals and are looked up per report, so handlers can be registered
    before those components exist.

    Usage:
        handlers = WebSocketHandlers(sio, emitter)
    """

    def __init__(
        self,
        sio,
        emitter: WebSocketEmitter,
        corridor_manager: Optional[EmergencyCorridorManager] = None,
        graph: Optional[RoadGraphModel] = None,
    ):
        self.sio = sio
        self.emitter = emitter
        self._corridor_manager = corridor_manager
        self._graph = graph

        # sid -> {connectedAt, remoteAddr, channels, reports}
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self.reports_rejected = 0

        for event, handler in (
            (ClientEvent.CONNECT, self.handle_connect),
            (ClientEvent.DISCONNECT, self.handle_disconnect),
            (ClientEvent.SUBSCRIBE_UPDATES, self.handle_subscribe),
            (ClientEvent.UNSUBSCRIBE_UPDATES, self.handle_unsubscribe),
            (ClientEvent.POSITION_REPORT, self.handle_position_report),
            (ClientEvent.TELEMETRY_REPORT, self.handle_telemetry_report),
        ):
            self.sio.on(event.value, handler)

    # ============================================
    # Sessions
    # ============================================

    async def handle_connect(self, sid: str, environ: Dict):
        remote = environ.get("REMOTE_ADDR", "unknown")
        self._sessions[sid] = {"connectedAt": time.time(), "remoteAddr": remote, "channels": set(), "reports": 0}
        logger.info("[WS] %s connected from %s", sid, remote)
        await self.emitter.emit_connection_success(sid)

    async def handle_disconnect(self, sid: str):
        session = self._sessions.pop(sid, None)
        self.emitter.remove_subscription(sid)
        if session is not None:
            logger.info(
                "[WS] %s left after %.1fs (%d reports)",
                sid, time.time() - session["connectedAt"], session["reports"],
            )

    async def handle_subscribe(self, sid: str, data: Dict):
        """
        Join a broadcast channel

        Args:
            sid: Session ID
            data: {channel: 'signals' | 'operators' | 'snapshots'}
        """
        request = await self._parse_channel(sid, data, ServerEvent.SUBSCRIBE_RESPONSE)
        if request is None:
            return

        self.emitter.add_subscription(sid, request.channel)
        await self.sio.enter_room(sid, request.channel.room)
        if sid in self._sessions:
            self._sessions[sid]["channels"].add(request.channel.value)

        await self._ack(sid, ServerEvent.SUBSCRIBE_RESPONSE, ReportAck(status="success", message=request.channel.value))

    async def handle_unsubscribe(self, sid: str, data: Dict):
        request = await self._parse_channel(sid, data, ServerEvent.UNSUBSCRIBE_RESPONSE)
        if request is None:
            return

        self.emitter.remove_subscription(sid, request.channel)
        await self.sio.leave_room(sid, request.channel.room)
        if sid in self._sessions:
            self._sessions[sid]["channels"].discard(request.channel.value)

        await self._ack(sid, ServerEvent.UNSUBSCRIBE_RESPONSE, ReportAck(status="success", message=request.channel.value))

    # ============================================
    # Field Reports
    # ============================================

    async def handle_position_report(self, sid: str, data: Dict):
        """
        Forward an emergency vehicle position to the corridor manager

        Args:
            data: PositionUpdate fields ({vehicle_id, location, timestamp?})
        """
        manager = self._corridor_manager or get_corridor_manager()
        if manager is None:
            await self._reject(sid, "corridor manager not running")
            return

        try:
            update = PositionUpdate(**(data or {}))
            await manager.update_position(update)
        except ValidationError as e:
            await self._reject(sid, f"invalid position report: {e.error_count()} error(s)")
            return
        except EmergencyNotFoundError as e:
            await self._reject(sid, str(e))
            return

        self._count_report(sid)
        await self._ack(sid, ServerEvent.REPORT_RESPONSE, ReportAck(status="success", accepted=1))

    async def handle_telemetry_report(self, sid: str, data: Dict):
        """
        Apply congestion readings from a roadside counter

        Unknown segments and out-of-order readings are counted as ignored;
        one bad reading does not drop the rest of the batch.

        Args:
            data: {updates: [CongestionTelemetry fields, ...]}
        """
        graph = self._graph or get_road_graph()
        if graph is None:
            await self._reject(sid, "road graph not loaded")
            return

        try:
            updates: List[CongestionTelemetry] = [
                CongestionTelemetry(**item) for item in (data or {}).get("updates", [])
            ]
        except (ValidationError, TypeError) as e:
            await self._reject(sid, f"invalid telemetry report: {e}")
            return

        accepted = ignored = 0
        for update in updates:
            try:
                if graph.apply_telemetry(update):
                    accepted += 1
                else:
                    ignored += 1
            except UnknownSegmentError:
                logger.warning("[WS] %s reported unknown segment %s", sid, update.segment_id)
                ignored += 1

        self._count_report(sid)
        await self._ack(
            sid, ServerEvent.REPORT_RESPONSE,
            ReportAck(status="success", accepted=accepted, ignored=ignored),
        )

    # ============================================
    # Internal Methods
    # ============================================

    async def _parse_channel(self, sid: str, data: Dict, reply: ServerEvent) -> Optional[SubscribeRequest]:
        try:
            return SubscribeRequest(**(data or {}))
        except ValidationError:
            await self._ack(sid, reply, ReportAck(status="error", message=f"unknown channel {data!r}"))
            return None

    async def _reject(self, sid: str, message: str):
        self.reports_rejected += 1
        logger.warning("[WS] Report from %s rejected: %s", sid, message)
        await self._ack(sid, ServerEvent.REPORT_RESPONSE, ReportAck(status="error", message=message))

    async def _ack(self, sid: str, event: ServerEvent, ack: ReportAck):
        await self.sio.emit(event.value, ack.model_dump(), room=sid)

    def _count_report(self, sid: str):
        if sid in self._sessions:
            self._sessions[sid]["reports"] += 1

    def get_client_count(self) -> int:
        return len(self._sessions)

    def get_connected_clients(self) -> Dict[str, Dict[str, Any]]:
        return {
            sid: {**session, "channels": sorted(session["channels"])}
            for sid, session in self._sessions.items()
        }


# Global handlers instance (initialized in main.py)
handlers: Optional[WebSocketHandlers] = None


def get_handlers() -> Optional[WebSocketHandlers]:
    return handlers


def set_handlers(h: WebSocketHandlers):
    global handlers
    handlers = h
