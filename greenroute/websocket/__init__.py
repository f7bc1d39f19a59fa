"""
WebSocket Package

Socket.IO transport for corridor commands, operator alerts and snapshot
notices.

Components:
- events: Event type definitions and data models
- emitter: Server -> Client emission (SignalCoordinator, OperatorChannel)
- handlers: Client -> Server subscriptions and field reports
"""

from .events import Channel, ServerEvent, ClientEvent
from .emitter import WebSocketEmitter, get_emitter, set_emitter
from .handlers import WebSocketHandlers, get_handlers, set_handlers

__all__ = [
    "ServerEvent",
    "ClientEvent",
    "Channel",
    "WebSocketEmitter",
    "WebSocketHandlers",
    "get_emitter",
    "set_emitter",
    "get_handlers",
    "set_handlers",
]
