"""
Corridor Collaborator Interfaces

The corridor manager never drives signal hardware or alerts people
directly. It talks to two collaborators:

- SignalCoordinator: receives corridor plans, hold-open and release
  requests, and the restore-normal-operation command
- OperatorChannel: receives critical alerts that need a human

The logging implementations here are used when no live transport (see
greenroute.websocket.emitter) is configured.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from greenroute.models.emergency import CorridorPlan, CorridorWindow

logger = logging.getLogger(__name__)


@runtime_checkable
class SignalCoordinator(Protocol):
    """Signal-timing collaborator that realises corridor plans"""

    async def submit_corridor(self, plan: CorridorPlan) -> None:
        ...

    async def hold_open(self, event_id: str, windows: List[CorridorWindow]) -> None:
        ...

    async def release(self, event_id: str, intersection_ids: List[str]) -> None:
        ...

    async def restore_all(self, event_id: str) -> None:
        ...


@runtime_checkable
class OperatorChannel(Protocol):
    """Human-facing alert channel"""

    async def report(self, level: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        ...


class LoggingSignalCoordinator:
    """SignalCoordinator that only records what it was asked to do"""

    def __init__(self):
        self.commands: List[Dict[str, Any]] = []

    async def submit_corridor(self, plan: CorridorPlan) -> None:
        self.commands.append({'command': 'submit', 'eventId': plan.event_id, 'windows': len(plan.windows)})
        logger.info(
            "[SIGNALS] Corridor %s submitted: %d windows%s",
            plan.event_id, len(plan.windows), " (degraded)" if plan.degraded else "",
        )

    async def hold_open(self, event_id: str, windows: List[CorridorWindow]) -> None:
        ids = [w.intersection_id for w in windows]
        self.commands.append({'command': 'hold', 'eventId': event_id, 'intersections': ids})
        logger.info("[SIGNALS] %s hold open: %s", event_id, ", ".join(ids))

    async def release(self, event_id: str, intersection_ids: List[str]) -> None:
        self.commands.append({'command': 'release', 'eventId': event_id, 'intersections': list(intersection_ids)})
        logger.info("[SIGNALS] %s release: %s", event_id, ", ".join(intersection_ids))

    async def restore_all(self, event_id: str) -> None:
        self.commands.append({'command': 'restore', 'eventId': event_id})
        logger.info("[SIGNALS] %s restore normal operation", event_id)


class LoggingOperatorChannel:
    """OperatorChannel that writes alerts to the log"""

    def __init__(self):
        self.alerts: List[Dict[str, Any]] = []

    async def report(self, level: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.alerts.append({'level': level, 'message': message, 'details': details or {}})
        log_level = logging.CRITICAL if level == 'CRITICAL' else logging.WARNING
        logger.log(log_level, "[OPERATOR] %s: %s", level, message)
