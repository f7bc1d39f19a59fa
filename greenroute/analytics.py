"""
Analytics Sinks

Append-only record of routing and corridor outcomes (load balancing,
recalculations, corridor durations) for the analytics collaborator.
"""

import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Protocol, runtime_checkable

from greenroute.logging_utils import log_event


@runtime_checkable
class AnalyticsSink(Protocol):
    """Receives analytics records; must not block the caller"""

    def record(self, name: str, payload: Dict[str, Any]) -> None:
        ...


class MemoryAnalyticsSink:
    """
    Bounded in-memory analytics buffer

    Usage:
        sink = MemoryAnalyticsSink(max_records=1000)
        sink.record('corridor_completed', {'eventId': 'EMG-00001'})
        sink.recent(10, name='corridor_completed')
    """

    def __init__(self, max_records: int = 1000):
        self.records: Deque[Dict[str, Any]] = deque(maxlen=max_records)
        self.total_records = 0

    def record(self, name: str, payload: Dict[str, Any]) -> None:
        self.records.append({'name': name, 'timestamp': time.time(), 'payload': dict(payload)})
        self.total_records += 1

    def recent(self, limit: int = 50, name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent records first, optionally filtered by name"""
        matching = [r for r in reversed(self.records) if name is None or r['name'] == name]
        return matching[:limit]

    def count(self, name: str) -> int:
        return sum(1 for r in self.records if r['name'] == name)


class JsonLogAnalyticsSink(MemoryAnalyticsSink):
    """Buffers records and writes each one as a JSON log line"""

    def record(self, name: str, payload: Dict[str, Any]) -> None:
        super().record(name, payload)
        log_event(name, payload=dict(payload))


# Global analytics sink (initialized in main.py)
_sink: Optional[MemoryAnalyticsSink] = None


def get_analytics() -> Optional[MemoryAnalyticsSink]:
    """Get the global analytics sink"""
    return _sink


def set_analytics(sink: MemoryAnalyticsSink):
    """Set the global analytics sink"""
    global _sink
    _sink = sink
