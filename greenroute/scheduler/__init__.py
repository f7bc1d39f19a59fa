"""
Snapshot Recalculation Scheduling
"""

from .recalculation import (
    RecalculationScheduler,
    MAX_PUBLISH_INTERVAL,
    get_scheduler,
    init_scheduler,
)


__all__ = [
    "RecalculationScheduler",
    "MAX_PUBLISH_INTERVAL",
    "get_scheduler",
    "init_scheduler",
]
