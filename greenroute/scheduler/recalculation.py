"""
Recalculation Scheduler

Decides when RoadGraphModel publishes a new snapshot:

- change trigger: accumulated weight change reaches ``changeThreshold``
  and at least ``minInterval`` has passed since the last publication
- time trigger: ``maxInterval`` elapsed, regardless of change

whichever comes first. Publish listeners (routing service, corridor
manager) are notified after every publication.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from greenroute.graph.road_graph import RoadGraphModel
from greenroute.graph.snapshot import GraphSnapshot

logger = logging.getLogger(__name__)

# Snapshots are never older than this, whatever the configuration says
MAX_PUBLISH_INTERVAL = 45.0


class RecalculationScheduler:
    """
    Event- and time-triggered snapshot publication

    Usage:
        scheduler = RecalculationScheduler(graph, config)
        scheduler.add_publish_listener(routing_service.on_snapshot_published)
        await scheduler.start()
    """

    def __init__(
        self,
        graph: RoadGraphModel,
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], float]] = None,
        analytics=None,
    ):
        """
        Initialize scheduler

        Args:
            graph: Road graph whose working copy is published
            config: Scheduler configuration section
            clock: Wall clock (defaults to the graph's clock)
            analytics: AnalyticsSink for recalculation events
        """
        config = config or {}
        self.graph = graph
        self.clock = clock or graph.clock
        self.analytics = analytics

        self.change_threshold = float(config.get('changeThreshold', 60.0))
        self.min_interval = float(config.get('minInterval', 5.0))
        self.max_interval = min(float(config.get('maxInterval', 45.0)), MAX_PUBLISH_INTERVAL)
        self.check_interval = float(config.get('checkInterval', 1.0))

        self._listeners: List[Callable[[GraphSnapshot], Any]] = []
        self._task: Optional[asyncio.Task] = None
        self.running = False

        # Statistics
        self.recalculations = 0
        self.change_triggered = 0
        self.time_triggered = 0
        self.forced = 0
        self.announced = 0
        self.listener_errors = 0
        self.last_reason: Optional[str] = None

        logger.info(
            "[SCHEDULER] Recalculation scheduler initialized (threshold %.1f, interval %.0fs..%.0fs)",
            self.change_threshold, self.min_interval, self.max_interval,
        )

    def add_publish_listener(self, callback: Callable[[GraphSnapshot], Any]):
        """Register a callback (plain or coroutine function) run after each publication"""
        self._listeners.append(callback)

    def check(self, now: Optional[float] = None) -> Optional[str]:
        """
        Decide whether a publication is due

        Returns:
            'interval', 'change' or None
        """
        now = self.clock() if now is None else now
        since = now - self.graph.published_at

        if since >= self.max_interval:
            return 'interval'
        if self.graph.pending_change >= self.change_threshold and since >= self.min_interval:
            return 'change'
        return None

    async def tick(self, now: Optional[float] = None) -> Optional[GraphSnapshot]:
        """Publish if a trigger fired"""
        reason = self.check(now)
        if reason is None:
            return None
        return await self._recalculate(reason)

    async def force(self, reason: str = 'manual') -> GraphSnapshot:
        """Publish immediately"""
        self.forced += 1
        return await self._recalculate(reason)

    async def _recalculate(self, reason: str) -> GraphSnapshot:
        change = self.graph.pending_change
        since = self.clock() - self.graph.published_at
        snapshot = self.graph.publish()

        self.recalculations += 1
        self.last_reason = reason
        if reason == 'change':
            self.change_triggered += 1
        elif reason == 'interval':
            self.time_triggered += 1

        logger.info(
            "[SCHEDULER] Published v%d (%s, change %.1f, %.1fs since last)",
            snapshot.version, reason, change, since,
        )
        self._record(snapshot, reason, change, since)
        await self._notify(snapshot)
        return snapshot

    async def announce(self, snapshot: GraphSnapshot, reason: str = 'topology') -> GraphSnapshot:
        """
        Notify publish listeners of a snapshot published outside the scheduler

        Used after topology loads, which RoadGraphModel publishes itself.
        """
        self.announced += 1
        self.last_reason = reason
        logger.info("[SCHEDULER] Announcing v%d (%s)", snapshot.version, reason)
        self._record(snapshot, reason, 0.0, 0.0)
        await self._notify(snapshot)
        return snapshot

    def _record(self, snapshot: GraphSnapshot, reason: str, change: float, since: float):
        if self.analytics:
            self.analytics.record('recalculation', {
                'snapshotVersion': snapshot.version,
                'reason': reason,
                'pendingChange': change,
                'sinceLast': since,
                'staleSegments': list(snapshot.stale_segments),
            })

    async def _notify(self, snapshot: GraphSnapshot):
        for callback in list(self._listeners):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.listener_errors += 1
                logger.exception("[SCHEDULER] Publish listener failed: %s", e)

    # ============================================
    # Background loop
    # ============================================

    async def start(self):
        """Start the background check loop"""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._run())
        logger.info("[SCHEDULER] Started (check every %.1fs)", self.check_interval)

    async def stop(self):
        """Stop the background check loop"""
        self.running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[SCHEDULER] Stopped")

    async def _run(self):
        while self.running:
            try:
                await self.tick()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("[SCHEDULER] Check failed: %s", e)
                await asyncio.sleep(self.check_interval)

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status for API response"""
        now = self.clock()
        return {
            'running': self.running,
            'snapshotVersion': self.graph.current_snapshot().version,
            'sinceLastPublish': now - self.graph.published_at,
            'pendingChange': self.graph.pending_change,
            'changeThreshold': self.change_threshold,
            'minInterval': self.min_interval,
            'maxInterval': self.max_interval,
            'recalculations': self.recalculations,
            'changeTriggered': self.change_triggered,
            'timeTriggered': self.time_triggered,
            'forced': self.forced,
            'announced': self.announced,
            'listenerErrors': self.listener_errors,
            'lastReason': self.last_reason,
        }


# ============================================
# Global instance
# ============================================

_scheduler: Optional[RecalculationScheduler] = None


def get_scheduler() -> Optional[RecalculationScheduler]:
    """Get the global recalculation scheduler"""
    return _scheduler


def init_scheduler(graph: RoadGraphModel, **kwargs) -> RecalculationScheduler:
    """Initialize the global recalculation scheduler"""
    global _scheduler
    _scheduler = RecalculationScheduler(graph, **kwargs)
    return _scheduler
