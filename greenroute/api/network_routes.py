"""
Network Routes - Topology and telemetry endpoints

Endpoints:
- POST /api/network - Load (replace) the road network
- GET /api/network/snapshot - Current snapshot header
- GET /api/network/segments/{segment_id} - Working-copy state of a segment
- POST /api/telemetry/congestion - Apply congestion telemetry
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import List
import time

from greenroute.errors import InvalidTopologyError, UnknownSegmentError
from greenroute.graph import RoadGraphModel, get_road_graph
from greenroute.models import CongestionTelemetry, Intersection, RoadSegment
from greenroute.scheduler import get_scheduler

router = APIRouter(prefix="/api", tags=["network"])


# ============================================
# Request Models
# ============================================

class NetworkLoadRequest(BaseModel):
    """Full network definition (replaces the current topology)"""
    intersections: List[Intersection]
    segments: List[RoadSegment]


class CongestionBatch(BaseModel):
    """One or more congestion observations"""
    updates: List[CongestionTelemetry] = Field(..., min_length=1)


def _get_graph() -> RoadGraphModel:
    graph = get_road_graph()
    if not graph:
        raise HTTPException(status_code=503, detail="Road graph not initialized")
    return graph


# ============================================
# Endpoints
# ============================================

@router.post("/network")
async def load_network(request: NetworkLoadRequest):
    """
    Load a road network

    A malformed network is rejected with 422 and the previous topology
    stays in service. The new snapshot is announced to the publish
    listeners (routing service, corridor manager, Socket.IO).
    """
    graph = _get_graph()
    try:
        snapshot = graph.load_network(request.intersections, request.segments)
    except InvalidTopologyError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "problems": e.problems})

    scheduler = get_scheduler()
    if scheduler:
        await scheduler.announce(snapshot, 'topology')

    return {"status": "loaded", "snapshot": snapshot.summary(), "timestamp": time.time()}


@router.get("/network/snapshot")
async def get_snapshot():
    """Get the current published snapshot header"""
    return _get_graph().current_snapshot().summary()


@router.get("/network/segments/{segment_id}")
async def get_segment(segment_id: str):
    """Get working-copy state for one segment"""
    try:
        return _get_graph().segment_state(segment_id)
    except UnknownSegmentError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/telemetry/congestion")
async def apply_congestion(batch: CongestionBatch):
    """
    Apply congestion telemetry

    Out-of-order observations are ignored and counted, unknown segments
    fail with 404.
    """
    graph = _get_graph()
    applied = 0
    ignored = 0
    for update in batch.updates:
        try:
            if graph.apply_telemetry(update):
                applied += 1
            else:
                ignored += 1
        except UnknownSegmentError as e:
            raise HTTPException(status_code=404, detail=str(e))

    return {
        "applied": applied,
        "ignored": ignored,
        "pendingChange": graph.pending_change,
        "snapshotVersion": graph.current_snapshot().version,
    }
