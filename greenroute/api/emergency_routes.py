"""
Emergency Routes - Emergency vehicle and corridor endpoints

Endpoints:
- POST /api/emergency/detect - Register a detected emergency vehicle
- POST /api/emergency/position - Vehicle position report
- GET /api/emergency/events - Active (and recent) events
- GET /api/emergency/statistics - Corridor manager statistics
- GET /api/emergency/{event_id} - One event
- POST /api/emergency/{event_id}/cancel - Cancel and restore signals
"""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel
from typing import Optional

from greenroute.emergency import EmergencyCorridorManager, get_corridor_manager
from greenroute.errors import EmergencyNotFoundError
from greenroute.models import EmergencyDetection, PositionUpdate

router = APIRouter(prefix="/api/emergency", tags=["emergency"])


class CancelRequest(BaseModel):
    """Request to cancel an emergency"""
    reason: str = "Manual cancellation"


def _get_corridor_manager() -> EmergencyCorridorManager:
    manager = get_corridor_manager()
    if not manager:
        raise HTTPException(status_code=503, detail="Corridor manager not initialized")
    return manager


@router.post("/detect")
async def detect_emergency(detection: EmergencyDetection):
    """
    Register an emergency vehicle and activate its corridor

    Routing failures do not fail the request: the event stays DETECTED,
    the operator is alerted and routing is retried on the next snapshot.

    Example:
    ```
    curl -X POST http://localhost:8000/api/emergency/detect \\
      -H "Content-Type: application/json" \\
      -d '{"vehicle_id":"AMB-1","location":{"intersection_id":"J-0"},"destination":"J-8"}'
    ```
    """
    manager = _get_corridor_manager()
    event = await manager.handle_detection(detection)
    return event.to_dict()


@router.post("/position")
async def update_position(update: PositionUpdate):
    """Advance the corridor with a vehicle position report"""
    manager = _get_corridor_manager()
    try:
        event = await manager.update_position(update)
    except EmergencyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return event.to_dict()


@router.get("/events")
async def list_events(include_history: bool = Query(default=False), limit: int = Query(default=20, ge=1, le=500)):
    """List active events in priority order"""
    manager = _get_corridor_manager()
    response = {
        "active": [e.to_dict() for e in manager.active_events()],
    }
    if include_history:
        response["history"] = [e.to_dict() for e in manager.recent_history(limit)]
    return response


@router.get("/statistics")
async def get_statistics():
    """Get corridor manager statistics"""
    return _get_corridor_manager().get_statistics()


@router.get("/{event_id}")
async def get_event(event_id: str):
    """Get one active or completed event"""
    try:
        event = _get_corridor_manager().get_event(event_id)
    except EmergencyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {**event.to_dict(), "history": event.history}


@router.post("/{event_id}/cancel")
async def cancel_event(event_id: str, request: Optional[CancelRequest] = None):
    """Cancel an emergency and restore normal signal operation"""
    reason = request.reason if request else CancelRequest().reason
    try:
        event = await _get_corridor_manager().cancel(event_id, reason=reason)
    except EmergencyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return event.to_dict()
