"""
Routing Routes - Ordinary traffic route endpoints

Endpoints:
- POST /api/routes - Ranked plans for one request
- POST /api/routes/batch - Load-balanced assignment for a batch
"""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field
from typing import List, Optional

from greenroute.errors import NoRouteError, OptimizationTimeoutError, UnknownSegmentError
from greenroute.models import RouteRequest
from greenroute.routing import RoutingService, get_routing_service

router = APIRouter(prefix="/api/routes", tags=["routing"])


class BatchRouteRequest(BaseModel):
    """Batch of concurrent route requests"""
    requests: List[RouteRequest] = Field(..., min_length=1)
    budget: Optional[float] = Field(default=None, gt=0, description="Batch budget in seconds")
    confirm: bool = Field(default=False, description="Reserve the assigned load on the road graph")


def _get_service() -> RoutingService:
    service = get_routing_service()
    if not service:
        raise HTTPException(status_code=503, detail="Routing service not initialized")
    return service


@router.post("")
async def compute_routes(request: RouteRequest, k: Optional[int] = Query(default=None, ge=1, le=10)):
    """
    Compute the best route and up to k - 1 diversified alternates

    Example:
    ```
    curl -X POST http://localhost:8000/api/routes \\
      -H "Content-Type: application/json" \\
      -d '{"origin":"J-0","destination":"J-8"}'
    ```
    """
    service = _get_service()
    try:
        plans = await service.route(request, k=k)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoRouteError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OptimizationTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))

    return {
        "requestId": request.request_id,
        "snapshotVersion": plans[0].snapshot_version if plans else None,
        "partial": any(p.partial for p in plans),
        "plans": [p.model_dump() for p in plans],
    }


@router.post("/batch")
async def distribute_batch(batch: BatchRouteRequest):
    """Distribute a batch across alternates without overloading segments"""
    service = _get_service()
    result = await service.submit_batch(batch.requests, budget_s=batch.budget)

    if batch.confirm:
        try:
            service.confirm(result)
        except UnknownSegmentError as e:
            # Topology replaced while the batch ran
            raise HTTPException(status_code=409, detail=str(e))

    return result.model_dump()
