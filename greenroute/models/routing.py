"""
Route Request and Plan Models

Requests from the routing-application collaborator and the plans
returned to it.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from uuid import uuid4
import time


class PriorityClass(str, Enum):
    """Route request priority class"""
    NORMAL = "normal"
    EMERGENCY = "emergency"


class RouteRequest(BaseModel):
    """
    Route request from origin to destination intersection

    Requests sharing a cluster key are balanced together; the key
    defaults to the destination.
    """
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: f"rq-{uuid4().hex[:10]}")
    origin: str
    destination: str
    requested_at: float = Field(default_factory=time.time)
    priority: PriorityClass = PriorityClass.NORMAL
    cluster_key: Optional[str] = None

    @property
    def group_key(self) -> str:
        return self.cluster_key or self.destination

    @property
    def is_emergency(self) -> bool:
        return self.priority == PriorityClass.EMERGENCY


class RoutePlan(BaseModel):
    """
    Ordered route through the network computed against one snapshot
    """
    edge_ids: List[str]
    node_ids: List[str]
    total_cost: float                       # weighted cost, seconds
    travel_time_s: float                    # ETA under snapshot weights
    load_increments: Dict[str, float] = Field(default_factory=dict)
    snapshot_version: int
    partial: bool = False
    request_id: Optional[str] = None
    rank: int = 0

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "edge_ids": ["S-A-D", "S-D-C"],
                "node_ids": ["A", "D", "C"],
                "total_cost": 92.4,
                "travel_time_s": 92.4,
                "load_increments": {"S-A-D": 1.0, "S-D-C": 1.0},
                "snapshot_version": 7,
                "partial": False,
                "rank": 0,
            }
        }
    )

    @property
    def edge_key(self) -> tuple:
        return tuple(self.edge_ids)


class DistributionResult(BaseModel):
    """Outcome of balancing one batch of route requests"""
    snapshot_version: int
    assignments: Dict[str, RoutePlan] = Field(default_factory=dict)
    bypassed: List[str] = Field(default_factory=list)
    unroutable: Dict[str, str] = Field(default_factory=dict)
    fallback: bool = False
    rounds: int = 0
    utilization_before: float = 0.0
    utilization_after: float = 0.0
    saturated_segments: List[str] = Field(default_factory=list)

    def plan_for(self, request: RouteRequest) -> Optional[RoutePlan]:
        """Look up the plan assigned to a request"""
        return self.assignments.get(request.request_id)
