"""
Collaborator Input Models

Congestion telemetry, emergency detections and vehicle position updates
arriving from the traffic-intelligence and detection collaborators.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional
import time

from .emergency import EmergencyVehicleType


class Location(BaseModel):
    """Intersection id and/or GPS coordinates"""
    intersection_id: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode='after')
    def _require_position(self):
        if self.intersection_id is None and (self.lat is None or self.lon is None):
            raise ValueError("location needs an intersection_id or both lat and lon")
        return self

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class CongestionTelemetry(BaseModel):
    """Observed load on one segment"""
    segment_id: str
    timestamp: float = Field(default_factory=time.time)
    observed_load: float = Field(ge=0, allow_inf_nan=False)
    congestion_cause: Optional[str] = None


class EmergencyDetection(BaseModel):
    """Emergency vehicle detected by the detection collaborator"""
    vehicle_id: str
    vehicle_type: EmergencyVehicleType = EmergencyVehicleType.AMBULANCE
    location: Location
    destination: str
    priority_rank: int = Field(default=2, ge=0)
    timestamp: float = Field(default_factory=time.time)
    speed_kmh: Optional[float] = Field(default=None, gt=0)


class PositionUpdate(BaseModel):
    """Periodic emergency vehicle position report"""
    vehicle_id: str
    location: Location
    timestamp: float = Field(default_factory=time.time)
