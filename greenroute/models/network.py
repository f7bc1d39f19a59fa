"""
Road Network Data Models

Intersections (nodes) and road segments (edges) as loaded from the
network-configuration collaborator.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class TurnRestriction(BaseModel):
    """Forbidden movement from one segment onto another at an intersection"""
    model_config = ConfigDict(frozen=True)

    from_segment: str
    to_segment: str


class Intersection(BaseModel):
    """
    Intersection (graph node)

    Signal phase is a read-only reference owned by the signal collaborator.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    coordination_group: Optional[str] = None
    signal_phase_ref: Optional[str] = None
    signalized: bool = True
    turn_restrictions: List[TurnRestriction] = Field(default_factory=list)

    def forbids(self, from_segment: Optional[str], to_segment: str) -> bool:
        """Check whether turning from one segment onto another is restricted"""
        if from_segment is None:
            return False
        return any(
            r.from_segment == from_segment and r.to_segment == to_segment
            for r in self.turn_restrictions
        )

    def hands_off_to(self, other: "Intersection") -> bool:
        """Moving to other crosses a declared coordination group boundary"""
        if self.coordination_group is None and other.coordination_group is None:
            return False
        return self.coordination_group != other.coordination_group


class RoadSegment(BaseModel):
    """
    Directed road segment between two intersections

    Load may exceed capacity; it is flagged, never clamped.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "S-A-B",
                "from_node": "A",
                "to_node": "B",
                "length_m": 500,
                "lanes": 2,
                "speed_limit_kmh": 50,
                "capacity_vph": 1200,
                "load": 300,
            }
        },
    )

    id: str
    from_node: str
    to_node: str
    length_m: float = Field(gt=0, allow_inf_nan=False)
    lanes: int = Field(default=1, ge=1)
    speed_limit_kmh: float = Field(gt=0, allow_inf_nan=False)
    capacity_vph: float = Field(gt=0, allow_inf_nan=False)
    load: float = Field(default=0.0, ge=0, allow_inf_nan=False)

    @property
    def base_travel_time(self) -> float:
        """Free-flow traversal time in seconds"""
        return self.length_m / (self.speed_limit_kmh / 3.6)

    @property
    def over_capacity(self) -> bool:
        return self.load > self.capacity_vph
