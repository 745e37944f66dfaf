"""
Coordinate Models

The operating-region bounding box and reference bus stops.
"""

from typing import Optional

from pydantic import BaseModel, Field


class BoundingBox(BaseModel):
    """
    Geographic bounding box of the operating region
    """
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    class Config:
        json_schema_extra = {
            "example": {
                "min_lat": 20.5,
                "max_lat": 26.5,
                "min_lng": 88.0,
                "max_lng": 92.7
            }
        }

    def contains(self, lat: float, lng: float) -> bool:
        """Check if a point is within bounds (NaN never is)"""
        return (
            self.min_lat <= lat <= self.max_lat and
            self.min_lng <= lng <= self.max_lng
        )


class Stop(BaseModel):
    """
    Reference bus stop with a circular coverage radius

    ``eta`` is an optional "HH:MM" scheduled arrival used by schedule
    providers to pick the expected stop for a trip leg.
    """
    name: str
    latitude: float
    longitude: float
    radius: float = Field(default=200.0, gt=0)   # meters
    eta: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Mirpur-1",
                "latitude": 23.7937,
                "longitude": 90.3629,
                "radius": 300,
                "eta": "08:15"
            }
        }
