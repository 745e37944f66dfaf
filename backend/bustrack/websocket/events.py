"""
WebSocket Event Type Definitions

Events are categorized as:
- Server -> Client: position pushes and status transitions
- Client -> Server: per-bus subscriptions
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================
# Event Name Constants
# ============================================

class ServerEvent(str, Enum):
    """Events emitted from server to client"""

    CONNECTION_SUCCESS = "connection:success"

    # Position updates
    BUS_POSITION = "bus:position"
    BUS_POSITIONS = "bus:positions"
    BUS_STATUS_CHANGED = "bus:status_changed"

    # Subscription acknowledgements
    SUBSCRIBE_RESPONSE = "subscribe:response"


class ClientEvent(str, Enum):
    """Events received from client"""

    CONNECT = "connect"
    DISCONNECT = "disconnect"

    SUBSCRIBE_BUS = "subscribe:bus"
    UNSUBSCRIBE_BUS = "unsubscribe:bus"


def bus_room(bus_id: str) -> str:
    return f"bus:{bus_id}"


# ============================================
# Server -> Client payloads
# ============================================

class BusPositionData(BaseModel):
    """bus:position payload"""
    busId: str
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    confidenceLevel: float = 0.0
    activeTrackers: int = 0
    trustedTrackers: int = 0
    averageTrustScore: float = 0.0
    movementConsistency: float = 0.0
    sampleCount: int = 0
    lastKnownLocation: Optional[Dict[str, Any]] = None
    lastUpdated: Optional[float] = None


class BusPositionsData(BaseModel):
    """bus:positions payload (all buses, one message)"""
    positions: List[BusPositionData] = Field(default_factory=list)
    count: int = 0
    timestamp: float


class BusStatusChangedData(BaseModel):
    """bus:status_changed payload"""
    busId: str
    previousStatus: Optional[str] = None
    status: str
    confidenceLevel: float = 0.0
    timestamp: float


# ============================================
# Client -> Server payloads
# ============================================

class SubscribeBusRequest(BaseModel):
    """subscribe:bus / unsubscribe:bus payload"""
    busId: str = Field(min_length=1)
