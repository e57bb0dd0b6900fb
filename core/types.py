"""
Type definitions for the relay quota service.
Provides type safety and better IDE support.
"""

from typing import Dict, List, Any
from enum import Enum

Username = str
SessionId = str
Address = str

class TrafficStatus(Enum):
    """Outcome of a traffic report."""
    OK = "ok"
    BANDWIDTH_EXCEEDED = "bandwidth_exceeded"
    DURATION_EXCEEDED = "duration_exceeded"

class HealthState(Enum):
    """Health states reported by the health check manager."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


DatabaseRow = Dict[str, Any]
DatabaseResult = List[DatabaseRow]
Metadata = Dict[str, Any]
