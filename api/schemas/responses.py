from pydantic import BaseModel, Field
from typing import Generic, TypeVar, List, Optional, Any, Dict
from datetime import datetime, timezone
from enum import Enum

from core.trading.models import Trade
from services.position_manager import SignalOutcome

T = TypeVar('T')


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class StandardResponse(BaseModel, Generic[T]):
    """Standard API response wrapper"""
    status: str = Field(description="Response status")
    message: Optional[str] = Field(None, description="Response message")
    data: Optional[T] = Field(None, description="Response data")
    timestamp: datetime = Field(default_factory=_utc_now)


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utc_now)
    path: Optional[str] = None


class SignalResponse(StandardResponse[SignalOutcome]):
    """Outcome of one processed alert; returned even when every order failed"""
    pass


class TradeResponse(StandardResponse[Trade]):
    pass


class SignalsHealthResponse(BaseModel):
    status: HealthStatus
    strategy: str
    target_delta: float
    same_direction_policy: str
    brokers: List[str]
    telegram_configured: bool
    timestamp: datetime = Field(default_factory=_utc_now)
