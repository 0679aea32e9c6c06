"""Per-symbol trade state machine and square-off protocol."""

from .manager import PositionManager
from .models import ExecutionSummary, SignalOutcome, SquareOffOutcome
from .locks import (
    SymbolLockProvider,
    NullSymbolLockProvider,
    LocalSymbolLockProvider,
    RedisSymbolLockProvider,
)

__all__ = [
    "PositionManager",
    "ExecutionSummary",
    "SignalOutcome",
    "SquareOffOutcome",
    "SymbolLockProvider",
    "NullSymbolLockProvider",
    "LocalSymbolLockProvider",
    "RedisSymbolLockProvider",
]
