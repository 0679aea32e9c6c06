from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from core.trading.models import ExecutionResult, Leg


class ExecutionSummary(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: List[ExecutionResult]) -> "ExecutionSummary":
        succeeded = sum(1 for r in results if r.success)
        return cls(attempted=len(results), succeeded=succeeded, failed=len(results) - succeeded)


class SquareOffOutcome(BaseModel):
    trade_id: str
    reason: str
    legs: List[Leg]
    execution_results: List[ExecutionResult] = Field(default_factory=list)
    summary: ExecutionSummary = ExecutionSummary()
    skipped_accounts: List[str] = Field(default_factory=list)
    cancelled_stop_losses: int = 0
    completed_durably: bool = True
    notified: bool = False


class SignalOutcome(BaseModel):
    """What happened to one processed signal."""
    kind: Literal["entry", "exit"]
    signal: Dict[str, Any]
    trade_id: Optional[str] = None
    legs: List[Leg] = Field(default_factory=list)
    execution_results: List[ExecutionResult] = Field(default_factory=list)
    summary: ExecutionSummary = ExecutionSummary()
    square_off: Optional[SquareOffOutcome] = None
    durable: bool = True
    stop_losses_scheduled: int = 0
    notified: bool = False
