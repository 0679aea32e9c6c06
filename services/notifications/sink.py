from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

from core.trading.models import EntrySignal, ExecutionResult, Leg, Signal

IST = ZoneInfo("Asia/Kolkata")


@dataclass(frozen=True)
class NotificationOutcome:
    sent: bool
    skipped: bool = False
    plain_text_fallback: bool = False
    message_id: Optional[int] = None
    error: Optional[str] = None


class NotificationSink(ABC):
    """Reports signal processing outcomes to operators. Never raises."""

    @abstractmethod
    async def notify(self, title: str, signal: Signal, legs: Sequence[Leg],
                     results: Sequence[ExecutionResult]) -> NotificationOutcome:
        ...


def _price(value: float) -> str:
    return f"{value:,.2f}"


def build_summary(title: str, signal: Signal, legs: Sequence[Leg],
                  results: Sequence[ExecutionResult], now: Optional[datetime] = None) -> str:
    """Plain-text summary of one processed signal."""
    lines: List[str] = [title, ""]
    if isinstance(signal, EntrySignal):
        lines.append(f"Signal: {signal.action.upper()} {signal.symbol}")
        lines.append(f"Entry: {_price(signal.entry_price)}")
        lines.append(f"Stop Loss: {_price(signal.stop_loss)}")
        lines.append(f"Target: {_price(signal.target)}")
    else:
        direction = f" ({signal.original_direction.value.upper()})" if signal.original_direction else ""
        lines.append(f"Signal: EXIT{direction} {signal.symbol}")
        lines.append(f"Exit: {_price(signal.exit_price)}")
        lines.append(f"Reason: {signal.exit_reason}")

    if legs:
        lines.append("")
        lines.append("Legs:")
        for index, leg in enumerate(legs, start=1):
            lines.append(f"{index}. {leg.action.value} {leg.option_type.value} "
                         f"Strike {leg.strike:g} at {_price(leg.limit_price)}")

    succeeded = sum(1 for r in results if r.success)
    lines.append("")
    lines.append(f"Orders: {succeeded} successful, {len(results) - succeeded} failed "
                 f"of {len(results)}")

    failed_accounts = sorted({r.display_name or r.account_id for r in results if not r.success})
    if failed_accounts:
        lines.append(f"Failed accounts: {', '.join(failed_accounts)}")

    timestamp = (now or datetime.now(IST)).astimezone(IST)
    lines.append("")
    lines.append(f"Time: {timestamp.strftime('%d/%m/%Y, %I:%M:%S %p')} IST")
    return "\n".join(lines)
