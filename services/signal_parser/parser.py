"""
BB TRAP alert parsing.

Turns the free-form alert text posted by the charting platform into a typed
EntrySignal or ExitSignal. Formats are tried in a fixed priority order and the
first match wins; the ordered table is exposed as SIGNAL_PATTERNS.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from core.logging import get_trading_logger_safe
from core.trading.models import Direction, EntrySignal, ExitSignal, Signal
from core.utils.exceptions import ParseError

logger = get_trading_logger_safe("signal_parser")

DEFAULT_EXIT_REASON = "Pine Script Exit"


@dataclass(frozen=True)
class SignalPattern:
    """One accepted alert format and how to build a signal from its match."""

    name: str
    regex: "re.Pattern[str]"
    build: Callable[["re.Match[str]"], Signal]


def _trap_entry(direction: Direction) -> Callable[["re.Match[str]"], EntrySignal]:
    def build(m: "re.Match[str]") -> EntrySignal:
        return EntrySignal(
            action=direction.value,
            symbol=m.group("symbol").strip(),
            entry_price=float(m.group("entry")),
            stop_loss=float(m.group("sl")),
            target=float(m.group("target")),
        )
    return build


def _side_exit(m: "re.Match[str]") -> ExitSignal:
    side = m.group("side").lower()
    return ExitSignal(
        symbol=m.group("symbol").strip(),
        original_direction=Direction.BUY if side == "long" else Direction.SELL,
        exit_price=float(m.group("price")),
        exit_reason=(m.group("reason") or DEFAULT_EXIT_REASON).strip(),
    )


def _legacy_exit(m: "re.Match[str]") -> ExitSignal:
    direction = m.groupdict().get("direction")
    return ExitSignal(
        symbol=m.group("symbol").strip(),
        original_direction=Direction(direction.lower()) if direction else None,
        exit_price=float(m.group("price")),
        exit_reason=m.group("reason").strip(),
    )


def _legacy_entry(m: "re.Match[str]") -> EntrySignal:
    return EntrySignal(
        action=m.group("direction").lower(),
        symbol=m.group("symbol").strip(),
        entry_price=float(m.group("entry")),
        stop_loss=float(m.group("sl")),
        target=float(m.group("target")),
    )


def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


_TRAP_TAIL = (
    r" ?\| ?Entry at ?(?P<entry>\d+(?:\.\d+)?)"
    r" ?\| ?SL: ?(?P<sl>\d+(?:\.\d+)?)"
    r" ?\| ?Target: ?(?P<target>\d+(?:\.\d+)?)"
)

SIGNAL_PATTERNS: Tuple[SignalPattern, ...] = (
    SignalPattern(
        "bear_trap_entry",
        _compile(r"(?P<symbol>\S.*?) ?\| ?Bear Trap" + _TRAP_TAIL),
        _trap_entry(Direction.BUY),
    ),
    SignalPattern(
        "bull_trap_entry",
        _compile(r"(?P<symbol>\S.*?) ?\| ?Bull Trap" + _TRAP_TAIL),
        _trap_entry(Direction.SELL),
    ),
    SignalPattern(
        "long_exit",
        _compile(r"BB TRAP (?P<side>LONG) EXIT(?: \((?P<reason>[^)]+)\))? (?P<symbol>\S.*?) at (?P<price>\d+(?:\.\d+)?)"),
        _side_exit,
    ),
    SignalPattern(
        "short_exit",
        _compile(r"BB TRAP (?P<side>SHORT) EXIT(?: \((?P<reason>[^)]+)\))? (?P<symbol>\S.*?) at (?P<price>\d+(?:\.\d+)?)"),
        _side_exit,
    ),
    SignalPattern(
        "legacy_exit_with_direction",
        _compile(r"BB TRAP Exit (?P<direction>Buy|Sell) (?P<symbol>\S.*?) at (?P<price>\d+(?:\.\d+)?) ?\| ?(?P<reason>.+)"),
        _legacy_exit,
    ),
    SignalPattern(
        "legacy_exit",
        _compile(r"BB TRAP Exit (?P<symbol>\S.*?) at (?P<price>\d+(?:\.\d+)?) ?\| ?(?P<reason>.+)"),
        _legacy_exit,
    ),
    SignalPattern(
        "legacy_entry",
        _compile(
            r"BB TRAP (?P<direction>Buy|Sell) (?P<symbol>\S.*?) at (?P<entry>\d+(?:\.\d+)?)"
            r" ?\| ?SL: ?(?P<sl>\d+(?:\.\d+)?) ?\| ?Target: ?(?P<target>\d+(?:\.\d+)?)"
        ),
        _legacy_entry,
    ),
)


def normalize_alert_text(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return " ".join(text.split())


class SignalParser:
    """Stateless parser over SIGNAL_PATTERNS."""

    def __init__(self, patterns: Tuple[SignalPattern, ...] = SIGNAL_PATTERNS):
        self.patterns = patterns

    def match(self, text: str) -> Optional[Tuple[SignalPattern, Signal]]:
        """Return the first matching pattern together with its signal."""
        if not text:
            return None
        cleaned = normalize_alert_text(text)
        for pattern in self.patterns:
            m = pattern.regex.search(cleaned)
            if m:
                return pattern, pattern.build(m)
        return None

    def parse(self, text: str) -> Optional[Signal]:
        """Parse alert text, returning None when no format matches."""
        matched = self.match(text)
        if matched is None:
            logger.info("Alert text matched no signal format", text_length=len(text or ""))
            return None
        pattern, signal = matched
        logger.debug("Alert parsed", pattern=pattern.name, action=signal.action,
                     symbol=signal.symbol)
        return signal

    def parse_or_raise(self, text: str) -> Signal:
        signal = self.parse(text)
        if signal is None:
            raise ParseError("Unrecognized signal format", raw_text=text or "")
        return signal
