"""Alert text parsing into entry and exit signals."""

from .parser import SignalParser, SignalPattern, SIGNAL_PATTERNS, DEFAULT_EXIT_REASON, normalize_alert_text

__all__ = [
    "SignalParser",
    "SignalPattern",
    "SIGNAL_PATTERNS",
    "DEFAULT_EXIT_REASON",
    "normalize_alert_text",
]
