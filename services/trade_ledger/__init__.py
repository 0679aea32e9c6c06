"""Trade lifecycle persistence with a degraded fallback store."""

from .ledger import TradeLedger, WriteOutcome
from .stores import SqlTradeStore, RedisFallbackTradeStore, replay_fallback_log, find_in_fallback

__all__ = [
    "TradeLedger",
    "WriteOutcome",
    "SqlTradeStore",
    "RedisFallbackTradeStore",
    "replay_fallback_log",
    "find_in_fallback",
]
