"""
Trade ledger: lifecycle of the logical trade per symbol.

Writes go to the primary store; when that fails the operation is appended to
the fallback log instead. If both fail the trade is still returned to the
caller, flagged as not durable. The open-trade lookup that drives signal
processing scans the fallback log when the primary is unreachable; trade
queries by id do so only when fallback reads are explicitly enabled.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.logging import get_database_logger_safe, get_error_logger_safe
from core.trading.interfaces import FallbackTradeStore, TradeStore
from core.trading.models import EntrySignal, ExecutionResult, Leg, Trade, TradeStatus
from core.trading.symbols import normalize_symbol
from core.utils.exceptions import PersistenceError, create_error_context
from .stores import find_in_fallback, replay_fallback_log


@dataclass(frozen=True)
class WriteOutcome:
    store: Optional[str]
    durable: bool


class TradeLedger:

    def __init__(self, primary: TradeStore, fallback: Optional[FallbackTradeStore] = None,
                 fallback_reads_enabled: bool = False):
        self.primary = primary
        self.fallback = fallback
        self.fallback_reads_enabled = fallback_reads_enabled
        self.logger = get_database_logger_safe("trade_ledger")
        self.error_logger = get_error_logger_safe("trade_ledger")

    async def _write(self, operation: str, trade_id: str,
                     primary_call: Callable[[], Awaitable[Any]],
                     fallback_record: Dict[str, Any]) -> WriteOutcome:
        try:
            written = await primary_call()
            if written is not False:
                return WriteOutcome(store=self.primary.name, durable=True)
            self.logger.warning("Trade not found in primary store", operation=operation,
                                trade_id=trade_id)
        except Exception as e:
            error = PersistenceError(f"Primary store {operation} failed: {e}",
                                     operation=operation, store=self.primary.name)
            self.error_logger.error("Primary trade store write failed",
                                    **create_error_context(error, operation, {"trade_id": trade_id}))

        if self.fallback is None:
            self.error_logger.error("Trade write not durable", operation=operation, trade_id=trade_id)
            return WriteOutcome(store=None, durable=False)

        try:
            await self.fallback.append({"op": operation, "trade_id": trade_id, **fallback_record})
            self.logger.warning("Trade write recorded in fallback store", operation=operation,
                                trade_id=trade_id, store=self.fallback.name)
            return WriteOutcome(store=self.fallback.name, durable=True)
        except Exception as e:
            error = PersistenceError(f"Fallback store {operation} failed: {e}",
                                     operation=operation, store=self.fallback.name)
            self.error_logger.error("Trade write not durable",
                                    **create_error_context(error, operation, {"trade_id": trade_id}))
            return WriteOutcome(store=None, durable=False)

    async def open_trade(self, signal: EntrySignal, legs: List[Leg]) -> Trade:
        """Record a new ACTIVE trade. Never raises on storage failure."""
        trade = Trade(symbol=signal.symbol, signal=signal, legs=legs, status=TradeStatus.ACTIVE)
        outcome = await self._write(
            "open", trade.id,
            lambda: self.primary.insert(trade),
            {"trade": trade.model_dump(mode="json")},
        )
        trade.durable = outcome.durable
        self.logger.info("Trade opened", trade_id=trade.id, symbol=trade.normalized_symbol,
                         direction=trade.direction.value, store=outcome.store,
                         durable=outcome.durable)
        return trade

    async def attach_results(self, trade_id: str, results: List[ExecutionResult]) -> WriteOutcome:
        return await self._write(
            "attach", trade_id,
            lambda: self.primary.update_results(trade_id, results),
            {"results": [r.model_dump(mode="json") for r in results]},
        )

    async def complete_trade(self, trade_id: str) -> WriteOutcome:
        outcome = await self._write(
            "complete", trade_id,
            lambda: self.primary.update_status(trade_id, TradeStatus.COMPLETED),
            {},
        )
        self.logger.info("Trade completed", trade_id=trade_id, store=outcome.store,
                         durable=outcome.durable)
        return outcome

    async def find_open_trade(self, symbol: str) -> Optional[Trade]:
        """Most recent ACTIVE trade for the normalized symbol.

        Never raises. When the primary store is unreachable the fallback log is
        scanned; if that fails too the symbol is treated as having no open trade.
        """
        normalized = normalize_symbol(symbol)
        try:
            return await self.primary.find_latest(normalized, TradeStatus.ACTIVE)
        except Exception as e:
            error = PersistenceError(f"Open trade lookup failed: {e}",
                                     operation="find_open_trade", store=self.primary.name)
            self.error_logger.error("Primary trade store read failed",
                                    **create_error_context(error, "find_open_trade", {"symbol": normalized}))

        if self.fallback is None:
            return None
        try:
            return find_in_fallback(await self.fallback.scan(), normalized)
        except Exception as e:
            self.error_logger.error("Fallback trade store read failed, assuming no open trade",
                                    symbol=normalized, store=self.fallback.name, error=str(e))
            return None

    async def get_trade(self, trade_id: str) -> Optional[Trade]:
        try:
            return await self.primary.get(trade_id)
        except Exception as e:
            if self.fallback is None or not self.fallback_reads_enabled:
                raise PersistenceError(f"Trade lookup failed: {e}",
                                       operation="get_trade", store=self.primary.name) from e
            state = replay_fallback_log(await self.fallback.scan()).get(trade_id)
            return Trade(**state) if state else None
