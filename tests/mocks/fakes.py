"""
In-memory collaborators for exercising the signal engine without brokers,
market data, PostgreSQL, Redis or Telegram.
"""

import asyncio
import math
import time
from typing import Dict, List, Optional, Sequence, Tuple

from core.trading.interfaces import FallbackTradeStore, TradeStore
from core.trading.models import (
    BrokerOrderAck,
    ExecutionResult,
    Leg,
    LegOrder,
    OptionChain,
    OptionQuote,
    Signal,
    SizingConfig,
    StrikeQuotes,
    SubscribedAccount,
    Trade,
    TradeStatus,
)
from core.utils.exceptions import BrokerExecutionError
from services.notifications import NotificationOutcome, NotificationSink


class InMemoryTradeStore(TradeStore):
    name = "memory"

    def __init__(self):
        self.trades: Dict[str, Trade] = {}
        self.fail_writes = False
        self.fail_reads = False

    def _check_write(self):
        if self.fail_writes:
            raise ConnectionError("primary store unavailable")

    def _check_read(self):
        if self.fail_reads:
            raise ConnectionError("primary store unavailable")

    async def insert(self, trade: Trade) -> None:
        self._check_write()
        self.trades[trade.id] = trade.model_copy(deep=True)

    async def find_latest(self, normalized_symbol: str, status: TradeStatus) -> Optional[Trade]:
        self._check_read()
        matches = [t for t in self.trades.values()
                   if t.normalized_symbol == normalized_symbol and t.status == status]
        if not matches:
            return None
        return max(matches, key=lambda t: t.created_at).model_copy(deep=True)

    async def get(self, trade_id: str) -> Optional[Trade]:
        self._check_read()
        trade = self.trades.get(trade_id)
        return trade.model_copy(deep=True) if trade else None

    async def update_status(self, trade_id: str, status: TradeStatus) -> bool:
        self._check_write()
        if trade_id not in self.trades:
            return False
        self.trades[trade_id] = self.trades[trade_id].model_copy(update={"status": status})
        return True

    async def update_results(self, trade_id: str, results: List[ExecutionResult]) -> bool:
        self._check_write()
        if trade_id not in self.trades:
            return False
        self.trades[trade_id] = self.trades[trade_id].model_copy(
            update={"execution_results": list(results)}
        )
        return True


class InMemoryFallbackStore(FallbackTradeStore):
    name = "memory_fallback"

    def __init__(self):
        self.records: List[dict] = []
        self.fail = False

    async def append(self, record: dict) -> None:
        if self.fail:
            raise ConnectionError("fallback store unavailable")
        self.records.append(record)

    async def scan(self) -> List[dict]:
        if self.fail:
            raise ConnectionError("fallback store unavailable")
        return list(self.records)


def make_chain(symbol: str = "BANKNIFTY", expiry: str = "2026-10-29",
               ce: Optional[Dict[float, Optional[float]]] = None,
               pe: Optional[Dict[float, Optional[float]]] = None,
               price: float = 100.0, underlying_price: Optional[float] = 51600.0) -> OptionChain:
    """Chain from per-side {strike: delta} maps. A None delta leaves the side without greeks."""
    ce = ce or {}
    pe = pe or {}
    strikes: Dict[float, StrikeQuotes] = {}
    for strike in sorted(set(ce) | set(pe)):
        strikes[float(strike)] = StrikeQuotes(
            ce=OptionQuote(delta=ce[strike], ask_price=price, last_price=price - 1,
                           security_id=f"CE{strike:g}") if strike in ce else None,
            pe=OptionQuote(delta=pe[strike], ask_price=price, last_price=price - 1,
                           security_id=f"PE{strike:g}") if strike in pe else None,
        )
    return OptionChain(symbol=symbol, expiry=expiry, underlying_price=underlying_price, strikes=strikes)


def default_chain(symbol: str = "BANKNIFTY", price: float = 100.0) -> OptionChain:
    return make_chain(
        symbol=symbol,
        ce={51500: 0.62, 51600: 0.51, 51700: 0.40},
        pe={51500: -0.38, 51600: -0.49, 51700: -0.60},
        price=price,
    )


class FakeMarketData:
    def __init__(self, chain: Optional[OptionChain] = None, expiries: Sequence[str] = ("2026-10-29", "2026-11-05")):
        self.chain = chain or default_chain()
        self.expiries = list(expiries)
        self.fail = False
        self.chain_requests: List[Tuple[str, str]] = []

    async def list_expiries(self, symbol: str) -> List[str]:
        if self.fail:
            raise ConnectionError("market data unavailable")
        return list(self.expiries)

    async def fetch_option_chain(self, symbol: str, expiry: str) -> OptionChain:
        if self.fail:
            raise ConnectionError("market data unavailable")
        self.chain_requests.append((symbol, expiry))
        return self.chain


class FakeBrokerClient:
    """Deterministic broker: attempt i fails when floor((i + 1) * rate) > floor(i * rate)."""

    broker_name = "fake"

    def __init__(self, failure_rate: float = 0.0, latency: float = 0.0):
        self.failure_rate = failure_rate
        self.latency = latency
        self.placed: List[Tuple[str, LegOrder, float]] = []
        self.attempts = 0

    def _should_fail(self, attempt: int) -> bool:
        return math.floor((attempt + 1) * self.failure_rate) > math.floor(attempt * self.failure_rate)

    async def place_leg(self, account: SubscribedAccount, order: LegOrder) -> BrokerOrderAck:
        attempt = self.attempts
        self.attempts += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self._should_fail(attempt):
            raise BrokerExecutionError("Simulated rejection", broker=self.broker_name,
                                       account_id=account.account_id,
                                       api_response={"status": "REJECTED"})
        self.placed.append((account.account_id, order, time.monotonic()))
        return BrokerOrderAck(order_id=f"ORD{attempt}", raw={"attempt": attempt})

    def tags(self) -> List[str]:
        return [order.tag for _, order, _ in self.placed]


def make_account(account_id: str, lots: Optional[int] = 1, broker: str = "fake",
                 token: str = "token") -> SubscribedAccount:
    return SubscribedAccount(
        account_id=account_id,
        display_name=f"Account {account_id}",
        broker=broker,
        sizing=SizingConfig(lot_multiplier=lots),
        credentials_ref=token,
    )


class FakeSubscriptions:
    def __init__(self, accounts: Sequence[SubscribedAccount]):
        self.accounts = list(accounts)
        self.fail = False

    async def get_subscribed_accounts(self, strategy: str) -> List[SubscribedAccount]:
        if self.fail:
            raise ConnectionError("subscriptions unavailable")
        return list(self.accounts)


class RecordingNotifier(NotificationSink):
    def __init__(self):
        self.calls: List[Tuple[str, Signal, List[Leg], List[ExecutionResult]]] = []

    async def notify(self, title, signal, legs, results) -> NotificationOutcome:
        self.calls.append((title, signal, list(legs), list(results)))
        return NotificationOutcome(sent=True, message_id=len(self.calls))

    def titles(self) -> List[str]:
        return [title for title, _, _, _ in self.calls]
