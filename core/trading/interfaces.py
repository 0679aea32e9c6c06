from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Protocol, runtime_checkable

from core.trading.models import (
    BrokerOrderAck,
    LegOrder,
    OptionChain,
    SubscribedAccount,
    Trade,
    TradeStatus,
    ExecutionResult,
)


@runtime_checkable
class BrokerOrderClient(Protocol):
    """Order placement capability for one broker.

    Per-broker request and credential shapes stay behind this surface;
    the engine never branches on broker type. Implementations raise
    BrokerExecutionError for any failed placement.
    """

    broker_name: str

    async def place_leg(self, account: SubscribedAccount, order: LegOrder) -> BrokerOrderAck:
        ...


@runtime_checkable
class MarketDataClient(Protocol):
    """Option-chain reads consumed by the strategy."""

    async def list_expiries(self, symbol: str) -> List[str]:
        ...

    async def fetch_option_chain(self, symbol: str, expiry: str) -> OptionChain:
        ...


@runtime_checkable
class SubscriptionProvider(Protocol):
    async def get_subscribed_accounts(self, strategy: str) -> List[SubscribedAccount]:
        ...


class TradeStore(ABC):
    """Primary trade persistence with exact (normalized symbol, status) lookup."""

    name: str = "primary"

    @abstractmethod
    async def insert(self, trade: Trade) -> None:
        ...

    @abstractmethod
    async def find_latest(self, normalized_symbol: str, status: TradeStatus) -> Optional[Trade]:
        ...

    @abstractmethod
    async def get(self, trade_id: str) -> Optional[Trade]:
        ...

    @abstractmethod
    async def update_status(self, trade_id: str, status: TradeStatus) -> bool:
        ...

    @abstractmethod
    async def update_results(self, trade_id: str, results: List[ExecutionResult]) -> bool:
        ...


class FallbackTradeStore(ABC):
    """Degraded append-only store used when the primary store cannot be written."""

    name: str = "fallback"

    @abstractmethod
    async def append(self, record: dict) -> None:
        ...

    @abstractmethod
    async def scan(self) -> List[dict]:
        ...
