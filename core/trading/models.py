# Domain models for signals, option legs, trades and execution results

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.trading.symbols import normalize_symbol
from core.utils.ids import generate_trade_id


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "Direction":
        return Direction.SELL if self is Direction.BUY else Direction.BUY


class OptionType(str, Enum):
    CE = "CE"
    PE = "PE"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def reverse(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    LIMIT = "LIMIT"
    SL = "SL"


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# --- Signals ---

class EntrySignal(BaseModel):
    """Open a two-legged position in `direction`."""
    model_config = ConfigDict(frozen=True)

    action: Literal["buy", "sell"]
    symbol: str
    entry_price: float
    stop_loss: float
    target: float

    @property
    def direction(self) -> Direction:
        return Direction(self.action)

    @property
    def normalized_symbol(self) -> str:
        return normalize_symbol(self.symbol)

    def to_alert_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "symbol": self.symbol,
            "entryPrice": self.entry_price,
            "stopLoss": self.stop_loss,
            "target": self.target,
        }


class ExitSignal(BaseModel):
    """Close the open position for `symbol`."""
    model_config = ConfigDict(frozen=True)

    action: Literal["exit"] = "exit"
    symbol: str
    original_direction: Optional[Direction] = None
    exit_price: float
    exit_reason: str

    @property
    def normalized_symbol(self) -> str:
        return normalize_symbol(self.symbol)

    def to_alert_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "action": "exit",
            "symbol": self.symbol,
            "exitPrice": self.exit_price,
            "exitType": self.exit_reason,
        }
        if self.original_direction is not None:
            data["originalDirection"] = self.original_direction.value
        return data


Signal = Union[EntrySignal, ExitSignal]


# --- Legs and orders ---

class Leg(BaseModel):
    """One side (call or put) of the two-legged option position."""
    model_config = ConfigDict(frozen=True)

    option_type: OptionType
    action: OrderSide
    strike: float
    delta: float
    limit_price: float
    broker_instrument_id: str

    @property
    def ref(self) -> str:
        return f"{self.option_type.value}:{self.action.value}:{self.strike:g}"

    def reversed(self, price: Optional[float] = None) -> "Leg":
        """Square-off leg: same instrument, opposite side, optionally repriced."""
        return self.model_copy(update={
            "action": self.action.reverse,
            "limit_price": self.limit_price if price is None else price,
        })


class LegOrder(BaseModel):
    """Broker-neutral order for one leg and one account."""
    instrument_id: str
    exchange: str
    side: OrderSide
    quantity: int = Field(gt=0)
    order_type: OrderType = OrderType.LIMIT
    limit_price: float
    trigger_price: Optional[float] = None
    tag: str


class BrokerOrderAck(BaseModel):
    order_id: Optional[str] = None
    exchange_order_id: Optional[str] = None
    raw: Any = None


class ExecutionResult(BaseModel):
    """Outcome of one (leg, account) placement attempt."""
    account_id: str
    display_name: Optional[str] = None
    leg_ref: str
    leg_index: int
    success: bool
    placed_quantity: Optional[int] = None
    placed_price: Optional[float] = None
    broker_order_id: Optional[str] = None
    broker_response: Any = None
    error: Optional[str] = None
    attempted_at: datetime = Field(default_factory=utc_now)


# --- Accounts ---

class SizingConfig(BaseModel):
    lot_multiplier: Optional[int] = Field(default=None, ge=0)


class SubscribedAccount(BaseModel):
    """Brokerage account subscribed to the strategy. Read-only to the engine."""
    model_config = ConfigDict(frozen=True)

    account_id: str
    display_name: str
    broker: str
    sizing: SizingConfig = SizingConfig()
    credentials_ref: str = Field(default="", repr=False)
    token_expires_at: Optional[datetime] = None

    def token_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.credentials_ref:
            return False
        if self.token_expires_at is None:
            return True
        expires = self.token_expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires > (now or utc_now())


# --- Trade aggregate ---

class Trade(BaseModel):
    id: str = Field(default_factory=generate_trade_id)
    symbol: str
    normalized_symbol: str = ""
    signal: EntrySignal
    legs: List[Leg]
    execution_results: List[ExecutionResult] = Field(default_factory=list)
    status: TradeStatus = TradeStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    # False when neither store accepted the write
    durable: bool = Field(default=True, exclude=True)

    @field_validator("legs")
    @classmethod
    def validate_legs(cls, v: List[Leg]) -> List[Leg]:
        if len(v) != 2 or {leg.option_type for leg in v} != {OptionType.CE, OptionType.PE}:
            raise ValueError("A trade needs exactly one CE leg and one PE leg")
        return v

    def model_post_init(self, __context: Any) -> None:
        if not self.normalized_symbol:
            self.normalized_symbol = normalize_symbol(self.symbol)

    @property
    def direction(self) -> Direction:
        return self.signal.direction

    def executed_quantity(self, account_id: str) -> Optional[int]:
        """Quantity actually placed for `account_id` in this trade's results."""
        for result in self.execution_results:
            if result.account_id == account_id and result.success and result.placed_quantity:
                return result.placed_quantity
        return None


# --- Option chain snapshot ---

class OptionQuote(BaseModel):
    delta: Optional[float] = None
    ask_price: Optional[float] = None
    last_price: Optional[float] = None
    security_id: Optional[str] = None

    @property
    def best_price(self) -> Optional[float]:
        return self.ask_price or self.last_price


class StrikeQuotes(BaseModel):
    ce: Optional[OptionQuote] = None
    pe: Optional[OptionQuote] = None

    def side(self, option_type: OptionType) -> Optional[OptionQuote]:
        return self.ce if option_type is OptionType.CE else self.pe


class OptionChain(BaseModel):
    symbol: str
    expiry: Optional[str] = None
    underlying_price: Optional[float] = None
    strikes: Dict[float, StrikeQuotes] = Field(default_factory=dict)
