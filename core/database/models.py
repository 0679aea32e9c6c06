# Database models for trades and strategy subscriptions
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .connection import Base


class TradeRecord(Base):
    """One opened two-legged position and its execution history"""
    __tablename__ = "trades"

    id = Column(String, primary_key=True, index=True)
    symbol = Column(String, nullable=False)
    normalized_symbol = Column(String, nullable=False)
    direction = Column(String, nullable=False)  # "buy" or "sell"
    status = Column(String, nullable=False, default="ACTIVE")

    signal = Column(JSONB, nullable=False)
    legs = Column(JSONB, nullable=False)
    execution_results = Column(JSONB, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_trades_symbol_status_created', 'normalized_symbol', 'status', 'created_at'),
    )


class BrokerAccount(Base):
    """Brokerage account credentials reference and token validity"""
    __tablename__ = "broker_accounts"

    id = Column(String, primary_key=True, index=True)
    display_name = Column(String, nullable=False)
    broker = Column(String, nullable=False)  # e.g. "iifl", "paper"
    credentials_ref = Column(String, nullable=True)  # access token or secret-store key
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class StrategySubscription(Base):
    """Account opt-in to a strategy with per-account sizing"""
    __tablename__ = "strategy_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    strategy_name = Column(String, nullable=False, index=True)
    account_id = Column(String, ForeignKey("broker_accounts.id", ondelete="CASCADE"), nullable=False)
    lot_multiplier = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('strategy_name', 'account_id', name='uq_strategy_subscription_account'),
        Index('idx_strategy_subscriptions_active', 'strategy_name', 'is_active'),
    )
