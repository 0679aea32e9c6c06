import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from sqlalchemy import select, update

from core.database.connection import DatabaseManager
from core.database.models import TradeRecord
from core.logging import get_database_logger_safe
from core.trading.interfaces import FallbackTradeStore, TradeStore
from core.trading.models import EntrySignal, ExecutionResult, Leg, Trade, TradeStatus
from core.trading.symbols import normalize_symbol


def _record_to_trade(record: TradeRecord) -> Trade:
    return Trade(
        id=record.id,
        symbol=record.symbol,
        normalized_symbol=record.normalized_symbol,
        signal=EntrySignal(**record.signal),
        legs=[Leg(**leg) for leg in record.legs],
        execution_results=[ExecutionResult(**r) for r in (record.execution_results or [])],
        status=TradeStatus(record.status),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SqlTradeStore(TradeStore):
    """Trades in PostgreSQL, looked up by (normalized symbol, status)."""

    name = "postgres"

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_database_logger_safe("trade_store")

    async def insert(self, trade: Trade) -> None:
        async with self.db_manager.get_session() as session:
            session.add(TradeRecord(
                id=trade.id,
                symbol=trade.symbol,
                normalized_symbol=trade.normalized_symbol,
                direction=trade.direction.value,
                status=trade.status.value,
                signal=trade.signal.model_dump(mode="json"),
                legs=[leg.model_dump(mode="json") for leg in trade.legs],
                execution_results=[r.model_dump(mode="json") for r in trade.execution_results],
                created_at=trade.created_at,
                updated_at=trade.updated_at,
            ))
            await session.commit()
        self.logger.debug("Trade inserted", trade_id=trade.id, symbol=trade.normalized_symbol)

    async def find_latest(self, normalized_symbol: str, status: TradeStatus) -> Optional[Trade]:
        async with self.db_manager.get_session() as session:
            stmt = (
                select(TradeRecord)
                .where(TradeRecord.normalized_symbol == normalized_symbol,
                       TradeRecord.status == status.value)
                .order_by(TradeRecord.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
            return _record_to_trade(record) if record else None

    async def get(self, trade_id: str) -> Optional[Trade]:
        async with self.db_manager.get_session() as session:
            record = await session.get(TradeRecord, trade_id)
            return _record_to_trade(record) if record else None

    async def _update(self, trade_id: str, **values: Any) -> bool:
        async with self.db_manager.get_session() as session:
            stmt = (
                update(TradeRecord)
                .where(TradeRecord.id == trade_id)
                .values(updated_at=datetime.now(timezone.utc), **values)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def update_status(self, trade_id: str, status: TradeStatus) -> bool:
        return await self._update(trade_id, status=status.value)

    async def update_results(self, trade_id: str, results: List[ExecutionResult]) -> bool:
        return await self._update(
            trade_id,
            execution_results=[r.model_dump(mode="json") for r in results],
        )


class RedisFallbackTradeStore(FallbackTradeStore):
    """
    Append-only log of trade operations in a Redis list.

    Each entry is a JSON object with an ``op`` of ``open``, ``attach`` or
    ``complete``. There is no index: reading state back means replaying the
    whole list.
    """

    name = "redis_fallback"

    def __init__(self, redis_client: redis.Redis, key: str):
        self.redis_client = redis_client
        self.key = key

    async def append(self, record: dict) -> None:
        await self.redis_client.rpush(self.key, json.dumps(record, default=str))

    async def scan(self) -> List[dict]:
        raw = await self.redis_client.lrange(self.key, 0, -1)
        records = []
        for item in raw:
            if isinstance(item, bytes):
                item = item.decode("utf-8")
            records.append(json.loads(item))
        return records


def replay_fallback_log(records: List[dict]) -> Dict[str, Dict[str, Any]]:
    """Fold an operation log into the latest known state per trade id."""
    trades: Dict[str, Dict[str, Any]] = {}
    for record in records:
        op = record.get("op")
        trade_id = record.get("trade_id")
        if not trade_id:
            continue
        if op == "open" and record.get("trade"):
            trades[trade_id] = dict(record["trade"])
        elif trade_id in trades:
            if op == "attach":
                trades[trade_id]["execution_results"] = record.get("results", [])
            elif op == "complete":
                trades[trade_id]["status"] = TradeStatus.COMPLETED.value
    return trades


def find_in_fallback(records: List[dict], symbol: str,
                     status: TradeStatus = TradeStatus.ACTIVE) -> Optional[Trade]:
    """Best-effort lookup of the newest trade for a symbol in the fallback log."""
    wanted = normalize_symbol(symbol)
    matches = [
        state for state in replay_fallback_log(records).values()
        if state.get("status") == status.value
        and normalize_symbol(str(state.get("symbol") or state.get("signal", {}).get("symbol", ""))) == wanted
    ]
    if not matches:
        return None
    latest = max(matches, key=lambda state: str(state.get("created_at", "")))
    return Trade(**latest)
