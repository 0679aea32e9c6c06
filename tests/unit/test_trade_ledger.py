import pytest

from core.trading.models import ExecutionResult, Leg, OptionType, OrderSide, TradeStatus
from core.utils.exceptions import PersistenceError
from services.trade_ledger import TradeLedger, find_in_fallback, replay_fallback_log
from tests.mocks.fakes import InMemoryFallbackStore, InMemoryTradeStore


def _legs():
    return [
        Leg(option_type=OptionType.CE, action=OrderSide.BUY, strike=51600, delta=0.51,
            limit_price=245.0, broker_instrument_id="CE51600"),
        Leg(option_type=OptionType.PE, action=OrderSide.SELL, strike=51600, delta=-0.49,
            limit_price=230.0, broker_instrument_id="PE51600"),
    ]


def _result(account_id="A1", success=True):
    return ExecutionResult(account_id=account_id, leg_ref="CE:BUY:51600", leg_index=0,
                           success=success, placed_quantity=35)


async def test_open_then_find_returns_same_trade(ledger, buy_signal):
    trade = await ledger.open_trade(buy_signal, _legs())
    assert trade.status is TradeStatus.ACTIVE
    assert trade.durable

    found = await ledger.find_open_trade("banknifty1!")
    assert found.id == trade.id
    assert found.normalized_symbol == "BANKNIFTY"


async def test_complete_closes_the_trade(ledger, buy_signal):
    trade = await ledger.open_trade(buy_signal, _legs())
    outcome = await ledger.complete_trade(trade.id)
    assert outcome.durable
    assert await ledger.find_open_trade("BANKNIFTY") is None
    assert (await ledger.get_trade(trade.id)).status is TradeStatus.COMPLETED


async def test_attach_results(ledger, buy_signal):
    trade = await ledger.open_trade(buy_signal, _legs())
    await ledger.attach_results(trade.id, [_result()])
    stored = await ledger.get_trade(trade.id)
    assert stored.executed_quantity("A1") == 35


def test_trade_requires_one_ce_and_one_pe(buy_signal):
    from core.trading.models import Trade
    legs = _legs()
    with pytest.raises(ValueError):
        Trade(symbol="BANKNIFTY", signal=buy_signal, legs=[legs[0], legs[0]])


async def test_primary_failure_writes_to_fallback(trade_store, fallback_store, buy_signal):
    trade_store.fail_writes = True
    ledger = TradeLedger(trade_store, fallback_store)

    trade = await ledger.open_trade(buy_signal, _legs())
    await ledger.attach_results(trade.id, [_result()])
    await ledger.complete_trade(trade.id)

    assert trade.durable
    assert [r["op"] for r in fallback_store.records] == ["open", "attach", "complete"]
    state = replay_fallback_log(fallback_store.records)[trade.id]
    assert state["status"] == "COMPLETED"
    assert state["execution_results"][0]["account_id"] == "A1"


async def test_both_stores_failing_returns_non_durable_trade(trade_store, fallback_store, buy_signal):
    trade_store.fail_writes = True
    fallback_store.fail = True
    ledger = TradeLedger(trade_store, fallback_store)

    trade = await ledger.open_trade(buy_signal, _legs())
    assert trade.status is TradeStatus.ACTIVE
    assert trade.durable is False
    assert "durable" not in trade.model_dump()

    outcome = await ledger.complete_trade(trade.id)
    assert outcome.durable is False
    assert outcome.store is None


async def test_update_of_unknown_trade_goes_to_fallback(ledger, fallback_store):
    outcome = await ledger.complete_trade("missing")
    assert outcome.store == fallback_store.name
    assert fallback_store.records == [{"op": "complete", "trade_id": "missing"}]


async def test_primary_read_failure_scans_fallback_by_default(trade_store, fallback_store, buy_signal):
    ledger = TradeLedger(trade_store, fallback_store)
    trade_store.fail_writes = True
    trade = await ledger.open_trade(buy_signal, _legs())

    trade_store.fail_reads = True
    assert (await ledger.find_open_trade("BANKNIFTY")).id == trade.id


async def test_open_trade_lookup_never_raises(trade_store, fallback_store):
    trade_store.fail_reads = True
    fallback_store.fail = True
    ledger = TradeLedger(trade_store, fallback_store)
    assert await ledger.find_open_trade("BANKNIFTY") is None
    assert await TradeLedger(trade_store).find_open_trade("BANKNIFTY") is None


async def test_trade_query_failure_raises_without_fallback_reads(trade_store, fallback_store):
    trade_store.fail_reads = True
    ledger = TradeLedger(trade_store, fallback_store)
    with pytest.raises(PersistenceError):
        await ledger.get_trade("missing")


async def test_fallback_reads_scan_the_log(trade_store, fallback_store, buy_signal):
    trade_store.fail_writes = True
    ledger = TradeLedger(trade_store, fallback_store, fallback_reads_enabled=True)
    trade = await ledger.open_trade(buy_signal, _legs())

    trade_store.fail_reads = True
    found = await ledger.find_open_trade("BANKNIFTY1!")
    assert found.id == trade.id
    assert (await ledger.get_trade(trade.id)).id == trade.id

    await ledger.complete_trade(trade.id)
    assert await ledger.find_open_trade("BANKNIFTY") is None


def test_find_in_fallback_picks_newest_active(buy_signal):
    older = {"op": "open", "trade_id": "t1", "trade": {
        "id": "t1", "symbol": "BANKNIFTY", "signal": buy_signal.model_dump(mode="json"),
        "legs": [leg.model_dump(mode="json") for leg in _legs()], "status": "ACTIVE",
        "created_at": "2026-10-19T09:15:00+00:00", "updated_at": "2026-10-19T09:15:00+00:00"}}
    newer = {"op": "open", "trade_id": "t2", "trade": dict(older["trade"], id="t2",
                                                           created_at="2026-10-19T10:15:00+00:00")}
    assert find_in_fallback([older, newer], "banknifty").id == "t2"
    assert find_in_fallback([older, newer], "NIFTY") is None
