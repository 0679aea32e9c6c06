import asyncio

import pytest

from core.config.settings import StopLossSettings
from core.trading.models import ExecutionResult, Leg, OptionType, OrderSide, OrderType
from core.utils.exceptions import BrokerExecutionError
from services.broker_fanout import BrokerFanoutExecutor, BrokerRegistry, build_stop_loss_order, stop_loss_prices
from services.broker_fanout.adapters import PaperOrderClient
from tests.mocks.fakes import FakeBrokerClient, make_account


def _legs():
    return [
        Leg(option_type=OptionType.CE, action=OrderSide.BUY, strike=51600, delta=0.51,
            limit_price=345.33, broker_instrument_id="CE51600"),
        Leg(option_type=OptionType.PE, action=OrderSide.SELL, strike=51600, delta=-0.49,
            limit_price=230.0, broker_instrument_id="PE51600"),
    ]


def _accounts(n):
    return [make_account(f"A{i}") for i in range(n)]


@pytest.mark.parametrize("failure_rate", [0.0, 0.5, 1.0])
@pytest.mark.parametrize("n_accounts", [1, 3, 4])
async def test_result_count_is_legs_times_accounts(failure_rate, n_accounts):
    broker = FakeBrokerClient(failure_rate=failure_rate)
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0)
    accounts = _accounts(n_accounts)
    quantities = {a.account_id: 35 for a in accounts}

    results = await executor.execute(_legs(), accounts, quantities)

    assert len(results) == 2 * n_accounts
    failed = [r for r in results if not r.success]
    assert len(failed) == int(2 * n_accounts * failure_rate)
    assert all(r.error for r in failed)


async def test_results_are_leg_major_in_account_order():
    broker = FakeBrokerClient()
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0)
    accounts = _accounts(3)
    results = await executor.execute(_legs(), accounts, {a.account_id: 35 for a in accounts})

    assert [(r.leg_index, r.account_id) for r in results] == [
        (0, "A0"), (0, "A1"), (0, "A2"),
        (1, "A0"), (1, "A1"), (1, "A2"),
    ]
    assert results[0].leg_ref == "CE:BUY:51600"
    assert results[3].leg_ref == "PE:SELL:51600"


async def test_failures_are_isolated_per_attempt():
    broker = FakeBrokerClient(failure_rate=0.5)
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0)
    accounts = _accounts(2)
    await executor.execute(_legs(), accounts, {a.account_id: 35 for a in accounts})
    assert broker.attempts == 4


async def test_order_is_built_from_leg_and_quantity():
    broker = FakeBrokerClient()
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), exchange="NSEFO", inter_request_delay=0.0)
    results = await executor.execute(_legs(), [make_account("A1")], {"A1": 70}, tag_prefix="BBTrap")

    _, order, _ = broker.placed[0]
    assert order.instrument_id == "CE51600"
    assert order.side is OrderSide.BUY
    assert order.quantity == 70
    assert order.exchange == "NSEFO"
    # 345.33 rounds to the 0.05 tick
    assert order.limit_price == 345.35
    assert order.tag.startswith("BBTrap_CE_51600_")
    assert results[0].placed_price == 345.35
    assert results[0].broker_order_id == "ORD0"


async def test_missing_quantity_is_a_failed_result():
    broker = FakeBrokerClient()
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0)
    results = await executor.execute(_legs(), [make_account("A1", lots=None)], {})
    assert len(results) == 2
    assert not any(r.success for r in results)
    assert broker.attempts == 0


async def test_unknown_broker_is_a_failed_result():
    executor = BrokerFanoutExecutor(BrokerRegistry([FakeBrokerClient()]), inter_request_delay=0.0)
    results = await executor.execute(_legs(), [make_account("A1", broker="zerodha")], {"A1": 35})
    assert [r.success for r in results] == [False, False]
    assert "zerodha" in results[0].error


async def test_timeout_is_a_failed_result():
    broker = FakeBrokerClient(latency=0.2)
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0, attempt_timeout=0.01)
    results = await executor.execute(_legs(), [make_account("A1")], {"A1": 35})
    assert [r.success for r in results] == [False, False]
    assert results[0].error.startswith("Timed out")


async def test_unexpected_exception_is_a_failed_result():
    class ExplodingBroker(FakeBrokerClient):
        async def place_leg(self, account, order):
            raise RuntimeError("socket closed")

    executor = BrokerFanoutExecutor(BrokerRegistry([ExplodingBroker()]), inter_request_delay=0.0)
    results = await executor.execute(_legs(), [make_account("A1")], {"A1": 35})
    assert results[0].error == "socket closed"


@pytest.mark.parametrize("parallel", [False, True])
async def test_same_account_attempts_are_spaced(parallel):
    broker = FakeBrokerClient()
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.05,
                                    parallel_accounts=parallel)
    accounts = _accounts(2)
    await executor.execute(_legs(), accounts, {a.account_id: 35 for a in accounts})

    for account in accounts:
        placed = [(order, at) for account_id, order, at in broker.placed if account_id == account.account_id]
        assert [order.instrument_id for order, _ in placed] == ["CE51600", "PE51600"]
        assert placed[1][1] - placed[0][1] >= 0.04


async def test_parallel_accounts_overlap():
    broker = FakeBrokerClient(latency=0.05)
    executor = BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0,
                                    parallel_accounts=True)
    accounts = _accounts(4)
    loop = asyncio.get_running_loop()
    started = loop.time()
    results = await executor.execute(_legs(), accounts, {a.account_id: 35 for a in accounts})
    assert len(results) == 8
    # Sequential would take 8 x latency
    assert loop.time() - started < 0.35


async def test_paper_client_acknowledges_every_order():
    paper = PaperOrderClient()
    executor = BrokerFanoutExecutor(BrokerRegistry([paper]), inter_request_delay=0.0)
    results = await executor.execute(_legs(), [make_account("P1", broker="paper")], {"P1": 75})
    assert all(r.success for r in results)
    assert len(paper.placed) == 2
    assert results[0].broker_order_id.startswith("paper_P1_")


def test_registry_lookup_is_case_insensitive():
    broker = FakeBrokerClient()
    registry = BrokerRegistry([broker])
    assert registry.get("FAKE") is broker
    assert registry.brokers == ["fake"]
    with pytest.raises(BrokerExecutionError):
        registry.get("iifl")


def test_stop_loss_prices_for_long_and_short_legs():
    settings = StopLossSettings(trigger_percent=30.0, limit_buffer_percent=0.25)
    trigger, limit = stop_loss_prices(200.0, OrderSide.BUY, settings)
    assert trigger == 140.0
    assert limit == 139.65
    trigger, limit = stop_loss_prices(200.0, OrderSide.SELL, settings)
    assert trigger == 260.0
    assert limit == 260.65


def test_stop_loss_order_reverses_the_entry_leg():
    leg = _legs()[0]
    result = ExecutionResult(account_id="A1", leg_ref=leg.ref, leg_index=0, success=True,
                             placed_quantity=35, placed_price=200.0)
    order = build_stop_loss_order(leg, result, "NSEFO", StopLossSettings())
    assert order.side is OrderSide.SELL
    assert order.order_type is OrderType.SL
    assert order.quantity == 35
    assert order.trigger_price < 200.0
    assert order.limit_price < order.trigger_price
    assert order.tag.startswith("BBTrapSL_CE_51600_")
