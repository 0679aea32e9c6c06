import asyncio

import pytest

from core.trading.symbols import calculate_quantity, get_lot_size, normalize_symbol
from core.utils.ids import generate_order_tag, generate_trade_id
from core.utils.rate_limiter import RateLimiter
from core.utils.scheduler import DeferredActionScheduler
from core.utils.tick_size import round_to_tick


@pytest.mark.parametrize("price, expected", [
    (123.456, 123.46),
    (345.33, 345.35),
    (2500.07, 2500.1),
    (9999.74, 9999.5),
    (15000.6, 15001.0),
    (25012.3, 25010.0),
])
def test_round_to_tick(price, expected):
    assert round_to_tick(price) == expected


def test_symbol_normalization_and_lot_sizes():
    assert normalize_symbol(" nifty1! ") == "NIFTY"
    assert get_lot_size("BANKNIFTY1!") == 35
    assert get_lot_size("NIFTY", {"nifty": 50}) == 50
    assert get_lot_size("UNKNOWN") == 1
    assert calculate_quantity("NIFTY", 2) == 150
    assert calculate_quantity("NIFTY", None) is None
    assert calculate_quantity("NIFTY", 0) is None


def test_ids():
    trade_id = generate_trade_id()
    assert trade_id != generate_trade_id()
    assert "--" not in trade_id
    prefix, _, suffix = trade_id.partition("-")
    assert len(prefix) == 13
    assert len(suffix) == 22
    assert generate_order_tag("SquareOff", "PE", 25000.0).startswith("SquareOff_PE_25000_")


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


async def test_rate_limiter_spaces_requests():
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)

    assert await limiter.wait() == 0.0
    clock.now += 0.25
    assert await limiter.wait() == pytest.approx(0.75)
    clock.now += 5
    assert await limiter.wait() == 0.0
    assert clock.sleeps == [pytest.approx(0.75)]


async def test_rate_limiters_are_independent():
    clock = FakeClock()
    a = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    b = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    await a.wait()
    assert await b.wait() == 0.0


def test_rate_limiter_rejects_negative_interval():
    with pytest.raises(ValueError):
        RateLimiter(-1)


async def test_scheduled_action_runs_after_delay():
    scheduler = DeferredActionScheduler()
    ran = asyncio.Event()

    async def action():
        ran.set()

    scheduler.schedule(0.01, action, name="test")
    await asyncio.wait_for(ran.wait(), timeout=1)
    await scheduler.shutdown()
    assert scheduler.pending() == []


async def test_cancelled_action_never_runs():
    scheduler = DeferredActionScheduler()
    calls = []

    async def action():
        calls.append(1)

    token = scheduler.schedule(0.05, action, name="stop_loss", group="trade-1")
    scheduler.schedule(0.05, action, name="other", group="trade-2")
    assert scheduler.cancel_group("trade-1") == 1
    assert token.cancelled
    assert not token.cancel()

    await asyncio.sleep(0.1)
    assert calls == [1]
    await scheduler.shutdown()


async def test_running_action_is_not_cancelled():
    scheduler = DeferredActionScheduler()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = []

    async def action():
        started.set()
        await release.wait()
        finished.append(1)

    token = scheduler.schedule(0, action, name="stop_loss", group="trade-1")
    await asyncio.wait_for(started.wait(), timeout=1)

    assert token.started
    assert scheduler.cancel_group("trade-1") == 0
    assert not token.cancelled

    release.set()
    await scheduler.shutdown()
    assert finished == [1]


async def test_failing_action_is_contained():
    scheduler = DeferredActionScheduler()

    async def action():
        raise RuntimeError("broker down")

    token = scheduler.schedule(0, action, name="failing")
    await asyncio.sleep(0.01)
    assert token.done
    await scheduler.shutdown()
