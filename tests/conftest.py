"""
Pytest configuration and shared fixtures for Trap Relay tests.
"""
import pytest

from core.config.settings import Settings, FanoutSettings, TelegramSettings
from core.trading.models import EntrySignal, ExitSignal
from services.broker_fanout import BrokerFanoutExecutor, BrokerRegistry
from services.position_manager import PositionManager
from services.signal_parser import SignalParser
from services.strike_selector import StrikeSelector
from services.trade_ledger import TradeLedger
from core.utils.scheduler import DeferredActionScheduler
from tests.mocks.fakes import (
    FakeBrokerClient,
    FakeMarketData,
    FakeSubscriptions,
    InMemoryFallbackStore,
    InMemoryTradeStore,
    RecordingNotifier,
    make_account,
)


@pytest.fixture
def test_settings():
    """Test settings configuration."""
    return Settings(
        environment="testing",
        fanout=FanoutSettings(inter_request_delay_seconds=0.0),
        telegram=TelegramSettings(enabled=False),
    )


@pytest.fixture
def buy_signal():
    return EntrySignal(action="buy", symbol="BANKNIFTY", entry_price=51590.5,
                       stop_loss=51550.5, target=51650.5)


@pytest.fixture
def sell_signal():
    return EntrySignal(action="sell", symbol="BANKNIFTY", entry_price=51620.0,
                       stop_loss=51660.0, target=51560.0)


@pytest.fixture
def exit_signal():
    return ExitSignal(symbol="BANKNIFTY", exit_price=51550.5, exit_reason="SL HIT")


@pytest.fixture
def trade_store():
    return InMemoryTradeStore()


@pytest.fixture
def fallback_store():
    return InMemoryFallbackStore()


@pytest.fixture
def ledger(trade_store, fallback_store):
    return TradeLedger(trade_store, fallback_store)


@pytest.fixture
def broker():
    return FakeBrokerClient()


@pytest.fixture
def accounts():
    return [make_account("A1", lots=1), make_account("A2", lots=2), make_account("A3", lots=3)]


@pytest.fixture
def subscriptions(accounts):
    return FakeSubscriptions(accounts)


@pytest.fixture
def market_data():
    return FakeMarketData()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def executor(broker):
    return BrokerFanoutExecutor(BrokerRegistry([broker]), inter_request_delay=0.0)


@pytest.fixture
def scheduler():
    return DeferredActionScheduler()


@pytest.fixture
def make_manager(test_settings, ledger, executor, notifier, market_data, subscriptions, scheduler):
    """Factory so tests can override individual collaborators."""
    def _make(**overrides):
        kwargs = dict(
            settings=test_settings,
            parser=SignalParser(),
            selector=StrikeSelector(),
            ledger=ledger,
            executor=executor,
            notifier=notifier,
            market_data=market_data,
            subscriptions=subscriptions,
            scheduler=scheduler,
        )
        kwargs.update(overrides)
        return PositionManager(**kwargs)
    return _make
