# Application DI container
from dependency_injector import containers, providers
import redis.asyncio as redis
from prometheus_client import CollectorRegistry

from core.config.settings import Settings
from core.database.connection import DatabaseManager
from core.monitoring.metrics import RelayMetricsCollector
from core.utils.scheduler import DeferredActionScheduler
from services.broker_fanout import BrokerFanoutExecutor, BrokerRegistry
from services.broker_fanout.adapters import IIFLOrderClient, PaperOrderClient
from services.market_data import DhanMarketDataClient, InstrumentMaster
from services.notifications import TelegramClient, TelegramNotificationSink
from services.position_manager import (
    LocalSymbolLockProvider,
    NullSymbolLockProvider,
    PositionManager,
    RedisSymbolLockProvider,
    SymbolLockProvider,
)
from services.signal_parser import SignalParser
from services.strike_selector import StrikeSelector
from services.subscriptions import DatabaseSubscriptionProvider
from services.trade_ledger import RedisFallbackTradeStore, SqlTradeStore, TradeLedger


def build_symbol_locks(settings: Settings, redis_client: redis.Redis) -> SymbolLockProvider:
    """Pick the per-symbol lock backend from position settings."""
    position = settings.position
    if not position.serialize_per_symbol:
        return NullSymbolLockProvider()
    if position.lock_backend == "redis":
        return RedisSymbolLockProvider(redis_client, timeout=position.lock_timeout_seconds)
    return LocalSymbolLockProvider()


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # --- Observability: Prometheus ---
    # Shared registry used by the API /metrics endpoint
    prometheus_registry = providers.Singleton(CollectorRegistry)
    metrics = providers.Singleton(RelayMetricsCollector, registry=prometheus_registry)

    # Database with environment awareness
    db_manager = providers.Singleton(
        DatabaseManager,
        db_url=settings.provided.database.postgres_url,
        environment=settings.provided.environment,
        schema_management=settings.provided.database.schema_management
    )

    # Redis: fallback trade log and distributed symbol locks
    redis_client = providers.Singleton(
        redis.from_url,
        settings.provided.redis.url
    )

    # --- Market data ---
    instrument_master = providers.Singleton(
        InstrumentMaster,
        csv_file_path=settings.provided.instruments.scrip_master_csv
    )
    market_data = providers.Singleton(
        DhanMarketDataClient,
        settings=settings.provided.market_data
    )

    # --- Brokers ---
    iifl_client = providers.Singleton(IIFLOrderClient, settings=settings.provided.iifl)
    paper_client = providers.Singleton(PaperOrderClient)
    broker_registry = providers.Singleton(
        BrokerRegistry,
        clients=providers.List(iifl_client, paper_client)
    )
    executor = providers.Singleton(
        BrokerFanoutExecutor,
        registry=broker_registry,
        exchange=settings.provided.iifl.exchange,
        inter_request_delay=settings.provided.fanout.inter_request_delay_seconds,
        parallel_accounts=settings.provided.fanout.parallel_accounts,
        attempt_timeout=settings.provided.iifl.timeout_seconds
    )

    # --- Trade ledger ---
    sql_trade_store = providers.Singleton(SqlTradeStore, db_manager=db_manager)
    fallback_trade_store = providers.Singleton(
        RedisFallbackTradeStore,
        redis_client=redis_client,
        key=settings.provided.ledger.fallback_key
    )
    ledger = providers.Singleton(
        TradeLedger,
        primary=sql_trade_store,
        fallback=fallback_trade_store,
        fallback_reads_enabled=settings.provided.ledger.fallback_reads_enabled
    )

    # --- Notifications ---
    telegram_client = providers.Singleton(TelegramClient, settings=settings.provided.telegram)
    notifier = providers.Singleton(
        TelegramNotificationSink,
        client=telegram_client,
        enabled=settings.provided.telegram.enabled
    )

    subscriptions = providers.Singleton(DatabaseSubscriptionProvider, db_manager=db_manager)

    # --- Signal processing ---
    parser = providers.Singleton(SignalParser)
    selector = providers.Singleton(StrikeSelector, instruments=instrument_master)
    scheduler = providers.Singleton(DeferredActionScheduler)
    symbol_locks = providers.Singleton(build_symbol_locks, settings=settings, redis_client=redis_client)

    position_manager = providers.Singleton(
        PositionManager,
        settings=settings,
        parser=parser,
        selector=selector,
        ledger=ledger,
        executor=executor,
        notifier=notifier,
        market_data=market_data,
        subscriptions=subscriptions,
        scheduler=scheduler,
        locks=symbol_locks,
        metrics=metrics
    )
