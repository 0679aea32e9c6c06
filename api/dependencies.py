from fastapi import Depends
from dependency_injector.wiring import inject, Provide

from app.containers import AppContainer
from core.config.settings import Settings
from services.broker_fanout import BrokerRegistry
from services.notifications import TelegramClient
from services.position_manager import PositionManager
from services.trade_ledger import TradeLedger


@inject
def get_settings(
    settings: Settings = Depends(Provide[AppContainer.settings])
) -> Settings:
    return settings


@inject
def get_position_manager(
    position_manager: PositionManager = Depends(Provide[AppContainer.position_manager])
) -> PositionManager:
    """Get the signal processing entry point"""
    return position_manager


@inject
def get_trade_ledger(
    ledger: TradeLedger = Depends(Provide[AppContainer.ledger])
) -> TradeLedger:
    return ledger


@inject
def get_broker_registry(
    registry: BrokerRegistry = Depends(Provide[AppContainer.broker_registry])
) -> BrokerRegistry:
    return registry


@inject
def get_telegram_client(
    client: TelegramClient = Depends(Provide[AppContainer.telegram_client])
) -> TelegramClient:
    return client
