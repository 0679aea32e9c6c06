"""
Logging channel definitions and configuration for Trap Relay.
Provides multi-channel logging with dedicated files for different components.
"""

from enum import Enum
from typing import Dict
from pathlib import Path
from dataclasses import dataclass


class LogChannel(str, Enum):
    """Logging channels for different components."""

    APPLICATION = "application"  # General application logs
    TRADING = "trading"          # Signal processing, fan-out, square-off
    MARKET_DATA = "market_data"  # Option chain requests
    DATABASE = "database"        # Trade ledger persistence
    API = "api"                  # Alert ingress requests/responses
    AUDIT = "audit"             # Trade lifecycle transitions
    ERROR = "error"             # Error logs


@dataclass
class ChannelConfig:
    """Configuration for a logging channel."""

    name: str
    filename: str
    level: str = "INFO"
    max_bytes: str = "50MB"
    backup_count: int = 5

    def get_file_path(self, logs_dir: str) -> Path:
        """Get the full file path for this channel."""
        return Path(logs_dir) / self.filename


CHANNEL_CONFIGS: Dict[LogChannel, ChannelConfig] = {
    LogChannel.APPLICATION: ChannelConfig(
        name="application",
        filename="application.log",
        backup_count=10,
    ),
    LogChannel.TRADING: ChannelConfig(
        name="trading",
        filename="trading.log",
        backup_count=20,
    ),
    LogChannel.MARKET_DATA: ChannelConfig(
        name="market_data",
        filename="market_data.log",
        max_bytes="100MB",
    ),
    LogChannel.DATABASE: ChannelConfig(
        name="database",
        filename="database.log",
        level="WARNING",
    ),
    LogChannel.API: ChannelConfig(
        name="api",
        filename="api.log",
        backup_count=10,
    ),
    LogChannel.AUDIT: ChannelConfig(
        name="audit",
        filename="audit.log",
        max_bytes="100MB",
        backup_count=50,
    ),
    LogChannel.ERROR: ChannelConfig(
        name="error",
        filename="error.log",
        level="ERROR",
        backup_count=20,
    ),
}


def get_channel_for_component(component: str) -> LogChannel:
    """Get the appropriate logging channel for a component."""
    component_mapping = {
        "signal_parser": LogChannel.TRADING,
        "strike_selector": LogChannel.TRADING,
        "position_manager": LogChannel.TRADING,
        "broker_fanout": LogChannel.TRADING,
        "iifl": LogChannel.TRADING,
        "paper": LogChannel.TRADING,
        "notifications": LogChannel.APPLICATION,
        "market_data": LogChannel.MARKET_DATA,
        "trade_ledger": LogChannel.DATABASE,
        "database": LogChannel.DATABASE,
        "redis": LogChannel.DATABASE,
        "api": LogChannel.API,
        "audit": LogChannel.AUDIT,
    }

    return component_mapping.get(component, LogChannel.APPLICATION)


def get_channel_config(channel: LogChannel) -> ChannelConfig:
    """Get configuration for a specific channel."""
    return CHANNEL_CONFIGS[channel]


def create_log_directory_structure(logs_dir: str) -> None:
    """Create the logs directory structure."""
    Path(logs_dir).mkdir(parents=True, exist_ok=True)
