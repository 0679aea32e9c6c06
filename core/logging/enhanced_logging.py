# Enhanced structured logging with multi-channel support
import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional
import structlog

from core.config.settings import Settings
from .channels import (
    LogChannel,
    get_channel_for_component,
    get_channel_config,
    create_log_directory_structure
)

# Global logger manager instance
_logger_manager: Optional['EnhancedLoggerManager'] = None

# Global flag to prevent duplicate configuration
_enhanced_logging_configured = False

def _record_channel(record: logging.LogRecord) -> Optional[str]:
    """Channel bound on a structlog event, if any."""
    ch = getattr(record, "channel", None)
    if ch is None and isinstance(record.msg, dict):
        ch = record.msg.get("channel")
    return str(ch) if ch is not None else None

class ChannelFilter(logging.Filter):
    """Filter that routes records to a handler only if they match a channel.

    Records without a structured `channel` are accepted only from the given
    third-party logger name prefixes (e.g. uvicorn for the API channel).
    """

    def __init__(self, expected_channel: str, allowed_logger_prefixes: Optional[list[str]] = None):
        super().__init__()
        self.expected_channel = expected_channel
        self.allowed_logger_prefixes = allowed_logger_prefixes or []

    def filter(self, record: logging.LogRecord) -> bool:
        ch = _record_channel(record)
        if ch is not None:
            return ch == self.expected_channel
        name = getattr(record, "name", "")
        return any(name.startswith(prefix) for prefix in self.allowed_logger_prefixes)

class EnhancedLoggerManager:
    """Logging manager with multi-channel files and structlog rendering."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.channel_handlers: Dict[LogChannel, logging.Handler] = {}
        self.configured_loggers: Dict[str, structlog.BoundLogger] = {}

        self._setup_logging()

    def _setup_logging(self) -> None:
        if self.settings.logging.file_enabled:
            create_log_directory_structure(self.settings.logs_dir)

        self._setup_console_logging()

        if self.settings.logging.file_enabled and self.settings.logging.multi_channel_enabled:
            self._setup_multi_channel_logging()

        self._configure_structlog()

    def _foreign_chain(self) -> list:
        return [
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
        ]

    def _setup_console_logging(self) -> None:
        """Setup console logging with configurable format."""
        root_logger = logging.getLogger()
        level = getattr(logging, self.settings.logging.level.upper())
        root_logger.setLevel(level)

        if not self.settings.logging.console_enabled:
            return

        console_processor = (
            structlog.processors.JSONRenderer()
            if self.settings.logging.console_json_format
            else structlog.dev.ConsoleRenderer()
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=console_processor,
                foreign_pre_chain=self._foreign_chain(),
            )
        )
        root_logger.addHandler(console_handler)

    def _setup_multi_channel_logging(self) -> None:
        """Setup multi-channel logging with dedicated files."""
        for channel in LogChannel:
            config = get_channel_config(channel)
            self.channel_handlers[channel] = self._create_channel_handler(channel, config)

        # API channel -> uvicorn/fastapi loggers
        api_handler = self.channel_handlers[LogChannel.API]
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
            lg = logging.getLogger(name)
            if api_handler not in lg.handlers:
                lg.addHandler(api_handler)

        # ERROR channel -> root, captures all ERROR+ records
        root_logger = logging.getLogger()
        error_handler = self.channel_handlers[LogChannel.ERROR]
        if error_handler not in root_logger.handlers:
            root_logger.addHandler(error_handler)

        # DATABASE channel -> SQLAlchemy loggers
        db_handler = self.channel_handlers[LogChannel.DATABASE]
        for name in ("sqlalchemy.engine", "sqlalchemy.pool"):
            lg = logging.getLogger(name)
            if db_handler not in lg.handlers:
                lg.addHandler(db_handler)
            if lg.level == logging.NOTSET:
                lg.setLevel(logging.WARNING)

    def _create_channel_handler(self, channel: LogChannel, config) -> logging.Handler:
        """Create a rotating JSON file handler for a specific channel."""
        handler = logging.handlers.RotatingFileHandler(
            filename=config.get_file_path(self.settings.logs_dir),
            maxBytes=self._parse_size(config.max_bytes),
            backupCount=config.backup_count,
            encoding="utf-8"
        )
        handler.setLevel(getattr(logging, config.level))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=self._foreign_chain(),
            )
        )
        if channel != LogChannel.ERROR:
            allowed_prefixes = ["uvicorn", "fastapi", "starlette"] if channel == LogChannel.API else []
            handler.addFilter(ChannelFilter(expected_channel=channel.value, allowed_logger_prefixes=allowed_prefixes))
        return handler

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '100MB') to bytes."""
        size_str = size_str.upper()

        if size_str.endswith("B"):
            size_str = size_str[:-1]

        multipliers = {
            "K": 1024,
            "M": 1024 * 1024,
            "G": 1024 * 1024 * 1024,
        }

        for suffix, multiplier in multipliers.items():
            if size_str.endswith(suffix):
                return int(float(size_str[:-1]) * multiplier)

        return int(size_str)

    def _configure_structlog(self) -> None:
        """Configure structlog with appropriate processors."""

        def add_standard_context(logger, name, event_dict):
            event_dict.setdefault('env', self.settings.environment.value)
            event_dict.setdefault('service', self.settings.app_name)
            return event_dict

        keys_to_redact = {k.lower() for k in self.settings.logging.redact_keys}

        def redact_sensitive(logger, name, event_dict):
            """Redact sensitive fields from event dict recursively."""

            def _redact(obj):
                if isinstance(obj, dict):
                    return {
                        k: '[REDACTED]' if isinstance(k, str) and k.lower() in keys_to_redact else _redact(v)
                        for k, v in obj.items()
                    }
                if isinstance(obj, list):
                    return [_redact(v) for v in obj]
                return obj

            return _redact(event_dict)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                add_standard_context,
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                redact_sensitive,
                # Defer final rendering to handlers via ProcessorFormatter
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str, component: Optional[str] = None) -> structlog.BoundLogger:
        """Get a structured logger for a component."""
        key = f"{name}:{component}" if component else name
        if key in self.configured_loggers:
            return self.configured_loggers[key]

        logger = structlog.get_logger(name)
        if component:
            channel = get_channel_for_component(component)
            logger = logger.bind(component=component, channel=channel.value)

        self.configured_loggers[key] = logger
        return logger

    def get_channel_logger(self, name: str, channel: LogChannel) -> structlog.BoundLogger:
        """Get a logger for a specific channel."""
        return structlog.get_logger(name).bind(channel=channel.value)

def configure_enhanced_logging(settings: Settings) -> None:
    """Configure enhanced logging system."""
    global _logger_manager, _enhanced_logging_configured

    if _enhanced_logging_configured:
        return

    _logger_manager = EnhancedLoggerManager(settings)
    _enhanced_logging_configured = True

def get_enhanced_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Before `configure_enhanced_logging` runs (tests, scripts) this returns a
    plain structlog logger with the default configuration.
    """
    if _logger_manager is None:
        logger = structlog.get_logger(name)
        if component:
            logger = logger.bind(component=component, channel=get_channel_for_component(component).value)
        return logger

    return _logger_manager.get_logger(name, component)

def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    """Get a logger for a specific channel."""
    if _logger_manager is None:
        return structlog.get_logger(name).bind(channel=channel.value)

    return _logger_manager.get_channel_logger(name, channel)

def get_trading_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a trading logger."""
    return get_channel_logger(name, LogChannel.TRADING)

def get_market_data_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a market data logger."""
    return get_channel_logger(name, LogChannel.MARKET_DATA)

def get_api_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an API logger."""
    return get_channel_logger(name, LogChannel.API)

def get_audit_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an audit logger."""
    return get_channel_logger(name, LogChannel.AUDIT)

def get_error_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an error logger."""
    return get_channel_logger(name, LogChannel.ERROR)

def get_database_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a database logger."""
    return get_channel_logger(name, LogChannel.DATABASE)
