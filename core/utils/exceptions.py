# Structured exception hierarchy for the Trap Relay signal engine

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class RelayError(Exception):
    """Base exception for all Trap Relay specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)


# Request-terminal errors: the signal is rejected and nothing is persisted
class ParseError(RelayError):
    """Alert text matched none of the supported formats"""

    def __init__(self, message: str, raw_text: str, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_text = raw_text


class NoActiveTradeError(RelayError):
    """Exit signal received while no trade is open for the symbol"""

    def __init__(self, message: str, symbol: str, **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol


class DuplicateEntryError(RelayError):
    """Same-direction entry rejected by the configured duplicate policy"""

    def __init__(self, message: str, symbol: str, open_trade_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol
        self.open_trade_id = open_trade_id


class StrategyCalculationError(RelayError):
    """Legs could not be computed (no expiries, no chain data, no strike)"""
    pass


class MarketDataError(StrategyCalculationError):
    """Option chain or expiry request failed"""

    def __init__(self, message: str, operation: str, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation


class StrikeSelectionError(StrategyCalculationError):
    """No qualifying CE or PE candidate in the option chain"""

    def __init__(self, message: str, side: str, **kwargs):
        super().__init__(message, **kwargs)
        self.side = side


# Non-fatal errors: recorded or logged, never abort signal processing
class BrokerExecutionError(RelayError):
    """A single (leg, account) order placement failed"""

    def __init__(self, message: str, broker: str, account_id: Optional[str] = None,
                 api_response: Optional[Any] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker
        self.account_id = account_id
        self.api_response = api_response


class PersistenceError(RelayError):
    """Trade store write or read failure"""

    def __init__(self, message: str, operation: str, store: str, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.store = store


class NotificationError(RelayError):
    """Notification transport failure"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 formatting_rejected: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.formatting_rejected = formatting_rejected


class ConfigurationError(RelayError):
    """Configuration validation errors"""

    def __init__(self, message: str, config_field: str, **kwargs):
        super().__init__(message, **kwargs)
        self.config_field = config_field


REQUEST_TERMINAL_ERRORS = (ParseError, NoActiveTradeError, DuplicateEntryError, StrategyCalculationError)


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if isinstance(error, RelayError) and error.details:
        context["error_details"] = error.details
    if isinstance(error, BrokerExecutionError):
        context["broker"] = error.broker
        if error.account_id:
            context["account_id"] = error.account_id
    if isinstance(error, PersistenceError):
        context["store"] = error.store

    if additional_context:
        context.update(additional_context)

    return context
