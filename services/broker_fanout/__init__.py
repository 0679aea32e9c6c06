"""Order fan-out across subscribed brokerage accounts."""

from .executor import BrokerFanoutExecutor
from .registry import BrokerRegistry
from .stop_loss import build_stop_loss_order, stop_loss_prices

__all__ = ["BrokerFanoutExecutor", "BrokerRegistry", "build_stop_loss_order", "stop_loss_prices"]
