import uuid
from typing import List, Tuple

from core.logging import get_trading_logger_safe
from core.trading.models import BrokerOrderAck, LegOrder, SubscribedAccount


class PaperOrderClient:
    """
    Simulated order placement.

    Every order is acknowledged with a synthetic order id and nothing leaves
    the process. Placed orders are kept in memory for inspection.
    """

    broker_name = "paper"

    def __init__(self):
        self.logger = get_trading_logger_safe("paper")
        self.placed: List[Tuple[str, LegOrder]] = []

    async def place_leg(self, account: SubscribedAccount, order: LegOrder) -> BrokerOrderAck:
        order_id = f"paper_{account.account_id}_{uuid.uuid4().hex[:8]}"
        self.placed.append((account.account_id, order))
        self.logger.info("PAPER ORDER (SIMULATED)",
                         account_id=account.account_id,
                         instrument_id=order.instrument_id,
                         side=order.side.value,
                         quantity=order.quantity,
                         price=order.limit_price,
                         order_type=order.order_type.value,
                         order_id=order_id)
        return BrokerOrderAck(order_id=order_id, raw={"status": "SIMULATED", "order_id": order_id})

    async def close(self) -> None:
        return None
