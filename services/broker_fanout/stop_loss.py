"""
Protective stop-loss orders placed some time after a successful entry leg.
"""

from core.config.settings import StopLossSettings
from core.trading.models import ExecutionResult, Leg, LegOrder, OrderSide, OrderType
from core.utils.ids import generate_order_tag
from core.utils.tick_size import round_to_tick


def stop_loss_prices(entry_price: float, entry_side: OrderSide,
                     settings: StopLossSettings) -> tuple:
    """(trigger, limit) for the stop-loss protecting an entry at `entry_price`.

    A long leg is protected by a SELL stop below the entry, a short leg by a
    BUY stop above it. The limit sits `limit_buffer_percent` beyond the
    trigger so the order still fills on a fast move.
    """
    offset = settings.trigger_percent / 100
    buffer = settings.limit_buffer_percent / 100
    if entry_side is OrderSide.BUY:
        trigger = round_to_tick(entry_price * (1 - offset))
        limit = round_to_tick(trigger * (1 - buffer))
    else:
        trigger = round_to_tick(entry_price * (1 + offset))
        limit = round_to_tick(trigger * (1 + buffer))
    return trigger, limit


def build_stop_loss_order(leg: Leg, result: ExecutionResult, exchange: str,
                          settings: StopLossSettings) -> LegOrder:
    """SL order for one successfully placed entry leg."""
    entry_price = result.placed_price or leg.limit_price
    trigger, limit = stop_loss_prices(entry_price, leg.action, settings)
    return LegOrder(
        instrument_id=leg.broker_instrument_id,
        exchange=exchange,
        side=leg.action.reverse,
        quantity=result.placed_quantity,
        order_type=OrderType.SL,
        limit_price=limit,
        trigger_price=trigger,
        tag=generate_order_tag("BBTrapSL", leg.option_type.value, leg.strike),
    )
