from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from core.config.settings import IIFLSettings
from core.trading.models import LegOrder, OrderSide, OrderType
from core.utils.exceptions import BrokerExecutionError
from services.broker_fanout.adapters import IIFLOrderClient, build_order_payload, parse_order_response
from tests.mocks.fakes import make_account


@pytest.fixture
def iifl_settings():
    return IIFLSettings(min_request_interval_seconds=0.0)


def _order(**overrides):
    values = dict(instrument_id="43210", exchange="NSEFO", side=OrderSide.BUY, quantity=75,
                  limit_price=120.5, tag="BBTrap_CE_25000_1")
    values.update(overrides)
    return LegOrder(**values)


def test_limit_order_payload(iifl_settings):
    payload = build_order_payload(_order(), iifl_settings)
    assert payload == [{
        "instrumentId": "43210",
        "exchange": "NSEFO",
        "transactionType": "BUY",
        "quantity": "75",
        "orderComplexity": "REGULAR",
        "product": "INTRADAY",
        "orderType": "LIMIT",
        "validity": "DAY",
        "price": "120.5",
        "apiOrderSource": "OptionTradeStrategy",
        "orderTag": "BBTrap_CE_25000_1",
    }]


def test_stop_loss_payload_carries_trigger(iifl_settings):
    order = _order(side=OrderSide.SELL, order_type=OrderType.SL, limit_price=84.1, trigger_price=84.35)
    payload = build_order_payload(order, iifl_settings)[0]
    assert payload["orderType"] == "SL"
    assert payload["transactionType"] == "SELL"
    assert payload["price"] == "84.1"
    assert payload["slTriggerPrice"] == "84.35"


def test_whole_prices_are_sent_without_decimals(iifl_settings):
    payload = build_order_payload(_order(limit_price=25010.0), iifl_settings)[0]
    assert payload["price"] == "25010"


def test_parse_order_response_returns_broker_order_id():
    ack = parse_order_response({"status": "Ok", "result": [{"brokerOrderId": "B123", "exchangeOrderId": "E9"}]})
    assert ack.order_id == "B123"
    assert ack.exchange_order_id == "E9"


def test_parse_order_response_rejected_raises():
    with pytest.raises(BrokerExecutionError) as exc_info:
        parse_order_response({"result": [{"status": "REJECTED", "rejectionReason": "Insufficient margin"}]})
    assert exc_info.value.message == "Insufficient margin"


async def test_place_leg_uses_account_token(iifl_settings):
    client = IIFLOrderClient(iifl_settings)
    client._send = AsyncMock(return_value={"result": [{"brokerOrderId": "B1"}]})
    ack = await client.place_leg(make_account("A1", broker="iifl", token="tok-1"), _order())
    assert ack.order_id == "B1"
    token, payload = client._send.call_args.args
    assert token == "tok-1"
    assert payload[0]["instrumentId"] == "43210"


async def test_place_leg_with_expired_token_fails_without_request(iifl_settings):
    client = IIFLOrderClient(iifl_settings)
    client._send = AsyncMock()
    account = make_account("A1", broker="iifl").model_copy(
        update={"token_expires_at": datetime.now(timezone.utc) - timedelta(minutes=1)}
    )
    with pytest.raises(BrokerExecutionError) as exc_info:
        await client.place_leg(account, _order())
    assert exc_info.value.account_id == "A1"
    client._send.assert_not_called()


async def test_place_leg_tags_api_errors_with_account(iifl_settings):
    client = IIFLOrderClient(iifl_settings)
    client._send = AsyncMock(side_effect=BrokerExecutionError("IIFL API error 401", broker="iifl"))
    with pytest.raises(BrokerExecutionError) as exc_info:
        await client.place_leg(make_account("A7", broker="iifl"), _order())
    assert exc_info.value.account_id == "A7"
