from typing import Any, Dict, List, Optional

import aiohttp

from core.config.settings import IIFLSettings
from core.logging import get_trading_logger_safe, bind_account_context
from core.trading.models import BrokerOrderAck, LegOrder, OrderType, SubscribedAccount
from core.utils.exceptions import BrokerExecutionError
from core.utils.rate_limiter import RateLimiter

REJECTED_STATUSES = {"REJECTED", "REJECT"}


def _price_text(value: float) -> str:
    return str(int(value)) if value == int(value) else f"{value:.2f}".rstrip("0")


def build_order_payload(order: LegOrder, settings: IIFLSettings) -> List[Dict[str, Any]]:
    """IIFL `/orders` body for one leg. The API takes a list of orders."""
    payload: Dict[str, Any] = {
        "instrumentId": order.instrument_id,
        "exchange": order.exchange or settings.exchange,
        "transactionType": order.side.value,
        "quantity": str(order.quantity),
        "orderComplexity": "REGULAR",
        "product": settings.product,
        "orderType": order.order_type.value,
        "validity": settings.validity,
        "price": _price_text(order.limit_price),
        "apiOrderSource": settings.order_source,
        "orderTag": order.tag,
    }
    if order.order_type is OrderType.SL and order.trigger_price is not None:
        payload["slTriggerPrice"] = _price_text(order.trigger_price)
    return [payload]


def parse_order_response(data: Any) -> BrokerOrderAck:
    """Extract the broker order id, raising when the exchange rejected the order."""
    result = data.get("result") if isinstance(data, dict) else None
    first: Dict[str, Any] = result[0] if isinstance(result, list) and result else {}
    status = str(first.get("status") or first.get("Status") or "").upper()
    if status in REJECTED_STATUSES:
        raise BrokerExecutionError(
            first.get("rejectionReason") or first.get("message") or "Order rejected",
            broker="iifl",
            api_response=data,
        )
    return BrokerOrderAck(
        order_id=first.get("brokerOrderId") or first.get("BrokerOrderId"),
        exchange_order_id=first.get("exchangeOrderId") or first.get("ExchangeOrderId"),
        raw=data,
    )


class IIFLOrderClient:
    """Places option legs through the IIFL Capital order API."""

    broker_name = "iifl"

    def __init__(self, settings: IIFLSettings, session: Optional[aiohttp.ClientSession] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        self.settings = settings
        self._session = session
        self._owns_session = session is None
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.min_request_interval_seconds, name="iifl_orders"
        )
        self.logger = get_trading_logger_safe("iifl")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def _send(self, token: str, payload: List[Dict[str, Any]]) -> Any:
        session = await self._get_session()
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        url = f"{self.settings.base_url.rstrip('/')}/orders"
        async with session.post(url, json=payload, headers=headers) as response:
            data = await response.json(content_type=None)
            if response.status >= 400:
                raise BrokerExecutionError(
                    f"IIFL API error {response.status}",
                    broker=self.broker_name,
                    api_response=data,
                )
            return data

    async def place_leg(self, account: SubscribedAccount, order: LegOrder) -> BrokerOrderAck:
        log = bind_account_context(self.logger, account.account_id, self.broker_name)
        if not account.token_valid():
            raise BrokerExecutionError(
                f"Missing or expired token for {account.display_name}",
                broker=self.broker_name, account_id=account.account_id,
            )

        payload = build_order_payload(order, self.settings)
        await self.rate_limiter.wait()
        try:
            data = await self._send(account.credentials_ref, payload)
            ack = parse_order_response(data)
        except BrokerExecutionError as e:
            e.account_id = account.account_id
            log.warning("IIFL order failed", tag=order.tag, error=e.message)
            raise

        log.info("IIFL order placed", tag=order.tag, side=order.side.value,
                 quantity=order.quantity, price=order.limit_price, order_id=ack.order_id)
        return ack

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
