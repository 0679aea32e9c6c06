from typing import Dict, Iterable

from core.logging import get_logger
from core.trading.interfaces import BrokerOrderClient
from core.utils.exceptions import BrokerExecutionError

logger = get_logger(__name__, component="broker_fanout")


class BrokerRegistry:
    """Broker name -> order client lookup."""

    def __init__(self, clients: Iterable[BrokerOrderClient] = ()):
        self._clients: Dict[str, BrokerOrderClient] = {}
        for client in clients:
            self.register(client)

    def register(self, client: BrokerOrderClient) -> None:
        name = client.broker_name.lower()
        self._clients[name] = client
        logger.debug("Broker client registered", broker=name)

    def get(self, broker: str) -> BrokerOrderClient:
        client = self._clients.get((broker or "").lower())
        if client is None:
            raise BrokerExecutionError(f"No order client registered for broker '{broker}'",
                                       broker=broker or "unknown")
        return client

    @property
    def brokers(self) -> list:
        return sorted(self._clients)

    async def close(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()
