"""
Dhan v2 option-chain client.

Only the two reads the strategy needs: the expiry list for an index and the
option chain for one index + expiry. Requests share one aiohttp session and
one RateLimiter per client instance (Dhan allows one option-chain request
every 3 seconds).
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from core.config.settings import MarketDataSettings
from core.logging import get_market_data_logger_safe
from core.trading.models import OptionChain, OptionQuote, StrikeQuotes
from core.trading.symbols import normalize_symbol
from core.utils.exceptions import ConfigurationError, MarketDataError
from core.utils.rate_limiter import RateLimiter

logger = get_market_data_logger_safe("dhan_client")


def _quote_from_payload(side: Optional[Mapping[str, Any]]) -> Optional[OptionQuote]:
    if not side:
        return None
    greeks = side.get("greeks") or {}
    security_id = side.get("security_id")
    return OptionQuote(
        delta=greeks.get("delta"),
        ask_price=side.get("top_ask_price") or None,
        last_price=side.get("last_price") or side.get("ltp") or None,
        security_id=str(security_id) if security_id else None,
    )


def parse_option_chain(symbol: str, expiry: str, payload: Mapping[str, Any]) -> OptionChain:
    """Normalize a Dhan `/optionchain` response into an OptionChain.

    Dhan keys strikes as decimal strings (``"25000.000000"``); they are
    converted to floats here so lookups never depend on the string form.
    """
    data = payload.get("data") or {}
    oc = data.get("oc")
    if not isinstance(oc, Mapping):
        raise MarketDataError(
            "Option chain response has no strike data",
            operation="fetch_option_chain",
            details={"symbol": symbol, "expiry": expiry},
        )

    strikes: Dict[float, StrikeQuotes] = {}
    for key, entry in oc.items():
        try:
            strike = float(key)
        except (TypeError, ValueError):
            logger.warning("Skipping non-numeric strike key", symbol=symbol, key=key)
            continue
        entry = entry or {}
        strikes[strike] = StrikeQuotes(
            ce=_quote_from_payload(entry.get("ce")),
            pe=_quote_from_payload(entry.get("pe")),
        )

    return OptionChain(
        symbol=normalize_symbol(symbol),
        expiry=expiry,
        underlying_price=data.get("last_price"),
        strikes=strikes,
    )


class DhanMarketDataClient:
    """MarketDataClient implementation over the Dhan REST API."""

    def __init__(
        self,
        settings: MarketDataSettings,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings
        self._session = session
        self._owns_session = session is None
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.min_request_interval_seconds, name="dhan_option_chain"
        )

    def _underlying(self, symbol: str) -> int:
        normalized = normalize_symbol(symbol)
        scrip = self.settings.underlyings.get(normalized)
        if scrip is None:
            raise MarketDataError(
                f"No underlying scrip configured for {normalized}",
                operation="resolve_underlying",
                details={"symbol": normalized},
            )
        return scrip

    def _headers(self) -> Dict[str, str]:
        if not self.settings.access_token or not self.settings.client_id:
            raise ConfigurationError(
                "Dhan credentials are not configured",
                config_field="market_data.access_token",
            )
        return {
            "access-token": self.settings.access_token,
            "client-id": self.settings.client_id,
            "Content-Type": "application/json",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def _post(self, path: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        await self.rate_limiter.wait()
        headers = self._headers()
        session = await self._get_session()
        url = f"{self.settings.base_url.rstrip('/')}/v2{path}"
        try:
            async with session.post(url, json=body, headers=headers) as response:
                payload = await response.json(content_type=None)
                if response.status >= 400:
                    raise MarketDataError(
                        f"Dhan API error {response.status}",
                        operation=operation,
                        details={"status": response.status, "response": payload},
                    )
                return payload or {}
        except MarketDataError:
            raise
        except Exception as e:
            logger.error("Dhan request failed", operation=operation, error=str(e))
            raise MarketDataError(f"Dhan request failed: {e}", operation=operation) from e

    async def list_expiries(self, symbol: str) -> List[str]:
        """Expiry dates for the index, nearest first."""
        payload = await self._post(
            "/optionchain/expirylist",
            {
                "UnderlyingScrip": self._underlying(symbol),
                "UnderlyingSeg": self.settings.underlying_segment,
            },
            operation="list_expiries",
        )
        expiries = sorted(payload.get("data") or [])
        if not expiries:
            raise MarketDataError(
                f"No expiries available for {normalize_symbol(symbol)}",
                operation="list_expiries",
                details={"symbol": symbol},
            )
        logger.debug("Expiries fetched", symbol=symbol, count=len(expiries), nearest=expiries[0])
        return expiries

    async def fetch_option_chain(self, symbol: str, expiry: str) -> OptionChain:
        payload = await self._post(
            "/optionchain",
            {
                "UnderlyingScrip": self._underlying(symbol),
                "UnderlyingSeg": self.settings.underlying_segment,
                "Expiry": expiry,
            },
            operation="fetch_option_chain",
        )
        chain = parse_option_chain(symbol, expiry, payload)
        logger.info("Option chain fetched", symbol=chain.symbol, expiry=expiry,
                    strikes=len(chain.strikes), underlying_price=chain.underlying_price)
        return chain

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
