"""
Delta-based strike selection for the two-legged option position.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from core.logging import get_trading_logger_safe
from core.trading.models import Direction, Leg, OptionChain, OptionType, OrderSide
from core.utils.exceptions import StrategyCalculationError, StrikeSelectionError

logger = get_trading_logger_safe("strike_selector")


class InstrumentLookup(Protocol):
    def security_id(self, strike: float, option_type: OptionType) -> Optional[str]:
        ...


@dataclass(frozen=True)
class StrikeCandidate:
    strike: float
    delta: float
    ask_price: float
    security_id: Optional[str] = None

    def display(self) -> Dict[str, float]:
        """Rounded view for logs and notifications."""
        return {
            "strike": self.strike,
            "delta": round(self.delta, 2),
            "price": round(self.ask_price, 2),
        }


@dataclass(frozen=True)
class StrikeSelection:
    ce: StrikeCandidate
    pe: StrikeCandidate
    underlying_price: Optional[float] = None


# Leg sides per signal direction: buy -> long call + short put, sell -> the mirror
LEG_SIDES = {
    Direction.BUY: ((OptionType.CE, OrderSide.BUY), (OptionType.PE, OrderSide.SELL)),
    Direction.SELL: ((OptionType.CE, OrderSide.SELL), (OptionType.PE, OrderSide.BUY)),
}


class StrikeSelector:
    """Picks the CE and PE strikes whose deltas sit closest to the target magnitude.

    Strikes are scanned in ascending order and a candidate only replaces the
    current best on a strictly smaller distance, so ties resolve to the lowest
    strike. CE and PE are chosen independently and may land on different
    strikes.
    """

    def __init__(self, instruments: Optional[InstrumentLookup] = None):
        self.instruments = instruments

    def select(self, chain: OptionChain, target_delta: float) -> StrikeSelection:
        best: Dict[OptionType, Optional[StrikeCandidate]] = {OptionType.CE: None, OptionType.PE: None}
        best_distance = {OptionType.CE: float("inf"), OptionType.PE: float("inf")}
        targets = {OptionType.CE: target_delta, OptionType.PE: -target_delta}

        for strike in sorted(chain.strikes):
            quotes = chain.strikes[strike]
            for option_type in (OptionType.CE, OptionType.PE):
                quote = quotes.side(option_type)
                if quote is None or quote.delta is None:
                    continue
                distance = abs(quote.delta - targets[option_type])
                if distance < best_distance[option_type]:
                    best_distance[option_type] = distance
                    best[option_type] = StrikeCandidate(
                        strike=strike,
                        delta=quote.delta,
                        ask_price=quote.best_price or 0.0,
                        security_id=quote.security_id,
                    )

        for option_type, candidate in best.items():
            if candidate is None:
                raise StrikeSelectionError(
                    f"No {option_type.value} strike with delta data in option chain",
                    side=option_type.value,
                    details={"symbol": chain.symbol, "expiry": chain.expiry,
                             "strikes": len(chain.strikes)},
                )

        selection = StrikeSelection(ce=best[OptionType.CE], pe=best[OptionType.PE],
                                    underlying_price=chain.underlying_price)
        logger.info("Strikes selected", symbol=chain.symbol, expiry=chain.expiry,
                    target_delta=target_delta, ce=selection.ce.display(),
                    pe=selection.pe.display())
        return selection

    def build_legs(self, selection: StrikeSelection, direction: Direction) -> List[Leg]:
        """Entry legs for `direction`, CE first."""
        candidates = {OptionType.CE: selection.ce, OptionType.PE: selection.pe}
        legs = []
        for option_type, side in LEG_SIDES[direction]:
            candidate = candidates[option_type]
            legs.append(Leg(
                option_type=option_type,
                action=side,
                strike=candidate.strike,
                delta=candidate.delta,
                limit_price=round(candidate.ask_price, 2),
                broker_instrument_id=self._instrument_id(candidate, option_type),
            ))
        return legs

    def _instrument_id(self, candidate: StrikeCandidate, option_type: OptionType) -> str:
        if candidate.security_id:
            return str(candidate.security_id)
        if self.instruments is not None:
            security_id = self.instruments.security_id(candidate.strike, option_type)
            if security_id:
                return str(security_id)
        raise StrategyCalculationError(
            f"No instrument id for {option_type.value} strike {candidate.strike:g}",
            details={"strike": candidate.strike, "option_type": option_type.value},
        )
