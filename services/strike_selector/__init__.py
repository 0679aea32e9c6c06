"""Delta-based CE/PE strike selection."""

from .selector import StrikeSelector, StrikeCandidate, StrikeSelection, LEG_SIDES

__all__ = ["StrikeSelector", "StrikeCandidate", "StrikeSelection", "LEG_SIDES"]
