"""
Symbol normalization and lot sizes for NSE index options.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

# TradingView continuous-contract marker, e.g. "NIFTY1!"
_CONTINUOUS_MARKER = re.compile(r"1!$")

# Quantity per lot as defined by NSE
LOT_SIZES = {
    "NIFTY": 75,
    "BANKNIFTY": 35,
    "FINNIFTY": 40,
    "MIDCPNIFTY": 75,
}
DEFAULT_LOT_SIZE = 1


def normalize_symbol(symbol: str) -> str:
    """`"nifty1!"` -> `"NIFTY"`."""
    return _CONTINUOUS_MARKER.sub("", symbol.strip()).upper()


def get_lot_size(symbol: str, overrides: Optional[Mapping[str, int]] = None) -> int:
    normalized = normalize_symbol(symbol)
    if overrides:
        for key, size in overrides.items():
            if normalize_symbol(key) == normalized:
                return size
    return LOT_SIZES.get(normalized, DEFAULT_LOT_SIZE)


def calculate_quantity(symbol: str, lots: Optional[int],
                       overrides: Optional[Mapping[str, int]] = None) -> Optional[int]:
    """Lots x lot size, or None when the number of lots is unknown."""
    if not lots:
        return None
    return lots * get_lot_size(symbol, overrides)
