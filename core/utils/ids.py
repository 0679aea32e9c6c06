"""
Centralized ID generation for trades and broker order tags.
"""

from __future__ import annotations

import time
from uuid import uuid4


def generate_trade_id() -> str:
    """Time-prefixed unique trade id: timestamp (ms) hex prefix + uuid4 suffix.

    The prefix gives coarse creation ordering when ids are compared as strings.
    """
    ts_ms = int(time.time() * 1000)
    return f"{ts_ms:013x}-{str(uuid4())[14:]}"


def generate_order_tag(prefix: str, option_type: str, strike: float) -> str:
    """Broker order tag, e.g. ``BBTrap_CE_25000_1718000000000``."""
    strike_text = f"{strike:g}"
    return f"{prefix}_{option_type}_{strike_text}_{int(time.time() * 1000)}"
