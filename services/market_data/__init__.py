"""Option-chain market data and instrument ids."""

from .dhan_client import DhanMarketDataClient, parse_option_chain
from .instruments import InstrumentMaster

__all__ = ["DhanMarketDataClient", "parse_option_chain", "InstrumentMaster"]
