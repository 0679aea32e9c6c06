"""Per-broker order placement adapters."""

from .iifl import IIFLOrderClient, build_order_payload, parse_order_response
from .paper import PaperOrderClient

__all__ = ["IIFLOrderClient", "PaperOrderClient", "build_order_payload", "parse_order_response"]
