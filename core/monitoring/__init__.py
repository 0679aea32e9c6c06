"""
Monitoring components for Trap Relay
"""

from .metrics import RelayMetricsCollector

__all__ = [
    "RelayMetricsCollector",
]
