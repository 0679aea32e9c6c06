"""Strategy subscriptions and per-account sizing."""

from .provider import DatabaseSubscriptionProvider

__all__ = ["DatabaseSubscriptionProvider"]
