"""
BalanceBridge relay layer - websocket transport and subscriptions.

Submodules:
- connection.py: RelayConnection, relay URL normalization
- transport.py: RelayTransport (connect, publish, subscribe primitives)
- subscriptions.py: SubscriptionRouter, Subscription (filter -> finite event stream)
"""

from .connection import RelayConnection, normalize_relay_url
from .subscriptions import EventObserver, Subscription, SubscriptionRouter
from .transport import END_OF_STREAM, RelayTransport

__all__ = [
    "RelayConnection",
    "normalize_relay_url",
    "RelayTransport",
    "END_OF_STREAM",
    "SubscriptionRouter",
    "Subscription",
    "EventObserver",
]
