"""
BalanceBridge RPC layer - request/response correlation over relays.

Submodules:
- pending.py: PendingRequest, RequestState
- correlator.py: RequestCorrelator, RequestHandle
"""

from .correlator import RequestCorrelator, RequestHandle, new_correlation_id
from .pending import PendingRequest, RequestState

__all__ = [
    "RequestCorrelator",
    "RequestHandle",
    "new_correlation_id",
    "PendingRequest",
    "RequestState",
]
