"""
Pending request tracking.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..protocol import BitcoinLookupResult
from ..relay.subscriptions import Subscription


class RequestState(StrEnum):
    """Lifecycle of a correlated request."""

    CREATED = "created"
    SENT = "sent"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PendingRequest:
    """A request awaiting its response, keyed by ``correlation_id``."""

    correlation_id: str
    query: str
    server_public_key: str
    issued_at: float
    deadline: float
    future: asyncio.Future[BitcoinLookupResult]
    state: RequestState = RequestState.CREATED
    event_id: str | None = None
    timer: asyncio.TimerHandle | None = None
    task: asyncio.Task[None] | None = None
    subscription: Subscription | None = None
    settled_at: float | None = None
    relays_written: int = 0

    @property
    def timeout(self) -> float:
        return self.deadline - self.issued_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "query": self.query,
            "server_public_key": self.server_public_key,
            "issued_at": self.issued_at,
            "deadline": self.deadline,
            "state": self.state.value,
            "event_id": self.event_id,
            "settled_at": self.settled_at,
            "relays_written": self.relays_written,
        }
