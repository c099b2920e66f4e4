"""
Relay connection data model.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import aiohttp
from yarl import URL


def normalize_relay_url(raw: str) -> str:
    """
    Validate a relay URL and return its canonical form.

    Raises:
        ValueError: Empty, not ``ws``/``wss``, or no host.
    """
    text = raw.strip() if isinstance(raw, str) else ""
    if not text:
        raise ValueError("empty relay URL")
    url = URL(text)
    if url.scheme not in ("ws", "wss"):
        raise ValueError(f"unsupported relay scheme {url.scheme!r}")
    if not url.host:
        raise ValueError("relay URL has no host")
    return str(url)


@dataclass
class RelayConnection:
    """Represents an open websocket to a relay."""

    url: str
    websocket: aiohttp.ClientWebSocketResponse
    session: aiohttp.ClientSession
    connected_at: float
    last_seen: float
    reader_task: asyncio.Task[None] | None = None
    events_sent: int = 0
    events_received: int = 0
    ok_accepted: int = 0
    ok_rejected: int = 0
    notices: int = 0

    @property
    def acceptance_rate(self) -> float:
        total = self.ok_accepted + self.ok_rejected
        if total == 0:
            return 1.0
        return self.ok_accepted / total

    def touch(self) -> None:
        self.last_seen = time.time()

    async def close(self) -> None:
        """Close the websocket and its session; the reader task is cancelled first."""
        if self.reader_task is not None and not self.reader_task.done():
            self.reader_task.cancel()
        try:
            await self.websocket.close()
        finally:
            await self.session.close()

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "connected_at": self.connected_at,
            "last_seen": self.last_seen,
            "events_sent": self.events_sent,
            "events_received": self.events_received,
            "ok_accepted": self.ok_accepted,
            "ok_rejected": self.ok_rejected,
            "notices": self.notices,
            "acceptance_rate": self.acceptance_rate,
        }
