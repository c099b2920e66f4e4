"""
Relay transport: websocket connections to the paired relay set.

Speaks NIP-01 frames::

    client → relay   ["EVENT", <event>]  ["REQ", <sub_id>, <filter>]  ["CLOSE", <sub_id>]
    relay → client   ["EVENT", <sub_id>, <event>]  ["OK", <id>, <bool>, <msg>]
                     ["EOSE", <sub_id>]  ["NOTICE", <msg>]  ["CLOSED", <sub_id>, <msg>]

Partial connectivity is a normal operating state: a relay that fails to
parse or connect is recorded and skipped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from typing import Any

import aiohttp

from ..errors import NoRelaysAvailableError, NotConnectedError
from ..events import EventFilter, NostrEvent
from .connection import RelayConnection, normalize_relay_url

logger = logging.getLogger(__name__)

#: Pushed onto subscription queues when the transport shuts down.
END_OF_STREAM = None


class RelayTransport:
    """
    Manages websocket connections to a set of relays.

    Usage::

        transport = RelayTransport(connect_timeout=10.0)
        await transport.connect(["wss://relay.damus.io", "wss://nos.lol"])

        queue = await transport.open_subscription("sub-1", EventFilter(kinds={30079}))
        await transport.publish(event)

        await transport.shutdown()
    """

    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        heartbeat: float | None = 30.0,
        queue_size: int = 1000,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.heartbeat = heartbeat or None
        self.queue_size = queue_size
        self._connections: dict[str, RelayConnection] = {}
        self._subscriptions: dict[str, tuple[EventFilter, asyncio.Queue[NostrEvent | None]]] = {}
        self._failures: dict[str, str] = {}
        self._closed = False
        self._stats = {
            "events_published": 0,
            "events_received": 0,
            "malformed_frames": 0,
            "connect_failures": 0,
            "disconnects": 0,
        }

    @property
    def connected_relays(self) -> list[str]:
        return list(self._connections)

    @property
    def is_connected(self) -> bool:
        return bool(self._connections)

    @property
    def failures(self) -> dict[str, str]:
        """Most recent failure reason per relay URL."""
        return dict(self._failures)

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = dict(self._stats)
        stats["connected"] = len(self._connections)
        stats["subscriptions"] = len(self._subscriptions)
        stats["relays"] = [conn.to_dict() for conn in self._connections.values()]
        return stats

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, relays: Sequence[str]) -> int:
        """
        Connect to every relay independently.

        Returns:
            Number of relays connected after this call.

        Raises:
            NoRelaysAvailableError: If no relay is connected.
        """
        self._closed = False
        unique = list(dict.fromkeys(relays))
        await asyncio.gather(*(self._connect_relay(url) for url in unique))

        if not self._connections:
            raise NoRelaysAvailableError({url: self._failures.get(url, "not attempted") for url in unique})

        logger.info("Connected to %d/%d relay(s)", len(self._connections), len(unique))
        return len(self._connections)

    async def _connect_relay(self, raw_url: str) -> bool:
        try:
            url = normalize_relay_url(raw_url)
        except ValueError as e:
            self._record_failure(raw_url, f"invalid URL: {e}")
            return False

        if url in self._connections:
            return True

        session = aiohttp.ClientSession()
        try:
            websocket = await asyncio.wait_for(
                session.ws_connect(url, heartbeat=self.heartbeat),
                timeout=self.connect_timeout,
            )
        except (aiohttp.ClientError, TimeoutError, OSError) as e:
            await session.close()
            self._record_failure(raw_url, str(e) or type(e).__name__)
            return False

        now = time.time()
        conn = RelayConnection(
            url=url,
            websocket=websocket,
            session=session,
            connected_at=now,
            last_seen=now,
        )
        self._connections[url] = conn
        self._failures.pop(raw_url, None)
        conn.reader_task = asyncio.create_task(self._read_loop(conn), name=f"relay-reader:{url}")

        for sub_id, (event_filter, _queue) in list(self._subscriptions.items()):
            await self._send(conn, ["REQ", sub_id, event_filter.to_wire()])

        logger.info("Added relay: %s", url)
        return True

    def _record_failure(self, url: str, reason: str) -> None:
        self._failures[url] = reason
        self._stats["connect_failures"] += 1
        logger.warning("Failed to add relay %s: %s", url, reason)

    async def shutdown(self) -> None:
        """Close every relay connection and end every subscription. Idempotent."""
        if self._closed and not self._connections:
            return
        self._closed = True

        connections = list(self._connections.values())
        self._connections.clear()
        results = await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)
        for conn, result in zip(connections, results):
            if isinstance(result, BaseException):
                logger.warning("Error while closing relay %s: %s", conn.url, result)

        readers = [conn.reader_task for conn in connections if conn.reader_task is not None]
        if readers:
            await asyncio.gather(*readers, return_exceptions=True)

        for _filter, queue in self._subscriptions.values():
            self._offer(queue, END_OF_STREAM)
        self._subscriptions.clear()

        if connections:
            logger.info("Closed %d relay connection(s)", len(connections))

    # -------------------------------------------------------------------------
    # Publish / subscribe
    # -------------------------------------------------------------------------

    async def publish(self, event: NostrEvent) -> int:
        """
        Send a signed event to every connected relay.

        Returns:
            Number of relays the event was written to.

        Raises:
            NotConnectedError: No relay is connected, or every write failed.
        """
        if not self._connections:
            raise NotConnectedError("Not connected to any relay")

        frame = ["EVENT", event.to_dict()]
        results = await asyncio.gather(*(self._send(conn, frame) for conn in list(self._connections.values())))
        sent = sum(1 for ok in results if ok)
        if sent == 0:
            raise NotConnectedError("Event could not be written to any relay")

        self._stats["events_published"] += 1
        logger.debug("Published event %s kind=%d to %d relay(s)", event.id, event.kind, sent)
        return sent

    async def open_subscription(self, sub_id: str, event_filter: EventFilter) -> asyncio.Queue[NostrEvent | None]:
        """
        Register a subscription and send REQ to every connected relay.

        Raises:
            NotConnectedError: No relay is connected.
        """
        if not self._connections:
            raise NotConnectedError("Not connected to any relay")

        queue: asyncio.Queue[NostrEvent | None] = asyncio.Queue(maxsize=self.queue_size)
        self._subscriptions[sub_id] = (event_filter, queue)
        frame = ["REQ", sub_id, event_filter.to_wire()]
        await asyncio.gather(*(self._send(conn, frame) for conn in list(self._connections.values())))
        return queue

    async def close_subscription(self, sub_id: str) -> None:
        if self._subscriptions.pop(sub_id, None) is None:
            return
        frame = ["CLOSE", sub_id]
        await asyncio.gather(*(self._send(conn, frame) for conn in list(self._connections.values())))

    async def _send(self, conn: RelayConnection, frame: list[Any]) -> bool:
        try:
            await conn.websocket.send_str(json.dumps(frame))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.warning("Send to relay %s failed: %s", conn.url, e)
            return False
        if frame[0] == "EVENT":
            conn.events_sent += 1
        return True

    # -------------------------------------------------------------------------
    # Inbound frames
    # -------------------------------------------------------------------------

    async def _read_loop(self, conn: RelayConnection) -> None:
        try:
            async for msg in conn.websocket:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    conn.touch()
                    try:
                        self._handle_frame(conn, msg.data)
                    except (ValueError, TypeError, OverflowError, RecursionError) as e:
                        self._stats["malformed_frames"] += 1
                        logger.warning("Dropping unprocessable frame from %s: %s", conn.url, e)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        finally:
            if self._connections.get(conn.url) is conn:
                del self._connections[conn.url]
                self._stats["disconnects"] += 1
                logger.warning("Relay %s disconnected", conn.url)
                await conn.session.close()

    def _handle_frame(self, conn: RelayConnection, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, RecursionError):
            self._stats["malformed_frames"] += 1
            logger.debug("Non-JSON frame from %s", conn.url)
            return
        if not isinstance(frame, list) or not frame:
            self._stats["malformed_frames"] += 1
            return

        frame_type = frame[0]
        if frame_type == "EVENT" and len(frame) >= 3:
            self._handle_event(conn, frame[1], frame[2])
        elif frame_type == "OK" and len(frame) >= 3:
            if frame[2] is True:
                conn.ok_accepted += 1
            else:
                conn.ok_rejected += 1
                message = frame[3] if len(frame) > 3 else ""
                logger.warning("Relay %s rejected event %s: %s", conn.url, frame[1], message)
        elif frame_type == "EOSE" and len(frame) >= 2:
            logger.debug("End of stored events for %s on %s", frame[1], conn.url)
        elif frame_type == "NOTICE":
            conn.notices += 1
            logger.info("Notice from %s: %s", conn.url, frame[1] if len(frame) > 1 else "")
        elif frame_type == "CLOSED" and len(frame) >= 2:
            logger.warning(
                "Relay %s closed subscription %s: %s",
                conn.url,
                frame[1],
                frame[2] if len(frame) > 2 else "",
            )
        else:
            self._stats["malformed_frames"] += 1

    def _handle_event(self, conn: RelayConnection, sub_id: Any, data: Any) -> None:
        entry = self._subscriptions.get(sub_id) if isinstance(sub_id, str) else None
        if entry is None:
            return
        if not isinstance(data, dict):
            self._stats["malformed_frames"] += 1
            return
        try:
            event = NostrEvent.from_dict(data)
        except ValueError as e:
            self._stats["malformed_frames"] += 1
            logger.debug("Malformed event from %s: %s", conn.url, e)
            return

        conn.events_received += 1
        self._stats["events_received"] += 1
        self._offer(entry[1], event)

    @staticmethod
    def _offer(queue: asyncio.Queue[NostrEvent | None], item: NostrEvent | None) -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Subscription queue full; dropping event")
