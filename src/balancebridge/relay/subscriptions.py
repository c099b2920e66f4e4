"""
Subscription router: filters in, finite streams of matching events out.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

from ..events import EventFilter, NostrEvent
from .transport import RelayTransport

logger = logging.getLogger(__name__)

#: Diagnostic observer: called with (subscription id, event).
EventObserver = Callable[[str, NostrEvent], None]


class SubscriptionRouter:
    """
    Opens independent subscriptions on a ``RelayTransport``.

    Each ``subscribe`` call gets its own relay subscription id, so two
    subscriptions with overlapping filters both receive every matching
    event. Consumers must tolerate the same event arriving more than once
    across subscriptions; within one subscription an event id is yielded
    only once even when several relays deliver it.
    """

    def __init__(self, transport: RelayTransport, *, verify_signatures: bool = True) -> None:
        self._transport = transport
        self.verify_signatures = verify_signatures
        self._observers: list[EventObserver] = []
        self._active: set[str] = set()
        self._stats = {
            "subscriptions_opened": 0,
            "events_delivered": 0,
            "duplicates_dropped": 0,
            "invalid_signatures": 0,
            "filter_mismatches": 0,
        }

    @property
    def active_subscriptions(self) -> int:
        return len(self._active)

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    def add_observer(self, observer: EventObserver) -> None:
        """Attach a diagnostic observer that sees every delivered event."""
        self._observers.append(observer)

    def remove_observer(self, observer: EventObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def open(self, event_filter: EventFilter, max_duration: float) -> Subscription:
        """
        Send REQ now and return the live subscription.

        The caller owns the result and must ``aclose()`` it. Use this when
        the subscription has to be in place before something else happens,
        such as publishing the request a response will answer.

        Raises:
            NotConnectedError: No relay is connected.
        """
        loop = asyncio.get_running_loop()
        sub_id = secrets.token_hex(8)
        queue = await self._transport.open_subscription(sub_id, event_filter)
        self._active.add(sub_id)
        self._stats["subscriptions_opened"] += 1
        logger.debug("Opened subscription %s: %s", sub_id, event_filter.to_wire())
        return Subscription(self, sub_id, event_filter, queue, loop.time() + max_duration)

    async def subscribe(self, event_filter: EventFilter, max_duration: float) -> AsyncIterator[NostrEvent]:
        """
        Yield events matching ``event_filter`` for at most ``max_duration`` seconds.

        The relay subscription is opened on first iteration and closed when
        the stream ends: on timeout, transport shutdown, or ``aclose()``.
        Not restartable; open a new stream for a new logical subscription.

        Raises:
            NotConnectedError: No relay is connected when the stream starts.
        """
        subscription = await self.open(event_filter, max_duration)
        async with aclosing(subscription):
            async for event in subscription:
                yield event

    def _admit(self, subscription: Subscription, event: NostrEvent) -> bool:
        if event.id in subscription.seen:
            self._stats["duplicates_dropped"] += 1
            return False
        if not subscription.event_filter.matches(event):
            self._stats["filter_mismatches"] += 1
            return False
        if self.verify_signatures and not event.verify():
            self._stats["invalid_signatures"] += 1
            logger.debug("Dropping event %s with invalid signature", event.id)
            return False

        subscription.seen.add(event.id)
        self._stats["events_delivered"] += 1
        self._notify(subscription.sub_id, event)
        return True

    async def _release(self, sub_id: str) -> None:
        self._active.discard(sub_id)
        await self._transport.close_subscription(sub_id)
        logger.debug("Closed subscription %s", sub_id)

    def _notify(self, sub_id: str, event: NostrEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(sub_id, event)
            except Exception:
                logger.exception("Event observer failed on subscription %s", sub_id)


class Subscription:
    """
    One open relay subscription, iterated for its matching events.

    Iteration ends when the deadline passes, the transport shuts down, or
    ``stop()`` is called; the relay subscription is then closed. Within one
    subscription an event id is yielded only once.
    """

    def __init__(
        self,
        router: SubscriptionRouter,
        sub_id: str,
        event_filter: EventFilter,
        queue: asyncio.Queue[NostrEvent | None],
        deadline: float,
    ) -> None:
        self.sub_id = sub_id
        self.event_filter = event_filter
        self.seen: set[str] = set()
        self._router = router
        self._queue = queue
        self._deadline = deadline
        self._stopped = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def stop(self) -> None:
        """End iteration from synchronous code; the consumer closes the relay side."""
        if self._stopped:
            return
        self._stopped = True
        if not self._queue.full():
            self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> NostrEvent:
        loop = asyncio.get_running_loop()
        while not self._stopped:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except TimeoutError:
                break
            if event is None:
                break
            if self._router._admit(self, event):
                return event
        await self.aclose()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Send CLOSE to the relays. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._stopped = True
        await self._router._release(self.sub_id)
