"""
Request correlator: RPC over a broadcast relay network.

Each request gets a random correlation id carried in the ``req`` tag of
the request event; the node echoes it in the ``req`` tag of its
response. Responses are matched by exact lookup of that tag in the
pending map, so duplicates from overlapping subscriptions or several
relays are absorbed: the first match settles the request and later
copies find nothing to settle.

Lifecycle per request::

    CREATED -> SENT -> RESOLVED    (matching response, decoded or decode error)
                    -> EXPIRED     (deadline timer fired first)
            -> FAILED              (publish failed; no timer armed)
                    -> CANCELLED   (handle cancelled or correlator closed)
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Generator
from contextlib import aclosing
from typing import Any

from ..config import BridgeConfig
from ..crypto import KeyPair, decrypt_from, encrypt_for
from ..decoder import decode_response
from ..errors import (
    BridgeError,
    MalformedResponseError,
    PayloadEncryptionError,
    PublishError,
    RequestCancelledError,
    RequestTimeoutError,
)
from ..events import EventFilter, NostrEvent
from ..pairing import PairingRecord
from ..protocol import CORRELATION_TAG, PUBKEY_TAG, BitcoinLookupResult, LookupRequest
from ..relay.subscriptions import Subscription, SubscriptionRouter
from ..relay.transport import RelayTransport
from .pending import PendingRequest, RequestState

logger = logging.getLogger(__name__)


def new_correlation_id() -> str:
    """128-bit random token, hex encoded."""
    return secrets.token_hex(16)


class RequestHandle:
    """
    Caller's view of one in-flight request.

    Awaiting the handle (or ``result()``) returns the lookup result or
    raises one of the ``BridgeError`` subclasses. Cancelling the awaiting
    task cancels the request.
    """

    def __init__(self, correlator: RequestCorrelator, pending: PendingRequest) -> None:
        self._correlator = correlator
        self._pending = pending

    @property
    def correlation_id(self) -> str:
        return self._pending.correlation_id

    @property
    def state(self) -> RequestState:
        return self._pending.state

    def done(self) -> bool:
        return self._pending.future.done()

    def cancel(self) -> bool:
        """Cancel the request. Returns False if it had already settled."""
        return self._correlator.cancel(self.correlation_id)

    async def result(self) -> BitcoinLookupResult:
        try:
            return await asyncio.shield(self._pending.future)
        except asyncio.CancelledError:
            if not self._pending.future.done():
                self.cancel()
            raise

    def __await__(self) -> Generator[Any, None, BitcoinLookupResult]:
        return self.result().__await__()

    def __repr__(self) -> str:
        return f"RequestHandle({self.correlation_id}, state={self.state.value})"


class RequestCorrelator:
    """
    Turns publish/subscribe into request/response.

    The pending map is the only state shared between listener tasks and
    deadline timers. Every removal goes through ``_resolve``, which pops
    the entry and settles the future without suspending, so a response
    and a timeout racing for the same id settle it exactly once.

    Usage::

        correlator = RequestCorrelator(transport, router, identity, pairing, config)
        handle = await correlator.submit("bc1q...")
        result = await handle

        await correlator.close()
    """

    def __init__(
        self,
        transport: RelayTransport,
        router: SubscriptionRouter,
        identity: KeyPair,
        pairing: PairingRecord,
        config: BridgeConfig | None = None,
    ) -> None:
        pairing.validate()
        self._transport = transport
        self._router = router
        self._identity = identity
        self._pairing = pairing
        self.config = config or BridgeConfig()
        self._pending: dict[str, PendingRequest] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self._stats = {
            "submitted": 0,
            "resolved": 0,
            "expired": 0,
            "failed": 0,
            "cancelled": 0,
            "discarded_responses": 0,
        }

    @property
    def pairing(self) -> PairingRecord:
        return self._pairing

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, correlation_id: str) -> bool:
        return correlation_id in self._pending

    def get_pending(self) -> list[dict[str, Any]]:
        return [pending.to_dict() for pending in self._pending.values()]

    def get_stats(self) -> dict[str, int]:
        stats = dict(self._stats)
        stats["pending"] = len(self._pending)
        return stats

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def lookup(self, query: str) -> BitcoinLookupResult:
        """Submit a lookup and wait for its single outcome."""
        handle = await self.submit(query)
        return await handle.result()

    async def submit(self, query: str) -> RequestHandle:
        """
        Register, publish and start listening for one lookup.

        The returned handle always settles: with a result, a decode or
        server error, a timeout, a transport error, or a cancellation.

        Raises:
            ValueError: ``query`` is blank.
            RequestCancelledError: The correlator has been closed.
        """
        query = query.strip()
        if not query:
            raise ValueError("query must not be empty")
        if self._closed:
            raise RequestCancelledError("", "correlator is closed")

        loop = asyncio.get_running_loop()
        timeout = self.config.request_timeout
        now = time.time()
        pending = PendingRequest(
            correlation_id=new_correlation_id(),
            query=query,
            server_public_key=self._pairing.server_public_key,
            issued_at=now,
            deadline=now + timeout,
            future=loop.create_future(),
        )
        # Registered before any network action so no response can outrun it.
        self._pending[pending.correlation_id] = pending
        self._stats["submitted"] += 1
        handle = RequestHandle(self, pending)

        # The response subscription is live before the request leaves, so a
        # fast reply never depends on the relay replaying stored events.
        subscription: Subscription | None = None
        try:
            subscription = await self._router.open(self.response_filter(pending), timeout)
            pending.subscription = subscription
            event = self._build_request_event(pending)
            pending.relays_written = await self._transport.publish(event)
        except BridgeError as e:
            self._fail(pending.correlation_id, e)
        except (ValueError, TypeError) as e:
            self._fail(pending.correlation_id, PublishError(f"Could not sign request: {e}"))
        except asyncio.CancelledError:
            self.cancel(pending.correlation_id, "submit cancelled")
            if subscription is not None:
                await subscription.aclose()
            raise

        if pending.future.done():
            if subscription is not None:
                await subscription.aclose()
            return handle

        pending.event_id = event.id
        pending.state = RequestState.SENT
        pending.timer = loop.call_later(timeout, self._expire, pending.correlation_id)
        task = asyncio.create_task(
            self._listen(pending, subscription),
            name=f"bb-response:{pending.correlation_id[:8]}",
        )
        pending.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Sent lookup req=%s event=%s to %d relay(s)",
            pending.correlation_id,
            event.id,
            pending.relays_written,
        )
        return handle

    def _build_request_event(self, pending: PendingRequest) -> NostrEvent:
        content = LookupRequest(query=pending.query).to_json()
        if self.config.encrypt_payloads:
            content = encrypt_for(self._identity, pending.server_public_key, content)
        return NostrEvent.build(
            self._identity,
            kind=self.config.request_kind,
            content=content,
            tags=[
                [PUBKEY_TAG, pending.server_public_key],
                [CORRELATION_TAG, pending.correlation_id],
            ],
            created_at=int(pending.issued_at),
        )

    def response_filter(self, pending: PendingRequest) -> EventFilter:
        return EventFilter(
            kinds=frozenset({self.config.response_kind}),
            since=int(pending.issued_at) - self.config.clock_skew,
            authors=frozenset({pending.server_public_key}),
            tags={
                PUBKEY_TAG: self._identity.public_key_hex,
                CORRELATION_TAG: pending.correlation_id,
            },
        )

    # -------------------------------------------------------------------------
    # Matching
    # -------------------------------------------------------------------------

    async def _listen(self, pending: PendingRequest, subscription: Subscription) -> None:
        async with aclosing(subscription):
            async for event in subscription:
                self.handle_response_event(event)
                if pending.future.done():
                    return

    def handle_response_event(self, event: NostrEvent) -> bool:
        """
        Settle the request ``event`` answers, if it is still pending.

        Returns:
            True if this event settled a request; False if it was discarded.
        """
        correlation_id = event.tag_value(CORRELATION_TAG)
        pending = self._pending.get(correlation_id) if correlation_id else None
        if pending is None:
            self._stats["discarded_responses"] += 1
            logger.debug("Discarding response %s for unknown or settled request %s", event.id, correlation_id)
            return False
        if event.pubkey != pending.server_public_key:
            self._stats["discarded_responses"] += 1
            logger.warning("Ignoring response for req=%s from unexpected author %s", correlation_id, event.pubkey)
            return False

        try:
            result = decode_response(self._response_content(event, pending))
        except BridgeError as e:
            return self._resolve(pending.correlation_id, RequestState.RESOLVED, error=e)
        return self._resolve(pending.correlation_id, RequestState.RESOLVED, result=result)

    def _response_content(self, event: NostrEvent, pending: PendingRequest) -> str:
        if not self.config.encrypt_payloads or event.content.lstrip().startswith("{"):
            return event.content
        try:
            return decrypt_from(self._identity, pending.server_public_key, event.content)
        except PayloadEncryptionError as e:
            raise MalformedResponseError(f"Could not decrypt response: {e}") from e

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def _resolve(
        self,
        correlation_id: str,
        state: RequestState,
        *,
        result: BitcoinLookupResult | None = None,
        error: BaseException | None = None,
    ) -> bool:
        # Single authority for removal: pop and settle with no await in between.
        pending = self._pending.pop(correlation_id, None)
        if pending is None:
            return False

        pending.state = state
        pending.settled_at = time.time()
        if pending.timer is not None:
            pending.timer.cancel()
        if pending.subscription is not None:
            pending.subscription.stop()

        if not pending.future.done():
            if error is not None:
                pending.future.set_exception(error)
            else:
                pending.future.set_result(result)

        self._stats[state.value] += 1
        elapsed = pending.settled_at - pending.issued_at
        if error is None:
            logger.info("Lookup req=%s resolved in %.2fs", correlation_id, elapsed)
        else:
            logger.info("Lookup req=%s %s after %.2fs: %s", correlation_id, state.value, elapsed, error)
        return True

    def _expire(self, correlation_id: str) -> None:
        pending = self._pending.get(correlation_id)
        if pending is None:
            return
        self._resolve(
            correlation_id,
            RequestState.EXPIRED,
            error=RequestTimeoutError(correlation_id, pending.timeout),
        )

    def _fail(self, correlation_id: str, error: BridgeError) -> None:
        self._resolve(correlation_id, RequestState.FAILED, error=error)

    def cancel(self, correlation_id: str, reason: str = "request cancelled") -> bool:
        return self._resolve(
            correlation_id,
            RequestState.CANCELLED,
            error=RequestCancelledError(correlation_id, reason),
        )

    async def close(self) -> None:
        """Cancel every in-flight request and wait for its listener to finish."""
        self._closed = True
        for correlation_id in list(self._pending):
            self.cancel(correlation_id, "client shutting down")

        # Cancelling a request stops its subscription, so every listener ends.
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
