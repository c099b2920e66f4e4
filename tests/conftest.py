"""
Shared fixtures: an in-memory relay and a simulated node.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from balancebridge.config import REQUEST_KIND, RESPONSE_KIND, BridgeConfig
from balancebridge.crypto import KeyPair, generate_keypair
from balancebridge.errors import NoRelaysAvailableError, NotConnectedError
from balancebridge.events import EventFilter, NostrEvent
from balancebridge.pairing import PairingRecord
from balancebridge.relay.subscriptions import SubscriptionRouter
from balancebridge.rpc.correlator import RequestCorrelator

RELAYS = ("wss://relay.one", "wss://relay.two")


class FakeRelayTransport:
    """
    In-memory stand-in for RelayTransport.

    Behaves like a single store-and-forward relay: published and
    delivered events are stored, replayed to new subscriptions, and pushed
    to every open subscription regardless of filter (the router filters).
    With ``replay_stored=False`` it acts like a relay that kept only a
    newer replaceable event, so nothing is replayed.
    """

    def __init__(self, *, fail_connect: bool = False, replay_stored: bool = True) -> None:
        self.fail_connect = fail_connect
        self.replay_stored = replay_stored
        self.connected = False
        self.published: list[NostrEvent] = []
        self.stored: list[NostrEvent] = []
        self.subscriptions: dict[str, tuple[EventFilter, asyncio.Queue[NostrEvent | None]]] = {}
        self.closed_subscriptions: list[str] = []
        self.on_publish: Callable[[NostrEvent], None] | None = None
        self.publish_error: Exception | None = None
        self.shutdown_calls = 0

    @property
    def connected_relays(self) -> list[str]:
        return list(RELAYS) if self.connected else []

    async def connect(self, relays: Any) -> int:
        if self.fail_connect:
            raise NoRelaysAvailableError({url: "refused" for url in relays})
        self.connected = True
        return len(relays)

    async def publish(self, event: NostrEvent) -> int:
        if not self.connected:
            raise NotConnectedError("Not connected to any relay")
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append(event)
        self.stored.append(event)
        if self.on_publish is not None:
            self.on_publish(event)
        return len(RELAYS)

    async def open_subscription(self, sub_id: str, event_filter: EventFilter) -> asyncio.Queue[NostrEvent | None]:
        if not self.connected:
            raise NotConnectedError("Not connected to any relay")
        queue: asyncio.Queue[NostrEvent | None] = asyncio.Queue()
        for event in self.stored if self.replay_stored else ():
            if event_filter.matches(event):
                queue.put_nowait(event)
        self.subscriptions[sub_id] = (event_filter, queue)
        return queue

    async def close_subscription(self, sub_id: str) -> None:
        if self.subscriptions.pop(sub_id, None) is not None:
            self.closed_subscriptions.append(sub_id)

    def deliver(self, event: NostrEvent, copies: int = 1) -> None:
        """Store an event and push it to every open subscription ``copies`` times."""
        self.stored.append(event)
        for _ in range(copies):
            for _filter, queue in list(self.subscriptions.values()):
                queue.put_nowait(event)

    async def shutdown(self) -> None:
        self.shutdown_calls += 1
        self.connected = False
        for _filter, queue in self.subscriptions.values():
            queue.put_nowait(None)
        self.subscriptions.clear()

    def get_stats(self) -> dict[str, Any]:
        return {"connected": len(self.connected_relays), "subscriptions": len(self.subscriptions)}


class FakeNode:
    """Signs responses the way the home node does."""

    def __init__(self, transport: FakeRelayTransport, keys: KeyPair | None = None) -> None:
        self.transport = transport
        self.keys = keys or generate_keypair()
        self.requests: list[NostrEvent] = []

    @property
    def public_key(self) -> str:
        return self.keys.public_key_hex

    def respond(
        self,
        request: NostrEvent,
        content: dict[str, Any] | str,
        *,
        correlation_id: str | None = None,
    ) -> NostrEvent:
        body = content if isinstance(content, str) else json.dumps(content)
        return NostrEvent.build(
            self.keys,
            kind=RESPONSE_KIND,
            content=body,
            tags=[
                ["p", request.pubkey],
                ["p", self.public_key],
                ["req", correlation_id or request.tag_value("req") or ""],
            ],
        )

    def reply(self, request: NostrEvent, content: dict[str, Any] | str, copies: int = 1) -> NostrEvent:
        event = self.respond(request, content)
        self.transport.deliver(event, copies=copies)
        return event

    def auto_reply(self, make_content: Callable[[dict[str, Any]], dict[str, Any]]) -> None:
        """Answer every lookup request the transport publishes."""

        def handle(event: NostrEvent) -> None:
            if event.kind != REQUEST_KIND or event.tag_value("req") is None:
                return
            self.requests.append(event)
            self.reply(event, make_content(json.loads(event.content)))

        self.transport.on_publish = handle


def ok_response(confirmed: int = 0, unconfirmed: int = 0, transactions: list[Any] | None = None) -> dict[str, Any]:
    return {
        "type": "bitcoin_lookup_response",
        "status": "ok",
        "result": {
            "confirmed_balance": confirmed,
            "unconfirmed_balance": unconfirmed,
            "transactions": transactions or [],
        },
    }


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def client_keys():
    return generate_keypair()


@pytest.fixture
def transport():
    fake = FakeRelayTransport()
    fake.connected = True
    return fake


@pytest.fixture
def node(transport):
    return FakeNode(transport)


@pytest.fixture
def pairing(node):
    return PairingRecord(server_public_key=node.public_key, relays=RELAYS)


@pytest.fixture
def config(tmp_path):
    return BridgeConfig(data_dir=tmp_path, request_timeout=2.0, clock_skew=5)


@pytest.fixture
def router(transport):
    return SubscriptionRouter(transport)


@pytest.fixture
def correlator(transport, router, client_keys, pairing, config):
    return RequestCorrelator(transport, router, client_keys, pairing, config)
