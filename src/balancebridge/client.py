"""
BalanceBridge client: pairing, relay connection and lookups in one object.

Example::

    async with create_bridge_client(data_dir="./data") as client:
        result = await client.lookup("bc1q...")
        print(result.confirmed_balance)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import aclosing
from pathlib import Path
from typing import Any

from .config import BridgeConfig
from .crypto import KeyPair, decrypt_from, encrypt_for
from .errors import BridgeError, NotConnectedError, NotPairedError, PayloadEncryptionError
from .events import EventFilter, NostrEvent
from .identity import IdentityStore
from .pairing import PairingRecord, PairingStore, decode_pairing_payload
from .protocol import HELLO_MESSAGE, PUBKEY_TAG, BitcoinLookupResult
from .relay.subscriptions import SubscriptionRouter
from .relay.transport import RelayTransport
from .rpc.correlator import RequestCorrelator, RequestHandle

logger = logging.getLogger(__name__)


class BridgeClient:
    """
    Client side of a BalanceBridge pairing.

    Owns the relay transport for the lifetime between ``start()`` and
    ``stop()``. The pairing record read at ``start()`` is handed to the
    correlator; re-pairing restarts the client against the new record.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        identity_store: IdentityStore | None = None,
        pairing_store: PairingStore | None = None,
        transport_factory: Callable[[], RelayTransport] | None = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.config.validate()
        self._identity_store = identity_store or IdentityStore(self.config.identity_path)
        # IdentityError here is fatal: the client cannot operate without a key.
        self.identity: KeyPair = self._identity_store.get()
        self.pairing_store = pairing_store or PairingStore(self.config.pairing_path)
        self._transport_factory = transport_factory or self._default_transport

        self._transport: RelayTransport | None = None
        self._router: SubscriptionRouter | None = None
        self._correlator: RequestCorrelator | None = None
        self._inbox_task: asyncio.Task[None] | None = None
        self._started_at: float | None = None

    def _default_transport(self) -> RelayTransport:
        return RelayTransport(
            connect_timeout=self.config.connect_timeout,
            heartbeat=self.config.heartbeat,
        )

    @property
    def is_running(self) -> bool:
        return self._correlator is not None

    @property
    def public_key(self) -> str:
        return self.identity.public_key_hex

    @property
    def router(self) -> SubscriptionRouter | None:
        return self._router

    @property
    def correlator(self) -> RequestCorrelator | None:
        return self._correlator

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> int:
        """
        Connect to the paired relays.

        Returns:
            Number of relays connected.

        Raises:
            NotPairedError: No pairing is stored.
            NoRelaysAvailableError: None of the pairing's relays connected.
        """
        if self._transport is not None:
            return len(self._transport.connected_relays)

        pairing = self.pairing_store.get()
        if pairing is None:
            raise NotPairedError("No pairing found, scan the node's pairing code first")

        transport = self._transport_factory()
        try:
            connected = await transport.connect(pairing.relays)
        except BridgeError:
            await transport.shutdown()
            raise

        router = SubscriptionRouter(transport, verify_signatures=self.config.verify_signatures)
        if self.config.diagnostics:
            router.add_observer(self._log_event)

        self._transport = transport
        self._router = router
        self._correlator = RequestCorrelator(transport, router, self.identity, pairing, self.config)
        self._started_at = time.time()
        logger.info("Connected to %d relay(s) as %s", connected, self.public_key)

        if not self.config.encrypt_payloads:
            logger.warning("Payload encryption is off; lookup queries are visible to relays")

        if self.config.send_hello:
            try:
                await self.send_hello()
            except BridgeError as e:
                logger.error("Failed to send hello event: %s", e)

        if self.config.diagnostics:
            self._inbox_task = asyncio.create_task(self._watch_inbox(pairing), name="bb-inbox")

        return connected

    async def stop(self) -> None:
        """Cancel in-flight lookups and close every relay connection."""
        correlator, self._correlator = self._correlator, None
        transport, self._transport = self._transport, None
        inbox, self._inbox_task = self._inbox_task, None
        self._router = None

        if correlator is not None:
            await correlator.close()
        if inbox is not None:
            inbox.cancel()
            await asyncio.gather(inbox, return_exceptions=True)
        if transport is not None:
            await transport.shutdown()
        self._started_at = None

    async def __aenter__(self) -> BridgeClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Pairing
    # -------------------------------------------------------------------------

    async def pair(self, payload: str | bytes | PairingRecord) -> PairingRecord:
        """
        Install a new pairing, replacing any previous one.

        A running client is restarted against the new record.

        Raises:
            InvalidPairingPayloadError: The payload is rejected; the stored pairing is unchanged.
        """
        record = payload if isinstance(payload, PairingRecord) else decode_pairing_payload(payload)
        was_running = self.is_running
        self.pairing_store.set(record)
        logger.info("Paired with node %s", record.server_public_key)
        if was_running:
            await self.stop()
            await self.start()
        return record

    async def unpair(self) -> None:
        await self.stop()
        self.pairing_store.clear()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _require_correlator(self) -> RequestCorrelator:
        if self._correlator is None:
            raise NotConnectedError("Client is not started")
        return self._correlator

    def _require_transport(self) -> RelayTransport:
        if self._transport is None:
            raise NotConnectedError("Client is not started")
        return self._transport

    async def submit(self, query: str) -> RequestHandle:
        return await self._require_correlator().submit(query)

    async def lookup(self, query: str) -> BitcoinLookupResult:
        """
        Look up an address or extended public key on the paired node.

        Raises:
            BridgeError: One of the taxonomy errors; never a raw transport or parse error.
        """
        return await self._require_correlator().lookup(query)

    async def send_hello(self) -> NostrEvent:
        """Announce this client to the paired node."""
        correlator = self._require_correlator()
        transport = self._require_transport()
        server = correlator.pairing.server_public_key
        content = HELLO_MESSAGE
        if self.config.encrypt_payloads:
            content = encrypt_for(self.identity, server, content)
        event = NostrEvent.build(
            self.identity,
            kind=self.config.request_kind,
            content=content,
            tags=[[PUBKEY_TAG, server]],
        )
        await transport.publish(event)
        logger.info("Sent hello/paired event to %s", server)
        return event

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def _log_event(self, sub_id: str, event: NostrEvent) -> None:
        logger.debug("Event %s kind=%d from %s on %s", event.id, event.kind, event.pubkey, sub_id)

    async def _watch_inbox(self, pairing: PairingRecord) -> None:
        """Log direct messages the node sends to this client."""
        while self._router is not None:
            router = self._router
            inbox_filter = EventFilter(
                kinds=frozenset({self.config.request_kind}),
                since=int(time.time()) - self.config.clock_skew,
                authors=frozenset({pairing.server_public_key}),
                tags={PUBKEY_TAG: self.public_key},
            )
            try:
                async with aclosing(router.subscribe(inbox_filter, self.config.subscription_window)) as events:
                    async for event in events:
                        logger.info("Received message from %s: %s", event.pubkey, self._read_message(event))
            except NotConnectedError:
                logger.warning("Inbox watcher stopped: not connected")
                return

    def _read_message(self, event: NostrEvent) -> str:
        try:
            return decrypt_from(self.identity, event.pubkey, event.content)
        except PayloadEncryptionError:
            return event.content

    def get_status(self) -> dict[str, Any]:
        pairing = self.pairing_store.get()
        status: dict[str, Any] = {
            "public_key": self.public_key,
            "paired": pairing is not None,
            "running": self.is_running,
            "started_at": self._started_at,
        }
        if pairing is not None:
            status["pairing"] = pairing.to_dict()
        if self._transport is not None:
            status["transport"] = self._transport.get_stats()
        if self._correlator is not None:
            status["requests"] = self._correlator.get_stats()
        return status


def create_bridge_client(
    data_dir: str | Path | None = None,
    **overrides: Any,
) -> BridgeClient:
    """
    Create a client from environment defaults plus keyword overrides.

    Args:
        data_dir: Where the identity and pairing files live
        **overrides: Any ``BridgeConfig`` field
    """
    config = BridgeConfig.from_env()
    values = config.to_dict()
    values.update(overrides)
    if data_dir is not None:
        values["data_dir"] = Path(data_dir)
    return BridgeClient(BridgeConfig.from_dict(values))
