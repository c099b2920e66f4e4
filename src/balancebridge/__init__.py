"""
BalanceBridge - Bitcoin balance lookups against a paired node over Nostr relays.

This package turns the relay network's broadcast publish/subscribe model
into request/response calls with correlation ids, deadlines and exactly
one outcome per request.
"""

__version__ = "0.1.0"

from balancebridge.client import BridgeClient, create_bridge_client
from balancebridge.config import (
    DEFAULT_RELAYS,
    REQUEST_KIND,
    RESPONSE_KIND,
    BridgeConfig,
    ConfigError,
)
from balancebridge.crypto import (
    KeyPair,
    decrypt_from,
    encrypt_for,
    generate_keypair,
    get_conversation_key,
    nip44_decrypt,
    nip44_encrypt,
    schnorr_sign,
    schnorr_verify,
)
from balancebridge.decoder import decode_response, parse_envelope
from balancebridge.errors import (
    BridgeError,
    EmptyResultError,
    IdentityError,
    InvalidPairingPayloadError,
    MalformedResponseError,
    NoRelaysAvailableError,
    NotConnectedError,
    NotPairedError,
    PayloadEncryptionError,
    PublishError,
    RequestCancelledError,
    RequestTimeoutError,
    ResponseError,
    ServerError,
    TransportError,
    UnexpectedStatusError,
)
from balancebridge.events import EventFilter, NostrEvent, compute_event_id
from balancebridge.identity import IdentityStore
from balancebridge.pairing import PairingRecord, PairingStore, decode_pairing_payload
from balancebridge.protocol import (
    BitcoinLookupResult,
    LookupRequest,
    ResponseEnvelope,
    TransactionSummary,
)
from balancebridge.relay import RelayConnection, RelayTransport, SubscriptionRouter
from balancebridge.rpc import PendingRequest, RequestCorrelator, RequestHandle, RequestState

__all__ = [
    "__version__",
    # Client
    "BridgeClient",
    "create_bridge_client",
    # Config
    "BridgeConfig",
    "ConfigError",
    "DEFAULT_RELAYS",
    "REQUEST_KIND",
    "RESPONSE_KIND",
    # Crypto
    "KeyPair",
    "generate_keypair",
    "schnorr_sign",
    "schnorr_verify",
    "get_conversation_key",
    "nip44_encrypt",
    "nip44_decrypt",
    "encrypt_for",
    "decrypt_from",
    # Events
    "NostrEvent",
    "EventFilter",
    "compute_event_id",
    # Identity / pairing
    "IdentityStore",
    "PairingRecord",
    "PairingStore",
    "decode_pairing_payload",
    # Protocol
    "LookupRequest",
    "BitcoinLookupResult",
    "TransactionSummary",
    "ResponseEnvelope",
    "decode_response",
    "parse_envelope",
    # Relay
    "RelayConnection",
    "RelayTransport",
    "SubscriptionRouter",
    # RPC
    "RequestCorrelator",
    "RequestHandle",
    "PendingRequest",
    "RequestState",
    # Errors
    "BridgeError",
    "TransportError",
    "NoRelaysAvailableError",
    "NotConnectedError",
    "PublishError",
    "RequestTimeoutError",
    "RequestCancelledError",
    "ResponseError",
    "MalformedResponseError",
    "EmptyResultError",
    "UnexpectedStatusError",
    "ServerError",
    "InvalidPairingPayloadError",
    "NotPairedError",
    "IdentityError",
    "PayloadEncryptionError",
]
