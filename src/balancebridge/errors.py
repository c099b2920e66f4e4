"""
BalanceBridge exceptions.

Every failure a caller of ``lookup`` can observe is one of these.
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base exception for BalanceBridge errors."""

    pass


# =============================================================================
# TRANSPORT
# =============================================================================


class TransportError(BridgeError):
    """Raised when the relay transport cannot carry an event."""

    pass


class NoRelaysAvailableError(TransportError):
    """Raised when none of the configured relays could be connected."""

    def __init__(self, failures: dict[str, str] | None = None) -> None:
        self.failures = dict(failures or {})
        if self.failures:
            detail = "; ".join(f"{url}: {reason}" for url, reason in self.failures.items())
            message = f"No relays available ({detail})"
        else:
            message = "No relays available"
        super().__init__(message)


class NotConnectedError(TransportError):
    """Raised when publishing or subscribing before any relay is connected."""

    pass


class PublishError(TransportError):
    """Raised when a request event could not be built or signed."""

    pass


# =============================================================================
# REQUEST LIFECYCLE
# =============================================================================


class RequestTimeoutError(BridgeError):
    """Raised when no matching response arrived before the deadline."""

    def __init__(self, correlation_id: str, timeout: float) -> None:
        self.correlation_id = correlation_id
        self.timeout = timeout
        super().__init__(f"No response from node within {timeout:g}s")


class RequestCancelledError(BridgeError):
    """Raised when a request is cancelled or the client shuts down."""

    def __init__(self, correlation_id: str, reason: str = "request cancelled") -> None:
        self.correlation_id = correlation_id
        self.reason = reason
        super().__init__(reason.capitalize())


# =============================================================================
# RESPONSE DECODING
# =============================================================================


class ResponseError(BridgeError):
    """Base for responses that arrived but cannot be turned into a result."""

    pass


class MalformedResponseError(ResponseError):
    """Raised when a response payload is not a valid envelope."""

    pass


class EmptyResultError(ResponseError):
    """Raised when an ``ok`` response carries no result."""

    def __init__(self) -> None:
        super().__init__("Node returned an empty result")


class UnexpectedStatusError(ResponseError):
    """Raised when a response carries an unknown status value."""

    def __init__(self, status: Any) -> None:
        self.status = status
        super().__init__(f"Unexpected response status: {status!r}")


class ServerError(ResponseError):
    """Raised when the node explicitly reports a failed lookup."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# =============================================================================
# PAIRING / IDENTITY
# =============================================================================


class InvalidPairingPayloadError(BridgeError):
    """Raised when a pairing payload or record fails validation."""

    pass


class NotPairedError(BridgeError):
    """Raised when an operation needs a pairing and none is stored."""

    pass


class IdentityError(BridgeError):
    """Raised when the client keypair cannot be loaded or persisted."""

    pass


class PayloadEncryptionError(BridgeError):
    """Raised when NIP-44 encryption or decryption fails."""

    pass
