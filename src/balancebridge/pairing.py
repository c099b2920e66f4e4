"""
Pairing record and its persistent store.

The pairing payload is exchanged out of band (a QR code shown by the
node)::

    {"version": 1, "app": "umbrel-balancebridge", "nodePubkey": "<hex>",
     "relays": ["wss://...", ...], "nodeUrl": "<optional>"}

Exactly one record is active at a time; re-pairing replaces it wholesale.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .crypto import is_valid_public_key
from .errors import InvalidPairingPayloadError
from .storage import atomic_write_text, remove_file

logger = logging.getLogger(__name__)

PAIRING_VERSION = 1
APP_IDENTIFIER = "umbrel-balancebridge"


def is_public_key_hex(value: str) -> bool:
    """True for a 32-byte x-only secp256k1 public key in lowercase hex."""
    if len(value) != 64 or any(c not in "0123456789abcdef" for c in value):
        return False
    return is_valid_public_key(bytes.fromhex(value))


@dataclass(frozen=True)
class PairingRecord:
    """The node a client talks to and the relays that reach it."""

    server_public_key: str
    relays: tuple[str, ...]
    version: int = PAIRING_VERSION
    app: str = APP_IDENTIFIER
    node_url: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "server_public_key", (self.server_public_key or "").strip().lower())
        object.__setattr__(
            self,
            "relays",
            tuple(relay.strip() for relay in self.relays if isinstance(relay, str) and relay.strip()),
        )

    def validate(self) -> None:
        """
        Raises:
            InvalidPairingPayloadError: Server key is not a valid x-only public key, or no usable relay.
        """
        if not self.server_public_key:
            raise InvalidPairingPayloadError("Pairing has no node public key")
        if not is_public_key_hex(self.server_public_key):
            raise InvalidPairingPayloadError(f"Node public key is not a valid x-only public key: {self.server_public_key!r}")
        if not self.relays:
            raise InvalidPairingPayloadError("Pairing has no relays")

    @property
    def is_valid(self) -> bool:
        try:
            self.validate()
        except InvalidPairingPayloadError:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "app": self.app,
            "nodePubkey": self.server_public_key,
            "relays": list(self.relays),
        }
        if self.node_url:
            data["nodeUrl"] = self.node_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PairingRecord:
        """
        Build and validate a record from a decoded payload.

        Raises:
            InvalidPairingPayloadError: Missing ``nodePubkey`` or ``relays``, or wrong types.
        """
        node_pubkey = data.get("nodePubkey")
        relays = data.get("relays")
        if not isinstance(node_pubkey, str):
            raise InvalidPairingPayloadError("nodePubkey must be a string")
        if not isinstance(relays, list):
            raise InvalidPairingPayloadError("relays must be a list")

        version = data.get("version", PAIRING_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            raise InvalidPairingPayloadError("version must be an integer")
        app = data.get("app", APP_IDENTIFIER)
        node_url = data.get("nodeUrl")

        record = cls(
            server_public_key=node_pubkey,
            relays=tuple(relays),
            version=version,
            app=app if isinstance(app, str) else APP_IDENTIFIER,
            node_url=node_url if isinstance(node_url, str) and node_url.strip() else None,
        )
        record.validate()
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str | bytes) -> PairingRecord:
        return decode_pairing_payload(payload)


def decode_pairing_payload(payload: str | bytes) -> PairingRecord:
    """
    Decode a scanned pairing payload.

    Raises:
        InvalidPairingPayloadError: Not JSON, not an object, or fails validation.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidPairingPayloadError(f"Pairing payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidPairingPayloadError("Pairing payload is not a JSON object")
    return PairingRecord.from_dict(data)


class PairingStore:
    """
    File-backed holder of the single active pairing.

    Loaded lazily on first access. Writers replace the file atomically and
    then swap the cached record under a lock, so concurrent readers see
    either the old or the new record.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._record: PairingRecord | None = None
        self._loaded = False
        self._lock = threading.Lock()

    def get(self) -> PairingRecord | None:
        with self._lock:
            if not self._loaded:
                self._record = self._load()
                self._loaded = True
            return self._record

    def has_pairing(self) -> bool:
        return self.get() is not None

    def set(self, record: PairingRecord) -> None:
        """
        Validate, persist and install ``record``.

        Raises:
            InvalidPairingPayloadError: The record is invalid; nothing is changed.
            OSError: The record could not be written; nothing is changed.
        """
        record.validate()
        with self._lock:
            atomic_write_text(self.path, json.dumps(record.to_dict(), indent=2))
            self._record = record
            self._loaded = True
        logger.info("Stored pairing with node %s (%d relay(s))", record.server_public_key, len(record.relays))

    def clear(self) -> None:
        with self._lock:
            removed = remove_file(self.path)
            self._record = None
            self._loaded = True
        if removed:
            logger.info("Cleared pairing")

    def _load(self) -> PairingRecord | None:
        if not self.path.exists():
            return None
        try:
            return decode_pairing_payload(self.path.read_text(encoding="utf-8"))
        except (OSError, InvalidPairingPayloadError) as e:
            logger.warning("Ignoring unreadable pairing file %s: %s", self.path, e)
            return None
