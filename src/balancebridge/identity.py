"""
Client identity: the persistent keypair that signs every event.

The node recognises the client only by this key. Losing the secret half
means re-pairing.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from .crypto import KeyPair, generate_keypair
from .errors import IdentityError
from .storage import atomic_write_text

logger = logging.getLogger(__name__)


class IdentityStore:
    """Loads the keypair from ``path`` or generates and persists a new one."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._keys: KeyPair | None = None
        self._lock = threading.Lock()

    def get(self) -> KeyPair:
        """
        Return the stable keypair, creating it on first call.

        Raises:
            IdentityError: If the key file cannot be read, parsed or written.
        """
        with self._lock:
            if self._keys is None:
                self._keys = self._load_or_create()
            return self._keys

    def _load_or_create(self) -> KeyPair:
        if self.path.exists():
            try:
                secret_hex = self.path.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise IdentityError(f"Failed to read identity file {self.path}: {e}") from e
            try:
                keys = KeyPair.from_private_hex(secret_hex)
            except ValueError as e:
                raise IdentityError(f"Invalid secret key in {self.path}: {e}") from e
            logger.info("Loaded persisted Nostr pubkey: %s", keys.public_key_hex)
            return keys

        keys = generate_keypair()
        try:
            atomic_write_text(self.path, keys.private_key_hex + "\n")
        except OSError as e:
            raise IdentityError(f"Failed to persist identity to {self.path}: {e}") from e
        logger.info("Generated new Nostr pubkey (persisted): %s", keys.public_key_hex)
        return keys
