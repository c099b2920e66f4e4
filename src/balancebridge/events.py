"""
Nostr event and filter models (NIP-01).

``NostrEvent`` is the signed envelope every request and response travels
in. ``EventFilter`` selects events for a subscription; relays only index
single-letter tags, so multi-letter constraints such as ``req`` are
enforced locally by ``EventFilter.matches``.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .crypto import KeyPair, schnorr_sign, schnorr_verify


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """SHA-256 of the canonical NIP-01 serialization, hex encoded."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class NostrEvent:
    """A signed Nostr event."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...]
    content: str
    sig: str

    @classmethod
    def build(
        cls,
        keys: KeyPair,
        kind: int,
        content: str,
        tags: Iterable[Iterable[str]] = (),
        created_at: int | None = None,
    ) -> NostrEvent:
        """Create and sign an event with ``keys``."""
        tag_list = [list(tag) for tag in tags]
        created_at = int(time.time()) if created_at is None else created_at
        pubkey = keys.public_key_hex
        event_id = compute_event_id(pubkey, created_at, kind, tag_list, content)
        sig = schnorr_sign(keys.private_key, bytes.fromhex(event_id))
        return cls(
            id=event_id,
            pubkey=pubkey,
            created_at=created_at,
            kind=kind,
            tags=tuple(tuple(tag) for tag in tag_list),
            content=content,
            sig=sig.hex(),
        )

    def compute_id(self) -> str:
        return compute_event_id(
            self.pubkey,
            self.created_at,
            self.kind,
            [list(tag) for tag in self.tags],
            self.content,
        )

    def verify(self) -> bool:
        """Check that the id matches the content and the signature is valid."""
        if self.compute_id() != self.id:
            return False
        try:
            return schnorr_verify(
                bytes.fromhex(self.pubkey),
                bytes.fromhex(self.id),
                bytes.fromhex(self.sig),
            )
        except ValueError:
            return False

    def tag_values(self, name: str) -> list[str]:
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def tag_value(self, name: str) -> str | None:
        """First value of tag ``name``, or None."""
        values = self.tag_values(name)
        return values[0] if values else None

    def has_tag(self, name: str, value: str) -> bool:
        return value in self.tag_values(name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NostrEvent:
        """
        Parse a relay-supplied event.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        try:
            tags = data["tags"]
            if not isinstance(tags, list) or not all(isinstance(tag, list) for tag in tags):
                raise ValueError("tags must be a list of lists")
            event = cls(
                id=str(data["id"]),
                pubkey=str(data["pubkey"]),
                created_at=int(data["created_at"]),
                kind=int(data["kind"]),
                tags=tuple(tuple(str(item) for item in tag) for tag in tags),
                content=str(data["content"]),
                sig=str(data["sig"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"malformed event: {e}") from e
        return event


@dataclass(frozen=True)
class EventFilter:
    """Immutable subscription filter: kinds, time lower bound, authors and tags."""

    kinds: frozenset[int] = frozenset()
    since: int | None = None
    authors: frozenset[str] = frozenset()
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kinds", frozenset(self.kinds))
        object.__setattr__(self, "authors", frozenset(self.authors))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    def __hash__(self) -> int:
        return hash((self.kinds, self.since, self.authors, tuple(sorted(self.tags.items()))))

    def matches(self, event: NostrEvent) -> bool:
        if self.kinds and event.kind not in self.kinds:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.authors and event.pubkey not in self.authors:
            return False
        return all(event.has_tag(name, value) for name, value in self.tags.items())

    def to_wire(self) -> dict[str, Any]:
        """NIP-01 REQ filter; only single-letter tags are sent to relays."""
        wire: dict[str, Any] = {}
        if self.kinds:
            wire["kinds"] = sorted(self.kinds)
        if self.authors:
            wire["authors"] = sorted(self.authors)
        if self.since is not None:
            wire["since"] = self.since
        for name, value in sorted(self.tags.items()):
            if len(name) == 1:
                wire[f"#{name}"] = [value]
        return wire
