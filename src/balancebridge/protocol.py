"""
BalanceBridge lookup protocol models.

Request content::

    {"type": "bitcoin_lookup", "query": "<address-or-extended-key>"}

Response content::

    {"status": "ok", "result": {"confirmed_balance": 5000,
                                "unconfirmed_balance": 0,
                                "transactions": ["<txid>", ...]}}
    {"status": "error", "error": "<message>"}

The correlation id travels in the event's ``req`` tag, never in the content.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

LOOKUP_REQUEST_TYPE = "bitcoin_lookup"
HELLO_MESSAGE = "hello / paired"

STATUS_OK = "ok"
STATUS_ERROR = "error"

#: Tag carrying the correlation id.
CORRELATION_TAG = "req"

#: Tag addressing a public key.
PUBKEY_TAG = "p"


@dataclass(frozen=True)
class LookupRequest:
    """A balance lookup for an address or extended public key."""

    query: str
    type: str = LOOKUP_REQUEST_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "query": self.query}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class TransactionSummary:
    """One transaction touching the looked-up address or key."""

    txid: str
    confirmations: int = 0
    amount: int = 0
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "txid": self.txid,
            "confirmations": self.confirmations,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class BitcoinLookupResult:
    """Balances in satoshis plus the related transactions."""

    confirmed_balance: int = 0
    unconfirmed_balance: int = 0
    transactions: tuple[TransactionSummary, ...] = field(default_factory=tuple)

    @property
    def total_balance(self) -> int:
        return self.confirmed_balance + self.unconfirmed_balance

    def to_dict(self) -> dict[str, Any]:
        return {
            "confirmed_balance": self.confirmed_balance,
            "unconfirmed_balance": self.unconfirmed_balance,
            "transactions": [tx.to_dict() for tx in self.transactions],
        }


@dataclass(frozen=True)
class ResponseEnvelope:
    """Decoded response content before status dispatch."""

    status: Any
    result: BitcoinLookupResult | None = None
    error: str | None = None
    request_id: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.status == STATUS_OK
