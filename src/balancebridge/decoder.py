"""
Response decoding.

Pure functions: the same payload always yields the same result or the
same error type. Nothing here touches the network or the pending map.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .errors import (
    EmptyResultError,
    MalformedResponseError,
    ServerError,
    UnexpectedStatusError,
)
from .protocol import (
    STATUS_ERROR,
    STATUS_OK,
    BitcoinLookupResult,
    ResponseEnvelope,
    TransactionSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_SERVER_ERROR = "Unknown error"


def _int_field(data: dict[str, Any], *names: str) -> int:
    for name in names:
        if name not in data or data[name] is None:
            continue
        value = data[name]
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedResponseError(f"{name} must be an integer, got {type(value).__name__}")
        return value
    return 0


def _optional_int(entry: dict[str, Any], name: str) -> int | None:
    value = entry.get(name, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _parse_transaction(entry: Any) -> TransactionSummary | None:
    if isinstance(entry, str):
        return TransactionSummary(txid=entry) if entry else None
    if not isinstance(entry, dict):
        return None
    txid = entry.get("txid")
    if not isinstance(txid, str) or not txid:
        return None
    confirmations = _optional_int(entry, "confirmations")
    amount = _optional_int(entry, "amount")
    timestamp = _optional_int(entry, "timestamp")
    if confirmations is None or amount is None or timestamp is None:
        return None
    return TransactionSummary(txid=txid, confirmations=confirmations, amount=amount, timestamp=timestamp)


def parse_result(data: dict[str, Any]) -> BitcoinLookupResult:
    """
    Build a result from the ``result`` object.

    Missing balances default to 0 and a missing transaction list to empty.
    Individual transaction entries that cannot be read are skipped.
    """
    raw_transactions = data.get("transactions")
    if raw_transactions is None:
        raw_transactions = []
    if not isinstance(raw_transactions, list):
        raise MalformedResponseError("transactions must be a list")

    transactions = []
    for entry in raw_transactions:
        tx = _parse_transaction(entry)
        if tx is None:
            logger.debug("Skipping malformed transaction entry: %r", entry)
            continue
        transactions.append(tx)

    return BitcoinLookupResult(
        confirmed_balance=_int_field(data, "confirmed_balance", "confirmedBalance"),
        unconfirmed_balance=_int_field(data, "unconfirmed_balance", "unconfirmedBalance"),
        transactions=tuple(transactions),
    )


def parse_envelope(payload: bytes | str) -> ResponseEnvelope:
    """
    Parse response content into an envelope.

    Raises:
        MalformedResponseError: Not UTF-8, not JSON, not an object, no ``status``,
            or a ``result`` that is not a well-typed object.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedResponseError("Response is not valid UTF-8") from e

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError("Response is not a JSON object")
    if "status" not in data:
        raise MalformedResponseError("Response has no status field")

    raw_result = data.get("result")
    if raw_result is not None and not isinstance(raw_result, dict):
        raise MalformedResponseError("Response result is not an object")

    error = data.get("error")
    request_id = data.get("req")
    return ResponseEnvelope(
        status=data["status"],
        result=parse_result(raw_result) if raw_result is not None else None,
        error=error if isinstance(error, str) else None,
        request_id=request_id if isinstance(request_id, str) else None,
    )


def decode_response(payload: bytes | str) -> BitcoinLookupResult:
    """
    Decode response content into a lookup result.

    Raises:
        MalformedResponseError: The payload is not a valid envelope.
        EmptyResultError: ``status`` is ``ok`` but there is no result.
        ServerError: ``status`` is ``error``; carries the node's message.
        UnexpectedStatusError: Any other ``status`` value.
    """
    envelope = parse_envelope(payload)

    if envelope.status == STATUS_OK:
        if envelope.result is None:
            raise EmptyResultError()
        return envelope.result

    if envelope.status == STATUS_ERROR:
        raise ServerError(envelope.error or DEFAULT_SERVER_ERROR)

    raise UnexpectedStatusError(envelope.status)
