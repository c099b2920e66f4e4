"""
Tests for response decoding.
"""

import json

import pytest

from balancebridge.decoder import decode_response, parse_envelope, parse_result
from balancebridge.errors import (
    EmptyResultError,
    MalformedResponseError,
    ResponseError,
    ServerError,
    UnexpectedStatusError,
)
from balancebridge.protocol import BitcoinLookupResult, LookupRequest, TransactionSummary


def payload(**fields) -> str:
    return json.dumps({"type": "bitcoin_lookup_response", **fields})


class TestDecodeResponse:
    """Test status dispatch."""

    def test_ok_with_balances_and_transactions(self):
        result = decode_response(
            payload(
                status="ok",
                result={
                    "confirmed_balance": 150000,
                    "unconfirmed_balance": 2500,
                    "transactions": ["aa" * 32, "bb" * 32],
                },
            )
        )

        assert result == BitcoinLookupResult(
            confirmed_balance=150000,
            unconfirmed_balance=2500,
            transactions=(TransactionSummary(txid="aa" * 32), TransactionSummary(txid="bb" * 32)),
        )
        assert result.total_balance == 152500

    def test_ok_with_empty_result_object(self):
        """Missing fields default to zero balances and no transactions."""
        result = decode_response(payload(status="ok", result={}))

        assert result == BitcoinLookupResult()

    def test_ok_without_result(self):
        with pytest.raises(EmptyResultError, match="empty result"):
            decode_response(payload(status="ok"))

    def test_ok_with_null_result(self):
        with pytest.raises(EmptyResultError):
            decode_response(payload(status="ok", result=None))

    def test_server_error_carries_message(self):
        with pytest.raises(ServerError) as exc_info:
            decode_response(payload(status="error", error="address not found"))

        assert exc_info.value.message == "address not found"
        assert "address not found" in str(exc_info.value)

    def test_server_error_without_message(self):
        with pytest.raises(ServerError) as exc_info:
            decode_response(payload(status="error"))

        assert exc_info.value.message == "Unknown error"

    @pytest.mark.parametrize("status", ["pending", "", 1, None])
    def test_unexpected_status(self, status):
        with pytest.raises(UnexpectedStatusError):
            decode_response(payload(status=status, result={}))

    def test_accepts_bytes(self):
        body = payload(status="ok", result={"confirmed_balance": 1}).encode("utf-8")

        assert decode_response(body).confirmed_balance == 1

    def test_same_payload_same_outcome(self):
        body = payload(status="ok", result={"confirmed_balance": 7, "transactions": ["cc" * 32]})

        assert decode_response(body) == decode_response(body)

    def test_all_failures_are_response_errors(self):
        for body in ("nope", payload(status="ok"), payload(status="error"), payload(status="weird")):
            with pytest.raises(ResponseError):
                decode_response(body)


class TestMalformedPayloads:
    """Anything that is not a well-typed envelope."""

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            "",
            "[1, 2, 3]",
            '"ok"',
            json.dumps({"result": {}}),
            payload(status="ok", result=[1, 2]),
            payload(status="ok", result="150000"),
            payload(status="ok", result={"confirmed_balance": "150000"}),
            payload(status="ok", result={"unconfirmed_balance": 1.5}),
            payload(status="ok", result={"confirmed_balance": True}),
            payload(status="ok", result={"transactions": "aa"}),
        ],
    )
    def test_malformed(self, body):
        with pytest.raises(MalformedResponseError):
            decode_response(body)

    def test_invalid_utf8(self):
        with pytest.raises(MalformedResponseError, match="UTF-8"):
            decode_response(b"\xff\xfe{")


class TestParseResult:
    """Test result field handling."""

    def test_camel_case_fields_from_older_nodes(self):
        result = parse_result({"confirmedBalance": 10, "unconfirmedBalance": 5})

        assert result.confirmed_balance == 10
        assert result.unconfirmed_balance == 5

    def test_snake_case_wins_over_camel_case(self):
        result = parse_result({"confirmed_balance": 1, "confirmedBalance": 2})

        assert result.confirmed_balance == 1

    def test_null_balance_defaults_to_zero(self):
        assert parse_result({"confirmed_balance": None}).confirmed_balance == 0

    def test_detailed_transactions(self):
        result = parse_result(
            {
                "transactions": [
                    {"txid": "aa" * 32, "confirmations": 3, "amount": -1200, "timestamp": 1700000000},
                ]
            }
        )

        assert result.transactions == (
            TransactionSummary(txid="aa" * 32, confirmations=3, amount=-1200, timestamp=1700000000),
        )

    def test_unreadable_transactions_are_skipped(self):
        result = parse_result(
            {
                "transactions": [
                    "aa" * 32,
                    "",
                    42,
                    {"confirmations": 1},
                    {"txid": "bb" * 32, "amount": "lots"},
                    {"txid": "cc" * 32},
                ]
            }
        )

        assert [tx.txid for tx in result.transactions] == ["aa" * 32, "cc" * 32]

    def test_to_dict(self):
        result = parse_result({"confirmed_balance": 3, "transactions": ["dd" * 32]})

        assert result.to_dict() == {
            "confirmed_balance": 3,
            "unconfirmed_balance": 0,
            "transactions": [{"txid": "dd" * 32, "confirmations": 0, "amount": 0, "timestamp": 0}],
        }


class TestParseEnvelope:
    """Test envelope fields outside the result."""

    def test_request_id_and_error(self):
        envelope = parse_envelope(json.dumps({"status": "error", "error": "boom", "req": "abc"}))

        assert envelope.status == "error"
        assert envelope.error == "boom"
        assert envelope.request_id == "abc"
        assert not envelope.is_ok

    def test_non_string_error_is_dropped(self):
        envelope = parse_envelope(json.dumps({"status": "error", "error": {"code": 1}}))

        assert envelope.error is None


class TestLookupRequest:
    def test_wire_format(self):
        assert json.loads(LookupRequest(query="bc1qexample").to_json()) == {
            "type": "bitcoin_lookup",
            "query": "bc1qexample",
        }
