"""
Tests for the command-line entry point.
"""

import json
from unittest.mock import patch

import pytest
from conftest import FakeNode, FakeRelayTransport, ok_response

from balancebridge.cli import build_arg_parser, build_config, format_result, main
from balancebridge.crypto import generate_keypair
from balancebridge.protocol import BitcoinLookupResult, TransactionSummary


@pytest.fixture
def node_keys():
    return generate_keypair()


@pytest.fixture
def payload(node_keys):
    return json.dumps({"nodePubkey": node_keys.public_key_hex, "relays": ["wss://nos.lol"]})


def run(tmp_path, *args):
    return main(["--data-dir", str(tmp_path), *args])


class TestArguments:
    def test_build_config_from_flags(self, tmp_path):
        args = build_arg_parser().parse_args(
            ["--data-dir", str(tmp_path), "--timeout", "4", "--encrypt", "lookup", "bc1q"]
        )

        config = build_config(args)

        assert config.data_dir == tmp_path
        assert config.request_timeout == 4.0
        assert config.encrypt_payloads is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_arg_parser().parse_args([])


class TestFormatResult:
    def test_plain_text(self):
        result = BitcoinLookupResult(
            confirmed_balance=150000,
            unconfirmed_balance=2500,
            transactions=(TransactionSummary(txid="aa" * 32),),
        )

        assert format_result(result).splitlines() == [
            "Confirmed: 150000 sats",
            "Unconfirmed: 2500 sats",
            "Transactions: 1",
            "  " + "aa" * 32,
        ]


class TestCommands:
    def test_identity_is_stable(self, tmp_path, capsys):
        assert run(tmp_path, "identity") == 0
        first = capsys.readouterr().out.strip()
        assert run(tmp_path, "identity") == 0
        second = capsys.readouterr().out.strip()

        assert len(first) == 64
        assert first == second

    def test_pair_show_unpair(self, tmp_path, capsys, payload, node_keys):
        assert run(tmp_path, "pair", payload) == 0
        assert node_keys.public_key_hex in capsys.readouterr().out

        assert run(tmp_path, "show") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["paired"] is True
        assert status["pairing"]["nodePubkey"] == node_keys.public_key_hex

        assert run(tmp_path, "unpair") == 0
        capsys.readouterr()
        assert run(tmp_path, "show") == 0
        assert json.loads(capsys.readouterr().out)["paired"] is False

    def test_pair_from_file(self, tmp_path, capsys, payload):
        source = tmp_path / "pairing-code.json"
        source.write_text(payload, encoding="utf-8")

        assert run(tmp_path / "data", "pair", f"@{source}") == 0

    def test_invalid_pairing_payload(self, tmp_path, capsys):
        assert run(tmp_path, "pair", '{"nodePubkey": "ab"}') == 1

        assert capsys.readouterr().err.startswith("Error:")

    def test_missing_payload_file(self, tmp_path, capsys):
        assert run(tmp_path, "pair", f"@{tmp_path / 'missing.json'}") == 1

    def test_lookup_without_pairing(self, tmp_path, capsys):
        assert run(tmp_path, "lookup", "bc1q") == 1

        assert "No pairing found" in capsys.readouterr().err

    def test_lookup(self, tmp_path, capsys, payload, node_keys):
        assert run(tmp_path, "pair", payload) == 0
        capsys.readouterr()
        transport = FakeRelayTransport()
        FakeNode(transport, node_keys).auto_reply(lambda request: ok_response(150000, 0, ["aa" * 32]))

        with patch("balancebridge.client.RelayTransport", lambda **kwargs: transport):
            assert run(tmp_path, "lookup", "bc1qexample", "--json") == 0

        output = json.loads(capsys.readouterr().out)
        assert output["confirmed_balance"] == 150000
        assert output["transactions"][0]["txid"] == "aa" * 32
        assert transport.shutdown_calls == 1
