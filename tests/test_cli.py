# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import pytest
from fastapi.testclient import TestClient
from proofmarket.cli import main as cli
from proofmarket.cli.keystore import KeyStore
from proofmarket.market.rpc import api
from proofmarket.protocol.config.params import ESCROW_ADDRESS


def test_to_units():
    assert cli.to_units("1") == 10**18
    assert cli.to_units("1.5") == 15 * 10**17
    assert cli.to_units("0.000000000000000001") == 1
    with pytest.raises(argparse.ArgumentTypeError):
        cli.to_units("lots")


def test_fmt_units():
    assert cli.fmt_units(25 * 10**17) == "2.5 pmt"
    assert cli.fmt_units("0") == "0 pmt"


def test_keystore(tmp_path):
    ks = KeyStore(root_dir=str(tmp_path))
    created = ks.create_key("alice")
    assert created["address"].startswith("pm1")

    with pytest.raises(ValueError):
        ks.create_key("alice")
    with pytest.raises(ValueError):
        ks.import_key("bob", "abcd")
    with pytest.raises(ValueError):
        ks.import_key("bob", "not hex")

    imported = ks.import_key("bob", "11" * 32)
    assert ks.get_key("bob")["address"] == imported["address"]
    assert ks.get_key("carol") is None
    assert [k["name"] for k in ks.list_keys()] == ["alice", "bob"]
    assert "private_key" not in ks.list_keys()[0]
    assert (tmp_path / "alice.json").stat().st_mode & 0o777 == 0o600


@pytest.fixture
def wired_cli(market, tmp_path, monkeypatch):
    """Routes the CLI's HTTP calls into the RPC app over a test client."""
    api.market = market
    client = TestClient(api.app)
    monkeypatch.delenv("PM_NODE", raising=False)
    monkeypatch.setattr(cli.requests, "get", lambda url: client.get(url[len(cli.DEFAULT_NODE):]))
    monkeypatch.setattr(cli.requests, "post", lambda url, json: client.post(url[len(cli.DEFAULT_NODE):], json=json))
    ks = KeyStore(root_dir=str(tmp_path / "keys"))
    monkeypatch.setattr(cli, "KeyStore", lambda: ks)
    yield ks
    api.market = None


def test_tx_allow_signs_and_submits(wired_cli, market, capsys):
    key = wired_cli.create_key("alice")
    args = argparse.Namespace(node=None, from_name="alice", amount=300, vault=False, native=False)

    cli.cmd_tx_allow(args)

    assert "Success!" in capsys.readouterr().out
    assert market.token.allowance(key["address"], ESCROW_ADDRESS) == 300
    assert market.get_nonce(key["address"]) == 1


def test_tx_error_exits(wired_cli, market, capsys):
    wired_cli.create_key("alice")
    args = argparse.Namespace(node=None, from_name="alice", amount=1)

    with pytest.raises(SystemExit):
        cli.cmd_tx_withdraw(args)
    assert "ProviderNotFound" in capsys.readouterr().out


def test_tx_unknown_key_exits(wired_cli):
    args = argparse.Namespace(node=None, from_name="nobody", amount=1)
    with pytest.raises(SystemExit):
        cli.cmd_tx_stake(args)
