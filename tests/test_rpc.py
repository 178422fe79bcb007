# MIT License
# Copyright (c) 2025 Hashborn

"""Node RPC: signed calls, error mapping and read endpoints."""

import pytest
from fastapi.testclient import TestClient
from proofmarket.market.rpc import api
from proofmarket.protocol.config.params import ESCROW_ADDRESS, STAKE_VAULT_ADDRESS
from proofmarket.protocol.crypto.addresses import address_from_pubkey
from proofmarket.protocol.crypto.hash import sha256
from proofmarket.protocol.crypto.keys import public_key_from_private
from proofmarket.protocol.types.call import SignedCall
from proofmarket.protocol.types.common import Role
from tests.helpers import ADMIN, OUTPUT_HASH, PROGRAM_ID, valid_receipt


class Account:
    """Deterministic secp256k1 account for signing calls."""

    def __init__(self, label: str):
        self.priv = sha256(f"rpc-account/{label}".encode())
        self.pub = public_key_from_private(self.priv)
        self.address = address_from_pubkey(self.pub)

    def call(self, method: str, params: dict, nonce: int) -> dict:
        call = SignedCall(method=method, caller=self.address, params=params, nonce=nonce, pub_key=self.pub.hex())
        call.sign(self.priv)
        return call.model_dump()


@pytest.fixture
def client(market):
    api.market = market
    yield TestClient(api.app)
    api.market = None


@pytest.fixture
def alice(market):
    acct = Account("alice")
    market.token.mint(acct.address, 1_000)
    return acct


@pytest.fixture
def bob(market):
    acct = Account("bob")
    market.token.mint(acct.address, 1_000)
    return acct


def send(client, account, method, params):
    nonce = client.get(f"/nonce/{account.address}").json()["nonce"]
    return client.post("/call", json=account.call(method, params, nonce))


def test_root_and_status(client, market):
    assert client.get("/").json()["message"] == "ProofMarket Node RPC"

    status = client.get("/status").json()
    assert status["network_id"] == "test"
    assert status["lifecycle_mode"] == "single_phase"
    assert status["escrow_address"] == ESCROW_ADDRESS
    assert status["min_provider_stake"] == 500


def test_uninitialized_node(market):
    api.market = None
    resp = TestClient(api.app).get("/status")
    assert resp.status_code == 503


def test_full_job_over_rpc(client, market, alice, bob):
    resp = send(client, alice, "approve", {"spender": ESCROW_ADDRESS, "amount": 200})
    assert resp.status_code == 200
    assert resp.json()["result"] is True

    deadline = market.clock() + 3600
    resp = send(client, alice, "create_job", {
        "data_ref": "bafy-inputs", "amount": 200, "deadline": deadline, "program_id": PROGRAM_ID.hex(),
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "committed"
    job_id = body["result"]

    receipt = client.get(f"/call/{body['call_id']}/receipt").json()
    assert receipt["status"] == "committed"
    assert receipt["method"] == "create_job"
    assert receipt["result"] == job_id

    send(client, bob, "approve", {"spender": STAKE_VAULT_ADDRESS, "amount": 500})
    assert send(client, bob, "stake", {"amount": 500}).status_code == 200
    resp = send(client, bob, "accept_job", {"job_id": job_id})
    assert resp.json()["result"]["status"] == "ACCEPTED"

    resp = send(client, bob, "submit_proof_and_claim", {
        "job_id": job_id,
        "proof": valid_receipt().hex(),
        "public_output_hash": OUTPUT_HASH.hex(),
        "result_ref": "bafy-result",
    })
    assert resp.status_code == 200
    assert resp.json()["result"]["status"] == "COMPLETED"

    job = client.get(f"/job/{job_id}").json()
    assert job["status"] == "COMPLETED"
    assert job["result_ref"] == "bafy-result"

    balance = client.get(f"/balance/{bob.address}").json()
    assert balance["balance"] == str(1_000 - 500 + 200)
    assert balance["nonce"] == 4

    provider = client.get(f"/provider/{bob.address}").json()
    assert provider["successful_jobs"] == 1
    assert provider["success_rate"] == 1.0
    assert provider["eligible"] is True

    jobs = client.get("/jobs", params={"status": "COMPLETED"}).json()
    assert jobs["count"] == 1


def test_error_kinds_map_to_status(client, market, alice):
    # validation
    resp = send(client, alice, "create_job", {"data_ref": "x", "amount": 0, "deadline": market.clock() + 10})
    assert resp.status_code == 400
    assert resp.json()["code"] == "EscrowAmountZero"
    assert "call_id" in resp.json()

    # authorization
    resp = send(client, alice, "set_min_provider_stake", {"amount": 1})
    assert resp.status_code == 403
    assert resp.json()["details"]["required_role"] == "ADMIN"

    # not found
    assert client.get("/job/99").status_code == 404
    assert send(client, alice, "cancel_job", {"job_id": 99}).status_code == 404

    # external: no allowance for the escrow pull
    resp = send(client, alice, "create_job", {"data_ref": "x", "amount": 5, "deadline": market.clock() + 10})
    assert resp.status_code == 502
    assert resp.json()["code"] == "TokenTransferFailed"


def test_reverted_call_has_receipt(client, alice):
    resp = send(client, alice, "withdraw", {"amount": 1})
    assert resp.status_code == 404

    receipt = client.get(f"/call/{resp.json()['call_id']}/receipt").json()
    assert receipt["status"] == "reverted"
    assert receipt["error"]["code"] == "ProviderNotFound"


def test_nonce_is_spent_on_revert(client, market, alice):
    send(client, alice, "withdraw", {"amount": 1})
    assert market.get_nonce(alice.address) == 1

    # Replaying the same nonce is rejected
    resp = client.post("/call", json=alice.call("withdraw", {"amount": 1}, 0))
    assert resp.status_code == 409
    assert resp.json()["code"] == "InvalidNonce"
    assert resp.json()["details"] == {"expected": 1, "got": 0}


def test_bad_signature_rejected(client, market, alice, bob):
    payload = alice.call("approve", {"spender": ESCROW_ADDRESS, "amount": 1}, 0)
    payload["params"]["amount"] = 1_000
    resp = client.post("/call", json=payload)
    assert resp.status_code == 403
    assert resp.json()["code"] == "InvalidSignature"

    # Signed by bob on alice's behalf
    forged = bob.call("approve", {"spender": ESCROW_ADDRESS, "amount": 1}, 0)
    forged["caller"] = alice.address
    assert client.post("/call", json=forged).status_code == 403

    assert market.get_nonce(alice.address) == 0
    assert market.token.allowance(alice.address, ESCROW_ADDRESS) == 0


def test_unknown_method_rejected(client, alice):
    resp = client.post("/call", json=alice.call("mint", {"amount": 1}, 0))
    assert resp.status_code == 403


def test_malformed_params(client, alice):
    resp = send(client, alice, "stake", {})
    assert resp.status_code == 400


def test_admin_calls(client, market):
    admin = Account("admin")
    market.grant_role(ADMIN, Role.ADMIN, admin.address)

    resp = send(client, admin, "grant_role", {"role": "SLASHER", "account": admin.address})
    assert resp.json()["result"] is True
    assert market.has_role(Role.SLASHER, admin.address)

    assert send(client, admin, "set_min_provider_stake", {"amount": 750}).status_code == 200
    assert client.get("/status").json()["min_provider_stake"] == 750


def test_events_endpoint(client, market, alice):
    send(client, alice, "approve", {"spender": ESCROW_ADDRESS, "amount": 10})
    send(client, alice, "create_job", {"data_ref": "x", "amount": 10, "deadline": market.clock() + 60})

    events = client.get("/events", params={"event_type": "JobCreated"}).json()["events"]
    assert len(events) == 1
    assert events[0]["data"]["client"] == alice.address


def test_metrics_endpoint(client, market, alice):
    send(client, alice, "approve", {"spender": ESCROW_ADDRESS, "amount": 10})
    send(client, alice, "create_job", {"data_ref": "x", "amount": 10, "deadline": market.clock() + 60})

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "proofmarket_escrow_balance 10.0" in resp.text
    assert 'proofmarket_jobs{status="CREATED"} 1.0' in resp.text
