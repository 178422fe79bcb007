# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import requests
import os
import time
from decimal import Decimal, InvalidOperation
from .keystore import KeyStore
from ..protocol.types.call import SignedCall
from ..protocol.config.params import DECIMALS, DENOM, ESCROW_ADDRESS, STAKE_VAULT_ADDRESS

DEFAULT_NODE = "http://localhost:8000"


def get_node_url(args):
    return args.node or os.environ.get("PM_NODE", DEFAULT_NODE)


def to_units(amount: str) -> int:
    """Converts a decimal token amount ("1.5") to minimal units."""
    try:
        return int(Decimal(amount) * 10**DECIMALS)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {amount}")


def fmt_units(units) -> str:
    return f"{Decimal(int(units)) / 10**DECIMALS} {DENOM}"


def _get(args, path: str):
    url = get_node_url(args)
    try:
        resp = requests.get(f"{url}{path}")
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()


# --- Keys Commands ---
def cmd_keys_add(args):
    ks = KeyStore()
    try:
        key = ks.create_key(args.name)
        print(f"Key '{args.name}' created.")
        print(f"Address: {key['address']}")
        print(f"Pubkey:  {key['public_key']}")
        print("Important: Private key saved unencrypted. Do not share!")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_keys_import(args):
    ks = KeyStore()
    try:
        key = ks.import_key(args.name, args.private_key)
        print(f"Key '{args.name}' imported.")
        print(f"Address: {key['address']}")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_keys_list(args):
    keys = KeyStore().list_keys()
    if not keys:
        print("No keys found.")
        return

    print(f"{'Name':<15} {'Address':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['address']:<45}")


def cmd_keys_show(args):
    key = KeyStore().get_key(args.name)
    if not key:
        print(f"Key '{args.name}' not found.")
        sys.exit(1)
    print(json.dumps({k: v for k, v in key.items() if k != 'private_key'}, indent=2))


# --- Query Commands ---
def cmd_query_balance(args):
    data = _get(args, f"/balance/{args.address}")
    print(f"Balance: {fmt_units(data['balance'])}")
    if "native_balance" in data:
        print(f"Native:  {fmt_units(data['native_balance'])}")
    print(f"Nonce: {data['nonce']}")


def cmd_query_job(args):
    print(json.dumps(_get(args, f"/job/{args.job_id}"), indent=2))


def cmd_query_jobs(args):
    path = f"/jobs?status={args.status}" if args.status else "/jobs"
    data = _get(args, path)
    print(f"{'ID':<6} {'Status':<18} {'Escrow':<28} {'Deadline':<12} {'Provider'}")
    print("-" * 110)
    for j in data["jobs"]:
        print(f"{j['id']:<6} {j['status']:<18} {fmt_units(j['escrowed_amount']):<28} "
              f"{j['deadline']:<12} {j['provider'] or '-'}")


def cmd_query_provider(args):
    data = _get(args, f"/provider/{args.address}")
    print(f"Provider: {data['address']}")
    print(f"Stake:    {fmt_units(data['stake_amount'])}")
    print(f"Jobs:     {data['successful_jobs']}/{data['jobs_done']} successful")
    print(f"Eligible: {data['eligible']}")


def cmd_query_receipt(args):
    print(json.dumps(_get(args, f"/call/{args.call_id}/receipt"), indent=2))


# --- Tx Commands ---
def send_call(args, method: str, params: dict):
    ks = KeyStore()
    key = ks.get_key(args.from_name)
    if not key:
        print(f"Key '{args.from_name}' not found.")
        sys.exit(1)

    url = get_node_url(args)
    nonce = _get(args, f"/nonce/{key['address']}")["nonce"]
    call = SignedCall(
        method=method,
        caller=key['address'],
        params=params,
        nonce=nonce,
        pub_key=key['public_key'],
    )
    call.sign(bytes.fromhex(key['private_key']))

    try:
        resp = requests.post(f"{url}/call", json=call.model_dump())
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)

    data = resp.json()
    if resp.status_code == 200:
        print(f"Success! CallId: {data['call_id']}")
        if data.get("result") is not None:
            print(json.dumps(data["result"], indent=2))
    else:
        print(f"Error ({resp.status_code}): {json.dumps(data, indent=2)}")
        sys.exit(1)


def _read_proof(args) -> str:
    if args.proof_file:
        with open(args.proof_file, "rb") as f:
            return f.read().hex()
    return args.proof or ""


def cmd_tx_allow(args):
    spender = STAKE_VAULT_ADDRESS if args.vault else ESCROW_ADDRESS
    send_call(args, "approve", {"spender": spender, "amount": args.amount, "native": args.native})


def cmd_tx_stake(args):
    send_call(args, "stake", {"amount": args.amount})


def cmd_tx_withdraw(args):
    send_call(args, "withdraw", {"amount": args.amount})


def cmd_tx_create_job(args):
    deadline = args.deadline or int(time.time()) + args.duration
    params = {"data_ref": args.data_ref, "amount": args.amount, "deadline": deadline, "max_gas": args.max_gas}
    if args.program_id:
        params["program_id"] = args.program_id
    send_call(args, "create_job", params)


def cmd_tx_accept(args):
    send_call(args, "accept_job", {"job_id": args.job_id})


def cmd_tx_cancel(args):
    send_call(args, "cancel_job", {"job_id": args.job_id})


def cmd_tx_submit_proof(args):
    send_call(args, "submit_proof_and_claim", {
        "job_id": args.job_id,
        "proof": _read_proof(args),
        "public_output_hash": args.output_hash,
        "result_ref": args.result_ref,
    })


def cmd_tx_submit_result(args):
    params = {"job_id": args.job_id, "result_ref": args.result_ref}
    proof = _read_proof(args)
    if proof:
        params["proof"] = proof
    if args.output_hash:
        params["public_output_hash"] = args.output_hash
    send_call(args, "submit_result", params)


def cmd_tx_approve(args):
    send_call(args, "approve_result", {"job_id": args.job_id})


def cmd_tx_slash(args):
    send_call(args, "slash", {"provider": args.provider, "amount": args.amount})


def cmd_tx_set_min_stake(args):
    send_call(args, "set_min_provider_stake", {"amount": args.amount})


def main():
    parser = argparse.ArgumentParser(prog="proofmarket-cli", description="ProofMarket Client CLI")
    parser.add_argument("--node", help="Node URL (default: http://localhost:8000)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # keys
    p_keys = subparsers.add_parser("keys", help="Manage keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", required=True, help="Hex private key")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    # query
    p_query = subparsers.add_parser("query", help="Query marketplace state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    pq_bal = sp_query.add_parser("balance", help="Get token balance")
    pq_bal.add_argument("address", help="Account address")

    pq_job = sp_query.add_parser("job", help="Get job by id")
    pq_job.add_argument("job_id", type=int, help="Job id")

    pq_jobs = sp_query.add_parser("jobs", help="List jobs")
    pq_jobs.add_argument("--status", help="Filter by status (CREATED, ACCEPTED, ...)")

    pq_prov = sp_query.add_parser("provider", help="Get provider stake and reputation")
    pq_prov.add_argument("address", help="Provider address")

    pq_rcpt = sp_query.add_parser("receipt", help="Get call receipt")
    pq_rcpt.add_argument("call_id", help="Call id")

    # tx
    p_tx = subparsers.add_parser("tx", help="Create and send signed calls")
    sp_tx = p_tx.add_subparsers(dest="subcommand")

    def tx_parser(name, help_text):
        p = sp_tx.add_parser(name, help=help_text)
        p.add_argument("--from", dest="from_name", required=True, help="Signer key name")
        return p

    pt_allow = tx_parser("allow", "Approve the escrow (or the stake vault) to pull tokens")
    pt_allow.add_argument("amount", type=to_units, help=f"Amount in {DENOM}")
    pt_allow.add_argument("--vault", action="store_true", help="Approve the stake vault instead of the escrow")
    pt_allow.add_argument("--native", action="store_true", help="Approve on the native-coin ledger")

    pt_stake = tx_parser("stake", "Stake collateral as a provider")
    pt_stake.add_argument("amount", type=to_units, help=f"Amount in {DENOM}")

    pt_withdraw = tx_parser("withdraw", "Withdraw provider collateral")
    pt_withdraw.add_argument("amount", type=to_units, help=f"Amount in {DENOM}")

    pt_create = tx_parser("create-job", "Escrow a payment and publish a job")
    pt_create.add_argument("data_ref", help="Content id of the job inputs")
    pt_create.add_argument("amount", type=to_units, help=f"Payment in {DENOM}")
    pt_create.add_argument("--deadline", type=int, help="Unix deadline (exclusive)")
    pt_create.add_argument("--duration", type=int, default=3600, help="Seconds from now if no --deadline")
    pt_create.add_argument("--program-id", help="Hex id of the verification program")
    pt_create.add_argument("--max-gas", type=int, default=0, help="Compute budget hint")

    pt_accept = tx_parser("accept", "Accept a job as a staked provider")
    pt_accept.add_argument("job_id", type=int)

    pt_cancel = tx_parser("cancel", "Cancel a job and refund the escrow")
    pt_cancel.add_argument("job_id", type=int)

    pt_proof = tx_parser("submit-proof", "Submit a proof and claim payment")
    pt_proof.add_argument("job_id", type=int)
    pt_proof.add_argument("--output-hash", required=True, help="Hex public output hash")
    pt_proof.add_argument("--result-ref", required=True, help="Content id of the result")
    pt_proof.add_argument("--proof", help="Hex proof bytes")
    pt_proof.add_argument("--proof-file", help="File holding the proof receipt")

    pt_result = tx_parser("submit-result", "Submit a result for client approval")
    pt_result.add_argument("job_id", type=int)
    pt_result.add_argument("--result-ref", required=True, help="Content id of the result")
    pt_result.add_argument("--output-hash", help="Hex public output hash")
    pt_result.add_argument("--proof", help="Hex proof bytes")
    pt_result.add_argument("--proof-file", help="File holding the proof receipt")

    pt_approve = tx_parser("approve", "Approve a submitted result and release payment")
    pt_approve.add_argument("job_id", type=int)

    pt_slash = tx_parser("slash", "Slash provider stake (slasher role)")
    pt_slash.add_argument("provider", help="Provider address")
    pt_slash.add_argument("amount", type=to_units, help=f"Amount in {DENOM}")

    pt_min = tx_parser("set-min-stake", "Set the minimum provider stake (admin role)")
    pt_min.add_argument("amount", type=to_units, help=f"Amount in {DENOM}")

    args = parser.parse_args()

    if args.command == "keys":
        handlers = {"add": cmd_keys_add, "import": cmd_keys_import, "list": cmd_keys_list, "show": cmd_keys_show}
        handler = handlers.get(args.subcommand)
        if handler:
            handler(args)
        else:
            p_keys.print_help()

    elif args.command == "query":
        handlers = {
            "balance": cmd_query_balance,
            "job": cmd_query_job,
            "jobs": cmd_query_jobs,
            "provider": cmd_query_provider,
            "receipt": cmd_query_receipt,
        }
        handler = handlers.get(args.subcommand)
        if handler:
            handler(args)
        else:
            p_query.print_help()

    elif args.command == "tx":
        handlers = {
            "allow": cmd_tx_allow,
            "stake": cmd_tx_stake,
            "withdraw": cmd_tx_withdraw,
            "create-job": cmd_tx_create_job,
            "accept": cmd_tx_accept,
            "cancel": cmd_tx_cancel,
            "submit-proof": cmd_tx_submit_proof,
            "submit-result": cmd_tx_submit_result,
            "approve": cmd_tx_approve,
            "slash": cmd_tx_slash,
            "set-min-stake": cmd_tx_set_min_stake,
        }
        handler = handlers.get(args.subcommand)
        if handler:
            handler(args)
        else:
            p_tx.print_help()

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
