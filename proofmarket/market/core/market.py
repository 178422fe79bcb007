# MIT License
# Copyright (c) 2025 Hashborn

from typing import Any, Callable, Dict, Iterable, List, Optional, Set
import time
import logging
import os
import json
import itertools
import threading
from ...protocol.types.common import JobStatus, Role, StakeMode, EventType
from ...protocol.types.job import Job
from ...protocol.types.provider import ProviderAccount
from ...protocol.types.call import SignedCall, CALL_METHODS
from ...protocol.types.errors import (
    DeadlinePassed,
    InvalidNonce,
    InvalidSignature,
    MarketError,
    ReentrantCall,
)
from ...protocol.crypto.keys import verify
from ...protocol.crypto.addresses import address_from_pubkey
from ...protocol.config.params import CURRENT_NETWORK, ESCROW_ADDRESS, STAKE_VAULT_ADDRESS, MarketConfig
from ..storage.db import StorageDB
from ..observability.metrics import record_call
from .state import MarketState, MarketParams
from .events import EventBus
from .receipts import CallReceiptStore
from .token import InMemoryTokenLedger, PersistentTokenLedger, TokenLedger
from .verifier import CommitmentVerifier, ProofVerifier
from .access import AccessPolicy
from .stake import StakeLedger
from .registry import JobRegistry
from .settlement import ProofGatedSettlement

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


class Marketplace:
    """
    Serialized, atomic-per-call entry point for every marketplace operation.

    Each public method runs through _execute: the state is cloned, the
    operation runs against the clone, and only a successful operation is
    persisted, swapped in and has its events published. Any exception drops
    the clone with its buffered events.
    """

    def __init__(self, db_path: str,
                 config: Optional[MarketConfig] = None,
                 token: Optional[TokenLedger] = None,
                 native: Optional[TokenLedger] = None,
                 verifier: Optional[ProofVerifier] = None,
                 clock: Optional[Clock] = None,
                 event_bus: Optional[EventBus] = None,
                 persist_tokens: bool = False):
        self.db = StorageDB(db_path)
        self._lock = threading.RLock()
        self.config = config or CURRENT_NETWORK
        self.clock = clock or system_clock
        self.events = event_bus or EventBus()
        self.receipts = CallReceiptStore()

        self.token = token or self._default_ledger(self.config.denom.upper(), True, persist_tokens)
        if self.config.stake_mode == StakeMode.NATIVE:
            stake_asset = native or self._default_ledger("native", False, persist_tokens)
        else:
            stake_asset = self.token

        self.access = AccessPolicy()
        self.stake = StakeLedger(STAKE_VAULT_ADDRESS, stake_asset, self.config.stake_mode, self.access)
        self.registry = JobRegistry(ESCROW_ADDRESS, self.token, self.access, self.config)
        self.settlement = ProofGatedSettlement(self.registry)

        self.state = MarketState.load(self.db, MarketParams(min_provider_stake=self.config.min_provider_stake))
        if self.state.params.verifier_enabled:
            self.state.verifier = verifier or CommitmentVerifier(version=self.config.verifier_version)
        if self.state.params.stake_ledger_enabled:
            self.state.stake_ledger = self.stake

        # Transaction state of the call in progress; nested calls join it
        self._tx_state: Optional[MarketState] = None
        self._busy: Set[str] = set()
        self._call_ids = itertools.count(1)
        self.last_call_id: Optional[str] = None

        self.genesis_path = os.path.join(os.path.dirname(os.path.abspath(db_path)), "genesis.json")
        if not self.db.get_state("meta:genesis"):
            self._apply_genesis()

    def _default_ledger(self, symbol: str, require_allowance: bool, persist: bool) -> TokenLedger:
        # The node keeps token balances in the market database
        if persist:
            return PersistentTokenLedger(self.db, symbol=symbol, require_allowance=require_allowance)
        return InMemoryTokenLedger(symbol=symbol, require_allowance=require_allowance)

    def _stake_ledger(self, state: Optional[MarketState] = None) -> StakeLedger:
        """The stake ledger wired to the registry, or the market's own one while unwired."""
        state = state or self._tx_state or self.state
        return state.stake_ledger or self.stake

    @property
    def stake_asset(self) -> TokenLedger:
        return self._stake_ledger().asset

    @property
    def stake_vault_address(self) -> str:
        return self._stake_ledger().vault_address

    def _token_ledgers(self) -> List[TokenLedger]:
        ledgers: List[TokenLedger] = []
        for ledger in (self.token, self.stake.asset, self.stake_asset):
            if all(ledger is not seen for seen in ledgers):
                ledgers.append(ledger)
        return ledgers

    def close(self):
        self.db.close()

    # --- Transaction machinery ---

    def _next_call_id(self) -> str:
        return f"{os.getpid():x}-{int(time.time() * 1000):x}-{next(self._call_ids)}"

    def _execute(self, method: str, caller: str, resources: Iterable[str], fn: Callable[[MarketState, int], Any]):
        resources = list(resources)
        with self._lock:
            for resource in resources:
                if resource in self._busy:
                    logger.warning(f"{method} by {caller} rejected: {resource} already in use")
                    raise ReentrantCall(resource)

            if self._tx_state is not None:
                return self._execute_nested(resources, fn)

            call_id = self._next_call_id()
            self.receipts.begin(call_id, method, caller)
            tmp_state = self.state.clone()
            now = self.clock()
            ledgers = self._token_ledgers()
            snapshots = [(ledger, ledger.snapshot()) for ledger in ledgers if hasattr(ledger, "snapshot")]
            held = [ledger for ledger in ledgers if hasattr(ledger, "hold")]
            for ledger in held:
                ledger.hold()
            self._tx_state = tmp_state
            self._busy.update(resources)
            try:
                result = fn(tmp_state, now)
                events = tmp_state.drain_events()
                token_items: Dict[str, Optional[str]] = {}
                for ledger in held:
                    token_items.update(ledger.state_items())
                tmp_state.persist(call_id, events, now, token_items)
            except Exception as e:
                # Token moves of the failed call are undone with its state
                for ledger, snapshot in snapshots:
                    ledger.restore(snapshot)
                self.receipts.mark_reverted(call_id, e)
                if isinstance(e, MarketError):
                    e.call_id = call_id
                record_call(method, "reverted")
                logger.warning(f"{method} by {caller} reverted: {e}")
                raise
            finally:
                for ledger in held:
                    ledger.release()
                self._tx_state = None
                self._busy.difference_update(resources)

            self.state = tmp_state
            self.last_call_id = call_id
            self.receipts.mark_committed(call_id, _receipt_value(result), len(events))
            record_call(method, "committed")
            logger.info(f"{method} by {caller} committed ({len(events)} events)")

            for event_type, data in events:
                self.events.emit(event_type, **data)
            return result

    def _execute_nested(self, resources: List[str], fn: Callable[[MarketState, int], Any]):
        """A call made while another is in progress (e.g. from a transfer hook)."""
        outer = self._tx_state
        inner = outer.clone()
        self._tx_state = inner
        self._busy.update(resources)
        try:
            result = fn(inner, self.clock())
        finally:
            self._tx_state = outer
            self._busy.difference_update(resources)
        outer.absorb(inner)
        return result

    def _provider_resource(self, address: str) -> str:
        return f"provider:{self.stake_vault_address}:{address}"

    # --- Genesis ---

    def bootstrap(self, admin: str, roles: Optional[Dict[str, List[str]]] = None,
                  slash_recipient: Optional[str] = None):
        """Grants the initial roles. The escrow custody always receives RATER."""
        def apply(state: MarketState, now: int):
            grants = [(Role.ADMIN, admin), (Role.RATER, ESCROW_ADDRESS)]
            for role_name, members in (roles or {}).items():
                grants.extend((Role(role_name), member) for member in members)
            for role, account in grants:
                if state.add_role_member(role, account):
                    state.emit(EventType.ROLE_GRANTED, role=role.value, account=account, by="genesis")
            if slash_recipient is not None:
                state.update_params(slash_recipient=slash_recipient)
                state.emit(EventType.PARAMETER_CHANGED, name="slash_recipient", old=None, new=slash_recipient)

        self._execute("bootstrap", "genesis", ["admin"], apply)
        logger.info(f"Market bootstrapped with admin {admin}")

    def _apply_genesis(self):
        """Loads token allocation and role grants from genesis.json if it exists."""
        if not os.path.exists(self.genesis_path):
            logger.warning("No genesis.json found. Market has no admin until bootstrap().")
            return

        with open(self.genesis_path, "r") as f:
            data = json.load(f)

        for address, amount in data.get("alloc", {}).items():
            if hasattr(self.token, "mint"):
                self.token.mint(address, int(amount))
        for address, amount in data.get("native_alloc", {}).items():
            if self.stake_asset is not self.token and hasattr(self.stake_asset, "mint"):
                self.stake_asset.mint(address, int(amount))

        admin = data.get("admin")
        if admin:
            self.bootstrap(admin, roles=data.get("roles"), slash_recipient=data.get("slash_recipient"))
        self.db.set_state("meta:genesis", str(self.clock()))
        logger.info(f"Applied genesis allocation to {len(data.get('alloc', {}))} accounts.")

    # --- Stake Ledger ---

    def stake_tokens(self, caller: str, amount: int) -> ProviderAccount:
        return self._execute("stake", caller, [self._provider_resource(caller)],
                             lambda s, now: self._stake_ledger(s).stake(s, caller, amount))

    def withdraw(self, caller: str, amount: int) -> ProviderAccount:
        return self._execute("withdraw", caller, [self._provider_resource(caller)],
                             lambda s, now: self._stake_ledger(s).withdraw(s, caller, amount))

    def slash(self, caller: str, provider: str, amount: int) -> int:
        return self._execute("slash", caller, [self._provider_resource(provider)],
                             lambda s, now: self._stake_ledger(s).slash(s, caller, provider, amount))

    def rate(self, caller: str, provider: str, success: bool) -> ProviderAccount:
        return self._execute("rate", caller, [self._provider_resource(provider)],
                             lambda s, now: self._stake_ledger(s).rate(s, caller, provider, success))

    def get_provider(self, provider: str) -> ProviderAccount:
        with self._lock:
            return self._stake_ledger().get_info(self._tx_state or self.state, provider)

    def list_providers(self) -> List[ProviderAccount]:
        with self._lock:
            return [p.model_copy() for p in self.state.get_all_providers(self.stake_vault_address)]

    # --- Escrow and Job Registry ---

    def create_job(self, caller: str, data_ref: str, amount: int, deadline: int,
                   program_id: Optional[str] = None, max_gas: int = 0) -> int:
        return self._execute("create_job", caller, ["registry:ids"],
                             lambda s, now: self.registry.create_job(s, now, caller, data_ref, amount, deadline,
                                                                     program_id=program_id, max_gas=max_gas))

    def accept_job(self, caller: str, job_id: int) -> Job:
        return self._execute("accept_job", caller, [f"job:{job_id}"],
                             lambda s, now: self.registry.accept_job(s, now, caller, job_id))

    def cancel_job(self, caller: str, job_id: int) -> Job:
        return self._execute("cancel_job", caller, [f"job:{job_id}"],
                             lambda s, now: self.registry.cancel_job(s, now, caller, job_id))

    def submit_result(self, caller: str, job_id: int, result_ref: str,
                      proof: Optional[bytes] = None, public_output_hash: Optional[bytes] = None) -> Job:
        try:
            return self._execute("submit_result", caller, [f"job:{job_id}"],
                                 lambda s, now: self.registry.submit_result(s, now, caller, job_id, result_ref,
                                                                            self.settlement, proof, public_output_hash))
        except DeadlinePassed as e:
            self._record_late_penalty(e)
            raise

    def approve_result(self, caller: str, job_id: int) -> Job:
        return self._execute("approve_result", caller, [f"job:{job_id}"],
                             lambda s, now: self.registry.approve_result(s, now, caller, job_id, self.settlement))

    def get_job(self, job_id: int) -> Job:
        with self._lock:
            return self.registry.get_job(self._tx_state or self.state, job_id)

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[Job]:
        with self._lock:
            jobs = self.state.get_all_jobs()
        if status is not None:
            jobs = [j for j in jobs if j.status == JobStatus(status)]
        return [j.model_copy() for j in jobs]

    # --- Proof-Gated Settlement ---

    def submit_proof_and_claim(self, caller: str, job_id: int, proof: bytes,
                               public_output_hash: bytes, result_ref: str) -> Job:
        try:
            return self._execute("submit_proof_and_claim", caller, [f"job:{job_id}"],
                                 lambda s, now: self.settlement.submit_proof_and_claim(
                                     s, now, caller, job_id, proof, public_output_hash, result_ref))
        except DeadlinePassed as e:
            self._record_late_penalty(e)
            raise

    def _record_late_penalty(self, error: DeadlinePassed):
        """Commits the negative rating of a rejected late submission on its own."""
        if not self.config.persist_late_penalty or error.penalized is None or self._tx_state is not None:
            return
        provider = error.penalized
        ledger = self.state.stake_ledger
        if ledger is None:
            logger.warning(f"Late-submission penalty for {provider} dropped, stake ledger unwired")
            return
        try:
            self._execute("rate", ESCROW_ADDRESS, [self._provider_resource(provider)],
                          lambda s, now: ledger.rate(s, ESCROW_ADDRESS, provider, False))
        except MarketError as e:
            logger.error(f"Could not record late-submission penalty for {provider}: {e}")

    # --- Access policy ---

    def grant_role(self, caller: str, role: Role, account: str) -> bool:
        return self._execute("grant_role", caller, ["admin"],
                             lambda s, now: self.access.grant_role(s, caller, Role(role), account))

    def revoke_role(self, caller: str, role: Role, account: str) -> bool:
        return self._execute("revoke_role", caller, ["admin"],
                             lambda s, now: self.access.revoke_role(s, caller, Role(role), account))

    def has_role(self, role: Role, account: str) -> bool:
        with self._lock:
            return self.access.has_role(self.state, Role(role), account)

    def set_min_provider_stake(self, caller: str, amount: int):
        self._execute("set_min_provider_stake", caller, ["admin"],
                      lambda s, now: self.access.set_min_provider_stake(s, caller, amount))

    def set_slash_recipient(self, caller: str, recipient: Optional[str]):
        self._execute("set_slash_recipient", caller, ["admin"],
                      lambda s, now: self.access.set_slash_recipient(s, caller, recipient))

    def set_verifier(self, caller: str, verifier: Optional[ProofVerifier]):
        self._execute("set_verifier", caller, ["admin"],
                      lambda s, now: self.access.set_verifier(s, caller, verifier))

    def set_stake_ledger(self, caller: str, ledger: Optional[StakeLedger]):
        self._execute("set_stake_ledger", caller, ["admin"],
                      lambda s, now: self.access.set_stake_ledger(s, caller, ledger))

    # --- Token ledger passthrough ---

    def approve(self, caller: str, spender: str, amount: int, native: bool = False) -> bool:
        ledger = self.stake_asset if native else self.token
        return ledger.approve(caller, spender, amount)

    def balance_of(self, address: str, native: bool = False) -> int:
        ledger = self.stake_asset if native else self.token
        return ledger.balance_of(address)

    # --- Signed calls ---

    def get_nonce(self, address: str) -> int:
        with self._lock:
            return self.state.get_nonce(address)

    def execute_signed(self, call: SignedCall) -> Any:
        """Authenticates a SignedCall, consumes its nonce and dispatches it."""
        if call.method not in CALL_METHODS:
            raise InvalidSignature(f"unknown method {call.method}")
        try:
            pub = bytes.fromhex(call.pub_key)
            sig = bytes.fromhex(call.signature)
        except ValueError:
            raise InvalidSignature("malformed pub_key or signature")

        if address_from_pubkey(pub, prefix=self.config.bech32_prefix) != call.caller:
            raise InvalidSignature("public key does not match caller address")
        if not verify(bytes.fromhex(call.hash()), sig, pub):
            raise InvalidSignature("signature verification failed")

        def consume_nonce(state: MarketState, now: int):
            expected = state.get_nonce(call.caller)
            if call.nonce != expected:
                raise InvalidNonce(expected=expected, got=call.nonce)
            state.bump_nonce(call.caller)

        # The nonce is spent even if the dispatched call reverts
        self._execute("nonce", call.caller, [f"nonce:{call.caller}"], consume_nonce)
        return self.dispatch(call.method, call.caller, call.params)

    def dispatch(self, method: str, caller: str, params: Dict[str, Any]) -> Any:
        p = dict(params)
        if method == "stake":
            return self.stake_tokens(caller, int(p["amount"]))
        if method == "withdraw":
            return self.withdraw(caller, int(p["amount"]))
        if method == "slash":
            return self.slash(caller, p["provider"], int(p["amount"]))
        if method == "create_job":
            return self.create_job(caller, p["data_ref"], int(p["amount"]), int(p["deadline"]),
                                   program_id=p.get("program_id"), max_gas=int(p.get("max_gas", 0)))
        if method == "accept_job":
            return self.accept_job(caller, int(p["job_id"]))
        if method == "cancel_job":
            return self.cancel_job(caller, int(p["job_id"]))
        if method == "submit_proof_and_claim":
            return self.submit_proof_and_claim(caller, int(p["job_id"]), bytes.fromhex(p["proof"]),
                                               bytes.fromhex(p["public_output_hash"]), p["result_ref"])
        if method == "submit_result":
            proof = bytes.fromhex(p["proof"]) if p.get("proof") else None
            output = bytes.fromhex(p["public_output_hash"]) if p.get("public_output_hash") else None
            return self.submit_result(caller, int(p["job_id"]), p["result_ref"], proof, output)
        if method == "approve_result":
            return self.approve_result(caller, int(p["job_id"]))
        if method == "approve":
            return self.approve(caller, p["spender"], int(p["amount"]), native=bool(p.get("native", False)))
        if method == "set_min_provider_stake":
            return self.set_min_provider_stake(caller, int(p["amount"]))
        if method == "set_slash_recipient":
            return self.set_slash_recipient(caller, p.get("recipient"))
        if method == "grant_role":
            return self.grant_role(caller, Role(p["role"]), p["account"])
        if method == "revoke_role":
            return self.revoke_role(caller, Role(p["role"]), p["account"])
        raise InvalidSignature(f"unknown method {method}")

    # --- Introspection ---

    def status(self) -> Dict[str, Any]:
        with self._lock:
            state = self.state
            by_status = {s.value: 0 for s in JobStatus}
            for job in state.get_all_jobs():
                by_status[job.status.value] += 1
            return {
                "network_id": self.config.network_id,
                "lifecycle_mode": self.config.lifecycle_mode.value,
                "stake_mode": self.config.stake_mode.value,
                "min_provider_stake": state.params.min_provider_stake,
                "slash_recipient": state.params.slash_recipient,
                "verifier_wired": state.verifier is not None,
                "stake_ledger_wired": state.stake_ledger is not None,
                "escrow_address": ESCROW_ADDRESS,
                "stake_vault_address": self.stake_vault_address,
                "escrow_balance": self.token.balance_of(ESCROW_ADDRESS),
                "total_staked": self._stake_ledger(state).total_staked(state),
                "locked_slashed": self._stake_ledger(state).locked_slashed(state),
                "next_job_id": state.next_job_id,
                "jobs": by_status,
                "escrowed_total": state.get_counter("escrowed_total"),
                "paid_out_total": state.get_counter("paid_out_total"),
                "refunded_total": state.get_counter("refunded_total"),
            }


def _receipt_value(result: Any) -> Any:
    if isinstance(result, (Job, ProviderAccount)):
        return result.model_dump(mode="json")
    return result
