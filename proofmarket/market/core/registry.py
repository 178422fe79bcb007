# MIT License
# Copyright (c) 2025 Hashborn

"""
Escrow & Job Registry.

Owns the job state machine and the escrowed funds for each job's lifetime.
The registry's custody account holds every job's escrow on the token ledger;
it leaves custody exactly once, either as payment to the provider
(COMPLETED) or as a refund to the client (CANCELLED). The status transition
is the single gate for both.

Two lifecycle shapes are available, fixed per market:

    single_phase: CREATED -> ACCEPTED -> COMPLETED        (submit_proof_and_claim)
    two_phase:    CREATED -> ACCEPTED -> RESULT_SUBMITTED -> COMPLETED
                                                          (submit_result, approve_result)

CREATED -> CANCELLED is always available to the client; in single-phase mode
an ACCEPTED job whose deadline has passed can be cancelled too.
"""

import logging
from typing import Optional
from ...protocol.config.params import MarketConfig
from ...protocol.crypto.hash import parse_hex32
from ...protocol.types.common import EventType, JobStatus, LifecycleMode
from ...protocol.types.job import Job
from ...protocol.types.errors import (
    DeadlineMustBeInFuture,
    DeadlinePassed,
    DeadlineTooFar,
    EscrowAmountZero,
    InvalidJobStatus,
    InvalidProgramId,
    JobAlreadyHasProvider,
    JobNotFound,
    LifecycleModeMismatch,
    OnlyAssignedProviderCanSubmit,
    OnlyClientCanApprove,
    OnlyClientCanCancel,
    ProviderNotRegisteredOrInsufficientStake,
    StakeLedgerNotConfigured,
    TokenTransferFailed,
)
from .access import AccessPolicy
from .state import MarketState
from .token import TokenLedger, safe_transfer, safe_transfer_from

logger = logging.getLogger(__name__)


class JobRegistry:
    def __init__(self, custody_address: str, token: TokenLedger, access: AccessPolicy, config: MarketConfig):
        self.custody_address = custody_address
        self.token = token
        self.access = access
        self.config = config

    @property
    def mode(self) -> LifecycleMode:
        return self.config.lifecycle_mode

    def require_mode(self, required: LifecycleMode):
        if self.mode != required:
            raise LifecycleModeMismatch(active=self.mode.value, required=required.value)

    def load(self, state: MarketState, job_id: int) -> Job:
        job = state.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def get_job(self, state: MarketState, job_id: int) -> Job:
        return self.load(state, job_id).model_copy()

    # --- Creation / acceptance / cancellation ---

    def create_job(self, state: MarketState, now: int, caller: str, data_ref: str, amount: int,
                   deadline: int, program_id: Optional[str] = None, max_gas: int = 0) -> int:
        if amount <= 0:
            raise EscrowAmountZero()
        if deadline <= now:
            raise DeadlineMustBeInFuture(deadline=deadline, now=now)
        if self.config.max_job_duration_sec and deadline > now + self.config.max_job_duration_sec:
            raise DeadlineTooFar(deadline=deadline, latest=now + self.config.max_job_duration_sec)
        if program_id is not None:
            try:
                program_id = parse_hex32(program_id).hex()
            except ValueError:
                raise InvalidProgramId(program_id)

        job = Job(
            id=state.allocate_job_id(),
            client=caller,
            data_ref=data_ref,
            escrowed_amount=amount,
            deadline=deadline,
            program_id=program_id,
            created_at=now,
            max_gas=max_gas,
        )
        state.set_job(job)
        state.add_counter("escrowed_total", amount)
        state.emit(
            EventType.JOB_CREATED,
            job_id=job.id,
            client=caller,
            data_ref=data_ref,
            amount=amount,
            deadline=deadline,
            program_id=program_id,
            max_gas=max_gas,
            created_at=now,
        )

        # Pull the escrow into custody; no job exists if this fails
        ok, reason = safe_transfer_from(self.token, self.custody_address, caller, self.custody_address, amount)
        if not ok:
            raise TokenTransferFailed(reason)

        logger.info(f"Job {job.id} created by {caller}: {amount} escrowed until {deadline}")
        return job.id

    def accept_job(self, state: MarketState, now: int, caller: str, job_id: int) -> Job:
        job = self.load(state, job_id)
        job.require_status(JobStatus.CREATED)
        if job.is_expired(now):
            raise DeadlinePassed(job.id, job.deadline, now)
        # Unreachable while the status check holds; kept as an explicit guard
        if job.provider is not None:
            raise JobAlreadyHasProvider(job.id, job.provider)

        ledger = state.stake_ledger
        if ledger is None:
            raise StakeLedgerNotConfigured()
        info = ledger.get_info(state, caller)
        required = state.params.min_provider_stake
        if not info.exists or info.stake_amount < required:
            raise ProviderNotRegisteredOrInsufficientStake(caller, info.stake_amount, required)

        job.provider = caller
        job.accepted_at = now
        job.transition(JobStatus.ACCEPTED)
        state.set_job(job)
        state.emit(EventType.JOB_ACCEPTED, job_id=job.id, provider=caller, accepted_at=now)
        logger.info(f"Job {job.id} accepted by {caller}")
        return job

    def cancel_job(self, state: MarketState, now: int, caller: str, job_id: int) -> Job:
        job = self.load(state, job_id)
        if caller != job.client:
            raise OnlyClientCanCancel(job.id, caller)

        abandoned = (
            job.status == JobStatus.ACCEPTED
            and self.mode == LifecycleMode.SINGLE_PHASE
            and job.is_expired(now)
        )
        if job.status != JobStatus.CREATED and not abandoned:
            raise InvalidJobStatus(job.id, job.status, JobStatus.CREATED)

        job.transition(JobStatus.CANCELLED)
        job.completed_at = now
        state.set_job(job)
        state.emit(EventType.JOB_CANCELLED, job_id=job.id, client=job.client, provider=job.provider,
                   abandoned=abandoned)
        self.refund_client(state, job)
        return job

    # --- Submission ---

    def check_submitter(self, job: Job, caller: str):
        if job.provider is None or job.provider != caller:
            raise OnlyAssignedProviderCanSubmit(job.id, caller, job.provider)

    def enforce_deadline(self, state: MarketState, job: Job, now: int):
        """A late submission costs the provider a negative rating, then fails."""
        if not job.is_expired(now):
            return
        penalized = None
        ledger = state.stake_ledger
        if ledger is not None:
            ledger.rate(state, self.custody_address, job.provider, False)
            penalized = job.provider
        else:
            logger.warning(f"Job {job.id}: late submission not rated, no stake ledger wired")
        raise DeadlinePassed(job.id, job.deadline, now, penalized=penalized)

    def submit_result(self, state: MarketState, now: int, caller: str, job_id: int, result_ref: str,
                      settlement, proof: Optional[bytes] = None,
                      public_output_hash: Optional[bytes] = None) -> Job:
        """
        Records a result for client approval.

        An attached proof is checked here, while the provider can still be
        refused; a job in RESULT_SUBMITTED can only be approved.
        """
        self.require_mode(LifecycleMode.TWO_PHASE)
        job = self.load(state, job_id)
        self.check_submitter(job, caller)
        job.require_status(JobStatus.ACCEPTED)
        self.enforce_deadline(state, job, now)
        if proof is not None:
            settlement.verify(state, job, proof, public_output_hash or b"", optional=True)

        job.result_ref = result_ref
        job.proof = proof.hex() if proof is not None else None
        job.public_output_hash = public_output_hash.hex() if public_output_hash is not None else None
        job.transition(JobStatus.RESULT_SUBMITTED)
        state.set_job(job)
        state.emit(EventType.RESULT_SUBMITTED, job_id=job.id, provider=caller, result_ref=result_ref,
                   has_proof=proof is not None)
        return job

    def approve_result(self, state: MarketState, now: int, caller: str, job_id: int, settlement) -> Job:
        self.require_mode(LifecycleMode.TWO_PHASE)
        job = self.load(state, job_id)
        if caller != job.client:
            raise OnlyClientCanApprove(job.id, caller)
        job.require_status(JobStatus.RESULT_SUBMITTED)
        return settlement.complete(state, now, job)

    # --- Funds ---

    def rate_provider(self, state: MarketState, provider: str, success: bool):
        ledger = state.stake_ledger
        if ledger is None:
            logger.warning(f"Provider {provider} not rated, no stake ledger wired")
            return
        ledger.rate(state, self.custody_address, provider, success)

    def release_payment(self, state: MarketState, job: Job):
        state.add_counter("paid_out_total", job.escrowed_amount)
        state.emit(EventType.PAYMENT_RELEASED, job_id=job.id, provider=job.provider, amount=job.escrowed_amount)
        ok, reason = safe_transfer(self.token, self.custody_address, job.provider, job.escrowed_amount)
        if not ok:
            raise TokenTransferFailed(reason)

    def refund_client(self, state: MarketState, job: Job):
        state.add_counter("refunded_total", job.escrowed_amount)
        state.emit(EventType.ESCROW_REFUNDED, job_id=job.id, client=job.client, amount=job.escrowed_amount)
        ok, reason = safe_transfer(self.token, self.custody_address, job.client, job.escrowed_amount)
        if not ok:
            raise TokenTransferFailed(reason)
        logger.info(f"Job {job.id} cancelled, {job.escrowed_amount} refunded to {job.client}")
