# MIT License
# Copyright (c) 2025 Hashborn

"""
Proof-gated settlement.

A provider claims the escrow of an accepted job by presenting a proof that
the verification oracle accepts for the job's program id and the claimed
public output hash. The steps are strictly ordered and run inside the
caller's transaction:

    1. re-validate job, binding, mode, status and deadline
    2. verify the proof (a False result and a raised fault are both invalid)
    3. COMPLETED, record result, rate the provider positively
    4. pay the provider (last step; a fault reverts 3 as well)
"""

import logging
from ...protocol.types.common import EventType, JobStatus, LifecycleMode
from ...protocol.types.job import Job
from ...protocol.types.errors import (
    VerifierNotConfigured,
    ZKProofVerificationFailed,
)
from .registry import JobRegistry
from .state import MarketState

logger = logging.getLogger(__name__)


class ProofGatedSettlement:
    def __init__(self, registry: JobRegistry):
        self.registry = registry

    def submit_proof_and_claim(self, state: MarketState, now: int, caller: str, job_id: int,
                               proof: bytes, public_output_hash: bytes, result_ref: str) -> Job:
        registry = self.registry
        job = registry.load(state, job_id)
        registry.check_submitter(job, caller)
        registry.require_mode(LifecycleMode.SINGLE_PHASE)
        job.require_status(JobStatus.ACCEPTED)
        registry.enforce_deadline(state, job, now)

        self.verify(state, job, proof, public_output_hash)

        job.result_ref = result_ref
        job.public_output_hash = public_output_hash.hex()
        return self.complete(state, now, job)

    def verify(self, state: MarketState, job: Job, proof: bytes, public_output_hash: bytes,
               optional: bool = False) -> bool:
        """
        Runs the oracle for a job. Raises ZKProofVerificationFailed unless it accepts.

        With optional=True an unwired oracle is not an error and the proof is
        simply not checked (returns False).
        """
        verifier = state.verifier
        if verifier is None:
            if optional:
                logger.info(f"Job {job.id}: no verifier wired, attached proof not checked")
                return False
            raise VerifierNotConfigured()

        if not job.program_id:
            raise ZKProofVerificationFailed(job.id, "job has no program id")

        try:
            valid = verifier.verify(proof, bytes.fromhex(job.program_id), public_output_hash)
        except Exception as e:
            logger.warning(f"Job {job.id}: verifier raised: {e}")
            raise ZKProofVerificationFailed(job.id, str(e))

        if not valid:
            logger.warning(f"Job {job.id}: proof rejected")
            raise ZKProofVerificationFailed(job.id, "proof rejected")
        return True

    def complete(self, state: MarketState, now: int, job: Job) -> Job:
        """Finalizes a verified (or approved) job and pays the provider."""
        job.transition(JobStatus.COMPLETED)
        job.completed_at = now
        state.set_job(job)
        state.emit(
            EventType.JOB_COMPLETED,
            job_id=job.id,
            provider=job.provider,
            result_ref=job.result_ref,
            public_output_hash=job.public_output_hash,
            completed_at=now,
        )

        self.registry.rate_provider(state, job.provider, True)
        self.registry.release_payment(state, job)

        logger.info(f"Job {job.id} completed, {job.escrowed_amount} paid to {job.provider}")
        return job
