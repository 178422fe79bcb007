# MIT License
# Copyright (c) 2025 Hashborn

"""
Two-Phase Lifecycle Tests

ACCEPTED -> RESULT_SUBMITTED -> COMPLETED with client approval, and the
optional proof check on submission.
"""

import pytest
from proofmarket.market.core.verifier import CommitmentVerifier
from proofmarket.protocol.config.params import ESCROW_ADDRESS
from proofmarket.protocol.crypto.hash import sha256
from proofmarket.protocol.types.common import JobStatus
from proofmarket.protocol.types.errors import (
    DeadlinePassed,
    InvalidJobStatus,
    LifecycleModeMismatch,
    OnlyAssignedProviderCanSubmit,
    OnlyClientCanApprove,
    ZKProofVerificationFailed,
)
from tests.helpers import ADMIN, CLIENT, PROVIDER, STRANGER, OUTPUT_HASH, accepted_job, valid_receipt


def test_submit_then_approve(two_phase_market):
    m = two_phase_market
    job_id = accepted_job(m, amount=100)

    job = m.submit_result(PROVIDER, job_id, "bafy-result")
    assert job.status == JobStatus.RESULT_SUBMITTED
    assert m.balance_of(PROVIDER) == 0

    job = m.approve_result(CLIENT, job_id)
    assert job.status == JobStatus.COMPLETED
    assert m.balance_of(PROVIDER) == 100
    assert m.balance_of(ESCROW_ADDRESS) == 0
    assert m.get_provider(PROVIDER).successful_jobs == 1


def test_single_phase_claim_rejected(two_phase_market):
    job_id = accepted_job(two_phase_market)
    with pytest.raises(LifecycleModeMismatch) as exc:
        two_phase_market.submit_proof_and_claim(PROVIDER, job_id, valid_receipt(), OUTPUT_HASH, "bafy")
    assert exc.value.details == {"active": "two_phase", "required": "single_phase"}


def test_submit_only_by_bound_provider(two_phase_market):
    job_id = accepted_job(two_phase_market)
    with pytest.raises(OnlyAssignedProviderCanSubmit):
        two_phase_market.submit_result(STRANGER, job_id, "bafy-result")


def test_approve_only_by_client(two_phase_market):
    m = two_phase_market
    job_id = accepted_job(m)
    m.submit_result(PROVIDER, job_id, "bafy-result")

    with pytest.raises(OnlyClientCanApprove):
        m.approve_result(PROVIDER, job_id)


def test_approve_before_submission(two_phase_market):
    job_id = accepted_job(two_phase_market)
    with pytest.raises(InvalidJobStatus):
        two_phase_market.approve_result(CLIENT, job_id)


def test_late_result_rejected_and_rated(two_phase_market, clock):
    m = two_phase_market
    job_id = accepted_job(m, duration=30)
    clock.advance(30)

    with pytest.raises(DeadlinePassed):
        m.submit_result(PROVIDER, job_id, "bafy-result")

    assert m.get_job(job_id).status == JobStatus.ACCEPTED
    assert m.get_provider(PROVIDER).jobs_done == 1


def test_accepted_job_not_cancellable_past_deadline(two_phase_market, clock):
    m = two_phase_market
    job_id = accepted_job(m, duration=30)
    clock.advance(60)

    with pytest.raises(InvalidJobStatus):
        m.cancel_job(CLIENT, job_id)


def test_attached_proof_is_verified_on_submit(two_phase_market):
    m = two_phase_market
    job_id = accepted_job(m, amount=100)
    m.submit_result(PROVIDER, job_id, "bafy-result", proof=valid_receipt(), public_output_hash=OUTPUT_HASH)

    job = m.approve_result(CLIENT, job_id)

    assert job.status == JobStatus.COMPLETED
    assert job.public_output_hash == OUTPUT_HASH.hex()


def test_bad_attached_proof_rejected_at_submission(two_phase_market, clock):
    m = two_phase_market
    job_id = accepted_job(m, amount=100, duration=600)

    with pytest.raises(ZKProofVerificationFailed):
        m.submit_result(PROVIDER, job_id, "bafy-result", proof=b"garbage", public_output_hash=OUTPUT_HASH)
    with pytest.raises(ZKProofVerificationFailed):
        m.submit_result(PROVIDER, job_id, "bafy-result", proof=valid_receipt(),
                        public_output_hash=sha256(b"wrong output"))

    job = m.get_job(job_id)
    assert job.status == JobStatus.ACCEPTED
    assert job.proof is None
    # Verification failures do not touch reputation
    assert m.get_provider(PROVIDER).jobs_done == 0

    # The job can still receive a good result
    m.submit_result(PROVIDER, job_id, "bafy-result", proof=valid_receipt(), public_output_hash=OUTPUT_HASH)
    assert m.approve_result(CLIENT, job_id).status == JobStatus.COMPLETED
    assert m.balance_of(PROVIDER) == 100


def test_bad_attached_proof_never_reaches_result_submitted(two_phase_market, clock):
    m = two_phase_market
    job_id = accepted_job(m, amount=100, duration=600)

    with pytest.raises(ZKProofVerificationFailed):
        m.submit_result(PROVIDER, job_id, "bafy-result", proof=b"garbage", public_output_hash=OUTPUT_HASH)
    clock.advance(10 * 24 * 3600)

    assert m.get_job(job_id).status == JobStatus.ACCEPTED
    assert m.balance_of(ESCROW_ADDRESS) == 100
    with pytest.raises(DeadlinePassed):
        m.submit_result(PROVIDER, job_id, "bafy-result", proof=valid_receipt(), public_output_hash=OUTPUT_HASH)


def test_approval_does_not_recheck_proof(two_phase_market):
    m = two_phase_market
    job_id = accepted_job(m, amount=100)
    m.submit_result(PROVIDER, job_id, "bafy-result", proof=valid_receipt(), public_output_hash=OUTPUT_HASH)

    # A stricter oracle wired later cannot strand the submitted result
    m.set_verifier(ADMIN, CommitmentVerifier(version=2))

    assert m.approve_result(CLIENT, job_id).status == JobStatus.COMPLETED
    assert m.balance_of(PROVIDER) == 100


def test_attached_proof_skipped_without_verifier(two_phase_market):
    m = two_phase_market
    job_id = accepted_job(m)
    m.set_verifier(ADMIN, None)
    m.submit_result(PROVIDER, job_id, "bafy-result", proof=b"unchecked", public_output_hash=OUTPUT_HASH)

    assert m.approve_result(CLIENT, job_id).status == JobStatus.COMPLETED
