# MIT License
# Copyright (c) 2025 Hashborn

"""
Marketplace Invariant Tests

1. Escrow conservation (every escrow leaves custody exactly once)
2. Stake vault accounting (vault = staked + locked slashed)
3. Reputation monotonicity
4. End-to-end scenarios
"""

import pytest
from proofmarket.protocol.config.params import ESCROW_ADDRESS, STAKE_VAULT_ADDRESS
from proofmarket.protocol.types.common import JobStatus, TERMINAL_STATUSES
from proofmarket.protocol.types.errors import DeadlinePassed, MarketError
from tests.helpers import (
    ADMIN, CLIENT, PROVIDER, OTHER_PROVIDER, SLASHER, TREASURY, OUTPUT_HASH,
    accepted_job, open_job, stake_provider, valid_receipt,
)


def assert_escrow_conserved(market):
    open_escrow = sum(j.escrowed_amount for j in market.list_jobs() if j.status not in TERMINAL_STATUSES)
    assert market.balance_of(ESCROW_ADDRESS) == open_escrow

    status = market.status()
    assert status["escrowed_total"] == open_escrow + status["paid_out_total"] + status["refunded_total"]


def assert_vault_accounted(market):
    vault = market.balance_of(STAKE_VAULT_ADDRESS)
    assert vault == market.stake.total_staked(market.state) + market.stake.locked_slashed(market.state)


def test_conservation_across_mixed_lifecycle(market, clock):
    stake_provider(market, amount=800)
    stake_provider(market, provider=OTHER_PROVIDER, amount=600)
    supply = market.token.total_supply()

    paid = accepted_job(market, amount=100)
    refunded = open_job(market, amount=40)
    abandoned = accepted_job(market, amount=25, duration=10)
    failed = accepted_job(market, amount=60)
    pending = open_job(market, amount=15)
    supply += 100 + 40 + 25 + 60 + 15

    market.submit_proof_and_claim(PROVIDER, paid, valid_receipt(), OUTPUT_HASH, "bafy-r")
    market.cancel_job(CLIENT, refunded)
    with pytest.raises(MarketError):
        market.submit_proof_and_claim(PROVIDER, failed, b"junk", OUTPUT_HASH, "bafy-r")
    clock.advance(10)
    market.cancel_job(CLIENT, abandoned)
    market.slash(SLASHER, OTHER_PROVIDER, 250)

    assert market.token.total_supply() == supply
    assert_escrow_conserved(market)
    assert_vault_accounted(market)
    assert market.get_job(pending).status == JobStatus.CREATED
    assert market.balance_of(ESCROW_ADDRESS) == 60 + 15


def test_vault_accounting_with_slash_recipient(market):
    market.set_slash_recipient(ADMIN, TREASURY)
    stake_provider(market, amount=500)
    market.slash(SLASHER, PROVIDER, 100)
    market.withdraw(PROVIDER, 50)

    assert_vault_accounted(market)
    assert market.balance_of(TREASURY) == 100


def test_reputation_is_monotonic(market, clock):
    stake_provider(market, amount=500)
    history = []
    for i in range(4):
        job_id = accepted_job(market, duration=100)
        if i % 2:
            clock.advance(100)
            with pytest.raises(DeadlinePassed):
                market.submit_proof_and_claim(PROVIDER, job_id, valid_receipt(), OUTPUT_HASH, "bafy")
        else:
            market.submit_proof_and_claim(PROVIDER, job_id, valid_receipt(), OUTPUT_HASH, "bafy")
        acc = market.get_provider(PROVIDER)
        history.append((acc.jobs_done, acc.successful_jobs))

    assert history == [(1, 1), (2, 1), (3, 2), (4, 2)]
    for (done_a, ok_a), (done_b, ok_b) in zip(history, history[1:]):
        assert done_b >= done_a
        assert ok_b >= ok_a
        assert ok_b <= done_b


def test_scenario_valid_proof_pays_provider(market):
    stake_provider(market, amount=500)
    job_id = open_job(market, amount=100)
    market.accept_job(PROVIDER, job_id)

    market.submit_proof_and_claim(PROVIDER, job_id, valid_receipt(), OUTPUT_HASH, "bafy-result")

    assert market.get_job(job_id).status == JobStatus.COMPLETED
    assert market.balance_of(PROVIDER) == 100
    assert market.get_provider(PROVIDER).successful_jobs == 1


def test_scenario_late_submission(market, clock):
    stake_provider(market, amount=500)
    job_id = open_job(market, amount=100, duration=600)
    market.accept_job(PROVIDER, job_id)
    clock.advance(600)

    with pytest.raises(DeadlinePassed):
        market.submit_proof_and_claim(PROVIDER, job_id, valid_receipt(), OUTPUT_HASH, "bafy-result")

    acc = market.get_provider(PROVIDER)
    assert acc.jobs_done == 1
    assert acc.successful_jobs == 0
    assert market.get_job(job_id).status == JobStatus.ACCEPTED
    assert market.balance_of(PROVIDER) == 0
    assert market.balance_of(ESCROW_ADDRESS) == 100


def test_scenario_cancel_before_acceptance(market):
    stake_provider(market, amount=500)
    job_id = open_job(market, amount=100)

    market.cancel_job(CLIENT, job_id)

    job = market.get_job(job_id)
    assert job.status == JobStatus.CANCELLED
    assert job.provider is None
    assert market.balance_of(CLIENT) == 100
