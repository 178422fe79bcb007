# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum
from typing import Dict, FrozenSet


class JobStatus(str, Enum):
    CREATED = "CREATED"                     # funds escrowed, no provider
    ACCEPTED = "ACCEPTED"                   # provider bound, escrow held
    RESULT_SUBMITTED = "RESULT_SUBMITTED"   # two-phase only, awaiting client approval
    COMPLETED = "COMPLETED"                 # escrow released to provider
    CANCELLED = "CANCELLED"                 # escrow refunded to client


# Legal edges of the job state machine. Nothing ever re-enters CREATED.
JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.ACCEPTED, JobStatus.CANCELLED}),
    JobStatus.ACCEPTED: frozenset({
        JobStatus.RESULT_SUBMITTED,
        JobStatus.COMPLETED,
        JobStatus.CANCELLED,
    }),
    JobStatus.RESULT_SUBMITTED: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED})


class Role(str, Enum):
    ADMIN = "ADMIN"       # parameters, wiring, role grants
    SLASHER = "SLASHER"   # may slash provider stake
    RATER = "RATER"       # may rate providers (granted to the escrow registry)


class LifecycleMode(str, Enum):
    # Accepted -> Completed in one call, oracle verified inline
    SINGLE_PHASE = "single_phase"
    # Accepted -> ResultSubmitted -> Completed on client approval
    TWO_PHASE = "two_phase"


class StakeMode(str, Enum):
    TOKEN = "token"     # collateral in the payment token (allowance required)
    NATIVE = "native"   # collateral in the native coin sent with the call


class EventType(str, Enum):
    JOB_CREATED = "JobCreated"
    JOB_ACCEPTED = "JobAccepted"
    RESULT_SUBMITTED = "ResultSubmitted"
    JOB_COMPLETED = "JobCompleted"
    JOB_CANCELLED = "JobCancelled"
    PAYMENT_RELEASED = "PaymentReleased"
    ESCROW_REFUNDED = "EscrowRefunded"

    PROVIDER_STAKED = "ProviderStaked"
    STAKE_WITHDRAWN = "StakeWithdrawn"
    PROVIDER_SLASHED = "ProviderSlashed"
    PROVIDER_RATED = "ProviderRated"

    PARAMETER_CHANGED = "ParameterChanged"
    ROLE_GRANTED = "RoleGranted"
    ROLE_REVOKED = "RoleRevoked"
