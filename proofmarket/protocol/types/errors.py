# MIT License
# Copyright (c) 2025 Hashborn

"""
Error taxonomy for the marketplace.

Every rejection is a labeled, structured failure. Errors fall into five kinds
so callers can tell "you asked for the wrong thing" from "the system could
not complete a valid request":

- ValidationError     bad input (zero amounts, past deadlines)
- AuthorizationError  wrong caller or missing role
- NotFoundError       unknown job or provider
- StateError          transition not allowed from the current state
- ExternalError       token ledger or verification oracle failed
"""

import json
from typing import Any, Dict, Mapping, Optional


class MarketError(Exception):
    """Base class for marketplace errors."""

    code: str = "MARKET_ERROR"
    kind: str = "market"

    def __init__(self, message: str = "", *, details: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.__class__.__name__
        self.details = dict(details or {})
        super().__init__(self.__str__())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            packed = json.dumps(self.details, sort_keys=True, separators=(",", ":"), default=str)
            return f"{self.code}: {self.message} [{packed}]"
        return f"{self.code}: {self.message}"


class ValidationError(MarketError):
    kind = "validation"


class AuthorizationError(MarketError):
    kind = "authorization"


class NotFoundError(MarketError):
    kind = "not_found"


class StateError(MarketError):
    kind = "state"


class ExternalError(MarketError):
    kind = "external"


# --- Input validation ---

class AmountMustBePositive(ValidationError):
    code = "AmountMustBePositive"

    def __init__(self, amount: int = 0):
        super().__init__("amount must be positive", details={"amount": amount})


class EscrowAmountZero(ValidationError):
    code = "EscrowAmountZero"

    def __init__(self):
        super().__init__("escrow amount must be greater than zero")


class DeadlineMustBeInFuture(ValidationError):
    code = "DeadlineMustBeInFuture"

    def __init__(self, deadline: int, now: int):
        super().__init__("deadline must be in the future", details={"deadline": deadline, "now": now})


class DeadlineTooFar(ValidationError):
    code = "DeadlineTooFar"

    def __init__(self, deadline: int, latest: int):
        super().__init__("deadline exceeds the maximum job duration", details={"deadline": deadline, "latest": latest})


class InvalidProgramId(ValidationError):
    code = "InvalidProgramId"

    def __init__(self, program_id: str):
        super().__init__("program id must be 32 bytes of hex", details={"program_id": program_id})


# --- Authorization ---

class Unauthorized(AuthorizationError):
    code = "Unauthorized"

    def __init__(self, caller: str, required_role: str):
        self.caller = caller
        self.required_role = required_role
        super().__init__(
            f"{caller} lacks role {required_role}",
            details={"caller": caller, "required_role": required_role},
        )


class OnlyAssignedProviderCanSubmit(AuthorizationError):
    code = "OnlyAssignedProviderCanSubmit"

    def __init__(self, job_id: int, caller: str, provider: Optional[str]):
        super().__init__(
            "only the assigned provider can submit",
            details={"job_id": job_id, "caller": caller, "provider": provider},
        )


class OnlyClientCanCancel(AuthorizationError):
    code = "OnlyClientCanCancel"

    def __init__(self, job_id: int, caller: str):
        super().__init__("only the job client can cancel", details={"job_id": job_id, "caller": caller})


class OnlyClientCanApprove(AuthorizationError):
    code = "OnlyClientCanApprove"

    def __init__(self, job_id: int, caller: str):
        super().__init__("only the job client can approve", details={"job_id": job_id, "caller": caller})


class InvalidSignature(AuthorizationError):
    code = "InvalidSignature"

    def __init__(self, reason: str):
        super().__init__(reason)


# --- Not found ---

class JobNotFound(NotFoundError):
    code = "JobNotFound"

    def __init__(self, job_id: int):
        super().__init__(f"job {job_id} not found", details={"job_id": job_id})


class ProviderNotFound(NotFoundError):
    code = "ProviderNotFound"

    def __init__(self, provider: str):
        super().__init__(f"provider {provider} not found", details={"provider": provider})


# --- State machine ---

class InvalidJobStatus(StateError):
    code = "InvalidJobStatus"

    def __init__(self, job_id: int, observed, required):
        self.observed = observed
        self.required = required
        super().__init__(
            "invalid job status",
            details={"job_id": job_id, "observed": _status_name(observed), "required": _status_name(required)},
        )


class DeadlinePassed(StateError):
    code = "DeadlinePassed"

    def __init__(self, job_id: int, deadline: int, now: int, penalized: Optional[str] = None):
        # Provider that was rated negatively inside the failed call, if any
        self.penalized = penalized
        super().__init__("job deadline has passed", details={"job_id": job_id, "deadline": deadline, "now": now})


class JobAlreadyHasProvider(StateError):
    code = "JobAlreadyHasProvider"

    def __init__(self, job_id: int, provider: str):
        super().__init__("job already has a provider", details={"job_id": job_id, "provider": provider})


class ProviderNotRegisteredOrInsufficientStake(StateError):
    code = "ProviderNotRegisteredOrInsufficientStake"

    def __init__(self, provider: str, stake: int, required: int):
        super().__init__(
            "provider not registered or stake below minimum",
            details={"provider": provider, "stake": stake, "required": required},
        )


class InsufficientStake(StateError):
    code = "InsufficientStake"

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__("insufficient stake", details={"available": available, "requested": requested})


class LifecycleModeMismatch(StateError):
    code = "LifecycleModeMismatch"

    def __init__(self, active: str, required: str):
        super().__init__(
            "operation not available in the active lifecycle mode",
            details={"active": active, "required": required},
        )


class ReentrantCall(StateError):
    code = "ReentrantCall"

    def __init__(self, resource: str):
        super().__init__("reentrant call on a resource already in use", details={"resource": resource})


class InvalidNonce(StateError):
    code = "InvalidNonce"

    def __init__(self, expected: int, got: int):
        super().__init__(f"invalid nonce: expected {expected}, got {got}", details={"expected": expected, "got": got})


# --- External dependencies ---

class TransferFailed(ExternalError):
    """Stake ledger transfer (deposit or withdrawal) failed."""
    code = "TransferFailed"

    def __init__(self, reason: str = ""):
        super().__init__("stake transfer failed", details={"reason": reason} if reason else None)


class TokenTransferFailed(ExternalError):
    """Escrow pull, payout or refund failed."""
    code = "TokenTransferFailed"

    def __init__(self, reason: str = ""):
        super().__init__("token transfer failed", details={"reason": reason} if reason else None)


class ZKProofVerificationFailed(ExternalError):
    code = "ZKProofVerificationFailed"

    def __init__(self, job_id: int, reason: str = ""):
        d: Dict[str, Any] = {"job_id": job_id}
        if reason:
            d["reason"] = reason
        super().__init__("proof verification failed", details=d)


class VerifierNotConfigured(ExternalError):
    code = "VerifierNotConfigured"

    def __init__(self):
        super().__init__("no verification oracle is wired")


class StakeLedgerNotConfigured(ExternalError):
    code = "StakeLedgerNotConfigured"

    def __init__(self):
        super().__init__("no stake ledger is wired to the registry")


def _status_name(status) -> Any:
    if isinstance(status, (list, tuple, set, frozenset)):
        return sorted(_status_name(s) for s in status)
    return getattr(status, "value", status)
