# MIT License
# Copyright (c) 2025 Hashborn

"""
Role policy and the administrative surface.

Three roles: ADMIN (parameters, wiring, grants), SLASHER (slash stake) and
RATER (rate providers; held by the escrow registry). Roles are additive and
independently grantable; no role implies another, except that only ADMIN may
grant or revoke.
"""

import logging
from typing import Optional
from ...protocol.types.common import Role, EventType
from ...protocol.types.errors import Unauthorized, AmountMustBePositive
from .state import MarketState

logger = logging.getLogger(__name__)


class AccessPolicy:
    def has_role(self, state: MarketState, role: Role, account: str) -> bool:
        return state.has_role(role, account)

    def require_role(self, state: MarketState, role: Role, caller: str):
        if not state.has_role(role, caller):
            raise Unauthorized(caller, role.value)

    def grant_role(self, state: MarketState, caller: str, role: Role, account: str) -> bool:
        self.require_role(state, Role.ADMIN, caller)
        role = Role(role)
        if not state.add_role_member(role, account):
            return False
        state.emit(EventType.ROLE_GRANTED, role=role.value, account=account, by=caller)
        logger.info(f"Granted {role.value} to {account}")
        return True

    def revoke_role(self, state: MarketState, caller: str, role: Role, account: str) -> bool:
        self.require_role(state, Role.ADMIN, caller)
        role = Role(role)
        if not state.remove_role_member(role, account):
            return False
        state.emit(EventType.ROLE_REVOKED, role=role.value, account=account, by=caller)
        logger.info(f"Revoked {role.value} from {account}")
        return True

    def set_min_provider_stake(self, state: MarketState, caller: str, amount: int):
        self.require_role(state, Role.ADMIN, caller)
        if amount < 0:
            raise AmountMustBePositive(amount)
        old = state.params.min_provider_stake
        state.update_params(min_provider_stake=amount)
        state.emit(EventType.PARAMETER_CHANGED, name="min_provider_stake", old=old, new=amount)

    def set_slash_recipient(self, state: MarketState, caller: str, recipient: Optional[str]):
        self.require_role(state, Role.ADMIN, caller)
        old = state.params.slash_recipient
        state.update_params(slash_recipient=recipient)
        state.emit(EventType.PARAMETER_CHANGED, name="slash_recipient", old=old, new=recipient)

    def set_verifier(self, state: MarketState, caller: str, verifier):
        """Wires (or with None, unwires) the verification oracle."""
        self.require_role(state, Role.ADMIN, caller)
        old = _describe(state.verifier)
        state.verifier = verifier
        state.update_params(verifier_enabled=verifier is not None)
        state.emit(EventType.PARAMETER_CHANGED, name="verifier", old=old, new=_describe(verifier))

    def set_stake_ledger(self, state: MarketState, caller: str, ledger):
        """Wires (or with None, unwires) the stake ledger the registry checks and rates against."""
        self.require_role(state, Role.ADMIN, caller)
        old = _describe(state.stake_ledger)
        state.stake_ledger = ledger
        state.update_params(stake_ledger_enabled=ledger is not None)
        state.emit(EventType.PARAMETER_CHANGED, name="stake_ledger", old=old, new=_describe(ledger))


def _describe(component) -> Optional[str]:
    if component is None:
        return None
    vault = getattr(component, "vault_address", None)
    return f"{type(component).__name__}({vault})" if vault else type(component).__name__
