# MIT License
# Copyright (c) 2025 Hashborn

"""
Stake Ledger: per-provider collateral and performance counters.

Collateral sits in the vault account on the staking asset (the payment token
or the native coin, fixed per market). Every method works on the transaction
state of the current call, mutates it first and moves funds last.
"""

import logging
from ...protocol.types.common import Role, StakeMode, EventType
from ...protocol.types.provider import ProviderAccount
from ...protocol.types.errors import (
    AmountMustBePositive,
    InsufficientStake,
    ProviderNotFound,
    TransferFailed,
)
from .access import AccessPolicy
from .state import MarketState
from .token import TokenLedger, safe_transfer, safe_transfer_from

logger = logging.getLogger(__name__)


class StakeLedger:
    def __init__(self, vault_address: str, asset: TokenLedger, mode: StakeMode, access: AccessPolicy):
        self.vault_address = vault_address
        self.asset = asset
        self.mode = StakeMode(mode)
        self.access = access

    def _locked_counter(self) -> str:
        return f"locked_slashed:{self.vault_address}"

    def get_info(self, state: MarketState, provider: str) -> ProviderAccount:
        """Read-only; unknown providers get the zero record instead of an error."""
        acc = state.get_provider(self.vault_address, provider)
        if acc is None:
            return ProviderAccount(address=provider)
        return acc.model_copy()

    def _require_provider(self, state: MarketState, provider: str) -> ProviderAccount:
        acc = state.get_provider(self.vault_address, provider)
        if acc is None or not acc.exists:
            raise ProviderNotFound(provider)
        return acc

    def stake(self, state: MarketState, caller: str, amount: int) -> ProviderAccount:
        if amount <= 0:
            raise AmountMustBePositive(amount)

        acc = state.get_provider(self.vault_address, caller) or ProviderAccount(address=caller)
        acc.stake_amount += amount
        acc.exists = True
        state.set_provider(self.vault_address, acc)
        state.emit(EventType.PROVIDER_STAKED, provider=caller, amount=amount, stake_amount=acc.stake_amount)

        # Native mode: the caller sends the value itself, no allowance involved
        ok, reason = safe_transfer_from(self.asset, self.vault_address, caller, self.vault_address, amount)
        if not ok:
            raise TransferFailed(reason)

        logger.info(f"Provider {caller} staked {amount} ({self.mode.value}), total {acc.stake_amount}")
        return acc

    def withdraw(self, state: MarketState, caller: str, amount: int) -> ProviderAccount:
        acc = self._require_provider(state, caller)
        if amount <= 0:
            raise AmountMustBePositive(amount)
        if amount > acc.stake_amount:
            raise InsufficientStake(available=acc.stake_amount, requested=amount)

        # Balance goes down before funds leave the vault
        acc.stake_amount -= amount
        state.set_provider(self.vault_address, acc)
        state.emit(EventType.STAKE_WITHDRAWN, provider=caller, amount=amount, stake_amount=acc.stake_amount)

        ok, reason = safe_transfer(self.asset, self.vault_address, caller, amount)
        if not ok:
            raise TransferFailed(reason)

        logger.info(f"Provider {caller} withdrew {amount}, remaining {acc.stake_amount}")
        return acc

    def slash(self, state: MarketState, caller: str, provider: str, amount: int) -> int:
        """Seizes up to `amount` of stake. Returns the amount actually slashed."""
        self.access.require_role(state, Role.SLASHER, caller)
        acc = self._require_provider(state, provider)
        if amount <= 0:
            raise AmountMustBePositive(amount)

        slashed = min(amount, acc.stake_amount)
        acc.stake_amount -= slashed
        state.set_provider(self.vault_address, acc)

        recipient = state.params.slash_recipient
        state.emit(
            EventType.PROVIDER_SLASHED,
            provider=provider,
            requested=amount,
            slashed=slashed,
            stake_amount=acc.stake_amount,
            recipient=recipient,
        )

        if slashed > 0:
            if recipient is None:
                # No recipient: the funds stay locked in the vault
                state.add_counter(self._locked_counter(), slashed)
            else:
                ok, reason = safe_transfer(self.asset, self.vault_address, recipient, slashed)
                if not ok:
                    raise TransferFailed(reason)

        logger.warning(f"Provider {provider} slashed {slashed} (requested {amount}) by {caller}")
        return slashed

    def rate(self, state: MarketState, caller: str, provider: str, success: bool) -> ProviderAccount:
        self.access.require_role(state, Role.RATER, caller)
        acc = self._require_provider(state, provider)

        acc.jobs_done += 1
        if success:
            acc.successful_jobs += 1
        state.set_provider(self.vault_address, acc)
        state.emit(
            EventType.PROVIDER_RATED,
            provider=provider,
            success=success,
            jobs_done=acc.jobs_done,
            successful_jobs=acc.successful_jobs,
        )
        return acc

    def locked_slashed(self, state: MarketState) -> int:
        return state.get_counter(self._locked_counter())

    def total_staked(self, state: MarketState) -> int:
        return sum(p.stake_amount for p in state.get_all_providers(self.vault_address))
