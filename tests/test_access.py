# MIT License
# Copyright (c) 2025 Hashborn

"""Role policy and administrative setters."""

import pytest
from proofmarket.protocol.config.params import ESCROW_ADDRESS
from proofmarket.protocol.types.common import Role
from proofmarket.protocol.types.errors import AmountMustBePositive, Unauthorized
from tests.helpers import ADMIN, SLASHER, STRANGER, TREASURY, PROVIDER, stake_provider


def test_bootstrap_grants(market):
    assert market.has_role(Role.ADMIN, ADMIN)
    assert market.has_role(Role.SLASHER, SLASHER)
    assert market.has_role(Role.RATER, ESCROW_ADDRESS)
    assert not market.has_role(Role.ADMIN, SLASHER)


def test_grant_and_revoke(market):
    events = []
    market.events.subscribe("RoleGranted", lambda **data: events.append(("granted", data)))
    market.events.subscribe("RoleRevoked", lambda **data: events.append(("revoked", data)))

    assert market.grant_role(ADMIN, Role.SLASHER, STRANGER) is True
    assert market.grant_role(ADMIN, Role.SLASHER, STRANGER) is False
    assert market.has_role(Role.SLASHER, STRANGER)

    assert market.revoke_role(ADMIN, Role.SLASHER, STRANGER) is True
    assert market.revoke_role(ADMIN, Role.SLASHER, STRANGER) is False
    assert not market.has_role(Role.SLASHER, STRANGER)

    assert events == [
        ("granted", {"role": "SLASHER", "account": STRANGER, "by": ADMIN}),
        ("revoked", {"role": "SLASHER", "account": STRANGER, "by": ADMIN}),
    ]


def test_only_admin_grants(market):
    with pytest.raises(Unauthorized) as exc:
        market.grant_role(SLASHER, Role.SLASHER, STRANGER)
    assert exc.value.caller == SLASHER
    assert exc.value.required_role == "ADMIN"


def test_roles_are_independent(market):
    market.grant_role(ADMIN, Role.ADMIN, STRANGER)
    stake_provider(market)

    # A second admin still cannot slash or rate
    with pytest.raises(Unauthorized):
        market.slash(STRANGER, PROVIDER, 1)
    with pytest.raises(Unauthorized):
        market.rate(STRANGER, PROVIDER, True)


def test_revoked_admin_loses_powers(market):
    market.grant_role(ADMIN, Role.ADMIN, STRANGER)
    market.revoke_role(STRANGER, Role.ADMIN, ADMIN)

    with pytest.raises(Unauthorized):
        market.set_min_provider_stake(ADMIN, 1)


def test_set_min_provider_stake(market):
    changes = []
    market.events.subscribe("ParameterChanged", lambda **data: changes.append(data))

    market.set_min_provider_stake(ADMIN, 1_000)

    assert market.state.params.min_provider_stake == 1_000
    assert changes == [{"name": "min_provider_stake", "old": 500, "new": 1_000}]


def test_set_min_provider_stake_unauthorized(market):
    with pytest.raises(Unauthorized):
        market.set_min_provider_stake(STRANGER, 1)
    assert market.state.params.min_provider_stake == 500


def test_set_min_provider_stake_negative(market):
    with pytest.raises(AmountMustBePositive):
        market.set_min_provider_stake(ADMIN, -1)


def test_set_slash_recipient(market):
    market.set_slash_recipient(ADMIN, TREASURY)
    assert market.state.params.slash_recipient == TREASURY

    market.set_slash_recipient(ADMIN, None)
    assert market.state.params.slash_recipient is None


def test_wiring_setters_require_admin(market):
    with pytest.raises(Unauthorized):
        market.set_verifier(STRANGER, None)
    with pytest.raises(Unauthorized):
        market.set_stake_ledger(STRANGER, None)
    assert market.state.verifier is not None
    assert market.state.stake_ledger is market.stake


def test_unwiring_is_reported_in_status(market):
    market.set_verifier(ADMIN, None)
    market.set_stake_ledger(ADMIN, None)

    status = market.status()
    assert status["verifier_wired"] is False
    assert status["stake_ledger_wired"] is False
    assert market.state.params.verifier_enabled is False
