"""Lifecycle affordances and action gating."""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from core.errors import InvalidState
from datacap.lifecycle import (
    ActionKind,
    ActorRole,
    affordance,
    allowed_action,
    permitted_actions,
    require_action,
)
from datacap.models import AllocationRequest, Case, LifecycleState, RequestType


def _case(state, requests=1):
    return Case(
        id="1",
        state=state,
        client_address="f01234",
        allocation_requests=[
            AllocationRequest(str(i), RequestType.REFILL, "1TiB") for i in range(requests)
        ],
    )


@pytest.mark.parametrize(
    "state,expected",
    [
        (LifecycleState.SUBMITTED, ActionKind.OPEN_GRANT_DIALOG),
        (LifecycleState.KYC_REQUESTED, ActionKind.OPEN_GRANT_DIALOG),
        (LifecycleState.CHANGES_REQUESTED, ActionKind.APPROVE_CHANGES),
        (LifecycleState.READY_TO_SIGN, ActionKind.PROPOSE),
        (LifecycleState.START_SIGN_DATACAP, ActionKind.APPROVE),
        (LifecycleState.CHANGING_SP, ActionKind.APPROVE_SP_CHANGE),
        (LifecycleState.GRANTED, None),
        (LifecycleState.DECLINED, None),
    ],
)
def test_verifier_primary_action(state, expected):
    assert allowed_action(state, ActorRole.VERIFIER) is expected


def test_refill_requires_confirmation():
    assert allowed_action(LifecycleState.READY_TO_SIGN, ActorRole.VERIFIER, 2) is ActionKind.CONFIRM_AMOUNT
    assert affordance(LifecycleState.READY_TO_SIGN, ActorRole.VERIFIER, 2) == "Propose"


def test_other_roles_get_nothing():
    for role in (None, ActorRole.CLIENT, ActorRole.GOVERNANCE):
        assert allowed_action(LifecycleState.READY_TO_SIGN, role) is None
        assert permitted_actions(LifecycleState.GRANTED, role) == frozenset()
    assert affordance(LifecycleState.SUBMITTED, ActorRole.CLIENT) == ""


def test_secondary_actions():
    granted = permitted_actions(LifecycleState.GRANTED, ActorRole.VERIFIER)
    assert granted == {ActionKind.PROPOSE_SP_CHANGE, ActionKind.DECREASE_ALLOWANCE}
    ready = permitted_actions(LifecycleState.READY_TO_SIGN, ActorRole.VERIFIER)
    assert ready == {ActionKind.PROPOSE, ActionKind.PROPOSE_SP_CHANGE}


def test_require_action_gates():
    require_action(_case(LifecycleState.READY_TO_SIGN), ActorRole.VERIFIER, ActionKind.PROPOSE)
    with pytest.raises(InvalidState):
        require_action(_case(LifecycleState.GRANTED), ActorRole.VERIFIER, ActionKind.APPROVE)
    with pytest.raises(InvalidState):
        require_action(_case(LifecycleState.START_SIGN_DATACAP), ActorRole.CLIENT, ActionKind.APPROVE)


def test_refill_proposal_needs_confirmed_amount():
    case = _case(LifecycleState.READY_TO_SIGN, requests=2)
    with pytest.raises(InvalidState, match="confirmed"):
        require_action(case, ActorRole.VERIFIER, ActionKind.PROPOSE)
    require_action(case, ActorRole.VERIFIER, ActionKind.PROPOSE, amount_confirmed=True)
