"""Which action a verifier may take for a case in a given lifecycle state.

``allowed_action`` is the primary affordance (the single button a verifier
sees); ``permitted_actions`` adds the secondary ones (SP changes, decreasing
an allowance). ``require_action`` must be consulted before any calldata is
built.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

from core.errors import InvalidState
from datacap.models import Case, LifecycleState


class ActorRole(str, Enum):
    VERIFIER = "verifier"
    GOVERNANCE = "governance"
    CLIENT = "client"


class ActionKind(str, Enum):
    OPEN_GRANT_DIALOG = "open_grant_dialog"
    APPROVE_CHANGES = "approve_changes"
    PROPOSE = "propose"
    CONFIRM_AMOUNT = "confirm_amount"
    APPROVE = "approve"
    APPROVE_SP_CHANGE = "approve_sp_change"
    PROPOSE_SP_CHANGE = "propose_sp_change"
    DECREASE_ALLOWANCE = "decrease_allowance"


AFFORDANCES: Dict[ActionKind, str] = {
    ActionKind.OPEN_GRANT_DIALOG: "Complete verifier review",
    ActionKind.APPROVE_CHANGES: "Approve changes",
    ActionKind.PROPOSE: "Propose",
    ActionKind.CONFIRM_AMOUNT: "Propose",
    ActionKind.APPROVE: "Approve",
    ActionKind.APPROVE_SP_CHANGE: "Approve SP Propose",
    ActionKind.PROPOSE_SP_CHANGE: "Change allowed SPs",
    ActionKind.DECREASE_ALLOWANCE: "Decrease allowance",
}

_REVIEW_STATES = frozenset(
    {
        LifecycleState.KYC_REQUESTED,
        LifecycleState.SUBMITTED,
        LifecycleState.ADDITIONAL_INFO_REQUIRED,
        LifecycleState.ADDITIONAL_INFO_SUBMITTED,
    }
)

_SECONDARY: Dict[LifecycleState, FrozenSet[ActionKind]] = {
    LifecycleState.READY_TO_SIGN: frozenset({ActionKind.PROPOSE_SP_CHANGE}),
    LifecycleState.GRANTED: frozenset(
        {ActionKind.PROPOSE_SP_CHANGE, ActionKind.DECREASE_ALLOWANCE}
    ),
}


def allowed_action(
    state: LifecycleState, role: Optional[ActorRole], allocation_requests: int = 1
) -> Optional[ActionKind]:
    """Primary action for ``(state, role)``; None when nothing is offered."""

    if role is not ActorRole.VERIFIER:
        return None
    if state in _REVIEW_STATES:
        return ActionKind.OPEN_GRANT_DIALOG
    if state is LifecycleState.CHANGES_REQUESTED:
        return ActionKind.APPROVE_CHANGES
    if state is LifecycleState.READY_TO_SIGN:
        # refills re-confirm the amount before proposing
        if allocation_requests > 1:
            return ActionKind.CONFIRM_AMOUNT
        return ActionKind.PROPOSE
    if state is LifecycleState.START_SIGN_DATACAP:
        return ActionKind.APPROVE
    if state is LifecycleState.CHANGING_SP:
        return ActionKind.APPROVE_SP_CHANGE
    return None


def permitted_actions(
    state: LifecycleState, role: Optional[ActorRole], allocation_requests: int = 1
) -> FrozenSet[ActionKind]:
    if role is not ActorRole.VERIFIER:
        return frozenset()
    primary = allowed_action(state, role, allocation_requests)
    actions = set(_SECONDARY.get(state, frozenset()))
    if primary is not None:
        actions.add(primary)
    return frozenset(actions)


def affordance(state: LifecycleState, role: Optional[ActorRole], allocation_requests: int = 1) -> str:
    """Button text for the primary action, empty when there is none."""
    action = allowed_action(state, role, allocation_requests)
    return AFFORDANCES[action] if action is not None else ""


def require_action(
    case: Case,
    role: Optional[ActorRole],
    action: ActionKind,
    *,
    amount_confirmed: bool = False,
) -> None:
    """Raise :class:`InvalidState` unless ``action`` is permitted for ``case``.

    A proposal in ReadyToSign with refill history is permitted only once the
    amount has been confirmed.
    """

    permitted = permitted_actions(case.state, role, len(case.allocation_requests))
    if action is ActionKind.PROPOSE and ActionKind.CONFIRM_AMOUNT in permitted:
        if amount_confirmed:
            return
        raise InvalidState(
            f"Invalid state for action {action.value}: amount must be confirmed "
            f"for case {case.id} in {case.state.value}"
        )
    if action not in permitted:
        role_name = role.value if role is not None else "none"
        raise InvalidState(
            f"Invalid state for action {action.value}: case {case.id} is "
            f"{case.state.value} (role {role_name})"
        )
