"""Propose-or-approve state machine over a sequence of multisig actions.

Module purpose and system role:
    - For each step, search the pending list for the step's action and
      either propose it or approve the matching entry.
    - Wait for every submitted message to land before moving on, and stop at
      the first failure.
    - Return the message CIDs of a fully successful run; persist nothing.

Integration points and dependencies:
    - ``chain.gateway.ChainGateway`` for pending reads, submissions and waits.
    - ``datacap.matcher.PendingTransactionMatcher`` for the search phase.
    - A revert callback supplied by the caller (Case Store) for failed grant
      approvals.

Simulation/test hooks:
    - ``sleep`` is injectable so tests skip the inter-step delay.
    - ``progress`` receives the human-readable status messages.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set

from chain.gateway import ChainGateway
from chain.session import WalletSession
from core import metrics
from core.errors import ChainExecutionFailure, DuplicateProposal, NoMatchFound, RevertRequested
from core.logger import StructuredLogger
from datacap.actions import ActionDescriptor, GrantAllowance
from datacap.addresses import same_address
from datacap.matcher import PendingTransactionMatcher
from datacap.models import PendingTransaction

LOG = StructuredLogger("coordinator")

SEARCHING_MESSAGE = "Searching the pending transactions..."


class Phase(str, Enum):
    SEARCHING = "Searching"
    PROPOSING = "Proposing"
    APPROVING = "Approving"
    AWAITING_FINALITY = "AwaitingFinality"
    SUCCEEDED = "Succeeded"
    REVERT_REQUESTED = "RevertRequested"
    FAILED = "Failed"


class Mode(str, Enum):
    PROPOSE = "propose"
    APPROVE = "approve"
    AUTO = "auto"


@dataclass(frozen=True)
class Step:
    """One on-chain sub-action.

    ``key`` must be unique within a run. ``target`` is the contract invoked
    through the multisig, or None for a native verified-registry grant.
    """

    key: str
    action: ActionDescriptor
    target: Optional[str]
    mode: Mode = Mode.AUTO
    revert_on_failure: bool = False

    @property
    def label(self) -> str:
        return self.action.LABEL


@dataclass
class StepOutcome:
    step: Step
    phase: Phase
    message_id: Optional[str] = None
    pending_id: Optional[int] = None
    approved: bool = False
    exit_code: Optional[int] = None
    reused: bool = False


@dataclass
class CoordinatorResult:
    outcomes: List[StepOutcome] = field(default_factory=list)

    @property
    def message_ids(self) -> Dict[str, str]:
        return {o.step.key: o.message_id for o in self.outcomes if o.message_id}

    def cid_for(self, key: str) -> Optional[str]:
        return self.message_ids.get(key)


def _duplicate_message(step: Step) -> str:
    if isinstance(step.action, GrantAllowance):
        return "This datacap allocation is already proposed"
    return f"The '{step.label}' transaction is already proposed"


def _missing_message(step: Step) -> str:
    subject = (
        "This datacap allocation"
        if isinstance(step.action, GrantAllowance)
        else f"The '{step.label}' transaction"
    )
    return (
        f"{subject} is not proposed yet. You may need to wait some time if "
        "the proposal was just sent."
    )


class ProposalCoordinator:
    """Runs steps strictly in order; one coordinator per workflow run."""

    def __init__(
        self,
        gateway: ChainGateway,
        session: WalletSession,
        *,
        matcher: Optional[PendingTransactionMatcher] = None,
        step_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        progress: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.gateway = gateway
        self.session = session
        self.matcher = matcher or PendingTransactionMatcher()
        self.step_delay = step_delay
        self._sleep = sleep
        self._progress = progress
        self._clock = clock
        self.phase = Phase.SEARCHING

    def _emit(self, message: str) -> None:
        if self._progress is not None:
            self._progress(message)

    def _search(self, steps: Sequence[Step]) -> Mapping[str, Optional[PendingTransaction]]:
        pending = self.gateway.list_pending(self.session.multisig_address)
        result = self.matcher.find_matches(
            pending, {s.key: s.action for s in steps}, {s.key: s.target for s in steps}
        )
        return result.matches

    def _proposed_here(self, tx: PendingTransaction) -> bool:
        """True when the active account is the proposer of ``tx``."""
        active = self.session.active_address
        if tx.proposer is None:
            return False
        if same_address(tx.proposer, active):
            return True
        # pending lists name signers by actor ID
        return same_address(tx.proposer, self.gateway.lookup_id(active))

    def preflight(self, steps: Sequence[Step]) -> Set[str]:
        """Check every explicit propose/approve step against the pending list.

        Runs before anything is submitted so a run that cannot complete fails
        without side effects. Returns the keys of propose steps that this
        account already proposed while others are still missing; the run
        carries on from them instead of proposing them twice.
        """

        checked = [s for s in steps if s.mode is not Mode.AUTO]
        if not checked:
            return set()
        self._emit(SEARCHING_MESSAGE)
        matches = self._search(checked)
        for step in checked:
            if step.mode is Mode.APPROVE and matches.get(step.key) is None:
                raise NoMatchFound(_missing_message(step))
        proposing = [s for s in checked if s.mode is Mode.PROPOSE]
        found = [s for s in proposing if matches.get(s.key) is not None]
        if found and len(found) == len(proposing):
            raise DuplicateProposal(_duplicate_message(found[0]))
        resumable = set()
        for step in found:
            if not self._proposed_here(matches[step.key]):
                raise DuplicateProposal(_duplicate_message(step))
            resumable.add(step.key)
        return resumable

    def run(
        self,
        steps: Sequence[Step],
        *,
        case_id: str = "",
        request_id: str = "",
        on_revert: Optional[Callable[[], None]] = None,
    ) -> CoordinatorResult:
        keys = [s.key for s in steps]
        if len(set(keys)) != len(keys):
            raise ValueError("step keys must be unique")
        self.phase = Phase.SEARCHING
        resumable = self.preflight(steps)
        result = CoordinatorResult()
        for step in steps:
            result.outcomes.append(
                self._run_step(
                    step,
                    case_id=case_id,
                    request_id=request_id,
                    on_revert=on_revert,
                    resumable=step.key in resumable,
                )
            )
        self.phase = Phase.SUCCEEDED
        LOG.log(
            "run_succeeded",
            case_id=case_id,
            request_id=request_id,
            steps=keys,
            message_ids=result.message_ids,
        )
        return result

    def _run_step(
        self,
        step: Step,
        *,
        case_id: str,
        request_id: str,
        on_revert: Optional[Callable[[], None]],
        resumable: bool = False,
    ) -> StepOutcome:
        self._sleep(self.step_delay)
        self.phase = Phase.SEARCHING
        self._emit(SEARCHING_MESSAGE)
        # always a fresh pending list; earlier steps may have changed it
        tx = self._search([step]).get(step.key)

        if tx is None and step.mode is Mode.APPROVE:
            raise NoMatchFound(_missing_message(step))
        if tx is not None and step.mode is Mode.PROPOSE:
            if not resumable:
                raise DuplicateProposal(_duplicate_message(step))
            LOG.log(
                "step_resumed",
                case_id=case_id,
                request_id=request_id,
                step=step.key,
                pending_id=tx.id,
            )
            return StepOutcome(step=step, phase=Phase.SUCCEEDED, pending_id=tx.id, reused=True)

        outcome = StepOutcome(step=step, phase=self.phase)
        if tx is None:
            self.phase = Phase.PROPOSING
            self._emit(f"Preparing the '{step.label}' transaction...")
            if step.target is None:
                if not isinstance(step.action, GrantAllowance):
                    raise TypeError(f"step {step.key} has no target contract")
                message_id = self.gateway.submit_multisig_native_grant(
                    self.session,
                    step.action.client_address(self.session.network),
                    step.action.amount,
                )
            else:
                message_id = self.gateway.submit_multisig_call(
                    self.session, step.target, step.action.encode()
                )
            metrics.record_proposal(step.label)
        else:
            self.phase = Phase.APPROVING
            outcome.pending_id = tx.id
            outcome.approved = True
            self._emit(f"Preparing the '{step.label}' transaction...")
            message_id = self.gateway.approve_pending(self.session, tx)
            metrics.record_approval(step.label)
        outcome.message_id = message_id
        LOG.log(
            "submitted",
            case_id=case_id,
            request_id=request_id,
            tx_id=message_id,
            step=step.key,
            phase=self.phase.value,
            pending_id=outcome.pending_id,
        )

        self.phase = Phase.AWAITING_FINALITY
        self._emit(
            f"Checking the '{step.label}' transaction, it may take a few minutes, "
            "please wait... Do not close this window."
        )
        started = self._clock()
        receipt = self.gateway.wait_for_inclusion(message_id)
        metrics.record_finality_wait(self._clock() - started)
        code = receipt.effective_exit_code
        outcome.exit_code = code
        if code != 0:
            self._fail(step, outcome, code, case_id=case_id, request_id=request_id, on_revert=on_revert)
        outcome.phase = Phase.SUCCEEDED
        LOG.log(
            "step_succeeded",
            case_id=case_id,
            request_id=request_id,
            tx_id=message_id,
            step=step.key,
            height=receipt.height,
        )
        return outcome

    def _fail(
        self,
        step: Step,
        outcome: StepOutcome,
        code: int,
        *,
        case_id: str,
        request_id: str,
        on_revert: Optional[Callable[[], None]],
    ) -> None:
        metrics.record_chain_failure(step.label)
        if outcome.approved and step.revert_on_failure:
            self.phase = outcome.phase = Phase.REVERT_REQUESTED
            message = (
                "Datacap allocation transaction failed on chain. Application "
                f"reverted to ReadyToSign. Please try again. Error code: {code}"
            )
            if on_revert is not None:
                try:
                    on_revert()
                except Exception as exc:
                    LOG.log(
                        "revert_failed",
                        case_id=case_id,
                        request_id=request_id,
                        tx_id=outcome.message_id,
                        risk_level="high",
                        error=str(exc),
                    )
                    raise ChainExecutionFailure(
                        f"The '{step.label}' transaction failed on chain and the "
                        f"case could not be reverted. Error code: {code}",
                        code,
                        step.key,
                    ) from exc
            metrics.record_revert()
            LOG.log(
                "revert_requested",
                case_id=case_id,
                request_id=request_id,
                tx_id=outcome.message_id,
                risk_level="high",
                error=message,
                exit_code=code,
            )
            raise RevertRequested(message, code, step.key)
        self.phase = outcome.phase = Phase.FAILED
        message = f"The '{step.label}' transaction failed on chain. Error code: {code}"
        LOG.log(
            "step_failed",
            case_id=case_id,
            request_id=request_id,
            tx_id=outcome.message_id,
            error=message,
            exit_code=code,
        )
        raise ChainExecutionFailure(message, code, step.key)
