"""Verifier workflow agent.

Module purpose and system role:
    - Gate every request through ``datacap.lifecycle`` before any calldata is
      built.
    - Turn a Case into coordinator steps (grant, increase allowance, SP
      changes, allowance decrease) and run them under the Case's lock.
    - Record the confirmed signer step in the Case Store only after the whole
      run succeeded.

Integration points and dependencies:
    - ``chain.gateway`` for EVM address resolution and the coordinator.
    - ``casestore.client.CaseStoreClient`` for persistence and reverts.
    - ``chain.contracts.ContractReader`` for the current allowed SP list.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from agents.case_lock import CaseLockRegistry
from casestore.mapping import current_timestamp
from chain.contracts import ContractReader
from chain.session import WalletSession
from core.config import Settings
from core.errors import InvalidState
from core.logger import StructuredLogger
from core.units import parse_bytes
from datacap import lifecycle
from datacap.actions import (
    AddSPs,
    DecreaseAllowance,
    GrantAllowance,
    IncreaseAllowance,
    RemoveSPs,
    SetDeviation,
    chunk_providers,
    provider_id,
)
from datacap.addresses import delegated_from_evm, evm_address_of
from datacap.allocation import RequestAmount, next_request_for_case
from datacap.coordinator import CoordinatorResult, Mode, ProposalCoordinator, Step
from datacap.lifecycle import ActionKind, ActorRole
from datacap.models import Case, Signer

LOGGER = StructuredLogger("verifier")

GRANT_KEY = "grant"
INCREASE_KEY = "increase_allowance"
DEVIATION_KEY = "max_deviation"
DECREASE_KEY = "decrease_allowance"


class VerifierAgent:
    """Drives one verifier's on-chain actions for Cases of one multisig."""

    def __init__(
        self,
        settings: Settings,
        gateway,
        store,
        session: WalletSession,
        *,
        locks: Optional[CaseLockRegistry] = None,
        contracts: Optional[ContractReader] = None,
        role: ActorRole = ActorRole.VERIFIER,
        sleep: Callable[[float], None] = time.sleep,
        progress: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.session = session
        self.locks = locks or CaseLockRegistry()
        self.contracts = contracts or ContractReader(gateway)
        self.role = role
        self._sleep = sleep
        self._progress = progress

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _coordinator(self) -> ProposalCoordinator:
        return ProposalCoordinator(
            self.gateway,
            self.session,
            step_delay=self.settings.step_delay,
            sleep=self._sleep,
            progress=self._progress,
        )

    def client_address(self, case: Case) -> str:
        """The Case's client address re-prefixed for the configured network."""
        address = case.client_address
        if not address:
            raise InvalidState(f"case {case.id} has no on-chain client address")
        return self.settings.address_prefix + address[1:]

    def _evm(self, address: str) -> str:
        return evm_address_of(address) or self.gateway.to_evm_address(address)

    def _filecoin(self, address: str) -> str:
        if address.startswith("0x"):
            return delegated_from_evm(address, self.settings.address_prefix)
        return address

    def client_contract(self, case: Case) -> str:
        if not case.client_contract_address:
            raise InvalidState(f"case {case.id} has no client contract")
        return case.client_contract_address

    def _signer(self, **cids) -> Signer:
        return Signer(
            signing_address=self.session.active_address,
            created_at=current_timestamp(),
            github_username=getattr(self.store, "github_username", ""),
            **cids,
        )

    def _active_allocation(self, case: Case):
        request = case.active_allocation_request()
        if request is None:
            raise InvalidState("No active allocation found")
        return request

    def _grant_steps(self, case: Case, amount: int, mode: Mode) -> List[Step]:
        grantee = self._filecoin(case.client_contract_address or self.client_address(case))
        target = self.settings.allocator_contract if self.settings.uses_allocator_contract else None
        steps = [
            Step(
                GRANT_KEY,
                GrantAllowance(grantee, amount),
                target,
                mode,
                revert_on_failure=mode is Mode.APPROVE,
            )
        ]
        if case.client_contract_address:
            client_evm = self._evm(self.client_address(case))
            steps.append(
                Step(
                    INCREASE_KEY,
                    IncreaseAllowance(client_evm, amount),
                    case.client_contract_address,
                    mode,
                )
            )
        return steps

    def _sp_steps(
        self,
        case: Case,
        mode: Mode,
        *,
        max_deviation: Optional[str],
        added: Sequence[Sequence[int]],
        removed: Sequence[Sequence[int]],
    ) -> List[Step]:
        contract = self.client_contract(case)
        client_evm = self._evm(self.client_address(case))
        steps: List[Step] = []
        if max_deviation:
            steps.append(
                Step(DEVIATION_KEY, SetDeviation.from_percentage(client_evm, max_deviation), contract, mode)
            )
        for i, chunk in enumerate(added):
            steps.append(Step(f"add_sps_{i}", AddSPs(client_evm, tuple(chunk)), contract, mode))
        for i, chunk in enumerate(removed):
            steps.append(Step(f"remove_sps_{i}", RemoveSPs(client_evm, tuple(chunk)), contract, mode))
        return steps

    def _sp_signer(self, steps: Sequence[Step], result: CoordinatorResult) -> Signer:
        added: Dict[str, List[str]] = {}
        removed: Dict[str, List[str]] = {}
        deviation_cid = None
        for step in steps:
            cid = result.cid_for(step.key)
            if cid is None:
                continue
            if isinstance(step.action, SetDeviation):
                deviation_cid = cid
            elif isinstance(step.action, AddSPs):
                added[cid] = [str(sp) for sp in step.action.providers]
            elif isinstance(step.action, RemoveSPs):
                removed[cid] = [str(sp) for sp in step.action.providers]
        return self._signer(
            set_max_deviation_cid=deviation_cid,
            add_allowed_sps_cids=added,
            remove_allowed_sps_cids=removed,
        )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def allowed_action(self, case: Case) -> Optional[ActionKind]:
        return lifecycle.allowed_action(case.state, self.role, len(case.allocation_requests))

    def next_refill_amount(self, case: Case) -> RequestAmount:
        return next_request_for_case(case)

    # ------------------------------------------------------------------
    # allocation workflow
    # ------------------------------------------------------------------
    def propose_allocation(
        self,
        case: Case,
        *,
        amount: Optional[str] = None,
        amount_confirmed: bool = False,
    ) -> Optional[Case]:
        """First signature: propose the grant (and allowance increase)."""

        lifecycle.require_action(
            case, self.role, ActionKind.PROPOSE, amount_confirmed=amount_confirmed
        )
        with self.locks.hold(case.id):
            request = self._active_allocation(case)
            allocation_amount = amount or request.allocation_amount
            amount_bytes = parse_bytes(allocation_amount)
            if amount_bytes == 0:
                raise InvalidState("Can't grant 0 datacap.")
            steps = self._grant_steps(case, amount_bytes, Mode.PROPOSE)
            result = self._coordinator().run(steps, case_id=case.id, request_id=request.id)
            signer = self._signer(
                message_cid=result.cid_for(GRANT_KEY),
                increase_allowance_cid=result.cid_for(INCREASE_KEY),
            )
            LOGGER.log(
                "allocation_proposed",
                case_id=case.id,
                request_id=request.id,
                tx_id=signer.message_cid,
                amount=allocation_amount,
            )
            return self.store.propose(case, request.id, signer, allocation_amount)

    def approve_allocation(self, case: Case) -> Optional[Case]:
        """Second signature: approve the pending grant (and allowance increase)."""

        lifecycle.require_action(case, self.role, ActionKind.APPROVE)
        with self.locks.hold(case.id):
            request = self._active_allocation(case)
            steps = self._grant_steps(case, request.amount_bytes, Mode.APPROVE)
            result = self._coordinator().run(
                steps,
                case_id=case.id,
                request_id=request.id,
                on_revert=lambda: self.store.revert_to_ready_to_sign(case),
            )
            signer = self._signer(
                message_cid=result.cid_for(GRANT_KEY),
                increase_allowance_cid=result.cid_for(INCREASE_KEY),
            )
            LOGGER.log(
                "allocation_approved",
                case_id=case.id,
                request_id=request.id,
                tx_id=signer.message_cid,
            )
            return self.store.approve(case, request.id, signer)

    # ------------------------------------------------------------------
    # storage provider workflow
    # ------------------------------------------------------------------
    def propose_sp_change(
        self,
        case: Case,
        *,
        added: Iterable[Union[int, str]] = (),
        removed: Iterable[Union[int, str]] = (),
        max_deviation: Optional[str] = None,
        current_sps: Optional[Iterable[Union[int, str]]] = None,
    ) -> Optional[Case]:
        lifecycle.require_action(case, self.role, ActionKind.PROPOSE_SP_CHANGE)
        added_ids = [provider_id(p) for p in added]
        removed_ids = [provider_id(p) for p in removed]
        with self.locks.hold(case.id):
            size = self.settings.sp_chunk_size
            steps = self._sp_steps(
                case,
                Mode.PROPOSE,
                max_deviation=max_deviation,
                added=chunk_providers(added_ids, size),
                removed=chunk_providers(removed_ids, size),
            )
            if not steps:
                raise ValueError("no storage provider change requested")
            if current_sps is None:
                current = self.contracts.client_sps(
                    self.client_contract(case), self.client_address(case)
                )
            else:
                current = [provider_id(p) for p in current_sps]
            result = self._coordinator().run(steps, case_id=case.id)
            signer = self._sp_signer(steps, result)
            allowed = [sp for sp in current if sp not in removed_ids]
            allowed += [sp for sp in added_ids if sp not in allowed]
            deviation = steps[0].action.percentage if isinstance(steps[0].action, SetDeviation) else None
            LOGGER.log(
                "sp_change_proposed",
                case_id=case.id,
                added=len(added_ids),
                removed=len(removed_ids),
                message_ids=result.message_ids,
            )
            return self.store.propose_sp_change(case, signer, allowed, deviation)

    def approve_sp_change(self, case: Case) -> Optional[Case]:
        """Approve every call recorded by the proposer of the active SP change."""

        lifecycle.require_action(case, self.role, ActionKind.APPROVE_SP_CHANGE)
        with self.locks.hold(case.id):
            request = case.active_sp_change_request()
            if request is None:
                raise InvalidState("No active storage provider change found")
            added = next(
                (s.add_allowed_sps_cids for s in request.signers if s.add_allowed_sps_cids), {}
            )
            removed = next(
                (s.remove_allowed_sps_cids for s in request.signers if s.remove_allowed_sps_cids),
                {},
            )
            steps = self._sp_steps(
                case,
                Mode.APPROVE,
                max_deviation=request.max_deviation,
                added=[[provider_id(sp) for sp in sps] for sps in added.values()],
                removed=[[provider_id(sp) for sp in sps] for sps in removed.values()],
            )
            if not steps:
                raise InvalidState(f"SP change {request.id} records no transactions")
            result = self._coordinator().run(steps, case_id=case.id, request_id=request.id)
            signer = self._sp_signer(steps, result)
            LOGGER.log(
                "sp_change_approved",
                case_id=case.id,
                request_id=request.id,
                message_ids=result.message_ids,
            )
            return self.store.approve_sp_change(case, request.id, signer)

    # ------------------------------------------------------------------
    def decrease_allowance(self, case: Case, amount: str) -> CoordinatorResult:
        """Propose, or approve when already proposed, an allowance decrease."""

        lifecycle.require_action(case, self.role, ActionKind.DECREASE_ALLOWANCE)
        amount_bytes = parse_bytes(amount)
        if amount_bytes == 0:
            raise ValueError("decrease amount must be positive")
        with self.locks.hold(case.id):
            contract = self.client_contract(case)
            client_evm = self._evm(self.client_address(case))
            step = Step(DECREASE_KEY, DecreaseAllowance(client_evm, amount_bytes), contract, Mode.AUTO)
            result = self._coordinator().run([step], case_id=case.id)
            LOGGER.log(
                "allowance_decreased",
                case_id=case.id,
                tx_id=result.cid_for(DECREASE_KEY),
                amount=amount,
            )
            return result
