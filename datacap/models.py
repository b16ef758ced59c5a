"""Case records, pending multisig entries and inclusion receipts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core.units import parse_bytes


class LifecycleState(str, Enum):
    KYC_REQUESTED = "KYCRequested"
    SUBMITTED = "Submitted"
    ADDITIONAL_INFO_REQUIRED = "AdditionalInfoRequired"
    ADDITIONAL_INFO_SUBMITTED = "AdditionalInfoSubmitted"
    CHANGES_REQUESTED = "ChangesRequested"
    READY_TO_SIGN = "ReadyToSign"
    START_SIGN_DATACAP = "StartSignDatacap"
    GRANTED = "Granted"
    TOTAL_DATACAP_REACHED = "TotalDatacapReached"
    CHANGING_SP = "ChangingSP"
    DECLINED = "Declined"
    ERROR = "Error"


class RequestType(str, Enum):
    FIRST = "First"
    REFILL = "Refill"
    REMOVE = "Remove"


@dataclass
class Signer:
    """One confirmed on-chain signature step (proposal or approval)."""

    signing_address: str
    created_at: str = ""
    github_username: str = ""
    message_cid: Optional[str] = None
    increase_allowance_cid: Optional[str] = None
    set_max_deviation_cid: Optional[str] = None
    # message CID -> SP ids carried by that call
    add_allowed_sps_cids: Dict[str, List[str]] = field(default_factory=dict)
    remove_allowed_sps_cids: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class AllocationRequest:
    id: str
    request_type: RequestType
    allocation_amount: str
    active: bool = False
    signers: List[Signer] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @property
    def amount_bytes(self) -> int:
        if not self.allocation_amount:
            return 0
        return parse_bytes(self.allocation_amount)

    @property
    def proposer(self) -> Optional[Signer]:
        return self.signers[0] if self.signers else None

    @property
    def approver(self) -> Optional[Signer]:
        return self.signers[1] if len(self.signers) > 1 else None


@dataclass
class StorageProvidersChangeRequest:
    id: str
    active: bool = False
    signers: List[Signer] = field(default_factory=list)
    allowed_sps: List[str] = field(default_factory=list)
    removed_sps: List[str] = field(default_factory=list)
    max_deviation: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def proposer(self) -> Optional[Signer]:
        return self.signers[0] if self.signers else None


@dataclass
class Case:
    id: str
    state: LifecycleState
    client_address: str
    multisig_address: str = ""
    client_contract_address: Optional[str] = None
    total_requested: str = "0B"
    weekly_allocation: str = "0B"
    allocation_requests: List[AllocationRequest] = field(default_factory=list)
    sp_change_requests: List[StorageProvidersChangeRequest] = field(default_factory=list)
    active_request_id: Optional[str] = None
    owner: str = ""
    repo: str = ""

    def __post_init__(self) -> None:
        if sum(1 for r in self.allocation_requests if r.active) > 1:
            raise ValueError(f"case {self.id} has more than one active allocation request")
        if sum(1 for r in self.sp_change_requests if r.active) > 1:
            raise ValueError(f"case {self.id} has more than one active SP change request")

    def active_allocation_request(self) -> Optional[AllocationRequest]:
        return next((r for r in self.allocation_requests if r.active), None)

    def active_sp_change_request(self) -> Optional[StorageProvidersChangeRequest]:
        return next((r for r in self.sp_change_requests if r.active), None)

    def last_allocation(self, positive_only: bool = False) -> Optional[AllocationRequest]:
        """Latest inactive allocation request, optionally skipping zero amounts."""
        if self.active_request_id is None:
            return None
        for request in reversed(self.allocation_requests):
            if request.active:
                continue
            if positive_only and request.amount_bytes <= 0:
                continue
            return request
        return None

    def total_granted(self) -> int:
        return sum(r.amount_bytes for r in self.allocation_requests)


@dataclass(frozen=True)
class PendingTransaction:
    """A multisig entry still waiting for signatures; never persisted."""

    id: int
    to: str
    method: int
    value: int = 0
    approved: Tuple[str, ...] = ()
    params: bytes = b""
    # EVM invoke entries carry calldata; native grants carry address and cap
    calldata: Optional[bytes] = None
    address: Optional[str] = None
    cap: Optional[int] = None

    @property
    def proposer(self) -> Optional[str]:
        return self.approved[0] if self.approved else None


@dataclass(frozen=True)
class InclusionReceipt:
    exit_code: int
    return_data: bytes = b""
    applied: bool = False
    inner_code: int = 0
    height: Optional[int] = None

    @property
    def effective_exit_code(self) -> int:
        """Outer exit code, or the executed multisig call's code when it ran."""
        if self.exit_code != 0:
            return self.exit_code
        return self.inner_code if self.applied else 0
