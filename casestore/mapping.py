"""Case Store JSON documents to and from the datacap models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from datacap.models import (
    AllocationRequest,
    Case,
    LifecycleState,
    RequestType,
    Signer,
    StorageProvidersChangeRequest,
)


def current_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp in the Case Store's ``YYYY-MM-DD HH:MM:SS.fffffffff UTC`` form."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    millis = now.microsecond // 1000
    return now.strftime("%Y-%m-%d %H:%M:%S") + f".{millis:03d}000000 UTC"


def _sp_map(raw: Any) -> Dict[str, List[str]]:
    if not isinstance(raw, dict):
        return {}
    return {str(cid): [str(sp) for sp in sps or []] for cid, sps in raw.items()}


def signer_from_json(data: Dict[str, Any]) -> Signer:
    return Signer(
        signing_address=data.get("Signing Address", ""),
        created_at=data.get("Created At", ""),
        github_username=data.get("Github Username", ""),
        message_cid=data.get("Message CID") or None,
        increase_allowance_cid=data.get("Increase allowance CID") or None,
        set_max_deviation_cid=data.get("Set Max Deviation CID") or None,
        add_allowed_sps_cids=_sp_map(data.get("Add Allowed Storage Providers CID")),
        remove_allowed_sps_cids=_sp_map(data.get("Remove Allowed Storage Providers CID")),
    )


def allocation_request_from_json(data: Dict[str, Any]) -> AllocationRequest:
    return AllocationRequest(
        id=str(data["ID"]),
        request_type=RequestType(data.get("Request Type", RequestType.FIRST.value)),
        allocation_amount=data.get("Allocation Amount") or "0B",
        active=bool(data.get("Active", False)),
        signers=[signer_from_json(s) for s in data.get("Signers") or []],
        created_at=data.get("Created At", ""),
        updated_at=data.get("Updated At", ""),
    )


def sp_change_request_from_json(data: Dict[str, Any]) -> StorageProvidersChangeRequest:
    return StorageProvidersChangeRequest(
        id=str(data["ID"]),
        active=bool(data.get("Active", False)),
        signers=[signer_from_json(s) for s in data.get("Signers") or []],
        allowed_sps=[str(sp) for sp in data.get("Allowed Storage Providers") or []],
        removed_sps=[str(sp) for sp in data.get("Removed Storage Providers") or []],
        max_deviation=data.get("Max Deviation") or None,
        created_at=data.get("Created At", ""),
        updated_at=data.get("Updated At", ""),
    )


def case_from_json(data: Dict[str, Any]) -> Case:
    """Build a :class:`Case` from an application document.

    Accepts either the bare document or the ``{"application_file": ...}``
    envelope returned by the lookup endpoint.
    """

    if "application_file" in data:
        data = data["application_file"]
    lifecycle = data.get("Lifecycle") or {}
    datacap = data.get("Datacap") or {}
    return Case(
        id=str(data["ID"]),
        state=LifecycleState(lifecycle["State"]),
        client_address=lifecycle.get("On Chain Address", ""),
        multisig_address=lifecycle.get("Multisig Address", ""),
        client_contract_address=data.get("Client Contract Address") or None,
        total_requested=datacap.get("Total Requested Amount") or "0B",
        weekly_allocation=datacap.get("Weekly Allocation") or "0B",
        allocation_requests=[
            allocation_request_from_json(r) for r in data.get("Allocation Requests") or []
        ],
        sp_change_requests=[
            sp_change_request_from_json(r)
            for r in data.get("Storage Providers Change Requests") or []
        ],
        active_request_id=lifecycle.get("Active Request ID") or None,
        owner=data.get("owner", ""),
        repo=data.get("repo", ""),
    )


def allocation_signer_json(signer: Signer) -> Dict[str, Any]:
    """``signer`` body for the propose/approve endpoints."""
    return {
        "signing_address": signer.signing_address,
        "created_at": signer.created_at,
        "message_cids": {
            "message_cid": signer.message_cid,
            "increase_allowance_cid": signer.increase_allowance_cid,
        },
    }


def sp_signer_json(signer: Signer) -> Dict[str, Any]:
    """``signer`` body for the storage provider endpoints."""
    return {
        "signing_address": signer.signing_address,
        "max_deviation_cid": signer.set_max_deviation_cid,
        "allowed_sps_cids": signer.add_allowed_sps_cids or None,
        "removed_allowed_sps_cids": signer.remove_allowed_sps_cids or None,
    }
