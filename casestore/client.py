"""HTTP client for the Case Store (the application backend)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from casestore.mapping import allocation_signer_json, case_from_json, sp_signer_json
from core.errors import TransportFailure
from core.logger import StructuredLogger
from datacap.models import Case, Signer

LOGGER = StructuredLogger("casestore")


class CaseStoreClient:
    """Reads Cases and records confirmed signer steps.

    The Case Store owns ``Lifecycle.State``; every write here follows an
    on-chain confirmation except ``revert_to_ready_to_sign``.
    """

    def __init__(
        self,
        api_url: str,
        *,
        token: Optional[str] = None,
        github_username: str = "",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.github_username = github_username
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any],
        body: Optional[Dict[str, Any]] = None,
        case_id: str = "",
    ) -> Any:
        url = f"{self.api_url}/{path}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json() if resp.content else None
        except (requests.RequestException, ValueError) as exc:
            LOGGER.log("request_failed", case_id=case_id, path=path, error=str(exc))
            raise TransportFailure(f"{method} {path}: {exc}") from exc
        LOGGER.log("request", case_id=case_id, path=path, method=method)
        return data

    def _case_params(self, case: Case) -> Dict[str, str]:
        return {
            "repo": case.repo,
            "owner": case.owner,
            "id": case.id,
            "github_username": self.github_username,
        }

    def _case_or_none(self, data: Any) -> Optional[Case]:
        return case_from_json(data) if isinstance(data, dict) and data else None

    # ------------------------------------------------------------------
    def get_case(self, case_id: str, owner: str, repo: str) -> Case:
        data = self._request(
            "GET",
            "application/with-allocation-amount",
            params={"id": case_id, "owner": owner, "repo": repo},
            case_id=case_id,
        )
        if not isinstance(data, dict) or not data:
            raise TransportFailure(f"case {case_id} not found in {owner}/{repo}")
        return case_from_json(data)

    def propose(
        self,
        case: Case,
        request_id: str,
        signer: Signer,
        allocation_amount: Optional[str] = None,
    ) -> Optional[Case]:
        body = {
            "request_id": request_id,
            "new_allocation_amount": allocation_amount,
            "owner": case.owner,
            "repo": case.repo,
            "signer": allocation_signer_json(signer),
        }
        data = self._request(
            "POST",
            "verifier/application/propose",
            params=self._case_params(case),
            body=body,
            case_id=case.id,
        )
        return self._case_or_none(data)

    def approve(self, case: Case, request_id: str, signer: Signer) -> Optional[Case]:
        body = {
            "request_id": request_id,
            "owner": case.owner,
            "repo": case.repo,
            "signer": allocation_signer_json(signer),
        }
        data = self._request(
            "POST",
            "verifier/application/approve",
            params=self._case_params(case),
            body=body,
            case_id=case.id,
        )
        return self._case_or_none(data)

    def revert_to_ready_to_sign(self, case: Case) -> Optional[Case]:
        """Report a failed grant so the Case goes back to ReadyToSign."""
        LOGGER.log("revert_to_ready_to_sign", case_id=case.id, risk_level="high")
        data = self._request(
            "POST",
            "verifier/application/allocation_failed",
            params=self._case_params(case),
            body={},
            case_id=case.id,
        )
        return self._case_or_none(data)

    def propose_sp_change(
        self,
        case: Case,
        signer: Signer,
        allowed_sps: List[int],
        max_deviation: Optional[str] = None,
    ) -> Optional[Case]:
        body = {
            "max_deviation": max_deviation,
            "allowed_sps": [int(sp) for sp in allowed_sps],
            "owner": case.owner,
            "repo": case.repo,
            "signer": sp_signer_json(signer),
        }
        data = self._request(
            "POST",
            "verifier/application/propose_storage_providers",
            params=self._case_params(case),
            body=body,
            case_id=case.id,
        )
        return self._case_or_none(data)

    def approve_sp_change(self, case: Case, request_id: str, signer: Signer) -> Optional[Case]:
        body = {
            "request_id": request_id,
            "owner": case.owner,
            "repo": case.repo,
            "signer": sp_signer_json(signer),
        }
        data = self._request(
            "POST",
            "verifier/application/approve_storage_providers",
            params=self._case_params(case),
            body=body,
            case_id=case.id,
        )
        return self._case_or_none(data)
