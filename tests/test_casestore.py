"""Case Store client and document mapping."""

from pathlib import Path
from datetime import datetime, timezone
import json
import sys

import pytest
import requests

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from casestore.client import CaseStoreClient
from casestore.mapping import case_from_json, current_timestamp
from core.errors import TransportFailure
from datacap.models import LifecycleState, RequestType, Signer


def _document(state="ReadyToSign"):
    return {
        "ID": "recA",
        "owner": "org",
        "repo": "allocator",
        "Client Contract Address": None,
        "Lifecycle": {
            "State": state,
            "On Chain Address": "f01234",
            "Multisig Address": "f0500",
            "Active Request ID": "req-2",
        },
        "Datacap": {"Total Requested Amount": "100TiB", "Weekly Allocation": "10TiB"},
        "Allocation Requests": [
            {"ID": "req-1", "Request Type": "First", "Allocation Amount": "5TiB", "Active": False},
            {
                "ID": "req-2",
                "Request Type": "Refill",
                "Allocation Amount": "10TiB",
                "Active": True,
                "Signers": [
                    {
                        "Signing Address": "f0100",
                        "Message CID": "bafy1",
                        "Add Allowed Storage Providers CID": {"bafy2": [1000, "1001"]},
                    }
                ],
            },
        ],
    }


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status
        self.content = b"" if payload is None else json.dumps(payload).encode()

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(_document())
        self.error = error
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _client(session, **kwargs):
    return CaseStoreClient("http://store/api/", token="tkn", session=session, **kwargs)


def test_case_mapping():
    case = case_from_json({"application_file": _document()})
    assert case.id == "recA"
    assert case.state is LifecycleState.READY_TO_SIGN
    assert case.client_address == "f01234"
    assert case.multisig_address == "f0500"
    assert case.client_contract_address is None
    assert case.active_allocation_request().id == "req-2"
    assert case.allocation_requests[1].request_type is RequestType.REFILL
    signer = case.allocation_requests[1].proposer
    assert signer.message_cid == "bafy1"
    assert signer.add_allowed_sps_cids == {"bafy2": ["1000", "1001"]}
    assert case.total_granted() == 15 * 2**40


def test_unknown_state_rejected():
    with pytest.raises(ValueError):
        case_from_json(_document(state="Sleeping"))


def test_get_case_query():
    session = FakeSession()
    case = _client(session).get_case("recA", "org", "allocator")
    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == "http://store/api/application/with-allocation-amount"
    assert kwargs["params"] == {"id": "recA", "owner": "org", "repo": "allocator"}
    assert kwargs["headers"] == {"Authorization": "Bearer tkn"}
    assert case.state is LifecycleState.READY_TO_SIGN


def test_empty_case_is_transport_failure():
    session = FakeSession(FakeResponse({}))
    with pytest.raises(TransportFailure):
        _client(session).get_case("recA", "org", "allocator")


def test_propose_body():
    session = FakeSession(FakeResponse(_document("StartSignDatacap")))
    client = _client(session, github_username="alice")
    case = case_from_json(_document())
    signer = Signer("f0100", created_at="ts", message_cid="bafy1", increase_allowance_cid="bafy2")

    updated = client.propose(case, "req-2", signer, "10TiB")

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", "http://store/api/verifier/application/propose")
    assert kwargs["params"] == {
        "repo": "allocator",
        "owner": "org",
        "id": "recA",
        "github_username": "alice",
    }
    assert kwargs["json"] == {
        "request_id": "req-2",
        "new_allocation_amount": "10TiB",
        "owner": "org",
        "repo": "allocator",
        "signer": {
            "signing_address": "f0100",
            "created_at": "ts",
            "message_cids": {"message_cid": "bafy1", "increase_allowance_cid": "bafy2"},
        },
    }
    assert updated.state is LifecycleState.START_SIGN_DATACAP


def test_sp_change_body():
    session = FakeSession(FakeResponse(None))
    client = _client(session)
    case = case_from_json(_document())
    signer = Signer(
        "f0100",
        set_max_deviation_cid="bafyd",
        add_allowed_sps_cids={"bafya": ["1000"]},
    )

    assert client.propose_sp_change(case, signer, ["1000", 1001], "10%") is None

    body = session.requests[0][2]["json"]
    assert body["allowed_sps"] == [1000, 1001]
    assert body["max_deviation"] == "10%"
    assert body["signer"] == {
        "signing_address": "f0100",
        "max_deviation_cid": "bafyd",
        "allowed_sps_cids": {"bafya": ["1000"]},
        "removed_allowed_sps_cids": None,
    }


def test_revert_posts_empty_body():
    session = FakeSession()
    _client(session).revert_to_ready_to_sign(case_from_json(_document("StartSignDatacap")))
    method, url, kwargs = session.requests[0]
    assert url.endswith("verifier/application/allocation_failed")
    assert kwargs["json"] == {}


def test_http_errors_wrapped():
    with pytest.raises(TransportFailure):
        _client(FakeSession(FakeResponse({"x": 1}, status=500))).get_case("a", "b", "c")
    with pytest.raises(TransportFailure, match="timed out"):
        _client(FakeSession(error=requests.Timeout("timed out"))).get_case("a", "b", "c")


def test_timestamp_format():
    moment = datetime(2024, 3, 5, 7, 8, 9, 123456, tzinfo=timezone.utc)
    assert current_timestamp(moment) == "2024-03-05 07:08:09.123000000 UTC"
