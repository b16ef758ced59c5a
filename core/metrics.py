"""Prometheus metrics for the proposal/approval workflow.

Module purpose and system role:
    - Count proposals, approvals and on-chain failures per workflow step.
    - Expose an HTTP ``/metrics`` endpoint when ``serve`` is called.

Integration points and dependencies:
    - ``prometheus_client`` counters and histogram.
    - An in-process mirror (``get_metrics``) for tests and the CLI summary.
"""

from __future__ import annotations

import threading
from typing import Any, Dict

from prometheus_client import Counter, Histogram, start_http_server

PROPOSALS = Counter(
    "datacap_proposals_total", "Multisig proposals submitted", ["step"]
)
APPROVALS = Counter(
    "datacap_approvals_total", "Multisig approvals submitted", ["step"]
)
CHAIN_FAILURES = Counter(
    "datacap_chain_failures_total", "Messages landing with a non-zero exit code", ["step"]
)
REVERTS = Counter("datacap_case_reverts_total", "Cases reverted to ReadyToSign")
PENDING_SCANNED = Counter(
    "datacap_pending_scanned_total", "Pending multisig transactions inspected"
)
DECODE_MISMATCHES = Counter(
    "datacap_decode_mismatch_total", "Pending transactions skipped on decode mismatch"
)
FINALITY_LATENCY = Histogram(
    "datacap_finality_wait_seconds", "Time spent waiting for message inclusion"
)

_METRICS: Dict[str, Any] = {
    "proposals": 0,
    "approvals": 0,
    "chain_failures": 0,
    "reverts": 0,
    "pending_scanned": 0,
    "decode_mismatches": 0,
    "finality_waits": [],
}
_LOCK = threading.Lock()


def record_proposal(step: str) -> None:
    PROPOSALS.labels(step=step).inc()
    with _LOCK:
        _METRICS["proposals"] += 1


def record_approval(step: str) -> None:
    APPROVALS.labels(step=step).inc()
    with _LOCK:
        _METRICS["approvals"] += 1


def record_chain_failure(step: str) -> None:
    CHAIN_FAILURES.labels(step=step).inc()
    with _LOCK:
        _METRICS["chain_failures"] += 1


def record_revert() -> None:
    REVERTS.inc()
    with _LOCK:
        _METRICS["reverts"] += 1


def record_scan(scanned: int, mismatches: int) -> None:
    PENDING_SCANNED.inc(scanned)
    DECODE_MISMATCHES.inc(mismatches)
    with _LOCK:
        _METRICS["pending_scanned"] += scanned
        _METRICS["decode_mismatches"] += mismatches


def record_finality_wait(seconds: float) -> None:
    FINALITY_LATENCY.observe(seconds)
    with _LOCK:
        _METRICS["finality_waits"].append(seconds)


def get_metrics() -> Dict[str, Any]:
    """Return a snapshot of the in-process counters."""
    with _LOCK:
        snap = dict(_METRICS)
        snap["finality_waits"] = list(_METRICS["finality_waits"])
        return snap


def reset_metrics() -> None:
    """Zero the in-process counters. Prometheus counters are monotonic and stay."""
    with _LOCK:
        for key, value in _METRICS.items():
            _METRICS[key] = [] if isinstance(value, list) else 0


def serve(port: int) -> None:
    """Start the Prometheus HTTP endpoint on ``port``."""
    start_http_server(port)
