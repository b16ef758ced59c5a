"""Workflow counters and their Prometheus mirrors."""

from pathlib import Path
import sys

from prometheus_client import REGISTRY

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from core import metrics


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_counters_update_both_views():
    before = _sample("datacap_proposals_total", {"step": "verify client"})
    metrics.record_proposal("verify client")
    metrics.record_approval("verify client")
    metrics.record_chain_failure("verify client")
    metrics.record_revert()
    metrics.record_scan(4, 1)
    metrics.record_finality_wait(1.5)

    snap = metrics.get_metrics()
    assert snap["proposals"] == 1
    assert snap["approvals"] == 1
    assert snap["chain_failures"] == 1
    assert snap["reverts"] == 1
    assert snap["pending_scanned"] == 4
    assert snap["decode_mismatches"] == 1
    assert snap["finality_waits"] == [1.5]
    assert _sample("datacap_proposals_total", {"step": "verify client"}) == before + 1


def test_reset_clears_snapshot():
    metrics.record_finality_wait(2.0)
    snap = metrics.get_metrics()
    snap["finality_waits"].append(9.0)
    assert metrics.get_metrics()["finality_waits"] == [2.0]
    metrics.reset_metrics()
    assert metrics.get_metrics()["finality_waits"] == []
    assert metrics.get_metrics()["proposals"] == 0
