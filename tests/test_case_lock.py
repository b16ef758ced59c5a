import sys
from pathlib import Path
import json
import threading

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from agents.case_lock import CaseLockRegistry
from core.errors import CaseBusy


def test_second_holder_is_refused(monkeypatch, tmp_path):
    monkeypatch.setenv("CASE_LOCK_LOG", str(tmp_path / "lock.json"))
    locks = CaseLockRegistry()
    with locks.hold("a"):
        assert locks.is_held("a")
        with pytest.raises(CaseBusy, match="case a"):
            with locks.hold("a"):
                pass
        with locks.hold("b"):
            assert locks.is_held("b")
    assert not locks.is_held("a")
    events = [json.loads(line)["event"] for line in (tmp_path / "lock.json").read_text().splitlines()]
    assert events == ["case_locked", "case_busy", "case_locked", "case_released", "case_released"]


def test_released_after_error():
    locks = CaseLockRegistry()
    with pytest.raises(RuntimeError):
        with locks.hold("a"):
            raise RuntimeError("boom")
    with locks.hold("a"):
        pass


def test_concurrent_runs_one_wins():
    locks = CaseLockRegistry()
    entered = threading.Event()
    release = threading.Event()
    busy = []

    def first():
        with locks.hold("a"):
            entered.set()
            release.wait(5)

    worker = threading.Thread(target=first)
    worker.start()
    entered.wait(5)
    try:
        with locks.hold("a"):
            pass
    except CaseBusy:
        busy.append(True)
    release.set()
    worker.join(5)
    assert busy == [True]
