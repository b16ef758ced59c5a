"""One workflow run per Case at a time."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from core.errors import CaseBusy
from core.logger import StructuredLogger

LOGGER = StructuredLogger("case_lock")


class CaseLockRegistry:
    """Non-blocking per-Case locks; a held Case is reported, never waited on."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, case_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(case_id, threading.Lock())

    def is_held(self, case_id: str) -> bool:
        return self._lock_for(case_id).locked()

    @contextmanager
    def hold(self, case_id: str) -> Iterator[None]:
        lock = self._lock_for(case_id)
        if not lock.acquire(blocking=False):
            LOGGER.log("case_busy", case_id=case_id, risk_level="low")
            raise CaseBusy(f"case {case_id} already has a workflow in progress")
        LOGGER.log("case_locked", case_id=case_id)
        try:
            yield
        finally:
            lock.release()
            LOGGER.log("case_released", case_id=case_id)
