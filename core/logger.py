"""Structured JSON logger for the datacap signing workflow.

Module purpose and system role:
    - Provide consistent JSON-lines logging for every component.
    - Feed the shared error log and registered hooks (progress UIs, audits).

Integration points and dependencies:
    - Other modules instantiate ``StructuredLogger`` with their module name.
    - ``requests`` forwards high-risk events to ``OPS_ALERT_WEBHOOK`` URLs.

Test hooks:
    - Log paths follow ``<MODULE>_LOG`` and ``ERROR_LOG_FILE`` so test suites
      can redirect output into a temporary directory.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List

import requests


def make_json_safe(value: Any) -> Any:
    """Return ``value`` converted into something ``json.dumps`` accepts."""

    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, dict):
        return {str(k): make_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [make_json_safe(v) for v in value]
    enum_value = getattr(value, "value", None)
    if enum_value is not None and isinstance(enum_value, (str, int)):
        return enum_value
    if isinstance(value, Path):
        return str(value)
    return f"<{type(value).__name__}>"


def _error_log_file() -> Path:
    """Return the configured error log file path."""

    return Path(os.getenv("ERROR_LOG_FILE", "logs/errors.log"))


def log_error(
    module: str,
    error: str,
    *,
    case_id: str = "",
    request_id: str = "",
    tx_id: str = "",
    risk_level: str = "",
    trace_id: str | None = None,
    **extra: Any,
) -> None:
    """Write structured error entry to ``logs/errors.log``."""

    if trace_id is None:
        trace_id = os.getenv("TRACE_ID", "")
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "module": module,
        "error": error,
        "case_id": case_id,
        "request_id": request_id,
        "tx_id": tx_id,
        "risk_level": risk_level,
        "trace_id": trace_id,
        **extra,
    }
    path = _error_log_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as fh:
        fh.write(json.dumps(make_json_safe(entry)) + "\n")


_HOOKS: List[Callable[[Dict[str, Any]], None]] = []


def _alert_webhooks() -> List[str]:
    return [w for w in os.getenv("OPS_ALERT_WEBHOOK", "").split(",") if w]


def _send_alert(message: str) -> None:
    for url in _alert_webhooks():
        try:  # pragma: no cover - network
            requests.post(url, json={"text": message}, timeout=5)
        except requests.RequestException as exc:
            log_error("logger", f"alert webhook failed: {exc}", event="alert_fail")


def register_hook(func: Callable[[Dict[str, Any]], None]) -> None:
    """Register ``func`` to receive every log entry."""
    _HOOKS.append(func)


def unregister_hook(func: Callable[[Dict[str, Any]], None]) -> None:
    """Remove a hook previously added with :func:`register_hook`."""
    if func in _HOOKS:
        _HOOKS.remove(func)


class StructuredLogger:
    """Write structured JSON logs to file and broadcast to hooks."""

    def __init__(self, module: str, log_file: str | None = None) -> None:
        self.module = module
        self._explicit_file = log_file

    @property
    def path(self) -> Path:
        if self._explicit_file is not None:
            return Path(self._explicit_file)
        env_var = f"{self.module.upper()}_LOG"
        return Path(os.getenv(env_var, f"logs/{self.module}.json"))

    # ------------------------------------------------------------------
    def log(
        self,
        event: str,
        *,
        case_id: str = "",
        request_id: str = "",
        tx_id: str = "",
        risk_level: str = "",
        error: str | None = None,
        trace_id: str | None = None,
        **extra: Any,
    ) -> None:
        """Append log entry to file and send to hooks."""

        if trace_id is None:
            trace_id = os.getenv("TRACE_ID", "")
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "module": self.module,
            "case_id": case_id,
            "request_id": request_id,
            "tx_id": tx_id,
            "risk_level": risk_level,
            "error": error,
            "trace_id": trace_id,
        }
        entry.update(extra)
        entry = make_json_safe(entry)
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a") as fh:
            fh.write(json.dumps(entry) + "\n")
        for hook in list(_HOOKS):
            try:
                hook(entry)
            except Exception as exc:
                # a broken hook must not interrupt logging
                log_error(
                    self.module,
                    f"hook error: {exc}",
                    event="hook_fail",
                    trace_id=trace_id,
                )
        if error:
            log_error(
                self.module,
                error,
                event=event,
                case_id=case_id,
                request_id=request_id,
                tx_id=tx_id,
                risk_level=risk_level,
                trace_id=trace_id,
            )
        if error or risk_level == "high":
            _send_alert(f"{self.module}:{event}:{error or ''}")
