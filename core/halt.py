"""Operator halt for multisig submissions.

While halted, no Propose or Approve message is built, signed or pushed.
Pending-list reads, inclusion waits and contract views keep working so an
operator can still inspect a multisig mid-incident.

The halt is on when ``DATACAP_HALT=1`` or when the flag file exists
(``DATACAP_HALT_FLAG_FILE``, default ``flags/halt.txt``).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from core.errors import HaltActive
from core.logger import StructuredLogger

HALT_ENV = "DATACAP_HALT"
FLAG_ENV = "DATACAP_HALT_FLAG_FILE"
DEFAULT_FLAG = Path("flags") / "halt.txt"

LOG = StructuredLogger("halt")


def flag_path() -> Path:
    return Path(os.getenv(FLAG_ENV) or DEFAULT_FLAG)


def halt_source() -> Optional[str]:
    """``"env"`` or ``"file"`` while halted, None otherwise."""
    if os.getenv(HALT_ENV) == "1":
        return "env"
    if flag_path().exists():
        return "file"
    return None


def halt_triggered() -> bool:
    return halt_source() is not None


def refuse_submission(multisig: str, method: int, sender: str = "") -> None:
    """Raise :class:`HaltActive` for a message about to be pushed while halted."""

    source = halt_source()
    if source is None:
        return
    message = f"multisig submissions are halted ({source}); method {method} to {multisig} not sent"
    LOG.log(
        "submission_blocked",
        risk_level="high",
        error=message,
        triggered_by=source,
        multisig=multisig,
        method=method,
        sender=sender,
    )
    raise HaltActive(message)


def set_halt(active: bool) -> None:
    """Turn the halt on by writing the flag file, or off by clearing both switches."""
    flag = flag_path()
    if active:
        flag.parent.mkdir(parents=True, exist_ok=True)
        flag.write_text("halted\n")
        LOG.log("halt_on", risk_level="high", flag=str(flag))
        return
    flag.unlink(missing_ok=True)
    os.environ.pop(HALT_ENV, None)
    LOG.log("halt_off", flag=str(flag))
