"""Signer capability and the per-run wallet session.

The session replaces a process-wide wallet: callers build one, pass it to the
gateway and coordinator, and nothing else holds a reference to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from core.logger import StructuredLogger

LOG = StructuredLogger("session")


class Signer(Protocol):
    """Key custody lives behind this interface (Ledger, remote signer, ...)."""

    def accounts(self, start: int, count: int) -> List[str]:
        """Return ``count`` account addresses beginning at index ``start``."""

    def sign(self, payload: bytes, account_index: int) -> Dict[str, Any]:
        """Sign a serialized message; returns ``{"Type": int, "Data": base64}``."""


@dataclass
class WalletSession:
    signer: Signer
    multisig_address: str
    network: str = "f"
    accounts: List[str] = field(default_factory=list)
    active_index: int = 0

    def load_accounts(self, count: int) -> List[str]:
        """Enumerate the first ``count`` accounts and reset the active index."""
        self.accounts = list(self.signer.accounts(0, count))
        self.active_index = 0
        LOG.log("accounts_loaded", count=len(self.accounts), multisig=self.multisig_address)
        return self.accounts

    def load_more_accounts(self, count: int) -> List[str]:
        more = list(self.signer.accounts(len(self.accounts), count))
        self.accounts.extend(more)
        LOG.log("accounts_loaded", count=len(more), total=len(self.accounts))
        return more

    def set_active_account(self, index: int) -> None:
        if not 0 <= index < len(self.accounts):
            raise ValueError(f"invalid account index {index}")
        self.active_index = index

    @property
    def active_address(self) -> str:
        if not self.accounts:
            raise ValueError("no accounts loaded")
        return self.accounts[self.active_index]

    def sign(self, payload: bytes) -> Dict[str, Any]:
        return self.signer.sign(payload, self.active_index)
