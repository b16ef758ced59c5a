"""Find the pending multisig transaction that carries a given action.

Module purpose and system role:
    - Decode every pending entry against the actions being searched for and
      report, per target, the first entry that is structurally and by value
      the same action.
    - Entries that belong to unrelated multisig activity fail to decode and
      are skipped; they never abort the search.

Integration points and dependencies:
    - Pending entries come from the chain gateway's ``list_pending`` and are
      never cached between searches.
    - Comparison is descriptor equality (see ``datacap.actions``) plus, when
      the caller names one, the destination the entry was sent to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

from core import metrics
from core.errors import DecodeMismatch
from core.logger import StructuredLogger
from datacap.actions import ActionDescriptor, GrantAllowance
from datacap.addresses import same_actor
from datacap.models import PendingTransaction

LOG = StructuredLogger("matcher")


class MatchStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    NONE = "none"


@dataclass
class MatchResult:
    """Per-target outcome of one pass over the pending list."""

    matches: Dict[str, Optional[PendingTransaction]] = field(default_factory=dict)
    scanned: int = 0
    mismatches: int = 0

    @property
    def status(self) -> MatchStatus:
        found = sum(1 for tx in self.matches.values() if tx is not None)
        if found == 0:
            return MatchStatus.NONE
        if found == len(self.matches):
            return MatchStatus.COMPLETE
        return MatchStatus.PARTIAL

    def get(self, key: str) -> Optional[PendingTransaction]:
        return self.matches.get(key)

    @property
    def missing(self) -> list[str]:
        return [k for k, tx in self.matches.items() if tx is None]

    @property
    def found(self) -> list[str]:
        return [k for k, tx in self.matches.items() if tx is not None]


def carries_action(tx: PendingTransaction, target: ActionDescriptor) -> bool:
    """True when ``tx`` is the same semantic action as ``target``.

    Raises :class:`DecodeMismatch` when the entry cannot be read as the
    target's action type.
    """

    if isinstance(target, GrantAllowance) and tx.cap is not None:
        if tx.address is None:
            raise DecodeMismatch(f"pending {tx.id} has a cap but no address")
        try:
            native = GrantAllowance(tx.address, tx.cap)
        except (TypeError, ValueError) as exc:
            raise DecodeMismatch(f"pending {tx.id}: {exc}") from exc
        return native == target
    if tx.calldata is None:
        raise DecodeMismatch(f"pending {tx.id} carries no calldata")
    return type(target).decode(tx.calldata) == target


def sent_to(tx: PendingTransaction, destination: Optional[str]) -> bool:
    """True when ``tx`` invokes ``destination``; None stands for the native registry grant."""
    if destination is None:
        return tx.cap is not None
    return tx.calldata is not None and same_actor(tx.to, destination)


class PendingTransactionMatcher:
    """Stateless matcher; one pass over the list per call."""

    def find_match(
        self,
        pending: Sequence[PendingTransaction],
        target: ActionDescriptor,
        destination: Optional[str] = None,
        *,
        check_destination: bool = False,
    ) -> Optional[PendingTransaction]:
        destinations = {"target": destination} if check_destination else None
        return self.find_matches(pending, {"target": target}, destinations).get("target")

    def find_matches(
        self,
        pending: Sequence[PendingTransaction],
        targets: Mapping[str, ActionDescriptor],
        destinations: Optional[Mapping[str, Optional[str]]] = None,
    ) -> MatchResult:
        """Search for several targets at once.

        The pass ends early only when every target has been found; a target
        that is found keeps its first match even if later entries also match.
        A key present in ``destinations`` only matches entries sent there
        (None meaning a native registry grant).
        """

        result = MatchResult(matches={key: None for key in targets})
        for tx in pending:
            if not result.missing:
                break
            result.scanned += 1
            for key in result.missing:
                if destinations is not None and key in destinations:
                    if not sent_to(tx, destinations[key]):
                        continue
                try:
                    if carries_action(tx, targets[key]):
                        result.matches[key] = tx
                except DecodeMismatch:
                    result.mismatches += 1
        metrics.record_scan(result.scanned, result.mismatches)
        LOG.log(
            "match",
            targets=list(targets),
            found=result.found,
            missing=result.missing,
            status=result.status.value,
            scanned=result.scanned,
            pending=len(pending),
        )
        return result
