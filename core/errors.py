"""Error taxonomy for the proposal/approval workflow.

Every error a caller can see derives from :class:`DatacapError`. Only
:class:`DecodeMismatch` is recovered internally; the matcher skips the
pending entry that raised it.
"""

from __future__ import annotations


class DatacapError(Exception):
    """Base class for all workflow errors."""


class DecodeMismatch(DatacapError):
    """Calldata does not follow the layout of the signature it was decoded with."""


class NoMatchFound(DatacapError):
    """The pending transaction expected for an approval is not on chain yet."""


class DuplicateProposal(DatacapError):
    """A matching pending transaction already exists for a fresh proposal."""


class ChainExecutionFailure(DatacapError):
    """A message landed on chain with a non-zero exit code."""

    def __init__(self, message: str, exit_code: int, step: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.step = step


class RevertRequested(ChainExecutionFailure):
    """The second signature executed a failing grant; the case went back to ReadyToSign."""


class TransportFailure(DatacapError):
    """RPC or HTTP call failed before producing a usable answer."""


class UninitializedActor(TransportFailure):
    """The address has no actor on chain yet, so it has no EVM form."""


class InvalidState(DatacapError):
    """The requested action is not permitted for the case's lifecycle state and role."""


class CaseBusy(DatacapError):
    """Another workflow run already holds this case."""


class ConfigError(DatacapError):
    """Configuration values are missing or invalid."""


class HaltActive(DatacapError):
    """Chain submissions are halted by the operator."""
