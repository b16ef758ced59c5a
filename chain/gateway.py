"""Filecoin node access for the multisig workflow.

Module purpose and system role:
    - Read the multisig's pending transactions and decode their payloads.
    - Build, sign and push Propose/Approve messages for the active account.
    - Wait for inclusion and report exit codes; run read-only EVM calls.

Integration points and dependencies:
    - Lotus JSON-RPC over ``web3.HTTPProvider.make_request``.
    - Signing goes through the caller's :class:`chain.session.WalletSession`.
    - Submissions refuse to run while the operator halt switch is active.
"""

from __future__ import annotations

import base64
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests
from hexbytes import HexBytes
from web3 import HTTPProvider
from web3.exceptions import Web3Exception

from chain import messages
from chain.session import WalletSession
from core.errors import TransportFailure, UninitializedActor
from core.halt import refuse_submission
from core.logger import StructuredLogger
from datacap.addresses import (
    address_from_bytes,
    delegated_from_evm,
    normalize_evm,
    same_address,
)
from datacap.models import InclusionReceipt, PendingTransaction

LOG = StructuredLogger("gateway")


class ChainGateway(Protocol):
    """What the coordinator needs from the chain."""

    def list_pending(self, multisig: str) -> List[PendingTransaction]: ...

    def submit_multisig_call(self, session: WalletSession, to: str, calldata: bytes) -> str: ...

    def submit_multisig_native_grant(
        self, session: WalletSession, client: str, cap: int
    ) -> str: ...

    def approve_pending(self, session: WalletSession, tx: PendingTransaction) -> str: ...

    def wait_for_inclusion(self, message_id: str) -> InclusionReceipt: ...

    def static_call(self, to: str, data: bytes) -> bytes: ...

    def to_evm_address(self, address: str) -> str: ...

    def lookup_id(self, address: str) -> str: ...


class FilecoinGateway:
    """Lotus-compatible implementation of :class:`ChainGateway`."""

    def __init__(
        self,
        node_url: str,
        *,
        token: Optional[str] = None,
        network: str = "f",
        registry: Optional[str] = None,
        wait_confidence: int = 1,
        wait_limit_epochs: int = 10,
        wait_retries: int = 5,
        provider: Any = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if provider is None:
            headers = {"Content-Type": "application/json"}
            if token:
                headers["Authorization"] = f"Bearer {token}"
            provider = HTTPProvider(node_url, request_kwargs={"headers": headers, "timeout": 60})
        self.provider = provider
        self.network = network
        self.registry = registry or f"{network}06"
        self.wait_confidence = wait_confidence
        self.wait_limit_epochs = wait_limit_epochs
        self.wait_retries = wait_retries
        self._sleep = sleep

    # ------------------------------------------------------------------
    # JSON-RPC
    # ------------------------------------------------------------------
    def _rpc(self, method: str, params: list) -> Any:
        name = f"Filecoin.{method}"
        try:
            response = self.provider.make_request(name, params)
        except (requests.RequestException, Web3Exception, ValueError) as exc:
            LOG.log("rpc_failed", method=name, error=str(exc))
            raise TransportFailure(f"{name}: {exc}") from exc
        error = response.get("error") if isinstance(response, dict) else None
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise TransportFailure(f"{name}: {message}")
        return response.get("result") if isinstance(response, dict) else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _decode_pending(self, item: Dict[str, Any]) -> PendingTransaction:
        txn_id, to, method, value, approved, params = messages.pending_json_fields(item)
        calldata = address = cap = None
        # entries from unrelated activity keep no payload and fail to match
        try:
            if method == messages.METHOD_INVOKE_EVM:
                calldata = messages.decode_evm_calldata(params)
            elif method == messages.METHOD_ADD_VERIFIED_CLIENT and same_address(to, self.registry):
                raw, cap = messages.decode_add_verified_client(params)
                address = str(address_from_bytes(raw, self.network))
        except (TypeError, ValueError) as exc:
            LOG.log("pending_undecodable", tx_id=str(txn_id), method=method, error=str(exc))
            calldata = address = cap = None
        return PendingTransaction(
            id=txn_id,
            to=to,
            method=method,
            value=value,
            approved=tuple(approved),
            params=params,
            calldata=calldata,
            address=address,
            cap=cap,
        )

    def list_pending(self, multisig: str) -> List[PendingTransaction]:
        """Fresh snapshot of the multisig's pending list."""
        raw = self._rpc("MsigGetPending", [multisig, None]) or []
        pending = [self._decode_pending(item) for item in raw]
        LOG.log("pending_listed", multisig=multisig, count=len(pending))
        return pending

    def static_call(self, to: str, data: bytes) -> bytes:
        result = self._rpc(
            "EthCall", [{"from": None, "to": to, "data": "0x" + bytes(data).hex()}, "latest"]
        )
        return bytes(HexBytes(result or "0x"))

    def to_evm_address(self, address: str) -> str:
        try:
            result = self._rpc("FilecoinAddressToEthAddress", [address, None])
        except TransportFailure as exc:
            if "actor not found" in str(exc):
                raise UninitializedActor(
                    f"{address} has no actor on chain; the wallet is not initialized"
                ) from exc
            raise
        return normalize_evm(result)

    def lookup_id(self, address: str) -> str:
        """Actor ID address for ``address``; unknown actors come back unchanged."""
        try:
            result = self._rpc("StateLookupID", [address, None])
        except TransportFailure as exc:
            if "actor not found" in str(exc):
                return address
            raise
        return str(result)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _push(self, session: WalletSession, to: str, method: int, params: bytes) -> str:
        sender = session.active_address
        refuse_submission(to, method, sender)
        nonce = int(self._rpc("MpoolGetNonce", [sender]))
        message = messages.Message(to=to, from_=sender, nonce=nonce, method=method, params=params)
        estimated = self._rpc("GasEstimateMessageGas", [message.to_json(), {"MaxFee": "0"}, None])
        message = messages.Message.from_json(estimated)
        signature = session.sign(message.serialize())
        result = self._rpc("MpoolPush", [{"Message": message.to_json(), "Signature": signature}])
        cid = result["/"] if isinstance(result, dict) else str(result)
        LOG.log("message_pushed", tx_id=cid, to=to, method=method, sender=sender, nonce=nonce)
        return cid

    def _propose(self, session: WalletSession, to: str, method: int, params: bytes) -> str:
        inner = messages.propose_params(to, 0, method, params)
        return self._push(session, session.multisig_address, messages.METHOD_PROPOSE, inner)

    def submit_multisig_call(self, session: WalletSession, to: str, calldata: bytes) -> str:
        """Propose an EVM invocation of ``to`` through the multisig."""
        if to.startswith("0x"):
            to = delegated_from_evm(to, self.network)
        return self._propose(
            session, to, messages.METHOD_INVOKE_EVM, messages.invoke_evm_params(calldata)
        )

    def submit_multisig_native_grant(self, session: WalletSession, client: str, cap: int) -> str:
        """Propose ``AddVerifiedClient`` on the verified registry actor."""
        return self._propose(
            session,
            self.registry,
            messages.METHOD_ADD_VERIFIED_CLIENT,
            messages.add_verified_client_params(client, cap),
        )

    def approve_pending(self, session: WalletSession, tx: PendingTransaction) -> str:
        if tx.proposer is None:
            raise TransportFailure(f"pending {tx.id} has no proposer")
        digest = messages.proposal_hash(tx.proposer, tx.to, tx.value, tx.method, tx.params)
        params = messages.approve_params(tx.id, digest)
        return self._push(session, session.multisig_address, messages.METHOD_APPROVE, params)

    def wait_for_inclusion(self, message_id: str) -> InclusionReceipt:
        """Block until ``message_id`` lands; lookback timeouts are retried."""

        attempts = 0
        while True:
            try:
                result = self._rpc(
                    "StateWaitMsg",
                    [{"/": message_id}, self.wait_confidence, self.wait_limit_epochs, True],
                )
                break
            except TransportFailure as exc:
                attempts += 1
                if "too long" not in str(exc) or attempts > self.wait_retries:
                    raise
                LOG.log("wait_retry", tx_id=message_id, attempt=attempts)
                self._sleep(1.0)
        receipt = result.get("Receipt") or {}
        decoded = result.get("ReturnDec") or {}
        if not isinstance(decoded, dict):
            decoded = {}
        ret = receipt.get("Return")
        return InclusionReceipt(
            exit_code=int(receipt.get("ExitCode", 0)),
            return_data=base64.b64decode(ret) if ret else b"",
            applied=bool(decoded.get("Applied", False)),
            inner_code=int(decoded.get("Code", 0) or 0),
            height=result.get("Height"),
        )
