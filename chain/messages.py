"""CBOR encodings for Filecoin messages and multisig parameters."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import cbor2

from datacap.addresses import address_bytes

METHOD_SEND = 0
METHOD_PROPOSE = 2
METHOD_APPROVE = 3
METHOD_ADD_VERIFIED_CLIENT = 4
METHOD_INVOKE_EVM = 3844450837


def encode_bigint(value: int) -> bytes:
    """Filecoin big integer: empty for zero, else sign byte plus big-endian magnitude."""
    if value == 0:
        return b""
    magnitude = abs(value)
    body = magnitude.to_bytes((magnitude.bit_length() + 7) // 8, "big")
    return (b"\x01" if value < 0 else b"\x00") + body


def decode_bigint(data: bytes) -> int:
    if not data:
        return 0
    magnitude = int.from_bytes(data[1:], "big")
    return -magnitude if data[0] == 1 else magnitude


def invoke_evm_params(calldata: bytes) -> bytes:
    return cbor2.dumps(bytes(calldata))


def add_verified_client_params(client: str, cap: int) -> bytes:
    return cbor2.dumps([address_bytes(client), encode_bigint(cap)])


def propose_params(to: str, value: int, method: int, params: bytes) -> bytes:
    return cbor2.dumps([address_bytes(to), encode_bigint(value), method, params])


def proposal_hash(requester: str, to: str, value: int, method: int, params: bytes) -> bytes:
    """Hash the multisig actor checks approvals against."""
    data = cbor2.dumps(
        [address_bytes(requester), address_bytes(to), encode_bigint(value), method, params]
    )
    return hashlib.blake2b(data, digest_size=32).digest()


def approve_params(txn_id: int, hash_: bytes) -> bytes:
    return cbor2.dumps([txn_id, hash_])


def decode_evm_calldata(params: bytes) -> bytes:
    decoded = cbor2.loads(params)
    if not isinstance(decoded, (bytes, bytearray)):
        raise ValueError("invoke params are not a byte string")
    return bytes(decoded)


def decode_add_verified_client(params: bytes) -> Tuple[bytes, int]:
    decoded = cbor2.loads(params)
    if not isinstance(decoded, list) or len(decoded) != 2:
        raise ValueError("AddVerifiedClient params must be a 2-element array")
    addr, cap = decoded
    return bytes(addr), decode_bigint(bytes(cap))


@dataclass
class Message:
    to: str
    from_: str
    nonce: int
    method: int
    params: bytes = b""
    value: int = 0
    gas_limit: int = 0
    gas_fee_cap: int = 0
    gas_premium: int = 0
    version: int = 0

    def serialize(self) -> bytes:
        return cbor2.dumps(
            [
                self.version,
                address_bytes(self.to),
                address_bytes(self.from_),
                self.nonce,
                encode_bigint(self.value),
                self.gas_limit,
                encode_bigint(self.gas_fee_cap),
                encode_bigint(self.gas_premium),
                self.method,
                self.params,
            ]
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "Version": self.version,
            "To": self.to,
            "From": self.from_,
            "Nonce": self.nonce,
            "Value": str(self.value),
            "GasLimit": self.gas_limit,
            "GasFeeCap": str(self.gas_fee_cap),
            "GasPremium": str(self.gas_premium),
            "Method": self.method,
            "Params": base64.b64encode(self.params).decode() if self.params else None,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Message":
        params = data.get("Params")
        return cls(
            to=data["To"],
            from_=data["From"],
            nonce=int(data["Nonce"]),
            method=int(data["Method"]),
            params=base64.b64decode(params) if params else b"",
            value=int(data.get("Value") or 0),
            gas_limit=int(data.get("GasLimit") or 0),
            gas_fee_cap=int(data.get("GasFeeCap") or 0),
            gas_premium=int(data.get("GasPremium") or 0),
            version=int(data.get("Version") or 0),
        )


def pending_json_fields(item: Dict[str, Any]) -> Tuple[int, str, int, int, List[str], bytes]:
    """Unpack one ``MsigGetPending`` entry."""
    params = item.get("Params")
    return (
        int(item["ID"]),
        item["To"],
        int(item["Method"]),
        int(item.get("Value") or 0),
        list(item.get("Approved") or []),
        base64.b64decode(params) if params else b"",
    )
