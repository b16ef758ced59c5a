"""Filecoin address codec and EVM address normalisation.

String form is ``<network><protocol><payload>``: ``f0<id>`` for ID addresses,
``f1``/``f2``/``f3`` followed by base32(payload + checksum), and
``f4<namespace>f`` followed by base32(subaddress + checksum) for delegated
addresses. The checksum is a 4-byte blake2b over the binary address.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import Optional, Tuple

from eth_utils import is_hex_address, to_normalized_address

ID, SECP256K1, ACTOR, BLS, DELEGATED = 0, 1, 2, 3, 4
EAM_NAMESPACE = 10
NETWORKS = ("f", "t")
_PAYLOAD_SIZES = {SECP256K1: 20, ACTOR: 20, BLS: 48}


def _leb128_encode(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _leb128_decode(data: bytes) -> Tuple[int, int]:
    """Return (value, bytes consumed)."""
    result = shift = 0
    for i, byte in enumerate(data):
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, i + 1
        shift += 7
    raise ValueError("truncated varint")


def _checksum(raw: bytes) -> bytes:
    return hashlib.blake2b(raw, digest_size=4).digest()


def _b32encode(data: bytes) -> str:
    return base64.b32encode(data).decode().lower().rstrip("=")


def _b32decode(text: str) -> bytes:
    padded = text.upper() + "=" * (-len(text) % 8)
    try:
        return base64.b32decode(padded)
    except ValueError as exc:
        raise ValueError(f"invalid base32 payload {text!r}") from exc


@dataclass(frozen=True)
class FilecoinAddress:
    protocol: int
    payload: bytes
    network: str = "f"
    namespace: Optional[int] = None

    def to_bytes(self) -> bytes:
        if self.protocol == DELEGATED:
            return bytes([DELEGATED]) + _leb128_encode(self.namespace or 0) + self.payload
        return bytes([self.protocol]) + self.payload

    def __str__(self) -> str:
        if self.protocol == ID:
            return f"{self.network}0{_leb128_decode(self.payload)[0]}"
        raw = self.to_bytes()
        body = _b32encode(self.payload + _checksum(raw))
        if self.protocol == DELEGATED:
            return f"{self.network}4{self.namespace}f{body}"
        return f"{self.network}{self.protocol}{body}"


def parse_address(text: str) -> FilecoinAddress:
    """Parse the string form of a Filecoin address."""

    text = text.strip()
    if len(text) < 3 or text[0] not in NETWORKS or not text[1].isdigit():
        raise ValueError(f"invalid filecoin address {text!r}")
    network, protocol, rest = text[0], int(text[1]), text[2:]
    if protocol == ID:
        if not rest.isdigit():
            raise ValueError(f"invalid ID address {text!r}")
        return FilecoinAddress(ID, _leb128_encode(int(rest)), network)
    if protocol == DELEGATED:
        ns_text, sep, body = rest.partition("f")
        if not sep or not ns_text.isdigit():
            raise ValueError(f"invalid delegated address {text!r}")
        namespace = int(ns_text)
        decoded = _b32decode(body)
        payload, checksum = decoded[:-4], decoded[-4:]
        addr = FilecoinAddress(DELEGATED, payload, network, namespace)
    elif protocol in _PAYLOAD_SIZES:
        decoded = _b32decode(rest)
        payload, checksum = decoded[:-4], decoded[-4:]
        if len(payload) != _PAYLOAD_SIZES[protocol]:
            raise ValueError(f"invalid payload length for {text!r}")
        addr = FilecoinAddress(protocol, payload, network)
    else:
        raise ValueError(f"unknown address protocol in {text!r}")
    if _checksum(addr.to_bytes()) != checksum:
        raise ValueError(f"checksum mismatch for {text!r}")
    return addr


def address_from_bytes(raw: bytes, network: str = "f") -> FilecoinAddress:
    """Inverse of :meth:`FilecoinAddress.to_bytes`."""

    if not raw:
        raise ValueError("empty address bytes")
    protocol, body = raw[0], raw[1:]
    if protocol == ID:
        _leb128_decode(body)
        return FilecoinAddress(ID, body, network)
    if protocol == DELEGATED:
        namespace, used = _leb128_decode(body)
        return FilecoinAddress(DELEGATED, body[used:], network, namespace)
    if protocol in _PAYLOAD_SIZES and len(body) == _PAYLOAD_SIZES[protocol]:
        return FilecoinAddress(protocol, body, network)
    raise ValueError(f"invalid address bytes 0x{raw.hex()}")


def address_bytes(text: str) -> bytes:
    return parse_address(text).to_bytes()


def with_network(text: str, network: str) -> str:
    """Rewrite the network prefix (``f``/``t``) of an address string."""
    if network not in NETWORKS:
        raise ValueError(f"unknown network prefix {network!r}")
    return network + text.strip()[1:]


def same_address(left: str, right: str) -> bool:
    """Compare two address strings ignoring the network prefix."""
    try:
        return address_bytes(left) == address_bytes(right)
    except ValueError:
        return False


def same_actor(left: str, right: str) -> bool:
    """Like :func:`same_address` but also accepts ``0x`` forms on either side.

    ``f410f`` and ``f0`` addresses are compared through their EVM form; other
    protocols only equal themselves.
    """
    try:
        left_evm, right_evm = evm_address_of(left), evm_address_of(right)
    except ValueError:
        return False
    if left_evm is not None and right_evm is not None:
        return left_evm == right_evm
    return same_address(left, right)


def normalize_evm(address: str) -> str:
    if not is_hex_address(address):
        raise ValueError(f"invalid EVM address {address!r}")
    return to_normalized_address(address)


def evm_address_of(text: str) -> Optional[str]:
    """EVM form of ``text`` when derivable offline, else None.

    ``0x`` strings are normalised, ``f410f`` addresses carry the EVM address
    in their payload and ``f0`` IDs map to the masked ``0xff..`` form. Other
    protocols need a chain lookup.
    """

    if text.startswith("0x"):
        return normalize_evm(text)
    addr = parse_address(text)
    if addr.protocol == DELEGATED and addr.namespace == EAM_NAMESPACE and len(addr.payload) == 20:
        return "0x" + addr.payload.hex()
    if addr.protocol == ID:
        actor_id = _leb128_decode(addr.payload)[0]
        return "0xff" + "00" * 11 + actor_id.to_bytes(8, "big").hex()
    return None


def delegated_from_evm(evm: str, network: str = "f") -> str:
    """``f410f`` address for an EVM address."""
    raw = bytes.fromhex(normalize_evm(evm)[2:])
    return str(FilecoinAddress(DELEGATED, raw, network, EAM_NAMESPACE))
