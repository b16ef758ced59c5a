"""Semantic multisig actions and their EVM calldata encoding.

Each variant is a frozen dataclass whose fields are already normalised at
construction (EVM addresses lower-cased, Filecoin addresses reduced to their
binary form, amounts as integers of bytes, SP ids as an ordered tuple). Two
descriptors are the same action exactly when they compare equal, and
``type(a).decode(a.encode()) == a`` holds for every variant.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import ClassVar, Iterable, Tuple, Type, Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from core.errors import DecodeMismatch
from datacap.addresses import address_bytes, address_from_bytes, evm_address_of, normalize_evm

UINT256_MAX = 2**256 - 1
UINT64_MAX = 2**64 - 1
DEVIATION_DENOMINATOR = 10_000


def _evm(value: str) -> str:
    evm = evm_address_of(value)
    if evm is None:
        raise ValueError(f"{value!r} has no offline EVM form; resolve it through the chain first")
    return evm


def _amount(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"amount must be an int of bytes, got {type(value).__name__}")
    if not 0 <= value <= UINT256_MAX:
        raise ValueError(f"amount {value} outside uint256 range")
    return value


def pack_providers(providers: Iterable[int]) -> bytes:
    """Tightly packed uint64 big-endian sequence, order preserved."""
    out = bytearray()
    for sp in providers:
        if not 0 <= sp <= UINT64_MAX:
            raise ValueError(f"storage provider id {sp} outside uint64 range")
        out += sp.to_bytes(8, "big")
    return bytes(out)


def unpack_providers(packed: bytes) -> Tuple[int, ...]:
    if len(packed) % 8:
        raise DecodeMismatch(f"packed SP list length {len(packed)} is not a multiple of 8")
    return tuple(int.from_bytes(packed[i:i + 8], "big") for i in range(0, len(packed), 8))


def provider_id(value: Union[int, str]) -> int:
    """Accept 1234, "1234", "f01234" or "t01234"."""
    if isinstance(value, int):
        return value
    text = value.strip()
    if text[:2] in ("f0", "t0"):
        text = text[2:]
    return int(text)


def deviation_to_contract_units(value: Union[str, int, float, Decimal]) -> int:
    """Percentage ("10%", "10", 10.5) to contract units over a 10000 denominator."""
    text = str(value).strip().rstrip("%").strip()
    try:
        pct = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"invalid deviation {value!r}") from exc
    if pct < 0 or pct > 100:
        raise ValueError(f"deviation {value!r} must be within 0..100%")
    return int((pct * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def contract_units_to_deviation(units: int) -> str:
    pct = (Decimal(units) / 100).normalize()
    return f"{format(pct, 'f')}%"


class ActionDescriptor:
    """Common encode/decode plumbing; subclasses declare signature and arg order."""

    SIGNATURE: ClassVar[str]
    ARG_TYPES: ClassVar[Tuple[str, ...]]
    LABEL: ClassVar[str]

    @classmethod
    def selector(cls) -> bytes:
        return function_signature_to_4byte_selector(cls.SIGNATURE)

    def abi_args(self) -> tuple:
        raise NotImplementedError

    @classmethod
    def from_abi_args(cls, args: tuple) -> "ActionDescriptor":
        raise NotImplementedError

    def encode(self) -> bytes:
        return self.selector() + abi_encode(list(self.ARG_TYPES), list(self.abi_args()))

    @classmethod
    def decode(cls, calldata: bytes) -> "ActionDescriptor":
        data = bytes(calldata)
        if len(data) < 4 or data[:4] != cls.selector():
            raise DecodeMismatch(f"selector mismatch for {cls.SIGNATURE}")
        try:
            args = abi_decode(list(cls.ARG_TYPES), data[4:])
        except (DecodingError, ValueError, OverflowError) as exc:
            raise DecodeMismatch(f"{cls.SIGNATURE}: {exc}") from exc
        try:
            return cls.from_abi_args(tuple(args))
        except (TypeError, ValueError) as exc:
            raise DecodeMismatch(f"{cls.SIGNATURE}: {exc}") from exc


@dataclass(frozen=True)
class GrantAllowance(ActionDescriptor):
    """Grant datacap to a client (verified registry or allocator contract)."""

    client: bytes
    amount: int

    SIGNATURE: ClassVar[str] = "addVerifiedClient(bytes,uint256)"
    ARG_TYPES: ClassVar[Tuple[str, ...]] = ("bytes", "uint256")
    LABEL: ClassVar[str] = "verify client"

    def __post_init__(self) -> None:
        client = self.client
        if isinstance(client, str):
            client = address_bytes(client)
        else:
            client = bytes(client)
            address_from_bytes(client)
        object.__setattr__(self, "client", client)
        object.__setattr__(self, "amount", _amount(self.amount))

    def client_address(self, network: str = "f") -> str:
        return str(address_from_bytes(self.client, network))

    def abi_args(self) -> tuple:
        return (self.client, self.amount)

    @classmethod
    def from_abi_args(cls, args: tuple) -> "GrantAllowance":
        return cls(bytes(args[0]), int(args[1]))


@dataclass(frozen=True)
class _ClientAmountAction(ActionDescriptor):
    client: str
    amount: int

    ARG_TYPES: ClassVar[Tuple[str, ...]] = ("address", "uint256")

    def __post_init__(self) -> None:
        object.__setattr__(self, "client", _evm(self.client))
        object.__setattr__(self, "amount", _amount(self.amount))

    def abi_args(self) -> tuple:
        return (self.client, self.amount)

    @classmethod
    def from_abi_args(cls, args: tuple) -> "ActionDescriptor":
        return cls(normalize_evm(args[0]), int(args[1]))


@dataclass(frozen=True)
class IncreaseAllowance(_ClientAmountAction):
    SIGNATURE: ClassVar[str] = "increaseAllowance(address,uint256)"
    LABEL: ClassVar[str] = "increase allowance"


@dataclass(frozen=True)
class DecreaseAllowance(_ClientAmountAction):
    SIGNATURE: ClassVar[str] = "decreaseAllowance(address,uint256)"
    LABEL: ClassVar[str] = "decrease allowance"


@dataclass(frozen=True)
class SetDeviation(ActionDescriptor):
    """Deviation bound in contract units (10% is 1000)."""

    client: str
    deviation: int

    SIGNATURE: ClassVar[str] = "setClientMaxDeviationFromFairDistribution(address,uint256)"
    ARG_TYPES: ClassVar[Tuple[str, ...]] = ("address", "uint256")
    LABEL: ClassVar[str] = "max deviation"

    def __post_init__(self) -> None:
        object.__setattr__(self, "client", _evm(self.client))
        object.__setattr__(self, "deviation", _amount(self.deviation))

    @classmethod
    def from_percentage(cls, client: str, percentage: Union[str, int, float]) -> "SetDeviation":
        return cls(client, deviation_to_contract_units(percentage))

    @property
    def percentage(self) -> str:
        return contract_units_to_deviation(self.deviation)

    def abi_args(self) -> tuple:
        return (self.client, self.deviation)

    @classmethod
    def from_abi_args(cls, args: tuple) -> "SetDeviation":
        return cls(normalize_evm(args[0]), int(args[1]))


@dataclass(frozen=True)
class _ProviderListAction(ActionDescriptor):
    client: str
    providers: Tuple[int, ...]

    ARG_TYPES: ClassVar[Tuple[str, ...]] = ("address", "bytes")

    def __post_init__(self) -> None:
        object.__setattr__(self, "client", _evm(self.client))
        providers = tuple(provider_id(p) for p in self.providers)
        pack_providers(providers)
        object.__setattr__(self, "providers", providers)

    @property
    def packed(self) -> bytes:
        return pack_providers(self.providers)

    def abi_args(self) -> tuple:
        return (self.client, self.packed)

    @classmethod
    def from_abi_args(cls, args: tuple) -> "ActionDescriptor":
        return cls(normalize_evm(args[0]), unpack_providers(bytes(args[1])))


@dataclass(frozen=True)
class AddSPs(_ProviderListAction):
    SIGNATURE: ClassVar[str] = "addAllowedSPsForClientPacked(address,bytes)"
    LABEL: ClassVar[str] = "add allowed SPs"


@dataclass(frozen=True)
class RemoveSPs(_ProviderListAction):
    SIGNATURE: ClassVar[str] = "removeAllowedSPsForClientPacked(address,bytes)"
    LABEL: ClassVar[str] = "remove allowed SPs"


ACTION_TYPES: Tuple[Type[ActionDescriptor], ...] = (
    GrantAllowance,
    IncreaseAllowance,
    DecreaseAllowance,
    SetDeviation,
    AddSPs,
    RemoveSPs,
)


def decode_any(calldata: bytes) -> ActionDescriptor:
    """Decode ``calldata`` as whichever supported action it is."""
    for action_type in ACTION_TYPES:
        try:
            return action_type.decode(calldata)
        except DecodeMismatch:
            continue
    raise DecodeMismatch("calldata matches no supported action")


def chunk_providers(providers: Iterable[Union[int, str]], size: int) -> Tuple[Tuple[int, ...], ...]:
    """Split an SP list into consecutive batches of at most ``size`` entries."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    ids = [provider_id(p) for p in providers]
    return tuple(tuple(ids[i:i + size]) for i in range(0, len(ids), size))
