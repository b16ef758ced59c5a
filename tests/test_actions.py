"""Action descriptors: calldata encoding, decoding and equality."""

from pathlib import Path
import sys

import pytest
from eth_abi import encode as abi_encode

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from core.errors import DecodeMismatch
from datacap.actions import (
    AddSPs,
    DecreaseAllowance,
    GrantAllowance,
    IncreaseAllowance,
    RemoveSPs,
    SetDeviation,
    chunk_providers,
    contract_units_to_deviation,
    decode_any,
    deviation_to_contract_units,
    pack_providers,
    provider_id,
    unpack_providers,
)
from datacap.addresses import address_bytes, delegated_from_evm

CLIENT_EVM = "0x" + "12" * 20
CLIENT_FIL = delegated_from_evm(CLIENT_EVM, "f")
BOUNDARY_AMOUNTS = [0, 1, 2**51]


def _variants(amount):
    return [
        GrantAllowance("f01234", amount),
        GrantAllowance(CLIENT_FIL, amount),
        IncreaseAllowance(CLIENT_EVM, amount),
        DecreaseAllowance(CLIENT_FIL, amount),
        SetDeviation(CLIENT_EVM, amount),
    ]


@pytest.mark.parametrize("amount", BOUNDARY_AMOUNTS)
def test_amount_variants_survive_encoding(amount):
    for action in _variants(amount):
        assert type(action).decode(action.encode()) == action
        assert decode_any(action.encode()) == action


def test_provider_variants_survive_encoding():
    for cls in (AddSPs, RemoveSPs):
        action = cls(CLIENT_EVM, (1000, "f01001", "1002"))
        assert action.providers == (1000, 1001, 1002)
        assert cls.decode(action.encode()) == action


def test_equality_is_semantic():
    assert GrantAllowance("f01234", 5) == GrantAllowance(address_bytes("t01234"), 5)
    assert IncreaseAllowance(CLIENT_FIL, 7) == IncreaseAllowance(CLIENT_EVM.upper().replace("0X", "0x"), 7)
    assert GrantAllowance("f01234", 5 * 2**40) != GrantAllowance("f01234", 6 * 2**40)
    # packed SP lists are order sensitive
    assert AddSPs(CLIENT_EVM, (1, 2)) != AddSPs(CLIENT_EVM, (2, 1))
    assert AddSPs(CLIENT_EVM, (1, 2)) != RemoveSPs(CLIENT_EVM, (1, 2))


def test_decode_rejects_other_signatures():
    calldata = IncreaseAllowance(CLIENT_EVM, 1).encode()
    with pytest.raises(DecodeMismatch):
        DecreaseAllowance.decode(calldata)
    with pytest.raises(DecodeMismatch):
        GrantAllowance.decode(b"\x01\x02")


def test_decode_rejects_malformed_arguments():
    selector = GrantAllowance.selector()
    with pytest.raises(DecodeMismatch):
        GrantAllowance.decode(selector + b"\x00" * 7)
    # well-formed ABI, but the bytes are no Filecoin address
    bogus = selector + abi_encode(["bytes", "uint256"], [b"\x09\x09", 5])
    with pytest.raises(DecodeMismatch):
        GrantAllowance.decode(bogus)
    # packed SP list whose length is not a multiple of eight
    odd = AddSPs.selector() + abi_encode(["address", "bytes"], [CLIENT_EVM, b"\x00" * 9])
    with pytest.raises(DecodeMismatch):
        AddSPs.decode(odd)
    with pytest.raises(DecodeMismatch):
        decode_any(b"\xde\xad\xbe\xef")


def test_construction_validates():
    with pytest.raises(ValueError):
        GrantAllowance("f01234", -1)
    with pytest.raises(ValueError):
        GrantAllowance("f01234", 2**256)
    with pytest.raises(TypeError):
        GrantAllowance("f01234", "5TiB")
    with pytest.raises(ValueError):
        IncreaseAllowance("not-an-address", 1)


def test_pack_providers():
    packed = pack_providers([1, 2**64 - 1])
    assert packed == (1).to_bytes(8, "big") + b"\xff" * 8
    assert unpack_providers(packed) == (1, 2**64 - 1)
    with pytest.raises(ValueError):
        pack_providers([2**64])


def test_provider_id_forms():
    assert provider_id(7) == 7
    assert provider_id("7") == 7
    assert provider_id("f07") == 7
    assert provider_id("t07") == 7


@pytest.mark.parametrize(
    "text,units",
    [("10%", 1000), ("10", 1000), ("0.5%", 50), ("0.005%", 1), ("0.004%", 0), ("100%", 10000)],
)
def test_deviation_conversion(text, units):
    assert deviation_to_contract_units(text) == units


def test_deviation_bounds_and_inverse():
    with pytest.raises(ValueError):
        deviation_to_contract_units("101%")
    with pytest.raises(ValueError):
        deviation_to_contract_units("lots")
    assert contract_units_to_deviation(1000) == "10%"
    assert contract_units_to_deviation(50) == "0.5%"
    assert SetDeviation.from_percentage(CLIENT_EVM, "10%").deviation == 1000
    assert SetDeviation(CLIENT_EVM, 1000).percentage == "10%"


def test_chunk_providers():
    chunks = chunk_providers(range(1000, 1020), 8)
    assert [len(c) for c in chunks] == [8, 8, 4]
    assert chunks[0][0] == 1000 and chunks[-1][-1] == 1019
    assert chunk_providers([], 8) == ()
    with pytest.raises(ValueError):
        chunk_providers([1], 0)
