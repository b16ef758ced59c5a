"""Filecoin address codec."""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from datacap.addresses import (
    DELEGATED,
    ID,
    address_bytes,
    address_from_bytes,
    delegated_from_evm,
    evm_address_of,
    parse_address,
    same_actor,
    same_address,
    with_network,
)

EVM = "0x" + "ab" * 20


def test_id_address_round_trip():
    addr = parse_address("f01234")
    assert addr.protocol == ID
    assert str(addr) == "f01234"
    assert address_bytes("f01234") == bytes([0]) + bytes([0xD2, 0x09])
    assert str(address_from_bytes(address_bytes("t01234"), "t")) == "t01234"


def test_delegated_address_round_trip():
    text = delegated_from_evm(EVM, "t")
    assert text.startswith("t410f")
    addr = parse_address(text)
    assert addr.protocol == DELEGATED
    assert addr.namespace == 10
    assert evm_address_of(text) == EVM
    assert str(address_from_bytes(addr.to_bytes(), "t")) == text


def test_checksum_is_verified():
    text = delegated_from_evm(EVM, "f")
    i = 10
    broken = text[:i] + ("a" if text[i] != "a" else "b") + text[i + 1:]
    with pytest.raises(ValueError):
        parse_address(broken)


@pytest.mark.parametrize("bad", ["", "x01", "f9abc", "f0abc", "f4"])
def test_invalid_addresses(bad):
    with pytest.raises(ValueError):
        parse_address(bad)


def test_evm_forms():
    assert evm_address_of(EVM.upper().replace("0X", "0x")) == EVM
    assert evm_address_of("f01234") == "0xff" + "00" * 11 + (1234).to_bytes(8, "big").hex()


def test_network_helpers():
    assert with_network("f01234", "t") == "t01234"
    assert same_address("f01234", "t01234")
    assert not same_address("f01234", "f01235")
    assert not same_address("f01234", "garbage")
    with pytest.raises(ValueError):
        with_network("f01234", "x")


def test_same_actor_accepts_evm_forms():
    assert same_actor(delegated_from_evm(EVM, "t"), EVM.upper().replace("0X", "0x"))
    assert same_actor("f01234", "0xff" + "00" * 11 + (1234).to_bytes(8, "big").hex())
    assert same_actor("f01234", "t01234")
    assert not same_actor(delegated_from_evm(EVM), "0x" + "cd" * 20)
    assert not same_actor("f01234", "not-an-address")
