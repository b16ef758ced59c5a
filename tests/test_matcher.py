"""Pending transaction matching."""

from pathlib import Path
import random
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from core import metrics
from datacap.actions import AddSPs, GrantAllowance, IncreaseAllowance
from datacap.addresses import delegated_from_evm
from datacap.matcher import MatchStatus, PendingTransactionMatcher
from datacap.models import PendingTransaction

TIB = 2**40
CLIENT_EVM = "0x" + "ab" * 20


def _evm(tx_id, action):
    return PendingTransaction(id=tx_id, to="f0999", method=3844450837, calldata=action.encode())


def _native(tx_id, client, cap):
    return PendingTransaction(id=tx_id, to="f06", method=4, address=client, cap=cap)


def test_amount_must_match_exactly():
    matcher = PendingTransactionMatcher()
    target = GrantAllowance("f01234", 5 * TIB)
    pending = [_native(1, "f01234", 6 * TIB), _evm(2, GrantAllowance("f01234", 6 * TIB))]
    assert matcher.find_match(pending, target) is None

    pending.append(_native(3, "f01234", 5 * TIB))
    assert matcher.find_match(pending, target).id == 3


def test_native_and_evm_forms_are_the_same_action():
    matcher = PendingTransactionMatcher()
    target = GrantAllowance("t01234", 5 * TIB)
    assert matcher.find_match([_native(1, "f01234", 5 * TIB)], target).id == 1
    assert matcher.find_match([_evm(2, GrantAllowance("f01234", 5 * TIB))], target).id == 2


def test_undecodable_entries_are_skipped():
    matcher = PendingTransactionMatcher()
    target = IncreaseAllowance(CLIENT_EVM, TIB)
    pending = [
        PendingTransaction(id=1, to="f0999", method=0),
        PendingTransaction(id=2, to="f0999", method=3844450837, calldata=b"\x00\x01"),
        _evm(3, AddSPs(CLIENT_EVM, (1000,))),
        _evm(4, target),
    ]
    result = matcher.find_matches(pending, {"increase": target})
    assert result.get("increase").id == 4
    assert result.mismatches == 3
    assert metrics.get_metrics()["decode_mismatches"] == 3
    assert metrics.get_metrics()["pending_scanned"] == 4


def test_first_match_wins_among_duplicates():
    matcher = PendingTransactionMatcher()
    target = IncreaseAllowance(CLIENT_EVM, TIB)
    pending = [_evm(9, target), _evm(4, target)]
    assert matcher.find_match(pending, target).id == 9


def test_result_is_order_independent_for_unique_match():
    matcher = PendingTransactionMatcher()
    target = GrantAllowance("f01234", 5 * TIB)
    pending = [_native(i, "f01234", i * TIB) for i in range(1, 10)]
    rng = random.Random(42)
    for _ in range(5):
        rng.shuffle(pending)
        assert matcher.find_match(pending, target).id == 5


def test_partial_status():
    matcher = PendingTransactionMatcher()
    grant = GrantAllowance("f01234", 5 * TIB)
    increase = IncreaseAllowance(CLIENT_EVM, 5 * TIB)
    result = matcher.find_matches([_evm(1, grant)], {"grant": grant, "increase": increase})
    assert result.status is MatchStatus.PARTIAL
    assert result.found == ["grant"]
    assert result.missing == ["increase"]

    empty = matcher.find_matches([], {"grant": grant})
    assert empty.status is MatchStatus.NONE
    full = matcher.find_matches([_evm(1, grant)], {"grant": grant})
    assert full.status is MatchStatus.COMPLETE


def test_destination_narrows_matches():
    matcher = PendingTransactionMatcher()
    grant = GrantAllowance("f01234", 5 * TIB)
    allocator = "0x" + "cd" * 20
    native = _native(1, "f01234", 5 * TIB)
    elsewhere = _evm(2, grant)
    routed = PendingTransaction(
        id=3, to=delegated_from_evm(allocator), method=3844450837, calldata=grant.encode()
    )

    assert matcher.find_match([native, elsewhere], grant, allocator, check_destination=True) is None
    assert matcher.find_match([native, routed], grant, allocator, check_destination=True).id == 3
    assert matcher.find_match([elsewhere, native], grant, None, check_destination=True).id == 1
    result = matcher.find_matches([routed, native], {"a": grant, "b": grant}, {"b": None})
    assert (result.matches["a"].id, result.matches["b"].id) == (3, 1)
