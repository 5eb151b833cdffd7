"""
Split Calculator Tests.

Share computation for equal, exact and percentage splits.
"""

from decimal import Decimal

import pytest

from backend.app.core.exceptions import (
    EmptyParticipantSetError,
    InvalidAmountError,
    InvalidParticipantError,
    ShareMismatchError,
)
from backend.app.domain.ledger.split_calculator import (
    ParticipantShare,
    calculate_shares,
    shares_balance,
)
from backend.app.models.ledger_enums import SplitPolicy


def _people(*user_ids, values=None):
    values = values or [None] * len(user_ids)
    return [ParticipantShare(uid, None if v is None else Decimal(v)) for uid, v in zip(user_ids, values)]


def _shares(allocations):
    return [a.share for a in allocations]


def test_equal_split_even_amount():
    allocations = calculate_shares(Decimal("90.00"), SplitPolicy.EQUAL, _people(1, 2, 3))
    assert _shares(allocations) == [Decimal("30.00")] * 3
    assert all(a.share_type == SplitPolicy.EQUAL for a in allocations)


def test_equal_split_residual_goes_to_last_participant():
    allocations = calculate_shares(Decimal("100.00"), SplitPolicy.EQUAL, _people(1, 2, 3))
    assert _shares(allocations) == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(_shares(allocations)) == Decimal("100.00")


@pytest.mark.parametrize("amount,count", [
    ("0.02", 4),
    ("10.00", 3),
    ("0.05", 3),
    ("1.00", 6),
    ("99.99", 7),
    ("0.00", 2),
])
def test_equal_split_always_sums_exactly(amount, count):
    shares = _shares(calculate_shares(Decimal(amount), SplitPolicy.EQUAL, _people(*range(1, count + 1))))
    assert sum(shares) == Decimal(amount)
    assert all(share >= 0 for share in shares)


def test_exact_split_within_one_minor_unit_passes():
    allocations = calculate_shares(
        Decimal("50.00"), SplitPolicy.EXACT, _people(1, 2, 3, values=["20.00", "20.00", "9.99"])
    )
    # Shares are kept as supplied
    assert _shares(allocations) == [Decimal("20.00"), Decimal("20.00"), Decimal("9.99")]


def test_exact_split_two_minor_units_off_fails():
    with pytest.raises(ShareMismatchError) as exc_info:
        calculate_shares(
            Decimal("50.00"), SplitPolicy.EXACT, _people(1, 2, 3, values=["20.00", "20.00", "9.98"])
        )
    assert exc_info.value.details == {"expected": "50.00", "actual": "49.98"}


def test_exact_split_requires_every_share():
    with pytest.raises(InvalidAmountError):
        calculate_shares(Decimal("10.00"), SplitPolicy.EXACT, _people(1, 2, values=["10.00", None]))


def test_percentage_split_converts_and_absorbs_residual():
    allocations = calculate_shares(
        Decimal("100.00"), SplitPolicy.PERCENTAGE,
        _people(1, 2, 3, values=["33.33", "33.33", "33.34"]),
    )
    assert sum(_shares(allocations)) == Decimal("100.00")

    allocations = calculate_shares(
        Decimal("10.00"), SplitPolicy.PERCENTAGE, _people(1, 2, 3, values=["33.333", "33.333", "33.334"])
    )
    assert _shares(allocations) == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]


def test_percentage_split_must_add_up_to_hundred():
    with pytest.raises(ShareMismatchError):
        calculate_shares(Decimal("100.00"), SplitPolicy.PERCENTAGE, _people(1, 2, values=["50", "49"]))


def test_percentage_within_tolerance_is_accepted():
    allocations = calculate_shares(
        Decimal("200.00"), SplitPolicy.PERCENTAGE, _people(1, 2, values=["50", "49.99"])
    )
    assert sum(_shares(allocations)) == Decimal("200.00")


def test_empty_participants_rejected():
    with pytest.raises(EmptyParticipantSetError):
        calculate_shares(Decimal("10.00"), SplitPolicy.EQUAL, [])


def test_duplicate_participants_rejected():
    with pytest.raises(InvalidParticipantError):
        calculate_shares(Decimal("10.00"), SplitPolicy.EQUAL, _people(1, 1))


def test_negative_amount_rejected():
    with pytest.raises(InvalidAmountError):
        calculate_shares(Decimal("-5.00"), SplitPolicy.EQUAL, _people(1, 2))


def test_amount_is_rounded_to_minor_units():
    allocations = calculate_shares(Decimal("10.005"), SplitPolicy.EQUAL, _people(1))
    assert _shares(allocations) == [Decimal("10.01")]


def test_shares_balance_tolerance():
    assert shares_balance(Decimal("50.00"), [Decimal("25.00"), Decimal("24.99")])
    assert not shares_balance(Decimal("50.00"), [Decimal("25.00"), Decimal("24.98")])


@pytest.mark.parametrize("amount", ["1e30", "10000000000.00", "-10000000000.00"])
def test_amount_outside_storable_range_rejected(amount):
    with pytest.raises(InvalidAmountError):
        calculate_shares(Decimal(amount), SplitPolicy.EQUAL, _people(1))


def test_largest_storable_amount_accepted():
    allocations = calculate_shares(Decimal("9999999999.99"), SplitPolicy.EQUAL, _people(1, 2))
    assert sum(_shares(allocations)) == Decimal("9999999999.99")


def test_oversized_exact_share_rejected():
    with pytest.raises(InvalidAmountError):
        calculate_shares(Decimal("10.00"), SplitPolicy.EXACT, _people(1, 2, values=["1e30", "10.00"]))
