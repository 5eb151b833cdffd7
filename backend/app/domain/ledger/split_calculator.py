"""
Split Calculator (Domain Logic).

Pure functions turning an expense amount and split policy into
per-participant shares. Rounded shares always add up to the amount exactly
for the ``equal`` and ``percentage`` policies: the rounding residual is
absorbed by the last participant. ``exact`` shares are validated against
the amount with a one-minor-unit tolerance and kept as supplied.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import List, Optional, Sequence

from backend.app.core.exceptions import (
    EmptyParticipantSetError,
    InvalidAmountError,
    InvalidParticipantError,
    ShareMismatchError,
)
from backend.app.domain.ledger.money import CENT, ZERO, to_money, to_non_negative_money
from backend.app.models.ledger_enums import SplitPolicy

SHARE_TOLERANCE = CENT
PERCENT_TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ParticipantShare:
    """Caller input for one participant: exact amount or percentage (ignored for equal)."""
    user_id: int
    value: Optional[Decimal] = None


@dataclass(frozen=True)
class ShareAllocation:
    user_id: int
    share: Decimal
    share_type: SplitPolicy


def calculate_shares(
    amount: Decimal,
    policy: SplitPolicy,
    participants: Sequence[ParticipantShare],
) -> List[ShareAllocation]:
    """
    Compute per-participant shares.

    Args:
        amount: Expense amount (rounded to minor units here)
        policy: Split policy
        participants: Participants in caller order

    Returns:
        One allocation per participant, in the same order

    Raises:
        EmptyParticipantSetError: No participants
        InvalidParticipantError: A participant appears twice
        ShareMismatchError: Exact shares or percentages do not add up
        InvalidAmountError: Negative amount or share
    """
    amount = to_non_negative_money(amount)
    policy = SplitPolicy(policy)

    if not participants:
        raise EmptyParticipantSetError()

    user_ids = [p.user_id for p in participants]
    duplicates = sorted({uid for uid in user_ids if user_ids.count(uid) > 1})
    if duplicates:
        raise InvalidParticipantError("Participants must be unique", duplicates)

    if policy == SplitPolicy.EQUAL:
        shares = _split_equal(amount, len(participants))
    elif policy == SplitPolicy.EXACT:
        shares = _split_exact(amount, participants)
    else:
        shares = _split_percentage(amount, participants)

    return [
        ShareAllocation(user_id=p.user_id, share=share, share_type=policy)
        for p, share in zip(participants, shares)
    ]


def _split_equal(amount: Decimal, count: int) -> List[Decimal]:
    base = (amount / count).quantize(CENT, rounding=ROUND_HALF_UP)
    if base * (count - 1) > amount:
        # Rounding up would leave the last share negative (e.g. 0.02 over 4)
        base = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
    shares = [base] * count
    return _absorb_residual(amount, shares)


def _split_exact(amount: Decimal, participants: Sequence[ParticipantShare]) -> List[Decimal]:
    shares = []
    for participant in participants:
        if participant.value is None:
            raise InvalidAmountError(
                f"Exact split requires a share for participant {participant.user_id}"
            )
        shares.append(to_non_negative_money(participant.value))

    total = sum(shares, ZERO)
    if abs(total - amount) > SHARE_TOLERANCE:
        raise ShareMismatchError("Exact shares do not match the total amount", amount, total)
    return shares


def _split_percentage(amount: Decimal, participants: Sequence[ParticipantShare]) -> List[Decimal]:
    percentages = []
    for participant in participants:
        percentage = _to_percentage(participant)
        if percentage < 0:
            raise InvalidAmountError("Percentages must not be negative", participant.value)
        percentages.append(percentage)

    total = sum(percentages, Decimal("0"))
    if abs(total - HUNDRED) > PERCENT_TOLERANCE:
        raise ShareMismatchError("Percentage shares do not add up to 100%", HUNDRED, total)

    shares = [to_money(amount * percentage / HUNDRED) for percentage in percentages]
    shares = _absorb_residual(amount, shares)
    if shares[-1] < ZERO:
        raise ShareMismatchError("Percentage shares do not add up to 100%", HUNDRED, total)
    return shares


def _to_percentage(participant: ParticipantShare) -> Decimal:
    if participant.value is None:
        raise InvalidAmountError(
            f"Percentage split requires a percentage for participant {participant.user_id}"
        )
    try:
        return Decimal(str(participant.value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError("Percentage must be a number", participant.value)


def _absorb_residual(amount: Decimal, shares: List[Decimal]) -> List[Decimal]:
    residual = amount - sum(shares, ZERO)
    if residual:
        shares = list(shares)
        shares[-1] = shares[-1] + residual
    return shares


def shares_balance(amount: Decimal, shares: Sequence[Decimal]) -> bool:
    """True when shares add up to amount within one minor unit."""
    return abs(sum(shares, ZERO) - to_money(amount)) <= SHARE_TOLERANCE
