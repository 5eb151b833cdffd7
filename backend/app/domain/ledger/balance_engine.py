"""
Balance Engine (Domain Logic).

Derives a group's balance table from its unsettled ledger entries. The
table is a pure function of (active members, entries): the same entry set
always yields the same table, whatever order the entries arrive in.

Entry types:
- ShareEntry: a participant owes the payer their share of an expense.
- TransferEntry: a settlement payment recorded against an unsettled expense.

Shares are merged per ordered (debtor, creditor) pair. Transfers are then
applied in canonical order: a payment from X to Y first reduces X's debt to
Y, and any excess becomes a debt of Y to X. Entries naming a payer or
participant that is not an active member are skipped and logged.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union

from backend.app.domain.ledger.money import ZERO, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareEntry:
    expense_id: int
    debtor_id: int
    creditor_id: int
    amount: Decimal

    @property
    def sort_key(self):
        return (self.expense_id, self.debtor_id, self.creditor_id)


@dataclass(frozen=True)
class TransferEntry:
    expense_id: int
    settlement_id: int
    payer_id: int
    payee_id: int
    amount: Decimal

    @property
    def sort_key(self):
        return (self.expense_id, self.settlement_id, self.payer_id, self.payee_id)


LedgerEntry = Union[ShareEntry, TransferEntry]


@dataclass(frozen=True)
class BalanceEdge:
    counterparty_id: int
    amount: Decimal


@dataclass
class MemberBalance:
    user_id: int
    balance: Decimal = ZERO
    owes: List[BalanceEdge] = field(default_factory=list)
    owed: List[BalanceEdge] = field(default_factory=list)


@dataclass
class BalanceTable:
    """Per-member net balance plus owes-to / owed-from edges."""
    rows: Dict[int, MemberBalance] = field(default_factory=dict)

    def get(self, user_id: int) -> Optional[MemberBalance]:
        return self.rows.get(user_id)

    def net_total(self) -> Decimal:
        return sum((row.balance for row in self.rows.values()), ZERO)

    def total_outstanding(self) -> Decimal:
        """Sum of absolute net balances."""
        return sum((abs(row.balance) for row in self.rows.values()), ZERO)

    def to_document(self) -> list:
        return [
            {
                "user_id": row.user_id,
                "balance": str(row.balance),
                "owes": [{"to": e.counterparty_id, "amount": str(e.amount)} for e in row.owes],
                "owed": [{"from": e.counterparty_id, "amount": str(e.amount)} for e in row.owed],
            }
            for row in self.rows.values()
        ]

    @classmethod
    def from_document(cls, document: Optional[list]) -> "BalanceTable":
        rows = {}
        for item in document or []:
            rows[item["user_id"]] = MemberBalance(
                user_id=item["user_id"],
                balance=Decimal(item["balance"]),
                owes=[BalanceEdge(e["to"], Decimal(e["amount"])) for e in item.get("owes", [])],
                owed=[BalanceEdge(e["from"], Decimal(e["amount"])) for e in item.get("owed", [])],
            )
        return cls(rows=rows)


def expense_entries(expense) -> List[LedgerEntry]:
    """
    Ledger entries contributed by one expense.

    Settled expenses contribute nothing. The payer's own share is not a debt.
    """
    if expense.is_settled:
        return []

    entries: List[LedgerEntry] = []
    for participant in expense.participants:
        if participant.user_id == expense.paid_by:
            continue
        entries.append(ShareEntry(
            expense_id=expense.id,
            debtor_id=participant.user_id,
            creditor_id=expense.paid_by,
            amount=to_money(participant.share),
        ))
    for settlement in expense.settlements:
        entries.append(TransferEntry(
            expense_id=expense.id,
            settlement_id=settlement.id,
            payer_id=settlement.from_user_id,
            payee_id=settlement.to_user_id,
            amount=to_money(settlement.amount),
        ))
    return entries


def compute_balances(
    member_ids: Iterable[int],
    entries: Iterable[LedgerEntry],
    group_id: Optional[int] = None,
) -> BalanceTable:
    """
    Full recompute of a group's balance table.

    Args:
        member_ids: Active member ids; each gets a row, zero if untouched
        entries: Ledger entries of the group's unsettled expenses
        group_id: Only used for log context

    Returns:
        BalanceTable whose net balances sum to zero
    """
    members = set(member_ids)
    shares: List[ShareEntry] = []
    transfers: List[TransferEntry] = []

    for entry in entries:
        if isinstance(entry, ShareEntry):
            parties = (entry.debtor_id, entry.creditor_id)
        else:
            parties = (entry.payer_id, entry.payee_id)
        unknown = [uid for uid in parties if uid not in members]
        if unknown:
            logger.warning(
                "Data integrity: skipping %s for expense %s in group %s, unknown or inactive members %s",
                type(entry).__name__, entry.expense_id, group_id, unknown,
            )
            continue
        if parties[0] == parties[1] or entry.amount <= ZERO:
            continue
        if isinstance(entry, ShareEntry):
            shares.append(entry)
        else:
            transfers.append(entry)

    debts: Dict[Tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
    for share in sorted(shares, key=lambda e: e.sort_key):
        debts[(share.debtor_id, share.creditor_id)] += share.amount

    for transfer in sorted(transfers, key=lambda e: e.sort_key):
        _apply_transfer(debts, transfer.payer_id, transfer.payee_id, transfer.amount)

    return _build_table(members, debts)


def _apply_transfer(debts: Dict[Tuple[int, int], Decimal], payer_id: int, payee_id: int, amount: Decimal) -> None:
    outstanding = debts.get((payer_id, payee_id), ZERO)
    reduction = min(outstanding, amount)
    if reduction:
        debts[(payer_id, payee_id)] = outstanding - reduction
    excess = amount - reduction
    if excess:
        debts[(payee_id, payer_id)] += excess


def _build_table(members: Iterable[int], debts: Dict[Tuple[int, int], Decimal]) -> BalanceTable:
    rows = {uid: MemberBalance(user_id=uid) for uid in sorted(members)}

    for (debtor_id, creditor_id), amount in sorted(debts.items()):
        if amount <= ZERO:
            continue
        debtor = rows[debtor_id]
        creditor = rows[creditor_id]
        debtor.owes.append(BalanceEdge(creditor_id, amount))
        debtor.balance -= amount
        creditor.owed.append(BalanceEdge(debtor_id, amount))
        creditor.balance += amount

    for row in rows.values():
        row.owes.sort(key=lambda e: e.counterparty_id)
        row.owed.sort(key=lambda e: e.counterparty_id)
    return BalanceTable(rows=rows)
