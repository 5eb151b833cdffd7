"""
Balance Pydantic schemas.
"""

from decimal import Decimal
from typing import List

from pydantic import BaseModel


class OwesEdge(BaseModel):
    to: int
    amount: Decimal


class OwedEdge(BaseModel):
    from_user: int
    amount: Decimal


class MemberBalanceResponse(BaseModel):
    user_id: int
    balance: Decimal
    owes: List[OwesEdge]
    owed: List[OwedEdge]


class GroupBalancesResponse(BaseModel):
    group_id: int
    currency: str
    balances: List[MemberBalanceResponse]

    @classmethod
    def from_table(cls, group, table) -> "GroupBalancesResponse":
        return cls(
            group_id=group.id,
            currency=group.currency,
            balances=[
                MemberBalanceResponse(
                    user_id=row.user_id,
                    balance=row.balance,
                    owes=[OwesEdge(to=e.counterparty_id, amount=e.amount) for e in row.owes],
                    owed=[OwedEdge(from_user=e.counterparty_id, amount=e.amount) for e in row.owed],
                )
                for row in table.rows.values()
            ],
        )
