"""
Expense database models.

An expense is mutable only while unsettled. Once settled it is immutable;
while unsettled it may be hard-deleted together with its child rows.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, Enum, Text, JSON
from sqlalchemy.orm import relationship
from backend.app.db.session import Base
from backend.app.models.ledger_enums import SplitPolicy, ExpenseCategory, SettlementMethod


class Expense(Base):
    """
    Expense model.

    Invariant: sum(participants.share) == amount within one minor unit.
    """
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)

    description = Column(String(200), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    category = Column(Enum(ExpenseCategory), nullable=False, default=ExpenseCategory.OTHER, index=True)
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    # {name, address, lat, lng}
    location = Column(JSON, nullable=True)
    expense_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    paid_by = Column(Integer, nullable=False, index=True)
    split_method = Column(Enum(SplitPolicy), nullable=False, default=SplitPolicy.EQUAL)

    # Settlement state
    is_settled = Column(Boolean, nullable=False, default=False, index=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    settled_by = Column(Integer, nullable=True)

    # Creation / last-edit metadata
    created_by = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_edited_by = Column(Integer, nullable=True)
    last_edited_at = Column(DateTime(timezone=True), nullable=True)

    participants = relationship(
        "ExpenseParticipant",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ExpenseParticipant.id",
    )
    settlements = relationship(
        "ExpenseSettlement",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ExpenseSettlement.id",
    )
    edits = relationship(
        "ExpenseEdit",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ExpenseEdit.id",
    )

    @property
    def settled_amount(self):
        return sum((s.amount for s in self.settlements), Decimal("0.00"))

    def __repr__(self):
        return f"<Expense(id={self.id}, amount={self.amount}, settled={self.is_settled})>"


class ExpenseParticipant(Base):
    """One participant's share of an expense."""
    __tablename__ = "expense_participants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    share = Column(Numeric(12, 2), nullable=False)
    share_type = Column(Enum(SplitPolicy), nullable=False)


class ExpenseSettlement(Base):
    """
    Settlement sub-record: a payment between two members against an expense.

    Append-only; never removed once recorded.
    """
    __tablename__ = "expense_settlements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(Integer, nullable=False)
    to_user_id = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(Enum(SettlementMethod), nullable=False, default=SettlementMethod.CASH)
    transaction_id = Column(String(100), nullable=True)
    recorded_by = Column(Integer, nullable=True)
    settled_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ExpenseSettlement(from={self.from_user_id}, to={self.to_user_id}, amount={self.amount})>"


class ExpenseEdit(Base):
    """Snapshot of an expense's prior state, taken before each edit."""
    __tablename__ = "expense_edits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    edited_by = Column(Integer, nullable=False)
    edited_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    changes = Column(JSON, nullable=False)
