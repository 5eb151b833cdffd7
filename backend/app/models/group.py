"""
Group database models.

A group owns its member set, settings, invite code, lifetime counters and
the cached balance table. The balance table is derived state: it is
rewritten from the unsettled expenses on every committed mutation and is
never edited on its own.
"""

import secrets
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, JSON, ForeignKey, UniqueConstraint, Enum
)
from sqlalchemy.orm import relationship
from backend.app.db.session import Base
from backend.app.models.enums import MemberRole
from backend.app.models.ledger_enums import SplitPolicy


def generate_invite_code() -> str:
    return secrets.token_urlsafe(12)


class Group(Base):
    """
    Group model.

    Soft-deleted only (is_active=False); never purged.
    """
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    created_by = Column(Integer, nullable=False, index=True)

    # Settings
    currency = Column(String(3), nullable=False, default="INR")
    default_split_method = Column(Enum(SplitPolicy), nullable=False, default=SplitPolicy.EQUAL)
    allow_member_invites = Column(Boolean, nullable=False, default=True)
    auto_settle_debts = Column(Boolean, nullable=False, default=False)

    # Generated once, stable for the group's life
    invite_code = Column(String(32), unique=True, nullable=False, index=True, default=generate_invite_code)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Lifetime counters
    total_expenses = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_settled = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Cached balance table document (see domain.ledger.balance_engine.BalanceTable)
    balance_table = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    members = relationship(
        "GroupMember",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="GroupMember.id",
    )

    @property
    def active_members(self):
        return [member for member in self.members if member.is_active]

    @property
    def active_member_ids(self):
        return {member.user_id for member in self.members if member.is_active}

    def __repr__(self):
        return f"<Group(id={self.id}, name='{self.name}', active={self.is_active})>"


class GroupMember(Base):
    """
    Group membership row.

    Removal flips is_active to False so historical expenses still resolve
    to a known user; inactive members take no part in balances.
    """
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    role = Column(Enum(MemberRole), nullable=False, default=MemberRole.MEMBER)
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )

    def __repr__(self):
        return f"<GroupMember(group_id={self.group_id}, user_id={self.user_id}, role='{self.role.value}')>"


class UserGroup(Base):
    """Per-user membership index (the user's list of groups)."""
    __tablename__ = "user_groups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_user_groups_user_group"),
    )
