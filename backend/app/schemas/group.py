"""
Group Pydantic schemas.

Defines request and response models for groups and membership.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.models.enums import MemberRole
from backend.app.models.ledger_enums import SplitPolicy


class GroupCreate(BaseModel):
    """Schema for creating a group."""
    name: str = Field(..., min_length=1, max_length=50, description="Group name")
    description: Optional[str] = Field(None, max_length=200)
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO currency code")
    default_split_method: SplitPolicy = SplitPolicy.EQUAL
    allow_member_invites: bool = True
    auto_settle_debts: bool = False


class GroupUpdate(BaseModel):
    """Schema for updating group metadata."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)


class GroupSettingsUpdate(BaseModel):
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    default_split_method: Optional[SplitPolicy] = None
    allow_member_invites: Optional[bool] = None
    auto_settle_debts: Optional[bool] = None


class MemberAdd(BaseModel):
    """Schema for adding a member by user id."""
    user_id: int = Field(..., gt=0)
    role: MemberRole = MemberRole.MEMBER


class MemberRoleUpdate(BaseModel):
    role: MemberRole


class MemberResponse(BaseModel):
    user_id: int
    role: MemberRole
    is_active: bool
    joined_at: datetime

    class Config:
        from_attributes = True


class GroupSettingsResponse(BaseModel):
    currency: str
    default_split_method: SplitPolicy
    allow_member_invites: bool
    auto_settle_debts: bool


class GroupResponse(BaseModel):
    """Schema for group response; only active members are listed."""
    id: int
    name: str
    description: Optional[str]
    created_by: int
    invite_code: str
    is_active: bool
    settings: GroupSettingsResponse
    members: List[MemberResponse]
    total_expenses: Decimal
    total_settled: Decimal
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_group(cls, group) -> "GroupResponse":
        return cls(
            id=group.id,
            name=group.name,
            description=group.description,
            created_by=group.created_by,
            invite_code=group.invite_code,
            is_active=group.is_active,
            settings=GroupSettingsResponse(
                currency=group.currency,
                default_split_method=group.default_split_method,
                allow_member_invites=group.allow_member_invites,
                auto_settle_debts=group.auto_settle_debts,
            ),
            members=[MemberResponse.model_validate(m) for m in group.active_members],
            total_expenses=group.total_expenses,
            total_settled=group.total_settled,
            created_at=group.created_at,
            updated_at=group.updated_at,
        )


class CategoryTotal(BaseModel):
    count: int
    amount: Decimal


class GroupSummaryResponse(BaseModel):
    """Schema for group statistics."""
    group_id: int
    member_count: int
    total_expenses: Decimal
    total_settled: Decimal
    expense_count: int
    settled_count: int
    unsettled_count: int
    settled_amount: Decimal
    unsettled_amount: Decimal
    outstanding_balance: Decimal
    by_category: Dict[str, CategoryTotal]
