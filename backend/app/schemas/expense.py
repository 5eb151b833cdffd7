"""
Expense Pydantic schemas.

Defines request and response models for expenses and settlements.
Amounts are accepted as numbers or strings and handled as Decimal.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.models.ledger_enums import ExpenseCategory, SettlementMethod, SplitPolicy
from backend.app.schemas.activity import Pagination


class ParticipantIn(BaseModel):
    """One participant; ``share`` is an amount (exact) or a percentage (percentage)."""
    user_id: int
    share: Optional[Decimal] = None


class ExpenseLocation(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class ExpenseCreate(BaseModel):
    """Schema for creating an expense."""
    group_id: int
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    category: ExpenseCategory = ExpenseCategory.OTHER
    notes: Optional[str] = Field(None, max_length=1000)
    tags: List[str] = Field(default_factory=list, max_length=20)
    location: Optional[ExpenseLocation] = None
    expense_date: Optional[datetime] = None
    paid_by: int
    split_method: Optional[SplitPolicy] = None
    participants: List[ParticipantIn]


class ExpenseUpdate(BaseModel):
    """Schema for updating an unsettled expense; omitted fields are kept."""
    description: Optional[str] = Field(None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(None, ge=0)
    category: Optional[ExpenseCategory] = None
    notes: Optional[str] = Field(None, max_length=1000)
    tags: Optional[List[str]] = Field(None, max_length=20)
    location: Optional[ExpenseLocation] = None
    expense_date: Optional[datetime] = None
    paid_by: Optional[int] = None
    split_method: Optional[SplitPolicy] = None
    participants: Optional[List[ParticipantIn]] = None


class SettlementCreate(BaseModel):
    """Schema for recording a payment against an expense."""
    from_user_id: int
    to_user_id: int
    amount: Decimal = Field(..., gt=0)
    method: SettlementMethod = SettlementMethod.CASH
    transaction_id: Optional[str] = Field(None, max_length=100)


class SettleRequest(BaseModel):
    settlements: List[SettlementCreate] = Field(default_factory=list)


class ParticipantResponse(BaseModel):
    user_id: int
    share: Decimal
    share_type: SplitPolicy

    class Config:
        from_attributes = True


class SettlementResponse(BaseModel):
    id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    method: SettlementMethod
    transaction_id: Optional[str]
    recorded_by: Optional[int]
    settled_at: datetime

    class Config:
        from_attributes = True


class ExpenseEditResponse(BaseModel):
    edited_by: int
    edited_at: datetime
    changes: Dict[str, Any]

    class Config:
        from_attributes = True


class ExpenseResponse(BaseModel):
    """Schema for expense response."""
    id: int
    group_id: int
    description: str
    amount: Decimal
    currency: str
    category: ExpenseCategory
    notes: Optional[str]
    tags: List[str]
    location: Optional[ExpenseLocation]
    expense_date: datetime
    paid_by: int
    split_method: SplitPolicy
    is_settled: bool
    settled_at: Optional[datetime]
    settled_by: Optional[int]
    created_by: int
    created_at: datetime
    last_edited_by: Optional[int]
    last_edited_at: Optional[datetime]
    participants: List[ParticipantResponse]
    settlements: List[SettlementResponse]
    edits: List[ExpenseEditResponse]

    class Config:
        from_attributes = True


class ExpenseListResponse(BaseModel):
    expenses: List[ExpenseResponse]
    pagination: Pagination
