"""
Expense API Endpoints.

Expense CRUD, bulk settle and incremental settlements.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from backend.app.core.dependencies import get_current_user, get_ledger
from backend.app.models.ledger_enums import ExpenseCategory
from backend.app.schemas.activity import Pagination
from backend.app.schemas.expense import (
    ExpenseCreate,
    ExpenseListResponse,
    ExpenseResponse,
    ExpenseUpdate,
    SettleRequest,
    SettlementCreate,
)

router = APIRouter(prefix="/expenses", tags=["Expenses"])


@router.post("", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseCreate,
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """
    Record an expense.

    Validates:
    - Caller, payer and participants are active group members
    - Shares add up to the amount (exact / percentage splits)
    """
    return await ledger.expenses.create_expense(user_id, payload)


@router.get("/group/{group_id}", response_model=ExpenseListResponse)
async def list_group_expenses(
    group_id: int = Path(..., description="Group ID"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[ExpenseCategory] = Query(None),
    settled: Optional[bool] = Query(None),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Group expenses, newest first."""
    expenses, total = await ledger.expenses.list_group_expenses(
        user_id, group_id, page=page, limit=limit, category=category, settled=settled
    )
    return ExpenseListResponse(
        expenses=[ExpenseResponse.model_validate(expense) for expense in expenses],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/user", response_model=ExpenseListResponse)
async def list_user_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Expenses the caller paid for or shares in, across all of their groups."""
    expenses, total = await ledger.expenses.list_user_expenses(user_id, page=page, limit=limit)
    return ExpenseListResponse(
        expenses=[ExpenseResponse.model_validate(expense) for expense in expenses],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: int = Path(..., description="Expense ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    return await ledger.expenses.get_expense(user_id, expense_id)


@router.put("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    payload: ExpenseUpdate,
    expense_id: int = Path(..., description="Expense ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Edit an unsettled expense (creator or group admin)."""
    return await ledger.expenses.update_expense(user_id, expense_id, payload)


@router.delete("/{expense_id}")
async def delete_expense(
    expense_id: int = Path(..., description="Expense ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    await ledger.expenses.delete_expense(user_id, expense_id)
    return {"message": "Expense deleted successfully", "expense_id": expense_id}


@router.post("/{expense_id}/settle", response_model=ExpenseResponse)
async def settle_expense(
    expense_id: int = Path(..., description="Expense ID"),
    payload: Optional[SettleRequest] = None,
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Mark an expense settled, optionally attaching the payments made."""
    return await ledger.expenses.settle_expense(user_id, expense_id, payload)


@router.post("/{expense_id}/settlements", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def add_settlement(
    payload: SettlementCreate,
    expense_id: int = Path(..., description="Expense ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Record one payment; the expense settles once payments cover its amount."""
    return await ledger.expenses.add_settlement(user_id, expense_id, payload)
