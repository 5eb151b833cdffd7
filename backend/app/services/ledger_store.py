"""
Ledger store queries.

Reads and small writes over groups, expenses and the per-user membership
index. Nothing here commits: callers run inside a sequencer transaction
(mutations) or a reader session (queries).
"""

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.models.expense import Expense, ExpenseParticipant
from backend.app.models.group import Group, UserGroup


async def get_group(
    db: AsyncSession,
    group_id: int,
    for_update: bool = False,
    include_inactive: bool = False,
) -> Group:
    """
    Load a group with its members.

    Raises:
        ResourceNotFoundError: Group absent or soft-deleted
    """
    stmt = select(Group).where(Group.id == group_id)
    if not include_inactive:
        stmt = stmt.where(Group.is_active.is_(True))
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    group = result.scalar_one_or_none()
    if group is None:
        raise ResourceNotFoundError("Group", group_id)
    return group


async def get_group_by_invite_code(db: AsyncSession, invite_code: str) -> Group:
    result = await db.execute(
        select(Group).where(Group.invite_code == invite_code, Group.is_active.is_(True))
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise ResourceNotFoundError("Group", invite_code)
    return group


async def get_expense(db: AsyncSession, expense_id: int, group_id: Optional[int] = None) -> Expense:
    """
    Load an expense with participants, settlements and edits.

    When ``group_id`` is given the expense must belong to that group.
    """
    stmt = select(Expense).where(Expense.id == expense_id)
    if group_id is not None:
        stmt = stmt.where(Expense.group_id == group_id)
    result = await db.execute(stmt)
    expense = result.scalar_one_or_none()
    if expense is None:
        raise ResourceNotFoundError("Expense", expense_id)
    return expense


async def list_unsettled_expenses(db: AsyncSession, group_id: int) -> List[Expense]:
    result = await db.execute(
        select(Expense)
        .where(Expense.group_id == group_id, Expense.is_settled.is_(False))
        .order_by(Expense.id)
    )
    return list(result.scalars().all())


async def count_unsettled(db: AsyncSession, group_id: int) -> int:
    count = await db.scalar(
        select(func.count(Expense.id)).where(
            Expense.group_id == group_id, Expense.is_settled.is_(False)
        )
    )
    return count or 0


async def list_group_expenses(
    db: AsyncSession,
    group_id: int,
    page: int = 1,
    limit: int = 20,
    category=None,
    settled: Optional[bool] = None,
) -> Tuple[List[Expense], int]:
    """
    Page through a group's expenses, newest first.

    Returns:
        (expenses for the page, total matching count)
    """
    page = max(page, 1)
    limit = max(limit, 1)

    conditions = [Expense.group_id == group_id]
    if category is not None:
        conditions.append(Expense.category == category)
    if settled is not None:
        conditions.append(Expense.is_settled.is_(settled))

    total = await db.scalar(select(func.count(Expense.id)).where(and_(*conditions)))
    result = await db.execute(
        select(Expense)
        .where(and_(*conditions))
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def list_user_expenses(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Expense], int]:
    """
    Page through every expense a user paid for or shares in, newest first.

    Only groups that are active and that the user still belongs to are
    included.
    """
    page = max(page, 1)
    limit = max(limit, 1)

    involved = or_(
        Expense.paid_by == user_id,
        Expense.id.in_(
            select(ExpenseParticipant.expense_id).where(ExpenseParticipant.user_id == user_id)
        ),
    )
    visible = [
        involved,
        Group.is_active.is_(True),
        UserGroup.user_id == user_id,
    ]

    def _scoped(stmt):
        return (
            stmt.join(Group, Group.id == Expense.group_id)
            .join(UserGroup, UserGroup.group_id == Expense.group_id)
            .where(and_(*visible))
        )

    total = await db.scalar(_scoped(select(func.count(Expense.id)).select_from(Expense)))
    result = await db.execute(
        _scoped(select(Expense))
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def group_expense_stats(db: AsyncSession, group_id: int) -> Dict:
    """
    Aggregate expense statistics for a group.

    Returns:
        Dict with settled/unsettled counts and amounts and per-category totals
    """
    zero = Decimal("0.00")
    totals = await db.execute(
        select(
            func.count(Expense.id),
            func.sum(case((Expense.is_settled.is_(True), 1), else_=0)),
            func.sum(case((Expense.is_settled.is_(True), Expense.amount), else_=0)),
            func.sum(case((Expense.is_settled.is_(False), Expense.amount), else_=0)),
        ).where(Expense.group_id == group_id)
    )
    count, settled_count, settled_amount, unsettled_amount = totals.one()
    count = count or 0
    settled_count = settled_count or 0

    by_category = await db.execute(
        select(Expense.category, func.count(Expense.id), func.sum(Expense.amount))
        .where(Expense.group_id == group_id)
        .group_by(Expense.category)
    )
    categories = {
        category.value: {"count": n, "amount": Decimal(str(amount or 0)).quantize(zero)}
        for category, n, amount in by_category.all()
    }

    return {
        "expense_count": count,
        "settled_count": settled_count,
        "unsettled_count": count - settled_count,
        "settled_amount": Decimal(str(settled_amount or 0)).quantize(zero),
        "unsettled_amount": Decimal(str(unsettled_amount or 0)).quantize(zero),
        "by_category": categories,
    }


# Membership index

async def link_user_group(db: AsyncSession, user_id: int, group_id: int) -> None:
    existing = await db.scalar(
        select(UserGroup.id).where(UserGroup.user_id == user_id, UserGroup.group_id == group_id)
    )
    if existing is None:
        db.add(UserGroup(user_id=user_id, group_id=group_id))


async def unlink_user_group(db: AsyncSession, user_id: int, group_id: int) -> None:
    await db.execute(
        delete(UserGroup).where(UserGroup.user_id == user_id, UserGroup.group_id == group_id)
    )


async def unlink_group(db: AsyncSession, group_id: int) -> int:
    """Drop a group from every user's membership index."""
    result = await db.execute(delete(UserGroup).where(UserGroup.group_id == group_id))
    return result.rowcount or 0


async def list_user_groups(db: AsyncSession, user_id: int) -> List[Group]:
    result = await db.execute(
        select(Group)
        .join(UserGroup, UserGroup.group_id == Group.id)
        .where(UserGroup.user_id == user_id, Group.is_active.is_(True))
        .order_by(Group.updated_at.desc(), Group.id.desc())
    )
    return list(result.scalars().all())
