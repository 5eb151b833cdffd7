"""
Activity log service.

Append-only record of every group mutation, used for the group's audit
trail. Appends happen inside the mutating transaction (flush only, the
sequencer commits), so an activity record exists iff its mutation committed.
"""

from datetime import date, datetime
from decimal import Decimal
import enum
from typing import Optional, Dict, Any, Tuple, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from backend.app.models.activity_record import ActivityRecord


class ActivityAction:
    """Standardized activity action constants."""
    GROUP_CREATED = "GROUP_CREATED"
    GROUP_UPDATED = "GROUP_UPDATED"
    GROUP_DELETED = "GROUP_DELETED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"

    MEMBER_ADDED = "MEMBER_ADDED"
    MEMBER_JOINED = "MEMBER_JOINED"
    MEMBER_REMOVED = "MEMBER_REMOVED"
    MEMBER_ROLE_UPDATED = "MEMBER_ROLE_UPDATED"

    EXPENSE_CREATED = "EXPENSE_CREATED"
    EXPENSE_UPDATED = "EXPENSE_UPDATED"
    EXPENSE_DELETED = "EXPENSE_DELETED"
    EXPENSE_SETTLED = "EXPENSE_SETTLED"
    SETTLEMENT_ADDED = "SETTLEMENT_ADDED"


def jsonable(value: Any) -> Any:
    """Convert Decimals, enums and datetimes so details fit a JSON column."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [jsonable(v) for v in value]
    return value


async def append_activity(
    db: AsyncSession,
    group_id: int,
    action: str,
    actor_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ActivityRecord:
    """
    Append an activity record to the group's log.

    Args:
        db: Session of the mutating transaction
        group_id: Group the mutation applied to
        action: Action performed (use ActivityAction constants)
        actor_id: Caller who performed the mutation
        details: Structured context

    Returns:
        The flushed ActivityRecord (id assigned, not yet committed)
    """
    record = ActivityRecord(
        group_id=group_id,
        action=action,
        actor_id=actor_id,
        details=jsonable(details or {}),
    )
    db.add(record)
    await db.flush()
    return record


async def get_group_activity(
    db: AsyncSession,
    group_id: int,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[ActivityRecord], int]:
    """
    Page through a group's activity, most recent first.

    Returns:
        (records for the page, total record count)
    """
    page = max(page, 1)
    limit = max(limit, 1)

    total = await db.scalar(
        select(func.count(ActivityRecord.id)).where(ActivityRecord.group_id == group_id)
    )
    result = await db.execute(
        select(ActivityRecord)
        .where(ActivityRecord.group_id == group_id)
        .order_by(ActivityRecord.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0
