"""
Group event schemas.

Events are invalidation hints pushed to the sessions of a group room after a
mutation commits. ``sequence`` is the id of the activity record written by
that mutation, so within one group it increases in commit order.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventTag:
    """Event tags published on a group channel."""
    EXPENSE_CREATED = "expense-created"
    EXPENSE_UPDATED = "expense-updated"
    EXPENSE_DELETED = "expense-deleted"
    EXPENSE_SETTLED = "expense-settled"
    SETTLEMENT_ADDED = "settlement-added"

    MEMBER_ADDED = "member-added"
    MEMBER_JOINED = "member-joined"
    MEMBER_REMOVED = "member-removed"
    MEMBER_ROLE_UPDATED = "member-role-updated"

    GROUP_UPDATED = "group-updated"
    GROUP_SETTINGS_UPDATED = "group-settings-updated"
    GROUP_DELETED = "group-deleted"


class GroupEvent(BaseModel):
    tag: str
    group_id: int
    actor_id: Optional[int] = None
    sequence: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
