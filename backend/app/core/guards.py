"""
Group permission guards.

Membership and role checks used by the ledger services before any write.
Every guard raises InsufficientPermissionsError (403) on failure.
"""

from typing import Optional

from backend.app.core.exceptions import InsufficientPermissionsError
from backend.app.models.enums import MemberRole


def find_member(group, user_id: int, include_inactive: bool = False):
    """Return the group's membership row for a user, or None."""
    for member in group.members:
        if member.user_id == user_id and (include_inactive or member.is_active):
            return member
    return None


def require_active_member(group, user_id: int):
    """
    Enforce that the caller is an active member of the group.

    Returns:
        The caller's GroupMember row
    """
    member = find_member(group, user_id)
    if member is None:
        raise InsufficientPermissionsError(
            "You are not a member of this group",
            {"group_id": group.id, "user_id": user_id}
        )
    return member


def is_group_admin(group, user_id: int) -> bool:
    """Admins are active members with the admin role, plus the group creator."""
    member = find_member(group, user_id)
    if member is None:
        return False
    return member.role == MemberRole.ADMIN or group.created_by == user_id


def require_group_admin(group, user_id: int, action: Optional[str] = None) -> None:
    if not is_group_admin(group, user_id):
        raise InsufficientPermissionsError(
            f"Only group admins can {action or 'perform this action'}",
            {"group_id": group.id, "user_id": user_id}
        )


def require_group_creator(group, user_id: int, action: Optional[str] = None) -> None:
    if group.created_by != user_id:
        raise InsufficientPermissionsError(
            f"Only the group creator can {action or 'perform this action'}",
            {"group_id": group.id, "user_id": user_id}
        )


def require_expense_editor(group, expense, user_id: int, action: str = "modify this expense") -> None:
    """
    Enforce that the caller created the expense or administers its group.

    Raises:
        InsufficientPermissionsError: Neither creator nor admin
    """
    if expense.created_by == user_id:
        return
    if is_group_admin(group, user_id):
        return
    raise InsufficientPermissionsError(
        f"Only the expense creator or a group admin can {action}",
        {"expense_id": expense.id, "user_id": user_id}
    )
