"""
Group Service (Domain Logic).

Group lifecycle, membership and settings operations plus the read-side
queries (balances, activity, summary). Every mutation runs through the
GroupSequencer so it is serialized with the group's other writes, logged to
the activity log and broadcast after commit.
"""

from datetime import datetime
from typing import List, Tuple

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AlreadyMemberError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
    UnsettledExpensesExistError,
)
from backend.app.core.guards import (
    find_member,
    is_group_admin,
    require_active_member,
    require_group_admin,
    require_group_creator,
)
from backend.app.domain.ledger.balance_engine import BalanceTable
from backend.app.domain.ledger.money import ZERO
from backend.app.models.activity_record import ActivityRecord
from backend.app.models.enums import MemberRole
from backend.app.models.group import Group, GroupMember, generate_invite_code
from backend.app.schemas.events import EventTag
from backend.app.schemas.group import (
    GroupCreate,
    GroupSettingsUpdate,
    GroupUpdate,
    MemberAdd,
    MemberRoleUpdate,
)
from backend.app.services.activity_log import ActivityAction, append_activity, get_group_activity, jsonable
from backend.app.services.group_sequencer import GroupSequencer, MutationOutcome, recompute_balances
from backend.app.services import ledger_store


class GroupService:

    def __init__(self, sequencer: GroupSequencer):
        self.sequencer = sequencer

    async def create_group(self, actor_id: int, payload: GroupCreate) -> Group:
        """
        Create a group with the caller as its sole admin.

        A new group has no subscribers and no concurrent writers, so it is
        created in a plain transaction without the group lock.
        """
        async with self.sequencer.transaction() as db:
            group = Group(
                name=payload.name,
                description=payload.description,
                created_by=actor_id,
                currency=(payload.currency or settings.default_currency).upper(),
                default_split_method=payload.default_split_method,
                allow_member_invites=payload.allow_member_invites,
                auto_settle_debts=payload.auto_settle_debts,
                invite_code=generate_invite_code(),
                is_active=True,
                total_expenses=ZERO,
                total_settled=ZERO,
                balance_table=[],
                members=[
                    GroupMember(
                        user_id=actor_id,
                        role=MemberRole.ADMIN,
                        is_active=True,
                        joined_at=datetime.utcnow(),
                    )
                ],
            )
            db.add(group)
            await db.flush()
            await ledger_store.link_user_group(db, actor_id, group.id)
            await append_activity(
                db, group.id, ActivityAction.GROUP_CREATED, actor_id, {"name": group.name}
            )
            await recompute_balances(db, group)
        return group

    async def get_group(self, actor_id: int, group_id: int) -> Group:
        async with self.sequencer.reader() as db:
            group = await ledger_store.get_group(db, group_id)
        require_active_member(group, actor_id)
        return group

    async def list_user_groups(self, actor_id: int) -> List[Group]:
        async with self.sequencer.reader() as db:
            return await ledger_store.list_user_groups(db, actor_id)

    async def update_group(self, actor_id: int, group_id: int, payload: GroupUpdate) -> Group:
        changes = payload.model_dump(exclude_none=True)

        async def mutation(db, group):
            require_group_admin(group, actor_id, "update group details")
            for name, value in changes.items():
                setattr(group, name, value)
            return MutationOutcome(
                result=group,
                action=ActivityAction.GROUP_UPDATED,
                details={"changes": changes},
                event_tag=EventTag.GROUP_UPDATED,
                event_payload={"fields": sorted(changes)},
                recompute=False,
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def update_settings(self, actor_id: int, group_id: int, payload: GroupSettingsUpdate) -> Group:
        changes = payload.model_dump(exclude_none=True)
        if "currency" in changes:
            changes["currency"] = changes["currency"].upper()

        async def mutation(db, group):
            require_group_admin(group, actor_id, "update group settings")
            for name, value in changes.items():
                setattr(group, name, value)
            return MutationOutcome(
                result=group,
                action=ActivityAction.SETTINGS_UPDATED,
                details={"changes": changes},
                event_tag=EventTag.GROUP_SETTINGS_UPDATED,
                event_payload={"settings": jsonable(changes)},
                recompute=False,
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def add_member(self, actor_id: int, group_id: int, payload: MemberAdd) -> Group:
        """
        Add a user to the group, or reactivate a previously removed member.

        Non-admins may invite only when the group allows member invites, and
        only with the member role.
        """
        async def mutation(db, group):
            require_active_member(group, actor_id)
            admin = is_group_admin(group, actor_id)
            if not admin and not group.allow_member_invites:
                raise InsufficientPermissionsError(
                    "Only group admins can add members", {"group_id": group.id}
                )
            if not admin and payload.role == MemberRole.ADMIN:
                raise InsufficientPermissionsError(
                    "Only group admins can add admins", {"group_id": group.id}
                )
            _activate_member(group, payload.user_id, payload.role)
            await ledger_store.link_user_group(db, payload.user_id, group.id)
            return MutationOutcome(
                result=group,
                action=ActivityAction.MEMBER_ADDED,
                details={"user_id": payload.user_id, "role": payload.role},
                event_tag=EventTag.MEMBER_ADDED,
                event_payload={"user_id": payload.user_id, "role": payload.role.value},
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def join_by_invite(self, actor_id: int, invite_code: str) -> Group:
        async with self.sequencer.reader() as db:
            found = await ledger_store.get_group_by_invite_code(db, invite_code)
        group_id = found.id

        async def mutation(db, group):
            if group.invite_code != invite_code:
                raise ResourceNotFoundError("Group", invite_code)
            _activate_member(group, actor_id, MemberRole.MEMBER)
            await ledger_store.link_user_group(db, actor_id, group.id)
            return MutationOutcome(
                result=group,
                action=ActivityAction.MEMBER_JOINED,
                details={"user_id": actor_id, "via": "invite_code"},
                event_tag=EventTag.MEMBER_JOINED,
                event_payload={"user_id": actor_id},
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def remove_member(self, actor_id: int, group_id: int, user_id: int) -> Group:
        """
        Remove a member (or leave, when ``user_id`` is the caller).

        The member row is kept inactive. The recompute drops every balance
        edge referencing them: their outstanding debts and credits are
        abandoned, not redistributed.
        """
        async def mutation(db, group):
            require_active_member(group, actor_id)
            if user_id != actor_id:
                require_group_admin(group, actor_id, "remove other members")
            member = find_member(group, user_id)
            if member is None:
                raise ResourceNotFoundError("Member", user_id)
            member.is_active = False
            await ledger_store.unlink_user_group(db, user_id, group.id)
            return MutationOutcome(
                result=group,
                action=ActivityAction.MEMBER_REMOVED,
                details={"user_id": user_id, "self_removal": user_id == actor_id},
                event_tag=EventTag.MEMBER_REMOVED,
                event_payload={"user_id": user_id, "self_removal": user_id == actor_id},
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def update_member_role(
        self, actor_id: int, group_id: int, user_id: int, payload: MemberRoleUpdate
    ) -> Group:
        async def mutation(db, group):
            require_group_admin(group, actor_id, "change member roles")
            member = find_member(group, user_id)
            if member is None:
                raise ResourceNotFoundError("Member", user_id)
            previous = member.role
            member.role = payload.role
            return MutationOutcome(
                result=group,
                action=ActivityAction.MEMBER_ROLE_UPDATED,
                details={"user_id": user_id, "from": previous, "to": payload.role},
                event_tag=EventTag.MEMBER_ROLE_UPDATED,
                event_payload={"user_id": user_id, "role": payload.role.value},
                recompute=False,
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def delete_group(self, actor_id: int, group_id: int) -> Group:
        """
        Soft-delete a group.

        Raises:
            InsufficientPermissionsError: Caller is not the creator
            UnsettledExpensesExistError: Any expense is still unsettled
        """
        async def mutation(db, group):
            require_group_creator(group, actor_id, "delete the group")
            unsettled = await ledger_store.count_unsettled(db, group.id)
            if unsettled:
                raise UnsettledExpensesExistError(group.id, unsettled)
            group.is_active = False
            unlinked = await ledger_store.unlink_group(db, group.id)
            return MutationOutcome(
                result=group,
                action=ActivityAction.GROUP_DELETED,
                details={"name": group.name, "unlinked_members": unlinked},
                event_tag=EventTag.GROUP_DELETED,
                event_payload={},
                recompute=False,
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def get_balances(self, actor_id: int, group_id: int) -> Tuple[Group, BalanceTable]:
        """Read the cached balance table; never waits for the group lock."""
        group = await self.get_group(actor_id, group_id)
        return group, BalanceTable.from_document(group.balance_table)

    async def get_activity(
        self, actor_id: int, group_id: int, page: int = 1, limit: int = 50
    ) -> Tuple[List[ActivityRecord], int]:
        async with self.sequencer.reader() as db:
            group = await ledger_store.get_group(db, group_id)
            require_active_member(group, actor_id)
            return await get_group_activity(db, group_id, page=page, limit=limit)

    async def get_summary(self, actor_id: int, group_id: int) -> dict:
        async with self.sequencer.reader() as db:
            group = await ledger_store.get_group(db, group_id)
            require_active_member(group, actor_id)
            stats = await ledger_store.group_expense_stats(db, group_id)
        table = BalanceTable.from_document(group.balance_table)
        return {
            "group_id": group.id,
            "member_count": len(group.active_members),
            "total_expenses": group.total_expenses,
            "total_settled": group.total_settled,
            "outstanding_balance": table.total_outstanding(),
            **stats,
        }


def _activate_member(group: Group, user_id: int, role: MemberRole) -> GroupMember:
    member = find_member(group, user_id, include_inactive=True)
    if member is not None and member.is_active:
        raise AlreadyMemberError(group.id, user_id)
    if member is None:
        member = GroupMember(user_id=user_id, role=role, is_active=True, joined_at=datetime.utcnow())
        group.members.append(member)
    else:
        # Rejoining member keeps their row and history
        member.is_active = True
        member.role = role
        member.joined_at = datetime.utcnow()
    return member
