"""
Group API Endpoints.

Group lifecycle, membership, balances, activity and summary. Each route
maps onto one GroupService operation; failures surface through the global
AppException handler.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, Query, status

from backend.app.core.dependencies import get_current_user, get_ledger
from backend.app.schemas.activity import ActivityListResponse, ActivityResponse, Pagination
from backend.app.schemas.balance import GroupBalancesResponse
from backend.app.schemas.group import (
    GroupCreate,
    GroupResponse,
    GroupSettingsUpdate,
    GroupSummaryResponse,
    GroupUpdate,
    MemberAdd,
    MemberRoleUpdate,
)

router = APIRouter(prefix="/groups", tags=["Groups"])


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Create a group; the caller becomes its admin."""
    group = await ledger.groups.create_group(user_id, payload)
    return GroupResponse.from_group(group)


@router.get("", response_model=List[GroupResponse])
async def list_groups(
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """List the caller's active groups."""
    groups = await ledger.groups.list_user_groups(user_id)
    return [GroupResponse.from_group(group) for group in groups]


@router.post("/join/{invite_code}", response_model=GroupResponse)
async def join_group(
    invite_code: str = Path(..., min_length=1, max_length=32),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    group = await ledger.groups.join_by_invite(user_id, invite_code)
    return GroupResponse.from_group(group)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    group = await ledger.groups.get_group(user_id, group_id)
    return GroupResponse.from_group(group)


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(
    payload: GroupUpdate,
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Update name/description (admins only)."""
    group = await ledger.groups.update_group(user_id, group_id, payload)
    return GroupResponse.from_group(group)


@router.put("/{group_id}/settings", response_model=GroupResponse)
async def update_group_settings(
    payload: GroupSettingsUpdate,
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Update group settings (admins only)."""
    group = await ledger.groups.update_settings(user_id, group_id, payload)
    return GroupResponse.from_group(group)


@router.delete("/{group_id}")
async def delete_group(
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """
    Soft-delete a group (creator only).

    Fails with 400 ERR_UNSETTLED_EXPENSES while any expense is unsettled.
    """
    await ledger.groups.delete_group(user_id, group_id)
    return {"message": "Group deleted successfully", "group_id": group_id}


@router.post("/{group_id}/members", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    payload: MemberAdd,
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    group = await ledger.groups.add_member(user_id, group_id, payload)
    return GroupResponse.from_group(group)


@router.delete("/{group_id}/members/{member_id}")
async def remove_member(
    group_id: int = Path(..., description="Group ID"),
    member_id: int = Path(..., description="User ID of the member"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Remove a member, or leave the group when removing yourself."""
    await ledger.groups.remove_member(user_id, group_id, member_id)
    message = "Left group successfully" if member_id == user_id else "Member removed successfully"
    return {"message": message, "group_id": group_id, "user_id": member_id}


@router.put("/{group_id}/members/{member_id}/role", response_model=GroupResponse)
async def update_member_role(
    payload: MemberRoleUpdate,
    group_id: int = Path(..., description="Group ID"),
    member_id: int = Path(..., description="User ID of the member"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    group = await ledger.groups.update_member_role(user_id, group_id, member_id, payload)
    return GroupResponse.from_group(group)


@router.get("/{group_id}/balances", response_model=GroupBalancesResponse)
async def get_balances(
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    group, table = await ledger.groups.get_balances(user_id, group_id)
    return GroupBalancesResponse.from_table(group, table)


@router.get("/{group_id}/activity", response_model=ActivityListResponse)
async def get_activity(
    group_id: int = Path(..., description="Group ID"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    """Group activity, most recent first."""
    records, total = await ledger.groups.get_activity(user_id, group_id, page=page, limit=limit)
    return ActivityListResponse(
        activities=[ActivityResponse.model_validate(record) for record in records],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{group_id}/summary", response_model=GroupSummaryResponse)
async def get_summary(
    group_id: int = Path(..., description="Group ID"),
    user_id: int = Depends(get_current_user),
    ledger=Depends(get_ledger),
):
    return await ledger.groups.get_summary(user_id, group_id)
