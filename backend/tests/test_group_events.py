"""
Group event session tests.

A session forwards every event of its group and ends once its user can no
longer see the group.
"""

import asyncio

import pytest
from fastapi import status

from backend.app.api.v1.endpoints.group_events import _forward_events
from backend.app.schemas.events import EventTag, GroupEvent
from backend.tests.conftest import BOB, CAROL


def _queue(*events):
    queue = asyncio.Queue()
    for event in events:
        queue.put_nowait(event)
    return queue


async def test_session_closes_after_its_user_is_removed(mocker):
    websocket = mocker.AsyncMock()
    queue = _queue(
        GroupEvent(tag=EventTag.EXPENSE_CREATED, group_id=1, payload={"expense_id": 7}),
        GroupEvent(tag=EventTag.MEMBER_REMOVED, group_id=1, payload={"user_id": BOB, "self_removal": False}),
    )

    await asyncio.wait_for(_forward_events(websocket, queue, BOB), timeout=1)

    sent = [call.args[0]["tag"] for call in websocket.send_json.await_args_list]
    assert sent == [EventTag.EXPENSE_CREATED, EventTag.MEMBER_REMOVED]
    websocket.close.assert_awaited_once_with(code=status.WS_1008_POLICY_VIOLATION)


async def test_session_stays_open_when_another_member_is_removed(mocker):
    websocket = mocker.AsyncMock()
    queue = _queue(
        GroupEvent(tag=EventTag.MEMBER_REMOVED, group_id=1, payload={"user_id": CAROL, "self_removal": True}),
    )

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(_forward_events(websocket, queue, BOB), timeout=0.05)

    websocket.send_json.assert_awaited_once()
    websocket.close.assert_not_awaited()


async def test_session_closes_when_group_is_deleted(mocker):
    websocket = mocker.AsyncMock()
    queue = _queue(GroupEvent(tag=EventTag.GROUP_DELETED, group_id=1))

    await asyncio.wait_for(_forward_events(websocket, queue, BOB), timeout=1)

    websocket.close.assert_awaited_once_with(code=status.WS_1000_NORMAL_CLOSURE)
