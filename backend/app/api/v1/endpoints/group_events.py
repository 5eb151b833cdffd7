"""
Group Events WebSocket Endpoint.

A connected socket is one session of the group's room. Events are pushed
as JSON as mutations commit; nothing published before the socket
subscribed is replayed, so clients re-fetch state after (re)connecting. A
session ends once its user is removed from the group or the group is
deleted.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from backend.app.core.dependencies import get_ledger
from backend.app.core.exceptions import AppException
from backend.app.core.jwt import caller_id_from_token
from backend.app.schemas.events import EventTag, GroupEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["Group Events"])


@router.websocket("/{group_id}/events")
async def group_events(
    websocket: WebSocket,
    group_id: int,
    token: str = Query(..., description="Bearer token of the caller"),
):
    user_id = caller_id_from_token(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    ledger = get_ledger(websocket)
    try:
        await ledger.groups.get_group(user_id, group_id)
    except AppException as exc:
        logger.info("Rejecting event subscription of user %s to group %s: %s", user_id, group_id, exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session_id = uuid.uuid4().hex
    queue = ledger.broadcaster.subscribe(group_id, session_id)

    forward = asyncio.create_task(_forward_events(websocket, queue, user_id))
    listen = asyncio.create_task(_until_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.info("Event session %s of group %s ended: %r", session_id, group_id, task.exception())
    finally:
        forward.cancel()
        listen.cancel()
        ledger.broadcaster.unsubscribe(group_id, session_id)


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue, user_id: int) -> None:
    """Push events until the caller loses access to the group."""
    while True:
        event = await queue.get()
        await websocket.send_json(event.model_dump(mode="json"))
        close_code = _close_code_after(event, user_id)
        if close_code is not None:
            await websocket.close(code=close_code)
            return


def _close_code_after(event: GroupEvent, user_id: int):
    if event.tag == EventTag.GROUP_DELETED:
        return status.WS_1000_NORMAL_CLOSURE
    if event.tag == EventTag.MEMBER_REMOVED and event.payload.get("user_id") == user_id:
        return status.WS_1008_POLICY_VIOLATION
    return None


async def _until_disconnect(websocket: WebSocket) -> None:
    # Client messages are ignored; receiving only detects the disconnect
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
