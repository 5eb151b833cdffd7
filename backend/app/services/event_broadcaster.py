"""
Event broadcaster service.

Fans out a group event to every session currently subscribed to the
group's room. Delivery is at-most-once and best-effort: there is no
backlog, so sessions that subscribe later see nothing of earlier events and
must re-fetch state. Publishing never raises; failures are logged so a
broken side channel can never fail or roll back a committed mutation.

With the ``redis`` backend events are published on
``{prefix}{group_id}`` and ``relay_from_redis`` (run once per process)
delivers them to the local sessions, so several API processes share rooms.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from backend.app.core.config import settings
from backend.app.core.reliability import CircuitBreaker
from backend.app.schemas.events import GroupEvent

logger = logging.getLogger(__name__)


class EventBroadcaster:

    def __init__(
        self,
        redis=None,
        channel_prefix: str = None,
        queue_size: int = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._redis = redis
        self.channel_prefix = channel_prefix or settings.broadcast_channel_prefix
        self.queue_size = queue_size or settings.broadcast_queue_size
        self._breaker = breaker or CircuitBreaker("event-relay", failure_threshold=3, reset_timeout=30)
        self._rooms: Dict[int, Dict[str, asyncio.Queue]] = {}

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    def subscribe(self, group_id: int, session_id: str) -> asyncio.Queue:
        """Join a session to a group room; returns the queue events arrive on."""
        room = self._rooms.setdefault(group_id, {})
        queue = room.get(session_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
            room[session_id] = queue
            logger.debug("Session %s subscribed to group %s", session_id, group_id)
        return queue

    def unsubscribe(self, group_id: int, session_id: str) -> None:
        room = self._rooms.get(group_id)
        if not room:
            return
        room.pop(session_id, None)
        if not room:
            self._rooms.pop(group_id, None)
        logger.debug("Session %s unsubscribed from group %s", session_id, group_id)

    def subscribers(self, group_id: int) -> List[str]:
        return list(self._rooms.get(group_id, {}))

    async def publish(
        self,
        group_id: int,
        tag: str,
        payload: Optional[Dict[str, Any]] = None,
        actor_id: Optional[int] = None,
        sequence: Optional[int] = None,
    ) -> int:
        """
        Publish an event to a group's channel.

        Returns:
            Number of local sessions the event was handed to (0 when relayed via Redis)
        """
        try:
            event = GroupEvent(
                tag=tag,
                group_id=group_id,
                actor_id=actor_id,
                sequence=sequence,
                payload=payload or {},
            )
            if self.uses_redis:
                await self._breaker.call(
                    self._redis.publish,
                    f"{self.channel_prefix}{group_id}",
                    event.model_dump_json(),
                )
                return 0
            return self.deliver(event)
        except Exception:
            logger.exception("Broadcast of %s to group %s failed", tag, group_id)
            return 0

    def deliver(self, event: GroupEvent) -> int:
        """Hand an event to every local session of its group room."""
        delivered = 0
        for session_id, queue in list(self._rooms.get(event.group_id, {}).items()):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping %s for session %s of group %s: queue full",
                    event.tag, session_id, event.group_id,
                )
        return delivered

    def dispatch_raw(self, data: Any) -> int:
        """Deliver an event received from the Redis channel."""
        try:
            event = GroupEvent.model_validate_json(data)
        except ValidationError:
            logger.warning("Discarding malformed relayed event: %r", data)
            return 0
        return self.deliver(event)

    async def relay_from_redis(self) -> None:
        """Forward relayed events to local sessions until cancelled."""
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(f"{self.channel_prefix}*")
        logger.info("Event relay listening on %s*", self.channel_prefix)
        try:
            async for message in pubsub.listen():
                if message.get("type") == "pmessage":
                    self.dispatch_raw(message["data"])
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
