"""
Group mutation sequencer.

Every mutating ledger operation runs through ``GroupSequencer.execute``:

1. Acquire the group's exclusive section (GroupBusyError on timeout)
2. Open one transaction and load the group
3. Apply the mutation
4. Append the activity record
5. Recompute the balance table from the unsettled expenses
6. Commit (StorageFailureError and full rollback on failure)
7. Publish the event, still inside the exclusive section so subscribers
   see a group's events in commit order
8. Release the section

A mutation accepted by ``execute`` runs to completion even if the caller
goes away; only the caller's wait is cancelled.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.exceptions import StorageFailureError
from backend.app.domain.ledger.balance_engine import BalanceTable, compute_balances, expense_entries
from backend.app.models.group import Group
from backend.app.services.activity_log import append_activity
from backend.app.services.event_broadcaster import EventBroadcaster
from backend.app.services.group_locking import GroupLockBackend
from backend.app.services.ledger_store import get_group, list_unsettled_expenses

logger = logging.getLogger(__name__)


@dataclass
class MutationOutcome:
    """What a mutation returns to the sequencer."""
    result: Any
    action: str
    details: Dict[str, Any] = field(default_factory=dict)
    event_tag: Optional[str] = None
    event_payload: Dict[str, Any] = field(default_factory=dict)
    recompute: bool = True


Mutation = Callable[[AsyncSession, Group], Awaitable[MutationOutcome]]


async def recompute_balances(db: AsyncSession, group: Group) -> BalanceTable:
    """Rebuild and store the group's balance table from its unsettled expenses."""
    expenses = await list_unsettled_expenses(db, group.id)
    entries = [entry for expense in expenses for entry in expense_entries(expense)]
    table = compute_balances(group.active_member_ids, entries, group_id=group.id)
    group.balance_table = table.to_document()
    return table


class GroupSequencer:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        locks: GroupLockBackend,
        broadcaster: EventBroadcaster,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.broadcaster = broadcaster
        self._inflight: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def transaction(self):
        """Session whose work commits on exit, or rolls back entirely on error."""
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("Ledger transaction failed: %s", exc)
                raise StorageFailureError("Ledger store write failed", {"error": type(exc).__name__}) from exc
            except BaseException:
                await db.rollback()
                raise

    @asynccontextmanager
    async def reader(self):
        """Read-only session; never takes the group lock."""
        async with self.session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as exc:
                logger.error("Ledger read failed: %s", exc)
                raise StorageFailureError("Ledger store read failed", {"error": type(exc).__name__}) from exc

    async def execute(self, group_id: int, actor_id: Optional[int], mutation: Mutation) -> Any:
        """
        Run a mutation in the group's exclusive section.

        Args:
            group_id: Group to mutate
            actor_id: Caller performing the mutation
            mutation: Coroutine function (db, group) -> MutationOutcome

        Returns:
            ``outcome.result`` once the mutation has committed
        """
        task = asyncio.ensure_future(self._run(group_id, actor_id, mutation))
        self._inflight.add(task)
        task.add_done_callback(self._finished)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for accepted mutations to finish (shutdown)."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def publish(self, group_id: int, outcome: MutationOutcome, actor_id: Optional[int], sequence: int) -> None:
        if outcome.event_tag:
            await self.broadcaster.publish(
                group_id,
                outcome.event_tag,
                outcome.event_payload,
                actor_id=actor_id,
                sequence=sequence,
            )

    async def _run(self, group_id: int, actor_id: Optional[int], mutation: Mutation) -> Any:
        async with self.locks.exclusive(group_id):
            async with self.transaction() as db:
                group = await get_group(db, group_id, for_update=True)
                outcome = await mutation(db, group)
                await db.flush()
                record = await append_activity(db, group_id, outcome.action, actor_id, outcome.details)
                if outcome.recompute:
                    await recompute_balances(db, group)
            logger.info("Group %s: %s by %s (seq %s)", group_id, outcome.action, actor_id, record.id)
            await self.publish(group_id, outcome, actor_id, record.id)
        return outcome.result

    def _finished(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Group mutation failed: %s", exc)
