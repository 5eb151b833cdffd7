"""
Ledger runtime wiring.

Builds the long-lived collaborators (locks, broadcaster, sequencer and the
two ledger services) once per application and stores them on
``app.state.ledger``.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import settings
from backend.app.domain.ledger.expense_operations import ExpenseService
from backend.app.domain.ledger.group_operations import GroupService
from backend.app.services.event_broadcaster import EventBroadcaster
from backend.app.services.group_locking import build_lock_backend
from backend.app.services.group_sequencer import GroupSequencer


@dataclass
class LedgerRuntime:
    sequencer: GroupSequencer
    broadcaster: EventBroadcaster
    groups: GroupService
    expenses: ExpenseService


def build_runtime(
    session_factory: async_sessionmaker,
    redis=None,
    lock_backend: Optional[str] = None,
    broadcast_backend: Optional[str] = None,
) -> LedgerRuntime:
    lock_backend = lock_backend or settings.group_lock_backend
    broadcast_backend = broadcast_backend or settings.broadcast_backend

    locks = build_lock_backend(lock_backend, redis=redis if lock_backend == "redis" else None)

    if broadcast_backend == "redis":
        if redis is None:
            from backend.app.core.redis_client import redis_client
            redis = redis_client
        broadcaster = EventBroadcaster(redis=redis)
    elif broadcast_backend == "local":
        broadcaster = EventBroadcaster()
    else:
        raise ValueError(f"Unknown broadcast backend: {broadcast_backend}")

    sequencer = GroupSequencer(session_factory, locks, broadcaster)
    return LedgerRuntime(
        sequencer=sequencer,
        broadcaster=broadcaster,
        groups=GroupService(sequencer),
        expenses=ExpenseService(sequencer),
    )
