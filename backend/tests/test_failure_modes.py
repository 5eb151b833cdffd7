"""
Failure Injection Tests.

Validates that store failures roll back completely and that broken side
channels never fail a committed mutation.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import (
    AlreadySettledError,
    GroupBusyError,
    InvalidParticipantError,
    ShareMismatchError,
    StorageFailureError,
)
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.models.expense import Expense
from backend.app.schemas.group import GroupCreate, MemberAdd
from backend.app.services.ledger_runtime import build_runtime
from backend.tests.conftest import ALICE, BOB, CAROL, DAVE


async def _expense_count(session_factory):
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(Expense))).scalar_one()


async def test_commit_failure_rolls_back_everything(ledger, session_factory, make_group, make_expense, mocker):
    group = await make_group()
    _, activity_before = await ledger.groups.get_activity(ALICE, group.id)

    mocker.patch.object(
        AsyncSession, "commit",
        side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")),
    )
    with pytest.raises(StorageFailureError) as exc_info:
        await make_expense(group.id, "90.00")
    mocker.stopall()

    assert exc_info.value.retryable
    assert await _expense_count(session_factory) == 0
    group = await ledger.groups.get_group(ALICE, group.id)
    assert group.total_expenses == 0
    _, activity_after = await ledger.groups.get_activity(ALICE, group.id)
    assert activity_after == activity_before


async def test_rejected_mutation_leaves_no_trace(ledger, session_factory, make_group, make_expense):
    group = await make_group()
    queue = ledger.broadcaster.subscribe(group.id, "watcher")

    with pytest.raises(InvalidParticipantError):
        await make_expense(group.id, "90.00", shares={ALICE: None, DAVE: None})

    assert await _expense_count(session_factory) == 0
    _, total = await ledger.groups.get_activity(ALICE, group.id)
    assert total == 3
    assert queue.empty()


async def test_lock_is_released_after_failed_mutation(ledger, make_group, make_expense):
    group = await make_group()
    with pytest.raises(ShareMismatchError):
        await make_expense(group.id, "90.00", shares={ALICE: "10.00", BOB: "10.00"}, split_method="exact")

    ledger.sequencer.locks.timeout = 0.05
    expense = await make_expense(group.id, "90.00")
    assert expense.id is not None


async def test_broken_relay_does_not_fail_mutation(session_factory, mock_redis):
    mock_redis.fail_publish = True
    ledger = build_runtime(session_factory, redis=mock_redis, lock_backend="local", broadcast_backend="redis")

    group = await ledger.groups.create_group(ALICE, GroupCreate(name="Trip"))
    group = await ledger.groups.add_member(ALICE, group.id, MemberAdd(user_id=BOB))

    assert BOB in group.active_member_ids
    assert mock_redis.published == []


async def test_local_delivery_failure_does_not_fail_mutation(ledger, make_group, make_expense, mocker):
    group = await make_group()
    ledger.broadcaster.subscribe(group.id, "watcher")
    mocker.patch.object(ledger.broadcaster, "deliver", side_effect=RuntimeError("boom"))

    expense = await make_expense(group.id, "30.00")
    settled = await ledger.expenses.settle_expense(CAROL, expense.id)

    assert settled.is_settled
    with pytest.raises(AlreadySettledError):
        await ledger.expenses.settle_expense(CAROL, expense.id)


async def test_circuit_breaker_opens_after_threshold():
    cb = CircuitBreaker("test", failure_threshold=2, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    assert cb.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


async def test_circuit_breaker_recovers_after_reset_timeout():
    cb = CircuitBreaker("test", failure_threshold=1, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Pretend the reset window has passed
    cb.last_failure_time -= 120
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


async def test_half_open_failure_reopens_circuit():
    cb = CircuitBreaker("test", failure_threshold=3, reset_timeout=60)
    cb.state = "OPEN"
    cb.last_failure_time -= 120

    async def failing_func():
        raise ValueError("Boom")

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"


def test_retryable_kinds():
    assert GroupBusyError(1, 0.5).retryable
    assert StorageFailureError().retryable
    assert not AlreadySettledError(1).retryable
    assert not ShareMismatchError("Shares must sum to amount", "90.00", "20.00").retryable
