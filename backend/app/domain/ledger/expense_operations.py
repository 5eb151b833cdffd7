"""
Expense Service (Domain Logic).

Expense and settlement operations. Each mutation is one multi-step
transaction run by the GroupSequencer inside the owning group's exclusive
section:

1. Load group and expense, check permissions and state
2. Compute shares (Split Calculator)
3. Write the expense rows and the group counters
4. Activity append, balance recompute, commit and broadcast (sequencer)

All validation happens before the first write, so a rejected call leaves
no trace.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from backend.app.core.exceptions import (
    AlreadySettledError,
    ExpenseAlreadySettledError,
    InsufficientPermissionsError,
    InvalidAmountError,
    InvalidParticipantError,
)
from backend.app.core.guards import require_active_member, require_expense_editor
from backend.app.domain.ledger.money import ZERO, to_money, to_non_negative_money
from backend.app.domain.ledger.split_calculator import ParticipantShare, calculate_shares
from backend.app.models.expense import Expense, ExpenseEdit, ExpenseParticipant, ExpenseSettlement
from backend.app.models.ledger_enums import SplitPolicy
from backend.app.schemas.events import EventTag
from backend.app.schemas.expense import ExpenseCreate, ExpenseUpdate, SettleRequest, SettlementCreate
from backend.app.services.activity_log import ActivityAction, jsonable
from backend.app.services.group_sequencer import GroupSequencer, MutationOutcome
from backend.app.services import ledger_store

HUNDRED = Decimal("100")


class ExpenseService:

    def __init__(self, sequencer: GroupSequencer):
        self.sequencer = sequencer

    async def create_expense(self, actor_id: int, payload: ExpenseCreate) -> Expense:
        """
        Record a new unsettled expense.

        Args:
            actor_id: Caller, must be an active member of the group
            payload: Expense fields; split method defaults to the group's

        Returns:
            The committed Expense with its participants
        """
        async def mutation(db, group):
            require_active_member(group, actor_id)
            active = group.active_member_ids
            _require_active(active, [payload.paid_by], "Payer must be an active group member")
            _require_active(
                active,
                [p.user_id for p in payload.participants],
                "All participants must be active group members",
            )

            amount = to_non_negative_money(payload.amount)
            policy = payload.split_method or group.default_split_method
            allocations = calculate_shares(
                amount, policy, [ParticipantShare(p.user_id, p.share) for p in payload.participants]
            )

            now = datetime.utcnow()
            expense = Expense(
                group_id=group.id,
                description=payload.description,
                amount=amount,
                currency=(payload.currency or group.currency).upper(),
                category=payload.category,
                notes=payload.notes,
                tags=payload.tags,
                location=payload.location.model_dump() if payload.location else None,
                expense_date=payload.expense_date or now,
                paid_by=payload.paid_by,
                split_method=policy,
                is_settled=False,
                created_by=actor_id,
                created_at=now,
                participants=[
                    ExpenseParticipant(user_id=a.user_id, share=a.share, share_type=a.share_type)
                    for a in allocations
                ],
                settlements=[],
                edits=[],
            )
            db.add(expense)
            group.total_expenses = to_money(to_money(group.total_expenses) + amount)
            await db.flush()

            return MutationOutcome(
                result=expense,
                action=ActivityAction.EXPENSE_CREATED,
                details={
                    "expense_id": expense.id,
                    "description": expense.description,
                    "amount": amount,
                    "paid_by": expense.paid_by,
                },
                event_tag=EventTag.EXPENSE_CREATED,
                event_payload={"expense_id": expense.id, "amount": str(amount)},
            )

        return await self.sequencer.execute(payload.group_id, actor_id, mutation)

    async def update_expense(self, actor_id: int, expense_id: int, payload: ExpenseUpdate) -> Expense:
        """
        Edit an unsettled expense, keeping a snapshot of its prior state.

        Shares are recomputed from the new amount, payer and split. When no
        participants are supplied the current participants are reused: equal
        splits are re-split, exact shares are kept as they are and
        percentage splits keep each participant's current percentage.

        Raises:
            ExpenseAlreadySettledError: Expense is settled
            InsufficientPermissionsError: Caller is neither creator nor admin
        """
        group_id = await self._expense_group(expense_id)
        updates = payload.model_dump(exclude_none=True)

        async def mutation(db, group):
            require_active_member(group, actor_id)
            expense = await ledger_store.get_expense(db, expense_id, group_id=group.id)
            if expense.is_settled:
                raise ExpenseAlreadySettledError(expense.id)
            require_expense_editor(group, expense, actor_id, "update this expense")

            active = group.active_member_ids
            if payload.paid_by is not None and payload.paid_by != expense.paid_by:
                _require_active(active, [payload.paid_by], "Payer must be an active group member")
            if payload.participants is not None:
                _require_active(
                    active,
                    [p.user_id for p in payload.participants],
                    "All participants must be active group members",
                )
                inputs = [ParticipantShare(p.user_id, p.share) for p in payload.participants]
            else:
                inputs = None

            old_amount = to_money(expense.amount)
            amount = old_amount if payload.amount is None else to_non_negative_money(payload.amount)
            policy = payload.split_method or expense.split_method
            if inputs is None:
                inputs = _current_inputs(expense, policy)
            allocations = calculate_shares(amount, policy, inputs)

            snapshot = _snapshot(expense)
            now = datetime.utcnow()

            for name in ("description", "category", "notes", "tags", "location", "expense_date", "paid_by"):
                if name in updates:
                    setattr(expense, name, updates[name])
            expense.amount = amount
            expense.split_method = policy
            expense.participants = [
                ExpenseParticipant(user_id=a.user_id, share=a.share, share_type=a.share_type)
                for a in allocations
            ]
            expense.edits.append(ExpenseEdit(
                edited_by=actor_id,
                edited_at=now,
                changes={"old": snapshot, "new": jsonable(updates)},
            ))
            expense.last_edited_by = actor_id
            expense.last_edited_at = now
            group.total_expenses = to_money(to_money(group.total_expenses) - old_amount + amount)

            return MutationOutcome(
                result=expense,
                action=ActivityAction.EXPENSE_UPDATED,
                details={"expense_id": expense.id, "fields": sorted(updates)},
                event_tag=EventTag.EXPENSE_UPDATED,
                event_payload={"expense_id": expense.id, "amount": str(amount)},
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def delete_expense(self, actor_id: int, expense_id: int) -> None:
        """Hard-delete an unsettled expense (creator or group admin only)."""
        group_id = await self._expense_group(expense_id)

        async def mutation(db, group):
            require_active_member(group, actor_id)
            expense = await ledger_store.get_expense(db, expense_id, group_id=group.id)
            if expense.is_settled:
                raise ExpenseAlreadySettledError(expense.id)
            require_expense_editor(group, expense, actor_id, "delete this expense")

            amount = to_money(expense.amount)
            details = {"expense_id": expense.id, "description": expense.description, "amount": amount}
            group.total_expenses = to_money(group.total_expenses) - amount
            await db.delete(expense)

            return MutationOutcome(
                result=None,
                action=ActivityAction.EXPENSE_DELETED,
                details=details,
                event_tag=EventTag.EXPENSE_DELETED,
                event_payload={"expense_id": expense_id},
            )

        await self.sequencer.execute(group_id, actor_id, mutation)

    async def settle_expense(self, actor_id: int, expense_id: int, payload: Optional[SettleRequest] = None) -> Expense:
        """
        Mark an expense settled, optionally recording the payments made.

        The group's settled counter grows by the expense amount exactly once.

        Raises:
            AlreadySettledError: Expense is already settled
        """
        group_id = await self._expense_group(expense_id)
        records = payload.settlements if payload is not None else []

        async def mutation(db, group):
            require_active_member(group, actor_id)
            expense = await ledger_store.get_expense(db, expense_id, group_id=group.id)
            if expense.is_settled:
                raise AlreadySettledError(expense.id)

            active = group.active_member_ids
            settlements = [_build_settlement(active, record, actor_id) for record in records]
            for settlement in settlements:
                expense.settlements.append(settlement)
            _mark_settled(group, expense, actor_id)

            return MutationOutcome(
                result=expense,
                action=ActivityAction.EXPENSE_SETTLED,
                details={
                    "expense_id": expense.id,
                    "amount": expense.amount,
                    "settlements": len(settlements),
                },
                event_tag=EventTag.EXPENSE_SETTLED,
                event_payload={"expense_id": expense.id},
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def add_settlement(self, actor_id: int, expense_id: int, payload: SettlementCreate) -> Expense:
        """
        Record one payment against an unsettled expense.

        The caller must be the paying or receiving party. Once the recorded
        payments reach the expense amount the expense becomes settled.

        Raises:
            AlreadySettledError: Expense is already settled
            InsufficientPermissionsError: Caller is not a party to the payment
            InvalidParticipantError: A party is not an active member
        """
        group_id = await self._expense_group(expense_id)

        async def mutation(db, group):
            require_active_member(group, actor_id)
            expense = await ledger_store.get_expense(db, expense_id, group_id=group.id)
            if expense.is_settled:
                raise AlreadySettledError(expense.id)
            if actor_id not in (payload.from_user_id, payload.to_user_id):
                raise InsufficientPermissionsError(
                    "You can only record settlements you paid or received",
                    {"expense_id": expense.id, "user_id": actor_id}
                )

            settlement = _build_settlement(group.active_member_ids, payload, actor_id)
            expense.settlements.append(settlement)
            auto_settled = expense.settled_amount >= to_money(expense.amount)
            if auto_settled:
                _mark_settled(group, expense, actor_id)
            await db.flush()

            return MutationOutcome(
                result=expense,
                action=ActivityAction.SETTLEMENT_ADDED,
                details={
                    "expense_id": expense.id,
                    "settlement_id": settlement.id,
                    "from_user_id": settlement.from_user_id,
                    "to_user_id": settlement.to_user_id,
                    "amount": settlement.amount,
                    "auto_settled": auto_settled,
                },
                event_tag=EventTag.SETTLEMENT_ADDED,
                event_payload={
                    "expense_id": expense.id,
                    "amount": str(settlement.amount),
                    "settled": auto_settled,
                },
            )

        return await self.sequencer.execute(group_id, actor_id, mutation)

    async def get_expense(self, actor_id: int, expense_id: int) -> Expense:
        async with self.sequencer.reader() as db:
            expense = await ledger_store.get_expense(db, expense_id)
            group = await ledger_store.get_group(db, expense.group_id, include_inactive=True)
        require_active_member(group, actor_id)
        return expense

    async def list_group_expenses(
        self,
        actor_id: int,
        group_id: int,
        page: int = 1,
        limit: int = 20,
        category=None,
        settled: Optional[bool] = None,
    ) -> Tuple[List[Expense], int]:
        async with self.sequencer.reader() as db:
            group = await ledger_store.get_group(db, group_id)
            require_active_member(group, actor_id)
            return await ledger_store.list_group_expenses(
                db, group_id, page=page, limit=limit, category=category, settled=settled
            )

    async def list_user_expenses(
        self, actor_id: int, page: int = 1, limit: int = 20
    ) -> Tuple[List[Expense], int]:
        """The caller's expenses across all of their groups, newest first."""
        async with self.sequencer.reader() as db:
            return await ledger_store.list_user_expenses(db, actor_id, page=page, limit=limit)

    async def _expense_group(self, expense_id: int) -> int:
        async with self.sequencer.reader() as db:
            expense = await ledger_store.get_expense(db, expense_id)
            return expense.group_id


def _require_active(active_ids, user_ids: Iterable[int], message: str) -> None:
    missing = sorted({uid for uid in user_ids if uid not in active_ids})
    if missing:
        raise InvalidParticipantError(message, missing)


def _current_inputs(expense: Expense, policy: SplitPolicy) -> List[ParticipantShare]:
    participants = list(expense.participants)
    if policy == SplitPolicy.EQUAL:
        return [ParticipantShare(p.user_id) for p in participants]
    if policy == SplitPolicy.EXACT:
        return [ParticipantShare(p.user_id, to_money(p.share)) for p in participants]

    current = to_money(expense.amount)
    if current == ZERO:
        raise InvalidAmountError("Percentage split of a zero amount needs explicit percentages")
    return [
        ParticipantShare(p.user_id, to_money(p.share) * HUNDRED / current)
        for p in participants
    ]


def _snapshot(expense: Expense) -> dict:
    return jsonable({
        "description": expense.description,
        "amount": to_money(expense.amount),
        "category": expense.category,
        "notes": expense.notes,
        "tags": list(expense.tags or []),
        "location": expense.location,
        "expense_date": expense.expense_date,
        "paid_by": expense.paid_by,
        "split_method": expense.split_method,
        "participants": [
            {"user_id": p.user_id, "share": to_money(p.share), "share_type": p.share_type}
            for p in expense.participants
        ],
    })


def _build_settlement(active_ids, record: SettlementCreate, recorded_by: int) -> ExpenseSettlement:
    if record.from_user_id == record.to_user_id:
        raise InvalidParticipantError(
            "A settlement needs two different members", [record.from_user_id]
        )
    _require_active(
        active_ids,
        [record.from_user_id, record.to_user_id],
        "Settlement parties must be active group members",
    )
    amount = to_money(record.amount)
    if amount <= ZERO:
        raise InvalidAmountError("Settlement amount must be positive", record.amount)
    return ExpenseSettlement(
        from_user_id=record.from_user_id,
        to_user_id=record.to_user_id,
        amount=amount,
        method=record.method,
        transaction_id=record.transaction_id,
        recorded_by=recorded_by,
        settled_at=datetime.utcnow(),
    )


def _mark_settled(group, expense: Expense, actor_id: int) -> None:
    expense.is_settled = True
    expense.settled_by = actor_id
    expense.settled_at = datetime.utcnow()
    group.total_settled = to_money(group.total_settled) + to_money(expense.amount)
