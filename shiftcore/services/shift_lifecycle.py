from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.config import settings
from shiftcore.enums import HistoryAction, ShiftStatus
from shiftcore.errors import Forbidden, InvalidState, NotFound, OverlapConflict
from shiftcore.models import Shift, ShiftSwapRequest
from shiftcore.permissions import Actor, can_delete_shift, can_edit_shift, role_flags
from shiftcore.schemas import ShiftCreate, ShiftUpdate
from shiftcore.services.credential_eligibility import CredentialRegistry, eligible_shifts_for_worker
from shiftcore.services.shift_history import diff_shift_for_audit, record_history, shift_snapshot
from shiftcore.services.shift_overlap import ShiftCandidate, check_shift_overlap
from shiftcore.utils import utc_now


logger = logging.getLogger(__name__)


class ShiftEvent(StrEnum):
    REQUEST_FILED = "request_filed"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_WITHDRAWN = "request_withdrawn"


TRANSITIONS: dict[tuple[ShiftStatus, ShiftEvent], ShiftStatus] = {
    (ShiftStatus.OPEN, ShiftEvent.REQUEST_FILED): ShiftStatus.REQUESTED,
    (ShiftStatus.REQUESTED, ShiftEvent.REQUEST_APPROVED): ShiftStatus.APPROVED,
    (ShiftStatus.REQUESTED, ShiftEvent.REQUEST_REJECTED): ShiftStatus.OPEN,
    (ShiftStatus.REQUESTED, ShiftEvent.REQUEST_WITHDRAWN): ShiftStatus.OPEN,
}

# Only these may be explicitly cleared by an edit; None elsewhere means "leave as is".
CLEARABLE_FIELDS = frozenset({"assigned_worker_id", "incentive_description"})
# A posting worker edits the schedule; staffing goes through the swap workflow.
MANAGER_ONLY_FIELDS = frozenset({"assigned_worker_id", "status"})


def status_value(st) -> str:
    return st.value if hasattr(st, "value") else str(st or "")


def next_status(current: ShiftStatus | str, event: ShiftEvent) -> ShiftStatus:
    cur = ShiftStatus(status_value(current))
    target = TRANSITIONS.get((cur, event))
    if target is None:
        raise InvalidState(
            f"Cannot apply {event.value} to a shift in status {cur.value}",
            current=cur.value,
            event=event.value,
        )
    return target


def can_transition(current: ShiftStatus | str, event: ShiftEvent) -> bool:
    return (ShiftStatus(status_value(current)), event) in TRANSITIONS


def assert_shift_invariants(
    *,
    status: ShiftStatus | str,
    assigned_worker_id: Optional[int],
    incentive_amount: Decimal | float | int | None = 0,
) -> None:
    st = status_value(status)
    if assigned_worker_id is not None and st != ShiftStatus.APPROVED.value:
        raise InvalidState("An assigned shift must be approved", current=st, assigned_worker_id=int(assigned_worker_id))
    if st == ShiftStatus.OPEN.value and assigned_worker_id is not None:
        raise InvalidState("An open shift cannot have an assigned worker", current=st)
    if incentive_amount is not None and Decimal(str(incentive_amount)) < 0:
        raise InvalidState("Incentive amount cannot be negative", current=st)


def is_deletable(*, status: ShiftStatus | str, assigned_worker_id: Optional[int]) -> bool:
    return not (status_value(status) == ShiftStatus.APPROVED.value and assigned_worker_id is not None)


@dataclass(frozen=True)
class ShiftMutationResult:
    shift: Shift
    changed: bool
    warnings: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class ShiftDeleteResult:
    shift_id: int
    deleted_requests: int


async def load_shift(session: AsyncSession, shift_id: int) -> Shift:
    s = await session.get(Shift, int(shift_id))
    if s is None:
        raise NotFound("Shift", int(shift_id))
    return s


async def load_shift_for_update(session: AsyncSession, shift_id: int) -> Shift:
    res = await session.execute(
        select(Shift).where(Shift.id == int(shift_id)).with_for_update().execution_options(populate_existing=True)
    )
    s = res.scalar_one_or_none()
    if s is None:
        raise NotFound("Shift", int(shift_id))
    return s


async def create_shift(
    session: AsyncSession,
    *,
    actor: Actor,
    data: ShiftCreate,
) -> ShiftMutationResult:
    warnings: list[dict] = []
    if data.assigned_worker_id is not None:
        if not role_flags(actor=actor, manager_ids=settings.manager_ids).is_manager:
            raise Forbidden("Only managers can create a pre-assigned shift", fields=["assigned_worker_id"])
        overlap = await check_shift_overlap(
            session,
            ShiftCandidate(
                worker_id=int(data.assigned_worker_id),
                department=data.department,
                day=data.day,
                start_time=data.start_time,
                end_time=data.end_time,
            ),
        )
        if not overlap.valid:
            raise OverlapConflict(overlap.errors, overlap.warnings)
        warnings = list(overlap.warnings)

    status = ShiftStatus.APPROVED if data.assigned_worker_id is not None else ShiftStatus.OPEN
    assert_shift_invariants(status=status, assigned_worker_id=data.assigned_worker_id, incentive_amount=data.incentive_amount)

    s = Shift(
        title=data.title,
        department=data.department,
        day=data.day,
        start_time=data.start_time,
        end_time=data.end_time,
        posted_by_worker_id=int(actor.worker_id),
        assigned_worker_id=data.assigned_worker_id,
        required_credential_ids=list(data.required_credential_ids),
        is_emergency=bool(data.is_emergency),
        incentive_amount=data.incentive_amount,
        incentive_description=data.incentive_description,
        status=status,
    )
    session.add(s)
    await session.flush()

    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.CREATED,
        performed_by=int(actor.worker_id),
        new=shift_snapshot(s),
        description="Shift created",
    )
    logger.info(
        "SHIFT_CREATED shift_id=%s department=%s day=%s status=%s actor=%s warnings=%s",
        int(s.id),
        s.department,
        s.day.isoformat(),
        s.status.value,
        int(actor.worker_id),
        len(warnings),
    )
    return ShiftMutationResult(shift=s, changed=True, warnings=warnings)


def _resolve_edit_target(s: Shift, changes: dict) -> tuple[ShiftStatus, Optional[int]]:
    current_status = ShiftStatus(status_value(s.status))
    target_assigned = changes["assigned_worker_id"] if "assigned_worker_id" in changes else s.assigned_worker_id
    if "status" in changes and changes["status"] is not None:
        return ShiftStatus(changes["status"]), target_assigned
    if "assigned_worker_id" in changes:
        if target_assigned is not None:
            return ShiftStatus.APPROVED, target_assigned
        if s.assigned_worker_id is not None:
            # unassign
            return ShiftStatus.OPEN, None
    return current_status, target_assigned


async def update_shift(
    session: AsyncSession,
    *,
    actor: Actor,
    shift_id: int,
    patch: ShiftUpdate,
) -> ShiftMutationResult:
    s = await load_shift_for_update(session, int(shift_id))

    if not can_edit_shift(actor=actor, manager_ids=settings.manager_ids, posted_by_worker_id=int(s.posted_by_worker_id)):
        raise Forbidden("Only managers or the posting worker can edit this shift", shift_id=int(s.id))

    changes = {f: v for f, v in patch.changes().items() if v is not None or f in CLEARABLE_FIELDS}
    if not role_flags(actor=actor, manager_ids=settings.manager_ids).is_manager and MANAGER_ONLY_FIELDS & changes.keys():
        raise Forbidden(
            "Only managers can assign workers or change shift status",
            shift_id=int(s.id),
            fields=sorted(MANAGER_ONLY_FIELDS & changes.keys()),
        )
    before = shift_snapshot(s)
    current_status = status_value(s.status)

    target_status, target_assigned = _resolve_edit_target(s, changes)

    if current_status == ShiftStatus.REQUESTED.value and (
        target_status.value != current_status or target_assigned != s.assigned_worker_id
    ):
        raise InvalidState(
            "Shift has a pending swap request; approve or reject it first",
            current=current_status,
            shift_id=int(s.id),
        )
    if target_status == ShiftStatus.REQUESTED and current_status != ShiftStatus.REQUESTED.value:
        raise InvalidState("A shift only becomes requested by filing a swap request", current=current_status)

    assert_shift_invariants(
        status=target_status,
        assigned_worker_id=target_assigned,
        incentive_amount=changes.get("incentive_amount", s.incentive_amount),
    )

    target = {f: changes.get(f, getattr(s, f)) for f in ("department", "day", "start_time", "end_time")}
    schedule_changed = any(target[f] != getattr(s, f) for f in ("day", "start_time", "end_time")) or (
        target_assigned != s.assigned_worker_id
    )

    warnings: list[dict] = []
    if schedule_changed:
        if target["start_time"] == target["end_time"]:
            raise InvalidState("Shift start and end times must differ", current=current_status)
        overlap = await check_shift_overlap(
            session,
            ShiftCandidate(
                worker_id=int(target_assigned) if target_assigned is not None else None,
                department=str(target["department"]),
                day=target["day"],
                start_time=str(target["start_time"]),
                end_time=str(target["end_time"]),
            ),
            exclude_shift_id=int(s.id),
        )
        if not overlap.valid:
            raise OverlapConflict(overlap.errors, overlap.warnings)
        warnings = list(overlap.warnings)

    for f, v in changes.items():
        if f in {"status", "assigned_worker_id"}:
            continue
        setattr(s, f, v)
    s.status = target_status
    s.assigned_worker_id = target_assigned

    after = shift_snapshot(s)
    diff = diff_shift_for_audit(before=before, after=after)
    if not diff:
        return ShiftMutationResult(shift=s, changed=False, warnings=warnings)

    await session.flush()
    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.UPDATED,
        performed_by=int(actor.worker_id),
        previous=before,
        new=after,
        description="; ".join(c.human for c in diff),
    )
    logger.info(
        "SHIFT_UPDATED shift_id=%s fields=%s actor=%s schedule_changed=%s",
        int(s.id),
        ",".join(c.field for c in diff),
        int(actor.worker_id),
        bool(schedule_changed),
    )
    return ShiftMutationResult(shift=s, changed=True, warnings=warnings)


async def delete_shift(session: AsyncSession, *, actor: Actor, shift_id: int) -> ShiftDeleteResult:
    s = await load_shift_for_update(session, int(shift_id))

    if not can_delete_shift(actor=actor, manager_ids=settings.manager_ids):
        raise Forbidden("Only managers can delete shifts", shift_id=int(s.id))

    if not is_deletable(status=s.status, assigned_worker_id=s.assigned_worker_id):
        raise InvalidState(
            "Cannot delete an approved shift that is assigned to a worker. Unassign it first.",
            current=status_value(s.status),
            assigned_worker_id=int(s.assigned_worker_id),
        )

    request_ids = list(
        (
            await session.scalars(
                select(ShiftSwapRequest.id).where(ShiftSwapRequest.shift_id == int(s.id)).order_by(ShiftSwapRequest.id)
            )
        ).all()
    )
    snapshot = shift_snapshot(s)
    # request ids outlive the cascade so a late decision can tell "deleted" from "never existed"
    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.DELETED,
        performed_by=int(actor.worker_id),
        previous=snapshot,
        new={"deleted_request_ids": [int(i) for i in request_ids]},
        description="Shift deleted by manager",
    )

    await session.execute(
        delete(ShiftSwapRequest)
        .where(ShiftSwapRequest.shift_id == int(s.id))
        .execution_options(synchronize_session=False)
    )
    deleted_requests = len(request_ids)

    await session.delete(s)
    await session.flush()

    logger.info(
        "SHIFT_DELETED shift_id=%s actor=%s cascaded_requests=%s",
        int(shift_id),
        int(actor.worker_id),
        deleted_requests,
    )
    return ShiftDeleteResult(shift_id=int(shift_id), deleted_requests=deleted_requests)


async def list_claimable_shifts(
    session: AsyncSession,
    registry: CredentialRegistry,
    *,
    worker_id: int,
    department: Optional[str] = None,
    emergency_only: bool = False,
    now: Optional[datetime] = None,
) -> list[Shift]:
    """Open shifts the worker is credentialed for, emergency shifts first."""
    q = select(Shift).where(Shift.status == ShiftStatus.OPEN)
    if department:
        q = q.where(Shift.department == str(department))
    if emergency_only:
        q = q.where(Shift.is_emergency.is_(True))
    q = q.order_by(Shift.is_emergency.desc(), Shift.day.asc(), Shift.start_time.asc(), Shift.id.asc())
    shifts = list((await session.scalars(q)).all())
    return await eligible_shifts_for_worker(registry, int(worker_id), shifts, now=now or utc_now())


async def list_assigned_shifts(
    session: AsyncSession,
    *,
    worker_id: int,
    view: Optional[str] = None,
    today: Optional[date] = None,
) -> list[Shift]:
    today = today or utc_now().date()
    q = select(Shift).where(Shift.assigned_worker_id == int(worker_id))
    if view == "upcoming":
        q = q.where(Shift.day >= today)
    elif view == "past":
        q = q.where(Shift.day < today)
    q = q.order_by(Shift.day.asc(), Shift.start_time.asc())
    return list((await session.scalars(q)).all())
