from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.config import settings
from shiftcore.enums import HistoryAction, ShiftStatus, SwapRequestStatus
from shiftcore.errors import (
    DuplicateRequest,
    Forbidden,
    IneligibleWorker,
    InvalidState,
    NotFound,
    OverlapConflict,
    SchedulingError,
    SelfRequest,
)
from shiftcore.models import Shift, ShiftSwapRequest
from shiftcore.permissions import Actor, can_decide_requests
from shiftcore.schemas import SwapRequestCreate
from shiftcore.services.credential_eligibility import CredentialRegistry, verify_worker_credentials
from shiftcore.services.hours_ledger import HoursLedger, OvertimeProjection
from shiftcore.services.shift_history import find_deleted_request, record_history, shift_snapshot
from shiftcore.services.shift_lifecycle import ShiftEvent, load_shift_for_update, next_status, status_value
from shiftcore.services.shift_notifications import (
    NotificationPayload,
    NotificationSink,
    ShiftNotificationService,
    build_approval_payload,
    build_rejection_payload,
)
from shiftcore.services.shift_overlap import ShiftCandidate, check_shift_overlap


logger = logging.getLogger(__name__)

OVERTIME_WARNING = "overtime"


@dataclass(frozen=True)
class FileRequestResult:
    request: ShiftSwapRequest
    shift: Shift
    overtime: OvertimeProjection
    warnings: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class ApprovalResult:
    request: ShiftSwapRequest
    shift: Shift
    overtime: OvertimeProjection
    notification: NotificationPayload
    warnings: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class RejectionResult:
    request: ShiftSwapRequest
    shift: Shift
    notification: Optional[NotificationPayload] = None


@dataclass(frozen=True)
class PendingRequestView:
    request: ShiftSwapRequest
    shift: Shift
    overtime: OvertimeProjection

    @property
    def overtime_warning(self) -> Optional[OvertimeProjection]:
        return self.overtime if self.overtime.would_exceed else None


def overtime_warning(overtime: OvertimeProjection) -> dict:
    return {"type": OVERTIME_WARNING, "message": "Accepting this shift may result in overtime", **overtime.as_dict()}


async def _missing_request(session: AsyncSession, request_id: int) -> SchedulingError:
    tombstone = await find_deleted_request(session, int(request_id))
    if tombstone is None:
        return NotFound("Swap request", int(request_id))
    return InvalidState(
        "The shift for this swap request was deleted",
        current=None,
        reason="shift_deleted",
        request_id=int(request_id),
        shift_id=int(tombstone.shift_id),
    )


async def get_request(session: AsyncSession, request_id: int) -> ShiftSwapRequest:
    r = await session.get(ShiftSwapRequest, int(request_id))
    if r is None:
        raise await _missing_request(session, int(request_id))
    return r


async def _lock_request_and_shift(session: AsyncSession, request_id: int) -> tuple[ShiftSwapRequest, Shift]:
    # Shift row first, then the request: the same order delete_shift takes them in.
    r = await get_request(session, int(request_id))
    try:
        s = await load_shift_for_update(session, int(r.shift_id))
    except NotFound:
        raise await _missing_request(session, int(request_id)) from None
    res = await session.execute(
        select(ShiftSwapRequest)
        .where(ShiftSwapRequest.id == int(request_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    r = res.scalar_one_or_none()
    if r is None:
        raise await _missing_request(session, int(request_id))
    return r, s


def _ensure_pending(r: ShiftSwapRequest) -> None:
    st = status_value(r.status)
    if st != SwapRequestStatus.PENDING.value:
        raise InvalidState(f"Swap request is already {st}", current=st, request_id=int(r.id))


async def file_swap_request(
    session: AsyncSession,
    *,
    actor: Actor,
    shift_id: int,
    data: SwapRequestCreate,
    registry: CredentialRegistry,
    now: datetime,
) -> FileRequestResult:
    worker_id = int(actor.worker_id)
    s = await load_shift_for_update(session, int(shift_id))

    existing = (
        await session.execute(
            select(ShiftSwapRequest)
            .where(ShiftSwapRequest.shift_id == int(s.id))
            .where(ShiftSwapRequest.requested_by_worker_id == worker_id)
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise DuplicateRequest(
            shift_id=int(s.id),
            worker_id=worker_id,
            existing_request_id=int(existing.id),
            existing_status=status_value(existing.status),
        )

    if status_value(s.status) != ShiftStatus.OPEN.value:
        raise InvalidState("Shift is not available for requests", current=status_value(s.status), shift_id=int(s.id))
    target = next_status(s.status, ShiftEvent.REQUEST_FILED)

    if int(s.posted_by_worker_id) == worker_id:
        raise SelfRequest(shift_id=int(s.id), worker_id=worker_id)

    eligibility = await verify_worker_credentials(registry, worker_id, s.required_credential_ids, now=now)
    if not eligibility.eligible:
        logger.info(
            "SWAP_INELIGIBLE shift_id=%s worker_id=%s missing=%s expired=%s",
            int(s.id),
            worker_id,
            eligibility.missing,
            len(eligibility.expired),
        )
        raise IneligibleWorker(worker_id=worker_id, missing=eligibility.missing, expired=eligibility.expired)

    overtime = await HoursLedger(session).check_overtime(worker_id=worker_id, shift=s)

    r = ShiftSwapRequest(
        shift_id=int(s.id),
        requested_by_worker_id=worker_id,
        status=SwapRequestStatus.PENDING,
        swap_type=data.swap_type,
        reason=data.reason,
        response_deadline=data.response_deadline,
        created_at=now,
        updated_at=now,
    )
    session.add(r)
    s.status = target
    await session.flush()

    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.REQUESTED,
        performed_by=worker_id,
        previous={"status": ShiftStatus.OPEN.value},
        new={"status": target.value, "request_id": int(r.id), "swap_type": r.swap_type.value},
        description=f"Swap request #{int(r.id)} filed",
    )

    warnings = [overtime_warning(overtime)] if overtime.would_exceed else []
    logger.info(
        "SWAP_REQUESTED request_id=%s shift_id=%s worker_id=%s type=%s overtime=%s",
        int(r.id),
        int(s.id),
        worker_id,
        r.swap_type.value,
        overtime.would_exceed,
    )
    return FileRequestResult(request=r, shift=s, overtime=overtime, warnings=warnings)


async def approve_swap_request(
    session: AsyncSession,
    *,
    actor: Actor,
    request_id: int,
    now: datetime,
    sink: Optional[NotificationSink] = None,
) -> ApprovalResult:
    if not can_decide_requests(actor=actor, manager_ids=settings.manager_ids):
        raise Forbidden("Only managers can approve swap requests", request_id=int(request_id))

    r, s = await _lock_request_and_shift(session, int(request_id))
    _ensure_pending(r)
    target = next_status(s.status, ShiftEvent.REQUEST_APPROVED)
    worker_id = int(r.requested_by_worker_id)

    overlap = await check_shift_overlap(
        session,
        ShiftCandidate(
            worker_id=worker_id,
            department=s.department,
            day=s.day,
            start_time=s.start_time,
            end_time=s.end_time,
        ),
        exclude_shift_id=int(s.id),
    )
    warnings = list(overlap.warnings)
    if not overlap.valid:
        if settings.APPROVAL_OVERLAP_POLICY == "block":
            logger.info("SWAP_APPROVE_BLOCKED request_id=%s shift_id=%s worker_id=%s", int(r.id), int(s.id), worker_id)
            raise OverlapConflict(overlap.errors, overlap.warnings)
        warnings = list(overlap.errors) + warnings
        logger.warning(
            "SWAP_APPROVE_OVERLAP request_id=%s shift_id=%s worker_id=%s policy=warn",
            int(r.id),
            int(s.id),
            worker_id,
        )

    ledger = HoursLedger(session)
    # projection reflects the week before this shift is booked
    overtime = await ledger.check_overtime(worker_id=worker_id, shift=s)

    before = shift_snapshot(s)
    r.status = SwapRequestStatus.APPROVED
    r.manager_worker_id = int(actor.worker_id)
    r.decided_at = now
    r.updated_at = now
    s.status = target
    s.assigned_worker_id = worker_id
    await session.flush()

    await ledger.record_hours(worker_id=worker_id, shift=s)
    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.APPROVED,
        performed_by=int(actor.worker_id),
        previous=before,
        new=shift_snapshot(s),
        description=f"Swap request #{int(r.id)} approved; assigned to worker {worker_id}",
    )

    payload = build_approval_payload(shift=s, worker_id=worker_id, overtime=overtime)
    await ShiftNotificationService(session, sink).enqueue(payload)

    if overtime.would_exceed:
        warnings.append(overtime_warning(overtime))
    logger.info(
        "SWAP_APPROVED request_id=%s shift_id=%s worker_id=%s manager_id=%s projected_hours=%.1f",
        int(r.id),
        int(s.id),
        worker_id,
        int(actor.worker_id),
        overtime.projected_hours,
    )
    return ApprovalResult(request=r, shift=s, overtime=overtime, notification=payload, warnings=warnings)


async def reject_swap_request(
    session: AsyncSession,
    *,
    actor: Actor,
    request_id: int,
    now: datetime,
    sink: Optional[NotificationSink] = None,
) -> RejectionResult:
    if not can_decide_requests(actor=actor, manager_ids=settings.manager_ids):
        raise Forbidden("Only managers can reject swap requests", request_id=int(request_id))

    r, s = await _lock_request_and_shift(session, int(request_id))
    _ensure_pending(r)
    target = next_status(s.status, ShiftEvent.REQUEST_REJECTED)

    r.status = SwapRequestStatus.REJECTED
    r.manager_worker_id = int(actor.worker_id)
    r.decided_at = now
    r.updated_at = now
    s.status = target
    await session.flush()

    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.REJECTED,
        performed_by=int(actor.worker_id),
        previous={"status": ShiftStatus.REQUESTED.value, "request_id": int(r.id)},
        new={"status": target.value, "request_id": int(r.id)},
        description=f"Swap request #{int(r.id)} rejected",
    )

    payload = build_rejection_payload(shift=s, worker_id=int(r.requested_by_worker_id))
    await ShiftNotificationService(session, sink).enqueue(payload)

    logger.info(
        "SWAP_REJECTED request_id=%s shift_id=%s worker_id=%s manager_id=%s",
        int(r.id),
        int(s.id),
        int(r.requested_by_worker_id),
        int(actor.worker_id),
    )
    return RejectionResult(request=r, shift=s, notification=payload)


async def withdraw_swap_request(
    session: AsyncSession,
    *,
    actor: Actor,
    request_id: int,
    now: datetime,
) -> RejectionResult:
    r, s = await _lock_request_and_shift(session, int(request_id))
    if int(r.requested_by_worker_id) != int(actor.worker_id):
        raise Forbidden("Only the requesting worker can withdraw this request", request_id=int(r.id))
    _ensure_pending(r)
    target = next_status(s.status, ShiftEvent.REQUEST_WITHDRAWN)

    r.status = SwapRequestStatus.WITHDRAWN
    r.decided_at = now
    r.updated_at = now
    s.status = target
    await session.flush()

    await record_history(
        session,
        shift_id=int(s.id),
        action=HistoryAction.WITHDRAWN,
        performed_by=int(actor.worker_id),
        previous={"status": ShiftStatus.REQUESTED.value, "request_id": int(r.id)},
        new={"status": target.value, "request_id": int(r.id)},
        description=f"Swap request #{int(r.id)} withdrawn",
    )
    logger.info("SWAP_WITHDRAWN request_id=%s shift_id=%s worker_id=%s", int(r.id), int(s.id), int(actor.worker_id))
    return RejectionResult(request=r, shift=s)


async def list_pending_requests(
    session: AsyncSession,
    *,
    emergency_only: bool = False,
    threshold: Optional[float] = None,
) -> list[PendingRequestView]:
    """Manager queue: emergency shifts first, oldest requests first within each group."""
    q = (
        select(ShiftSwapRequest, Shift)
        .join(Shift, Shift.id == ShiftSwapRequest.shift_id)
        .where(ShiftSwapRequest.status == SwapRequestStatus.PENDING)
    )
    if emergency_only:
        q = q.where(Shift.is_emergency.is_(True))
    q = q.order_by(Shift.is_emergency.desc(), ShiftSwapRequest.created_at.asc(), ShiftSwapRequest.id.asc())

    ledger = HoursLedger(session)
    out: list[PendingRequestView] = []
    for r, s in (await session.execute(q)).all():
        overtime = await ledger.check_overtime(worker_id=int(r.requested_by_worker_id), shift=s, threshold=threshold)
        out.append(PendingRequestView(request=r, shift=s, overtime=overtime))
    return out


async def list_worker_requests(session: AsyncSession, worker_id: int) -> list[ShiftSwapRequest]:
    q = (
        select(ShiftSwapRequest)
        .where(ShiftSwapRequest.requested_by_worker_id == int(worker_id))
        .order_by(ShiftSwapRequest.created_at.desc(), ShiftSwapRequest.id.desc())
    )
    return list((await session.scalars(q)).all())
