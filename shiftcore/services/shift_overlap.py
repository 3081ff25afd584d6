from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.enums import ACTIVE_SHIFT_STATUSES, SwapRequestStatus
from shiftcore.models import Shift, ShiftSwapRequest
from shiftcore.utils import json_safe, parse_hhmm


MINUTES_PER_DAY = 24 * 60

WORKER_OVERLAP = "worker_overlap"
DEPARTMENT_OVERLAP = "department_overlap"
PENDING_REQUEST_OVERLAP = "pending_request_overlap"


def to_minutes(value: Union[str, time]) -> int:
    t = parse_hhmm(value)
    return t.hour * 60 + t.minute


def _span_minutes(start: Union[str, time], end: Union[str, time]) -> tuple[int, int]:
    s = to_minutes(start)
    e = to_minutes(end)
    if e < s:
        e += MINUTES_PER_DAY
    return s, e


def time_ranges_overlap(
    start1: Union[str, time],
    end1: Union[str, time],
    start2: Union[str, time],
    end2: Union[str, time],
) -> bool:
    """Strict, wrap-aware interval intersection; touching endpoints do not overlap.

    Intervals are compared on the 24h clock: the tail of an overnight shift
    (the part after midnight) collides with early-morning hours of the other
    interval, so ``22:00-06:00`` overlaps ``02:00-05:00``.
    """
    s1, e1 = _span_minutes(start1, end1)
    s2, e2 = _span_minutes(start2, end2)
    for offset in (-MINUTES_PER_DAY, 0, MINUTES_PER_DAY):
        if s1 < e2 + offset and s2 + offset < e1:
            return True
    return False


@dataclass(frozen=True)
class ShiftCandidate:
    worker_id: Optional[int]
    department: str
    day: date
    start_time: str
    end_time: str


@dataclass(frozen=True)
class ShiftSpan:
    id: int
    title: str
    department: str
    day: date
    start_time: str
    end_time: str
    status: str
    assigned_worker_id: Optional[int] = None

    @classmethod
    def from_shift(cls, s: Shift) -> "ShiftSpan":
        return cls(
            id=int(s.id),
            title=str(s.title or ""),
            department=str(s.department or ""),
            day=s.day,
            start_time=str(s.start_time),
            end_time=str(s.end_time),
            status=s.status.value if hasattr(s.status, "value") else str(s.status),
            assigned_worker_id=int(s.assigned_worker_id) if s.assigned_worker_id is not None else None,
        )

    def summary(self) -> dict:
        return json_safe(
            {
                "id": self.id,
                "title": self.title,
                "date": self.day,
                "start_time": self.start_time,
                "end_time": self.end_time,
                "status": self.status,
                "assigned_worker_id": self.assigned_worker_id,
            }
        )


@dataclass(frozen=True)
class OverlapResult:
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return len(self.errors) == 0

    def as_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def validate_overlap(
    candidate: ShiftCandidate,
    worker_shifts: Iterable[ShiftSpan],
    department_shifts: Iterable[ShiftSpan],
    *,
    exclude_shift_id: Optional[int] = None,
    pending_shifts: Iterable[ShiftSpan] = (),
) -> OverlapResult:
    active = {str(s) for s in ACTIVE_SHIFT_STATUSES}

    def colliding(spans: Iterable[ShiftSpan]) -> list[ShiftSpan]:
        out: list[ShiftSpan] = []
        for span in spans:
            if exclude_shift_id is not None and int(span.id) == int(exclude_shift_id):
                continue
            if span.day != candidate.day or span.status not in active:
                continue
            if time_ranges_overlap(candidate.start_time, candidate.end_time, span.start_time, span.end_time):
                out.append(span)
        return out

    errors: list[dict] = []
    warnings: list[dict] = []

    worker_hits: list[ShiftSpan] = []
    if candidate.worker_id is not None:
        worker_hits = [
            s
            for s in colliding(worker_shifts)
            if s.assigned_worker_id is not None and int(s.assigned_worker_id) == int(candidate.worker_id)
        ]
        if worker_hits:
            errors.append(
                {
                    "type": WORKER_OVERLAP,
                    "message": "This shift overlaps with existing shifts assigned to this worker",
                    "worker_id": int(candidate.worker_id),
                    "overlapping_shifts": [s.summary() for s in worker_hits],
                }
            )

        blocking_ids = {s.id for s in worker_hits}
        pending_hits = [s for s in colliding(pending_shifts) if s.id not in blocking_ids]
        if pending_hits:
            warnings.append(
                {
                    "type": PENDING_REQUEST_OVERLAP,
                    "message": "This shift overlaps with shifts this worker has pending requests for",
                    "worker_id": int(candidate.worker_id),
                    "overlapping_shifts": [s.summary() for s in pending_hits],
                }
            )

    dept_hits = [s for s in colliding(department_shifts) if s.department == candidate.department]
    if dept_hits:
        warnings.append(
            {
                "type": DEPARTMENT_OVERLAP,
                "message": f"Multiple shifts exist in {candidate.department} department for the same time period",
                "department": candidate.department,
                "overlapping_shifts": [s.summary() for s in dept_hits],
            }
        )

    return OverlapResult(errors=errors, warnings=warnings)


def _shifts_on_day(day: date, exclude_shift_id: Optional[int]):
    q = select(Shift).where(Shift.day == day)
    if exclude_shift_id is not None:
        q = q.where(Shift.id != int(exclude_shift_id))
    return q


async def check_shift_overlap(
    session: AsyncSession,
    candidate: ShiftCandidate,
    *,
    exclude_shift_id: Optional[int] = None,
) -> OverlapResult:
    worker_rows: list[Shift] = []
    pending_rows: list[Shift] = []
    if candidate.worker_id is not None:
        worker_rows = list(
            (
                await session.scalars(
                    _shifts_on_day(candidate.day, exclude_shift_id).where(
                        Shift.assigned_worker_id == int(candidate.worker_id)
                    )
                )
            ).all()
        )
        pending_rows = list(
            (
                await session.scalars(
                    _shifts_on_day(candidate.day, exclude_shift_id)
                    .join(ShiftSwapRequest, ShiftSwapRequest.shift_id == Shift.id)
                    .where(ShiftSwapRequest.requested_by_worker_id == int(candidate.worker_id))
                    .where(ShiftSwapRequest.status == SwapRequestStatus.PENDING)
                )
            ).all()
        )

    dept_rows = list(
        (
            await session.scalars(
                _shifts_on_day(candidate.day, exclude_shift_id).where(Shift.department == candidate.department)
            )
        ).all()
    )

    return validate_overlap(
        candidate,
        [ShiftSpan.from_shift(s) for s in worker_rows],
        [ShiftSpan.from_shift(s) for s in dept_rows],
        exclude_shift_id=exclude_shift_id,
        pending_shifts=[ShiftSpan.from_shift(s) for s in pending_rows],
    )
