from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.enums import CoverageStatus, ShiftStatus
from shiftcore.models import Shift
from shiftcore.services.shift_lifecycle import status_value


# A start date on its own selects this many days, start included.
DEFAULT_OVERVIEW_DAYS = 7


def coverage_status(*, status: ShiftStatus | str, assigned_worker_id: Optional[int]) -> CoverageStatus:
    st = status_value(status)
    if st == ShiftStatus.APPROVED.value and assigned_worker_id is not None:
        return CoverageStatus.FULLY_COVERED
    if st == ShiftStatus.REQUESTED.value:
        return CoverageStatus.PARTIAL_COVERAGE
    if st == ShiftStatus.OPEN.value:
        return CoverageStatus.UNDERSTAFFED
    return CoverageStatus.UNKNOWN


def overview_range(start: Optional[date], end: Optional[date]) -> tuple[Optional[date], Optional[date]]:
    """Inclusive (first, last) day bounds; ``None`` leaves that side open."""
    if start is not None and end is None:
        return start, start + timedelta(days=DEFAULT_OVERVIEW_DAYS - 1)
    return start, end


@dataclass(frozen=True)
class OverviewEntry:
    shift: Shift
    coverage: CoverageStatus

    def as_dict(self) -> dict:
        s = self.shift
        return {
            "id": int(s.id),
            "title": s.title,
            "department": s.department,
            "day": s.day.isoformat(),
            "start_time": s.start_time,
            "end_time": s.end_time,
            "status": status_value(s.status),
            "coverage": self.coverage.value,
            "is_emergency": bool(s.is_emergency),
            "assigned_worker_id": s.assigned_worker_id,
        }


@dataclass(frozen=True)
class OverviewDay:
    day: date
    entries: list[OverviewEntry] = field(default_factory=list)


@dataclass(frozen=True)
class ShiftOverview:
    first_day: Optional[date]
    last_day: Optional[date]
    entries: list[OverviewEntry] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.entries)

    def by_day(self) -> list[OverviewDay]:
        """Calendar view: one bucket per date that has shifts, in date order."""
        days: dict[date, list[OverviewEntry]] = {}
        for e in self.entries:
            days.setdefault(e.shift.day, []).append(e)
        return [OverviewDay(day=d, entries=days[d]) for d in sorted(days)]

    def coverage_counts(self) -> dict[str, int]:
        counts = {c.value: 0 for c in CoverageStatus}
        for e in self.entries:
            counts[e.coverage.value] += 1
        return counts


async def list_shift_overview(
    session: AsyncSession,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    department: Optional[str] = None,
    status: Optional[ShiftStatus | str] = None,
    coverage: Optional[CoverageStatus | str] = None,
) -> ShiftOverview:
    first_day, last_day = overview_range(start, end)

    q = select(Shift)
    if first_day is not None:
        q = q.where(Shift.day >= first_day)
    if last_day is not None:
        q = q.where(Shift.day <= last_day)
    if department:
        q = q.where(Shift.department == str(department))
    if status:
        q = q.where(Shift.status == ShiftStatus(status_value(status)))
    q = q.order_by(Shift.day.asc(), Shift.start_time.asc(), Shift.id.asc())

    wanted = CoverageStatus(status_value(coverage)) if coverage else None
    entries: list[OverviewEntry] = []
    for s in (await session.scalars(q)).all():
        c = coverage_status(status=s.status, assigned_worker_id=s.assigned_worker_id)
        if wanted is not None and c != wanted:
            continue
        entries.append(OverviewEntry(shift=s, coverage=c))
    return ShiftOverview(first_day=first_day, last_day=last_day, entries=entries)
