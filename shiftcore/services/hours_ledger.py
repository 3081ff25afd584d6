from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.config import settings
from shiftcore.models import HoursLedgerEntry, Shift
from shiftcore.services.shift_overlap import MINUTES_PER_DAY, to_minutes


logger = logging.getLogger(__name__)


def calc_hours(start_time: Union[str, time], end_time: Union[str, time]) -> float:
    diff_minutes = to_minutes(end_time) - to_minutes(start_time)
    if diff_minutes < 0:
        diff_minutes += MINUTES_PER_DAY
    return diff_minutes / 60


def week_start(day: date) -> date:
    """Most recent Sunday on or before ``day``."""
    # date.weekday(): Monday=0 .. Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


@dataclass(frozen=True)
class OvertimeProjection:
    current_hours: float
    shift_hours: float
    projected_hours: float
    threshold: float
    would_exceed: bool

    def as_dict(self) -> dict:
        return {
            "current_hours": self.current_hours,
            "shift_hours": self.shift_hours,
            "projected_hours": self.projected_hours,
            "threshold": self.threshold,
            "would_exceed": self.would_exceed,
        }


def project_overtime(current_hours: float, shift_hours: float, threshold: float = 40) -> OvertimeProjection:
    projected = float(current_hours) + float(shift_hours)
    return OvertimeProjection(
        current_hours=float(current_hours),
        shift_hours=float(shift_hours),
        projected_hours=projected,
        threshold=float(threshold),
        would_exceed=projected > float(threshold),
    )


@dataclass(frozen=True)
class LedgerSummary:
    entries: list[HoursLedgerEntry]
    total_hours: float


class HoursLedger:
    """Append-only worked-hours record; weekly and monthly sums are derived from it."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_hours(self, *, worker_id: int, shift: Shift) -> HoursLedgerEntry:
        day = shift.day
        entry = HoursLedgerEntry(
            worker_id=int(worker_id),
            shift_id=int(shift.id),
            day=day,
            hours_worked=calc_hours(shift.start_time, shift.end_time),
            week_start=week_start(day),
            month=day.month,
            year=day.year,
        )
        self.session.add(entry)
        await self.session.flush()
        logger.info(
            "HOURS_RECORDED worker_id=%s shift_id=%s day=%s hours=%s",
            int(worker_id),
            int(shift.id),
            day.isoformat(),
            entry.hours_worked,
        )
        return entry

    async def weekly_hours(self, *, worker_id: int, any_day: date) -> float:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(HoursLedgerEntry.hours_worked), 0.0))
            .where(HoursLedgerEntry.worker_id == int(worker_id))
            .where(HoursLedgerEntry.week_start == week_start(any_day))
        )
        return float(total or 0)

    async def monthly_hours(self, *, worker_id: int, month: int, year: int) -> float:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(HoursLedgerEntry.hours_worked), 0.0))
            .where(HoursLedgerEntry.worker_id == int(worker_id))
            .where(HoursLedgerEntry.year == int(year))
            .where(HoursLedgerEntry.month == int(month))
        )
        return float(total or 0)

    async def entries(
        self,
        *,
        worker_id: int,
        week_of: Optional[date] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> LedgerSummary:
        q = select(HoursLedgerEntry).where(HoursLedgerEntry.worker_id == int(worker_id))
        if week_of is not None:
            q = q.where(HoursLedgerEntry.week_start == week_start(week_of))
        elif month is not None and year is not None:
            q = q.where(HoursLedgerEntry.year == int(year)).where(HoursLedgerEntry.month == int(month))
        q = q.order_by(HoursLedgerEntry.day.desc(), HoursLedgerEntry.id.desc())
        rows = list((await self.session.scalars(q)).all())
        return LedgerSummary(entries=rows, total_hours=float(sum(float(r.hours_worked) for r in rows)))

    async def check_overtime(
        self,
        *,
        worker_id: int,
        shift: Shift,
        threshold: Optional[float] = None,
    ) -> OvertimeProjection:
        current = await self.weekly_hours(worker_id=int(worker_id), any_day=shift.day)
        return project_overtime(
            current,
            calc_hours(shift.start_time, shift.end_time),
            settings.OVERTIME_THRESHOLD_HOURS if threshold is None else threshold,
        )
