import unittest
from datetime import date

from shiftcore.enums import CoverageStatus, ShiftStatus
from shiftcore.services.shift_overview import coverage_status, overview_range
from tests.helpers import DatabaseTestCase


class TestCoverageStatus(unittest.TestCase):
    def test_derivation(self):
        self.assertEqual(
            coverage_status(status=ShiftStatus.APPROVED, assigned_worker_id=10), CoverageStatus.FULLY_COVERED
        )
        self.assertEqual(coverage_status(status="requested", assigned_worker_id=None), CoverageStatus.PARTIAL_COVERAGE)
        self.assertEqual(coverage_status(status=ShiftStatus.OPEN, assigned_worker_id=None), CoverageStatus.UNDERSTAFFED)
        self.assertEqual(coverage_status(status=ShiftStatus.APPROVED, assigned_worker_id=None), CoverageStatus.UNKNOWN)

    def test_range_defaults_to_a_week(self):
        self.assertEqual(overview_range(date(2024, 1, 14), None), (date(2024, 1, 14), date(2024, 1, 20)))
        self.assertEqual(
            overview_range(date(2024, 1, 14), date(2024, 1, 15)), (date(2024, 1, 14), date(2024, 1, 15))
        )
        self.assertEqual(overview_range(None, None), (None, None))


class TestShiftOverview(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.covered = await self.make_shift(
            day=date(2024, 1, 15), assigned_worker_id=10, status=ShiftStatus.APPROVED
        )
        self.requested = await self.make_shift(day=date(2024, 1, 15), start_time="07:00", status=ShiftStatus.REQUESTED)
        self.open_er = await self.make_shift(day=date(2024, 1, 17), department="ER")
        self.next_week = await self.make_shift(day=date(2024, 1, 21))

    async def test_start_only_covers_seven_days(self):
        overview = await self.scheduler.shift_overview(start=date(2024, 1, 14))
        self.assertEqual(overview.last_day, date(2024, 1, 20))
        self.assertEqual(
            [e.shift.id for e in overview.entries], [self.requested.id, self.covered.id, self.open_er.id]
        )
        self.assertEqual(overview.count, 3)

    async def test_calendar_groups_by_day(self):
        overview = await self.scheduler.shift_overview(start=date(2024, 1, 14), end=date(2024, 1, 21))
        days = overview.by_day()
        self.assertEqual([d.day for d in days], [date(2024, 1, 15), date(2024, 1, 17), date(2024, 1, 21)])
        self.assertEqual(
            [e.coverage for e in days[0].entries], [CoverageStatus.PARTIAL_COVERAGE, CoverageStatus.FULLY_COVERED]
        )
        self.assertEqual(overview.coverage_counts()["understaffed"], 2)
        self.assertEqual(days[1].entries[0].as_dict()["coverage"], "understaffed")

    async def test_filters(self):
        er = await self.scheduler.shift_overview(department="ER")
        self.assertEqual([e.shift.id for e in er.entries], [self.open_er.id])

        approved = await self.scheduler.shift_overview(status=ShiftStatus.APPROVED)
        self.assertEqual([e.shift.id for e in approved.entries], [self.covered.id])

        understaffed = await self.scheduler.shift_overview(
            start=date(2024, 1, 14), coverage=CoverageStatus.UNDERSTAFFED
        )
        self.assertEqual([e.shift.id for e in understaffed.entries], [self.open_er.id])

        empty = await self.scheduler.shift_overview(start=date(2024, 2, 1))
        self.assertEqual(empty.entries, [])
        self.assertEqual(empty.by_day(), [])


if __name__ == "__main__":
    unittest.main()
