import unittest
from datetime import date

from shiftcore.enums import ShiftStatus
from shiftcore.services.hours_ledger import HoursLedger, calc_hours, project_overtime, week_start
from tests.helpers import DatabaseTestCase


class TestCalcHours(unittest.TestCase):
    def test_day_shift(self):
        self.assertEqual(calc_hours("09:00", "17:00"), 8)

    def test_overnight_shift(self):
        self.assertEqual(calc_hours("20:00", "08:00"), 12)

    def test_fractional(self):
        self.assertEqual(calc_hours("09:00", "13:30"), 4.5)


class TestWeekStart(unittest.TestCase):
    def test_sunday_is_its_own_week_start(self):
        self.assertEqual(week_start(date(2024, 1, 14)), date(2024, 1, 14))

    def test_saturday_belongs_to_previous_sunday(self):
        self.assertEqual(week_start(date(2024, 1, 20)), date(2024, 1, 14))

    def test_monday(self):
        self.assertEqual(week_start(date(2024, 1, 15)), date(2024, 1, 14))


class TestProjectOvertime(unittest.TestCase):
    def test_exceeds(self):
        p = project_overtime(35, 8, 40)
        self.assertEqual(p.projected_hours, 43)
        self.assertTrue(p.would_exceed)

    def test_exactly_threshold_does_not_exceed(self):
        self.assertFalse(project_overtime(32, 8, 40).would_exceed)


class TestHoursLedger(DatabaseTestCase):
    async def _record(self, day, start, end, worker_id=10):
        s = await self.make_shift(
            day=day, start_time=start, end_time=end, assigned_worker_id=worker_id, status=ShiftStatus.APPROVED
        )
        async with self.sessionmaker() as session:
            await HoursLedger(session).record_hours(worker_id=worker_id, shift=s)
            await session.commit()
        return s

    async def test_weekly_and_monthly_sums(self):
        await self._record(date(2024, 1, 14), "09:00", "17:00")  # Sunday
        await self._record(date(2024, 1, 20), "20:00", "08:00")  # Saturday, same week
        await self._record(date(2024, 1, 21), "09:00", "13:00")  # next week
        await self._record(date(2024, 2, 1), "09:00", "10:00")

        async with self.sessionmaker() as session:
            ledger = HoursLedger(session)
            self.assertEqual(await ledger.weekly_hours(worker_id=10, any_day=date(2024, 1, 17)), 20)
            self.assertEqual(await ledger.weekly_hours(worker_id=10, any_day=date(2024, 1, 21)), 4)
            self.assertEqual(await ledger.monthly_hours(worker_id=10, month=1, year=2024), 24)
            self.assertEqual(await ledger.monthly_hours(worker_id=11, month=1, year=2024), 0)

            summary = await ledger.entries(worker_id=10, month=1, year=2024)
            self.assertEqual(len(summary.entries), 3)
            self.assertEqual(summary.total_hours, 24)

    async def test_check_overtime_uses_shift_week(self):
        for day in (date(2024, 1, 14), date(2024, 1, 15), date(2024, 1, 16), date(2024, 1, 17)):
            await self._record(day, "09:00", "17:45")  # 8.75h each, 35h total
        candidate = await self.make_shift(day=date(2024, 1, 18), start_time="09:00", end_time="17:00")

        async with self.sessionmaker() as session:
            p = await HoursLedger(session).check_overtime(worker_id=10, shift=candidate, threshold=40)

        self.assertEqual(p.current_hours, 35)
        self.assertEqual(p.projected_hours, 43)
        self.assertTrue(p.would_exceed)


if __name__ == "__main__":
    unittest.main()
