import unittest
from datetime import date

from shiftcore.enums import ShiftStatus
from shiftcore.services.shift_overlap import (
    DEPARTMENT_OVERLAP,
    PENDING_REQUEST_OVERLAP,
    WORKER_OVERLAP,
    ShiftCandidate,
    ShiftSpan,
    check_shift_overlap,
    time_ranges_overlap,
    validate_overlap,
)
from tests.helpers import DatabaseTestCase


DAY = date(2024, 1, 15)


def span(id, start, end, *, worker=None, department="ICU", day=DAY, status="approved"):
    return ShiftSpan(
        id=id,
        title=f"shift {id}",
        department=department,
        day=day,
        start_time=start,
        end_time=end,
        status=status,
        assigned_worker_id=worker,
    )


class TestTimeRangesOverlap(unittest.TestCase):
    def test_back_to_back_does_not_overlap(self):
        self.assertFalse(time_ranges_overlap("09:00", "17:00", "17:00", "21:00"))
        self.assertFalse(time_ranges_overlap("17:00", "21:00", "09:00", "17:00"))

    def test_partial_overlap(self):
        self.assertTrue(time_ranges_overlap("09:00", "17:00", "16:59", "21:00"))

    def test_containment(self):
        self.assertTrue(time_ranges_overlap("08:00", "20:00", "10:00", "11:00"))

    def test_overnight_wrap(self):
        self.assertTrue(time_ranges_overlap("22:00", "06:00", "02:00", "05:00"))
        self.assertFalse(time_ranges_overlap("22:00", "06:00", "07:00", "09:00"))
        self.assertTrue(time_ranges_overlap("22:00", "06:00", "23:00", "01:00"))
        self.assertFalse(time_ranges_overlap("22:00", "06:00", "06:00", "22:00"))

    def test_symmetric(self):
        times = ["00:00", "02:00", "06:00", "09:00", "12:30", "17:00", "22:00", "23:59"]
        pairs = [(a, b) for a in times for b in times if a != b]
        for s1, e1 in pairs:
            for s2, e2 in pairs:
                self.assertEqual(
                    time_ranges_overlap(s1, e1, s2, e2),
                    time_ranges_overlap(s2, e2, s1, e1),
                    msg=f"{s1}-{e1} vs {s2}-{e2}",
                )

    def test_rejects_malformed_time(self):
        with self.assertRaises(ValueError):
            time_ranges_overlap("9am", "17:00", "10:00", "11:00")


class TestValidateOverlap(unittest.TestCase):
    def test_worker_overlap_is_error(self):
        cand = ShiftCandidate(worker_id=10, department="ICU", day=DAY, start_time="10:00", end_time="12:00")
        res = validate_overlap(cand, [span(1, "09:00", "11:00", worker=10)], [])
        self.assertFalse(res.valid)
        self.assertEqual(res.errors[0]["type"], WORKER_OVERLAP)
        self.assertEqual(res.errors[0]["overlapping_shifts"][0]["id"], 1)

    def test_department_overlap_is_warning(self):
        cand = ShiftCandidate(worker_id=None, department="ICU", day=DAY, start_time="10:00", end_time="12:00")
        res = validate_overlap(cand, [], [span(2, "11:00", "13:00")])
        self.assertTrue(res.valid)
        self.assertEqual(res.warnings[0]["type"], DEPARTMENT_OVERLAP)
        self.assertIn("ICU department", res.warnings[0]["message"])

    def test_excluded_shift_is_ignored(self):
        cand = ShiftCandidate(worker_id=10, department="ICU", day=DAY, start_time="10:00", end_time="12:00")
        res = validate_overlap(cand, [span(1, "09:00", "11:00", worker=10)], [span(1, "09:00", "11:00", worker=10)], exclude_shift_id=1)
        self.assertTrue(res.valid)
        self.assertEqual(res.warnings, [])

    def test_other_day_is_ignored(self):
        cand = ShiftCandidate(worker_id=10, department="ICU", day=DAY, start_time="10:00", end_time="12:00")
        res = validate_overlap(cand, [span(1, "09:00", "11:00", worker=10, day=date(2024, 1, 16))], [])
        self.assertTrue(res.valid)

    def test_pending_request_is_warning_only(self):
        cand = ShiftCandidate(worker_id=10, department="ER", day=DAY, start_time="10:00", end_time="12:00")
        res = validate_overlap(cand, [], [], pending_shifts=[span(3, "11:00", "13:00", status="requested")])
        self.assertTrue(res.valid)
        self.assertEqual([w["type"] for w in res.warnings], [PENDING_REQUEST_OVERLAP])


class TestCheckShiftOverlap(DatabaseTestCase):
    async def test_queries_worker_and_department(self):
        mine = await self.make_shift(start_time="08:00", end_time="12:00", assigned_worker_id=10, status=ShiftStatus.APPROVED)
        other = await self.make_shift(start_time="11:00", end_time="15:00", department="ICU")
        await self.make_shift(start_time="11:00", end_time="15:00", department="ER")

        cand = ShiftCandidate(worker_id=10, department="ICU", day=DAY, start_time="10:00", end_time="14:00")
        async with self.sessionmaker() as session:
            res = await check_shift_overlap(session, cand)

        self.assertFalse(res.valid)
        self.assertEqual([s["id"] for s in res.errors[0]["overlapping_shifts"]], [mine.id])
        dept_ids = {s["id"] for s in res.warnings[0]["overlapping_shifts"]}
        self.assertEqual(dept_ids, {mine.id, other.id})


if __name__ == "__main__":
    unittest.main()
