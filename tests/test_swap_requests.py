import asyncio
import unittest
from datetime import date, timedelta
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from shiftcore.config import settings
from shiftcore.enums import HistoryAction, NotificationType, ShiftStatus, SwapRequestStatus
from shiftcore.errors import (
    CommitFailed,
    DuplicateRequest,
    Forbidden,
    IneligibleWorker,
    InvalidState,
    NotFound,
    OverlapConflict,
    SelfRequest,
)
from shiftcore.models import HoursLedgerEntry, Shift, ShiftNotification, ShiftSwapRequest
from shiftcore.schemas import SwapRequestCreate
from shiftcore.services.hours_ledger import week_start
from shiftcore.services.shift_overlap import WORKER_OVERLAP
from shiftcore.services.shift_scheduler import ShiftScheduler
from shiftcore.services.swap_requests import OVERTIME_WARNING
from tests.helpers import FIXED_NOW, MANAGER, POSTER, WORKER_A, WORKER_B, DatabaseTestCase, RecordingSink


DAY = date(2024, 1, 15)
REQUEST = SwapRequestCreate(reason="Need the extra hours")


class SwapTestCase(DatabaseTestCase):
    async def count(self, model, *where) -> int:
        async with self.sessionmaker() as session:
            return int(await session.scalar(select(func.count()).select_from(model).where(*where)))

    async def history_actions(self, shift_id):
        return [h.action for h in await self.scheduler.shift_history(shift_id)]

    async def add_ledger_hours(self, worker_id: int, day: date, hours: float, shift_id: int = 900):
        async with self.sessionmaker() as session:
            session.add(
                HoursLedgerEntry(
                    worker_id=worker_id,
                    shift_id=shift_id,
                    day=day,
                    hours_worked=hours,
                    week_start=week_start(day),
                    month=day.month,
                    year=day.year,
                )
            )
            await session.commit()


class TestSwapRequestHappyPaths(SwapTestCase):
    async def test_file_then_approve(self):
        s = await self.make_shift()

        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        self.assertEqual(filed.request.status, SwapRequestStatus.PENDING)
        self.assertEqual(filed.shift.status, ShiftStatus.REQUESTED)
        self.assertEqual(filed.warnings, [])

        approved = await self.scheduler.approve(MANAGER, filed.request.id)
        self.assertEqual(approved.request.status, SwapRequestStatus.APPROVED)
        self.assertEqual(approved.request.manager_worker_id, MANAGER.worker_id)
        self.assertEqual(approved.request.decided_at, FIXED_NOW)

        shift = await self.fetch(Shift, s.id)
        self.assertEqual(shift.status, ShiftStatus.APPROVED)
        self.assertEqual(shift.assigned_worker_id, WORKER_A.worker_id)

        async with self.sessionmaker() as session:
            entries = (await session.scalars(select(HoursLedgerEntry))).all()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].worker_id, WORKER_A.worker_id)
        self.assertEqual(entries[0].day, DAY)
        self.assertEqual(entries[0].hours_worked, 8)
        self.assertEqual(entries[0].week_start, date(2024, 1, 14))

        self.assertEqual(await self.history_actions(s.id), [HistoryAction.REQUESTED, HistoryAction.APPROVED])

        self.assertEqual(len(self.sink.delivered), 1)
        payload = self.sink.delivered[0]
        self.assertEqual(payload.related_shift_id, s.id)
        self.assertEqual(payload.recipient_worker_id, WORKER_A.worker_id)
        self.assertEqual(payload.type, NotificationType.APPROVAL)
        self.assertIsNone(payload.overtime_projection)
        self.assertEqual(
            payload.message_text,
            'Your shift swap request for "Night ward" on Mon Jan 15 2024 has been approved.',
        )
        self.assertEqual(await self.count(ShiftNotification, ShiftNotification.shift_id == s.id), 1)

    async def test_file_then_reject(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

        rejected = await self.scheduler.reject(MANAGER, filed.request.id)
        self.assertEqual(rejected.request.status, SwapRequestStatus.REJECTED)

        shift = await self.fetch(Shift, s.id)
        self.assertEqual(shift.status, ShiftStatus.OPEN)
        self.assertIsNone(shift.assigned_worker_id)
        self.assertEqual(await self.count(HoursLedgerEntry), 0)
        self.assertEqual(await self.history_actions(s.id), [HistoryAction.REQUESTED, HistoryAction.REJECTED])
        self.assertEqual([p.type for p in self.sink.delivered], [NotificationType.REJECTION])

    async def test_withdraw_reopens_shift(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

        with self.assertRaises(Forbidden):
            await self.scheduler.withdraw(WORKER_B, filed.request.id)

        res = await self.scheduler.withdraw(WORKER_A, filed.request.id)
        self.assertEqual(res.request.status, SwapRequestStatus.WITHDRAWN)
        self.assertEqual((await self.fetch(Shift, s.id)).status, ShiftStatus.OPEN)
        self.assertEqual(await self.history_actions(s.id), [HistoryAction.REQUESTED, HistoryAction.WITHDRAWN])
        self.assertEqual(self.sink.delivered, [])

        # another worker may now file
        other = await self.scheduler.file_request(WORKER_B, s.id, REQUEST)
        self.assertEqual(other.shift.status, ShiftStatus.REQUESTED)

    async def test_overtime_is_advisory(self):
        await self.add_ledger_hours(WORKER_A.worker_id, date(2024, 1, 14), 35)
        s = await self.make_shift()

        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        self.assertEqual(filed.warnings[0]["type"], OVERTIME_WARNING)
        self.assertEqual(filed.warnings[0]["projected_hours"], 43)
        self.assertTrue(filed.overtime.would_exceed)

        approved = await self.scheduler.approve(MANAGER, filed.request.id)
        self.assertTrue(approved.overtime.would_exceed)
        payload = self.sink.delivered[0]
        self.assertEqual(payload.overtime_projection.projected_hours, 43)
        self.assertIn("Note: This will result in overtime (43.0 hours this week).", payload.message_text)

        self.assertEqual(await self.scheduler.weekly_hours(WORKER_A.worker_id, DAY), 43)
        self.assertEqual(await self.scheduler.monthly_hours(WORKER_A.worker_id, 1, 2024), 43)

    async def test_pending_queue_emergency_first(self):
        routine = await self.make_shift(day=date(2024, 1, 16))
        urgent = await self.make_shift(day=date(2024, 1, 17), is_emergency=True)
        await self.add_ledger_hours(WORKER_B.worker_id, date(2024, 1, 14), 38)

        await self.scheduler.file_request(WORKER_A, routine.id, REQUEST)
        await self.scheduler.file_request(WORKER_B, urgent.id, REQUEST)

        queue = await self.scheduler.pending_requests()
        self.assertEqual([v.shift.id for v in queue], [urgent.id, routine.id])
        self.assertIsNotNone(queue[0].overtime_warning)
        self.assertIsNone(queue[1].overtime_warning)

        only_urgent = await self.scheduler.pending_requests(emergency_only=True)
        self.assertEqual([v.shift.id for v in only_urgent], [urgent.id])

        mine = await self.scheduler.worker_requests(WORKER_A.worker_id)
        self.assertEqual([r.shift_id for r in mine], [routine.id])


class TestSwapRequestRefusals(SwapTestCase):
    async def test_missing_shift(self):
        with self.assertRaises(NotFound):
            await self.scheduler.file_request(WORKER_A, 404, REQUEST)
        with self.assertRaises(NotFound):
            await self.scheduler.approve(MANAGER, 404)

    async def test_decisions_after_shift_deleted(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        res = await self.scheduler.delete_shift(MANAGER, s.id)
        self.assertEqual(res.deleted_requests, 1)

        for decide in (
            lambda: self.scheduler.approve(MANAGER, filed.request.id),
            lambda: self.scheduler.reject(MANAGER, filed.request.id),
            lambda: self.scheduler.withdraw(WORKER_A, filed.request.id),
        ):
            with self.assertRaises(InvalidState) as ctx:
                await decide()
            self.assertEqual(ctx.exception.detail["reason"], "shift_deleted")
            self.assertIsNone(ctx.exception.detail["current_state"])
            self.assertEqual(ctx.exception.detail["shift_id"], s.id)

        self.assertEqual(await self.count(HoursLedgerEntry), 0)
        self.assertEqual(self.sink.delivered, [])

        with self.assertRaises(NotFound):
            await self.scheduler.approve(MANAGER, filed.request.id + 100)

    async def test_duplicate_and_not_open(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

        with self.assertRaises(DuplicateRequest) as ctx:
            await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        self.assertEqual(ctx.exception.detail["existing_request_id"], filed.request.id)
        self.assertEqual(ctx.exception.detail["existing_status"], "pending")

        with self.assertRaises(InvalidState) as ctx:
            await self.scheduler.file_request(WORKER_B, s.id, REQUEST)
        self.assertEqual(ctx.exception.detail["current_state"], "requested")

    async def test_duplicate_after_withdrawal(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        await self.scheduler.withdraw(WORKER_A, filed.request.id)

        with self.assertRaises(DuplicateRequest):
            await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

    async def test_self_request(self):
        s = await self.make_shift()
        with self.assertRaises(SelfRequest):
            await self.scheduler.file_request(POSTER, s.id, REQUEST)
        self.assertEqual((await self.fetch(Shift, s.id)).status, ShiftStatus.OPEN)

    async def test_ineligible_worker(self):
        bls = await self.make_credential("BLS")
        acls = await self.make_credential("ACLS")
        await self.grant_credential(WORKER_A.worker_id, bls, expires_at=FIXED_NOW - timedelta(days=1))
        s = await self.make_shift(required_credential_ids=[bls, acls])

        with self.assertRaises(IneligibleWorker) as ctx:
            await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        self.assertEqual(ctx.exception.detail["missing"], [acls])
        self.assertEqual([e["credential_id"] for e in ctx.exception.detail["expired"]], [bls])
        self.assertEqual(await self.count(ShiftSwapRequest), 0)

    async def test_eligible_on_expiry_instant(self):
        bls = await self.make_credential("BLS")
        await self.grant_credential(WORKER_A.worker_id, bls, expires_at=FIXED_NOW)
        s = await self.make_shift(required_credential_ids=[bls])

        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        self.assertEqual(filed.shift.status, ShiftStatus.REQUESTED)

    async def test_decisions_require_manager_and_pending(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

        with self.assertRaises(Forbidden):
            await self.scheduler.approve(WORKER_B, filed.request.id)
        with self.assertRaises(Forbidden):
            await self.scheduler.reject(WORKER_A, filed.request.id)

        await self.scheduler.reject(MANAGER, filed.request.id)
        with self.assertRaises(InvalidState) as ctx:
            await self.scheduler.approve(MANAGER, filed.request.id)
        self.assertEqual(ctx.exception.detail["current_state"], "rejected")

    async def test_manager_ids_setting_grants_manager_role(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        with patch.object(settings, "manager_ids", [WORKER_B.worker_id]):
            res = await self.scheduler.approve(WORKER_B, filed.request.id)
        self.assertEqual(res.request.manager_worker_id, WORKER_B.worker_id)


class TestApprovalOverlapPolicy(SwapTestCase):
    async def _conflicting_request(self):
        await self.make_shift(
            title="Morning", start_time="06:00", end_time="10:00", assigned_worker_id=WORKER_A.worker_id,
            status=ShiftStatus.APPROVED,
        )
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        return s, filed.request

    async def test_block_policy(self):
        s, req = await self._conflicting_request()
        with self.assertRaises(OverlapConflict) as ctx:
            await self.scheduler.approve(MANAGER, req.id)
        self.assertEqual(ctx.exception.errors[0]["type"], WORKER_OVERLAP)

        self.assertEqual((await self.fetch(ShiftSwapRequest, req.id)).status, SwapRequestStatus.PENDING)
        self.assertEqual((await self.fetch(Shift, s.id)).status, ShiftStatus.REQUESTED)
        self.assertEqual(await self.count(HoursLedgerEntry), 0)
        self.assertEqual(self.sink.delivered, [])

    async def test_warn_policy(self):
        s, req = await self._conflicting_request()
        with patch.object(settings, "APPROVAL_OVERLAP_POLICY", "warn"):
            res = await self.scheduler.approve(MANAGER, req.id)
        self.assertIn(WORKER_OVERLAP, [w["type"] for w in res.warnings])
        self.assertEqual((await self.fetch(Shift, s.id)).assigned_worker_id, WORKER_A.worker_id)


class TestAtomicity(SwapTestCase):
    async def test_failed_ledger_write_rolls_back_everything(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)
        # occupy the (shift, worker) ledger slot so the approval's write collides
        await self.add_ledger_hours(WORKER_A.worker_id, DAY, 1, shift_id=s.id)

        with self.assertRaises(CommitFailed):
            await self.scheduler.approve(MANAGER, filed.request.id)

        self.assertEqual((await self.fetch(ShiftSwapRequest, filed.request.id)).status, SwapRequestStatus.PENDING)
        shift = await self.fetch(Shift, s.id)
        self.assertEqual(shift.status, ShiftStatus.REQUESTED)
        self.assertIsNone(shift.assigned_worker_id)
        self.assertEqual(await self.history_actions(s.id), [HistoryAction.REQUESTED])
        self.assertEqual(await self.count(ShiftNotification), 0)
        self.assertEqual(self.sink.delivered, [])

    async def test_delivery_failure_keeps_commit(self):
        scheduler = ShiftScheduler(self.sessionmaker, notifier=RecordingSink(fail=True), clock=lambda: FIXED_NOW)
        s = await self.make_shift()
        filed = await scheduler.file_request(WORKER_A, s.id, REQUEST)

        with self.assertLogs("shiftcore.services.shift_notifications", level="ERROR"):
            await scheduler.approve(MANAGER, filed.request.id)

        self.assertEqual((await self.fetch(Shift, s.id)).status, ShiftStatus.APPROVED)
        async with self.sessionmaker() as session:
            n = (await session.scalars(select(ShiftNotification))).one()
        self.assertEqual(n.status, "pending")


class TestConcurrency(SwapTestCase):
    async def test_approve_reject_race_has_one_winner(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

        results = await asyncio.gather(
            self.scheduler.approve(MANAGER, filed.request.id),
            self.scheduler.reject(MANAGER, filed.request.id),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InvalidState)

        req = await self.fetch(ShiftSwapRequest, filed.request.id)
        shift = await self.fetch(Shift, s.id)
        if req.status == SwapRequestStatus.APPROVED:
            self.assertEqual(shift.status, ShiftStatus.APPROVED)
            self.assertEqual(await self.count(HoursLedgerEntry), 1)
        else:
            self.assertEqual(req.status, SwapRequestStatus.REJECTED)
            self.assertEqual(shift.status, ShiftStatus.OPEN)
            self.assertEqual(await self.count(HoursLedgerEntry), 0)
        self.assertEqual(len(self.sink.delivered), 1)

    async def test_approve_delete_race_has_one_winner(self):
        s = await self.make_shift()
        filed = await self.scheduler.file_request(WORKER_A, s.id, REQUEST)

        approve_res, delete_res = await asyncio.gather(
            self.scheduler.approve(MANAGER, filed.request.id),
            self.scheduler.delete_shift(MANAGER, s.id),
            return_exceptions=True,
        )
        outcomes = [isinstance(r, Exception) for r in (approve_res, delete_res)]
        self.assertEqual(outcomes.count(True), 1)

        shift = await self.fetch(Shift, s.id)
        if isinstance(delete_res, Exception):
            self.assertIsInstance(delete_res, InvalidState)
            self.assertEqual(shift.status, ShiftStatus.APPROVED)
            self.assertEqual(await self.count(HoursLedgerEntry), 1)
        else:
            self.assertIsInstance(approve_res, InvalidState)
            self.assertEqual(approve_res.detail["reason"], "shift_deleted")
            self.assertIsNone(shift)
            self.assertEqual(await self.count(ShiftSwapRequest), 0)
            self.assertEqual(await self.count(HoursLedgerEntry), 0)

    async def test_stale_version_is_detected(self):
        s = await self.make_shift()

        async with self.sessionmaker() as slow:
            stale = await slow.get(Shift, s.id)

            async with self.sessionmaker() as fast:
                current = await fast.get(Shift, s.id)
                current.title = "Renamed first"
                await fast.commit()

            stale.title = "Renamed second"
            with self.assertRaises(StaleDataError):
                await slow.flush()
            await slow.rollback()

        self.assertEqual((await self.fetch(Shift, s.id)).title, "Renamed first")

    async def test_scheduler_maps_stale_version_to_invalid_state(self):
        async def lose_race(session):
            raise StaleDataError("UPDATE statement on table 'shifts' expected to update 1 row(s); 0 were matched.")

        with self.assertRaises(InvalidState) as ctx:
            await self.scheduler._run("update_shift", lose_race, shift_id=1)
        self.assertEqual(ctx.exception.detail["reason"], "concurrent_update")


if __name__ == "__main__":
    unittest.main()
