from __future__ import annotations

import logging
from contextlib import nullcontext
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from shiftcore.db import get_async_session, get_sessionmaker
from shiftcore.enums import CoverageStatus, ShiftStatus
from shiftcore.errors import CommitFailed, InvalidState, SchedulingError
from shiftcore.models import Shift, ShiftHistory, ShiftSwapRequest
from shiftcore.permissions import Actor
from shiftcore.schemas import ShiftCreate, ShiftUpdate, SwapRequestCreate
from shiftcore.services import shift_lifecycle, swap_requests
from shiftcore.services.credential_eligibility import CredentialRegistry, SqlCredentialRegistry
from shiftcore.services.hours_ledger import HoursLedger, LedgerSummary, OvertimeProjection
from shiftcore.services.shift_history import get_shift_history, get_worker_history
from shiftcore.services.shift_locks import ShiftLockRegistry
from shiftcore.services.shift_notifications import NotificationSink
from shiftcore.services.shift_overview import ShiftOverview, list_shift_overview
from shiftcore.utils import Clock, utc_now


logger = logging.getLogger(__name__)

T = TypeVar("T")

RegistryFactory = Callable[[AsyncSession], CredentialRegistry]


class ShiftScheduler:
    """Unit-of-work facade over the scheduling services.

    Each mutating call serializes on the target shift, runs inside one
    transaction, and hands notifications to the sink only after commit.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        registry_factory: Optional[RegistryFactory] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Clock = utc_now,
        locks: Optional[ShiftLockRegistry] = None,
    ):
        self.session_factory = session_factory or get_sessionmaker()
        self.registry_factory: RegistryFactory = registry_factory or SqlCredentialRegistry
        self.notifier = notifier
        self.clock = clock
        self.locks = locks or ShiftLockRegistry()

    async def _run(
        self,
        operation: str,
        fn: Callable[[AsyncSession], Awaitable[T]],
        *,
        shift_id: Optional[int] = None,
    ) -> T:
        guard = self.locks.hold(int(shift_id)) if shift_id is not None else nullcontext()
        try:
            async with guard:
                async with get_async_session(self.session_factory) as session:
                    return await fn(session)
        except SchedulingError:
            raise
        except StaleDataError as exc:
            logger.info("SHIFT_CONCURRENT_UPDATE op=%s shift_id=%s", operation, shift_id)
            raise InvalidState(
                "Shift was modified by a concurrent operation",
                reason="concurrent_update",
                shift_id=shift_id,
            ) from exc
        except SQLAlchemyError as exc:
            logger.exception("COMMIT_FAILED op=%s shift_id=%s", operation, shift_id)
            raise CommitFailed(operation) from exc

    async def _shift_id_for_request(self, request_id: int) -> int:
        async def _read(session: AsyncSession) -> int:
            r = await swap_requests.get_request(session, int(request_id))
            return int(r.shift_id)

        return await self._run("resolve_request", _read)

    # shifts

    async def create_shift(self, actor: Actor, data: ShiftCreate) -> shift_lifecycle.ShiftMutationResult:
        return await self._run(
            "create_shift",
            lambda session: shift_lifecycle.create_shift(session, actor=actor, data=data),
        )

    async def update_shift(
        self, actor: Actor, shift_id: int, patch: ShiftUpdate
    ) -> shift_lifecycle.ShiftMutationResult:
        return await self._run(
            "update_shift",
            lambda session: shift_lifecycle.update_shift(session, actor=actor, shift_id=int(shift_id), patch=patch),
            shift_id=int(shift_id),
        )

    async def delete_shift(self, actor: Actor, shift_id: int) -> shift_lifecycle.ShiftDeleteResult:
        return await self._run(
            "delete_shift",
            lambda session: shift_lifecycle.delete_shift(session, actor=actor, shift_id=int(shift_id)),
            shift_id=int(shift_id),
        )

    async def get_shift(self, shift_id: int) -> Shift:
        return await self._run("get_shift", lambda session: shift_lifecycle.load_shift(session, int(shift_id)))

    async def claimable_shifts(
        self,
        worker_id: int,
        *,
        department: Optional[str] = None,
        emergency_only: bool = False,
    ) -> list[Shift]:
        return await self._run(
            "claimable_shifts",
            lambda session: shift_lifecycle.list_claimable_shifts(
                session,
                self.registry_factory(session),
                worker_id=int(worker_id),
                department=department,
                emergency_only=emergency_only,
                now=self.clock(),
            ),
        )

    async def assigned_shifts(self, worker_id: int, *, view: Optional[str] = None) -> list[Shift]:
        return await self._run(
            "assigned_shifts",
            lambda session: shift_lifecycle.list_assigned_shifts(
                session, worker_id=int(worker_id), view=view, today=self.clock().date()
            ),
        )

    async def shift_overview(
        self,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        department: Optional[str] = None,
        status: Optional[ShiftStatus] = None,
        coverage: Optional[CoverageStatus] = None,
    ) -> ShiftOverview:
        return await self._run(
            "shift_overview",
            lambda session: list_shift_overview(
                session, start=start, end=end, department=department, status=status, coverage=coverage
            ),
        )

    # swap requests

    async def file_request(
        self, actor: Actor, shift_id: int, data: SwapRequestCreate
    ) -> swap_requests.FileRequestResult:
        return await self._run(
            "file_request",
            lambda session: swap_requests.file_swap_request(
                session,
                actor=actor,
                shift_id=int(shift_id),
                data=data,
                registry=self.registry_factory(session),
                now=self.clock(),
            ),
            shift_id=int(shift_id),
        )

    async def approve(self, actor: Actor, request_id: int) -> swap_requests.ApprovalResult:
        shift_id = await self._shift_id_for_request(int(request_id))
        return await self._run(
            "approve_request",
            lambda session: swap_requests.approve_swap_request(
                session, actor=actor, request_id=int(request_id), now=self.clock(), sink=self.notifier
            ),
            shift_id=shift_id,
        )

    async def reject(self, actor: Actor, request_id: int) -> swap_requests.RejectionResult:
        shift_id = await self._shift_id_for_request(int(request_id))
        return await self._run(
            "reject_request",
            lambda session: swap_requests.reject_swap_request(
                session, actor=actor, request_id=int(request_id), now=self.clock(), sink=self.notifier
            ),
            shift_id=shift_id,
        )

    async def withdraw(self, actor: Actor, request_id: int) -> swap_requests.RejectionResult:
        shift_id = await self._shift_id_for_request(int(request_id))
        return await self._run(
            "withdraw_request",
            lambda session: swap_requests.withdraw_swap_request(
                session, actor=actor, request_id=int(request_id), now=self.clock()
            ),
            shift_id=shift_id,
        )

    async def pending_requests(
        self, *, emergency_only: bool = False, threshold: Optional[float] = None
    ) -> list[swap_requests.PendingRequestView]:
        return await self._run(
            "pending_requests",
            lambda session: swap_requests.list_pending_requests(
                session, emergency_only=emergency_only, threshold=threshold
            ),
        )

    async def worker_requests(self, worker_id: int) -> list[ShiftSwapRequest]:
        return await self._run(
            "worker_requests",
            lambda session: swap_requests.list_worker_requests(session, int(worker_id)),
        )

    # hours

    async def weekly_hours(self, worker_id: int, any_day: Optional[date] = None) -> float:
        day = any_day or self.clock().date()
        return await self._run(
            "weekly_hours",
            lambda session: HoursLedger(session).weekly_hours(worker_id=int(worker_id), any_day=day),
        )

    async def monthly_hours(self, worker_id: int, month: int, year: int) -> float:
        return await self._run(
            "monthly_hours",
            lambda session: HoursLedger(session).monthly_hours(worker_id=int(worker_id), month=month, year=year),
        )

    async def hours_entries(
        self,
        worker_id: int,
        *,
        week_of: Optional[date] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> LedgerSummary:
        return await self._run(
            "hours_entries",
            lambda session: HoursLedger(session).entries(
                worker_id=int(worker_id), week_of=week_of, month=month, year=year
            ),
        )

    async def project_overtime(
        self, worker_id: int, shift_id: int, *, threshold: Optional[float] = None
    ) -> OvertimeProjection:
        async def _project(session: AsyncSession) -> OvertimeProjection:
            s = await shift_lifecycle.load_shift(session, int(shift_id))
            return await HoursLedger(session).check_overtime(worker_id=int(worker_id), shift=s, threshold=threshold)

        return await self._run("project_overtime", _project)

    # history

    async def shift_history(
        self, shift_id: int, *, limit: Optional[int] = None, newest_first: bool = False
    ) -> list[ShiftHistory]:
        return await self._run(
            "shift_history",
            lambda session: get_shift_history(session, int(shift_id), limit=limit, newest_first=newest_first),
        )

    async def worker_history(self, worker_id: int, *, limit: Optional[int] = None) -> list[ShiftHistory]:
        return await self._run(
            "worker_history",
            lambda session: get_worker_history(session, int(worker_id), limit=limit),
        )
