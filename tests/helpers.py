import os
import tempfile
import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from shiftcore.db import Base, build_engine, build_sessionmaker
from shiftcore.enums import ActorRole, ShiftStatus
from shiftcore.models import Credential, Shift, WorkerCredential
from shiftcore.permissions import Actor
from shiftcore.services.shift_scheduler import ShiftScheduler


MANAGER = Actor(worker_id=1, role=ActorRole.MANAGER)
POSTER = Actor(worker_id=2)
WORKER_A = Actor(worker_id=10)
WORKER_B = Actor(worker_id=11)

FIXED_NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.delivered = []
        self.fail = fail

    async def deliver(self, payload) -> None:
        if self.fail:
            raise RuntimeError("delivery transport down")
        self.delivered.append(payload)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Throwaway SQLite file per test; every session sees the others' commits."""

    async def asyncSetUp(self):
        fd, self.db_path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(fd)
        self.engine = build_engine(f"sqlite+aiosqlite:///{self.db_path}")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.sessionmaker = build_sessionmaker(self.engine)
        self.sink = RecordingSink()
        self.scheduler = ShiftScheduler(self.sessionmaker, notifier=self.sink, clock=lambda: FIXED_NOW)

    async def asyncTearDown(self):
        await self.engine.dispose()
        os.remove(self.db_path)

    async def make_shift(self, **kw) -> Shift:
        values = dict(
            title="Night ward",
            department="ICU",
            day=date(2024, 1, 15),
            start_time="09:00",
            end_time="17:00",
            posted_by_worker_id=POSTER.worker_id,
            assigned_worker_id=None,
            required_credential_ids=[],
            is_emergency=False,
            incentive_amount=Decimal("0"),
            status=ShiftStatus.OPEN,
        )
        values.update(kw)
        async with self.sessionmaker() as session:
            s = Shift(**values)
            session.add(s)
            await session.commit()
            return s

    async def make_credential(self, name: str) -> int:
        async with self.sessionmaker() as session:
            c = Credential(name=name)
            session.add(c)
            await session.commit()
            return int(c.id)

    async def grant_credential(self, worker_id: int, credential_id: int, *, expires_at=None, is_active=True) -> None:
        async with self.sessionmaker() as session:
            session.add(
                WorkerCredential(
                    worker_id=int(worker_id),
                    credential_id=int(credential_id),
                    expires_at=expires_at,
                    is_active=is_active,
                )
            )
            await session.commit()

    async def fetch(self, model, pk):
        async with self.sessionmaker() as session:
            return await session.get(model, pk)
