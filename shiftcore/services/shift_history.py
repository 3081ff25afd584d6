from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.config import settings
from shiftcore.enums import HistoryAction
from shiftcore.models import Shift, ShiftHistory
from shiftcore.utils import json_safe


AUDITED_FIELDS = (
    "title",
    "department",
    "day",
    "start_time",
    "end_time",
    "assigned_worker_id",
    "required_credential_ids",
    "is_emergency",
    "incentive_amount",
    "incentive_description",
    "status",
)

FIELD_LABELS = {
    "title": "title",
    "department": "department",
    "day": "date",
    "start_time": "start time",
    "end_time": "end time",
    "assigned_worker_id": "assigned worker",
    "required_credential_ids": "required credentials",
    "is_emergency": "emergency flag",
    "incentive_amount": "incentive",
    "incentive_description": "incentive description",
    "status": "status",
}


@dataclass(frozen=True)
class FieldChange:
    field: str
    before: object
    after: object
    human: str


def shift_snapshot(s: Shift) -> dict:
    snap = {f: getattr(s, f, None) for f in AUDITED_FIELDS}
    snap["id"] = getattr(s, "id", None)
    snap["posted_by_worker_id"] = getattr(s, "posted_by_worker_id", None)
    return json_safe(snap)


def _fmt(v: object) -> str:
    if v is None or v == [] or v == "":
        return "—"
    if isinstance(v, list):
        return ", ".join(str(x) for x in v)
    return str(v)


def diff_shift_for_audit(*, before: dict, after: dict) -> list[FieldChange]:
    changes: list[FieldChange] = []
    for f in AUDITED_FIELDS:
        b = before.get(f)
        a = after.get(f)
        if b == a:
            continue
        if f == "incentive_description":
            # long text stays out of the human line
            human = "Incentive description changed"
        else:
            human = f"Changed {FIELD_LABELS[f]}: {_fmt(b)} → {_fmt(a)}"
        changes.append(FieldChange(field=f, before=b, after=a, human=human))
    return changes


async def record_history(
    session: AsyncSession,
    *,
    shift_id: int,
    action: HistoryAction,
    performed_by: int,
    previous: Optional[dict] = None,
    new: Optional[dict] = None,
    description: Optional[str] = None,
) -> ShiftHistory:
    rec = ShiftHistory(
        shift_id=int(shift_id),
        action=action,
        performed_by_worker_id=int(performed_by),
        previous_value=json_safe(previous) if previous is not None else None,
        new_value=json_safe(new) if new is not None else None,
        description=description,
    )
    session.add(rec)
    await session.flush()
    return rec


async def get_shift_history(
    session: AsyncSession,
    shift_id: int,
    *,
    limit: Optional[int] = None,
    newest_first: bool = False,
) -> list[ShiftHistory]:
    """History of one shift in commit order (or reversed); the id sequence is the ordering key."""
    order = ShiftHistory.id.desc() if newest_first else ShiftHistory.id.asc()
    q = (
        select(ShiftHistory)
        .where(ShiftHistory.shift_id == int(shift_id))
        .order_by(order)
        .limit(int(limit or settings.HISTORY_LIMIT))
    )
    return list((await session.scalars(q)).all())


async def get_worker_history(session: AsyncSession, worker_id: int, *, limit: Optional[int] = None) -> list[ShiftHistory]:
    q = (
        select(ShiftHistory)
        .where(ShiftHistory.performed_by_worker_id == int(worker_id))
        .order_by(ShiftHistory.id.desc())
        .limit(int(limit or settings.HISTORY_LIMIT))
    )
    return list((await session.scalars(q)).all())


async def find_deleted_request(session: AsyncSession, request_id: int) -> Optional[ShiftHistory]:
    """The ``deleted`` record of the shift that took this request down with it, if any."""
    q = select(ShiftHistory).where(ShiftHistory.action == HistoryAction.DELETED).order_by(ShiftHistory.id.desc())
    for rec in (await session.scalars(q)).all():
        if int(request_id) in (rec.new_value or {}).get("deleted_request_ids", []):
            return rec
    return None
