from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.models import Credential, WorkerCredential
from shiftcore.utils import as_utc, json_safe


@dataclass(frozen=True)
class CredentialRecord:
    credential_id: int
    active: bool
    expires_at: Optional[datetime] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    missing: list[int] = field(default_factory=list)
    expired: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"eligible": self.eligible, "missing": list(self.missing), "expired": list(self.expired)}


class CredentialRegistry(Protocol):
    async def credentials_for(self, worker_id: int) -> list[CredentialRecord]: ...


class SqlCredentialRegistry:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def credentials_for(self, worker_id: int) -> list[CredentialRecord]:
        res = await self.session.execute(
            select(
                WorkerCredential.credential_id,
                WorkerCredential.is_active,
                WorkerCredential.expires_at,
                Credential.name,
            )
            .join(Credential, Credential.id == WorkerCredential.credential_id)
            .where(WorkerCredential.worker_id == int(worker_id))
        )
        return [
            CredentialRecord(credential_id=int(cid), active=bool(active), expires_at=expires_at, name=name)
            for cid, active, expires_at, name in res.all()
        ]


def _is_expired(record: CredentialRecord, now: datetime) -> bool:
    # expiry instant itself still counts as valid
    exp = as_utc(record.expires_at)
    return exp is not None and exp < as_utc(now)


def _active_by_id(records: Iterable[CredentialRecord]) -> dict[int, CredentialRecord]:
    out: dict[int, CredentialRecord] = {}
    for r in records:
        if not r.active:
            continue
        cid = int(r.credential_id)
        prev = out.get(cid)
        # several active records for one credential: keep the one that lasts longest
        if prev is None or _outlasts(r, prev):
            out[cid] = r
    return out


def _outlasts(a: CredentialRecord, b: CredentialRecord) -> bool:
    if b.expires_at is None:
        return False
    if a.expires_at is None:
        return True
    return as_utc(a.expires_at) > as_utc(b.expires_at)


def _classify(
    active: dict[int, CredentialRecord], required_ids: Iterable[int], now: datetime
) -> tuple[list[int], list[dict]]:
    missing: list[int] = []
    expired: list[dict] = []
    for rid in required_ids:
        rec = active.get(int(rid))
        if rec is None:
            missing.append(int(rid))
        elif _is_expired(rec, now):
            expired.append(
                json_safe(
                    {
                        "credential_id": int(rid),
                        "credential_name": rec.name,
                        "expiration_date": as_utc(rec.expires_at),
                    }
                )
            )
    return missing, expired


def check_eligibility(
    records: Iterable[CredentialRecord],
    required_ids: Optional[Iterable[int]],
    *,
    now: datetime,
) -> EligibilityResult:
    required = [int(x) for x in (required_ids or [])]
    if not required:
        return EligibilityResult(eligible=True)
    missing, expired = _classify(_active_by_id(records), required, now)
    return EligibilityResult(eligible=not missing and not expired, missing=missing, expired=expired)


S = TypeVar("S")


def filter_eligible_shifts(
    shifts: Sequence[S],
    records: Iterable[CredentialRecord],
    *,
    now: datetime,
) -> list[S]:
    """Keep the shifts whose required credentials the worker holds, active and unexpired at ``now``."""
    active = _active_by_id(records)
    out: list[S] = []
    for s in shifts:
        required = [int(x) for x in (getattr(s, "required_credential_ids", None) or [])]
        if not required:
            out.append(s)
            continue
        missing, expired = _classify(active, required, now)
        if not missing and not expired:
            out.append(s)
    return out


async def verify_worker_credentials(
    registry: CredentialRegistry,
    worker_id: int,
    required_ids: Optional[Iterable[int]],
    *,
    now: datetime,
) -> EligibilityResult:
    required = [int(x) for x in (required_ids or [])]
    if not required:
        return EligibilityResult(eligible=True)
    records = await registry.credentials_for(int(worker_id))
    return check_eligibility(records, required, now=now)


async def eligible_shifts_for_worker(
    registry: CredentialRegistry,
    worker_id: int,
    shifts: Sequence[S],
    *,
    now: datetime,
) -> list[S]:
    if not shifts:
        return []
    records = await registry.credentials_for(int(worker_id))
    return filter_eligible_shifts(shifts, records, now=now)
