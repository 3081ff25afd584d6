from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Integer,
    Date,
    ForeignKey,
    JSON,
    DateTime,
    Boolean,
    Float,
    Index,
    Text,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Numeric
from datetime import datetime, date
from decimal import Decimal
from enum import StrEnum
from .db import Base
from .enums import ShiftStatus, SwapRequestStatus, SwapType, HistoryAction, NotificationType
from .utils import utc_now


def _enum_column(enum_cls: type[StrEnum], name: str) -> SAEnum:
    # Native enum types are explicitly named to avoid clashes with column names
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda obj: [e.value for e in obj],
        validate_strings=True,
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    department: Mapped[str] = mapped_column(String(100))
    day: Mapped[date] = mapped_column(Date)
    # "HH:MM"; end < start means the shift runs past midnight
    start_time: Mapped[str] = mapped_column(String(5))
    end_time: Mapped[str] = mapped_column(String(5))
    posted_by_worker_id: Mapped[int] = mapped_column(Integer, index=True)
    assigned_worker_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    required_credential_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    is_emergency: Mapped[bool] = mapped_column(Boolean, default=False)
    incentive_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    incentive_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[ShiftStatus] = mapped_column(
        _enum_column(ShiftStatus, "shift_status_enum"), default=ShiftStatus.OPEN
    )
    # Optimistic concurrency: every UPDATE/DELETE is conditional on this revision
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("incentive_amount >= 0", name="incentive_non_negative"),
        CheckConstraint("assigned_worker_id IS NULL OR status = 'approved'", name="assigned_requires_approved"),
        Index("ix_shifts_assigned_worker_id_day", "assigned_worker_id", "day"),
        Index("ix_shifts_department_day", "department", "day"),
        Index("ix_shifts_status", "status"),
    )


class ShiftSwapRequest(Base):
    __tablename__ = "shift_swap_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id", ondelete="CASCADE"))
    requested_by_worker_id: Mapped[int] = mapped_column(Integer, index=True)
    status: Mapped[SwapRequestStatus] = mapped_column(
        _enum_column(SwapRequestStatus, "shift_swap_request_status_enum"), default=SwapRequestStatus.PENDING
    )
    manager_worker_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    swap_type: Mapped[SwapType] = mapped_column(_enum_column(SwapType, "shift_swap_type_enum"), default=SwapType.COVERAGE)
    reason: Mapped[str] = mapped_column(String(1000))
    response_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    shift: Mapped[Shift] = relationship()

    __table_args__ = (
        UniqueConstraint("shift_id", "requested_by_worker_id", name="uq_shift_swap_requests_shift_worker"),
        Index("ix_shift_swap_requests_shift_id", "shift_id"),
        Index("ix_shift_swap_requests_status", "status"),
    )


class HoursLedgerEntry(Base):
    __tablename__ = "hours_ledger_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    worker_id: Mapped[int] = mapped_column(Integer)
    # no FK: ledger rows outlive the shift they were recorded for
    shift_id: Mapped[int] = mapped_column(Integer)
    day: Mapped[date] = mapped_column(Date)
    hours_worked: Mapped[float] = mapped_column(Float)
    week_start: Mapped[date] = mapped_column(Date)
    month: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("shift_id", "worker_id", name="uq_hours_ledger_entries_shift_worker"),
        CheckConstraint("hours_worked >= 0", name="hours_non_negative"),
        Index("ix_hours_ledger_entries_worker_week", "worker_id", "week_start"),
        Index("ix_hours_ledger_entries_worker_month", "worker_id", "year", "month"),
        Index("ix_hours_ledger_entries_worker_day", "worker_id", "day"),
    )


class ShiftHistory(Base):
    __tablename__ = "shift_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    # no FK: the "deleted" record must survive the shift
    shift_id: Mapped[int] = mapped_column(Integer)
    action: Mapped[HistoryAction] = mapped_column(_enum_column(HistoryAction, "shift_history_action_enum"))
    performed_by_worker_id: Mapped[int] = mapped_column(Integer)
    previous_value: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_shift_history_shift_id_id", "shift_id", "id"),
        Index("ix_shift_history_performed_by", "performed_by_worker_id", "id"),
    )


class ShiftNotification(Base):
    """Outbox of notification payloads handed to the delivery collaborator."""

    __tablename__ = "shift_notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    recipient_worker_id: Mapped[int] = mapped_column(Integer, index=True)
    shift_id: Mapped[int | None] = mapped_column(ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True)
    type: Mapped[NotificationType] = mapped_column(_enum_column(NotificationType, "shift_notification_type_enum"))
    message: Mapped[str] = mapped_column(Text)
    requires_action: Mapped[bool] = mapped_column(Boolean, default=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Credential(Base):
    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True)
    category: Mapped[str] = mapped_column(String(50), default="certification")
    requires_expiration: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class WorkerCredential(Base):
    __tablename__ = "worker_credentials"

    id: Mapped[int] = mapped_column(primary_key=True)
    worker_id: Mapped[int] = mapped_column(Integer, index=True)
    credential_id: Mapped[int] = mapped_column(ForeignKey("credentials.id", ondelete="CASCADE"))
    license_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    credential: Mapped[Credential] = relationship()

    __table_args__ = (
        UniqueConstraint("worker_id", "credential_id", name="uq_worker_credentials_worker_credential"),
    )
