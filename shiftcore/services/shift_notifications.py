from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from shiftcore.db import add_after_commit_callback
from shiftcore.enums import NotificationType
from shiftcore.models import Shift, ShiftNotification
from shiftcore.services.hours_ledger import OvertimeProjection
from shiftcore.utils import format_day


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPayload:
    recipient_worker_id: int
    message_text: str
    related_shift_id: int
    requires_action: bool
    type: NotificationType
    overtime_projection: Optional[OvertimeProjection] = None

    def as_dict(self) -> dict:
        return {
            "recipient_worker_id": int(self.recipient_worker_id),
            "message_text": self.message_text,
            "related_shift_id": int(self.related_shift_id),
            "requires_action": bool(self.requires_action),
            "type": self.type.value,
            "overtime_projection": self.overtime_projection.as_dict() if self.overtime_projection else None,
        }


class NotificationSink(Protocol):
    """Delivery collaborator; transport is entirely its concern."""

    async def deliver(self, payload: NotificationPayload) -> None: ...


def approval_message(shift: Shift, overtime: Optional[OvertimeProjection]) -> str:
    base = f'Your shift swap request for "{shift.title}" on {format_day(shift.day)} has been approved.'
    if overtime is not None and overtime.would_exceed:
        return f"{base} Note: This will result in overtime ({overtime.projected_hours:.1f} hours this week)."
    return base


def rejection_message(shift: Shift) -> str:
    return f'Your shift swap request for "{shift.title}" on {format_day(shift.day)} has been rejected.'


def build_approval_payload(*, shift: Shift, worker_id: int, overtime: Optional[OvertimeProjection]) -> NotificationPayload:
    exceeds = overtime is not None and overtime.would_exceed
    return NotificationPayload(
        recipient_worker_id=int(worker_id),
        message_text=approval_message(shift, overtime),
        related_shift_id=int(shift.id),
        requires_action=False,
        type=NotificationType.APPROVAL,
        overtime_projection=overtime if exceeds else None,
    )


def build_rejection_payload(*, shift: Shift, worker_id: int) -> NotificationPayload:
    return NotificationPayload(
        recipient_worker_id=int(worker_id),
        message_text=rejection_message(shift),
        related_shift_id=int(shift.id),
        requires_action=False,
        type=NotificationType.REJECTION,
    )


class ShiftNotificationService:
    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink

    async def _deliver_after_commit(self, payload: NotificationPayload, notification_id: int) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.deliver(payload)
            logger.info(
                "SHIFT_NOTIFY_SENT notification_id=%s recipient=%s shift_id=%s type=%s",
                int(notification_id),
                int(payload.recipient_worker_id),
                int(payload.related_shift_id),
                payload.type.value,
            )
        except Exception:
            # The outbox row stays pending; delivery can be retried from there.
            logger.exception(
                "SHIFT_NOTIFY_FAILED notification_id=%s recipient=%s shift_id=%s",
                int(notification_id),
                int(payload.recipient_worker_id),
                int(payload.related_shift_id),
            )

    async def enqueue(self, payload: NotificationPayload) -> ShiftNotification:
        n = ShiftNotification(
            recipient_worker_id=int(payload.recipient_worker_id),
            shift_id=int(payload.related_shift_id),
            type=payload.type,
            message=payload.message_text,
            requires_action=bool(payload.requires_action),
            payload=payload.as_dict(),
            status="pending",
        )
        self.session.add(n)
        await self.session.flush()

        notification_id = int(n.id)
        add_after_commit_callback(self.session, lambda: self._deliver_after_commit(payload, notification_id))
        return n
