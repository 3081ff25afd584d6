from enum import StrEnum


class ShiftStatus(StrEnum):
    OPEN = "open"
    REQUESTED = "requested"
    APPROVED = "approved"


class SwapRequestStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class SwapType(StrEnum):
    SWAP = "swap"
    GIVE_UP = "give_up"
    COVERAGE = "coverage"


class HistoryAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    DELETED = "deleted"


class ActorRole(StrEnum):
    WORKER = "worker"
    MANAGER = "manager"


class NotificationType(StrEnum):
    APPROVAL = "approval"
    REJECTION = "rejection"


# Statuses that occupy a worker's or a department's time on a given date.
ACTIVE_SHIFT_STATUSES = (ShiftStatus.OPEN, ShiftStatus.REQUESTED, ShiftStatus.APPROVED)


class CoverageStatus(StrEnum):
    FULLY_COVERED = "fully_covered"
    PARTIAL_COVERAGE = "partial_coverage"
    UNDERSTAFFED = "understaffed"
    UNKNOWN = "unknown"
