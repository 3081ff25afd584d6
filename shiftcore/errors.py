from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """Base for expected business-rule outcomes.

    Every subclass carries a stable ``code`` and a ``detail`` dict so a caller can
    explain the refusal without parsing the message. ``status_code`` mirrors the
    HTTP status a transport layer would answer with.
    """

    code = "scheduling_error"
    status_code = 400

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail: dict[str, Any] = dict(detail)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.detail}


class NotFound(SchedulingError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: int):
        super().__init__(f"{entity} not found", entity=entity, id=int(entity_id))


class InvalidState(SchedulingError):
    code = "invalid_state"
    status_code = 409

    def __init__(self, message: str, *, current: str | None = None, **detail: Any):
        super().__init__(message, current_state=current, **detail)


class OverlapConflict(SchedulingError):
    code = "overlap_conflict"
    status_code = 409

    def __init__(self, errors: list[dict], warnings: list[dict] | None = None):
        super().__init__("Shift overlap validation failed", errors=list(errors), warnings=list(warnings or []))

    @property
    def errors(self) -> list[dict]:
        return self.detail["errors"]

    @property
    def warnings(self) -> list[dict]:
        return self.detail["warnings"]


class IneligibleWorker(SchedulingError):
    code = "ineligible_worker"
    status_code = 403

    def __init__(self, *, worker_id: int, missing: list[int], expired: list[dict]):
        super().__init__(
            "Worker does not hold the required credentials for this shift",
            worker_id=int(worker_id),
            missing=list(missing),
            expired=list(expired),
        )


class DuplicateRequest(SchedulingError):
    code = "duplicate_request"
    status_code = 409

    def __init__(self, *, shift_id: int, worker_id: int, existing_request_id: int, existing_status: str):
        super().__init__(
            "Worker has already requested this shift",
            shift_id=int(shift_id),
            worker_id=int(worker_id),
            existing_request_id=int(existing_request_id),
            existing_status=str(existing_status),
        )


class SelfRequest(SchedulingError):
    code = "self_request"
    status_code = 400

    def __init__(self, *, shift_id: int, worker_id: int):
        super().__init__("Cannot request your own shift", shift_id=int(shift_id), worker_id=int(worker_id))


class Forbidden(SchedulingError):
    code = "forbidden"
    status_code = 403


class CommitFailed(SchedulingError):
    """Storage failure during a commit sequence; all partial writes were rolled back."""

    code = "commit_failed"
    status_code = 500

    def __init__(self, operation: str):
        super().__init__("Could not commit the operation", operation=str(operation))
