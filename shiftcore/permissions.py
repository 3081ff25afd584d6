from __future__ import annotations

from dataclasses import dataclass

from shiftcore.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity collaborator."""

    worker_id: int
    role: ActorRole = ActorRole.WORKER


@dataclass(frozen=True)
class ActorRoleFlags:
    is_manager: bool
    is_worker: bool


def role_flags(*, actor: Actor, manager_ids: list[int]) -> ActorRoleFlags:
    is_manager = actor.role == ActorRole.MANAGER or int(actor.worker_id) in manager_ids
    return ActorRoleFlags(is_manager=is_manager, is_worker=not is_manager)


def can_decide_requests(*, actor: Actor, manager_ids: list[int]) -> bool:
    # approve/reject: managers only
    return role_flags(actor=actor, manager_ids=manager_ids).is_manager


def can_edit_shift(*, actor: Actor, manager_ids: list[int], posted_by_worker_id: int) -> bool:
    r = role_flags(actor=actor, manager_ids=manager_ids)
    return r.is_manager or int(actor.worker_id) == int(posted_by_worker_id)


def can_delete_shift(*, actor: Actor, manager_ids: list[int]) -> bool:
    return role_flags(actor=actor, manager_ids=manager_ids).is_manager
