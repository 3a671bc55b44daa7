from __future__ import annotations

from portal.domain.errors import UnauthenticatedError, UnauthorizedError
from portal.domain.models import (
    Actor,
    ActorRole,
    WorkOrder,
    WorkOrderCapabilities,
    WorkOrderPhoto,
)
from portal.domain.state_machine import WorkOrderStatus

STAFF_ROLES = frozenset({ActorRole.ADMIN, ActorRole.MAINTENANCE})


def is_staff(actor: Actor) -> bool:
    return actor.role in STAFF_ROLES


def is_owner(actor: Actor, work_order: WorkOrder) -> bool:
    return actor.id == work_order.tenant_id


def can_view(actor: Actor, work_order: WorkOrder) -> bool:
    return is_staff(actor) or is_owner(actor, work_order)


def can_edit_fields(actor: Actor, work_order: WorkOrder) -> bool:
    if is_staff(actor):
        return True
    return is_owner(actor, work_order) and work_order.status == WorkOrderStatus.PENDING


def can_delete_photo(actor: Actor, work_order: WorkOrder, photo: WorkOrderPhoto) -> bool:
    if photo.work_order_id != work_order.id:
        return False
    return is_staff(actor) or (is_owner(actor, work_order) and can_edit_fields(actor, work_order))


def can_comment(actor: Actor, work_order: WorkOrder) -> bool:
    return can_view(actor, work_order)


def capabilities(actor: Actor, work_order: WorkOrder) -> WorkOrderCapabilities:
    """Flags a client may use to gate its controls; every service call re-checks them."""
    return WorkOrderCapabilities(
        is_staff=is_staff(actor),
        is_owner=is_owner(actor, work_order),
        can_edit_fields=can_edit_fields(actor, work_order),
        can_comment=can_comment(actor, work_order),
        can_attach=can_edit_fields(actor, work_order),
    )


def require_actor(actor: Actor | None) -> Actor:
    if actor is None:
        raise UnauthenticatedError("authentication required")
    return actor


def ensure_staff(actor: Actor, action: str) -> None:
    if not is_staff(actor):
        raise UnauthorizedError(f"only staff can {action}")


def ensure_owner(actor: Actor, work_order: WorkOrder, action: str) -> None:
    if not is_owner(actor, work_order):
        raise UnauthorizedError(f"only the requesting tenant can {action}")


def ensure_can_view(actor: Actor, work_order: WorkOrder) -> None:
    if not can_view(actor, work_order):
        raise UnauthorizedError("work order belongs to another tenant")
