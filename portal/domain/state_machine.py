from __future__ import annotations

from enum import StrEnum


class WorkOrderStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    QUOTE_PROVIDED = "quote_provided"
    QUOTE_REJECTED = "quote_rejected"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SIGNED_OFF = "signed_off"


ALLOWED_TRANSITIONS: dict[WorkOrderStatus, set[WorkOrderStatus]] = {
    WorkOrderStatus.PENDING: {
        WorkOrderStatus.APPROVED,
        WorkOrderStatus.QUOTE_PROVIDED,
        WorkOrderStatus.REJECTED,
    },
    WorkOrderStatus.QUOTE_PROVIDED: {
        WorkOrderStatus.APPROVED,
        WorkOrderStatus.QUOTE_REJECTED,
    },
    WorkOrderStatus.APPROVED: {WorkOrderStatus.IN_PROGRESS},
    WorkOrderStatus.IN_PROGRESS: {WorkOrderStatus.COMPLETED},
    WorkOrderStatus.COMPLETED: {WorkOrderStatus.SIGNED_OFF},
    WorkOrderStatus.REJECTED: set(),
    WorkOrderStatus.QUOTE_REJECTED: set(),
    WorkOrderStatus.SIGNED_OFF: set(),
}

TERMINAL_STATES: frozenset[WorkOrderStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(source: WorkOrderStatus, target: WorkOrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, set())


def is_terminal(status: WorkOrderStatus) -> bool:
    return status in TERMINAL_STATES


# Audit timestamps that must be set once a work order has reached the status.
# Quote timestamps are excluded: they depend on the triage branch, not the status.
REQUIRED_TIMESTAMPS: dict[WorkOrderStatus, tuple[str, ...]] = {
    WorkOrderStatus.PENDING: (),
    WorkOrderStatus.QUOTE_PROVIDED: (),
    WorkOrderStatus.QUOTE_REJECTED: (),
    WorkOrderStatus.REJECTED: ("rejected_at",),
    WorkOrderStatus.APPROVED: ("approved_at",),
    WorkOrderStatus.IN_PROGRESS: ("approved_at", "started_at"),
    WorkOrderStatus.COMPLETED: ("approved_at", "started_at", "completed_at"),
    WorkOrderStatus.SIGNED_OFF: ("approved_at", "started_at", "completed_at", "signed_off_at"),
}

LIFECYCLE_TIMESTAMPS: tuple[str, ...] = (
    "approved_at",
    "rejected_at",
    "started_at",
    "completed_at",
    "signed_off_at",
)
