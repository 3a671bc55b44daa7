from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from portal.domain.models import ActorRole, EventEnvelope, LifecycleEvent
from portal.infra.notifications import NotificationSink

MAINTENANCE_EMAIL = os.getenv("MAINTENANCE_EMAIL", "maintenance@example.com").strip()
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip()
PORTAL_URL = os.getenv("PORTAL_URL", "http://localhost:8080").rstrip("/")

STAFF_ROLE_VALUES = {ActorRole.ADMIN.value, ActorRole.MAINTENANCE.value}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    recipients: list[str]
    subject: str
    body: str


def default_staff_recipients() -> list[str]:
    return [address for address in (MAINTENANCE_EMAIL, ADMIN_EMAIL) if address]


def format_usd(amount: Any) -> str:
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        return str(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def _line(label: str, value: Any) -> str | None:
    if value is None or value == "":
        return None
    return f"{label}: {value}"


def _body(heading: str, lines: list[str | None], link_label: str, link: str) -> str:
    parts = [heading, ""]
    parts.extend(line for line in lines if line is not None)
    parts.extend(["", f"{link_label}: {link}"])
    return "\n".join(parts)


def render_notification(
    kind: str,
    work_order: dict[str, Any],
    actor: dict[str, Any],
    extra: dict[str, Any] | None = None,
    *,
    staff_recipients: list[str],
    portal_url: str = PORTAL_URL,
) -> Notification | None:
    """Translate a lifecycle event into a message, or None when nobody is told.

    Tenants are addressed by their actor id; resolving that to a mailbox is the
    sink's business.
    """
    extra = extra or {}
    title = work_order.get("title", "")
    location = work_order.get("location")
    tenant = [work_order["tenant_id"]]
    link = f"{portal_url}/work-orders/{work_order['id']}"
    quoted = work_order.get("quoted_amount")
    amount = format_usd(quoted) if quoted is not None else None

    if kind == LifecycleEvent.CREATED:
        priority = str(work_order.get("priority", "")).upper()
        return Notification(
            recipients=staff_recipients,
            subject=f"New Maintenance Request: {title}",
            body=_body(
                "New Maintenance Request Submitted",
                [
                    _line("Title", title),
                    _line("Priority", priority),
                    _line("Location", location),
                    _line("Description", work_order.get("description")),
                    _line("Submitted by", work_order["tenant_id"]),
                ],
                "View Work Order in Portal",
                link,
            ),
        )
    if kind == LifecycleEvent.APPROVED:
        return Notification(
            recipients=tenant,
            subject=f"Work Order Approved: {title}",
            body=_body(
                "Your Maintenance Request Has Been Approved",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: APPROVED",
                    "Our maintenance team will begin work on your request soon.",
                ],
                "View Work Order Status",
                link,
            ),
        )
    if kind == LifecycleEvent.QUOTE_PROVIDED:
        return Notification(
            recipients=tenant,
            subject=f"Quote Ready for Approval: {title}",
            body=_body(
                "Quote Ready for Your Approval",
                [
                    _line("Title", title),
                    _line("Location", location),
                    _line("Quoted Amount", amount or "Quote pending"),
                    _line("Work Details", work_order.get("quote_notes")),
                    "Action Required: please review this quote and approve or reject it to proceed.",
                ],
                "Review & Approve Quote",
                link,
            ),
        )
    if kind == LifecycleEvent.QUOTE_APPROVED:
        return Notification(
            recipients=staff_recipients,
            subject=f"Quote Approved: {title}",
            body=_body(
                "Quote Has Been Approved",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: QUOTE APPROVED",
                    _line("Approved Amount", amount),
                    _line("Approved by", actor.get("id")),
                    "The tenant has approved this quote. Work can now proceed.",
                ],
                "View Work Order Details",
                link,
            ),
        )
    if kind == LifecycleEvent.QUOTE_REJECTED:
        return Notification(
            recipients=staff_recipients,
            subject=f"Quote Rejected: {title}",
            body=_body(
                "Quote Has Been Rejected",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: QUOTE REJECTED",
                    _line("Quoted Amount", amount),
                    _line("Rejected by", actor.get("id")),
                    _line("Rejection Reason", work_order.get("quote_rejection_reason")),
                ],
                "View Work Order Details",
                link,
            ),
        )
    if kind == LifecycleEvent.REJECTED:
        return Notification(
            recipients=tenant,
            subject=f"Work Order Rejected: {title}",
            body=_body(
                "Your Maintenance Request Was Not Approved",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: REJECTED",
                    _line("Reason", work_order.get("rejection_reason")),
                ],
                "View Work Order Details",
                link,
            ),
        )
    if kind == LifecycleEvent.STARTED:
        return Notification(
            recipients=tenant,
            subject=f"Work Started: {title}",
            body=_body(
                "Work Has Started on Your Maintenance Request",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: IN PROGRESS",
                ],
                "View Work Order Status",
                link,
            ),
        )
    if kind == LifecycleEvent.COMPLETED:
        return Notification(
            recipients=tenant,
            subject=f"Work Completed - Please Review: {title}",
            body=_body(
                "Your Maintenance Request Has Been Completed",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: COMPLETED",
                    _line("Completion Notes", work_order.get("completion_notes")),
                    "Action Required: please review the completed work and sign off to close this work order.",
                ],
                "Review and Sign Off",
                link,
            ),
        )
    if kind == LifecycleEvent.SIGNED_OFF:
        rating = work_order.get("tenant_rating")
        return Notification(
            recipients=staff_recipients,
            subject=f"Work Order Signed Off: {title}",
            body=_body(
                "Work Order Signed Off by Tenant",
                [
                    _line("Title", title),
                    _line("Location", location),
                    "Status: SIGNED OFF",
                    _line("Rating", f"{rating}/5" if rating is not None else None),
                    _line("Tenant Feedback", work_order.get("tenant_feedback")),
                    _line("Signed off by", actor.get("id")),
                ],
                "View Work Order Details",
                link,
            ),
        )
    if kind == LifecycleEvent.COMMENT_ADDED:
        comment = extra.get("comment") or {}
        if comment.get("is_internal"):
            return None
        from_staff = actor.get("role") in STAFF_ROLE_VALUES
        return Notification(
            recipients=tenant if from_staff else staff_recipients,
            subject=f"New Comment on Work Order: {title}",
            body=_body(
                "New Comment on Your Maintenance Request" if from_staff else "New Comment from Tenant",
                [
                    _line("Work Order", title),
                    _line("Location", location),
                    _line("Comment from", f"{actor.get('id')} ({actor.get('role')})"),
                    "",
                    comment.get("comment", ""),
                ],
                "View & Reply",
                link,
            ),
        )
    return None


class NotificationDispatcher:
    """Event bus subscriber that turns lifecycle events into sink messages."""

    def __init__(self, sink: NotificationSink, staff_recipients: list[str] | None = None) -> None:
        self.sink = sink
        self.staff_recipients = staff_recipients if staff_recipients is not None else default_staff_recipients()

    def handle(self, event: EventEnvelope) -> None:
        payload = dict(event.payload)
        kind = payload.pop("kind", None)
        work_order = payload.pop("work_order", None)
        actor = payload.pop("actor", None) or {}
        if not isinstance(kind, str) or not isinstance(work_order, dict):
            return
        notification = render_notification(
            kind,
            work_order,
            actor,
            payload,
            staff_recipients=self.staff_recipients,
        )
        if notification is None or not notification.recipients:
            logger.debug("no notification for %s on work order %s", kind, event.aggregate_id)
            return
        try:
            self.sink.send(notification.recipients, notification.subject, notification.body)
        except Exception:
            logger.exception("notification %r for work order %s failed", notification.subject, event.aggregate_id)
