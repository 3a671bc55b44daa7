from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

import sqlalchemy as sa
from sqlmodel import Session, col, select

from portal.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    PayloadValidationError,
    UnauthorizedError,
)
from portal.domain.models import (
    QUOTE_DECIMAL_PLACES,
    QUOTE_MAX_DIGITS,
    SHORT_TEXT_MAX_LENGTH,
    Actor,
    ActorRole,
    EditableField,
    EventEnvelope,
    LifecycleEvent,
    PhotoType,
    TriageSize,
    WorkOrder,
    WorkOrderComment,
    WorkOrderCreate,
    WorkOrderHistory,
    WorkOrderPhoto,
    WorkOrderUpdate,
    lifecycle_event,
    now_utc,
)
from portal.domain.permissions import (
    can_edit_fields,
    ensure_can_view,
    ensure_owner,
    ensure_staff,
    is_staff,
    require_actor,
)
from portal.domain.state_machine import WorkOrderStatus, can_transition, is_terminal
from portal.infra.db import get_engine
from portal.infra.events import event_bus
from portal.infra.media import UploadedFile
from portal.services.attachment_service import AttachmentService

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
CENTS = Decimal(1).scaleb(-QUOTE_DECIMAL_PLACES)
MAX_QUOTE_AMOUNT = Decimal(10) ** (QUOTE_MAX_DIGITS - QUOTE_DECIMAL_PLACES) - CENTS

_REQUIRED_TEXT_FIELDS = (EditableField.TITLE, EditableField.DESCRIPTION, EditableField.LOCATION)
_SHORT_TEXT_FIELDS = (EditableField.TITLE, EditableField.LOCATION)


def _history_value(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, StrEnum):
        return value.value
    return str(value)


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _check_length(field: EditableField, value: str) -> None:
    if field in _SHORT_TEXT_FIELDS and len(value) > SHORT_TEXT_MAX_LENGTH:
        raise PayloadValidationError(f"{field.value} cannot be longer than {SHORT_TEXT_MAX_LENGTH} characters")


class WorkOrderService:
    def __init__(self, attachments: AttachmentService | None = None) -> None:
        self._attachments = attachments or AttachmentService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_work_order(self, session: Session, work_order_id: str) -> WorkOrder:
        work_order = session.get(WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError("work order not found")
        return work_order

    def _get_visible_work_order(self, session: Session, actor: Actor, work_order_id: str) -> WorkOrder:
        work_order = self._get_work_order(session, work_order_id)
        ensure_can_view(actor, work_order)
        return work_order

    def _ensure_transition(self, work_order: WorkOrder, target: WorkOrderStatus) -> None:
        if is_terminal(work_order.status):
            raise InvalidTransitionError(f"work order is {work_order.status}; no further transitions are allowed")
        if not can_transition(work_order.status, target):
            raise InvalidTransitionError(f"illegal transition: {work_order.status} -> {target}")

    def _add_history(
        self,
        session: Session,
        work_order_id: str,
        field_name: str,
        old_value: object,
        new_value: object,
        actor: Actor,
        changed_at: datetime,
    ) -> None:
        session.add(
            WorkOrderHistory(
                work_order_id=work_order_id,
                field_name=field_name,
                old_value=_history_value(old_value),
                new_value=_history_value(new_value),
                changed_by=actor.id,
                changed_at=changed_at,
            )
        )

    def _compare_and_swap(
        self,
        session: Session,
        work_order: WorkOrder,
        expected_status: WorkOrderStatus,
        values: dict[str, Any],
    ) -> None:
        """Write values only if nobody changed the row since it was read."""
        result = session.execute(
            sa.update(WorkOrder)
            .where(col(WorkOrder.id) == work_order.id)
            .where(col(WorkOrder.status) == expected_status)
            .where(col(WorkOrder.version) == work_order.version)
            .values(**values, version=work_order.version + 1)
            .execution_options(synchronize_session=False)
        )
        if int(getattr(result, "rowcount", 0) or 0) != 1:
            logger.warning("concurrent write rejected for work order %s", work_order.id)
            session.rollback()
            raise InvalidTransitionError("work order was modified concurrently")
        session.refresh(work_order)

    def _transition(
        self,
        session: Session,
        work_order: WorkOrder,
        actor: Actor,
        target: WorkOrderStatus,
        kind: LifecycleEvent,
        values: dict[str, Any],
    ) -> EventEnvelope:
        source = work_order.status
        changed_at = now_utc()
        self._compare_and_swap(
            session,
            work_order,
            source,
            {**values, "status": target, "updated_at": changed_at},
        )
        self._add_history(session, work_order.id, "status", source, target, actor, changed_at)
        event = lifecycle_event(kind, work_order, actor)
        event_bus.record(event, session)
        return event

    def _finish(self, event: EventEnvelope, work_order: WorkOrder, actor: Actor, source: WorkOrderStatus) -> None:
        logger.info("work order %s: %s -> %s by %s", work_order.id, source, work_order.status, actor.id)
        event_bus.dispatch(event)

    def create_work_order(self, actor: Actor | None, payload: WorkOrderCreate) -> WorkOrder:
        actor = require_actor(actor)
        if actor.role != ActorRole.TENANT:
            raise UnauthorizedError("only tenants can submit work orders")
        values: dict[str, str] = {}
        for field in _REQUIRED_TEXT_FIELDS:
            cleaned = _clean_text(getattr(payload, field.value))
            if cleaned is None:
                raise PayloadValidationError(f"{field.value} is required")
            _check_length(field, cleaned)
            values[field.value] = cleaned

        with self._session() as session:
            work_order = WorkOrder(
                tenant_id=actor.id,
                unit_id=_clean_text(payload.unit_id),
                priority=payload.priority,
                status=WorkOrderStatus.PENDING,
                **values,
            )
            session.add(work_order)
            session.flush()
            event = lifecycle_event(LifecycleEvent.CREATED, work_order, actor)
            event_bus.record(event, session)
            session.commit()
            session.refresh(work_order)

        logger.info("work order %s created by %s", work_order.id, actor.id)
        event_bus.dispatch(event)
        return work_order

    def list_work_orders(
        self,
        actor: Actor | None,
        status: WorkOrderStatus | None = None,
    ) -> list[WorkOrder]:
        actor = require_actor(actor)
        with self._session() as session:
            statement = select(WorkOrder)
            if not is_staff(actor):
                statement = statement.where(WorkOrder.tenant_id == actor.id)
            if status is not None:
                statement = statement.where(WorkOrder.status == status)
            statement = statement.order_by(col(WorkOrder.created_at).desc())
            return list(session.exec(statement).all())

    def get_work_order(self, work_order_id: str, actor: Actor | None) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            return self._get_visible_work_order(session, actor, work_order_id)

    def get_detail(
        self,
        work_order_id: str,
        actor: Actor | None,
    ) -> tuple[WorkOrder, list[WorkOrderPhoto], list[WorkOrderComment]]:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            photos = list(
                session.exec(
                    select(WorkOrderPhoto)
                    .where(WorkOrderPhoto.work_order_id == work_order_id)
                    .order_by(col(WorkOrderPhoto.created_at))
                ).all()
            )
            comments_statement = select(WorkOrderComment).where(WorkOrderComment.work_order_id == work_order_id)
            if not is_staff(actor):
                comments_statement = comments_statement.where(col(WorkOrderComment.is_internal).is_(False))
            comments = list(session.exec(comments_statement.order_by(col(WorkOrderComment.created_at))).all())
            return work_order, photos, comments

    def list_history(self, work_order_id: str, actor: Actor | None) -> list[WorkOrderHistory]:
        actor = require_actor(actor)
        with self._session() as session:
            self._get_visible_work_order(session, actor, work_order_id)
            return list(
                session.exec(
                    select(WorkOrderHistory)
                    .where(WorkOrderHistory.work_order_id == work_order_id)
                    .order_by(col(WorkOrderHistory.changed_at), col(WorkOrderHistory.field_name))
                ).all()
            )

    def edit_fields(self, work_order_id: str, actor: Actor | None, payload: WorkOrderUpdate) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            if not can_edit_fields(actor, work_order):
                raise UnauthorizedError("work order can no longer be edited")

            changes: dict[str, Any] = {}
            for field in EditableField:
                requested = getattr(payload, field.value)
                if requested is None:
                    continue
                if field in _REQUIRED_TEXT_FIELDS:
                    requested = _clean_text(requested)
                    if requested is None:
                        raise PayloadValidationError(f"{field.value} cannot be empty")
                    _check_length(field, requested)
                if requested != getattr(work_order, field.value):
                    changes[field.value] = requested

            if not changes:
                return work_order

            previous = {name: getattr(work_order, name) for name in changes}
            changed_at = now_utc()
            self._compare_and_swap(
                session,
                work_order,
                work_order.status,
                {**changes, "updated_at": changed_at},
            )
            for name, new_value in changes.items():
                self._add_history(session, work_order.id, name, previous[name], new_value, actor, changed_at)
            event = lifecycle_event(LifecycleEvent.UPDATED, work_order, actor, changed_fields=sorted(changes))
            event_bus.record(event, session)
            session.commit()

        logger.info("work order %s fields %s edited by %s", work_order.id, ", ".join(sorted(changes)), actor.id)
        event_bus.dispatch(event)
        return work_order

    def _parse_quote_amount(self, quoted_amount: Decimal | float | str | None) -> Decimal:
        if quoted_amount is None:
            raise PayloadValidationError("quote amount required")
        try:
            amount = Decimal(str(quoted_amount))
        except InvalidOperation as exc:
            raise PayloadValidationError("quote amount required") from exc
        if not amount.is_finite() or amount <= 0:
            raise PayloadValidationError("quote amount required")
        if amount > MAX_QUOTE_AMOUNT:
            raise PayloadValidationError(f"quote amount cannot exceed {MAX_QUOTE_AMOUNT}")
        try:
            rounded = amount.quantize(CENTS)
        except InvalidOperation as exc:
            raise PayloadValidationError("quote amount is not a valid amount") from exc
        if amount != rounded:
            raise PayloadValidationError("quote amount cannot have more than two decimal places")
        return rounded

    def triage(
        self,
        work_order_id: str,
        actor: Actor | None,
        size: TriageSize,
        quoted_amount: Decimal | float | str | None = None,
        quote_notes: str | None = None,
    ) -> WorkOrder:
        """Classify a pending request.

        Small jobs are approved straight away. Large jobs need a positive quote and wait
        for the tenant to accept or decline it.
        """
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_staff(actor, "triage work orders")
            source = work_order.status
            if source != WorkOrderStatus.PENDING and not is_terminal(source):
                raise InvalidTransitionError(f"only pending work orders can be triaged, not {source}")
            now = now_utc()
            if size == TriageSize.SMALL:
                self._ensure_transition(work_order, WorkOrderStatus.APPROVED)
                if quoted_amount is not None or _clean_text(quote_notes) is not None:
                    raise PayloadValidationError("quotes only apply to large jobs")
                event = self._transition(
                    session,
                    work_order,
                    actor,
                    WorkOrderStatus.APPROVED,
                    LifecycleEvent.APPROVED,
                    {"triage_size": TriageSize.SMALL, "approved_at": now, "approved_by": actor.id},
                )
            else:
                self._ensure_transition(work_order, WorkOrderStatus.QUOTE_PROVIDED)
                amount = self._parse_quote_amount(quoted_amount)
                event = self._transition(
                    session,
                    work_order,
                    actor,
                    WorkOrderStatus.QUOTE_PROVIDED,
                    LifecycleEvent.QUOTE_PROVIDED,
                    {
                        "triage_size": TriageSize.LARGE,
                        "quoted_amount": amount,
                        "quote_notes": _clean_text(quote_notes),
                        "quote_provided_at": now,
                    },
                )
            session.commit()

        self._finish(event, work_order, actor, source)
        return work_order

    def approve_quote(self, work_order_id: str, actor: Actor | None) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_owner(actor, work_order, "approve the quote")
            source = work_order.status
            self._ensure_transition(work_order, WorkOrderStatus.APPROVED)
            if source != WorkOrderStatus.QUOTE_PROVIDED:
                raise InvalidTransitionError("no quote is awaiting approval")
            now = now_utc()
            event = self._transition(
                session,
                work_order,
                actor,
                WorkOrderStatus.APPROVED,
                LifecycleEvent.QUOTE_APPROVED,
                {"quote_approved_at": now, "approved_at": now, "approved_by": actor.id},
            )
            session.commit()

        self._finish(event, work_order, actor, source)
        return work_order

    def reject_quote(self, work_order_id: str, actor: Actor | None, reason: str | None = None) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_owner(actor, work_order, "reject the quote")
            source = work_order.status
            self._ensure_transition(work_order, WorkOrderStatus.QUOTE_REJECTED)
            event = self._transition(
                session,
                work_order,
                actor,
                WorkOrderStatus.QUOTE_REJECTED,
                LifecycleEvent.QUOTE_REJECTED,
                {"quote_rejected_at": now_utc(), "quote_rejection_reason": _clean_text(reason)},
            )
            session.commit()

        self._finish(event, work_order, actor, source)
        return work_order

    def reject(self, work_order_id: str, actor: Actor | None, reason: str | None) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_staff(actor, "reject work orders")
            source = work_order.status
            self._ensure_transition(work_order, WorkOrderStatus.REJECTED)
            cleaned_reason = _clean_text(reason)
            if cleaned_reason is None:
                raise PayloadValidationError("rejection reason required")
            event = self._transition(
                session,
                work_order,
                actor,
                WorkOrderStatus.REJECTED,
                LifecycleEvent.REJECTED,
                {"rejected_at": now_utc(), "rejected_by": actor.id, "rejection_reason": cleaned_reason},
            )
            session.commit()

        self._finish(event, work_order, actor, source)
        return work_order

    def start(self, work_order_id: str, actor: Actor | None) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_staff(actor, "start work")
            source = work_order.status
            self._ensure_transition(work_order, WorkOrderStatus.IN_PROGRESS)
            event = self._transition(
                session,
                work_order,
                actor,
                WorkOrderStatus.IN_PROGRESS,
                LifecycleEvent.STARTED,
                {"started_at": now_utc()},
            )
            session.commit()

        self._finish(event, work_order, actor, source)
        return work_order

    def complete(
        self,
        work_order_id: str,
        actor: Actor | None,
        completion_notes: str | None,
        photo: UploadedFile | None = None,
        photo_caption: str | None = None,
    ) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_staff(actor, "complete work")
            source = work_order.status
            self._ensure_transition(work_order, WorkOrderStatus.COMPLETED)
            notes = _clean_text(completion_notes)
            if notes is None:
                raise PayloadValidationError("completion notes required")
            prepared = self._attachments.prepare(photo) if photo is not None else None

            url = self._attachments.store(work_order.id, prepared) if prepared is not None else None
            try:
                event = self._transition(
                    session,
                    work_order,
                    actor,
                    WorkOrderStatus.COMPLETED,
                    LifecycleEvent.COMPLETED,
                    {"completed_at": now_utc(), "completion_notes": notes},
                )
                if prepared is not None and url is not None:
                    session.add(
                        self._attachments.new_photo(
                            work_order_id=work_order.id,
                            actor=actor,
                            url=url,
                            prepared=prepared,
                            photo_type=PhotoType.COMPLETION,
                            caption=photo_caption,
                        )
                    )
                session.commit()
            except Exception:
                session.rollback()
                if url is not None:
                    self._attachments.discard(url)
                raise

        self._finish(event, work_order, actor, source)
        return work_order

    def sign_off(
        self,
        work_order_id: str,
        actor: Actor | None,
        feedback: str | None = None,
        rating: int | None = None,
        signature: str | None = None,
    ) -> WorkOrder:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_visible_work_order(session, actor, work_order_id)
            ensure_owner(actor, work_order, "sign off work")
            source = work_order.status
            self._ensure_transition(work_order, WorkOrderStatus.SIGNED_OFF)
            if rating is not None and not MIN_RATING <= rating <= MAX_RATING:
                raise PayloadValidationError(f"rating must be between {MIN_RATING} and {MAX_RATING}")
            event = self._transition(
                session,
                work_order,
                actor,
                WorkOrderStatus.SIGNED_OFF,
                LifecycleEvent.SIGNED_OFF,
                {
                    "signed_off_at": now_utc(),
                    "tenant_feedback": _clean_text(feedback),
                    "tenant_rating": rating,
                    "tenant_signature": _clean_text(signature),
                },
            )
            session.commit()

        self._finish(event, work_order, actor, source)
        return work_order
