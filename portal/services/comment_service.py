from __future__ import annotations

import logging

from sqlmodel import Session, col, select

from portal.domain.errors import NotFoundError, PayloadValidationError, UnauthorizedError
from portal.domain.models import (
    Actor,
    LifecycleEvent,
    WorkOrder,
    WorkOrderComment,
    WorkOrderCommentRead,
    lifecycle_event,
)
from portal.domain.permissions import can_comment, ensure_can_view, is_staff, require_actor
from portal.infra.db import get_engine
from portal.infra.events import event_bus

logger = logging.getLogger(__name__)


class CommentService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_work_order(self, session: Session, work_order_id: str) -> WorkOrder:
        work_order = session.get(WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError("work order not found")
        return work_order

    def add_comment(
        self,
        work_order_id: str,
        actor: Actor | None,
        comment: str,
        is_internal: bool = False,
    ) -> WorkOrderComment:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_work_order(session, work_order_id)
            ensure_can_view(actor, work_order)
            if not can_comment(actor, work_order):
                raise UnauthorizedError("comments are closed for this actor")
            if is_internal and not is_staff(actor):
                raise UnauthorizedError("only staff can post internal comments")
            text = (comment or "").strip()
            if not text:
                raise PayloadValidationError("comment cannot be empty")

            row = WorkOrderComment(
                work_order_id=work_order.id,
                user_id=actor.id,
                comment=text,
                is_internal=is_internal,
            )
            session.add(row)
            session.flush()
            # comments do not touch the work order row, so no version bump
            event = lifecycle_event(
                LifecycleEvent.COMMENT_ADDED,
                work_order,
                actor,
                comment=WorkOrderCommentRead.model_validate(row).model_dump(mode="json"),
            )
            event_bus.record(event, session)
            session.commit()
            session.refresh(row)

        logger.info("comment %s added to work order %s by %s", row.id, work_order_id, actor.id)
        event_bus.dispatch(event)
        return row

    def list_comments(self, work_order_id: str, actor: Actor | None) -> list[WorkOrderComment]:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_work_order(session, work_order_id)
            ensure_can_view(actor, work_order)
            statement = select(WorkOrderComment).where(WorkOrderComment.work_order_id == work_order_id)
            if not is_staff(actor):
                statement = statement.where(col(WorkOrderComment.is_internal).is_(False))
            return list(session.exec(statement.order_by(col(WorkOrderComment.created_at))).all())
