from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlmodel import Session, col, select

from portal.domain.errors import NotFoundError, UnauthorizedError
from portal.domain.models import Actor, PhotoType, WorkOrder, WorkOrderPhoto
from portal.domain.permissions import (
    can_delete_photo,
    can_edit_fields,
    ensure_can_view,
    require_actor,
)
from portal.infra.db import get_engine
from portal.infra.media import Transcoder, UploadedFile, heic_to_jpeg, prepare_for_storage
from portal.services.object_storage_service import ObjectStorageNotFoundError, ObjectStorageService

logger = logging.getLogger(__name__)


class AttachmentService:
    def __init__(
        self,
        storage: ObjectStorageService | None = None,
        transcoder: Transcoder = heic_to_jpeg,
    ) -> None:
        self._storage = storage or ObjectStorageService()
        self._transcoder = transcoder

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_work_order(self, session: Session, work_order_id: str) -> WorkOrder:
        work_order = session.get(WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError("work order not found")
        return work_order

    def prepare(self, upload: UploadedFile) -> UploadedFile:
        return prepare_for_storage(upload, self._transcoder)

    def store(self, work_order_id: str, prepared: UploadedFile) -> str:
        object_key = self._storage.build_object_key(work_order_id=work_order_id, file_name=prepared.file_name)
        return self._storage.put(object_key=object_key, content=prepared.content)

    def discard(self, url: str) -> None:
        """Remove a blob that no committed record points at. Failures are logged, not raised."""
        try:
            self._storage.delete(url)
        except ObjectStorageNotFoundError:
            logger.warning("blob was already gone: %s", url)
        except Exception:
            logger.exception("failed to remove orphaned blob %s", url)

    def new_photo(
        self,
        *,
        work_order_id: str,
        actor: Actor,
        url: str,
        prepared: UploadedFile,
        photo_type: PhotoType,
        caption: str | None,
    ) -> WorkOrderPhoto:
        return WorkOrderPhoto(
            work_order_id=work_order_id,
            uploaded_by=actor.id,
            photo_url=url,
            photo_type=photo_type,
            caption=(caption or "").strip() or None,
            content_type=prepared.normalized_content_type,
            size_bytes=prepared.size_bytes,
        )

    def attach(
        self,
        work_order_id: str,
        actor: Actor | None,
        upload: UploadedFile,
        photo_type: PhotoType = PhotoType.INITIAL,
        caption: str | None = None,
    ) -> WorkOrderPhoto:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_work_order(session, work_order_id)
            ensure_can_view(actor, work_order)
            if not can_edit_fields(actor, work_order):
                raise UnauthorizedError("attachments can only be added before the request is reviewed")
            prepared = self.prepare(upload)

            url = self.store(work_order.id, prepared)
            photo = self.new_photo(
                work_order_id=work_order.id,
                actor=actor,
                url=url,
                prepared=prepared,
                photo_type=photo_type,
                caption=caption,
            )
            session.add(photo)
            try:
                session.commit()
            except Exception:
                session.rollback()
                self.discard(url)
                raise
            session.refresh(photo)

        logger.info("photo %s attached to work order %s by %s", photo.id, work_order_id, actor.id)
        return photo

    def detach(self, photo_id: str, actor: Actor | None) -> None:
        actor = require_actor(actor)
        with self._session() as session:
            photo = session.get(WorkOrderPhoto, photo_id)
            if photo is None:
                raise NotFoundError("photo not found")
            work_order = self._get_work_order(session, photo.work_order_id)
            ensure_can_view(actor, work_order)
            if not can_delete_photo(actor, work_order, photo):
                raise UnauthorizedError("photo can no longer be removed")
            photo_url = photo.photo_url

            result = session.execute(
                sa.delete(WorkOrderPhoto).where(col(WorkOrderPhoto.id) == photo_id)
            )
            if int(getattr(result, "rowcount", 0) or 0) != 1:
                session.rollback()
                raise NotFoundError("photo not found")
            session.commit()

        self.discard(photo_url)
        logger.info("photo %s removed from work order %s by %s", photo_id, work_order.id, actor.id)

    def list_photos(self, work_order_id: str, actor: Actor | None) -> list[WorkOrderPhoto]:
        actor = require_actor(actor)
        with self._session() as session:
            work_order = self._get_work_order(session, work_order_id)
            ensure_can_view(actor, work_order)
            return list(
                session.exec(
                    select(WorkOrderPhoto)
                    .where(WorkOrderPhoto.work_order_id == work_order_id)
                    .order_by(col(WorkOrderPhoto.created_at))
                ).all()
            )
