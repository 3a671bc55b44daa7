from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from portal.api.deps import get_current_actor
from portal.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    PayloadTooLargeError,
    PayloadValidationError,
    UnauthenticatedError,
    UnauthorizedError,
    UnsupportedMediaError,
    WorkOrderError,
)
from portal.domain.models import (
    Actor,
    CommentCreate,
    CompleteRequest,
    PhotoType,
    QuoteRejectRequest,
    RejectRequest,
    SignOffRequest,
    TriageRequest,
    WorkOrderCommentRead,
    WorkOrderCreate,
    WorkOrderDetailRead,
    WorkOrderHistoryRead,
    WorkOrderPhotoRead,
    WorkOrderRead,
    WorkOrderUpdate,
)
from portal.domain.permissions import capabilities, require_actor
from portal.domain.state_machine import WorkOrderStatus
from portal.infra.audit import set_audit_context
from portal.infra.media import UploadedFile
from portal.services.attachment_service import AttachmentService
from portal.services.comment_service import CommentService
from portal.services.work_order_service import WorkOrderService

router = APIRouter()


def get_attachment_service() -> AttachmentService:
    return AttachmentService()


def get_work_order_service(
    attachments: Annotated[AttachmentService, Depends(get_attachment_service)],
) -> WorkOrderService:
    return WorkOrderService(attachments)


def get_comment_service() -> CommentService:
    return CommentService()


CurrentActor = Annotated[Actor | None, Depends(get_current_actor)]
Service = Annotated[WorkOrderService, Depends(get_work_order_service)]
Attachments = Annotated[AttachmentService, Depends(get_attachment_service)]
Comments = Annotated[CommentService, Depends(get_comment_service)]

_ERROR_STATUS: tuple[tuple[type[WorkOrderError], int], ...] = (
    (UnauthenticatedError, 401),
    (UnauthorizedError, 403),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (PayloadValidationError, 422),
    (PayloadTooLargeError, 413),
    (UnsupportedMediaError, 415),
)


def _handle_work_order_error(exc: Exception) -> None:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc


def _transition_audit(request: Request, work_order_id: str, action: str) -> None:
    set_audit_context(
        request,
        action=f"work_order.{action}",
        resource=f"work_orders/{work_order_id}",
    )


@router.post("", response_model=WorkOrderRead, status_code=status.HTTP_201_CREATED)
def create_work_order(payload: WorkOrderCreate, actor: CurrentActor, service: Service) -> WorkOrderRead:
    try:
        row = service.create_work_order(actor, payload)
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.get("", response_model=list[WorkOrderRead])
def list_work_orders(
    actor: CurrentActor,
    service: Service,
    status_filter: Annotated[WorkOrderStatus | None, Query(alias="status")] = None,
) -> list[WorkOrderRead]:
    try:
        rows = service.list_work_orders(actor, status_filter)
        return [WorkOrderRead.model_validate(item) for item in rows]
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.get("/{work_order_id}", response_model=WorkOrderDetailRead)
def get_work_order(work_order_id: str, actor: CurrentActor, service: Service) -> WorkOrderDetailRead:
    try:
        work_order, photos, comments = service.get_detail(work_order_id, actor)
        return WorkOrderDetailRead(
            work_order=WorkOrderRead.model_validate(work_order),
            photos=[WorkOrderPhotoRead.model_validate(item) for item in photos],
            comments=[WorkOrderCommentRead.model_validate(item) for item in comments],
            capabilities=capabilities(require_actor(actor), work_order),
        )
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.patch("/{work_order_id}", response_model=WorkOrderRead)
def edit_work_order(
    work_order_id: str,
    payload: WorkOrderUpdate,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "edit")
    try:
        row = service.edit_fields(work_order_id, actor, payload)
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.get("/{work_order_id}/history", response_model=list[WorkOrderHistoryRead])
def list_work_order_history(
    work_order_id: str,
    actor: CurrentActor,
    service: Service,
) -> list[WorkOrderHistoryRead]:
    try:
        rows = service.list_history(work_order_id, actor)
        return [WorkOrderHistoryRead.model_validate(item) for item in rows]
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/triage", response_model=WorkOrderRead)
def triage_work_order(
    work_order_id: str,
    payload: TriageRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "triage")
    try:
        row = service.triage(
            work_order_id,
            actor,
            payload.size,
            quoted_amount=payload.quoted_amount,
            quote_notes=payload.quote_notes,
        )
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/quote/approve", response_model=WorkOrderRead)
def approve_quote(
    work_order_id: str,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "quote_approve")
    try:
        row = service.approve_quote(work_order_id, actor)
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/quote/reject", response_model=WorkOrderRead)
def reject_quote(
    work_order_id: str,
    request: Request,
    actor: CurrentActor,
    service: Service,
    payload: QuoteRejectRequest | None = None,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "quote_reject")
    try:
        row = service.reject_quote(work_order_id, actor, payload.reason if payload is not None else None)
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/reject", response_model=WorkOrderRead)
def reject_work_order(
    work_order_id: str,
    payload: RejectRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "reject")
    try:
        row = service.reject(work_order_id, actor, payload.reason)
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/start", response_model=WorkOrderRead)
def start_work_order(
    work_order_id: str,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "start")
    try:
        row = service.start(work_order_id, actor)
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/complete", response_model=WorkOrderRead)
def complete_work_order(
    work_order_id: str,
    payload: CompleteRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "complete")
    photo = None
    if payload.photo is not None:
        photo = UploadedFile(
            file_name=payload.photo.file_name,
            content_type=payload.photo.content_type,
            content=payload.photo.content,
        )
    try:
        row = service.complete(
            work_order_id,
            actor,
            payload.completion_notes,
            photo=photo,
            photo_caption=payload.photo.caption if payload.photo is not None else None,
        )
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post("/{work_order_id}/sign-off", response_model=WorkOrderRead)
def sign_off_work_order(
    work_order_id: str,
    request: Request,
    actor: CurrentActor,
    service: Service,
    payload: SignOffRequest | None = None,
) -> WorkOrderRead:
    _transition_audit(request, work_order_id, "sign_off")
    payload = payload or SignOffRequest()
    try:
        row = service.sign_off(
            work_order_id,
            actor,
            feedback=payload.feedback,
            rating=payload.rating,
            signature=payload.signature,
        )
        return WorkOrderRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post(
    "/{work_order_id}/photos",
    response_model=WorkOrderPhotoRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_work_order_photo(
    work_order_id: str,
    request: Request,
    actor: CurrentActor,
    attachments: Attachments,
    file_name: Annotated[str, Query(min_length=1)],
    photo_type: PhotoType = PhotoType.INITIAL,
    caption: str | None = None,
    content_type: Annotated[str, Header()] = "",
) -> WorkOrderPhotoRead:
    content = await request.body()
    try:
        row = attachments.attach(
            work_order_id,
            actor,
            UploadedFile(file_name=file_name, content_type=content_type, content=content),
            photo_type=photo_type,
            caption=caption,
        )
        return WorkOrderPhotoRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.get("/{work_order_id}/photos", response_model=list[WorkOrderPhotoRead])
def list_work_order_photos(
    work_order_id: str,
    actor: CurrentActor,
    attachments: Attachments,
) -> list[WorkOrderPhotoRead]:
    try:
        rows = attachments.list_photos(work_order_id, actor)
        return [WorkOrderPhotoRead.model_validate(item) for item in rows]
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.post(
    "/{work_order_id}/comments",
    response_model=WorkOrderCommentRead,
    status_code=status.HTTP_201_CREATED,
)
def add_work_order_comment(
    work_order_id: str,
    payload: CommentCreate,
    actor: CurrentActor,
    comments: Comments,
) -> WorkOrderCommentRead:
    try:
        row = comments.add_comment(work_order_id, actor, payload.comment, is_internal=payload.is_internal)
        return WorkOrderCommentRead.model_validate(row)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise


@router.get("/{work_order_id}/comments", response_model=list[WorkOrderCommentRead])
def list_work_order_comments(
    work_order_id: str,
    actor: CurrentActor,
    comments: Comments,
) -> list[WorkOrderCommentRead]:
    try:
        rows = comments.list_comments(work_order_id, actor)
        return [WorkOrderCommentRead.model_validate(item) for item in rows]
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise
