from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import Base64Bytes, BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, CheckConstraint, Column, Index, Text
from sqlmodel import Field, SQLModel

from portal.domain.state_machine import WorkOrderStatus

SHORT_TEXT_MAX_LENGTH = 200
QUOTE_MAX_DIGITS = 12
QUOTE_DECIMAL_PLACES = 2


def now_utc() -> datetime:
    return datetime.now(UTC)


class ActorRole(StrEnum):
    TENANT = "tenant"
    MAINTENANCE = "maintenance"
    ADMIN = "admin"


class WorkOrderPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class TriageSize(StrEnum):
    SMALL = "small"
    LARGE = "large"


class PhotoType(StrEnum):
    INITIAL = "initial"
    IN_PROGRESS = "in_progress"
    COMPLETION = "completion"


class EditableField(StrEnum):
    TITLE = "title"
    DESCRIPTION = "description"
    LOCATION = "location"
    PRIORITY = "priority"


class LifecycleEvent(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    APPROVED = "approved"
    QUOTE_PROVIDED = "quote_provided"
    QUOTE_APPROVED = "quote_approved"
    QUOTE_REJECTED = "quote_rejected"
    REJECTED = "rejected"
    STARTED = "started"
    COMPLETED = "completed"
    SIGNED_OFF = "signed_off"
    COMMENT_ADDED = "comment_added"

    @property
    def event_type(self) -> str:
        return f"work_order.{self.value}"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    aggregate_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    actor_role: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class WorkOrder(SQLModel, table=True):
    __tablename__ = "work_orders"
    __table_args__ = (
        Index("ix_work_orders_tenant_status", "tenant_id", "status"),
        CheckConstraint(
            "tenant_rating IS NULL OR (tenant_rating >= 1 AND tenant_rating <= 5)",
            name="ck_work_orders_tenant_rating",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    unit_id: str | None = Field(default=None, index=True)
    title: str = Field(max_length=SHORT_TEXT_MAX_LENGTH)
    description: str = Field(sa_column=Column(Text, nullable=False))
    location: str = Field(max_length=SHORT_TEXT_MAX_LENGTH)
    priority: WorkOrderPriority = Field(default=WorkOrderPriority.MEDIUM, index=True)
    status: WorkOrderStatus = Field(default=WorkOrderStatus.PENDING, index=True)
    triage_size: TriageSize | None = Field(default=None)

    quoted_amount: Decimal | None = Field(
        default=None,
        max_digits=QUOTE_MAX_DIGITS,
        decimal_places=QUOTE_DECIMAL_PLACES,
    )
    quote_notes: str | None = None
    quote_provided_at: datetime | None = None
    quote_approved_at: datetime | None = None
    quote_rejected_at: datetime | None = None
    quote_rejection_reason: str | None = None

    approved_at: datetime | None = None
    approved_by: str | None = Field(default=None, index=True)
    rejected_at: datetime | None = None
    rejected_by: str | None = Field(default=None, index=True)
    rejection_reason: str | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None
    completion_notes: str | None = None

    signed_off_at: datetime | None = None
    tenant_signature: str | None = None
    tenant_feedback: str | None = None
    tenant_rating: int | None = None

    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class WorkOrderHistory(SQLModel, table=True):
    __tablename__ = "work_order_history"
    __table_args__ = (
        Index("ix_work_order_history_order_changed_at", "work_order_id", "changed_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    work_order_id: str = Field(foreign_key="work_orders.id", index=True)
    field_name: str = Field(max_length=50, index=True)
    old_value: str | None = None
    new_value: str | None = None
    changed_by: str = Field(index=True)
    changed_at: datetime = Field(default_factory=now_utc)


class WorkOrderPhoto(SQLModel, table=True):
    __tablename__ = "work_order_photos"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    work_order_id: str = Field(foreign_key="work_orders.id", index=True)
    uploaded_by: str = Field(index=True)
    photo_url: str
    photo_type: PhotoType = Field(default=PhotoType.INITIAL, index=True)
    caption: str | None = None
    content_type: str = Field(max_length=100)
    size_bytes: int = 0
    created_at: datetime = Field(default_factory=now_utc, index=True)


class WorkOrderComment(SQLModel, table=True):
    __tablename__ = "work_order_comments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    work_order_id: str = Field(foreign_key="work_orders.id", index=True)
    user_id: str = Field(index=True)
    comment: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    role: ActorRole


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class WorkOrderCreate(BaseModel):
    title: str
    description: str
    location: str
    priority: WorkOrderPriority = WorkOrderPriority.MEDIUM
    unit_id: str | None = None


class WorkOrderUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    priority: WorkOrderPriority | None = None


class WorkOrderRead(ORMReadModel):
    id: str
    tenant_id: str
    unit_id: str | None
    title: str
    description: str
    location: str
    priority: WorkOrderPriority
    status: WorkOrderStatus
    triage_size: TriageSize | None
    quoted_amount: Decimal | None
    quote_notes: str | None
    quote_provided_at: datetime | None
    quote_approved_at: datetime | None
    quote_rejected_at: datetime | None
    quote_rejection_reason: str | None
    approved_at: datetime | None
    approved_by: str | None
    rejected_at: datetime | None
    rejected_by: str | None
    rejection_reason: str | None
    started_at: datetime | None
    completed_at: datetime | None
    completion_notes: str | None
    signed_off_at: datetime | None
    tenant_signature: str | None
    tenant_feedback: str | None
    tenant_rating: int | None
    created_at: datetime
    updated_at: datetime


class WorkOrderCapabilities(BaseModel):
    is_staff: bool
    is_owner: bool
    can_edit_fields: bool
    can_comment: bool
    can_attach: bool


class WorkOrderHistoryRead(ORMReadModel):
    id: str
    work_order_id: str
    field_name: str
    old_value: str | None
    new_value: str | None
    changed_by: str
    changed_at: datetime


class WorkOrderPhotoRead(ORMReadModel):
    id: str
    work_order_id: str
    uploaded_by: str
    photo_url: str
    photo_type: PhotoType
    caption: str | None
    content_type: str
    size_bytes: int
    created_at: datetime


class WorkOrderCommentRead(ORMReadModel):
    id: str
    work_order_id: str
    user_id: str
    comment: str
    is_internal: bool
    created_at: datetime


class WorkOrderDetailRead(BaseModel):
    work_order: WorkOrderRead
    photos: list[WorkOrderPhotoRead]
    comments: list[WorkOrderCommentRead]
    capabilities: WorkOrderCapabilities


class TriageRequest(BaseModel):
    size: TriageSize
    quoted_amount: Decimal | None = None
    quote_notes: str | None = None


class QuoteRejectRequest(BaseModel):
    reason: str | None = None


class RejectRequest(BaseModel):
    reason: str


class PhotoUpload(BaseModel):
    file_name: str
    content_type: str = ""
    content: Base64Bytes
    caption: str | None = None


class CompleteRequest(BaseModel):
    completion_notes: str
    photo: PhotoUpload | None = None


class SignOffRequest(BaseModel):
    feedback: str | None = None
    rating: int | None = None
    signature: str | None = None


class CommentCreate(BaseModel):
    comment: str
    is_internal: bool = False


def lifecycle_event(
    kind: LifecycleEvent,
    work_order: WorkOrder,
    actor: Actor,
    **extra: Any,
) -> EventEnvelope:
    payload: dict[str, Any] = {
        "kind": kind.value,
        "work_order": WorkOrderRead.model_validate(work_order).model_dump(mode="json"),
        "actor": actor.model_dump(mode="json"),
        **extra,
    }
    return EventEnvelope(
        event_type=kind.event_type,
        aggregate_id=work_order.id,
        actor_id=actor.id,
        payload=payload,
    )
