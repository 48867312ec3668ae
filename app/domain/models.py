from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from app.domain.state_machine import ReviewState, TicketStatus, WorkItemStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    tenant_id: str = Field(index=True)
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
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AssignmentPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnswerType(StrEnum):
    BOOLEAN = "boolean"
    TEXT = "text"
    NUMBER = "number"
    PHOTO = "photo"


class AnalysisFlag(StrEnum):
    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"
    PENDING = "Pending"


class ApprovalMethod(StrEnum):
    LINK_CLICK = "link_click"
    MANUAL_SIMULATION = "manual_simulation"


class ReportStatus(StrEnum):
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewRouting(StrEnum):
    TIER1 = "tier-1"
    TIER2 = "tier-2"
    SUBMITTER = "submitter"
    ADMIN = "admin"
    CLOSED = "closed"


class Tier1Decision(StrEnum):
    NONE = "none"
    APPROVED = "approved"
    REJECTED = "rejected"


class Tier2Status(StrEnum):
    NONE = "none"
    REVIEWED = "reviewed"


class Tier2Decision(StrEnum):
    SATISFACTORY = "satisfactory"
    NEEDS_IMPROVEMENT = "needs_improvement"


class WorkItemSync(StrEnum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class NotificationStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"


class EvidenceKind(StrEnum):
    SIGNATURE = "signature"
    PHOTO = "photo"


class Site(SQLModel, table=True):
    __tablename__ = "sites"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_sites_tenant_id_id"),
        Index("ix_sites_tenant_category", "tenant_id", "category"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    name: str = Field(max_length=200, index=True)
    address: str = Field(default="")
    category: str = Field(max_length=50, index=True)
    site_type: str | None = Field(default=None, max_length=50)
    level: str | None = Field(default=None, max_length=50)
    principal_name: str | None = None
    principal_email: str | None = None
    principal_phone: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class StaffMember(SQLModel, table=True):
    __tablename__ = "staff_members"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_staff_members_tenant_id_id"),
        Index("ix_staff_members_tenant_role", "tenant_id", "role"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    name: str = Field(max_length=200)
    email: str | None = None
    role: str = Field(max_length=50, index=True)
    category: str = Field(max_length=50, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class QuestionDefinition(SQLModel, table=True):
    __tablename__ = "question_definitions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "category", "key", name="uq_question_definitions_tenant_category_key"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    category: str = Field(max_length=50, index=True)
    key: str = Field(max_length=100)
    text: str
    answer_type: AnswerType = Field(default=AnswerType.BOOLEAN)
    required: bool = Field(default=False)
    sort_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class WorkItem(SQLModel, table=True):
    __tablename__ = "work_items"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_work_items_tenant_id_id"),
        ForeignKeyConstraint(
            ["tenant_id", "site_id"],
            ["sites.tenant_id", "sites.id"],
            ondelete="RESTRICT",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "assignee_id"],
            ["staff_members.tenant_id", "staff_members.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_work_items_tenant_assignee", "tenant_id", "assignee_id"),
        Index("ix_work_items_tenant_site", "tenant_id", "site_id"),
        Index("ix_work_items_tenant_status", "tenant_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    site_id: str = Field(index=True)
    assignee_id: str = Field(index=True)
    category: str = Field(max_length=50, index=True)
    deadline: datetime = Field(index=True)
    priority: AssignmentPriority = Field(default=AssignmentPriority.MEDIUM, index=True)
    instructions: str | None = None
    status: WorkItemStatus = Field(default=WorkItemStatus.PENDING, index=True)
    final_status: str | None = Field(default=None, max_length=50)
    completed_by: str | None = None
    completed_at: datetime | None = None
    second_tier_reviewed: bool = Field(default=False)
    second_tier_decision: Tier2Decision | None = None
    second_tier_reviewed_by: str | None = None
    second_tier_reviewed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ApprovalTicket(SQLModel, table=True):
    __tablename__ = "approval_tickets"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "work_item_id",
            "site_id",
            name="uq_approval_tickets_tenant_work_item_site",
        ),
        UniqueConstraint("approval_token", name="uq_approval_tickets_token"),
        ForeignKeyConstraint(
            ["tenant_id", "work_item_id"],
            ["work_items.tenant_id", "work_items.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_approval_tickets_tenant_work_item_site", "tenant_id", "work_item_id", "site_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    work_item_id: str = Field(index=True)
    site_id: str = Field(index=True)
    site_name: str | None = None
    approver_name: str | None = None
    approver_email: str | None = None
    requester_id: str
    requester_name: str | None = None
    requester_role: str | None = None
    approved: bool = Field(default=False)
    status: TicketStatus = Field(default=TicketStatus.PENDING, index=True)
    approval_token: str
    requested_at: datetime = Field(default_factory=now_utc, index=True)
    email_sent: bool = Field(default=False)
    email_sent_at: datetime | None = None
    email_response: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    approved_at: datetime | None = None
    approved_by: str | None = None
    approval_method: ApprovalMethod | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


# One report under review per work item; terminal states may repeat.
ACTIVE_REPORT_PREDICATE = "review_state IN ('SUBMITTED', 'TIER1_APPROVED', 'RESCHEDULE_REQUESTED')"


class InspectionReport(SQLModel, table=True):
    __tablename__ = "inspection_reports"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_inspection_reports_tenant_id_id"),
        ForeignKeyConstraint(
            ["tenant_id", "work_item_id"],
            ["work_items.tenant_id", "work_items.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_inspection_reports_tenant_work_item", "tenant_id", "work_item_id"),
        Index("ix_inspection_reports_tenant_review_state", "tenant_id", "review_state"),
        Index("ix_inspection_reports_tenant_routing", "tenant_id", "routing"),
        Index(
            "uq_inspection_reports_active_work_item",
            "tenant_id",
            "work_item_id",
            unique=True,
            postgresql_where=text(ACTIVE_REPORT_PREDICATE),
            sqlite_where=text(ACTIVE_REPORT_PREDICATE),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    work_item_id: str = Field(index=True)
    site_id: str = Field(index=True)
    site_snapshot: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    submitter_id: str = Field(index=True)
    submitter_name: str | None = None
    submitter_role: str | None = None
    category: str = Field(max_length=50, index=True)
    inspection_date: date | None = None
    responses: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    photos: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    inspection_location: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    site_location: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    location_verified: bool = Field(default=False)
    third_party_approved: bool = Field(default=False)
    strengths: str | None = None
    improvements: str | None = None
    recommendations: str | None = None
    remarks: str | None = None
    signature_ref: str
    signature_at: datetime = Field(default_factory=now_utc)
    analysis: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    analysis_flag: AnalysisFlag = Field(default=AnalysisFlag.PENDING, index=True)
    review_state: ReviewState = Field(default=ReviewState.SUBMITTED, index=True)
    status: ReportStatus = Field(default=ReportStatus.SUBMITTED, index=True)
    routing: ReviewRouting = Field(default=ReviewRouting.TIER1, index=True)
    tier1_decision: Tier1Decision = Field(default=Tier1Decision.NONE, index=True)
    tier1_signer_id: str | None = None
    tier1_signer_name: str | None = None
    tier1_signature_ref: str | None = None
    tier1_decided_at: datetime | None = None
    tier2_status: Tier2Status = Field(default=Tier2Status.NONE, index=True)
    tier2_decision: Tier2Decision | None = None
    tier2_reviewer_id: str | None = None
    tier2_reviewer_name: str | None = None
    tier2_decided_at: datetime | None = None
    final_status: str | None = Field(default=None, max_length=50)
    work_item_sync: WorkItemSync = Field(default=WorkItemSync.NOT_REQUIRED, index=True)
    artifact_path: str | None = None
    submitted_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class NotificationLog(SQLModel, table=True):
    __tablename__ = "notification_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    recipient: str
    subject: str
    text_content: str = ""
    status: NotificationStatus = Field(index=True)
    error_message: str | None = None
    provider_response: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    related_type: str | None = Field(default=None, max_length=50, index=True)
    related_id: str | None = Field(default=None, index=True)
    sent_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    tenant_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class CallerIdentity(BaseModel):
    id: str
    name: str | None = None
    role: str | None = None
    category: str | None = None


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class GeoPoint(BaseModel):
    latitude: float | None = None
    longitude: float | None = None
    accuracy_m: float | None = None


class BooleanAnswer(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool


class TextAnswer(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class NumberAnswer(BaseModel):
    kind: Literal["number"] = "number"
    value: float


class PhotoAnswer(BaseModel):
    kind: Literal["photo"] = "photo"
    url: str


ResponseValue = Annotated[
    BooleanAnswer | TextAnswer | NumberAnswer | PhotoAnswer,
    PydanticField(discriminator="kind"),
]


class CapturedPhoto(BaseModel):
    url: str
    capture_location: GeoPoint | None = None
    captured_at: datetime | None = None


class AutomaticAnalysis(BaseModel):
    flag: AnalysisFlag
    issues: list[str] = PydanticField(default_factory=list)
    summary: list[str] = PydanticField(default_factory=list)
    verified_at: datetime


class SiteCreate(BaseModel):
    name: str
    address: str = ""
    category: str
    site_type: str | None = None
    level: str | None = None
    principal_name: str | None = None
    principal_email: str | None = None
    principal_phone: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class SiteRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    address: str
    category: str
    site_type: str | None
    level: str | None
    principal_name: str | None
    principal_email: str | None
    principal_phone: str | None
    latitude: float | None
    longitude: float | None
    created_at: datetime


class StaffMemberCreate(BaseModel):
    name: str
    email: str | None = None
    role: str
    category: str


class StaffMemberRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    email: str | None
    role: str
    category: str
    created_at: datetime


class QuestionDefinitionCreate(BaseModel):
    category: str
    key: str
    text: str
    answer_type: AnswerType = AnswerType.BOOLEAN
    required: bool = False
    sort_order: int = 0


class QuestionDefinitionRead(ORMReadModel):
    id: str
    tenant_id: str
    category: str
    key: str
    text: str
    answer_type: AnswerType
    required: bool
    sort_order: int
    created_at: datetime


class WorkItemCreate(BaseModel):
    site_id: str
    assignee_id: str
    category: str
    deadline: datetime
    priority: AssignmentPriority = AssignmentPriority.MEDIUM
    instructions: str | None = None


class WorkItemUpdate(BaseModel):
    assignee_id: str | None = None
    deadline: datetime | None = None
    priority: AssignmentPriority | None = None
    instructions: str | None = None
    status: WorkItemStatus | None = None


class WorkItemRead(ORMReadModel):
    id: str
    tenant_id: str
    site_id: str
    assignee_id: str
    category: str
    deadline: datetime
    priority: AssignmentPriority
    instructions: str | None
    status: WorkItemStatus
    final_status: str | None
    completed_by: str | None
    completed_at: datetime | None
    second_tier_reviewed: bool
    second_tier_decision: Tier2Decision | None
    second_tier_reviewed_by: str | None
    second_tier_reviewed_at: datetime | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class ApprovalTicketCreate(BaseModel):
    work_item_id: str
    site_id: str
    site_name: str | None = None
    approver_name: str | None = None
    approver_email: str | None = None


class ApprovalTicketUpdate(BaseModel):
    approver_name: str | None = None
    approver_email: str | None = None
    email_sent: bool | None = None
    email_sent_at: datetime | None = None
    email_response: dict[str, Any] | None = None


class ApprovalSimulateRequest(BaseModel):
    work_item_id: str
    site_id: str


class ApprovalTicketRead(ORMReadModel):
    id: str
    tenant_id: str
    work_item_id: str
    site_id: str
    site_name: str | None
    approver_name: str | None
    approver_email: str | None
    requester_id: str
    requester_name: str | None
    requester_role: str | None
    approved: bool
    status: TicketStatus
    requested_at: datetime
    email_sent: bool
    email_sent_at: datetime | None
    email_response: dict[str, Any]
    approved_at: datetime | None
    approved_by: str | None
    approval_method: ApprovalMethod | None
    created_at: datetime
    updated_at: datetime


class ApprovalTicketRequestRead(BaseModel):
    ticket: ApprovalTicketRead
    verify_url: str
    created: bool


class ApprovalVerifyRead(BaseModel):
    result: Literal["approved", "already_approved"]
    ticket_id: str
    site_name: str | None
    approved_at: datetime | None


class InspectionSubmit(BaseModel):
    work_item_id: str
    inspection_date: date | None = None
    responses: dict[str, ResponseValue] = PydanticField(default_factory=dict)
    photos: dict[str, CapturedPhoto] = PydanticField(default_factory=dict)
    inspection_location: GeoPoint | None = None
    strengths: str | None = None
    improvements: str | None = None
    recommendations: str | None = None
    remarks: str | None = None
    signature_ref: str
    signature_at: datetime | None = None


class InspectionReportRead(ORMReadModel):
    id: str
    tenant_id: str
    work_item_id: str
    site_id: str
    site_snapshot: dict[str, Any]
    submitter_id: str
    submitter_name: str | None
    submitter_role: str | None
    category: str
    inspection_date: date | None
    responses: dict[str, Any]
    photos: dict[str, Any]
    inspection_location: dict[str, Any] | None
    site_location: dict[str, Any] | None
    location_verified: bool
    third_party_approved: bool
    strengths: str | None
    improvements: str | None
    recommendations: str | None
    remarks: str | None
    signature_ref: str
    signature_at: datetime
    analysis: dict[str, Any]
    analysis_flag: AnalysisFlag
    review_state: ReviewState
    status: ReportStatus
    routing: ReviewRouting
    tier1_decision: Tier1Decision
    tier1_signer_id: str | None
    tier1_signer_name: str | None
    tier1_signature_ref: str | None
    tier1_decided_at: datetime | None
    tier2_status: Tier2Status
    tier2_decision: Tier2Decision | None
    tier2_reviewer_id: str | None
    tier2_reviewer_name: str | None
    tier2_decided_at: datetime | None
    final_status: str | None
    work_item_sync: WorkItemSync
    artifact_path: str | None
    submitted_at: datetime
    updated_at: datetime


class ReviewAction(StrEnum):
    TIER1_DECISION = "tier1_decision"
    RESCHEDULE_REQUEST = "reschedule_request"
    TIER2_DECISION = "tier2_decision"


class InspectionDecisionRequest(BaseModel):
    action: ReviewAction
    tier1_decision: Tier1Decision | None = None
    tier2_decision: Tier2Decision | None = None
    signature_ref: str | None = None
    remarks: str | None = None


class AdminResolution(StrEnum):
    REOPEN = "reopen"
    CLOSE = "close"


class AdminResolveRequest(BaseModel):
    action: AdminResolution
    remarks: str | None = None


class ReconcileRead(BaseModel):
    scanned: int
    synced: int
    failed: int


class EvidenceUpload(BaseModel):
    kind: EvidenceKind
    content_base64: str
    content_type: str = "image/png"
    filename: str | None = None


class EvidenceRead(BaseModel):
    reference: str
    bucket: str
    object_key: str
    size_bytes: int
    etag: str
    content_type: str
