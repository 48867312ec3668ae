"""init inspection workflow tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_REPORT_PREDICATE = "review_state IN ('SUBMITTED', 'TIER1_APPROVED', 'RESCHEDULE_REQUESTED')"


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_tenant_id", "events", ["tenant_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "sites",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("site_type", sa.String(length=50), nullable=True),
        sa.Column("level", sa.String(length=50), nullable=True),
        sa.Column("principal_name", sa.String(), nullable=True),
        sa.Column("principal_email", sa.String(), nullable=True),
        sa.Column("principal_phone", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_sites_tenant_id_id"),
    )
    op.create_index("ix_sites_tenant_id", "sites", ["tenant_id"])
    op.create_index("ix_sites_name", "sites", ["name"])
    op.create_index("ix_sites_category", "sites", ["category"])
    op.create_index("ix_sites_created_at", "sites", ["created_at"])
    op.create_index("ix_sites_tenant_category", "sites", ["tenant_id", "category"])

    op.create_table(
        "staff_members",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_staff_members_tenant_id_id"),
    )
    op.create_index("ix_staff_members_tenant_id", "staff_members", ["tenant_id"])
    op.create_index("ix_staff_members_role", "staff_members", ["role"])
    op.create_index("ix_staff_members_category", "staff_members", ["category"])
    op.create_index("ix_staff_members_created_at", "staff_members", ["created_at"])
    op.create_index("ix_staff_members_tenant_role", "staff_members", ["tenant_id", "role"])

    op.create_table(
        "question_definitions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("text", sa.String(), nullable=False),
        sa.Column("answer_type", sa.String(), nullable=False),
        sa.Column("required", sa.Boolean(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "category",
            "key",
            name="uq_question_definitions_tenant_category_key",
        ),
    )
    op.create_index("ix_question_definitions_tenant_id", "question_definitions", ["tenant_id"])
    op.create_index("ix_question_definitions_category", "question_definitions", ["category"])
    op.create_index("ix_question_definitions_created_at", "question_definitions", ["created_at"])

    op.create_table(
        "work_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("assignee_id", sa.String(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("instructions", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("final_status", sa.String(length=50), nullable=True),
        sa.Column("completed_by", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("second_tier_reviewed", sa.Boolean(), nullable=False),
        sa.Column("second_tier_decision", sa.String(), nullable=True),
        sa.Column("second_tier_reviewed_by", sa.String(), nullable=True),
        sa.Column("second_tier_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_work_items_tenant_id_id"),
        sa.ForeignKeyConstraint(
            ["tenant_id", "site_id"],
            ["sites.tenant_id", "sites.id"],
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["tenant_id", "assignee_id"],
            ["staff_members.tenant_id", "staff_members.id"],
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_work_items_tenant_id", "work_items", ["tenant_id"])
    op.create_index("ix_work_items_site_id", "work_items", ["site_id"])
    op.create_index("ix_work_items_assignee_id", "work_items", ["assignee_id"])
    op.create_index("ix_work_items_category", "work_items", ["category"])
    op.create_index("ix_work_items_deadline", "work_items", ["deadline"])
    op.create_index("ix_work_items_priority", "work_items", ["priority"])
    op.create_index("ix_work_items_status", "work_items", ["status"])
    op.create_index("ix_work_items_created_at", "work_items", ["created_at"])
    op.create_index("ix_work_items_updated_at", "work_items", ["updated_at"])
    op.create_index("ix_work_items_tenant_assignee", "work_items", ["tenant_id", "assignee_id"])
    op.create_index("ix_work_items_tenant_site", "work_items", ["tenant_id", "site_id"])
    op.create_index("ix_work_items_tenant_status", "work_items", ["tenant_id", "status"])

    op.create_table(
        "approval_tickets",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("work_item_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("site_name", sa.String(), nullable=True),
        sa.Column("approver_name", sa.String(), nullable=True),
        sa.Column("approver_email", sa.String(), nullable=True),
        sa.Column("requester_id", sa.String(), nullable=False),
        sa.Column("requester_name", sa.String(), nullable=True),
        sa.Column("requester_role", sa.String(), nullable=True),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("approval_token", sa.String(), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("email_sent", sa.Boolean(), nullable=False),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_response", sa.JSON(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("approval_method", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "work_item_id",
            "site_id",
            name="uq_approval_tickets_tenant_work_item_site",
        ),
        sa.UniqueConstraint("approval_token", name="uq_approval_tickets_token"),
        sa.ForeignKeyConstraint(
            ["tenant_id", "work_item_id"],
            ["work_items.tenant_id", "work_items.id"],
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_approval_tickets_tenant_id", "approval_tickets", ["tenant_id"])
    op.create_index("ix_approval_tickets_work_item_id", "approval_tickets", ["work_item_id"])
    op.create_index("ix_approval_tickets_site_id", "approval_tickets", ["site_id"])
    op.create_index("ix_approval_tickets_status", "approval_tickets", ["status"])
    op.create_index("ix_approval_tickets_requested_at", "approval_tickets", ["requested_at"])
    op.create_index("ix_approval_tickets_created_at", "approval_tickets", ["created_at"])
    op.create_index("ix_approval_tickets_updated_at", "approval_tickets", ["updated_at"])
    op.create_index(
        "ix_approval_tickets_tenant_work_item_site",
        "approval_tickets",
        ["tenant_id", "work_item_id", "site_id"],
    )

    op.create_table(
        "inspection_reports",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("work_item_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("site_snapshot", sa.JSON(), nullable=False),
        sa.Column("submitter_id", sa.String(), nullable=False),
        sa.Column("submitter_name", sa.String(), nullable=True),
        sa.Column("submitter_role", sa.String(), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("inspection_date", sa.Date(), nullable=True),
        sa.Column("responses", sa.JSON(), nullable=False),
        sa.Column("photos", sa.JSON(), nullable=False),
        sa.Column("inspection_location", sa.JSON(), nullable=True),
        sa.Column("site_location", sa.JSON(), nullable=True),
        sa.Column("location_verified", sa.Boolean(), nullable=False),
        sa.Column("third_party_approved", sa.Boolean(), nullable=False),
        sa.Column("strengths", sa.String(), nullable=True),
        sa.Column("improvements", sa.String(), nullable=True),
        sa.Column("recommendations", sa.String(), nullable=True),
        sa.Column("remarks", sa.String(), nullable=True),
        sa.Column("signature_ref", sa.String(), nullable=False),
        sa.Column("signature_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("analysis", sa.JSON(), nullable=False),
        sa.Column("analysis_flag", sa.String(), nullable=False),
        sa.Column("review_state", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("routing", sa.String(), nullable=False),
        sa.Column("tier1_decision", sa.String(), nullable=False),
        sa.Column("tier1_signer_id", sa.String(), nullable=True),
        sa.Column("tier1_signer_name", sa.String(), nullable=True),
        sa.Column("tier1_signature_ref", sa.String(), nullable=True),
        sa.Column("tier1_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tier2_status", sa.String(), nullable=False),
        sa.Column("tier2_decision", sa.String(), nullable=True),
        sa.Column("tier2_reviewer_id", sa.String(), nullable=True),
        sa.Column("tier2_reviewer_name", sa.String(), nullable=True),
        sa.Column("tier2_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_status", sa.String(length=50), nullable=True),
        sa.Column("work_item_sync", sa.String(), nullable=False),
        sa.Column("artifact_path", sa.String(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_inspection_reports_tenant_id_id"),
        sa.ForeignKeyConstraint(
            ["tenant_id", "work_item_id"],
            ["work_items.tenant_id", "work_items.id"],
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_inspection_reports_tenant_id", "inspection_reports", ["tenant_id"])
    op.create_index("ix_inspection_reports_work_item_id", "inspection_reports", ["work_item_id"])
    op.create_index("ix_inspection_reports_site_id", "inspection_reports", ["site_id"])
    op.create_index("ix_inspection_reports_submitter_id", "inspection_reports", ["submitter_id"])
    op.create_index("ix_inspection_reports_category", "inspection_reports", ["category"])
    op.create_index("ix_inspection_reports_analysis_flag", "inspection_reports", ["analysis_flag"])
    op.create_index("ix_inspection_reports_review_state", "inspection_reports", ["review_state"])
    op.create_index("ix_inspection_reports_status", "inspection_reports", ["status"])
    op.create_index("ix_inspection_reports_routing", "inspection_reports", ["routing"])
    op.create_index("ix_inspection_reports_tier1_decision", "inspection_reports", ["tier1_decision"])
    op.create_index("ix_inspection_reports_tier2_status", "inspection_reports", ["tier2_status"])
    op.create_index("ix_inspection_reports_work_item_sync", "inspection_reports", ["work_item_sync"])
    op.create_index("ix_inspection_reports_submitted_at", "inspection_reports", ["submitted_at"])
    op.create_index("ix_inspection_reports_updated_at", "inspection_reports", ["updated_at"])
    op.create_index(
        "ix_inspection_reports_tenant_work_item",
        "inspection_reports",
        ["tenant_id", "work_item_id"],
    )
    op.create_index(
        "ix_inspection_reports_tenant_review_state",
        "inspection_reports",
        ["tenant_id", "review_state"],
    )
    op.create_index("ix_inspection_reports_tenant_routing", "inspection_reports", ["tenant_id", "routing"])
    op.create_index(
        "uq_inspection_reports_active_work_item",
        "inspection_reports",
        ["tenant_id", "work_item_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_REPORT_PREDICATE),
        sqlite_where=sa.text(ACTIVE_REPORT_PREDICATE),
    )

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("recipient", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("text_content", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("provider_response", sa.JSON(), nullable=False),
        sa.Column("related_type", sa.String(length=50), nullable=True),
        sa.Column("related_id", sa.String(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_logs_tenant_id", "notification_logs", ["tenant_id"])
    op.create_index("ix_notification_logs_status", "notification_logs", ["status"])
    op.create_index("ix_notification_logs_related_type", "notification_logs", ["related_type"])
    op.create_index("ix_notification_logs_related_id", "notification_logs", ["related_id"])
    op.create_index("ix_notification_logs_sent_at", "notification_logs", ["sent_at"])


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("inspection_reports")
    op.drop_table("approval_tickets")
    op.drop_table("work_items")
    op.drop_table("question_definitions")
    op.drop_table("staff_members")
    op.drop_table("sites")
    op.drop_table("audit_logs")
    op.drop_table("events")
