from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from app.adapters.base import DocumentRenderer, NotificationMessage
from app.adapters.report_renderer import HtmlReportRenderer
from app.domain.errors import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    WorkflowError,
)
from app.domain.models import (
    AdminResolution,
    AdminResolveRequest,
    AnalysisFlag,
    AutomaticAnalysis,
    CallerIdentity,
    GeoPoint,
    InspectionDecisionRequest,
    InspectionReport,
    InspectionSubmit,
    QuestionDefinition,
    ReconcileRead,
    ReportStatus,
    ReviewAction,
    ReviewRouting,
    Site,
    StaffMember,
    Tier1Decision,
    Tier2Decision,
    Tier2Status,
    WorkItem,
    WorkItemSync,
    now_utc,
)
from app.domain.risk_classifier import AnalysisInput, analyze, pending_analysis
from app.domain.state_machine import ReviewState, WorkItemStatus, can_review_transition
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.approval_ticket_service import ApprovalTicketService
from app.services.assignment_service import COMPLETED_FINAL_STATUS, AssignmentService
from app.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)

ACTIVE_REVIEW_STATES = (
    ReviewState.SUBMITTED,
    ReviewState.TIER1_APPROVED,
    ReviewState.RESCHEDULE_REQUESTED,
)
RESCHEDULE_FLAGS = {AnalysisFlag.YELLOW, AnalysisFlag.RED}
DEFAULT_RESCHEDULE_REMARKS = "Reschedule requested by tier-1 reviewer based on automatic analysis."


class InspectionReviewService:
    def __init__(
        self,
        *,
        assignments: AssignmentService | None = None,
        tickets: ApprovalTicketService | None = None,
        notifications: NotificationService | None = None,
        renderer: DocumentRenderer | None = None,
    ) -> None:
        self._notifications = notifications or NotificationService()
        self._assignments = assignments or AssignmentService()
        self._tickets = tickets or ApprovalTicketService(self._notifications)
        self._renderer = renderer or HtmlReportRenderer()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_report(self, session: Session, tenant_id: str, report_id: str) -> InspectionReport:
        report = session.exec(
            select(InspectionReport)
            .where(InspectionReport.tenant_id == tenant_id)
            .where(InspectionReport.id == report_id)
        ).first()
        if report is None:
            raise NotFoundError("inspection report not found")
        return report

    def _get_scoped_work_item(self, session: Session, tenant_id: str, work_item_id: str) -> WorkItem:
        item = session.exec(
            select(WorkItem)
            .where(WorkItem.tenant_id == tenant_id)
            .where(WorkItem.id == work_item_id)
        ).first()
        if item is None:
            raise NotFoundError("work item not found")
        return item

    def _get_scoped_site(self, session: Session, tenant_id: str, site_id: str) -> Site:
        site = session.exec(select(Site).where(Site.tenant_id == tenant_id).where(Site.id == site_id)).first()
        if site is None:
            raise NotFoundError("site not found")
        return site

    def _find_active_report(self, session: Session, tenant_id: str, work_item_id: str) -> str | None:
        return session.exec(
            select(InspectionReport.id)
            .where(InspectionReport.tenant_id == tenant_id)
            .where(InspectionReport.work_item_id == work_item_id)
            .where(col(InspectionReport.review_state).in_(ACTIVE_REVIEW_STATES))
        ).first()

    def _transition(
        self,
        session: Session,
        report: InspectionReport,
        target: ReviewState,
        values: dict[str, Any],
    ) -> InspectionReport:
        expected = report.review_state
        if not can_review_transition(expected, target):
            raise PreconditionError(f"inspection report is {expected}; cannot move to {target}")
        result = session.connection().execute(
            update(InspectionReport)
            .where(col(InspectionReport.id) == report.id)
            .where(col(InspectionReport.review_state) == expected)
            .values(review_state=target, updated_at=now_utc(), **values)
        )
        if result.rowcount == 0:
            session.rollback()
            raise ConflictError("inspection report was changed by another reviewer; refetch and retry")
        session.commit()
        session.refresh(report)
        logger.info("inspection_review_transition", report_id=report.id, source=expected, target=target)
        return report

    @staticmethod
    def _site_snapshot(site: Site) -> dict[str, Any]:
        return {
            "id": site.id,
            "name": site.name,
            "address": site.address,
            "category": site.category,
            "site_type": site.site_type,
            "level": site.level,
            "principal_name": site.principal_name,
            "principal_email": site.principal_email,
            "principal_phone": site.principal_phone,
        }

    @staticmethod
    def _site_location(site: Site) -> GeoPoint | None:
        if site.latitude is None and site.longitude is None:
            return None
        return GeoPoint(latitude=site.latitude, longitude=site.longitude)

    def _validate_responses(
        self,
        session: Session,
        tenant_id: str,
        category: str,
        payload: InspectionSubmit,
    ) -> None:
        questions = session.exec(
            select(QuestionDefinition)
            .where(QuestionDefinition.tenant_id == tenant_id)
            .where(QuestionDefinition.category == category)
        ).all()
        if not questions:
            return
        registered = {question.key: question for question in questions}
        for key, answer in payload.responses.items():
            question = registered.get(key)
            if question is None:
                raise ValidationError(f"response for unregistered question: {key}")
            if answer.kind != question.answer_type:
                raise ValidationError(f"response for {key} must be {question.answer_type}, got {answer.kind}")

    def _run_analysis(self, data: AnalysisInput) -> AutomaticAnalysis:
        try:
            return analyze(data)
        except Exception as exc:
            logger.error("automatic_analysis_failed", exc_info=exc)
            return pending_analysis(data.submitted_at, type(exc).__name__)

    def submit(self, tenant_id: str, payload: InspectionSubmit, submitter: CallerIdentity) -> InspectionReport:
        signature_ref = payload.signature_ref.strip()
        if not signature_ref:
            raise ValidationError("signature reference is required")

        with self._session() as session:
            work_item = self._get_scoped_work_item(session, tenant_id, payload.work_item_id)
            if work_item.status == WorkItemStatus.COMPLETED:
                raise PreconditionError(f"work item is {work_item.status}")
            active = self._find_active_report(session, tenant_id, work_item.id)
            if active is not None:
                raise PreconditionError(f"work item already has a report under review: {active}")
            if not self._tickets.is_approved(session, tenant_id, work_item.id, work_item.site_id):
                raise PreconditionError("third-party approval is still pending for this work item")
            site = self._get_scoped_site(session, tenant_id, work_item.site_id)
            category = submitter.category or work_item.category
            self._validate_responses(session, tenant_id, category, payload)

            submitted_at = now_utc()
            site_location = self._site_location(site)
            analysis = self._run_analysis(
                AnalysisInput(
                    submitted_at=submitted_at,
                    inspection_location=payload.inspection_location,
                    site_location=site_location,
                    responses=dict(payload.responses),
                    strengths=payload.strengths,
                    improvements=payload.improvements,
                    recommendations=payload.recommendations,
                    inspection_date=payload.inspection_date,
                )
            )
            report = InspectionReport(
                tenant_id=tenant_id,
                work_item_id=work_item.id,
                site_id=site.id,
                site_snapshot=self._site_snapshot(site),
                submitter_id=submitter.id,
                submitter_name=submitter.name,
                submitter_role=submitter.role,
                category=category,
                inspection_date=payload.inspection_date,
                responses={key: value.model_dump(mode="json") for key, value in payload.responses.items()},
                photos={key: value.model_dump(mode="json") for key, value in payload.photos.items()},
                inspection_location=(
                    payload.inspection_location.model_dump(mode="json") if payload.inspection_location else None
                ),
                site_location=site_location.model_dump(mode="json") if site_location else None,
                location_verified=analysis.flag == AnalysisFlag.GREEN,
                third_party_approved=True,
                strengths=payload.strengths,
                improvements=payload.improvements,
                recommendations=payload.recommendations,
                remarks=payload.remarks,
                signature_ref=signature_ref,
                signature_at=payload.signature_at or submitted_at,
                analysis=analysis.model_dump(mode="json"),
                analysis_flag=analysis.flag,
                review_state=ReviewState.SUBMITTED,
                status=ReportStatus.SUBMITTED,
                routing=ReviewRouting.TIER1,
                submitted_at=submitted_at,
                updated_at=submitted_at,
            )
            session.add(report)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                # A concurrent submit won the partial unique index.
                raise PreconditionError("work item already has a report under review") from exc
            session.refresh(report)

        logger.info(
            "inspection_submitted",
            report_id=report.id,
            work_item_id=report.work_item_id,
            flag=report.analysis_flag,
        )
        event_bus.publish_dict(
            "inspection.submitted",
            tenant_id,
            {"report_id": report.id, "work_item_id": report.work_item_id, "flag": report.analysis_flag},
            actor_id=submitter.id,
        )
        return report

    def list_reports(
        self,
        tenant_id: str,
        *,
        submitter_id: str | None = None,
        category: str | None = None,
        site_id: str | None = None,
        work_item_id: str | None = None,
        routing: ReviewRouting | None = None,
        review_state: ReviewState | None = None,
        flag: AnalysisFlag | None = None,
    ) -> list[InspectionReport]:
        with self._session() as session:
            statement = select(InspectionReport).where(InspectionReport.tenant_id == tenant_id)
            if submitter_id is not None:
                statement = statement.where(InspectionReport.submitter_id == submitter_id)
            if category is not None:
                statement = statement.where(InspectionReport.category == category)
            if site_id is not None:
                statement = statement.where(InspectionReport.site_id == site_id)
            if work_item_id is not None:
                statement = statement.where(InspectionReport.work_item_id == work_item_id)
            if routing is not None:
                statement = statement.where(InspectionReport.routing == routing)
            if review_state is not None:
                statement = statement.where(InspectionReport.review_state == review_state)
            if flag is not None:
                statement = statement.where(InspectionReport.analysis_flag == flag)
            statement = statement.order_by(col(InspectionReport.submitted_at).desc())
            return list(session.exec(statement).all())

    def get_report(self, tenant_id: str, report_id: str) -> InspectionReport:
        with self._session() as session:
            return self._get_scoped_report(session, tenant_id, report_id)

    def decide(
        self,
        tenant_id: str,
        report_id: str,
        payload: InspectionDecisionRequest,
        reviewer: CallerIdentity,
    ) -> InspectionReport:
        if payload.action == ReviewAction.TIER1_DECISION:
            if payload.tier1_decision is None:
                raise ValidationError("tier1_decision is required")
            return self.tier1_decide(
                tenant_id,
                report_id,
                payload.tier1_decision,
                reviewer,
                payload.signature_ref,
                remarks=payload.remarks,
            )
        if payload.action == ReviewAction.RESCHEDULE_REQUEST:
            return self.request_reschedule(tenant_id, report_id, reviewer, payload.remarks)
        if payload.tier2_decision is None:
            raise ValidationError("tier2_decision is required")
        return self.tier2_decide(tenant_id, report_id, payload.tier2_decision, reviewer, remarks=payload.remarks)

    def tier1_decide(
        self,
        tenant_id: str,
        report_id: str,
        decision: Tier1Decision,
        signer: CallerIdentity,
        signature_ref: str | None,
        *,
        remarks: str | None = None,
    ) -> InspectionReport:
        if decision == Tier1Decision.NONE:
            raise ValidationError("tier-1 decision must be approved or rejected")
        if signature_ref is None or not signature_ref.strip():
            raise ValidationError("tier-1 decision requires a signature reference")

        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            if report.tier1_decision != Tier1Decision.NONE:
                raise PreconditionError(f"tier-1 decision already recorded: {report.tier1_decision}")
            if report.review_state != ReviewState.SUBMITTED:
                raise PreconditionError(f"inspection report is {report.review_state}; tier-1 decision not allowed")
            approved = decision == Tier1Decision.APPROVED
            values: dict[str, Any] = {
                "tier1_decision": decision,
                "tier1_signer_id": signer.id,
                "tier1_signer_name": signer.name,
                "tier1_signature_ref": signature_ref.strip(),
                "tier1_decided_at": now_utc(),
                "routing": ReviewRouting.TIER2 if approved else ReviewRouting.SUBMITTER,
            }
            if remarks is not None:
                values["remarks"] = remarks
            target = ReviewState.TIER1_APPROVED if approved else ReviewState.TIER1_REJECTED
            report = self._transition(session, report, target, values)

        event_bus.publish_dict(
            "inspection.tier1_decided",
            tenant_id,
            {"report_id": report.id, "decision": decision, "routing": report.routing},
            actor_id=signer.id,
        )
        return report

    def request_reschedule(
        self,
        tenant_id: str,
        report_id: str,
        reviewer: CallerIdentity,
        remarks: str | None = None,
    ) -> InspectionReport:
        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            if report.review_state != ReviewState.SUBMITTED:
                raise PreconditionError(f"inspection report is {report.review_state}; reschedule not allowed")
            if report.analysis_flag not in RESCHEDULE_FLAGS:
                raise PreconditionError(
                    f"reschedule requires a Yellow or Red automatic flag; flag is {report.analysis_flag}"
                )
            report = self._transition(
                session,
                report,
                ReviewState.RESCHEDULE_REQUESTED,
                {"routing": ReviewRouting.ADMIN, "remarks": remarks or DEFAULT_RESCHEDULE_REMARKS},
            )

        event_bus.publish_dict(
            "inspection.reschedule_requested",
            tenant_id,
            {"report_id": report.id, "work_item_id": report.work_item_id, "flag": report.analysis_flag},
            actor_id=reviewer.id,
        )
        return report

    def tier2_decide(
        self,
        tenant_id: str,
        report_id: str,
        decision: Tier2Decision,
        reviewer: CallerIdentity,
        *,
        remarks: str | None = None,
    ) -> InspectionReport:
        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            if report.tier2_status == Tier2Status.REVIEWED:
                raise PreconditionError(f"tier-2 decision already recorded: {report.tier2_decision}")
            if (
                report.review_state != ReviewState.TIER1_APPROVED
                or report.routing != ReviewRouting.TIER2
                or report.tier1_decision != Tier1Decision.APPROVED
            ):
                raise PreconditionError(
                    f"tier-2 decision requires tier-1 approval; report is {report.review_state}"
                    f" (tier-1 decision: {report.tier1_decision})"
                )
            values: dict[str, Any] = {
                "status": ReportStatus.REVIEWED,
                "routing": ReviewRouting.CLOSED,
                "tier2_status": Tier2Status.REVIEWED,
                "tier2_decision": decision,
                "tier2_reviewer_id": reviewer.id,
                "tier2_reviewer_name": reviewer.name,
                "tier2_decided_at": now_utc(),
                "final_status": COMPLETED_FINAL_STATUS,
                "work_item_sync": WorkItemSync.PENDING,
            }
            if remarks is not None:
                values["remarks"] = remarks
            report = self._transition(session, report, ReviewState.COMPLETED, values)

        self._sync_work_item(report)
        event_bus.publish_dict(
            "inspection.completed",
            tenant_id,
            {"report_id": report.id, "work_item_id": report.work_item_id, "decision": decision},
            actor_id=reviewer.id,
        )
        self._notify_completion(report)
        return self.get_report(tenant_id, report.id)

    def admin_resolve(
        self,
        tenant_id: str,
        report_id: str,
        payload: AdminResolveRequest,
        admin: CallerIdentity,
    ) -> InspectionReport:
        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            if payload.action == AdminResolution.REOPEN:
                values: dict[str, Any] = {"routing": ReviewRouting.TIER1}
                target = ReviewState.SUBMITTED
            else:
                values = {
                    "status": ReportStatus.REVIEWED,
                    "routing": ReviewRouting.CLOSED,
                    "final_status": COMPLETED_FINAL_STATUS,
                    "work_item_sync": WorkItemSync.PENDING,
                }
                target = ReviewState.CLOSED_BY_ADMIN
            if payload.remarks is not None:
                values["remarks"] = payload.remarks
            report = self._transition(session, report, target, values)

        logger.info("inspection_admin_resolved", report_id=report.id, action=payload.action, admin_id=admin.id)
        if target == ReviewState.CLOSED_BY_ADMIN:
            self._sync_work_item(report)
            event_bus.publish_dict(
                "inspection.completed",
                tenant_id,
                {"report_id": report.id, "work_item_id": report.work_item_id, "decision": "closed_by_admin"},
                actor_id=admin.id,
            )
            return self.get_report(tenant_id, report.id)
        event_bus.publish_dict(
            "inspection.reopened",
            tenant_id,
            {"report_id": report.id, "work_item_id": report.work_item_id},
            actor_id=admin.id,
        )
        return report

    def _sync_work_item(self, report: InspectionReport) -> WorkItemSync:
        try:
            self._assignments.mark_completed(
                report.tenant_id,
                report.work_item_id,
                completed_by=report.submitter_id,
                completed_at=report.submitted_at,
            )
            if report.tier2_decision is not None:
                self._assignments.mark_second_tier_reviewed(
                    report.tenant_id,
                    report.work_item_id,
                    decision=report.tier2_decision,
                    reviewed_by=report.tier2_reviewer_id or "",
                    reviewed_at=report.tier2_decided_at or now_utc(),
                )
            outcome = WorkItemSync.SYNCED
        except (WorkflowError, SQLAlchemyError) as exc:
            logger.error(
                "work_item_sync_failed",
                report_id=report.id,
                work_item_id=report.work_item_id,
                exc_info=exc,
            )
            outcome = WorkItemSync.FAILED

        with self._session() as session:
            session.connection().execute(
                update(InspectionReport)
                .where(col(InspectionReport.id) == report.id)
                .values(work_item_sync=outcome, updated_at=now_utc())
            )
            session.commit()
        return outcome

    def reconcile_work_items(self, tenant_id: str) -> ReconcileRead:
        with self._session() as session:
            reports = list(
                session.exec(
                    select(InspectionReport)
                    .where(InspectionReport.tenant_id == tenant_id)
                    .where(InspectionReport.final_status == COMPLETED_FINAL_STATUS)
                    .where(col(InspectionReport.work_item_sync).in_([WorkItemSync.PENDING, WorkItemSync.FAILED]))
                ).all()
            )
        synced = 0
        failed = 0
        for report in reports:
            if self._sync_work_item(report) == WorkItemSync.SYNCED:
                synced += 1
            else:
                failed += 1
        logger.info("work_item_reconcile_finished", scanned=len(reports), synced=synced, failed=failed)
        return ReconcileRead(scanned=len(reports), synced=synced, failed=failed)

    def _notify_completion(self, report: InspectionReport) -> None:
        with self._session() as session:
            submitter = session.exec(
                select(StaffMember)
                .where(StaffMember.tenant_id == report.tenant_id)
                .where(StaffMember.id == report.submitter_id)
            ).first()
        if submitter is None or not submitter.email:
            logger.info("completion_notice_skipped", report_id=report.id, submitter_id=report.submitter_id)
            return
        site_name = report.site_snapshot.get("name") or report.site_id
        decision = report.tier2_decision.value if report.tier2_decision else "reviewed"
        text_body = (
            f"Dear {submitter.name},\n\n"
            f"Your inspection report for {site_name} has been reviewed.\n"
            f"Decision: {decision}\n"
            f"Final status: {report.final_status}\n"
        )
        html_body = (
            f"<p>Dear {escape(submitter.name)},</p>"
            f"<p>Your inspection report for <strong>{escape(str(site_name))}</strong> has been reviewed.</p>"
            f"<p>Decision: {escape(decision)}<br>Final status: {escape(report.final_status or '')}</p>"
        )
        self._notifications.notify(
            report.tenant_id,
            NotificationMessage(
                recipient=submitter.email,
                recipient_name=submitter.name,
                subject=f"Inspection report reviewed: {site_name}",
                html_body=html_body,
                text_body=text_body,
            ),
            related_type="inspection_report",
            related_id=report.id,
        )

    def render_report(self, tenant_id: str, report_id: str) -> str | None:
        """Render the report artifact; used as a background task after completion."""
        try:
            report = self.get_report(tenant_id, report_id)
            path = self._renderer.render(report)
        except Exception:
            logger.exception("report_render_failed", report_id=report_id)
            return None
        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            report.artifact_path = str(path)
            session.add(report)
            session.commit()
        logger.info("report_rendered", report_id=report_id, artifact_path=str(path))
        return str(path)

    def get_report_artifact(self, tenant_id: str, report_id: str) -> Path:
        report = self.get_report(tenant_id, report_id)
        if report.artifact_path is None:
            raise NotFoundError("report artifact not rendered yet")
        path = Path(report.artifact_path)
        if not path.is_file():
            raise NotFoundError("report artifact not found")
        return path
