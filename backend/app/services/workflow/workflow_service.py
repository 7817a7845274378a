"""
Report Workflow Service

Orchestrates one workflow request: resolve the actor, load report state
through the store, validate with the pure rule modules, persist, audit and
commit. Notification requests are returned to the caller, never sent here.

Validation, not-found and access problems come back as typed results.
Store faults roll back and propagate.
"""
import logging
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import ApprovalStage, AuditAction, ReportStatus, UserRole
from ...models.workflow import (
    AttachmentListResult,
    AttachmentResult,
    AttachmentUploadResult,
    FailureKind,
    Identity,
    ReportDetailResult,
    ReportDraft,
    ReportFilter,
    ReportListResult,
    ReportSnapshot,
    TransitionResult,
    UploadedFile,
)
from . import metrics as metric_names
from .attachment_stager import creation_stage, order_attachments, resolve_upload_stage
from .audit_sink import AuditSink, SqlAlchemyAuditSink
from .file_storage import LocalFileStorage, StoredFile, validate_upload
from .identity import IdentityProvider, UserTableIdentityProvider
from .metrics import InMemoryWorkflowMetrics, WorkflowMetrics
from .notifications import build_notification
from .report_store import ReportStore, SqlAlchemyReportStore, StaleReportError
from .state_machine import (
    TransitionDecision,
    evaluate_approve,
    evaluate_delete,
    evaluate_reject,
    evaluate_submit,
    status_label,
    validate_comments,
)
from .visibility import can_view_report, filter_visible_reports

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500
MAX_REPORT_TYPE_LENGTH = 100
MAX_PAGE_SIZE = 100
NUMBERING_ATTEMPTS = 3


class ReportWorkflowService:
    """
    Request-scoped workflow engine.

    Holds no state of its own beyond its collaborators; build one per request.
    """

    def __init__(
        self,
        store: ReportStore,
        identities: IdentityProvider,
        audit: AuditSink,
        file_storage: Optional[LocalFileStorage] = None,
        metrics: Optional[WorkflowMetrics] = None,
    ):
        self.store = store
        self.identities = identities
        self.audit = audit
        self.file_storage = file_storage or LocalFileStorage()
        self.metrics = metrics if metrics is not None else InMemoryWorkflowMetrics()

    @classmethod
    def for_session(
        cls,
        db: Session,
        file_storage: Optional[LocalFileStorage] = None,
        metrics: Optional[WorkflowMetrics] = None,
    ) -> "ReportWorkflowService":
        """Wire the SQLAlchemy-backed collaborators around one session."""
        return cls(
            store=SqlAlchemyReportStore(db),
            identities=UserTableIdentityProvider(db),
            audit=SqlAlchemyAuditSink(db),
            file_storage=file_storage,
            metrics=metrics,
        )

    # =========================================================================
    # RESULT HELPERS
    # =========================================================================

    def _fail(self, result_cls, kind: FailureKind, message: str, **fields):
        if kind == FailureKind.ACCESS_DENIED:
            logger.warning(message)
            self.metrics.increment(metric_names.ACCESS_DENIED)
        else:
            logger.info(message)
        return result_cls(success=False, message=message, failure=kind, **fields)

    def _resolve(self, user_id: str) -> Optional[Identity]:
        return self.identities.resolve(user_id)

    def _user_not_found(self, result_cls, user_id: str):
        return self._fail(result_cls, FailureKind.NOT_FOUND, f"User {user_id} not found")

    def _report_not_found(self, result_cls, report_id: str):
        return self._fail(result_cls, FailureKind.NOT_FOUND, f"Report {report_id} not found")

    def _load_visible(self, report_id: str, requester: Identity, result_cls):
        """Load a report with details, or return the failure result to hand back."""
        report = self.store.get_with_details(report_id)
        if report is None:
            return None, self._report_not_found(result_cls, report_id)
        if not can_view_report(report, requester):
            return None, self._fail(
                result_cls,
                FailureKind.ACCESS_DENIED,
                f"User {requester.user_id} may not access report {report_id}",
            )
        return report, None

    def _save_files(self, report_id: str, files: Sequence[UploadedFile], written: List[StoredFile]) -> None:
        for upload in files:
            written.append(self.file_storage.save(report_id, upload))

    def _discard_files(self, written: Sequence[StoredFile]) -> None:
        for stored in written:
            self.file_storage.remove(stored.file_path)

    @staticmethod
    def _validate_files(files: Sequence[UploadedFile]) -> Optional[str]:
        for upload in files:
            error = validate_upload(upload)
            if error:
                return error
        return None

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_report(
        self,
        data: ReportDraft,
        actor_id: str,
        files: Optional[Sequence[UploadedFile]] = None,
    ) -> ReportDetailResult:
        """
        Create a Draft report in the author's department. Files supplied
        with the draft are stored under the Initial stage.
        """
        files = list(files or [])
        actor = self._resolve(actor_id)
        if actor is None:
            return self._user_not_found(ReportDetailResult, actor_id)

        error = self._validate_draft(data) or self._validate_files(files)
        if error:
            return self._fail(ReportDetailResult, FailureKind.VALIDATION, error)

        written: List[StoredFile] = []
        try:
            report = self._create_numbered(data, actor)
            self._save_files(report.report_id, files, written)
            for stored in written:
                self.store.add_attachment(report.report_id, stored, actor, creation_stage(), None)
            self.audit.log_action(
                AuditAction.CREATED,
                actor.user_id,
                report.report_id,
                f"Report {report.report_number} created with {len(written)} attachment(s)",
            )
            self.store.commit()
        except (SQLAlchemyError, OSError) as e:
            self.store.rollback()
            self._discard_files(written)
            logger.error(f"Failed to create report for user {actor_id}: {e}")
            raise

        logger.info(f"Report {report.report_number} created by {actor.user_id}")
        return ReportDetailResult(
            message="Report created",
            report=self.store.get_with_details(report.report_id),
        )

    def _create_numbered(self, data: ReportDraft, actor: Identity) -> ReportSnapshot:
        """
        Insert the draft with a freshly allocated number. Two creates racing
        for a department's first counter row collide on insert; the loser
        starts over and locks the winner's row.
        """
        for attempt in range(1, NUMBERING_ATTEMPTS + 1):
            try:
                return self.store.create(data, actor)
            except IntegrityError:
                self.store.rollback()
                if attempt == NUMBERING_ATTEMPTS:
                    raise
                logger.warning(
                    f"Report number collision for user {actor.user_id}, "
                    f"retrying ({attempt}/{NUMBERING_ATTEMPTS})"
                )

    @staticmethod
    def _validate_draft(data: ReportDraft) -> Optional[str]:
        if not data.title or not data.title.strip():
            return "Title is required"
        if len(data.title) > MAX_TITLE_LENGTH:
            return f"Title cannot exceed {MAX_TITLE_LENGTH} characters"
        if not data.content or not data.content.strip():
            return "Content is required"
        if data.description and len(data.description) > MAX_DESCRIPTION_LENGTH:
            return f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
        if data.report_type and len(data.report_type) > MAX_REPORT_TYPE_LENGTH:
            return f"Report type cannot exceed {MAX_REPORT_TYPE_LENGTH} characters"
        return None

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def submit_report(self, report_id: str, actor_id: str, comments: Optional[str] = None) -> TransitionResult:
        return self._transition(
            "submit", report_id, actor_id, evaluate_submit, AuditAction.SUBMITTED, comments=comments,
        )

    def approve_report(self, report_id: str, actor_id: str, comments: Optional[str] = None) -> TransitionResult:
        return self._transition(
            "approve", report_id, actor_id, evaluate_approve, AuditAction.APPROVED, comments=comments,
        )

    def reject_report(self, report_id: str, actor_id: str, reason: Optional[str]) -> TransitionResult:
        return self._transition(
            "reject",
            report_id,
            actor_id,
            lambda report, actor: evaluate_reject(report, actor, reason),
            AuditAction.REJECTED,
            reason=reason,
        )

    def delete_report(self, report_id: str, actor_id: str) -> TransitionResult:
        return self._transition("delete", report_id, actor_id, evaluate_delete, AuditAction.DELETED)

    def _transition(
        self,
        operation: str,
        report_id: str,
        actor_id: str,
        evaluate: Callable[[ReportSnapshot, Identity], TransitionDecision],
        audit_action: AuditAction,
        comments: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        Read-validate-write for one report. The write is conditional on the
        status and version that were validated, so of two racing requests
        at most one succeeds.
        """
        actor = self._resolve(actor_id)
        if actor is None:
            return self._user_not_found(TransitionResult, actor_id)

        comment_error = validate_comments(comments)
        if comment_error:
            return self._fail(TransitionResult, FailureKind.VALIDATION, comment_error, report_id=report_id)

        removed_files: List[str] = []
        try:
            report = self.store.get_for_update(report_id)
            if report is None:
                self.store.rollback()
                return self._report_not_found(TransitionResult, report_id)

            decision = evaluate(report, actor)
            if not decision.allowed:
                self.store.rollback()
                self.metrics.increment(metric_names.TRANSITION_REJECTED, operation=operation)
                return self._fail(
                    TransitionResult,
                    FailureKind.VALIDATION,
                    decision.reason,
                    report_id=report_id,
                    previous_status=report.status,
                    new_status=report.status,
                )

            if operation == "delete":
                removed_files = self.store.delete(report)
            elif operation == "reject":
                self.store.reject(report, decision.to_status, actor.user_id, reason.strip())
            else:
                self.store.update_status(report, decision.to_status, actor.user_id)

            if decision.signature_type is not None:
                self.store.add_signature(report.report_id, actor.user_id, decision.signature_type, comments)

            self.audit.log_action(
                audit_action,
                actor.user_id,
                report.report_id,
                self._audit_details(report, decision, comments, reason),
            )
            self.store.commit()
        except StaleReportError:
            self.store.rollback()
            self.metrics.increment(metric_names.TRANSITION_CONFLICT, operation=operation)
            return self._stale_result(report)
        except SQLAlchemyError as e:
            self.store.rollback()
            logger.error(f"Store fault during {operation} of report {report_id}: {e}")
            raise

        for path in removed_files:
            self.file_storage.remove(path)

        self.metrics.increment(metric_names.TRANSITION_SUCCEEDED, operation=operation)
        new_status = decision.to_status
        logger.info(
            f"Report {report.report_id} {operation} by {actor.user_id}: "
            f"{report.status.value} -> {new_status.value if new_status else 'deleted'}"
        )

        notification = None
        if new_status is not None:
            # The change is committed; a failed recipient lookup only costs the notification
            try:
                notification = build_notification(report, new_status, actor, self.identities, reason=reason)
            except SQLAlchemyError as e:
                self.store.rollback()
                self.metrics.increment(metric_names.NOTIFICATION_FAILED, operation=operation)
                logger.error(f"Could not build notification for report {report.report_id}: {e}")

        return TransitionResult(
            message=decision.reason,
            report_id=report.report_id,
            previous_status=report.status,
            new_status=new_status,
            deleted=operation == "delete",
            notification=notification,
        )

    @staticmethod
    def _audit_details(
        report: ReportSnapshot,
        decision: TransitionDecision,
        comments: Optional[str],
        reason: Optional[str],
    ) -> str:
        parts = [decision.reason]
        if decision.to_status is not None:
            parts.append(f"{status_label(report.status)} -> {status_label(decision.to_status)}")
        if comments:
            parts.append(f"Comments: {comments}")
        if reason:
            parts.append(f"Reason: {reason.strip()}")
        return ". ".join(parts)

    def _stale_result(self, attempted: ReportSnapshot) -> TransitionResult:
        """The loser of a race learns the report's current status."""
        current = self.store.get(attempted.report_id)
        if current is None:
            return self._fail(
                TransitionResult,
                FailureKind.NOT_FOUND,
                f"Report {attempted.report_id} was deleted by another request",
                report_id=attempted.report_id,
                previous_status=attempted.status,
            )
        return self._fail(
            TransitionResult,
            FailureKind.VALIDATION,
            f"Report is no longer in {status_label(attempted.status)} status "
            f"(current status: {status_label(current.status)})",
            report_id=attempted.report_id,
            previous_status=attempted.status,
            new_status=current.status,
        )

    # =========================================================================
    # APPROVAL DOCUMENTS
    # =========================================================================

    def upload_approval_documents(
        self,
        report_id: str,
        actor_id: str,
        files: Sequence[UploadedFile],
        description: Optional[str] = None,
    ) -> AttachmentUploadResult:
        """
        Store documents against the approval stage the actor is acting in.
        Bytes are on disk before the metadata rows commit.
        """
        files = list(files or [])
        actor = self._resolve(actor_id)
        if actor is None:
            return self._user_not_found(AttachmentUploadResult, actor_id)
        if not files:
            return self._fail(AttachmentUploadResult, FailureKind.VALIDATION, "At least one file is required")
        if description and len(description) > MAX_DESCRIPTION_LENGTH:
            return self._fail(
                AttachmentUploadResult,
                FailureKind.VALIDATION,
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
            )
        error = self._validate_files(files)
        if error:
            return self._fail(AttachmentUploadResult, FailureKind.VALIDATION, error)

        written: List[StoredFile] = []
        try:
            report = self.store.get_for_update(report_id)
            if report is None:
                self.store.rollback()
                return self._report_not_found(AttachmentUploadResult, report_id)

            decision = resolve_upload_stage(report, actor)
            if not decision.allowed:
                self.store.rollback()
                return self._fail(AttachmentUploadResult, FailureKind.VALIDATION, decision.reason)

            # Holds the validated status until commit
            self.store.touch(report)
            self._save_files(report.report_id, files, written)
            attachments = [
                self.store.add_attachment(report.report_id, stored, actor, decision.stage, description)
                for stored in written
            ]
            self.audit.log_action(
                AuditAction.UPLOADED,
                actor.user_id,
                report.report_id,
                f"{len(attachments)} document(s) uploaded at stage {decision.stage.value}",
            )
            self.store.commit()
        except StaleReportError:
            self.store.rollback()
            self._discard_files(written)
            self.metrics.increment(metric_names.TRANSITION_CONFLICT, operation="upload")
            current = self.store.get(report_id)
            status_text = status_label(current.status) if current else "deleted"
            return self._fail(
                AttachmentUploadResult,
                FailureKind.VALIDATION,
                f"Report changed while uploading (current status: {status_text})",
            )
        except (SQLAlchemyError, OSError) as e:
            self.store.rollback()
            self._discard_files(written)
            logger.error(f"Failed to store approval documents for report {report_id}: {e}")
            raise

        self.metrics.increment(metric_names.ATTACHMENT_UPLOADED, stage=decision.stage.value)
        logger.info(f"{len(attachments)} document(s) uploaded to report {report_id} at {decision.stage.value}")
        return AttachmentUploadResult(
            message=f"{len(attachments)} document(s) uploaded",
            stage=decision.stage,
            attachments=attachments,
        )

    def list_attachments(
        self,
        report_id: str,
        requester_id: str,
        stage: Optional[ApprovalStage] = None,
    ) -> AttachmentListResult:
        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(AttachmentListResult, requester_id)

        report, failure = self._load_visible(report_id, requester, AttachmentListResult)
        if failure:
            return failure

        attachments = self.store.list_attachments(report.report_id, stage)
        return AttachmentListResult(attachments=order_attachments(attachments, stage))

    def get_attachment(self, report_id: str, attachment_id: str, requester_id: str) -> AttachmentResult:
        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(AttachmentResult, requester_id)

        report, failure = self._load_visible(report_id, requester, AttachmentResult)
        if failure:
            return failure

        attachment = self.store.get_attachment(report.report_id, attachment_id)
        if attachment is None:
            return self._fail(AttachmentResult, FailureKind.NOT_FOUND, f"Attachment {attachment_id} not found")
        if not self.file_storage.exists(attachment.file_path):
            logger.error(f"Attachment {attachment_id} points at missing file {attachment.file_path}")
            return self._fail(AttachmentResult, FailureKind.NOT_FOUND, "Attachment content is missing")

        self._record_read(AuditAction.DOWNLOADED, requester, report.report_id, attachment.original_filename)
        return AttachmentResult(attachment=attachment)

    # =========================================================================
    # READS
    # =========================================================================

    def _record_read(self, action: AuditAction, requester: Identity, report_id: str, details: str) -> None:
        try:
            self.audit.log_action(action, requester.user_id, report_id, details)
            self.store.commit()
        except SQLAlchemyError as e:
            self.store.rollback()
            logger.error(f"Failed to record {action.value} of report {report_id}: {e}")
            raise

    def get_report(self, report_id: str, requester_id: str) -> ReportDetailResult:
        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(ReportDetailResult, requester_id)

        report, failure = self._load_visible(report_id, requester, ReportDetailResult)
        if failure:
            return failure

        self._record_read(AuditAction.VIEWED, requester, report.report_id, "Report viewed")
        return ReportDetailResult(report=report)

    def list_reports(self, criteria: ReportFilter, requester_id: str) -> ReportListResult:
        """
        Run the caller's query, narrow it by visibility, then paginate.
        The visible set can only shrink the query result, never widen it.
        """
        if criteria.page < 1:
            return self._fail(ReportListResult, FailureKind.VALIDATION, "Page must be 1 or greater")
        if not 1 <= criteria.page_size <= MAX_PAGE_SIZE:
            return self._fail(
                ReportListResult,
                FailureKind.VALIDATION,
                f"Page size must be between 1 and {MAX_PAGE_SIZE}",
            )
        if criteria.from_date and criteria.to_date and criteria.from_date > criteria.to_date:
            return self._fail(ReportListResult, FailureKind.VALIDATION, "From date must not be after to date")

        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(ReportListResult, requester_id)

        visible = filter_visible_reports(self.store.search(criteria), requester)
        start = (criteria.page - 1) * criteria.page_size
        return ReportListResult(
            items=visible[start:start + criteria.page_size],
            total_count=len(visible),
            page=criteria.page,
            page_size=criteria.page_size,
        )

    def get_pending_approvals(self, requester_id: str) -> ReportListResult:
        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(ReportListResult, requester_id)

        pending = filter_visible_reports(self.store.list_pending_for_role(requester), requester)
        return ReportListResult(items=pending, total_count=len(pending), page=1, page_size=max(len(pending), 1))

    def get_my_reports(self, requester_id: str) -> ReportListResult:
        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(ReportListResult, requester_id)

        reports = self.store.list_by_user(requester.user_id)
        return ReportListResult(items=reports, total_count=len(reports), page=1, page_size=max(len(reports), 1))

    def get_team_reports(self, requester_id: str, status: Optional[ReportStatus] = None) -> ReportListResult:
        """A line manager's department reports, narrowed to what the manager may see."""
        requester = self._resolve(requester_id)
        if requester is None:
            return self._user_not_found(ReportListResult, requester_id)
        if requester.role != UserRole.LINE_MANAGER:
            return self._fail(
                ReportListResult,
                FailureKind.ACCESS_DENIED,
                f"User {requester.user_id} is not a line manager and has no team reports",
            )

        statuses = [status] if status is not None else None
        reports = filter_visible_reports(self.store.list_by_department(requester.department, statuses), requester)
        return ReportListResult(items=reports, total_count=len(reports), page=1, page_size=max(len(reports), 1))
