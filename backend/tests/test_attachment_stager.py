"""
Tests for the attachment stager.

Maps (report status, uploader role) to the approval stage of a new upload
and orders stored attachments for stage-filtered retrieval.
"""
from datetime import datetime
from uuid import uuid4

import pytest

from app.models.db_models import ApprovalStage, Department, ReportStatus, UserRole
from app.models.workflow import AttachmentSnapshot
from app.services.workflow.attachment_stager import (
    creation_stage,
    order_attachments,
    resolve_upload_stage,
)


def _attachment(stage, uploaded_at, is_active=True):
    return AttachmentSnapshot(
        attachment_id=str(uuid4()),
        report_id="r1",
        original_filename="evidence.pdf",
        stored_filename="x.pdf",
        file_path="/tmp/x.pdf",
        content_type="application/pdf",
        file_size=10,
        uploaded_by="u1",
        uploaded_by_name="Uploader",
        uploaded_by_role=UserRole.LINE_MANAGER,
        approval_stage=stage,
        uploaded_at=uploaded_at,
        is_active=is_active,
    )


class TestResolveUploadStage:
    """Tests for resolve_upload_stage."""

    def test_creation_is_initial(self):
        assert creation_stage() == ApprovalStage.INITIAL

    def test_line_manager_on_submitted_same_department(self, identity, snapshot):
        decision = resolve_upload_stage(
            snapshot(status=ReportStatus.SUBMITTED, department=Department.QS),
            identity(UserRole.LINE_MANAGER, Department.QS),
        )

        assert decision.allowed
        assert decision.stage == ApprovalStage.MANAGER_REVIEW

    def test_line_manager_department_mismatch_names_both(self, identity, snapshot):
        decision = resolve_upload_stage(
            snapshot(status=ReportStatus.SUBMITTED, department=Department.QS),
            identity(UserRole.LINE_MANAGER, Department.CONTRACTS_MANAGEMENT),
        )

        assert not decision.allowed
        assert "QS" in decision.reason
        assert "ContractsManagement" in decision.reason

    def test_line_manager_after_approval(self, identity, snapshot):
        decision = resolve_upload_stage(
            snapshot(status=ReportStatus.MANAGER_APPROVED),
            identity(UserRole.LINE_MANAGER),
        )

        assert not decision.allowed
        assert "ManagerApproved" in decision.reason

    def test_senior_on_manager_approved(self, identity, snapshot):
        decision = resolve_upload_stage(
            snapshot(status=ReportStatus.MANAGER_APPROVED),
            identity(UserRole.SENIOR_APPROVER),
        )

        assert decision.allowed
        assert decision.stage == ApprovalStage.SENIOR_REVIEW

    def test_senior_on_manager_authored_submitted(self, identity, snapshot):
        decision = resolve_upload_stage(
            snapshot(status=ReportStatus.SUBMITTED, creator_role=UserRole.LINE_MANAGER),
            identity(UserRole.SENIOR_APPROVER),
        )

        assert decision.allowed
        assert decision.stage == ApprovalStage.SENIOR_REVIEW

    def test_senior_on_staff_submitted(self, identity, snapshot):
        decision = resolve_upload_stage(
            snapshot(status=ReportStatus.SUBMITTED, creator_role=UserRole.GENERAL_STAFF),
            identity(UserRole.SENIOR_APPROVER),
        )

        assert not decision.allowed
        assert "Submitted" in decision.reason

    @pytest.mark.parametrize("status", list(ReportStatus))
    def test_general_staff_never_uploads_approval_documents(self, identity, snapshot, status):
        staff = identity(UserRole.GENERAL_STAFF)
        decision = resolve_upload_stage(snapshot(status=status, created_by=staff.user_id), staff)

        assert not decision.allowed
        assert decision.stage is None


class TestOrderAttachments:
    """Tests for order_attachments."""

    def test_orders_by_stage_then_time(self):
        senior = _attachment(ApprovalStage.SENIOR_REVIEW, datetime(2025, 1, 1))
        manager_late = _attachment(ApprovalStage.MANAGER_REVIEW, datetime(2025, 3, 1))
        manager_early = _attachment(ApprovalStage.MANAGER_REVIEW, datetime(2025, 2, 1))
        initial = _attachment(ApprovalStage.INITIAL, datetime(2025, 4, 1))

        ordered = order_attachments([senior, manager_late, manager_early, initial])

        assert ordered == [initial, manager_early, manager_late, senior]

    def test_stage_filter_and_inactive_excluded(self):
        kept = _attachment(ApprovalStage.SENIOR_REVIEW, datetime(2025, 1, 1))
        inactive = _attachment(ApprovalStage.SENIOR_REVIEW, datetime(2025, 1, 2), is_active=False)
        other = _attachment(ApprovalStage.MANAGER_REVIEW, datetime(2025, 1, 3))

        assert order_attachments([kept, inactive, other], ApprovalStage.SENIOR_REVIEW) == [kept]
        assert order_attachments([kept, inactive, other], ApprovalStage.INITIAL) == []

    def test_missing_upload_time_sorts_first_within_stage(self):
        dated = _attachment(ApprovalStage.INITIAL, datetime(2025, 1, 1))
        undated = _attachment(ApprovalStage.INITIAL, None)

        assert order_attachments([dated, undated]) == [undated, dated]
