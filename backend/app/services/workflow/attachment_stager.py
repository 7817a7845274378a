"""
Attachment Stager

Decides which approval stage a new upload belongs to, given the report's
current status and the uploader's role. The stage recorded on an
attachment is never rewritten afterwards.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from ...models.db_models import APPROVAL_STAGE_ORDER, ApprovalStage, ReportStatus, UserRole
from ...models.workflow import AttachmentSnapshot, Identity, ReportSnapshot
from .state_machine import SENIOR_APPROVER_LABEL, status_label


@dataclass(frozen=True)
class StageDecision:
    allowed: bool
    stage: Optional[ApprovalStage] = None
    reason: str = ""


def creation_stage() -> ApprovalStage:
    """Stage for files supplied by the author when the report is created."""
    return ApprovalStage.INITIAL


def resolve_upload_stage(report: ReportSnapshot, actor: Identity) -> StageDecision:
    """
    Map (report status, actor role) to the stage an approval-time upload
    is recorded under.
    """
    if actor.role == UserRole.LINE_MANAGER:
        if report.department != actor.department:
            return StageDecision(
                allowed=False,
                reason=(
                    f"You can only upload documents for reports from your department "
                    f"(report department: {report.department.value}, "
                    f"your department: {actor.department.value})"
                ),
            )
        if report.status != ReportStatus.SUBMITTED:
            return StageDecision(
                allowed=False,
                reason=(
                    f"Line managers can only upload documents while a report is submitted "
                    f"(current status: {status_label(report.status)})"
                ),
            )
        return StageDecision(allowed=True, stage=ApprovalStage.MANAGER_REVIEW)

    if actor.role == UserRole.SENIOR_APPROVER:
        if report.status == ReportStatus.MANAGER_APPROVED:
            return StageDecision(allowed=True, stage=ApprovalStage.SENIOR_REVIEW)
        if report.status == ReportStatus.SUBMITTED and report.creator_role == UserRole.LINE_MANAGER:
            return StageDecision(allowed=True, stage=ApprovalStage.SENIOR_REVIEW)
        return StageDecision(
            allowed=False,
            reason=(
                f"{SENIOR_APPROVER_LABEL} can only upload documents for reports awaiting final approval "
                f"(current status: {status_label(report.status)})"
            ),
        )

    return StageDecision(
        allowed=False,
        reason=(
            f"Approval documents can only be uploaded by approvers "
            f"(current status: {status_label(report.status)})"
        ),
    )


def order_attachments(
    attachments: Iterable[AttachmentSnapshot],
    stage: Optional[ApprovalStage] = None,
) -> List[AttachmentSnapshot]:
    """Active attachments, optionally narrowed to one stage, ordered by stage then upload time."""
    selected = [
        a for a in attachments
        if a.is_active and (stage is None or a.approval_stage == stage)
    ]
    return sorted(
        selected,
        key=lambda a: (APPROVAL_STAGE_ORDER.get(a.approval_stage, 99), a.uploaded_at or datetime.min),
    )
