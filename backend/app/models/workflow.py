"""
Report Workflow - Domain Models

Detached dataclasses passed between the workflow service, the pure rule
modules (state machine, visibility filter, attachment stager) and the
routers. Nothing here holds a database session.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from .db_models import (
    ApprovalStage,
    Department,
    ReportPriority,
    ReportStatus,
    SignatureType,
    UserRole,
)


# =============================================================================
# IDENTITY
# =============================================================================

@dataclass(frozen=True)
class Identity:
    """Resolved caller: who they are, what role they hold, where they sit."""
    user_id: str
    role: UserRole
    department: Department
    display_name: str = ""
    email: Optional[str] = None


# =============================================================================
# REPORT SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class SignatureSnapshot:
    signature_id: str
    user_id: str
    signature_type: SignatureType
    signed_at: Optional[datetime] = None
    comments: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class AttachmentSnapshot:
    """Stored attachment. Stage reflects the workflow phase at upload time."""
    attachment_id: str
    report_id: str
    original_filename: str
    stored_filename: str
    file_path: str
    content_type: Optional[str]
    file_size: int
    uploaded_by: str
    uploaded_by_name: Optional[str]
    uploaded_by_role: UserRole
    approval_stage: ApprovalStage
    uploaded_at: Optional[datetime] = None
    description: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class ReportSnapshot:
    """
    Point-in-time view of a report, including the creator's role and the
    active signatures needed by the visibility and transition rules.
    """
    report_id: str
    title: str
    department: Department
    status: ReportStatus
    created_by: str
    creator_role: Optional[UserRole] = None
    creator_name: str = ""
    version: int = 1
    report_number: Optional[str] = None
    content: str = ""
    description: Optional[str] = None
    report_type: Optional[str] = None
    priority: ReportPriority = ReportPriority.MEDIUM
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    manager_approved_at: Optional[datetime] = None
    senior_approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    signatures: Tuple[SignatureSnapshot, ...] = ()
    attachments: Tuple[AttachmentSnapshot, ...] = ()

    def has_signature(self, user_id: str, signature_type: SignatureType) -> bool:
        """True if the user holds an active signature of this type on the report."""
        return any(
            s.is_active and s.user_id == user_id and s.signature_type == signature_type
            for s in self.signatures
        )


# =============================================================================
# INPUTS
# =============================================================================

@dataclass
class ReportDraft:
    """Fields supplied by an author when creating a report."""
    title: str
    content: str
    description: Optional[str] = None
    report_type: Optional[str] = None
    priority: ReportPriority = ReportPriority.MEDIUM
    due_date: Optional[datetime] = None


@dataclass
class UploadedFile:
    """File content received from the transport layer."""
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class ReportFilter:
    """Caller-supplied query criteria. Visibility is applied on top of these."""
    status: Optional[ReportStatus] = None
    department: Optional[Department] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    search_term: Optional[str] = None
    page: int = 1
    page_size: int = 20


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationEvent(str, Enum):
    REPORT_SUBMITTED = "ReportSubmitted"
    REPORT_APPROVED = "ReportApproved"
    REPORT_COMPLETED = "ReportCompleted"
    REPORT_REJECTED = "ReportRejected"


@dataclass(frozen=True)
class NotificationRequest:
    """Everything the dispatcher needs to deliver a workflow outcome out of band."""
    event: NotificationEvent
    report_id: str
    report_title: str
    actor_id: str
    actor_name: str
    recipients: Tuple[Identity, ...]
    message: str
    report_number: Optional[str] = None


# =============================================================================
# RESULTS
# =============================================================================

class FailureKind(str, Enum):
    """Why an operation did not succeed. Store faults are raised, never returned."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"


@dataclass
class ServiceResult:
    success: bool = True
    message: Optional[str] = None
    failure: Optional[FailureKind] = None

    @property
    def is_access_denied(self) -> bool:
        return self.failure == FailureKind.ACCESS_DENIED


@dataclass
class TransitionResult(ServiceResult):
    """Outcome of submit / approve / reject / delete."""
    report_id: Optional[str] = None
    previous_status: Optional[ReportStatus] = None
    new_status: Optional[ReportStatus] = None
    deleted: bool = False
    notification: Optional[NotificationRequest] = None


@dataclass
class ReportDetailResult(ServiceResult):
    report: Optional[ReportSnapshot] = None


@dataclass
class ReportListResult(ServiceResult):
    items: List[ReportSnapshot] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 20


@dataclass
class AttachmentUploadResult(ServiceResult):
    stage: Optional[ApprovalStage] = None
    attachments: List[AttachmentSnapshot] = field(default_factory=list)


@dataclass
class AttachmentListResult(ServiceResult):
    attachments: List[AttachmentSnapshot] = field(default_factory=list)


@dataclass
class AttachmentResult(ServiceResult):
    attachment: Optional[AttachmentSnapshot] = None
