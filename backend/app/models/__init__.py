"""Report Workflow - Data Models"""
from .db_models import (
    # Enums
    UserRole, Department, ReportStatus, ApprovalStage, SignatureType, AuditAction, ReportPriority,
    # Tables
    UserDB, ReportDB, AttachmentDB, SignatureDB, AuditLogDB, ReportNumberCounterDB,
)
from .workflow import (
    Identity, SignatureSnapshot, AttachmentSnapshot, ReportSnapshot,
    ReportDraft, UploadedFile, ReportFilter,
    NotificationEvent, NotificationRequest,
    FailureKind, ServiceResult, TransitionResult, ReportDetailResult, ReportListResult,
    AttachmentUploadResult, AttachmentListResult, AttachmentResult,
)

__all__ = [
    "UserRole", "Department", "ReportStatus", "ApprovalStage", "SignatureType", "AuditAction", "ReportPriority",
    "UserDB", "ReportDB", "AttachmentDB", "SignatureDB", "AuditLogDB", "ReportNumberCounterDB",
    "Identity", "SignatureSnapshot", "AttachmentSnapshot", "ReportSnapshot",
    "ReportDraft", "UploadedFile", "ReportFilter",
    "NotificationEvent", "NotificationRequest",
    "FailureKind", "ServiceResult", "TransitionResult", "ReportDetailResult", "ReportListResult",
    "AttachmentUploadResult", "AttachmentListResult", "AttachmentResult",
]
