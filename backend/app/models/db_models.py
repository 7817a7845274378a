"""
Report Workflow - SQLAlchemy ORM Models
Users, reports, staged attachments, approval signatures and the audit log
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Enum as SQLEnum, Boolean
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS FOR THE REPORT WORKFLOW
# =============================================================================

class UserRole(str, Enum):
    """Workflow roles. The senior approver is labelled GM or Executive by config."""
    GENERAL_STAFF = "GeneralStaff"
    LINE_MANAGER = "LineManager"
    SENIOR_APPROVER = "SeniorApprover"


class Department(str, Enum):
    """Owning departments."""
    PROJECT_SUPPORT = "ProjectSupport"
    DOC_MANAGEMENT = "DocManagement"
    QS = "QS"
    CONTRACTS_MANAGEMENT = "ContractsManagement"
    BUSINESS_ASSURANCE = "BusinessAssurance"


# Prefix used in human-readable report numbers
DEPARTMENT_CODES = {
    Department.PROJECT_SUPPORT: "PS",
    Department.DOC_MANAGEMENT: "DM",
    Department.QS: "QS",
    Department.CONTRACTS_MANAGEMENT: "CM",
    Department.BUSINESS_ASSURANCE: "BA",
}


class ReportStatus(str, Enum):
    """States in the report approval state machine."""
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    MANAGER_REVIEW = "ManagerReview"
    MANAGER_APPROVED = "ManagerApproved"
    SENIOR_REVIEW = "SeniorReview"
    COMPLETED = "Completed"
    MANAGER_REJECTED = "ManagerRejected"
    SENIOR_REJECTED = "SeniorRejected"


class ApprovalStage(str, Enum):
    """Approval phase an attachment was uploaded under."""
    INITIAL = "Initial"
    MANAGER_REVIEW = "ManagerReview"
    SENIOR_REVIEW = "SeniorReview"


# Sort order for stage-grouped attachment listings
APPROVAL_STAGE_ORDER = {
    ApprovalStage.INITIAL: 1,
    ApprovalStage.MANAGER_REVIEW: 2,
    ApprovalStage.SENIOR_REVIEW: 3,
}


class SignatureType(str, Enum):
    """Which approver signed a report."""
    MANAGER_SIGNATURE = "ManagerSignature"
    SENIOR_SIGNATURE = "SeniorSignature"


class AuditAction(str, Enum):
    """Action kinds recorded in the audit log."""
    CREATED = "Created"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    DELETED = "Deleted"
    UPLOADED = "Uploaded"
    DOWNLOADED = "Downloaded"
    VIEWED = "Viewed"


class ReportPriority(str, Enum):
    """Report priority levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# =============================================================================
# TABLES
# =============================================================================

class UserDB(Base):
    """Staff account with workflow role and department."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.GENERAL_STAFF)
    department = Column(SQLEnum(Department), nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    reports = relationship("ReportDB", back_populates="creator", foreign_keys="ReportDB.created_by")

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.username


class ReportDB(Base):
    """
    A report moving through the approval workflow.
    Status is only ever written by the workflow service.
    """
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True)  # UUID
    report_number = Column(String(50), nullable=True, unique=True, index=True)  # PS-2025-0001

    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    description = Column(String(500), nullable=True)
    report_type = Column(String(100), nullable=True)
    priority = Column(SQLEnum(ReportPriority), nullable=False, default=ReportPriority.MEDIUM)
    due_date = Column(DateTime, nullable=True)

    department = Column(SQLEnum(Department), nullable=False, index=True)  # Fixed at creation
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # State Machine
    status = Column(SQLEnum(ReportStatus), nullable=False, default=ReportStatus.DRAFT, index=True)
    version = Column(Integer, nullable=False, default=1)  # Optimistic concurrency token

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    last_modified_at = Column(DateTime, default=datetime.utcnow)
    submitted_at = Column(DateTime, nullable=True)
    manager_approved_at = Column(DateTime, nullable=True)
    senior_approved_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Rejection metadata
    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(String(1000), nullable=True)

    # Relationships
    creator = relationship("UserDB", back_populates="reports", foreign_keys=[created_by])
    rejected_by_user = relationship("UserDB", foreign_keys=[rejected_by])
    attachments = relationship("AttachmentDB", back_populates="report", cascade="all, delete-orphan")
    signatures = relationship("SignatureDB", back_populates="report", cascade="all, delete-orphan")


class AttachmentDB(Base):
    """
    File uploaded against a report.
    The approval stage is fixed at upload time and never rewritten.
    """
    __tablename__ = "report_attachments"

    id = Column(String(36), primary_key=True)  # UUID
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)

    original_filename = Column(String(255), nullable=False)
    stored_filename = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    content_type = Column(String(100), nullable=True)
    file_size = Column(Integer, default=0)
    description = Column(String(500), nullable=True)

    # Uploader snapshot at upload time
    uploaded_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    uploaded_by_name = Column(String(200), nullable=True)
    uploaded_by_role = Column(SQLEnum(UserRole), nullable=False)

    approval_stage = Column(SQLEnum(ApprovalStage), nullable=False, default=ApprovalStage.INITIAL)
    uploaded_at = Column(DateTime, default=datetime.utcnow)
    is_active = Column(Boolean, default=True)

    # Relationships
    report = relationship("ReportDB", back_populates="attachments")


class SignatureDB(Base):
    """Approval signature left by a line manager or senior approver."""
    __tablename__ = "report_signatures"

    id = Column(String(36), primary_key=True)  # UUID
    report_id = Column(String(36), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    signature_type = Column(SQLEnum(SignatureType), nullable=False)
    comments = Column(String(1000), nullable=True)
    signed_at = Column(DateTime, default=datetime.utcnow)
    is_active = Column(Boolean, default=True)

    # Relationships
    report = relationship("ReportDB", back_populates="signatures")
    user = relationship("UserDB")


class AuditLogDB(Base):
    """
    Append-only record of every state-changing workflow action.
    report_id has no foreign key so entries outlive deleted reports.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)  # UUID
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    report_id = Column(String(36), nullable=True, index=True)
    details = Column(String(1000), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)


class ReportNumberCounterDB(Base):
    """
    Last report number handed out per department and year.
    Allocation locks this row, so numbers are never issued twice.
    """
    __tablename__ = "report_number_counters"

    name = Column(String(20), primary_key=True)  # e.g. QS-2025
    current_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
