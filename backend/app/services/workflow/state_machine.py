"""
Report Approval State Machine

Deterministic transition rules for the report lifecycle.
Every function here is pure: it takes a report snapshot and the resolved
actor and returns a decision. Nothing is persisted from this module.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ...config import SENIOR_APPROVER_LABEL
from ...models.db_models import ReportStatus, SignatureType, UserRole
from ...models.workflow import Identity, ReportSnapshot


MAX_COMMENT_LENGTH = 1000
MAX_REASON_LENGTH = 1000


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# Draft is the initial state. Completed is terminal. The two rejected states
# are semi-terminal: the author may resubmit from them.
# ManagerReview and SeniorReview are recognised by the visibility and reject
# rules but no transition enters them.
#
# =============================================================================

STATE_CONFIG = {
    ReportStatus.DRAFT: {
        "description": "Being written by its author",
        "allowed_transitions": [ReportStatus.SUBMITTED],
        "timestamp_field": None,
        "terminal": False,
    },
    ReportStatus.SUBMITTED: {
        "description": "Awaiting line manager or senior approval",
        "allowed_transitions": [
            ReportStatus.MANAGER_APPROVED,
            ReportStatus.MANAGER_REJECTED,
            ReportStatus.COMPLETED,  # Manager-authored reports skip the manager stage
            ReportStatus.SENIOR_REJECTED,
        ],
        "timestamp_field": "submitted_at",
        "terminal": False,
    },
    ReportStatus.MANAGER_REVIEW: {
        "description": "Under line manager review",
        "allowed_transitions": [],
        "timestamp_field": None,
        "terminal": False,
    },
    ReportStatus.MANAGER_APPROVED: {
        "description": "Approved by line manager, awaiting senior approval",
        "allowed_transitions": [ReportStatus.COMPLETED, ReportStatus.SENIOR_REJECTED],
        "timestamp_field": "manager_approved_at",
        "terminal": False,
    },
    ReportStatus.SENIOR_REVIEW: {
        "description": "Under senior review",
        "allowed_transitions": [ReportStatus.SENIOR_REJECTED],
        "timestamp_field": None,
        "terminal": False,
    },
    ReportStatus.COMPLETED: {
        "description": "Fully approved",
        "allowed_transitions": [],  # Terminal state
        "timestamp_field": "completed_at",
        "terminal": True,
    },
    ReportStatus.MANAGER_REJECTED: {
        "description": "Rejected by line manager, may be resubmitted",
        "allowed_transitions": [ReportStatus.SUBMITTED],
        "timestamp_field": "rejected_at",
        "terminal": False,
    },
    ReportStatus.SENIOR_REJECTED: {
        "description": "Rejected by senior approver, may be resubmitted",
        "allowed_transitions": [ReportStatus.SUBMITTED],
        "timestamp_field": "rejected_at",
        "terminal": False,
    },
}

RESUBMITTABLE_STATUSES = (
    ReportStatus.DRAFT,
    ReportStatus.MANAGER_REJECTED,
    ReportStatus.SENIOR_REJECTED,
)

SUBMITTING_ROLES = (UserRole.GENERAL_STAFF, UserRole.LINE_MANAGER)

SENIOR_REJECTABLE_STATUSES = (
    ReportStatus.MANAGER_APPROVED,
    ReportStatus.SUBMITTED,
    ReportStatus.SENIOR_REVIEW,
)


# =============================================================================
# DECISIONS
# =============================================================================

@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of evaluating a requested transition."""
    allowed: bool
    reason: str
    to_status: Optional[ReportStatus] = None
    signature_type: Optional[SignatureType] = None


def _deny(reason: str) -> TransitionDecision:
    return TransitionDecision(allowed=False, reason=reason)


# =============================================================================
# LABELS
# =============================================================================

def role_label(role: UserRole) -> str:
    """Human-facing name for a role. The senior approver label is configurable."""
    if role == UserRole.SENIOR_APPROVER:
        return SENIOR_APPROVER_LABEL
    if role == UserRole.LINE_MANAGER:
        return "Line Manager"
    return "Staff"


def status_label(status: ReportStatus) -> str:
    labels = {
        ReportStatus.SENIOR_REVIEW: f"{SENIOR_APPROVER_LABEL}Review",
        ReportStatus.SENIOR_REJECTED: f"{SENIOR_APPROVER_LABEL}Rejected",
    }
    return labels.get(status, status.value)


# =============================================================================
# GRAPH QUERIES
# =============================================================================

def get_state_config(status: ReportStatus) -> Dict[str, Any]:
    """Get configuration for a status."""
    return STATE_CONFIG.get(status, {})


def can_transition(from_status: ReportStatus, to_status: ReportStatus) -> Tuple[bool, str]:
    """
    Check if an edge exists in the status graph.

    Returns (allowed, reason)
    """
    allowed_transitions = get_state_config(from_status).get("allowed_transitions", [])
    if to_status in allowed_transitions:
        return True, "Transition allowed"
    return False, f"Cannot transition from {from_status.value} to {to_status.value}"


def get_next_states(status: ReportStatus) -> List[ReportStatus]:
    return list(get_state_config(status).get("allowed_transitions", []))


def is_terminal_state(status: ReportStatus) -> bool:
    return bool(get_state_config(status).get("terminal", False))


def timestamp_field_for(status: ReportStatus) -> Optional[str]:
    """Name of the report timestamp set on entry to this status."""
    return get_state_config(status).get("timestamp_field")


# =============================================================================
# TRANSITION RULES
# =============================================================================

def evaluate_submit(report: ReportSnapshot, actor: Identity) -> TransitionDecision:
    """Author submits a draft or a rejected report for approval."""
    if actor.role not in SUBMITTING_ROLES:
        return _deny("Only staff members and line managers can submit reports")

    if report.created_by != actor.user_id:
        return _deny("You can only submit your own reports")

    if report.status not in RESUBMITTABLE_STATUSES:
        return _deny(
            f"Only draft or rejected reports can be submitted "
            f"(current status: {status_label(report.status)})"
        )

    return TransitionDecision(
        allowed=True,
        reason="Report submitted for approval",
        to_status=ReportStatus.SUBMITTED,
    )


def evaluate_approve(report: ReportSnapshot, actor: Identity) -> TransitionDecision:
    """
    Line manager approves a submitted report from their own department, or
    the senior approver gives final approval.

    A report authored by a line manager is eligible for senior approval
    directly from Submitted.
    """
    if actor.role == UserRole.LINE_MANAGER:
        if report.department != actor.department:
            return _deny(
                f"You can only approve reports from your department "
                f"(report department: {report.department.value}, "
                f"your department: {actor.department.value})"
            )
        if report.status != ReportStatus.SUBMITTED:
            return _deny(
                f"Report is not in submitted status "
                f"(current status: {status_label(report.status)})"
            )
        return TransitionDecision(
            allowed=True,
            reason="Report approved by line manager",
            to_status=ReportStatus.MANAGER_APPROVED,
            signature_type=SignatureType.MANAGER_SIGNATURE,
        )

    if actor.role == UserRole.SENIOR_APPROVER:
        label = SENIOR_APPROVER_LABEL
        if report.status == ReportStatus.MANAGER_APPROVED:
            return TransitionDecision(
                allowed=True,
                reason=f"Report approved by {label}",
                to_status=ReportStatus.COMPLETED,
                signature_type=SignatureType.SENIOR_SIGNATURE,
            )
        if report.status == ReportStatus.SUBMITTED:
            if report.creator_role != UserRole.LINE_MANAGER:
                return _deny(
                    f"Only Line Manager submitted reports can be approved directly by {label}"
                )
            return TransitionDecision(
                allowed=True,
                reason=f"Line manager report approved directly by {label}",
                to_status=ReportStatus.COMPLETED,
                signature_type=SignatureType.SENIOR_SIGNATURE,
            )
        return _deny(
            f"Report is not awaiting {label} approval "
            f"(current status: {status_label(report.status)})"
        )

    return _deny("Only line managers and senior approvers can approve reports")


def evaluate_reject(
    report: ReportSnapshot,
    actor: Identity,
    reason: Optional[str] = None,
) -> TransitionDecision:
    """Line manager or senior approver sends a report back to its author."""
    if not reason or not reason.strip():
        return _deny("A rejection reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        return _deny(f"Rejection reason cannot exceed {MAX_REASON_LENGTH} characters")

    if actor.role == UserRole.LINE_MANAGER:
        if report.status != ReportStatus.SUBMITTED:
            return _deny(
                f"Report is not in submitted status "
                f"(current status: {status_label(report.status)})"
            )
        return TransitionDecision(
            allowed=True,
            reason="Report rejected by line manager",
            to_status=ReportStatus.MANAGER_REJECTED,
        )

    if actor.role == UserRole.SENIOR_APPROVER:
        if report.status not in SENIOR_REJECTABLE_STATUSES:
            return _deny(
                f"Report cannot be rejected by {SENIOR_APPROVER_LABEL} "
                f"(current status: {status_label(report.status)})"
            )
        return TransitionDecision(
            allowed=True,
            reason=f"Report rejected by {SENIOR_APPROVER_LABEL}",
            to_status=ReportStatus.SENIOR_REJECTED,
        )

    return _deny("Only line managers and senior approvers can reject reports")


def evaluate_delete(report: ReportSnapshot, actor: Identity) -> TransitionDecision:
    """Creator deletes a draft or rejected report; the senior approver may delete any report."""
    if actor.role == UserRole.SENIOR_APPROVER:
        return TransitionDecision(allowed=True, reason=f"Report deleted by {SENIOR_APPROVER_LABEL}")

    if report.created_by == actor.user_id and report.status in RESUBMITTABLE_STATUSES:
        return TransitionDecision(allowed=True, reason="Report deleted by its author")

    return _deny(
        f"Cannot delete this report (current status: {status_label(report.status)})"
    )


def validate_comments(comments: Optional[str]) -> Optional[str]:
    """Return an error message if comments are too long, otherwise None."""
    if comments and len(comments) > MAX_COMMENT_LENGTH:
        return f"Comments cannot exceed {MAX_COMMENT_LENGTH} characters"
    return None
