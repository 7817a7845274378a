"""
Report Visibility Filter

Role-based narrowing of which reports a requester may list or open.
Always applied to the result of the caller's own query, never in place of it.
"""
from typing import Iterable, List

from ...models.db_models import ReportStatus, SignatureType, UserRole
from ...models.workflow import Identity, ReportSnapshot


# Statuses a line manager can see for any report in their department
MANAGER_VISIBLE_STATUSES = frozenset({
    ReportStatus.SUBMITTED,
    ReportStatus.MANAGER_REVIEW,
    ReportStatus.MANAGER_APPROVED,
    ReportStatus.SENIOR_REVIEW,
    ReportStatus.COMPLETED,
})

# Statuses a senior approver can see regardless of department or creator
SENIOR_VISIBLE_STATUSES = frozenset({
    ReportStatus.MANAGER_APPROVED,
    ReportStatus.SENIOR_REVIEW,
    ReportStatus.COMPLETED,
})


def can_view_report(report: ReportSnapshot, requester: Identity) -> bool:
    """True if the requester is entitled to see this report."""
    if report.created_by == requester.user_id:
        return True

    if requester.role == UserRole.LINE_MANAGER:
        if report.department == requester.department and report.status in MANAGER_VISIBLE_STATUSES:
            return True
        # A manager who signed keeps sight of the report after it moves on
        return report.has_signature(requester.user_id, SignatureType.MANAGER_SIGNATURE)

    if requester.role == UserRole.SENIOR_APPROVER:
        if report.status in SENIOR_VISIBLE_STATUSES:
            return True
        return (
            report.status == ReportStatus.SUBMITTED
            and report.creator_role == UserRole.LINE_MANAGER
        )

    return False


def filter_visible_reports(
    reports: Iterable[ReportSnapshot],
    requester: Identity,
) -> List[ReportSnapshot]:
    """Keep the reports the requester may see, preserving input order."""
    return [report for report in reports if can_view_report(report, requester)]
