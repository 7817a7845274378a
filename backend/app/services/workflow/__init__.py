"""
Report Workflow - Lifecycle Engine

Pure rule modules (state machine, visibility, attachment stager) and the
service that drives them against the store.
"""
from .state_machine import (
    STATE_CONFIG,
    TransitionDecision,
    can_transition,
    evaluate_approve,
    evaluate_delete,
    evaluate_reject,
    evaluate_submit,
)
from .visibility import can_view_report, filter_visible_reports
from .attachment_stager import StageDecision, creation_stage, resolve_upload_stage
from .report_store import ReportStore, SqlAlchemyReportStore, StaleReportError
from .workflow_service import ReportWorkflowService

__all__ = [
    "STATE_CONFIG",
    "TransitionDecision",
    "can_transition",
    "evaluate_approve",
    "evaluate_delete",
    "evaluate_reject",
    "evaluate_submit",
    "can_view_report",
    "filter_visible_reports",
    "StageDecision",
    "creation_stage",
    "resolve_upload_stage",
    "ReportStore",
    "SqlAlchemyReportStore",
    "StaleReportError",
    "ReportWorkflowService",
]
