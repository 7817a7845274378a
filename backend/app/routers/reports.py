"""
Report Workflow - Reports API Router

Report authoring, approval transitions, approval documents and role-scoped
listings. All endpoints require authentication; every decision is made by
the workflow service and mapped to an HTTP status here.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import ApprovalStage, Department, ReportPriority, ReportStatus, UserDB
from ..models.workflow import (
    AttachmentSnapshot,
    FailureKind,
    ReportDraft,
    ReportFilter,
    ReportSnapshot,
    ServiceResult,
    TransitionResult,
    UploadedFile,
)
from ..services.workflow.file_storage import LocalFileStorage
from ..services.workflow.metrics import InMemoryWorkflowMetrics
from ..services.workflow.notifications import NotificationDispatcher, default_dispatcher, deliver
from ..services.workflow.state_machine import status_label
from ..services.workflow.workflow_service import ReportWorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


# =============================================================================
# PYDANTIC MODELS FOR API
# =============================================================================

class SignatureResponse(BaseModel):
    user_id: str
    signature_type: str
    signed_at: Optional[datetime] = None
    comments: Optional[str] = None


class AttachmentResponse(BaseModel):
    id: str
    original_filename: str
    content_type: Optional[str] = None
    file_size: int
    description: Optional[str] = None
    uploaded_by: str
    uploaded_by_name: Optional[str] = None
    uploaded_by_role: str
    approval_stage: str
    uploaded_at: Optional[datetime] = None


class ReportResponse(BaseModel):
    id: str
    report_number: Optional[str] = None
    title: str
    content: str
    description: Optional[str] = None
    report_type: Optional[str] = None
    priority: str
    due_date: Optional[datetime] = None
    department: str
    status: str
    status_label: str
    created_by: str
    created_by_name: str = ""
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    manager_approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    signatures: List[SignatureResponse] = []
    attachments: List[AttachmentResponse] = []


class ReportListResponse(BaseModel):
    items: List[ReportResponse]
    total_count: int
    page: int
    page_size: int


class TransitionRequest(BaseModel):
    comments: Optional[str] = Field(default=None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class TransitionResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    report_id: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    deleted: bool = False


class UploadResponse(BaseModel):
    message: Optional[str] = None
    stage: str
    attachments: List[AttachmentResponse]


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_file_storage() -> LocalFileStorage:
    return LocalFileStorage()


def get_metrics(request: Request) -> InMemoryWorkflowMetrics:
    """Metrics live on the application, one instance per process."""
    metrics = getattr(request.app.state, "workflow_metrics", None)
    if metrics is None:
        metrics = InMemoryWorkflowMetrics()
        request.app.state.workflow_metrics = metrics
    return metrics


def get_dispatcher() -> NotificationDispatcher:
    return default_dispatcher()


def get_workflow_service(
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_file_storage),
    metrics: InMemoryWorkflowMetrics = Depends(get_metrics),
) -> ReportWorkflowService:
    return ReportWorkflowService.for_session(db, file_storage=storage, metrics=metrics)


# =============================================================================
# HELPERS
# =============================================================================

_FAILURE_STATUS = {
    FailureKind.VALIDATION: 400,
    FailureKind.NOT_FOUND: 404,
    FailureKind.ACCESS_DENIED: 403,
}


def _raise_for_failure(result: ServiceResult) -> None:
    if not result.success:
        raise HTTPException(status_code=_FAILURE_STATUS.get(result.failure, 400), detail=result.message)


def _attachment_response(attachment: AttachmentSnapshot) -> AttachmentResponse:
    return AttachmentResponse(
        id=attachment.attachment_id,
        original_filename=attachment.original_filename,
        content_type=attachment.content_type,
        file_size=attachment.file_size,
        description=attachment.description,
        uploaded_by=attachment.uploaded_by,
        uploaded_by_name=attachment.uploaded_by_name,
        uploaded_by_role=attachment.uploaded_by_role.value,
        approval_stage=attachment.approval_stage.value,
        uploaded_at=attachment.uploaded_at,
    )


def _report_response(report: ReportSnapshot) -> ReportResponse:
    return ReportResponse(
        id=report.report_id,
        report_number=report.report_number,
        title=report.title,
        content=report.content,
        description=report.description,
        report_type=report.report_type,
        priority=report.priority.value,
        due_date=report.due_date,
        department=report.department.value,
        status=report.status.value,
        status_label=status_label(report.status),
        created_by=report.created_by,
        created_by_name=report.creator_name,
        created_at=report.created_at,
        last_modified_at=report.last_modified_at,
        submitted_at=report.submitted_at,
        manager_approved_at=report.manager_approved_at,
        completed_at=report.completed_at,
        rejected_at=report.rejected_at,
        rejected_by=report.rejected_by,
        rejection_reason=report.rejection_reason,
        signatures=[
            SignatureResponse(
                user_id=s.user_id,
                signature_type=s.signature_type.value,
                signed_at=s.signed_at,
                comments=s.comments,
            )
            for s in report.signatures if s.is_active
        ],
        attachments=[_attachment_response(a) for a in report.attachments if a.is_active],
    )


def _transition_response(
    result: TransitionResult,
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher,
    metrics: InMemoryWorkflowMetrics,
) -> TransitionResponse:
    _raise_for_failure(result)
    if result.notification is not None:
        # Runs after the response is sent; the change is already committed
        background_tasks.add_task(deliver, dispatcher, result.notification, metrics)
    return TransitionResponse(
        success=True,
        message=result.message,
        report_id=result.report_id,
        previous_status=result.previous_status.value if result.previous_status else None,
        new_status=result.new_status.value if result.new_status else None,
        deleted=result.deleted,
    )


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedFile]:
    uploads = []
    for upload in files or []:
        uploads.append(UploadedFile(
            filename=upload.filename or "",
            data=await upload.read(),
            content_type=upload.content_type,
        ))
    return uploads


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=ReportResponse, status_code=201)
async def create_report(
    title: str = Form(...),
    content: str = Form(...),
    description: Optional[str] = Form(None),
    report_type: Optional[str] = Form(None),
    priority: ReportPriority = Form(ReportPriority.MEDIUM),
    due_date: Optional[datetime] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    """
    Create a Draft report in the caller's department.
    Files sent with the draft are stored under the Initial stage.
    """
    draft = ReportDraft(
        title=title,
        content=content,
        description=description,
        report_type=report_type,
        priority=priority,
        due_date=due_date,
    )
    result = service.create_report(draft, current_user.id, await _read_uploads(files))
    _raise_for_failure(result)
    return _report_response(result.report)


@router.get("", response_model=ReportListResponse)
async def list_reports(
    status: Optional[ReportStatus] = None,
    department: Optional[Department] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    search: Optional[str] = None,
    page: int = Query(1),
    page_size: int = Query(20),
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    """Search reports. Results are narrowed to what the caller may see."""
    criteria = ReportFilter(
        status=status,
        department=department,
        from_date=from_date,
        to_date=to_date,
        search_term=search,
        page=page,
        page_size=page_size,
    )
    result = service.list_reports(criteria, current_user.id)
    _raise_for_failure(result)
    return ReportListResponse(
        items=[_report_response(r) for r in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/pending-approvals", response_model=ReportListResponse)
async def pending_approvals(
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    """Reports waiting on the caller's decision."""
    result = service.get_pending_approvals(current_user.id)
    _raise_for_failure(result)
    return ReportListResponse(
        items=[_report_response(r) for r in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/my-reports", response_model=ReportListResponse)
async def my_reports(
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    result = service.get_my_reports(current_user.id)
    _raise_for_failure(result)
    return ReportListResponse(
        items=[_report_response(r) for r in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/team-reports", response_model=ReportListResponse)
async def team_reports(
    status: Optional[ReportStatus] = None,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    """Line manager view of the department's reports."""
    result = service.get_team_reports(current_user.id, status)
    _raise_for_failure(result)
    return ReportListResponse(
        items=[_report_response(r) for r in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    result = service.get_report(report_id, current_user.id)
    _raise_for_failure(result)
    return _report_response(result.report)


@router.post("/{report_id}/submit", response_model=TransitionResponse)
async def submit_report(
    report_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[TransitionRequest] = None,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = service.submit_report(report_id, current_user.id, body.comments if body else None)
    return _transition_response(result, background_tasks, dispatcher, service.metrics)


@router.post("/{report_id}/approve", response_model=TransitionResponse)
async def approve_report(
    report_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[TransitionRequest] = None,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = service.approve_report(report_id, current_user.id, body.comments if body else None)
    return _transition_response(result, background_tasks, dispatcher, service.metrics)


@router.post("/{report_id}/reject", response_model=TransitionResponse)
async def reject_report(
    report_id: str,
    body: RejectRequest,
    background_tasks: BackgroundTasks,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = service.reject_report(report_id, current_user.id, body.reason)
    return _transition_response(result, background_tasks, dispatcher, service.metrics)


@router.delete("/{report_id}", response_model=TransitionResponse)
async def delete_report(
    report_id: str,
    background_tasks: BackgroundTasks,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = service.delete_report(report_id, current_user.id)
    return _transition_response(result, background_tasks, dispatcher, service.metrics)


@router.post("/{report_id}/approval-documents", response_model=UploadResponse)
async def upload_approval_documents(
    report_id: str,
    files: List[UploadFile] = File(...),
    description: Optional[str] = Form(None),
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    """Attach documents at the approval stage the caller is acting in."""
    result = service.upload_approval_documents(
        report_id, current_user.id, await _read_uploads(files), description,
    )
    _raise_for_failure(result)
    return UploadResponse(
        message=result.message,
        stage=result.stage.value,
        attachments=[_attachment_response(a) for a in result.attachments],
    )


@router.get("/{report_id}/attachments", response_model=List[AttachmentResponse])
async def list_attachments(
    report_id: str,
    stage: Optional[ApprovalStage] = None,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    """Active attachments ordered by stage then upload time."""
    result = service.list_attachments(report_id, current_user.id, stage)
    _raise_for_failure(result)
    return [_attachment_response(a) for a in result.attachments]


@router.get("/{report_id}/attachments/{attachment_id}/download")
async def download_attachment(
    report_id: str,
    attachment_id: str,
    current_user: UserDB = Depends(get_current_user),
    service: ReportWorkflowService = Depends(get_workflow_service),
):
    result = service.get_attachment(report_id, attachment_id, current_user.id)
    _raise_for_failure(result)
    attachment = result.attachment
    return FileResponse(
        attachment.file_path,
        media_type=attachment.content_type or "application/octet-stream",
        filename=attachment.original_filename,
    )
