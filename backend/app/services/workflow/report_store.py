"""
Report Store

Persistence contract for the workflow service and its SQLAlchemy
implementation. Reads return detached snapshots; status writes are
conditional on the status and version the caller validated against.
"""
import logging
import re
from datetime import datetime
from typing import List, Optional, Protocol
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from ...models.db_models import (
    DEPARTMENT_CODES,
    ApprovalStage,
    AttachmentDB,
    Department,
    ReportDB,
    ReportNumberCounterDB,
    ReportStatus,
    SignatureDB,
    SignatureType,
    UserDB,
    UserRole,
)
from ...models.workflow import (
    AttachmentSnapshot,
    Identity,
    ReportDraft,
    ReportFilter,
    ReportSnapshot,
    SignatureSnapshot,
)
from .file_storage import StoredFile

logger = logging.getLogger(__name__)


class StaleReportError(Exception):
    """The report changed between validation and write."""

    def __init__(self, report_id: str):
        super().__init__(f"Report {report_id} was modified concurrently")
        self.report_id = report_id


# =============================================================================
# CONTRACT
# =============================================================================

class ReportStore(Protocol):
    def get(self, report_id: str) -> Optional[ReportSnapshot]: ...

    def get_with_details(self, report_id: str) -> Optional[ReportSnapshot]: ...

    def get_for_update(self, report_id: str) -> Optional[ReportSnapshot]: ...

    def create(self, draft: ReportDraft, creator: Identity) -> ReportSnapshot: ...

    def update_status(
        self,
        report: ReportSnapshot,
        new_status: ReportStatus,
        actor_id: str,
    ) -> None: ...

    def reject(
        self,
        report: ReportSnapshot,
        new_status: ReportStatus,
        actor_id: str,
        reason: str,
    ) -> None: ...

    def delete(self, report: ReportSnapshot) -> List[str]: ...

    def touch(self, report: ReportSnapshot) -> None: ...

    def add_signature(
        self,
        report_id: str,
        user_id: str,
        signature_type: SignatureType,
        comments: Optional[str],
    ) -> SignatureSnapshot: ...

    def add_attachment(
        self,
        report_id: str,
        stored: StoredFile,
        uploader: Identity,
        stage: ApprovalStage,
        description: Optional[str],
    ) -> AttachmentSnapshot: ...

    def list_attachments(
        self,
        report_id: str,
        stage: Optional[ApprovalStage] = None,
    ) -> List[AttachmentSnapshot]: ...

    def get_attachment(self, report_id: str, attachment_id: str) -> Optional[AttachmentSnapshot]: ...

    def list_by_user(self, user_id: str) -> List[ReportSnapshot]: ...

    def list_by_department(
        self,
        department: Department,
        statuses: Optional[List[ReportStatus]] = None,
    ) -> List[ReportSnapshot]: ...

    def list_pending_for_role(self, requester: Identity) -> List[ReportSnapshot]: ...

    def search(self, criteria: ReportFilter) -> List[ReportSnapshot]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


# =============================================================================
# SNAPSHOT MAPPING
# =============================================================================

def signature_snapshot(signature: SignatureDB) -> SignatureSnapshot:
    return SignatureSnapshot(
        signature_id=signature.id,
        user_id=signature.user_id,
        signature_type=signature.signature_type,
        signed_at=signature.signed_at,
        comments=signature.comments,
        is_active=bool(signature.is_active),
    )


def attachment_snapshot(attachment: AttachmentDB) -> AttachmentSnapshot:
    return AttachmentSnapshot(
        attachment_id=attachment.id,
        report_id=attachment.report_id,
        original_filename=attachment.original_filename,
        stored_filename=attachment.stored_filename,
        file_path=attachment.file_path,
        content_type=attachment.content_type,
        file_size=attachment.file_size or 0,
        uploaded_by=attachment.uploaded_by,
        uploaded_by_name=attachment.uploaded_by_name,
        uploaded_by_role=attachment.uploaded_by_role,
        approval_stage=attachment.approval_stage,
        uploaded_at=attachment.uploaded_at,
        description=attachment.description,
        is_active=bool(attachment.is_active),
    )


def report_snapshot(report: ReportDB, include_attachments: bool = False) -> ReportSnapshot:
    """Detach a report row (with creator and signatures) into a snapshot."""
    creator = report.creator
    attachments = ()
    if include_attachments:
        attachments = tuple(attachment_snapshot(a) for a in report.attachments)

    return ReportSnapshot(
        report_id=report.id,
        report_number=report.report_number,
        title=report.title,
        content=report.content,
        description=report.description,
        report_type=report.report_type,
        priority=report.priority,
        due_date=report.due_date,
        department=report.department,
        status=report.status,
        created_by=report.created_by,
        creator_role=creator.role if creator else None,
        creator_name=creator.display_name if creator else "",
        version=report.version,
        created_at=report.created_at,
        last_modified_at=report.last_modified_at,
        submitted_at=report.submitted_at,
        manager_approved_at=report.manager_approved_at,
        senior_approved_at=report.senior_approved_at,
        completed_at=report.completed_at,
        rejected_at=report.rejected_at,
        rejected_by=report.rejected_by,
        rejection_reason=report.rejection_reason,
        signatures=tuple(signature_snapshot(s) for s in report.signatures),
        attachments=attachments,
    )


_NUMBER_SUFFIX = re.compile(r"-(\d+)$")


# =============================================================================
# SQLALCHEMY IMPLEMENTATION
# =============================================================================

class SqlAlchemyReportStore:
    """
    Report Store backed by a request-scoped SQLAlchemy session.

    Nothing here commits on its own; the workflow service decides when the
    unit of work ends.
    """

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _report_query(self):
        return (
            self.db.query(ReportDB)
            .options(joinedload(ReportDB.creator), selectinload(ReportDB.signatures))
            .populate_existing()
        )

    def get(self, report_id: str) -> Optional[ReportSnapshot]:
        report = self._report_query().filter(ReportDB.id == report_id).first()
        return report_snapshot(report) if report else None

    def get_with_details(self, report_id: str) -> Optional[ReportSnapshot]:
        report = (
            self._report_query()
            .options(selectinload(ReportDB.attachments))
            .filter(ReportDB.id == report_id)
            .first()
        )
        return report_snapshot(report, include_attachments=True) if report else None

    def get_for_update(self, report_id: str) -> Optional[ReportSnapshot]:
        """Load a report and lock its row until the transaction ends."""
        report = (
            self.db.query(ReportDB)
            .filter(ReportDB.id == report_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        return report_snapshot(report) if report else None

    def list_by_user(self, user_id: str) -> List[ReportSnapshot]:
        reports = (
            self._report_query()
            .filter(ReportDB.created_by == user_id)
            .order_by(ReportDB.last_modified_at.desc())
            .all()
        )
        return [report_snapshot(r) for r in reports]

    def list_by_department(
        self,
        department: Department,
        statuses: Optional[List[ReportStatus]] = None,
    ) -> List[ReportSnapshot]:
        query = self._report_query().filter(ReportDB.department == department)
        if statuses:
            query = query.filter(ReportDB.status.in_(statuses))
        reports = query.order_by(ReportDB.last_modified_at.desc()).all()
        return [report_snapshot(r) for r in reports]

    def list_pending_for_role(self, requester: Identity) -> List[ReportSnapshot]:
        """Reports waiting on this requester's decision, most recent submission first."""
        query = self._report_query()
        if requester.role == UserRole.LINE_MANAGER:
            query = query.filter(
                ReportDB.status == ReportStatus.SUBMITTED,
                ReportDB.department == requester.department,
            )
        elif requester.role == UserRole.SENIOR_APPROVER:
            manager_ids = select(UserDB.id).where(UserDB.role == UserRole.LINE_MANAGER)
            query = query.filter(
                or_(
                    ReportDB.status == ReportStatus.MANAGER_APPROVED,
                    (ReportDB.status == ReportStatus.SUBMITTED)
                    & ReportDB.created_by.in_(manager_ids),
                )
            )
        else:
            return []

        reports = query.order_by(ReportDB.submitted_at.desc()).all()
        return [report_snapshot(r) for r in reports]

    def search(self, criteria: ReportFilter) -> List[ReportSnapshot]:
        """
        Apply the caller's explicit criteria. Visibility is applied by the
        caller on the result, never here.
        """
        query = self._report_query()

        if criteria.status is not None:
            query = query.filter(ReportDB.status == criteria.status)
        if criteria.department is not None:
            query = query.filter(ReportDB.department == criteria.department)
        if criteria.from_date is not None:
            query = query.filter(ReportDB.created_at >= criteria.from_date)
        if criteria.to_date is not None:
            query = query.filter(ReportDB.created_at <= criteria.to_date)
        if criteria.search_term:
            pattern = f"%{criteria.search_term.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(ReportDB.title).like(pattern),
                    func.lower(ReportDB.content).like(pattern),
                    func.lower(ReportDB.description).like(pattern),
                    func.lower(ReportDB.report_number).like(pattern),
                )
            )

        reports = query.order_by(ReportDB.last_modified_at.desc()).all()
        return [report_snapshot(r) for r in reports]

    def list_attachments(
        self,
        report_id: str,
        stage: Optional[ApprovalStage] = None,
    ) -> List[AttachmentSnapshot]:
        query = self.db.query(AttachmentDB).filter(
            AttachmentDB.report_id == report_id,
            AttachmentDB.is_active == True,  # noqa: E712
        )
        if stage is not None:
            query = query.filter(AttachmentDB.approval_stage == stage)
        return [attachment_snapshot(a) for a in query.order_by(AttachmentDB.uploaded_at.asc()).all()]

    def get_attachment(self, report_id: str, attachment_id: str) -> Optional[AttachmentSnapshot]:
        attachment = self.db.query(AttachmentDB).filter(
            AttachmentDB.id == attachment_id,
            AttachmentDB.report_id == report_id,
            AttachmentDB.is_active == True,  # noqa: E712
        ).first()
        return attachment_snapshot(attachment) if attachment else None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def next_report_number(self, department: Department, year: int) -> str:
        """
        Allocate the next {DEPT}-{YEAR}-{NNNN} number for the department and year.

        The counter row is read with SELECT ... FOR UPDATE and incremented in
        the caller's transaction, so a rolled back create does not consume a
        number. A missing counter is seeded from the highest number already
        stored; a concurrent first insert surfaces as IntegrityError.
        """
        name = f"{DEPARTMENT_CODES[department]}-{year}"
        counter = self.db.execute(
            select(ReportNumberCounterDB)
            .where(ReportNumberCounterDB.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            counter = ReportNumberCounterDB(name=name, current_value=self._highest_suffix(f"{name}-"))
            self.db.add(counter)

        counter.current_value += 1
        self.db.flush()
        logger.debug(f"Allocated report number {name}-{counter.current_value:04d}")
        return f"{name}-{counter.current_value:04d}"

    def _highest_suffix(self, prefix: str) -> int:
        existing = (
            self.db.query(ReportDB.report_number)
            .filter(ReportDB.report_number.like(f"{prefix}%"))
            .all()
        )
        highest = 0
        for (number,) in existing:
            match = _NUMBER_SUFFIX.search(number or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    def create(self, draft: ReportDraft, creator: Identity) -> ReportSnapshot:
        now = datetime.utcnow()
        report = ReportDB(
            id=str(uuid4()),
            report_number=self.next_report_number(creator.department, now.year),
            title=draft.title,
            content=draft.content,
            description=draft.description,
            report_type=draft.report_type,
            priority=draft.priority,
            due_date=draft.due_date,
            department=creator.department,
            created_by=creator.user_id,
            status=ReportStatus.DRAFT,
            version=1,
            created_at=now,
            last_modified_at=now,
        )
        self.db.add(report)
        self.db.flush()
        return ReportSnapshot(
            report_id=report.id,
            report_number=report.report_number,
            title=report.title,
            content=report.content,
            description=report.description,
            report_type=report.report_type,
            priority=report.priority,
            due_date=report.due_date,
            department=report.department,
            status=report.status,
            created_by=report.created_by,
            creator_role=creator.role,
            creator_name=creator.display_name,
            version=report.version,
            created_at=report.created_at,
            last_modified_at=report.last_modified_at,
        )

    def _conditional_update(self, report: ReportSnapshot, values: dict) -> None:
        """
        Write only if the row still has the status and version the caller
        validated. Zero affected rows means another request won.
        """
        stmt = (
            update(ReportDB)
            .where(
                ReportDB.id == report.report_id,
                ReportDB.status == report.status,
                ReportDB.version == report.version,
            )
            .values(version=ReportDB.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                f"Stale write on report {report.report_id} "
                f"(expected {report.status.value} v{report.version})"
            )
            raise StaleReportError(report.report_id)

    def update_status(
        self,
        report: ReportSnapshot,
        new_status: ReportStatus,
        actor_id: str,
    ) -> None:
        now = datetime.utcnow()
        values = {"status": new_status, "last_modified_at": now}
        if new_status == ReportStatus.SUBMITTED:
            values["submitted_at"] = now
        elif new_status == ReportStatus.MANAGER_APPROVED:
            values["manager_approved_at"] = now
        elif new_status == ReportStatus.COMPLETED:
            values["senior_approved_at"] = now
            values["completed_at"] = now
        self._conditional_update(report, values)
        logger.debug(f"Report {report.report_id} -> {new_status.value} by {actor_id}")

    def reject(
        self,
        report: ReportSnapshot,
        new_status: ReportStatus,
        actor_id: str,
        reason: str,
    ) -> None:
        now = datetime.utcnow()
        self._conditional_update(report, {
            "status": new_status,
            "last_modified_at": now,
            "rejected_at": now,
            "rejected_by": actor_id,
            "rejection_reason": reason,
        })

    def touch(self, report: ReportSnapshot) -> None:
        """Bump the version without changing status, holding the validated state until commit."""
        self._conditional_update(report, {"last_modified_at": datetime.utcnow()})

    def delete(self, report: ReportSnapshot) -> List[str]:
        """
        Remove a report with its signatures and attachment rows.
        Returns the stored file paths so the caller can clean up after commit.
        """
        # Claim the row first so a concurrent transition cannot slip in
        self._conditional_update(report, {"last_modified_at": datetime.utcnow()})

        row = self.db.query(ReportDB).filter(ReportDB.id == report.report_id).populate_existing().first()
        if row is None:
            raise StaleReportError(report.report_id)
        file_paths = [a.file_path for a in row.attachments]
        self.db.delete(row)
        self.db.flush()
        return file_paths

    def add_signature(
        self,
        report_id: str,
        user_id: str,
        signature_type: SignatureType,
        comments: Optional[str],
    ) -> SignatureSnapshot:
        signature = SignatureDB(
            id=str(uuid4()),
            report_id=report_id,
            user_id=user_id,
            signature_type=signature_type,
            comments=comments,
            signed_at=datetime.utcnow(),
            is_active=True,
        )
        self.db.add(signature)
        self.db.flush()
        return signature_snapshot(signature)

    def add_attachment(
        self,
        report_id: str,
        stored: StoredFile,
        uploader: Identity,
        stage: ApprovalStage,
        description: Optional[str],
    ) -> AttachmentSnapshot:
        attachment = AttachmentDB(
            id=str(uuid4()),
            report_id=report_id,
            original_filename=stored.original_filename,
            stored_filename=stored.stored_filename,
            file_path=stored.file_path,
            content_type=stored.content_type,
            file_size=stored.file_size,
            description=description,
            uploaded_by=uploader.user_id,
            uploaded_by_name=uploader.display_name,
            uploaded_by_role=uploader.role,
            approval_stage=stage,
            uploaded_at=datetime.utcnow(),
            is_active=True,
        )
        self.db.add(attachment)
        self.db.flush()
        return attachment_snapshot(attachment)

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
