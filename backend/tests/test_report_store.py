"""
Tests for the SQLAlchemy report store.

Covers report numbering, conditional status writes, role-scoped queries
and search.
"""
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from app.models.db_models import (
    AttachmentDB,
    Department,
    ReportDB,
    ReportNumberCounterDB,
    ReportStatus,
    SignatureDB,
    SignatureType,
    UserRole,
    ApprovalStage,
)
from app.models.workflow import ReportDraft, ReportFilter
from app.services.workflow.file_storage import StoredFile
from app.services.workflow.identity import identity_from_user
from app.services.workflow.report_store import SqlAlchemyReportStore, StaleReportError


@pytest.fixture
def store(db):
    return SqlAlchemyReportStore(db)


@pytest.fixture
def staff(make_user):
    return make_user(UserRole.GENERAL_STAFF, Department.QS, username="staff")


@pytest.fixture
def manager(make_user):
    return make_user(UserRole.LINE_MANAGER, Department.QS, username="manager")


def _create(store, user, title="Site inspection", **fields):
    report = store.create(ReportDraft(title=title, content=fields.pop("content", "Findings"), **fields),
                          identity_from_user(user))
    store.commit()
    return report


class TestReportNumbers:
    """Report numbers are {DEPT}-{YEAR}-{NNNN}, per department and year."""

    def test_sequential_within_department(self, store, staff):
        year = datetime.utcnow().year

        first = _create(store, staff)
        second = _create(store, staff)

        assert first.report_number == f"QS-{year}-0001"
        assert second.report_number == f"QS-{year}-0002"

    def test_departments_numbered_independently(self, store, staff, make_user):
        other = make_user(UserRole.GENERAL_STAFF, Department.PROJECT_SUPPORT)
        year = datetime.utcnow().year

        _create(store, staff)
        report = _create(store, other)

        assert report.report_number == f"PS-{year}-0001"

    def test_new_counter_continues_after_highest_existing(self, store, staff, db):
        """Reports numbered before counters existed are not renumbered over."""
        year = datetime.utcnow().year
        db.add(ReportDB(
            id="legacy-report",
            report_number=f"QS-{year}-0041",
            title="Imported",
            content="Imported",
            department=Department.QS,
            created_by=staff.id,
        ))
        db.commit()

        assert store.next_report_number(Department.QS, year) == f"QS-{year}-0042"
        assert store.next_report_number(Department.QS, year) == f"QS-{year}-0043"
        assert store.next_report_number(Department.QS, year + 1) == f"QS-{year + 1}-0001"

    def test_rolled_back_create_does_not_consume_a_number(self, store, staff):
        year = datetime.utcnow().year
        store.create(ReportDraft(title="Abandoned", content="x"), identity_from_user(staff))
        store.rollback()

        report = _create(store, staff)

        assert report.report_number == f"QS-{year}-0001"

    def test_sessions_allocate_from_the_shared_counter(self, session_factory, staff):
        """Each session reads the counter row fresh, never a cached value."""
        year = datetime.utcnow().year
        first_session = session_factory()
        second_session = session_factory()
        try:
            first = SqlAlchemyReportStore(first_session)
            second = SqlAlchemyReportStore(second_session)

            numbers = [
                _create(first, staff).report_number,
                _create(second, staff).report_number,
                _create(first, staff).report_number,
            ]

            assert numbers == [f"QS-{year}-0001", f"QS-{year}-0002", f"QS-{year}-0003"]
            counter = second_session.get(ReportNumberCounterDB, f"QS-{year}")
            assert counter.current_value == 3
        finally:
            first_session.close()
            second_session.close()

    def test_duplicate_numbers_rejected_by_database(self, db, staff):
        for report_id in ("first", "second"):
            db.add(ReportDB(
                id=report_id,
                report_number="QS-2025-0007",
                title="Duplicate",
                content="x",
                department=Department.QS,
                created_by=staff.id,
            ))

        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()


class TestCreate:
    def test_department_comes_from_creator(self, store, staff):
        report = _create(store, staff)

        assert report.department == Department.QS
        assert report.status == ReportStatus.DRAFT
        assert report.version == 1
        assert report.creator_role == UserRole.GENERAL_STAFF


class TestConditionalWrites:
    """Status writes only land on the status and version that were read."""

    def test_update_sets_timestamp_and_bumps_version(self, store, staff):
        created = _create(store, staff)

        store.update_status(store.get_for_update(created.report_id), ReportStatus.SUBMITTED, staff.id)
        store.commit()
        report = store.get(created.report_id)

        assert report.status == ReportStatus.SUBMITTED
        assert report.submitted_at is not None
        assert report.version == 2

    def test_stale_snapshot_raises(self, store, staff, manager):
        created = _create(store, staff)
        stale = store.get_for_update(created.report_id)
        store.update_status(stale, ReportStatus.SUBMITTED, staff.id)
        store.commit()

        with pytest.raises(StaleReportError):
            store.update_status(stale, ReportStatus.SUBMITTED, staff.id)
        store.rollback()

        assert store.get(created.report_id).version == 2

    def test_completion_sets_completed_once(self, store, staff):
        created = _create(store, staff)
        for status in (ReportStatus.SUBMITTED, ReportStatus.MANAGER_APPROVED, ReportStatus.COMPLETED):
            store.update_status(store.get_for_update(created.report_id), status, staff.id)
            store.commit()

        report = store.get(created.report_id)
        assert report.completed_at is not None
        assert report.senior_approved_at is not None
        assert report.manager_approved_at is not None

    def test_reject_records_metadata(self, store, staff, manager):
        created = _create(store, staff)
        store.update_status(store.get_for_update(created.report_id), ReportStatus.SUBMITTED, staff.id)
        store.commit()

        store.reject(store.get_for_update(created.report_id), ReportStatus.MANAGER_REJECTED, manager.id, "Redo")
        store.commit()
        report = store.get(created.report_id)

        assert report.status == ReportStatus.MANAGER_REJECTED
        assert report.rejected_by == manager.id
        assert report.rejection_reason == "Redo"
        assert report.rejected_at is not None


class TestDelete:
    def test_delete_removes_children_and_returns_paths(self, store, staff, manager, db):
        created = _create(store, staff)
        store.add_signature(created.report_id, manager.id, SignatureType.MANAGER_SIGNATURE, "ok")
        store.add_attachment(
            created.report_id,
            StoredFile("plan.pdf", "abc.pdf", "/uploads/abc.pdf", 3, "application/pdf"),
            identity_from_user(staff),
            ApprovalStage.INITIAL,
            None,
        )
        store.commit()

        paths = store.delete(store.get_for_update(created.report_id))
        store.commit()

        assert paths == ["/uploads/abc.pdf"]
        assert store.get(created.report_id) is None
        assert db.query(SignatureDB).count() == 0
        assert db.query(AttachmentDB).count() == 0


class TestQueries:
    """Role-scoped lists and search."""

    def test_pending_for_line_manager(self, store, staff, manager, make_user):
        other_staff = make_user(UserRole.GENERAL_STAFF, Department.DOC_MANAGEMENT)
        mine = _create(store, staff, title="Mine")
        other = _create(store, other_staff, title="Other dept")
        draft = _create(store, staff, title="Still a draft")
        for report in (mine, other):
            store.update_status(store.get_for_update(report.report_id), ReportStatus.SUBMITTED, report.created_by)
        store.commit()

        pending = store.list_pending_for_role(identity_from_user(manager))

        assert [r.report_id for r in pending] == [mine.report_id]
        assert draft.report_id not in [r.report_id for r in pending]

    def test_pending_for_senior(self, store, staff, manager, make_user):
        senior = make_user(UserRole.SENIOR_APPROVER, Department.BUSINESS_ASSURANCE)
        staff_report = _create(store, staff, title="Staff submitted")
        manager_report = _create(store, manager, title="Manager submitted")
        approved = _create(store, staff, title="Manager approved")
        for report in (staff_report, manager_report, approved):
            store.update_status(store.get_for_update(report.report_id), ReportStatus.SUBMITTED, report.created_by)
        store.update_status(store.get_for_update(approved.report_id), ReportStatus.MANAGER_APPROVED, manager.id)
        store.commit()

        pending = {r.report_id for r in store.list_pending_for_role(identity_from_user(senior))}

        assert pending == {manager_report.report_id, approved.report_id}

    def test_pending_for_staff_is_empty(self, store, staff):
        assert store.list_pending_for_role(identity_from_user(staff)) == []

    def test_search_term_is_case_insensitive(self, store, staff):
        hit = _create(store, staff, title="Concrete POUR schedule")
        by_content = _create(store, staff, title="Other", content="the pour was delayed")
        _create(store, staff, title="Unrelated")

        found = {r.report_id for r in store.search(ReportFilter(search_term="pour"))}

        assert found == {hit.report_id, by_content.report_id}

    def test_search_by_status_and_department(self, store, staff, make_user):
        other = make_user(UserRole.GENERAL_STAFF, Department.PROJECT_SUPPORT)
        submitted = _create(store, staff)
        _create(store, staff)
        _create(store, other)
        store.update_status(store.get_for_update(submitted.report_id), ReportStatus.SUBMITTED, staff.id)
        store.commit()

        found = store.search(ReportFilter(status=ReportStatus.SUBMITTED, department=Department.QS))

        assert [r.report_id for r in found] == [submitted.report_id]

    def test_list_by_user(self, store, staff, manager):
        _create(store, staff)
        _create(store, manager)

        assert len(store.list_by_user(staff.id)) == 1

    def test_pending_most_recent_submission_first(self, store, staff, manager, db):
        older = _create(store, staff, title="Older")
        newer = _create(store, staff, title="Newer")
        for report in (older, newer):
            store.update_status(store.get_for_update(report.report_id), ReportStatus.SUBMITTED, staff.id)
        store.commit()
        db.query(ReportDB).filter(ReportDB.id == older.report_id).update({"submitted_at": datetime(2025, 3, 1)})
        db.query(ReportDB).filter(ReportDB.id == newer.report_id).update({"submitted_at": datetime(2025, 3, 2)})
        db.commit()

        pending = store.list_pending_for_role(identity_from_user(manager))

        assert [r.report_id for r in pending] == [newer.report_id, older.report_id]

    def test_list_by_department_filters_and_orders(self, store, staff, manager, make_user, db):
        outsider = make_user(UserRole.GENERAL_STAFF, Department.PROJECT_SUPPORT)
        draft = _create(store, staff, title="Draft")
        submitted = _create(store, staff, title="Submitted")
        managers_own = _create(store, manager, title="Manager's own")
        _create(store, outsider, title="Other department")
        store.update_status(store.get_for_update(submitted.report_id), ReportStatus.SUBMITTED, staff.id)
        store.commit()
        for report_id, modified in (
            (draft.report_id, datetime(2025, 1, 1)),
            (submitted.report_id, datetime(2025, 1, 3)),
            (managers_own.report_id, datetime(2025, 1, 2)),
        ):
            db.query(ReportDB).filter(ReportDB.id == report_id).update({"last_modified_at": modified})
        db.commit()

        everything = store.list_by_department(Department.QS)
        only_submitted = store.list_by_department(Department.QS, [ReportStatus.SUBMITTED])

        assert [r.report_id for r in everything] == [
            submitted.report_id, managers_own.report_id, draft.report_id,
        ]
        assert [r.report_id for r in only_submitted] == [submitted.report_id]
