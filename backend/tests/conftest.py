"""
Shared fixtures for the report workflow tests.

Store and service tests run against a throwaway SQLite file so that two
sessions can race against the same rows.
"""
import os
import sys
from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import Base
from app.models import db_models  # noqa: F401
from app.models.db_models import Department, ReportStatus, UserDB, UserRole
from app.models.workflow import Identity, ReportSnapshot, SignatureSnapshot
from app.services.workflow.file_storage import LocalFileStorage
from app.services.workflow.metrics import InMemoryWorkflowMetrics
from app.services.workflow.workflow_service import ReportWorkflowService


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Factory: make_user(role, department, username=None, password_hash="x") -> UserDB."""
    def _make(role, department, username=None, password_hash="x", is_active=True):
        username = username or f"user-{uuid4().hex[:8]}"
        user = UserDB(
            id=str(uuid4()),
            email=f"{username}@acme.com",
            username=username,
            password_hash=password_hash,
            first_name=username.title(),
            role=role,
            department=department,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user
    return _make


# =============================================================================
# SERVICE
# =============================================================================

@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def storage(upload_dir):
    return LocalFileStorage(str(upload_dir))


@pytest.fixture
def metrics():
    return InMemoryWorkflowMetrics()


@pytest.fixture
def service(db, storage, metrics):
    return ReportWorkflowService.for_session(db, file_storage=storage, metrics=metrics)


# =============================================================================
# PURE SNAPSHOTS
# =============================================================================

@pytest.fixture
def identity():
    """Factory: identity(role, department=QS, user_id=None) -> Identity."""
    def _make(role, department=Department.QS, user_id=None):
        return Identity(
            user_id=user_id or str(uuid4()),
            role=role,
            department=department,
            display_name=f"{role.value} user",
            email=f"{role.value.lower()}@acme.com",
        )
    return _make


@pytest.fixture
def snapshot():
    """Factory: snapshot(status, created_by, creator_role, department, signatures) -> ReportSnapshot."""
    def _make(
        status=ReportStatus.DRAFT,
        created_by=None,
        creator_role=UserRole.GENERAL_STAFF,
        department=Department.QS,
        signatures=(),
        **fields,
    ):
        return ReportSnapshot(
            report_id=fields.pop("report_id", str(uuid4())),
            title=fields.pop("title", "Quarterly cost review"),
            department=department,
            status=status,
            created_by=created_by or str(uuid4()),
            creator_role=creator_role,
            signatures=tuple(signatures),
            last_modified_at=fields.pop("last_modified_at", datetime(2025, 1, 1)),
            **fields,
        )
    return _make


@pytest.fixture
def manager_signature():
    def _make(user_id, signature_type=None, is_active=True):
        from app.models.db_models import SignatureType
        return SignatureSnapshot(
            signature_id=str(uuid4()),
            user_id=user_id,
            signature_type=signature_type or SignatureType.MANAGER_SIGNATURE,
            is_active=is_active,
        )
    return _make
