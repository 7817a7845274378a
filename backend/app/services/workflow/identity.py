"""
Identity Provider

Resolves user ids to the (role, department, display name) tuple every
workflow rule is evaluated against.
"""
from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from ...models.db_models import Department, UserDB, UserRole
from ...models.workflow import Identity


class IdentityProvider(Protocol):
    def resolve(self, user_id: str) -> Optional[Identity]: ...

    def find_by_role(self, role: UserRole, department: Optional[Department] = None) -> List[Identity]: ...


def identity_from_user(user: UserDB) -> Identity:
    return Identity(
        user_id=user.id,
        role=user.role,
        department=user.department,
        display_name=user.display_name,
        email=user.email,
    )


class UserTableIdentityProvider:
    """Identity lookups against the users table. Inactive users do not resolve."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, user_id: str) -> Optional[Identity]:
        user = self.db.query(UserDB).filter(
            UserDB.id == user_id,
            UserDB.is_active == True,  # noqa: E712
        ).first()
        return identity_from_user(user) if user else None

    def find_by_role(self, role: UserRole, department: Optional[Department] = None) -> List[Identity]:
        query = self.db.query(UserDB).filter(
            UserDB.role == role,
            UserDB.is_active == True,  # noqa: E712
        )
        if department is not None:
            query = query.filter(UserDB.department == department)
        return [identity_from_user(u) for u in query.order_by(UserDB.username).all()]
