"""User model."""

import uuid
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String, Uuid
from sqlalchemy.sql import func

from examdesk.db.base import Base


class UserRole(str, Enum):
    """User role enum."""

    USER = "user"
    COORDINATOR = "coordinator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Roles allowed to author exams, see correct answers and grade
GRADING_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class User(Base):
    """User model."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(32), nullable=False, default=UserRole.USER.value)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    @property
    def name(self) -> str:
        """API-friendly name; maps to full_name."""
        return self.full_name or ""

    @property
    def is_grader(self) -> bool:
        return self.role in {r.value for r in GRADING_ROLES}
