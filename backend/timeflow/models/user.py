"""
User model backing the identity/role lookups of the approval workflow.
"""

from sqlalchemy import Column, String, Boolean, Uuid, Enum as SQLEnum
import uuid
import enum

from timeflow.db.base import Base


class UserRole(str, enum.Enum):
    """User role enumeration."""
    EMPLOYEE = "employee"
    LEAD = "lead"
    MANAGER = "manager"
    MANAGEMENT = "management"


class User(Base):
    """A person who logs time and/or reviews other people's time."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.EMPLOYEE)
    is_active = Column(Boolean, nullable=False, default=True)
