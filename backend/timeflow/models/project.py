"""
Project model. Only the approval-chain columns are kept here; project CRUD lives elsewhere.
"""

from sqlalchemy import Column, String, Boolean, Uuid, ForeignKey
from sqlalchemy.orm import relationship
import uuid

from timeflow.db.base import Base


class Project(Base):
    """Project with its designated lead (optional) and manager."""

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(200), nullable=False)
    lead_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    manager_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    # Lead approval also approves the manager stage
    lead_approval_auto_escalates = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    lead = relationship("User", foreign_keys=[lead_id])
    manager = relationship("User", foreign_keys=[manager_id])
