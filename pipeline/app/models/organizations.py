"""
Pantry CRM Organization and Principal Models
"""

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Uuid
from datetime import datetime, timezone
import uuid

from ..core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Organization(Base):
    """Customer organization an opportunity is opened against"""
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, index=True)
    type = Column(String(50))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<Organization(name='{self.name}', type='{self.type}')>"


class Principal(Base):
    """Counterparty contact on an opportunity"""
    __tablename__ = "principals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), index=True)
    email = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Principal(name='{self.name}')>"
