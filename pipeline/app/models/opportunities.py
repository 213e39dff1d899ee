"""
Pantry CRM Opportunity Models
"""

from sqlalchemy import (
    Column, String, Numeric, DateTime, Text, ForeignKey, Integer, Date, Boolean,
    CheckConstraint, Uuid,
)
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid

from ..core.database import Base
from ..schemas.opportunities import (
    OpportunityStage,
    OpportunityContext,
    STAGE_LABELS,
    STAGE_DEFAULT_PROBABILITY,
    CONTEXT_LABELS,
    OPPORTUNITY_NAME_MAX_LENGTH,
)
from .organizations import utcnow


class Opportunity(Base):
    """Sales pipeline record linking an organization, a principal and a product"""
    __tablename__ = "opportunities"
    __table_args__ = (
        CheckConstraint(
            "probability_percent >= 0 AND probability_percent <= 100",
            name="opportunities_probability_range",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(OPPORTUNITY_NAME_MAX_LENGTH), nullable=False, index=True)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    principal_id = Column(Uuid, ForeignKey("principals.id"), index=True)
    product_id = Column(Uuid, ForeignKey("products.id"))
    context = Column(String(50))
    custom_context = Column(String(255))
    stage = Column(String(50), nullable=False, default=OpportunityStage.NEW_LEAD.value)
    probability_percent = Column(Integer, default=0)
    expected_close_date = Column(Date)
    estimated_value = Column(Numeric(15, 2))
    deal_owner = Column(String(255))
    notes = Column(Text)
    auto_generated_name = Column(Boolean, default=False, nullable=False)
    name_template = Column(String(500))
    stage_changed_at = Column(DateTime(timezone=True), default=utcnow)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True))

    @property
    def is_won(self) -> bool:
        """Check if opportunity is won"""
        return self.stage == OpportunityStage.CLOSED_WON.value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def weighted_value(self) -> float:
        """Estimated value weighted by probability"""
        if self.estimated_value and self.probability_percent:
            return float(self.estimated_value) * (self.probability_percent / 100)
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "organization_id": str(self.organization_id),
            "principal_id": str(self.principal_id) if self.principal_id else None,
            "product_id": str(self.product_id) if self.product_id else None,
            "context": self.context,
            "custom_context": self.custom_context,
            "stage": self.stage,
            "probability_percent": self.probability_percent,
            "expected_close_date": self.expected_close_date.isoformat() if self.expected_close_date else None,
            "estimated_value": float(self.estimated_value) if self.estimated_value is not None else None,
            "deal_owner": self.deal_owner,
            "notes": self.notes,
            "is_won": self.is_won,
            "auto_generated_name": bool(self.auto_generated_name),
            "name_template": self.name_template,
            "stage_changed_at": _isoformat(self.stage_changed_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Opportunity(name='{self.name}', stage='{self.stage}', probability={self.probability_percent})>"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back naive; treat those as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None
