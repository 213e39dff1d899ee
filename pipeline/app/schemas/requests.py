"""
Pantry CRM Pipeline Request Models
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from decimal import Decimal
from uuid import UUID

from .opportunities import OpportunityStage, OpportunityContext


class OpportunityFields(BaseModel):
    """Attributes shared by single and batch creation"""
    product_id: Optional[UUID] = Field(None, description="Product being sold")
    context: Optional[OpportunityContext] = Field(None, description="Business context code")
    custom_context: Optional[str] = Field(None, description="Context label when context is CUSTOM")
    probability_percent: Optional[int] = Field(None, description="Chance of closing, 0-100")
    expected_close_date: Optional[date] = Field(None, description="Target close date")
    estimated_value: Optional[Decimal] = Field(None, description="Estimated deal value")
    deal_owner: Optional[str] = Field(None, description="Responsible sales rep")
    notes: Optional[str] = Field(None, description="Free-text notes")
    reference_date: Optional[date] = Field(None, description="Date used for the month/year in generated names")


class BatchCreationRequest(OpportunityFields):
    """One opportunity per selected principal from a single form submission"""
    organization_id: Optional[UUID] = Field(None, description="Target organization")
    principal_ids: List[UUID] = Field(default_factory=list, description="Principals, in display order")
    stage: Optional[OpportunityStage] = Field(None, description="Pipeline stage")
    auto_generate_name: bool = Field(True, description="Generate one name per principal")
    name: Optional[str] = Field(None, description="Manual name, used when auto naming is off")

    class Config:
        json_schema_extra = {
            "example": {
                "organization_id": "6f1c8a52-3d0e-4d0c-9f57-0a3b8c0e7d11",
                "principal_ids": [
                    "0b9c8f3e-52a4-4f61-8d1e-3b7a2c9e4f10",
                    "5e2d7c1a-8b3f-4a90-b6e4-1c0d9f8a7b22"
                ],
                "context": "NEW_BUSINESS",
                "stage": "new_lead",
                "probability_percent": 10,
                "expected_close_date": "2025-03-31",
                "deal_owner": "Sarah Johnson",
                "auto_generate_name": True
            }
        }


class OpportunityCreate(OpportunityFields):
    """Single opportunity creation"""
    organization_id: Optional[UUID] = Field(None, description="Target organization")
    principal_id: Optional[UUID] = Field(None, description="Counterparty principal")
    stage: Optional[OpportunityStage] = Field(None, description="Pipeline stage")
    auto_generate_name: bool = Field(False, description="Generate the name from the template")
    name: Optional[str] = Field(None, description="Opportunity name")


class OpportunityUpdate(BaseModel):
    """Partial update; unset fields are left untouched"""
    name: Optional[str] = None
    stage: Optional[OpportunityStage] = None
    product_id: Optional[UUID] = None
    principal_id: Optional[UUID] = None
    context: Optional[OpportunityContext] = None
    custom_context: Optional[str] = None
    probability_percent: Optional[int] = None
    expected_close_date: Optional[date] = None
    estimated_value: Optional[Decimal] = None
    deal_owner: Optional[str] = None
    notes: Optional[str] = None


class StageUpdateRequest(BaseModel):
    """Stage change with default probability"""
    stage: OpportunityStage


class OpportunityFilters(BaseModel):
    """List filters"""
    search: Optional[str] = None
    stage: Optional[List[OpportunityStage]] = None
    organization_id: Optional[UUID] = None
    principal_id: Optional[UUID] = None
    product_id: Optional[UUID] = None
    deal_owner: Optional[str] = None
    probability_min: Optional[int] = Field(None, ge=0, le=100)
    probability_max: Optional[int] = Field(None, ge=0, le=100)
    is_won: Optional[bool] = None
    context: Optional[List[OpportunityContext]] = None


SORTABLE_FIELDS = ("name", "stage", "probability_percent", "expected_close_date", "created_at", "updated_at")


class OpportunityPagination(BaseModel):
    """List paging and ordering"""
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    sort_by: str = Field("created_at", pattern=r"^(name|stage|probability_percent|expected_close_date|created_at|updated_at)$")
    sort_order: str = Field("desc", pattern=r"^(asc|desc)$")
