"""
Pantry CRM Pipeline Response Models
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class NamePreview(BaseModel):
    """Candidate name for one principal in a batch"""
    principal_id: str
    principal_name: Optional[str] = None
    generated_name: Optional[str] = None
    name_template: Optional[str] = None
    is_duplicate: bool = False
    error: Optional[str] = Field(None, description="Set when this principal could not be previewed")


class BatchFailure(BaseModel):
    """A principal whose opportunity was not created"""
    principal_id: str
    principal_name: Optional[str] = None
    reason: str
    error_code: str


class BatchCreationResult(BaseModel):
    """Aggregate outcome of a batch creation, in request order"""
    success: bool
    created: List[Dict[str, Any]] = Field(default_factory=list)
    failed: List[BatchFailure] = Field(default_factory=list)
    total_created: int = 0
    total_failed: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "created": [{"id": "c1a0...", "name": "Test Corp - Jane Doe - New Business - Jan 2025"}],
                "failed": [{
                    "principal_id": "p2",
                    "principal_name": "John Roe",
                    "reason": "An active opportunity named 'Test Corp - John Roe - New Business - Jan 2025' already exists",
                    "error_code": "DUPLICATE_NAME"
                }],
                "total_created": 1,
                "total_failed": 1
            }
        }
