"""
Pantry CRM Console Response Models
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class ApiResponse(BaseModel):
    """Decoded pipeline envelope, success or failure"""
    success: bool = Field(..., description="Whether the call succeeded")
    data: Any = Field(None, description="Payload on success")
    error: Optional[str] = Field(None, description="Error message on failure")
    error_code: Optional[str] = Field(None, description="Specific error code")
    field_errors: Dict[str, List[str]] = Field(default_factory=dict, description="Field-level messages")
    status_code: int = Field(0, description="HTTP status, 0 when no response arrived")

    @property
    def is_not_found(self) -> bool:
        return self.error_code == "NOT_FOUND"

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Invalid batch request",
                "error_code": "VALIDATION_ERROR",
                "field_errors": {
                    "probability_percent": ["Probability cannot exceed 100%"]
                },
                "status_code": 422
            }
        }
