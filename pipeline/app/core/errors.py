"""
Pantry CRM Pipeline Errors
Error taxonomy shared by services and API routes
"""

from typing import Dict, List, Optional


class PipelineError(Exception):
    """Base class for errors surfaced to API callers"""

    error_code = "PIPELINE_ERROR"
    status_code = 500

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.message = message
        self.field_errors = field_errors or {}

    def to_envelope(self) -> Dict:
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "field_errors": self.field_errors,
        }


class ValidationError(PipelineError):
    """Input failed a precondition; no mutation happened"""

    error_code = "VALIDATION_ERROR"
    status_code = 422


class InvalidInputError(ValidationError):
    """Name template input is unusable (empty organization/principal name, missing context)"""

    error_code = "INVALID_INPUT"


class DuplicateNameError(PipelineError):
    """Name collides with an existing active opportunity"""

    error_code = "DUPLICATE_NAME"
    status_code = 409

    def __init__(self, name: str):
        super().__init__(
            f"An active opportunity named '{name}' already exists",
            field_errors={"name": ["Opportunity name must be unique"]},
        )
        self.name = name


class NotFoundError(PipelineError):
    """Requested row does not exist (or is soft-deleted)"""

    error_code = "NOT_FOUND"
    status_code = 404


class PersistenceError(PipelineError):
    """Database or network failure while reading or writing"""

    error_code = "PERSISTENCE_ERROR"
    status_code = 503
