"""
Pantry CRM Opportunity Validation
Form-independent validation returning Ok(data) or Err(field_errors)
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..core.config import settings
from ..core.errors import ValidationError
from ..schemas.opportunities import OpportunityContext
from ..schemas.requests import BatchCreationRequest, OpportunityCreate, OpportunityUpdate

T = TypeVar("T")
FieldErrors = Dict[str, List[str]]

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 255
DEAL_OWNER_MAX_LENGTH = 100
NOTES_MAX_LENGTH = 2000
CUSTOM_CONTEXT_MAX_LENGTH = 255

_FIELD_LABELS = {
    "organization_id": "Organization",
    "principal_ids": "Principal selection",
    "principal_id": "Principal",
    "stage": "Stage",
    "name": "Opportunity name",
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    field_errors: FieldErrors = field(default_factory=dict)

    @property
    def is_ok(self) -> bool:
        return False


ValidationResult = Union[Ok[T], Err]


def require_valid(result: ValidationResult, message: str = "Validation failed"):
    """Unwrap an Ok or raise ValidationError carrying the field messages"""
    if isinstance(result, Err):
        raise ValidationError(message, result.field_errors)
    return result.value


def field_errors_from_pydantic(exc: PydanticValidationError) -> FieldErrors:
    """Flatten pydantic errors into field -> messages"""
    errors: FieldErrors = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        name = location[0] if location else "__root__"
        if error.get("type") == "missing":
            message = f"{_FIELD_LABELS.get(name, name)} is required"
        else:
            message = error.get("msg", "Invalid value")
        errors.setdefault(name, []).append(message)
    return errors


def _parse(model: type, payload: Any) -> Union[BaseModel, Err]:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        return Err(field_errors_from_pydantic(e))


def _add(errors: FieldErrors, name: str, message: str):
    errors.setdefault(name, []).append(message)


def _check_attributes(data: Dict[str, Any], errors: FieldErrors, today: date):
    probability = data.get("probability_percent")
    if probability is not None:
        if probability < 0:
            _add(errors, "probability_percent", "Probability cannot be negative")
        elif probability > 100:
            _add(errors, "probability_percent", "Probability cannot exceed 100%")

    close_date = data.get("expected_close_date")
    if close_date is not None and close_date < today:
        _add(errors, "expected_close_date", "Close date should be in the future")

    estimated_value = data.get("estimated_value")
    if estimated_value is not None and estimated_value < 0:
        _add(errors, "estimated_value", "Estimated value cannot be negative")

    deal_owner = data.get("deal_owner")
    if deal_owner and len(deal_owner) > DEAL_OWNER_MAX_LENGTH:
        _add(errors, "deal_owner", f"Deal owner name must be less than {DEAL_OWNER_MAX_LENGTH} characters")

    notes = data.get("notes")
    if notes and len(notes) > NOTES_MAX_LENGTH:
        _add(errors, "notes", f"Notes must be less than {NOTES_MAX_LENGTH} characters")

    custom_context = data.get("custom_context")
    if custom_context and len(custom_context) > CUSTOM_CONTEXT_MAX_LENGTH:
        _add(errors, "custom_context", f"Custom context must be less than {CUSTOM_CONTEXT_MAX_LENGTH} characters")


def _check_name(name: Optional[str], errors: FieldErrors):
    name = (name or "").strip()
    if not name:
        _add(errors, "name", "Opportunity name is required")
    elif len(name) < NAME_MIN_LENGTH:
        _add(errors, "name", f"Name must be at least {NAME_MIN_LENGTH} characters")
    elif len(name) > NAME_MAX_LENGTH:
        _add(errors, "name", f"Name must be less than {NAME_MAX_LENGTH} characters")


def _check_naming(request: Union[BatchCreationRequest, OpportunityCreate], errors: FieldErrors):
    if request.auto_generate_name:
        if request.context is None:
            _add(errors, "context", "Context is required for generated names")
        elif request.context == OpportunityContext.CUSTOM and not (request.custom_context or "").strip():
            _add(errors, "custom_context", "Custom context is required")
    else:
        _check_name(request.name, errors)


def _check_shared(request: Union[BatchCreationRequest, OpportunityCreate], errors: FieldErrors, today: date):
    if request.organization_id is None:
        _add(errors, "organization_id", "Organization is required")
    if request.stage is None:
        _add(errors, "stage", "Stage is required")
    _check_attributes(request.model_dump(), errors, today)
    _check_naming(request, errors)


def validate_batch_request(
    payload: Any,
    today: Optional[date] = None,
    max_batch_size: Optional[int] = None
) -> ValidationResult[BatchCreationRequest]:
    """Validate the shared fields and principal selection of a batch once"""
    request = _parse(BatchCreationRequest, payload)
    if isinstance(request, Err):
        return request

    today = today or date.today()
    max_batch_size = max_batch_size or settings.batch_max_size
    errors: FieldErrors = {}

    _check_shared(request, errors, today)

    if not request.principal_ids:
        _add(errors, "principal_ids", "At least one principal must be selected")
    elif len(request.principal_ids) > max_batch_size:
        _add(errors, "principal_ids", f"No more than {max_batch_size} principals can be selected at once")
    elif len(set(request.principal_ids)) != len(request.principal_ids):
        _add(errors, "principal_ids", "Each principal can only be selected once")

    return Err(errors) if errors else Ok(request)


def validate_preview_request(
    payload: Any,
    max_batch_size: Optional[int] = None
) -> ValidationResult[BatchCreationRequest]:
    """Only the naming inputs matter for a live preview"""
    request = _parse(BatchCreationRequest, payload)
    if isinstance(request, Err):
        return request

    max_batch_size = max_batch_size or settings.batch_max_size
    errors: FieldErrors = {}

    if request.organization_id is None:
        _add(errors, "organization_id", "Organization is required")
    if not request.principal_ids:
        _add(errors, "principal_ids", "At least one principal must be selected")
    elif len(request.principal_ids) > max_batch_size:
        _add(errors, "principal_ids", f"No more than {max_batch_size} principals can be selected at once")
    if request.context is None:
        _add(errors, "context", "Context is required for generated names")
    elif request.context == OpportunityContext.CUSTOM and not (request.custom_context or "").strip():
        _add(errors, "custom_context", "Custom context is required")

    return Err(errors) if errors else Ok(request)


def validate_opportunity_create(payload: Any, today: Optional[date] = None) -> ValidationResult[OpportunityCreate]:
    """Validate a single-create payload"""
    request = _parse(OpportunityCreate, payload)
    if isinstance(request, Err):
        return request

    errors: FieldErrors = {}
    _check_shared(request, errors, today or date.today())

    if request.auto_generate_name and request.principal_id is None:
        _add(errors, "principal_id", "Principal is required for generated names")

    return Err(errors) if errors else Ok(request)


def validate_opportunity_update(payload: Any, today: Optional[date] = None) -> ValidationResult[OpportunityUpdate]:
    """Validate only the fields present in a partial update"""
    request = _parse(OpportunityUpdate, payload)
    if isinstance(request, Err):
        return request

    changes = request.model_dump(exclude_unset=True)
    errors: FieldErrors = {}

    if "name" in changes:
        _check_name(changes["name"], errors)
    if "stage" in changes and changes["stage"] is None:
        _add(errors, "stage", "Stage is required")
    _check_attributes(changes, errors, today or date.today())

    return Err(errors) if errors else Ok(request)
