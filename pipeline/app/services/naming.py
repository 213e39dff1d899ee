"""
Pantry CRM Opportunity Naming
Deterministic display names for auto-named opportunities
"""

from datetime import date
from typing import Any, Optional, Union

from ..core.errors import InvalidInputError
from ..schemas.opportunities import OpportunityContext, CONTEXT_LABELS, OPPORTUNITY_NAME_MAX_LENGTH

NAME_SEPARATOR = " - "
NAME_TEMPLATE = "{organization} - {principal} - {context} - {month_year}"

# Fixed table so names never depend on the process locale
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_month_year(reference_date: date) -> str:
    """Render a date as e.g. 'Jan 2025'"""
    return f"{_MONTHS[reference_date.month - 1]} {reference_date.year}"


def context_label(
    context: Union[OpportunityContext, str, None],
    custom_context: Optional[str] = None
) -> str:
    """Human-readable label for a context code"""
    if context is None or context == "":
        raise InvalidInputError("Context is required for generated names", {"context": ["Context is required"]})

    try:
        code = OpportunityContext(context)
    except ValueError:
        raise InvalidInputError(f"Unknown context '{context}'", {"context": ["Invalid context selected"]})

    if code == OpportunityContext.CUSTOM:
        label = (custom_context or "").strip()
        if not label:
            raise InvalidInputError(
                "Custom context label is required",
                {"custom_context": ["Custom context is required"]}
            )
        return label

    return CONTEXT_LABELS[code]


def _display_name(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return (getattr(value, "name", None) or "").strip()


def generate_name(
    organization: Any,
    principal: Any,
    context: Union[OpportunityContext, str, None],
    reference_date: date,
    custom_context: Optional[str] = None
) -> str:
    """Build '<organization> - <principal> - <context> - <Mon YYYY>'.

    ``organization`` and ``principal`` may be names or objects with a
    ``name`` attribute. Raises InvalidInputError instead of emitting a name
    with an empty segment or one too long to store.
    """
    organization_name = _display_name(organization)
    principal_name = _display_name(principal)

    if not organization_name:
        raise InvalidInputError(
            "Organization name is required to generate a name",
            {"organization_id": ["Organization name is empty"]}
        )
    if not principal_name:
        raise InvalidInputError(
            "Principal name is required to generate a name",
            {"principal_ids": ["Principal name is empty"]}
        )
    if reference_date is None:
        raise InvalidInputError("Reference date is required to generate a name")

    name = NAME_TEMPLATE.format(
        organization=organization_name,
        principal=principal_name,
        context=context_label(context, custom_context),
        month_year=format_month_year(reference_date),
    )
    if len(name) > OPPORTUNITY_NAME_MAX_LENGTH:
        raise InvalidInputError(
            f"Generated name exceeds {OPPORTUNITY_NAME_MAX_LENGTH} characters",
            {"name": [f"Generated name cannot exceed {OPPORTUNITY_NAME_MAX_LENGTH} characters"]}
        )

    return name
