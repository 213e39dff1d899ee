"""
Pantry CRM Core Models
"""

from .organizations import Organization, Principal
from .products import Product, ProductCategory
from .opportunities import (
    Opportunity,
    OpportunityStage,
    OpportunityContext,
    STAGE_LABELS,
    STAGE_DEFAULT_PROBABILITY,
    CONTEXT_LABELS,
)

__all__ = [
    "Organization",
    "Principal",
    "Product",
    "ProductCategory",
    "Opportunity",
    "OpportunityStage",
    "OpportunityContext",
    "STAGE_LABELS",
    "STAGE_DEFAULT_PROBABILITY",
    "CONTEXT_LABELS",
]
