"""
Pantry CRM Opportunity Name Prober
Read-only collision checks against active opportunities
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import structlog

from ..models.opportunities import Opportunity

logger = structlog.get_logger()


class OpportunityNameProber:
    """Case-insensitive exact-name lookup among non-deleted opportunities"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_duplicate(self, candidate_name: str, exclude_id: Optional[UUID] = None) -> bool:
        """Return True when an active opportunity already uses this name"""
        normalized = (candidate_name or "").strip().lower()
        if not normalized:
            return False

        query = (
            select(Opportunity.id)
            .where(
                func.lower(Opportunity.name) == normalized,
                Opportunity.deleted_at.is_(None)
            )
            .limit(1)
        )
        if exclude_id is not None:
            query = query.where(Opportunity.id != exclude_id)

        result = await self.db.execute(query)
        exists = result.scalar_one_or_none() is not None

        logger.debug("Opportunity name probed", name=candidate_name, duplicate=exists)
        return exists
