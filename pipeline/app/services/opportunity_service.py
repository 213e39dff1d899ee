"""
Pantry CRM Opportunity Service
Opportunity CRUD, auto-naming previews and batch creation
"""

from typing import Dict, Any, List, Optional, Sequence
from uuid import UUID
from datetime import date, datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, and_, func, asc, desc
import structlog

from ..core.config import settings
from ..core.errors import PipelineError, ValidationError, NotFoundError, DuplicateNameError, PersistenceError
from ..models.opportunities import Opportunity, OpportunityStage, STAGE_DEFAULT_PROBABILITY, as_utc
from ..models.organizations import Organization, Principal
from ..models.products import Product
from ..schemas.requests import (
    BatchCreationRequest,
    OpportunityCreate,
    OpportunityUpdate,
    OpportunityFilters,
    OpportunityPagination,
    SORTABLE_FIELDS,
)
from ..models.responses import NamePreview, BatchFailure, BatchCreationResult
from .kpis import calculate_opportunity_kpis
from .naming import generate_name, NAME_TEMPLATE
from .nats_client import get_nats_client
from .uniqueness import OpportunityNameProber
from .validation import (
    require_valid,
    validate_batch_request,
    validate_preview_request,
    validate_opportunity_create,
    validate_opportunity_update,
)

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _contains_pattern(term: str) -> str:
    """LIKE pattern matching ``term`` literally anywhere in the value"""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class OpportunityService:
    """Service for opportunity pipeline management"""

    def __init__(self, db: AsyncSession, prober: Optional[OpportunityNameProber] = None):
        self.db = db
        self.prober = prober or OpportunityNameProber(db)

    async def preview_batch(
        self,
        request: BatchCreationRequest,
        today: Optional[date] = None
    ) -> List[NamePreview]:
        """Generate one name preview per principal, in request order"""

        request = require_valid(validate_preview_request(request), "Invalid preview request")
        today = today or date.today()

        try:
            organization = await self._require_organization(request.organization_id)
            principals = await self._get_principals(request.principal_ids)
            reference_date = request.reference_date or today

            previews: List[NamePreview] = []
            seen_names = set()

            for principal_id in request.principal_ids:
                principal = principals.get(principal_id)
                if principal is None:
                    previews.append(NamePreview(principal_id=str(principal_id), error="Principal not found"))
                    continue

                try:
                    name = generate_name(
                        organization, principal, request.context, reference_date, request.custom_context
                    )
                except PipelineError as e:
                    previews.append(NamePreview(
                        principal_id=str(principal_id),
                        principal_name=principal.name,
                        error=e.message
                    ))
                    continue

                key = name.lower()
                is_duplicate = key in seen_names or await self.prober.check_duplicate(name)
                seen_names.add(key)

                previews.append(NamePreview(
                    principal_id=str(principal_id),
                    principal_name=principal.name,
                    generated_name=name,
                    name_template=NAME_TEMPLATE,
                    is_duplicate=is_duplicate
                ))

            logger.info(
                "Opportunity names previewed",
                organization_id=str(request.organization_id),
                principals=len(previews),
                duplicates=sum(1 for p in previews if p.is_duplicate),
                errors=sum(1 for p in previews if p.error)
            )

            return previews

        except SQLAlchemyError as e:
            logger.error("Name preview failed", error=str(e))
            raise PersistenceError("Failed to generate name previews") from e

    async def create_batch(
        self,
        request: BatchCreationRequest,
        today: Optional[date] = None
    ) -> BatchCreationResult:
        """Create one opportunity per principal; failures are reported per item"""

        request = require_valid(validate_batch_request(request, today=today), "Invalid batch request")
        today = today or date.today()

        try:
            organization = await self._require_organization(request.organization_id)
            await self._require_product(request.product_id)
            principals = await self._get_principals(request.principal_ids)
            reference_date = request.reference_date or today

            created_ids: List[UUID] = []
            failed: List[BatchFailure] = []

            for principal_id in request.principal_ids:
                principal = principals.get(principal_id)
                if principal is None:
                    failed.append(BatchFailure(
                        principal_id=str(principal_id),
                        reason="Principal not found",
                        error_code=NotFoundError.error_code
                    ))
                    continue

                principal_name = principal.name
                try:
                    async with self.db.begin_nested():
                        opportunity = await self._build_opportunity(
                            request, organization, principal, reference_date
                        )
                        self.db.add(opportunity)
                        await self.db.flush()
                    created_ids.append(opportunity.id)

                except PipelineError as e:
                    failed.append(BatchFailure(
                        principal_id=str(principal_id),
                        principal_name=principal_name,
                        reason=e.message,
                        error_code=e.error_code
                    ))
                except SQLAlchemyError as e:
                    logger.warning("Batch item rejected", principal_id=str(principal_id), error=str(e))
                    failed.append(BatchFailure(
                        principal_id=str(principal_id),
                        principal_name=principal_name,
                        reason="Opportunity could not be saved",
                        error_code=PersistenceError.error_code
                    ))

            await self.db.commit()
            created = await self._get_views(created_ids)

        except PipelineError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Batch creation failed", organization_id=str(request.organization_id), error=str(e))
            raise PersistenceError("Failed to create opportunities") from e

        result = BatchCreationResult(
            success=len(created) > 0,
            created=created,
            failed=failed,
            total_created=len(created),
            total_failed=len(failed)
        )

        if created:
            await self._publish_opportunity_event("opportunities.batch_created", {
                "organization_id": str(request.organization_id),
                "opportunity_ids": [view["id"] for view in created],
                "failed_principal_ids": [item.principal_id for item in failed]
            })

        logger.info(
            "Batch opportunities created",
            organization_id=str(request.organization_id),
            created=result.total_created,
            failed=result.total_failed
        )

        return result

    async def create_opportunity(
        self,
        request: OpportunityCreate,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """Create a single opportunity; a duplicate generated name blocks creation"""

        request = require_valid(validate_opportunity_create(request, today=today), "Invalid opportunity")
        today = today or date.today()

        try:
            organization = await self._require_organization(request.organization_id)
            await self._require_product(request.product_id)
            principal = await self._require_principal(request.principal_id)

            opportunity = await self._build_opportunity(
                request, organization, principal, request.reference_date or today
            )
            self.db.add(opportunity)
            await self.db.commit()

            view = await self._get_view(opportunity.id)

        except PipelineError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Opportunity creation failed", error=str(e))
            raise PersistenceError("Failed to create opportunity") from e

        await self._publish_opportunity_event("opportunities.created", self._event_payload(view))

        logger.info(
            "Opportunity created",
            opportunity_id=view["id"],
            organization_id=view["organization_id"],
            stage=view["stage"],
            auto_generated_name=view["auto_generated_name"]
        )

        return view

    async def get_opportunity(self, opportunity_id: UUID) -> Dict[str, Any]:
        """Get a single active opportunity with related names"""
        try:
            return await self._get_view(opportunity_id)
        except SQLAlchemyError as e:
            logger.error("Failed to get opportunity", opportunity_id=str(opportunity_id), error=str(e))
            raise PersistenceError("Failed to retrieve opportunity") from e

    async def list_opportunities(
        self,
        filters: Optional[OpportunityFilters] = None,
        pagination: Optional[OpportunityPagination] = None
    ) -> Dict[str, Any]:
        """List active opportunities with filtering, sorting and pagination"""

        filters = filters or OpportunityFilters()
        pagination = pagination or OpportunityPagination(limit=settings.default_page_size)

        try:
            conditions = self._filter_conditions(filters)

            count_query = select(func.count()).select_from(Opportunity).where(and_(*conditions))
            total_count = (await self.db.execute(count_query)).scalar_one()

            sort_column = getattr(Opportunity, pagination.sort_by if pagination.sort_by in SORTABLE_FIELDS else "created_at")
            order = desc if pagination.sort_order == "desc" else asc

            query = (
                self._view_query()
                .where(and_(*conditions))
                .order_by(order(sort_column), order(Opportunity.id))
                .offset((pagination.page - 1) * pagination.limit)
                .limit(pagination.limit)
            )
            rows = (await self.db.execute(query)).all()

        except SQLAlchemyError as e:
            logger.error("Failed to list opportunities", error=str(e))
            raise PersistenceError("Failed to retrieve opportunities") from e

        return {
            "opportunities": [self._to_view(row) for row in rows],
            "total_count": total_count,
            "page": pagination.page,
            "limit": pagination.limit,
            "has_next": pagination.page * pagination.limit < total_count,
            "has_previous": pagination.page > 1
        }

    async def update_opportunity(
        self,
        opportunity_id: UUID,
        request: OpportunityUpdate,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """Apply a partial update; a manual rename turns auto naming off"""

        request = require_valid(validate_opportunity_update(request, today=today), "Invalid opportunity update")
        changes = request.model_dump(exclude_unset=True)

        try:
            opportunity = await self._get_row(opportunity_id)
            old_stage = opportunity.stage

            if changes.get("principal_id") is not None:
                await self._require_principal(changes["principal_id"])
            if changes.get("product_id") is not None:
                await self._require_product(changes["product_id"])

            for field, value in changes.items():
                if field == "name":
                    value = value.strip()
                    opportunity.auto_generated_name = False
                    opportunity.name_template = None
                elif field in ("stage", "context") and value is not None:
                    value = value.value
                setattr(opportunity, field, value)

            if opportunity.stage != old_stage:
                opportunity.stage_changed_at = _utcnow()

            await self.db.commit()
            view = await self._get_view(opportunity_id)

        except PipelineError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Opportunity update failed", opportunity_id=str(opportunity_id), error=str(e))
            raise PersistenceError("Failed to update opportunity") from e

        await self._publish_opportunity_event("opportunities.updated", self._event_payload(view, {
            "changed_fields": sorted(changes.keys())
        }))
        if view["stage"] != old_stage:
            await self._publish_opportunity_event("opportunities.stage_changed", self._event_payload(view, {
                "old_stage": old_stage,
                "new_stage": view["stage"]
            }))

        logger.info("Opportunity updated", opportunity_id=str(opportunity_id), fields=sorted(changes.keys()))
        return view

    async def update_stage(self, opportunity_id: UUID, stage: OpportunityStage) -> Dict[str, Any]:
        """Move to a stage and reset probability to that stage's default"""

        try:
            opportunity = await self._get_row(opportunity_id)
            old_stage = opportunity.stage

            opportunity.stage = stage.value
            opportunity.probability_percent = STAGE_DEFAULT_PROBABILITY[stage]
            if stage.value != old_stage:
                opportunity.stage_changed_at = _utcnow()

            await self.db.commit()
            view = await self._get_view(opportunity_id)

        except PipelineError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Stage update failed", opportunity_id=str(opportunity_id), error=str(e))
            raise PersistenceError("Failed to update opportunity stage") from e

        await self._publish_opportunity_event("opportunities.stage_changed", self._event_payload(view, {
            "old_stage": old_stage,
            "new_stage": stage.value
        }))

        logger.info(
            "Opportunity stage changed",
            opportunity_id=str(opportunity_id),
            old_stage=old_stage,
            new_stage=stage.value,
            probability=view["probability_percent"]
        )
        return view

    async def delete_opportunity(self, opportunity_id: UUID) -> Dict[str, Any]:
        """Soft delete; the row disappears from lists, KPIs and name checks"""

        try:
            opportunity = await self._get_row(opportunity_id)
            opportunity.deleted_at = _utcnow()
            await self.db.commit()

        except PipelineError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Opportunity delete failed", opportunity_id=str(opportunity_id), error=str(e))
            raise PersistenceError("Failed to delete opportunity") from e

        await self._publish_opportunity_event("opportunities.deleted", {
            "opportunity_id": str(opportunity_id),
            "name": opportunity.name
        })

        logger.info("Opportunity deleted", opportunity_id=str(opportunity_id))
        return {"id": str(opportunity_id), "deleted": True}

    async def check_name(self, name: str, exclude_id: Optional[UUID] = None) -> bool:
        """Existence check used for live collision probing"""
        try:
            return await self.prober.check_duplicate(name, exclude_id=exclude_id)
        except SQLAlchemyError as e:
            logger.error("Name check failed", error=str(e))
            raise PersistenceError("Failed to check opportunity name") from e

    async def get_kpis(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Dashboard KPIs over all active opportunities"""
        try:
            result = await self.db.execute(select(Opportunity).where(Opportunity.deleted_at.is_(None)))
            opportunities = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("KPI calculation failed", error=str(e))
            raise PersistenceError("Failed to calculate opportunity KPIs") from e

        kpis = calculate_opportunity_kpis((opp.to_dict() for opp in opportunities), now=now)
        logger.info("Opportunity KPIs calculated", total=kpis["total_opportunities"])
        return kpis

    async def get_by_stage(self, limit: int = 1000) -> Dict[str, List[Dict[str, Any]]]:
        """Active opportunities grouped by stage for the pipeline board"""
        try:
            query = (
                self._view_query()
                .where(Opportunity.deleted_at.is_(None))
                .order_by(desc(Opportunity.created_at))
                .limit(limit)
            )
            rows = (await self.db.execute(query)).all()
        except SQLAlchemyError as e:
            logger.error("Failed to list opportunities by stage", error=str(e))
            raise PersistenceError("Failed to retrieve opportunities") from e

        grouped: Dict[str, List[Dict[str, Any]]] = {stage.value: [] for stage in OpportunityStage}
        for row in rows:
            view = self._to_view(row)
            grouped.setdefault(view["stage"], []).append(view)
        return grouped

    async def _build_opportunity(
        self,
        request,
        organization: Organization,
        principal: Optional[Principal],
        reference_date: date
    ) -> Opportunity:
        """Resolve the name (generated or manual) and assemble an unsaved row"""

        if request.auto_generate_name:
            name = generate_name(organization, principal, request.context, reference_date, request.custom_context)
            if await self.prober.check_duplicate(name):
                raise DuplicateNameError(name)
            template = NAME_TEMPLATE
        else:
            name = request.name.strip()
            template = None

        stage = request.stage
        probability = request.probability_percent
        if probability is None:
            probability = STAGE_DEFAULT_PROBABILITY[stage]

        return Opportunity(
            name=name,
            organization_id=organization.id,
            principal_id=principal.id if principal else None,
            product_id=request.product_id,
            context=request.context.value if request.context else None,
            custom_context=request.custom_context,
            stage=stage.value,
            probability_percent=probability,
            expected_close_date=request.expected_close_date,
            estimated_value=request.estimated_value,
            deal_owner=request.deal_owner,
            notes=request.notes,
            auto_generated_name=request.auto_generate_name,
            name_template=template
        )

    async def _require_organization(self, organization_id: UUID) -> Organization:
        result = await self.db.execute(
            select(Organization).where(Organization.id == organization_id, Organization.deleted_at.is_(None))
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            raise ValidationError(
                f"Organization {organization_id} not found",
                {"organization_id": ["Organization not found"]}
            )
        return organization

    async def _require_principal(self, principal_id: Optional[UUID]) -> Optional[Principal]:
        if principal_id is None:
            return None
        principal = (await self._get_principals([principal_id])).get(principal_id)
        if principal is None:
            raise ValidationError(f"Principal {principal_id} not found", {"principal_id": ["Principal not found"]})
        return principal

    async def _require_product(self, product_id: Optional[UUID]) -> Optional[Product]:
        if product_id is None:
            return None
        result = await self.db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if product is None:
            raise ValidationError(f"Product {product_id} not found", {"product_id": ["Product not found"]})
        return product

    async def _get_principals(self, principal_ids: Sequence[UUID]) -> Dict[UUID, Principal]:
        """One query for the whole selection"""
        if not principal_ids:
            return {}
        result = await self.db.execute(select(Principal).where(Principal.id.in_(list(principal_ids))))
        return {principal.id: principal for principal in result.scalars().all()}

    async def _get_row(self, opportunity_id: UUID) -> Opportunity:
        result = await self.db.execute(
            select(Opportunity).where(Opportunity.id == opportunity_id, Opportunity.deleted_at.is_(None))
        )
        opportunity = result.scalar_one_or_none()
        if opportunity is None:
            raise NotFoundError(f"Opportunity {opportunity_id} not found")
        return opportunity

    def _view_query(self):
        return (
            select(
                Opportunity,
                Organization.name.label("organization_name"),
                Organization.type.label("organization_type"),
                Principal.name.label("principal_name"),
                Product.name.label("product_name"),
                Product.category.label("product_category"),
            )
            .join(Organization, Organization.id == Opportunity.organization_id)
            .outerjoin(Principal, Principal.id == Opportunity.principal_id)
            .outerjoin(Product, Product.id == Opportunity.product_id)
        )

    async def _get_view(self, opportunity_id: UUID) -> Dict[str, Any]:
        query = self._view_query().where(Opportunity.id == opportunity_id, Opportunity.deleted_at.is_(None))
        row = (await self.db.execute(query)).first()
        if row is None:
            raise NotFoundError(f"Opportunity {opportunity_id} not found")
        return self._to_view(row)

    async def _get_views(self, opportunity_ids: List[UUID]) -> List[Dict[str, Any]]:
        """Views for the given ids, in the given order"""
        if not opportunity_ids:
            return []
        query = self._view_query().where(Opportunity.id.in_(opportunity_ids))
        views = {row.Opportunity.id: self._to_view(row) for row in (await self.db.execute(query)).all()}
        return [views[opportunity_id] for opportunity_id in opportunity_ids if opportunity_id in views]

    def _to_view(self, row) -> Dict[str, Any]:
        opportunity: Opportunity = row.Opportunity
        view = opportunity.to_dict()

        today = date.today()
        created_at = as_utc(opportunity.created_at)
        view.update({
            "organization_name": row.organization_name or "",
            "organization_type": row.organization_type or "",
            "principal_name": row.principal_name,
            "product_name": row.product_name,
            "product_category": row.product_category,
            "days_since_created": (_utcnow() - created_at).days if created_at else 0,
            "days_to_close": (
                (opportunity.expected_close_date - today).days if opportunity.expected_close_date else None
            ),
        })
        return view

    def _filter_conditions(self, filters: OpportunityFilters) -> list:
        conditions = [Opportunity.deleted_at.is_(None)]

        if filters.search:
            conditions.append(Opportunity.name.ilike(_contains_pattern(filters.search), escape="\\"))
        if filters.stage:
            conditions.append(Opportunity.stage.in_([stage.value for stage in filters.stage]))
        if filters.context:
            conditions.append(Opportunity.context.in_([context.value for context in filters.context]))
        if filters.organization_id:
            conditions.append(Opportunity.organization_id == filters.organization_id)
        if filters.principal_id:
            conditions.append(Opportunity.principal_id == filters.principal_id)
        if filters.product_id:
            conditions.append(Opportunity.product_id == filters.product_id)
        if filters.deal_owner:
            conditions.append(Opportunity.deal_owner == filters.deal_owner)
        if filters.probability_min is not None:
            conditions.append(Opportunity.probability_percent >= filters.probability_min)
        if filters.probability_max is not None:
            conditions.append(Opportunity.probability_percent <= filters.probability_max)
        if filters.is_won is not None:
            if filters.is_won:
                conditions.append(Opportunity.stage == OpportunityStage.CLOSED_WON.value)
            else:
                conditions.append(Opportunity.stage != OpportunityStage.CLOSED_WON.value)

        return conditions

    def _event_payload(self, view: Dict[str, Any], event_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "opportunity_id": view["id"],
            "organization_id": view["organization_id"],
            "principal_id": view["principal_id"],
            "name": view["name"],
            "stage": view["stage"],
            "probability_percent": view["probability_percent"],
            "event_data": event_data or {}
        }

    async def _publish_opportunity_event(self, subject: str, payload: Dict[str, Any]):
        """Publish opportunity event to NATS"""
        if not settings.nats_enabled:
            return
        try:
            nats_client = await get_nats_client()
            await nats_client.publish_event(subject, payload)
        except Exception as e:
            logger.warning("Failed to publish opportunity event", subject=subject, error=str(e))
