"""
Pantry CRM Opportunity API Endpoints
Opportunity CRUD, name previews and batch creation
"""

from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ..core.database import get_db
from ..core.errors import PipelineError
from ..models.opportunities import (
    OpportunityStage,
    OpportunityContext,
    STAGE_LABELS,
    STAGE_DEFAULT_PROBABILITY,
)
from ..schemas.requests import (
    BatchCreationRequest,
    OpportunityCreate,
    OpportunityUpdate,
    StageUpdateRequest,
    OpportunityFilters,
    OpportunityPagination,
)
from ..services.opportunity_service import OpportunityService

logger = structlog.get_logger()
router = APIRouter(prefix="/opportunities", tags=["opportunities"])


def _success(data) -> dict:
    return {"success": True, "data": data}


def _error_response(error: PipelineError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


def _unexpected_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": message, "error_code": "INTERNAL_ERROR", "field_errors": {}}
    )


@router.get("/")
async def list_opportunities(
    search: Optional[str] = Query(None, description="Case-insensitive name search"),
    stage: Optional[List[OpportunityStage]] = Query(None, description="Filter by stage"),
    context: Optional[List[OpportunityContext]] = Query(None, description="Filter by context"),
    organization_id: Optional[UUID] = Query(None),
    principal_id: Optional[UUID] = Query(None),
    product_id: Optional[UUID] = Query(None),
    deal_owner: Optional[str] = Query(None),
    probability_min: Optional[int] = Query(None, ge=0, le=100),
    probability_max: Optional[int] = Query(None, ge=0, le=100),
    is_won: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", pattern=r"^(name|stage|probability_percent|expected_close_date|created_at|updated_at)$"),
    sort_order: str = Query("desc", pattern=r"^(asc|desc)$"),
    db: AsyncSession = Depends(get_db)
):
    """List opportunities with filtering and pagination"""
    try:
        filters = OpportunityFilters(
            search=search,
            stage=stage,
            context=context,
            organization_id=organization_id,
            principal_id=principal_id,
            product_id=product_id,
            deal_owner=deal_owner,
            probability_min=probability_min,
            probability_max=probability_max,
            is_won=is_won
        )
        pagination = OpportunityPagination(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)

        result = await OpportunityService(db).list_opportunities(filters, pagination)
        return _success(result)

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Failed to list opportunities", error=str(e))
        return _unexpected_error("Failed to retrieve opportunities")


@router.get("/kpis")
async def get_opportunity_kpis(db: AsyncSession = Depends(get_db)):
    """Dashboard KPIs over active opportunities"""
    try:
        return _success(await OpportunityService(db).get_kpis())

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Opportunity KPIs failed", error=str(e))
        return _unexpected_error("Failed to calculate opportunity KPIs")


@router.get("/by-stage")
async def get_opportunities_by_stage(db: AsyncSession = Depends(get_db)):
    """Active opportunities grouped by stage"""
    try:
        return _success(await OpportunityService(db).get_by_stage())

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Stage board failed", error=str(e))
        return _unexpected_error("Failed to retrieve pipeline board")


@router.get("/stages/definitions")
async def get_stage_definitions():
    """Get stage definitions in pipeline order"""
    return _success({
        "stages": [
            {
                "value": stage.value,
                "name": STAGE_LABELS[stage],
                "order": index,
                "default_probability": STAGE_DEFAULT_PROBABILITY[stage]
            }
            for index, stage in enumerate(OpportunityStage)
        ],
        "contexts": [context.value for context in OpportunityContext]
    })


@router.get("/name-check")
async def check_opportunity_name(
    name: str = Query(..., min_length=1, description="Candidate opportunity name"),
    exclude_id: Optional[UUID] = Query(None, description="Opportunity being renamed"),
    db: AsyncSession = Depends(get_db)
):
    """Check whether an active opportunity already uses a name"""
    try:
        exists = await OpportunityService(db).check_name(name, exclude_id=exclude_id)
        return _success({"name": name, "exists": exists})

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Name check failed", error=str(e))
        return _unexpected_error("Failed to check opportunity name")


@router.post("/batch/preview")
async def preview_batch_names(
    request: BatchCreationRequest,
    db: AsyncSession = Depends(get_db)
):
    """Preview the generated name for each selected principal"""
    try:
        previews = await OpportunityService(db).preview_batch(request)
        return _success([preview.model_dump() for preview in previews])

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Name preview failed", error=str(e))
        return _unexpected_error("Failed to generate name previews")


@router.post("/batch")
async def create_batch_opportunities(
    request: BatchCreationRequest,
    db: AsyncSession = Depends(get_db)
):
    """Create one opportunity per principal; partial failures are reported, not raised"""
    try:
        result = await OpportunityService(db).create_batch(request)
        return _success(result.model_dump())

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Batch creation failed", error=str(e))
        return _unexpected_error("Failed to create opportunities")


@router.post("/")
async def create_opportunity(
    request: OpportunityCreate,
    db: AsyncSession = Depends(get_db)
):
    """Create a single opportunity"""
    try:
        return _success(await OpportunityService(db).create_opportunity(request))

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Opportunity creation failed", error=str(e))
        return _unexpected_error("Failed to create opportunity")


@router.get("/{opportunity_id}")
async def get_opportunity(
    opportunity_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Get a specific opportunity by ID"""
    try:
        return _success(await OpportunityService(db).get_opportunity(opportunity_id))

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Failed to get opportunity", opportunity_id=str(opportunity_id), error=str(e))
        return _unexpected_error("Failed to retrieve opportunity")


@router.patch("/{opportunity_id}")
async def update_opportunity(
    opportunity_id: UUID,
    request: OpportunityUpdate,
    db: AsyncSession = Depends(get_db)
):
    """Update an opportunity"""
    try:
        return _success(await OpportunityService(db).update_opportunity(opportunity_id, request))

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Opportunity update failed", opportunity_id=str(opportunity_id), error=str(e))
        return _unexpected_error("Failed to update opportunity")


@router.patch("/{opportunity_id}/stage")
async def update_opportunity_stage(
    opportunity_id: UUID,
    request: StageUpdateRequest,
    db: AsyncSession = Depends(get_db)
):
    """Change stage and apply the stage's default probability"""
    try:
        return _success(await OpportunityService(db).update_stage(opportunity_id, request.stage))

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Stage update failed", opportunity_id=str(opportunity_id), error=str(e))
        return _unexpected_error("Failed to update opportunity stage")


@router.delete("/{opportunity_id}")
async def delete_opportunity(
    opportunity_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Soft delete an opportunity"""
    try:
        return _success(await OpportunityService(db).delete_opportunity(opportunity_id))

    except PipelineError as e:
        return _error_response(e)
    except Exception as e:
        logger.error("Opportunity delete failed", opportunity_id=str(opportunity_id), error=str(e))
        return _unexpected_error("Failed to delete opportunity")
