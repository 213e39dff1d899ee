"""
Test opportunity service: previews, batch creation and CRUD
"""

import pytest
from datetime import date, timedelta
from uuid import UUID, uuid4
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from pipeline.app.core.errors import ValidationError, NotFoundError, DuplicateNameError
from pipeline.app.models import Opportunity, OpportunityStage, Principal
from pipeline.app.models.organizations import utcnow
from pipeline.app.schemas.requests import (
    BatchCreationRequest,
    OpportunityCreate,
    OpportunityUpdate,
    OpportunityFilters,
    OpportunityPagination,
)
from pipeline.app.services.opportunity_service import OpportunityService
from pipeline.app.services.uniqueness import OpportunityNameProber

JANE_NAME = "Test Corp - Jane Doe - New Business - Jan 2025"
JOHN_NAME = "Test Corp - John Roe - New Business - Jan 2025"


class FailingProber(OpportunityNameProber):
    """Fails the lookup for one principal's name"""

    def __init__(self, db, failing_fragment: str):
        super().__init__(db)
        self.failing_fragment = failing_fragment

    async def check_duplicate(self, candidate_name, exclude_id=None):
        if self.failing_fragment in candidate_name:
            raise OperationalError("SELECT opportunities.id", {}, Exception("database is locked"))
        return await super().check_duplicate(candidate_name, exclude_id=exclude_id)


async def count_active(test_db) -> int:
    result = await test_db.execute(
        select(func.count()).select_from(Opportunity).where(Opportunity.deleted_at.is_(None))
    )
    return result.scalar_one()


async def test_preview_flags_collision_in_order(service, batch_payload, make_opportunity):
    """Second principal collides with an existing opportunity."""
    await make_opportunity(JOHN_NAME)

    previews = await service.preview_batch(BatchCreationRequest(**batch_payload))

    assert [p.principal_id for p in previews] == batch_payload["principal_ids"]
    assert [p.generated_name for p in previews] == [JANE_NAME, JOHN_NAME]
    assert [p.is_duplicate for p in previews] == [False, True]
    assert previews[0].principal_name == "Jane Doe"


async def test_preview_duplicate_check_is_case_insensitive(service, batch_payload, make_opportunity):
    await make_opportunity(JANE_NAME.upper())

    previews = await service.preview_batch(BatchCreationRequest(**batch_payload))

    assert previews[0].is_duplicate is True


async def test_preview_ignores_deleted_opportunities(service, batch_payload, make_opportunity):
    await make_opportunity(JANE_NAME, deleted_at=utcnow())

    previews = await service.preview_batch(BatchCreationRequest(**batch_payload))

    assert previews[0].is_duplicate is False


async def test_preview_marks_unknown_principal_in_place(service, batch_payload):
    missing = str(uuid4())
    batch_payload["principal_ids"].insert(1, missing)

    previews = await service.preview_batch(BatchCreationRequest(**batch_payload))

    assert len(previews) == 3
    assert previews[1].principal_id == missing
    assert previews[1].error == "Principal not found"
    assert previews[1].generated_name is None
    assert previews[0].generated_name == JANE_NAME
    assert previews[2].generated_name == JOHN_NAME


async def test_preview_requires_known_organization(service, batch_payload):
    batch_payload["organization_id"] = str(uuid4())

    with pytest.raises(ValidationError) as exc_info:
        await service.preview_batch(BatchCreationRequest(**batch_payload))

    assert "organization_id" in exc_info.value.field_errors


async def test_create_batch_isolates_duplicate(service, batch_payload, make_opportunity, seed, test_db):
    """One of two principals collides; the other is still created."""
    await make_opportunity(JOHN_NAME)

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.success is True
    assert result.total_created == 1
    assert result.total_failed == 1
    assert result.created[0]["name"] == JANE_NAME
    assert result.created[0]["auto_generated_name"] is True
    assert result.created[0]["principal_name"] == "Jane Doe"
    assert result.failed[0].principal_id == str(seed.principals[1].id)
    assert result.failed[0].error_code == "DUPLICATE_NAME"
    assert await count_active(test_db) == 2


async def test_create_batch_survives_persistence_failure(test_db, batch_payload, seed):
    """A failing principal in the middle does not stop the others."""
    batch_payload["principal_ids"].append(str(seed.principals[2].id))
    service = OpportunityService(test_db, prober=FailingProber(test_db, "John Roe"))

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.total_created + result.total_failed == 3
    assert [view["principal_name"] for view in result.created] == ["Jane Doe", "Ana Ruiz"]
    assert result.failed[0].principal_name == "John Roe"
    assert result.failed[0].error_code == "PERSISTENCE_ERROR"
    assert await count_active(test_db) == 2


async def test_create_batch_reports_unknown_principal(service, batch_payload, test_db):
    missing = str(uuid4())
    batch_payload["principal_ids"] = [missing] + batch_payload["principal_ids"]

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.total_created == 2
    assert result.failed[0].principal_id == missing
    assert result.failed[0].error_code == "NOT_FOUND"


async def test_create_batch_validates_shared_fields_once(service, batch_payload, test_db):
    batch_payload["probability_percent"] = 101
    batch_payload["expected_close_date"] = (date.today() - timedelta(days=3)).isoformat()

    with pytest.raises(ValidationError) as exc_info:
        await service.create_batch(BatchCreationRequest(**batch_payload))

    assert exc_info.value.field_errors["probability_percent"] == ["Probability cannot exceed 100%"]
    assert exc_info.value.field_errors["expected_close_date"] == ["Close date should be in the future"]
    assert await count_active(test_db) == 0


async def test_create_batch_all_duplicates_is_not_success(service, batch_payload, make_opportunity):
    await make_opportunity(JANE_NAME)
    await make_opportunity(JOHN_NAME)

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.success is False
    assert result.total_failed == 2
    assert result.created == []


async def test_overlong_generated_name_fails_only_that_principal(service, batch_payload, seed, test_db):
    """A name too long to store is an input error for its principal, in preview and batch."""
    long_principal = Principal(name="P" * 250, organization_id=seed.organization.id)
    test_db.add(long_principal)
    await test_db.commit()

    batch_payload["principal_ids"].append(str(long_principal.id))
    batch_payload.update({"context": "CUSTOM", "custom_context": "C" * 240})

    previews = await service.preview_batch(BatchCreationRequest(**batch_payload))
    assert [p.generated_name is not None for p in previews] == [True, True, False]
    assert previews[2].error == "Generated name exceeds 500 characters"

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.total_created == 2
    assert result.failed[0].principal_id == str(long_principal.id)
    assert result.failed[0].error_code == "INVALID_INPUT"
    assert await count_active(test_db) == 2


async def test_create_batch_uses_stage_default_probability(service, batch_payload, seed):
    batch_payload["stage"] = "demo_scheduled"
    batch_payload["product_id"] = str(seed.product.id)

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert all(view["probability_percent"] == 80 for view in result.created)
    assert all(view["product_name"] == "Smoked Brisket" for view in result.created)


async def test_create_batch_manual_name_skips_uniqueness(service, batch_payload):
    batch_payload.update({"auto_generate_name": False, "name": "Spring Promo"})

    result = await service.create_batch(BatchCreationRequest(**batch_payload))

    assert result.total_created == 2
    assert {view["name"] for view in result.created} == {"Spring Promo"}
    assert all(view["auto_generated_name"] is False for view in result.created)
    assert all(view["name_template"] is None for view in result.created)


async def test_create_opportunity_duplicate_generated_name_fails_fast(service, seed, make_opportunity):
    await make_opportunity(JANE_NAME)

    with pytest.raises(DuplicateNameError):
        await service.create_opportunity(OpportunityCreate(
            organization_id=seed.organization.id,
            principal_id=seed.principals[0].id,
            stage=OpportunityStage.NEW_LEAD,
            context="NEW_BUSINESS",
            auto_generate_name=True,
            reference_date=date(2025, 1, 15)
        ))


async def test_create_and_get_opportunity(service, seed):
    close_date = date.today() + timedelta(days=45)
    created = await service.create_opportunity(OpportunityCreate(
        organization_id=seed.organization.id,
        principal_id=seed.principals[1].id,
        product_id=seed.product.id,
        stage=OpportunityStage.FEEDBACK_LOGGED,
        name="  Holiday Menu Expansion ",
        expected_close_date=close_date,
        estimated_value=12500,
        deal_owner="Sarah Johnson"
    ))

    fetched = await service.get_opportunity(UUID(created["id"]))

    assert fetched["name"] == "Holiday Menu Expansion"
    assert fetched["probability_percent"] == 60
    assert fetched["expected_close_date"] == close_date.isoformat()
    assert fetched["estimated_value"] == 12500.0
    assert fetched["organization_name"] == "Test Corp"
    assert fetched["principal_name"] == "John Roe"
    assert fetched["days_to_close"] == 45
    assert fetched["is_won"] is False


async def test_get_missing_opportunity(service):
    with pytest.raises(NotFoundError):
        await service.get_opportunity(uuid4())


async def test_manual_rename_turns_off_auto_naming(service, batch_payload):
    result = await service.create_batch(BatchCreationRequest(**batch_payload))
    opportunity_id = UUID(result.created[0]["id"])

    updated = await service.update_opportunity(
        opportunity_id, OpportunityUpdate(name="Renamed Deal", notes="Chef loved the samples")
    )

    assert updated["name"] == "Renamed Deal"
    assert updated["notes"] == "Chef loved the samples"
    assert updated["auto_generated_name"] is False
    assert updated["name_template"] is None


async def test_update_rejects_invalid_probability(service, make_opportunity):
    opportunity = await make_opportunity("Spring Promo")

    with pytest.raises(ValidationError):
        await service.update_opportunity(opportunity.id, OpportunityUpdate(probability_percent=-1))


async def test_update_stage_applies_default_probability(service, make_opportunity):
    opportunity = await make_opportunity("Spring Promo")

    updated = await service.update_stage(opportunity.id, OpportunityStage.CLOSED_WON)

    assert updated["stage"] == "closed_won"
    assert updated["probability_percent"] == 100
    assert updated["is_won"] is True


async def test_soft_delete_hides_opportunity(service, make_opportunity, test_db):
    opportunity = await make_opportunity(JANE_NAME)

    result = await service.delete_opportunity(opportunity.id)

    assert result == {"id": str(opportunity.id), "deleted": True}
    with pytest.raises(NotFoundError):
        await service.get_opportunity(opportunity.id)
    assert await service.check_name(JANE_NAME) is False
    listing = await service.list_opportunities()
    assert listing["total_count"] == 0

    row = await test_db.get(Opportunity, opportunity.id)
    assert row.is_deleted


async def test_delete_missing_opportunity(service):
    with pytest.raises(NotFoundError):
        await service.delete_opportunity(uuid4())


async def test_list_filters_and_pagination(service, make_opportunity):
    await make_opportunity("Alpha Deal", stage="new_lead")
    await make_opportunity("Beta Deal", stage="demo_scheduled", probability_percent=80)
    await make_opportunity("Gamma Deal", stage="closed_won", probability_percent=100)

    listing = await service.list_opportunities(
        OpportunityFilters(),
        OpportunityPagination(page=1, limit=2, sort_by="name", sort_order="asc")
    )
    assert [view["name"] for view in listing["opportunities"]] == ["Alpha Deal", "Beta Deal"]
    assert listing["total_count"] == 3
    assert listing["has_next"] is True
    assert listing["has_previous"] is False

    listing = await service.list_opportunities(OpportunityFilters(stage=[OpportunityStage.DEMO_SCHEDULED]))
    assert [view["name"] for view in listing["opportunities"]] == ["Beta Deal"]

    listing = await service.list_opportunities(OpportunityFilters(search="gamma"))
    assert [view["name"] for view in listing["opportunities"]] == ["Gamma Deal"]

    listing = await service.list_opportunities(OpportunityFilters(is_won=False, probability_min=50))
    assert [view["name"] for view in listing["opportunities"]] == ["Beta Deal"]


async def test_kpis_and_stage_board(service, make_opportunity):
    await make_opportunity("Alpha Deal", stage="new_lead", probability_percent=10, estimated_value=1000)
    await make_opportunity("Beta Deal", stage="demo_scheduled", probability_percent=80, estimated_value=5000)
    await make_opportunity("Gamma Deal", stage="closed_won", probability_percent=100, estimated_value=9000)

    kpis = await service.get_kpis()

    assert kpis["total_opportunities"] == 3
    assert kpis["active_opportunities"] == 2
    assert kpis["won_opportunities"] == 1
    assert kpis["won_this_month"] == 1
    assert kpis["average_probability"] == 63
    assert kpis["conversion_rate"] == 33
    assert kpis["pipeline_value"] == 4100.0
    assert kpis["stage_distribution"]["demo_scheduled"] == 1

    board = await service.get_by_stage()
    assert list(board) == [stage.value for stage in OpportunityStage]
    assert [view["name"] for view in board["closed_won"]] == ["Gamma Deal"]
    assert board["awaiting_response"] == []


async def test_search_matches_wildcards_literally(service, make_opportunity):
    await make_opportunity("Promo 50% Off")
    await make_opportunity("Promo 500 Units")
    await make_opportunity("Deal_A")
    await make_opportunity("DealXA")

    listing = await service.list_opportunities(OpportunityFilters(search="50%"))
    assert [view["name"] for view in listing["opportunities"]] == ["Promo 50% Off"]

    listing = await service.list_opportunities(OpportunityFilters(search="l_a"))
    assert [view["name"] for view in listing["opportunities"]] == ["Deal_A"]
