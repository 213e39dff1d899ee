"""
Pantry CRM Opportunity Store
Client-side cache of the opportunity list, the selected record and batch state
"""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

import structlog

from pipeline.app.services.kpis import calculate_opportunity_kpis
from pipeline.app.services.validation import Err, validate_preview_request

from ..core.config import settings
from ..models.responses import ApiResponse
from ..services.opportunities_api import OpportunitiesApiClient, Payload

logger = structlog.get_logger()

Listener = Callable[["OpportunityStoreState"], None]


def default_pagination() -> Dict[str, Any]:
    return {
        "page": 1,
        "limit": settings.default_page_size,
        "sort_by": "created_at",
        "sort_order": "desc",
    }


@dataclass
class OpportunityStoreState:
    """Everything a list/detail view renders"""
    opportunities: List[Dict[str, Any]] = field(default_factory=list)
    selected: Optional[Dict[str, Any]] = None
    filters: Dict[str, Any] = field(default_factory=dict)
    pagination: Dict[str, Any] = field(default_factory=default_pagination)
    total_count: int = 0
    has_next: bool = False
    has_previous: bool = False
    name_previews: List[Dict[str, Any]] = field(default_factory=list)
    batch_result: Optional[Dict[str, Any]] = None
    is_loading: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    field_errors: Dict[str, List[str]] = field(default_factory=dict)
    not_found: bool = False


class OpportunityStore:
    """Opportunity state container.

    State changes only through the async actions below; none of them raise.
    Failures land in ``error``, ``error_code`` and ``field_errors``. Each
    action remembers the view generation it started in and drops its
    response if ``leave_view()`` ran while it was waiting.
    """

    def __init__(self, api: OpportunitiesApiClient):
        self.api = api
        self.state = OpportunityStoreState()
        self._listeners: List[Listener] = []
        self._generation = 0
        self._list_sequence = 0
        self._pending = 0

    # Observables

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @property
    def error_code(self) -> Optional[str]:
        return self.state.error_code

    @property
    def field_errors(self) -> Dict[str, List[str]]:
        return self.state.field_errors

    @property
    def not_found(self) -> bool:
        return self.state.not_found

    @property
    def kpis(self) -> Dict[str, Any]:
        return calculate_opportunity_kpis(self.state.opportunities, total_count=self.state.total_count)

    @property
    def total_count(self) -> int:
        return self.state.total_count

    @property
    def active_count(self) -> int:
        return self.kpis["active_opportunities"]

    @property
    def average_probability(self) -> int:
        return self.kpis["average_probability"]

    @property
    def won_this_month(self) -> int:
        return self.kpis["won_this_month"]

    @property
    def pipeline_value(self) -> float:
        return self.kpis["pipeline_value"]

    @property
    def stage_distribution(self) -> Dict[str, int]:
        return self.kpis["stage_distribution"]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns the unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Actions

    async def fetch_list(
        self,
        filters: Optional[Dict[str, Any]] = None,
        pagination: Optional[Dict[str, Any]] = None
    ) -> Optional[List[Dict[str, Any]]]:
        """Load one page; a newer call supersedes one still in flight"""
        if filters is not None:
            self._set(filters=dict(filters))
        if pagination is not None:
            self._set(pagination={**self.state.pagination, **pagination})

        self._list_sequence += 1
        sequence = self._list_sequence
        self._clear_failure()

        response = await self._call(self.api.list_opportunities(self.state.filters, self.state.pagination))
        if response is None:
            return None
        if sequence != self._list_sequence:
            logger.debug("Superseded opportunity list response dropped", sequence=sequence)
            return None
        if not response.success:
            self._fail(response)
            return None

        data = response.data
        self._set(
            opportunities=data["opportunities"],
            total_count=data["total_count"],
            has_next=data["has_next"],
            has_previous=data["has_previous"]
        )
        return self.state.opportunities

    async def fetch_one(self, opportunity_id: Union[UUID, str]) -> Optional[Dict[str, Any]]:
        """Load one record into ``selected``; a missing id sets ``not_found``"""
        self._clear_failure()

        response = await self._call(self.api.get_opportunity(opportunity_id))
        if response is None:
            return None
        if not response.success:
            self._fail(response)
            if response.is_not_found:
                self._set(selected=None)
            return None

        self._set(selected=response.data, opportunities=self._replaced(response.data))
        return response.data

    async def create(self, data: Payload) -> Optional[Dict[str, Any]]:
        """Create one opportunity and patch it into the first page.

        The patch is only exact for an unfiltered, newest-first list; under
        any other view the current page is refetched instead.
        """
        self._clear_failure()

        response = await self._call(self.api.create_opportunity(data))
        if response is None:
            return None
        if not response.success:
            self._fail(response)
            return None

        created = response.data
        if not self._is_newest_first_unfiltered():
            await self.fetch_list()
            return created

        opportunities = self.state.opportunities
        if self.state.pagination.get("page", 1) == 1:
            opportunities = [created] + opportunities
            limit = self.state.pagination.get("limit")
            if limit and len(opportunities) > limit:
                opportunities = opportunities[:limit]

        self._set(opportunities=opportunities, total_count=self.state.total_count + 1)
        logger.info("Opportunity added to store", opportunity_id=created["id"])
        return created

    async def create_batch(self, request: Payload) -> Optional[Dict[str, Any]]:
        """Create one opportunity per principal, then refetch the current page"""
        self._clear_failure()

        response = await self._call(self.api.create_batch(request))
        if response is None:
            return None
        if not response.success:
            self._fail(response)
            return None

        result = response.data
        self._set(batch_result=result, name_previews=[])
        logger.info(
            "Batch result received",
            created=result["total_created"],
            failed=result["total_failed"]
        )

        if result["total_created"]:
            await self.fetch_list()
        return result

    async def preview_names(self, request: Payload) -> List[Dict[str, Any]]:
        """Validate naming inputs locally, then ask for one preview per principal"""
        self._clear_failure()

        checked = validate_preview_request(request, max_batch_size=settings.batch_max_size)
        if isinstance(checked, Err):
            self._set(
                name_previews=[],
                error="Some fields need attention",
                error_code="VALIDATION_ERROR",
                field_errors=checked.field_errors
            )
            return []

        response = await self._call(self.api.preview_batch(checked.value))
        if response is None:
            return []
        if not response.success:
            self._fail(response)
            self._set(name_previews=[])
            return []

        self._set(name_previews=response.data)
        return response.data

    async def update(self, opportunity_id: Union[UUID, str], data: Payload) -> Optional[Dict[str, Any]]:
        """Apply a partial update and patch the cached copies"""
        self._clear_failure()
        return self._apply_view(await self._call(self.api.update_opportunity(opportunity_id, data)))

    async def update_stage(self, opportunity_id: Union[UUID, str], stage: Any) -> Optional[Dict[str, Any]]:
        """Move to a stage; the server applies the stage's default probability"""
        self._clear_failure()
        return self._apply_view(await self._call(self.api.update_stage(opportunity_id, stage)))

    async def remove(self, opportunity_id: Union[UUID, str]) -> bool:
        """Delete and drop the record from the cache"""
        self._clear_failure()

        response = await self._call(self.api.delete_opportunity(opportunity_id))
        if response is None:
            return False
        if not response.success:
            self._fail(response)
            return False

        key = str(opportunity_id)
        selected = self.state.selected
        self._set(
            opportunities=[opp for opp in self.state.opportunities if opp["id"] != key],
            total_count=max(self.state.total_count - 1, 0),
            selected=None if selected and selected["id"] == key else selected
        )
        logger.info("Opportunity removed from store", opportunity_id=key)
        return True

    async def check_name(self, name: str, exclude_id: Optional[Union[UUID, str]] = None) -> Optional[bool]:
        """Live collision probe; None when the check itself failed"""
        if not (name or "").strip():
            return False

        response = await self._call(self.api.check_name(name.strip(), exclude_id=exclude_id))
        if response is None:
            return None
        if not response.success:
            self._fail(response)
            return None
        return response.data["exists"]

    async def refresh(self) -> Optional[List[Dict[str, Any]]]:
        """Refetch the current page with the current filters"""
        return await self.fetch_list()

    # Utilities

    def clear_error(self):
        self._clear_failure()

    def clear_selected(self):
        self._set(selected=None, not_found=False)

    def clear_batch_results(self):
        self._set(batch_result=None, name_previews=[])

    def reset_filters(self):
        self._set(filters={}, pagination=default_pagination())

    def leave_view(self):
        """Forget transient view state; responses still in flight are dropped"""
        self._generation += 1
        self._pending = 0
        self._set(
            selected=None,
            name_previews=[],
            batch_result=None,
            is_loading=False,
            error=None,
            error_code=None,
            field_errors={},
            not_found=False
        )

    # Internals

    async def _call(self, call: Awaitable[ApiResponse]) -> Optional[ApiResponse]:
        """Await one API call; None means the view changed meanwhile"""
        generation = self._generation
        self._pending += 1
        self._set(is_loading=True)

        try:
            response = await call
        except Exception as e:
            logger.error("Opportunity store action failed", error=str(e))
            response = ApiResponse(success=False, error="Unexpected error", error_code="INTERNAL_ERROR")

        if generation != self._generation:
            logger.info("Stale opportunity response discarded", generation=generation)
            return None

        self._pending = max(self._pending - 1, 0)
        self._set(is_loading=self._pending > 0)
        return response

    def _apply_view(self, response: Optional[ApiResponse]) -> Optional[Dict[str, Any]]:
        if response is None:
            return None
        if not response.success:
            self._fail(response)
            return None

        view = response.data
        selected = self.state.selected
        self._set(
            opportunities=self._replaced(view),
            selected=view if selected and selected["id"] == view["id"] else selected
        )
        return view

    def _is_newest_first_unfiltered(self) -> bool:
        if any(value not in (None, "", []) for value in self.state.filters.values()):
            return False
        pagination = self.state.pagination
        return pagination.get("sort_by", "created_at") == "created_at" and pagination.get("sort_order", "desc") == "desc"

    def _replaced(self, view: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [view if opp["id"] == view["id"] else opp for opp in self.state.opportunities]

    def _fail(self, response: ApiResponse):
        self._set(
            error=response.error or "Request failed",
            error_code=response.error_code,
            field_errors=response.field_errors,
            not_found=response.is_not_found
        )

    def _clear_failure(self):
        self._set(error=None, error_code=None, field_errors={}, not_found=False)

    def _set(self, **changes):
        self.state = replace(self.state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.warning("Opportunity store listener failed", error=str(e))
