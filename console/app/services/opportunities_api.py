"""
Pantry CRM Console Opportunities API Client
httpx wrapper over the pipeline opportunity endpoints
"""

import json
from typing import Any, Dict, Optional, Union
from uuid import UUID

import httpx
from pydantic import BaseModel
import structlog

from ..core.config import settings
from ..models.responses import ApiResponse

logger = structlog.get_logger()

PERSISTENCE_ERROR = "PERSISTENCE_ERROR"

Payload = Union[BaseModel, Dict[str, Any]]


def _to_json(payload: Optional[Payload]) -> Optional[Dict[str, Any]]:
    """Plain JSON types for models and dicts holding UUIDs, dates or decimals"""
    if payload is None:
        return None
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", exclude_unset=True)
    return json.loads(json.dumps(payload, default=str))


def _to_params(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for key, value in (values or {}).items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple)):
            params[key] = [getattr(item, "value", item) for item in value]
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(getattr(value, "value", value))
    return params


class OpportunitiesApiClient:
    """Talks to the pipeline API and always answers with an ApiResponse.

    Network failures and undecodable answers come back as
    ``PERSISTENCE_ERROR`` envelopes instead of exceptions.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings.pipeline_api_url).rstrip("/")
        self.timeout = timeout or settings.pipeline_api_timeout
        self._client = client

    def _url(self, path: str) -> str:
        return f"{self.base_url}{settings.api_v1_prefix}/opportunities{path}"

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Payload] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        url = self._url(path)
        kwargs: Dict[str, Any] = {
            "params": _to_params(params),
            "headers": {"User-Agent": f"{settings.app_name}/{settings.version}"}
        }
        if json_body is not None:
            kwargs["json"] = _to_json(json_body)

        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)

        except httpx.RequestError as e:
            logger.error("Pipeline API connection failed", method=method, path=path, error=str(e))
            return ApiResponse(
                success=False,
                error="Pipeline service temporarily unavailable",
                error_code=PERSISTENCE_ERROR
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict) or "success" not in body:
            logger.warning(
                "Unexpected pipeline API response",
                method=method,
                path=path,
                status_code=response.status_code
            )
            return ApiResponse(
                success=False,
                error=f"Unexpected response from pipeline service ({response.status_code})",
                error_code=PERSISTENCE_ERROR,
                status_code=response.status_code
            )

        result = ApiResponse.model_validate({
            **body,
            "field_errors": body.get("field_errors") or {},
            "status_code": response.status_code
        })

        if not result.success:
            logger.info(
                "Pipeline API rejected request",
                method=method,
                path=path,
                status_code=response.status_code,
                error_code=result.error_code
            )

        return result

    async def list_opportunities(
        self,
        filters: Optional[Dict[str, Any]] = None,
        pagination: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        return await self._request("GET", "/", params={**(filters or {}), **(pagination or {})})

    async def get_opportunity(self, opportunity_id: Union[UUID, str]) -> ApiResponse:
        return await self._request("GET", f"/{opportunity_id}")

    async def create_opportunity(self, data: Payload) -> ApiResponse:
        return await self._request("POST", "/", json_body=data)

    async def preview_batch(self, request: Payload) -> ApiResponse:
        return await self._request("POST", "/batch/preview", json_body=request)

    async def create_batch(self, request: Payload) -> ApiResponse:
        return await self._request("POST", "/batch", json_body=request)

    async def update_opportunity(self, opportunity_id: Union[UUID, str], data: Payload) -> ApiResponse:
        return await self._request("PATCH", f"/{opportunity_id}", json_body=data)

    async def update_stage(self, opportunity_id: Union[UUID, str], stage: Any) -> ApiResponse:
        return await self._request(
            "PATCH", f"/{opportunity_id}/stage", json_body={"stage": getattr(stage, "value", stage)}
        )

    async def delete_opportunity(self, opportunity_id: Union[UUID, str]) -> ApiResponse:
        return await self._request("DELETE", f"/{opportunity_id}")

    async def check_name(self, name: str, exclude_id: Optional[Union[UUID, str]] = None) -> ApiResponse:
        return await self._request("GET", "/name-check", params={"name": name, "exclude_id": exclude_id})

    async def get_kpis(self) -> ApiResponse:
        return await self._request("GET", "/kpis")

    async def get_stage_definitions(self) -> ApiResponse:
        return await self._request("GET", "/stages/definitions")
