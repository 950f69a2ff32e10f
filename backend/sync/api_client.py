from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from sync.config import SyncSettings
from sync.normalize import TemplateView, normalize_template, normalize_templates


logger = logging.getLogger(__name__)


PAGE_SIZE = 100


class ApiRequestError(Exception):
    """A program/template request that did not succeed.

    ``status_code`` is None when the request never got a response.
    """

    def __init__(self, status_code: int | None, code: str, message: str | None = None) -> None:
        super().__init__(message or f"{status_code or 'network'}: {code}")
        self.status_code = status_code
        self.code = code

    @property
    def transient(self) -> bool:
        return self.status_code is None or self.status_code >= 500


@dataclass(frozen=True)
class AttachOutcome:
    template: TemplateView
    already_attached: bool


@dataclass(frozen=True)
class MetadataOutcome:
    template: TemplateView
    updated: bool


@dataclass(frozen=True)
class ProgramTemplates:
    assigned: tuple[TemplateView, ...]
    available: tuple[TemplateView, ...]
    total: int


def _error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"http_{response.status_code}"
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("code") or body.get("error")
        if isinstance(detail, str):
            return detail
    return f"http_{response.status_code}"


class ProgramTemplatesClient:
    """Async client for the program/template link endpoints."""

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        settings: SyncSettings | None = None,
        token: str | None = None,
    ) -> None:
        self._owns_http = http is None
        if http is None:
            settings = settings or SyncSettings()
            headers = {"Authorization": f"Bearer {token}"} if token else None
            http = httpx.AsyncClient(
                base_url=settings.base_url,
                timeout=settings.request_timeout_seconds,
                headers=headers,
            )
        self._http = http

    async def __aenter__(self) -> "ProgramTemplatesClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(method, path, json=json, params=params)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiRequestError(None, "network_error", str(exc)) from exc

        if response.is_error:
            code = _error_code(response)
            logger.info("%s %s -> %s %s", method, path, response.status_code, code)
            raise ApiRequestError(response.status_code, code)
        return response

    @staticmethod
    def _invalid_response(method: str, path: str, response: httpx.Response, reason: str) -> ApiRequestError:
        logger.warning("%s %s -> %s unusable body: %s", method, path, response.status_code, reason)
        return ApiRequestError(response.status_code, "invalid_response", reason)

    def _decode(self, method: str, path: str, response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise self._invalid_response(method, path, response, "body is not JSON") from exc
        return body if isinstance(body, dict) else {"data": body}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._call(method, path, json=json, params=params)
        return self._decode(method, path, response)

    async def _request_template(self, method: str, path: str, *, json: Any = None) -> tuple[dict[str, Any], TemplateView]:
        """Like `_request`, for endpoints that must echo the link as ``template``."""

        response = await self._call(method, path, json=json)
        body = self._decode(method, path, response)
        record = body.get("template")
        if not isinstance(record, dict):
            raise self._invalid_response(method, path, response, "missing template")
        try:
            view = normalize_template(record)
        except ValueError as exc:
            raise self._invalid_response(method, path, response, str(exc)) from exc
        return body, view

    @staticmethod
    def _links_path(program_id: str) -> str:
        return f"/api/programs/{program_id}/templates"

    async def list_templates(
        self,
        program_id: str,
        *,
        include_deleted: bool = False,
        status: str | None = None,
    ) -> ProgramTemplates:
        """Fetch every assigned template (all pages) plus the attach picker list."""

        assigned: list[TemplateView] = []
        available: tuple[TemplateView, ...] = ()
        offset = 0
        total = 0
        while True:
            params: dict[str, Any] = {"limit": PAGE_SIZE, "offset": offset}
            if include_deleted:
                params["include_deleted"] = "true"
            if status:
                params["status"] = status
            body = await self._request("GET", self._links_path(program_id), params=params)
            page = normalize_templates(body.get("data") or [])
            if offset == 0:
                available = normalize_templates(body.get("available") or [])
            assigned.extend(page)
            total = int((body.get("meta") or {}).get("total", len(assigned)))
            offset += len(page)
            if not page or offset >= total:
                break
        return ProgramTemplates(assigned=tuple(assigned), available=available, total=total)

    async def attach(
        self,
        program_id: str,
        template_id: str,
        overrides: dict[str, Any] | None = None,
    ) -> AttachOutcome:
        payload = {"template_id": template_id, **(overrides or {})}
        body, view = await self._request_template("POST", self._links_path(program_id), json=payload)
        return AttachOutcome(
            template=view,
            already_attached=bool(body.get("alreadyAttached")),
        )

    async def detach(self, program_id: str, template_id: str) -> bool:
        body = await self._request("DELETE", f"{self._links_path(program_id)}/{template_id}")
        return bool(body.get("wasAttached"))

    async def update_metadata(self, program_id: str, template_id: str, patch: dict[str, Any]) -> MetadataOutcome:
        body, view = await self._request_template("PATCH", f"{self._links_path(program_id)}/{template_id}", json=patch)
        return MetadataOutcome(template=view, updated=bool(body.get("updated")))

    async def reorder(self, program_id: str, link_ids: list[str]) -> int:
        body = await self._request("POST", f"{self._links_path(program_id)}/reorder", json={"order": link_ids})
        return int(body.get("updated") or 0)
