"""
Async Backlog REST API (v2) client.

Covers the endpoints the MCP tools need: project details, custom field
definitions, and issue read/create/update. Connection handling is left to
``httpx``; this layer makes exactly one request per call and does not retry.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

import httpx

from .custom_fields import CustomFieldInput, serialize_custom_fields
from .errors import BacklogApiError, ConfigurationError
from .identifiers import ProjectIdOrKey
from .models import CustomFieldType, Project

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
USER_AGENT = "backlog-mcp-server"


def _errors_summary(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        messages = [
            str(error.get("message"))
            for error in body["errors"]
            if isinstance(error, dict) and error.get("message")
        ]
        if messages:
            return "; ".join(messages)
    return response.text.strip() or response.reason_phrase


def _form_data(pairs: list[tuple[str, str]]) -> dict[str, str | list[str]]:
    """Group form pairs so repeated keys are sent once per value."""
    data: dict[str, str | list[str]] = {}
    for key, value in pairs:
        existing = data.get(key)
        if existing is None:
            data[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            data[key] = [existing, value]
    return data


class BacklogApiClient:
    """Thin async wrapper over ``httpx.AsyncClient`` authenticated by API key."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ConfigurationError("Backlog base URL must not be empty")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds or DEFAULT_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        self._request_count = 0
        self._failure_count = 0
        self._last_error: str | None = None
        self._last_failure_at: float | None = None
        self._last_success_at: float | None = None

    @classmethod
    def from_env(cls) -> BacklogApiClient:
        base_url = os.getenv("BACKLOG_BASE_URL")
        if not base_url:
            raise ConfigurationError("BACKLOG_BASE_URL environment variable not set")
        api_key = os.getenv("BACKLOG_API_KEY")
        if not api_key:
            raise ConfigurationError("BACKLOG_API_KEY environment variable not set")

        timeout_seconds = DEFAULT_TIMEOUT_SECONDS
        raw_timeout = os.getenv("BACKLOG_HTTP_TIMEOUT_SECONDS")
        if raw_timeout:
            try:
                timeout_seconds = float(raw_timeout)
            except ValueError:
                logger.warning("Ignoring invalid BACKLOG_HTTP_TIMEOUT_SECONDS value")
        return cls(base_url, api_key, timeout_seconds=timeout_seconds)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self._base_url}/api/v2",
                timeout=self._timeout_seconds,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    def _record_failure(self, exc: Exception) -> None:
        self._failure_count += 1
        self._last_failure_at = time.time()
        self._last_error = f"{exc.__class__.__name__}: {exc}"
        logger.warning("Backlog API call failed (%s): %s", exc.__class__.__name__, exc)

    def _record_success(self) -> None:
        self._failure_count = 0
        self._last_error = None
        self._last_success_at = time.time()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        form: list[tuple[str, str]] | None = None,
    ) -> Any:
        query = [("apiKey", self._api_key), *(params or [])]
        self._request_count += 1
        try:
            response = await self._get_client().request(
                method,
                path,
                params=query,
                data=_form_data(form) if form is not None else None,
            )
        except httpx.HTTPError as exc:
            self._record_failure(exc)
            raise BacklogApiError(None, str(exc) or exc.__class__.__name__) from exc

        if response.is_error:
            error = BacklogApiError(response.status_code, _errors_summary(response))
            self._record_failure(error)
            raise error

        try:
            payload = response.json()
        except ValueError as exc:
            error = BacklogApiError(
                response.status_code,
                f"Failed to parse a successful response from Backlog API: {exc}",
            )
            self._record_failure(error)
            raise error from exc

        self._record_success()
        return payload

    async def get_project(self, project_id_or_key: ProjectIdOrKey) -> Project:
        data = await self._request("GET", f"/projects/{project_id_or_key}")
        return Project.from_api(data)

    async def get_custom_field_list(
        self, project_id_or_key: ProjectIdOrKey
    ) -> list[CustomFieldType]:
        data = await self._request("GET", f"/projects/{project_id_or_key}/customFields")
        if not isinstance(data, list):
            raise BacklogApiError(200, "Expected an array of custom fields")
        return [CustomFieldType.from_api(item) for item in data]

    async def get_issue(self, issue_id_or_key: str) -> dict[str, Any]:
        return await self._request("GET", f"/issues/{issue_id_or_key}")

    async def add_issue(
        self,
        project_id: int,
        summary: str,
        issue_type_id: int,
        priority_id: int,
        description: str | None = None,
        custom_fields: dict[int, CustomFieldInput] | None = None,
    ) -> dict[str, Any]:
        form = [
            ("projectId", str(project_id)),
            ("summary", summary),
            ("issueTypeId", str(issue_type_id)),
            ("priorityId", str(priority_id)),
        ]
        if description is not None:
            form.append(("description", description))
        form.extend(serialize_custom_fields(custom_fields))
        return await self._request("POST", "/issues", form=form)

    async def update_issue(
        self,
        issue_id_or_key: str,
        summary: str | None = None,
        description: str | None = None,
        custom_fields: dict[int, CustomFieldInput] | None = None,
    ) -> dict[str, Any]:
        form: list[tuple[str, str]] = []
        if summary is not None:
            form.append(("summary", summary))
        if description is not None:
            form.append(("description", description))
        form.extend(serialize_custom_fields(custom_fields))
        return await self._request("PATCH", f"/issues/{issue_id_or_key}", form=form)

    def get_health(self) -> dict[str, Any]:
        return {
            "baseUrl": self._base_url,
            "requestCount": self._request_count,
            "failureCount": self._failure_count,
            "lastError": self._last_error,
            "lastFailureAt": self._last_failure_at,
            "lastSuccessAt": self._last_success_at,
        }

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
