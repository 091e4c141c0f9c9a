"""
Tool implementations shared by the MCP server.

Every handler checks project access before touching project data, and
returns plain JSON-ready structures.
"""

from __future__ import annotations

import logging
from typing import Any

from .access_control import AccessControl
from .client import BacklogApiClient
from .custom_field_resolver import resolve_custom_fields
from .custom_fields import CustomFieldWithValue
from .errors import InvalidIdentifierError, NothingToUpdateError
from .identifiers import ProjectIdOrKey
from .models import Issue

logger = logging.getLogger(__name__)


def _issue_ref(issue_id_or_key: str) -> str:
    ref = issue_id_or_key.strip()
    if not ref:
        raise InvalidIdentifierError("issue_id_or_key must not be empty")
    return ref


async def _fetch_issue(
    client: BacklogApiClient, access_control: AccessControl, issue_id_or_key: str
) -> Issue:
    issue = Issue.from_api(await client.get_issue(_issue_ref(issue_id_or_key)))
    await access_control.check_project_access_by_id_async(issue.project_id, client)
    return issue


async def get_project_details(
    client: BacklogApiClient, access_control: AccessControl, project_id_or_key: str
) -> dict[str, Any]:
    project_ref = ProjectIdOrKey.parse(project_id_or_key)
    await access_control.check_project_access_id_or_key_async(project_ref, client)
    project = await access_control.project_cache.resolve(project_ref, client)
    return project.to_dict()


async def get_custom_field_list(
    client: BacklogApiClient, access_control: AccessControl, project_id_or_key: str
) -> list[dict[str, Any]]:
    project_ref = ProjectIdOrKey.parse(project_id_or_key)
    await access_control.check_project_access_id_or_key_async(project_ref, client)
    fields = await client.get_custom_field_list(project_ref)
    return [field.to_dict() for field in fields]


async def get_issue_details(
    client: BacklogApiClient, access_control: AccessControl, issue_id_or_key: str
) -> dict[str, Any]:
    issue = await _fetch_issue(client, access_control, issue_id_or_key)
    result = dict(issue.raw)
    result["customFields"] = [
        CustomFieldWithValue.from_api(field).to_dict()
        for field in issue.raw.get("customFields") or []
    ]
    return result


async def add_issue(
    client: BacklogApiClient,
    access_control: AccessControl,
    project_id_or_key: str,
    summary: str,
    issue_type_id: int,
    priority_id: int,
    description: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict[str, Any]:
    project_ref = ProjectIdOrKey.parse(project_id_or_key)
    if project_ref.id is not None:
        project_id = project_ref.id
    else:
        project = await access_control.project_cache.resolve(project_ref, client)
        project_id = project.id

    await access_control.check_project_access_by_id_async(project_id, client)

    resolved = None
    if custom_fields:
        resolved = await resolve_custom_fields(
            client, ProjectIdOrKey.from_id(project_id), custom_fields
        )

    created = await client.add_issue(
        project_id,
        summary,
        issue_type_id,
        priority_id,
        description=description,
        custom_fields=resolved,
    )
    logger.info("Created issue %s in project %s", created.get("issueKey"), project_id)
    return created


async def update_issue(
    client: BacklogApiClient,
    access_control: AccessControl,
    issue_id_or_key: str,
    summary: str | None = None,
    description: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if summary is None and description is None and not custom_fields:
        raise NothingToUpdateError()

    issue = await _fetch_issue(client, access_control, issue_id_or_key)

    resolved = None
    if custom_fields:
        resolved = await resolve_custom_fields(
            client, ProjectIdOrKey.from_id(issue.project_id), custom_fields
        )

    return await client.update_issue(
        _issue_ref(issue_id_or_key),
        summary=summary,
        description=description,
        custom_fields=resolved,
    )


def get_health(client: BacklogApiClient, access_control: AccessControl) -> dict[str, Any]:
    return {
        "accessControl": {
            "enabled": access_control.is_enabled(),
            "allowedProjects": access_control.allowed_projects,
        },
        "projectCache": access_control.project_cache.stats(),
        "api": client.get_health(),
    }
