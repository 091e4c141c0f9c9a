"""
MCP server exposing Backlog project and issue operations.

Project access is gated by the ``BACKLOG_PROJECTS`` allow-list, and project
metadata is served from a shared in-memory cache.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from . import handlers
from .access_control import AccessControl
from .client import BacklogApiClient
from .errors import BacklogMcpError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOOL_PREFIX = os.getenv("BACKLOG_PREFIX", "backlog_")


def _tool_name(name: str) -> str:
    return f"{TOOL_PREFIX}{name}"


_client: BacklogApiClient | None = None
_access_control: AccessControl | None = None


def get_client() -> BacklogApiClient:
    global _client
    if _client is None:
        _client = BacklogApiClient.from_env()
        logger.info("Initializing with base_url: %s", _client.base_url)
    return _client


def get_access_control() -> AccessControl:
    global _access_control
    if _access_control is None:
        _access_control = AccessControl.from_env()
    return _access_control


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Fail fast on missing configuration; close the HTTP client on exit."""
    get_client()
    get_access_control()
    try:
        yield
    finally:
        if _client is not None:
            await _client.aclose()


mcp = FastMCP(
    "backlog",
    instructions=(
        "Backlog project management tools. "
        "Projects may be referenced by numeric id or by project key (e.g. 'PROJ'). "
        "Custom fields are passed by field name; list options by option name."
    ),
    lifespan=_lifespan,
)


async def _run(operation: Awaitable[T]) -> T:
    try:
        return await operation
    except BacklogMcpError as exc:
        logger.info("Tool call failed (%s): %s", exc.code, exc.message)
        raise ToolError(exc.message) from exc


@mcp.tool(name=_tool_name("project_details_get"))
async def project_details_get(project_id_or_key: str) -> dict[str, Any]:
    """Get details for a Backlog project.

    Args:
        project_id_or_key: Project id (e.g. "12345") or key (e.g. "PROJ").

    Returns:
        dict with {id, projectKey, name, archived, textFormattingRule, ...}.
    """
    return await _run(
        handlers.get_project_details(get_client(), get_access_control(), project_id_or_key)
    )


@mcp.tool(name=_tool_name("project_custom_field_list_get"))
async def project_custom_field_list_get(project_id_or_key: str) -> list[dict[str, Any]]:
    """List custom field definitions of a project.

    Args:
        project_id_or_key: Project id or key.

    Returns:
        List of field dicts with {id, typeId, type, name, required, ...}; list
        fields include their selectable "items".
    """
    return await _run(
        handlers.get_custom_field_list(get_client(), get_access_control(), project_id_or_key)
    )


@mcp.tool(name=_tool_name("issue_details_get"))
async def issue_details_get(issue_id_or_key: str) -> dict[str, Any]:
    """Get details for a Backlog issue including typed custom field values.

    Args:
        issue_id_or_key: Issue key (e.g. "PROJ-123") or numeric issue id.
    """
    return await _run(
        handlers.get_issue_details(get_client(), get_access_control(), issue_id_or_key)
    )


@mcp.tool(name=_tool_name("issue_add"))
async def issue_add(
    project_id_or_key: str,
    summary: str,
    issue_type_id: int,
    priority_id: int,
    description: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a new issue.

    Args:
        project_id_or_key: Project id or key.
        summary: Issue title.
        issue_type_id: Issue type id.
        priority_id: Priority id.
        description: Optional issue body.
        custom_fields: Optional {field name: value}. Text fields take a string,
            numeric fields a number, date fields "YYYY-MM-DD", single lists an
            option name or {"name", "other"}, multiple lists an array of option
            names or {"items", "other"}, checkboxes an array of option names,
            radios an option name.
    """
    return await _run(
        handlers.add_issue(
            get_client(),
            get_access_control(),
            project_id_or_key,
            summary,
            issue_type_id,
            priority_id,
            description=description,
            custom_fields=custom_fields,
        )
    )


@mcp.tool(name=_tool_name("issue_update"))
async def issue_update(
    issue_id_or_key: str,
    summary: str | None = None,
    description: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Update an issue's summary, description and/or custom fields.

    Args:
        issue_id_or_key: Issue key or id.
        summary: New title.
        description: New body.
        custom_fields: {field name: value}, same formats as issue_add.
    """
    return await _run(
        handlers.update_issue(
            get_client(),
            get_access_control(),
            issue_id_or_key,
            summary=summary,
            description=description,
            custom_fields=custom_fields,
        )
    )


@mcp.tool(name=_tool_name("cache_health_get"))
def cache_health_get() -> dict[str, Any]:
    """Return access-control, project cache and API client state."""
    return handlers.get_health(get_client(), get_access_control())


@mcp.tool(name=_tool_name("cache_clear"))
async def cache_clear() -> dict[str, Any]:
    """Drop every cached project and return the resulting cache state."""
    cache = get_access_control().project_cache
    await cache.clear()
    return cache.stats()


def main() -> None:
    logging.basicConfig(
        level=os.getenv("BACKLOG_LOG_LEVEL", "INFO").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run()


if __name__ == "__main__":
    main()
