from __future__ import annotations

import asyncio
from typing import Any

import pytest

from backlog_mcp import handlers
from backlog_mcp.access_control import AccessControl
from backlog_mcp.custom_fields import SingleListInput
from backlog_mcp.errors import (
    BacklogApiError,
    NothingToUpdateError,
    ProjectAccessDeniedError,
)
from backlog_mcp.identifiers import ProjectIdOrKey
from backlog_mcp.models import CustomFieldType, Project

PROJECTS = [
    Project(id=1, project_key="ALLOWED", name="Allowed"),
    Project(id=2, project_key="SECRET", name="Secret"),
]

ISSUES = {
    "ALLOWED-1": {
        "id": 100,
        "issueKey": "ALLOWED-1",
        "projectId": 1,
        "summary": "First",
        "customFields": [
            {"id": 4, "fieldTypeId": 5, "name": "Priority", "value": {"id": 400, "name": "High"}},
            {"id": 2, "fieldTypeId": 3, "name": "Points", "value": None},
        ],
    },
    "SECRET-1": {"id": 200, "issueKey": "SECRET-1", "projectId": 2, "summary": "Hidden"},
}


class FakeClient:
    def __init__(self):
        self.calls: list[tuple[str, Any]] = []

    async def get_project(self, project_id_or_key: ProjectIdOrKey) -> Project:
        self.calls.append(("get_project", str(project_id_or_key)))
        for project in PROJECTS:
            if project.id == project_id_or_key.id or project.project_key == project_id_or_key.key:
                return project
        raise BacklogApiError(404, "No project.")

    async def get_custom_field_list(self, project_id_or_key: ProjectIdOrKey):
        self.calls.append(("get_custom_field_list", str(project_id_or_key)))
        return [
            CustomFieldType.from_api(
                {
                    "id": 4,
                    "typeId": 5,
                    "name": "Priority",
                    "items": [{"id": 400, "name": "High"}, {"id": 401, "name": "Low"}],
                }
            )
        ]

    async def get_issue(self, issue_id_or_key: str) -> dict[str, Any]:
        self.calls.append(("get_issue", issue_id_or_key))
        return ISSUES[issue_id_or_key]

    async def add_issue(self, project_id, summary, issue_type_id, priority_id, **kwargs):
        self.calls.append(("add_issue", (project_id, summary, kwargs)))
        return {"id": 300, "issueKey": "ALLOWED-2", "projectId": project_id}

    async def update_issue(self, issue_id_or_key, **kwargs):
        self.calls.append(("update_issue", (issue_id_or_key, kwargs)))
        return {"id": 100, "issueKey": issue_id_or_key}

    def get_health(self) -> dict[str, Any]:
        return {"requestCount": len(self.calls)}


def test_project_details_by_key():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    result = asyncio.run(handlers.get_project_details(client, access, "ALLOWED"))

    assert result["id"] == 1
    assert result["projectKey"] == "ALLOWED"


def test_project_details_denied_before_fetch():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    with pytest.raises(ProjectAccessDeniedError):
        asyncio.run(handlers.get_project_details(client, access, "SECRET"))
    assert client.calls == []


def test_custom_field_list_returns_definitions():
    client = FakeClient()
    access = AccessControl()

    result = asyncio.run(handlers.get_custom_field_list(client, access, "1"))

    assert result[0]["name"] == "Priority"
    assert [item["name"] for item in result[0]["items"]] == ["High", "Low"]


def test_issue_details_decodes_custom_fields():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    result = asyncio.run(handlers.get_issue_details(client, access, "ALLOWED-1"))

    assert result["summary"] == "First"
    assert result["customFields"][0]["value"] == {"id": 400, "name": "High"}
    assert result["customFields"][0]["type"] == "single_list"
    assert result["customFields"][1]["value"] is None


def test_issue_details_checks_issue_project():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    with pytest.raises(ProjectAccessDeniedError):
        asyncio.run(handlers.get_issue_details(client, access, "SECRET-1"))


def test_add_issue_resolves_key_and_custom_fields():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    result = asyncio.run(
        handlers.add_issue(
            client, access, "ALLOWED", "New", 10, 3, custom_fields={"Priority": "Low"}
        )
    )

    assert result["issueKey"] == "ALLOWED-2"
    assert client.calls[0] == ("get_project", "ALLOWED")
    add_call = client.calls[-1]
    assert add_call[0] == "add_issue"
    assert add_call[1][0] == 1
    assert add_call[1][2]["custom_fields"] == {4: SingleListInput(401)}


def test_add_issue_denied_project_is_not_created():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    with pytest.raises(ProjectAccessDeniedError):
        asyncio.run(handlers.add_issue(client, access, "SECRET", "New", 10, 3))
    assert all(name != "add_issue" for name, _ in client.calls)


def test_update_issue_requires_changes():
    with pytest.raises(NothingToUpdateError):
        asyncio.run(handlers.update_issue(FakeClient(), AccessControl(), "ALLOWED-1"))


def test_update_issue_passes_resolved_fields():
    client = FakeClient()
    access = AccessControl(["ALLOWED"])

    asyncio.run(
        handlers.update_issue(
            client, access, "ALLOWED-1", summary="Renamed", custom_fields={"Priority": "High"}
        )
    )

    name, (ref, kwargs) = client.calls[-1]
    assert name == "update_issue"
    assert ref == "ALLOWED-1"
    assert kwargs["summary"] == "Renamed"
    assert kwargs["custom_fields"] == {4: SingleListInput(400)}


def test_health_reports_access_and_cache():
    health = handlers.get_health(FakeClient(), AccessControl(["ALLOWED"]))

    assert health["accessControl"] == {"enabled": True, "allowedProjects": ["ALLOWED"]}
    assert health["projectCache"]["maxSize"] == 1000
    assert health["api"] == {"requestCount": 0}
