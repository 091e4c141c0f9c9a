"""
Error types raised by the Backlog MCP core.

Every error carries a short machine-readable ``code`` alongside the human
message so the tool layer can map failures without string matching.
"""

from __future__ import annotations


class BacklogMcpError(RuntimeError):
    """Base class for errors surfaced to tool callers."""

    code = "backlog_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(BacklogMcpError):
    code = "configuration_error"


class InvalidIdentifierError(BacklogMcpError):
    code = "invalid_identifier"


class BacklogApiError(BacklogMcpError):
    """Raised when the Backlog REST API rejects a call or cannot be reached."""

    code = "api_error"

    def __init__(self, status: int | None, errors_summary: str):
        if status is None:
            message = f"Backlog API request failed: {errors_summary}"
        else:
            message = f"Backlog API Error (HTTP {status}): {errors_summary}"
        super().__init__(message)
        self.status = status
        self.errors_summary = errors_summary


class ProjectAccessDeniedError(BacklogMcpError):
    code = "access_denied"

    def __init__(self, project: str, allowed_projects: list[str]):
        super().__init__(
            f"Access denied to project '{project}'. Allowed projects: {allowed_projects!r}"
        )
        self.project = project
        self.allowed_projects = allowed_projects


class ProjectResolutionError(BacklogMcpError):
    code = "resolution_failure"


class FieldNotFoundError(BacklogMcpError):
    code = "field_not_found"

    def __init__(self, field_name: str):
        super().__init__(f"Custom field '{field_name}' not found in project")
        self.field_name = field_name


class OptionNotFoundError(BacklogMcpError):
    code = "option_not_found"

    def __init__(self, field_name: str, option: str, available: list[str]):
        options = ", ".join(f"'{name}'" for name in available)
        super().__init__(
            f"Custom field '{field_name}': option '{option}' not found. "
            f"Available options: {options}"
        )
        self.field_name = field_name
        self.option = option
        self.available = available


class ShapeMismatchError(BacklogMcpError):
    code = "shape_mismatch"


class NothingToUpdateError(BacklogMcpError):
    code = "nothing_to_update"

    def __init__(self) -> None:
        super().__init__(
            "Nothing to update. Please provide a summary, a description and/or custom fields."
        )
