"""
Project allow-list gate.

``BACKLOG_PROJECTS`` holds a comma-separated list of project keys. When it is
unset or blank every check passes without touching the cache or the network.
Otherwise only the listed projects are reachable, and a project whose key
cannot be determined is denied.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import TYPE_CHECKING

from .errors import ProjectAccessDeniedError
from .identifiers import ProjectIdOrKey, validate_project_key
from .project_cache import CacheConfig, ProjectCacheManager

if TYPE_CHECKING:
    from .client import BacklogApiClient

logger = logging.getLogger(__name__)

ALLOWED_PROJECTS_ENV = "BACKLOG_PROJECTS"
DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_CACHE_MAX_SIZE = 1000


def _parse_csv_env(var_name: str) -> list[str]:
    raw = os.getenv(var_name, "")
    values = [item.strip() for item in raw.split(",")]
    return [item for item in values if item]


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s value %r; using %d", var_name, raw, default)
        return default


def default_cache_config() -> CacheConfig:
    ttl_seconds = _int_env("BACKLOG_PROJECT_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS)
    max_size = _int_env("BACKLOG_PROJECT_CACHE_MAX_SIZE", DEFAULT_CACHE_MAX_SIZE)
    return CacheConfig(
        ttl=timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None,
        max_size=max_size if max_size > 0 else None,
    )


class AccessControl:
    """Allow-list of project keys backed by a shared project cache."""

    def __init__(
        self,
        allowed_projects: list[str] | None = None,
        project_cache: ProjectCacheManager | None = None,
    ):
        keys = [validate_project_key(key) for key in allowed_projects or []]
        self._allowed_projects: tuple[str, ...] | None = tuple(keys) if keys else None
        self._project_cache = project_cache or ProjectCacheManager(default_cache_config())

    @classmethod
    def from_env(cls, project_cache: ProjectCacheManager | None = None) -> AccessControl:
        allowed = _parse_csv_env(ALLOWED_PROJECTS_ENV)
        access_control = cls(allowed, project_cache)
        if access_control.is_enabled():
            logger.info("Project access restricted to: %s", ", ".join(allowed))
        return access_control

    @property
    def allowed_projects(self) -> list[str] | None:
        if self._allowed_projects is None:
            return None
        return list(self._allowed_projects)

    @property
    def project_cache(self) -> ProjectCacheManager:
        return self._project_cache

    def is_enabled(self) -> bool:
        return self._allowed_projects is not None

    def _deny(self, project: str) -> ProjectAccessDeniedError:
        return ProjectAccessDeniedError(project, list(self._allowed_projects or ()))

    def check_project_access_by_key(self, project_key: str) -> None:
        if self._allowed_projects is None:
            return
        if project_key in self._allowed_projects:
            return
        raise self._deny(project_key)

    async def check_project_access_by_key_async(self, project_key: str) -> None:
        self.check_project_access_by_key(project_key)

    async def check_project_access_by_id_async(
        self, project_id: int, client: BacklogApiClient
    ) -> None:
        if self._allowed_projects is None:
            return

        cached = await self._project_cache.get_from_cache_by_id(project_id)
        if cached is not None and cached.project_key in self._allowed_projects:
            return

        try:
            project = await self._project_cache.get_by_id(project_id, client)
        except Exception as exc:
            logger.warning(
                "Denying access: could not resolve project id %s: %s", project_id, exc
            )
            raise self._deny(str(project_id)) from exc

        if project.project_key in self._allowed_projects:
            return
        raise self._deny(str(project_id))

    async def check_project_access_id_or_key_async(
        self, project: ProjectIdOrKey, client: BacklogApiClient
    ) -> None:
        # The id is authoritative when both are known.
        if project.id is not None:
            await self.check_project_access_by_id_async(project.id, client)
            return
        if project.key is not None:
            self.check_project_access_by_key(project.key)
