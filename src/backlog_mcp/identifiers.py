"""
Project identifiers: numeric ids, string keys, and the id-or-key union.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidIdentifierError

PROJECT_KEY_PATTERN = re.compile(r"^[_A-Z0-9]{1,25}$")
MAX_PROJECT_ID = 2**32 - 1


def validate_project_key(key: str) -> str:
    if not PROJECT_KEY_PATTERN.match(key):
        raise InvalidIdentifierError(f"Invalid project key: '{key}'")
    return key


@dataclass(frozen=True)
class ProjectIdOrKey:
    """A project reference: an id, a key, or both known together.

    When both are present the id is authoritative for lookups.
    """

    id: int | None = None
    key: str | None = None

    def __post_init__(self) -> None:
        if self.id is None and self.key is None:
            raise InvalidIdentifierError("Project reference needs an id or a key")
        if self.id is not None and not 0 < self.id <= MAX_PROJECT_ID:
            raise InvalidIdentifierError(f"Invalid project id: {self.id}")
        if self.key is not None:
            validate_project_key(self.key)

    @classmethod
    def from_id(cls, project_id: int) -> ProjectIdOrKey:
        return cls(id=project_id)

    @classmethod
    def from_key(cls, project_key: str) -> ProjectIdOrKey:
        return cls(key=project_key)

    @classmethod
    def parse(cls, text: str) -> ProjectIdOrKey:
        raw = text.strip()
        is_key = bool(PROJECT_KEY_PATTERN.match(raw))
        is_number = raw.isascii() and raw.isdigit()
        project_id = int(raw) if is_number else 0
        # Digits beyond the id range can only be a key.
        in_id_range = is_number and project_id <= MAX_PROJECT_ID

        if in_id_range and project_id > 0 and is_key:
            return cls(id=project_id, key=raw)
        if in_id_range and project_id > 0:
            return cls(id=project_id)
        if is_key and not in_id_range:
            return cls(key=raw)
        raise InvalidIdentifierError(f"Invalid project id or key: '{text}'")

    @property
    def is_either(self) -> bool:
        return self.id is not None and self.key is not None

    def __str__(self) -> str:
        if self.id is not None:
            return str(self.id)
        return str(self.key)
