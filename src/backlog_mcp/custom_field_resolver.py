"""
Resolve human-readable custom field names and option names to typed inputs.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .custom_fields import (
    CheckBoxInput,
    CustomFieldInput,
    DateInput,
    MultipleListInput,
    NumericInput,
    RadioInput,
    SingleListInput,
    TextAreaInput,
    TextInput,
)
from .errors import FieldNotFoundError, OptionNotFoundError, ShapeMismatchError
from .identifiers import ProjectIdOrKey
from .models import CustomFieldType, CustomFieldTypeId, ListSettings

if TYPE_CHECKING:
    from .client import BacklogApiClient

logger = logging.getLogger(__name__)


async def resolve_custom_fields(
    client: BacklogApiClient,
    project_id_or_key: ProjectIdOrKey,
    fields_by_name: Mapping[str, Any],
) -> dict[int, CustomFieldInput]:
    """Convert ``{field name: raw JSON value}`` into ``{field id: input}``.

    Field definitions are fetched from the API on every call. The first
    unknown field, unknown option or malformed value aborts the whole
    resolution.
    """
    definitions = await client.get_custom_field_list(project_id_or_key)

    # Names are unique per project on the API side; on collision the last wins.
    by_name: dict[str, CustomFieldType] = {field.name: field for field in definitions}

    result: dict[int, CustomFieldInput] = {}
    for field_name, value in fields_by_name.items():
        definition = by_name.get(field_name)
        if definition is None:
            raise FieldNotFoundError(field_name)
        result[definition.id] = convert_value_to_input(definition, value, field_name)

    logger.debug(
        "Resolved %d custom field(s) for project %s", len(result), project_id_or_key
    )
    return result


def convert_value_to_input(
    field: CustomFieldType, value: Any, field_name: str
) -> CustomFieldInput:
    kind = field.type_id

    if kind in (CustomFieldTypeId.TEXT, CustomFieldTypeId.TEXT_AREA):
        if not isinstance(value, str):
            raise ShapeMismatchError(f"Custom field '{field_name}' expects a string value")
        return TextInput(value) if kind is CustomFieldTypeId.TEXT else TextAreaInput(value)

    if kind is CustomFieldTypeId.NUMERIC:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ShapeMismatchError(f"Custom field '{field_name}' expects a numeric value")
        try:
            return NumericInput(float(value))
        except OverflowError:
            raise ShapeMismatchError(
                f"Custom field '{field_name}' expects a numeric value"
            ) from None

    if kind is CustomFieldTypeId.DATE:
        if not isinstance(value, str):
            raise ShapeMismatchError(
                f"Custom field '{field_name}' expects a date string in yyyy-MM-dd format"
            )
        try:
            return DateInput(dt.datetime.strptime(value, "%Y-%m-%d").date())
        except ValueError:
            raise ShapeMismatchError(
                f"Custom field '{field_name}' expects date in yyyy-MM-dd format"
            ) from None

    settings = field.settings
    if not isinstance(settings, ListSettings):
        raise ShapeMismatchError(
            f"Custom field '{field_name}' has no list settings for its {kind.label} type"
        )

    if kind is CustomFieldTypeId.SINGLE_LIST:
        item_name, other_value = parse_single_list_value(value, field_name)
        return SingleListInput(_find_item_id(settings, item_name, field_name), other_value)

    if kind is CustomFieldTypeId.MULTIPLE_LIST:
        item_names, other_value = parse_multiple_list_value(value, field_name)
        ids = tuple(_find_item_id(settings, name, field_name) for name in item_names)
        return MultipleListInput(ids, other_value)

    if kind is CustomFieldTypeId.CHECK_BOX:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ShapeMismatchError(
                f"Custom field '{field_name}' expects an array of strings"
            )
        return CheckBoxInput(tuple(_find_item_id(settings, name, field_name) for name in value))

    if not isinstance(value, str):
        raise ShapeMismatchError(f"Custom field '{field_name}' expects a string value")
    return RadioInput(_find_item_id(settings, value, field_name))


def _find_item_id(settings: ListSettings, item_name: str, field_name: str) -> int:
    item = settings.find_item(item_name)
    if item is None:
        raise OptionNotFoundError(field_name, item_name, settings.item_names())
    return item.id


def parse_single_list_value(value: Any, field_name: str) -> tuple[str, str | None]:
    """Accept ``"name"`` or ``{"name": ..., "other": ...}``."""
    if isinstance(value, str):
        return value, None
    if isinstance(value, dict):
        name = value.get("name")
        if not isinstance(name, str):
            raise ShapeMismatchError(
                f"Custom field '{field_name}' object must have a 'name' field"
            )
        return name, _other(value)
    raise ShapeMismatchError(
        f"Custom field '{field_name}' expects a string or object with 'name' field"
    )


def parse_multiple_list_value(value: Any, field_name: str) -> tuple[list[str], str | None]:
    """Accept ``["a", "b"]`` or ``{"items": ["a", "b"], "other": ...}``."""
    if isinstance(value, list):
        return _string_list(value, field_name, "array"), None
    if isinstance(value, dict):
        items = value.get("items")
        if not isinstance(items, list):
            raise ShapeMismatchError(
                f"Custom field '{field_name}' object must have an 'items' array"
            )
        return _string_list(items, field_name, "items array"), _other(value)
    raise ShapeMismatchError(
        f"Custom field '{field_name}' expects an array or object with 'items' array"
    )


def _string_list(values: list[Any], field_name: str, what: str) -> list[str]:
    if not all(isinstance(v, str) for v in values):
        raise ShapeMismatchError(f"Custom field '{field_name}' {what} must contain strings")
    return list(values)


def _other(value: dict[str, Any]) -> str | None:
    other = value.get("other")
    return other if isinstance(other, str) else None
