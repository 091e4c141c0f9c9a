"""
Typed custom field values and their wire encodings.

Two closed families mirror the eight custom field kinds:

- ``CustomFieldInput`` is what a caller supplies when writing an issue. List
  kinds carry option ids only.
- ``CustomFieldValue`` is what an issue returns when read. List kinds carry
  ``{id, name}`` items.

Both render to the form encoding with ``to_form_value()``, which returns the
primary value and the optional "other" companion. Multi-select kinds render
as one comma-joined string there; ``serialize_custom_fields`` is the issue
write path and repeats the ``customField_{id}`` key once per selected id
instead.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar, Union

from .errors import ShapeMismatchError
from .models import CustomFieldTypeId, parse_date


def format_number(value: float) -> str:
    """Shortest decimal rendering that round-trips, without exponent notation."""
    value = float(value)
    if value != value or value in (float("inf"), float("-inf")):
        return repr(value)
    if value.is_integer():
        return str(int(value))
    text = repr(value)
    if "e" in text or "E" in text:
        return format(Decimal(text), "f")
    return text


def _join_ids(ids: tuple[int, ...]) -> str:
    return ",".join(str(i) for i in ids)


# ============================================
# Inputs (write side)
# ============================================


@dataclass(frozen=True)
class TextInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.TEXT
    value: str

    def to_form_value(self) -> tuple[str, str | None]:
        return self.value, None


@dataclass(frozen=True)
class TextAreaInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.TEXT_AREA
    value: str

    def to_form_value(self) -> tuple[str, str | None]:
        return self.value, None


@dataclass(frozen=True)
class NumericInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.NUMERIC
    value: float

    def to_form_value(self) -> tuple[str, str | None]:
        return format_number(self.value), None


@dataclass(frozen=True)
class DateInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.DATE
    value: dt.date

    def to_form_value(self) -> tuple[str, str | None]:
        return self.value.isoformat(), None


@dataclass(frozen=True)
class SingleListInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.SINGLE_LIST
    id: int
    other_value: str | None = None

    def to_form_value(self) -> tuple[str, str | None]:
        return str(self.id), self.other_value


@dataclass(frozen=True)
class MultipleListInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.MULTIPLE_LIST
    ids: tuple[int, ...]
    other_value: str | None = None

    def to_form_value(self) -> tuple[str, str | None]:
        return _join_ids(self.ids), self.other_value


@dataclass(frozen=True)
class CheckBoxInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.CHECK_BOX
    ids: tuple[int, ...]

    def to_form_value(self) -> tuple[str, str | None]:
        return _join_ids(self.ids), None


@dataclass(frozen=True)
class RadioInput:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.RADIO
    id: int
    other_value: str | None = None

    def to_form_value(self) -> tuple[str, str | None]:
        return str(self.id), self.other_value


CustomFieldInput = Union[
    TextInput,
    TextAreaInput,
    NumericInput,
    DateInput,
    SingleListInput,
    MultipleListInput,
    CheckBoxInput,
    RadioInput,
]


def serialize_custom_fields(
    custom_fields: Mapping[int, CustomFieldInput] | None,
) -> list[tuple[str, str]]:
    """Render inputs as issue form pairs.

    MultipleList and CheckBox emit one ``customField_{id}`` pair per selected
    id; every other kind emits a single pair. A present "other" value adds a
    ``customField_{id}_otherValue`` pair.
    """
    params: list[tuple[str, str]] = []
    if not custom_fields:
        return params

    for field_id, field_input in custom_fields.items():
        key = f"customField_{field_id}"
        value, other_value = field_input.to_form_value()
        if isinstance(field_input, (MultipleListInput, CheckBoxInput)):
            params.extend((key, str(item_id)) for item_id in field_input.ids)
        else:
            params.append((key, value))
        if other_value is not None:
            params.append((f"{key}_otherValue", other_value))
    return params


def input_from_form_value(
    type_id: CustomFieldTypeId | int,
    value: str,
    other_value: str | None = None,
) -> CustomFieldInput:
    """Inverse of ``to_form_value`` for the joined shape."""
    kind = CustomFieldTypeId.parse(type_id)
    try:
        if kind is CustomFieldTypeId.TEXT:
            return TextInput(value)
        if kind is CustomFieldTypeId.TEXT_AREA:
            return TextAreaInput(value)
        if kind is CustomFieldTypeId.NUMERIC:
            return NumericInput(float(value))
        if kind is CustomFieldTypeId.DATE:
            return DateInput(parse_date(value, "form"))
        if kind is CustomFieldTypeId.SINGLE_LIST:
            return SingleListInput(int(value), other_value)
        if kind is CustomFieldTypeId.RADIO:
            return RadioInput(int(value), other_value)
        ids = tuple(int(part) for part in value.split(",") if part)
        if kind is CustomFieldTypeId.MULTIPLE_LIST:
            return MultipleListInput(ids, other_value)
        return CheckBoxInput(ids)
    except ValueError as exc:
        raise ShapeMismatchError(
            f"Invalid form value {value!r} for {kind.label} field: {exc}"
        ) from exc


# ============================================
# Values (read side)
# ============================================


@dataclass(frozen=True)
class CustomFieldListItem:
    id: int
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class TextValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.TEXT
    value: str

    def to_form_value(self) -> tuple[str, str | None]:
        return self.value, None

    def to_api(self) -> dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class TextAreaValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.TEXT_AREA
    value: str

    def to_form_value(self) -> tuple[str, str | None]:
        return self.value, None

    def to_api(self) -> dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class NumericValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.NUMERIC
    value: float

    def to_form_value(self) -> tuple[str, str | None]:
        return format_number(self.value), None

    def to_api(self) -> dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class DateValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.DATE
    value: dt.date

    def to_form_value(self) -> tuple[str, str | None]:
        return self.value.isoformat(), None

    def to_api(self) -> dict[str, Any]:
        return {"value": self.value.isoformat()}


@dataclass(frozen=True)
class SingleListValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.SINGLE_LIST
    item: CustomFieldListItem
    other_value: str | None = None

    def to_form_value(self) -> tuple[str, str | None]:
        return str(self.item.id), self.other_value

    def to_api(self) -> dict[str, Any]:
        return {"value": self.item.to_dict(), "otherValue": self.other_value}


@dataclass(frozen=True)
class MultipleListValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.MULTIPLE_LIST
    items: tuple[CustomFieldListItem, ...]
    other_value: str | None = None

    def to_form_value(self) -> tuple[str, str | None]:
        return _join_ids(tuple(item.id for item in self.items)), self.other_value

    def to_api(self) -> dict[str, Any]:
        return {
            "value": [item.to_dict() for item in self.items],
            "otherValue": self.other_value,
        }


@dataclass(frozen=True)
class CheckBoxValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.CHECK_BOX
    items: tuple[CustomFieldListItem, ...]

    def to_form_value(self) -> tuple[str, str | None]:
        return _join_ids(tuple(item.id for item in self.items)), None

    def to_api(self) -> dict[str, Any]:
        return {"value": [item.to_dict() for item in self.items]}


@dataclass(frozen=True)
class RadioValue:
    type_id: ClassVar[CustomFieldTypeId] = CustomFieldTypeId.RADIO
    item: CustomFieldListItem
    other_value: str | None = None

    def to_form_value(self) -> tuple[str, str | None]:
        return str(self.item.id), self.other_value

    def to_api(self) -> dict[str, Any]:
        return {"value": self.item.to_dict(), "otherValue": self.other_value}


CustomFieldValue = Union[
    TextValue,
    TextAreaValue,
    NumericValue,
    DateValue,
    SingleListValue,
    MultipleListValue,
    CheckBoxValue,
    RadioValue,
]


def _list_item(raw: Any, kind: str, context: str) -> CustomFieldListItem:
    if (
        not isinstance(raw, dict)
        or not isinstance(raw.get("id"), int)
        or isinstance(raw.get("id"), bool)
        or not isinstance(raw.get("name"), str)
    ):
        raise ShapeMismatchError(f"Failed to parse {kind} item for field {context}: {raw!r}")
    return CustomFieldListItem(id=raw["id"], name=raw["name"])


def _list_items(raw: Any, kind: str, context: str) -> tuple[CustomFieldListItem, ...]:
    if not isinstance(raw, list):
        raise ShapeMismatchError(
            f"Failed to parse {kind} items for field {context}: expected array"
        )
    return tuple(_list_item(item, kind, context) for item in raw)


def _other(raw: Any) -> str | None:
    return raw if isinstance(raw, str) else None


def decode_custom_field_value(
    type_id: CustomFieldTypeId | int,
    value: Any,
    other_value: Any = None,
    *,
    name: str = "",
    field_id: int | None = None,
) -> CustomFieldValue:
    """Decode an API ``value``/``otherValue`` pair according to its type tag."""
    kind = CustomFieldTypeId.parse(type_id)
    context = f"'{name}' (id: {field_id})"

    if kind in (CustomFieldTypeId.TEXT, CustomFieldTypeId.TEXT_AREA):
        label = "Text" if kind is CustomFieldTypeId.TEXT else "TextArea"
        if not isinstance(value, str):
            raise ShapeMismatchError(f"Expected string for {label} field {context}")
        return TextValue(value) if kind is CustomFieldTypeId.TEXT else TextAreaValue(value)

    if kind is CustomFieldTypeId.NUMERIC:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ShapeMismatchError(f"Expected number for Numeric field {context}")
        try:
            return NumericValue(float(value))
        except OverflowError:
            raise ShapeMismatchError(f"Expected number for Numeric field {context}") from None

    if kind is CustomFieldTypeId.DATE:
        if not isinstance(value, str):
            raise ShapeMismatchError(f"Expected string for Date field {context}")
        try:
            parsed = dt.datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError as exc:
            raise ShapeMismatchError(f"Invalid date format for field {context}: {exc}") from exc
        return DateValue(parsed)

    if kind is CustomFieldTypeId.SINGLE_LIST:
        return SingleListValue(_list_item(value, "SingleList", context), _other(other_value))
    if kind is CustomFieldTypeId.MULTIPLE_LIST:
        return MultipleListValue(_list_items(value, "MultipleList", context), _other(other_value))
    if kind is CustomFieldTypeId.CHECK_BOX:
        return CheckBoxValue(_list_items(value, "CheckBox", context))
    return RadioValue(_list_item(value, "Radio", context), _other(other_value))


def encode_custom_field_value(value: CustomFieldValue) -> dict[str, Any]:
    """Render a value in the API shape ``{fieldTypeId, value, otherValue?}``."""
    return {"fieldTypeId": int(value.type_id), **value.to_api()}


@dataclass(frozen=True)
class CustomFieldWithValue:
    """A custom field as attached to an issue."""

    id: int
    field_type_id: CustomFieldTypeId
    name: str
    value: CustomFieldValue | None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CustomFieldWithValue:
        if not isinstance(data, dict):
            raise ShapeMismatchError(f"Expected custom field object, got {type(data).__name__}")
        for key in ("id", "fieldTypeId", "name"):
            if key not in data:
                raise ShapeMismatchError(f"Issue custom field is missing '{key}'")
        field_id = int(data["id"])
        name = str(data["name"])
        kind = CustomFieldTypeId.parse(data["fieldTypeId"])
        raw_value = data.get("value")
        if raw_value is None:
            return cls(id=field_id, field_type_id=kind, name=name, value=None)
        value = decode_custom_field_value(
            kind, raw_value, data.get("otherValue"), name=name, field_id=field_id
        )
        return cls(id=field_id, field_type_id=kind, name=name, value=value)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "fieldTypeId": int(self.field_type_id),
            "type": self.field_type_id.label,
            "name": self.name,
            "value": None,
        }
        if self.value is not None:
            result.update(self.value.to_api())
        return result
