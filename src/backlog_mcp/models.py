"""
Backlog domain models decoded from API JSON.

Projects are immutable snapshots. Custom field definitions come in two wire
shapes: the API's flat shape where ``typeId`` sits beside the common fields,
and a tagged shape ``{"<typeId>": {...}}``. ``CustomFieldType.from_api``
accepts both and always yields the same model.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Union

from .errors import ShapeMismatchError


class CustomFieldTypeId(IntEnum):
    TEXT = 1
    TEXT_AREA = 2
    NUMERIC = 3
    DATE = 4
    SINGLE_LIST = 5
    MULTIPLE_LIST = 6
    CHECK_BOX = 7
    RADIO = 8

    @property
    def label(self) -> str:
        return _TYPE_LABELS[self]

    @classmethod
    def parse(cls, raw: Any) -> CustomFieldTypeId:
        if isinstance(raw, str) and raw.isascii() and raw.isdigit():
            raw = int(raw)
        if not isinstance(raw, int) or isinstance(raw, bool):
            raise ShapeMismatchError(f"Unknown custom field typeId: {raw!r}")
        try:
            return cls(raw)
        except ValueError:
            raise ShapeMismatchError(f"Unknown custom field typeId: {raw!r}") from None


_TYPE_LABELS = {
    CustomFieldTypeId.TEXT: "text",
    CustomFieldTypeId.TEXT_AREA: "textarea",
    CustomFieldTypeId.NUMERIC: "number",
    CustomFieldTypeId.DATE: "date",
    CustomFieldTypeId.SINGLE_LIST: "single_list",
    CustomFieldTypeId.MULTIPLE_LIST: "multiple_list",
    CustomFieldTypeId.CHECK_BOX: "checkbox",
    CustomFieldTypeId.RADIO: "radio",
}


class InitialDate(Enum):
    TODAY = "today"
    TOMORROW = "tomorrow"
    YESTERDAY = "yesterday"
    SPECIFIED = "specified"

    @classmethod
    def parse(cls, raw: Any) -> InitialDate:
        if isinstance(raw, int) and not isinstance(raw, bool):
            by_number = {1: cls.TODAY, 2: cls.TOMORROW, 3: cls.YESTERDAY, 4: cls.SPECIFIED}
            if raw in by_number:
                return by_number[raw]
            raise ShapeMismatchError(f"Unknown InitialDate value: {raw}")
        try:
            return cls(raw)
        except ValueError:
            raise ShapeMismatchError(f"Unknown InitialDate string: {raw!r}") from None


def parse_date(raw: str, context: str) -> dt.date:
    """Parse a ``YYYY-MM-DD`` date, raising ShapeMismatchError otherwise."""
    try:
        return dt.datetime.strptime(raw, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ShapeMismatchError(f"Failed to parse {context} date: {exc}") from exc


def _require(data: dict[str, Any], key: str, what: str) -> Any:
    if key not in data:
        raise ShapeMismatchError(f"{what} is missing required field '{key}'")
    return data[key]


@dataclass(frozen=True)
class Project:
    id: int
    project_key: str
    name: str
    chart_enabled: bool = False
    subtasking_enabled: bool = False
    project_leader_can_edit_project_leader: bool = False
    use_wiki: bool = False
    use_file_sharing: bool = False
    use_wiki_tree_view: bool = False
    use_original_image_size_at_wiki: bool = False
    text_formatting_rule: str = "markdown"
    archived: bool = False
    display_order: int = 0
    use_dev_attributes: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Project:
        if not isinstance(data, dict):
            raise ShapeMismatchError(f"Expected project object, got {type(data).__name__}")
        return cls(
            id=int(_require(data, "id", "Project")),
            project_key=str(_require(data, "projectKey", "Project")),
            name=str(data.get("name", "")),
            chart_enabled=bool(data.get("chartEnabled", False)),
            subtasking_enabled=bool(data.get("subtaskingEnabled", False)),
            project_leader_can_edit_project_leader=bool(
                data.get("projectLeaderCanEditProjectLeader", False)
            ),
            use_wiki=bool(data.get("useWiki", False)),
            use_file_sharing=bool(data.get("useFileSharing", False)),
            use_wiki_tree_view=bool(data.get("useWikiTreeView", False)),
            use_original_image_size_at_wiki=bool(data.get("useOriginalImageSizeAtWiki", False)),
            text_formatting_rule=str(data.get("textFormattingRule", "markdown")),
            archived=bool(data.get("archived", False)),
            display_order=int(data.get("displayOrder", 0)),
            use_dev_attributes=bool(data.get("useDevAttributes", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectKey": self.project_key,
            "name": self.name,
            "chartEnabled": self.chart_enabled,
            "subtaskingEnabled": self.subtasking_enabled,
            "projectLeaderCanEditProjectLeader": self.project_leader_can_edit_project_leader,
            "useWiki": self.use_wiki,
            "useFileSharing": self.use_file_sharing,
            "useWikiTreeView": self.use_wiki_tree_view,
            "useOriginalImageSizeAtWiki": self.use_original_image_size_at_wiki,
            "textFormattingRule": self.text_formatting_rule,
            "archived": self.archived,
            "displayOrder": self.display_order,
            "useDevAttributes": self.use_dev_attributes,
        }


@dataclass(frozen=True)
class ListItem:
    id: int
    name: str
    display_order: int = 0

    @classmethod
    def from_api(cls, data: Any) -> ListItem:
        if not isinstance(data, dict) or "id" not in data or "name" not in data:
            raise ShapeMismatchError(f"Invalid list item: {data!r}")
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            display_order=int(data.get("displayOrder", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "displayOrder": self.display_order}


@dataclass(frozen=True)
class TextSettings:
    pass


@dataclass(frozen=True)
class TextAreaSettings:
    pass


@dataclass(frozen=True)
class NumericSettings:
    min: float | None = None
    max: float | None = None
    initial_value: float | None = None
    unit: str | None = None


@dataclass(frozen=True)
class DateSettings:
    min: dt.date | None = None
    max: dt.date | None = None
    initial_value_type: InitialDate | None = None
    initial_shift: int | None = None
    initial_date: dt.date | None = None


@dataclass(frozen=True)
class ListSettings:
    items: tuple[ListItem, ...] = ()
    allow_input: bool | None = None
    allow_add_item: bool | None = None

    def find_item(self, name: str) -> ListItem | None:
        for item in self.items:
            if item.name == name:
                return item
        return None

    def item_names(self) -> list[str]:
        return [item.name for item in self.items]


CustomFieldSettings = Union[
    TextSettings, TextAreaSettings, NumericSettings, DateSettings, ListSettings
]


def _optional_float(raw: Any) -> float | None:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    return None


def _optional_date(raw: Any, context: str) -> dt.date | None:
    if isinstance(raw, str):
        return parse_date(raw, context)
    return None


def _settings_from_api(type_id: CustomFieldTypeId, data: dict[str, Any]) -> CustomFieldSettings:
    if type_id is CustomFieldTypeId.TEXT:
        return TextSettings()
    if type_id is CustomFieldTypeId.TEXT_AREA:
        return TextAreaSettings()
    if type_id is CustomFieldTypeId.NUMERIC:
        unit = data.get("unit")
        return NumericSettings(
            min=_optional_float(data.get("min")),
            max=_optional_float(data.get("max")),
            initial_value=_optional_float(data.get("initialValue")),
            unit=str(unit) if unit is not None else None,
        )
    if type_id is CustomFieldTypeId.DATE:
        initial_value_type = data.get("initialValueType")
        initial_shift = data.get("initialShift")
        return DateSettings(
            min=_optional_date(data.get("min"), "min"),
            max=_optional_date(data.get("max"), "max"),
            initial_value_type=(
                InitialDate.parse(initial_value_type) if initial_value_type is not None else None
            ),
            initial_shift=int(initial_shift) if initial_shift is not None else None,
            initial_date=_optional_date(data.get("initialDate"), "initial"),
        )
    items = data.get("items") or []
    if not isinstance(items, list):
        raise ShapeMismatchError(f"Expected 'items' array, got {type(items).__name__}")
    return ListSettings(
        items=tuple(ListItem.from_api(item) for item in items),
        allow_input=data.get("allowInput"),
        allow_add_item=data.get("allowAddItem"),
    )


@dataclass(frozen=True)
class CustomFieldType:
    """A project's custom field definition."""

    id: int
    project_id: int
    name: str
    type_id: CustomFieldTypeId
    settings: CustomFieldSettings
    description: str = ""
    required: bool = False
    applicable_issue_types: tuple[int, ...] | None = None
    display_order: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CustomFieldType:
        if not isinstance(data, dict):
            raise ShapeMismatchError(
                f"Expected custom field object, got {type(data).__name__}"
            )
        if "typeId" in data:
            return cls._from_fields(CustomFieldTypeId.parse(data["typeId"]), data)
        if len(data) == 1:
            # Tagged shape: {"5": {...}}
            ((tag, body),) = data.items()
            if not isinstance(body, dict):
                raise ShapeMismatchError(f"Tagged custom field '{tag}' must wrap an object")
            return cls._from_fields(CustomFieldTypeId.parse(tag), body)
        raise ShapeMismatchError("Custom field definition has no typeId")

    @classmethod
    def _from_fields(cls, type_id: CustomFieldTypeId, data: dict[str, Any]) -> CustomFieldType:
        issue_types = data.get("applicableIssueTypes")
        return cls(
            id=int(_require(data, "id", "Custom field")),
            project_id=int(data.get("projectId", 0)),
            name=str(_require(data, "name", "Custom field")),
            type_id=type_id,
            settings=_settings_from_api(type_id, data),
            description=str(data.get("description") or ""),
            required=bool(data.get("required", False)),
            applicable_issue_types=(
                tuple(int(i) for i in issue_types) if issue_types is not None else None
            ),
            display_order=int(data.get("displayOrder", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "typeId": int(self.type_id),
            "type": self.type_id.label,
            "name": self.name,
            "description": self.description,
            "required": self.required,
            "applicableIssueTypes": (
                list(self.applicable_issue_types)
                if self.applicable_issue_types is not None
                else None
            ),
            "displayOrder": self.display_order,
        }
        settings = self.settings
        if isinstance(settings, NumericSettings):
            result.update(
                min=settings.min,
                max=settings.max,
                initialValue=settings.initial_value,
                unit=settings.unit,
            )
        elif isinstance(settings, DateSettings):
            result.update(
                min=settings.min.isoformat() if settings.min else None,
                max=settings.max.isoformat() if settings.max else None,
                initialValueType=(
                    settings.initial_value_type.value if settings.initial_value_type else None
                ),
                initialShift=settings.initial_shift,
                initialDate=settings.initial_date.isoformat() if settings.initial_date else None,
            )
        elif isinstance(settings, ListSettings):
            result.update(
                items=[item.to_dict() for item in settings.items],
                allowInput=settings.allow_input,
                allowAddItem=settings.allow_add_item,
            )
        return result


@dataclass
class Issue:
    """Minimal issue view: the raw payload plus the fields the core relies on."""

    id: int
    issue_key: str
    project_id: int
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Issue:
        if not isinstance(data, dict):
            raise ShapeMismatchError(f"Expected issue object, got {type(data).__name__}")
        return cls(
            id=int(_require(data, "id", "Issue")),
            issue_key=str(data.get("issueKey", "")),
            project_id=int(_require(data, "projectId", "Issue")),
            raw=data,
        )
