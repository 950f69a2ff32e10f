"""Request-body sanitizers for link metadata and template fields.

Only keys present in the incoming mapping are considered; absent keys never
appear in the output, so callers can tell "leave alone" from "clear".
"""

from __future__ import annotations

import uuid
from typing import Any, Mapping

from models.template import TEMPLATE_STATUSES


class InvalidFieldError(ValueError):
    """A present field could not be coerced; `code` is the API error code."""

    def __init__(self, code: str, field: str) -> None:
        super().__init__(f"{code}: {field}")
        self.code = code
        self.field = field


_TRUE = {"true", "t", "yes", "y", "1", "on", "required"}
_FALSE = {"false", "f", "no", "n", "0", "off", "optional"}


def to_nullable_string(value: Any) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def to_nullable_integer(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidFieldError("invalid_number", field)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise InvalidFieldError("invalid_number", field)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(stripped)
        except ValueError:
            pass
        try:
            as_float = float(stripped)
        except ValueError:
            raise InvalidFieldError("invalid_number", field) from None
        if as_float.is_integer():
            return int(as_float)
    raise InvalidFieldError("invalid_number", field)


def to_nullable_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if not normalized:
            return None
        if normalized in _TRUE:
            return True
        if normalized in _FALSE:
            return False
    return bool(value)


def normalize_status(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in TEMPLATE_STATUSES else None


def parse_uuid(value: Any) -> uuid.UUID | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        return None


def sanitize_link_patch(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Map a link-metadata request body onto link override columns.

    `hyperlink` is the public name of the `external_link` column; when both
    are sent, `hyperlink` wins.
    """

    patch: dict[str, Any] = {}
    if "notes" in raw:
        patch["notes"] = to_nullable_string(raw["notes"])
    if "external_link" in raw:
        patch["external_link"] = to_nullable_string(raw["external_link"])
    if "hyperlink" in raw:
        patch["external_link"] = to_nullable_string(raw["hyperlink"])
    if "sort_order" in raw:
        patch["sort_order"] = to_nullable_integer(raw["sort_order"], "sort_order")
    if "due_offset_days" in raw:
        patch["due_offset_days"] = to_nullable_integer(raw["due_offset_days"], "due_offset_days")
    if "required" in raw:
        patch["required"] = to_nullable_boolean(raw["required"])
    if "visibility" in raw:
        patch["visibility"] = to_nullable_string(raw["visibility"])
    if "visible" in raw:
        visible = to_nullable_boolean(raw["visible"])
        # The column is non-null; clearing it means "back to visible".
        patch["visible"] = True if visible is None else visible
    return patch


_TEMPLATE_TEXT_FIELDS = (
    "notes",
    "external_link",
    "organization",
    "sub_unit",
    "discipline_type",
    "delivery_type",
    "visibility",
)
_TEMPLATE_INT_FIELDS = ("week_number", "sort_order", "due_offset_days")


def sanitize_template_patch(raw: Mapping[str, Any]) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    if "label" in raw:
        label = to_nullable_string(raw["label"])
        if label is None:
            raise InvalidFieldError("invalid_label", "label")
        patch["label"] = label.strip()
    for field in _TEMPLATE_TEXT_FIELDS:
        if field in raw:
            patch[field] = to_nullable_string(raw[field])
    if "hyperlink" in raw and "external_link" not in raw:
        patch["external_link"] = to_nullable_string(raw["hyperlink"])
    for field in _TEMPLATE_INT_FIELDS:
        if field in raw:
            patch[field] = to_nullable_integer(raw[field], field)
    if "required" in raw:
        patch["required"] = to_nullable_boolean(raw["required"])
    if "status" in raw:
        status = normalize_status(raw["status"])
        if status is None:
            raise InvalidFieldError("invalid_status", "status")
        patch["status"] = status
    return patch
