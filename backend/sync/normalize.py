"""The one place where external record shapes are mapped to the client schema.

Server payloads, widget options and cached records disagree on naming
(``template_id`` vs ``templateId`` vs ``id``, ``hyperlink`` vs
``external_link``, a nested ``program`` object vs a flat ``program_id``).
Everything past this module only sees :class:`TemplateView`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping


logger = logging.getLogger(__name__)


_TEMPLATE_ID_KEYS = ("template_id", "templateId", "id")
_LINK_ID_KEYS = ("link_id", "linkId")
_PROGRAM_ID_KEYS = ("program_id", "programId")
_LABEL_KEYS = ("label", "name", "title")
_HYPERLINK_KEYS = ("hyperlink", "external_link", "externalLink")
_SORT_KEYS = ("sort_order", "sortOrder")
_WEEK_KEYS = ("week_number", "weekNumber")


@dataclass(frozen=True)
class TemplateView:
    template_id: str
    label: str
    link_id: str | None = None
    program_id: str | None = None
    week_number: int | None = None
    notes: str | None = None
    hyperlink: str | None = None
    sort_order: int | None = None
    status: str | None = None
    archived: bool = False

    @property
    def is_published(self) -> bool:
        return self.status == "published" and not self.archived


def normalize_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip().lower()
    return text or None


def _pick(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def program_id_of(record: Mapping[str, Any]) -> str | None:
    value = _pick(record, _PROGRAM_ID_KEYS)
    if value is None and isinstance(record.get("program"), Mapping):
        value = record["program"].get("id")
    return normalize_id(value)


def normalize_template(record: Mapping[str, Any] | TemplateView) -> TemplateView:
    """Build a TemplateView from any known record shape.

    Raises ValueError when the record has no usable template id.
    """

    if isinstance(record, TemplateView):
        return record

    template_id = normalize_id(_pick(record, _TEMPLATE_ID_KEYS))
    if template_id is None:
        raise ValueError("record has no template id")

    status = _pick(record, ("status",))
    return TemplateView(
        template_id=template_id,
        label=_to_text(_pick(record, _LABEL_KEYS)) or template_id,
        link_id=normalize_id(_pick(record, _LINK_ID_KEYS)),
        program_id=program_id_of(record),
        week_number=_to_int(_pick(record, _WEEK_KEYS)),
        notes=_to_text(record.get("notes")),
        hyperlink=_to_text(_pick(record, _HYPERLINK_KEYS)),
        sort_order=_to_int(_pick(record, _SORT_KEYS)),
        status=str(status).strip().lower() if status is not None else None,
        archived=bool(record.get("archived") or record.get("deleted_at")),
    )


def normalize_templates(records: Iterable[Any]) -> tuple[TemplateView, ...]:
    views = []
    for record in records or ():
        if not isinstance(record, (Mapping, TemplateView)):
            logger.warning("skipping non-object template record: %r", record)
            continue
        try:
            views.append(normalize_template(record))
        except ValueError:
            logger.warning("skipping template record without id: %r", record)
    return tuple(views)
