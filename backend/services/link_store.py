"""Association store: link lookups and the effective (template + override) view.

Effective values are computed per field at read time:
``override if override is not None else template default``. Nothing merged
is ever written back; only the override columns on the link are persisted.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.program import Program
from models.program_template_link import ProgramTemplateLink
from models.template import Template


DEFAULT_LIMIT = 25
MAX_LIMIT = 100


def normalize_limit(value: Any) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    if numeric <= 0:
        return DEFAULT_LIMIT
    return min(numeric, MAX_LIMIT)


def normalize_offset(value: Any) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return 0
    return max(numeric, 0)


def merge_field(override: Any, default: Any) -> Any:
    return override if override is not None else default


def template_view(template: Template) -> dict[str, Any]:
    """Serialize a template on its own (no link, no overrides)."""

    return {
        "template_id": template.id,
        "label": template.label,
        "week_number": template.week_number,
        "notes": template.notes,
        "hyperlink": template.external_link,
        "sort_order": template.sort_order,
        "due_offset_days": template.due_offset_days,
        "required": template.required,
        "visibility": template.visibility,
        "status": template.status,
        "organization": template.organization,
        "sub_unit": template.sub_unit,
        "discipline_type": template.discipline_type,
        "delivery_type": template.delivery_type,
        "archived": template.is_archived,
        "deleted_at": template.deleted_at,
    }


def effective_view(template: Template, link: ProgramTemplateLink) -> dict[str, Any]:
    view = template_view(template)
    view.update(
        {
            "link_id": link.id,
            "program_id": link.program_id,
            "notes": merge_field(link.notes, template.notes),
            "hyperlink": merge_field(link.external_link, template.external_link),
            "sort_order": merge_field(link.sort_order, template.sort_order),
            "due_offset_days": merge_field(link.due_offset_days, template.due_offset_days),
            "required": merge_field(link.required, template.required),
            "visibility": merge_field(link.visibility, template.visibility),
            "visible": bool(link.visible) if link.visible is not None else True,
            "linked_at": link.created_at,
            "updated_at": link.updated_at,
            "created_by": link.created_by,
            "updated_by": link.updated_by,
        }
    )
    return view


def get_program(db: Session, program_id: uuid.UUID) -> Program | None:
    return db.get(Program, program_id)


def get_template(db: Session, template_id: uuid.UUID, *, include_deleted: bool = False) -> Template | None:
    q = select(Template).where(Template.id == template_id)
    if not include_deleted:
        q = q.where(Template.deleted_at.is_(None))
    return db.execute(q).scalars().first()


def get_link(db: Session, program_id: uuid.UUID, template_id: uuid.UUID) -> ProgramTemplateLink | None:
    q = (
        select(ProgramTemplateLink)
        .where(ProgramTemplateLink.program_id == program_id)
        .where(ProgramTemplateLink.template_id == template_id)
    )
    return db.execute(q).scalars().first()


def next_sort_order(db: Session, program_id: uuid.UUID) -> int:
    q = select(func.max(ProgramTemplateLink.sort_order)).where(ProgramTemplateLink.program_id == program_id)
    current = db.execute(q).scalar_one_or_none()
    return int(current or 0) + 1


def list_templates_for_program(
    db: Session,
    program_id: uuid.UUID,
    *,
    include_deleted: bool = False,
    status: str | None = None,
    limit: Any = DEFAULT_LIMIT,
    offset: Any = 0,
) -> tuple[list[dict[str, Any]], dict[str, int]]:
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    filters = [ProgramTemplateLink.program_id == program_id]
    if not include_deleted:
        filters.append(Template.deleted_at.is_(None))
    if status is not None:
        filters.append(Template.status == status)

    count_q = (
        select(func.count(ProgramTemplateLink.id))
        .select_from(ProgramTemplateLink)
        .join(Template, ProgramTemplateLink.template_id == Template.id)
        .where(*filters)
    )
    total = db.execute(count_q).scalar_one()

    effective_sort = func.coalesce(ProgramTemplateLink.sort_order, Template.sort_order)
    q = (
        select(Template, ProgramTemplateLink)
        .join(ProgramTemplateLink, ProgramTemplateLink.template_id == Template.id)
        .where(*filters)
        .order_by(
            effective_sort.asc().nulls_last(),
            Template.week_number.asc().nulls_last(),
            Template.label.asc(),
            ProgramTemplateLink.created_at.asc(),
        )
        .limit(limit)
        .offset(offset)
    )
    rows = db.execute(q).all()
    data = [effective_view(template, link) for template, link in rows]
    return data, {"total": int(total), "limit": limit, "offset": offset}


def list_available_templates(db: Session, program_id: uuid.UUID) -> list[dict[str, Any]]:
    """Published, non-deleted templates not yet attached to the program (the attach picker)."""

    attached = select(ProgramTemplateLink.template_id).where(ProgramTemplateLink.program_id == program_id)
    q = (
        select(Template)
        .where(Template.status == "published")
        .where(Template.deleted_at.is_(None))
        .where(Template.id.not_in(attached))
        .order_by(Template.week_number.asc().nulls_last(), Template.sort_order.asc().nulls_last(), Template.label.asc())
    )
    return [template_view(t) for t in db.execute(q).scalars().all()]


def list_programs_for_template(
    db: Session,
    template_id: uuid.UUID,
    *,
    limit: Any = DEFAULT_LIMIT,
    offset: Any = 0,
) -> tuple[list[dict[str, Any]], dict[str, int]]:
    limit = normalize_limit(limit)
    offset = normalize_offset(offset)

    count_q = select(func.count(ProgramTemplateLink.id)).where(ProgramTemplateLink.template_id == template_id)
    total = db.execute(count_q).scalar_one()
    base = (
        select(Program, ProgramTemplateLink)
        .join(ProgramTemplateLink, ProgramTemplateLink.program_id == Program.id)
        .where(ProgramTemplateLink.template_id == template_id)
    )
    rows = db.execute(base.order_by(Program.title.asc(), Program.id.asc()).limit(limit).offset(offset)).all()
    data = [
        {
            "program_id": program.id,
            "title": program.title,
            "archived_at": program.archived_at,
            "link_id": link.id,
            "linked_at": link.created_at,
        }
        for program, link in rows
    ]
    return data, {"total": int(total), "limit": limit, "offset": offset}
