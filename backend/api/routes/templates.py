from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from api.deps import require_permission, require_read
from core.database import get_db
from models.template import Template
from schemas.program_template import TemplateOut, TemplateProgramsPage, TemplatesPage
from schemas.template import TemplateCreate
from services import link_store
from services.authorization import AuthenticatedUser
from services.sanitize import InvalidFieldError, normalize_status, sanitize_template_patch


router = APIRouter()


logger = logging.getLogger(__name__)


def _get_or_404(db: Session, template_id: uuid.UUID, *, include_deleted: bool = True) -> Template:
    template = link_store.get_template(db, template_id, include_deleted=include_deleted)
    if template is None:
        raise HTTPException(status_code=404, detail="template_not_found")
    return template


@router.get("/", response_model=TemplatesPage)
def list_templates(
    status: str | None = Query(default=None),
    include_deleted: bool = Query(default=False),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    _reader: AuthenticatedUser = Depends(require_read("template")),
    db: Session = Depends(get_db),
) -> dict:
    filters = []
    if status is not None and status.strip():
        normalized = normalize_status(status)
        if normalized is None:
            raise HTTPException(status_code=400, detail="invalid_status")
        filters.append(Template.status == normalized)
    if not include_deleted:
        filters.append(Template.deleted_at.is_(None))

    limit = link_store.normalize_limit(limit)
    offset = link_store.normalize_offset(offset)
    total = db.execute(select(func.count(Template.id)).where(*filters)).scalar_one()
    q = (
        select(Template)
        .where(*filters)
        .order_by(Template.week_number.asc().nulls_last(), Template.sort_order.asc().nulls_last(), Template.label.asc())
        .limit(limit)
        .offset(offset)
    )
    data = [link_store.template_view(t) for t in db.execute(q).scalars().all()]
    return {"data": data, "meta": {"total": int(total), "limit": limit, "offset": offset}}


@router.get("/{template_id}", response_model=TemplateOut)
def get_template(
    template_id: uuid.UUID,
    _reader: AuthenticatedUser = Depends(require_read("template")),
    db: Session = Depends(get_db),
) -> dict:
    return link_store.template_view(_get_or_404(db, template_id))


@router.get("/{template_id}/programs", response_model=TemplateProgramsPage)
def list_template_programs(
    template_id: uuid.UUID,
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    _reader: AuthenticatedUser = Depends(require_read("program")),
    db: Session = Depends(get_db),
) -> dict:
    _get_or_404(db, template_id)
    data, meta = link_store.list_programs_for_template(db, template_id, limit=limit, offset=offset)
    return {"data": data, "meta": meta}


@router.post("/", response_model=TemplateOut, status_code=201)
def create_template(
    payload: TemplateCreate,
    _editor: AuthenticatedUser = Depends(require_permission("create", "template")),
    db: Session = Depends(get_db),
) -> dict:
    status = normalize_status(payload.status)
    if status is None:
        raise HTTPException(status_code=400, detail="invalid_status")

    data = payload.model_dump()
    data["status"] = status
    data["label"] = data["label"].strip()
    template = Template(**data)
    db.add(template)
    db.commit()
    db.refresh(template)
    logger.info("template created id=%s status=%s", template.id, template.status)
    return link_store.template_view(template)


@router.patch("/{template_id}", response_model=TemplateOut)
def update_template(
    template_id: uuid.UUID,
    payload: dict[str, Any] | None = Body(default=None),
    _editor: AuthenticatedUser = Depends(require_permission("update", "template")),
    db: Session = Depends(get_db),
) -> dict:
    try:
        updates = sanitize_template_patch(payload or {})
    except InvalidFieldError as exc:
        raise HTTPException(status_code=400, detail=exc.code)
    if not updates:
        raise HTTPException(status_code=400, detail="no_fields")

    template = _get_or_404(db, template_id)
    for k, v in updates.items():
        setattr(template, k, v)
    db.commit()
    db.refresh(template)
    logger.info("template updated id=%s fields=%s", template.id, sorted(updates))
    return link_store.template_view(template)


@router.delete("/{template_id}", response_model=TemplateOut)
def delete_template(
    template_id: uuid.UUID,
    _editor: AuthenticatedUser = Depends(require_permission("delete", "template")),
    db: Session = Depends(get_db),
) -> dict:
    # Soft delete only: links to this template stay in place, flagged archived.
    template = _get_or_404(db, template_id)
    if template.deleted_at is None:
        template.deleted_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(template)
        logger.info("template soft-deleted id=%s", template.id)
    return link_store.template_view(template)


@router.post("/{template_id}/restore", response_model=TemplateOut)
def restore_template(
    template_id: uuid.UUID,
    _editor: AuthenticatedUser = Depends(require_permission("update", "template")),
    db: Session = Depends(get_db),
) -> dict:
    template = _get_or_404(db, template_id)
    if template.deleted_at is not None:
        template.deleted_at = None
        db.commit()
        db.refresh(template)
        logger.info("template restored id=%s", template.id)
    return link_store.template_view(template)
