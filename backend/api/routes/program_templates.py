from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from api.deps import get_audit_writer, require_program_manager, require_read
from core.database import get_db
from schemas.program_template import (
    AttachResponse,
    DetachResponse,
    MetadataUpdateResponse,
    ProgramTemplatesPage,
    ReorderResponse,
)
from services import link_service, link_store
from services.audit import AuditWriter
from services.authorization import AuthenticatedUser
from services.sanitize import InvalidFieldError, normalize_status, parse_uuid, sanitize_link_patch


router = APIRouter()


logger = logging.getLogger(__name__)


LINKS_TABLE = "program_template_links"


def _template_id_from(value: Any) -> uuid.UUID:
    template_id = parse_uuid(value)
    if template_id is None:
        raise HTTPException(status_code=400, detail="invalid_template_id")
    return template_id


def _sanitize(raw: dict[str, Any]) -> dict[str, Any]:
    try:
        return sanitize_link_patch(raw)
    except InvalidFieldError as exc:
        logger.warning("rejected link payload field=%s code=%s", exc.field, exc.code)
        raise HTTPException(status_code=400, detail=exc.code)


def _attach(
    program_id: uuid.UUID,
    payload: dict[str, Any] | None,
    *,
    current_user: AuthenticatedUser,
    db: Session,
    audit: AuditWriter,
    background_tasks: BackgroundTasks,
) -> link_service.AttachResult:
    payload = payload or {}
    template_id = _template_id_from(payload.get("template_id", payload.get("templateId")))
    overrides = _sanitize({k: v for k, v in payload.items() if k not in {"template_id", "templateId"}})

    result = link_service.attach_template(
        db,
        program_id=program_id,
        template_id=template_id,
        overrides=overrides,
        user_id=current_user.id,
    )
    if not result.already_attached:
        background_tasks.add_task(
            audit.record,
            table_name=LINKS_TABLE,
            operation="INSERT",
            record_id=result.template["link_id"],
            payload={"program_id": program_id, "template_id": template_id, **overrides},
            changed_by=current_user.id,
        )
    return result


def _detach(
    program_id: uuid.UUID,
    template_id: uuid.UUID,
    *,
    current_user: AuthenticatedUser,
    db: Session,
    audit: AuditWriter,
    background_tasks: BackgroundTasks,
) -> link_service.DetachResult:
    result = link_service.detach_template(db, program_id=program_id, template_id=template_id)
    if result.was_attached:
        background_tasks.add_task(
            audit.record,
            table_name=LINKS_TABLE,
            operation="DELETE",
            record_id=f"{program_id}:{template_id}",
            payload={"program_id": program_id, "template_id": template_id},
            changed_by=current_user.id,
        )
    return result


@router.get("/{program_id}/templates", response_model=ProgramTemplatesPage)
def list_program_templates(
    program_id: uuid.UUID,
    include_deleted: bool = Query(default=False),
    status: str | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
    _reader: AuthenticatedUser = Depends(require_read("template")),
    db: Session = Depends(get_db),
) -> dict:
    normalized_status = None
    if status is not None and status.strip():
        normalized_status = normalize_status(status)
        if normalized_status is None:
            raise HTTPException(status_code=400, detail="invalid_status")

    if link_store.get_program(db, program_id) is None:
        raise HTTPException(status_code=404, detail="program_not_found")

    data, meta = link_store.list_templates_for_program(
        db,
        program_id,
        include_deleted=include_deleted,
        status=normalized_status,
        limit=limit,
        offset=offset,
    )
    available = link_store.list_available_templates(db, program_id)
    return {"data": data, "available": available, "meta": meta}


@router.post("/{program_id}/templates", response_model=AttachResponse)
def attach_program_template(
    program_id: uuid.UUID,
    response: Response,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] | None = Body(default=None),
    current_user: AuthenticatedUser = Depends(require_program_manager),
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    result = _attach(
        program_id,
        payload,
        current_user=current_user,
        db=db,
        audit=audit,
        background_tasks=background_tasks,
    )
    response.status_code = 200 if result.already_attached else 201
    return {"attached": True, "alreadyAttached": result.already_attached, "template": result.template}


@router.post("/{program_id}/templates/attach", response_model=AttachResponse)
def attach_program_template_alias(
    program_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] | None = Body(default=None),
    current_user: AuthenticatedUser = Depends(require_program_manager),
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    result = _attach(
        program_id,
        payload,
        current_user=current_user,
        db=db,
        audit=audit,
        background_tasks=background_tasks,
    )
    return {"attached": True, "alreadyAttached": result.already_attached, "template": result.template}


@router.post("/{program_id}/templates/detach", response_model=DetachResponse)
def detach_program_template_alias(
    program_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] | None = Body(default=None),
    current_user: AuthenticatedUser = Depends(require_program_manager),
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    payload = payload or {}
    template_id = _template_id_from(payload.get("template_id", payload.get("templateId")))
    result = _detach(
        program_id,
        template_id,
        current_user=current_user,
        db=db,
        audit=audit,
        background_tasks=background_tasks,
    )
    return {"detached": True, "wasAttached": result.was_attached}


@router.post("/{program_id}/templates/reorder", response_model=ReorderResponse)
def reorder_program_templates(
    program_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] | None = Body(default=None),
    current_user: AuthenticatedUser = Depends(require_program_manager),
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    raw_order = (payload or {}).get("order")
    if not isinstance(raw_order, list) or not raw_order:
        raise HTTPException(status_code=400, detail="invalid_order")
    order = [link_id for link_id in (parse_uuid(v) for v in raw_order) if link_id is not None]
    if not order:
        raise HTTPException(status_code=400, detail="invalid_order")

    result = link_service.reorder_links(db, program_id=program_id, order=order, user_id=current_user.id)
    if result.updated:
        background_tasks.add_task(
            audit.record,
            table_name=LINKS_TABLE,
            operation="REORDER",
            record_id=program_id,
            payload={"order": order},
            changed_by=current_user.id,
        )
    return {"updated": result.updated}


@router.patch("/{program_id}/templates/{template_id}", response_model=MetadataUpdateResponse)
def update_program_template_metadata(
    program_id: uuid.UUID,
    template_id: str,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] | None = Body(default=None),
    current_user: AuthenticatedUser = Depends(require_program_manager),
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    parsed_template_id = _template_id_from(template_id)
    patch = _sanitize(payload or {})
    if not patch:
        raise HTTPException(status_code=400, detail="no_fields")

    result = link_service.update_link_metadata(
        db,
        program_id=program_id,
        template_id=parsed_template_id,
        patch=patch,
        user_id=current_user.id,
    )
    if result.updated:
        background_tasks.add_task(
            audit.record,
            table_name=LINKS_TABLE,
            operation="UPDATE",
            record_id=result.template["link_id"],
            payload=patch,
            changed_by=current_user.id,
        )
    return {"updated": result.updated, "template": result.template}


@router.delete("/{program_id}/templates/{template_id}", response_model=DetachResponse)
def detach_program_template(
    program_id: uuid.UUID,
    template_id: str,
    background_tasks: BackgroundTasks,
    current_user: AuthenticatedUser = Depends(require_program_manager),
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> dict:
    result = _detach(
        program_id,
        _template_id_from(template_id),
        current_user=current_user,
        db=db,
        audit=audit,
        background_tasks=background_tasks,
    )
    return {"detached": True, "wasAttached": result.was_attached}
