"""Transactional link mutations: attach, detach, metadata patch, reorder.

Every operation runs in a single transaction on the request session and
raises ``HTTPException`` with an API error code; any exception rolls the
transaction back, so a failed call leaves no partial link state.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

from fastapi import HTTPException
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.program_template_link import OVERRIDE_FIELDS, ProgramTemplateLink
from services import link_store


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttachResult:
    template: dict[str, Any]
    already_attached: bool


@dataclass(frozen=True)
class DetachResult:
    template: dict[str, Any]
    was_attached: bool


@dataclass(frozen=True)
class MetadataResult:
    updated: bool
    template: dict[str, Any]


@dataclass(frozen=True)
class ReorderResult:
    updated: int


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def _require_program(db: Session, program_id: uuid.UUID) -> None:
    if link_store.get_program(db, program_id) is None:
        raise HTTPException(status_code=404, detail="program_not_found")


def attach_template(
    db: Session,
    *,
    program_id: uuid.UUID,
    template_id: uuid.UUID,
    overrides: dict[str, Any] | None = None,
    user_id: uuid.UUID | None = None,
) -> AttachResult:
    """Insert the (program, template) link, or no-op if it already exists.

    New attachments require a published template; existing links are
    reported as ``already_attached`` whatever the template status.
    """

    overrides = {k: v for k, v in (overrides or {}).items() if k in OVERRIDE_FIELDS or k == "visible"}
    try:
        with transaction(db):
            _require_program(db, program_id)
            template = link_store.get_template(db, template_id, include_deleted=False)
            if template is None:
                raise HTTPException(status_code=404, detail="template_not_found")

            existing = link_store.get_link(db, program_id, template_id)
            if existing is not None:
                logger.info("attach no-op program=%s template=%s", program_id, template_id)
                return AttachResult(link_store.effective_view(template, existing), already_attached=True)

            if template.status != "published":
                raise HTTPException(status_code=400, detail="invalid_status")

            link = ProgramTemplateLink(
                program_id=program_id,
                template_id=template_id,
                created_by=user_id,
                updated_by=user_id,
                **overrides,
            )
            if link.sort_order is None:
                link.sort_order = link_store.next_sort_order(db, program_id)
            if link.visible is None:
                link.visible = True
            db.add(link)
            db.flush()
            db.refresh(link)
            logger.info("attach program=%s template=%s link=%s", program_id, template_id, link.id)
            return AttachResult(link_store.effective_view(template, link), already_attached=False)
    except IntegrityError:
        # A concurrent attach inserted the same pair between our check and insert.
        logger.info("attach lost insert race program=%s template=%s", program_id, template_id)
        with transaction(db):
            template = link_store.get_template(db, template_id, include_deleted=True)
            link = link_store.get_link(db, program_id, template_id)
            if template is None or link is None:
                raise
            return AttachResult(link_store.effective_view(template, link), already_attached=True)


def detach_template(db: Session, *, program_id: uuid.UUID, template_id: uuid.UUID) -> DetachResult:
    """Delete the link if present. Soft-deleted templates can still be detached."""

    with transaction(db):
        _require_program(db, program_id)
        template = link_store.get_template(db, template_id, include_deleted=True)
        if template is None:
            raise HTTPException(status_code=404, detail="template_not_found")

        result = db.execute(
            delete(ProgramTemplateLink)
            .where(ProgramTemplateLink.program_id == program_id)
            .where(ProgramTemplateLink.template_id == template_id)
        )
        was_attached = (result.rowcount or 0) > 0
        logger.info("detach program=%s template=%s was_attached=%s", program_id, template_id, was_attached)
        return DetachResult(link_store.template_view(template), was_attached=was_attached)


def update_link_metadata(
    db: Session,
    *,
    program_id: uuid.UUID,
    template_id: uuid.UUID,
    patch: dict[str, Any],
    user_id: uuid.UUID | None = None,
) -> MetadataResult:
    with transaction(db):
        _require_program(db, program_id)
        link = link_store.get_link(db, program_id, template_id)
        if link is None:
            raise HTTPException(status_code=404, detail="not_found")
        template = link_store.get_template(db, template_id, include_deleted=True)
        if template is None:
            raise HTTPException(status_code=404, detail="not_found")

        changed = False
        for field, value in patch.items():
            if getattr(link, field) != value:
                setattr(link, field, value)
                changed = True
        link.updated_by = user_id
        link.updated_at = datetime.now(timezone.utc)
        db.flush()
        logger.info(
            "link metadata program=%s template=%s fields=%s changed=%s",
            program_id,
            template_id,
            sorted(patch),
            changed,
        )
        return MetadataResult(updated=changed, template=link_store.effective_view(template, link))


def reorder_links(
    db: Session,
    *,
    program_id: uuid.UUID,
    order: list[uuid.UUID],
    user_id: uuid.UUID | None = None,
) -> ReorderResult:
    """Set sort_order = position + 1 for each listed link of this program.

    Link ids belonging to other programs (or to nothing) are skipped. A link
    listed twice keeps its first position.
    """

    unique_order: list[uuid.UUID] = list(dict.fromkeys(order))
    with transaction(db):
        _require_program(db, program_id)
        rows = (
            db.execute(
                select(ProgramTemplateLink)
                .where(ProgramTemplateLink.program_id == program_id)
                .where(ProgramTemplateLink.id.in_(unique_order))
            )
            .scalars()
            .all()
        )
        by_id = {row.id: row for row in rows}
        now = datetime.now(timezone.utc)
        updated = 0
        for index, link_id in enumerate(unique_order):
            link = by_id.get(link_id)
            if link is None:
                continue
            link.sort_order = index + 1
            link.updated_by = user_id
            link.updated_at = now
            updated += 1
        db.flush()
        ignored = len(unique_order) - updated
        if ignored:
            logger.info("reorder program=%s ignored %d foreign or unknown links", program_id, ignored)
        logger.info("reorder program=%s updated=%d", program_id, updated)
        return ReorderResult(updated=updated)
