from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from api.deps import require_permission, require_read
from core.database import get_db
from models.program import Program
from schemas.program import ProgramCreate, ProgramOut


router = APIRouter()


logger = logging.getLogger(__name__)


def _get_or_404(db: Session, program_id: uuid.UUID) -> Program:
    program = db.get(Program, program_id)
    if program is None:
        raise HTTPException(status_code=404, detail="program_not_found")
    return program


@router.get("/", response_model=list[ProgramOut])
def list_programs(
    include_archived: bool = Query(default=False),
    _reader=Depends(require_read("program")),
    db: Session = Depends(get_db),
) -> list[ProgramOut]:
    q = select(Program)
    if not include_archived:
        q = q.where(Program.archived_at.is_(None))
    q = q.order_by(Program.title.asc(), Program.created_at.asc())
    return db.execute(q).scalars().all()


@router.post("/", response_model=ProgramOut, status_code=201)
def create_program(
    payload: ProgramCreate,
    _editor=Depends(require_permission("create", "program")),
    db: Session = Depends(get_db),
) -> ProgramOut:
    program = Program(**payload.model_dump())
    db.add(program)
    db.commit()
    db.refresh(program)
    logger.info("program created id=%s", program.id)
    return program


@router.post("/{program_id}/archive", response_model=ProgramOut)
def archive_program(
    program_id: uuid.UUID,
    _admin=Depends(require_permission("archive", "program")),
    db: Session = Depends(get_db),
) -> ProgramOut:
    program = _get_or_404(db, program_id)
    if program.archived_at is None:
        program.archived_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(program)
        logger.info("program archived id=%s", program.id)
    return program


@router.post("/{program_id}/restore", response_model=ProgramOut)
def restore_program(
    program_id: uuid.UUID,
    _admin=Depends(require_permission("restore", "program")),
    db: Session = Depends(get_db),
) -> ProgramOut:
    program = _get_or_404(db, program_id)
    if program.archived_at is not None:
        program.archived_at = None
        db.commit()
        db.refresh(program)
        logger.info("program restored id=%s", program.id)
    return program
