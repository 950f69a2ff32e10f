from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.audit_log import AuditLog


logger = logging.getLogger(__name__)


class AuditWriter:
    """Writes audit rows on a session of its own, after the mutation has committed.

    Failures are logged and swallowed: auditing never changes a response.
    """

    def __init__(self, session_factory: Callable[[], Session], *, enabled: bool = True) -> None:
        self._session_factory = session_factory
        self.enabled = enabled

    def record(
        self,
        *,
        table_name: str,
        operation: str,
        record_id: Any,
        payload: dict[str, Any] | None = None,
        changed_by: uuid.UUID | None = None,
    ) -> None:
        if not self.enabled:
            return
        db = self._session_factory()
        try:
            db.add(
                AuditLog(
                    table_name=table_name,
                    operation=operation,
                    record_id=str(record_id) if record_id is not None else None,
                    payload=jsonable_encoder(payload) if payload is not None else None,
                    changed_by=changed_by,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("audit write failed table=%s op=%s record=%s", table_name, operation, record_id)
        finally:
            db.close()
