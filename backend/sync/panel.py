from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator

from sync.api_client import ProgramTemplatesClient
from sync.config import SyncSettings
from sync.normalize import normalize_id
from sync.queue import ATTACH, DETACH, AttachQueue, FlushResult, MetadataQueue, ReorderQueue
from sync.snapshot import (
    EDITABLE_FIELDS,
    PanelSnapshot,
    PanelStore,
    capture_entry,
    capture_fields,
    capture_order,
    with_attached,
    with_detached,
    with_fields,
    with_moved,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSet:
    attach: AttachQueue
    metadata: MetadataQueue
    reorder: ReorderQueue

    def __iter__(self) -> Iterator[AttachQueue | MetadataQueue | ReorderQueue]:
        # Attach first so new links exist before their metadata or order is sent.
        return iter((self.attach, self.metadata, self.reorder))

    @property
    def has_pending(self) -> bool:
        return any(len(q) for q in self)

    async def flush(self) -> FlushResult:
        result = FlushResult()
        for queue in self:
            result += await queue.flush()
        return result

    async def aclose(self) -> None:
        for queue in self:
            await queue.aclose()


class TemplatePanel:
    """Assigned/available templates for the selected program, edited optimistically.

    Queues are created per program and outlive a change of selection, so an
    edit made on one program is always sent to that program.
    """

    def __init__(
        self,
        client: ProgramTemplatesClient,
        *,
        settings: SyncSettings | None = None,
        store: PanelStore | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or SyncSettings()
        self.store = store or PanelStore()
        self._queues: dict[str, QueueSet] = {}

    @property
    def snapshot(self) -> PanelSnapshot:
        return self.store.snapshot

    @property
    def program_id(self) -> str | None:
        return self.store.snapshot.program_id

    def queues(self, program_id: str | None = None) -> QueueSet:
        scope = normalize_id(program_id) or self.program_id
        if scope is None:
            raise LookupError("no program selected")
        queues = self._queues.get(scope)
        if queues is None:
            queues = QueueSet(
                attach=AttachQueue(
                    scope, client=self.client, store=self.store, delay=self.settings.attach_delay_seconds
                ),
                metadata=MetadataQueue(
                    scope, client=self.client, store=self.store, delay=self.settings.metadata_delay_seconds
                ),
                reorder=ReorderQueue(
                    scope, client=self.client, store=self.store, delay=self.settings.reorder_delay_seconds
                ),
            )
            self._queues[scope] = queues
        return queues

    # Loading -----------------------------------------------------------

    async def select_program(self, program_id: str) -> PanelSnapshot:
        scope = normalize_id(program_id)
        if scope is None:
            raise ValueError("program_id is required")
        loaded = await self.client.list_templates(scope)
        self.store.replace(PanelSnapshot(program_id=scope, assigned=loaded.assigned, available=loaded.available))
        self.store.set_message("")
        self.queues(scope)
        logger.info("panel program=%s assigned=%d available=%d", scope, len(loaded.assigned), len(loaded.available))
        return self.store.snapshot

    async def reload(self) -> PanelSnapshot:
        """Replace local state with server truth once nothing for this program is queued."""

        scope = self.program_id
        if scope is None:
            raise LookupError("no program selected")
        await self.queues(scope).flush()
        loaded = await self.client.list_templates(scope)
        if self.program_id == scope:
            self.store.replace(PanelSnapshot(program_id=scope, assigned=loaded.assigned, available=loaded.available))
        return self.store.snapshot

    # Edits -------------------------------------------------------------

    def add_template(self, template_id: str, overrides: dict[str, Any] | None = None) -> bool:
        """Optimistically attach; returns False when there is nothing to do."""

        tid = normalize_id(template_id)
        queues = self.queues()
        pending = queues.attach.get(tid)
        if pending is not None:
            if pending.payload.get("op") == ATTACH:
                return self._retry_attach(tid, overrides)
            # Re-adding a template whose detach has not been sent yet.
            queues.attach.cancel(tid)
            self.store.revert(pending.revert)
            return True

        snapshot = self.snapshot
        if snapshot.is_assigned(tid):
            return False
        view = snapshot.find_available(tid)
        if view is None:
            logger.warning("add_template: %s is not in the attach picker for program=%s", tid, snapshot.program_id)
            return False

        revert = capture_entry(snapshot, tid)
        self.store.update(with_attached, view)
        queues.attach.enqueue_attach(tid, overrides, revert)
        return True

    def _retry_attach(self, tid: str, overrides: dict[str, Any] | None) -> bool:
        # A failed attach stays queued after its revert; adding again shows it and resends.
        queues = self.queues()
        snapshot = self.snapshot
        if snapshot.is_assigned(tid):
            return False
        view = snapshot.find_available(tid)
        if view is None:
            return False
        self.store.update(with_attached, view)
        queues.attach.enqueue_attach(tid, overrides)
        return True

    def remove_template(self, template_id: str) -> bool:
        tid = normalize_id(template_id)
        queues = self.queues()
        pending = queues.attach.get(tid)
        if pending is not None:
            if pending.payload.get("op") == DETACH:
                return False
            # Never sent: drop it without a request.
            queues.attach.cancel(tid)
            self.store.revert(pending.revert)
            return True

        snapshot = self.snapshot
        if not snapshot.is_assigned(tid):
            return False
        revert = capture_entry(snapshot, tid)
        queues.metadata.cancel(tid)
        self.store.update(with_detached, tid)
        queues.attach.enqueue_detach(tid, revert)
        return True

    def edit_metadata(self, template_id: str, **fields: Any) -> bool:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"not editable: {', '.join(sorted(unknown))}")
        tid = normalize_id(template_id)
        snapshot = self.snapshot
        if not fields or not snapshot.is_assigned(tid):
            return False

        queues = self.queues()
        revert = capture_fields(snapshot, tid, fields)
        self.store.update(with_fields, tid, fields)
        if queues.attach.op_for(tid) == ATTACH:
            # The link does not exist yet; send the fields with the attach.
            queues.attach.enqueue_attach(tid, fields)
        else:
            queues.metadata.enqueue(tid, fields, revert)
        return True

    def move_template(self, template_id: str, new_index: int) -> bool:
        tid = normalize_id(template_id)
        snapshot = self.snapshot
        if not snapshot.is_assigned(tid):
            return False

        revert = capture_order(snapshot)
        self.store.update(with_moved, tid, new_index)
        link_ids = [v.link_id for v in self.snapshot.assigned if v.link_id]
        if not link_ids:
            return True
        self.queues().reorder.enqueue_order(link_ids, revert)
        return True

    # Lifecycle ---------------------------------------------------------

    async def flush(self, program_id: str | None = None) -> FlushResult:
        return await self.queues(program_id).flush()

    async def flush_all(self) -> FlushResult:
        result = FlushResult()
        for queues in list(self._queues.values()):
            result += await queues.flush()
        return result

    async def aclose(self) -> None:
        await self.flush_all()
        for queues in self._queues.values():
            await queues.aclose()
        leftover = sum(len(q) for queues in self._queues.values() for q in queues)
        if leftover:
            logger.warning("panel closed with %d unsent edits", leftover)
