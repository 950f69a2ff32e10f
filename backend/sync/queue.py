"""Debounced optimistic mutation queues, one instance per operation class and program.

Lifecycle of a queue::

    idle -> pending -> scheduled -> flushing -> idle
                                            \\-> pending (edits arrived mid-flight)

At most one request batch is in flight per queue. ``flush()`` first waits
for a running batch, then takes whatever is still pending. A queue is bound
to the program it was created for and only ever sends to that program.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from sync.api_client import ApiRequestError, ProgramTemplatesClient
from sync.snapshot import PanelStore, Revert, with_confirmed


logger = logging.getLogger(__name__)


ATTACH = "attach"
DETACH = "detach"
ORDER_KEY = "order"


class QueueState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    FLUSHING = "flushing"


@dataclass(frozen=True)
class QueuedEdit:
    key: str
    payload: Mapping[str, Any]
    revert: Revert | None = None


@dataclass(frozen=True)
class FlushResult:
    succeeded: int = 0
    failed: int = 0
    errors: tuple[ApiRequestError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def message(self) -> str:
        return f"{self.succeeded} succeeded, {self.failed} failed"

    def __add__(self, other: "FlushResult") -> "FlushResult":
        return FlushResult(
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )


class OptimisticQueue:
    name = "edit"
    success_message = "Changes saved."

    def __init__(
        self,
        scope: str,
        *,
        client: ProgramTemplatesClient,
        store: PanelStore,
        delay: float,
    ) -> None:
        if not scope:
            raise ValueError("a queue needs a program scope")
        self.scope = scope
        self.client = client
        self.store = store
        self.delay = delay
        self._pending: dict[str, QueuedEdit] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._settled: dict[str, bool] = {}
        self._errors: list[ApiRequestError] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} scope={self.scope} state={self.state.value} pending={len(self._pending)}>"

    @property
    def state(self) -> QueueState:
        if self._inflight is not None:
            return QueueState.FLUSHING
        if self._timer is not None:
            return QueueState.SCHEDULED
        if self._pending:
            return QueueState.PENDING
        return QueueState.IDLE

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def get(self, key: str) -> QueuedEdit | None:
        return self._pending.get(key)

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    # Buffering ---------------------------------------------------------

    def merge(self, existing: QueuedEdit, incoming: QueuedEdit) -> QueuedEdit:
        """Latest value wins per field; the earliest revert is kept."""

        return QueuedEdit(
            key=existing.key,
            payload={**existing.payload, **incoming.payload},
            revert=existing.revert if existing.revert is not None else incoming.revert,
        )

    def enqueue(
        self,
        key: str,
        payload: Mapping[str, Any],
        revert: Revert | None = None,
        *,
        schedule: bool = True,
    ) -> QueuedEdit:
        incoming = QueuedEdit(key=key, payload=dict(payload), revert=revert)
        existing = self._pending.get(key)
        edit = self.merge(existing, incoming) if existing is not None else incoming
        self._pending[key] = edit
        if schedule:
            self.schedule()
        return edit

    def cancel(self, key: str) -> QueuedEdit | None:
        """Drop a not-yet-sent edit. Costs no request; the caller decides whether to revert."""

        edit = self._pending.pop(key, None)
        if not self._pending:
            self._cancel_timer()
        return edit

    def schedule(self, delay: float | None = None) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay if delay is None else delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self.flush())
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s flush crashed scope=%s", self.name, self.scope, exc_info=exc)

    # Flushing ----------------------------------------------------------

    async def flush(self) -> FlushResult:
        while self._inflight is not None:
            await asyncio.wait({self._inflight})
        self._cancel_timer()
        if not self._pending:
            return FlushResult()

        batch = list(self._pending.values())
        self._pending = {}
        task = asyncio.ensure_future(self._run(batch))
        self._inflight = task
        return await asyncio.shield(task)

    async def _run(self, batch: list[QueuedEdit]) -> FlushResult:
        self._settled = {}
        self._errors = []
        try:
            result = await self._send(batch)
        except Exception as exc:
            result = self._abandon(batch, exc)
        finally:
            self._inflight = None
        self._report(result)
        return result

    async def _send(self, batch: list[QueuedEdit]) -> FlushResult:
        raise NotImplementedError

    def _abandon(self, batch: list[QueuedEdit], exc: Exception) -> FlushResult:
        """Revert and requeue every edit the crashed batch had not settled yet."""

        logger.exception("%s batch crashed scope=%s", self.name, self.scope)
        error = ApiRequestError(None, "client_error", str(exc))
        unsettled = [edit for edit in batch if edit.key not in self._settled]
        for edit in reversed(unsettled):
            self._fail(edit, error)
        return FlushResult(
            succeeded=sum(1 for ok in self._settled.values() if ok),
            failed=len(self._errors),
            errors=tuple(self._errors),
        )

    def _settle(self, edit: QueuedEdit, ok: bool = True) -> None:
        self._settled[edit.key] = ok

    def _fail(self, edit: QueuedEdit, error: ApiRequestError) -> None:
        self._settle(edit, ok=False)
        self._errors.append(error)
        logger.warning(
            "%s failed scope=%s key=%s status=%s code=%s",
            self.name,
            self.scope,
            edit.key,
            error.status_code,
            error.code,
        )
        self.store.revert(edit.revert)
        self._requeue(edit)

    def _requeue(self, edit: QueuedEdit) -> None:
        # Failed edits wait for the next flush; newer edits to the same key win.
        newer = self._pending.get(edit.key)
        self._pending[edit.key] = self.merge(edit, newer) if newer is not None else edit

    def _report(self, result: FlushResult) -> None:
        if result.failed:
            logger.warning("%s flush scope=%s %s", self.name, self.scope, result.message)
            self.store.set_message(result.message, error=True, scope=self.scope)
        elif result.succeeded:
            logger.info("%s flush scope=%s %s", self.name, self.scope, result.message)
            self.store.set_message(self.success_message, scope=self.scope)

    async def aclose(self) -> None:
        """Stop the timer and wait for any running batch. Pending edits are left in place."""

        self._cancel_timer()
        if self._inflight is not None:
            await asyncio.wait({self._inflight})
        if self._background:
            await asyncio.wait(set(self._background))


class AttachQueue(OptimisticQueue):
    """Attach and detach edits keyed by template id, sent one request per item."""

    name = "attach"
    success_message = "Templates updated."

    def enqueue_attach(
        self,
        template_id: str,
        overrides: Mapping[str, Any] | None = None,
        revert: Revert | None = None,
    ) -> QueuedEdit:
        return self.enqueue(template_id, {"op": ATTACH, "overrides": dict(overrides or {})}, revert)

    def enqueue_detach(self, template_id: str, revert: Revert | None = None) -> QueuedEdit:
        return self.enqueue(template_id, {"op": DETACH}, revert)

    def op_for(self, template_id: str) -> str | None:
        edit = self._pending.get(template_id)
        return edit.payload.get("op") if edit is not None else None

    def merge(self, existing: QueuedEdit, incoming: QueuedEdit) -> QueuedEdit:
        revert = existing.revert if existing.revert is not None else incoming.revert
        if existing.payload.get("op") == incoming.payload.get("op") == ATTACH:
            overrides = {**existing.payload.get("overrides", {}), **incoming.payload.get("overrides", {})}
            return QueuedEdit(existing.key, {"op": ATTACH, "overrides": overrides}, revert)
        return QueuedEdit(existing.key, dict(incoming.payload), revert)

    def _requeue(self, edit: QueuedEdit) -> None:
        newer = self._pending.get(edit.key)
        if newer is not None and newer.payload.get("op") != edit.payload.get("op"):
            # The user already undid the failed edit locally; nothing is left to send.
            del self._pending[edit.key]
            return
        super()._requeue(edit)

    async def _send(self, batch: list[QueuedEdit]) -> FlushResult:
        succeeded = 0
        errors: list[ApiRequestError] = []
        for edit in batch:
            try:
                if edit.payload.get("op") == DETACH:
                    await self._detach(edit.key)
                else:
                    outcome = await self.client.attach(self.scope, edit.key, edit.payload.get("overrides"))
                    self.store.update(
                        with_confirmed,
                        outcome.template,
                        scope=self.scope,
                        insert=edit.key not in self._pending,
                    )
            except ApiRequestError as exc:
                self._fail(edit, exc)
                errors.append(exc)
            else:
                self._settle(edit)
                succeeded += 1
        return FlushResult(succeeded=succeeded, failed=len(errors), errors=tuple(errors))

    async def _detach(self, template_id: str) -> None:
        try:
            await self.client.detach(self.scope, template_id)
        except ApiRequestError as exc:
            if exc.status_code != 404:
                raise
            logger.info("detach scope=%s template=%s already gone (%s)", self.scope, template_id, exc.code)


class MetadataQueue(OptimisticQueue):
    """Per-link field patches; a flush stops at the first failing request."""

    name = "metadata"

    async def _send(self, batch: list[QueuedEdit]) -> FlushResult:
        succeeded = 0
        for index, edit in enumerate(batch):
            try:
                outcome = await self.client.update_metadata(self.scope, edit.key, dict(edit.payload))
            except ApiRequestError as exc:
                self._fail(edit, exc)
                for unsent in batch[index + 1 :]:
                    self._settle(unsent, ok=False)
                    self._requeue(unsent)
                return FlushResult(succeeded=succeeded, failed=1, errors=(exc,))
            if edit.key not in self._pending:
                self.store.update(with_confirmed, outcome.template, scope=self.scope, insert=False)
            self._settle(edit)
            succeeded += 1
        return FlushResult(succeeded=succeeded)


class ReorderQueue(OptimisticQueue):
    """The whole program order as one pending edit, keyed by link id."""

    name = "reorder"
    success_message = "Order saved."

    def enqueue_order(self, link_ids: Iterable[str], revert: Revert | None = None) -> QueuedEdit:
        return self.enqueue(ORDER_KEY, {"order": list(link_ids)}, revert)

    async def _send(self, batch: list[QueuedEdit]) -> FlushResult:
        result = FlushResult()
        for edit in batch:
            order = list(edit.payload.get("order") or [])
            if not order:
                continue
            try:
                updated = await self.client.reorder(self.scope, order)
            except ApiRequestError as exc:
                self._fail(edit, exc)
                result += FlushResult(failed=1, errors=(exc,))
                continue
            logger.debug("reorder scope=%s sent=%d updated=%d", self.scope, len(order), updated)
            self._settle(edit)
            result += FlushResult(succeeded=1)
        return result
