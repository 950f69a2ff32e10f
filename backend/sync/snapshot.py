"""Immutable panel state, pure transitions over it, and restorable reverts.

A revert is data, not a closure: it records the part of a snapshot an
optimistic edit is about to change, and :func:`apply_revert` puts that part
back. Every revert carries the program it was captured for and is ignored
when applied to a snapshot of another program.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Mapping, Union

from sync.normalize import TemplateView


logger = logging.getLogger(__name__)


EDITABLE_FIELDS = ("notes", "hyperlink", "sort_order")


@dataclass(frozen=True)
class PanelSnapshot:
    program_id: str | None = None
    assigned: tuple[TemplateView, ...] = ()
    available: tuple[TemplateView, ...] = ()

    def find_assigned(self, template_id: str) -> TemplateView | None:
        return next((v for v in self.assigned if v.template_id == template_id), None)

    def find_available(self, template_id: str) -> TemplateView | None:
        return next((v for v in self.available if v.template_id == template_id), None)

    def is_assigned(self, template_id: str) -> bool:
        return self.find_assigned(template_id) is not None

    @property
    def assigned_ids(self) -> list[str]:
        return [v.template_id for v in self.assigned]


# Transitions ---------------------------------------------------------------


def _without(views: tuple[TemplateView, ...], template_id: str) -> tuple[TemplateView, ...]:
    return tuple(v for v in views if v.template_id != template_id)


def _next_sort_order(views: Iterable[TemplateView]) -> int:
    return max((v.sort_order or 0 for v in views), default=0) + 1


def with_attached(snapshot: PanelSnapshot, view: TemplateView) -> PanelSnapshot:
    """Move a template into the assigned list (appended, last in order)."""

    if snapshot.is_assigned(view.template_id):
        return snapshot
    if view.sort_order is None:
        view = replace(view, sort_order=_next_sort_order(snapshot.assigned))
    return replace(
        snapshot,
        assigned=snapshot.assigned + (replace(view, program_id=snapshot.program_id),),
        available=_without(snapshot.available, view.template_id),
    )


def with_detached(snapshot: PanelSnapshot, template_id: str) -> PanelSnapshot:
    view = snapshot.find_assigned(template_id)
    if view is None:
        return snapshot
    available = _without(snapshot.available, template_id)
    if view.is_published:
        available = available + (replace(view, link_id=None, program_id=None),)
    return replace(snapshot, assigned=_without(snapshot.assigned, template_id), available=available)


def with_fields(snapshot: PanelSnapshot, template_id: str, fields: Mapping[str, Any]) -> PanelSnapshot:
    if not snapshot.is_assigned(template_id):
        return snapshot
    assigned = tuple(replace(v, **fields) if v.template_id == template_id else v for v in snapshot.assigned)
    return replace(snapshot, assigned=assigned)


def with_confirmed(snapshot: PanelSnapshot, view: TemplateView, *, insert: bool = True) -> PanelSnapshot:
    """Swap the optimistic entry for the server-confirmed one.

    With ``insert=False`` a template the user removed in the meantime stays removed.
    """

    if not snapshot.is_assigned(view.template_id):
        return with_attached(snapshot, view) if insert else snapshot
    assigned = tuple(view if v.template_id == view.template_id else v for v in snapshot.assigned)
    return replace(snapshot, assigned=assigned)


def with_order(snapshot: PanelSnapshot, template_ids: Iterable[str]) -> PanelSnapshot:
    """Arrange assigned templates in the given order; sort_order becomes position + 1.

    Unlisted templates keep their relative order after the listed ones.
    """

    by_id = {v.template_id: v for v in snapshot.assigned}
    ordered_ids = [tid for tid in dict.fromkeys(template_ids) if tid in by_id]
    ordered_ids += [v.template_id for v in snapshot.assigned if v.template_id not in ordered_ids]
    assigned = tuple(replace(by_id[tid], sort_order=index + 1) for index, tid in enumerate(ordered_ids))
    return replace(snapshot, assigned=assigned)


def with_moved(snapshot: PanelSnapshot, template_id: str, new_index: int) -> PanelSnapshot:
    ids = snapshot.assigned_ids
    if template_id not in ids:
        return snapshot
    ids.remove(template_id)
    new_index = max(0, min(new_index, len(ids)))
    ids.insert(new_index, template_id)
    return with_order(snapshot, ids)


# Reverts -------------------------------------------------------------------


@dataclass(frozen=True)
class EntryRestore:
    """Where one template sat in the assigned/available lists before an edit."""

    program_id: str | None
    template_id: str
    assigned: TemplateView | None = None
    assigned_index: int | None = None
    available: TemplateView | None = None
    available_index: int | None = None


@dataclass(frozen=True)
class OrderRestore:
    program_id: str | None
    order: tuple[tuple[str, int | None], ...] = ()


@dataclass(frozen=True)
class FieldRestore:
    program_id: str | None
    template_id: str
    fields: tuple[tuple[str, Any], ...] = ()


Revert = Union[EntryRestore, OrderRestore, FieldRestore]


def capture_entry(snapshot: PanelSnapshot, template_id: str) -> EntryRestore:
    assigned_index = next((i for i, v in enumerate(snapshot.assigned) if v.template_id == template_id), None)
    available_index = next((i for i, v in enumerate(snapshot.available) if v.template_id == template_id), None)
    return EntryRestore(
        program_id=snapshot.program_id,
        template_id=template_id,
        assigned=snapshot.assigned[assigned_index] if assigned_index is not None else None,
        assigned_index=assigned_index,
        available=snapshot.available[available_index] if available_index is not None else None,
        available_index=available_index,
    )


def capture_order(snapshot: PanelSnapshot) -> OrderRestore:
    return OrderRestore(
        program_id=snapshot.program_id,
        order=tuple((v.template_id, v.sort_order) for v in snapshot.assigned),
    )


def capture_fields(snapshot: PanelSnapshot, template_id: str, names: Iterable[str]) -> FieldRestore:
    view = snapshot.find_assigned(template_id)
    if view is None:
        return FieldRestore(program_id=snapshot.program_id, template_id=template_id)
    return FieldRestore(
        program_id=snapshot.program_id,
        template_id=template_id,
        fields=tuple((name, getattr(view, name)) for name in names),
    )


def _insert_at(
    views: tuple[TemplateView, ...], view: TemplateView | None, index: int | None, template_id: str
) -> tuple[TemplateView, ...]:
    remaining = list(_without(views, template_id))
    if view is not None:
        remaining.insert(min(index if index is not None else len(remaining), len(remaining)), view)
    return tuple(remaining)


def apply_revert(snapshot: PanelSnapshot, revert: Revert | None) -> PanelSnapshot:
    if revert is None:
        return snapshot
    if revert.program_id != snapshot.program_id:
        logger.debug("ignoring revert for program=%s on program=%s", revert.program_id, snapshot.program_id)
        return snapshot

    if isinstance(revert, EntryRestore):
        return replace(
            snapshot,
            assigned=_insert_at(snapshot.assigned, revert.assigned, revert.assigned_index, revert.template_id),
            available=_insert_at(snapshot.available, revert.available, revert.available_index, revert.template_id),
        )
    if isinstance(revert, OrderRestore):
        previous = dict(revert.order)
        position = {tid: i for i, (tid, _sort) in enumerate(revert.order)}
        tail = len(position)
        assigned = sorted(snapshot.assigned, key=lambda v: position.get(v.template_id, tail))
        assigned = [
            replace(v, sort_order=previous[v.template_id]) if v.template_id in previous else v for v in assigned
        ]
        return replace(snapshot, assigned=tuple(assigned))
    if isinstance(revert, FieldRestore):
        return with_fields(snapshot, revert.template_id, dict(revert.fields))
    raise TypeError(f"unknown revert type: {type(revert).__name__}")


# Store ---------------------------------------------------------------------


Listener = Callable[[PanelSnapshot], None]


class PanelStore:
    """Holds the current snapshot and a status line; notifies listeners on change."""

    def __init__(self, snapshot: PanelSnapshot | None = None) -> None:
        self._snapshot = snapshot or PanelSnapshot()
        self._listeners: list[Listener] = []
        self.message = ""
        self.message_is_error = False

    @property
    def snapshot(self) -> PanelSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def replace(self, snapshot: PanelSnapshot) -> None:
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    def update(
        self,
        transition: Callable[..., PanelSnapshot],
        *args: Any,
        scope: str | None = None,
        **kwargs: Any,
    ) -> bool:
        """Apply a transition; with ``scope`` set, only while that program is shown."""

        if scope is not None and scope != self._snapshot.program_id:
            return False
        self.replace(transition(self._snapshot, *args, **kwargs))
        return True

    def revert(self, revert: Revert | None) -> None:
        self.replace(apply_revert(self._snapshot, revert))

    def set_message(self, text: str, *, error: bool = False, scope: str | None = None) -> None:
        if scope is not None and scope != self._snapshot.program_id:
            return
        self.message = text
        self.message_is_error = error
