"""Keeps a multi-select tag input in step with the template panel.

Every widget change is marked either as a user action or as a programmatic
update. The adapter reacts only to user actions, and all of its own writes
to the widget are programmatic, so it never feeds back into itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Literal

from sync.normalize import normalize_id
from sync.panel import TemplatePanel
from sync.snapshot import PanelSnapshot


logger = logging.getLogger(__name__)


TagEventKind = Literal["add", "remove"]


@dataclass(frozen=True)
class TagEvent:
    kind: TagEventKind
    template_id: str
    programmatic: bool = False


TagListener = Callable[[TagEvent], None]


class TagWidget:
    """In-memory model of a tag input: an ordered set of template ids."""

    def __init__(self, tags: Iterable[str] = ()) -> None:
        self._tags: list[str] = []
        self._listeners: list[TagListener] = []
        for tag in tags:
            tid = normalize_id(tag)
            if tid and tid not in self._tags:
                self._tags.append(tid)

    @property
    def tags(self) -> list[str]:
        return list(self._tags)

    def on_change(self, listener: TagListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _off() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _off

    def _emit(self, event: TagEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def add(self, template_id: str, *, programmatic: bool = False) -> bool:
        tid = normalize_id(template_id)
        if tid is None or tid in self._tags:
            return False
        self._tags.append(tid)
        self._emit(TagEvent("add", tid, programmatic))
        return True

    def remove(self, template_id: str, *, programmatic: bool = False) -> bool:
        tid = normalize_id(template_id)
        if tid not in self._tags:
            return False
        self._tags.remove(tid)
        self._emit(TagEvent("remove", tid, programmatic))
        return True

    def set_tags(self, template_ids: Iterable[str], *, programmatic: bool = True) -> None:
        wanted = [tid for tid in dict.fromkeys(normalize_id(t) for t in template_ids) if tid]
        for tid in [t for t in self._tags if t not in wanted]:
            self.remove(tid, programmatic=programmatic)
        for tid in wanted:
            self.add(tid, programmatic=programmatic)
        # Keep display order equal to the requested order.
        self._tags = [t for t in wanted if t in self._tags]


class TagSyncAdapter:
    """Routes user tag edits into the panel and mirrors the assigned list back."""

    def __init__(self, widget: TagWidget, panel: TemplatePanel) -> None:
        self.widget = widget
        self.panel = panel
        self._off_widget = widget.on_change(self._on_tag_event)
        self._off_store = panel.store.subscribe(self._on_snapshot)
        self._on_snapshot(panel.store.snapshot)

    def _on_tag_event(self, event: TagEvent) -> None:
        if event.programmatic:
            return
        if event.kind == "add":
            changed = self.panel.add_template(event.template_id)
            if not changed and not self.panel.snapshot.is_assigned(event.template_id):
                logger.info("tag %s cannot be attached; removing it", event.template_id)
                self.widget.remove(event.template_id, programmatic=True)
        else:
            self.panel.remove_template(event.template_id)

    def _on_snapshot(self, snapshot: PanelSnapshot) -> None:
        self.widget.set_tags(snapshot.assigned_ids, programmatic=True)

    def close(self) -> None:
        self._off_widget()
        self._off_store()
