from __future__ import annotations

import asyncio

from conftest import template_id_by_label
from sync.tag_sync import TagEvent, TagSyncAdapter, TagWidget


class TestTagWidget:
    def test_events_carry_programmatic_marker(self):
        widget = TagWidget()
        events: list[TagEvent] = []
        widget.on_change(events.append)

        widget.add("A")
        widget.add("b", programmatic=True)
        widget.add("a")
        widget.remove("b")

        assert events == [
            TagEvent("add", "a", False),
            TagEvent("add", "b", True),
            TagEvent("remove", "b", False),
        ]
        assert widget.tags == ["a"]

    def test_set_tags_follows_requested_order(self):
        widget = TagWidget(["x", "y"])
        widget.set_tags(["z", "x"])
        assert widget.tags == ["z", "x"]


class TestTagSyncAdapter:
    async def test_widget_mirrors_assigned_on_select(self, panel, fake_api, program_id):
        tid = template_id_by_label(fake_api, "Badge pickup")
        fake_api.link(program_id, tid)
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)

        await panel.select_program(program_id)

        assert widget.tags == [tid]
        adapter.close()

    async def test_user_add_enqueues_attach(self, panel, fake_api):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        tid = template_id_by_label(fake_api, "Unit tour")

        widget.add(tid)
        assert panel.snapshot.is_assigned(tid)
        await panel.flush()

        assert len(fake_api.calls_for("POST")) == 1
        assert widget.tags == [tid]
        adapter.close()

    async def test_programmatic_add_is_ignored(self, panel, fake_api):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        tid = template_id_by_label(fake_api, "Unit tour")

        widget.add(tid, programmatic=True)

        assert not panel.snapshot.is_assigned(tid)
        assert len(panel.queues().attach) == 0
        adapter.close()

    async def test_rapid_add_remove_add_sends_one_attach(self, panel, fake_api, program_id):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        tid = template_id_by_label(fake_api, "Badge pickup")

        widget.add(tid)
        widget.remove(tid)
        widget.add(tid)
        await asyncio.sleep(0.05)

        assert len(fake_api.calls_for("POST")) == 1
        assert fake_api.calls_for("DELETE") == []
        assert (program_id, tid) in fake_api.links
        assert widget.tags == [tid]
        adapter.close()

    async def test_rapid_add_remove_sends_nothing(self, panel, fake_api):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        tid = template_id_by_label(fake_api, "Badge pickup")

        widget.add(tid)
        widget.remove(tid)
        await asyncio.sleep(0.05)

        assert [c for c in fake_api.calls if c[0] != "GET"] == []
        assert widget.tags == []
        adapter.close()

    async def test_failed_attach_removes_tag(self, panel, fake_api):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        tid = template_id_by_label(fake_api, "Unit tour")
        fake_api.failures[("POST", tid)] = 500

        widget.add(tid)
        assert widget.tags == [tid]
        await panel.flush()

        assert widget.tags == []
        assert not panel.snapshot.is_assigned(tid)
        adapter.close()

    async def test_unknown_tag_is_dropped(self, panel, fake_api):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        draft = template_id_by_label(fake_api, "Draft checklist")

        widget.add(draft)

        assert widget.tags == []
        assert len(panel.queues().attach) == 0
        adapter.close()

    async def test_remove_confirmed_tag_detaches(self, panel, fake_api, program_id):
        tid = template_id_by_label(fake_api, "Badge pickup")
        fake_api.link(program_id, tid)
        await panel.select_program(program_id)
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)

        widget.remove(tid)
        await panel.flush()

        assert len(fake_api.calls_for("DELETE")) == 1
        assert widget.tags == []
        adapter.close()

    async def test_re_adding_after_failed_attach_retries(self, panel, fake_api, program_id):
        widget = TagWidget()
        adapter = TagSyncAdapter(widget, panel)
        tid = template_id_by_label(fake_api, "Unit tour")
        fake_api.failures[("POST", tid)] = 500

        widget.add(tid)
        await panel.flush()
        assert widget.tags == []
        del fake_api.failures[("POST", tid)]

        widget.add(tid)
        assert widget.tags == [tid]
        assert panel.snapshot.is_assigned(tid)
        await asyncio.sleep(0.05)

        assert len(fake_api.calls_for("POST")) == 2
        assert (program_id, tid) in fake_api.links
        assert panel.snapshot.find_assigned(tid).link_id is not None
        assert widget.tags == [tid]
        adapter.close()
