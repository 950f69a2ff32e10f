"""
Tests for the program/template link endpoints.

Tests:
- attach / detach idempotency
- effective-value merge precedence
- reorder scoping by link id
- attach picker and status filtering
- validation and not-found error codes
- audit rows for link mutations
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func, select

from models.audit_log import AuditLog
from models.program_template_link import ProgramTemplateLink


def _links_url(program) -> str:
    return f"/api/programs/{program.id}/templates"


def _attach(client, headers, program, template, **overrides):
    return client.post(_links_url(program), json={"template_id": str(template.id), **overrides}, headers=headers)


def _link_count(session_factory, program, template) -> int:
    with session_factory() as s:
        q = (
            select(func.count(ProgramTemplateLink.id))
            .where(ProgramTemplateLink.program_id == program.id)
            .where(ProgramTemplateLink.template_id == template.id)
        )
        return s.execute(q).scalar_one()


class TestAttach:
    def test_attach_is_idempotent(self, client, admin_headers, make_program, make_template, session_factory):
        program = make_program()
        template = make_template("Badge pickup", week_number=1)

        first = _attach(client, admin_headers, program, template)
        second = _attach(client, admin_headers, program, template)

        assert first.status_code == 201
        assert first.json()["alreadyAttached"] is False
        assert first.json()["attached"] is True
        assert second.status_code == 200
        assert second.json()["alreadyAttached"] is True
        assert second.json()["template"]["link_id"] == first.json()["template"]["link_id"]
        assert _link_count(session_factory, program, template) == 1

    def test_attach_appends_to_program_order(self, client, admin_headers, make_program, make_template):
        program = make_program()
        a = make_template("A")
        b = make_template("B")

        assert _attach(client, admin_headers, program, a).json()["template"]["sort_order"] == 1
        assert _attach(client, admin_headers, program, b).json()["template"]["sort_order"] == 2

    def test_attach_with_overrides(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("Unit tour", notes="default notes")

        response = _attach(client, admin_headers, program, template, notes="bring badge", hyperlink="https://x.test")

        body = response.json()["template"]
        assert body["notes"] == "bring badge"
        assert body["hyperlink"] == "https://x.test"

    def test_attach_unknown_program(self, client, admin_headers, make_template):
        template = make_template("A")
        response = client.post(
            f"/api/programs/{uuid.uuid4()}/templates",
            json={"template_id": str(template.id)},
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "program_not_found"

    def test_attach_unknown_template(self, client, admin_headers, make_program):
        program = make_program()
        response = client.post(_links_url(program), json={"template_id": str(uuid.uuid4())}, headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "template_not_found"

    def test_attach_soft_deleted_template(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("Gone")
        client.delete(f"/api/templates/{template.id}", headers=admin_headers)

        response = _attach(client, admin_headers, program, template)

        assert response.status_code == 404
        assert response.json()["detail"] == "template_not_found"

    def test_attach_requires_template_id(self, client, admin_headers, make_program):
        program = make_program()
        response = client.post(_links_url(program), json={"template_id": "nope"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "invalid_template_id"

    def test_attach_rejects_bad_number(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        response = _attach(client, admin_headers, program, template, sort_order="first")
        assert response.status_code == 400
        assert response.json()["detail"] == "invalid_number"

    def test_attach_alias_always_200(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        url = f"{_links_url(program)}/attach"

        first = client.post(url, json={"template_id": str(template.id)}, headers=admin_headers)
        second = client.post(url, json={"templateId": str(template.id)}, headers=admin_headers)

        assert first.status_code == 200
        assert first.json()["alreadyAttached"] is False
        assert second.status_code == 200
        assert second.json()["alreadyAttached"] is True


class TestDraftPicker:
    def test_draft_template_appears_after_publishing(self, client, admin_headers, make_program, make_template):
        program = make_program("P1")
        draft = make_template("T5", status="draft")

        listing = client.get(_links_url(program), headers=admin_headers).json()
        assert str(draft.id) not in {t["template_id"] for t in listing["available"]}

        refused = _attach(client, admin_headers, program, draft)
        assert refused.status_code == 400
        assert refused.json()["detail"] == "invalid_status"

        published = client.patch(f"/api/templates/{draft.id}", json={"status": "published"}, headers=admin_headers)
        assert published.status_code == 200

        listing = client.get(_links_url(program), headers=admin_headers).json()
        assert str(draft.id) in {t["template_id"] for t in listing["available"]}

        attached = _attach(client, admin_headers, program, draft)
        assert attached.status_code == 201
        assert attached.json()["alreadyAttached"] is False

        listing = client.get(_links_url(program), headers=admin_headers).json()
        assert str(draft.id) not in {t["template_id"] for t in listing["available"]}
        assert [t["template_id"] for t in listing["data"]] == [str(draft.id)]

    def test_existing_link_is_grandfathered(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)
        client.patch(f"/api/templates/{template.id}", json={"status": "deprecated"}, headers=admin_headers)

        response = _attach(client, admin_headers, program, template)

        assert response.status_code == 200
        assert response.json()["alreadyAttached"] is True
        assert response.json()["template"]["status"] == "deprecated"


class TestDetach:
    def test_detach_missing_link_is_noop(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")

        response = client.delete(f"{_links_url(program)}/{template.id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"detached": True, "wasAttached": False}

    def test_detach_twice(self, client, admin_headers, make_program, make_template, session_factory):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)

        first = client.delete(f"{_links_url(program)}/{template.id}", headers=admin_headers)
        second = client.delete(f"{_links_url(program)}/{template.id}", headers=admin_headers)

        assert first.json()["wasAttached"] is True
        assert second.json()["wasAttached"] is False
        assert _link_count(session_factory, program, template) == 0

    def test_detach_soft_deleted_template(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)
        client.delete(f"/api/templates/{template.id}", headers=admin_headers)

        response = client.delete(f"{_links_url(program)}/{template.id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["wasAttached"] is True

    def test_detach_never_existing_template(self, client, admin_headers, make_program):
        program = make_program()
        response = client.delete(f"{_links_url(program)}/{uuid.uuid4()}", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "template_not_found"

    def test_detach_alias(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)

        response = client.post(
            f"{_links_url(program)}/detach",
            json={"template_id": str(template.id)},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["wasAttached"] is True


class TestMetadata:
    def test_merge_precedence(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A", notes="A")
        _attach(client, admin_headers, program, template)
        url = f"{_links_url(program)}/{template.id}"

        listing = client.get(_links_url(program), headers=admin_headers).json()
        assert listing["data"][0]["notes"] == "A"

        override = client.patch(url, json={"notes": "B"}, headers=admin_headers)
        assert override.status_code == 200
        assert override.json()["updated"] is True
        assert override.json()["template"]["notes"] == "B"

        cleared = client.patch(url, json={"notes": ""}, headers=admin_headers)
        assert cleared.json()["template"]["notes"] == "A"

    def test_fields_merge_independently(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A", notes="default", external_link="https://default.test")
        _attach(client, admin_headers, program, template)

        response = client.patch(
            f"{_links_url(program)}/{template.id}",
            json={"hyperlink": "https://override.test"},
            headers=admin_headers,
        )

        body = response.json()["template"]
        assert body["hyperlink"] == "https://override.test"
        assert body["notes"] == "default"

    def test_unchanged_patch_reports_not_updated(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template, notes="same")

        response = client.patch(f"{_links_url(program)}/{template.id}", json={"notes": "same"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["updated"] is False

    def test_patch_stamps_updated_by(self, client, admin, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)

        response = client.patch(f"{_links_url(program)}/{template.id}", json={"sort_order": 9}, headers=admin_headers)

        assert response.json()["template"]["updated_by"] == str(admin.id)
        assert response.json()["template"]["sort_order"] == 9

    @pytest.mark.parametrize(
        "payload, code",
        [
            ({}, "no_fields"),
            ({"unrelated": 1}, "no_fields"),
            ({"sort_order": "abc"}, "invalid_number"),
            ({"due_offset_days": 1.5}, "invalid_number"),
        ],
    )
    def test_patch_validation(self, client, admin_headers, make_program, make_template, payload, code):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)

        response = client.patch(f"{_links_url(program)}/{template.id}", json=payload, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == code

    def test_patch_missing_link(self, client, admin_headers, make_program, make_template):
        program = make_program()
        template = make_template("A")
        response = client.patch(f"{_links_url(program)}/{template.id}", json={"notes": "x"}, headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "not_found"

    def test_patch_missing_program(self, client, admin_headers, make_template):
        template = make_template("A")
        response = client.patch(
            f"/api/programs/{uuid.uuid4()}/templates/{template.id}",
            json={"notes": "x"},
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "program_not_found"


class TestReorder:
    def test_reorder_is_scoped_to_program(self, client, admin_headers, make_program, make_template):
        p1 = make_program("P1")
        p2 = make_program("P2")
        t1, t2, t3 = (make_template(label) for label in ("T1", "T2", "T3"))
        l1, l2, l3 = (_attach(client, admin_headers, p1, t).json()["template"]["link_id"] for t in (t1, t2, t3))
        other = _attach(client, admin_headers, p2, t1).json()["template"]

        response = client.post(
            f"{_links_url(p1)}/reorder",
            json={"order": [l3, l1, l2, other["link_id"]]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"updated": 3}
        data = client.get(_links_url(p1), headers=admin_headers).json()["data"]
        assert {t["link_id"]: t["sort_order"] for t in data} == {l3: 1, l1: 2, l2: 3}
        elsewhere = client.get(_links_url(p2), headers=admin_headers).json()["data"]
        assert elsewhere[0]["sort_order"] == other["sort_order"]

    def test_week_one_templates_swap(self, client, admin_headers, make_program, make_template):
        program = make_program("P1")
        t1 = make_template("T1", week_number=1)
        t2 = make_template("T2", week_number=1)
        l1 = _attach(client, admin_headers, program, t1).json()["template"]["link_id"]
        l2 = _attach(client, admin_headers, program, t2).json()["template"]["link_id"]

        response = client.post(f"{_links_url(program)}/reorder", json={"order": [l2, l1]}, headers=admin_headers)

        assert response.json()["updated"] == 2
        data = client.get(_links_url(program), headers=admin_headers).json()["data"]
        assert [t["label"] for t in data] == ["T2", "T1"]
        assert [t["week_number"] for t in data] == [1, 1]

    def test_duplicate_ids_keep_first_position(self, client, admin_headers, make_program, make_template):
        program = make_program()
        l1 = _attach(client, admin_headers, program, make_template("A")).json()["template"]["link_id"]
        l2 = _attach(client, admin_headers, program, make_template("B")).json()["template"]["link_id"]

        response = client.post(f"{_links_url(program)}/reorder", json={"order": [l2, l1, l2]}, headers=admin_headers)

        assert response.json()["updated"] == 2
        data = client.get(_links_url(program), headers=admin_headers).json()["data"]
        assert [t["link_id"] for t in data] == [l2, l1]

    @pytest.mark.parametrize("payload", [{}, {"order": []}, {"order": "abc"}, {"order": ["not-a-uuid"]}])
    def test_invalid_order(self, client, admin_headers, make_program, payload):
        program = make_program()
        response = client.post(f"{_links_url(program)}/reorder", json=payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "invalid_order"


class TestListing:
    def test_orders_by_effective_sort_then_week_then_label(self, client, admin_headers, make_program, make_template):
        program = make_program()
        late = make_template("Late", week_number=3)
        early = make_template("Early", week_number=1)
        for template in (late, early):
            _attach(client, admin_headers, program, template)
        client.patch(f"{_links_url(program)}/{late.id}", json={"sort_order": ""}, headers=admin_headers)

        data = client.get(_links_url(program), headers=admin_headers).json()["data"]

        # Late lost its override and has no template default, so it sorts last.
        assert [t["label"] for t in data] == ["Early", "Late"]

    def test_soft_deleted_templates_hidden_unless_requested(self, client, admin_headers, make_program, make_template):
        program = make_program()
        kept = make_template("Kept")
        gone = make_template("Gone")
        for template in (kept, gone):
            _attach(client, admin_headers, program, template)
        client.delete(f"/api/templates/{gone.id}", headers=admin_headers)

        default = client.get(_links_url(program), headers=admin_headers).json()
        everything = client.get(_links_url(program), params={"include_deleted": "true"}, headers=admin_headers).json()

        assert [t["label"] for t in default["data"]] == ["Kept"]
        assert default["meta"]["total"] == 1
        archived = {t["label"]: t["archived"] for t in everything["data"]}
        assert archived == {"Kept": False, "Gone": True}

    def test_status_filter(self, client, admin_headers, make_program, make_template):
        program = make_program()
        a = make_template("A")
        b = make_template("B")
        for template in (a, b):
            _attach(client, admin_headers, program, template)
        client.patch(f"/api/templates/{b.id}", json={"status": "deprecated"}, headers=admin_headers)

        data = client.get(_links_url(program), params={"status": "Deprecated"}, headers=admin_headers).json()["data"]

        assert [t["label"] for t in data] == ["B"]

    def test_invalid_status_filter(self, client, admin_headers, make_program):
        program = make_program()
        response = client.get(_links_url(program), params={"status": "bogus"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "invalid_status"

    def test_pagination_meta(self, client, admin_headers, make_program, make_template):
        program = make_program()
        for index in range(3):
            _attach(client, admin_headers, program, make_template(f"T{index}"))

        page = client.get(_links_url(program), params={"limit": 2, "offset": 2}, headers=admin_headers).json()

        assert page["meta"] == {"total": 3, "limit": 2, "offset": 2}
        assert len(page["data"]) == 1

    def test_unknown_program(self, client, admin_headers):
        response = client.get(f"/api/programs/{uuid.uuid4()}/templates", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "program_not_found"


class TestAudit:
    def test_mutations_write_audit_rows(self, client, admin, admin_headers, make_program, make_template, session_factory):
        program = make_program()
        template = make_template("A")
        _attach(client, admin_headers, program, template)
        _attach(client, admin_headers, program, template)
        client.delete(f"{_links_url(program)}/{template.id}", headers=admin_headers)

        with session_factory() as s:
            rows = s.execute(select(AuditLog).order_by(AuditLog.changed_at.asc())).scalars().all()

        # The repeated attach was a no-op and is not audited.
        assert sorted(r.operation for r in rows) == ["DELETE", "INSERT"]
        assert all(r.changed_by == admin.id for r in rows)
        assert all(r.table_name == "program_template_links" for r in rows)
