"""
Pytest configuration and shared fixtures.

API tests run the real app against an in-memory SQLite database. Client
sync tests run against ``FakeLinksApi`` through ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from api.deps import get_audit_writer
from core.database import get_db
from core.security import create_access_token, hash_password
from main import app
from models.base import Base
from models.program import Program
from models.program_membership import ProgramMembership
from models.template import Template
from models.user import User, UserRole
from services.audit import AuditWriter
from sync.api_client import ProgramTemplatesClient
from sync.config import SyncSettings
from sync.panel import TemplatePanel


# ---------------------------------------------------------------------------
# Database / app
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def app_overrides(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_audit_writer] = lambda: AuditWriter(session_factory, enabled=True)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_overrides) -> TestClient:
    # No context manager: startup bootstrap would touch the configured database.
    return TestClient(app_overrides)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_program(db) -> Callable[..., Program]:
    def _make(title: str = "Nursing Orientation", total_weeks: int | None = 4) -> Program:
        program = Program(title=title, total_weeks=total_weeks)
        db.add(program)
        db.commit()
        return program

    return _make


@pytest.fixture
def make_template(db) -> Callable[..., Template]:
    def _make(label: str, *, status: str = "published", **fields: Any) -> Template:
        template = Template(label=label, status=status, **fields)
        db.add(template)
        db.commit()
        return template

    return _make


@pytest.fixture
def make_user(db) -> Callable[..., User]:
    def _make(username: str, *roles: str, password: str = "secret-pass") -> User:
        user = User(username=username, password_hash=hash_password(password), is_active=True)
        for role in roles:
            user.roles.append(UserRole(role=role))
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def grant_manager(db) -> Callable[[User, Program], None]:
    def _grant(user: User, program: Program) -> None:
        db.add(ProgramMembership(user_id=user.id, program_id=program.id, role="manager"))
        db.commit()

    return _grant


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user_id=str(user.id), username=user.username, roles=list(user.role_keys))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(make_user) -> User:
    return make_user("admin", "admin")


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return auth_headers(admin)


# ---------------------------------------------------------------------------
# Client sync
# ---------------------------------------------------------------------------


def template_record(label: str, *, week_number: int | None = None, status: str = "published") -> dict[str, Any]:
    return {
        "template_id": str(uuid.uuid4()),
        "label": label,
        "week_number": week_number,
        "notes": None,
        "hyperlink": None,
        "sort_order": None,
        "status": status,
        "archived": False,
    }


class FakeLinksApi:
    """Just enough of the program/template endpoints to drive the client queues."""

    def __init__(self, templates: list[dict[str, Any]]) -> None:
        self.templates = {t["template_id"]: dict(t) for t in templates}
        self.links: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        # (method, key) -> status code, a canned response, or None for a dropped connection.
        self.failures: dict[tuple[str, str], int | httpx.Response | None] = {}
        self.gate: asyncio.Event | None = None

    def link(self, program_id: str, template_id: str, **overrides: Any) -> dict[str, Any]:
        sort_order = max((l["sort_order"] or 0 for (p, _), l in self.links.items() if p == program_id), default=0) + 1
        record = {**self.templates[template_id], "sort_order": sort_order, **overrides}
        record.update({"link_id": str(uuid.uuid4()), "program_id": program_id})
        self.links[(program_id, template_id)] = record
        return record

    def calls_for(self, method: str) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == method]

    def _fail(self, request: httpx.Request, key: tuple[str, str]) -> httpx.Response | None:
        if key not in self.failures:
            return None
        status = self.failures[key]
        if status is None:
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(status, httpx.Response):
            return status
        return httpx.Response(status, json={"detail": "boom"})

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.gate is not None:
            await self.gate.wait()
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        parts = request.url.path.strip("/").split("/")
        program_id = parts[2]
        rest = parts[4:]

        if request.method == "GET":
            assigned = sorted(
                (l for (p, _), l in self.links.items() if p == program_id),
                key=lambda l: (l["sort_order"] or 0),
            )
            attached = {l["template_id"] for l in assigned}
            available = [t for tid, t in self.templates.items() if tid not in attached and t["status"] == "published"]
            return httpx.Response(
                200,
                json={"data": assigned, "available": available, "meta": {"total": len(assigned), "limit": 100, "offset": 0}},
            )

        if request.method == "POST" and rest == ["reorder"]:
            failed = self._fail(request, ("POST", "reorder"))
            if failed is not None:
                return failed
            updated = 0
            for index, link_id in enumerate(body["order"]):
                for (p, _), link in self.links.items():
                    if p == program_id and link["link_id"] == link_id:
                        link["sort_order"] = index + 1
                        updated += 1
            return httpx.Response(200, json={"updated": updated})

        if request.method == "POST":
            template_id = body["template_id"]
            failed = self._fail(request, ("POST", template_id))
            if failed is not None:
                return failed
            existing = self.links.get((program_id, template_id))
            if existing is not None:
                return httpx.Response(200, json={"attached": True, "alreadyAttached": True, "template": existing})
            overrides = {k: v for k, v in body.items() if k != "template_id"}
            record = self.link(program_id, template_id, **overrides)
            return httpx.Response(201, json={"attached": True, "alreadyAttached": False, "template": record})

        template_id = rest[0]
        failed = self._fail(request, (request.method, template_id))
        if failed is not None:
            return failed

        if request.method == "DELETE":
            was_attached = self.links.pop((program_id, template_id), None) is not None
            return httpx.Response(200, json={"detached": True, "wasAttached": was_attached})

        if request.method == "PATCH":
            link = self.links.get((program_id, template_id))
            if link is None:
                return httpx.Response(404, json={"detail": "not_found"})
            link.update(body)
            return httpx.Response(200, json={"updated": True, "template": link})

        return httpx.Response(405, json={"detail": "method_not_allowed"})


FAST_SETTINGS = SyncSettings(
    base_url="http://testserver",
    attach_delay_seconds=0.01,
    metadata_delay_seconds=0.01,
    reorder_delay_seconds=0.01,
)


@pytest.fixture
def fake_api() -> FakeLinksApi:
    return FakeLinksApi(
        [
            template_record("Badge pickup", week_number=1),
            template_record("Unit tour", week_number=1),
            template_record("Charting basics", week_number=2),
            template_record("Draft checklist", status="draft"),
        ]
    )


@pytest.fixture
def program_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
async def sync_client(fake_api):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler), base_url="http://testserver")
    client = ProgramTemplatesClient(http)
    yield client
    await http.aclose()


@pytest.fixture
async def panel(sync_client, program_id):
    panel = TemplatePanel(sync_client, settings=FAST_SETTINGS)
    await panel.select_program(program_id)
    yield panel
    for queues in list(panel._queues.values()):
        await queues.aclose()


def template_id_by_label(fake_api: FakeLinksApi, label: str) -> str:
    return next(tid for tid, t in fake_api.templates.items() if t["label"] == label)
