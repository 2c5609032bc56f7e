"""Shared fixtures: in-memory SQLite database, fake provider clients and an app client.

Environment variables are set before the application is imported so the
module-level settings and Stripe service pick up deterministic secrets.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_backoffice")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_backoffice")
os.environ.setdefault("CALENDLY_WEBHOOK_TOKEN", "calendly-test-token")
os.environ.setdefault("CRON_INVOKE_KEY", "cron-test-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "supabase-test-jwt-secret")
os.environ.setdefault("PUBLIC_API_URL", "https://api.studio.example.com")
os.environ.setdefault("CALENDLY_BOOKING_URL", "https://calendly.com/studio/class")
os.environ.setdefault("SIGNNOW_WAIVER_TEMPLATE_ID", "tmpl_waiver")

from typing import Any, Dict, List, Optional
import itertools

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backoffice.core.auth import get_current_member, require_admin
from backoffice.core.database import get_db
from backoffice.core.exceptions import ExternalProviderFailure
from backoffice.crud import member_crud
from backoffice.main import app
from backoffice.models import Base, Member
from backoffice.services.email_service import get_email_client
from backoffice.services.ledger_service import ledger_service
from backoffice.services.signnow_client import get_signnow_client


class FakeSignNow:
    """Records calls; `sign()` marks a document completed"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.copies: List[Dict[str, Any]] = []
        self.invites: List[Dict[str, Any]] = []
        self.links: List[str] = []
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.failing_documents = set()
        self.fail_copy = False

    async def copy_template(self, template_id: str, document_name: Optional[str] = None) -> str:
        if self.fail_copy:
            raise ExternalProviderFailure("signnow", "template copy failed", 500)
        document_id = f"doc_{next(self._ids)}"
        self.copies.append({"template_id": template_id, "document_name": document_name, "id": document_id})
        self.documents[document_id] = {"id": document_id, "status": "pending"}
        return document_id

    async def send_invite(self, document_id: str, **kwargs) -> Dict[str, Any]:
        self.invites.append({"document_id": document_id, **kwargs})
        return {"status": "success"}

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        if document_id in self.failing_documents:
            raise ExternalProviderFailure("signnow", f"GET /document/{document_id} timed out")
        return self.documents.get(document_id, {"id": document_id, "status": "pending"})

    async def create_signing_link(self, document_id: str) -> str:
        self.links.append(document_id)
        return f"https://app.signnow.com/sign/{document_id}"

    def sign(self, document_id: str, signed_at: str = "2026-03-01T10:00:00Z") -> None:
        self.documents[document_id] = {
            "id": document_id,
            "field_invites": [{"id": "fi_1", "status": "fulfilled", "updated": signed_at}],
        }


class FakeEmail:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise ExternalProviderFailure("email", f"send to {to} failed", 500)
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def signnow():
    return FakeSignNow()


@pytest.fixture
def email_client():
    return FakeEmail()


@pytest_asyncio.fixture
async def admin_member(db) -> Member:
    member = await member_crud.get_or_create_by_email(db, "owner@studio.example.com")
    member.is_admin = True
    await db.commit()
    return member


@pytest_asyncio.fixture
async def client(session_factory, signnow, email_client, admin_member):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_admin():
        return admin_member

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_signnow_client] = lambda: signnow
    app.dependency_overrides[get_email_client] = lambda: email_client
    app.dependency_overrides[require_admin] = override_admin
    app.dependency_overrides[get_current_member] = override_admin

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_member(db):
    async def _make(email: str, credits: int = 0) -> Member:
        member = await member_crud.get_or_create_by_email(db, email)
        if credits:
            await ledger_service.grant(db, member.id, credits, "Test grant")
        return member
    return _make
