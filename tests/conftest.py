"""Shared fixtures: in-memory database, fake SES client, catalog files and HTTP client."""

import importlib
import json
from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.catalog import Catalog
from fulfillment.config import settings
from fulfillment.db.models import Base
from fulfillment.mail import Mailer
from fulfillment.templates import TemplateRenderer

from .helpers import (
    ADMIN_TOKEN,
    AUTH_TOKEN,
    BASE_URL,
    GHOST_KEY_ID,
    GHOST_KEY_SECRET,
    HMAC_SECRET,
    POLLS,
    STORE,
    WEBHOOK_SECRET,
)

# ``fulfillment.db.engine`` the attribute is the AsyncEngine; we need the module
db_engine = importlib.import_module("fulfillment.db.engine")


@pytest.fixture(autouse=True)
def configured_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Deterministic secrets and file locations for every test."""
    downloads_dir = tmp_path / "downloads"
    downloads_dir.mkdir()
    (downloads_dir / "novel-v2.pdf").write_bytes(b"%PDF-1.4 novel")

    monkeypatch.setattr(settings, "hmac_secret", HMAC_SECRET)
    monkeypatch.setattr(settings, "auth_token", AUTH_TOKEN)
    monkeypatch.setattr(settings, "admin_token", ADMIN_TOKEN)
    monkeypatch.setattr(settings, "session_concurrency", 3)
    monkeypatch.setattr(settings, "download_link_expiry", 72)
    monkeypatch.setattr(settings, "from_name", "Jane Publisher")
    monkeypatch.setattr(settings, "from_email", "jane@example.com")
    monkeypatch.setattr(settings, "ses_configuration_set", "")
    monkeypatch.setattr(settings, "mail_throttle", False)
    monkeypatch.setattr(settings, "public_base_url", "")
    monkeypatch.setattr(settings, "downloads_dir", str(downloads_dir))
    monkeypatch.setattr(settings, "stripe_webhook_signing_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_restricted_api_key", "rk_test_key")
    monkeypatch.setattr(settings, "stripe_ghost_join_product_id", "prod_ghost_join")
    monkeypatch.setattr(settings, "ghost_api_url", "https://ghost.example.com")
    monkeypatch.setattr(settings, "ghost_admin_api_key", f"{GHOST_KEY_ID}:{GHOST_KEY_SECRET}")
    monkeypatch.setattr(
        settings, "ghost_store_confirmation_page", "https://blog.example.com/thanks"
    )
    monkeypatch.setattr(settings, "ghost_polls_confirmation_page", "https://blog.example.com/voted")


@pytest.fixture
async def session_factory(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[object, None]:
    """Fresh in-memory database wired into ``get_session()``."""
    engine = db_engine.create_engine_instance("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = db_engine.create_session_factory(engine)
    monkeypatch.setattr(db_engine, "async_session_factory", factory)
    yield factory
    await engine.dispose()


@pytest.fixture
async def file_session_factory(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, session_factory
) -> AsyncGenerator[object, None]:
    """A SQLite file database, one connection per session, wired into ``get_session()``."""
    engine = db_engine.create_engine_instance(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = db_engine.create_session_factory(engine)
    monkeypatch.setattr(db_engine, "async_session_factory", factory)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for service-level tests; changes are flushed, not committed."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def ses_client() -> MagicMock:
    client = MagicMock()
    client.send_email.return_value = {"MessageId": "msg-0001"}
    return client


@pytest.fixture
def mailer(ses_client: MagicMock) -> Mailer:
    return Mailer(client=ses_client, throttle=False)


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


@pytest.fixture
async def catalog(tmp_path: Path) -> Catalog:
    store_file = tmp_path / "store.json"
    polls_file = tmp_path / "polls.json"
    store_file.write_text(json.dumps(STORE))
    polls_file.write_text(json.dumps(POLLS))
    catalog = Catalog(store_file, polls_file)
    await catalog.reload()
    return catalog


@pytest.fixture
async def client(
    monkeypatch: pytest.MonkeyPatch,
    session_factory,
    catalog: Catalog,
    mailer: Mailer,
    renderer: TemplateRenderer,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client against the app, with collaborators swapped for test doubles."""
    from fulfillment.main import app

    monkeypatch.setattr(app.state, "catalog", catalog)
    monkeypatch.setattr(app.state, "mailer", mailer)
    monkeypatch.setattr(app.state, "renderer", renderer)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http_client:
        yield http_client
    app.dependency_overrides.clear()
