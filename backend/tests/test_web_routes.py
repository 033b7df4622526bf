"""
HTTP contract of the view router.

Gated views answer 503 while the session is loading. A redirect decision is
a 303 for browsers and a JSON error with `location` for API clients.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport

from conftest import profile_data
from lume import subscriptions
from lume.config import Settings
from lume.domain import SubscriptionStatus
from lume.web import create_app

pytestmark = pytest.mark.anyio

HTML = {"accept": "text/html,application/xhtml+xml"}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(database_url="sqlite://", state_dir=tmp_path / "state", installation_id="web")


@pytest.fixture
def app(settings, manager):
    return create_app(settings=settings, manager=manager)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def ready(manager):
    # ASGITransport does not run startup handlers
    await manager.restore()
    return manager


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_gated_view_waits_for_restore(client):
    resp = await client.get("/professional")
    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "SESSION_LOADING"


async def test_anonymous_is_sent_to_login(client, ready):
    api = await client.get("/admin")
    assert api.status_code == 401
    assert api.json()["detail"] == {"code": "NOT_AUTHENTICATED", "location": "/"}

    browser = await client.get("/professional", headers=HTML)
    assert browser.status_code == 303
    assert browser.headers["location"] == "/"


async def test_login_view(client, ready, fake_store):
    resp = await client.get("/")
    assert resp.json() == {"view": "login", "is_loading": False}

    fake_store.add_admin("admin@lume.app", "AdminPassword123!")
    await client.post("/auth/login", json={"email": "admin@lume.app", "password": "AdminPassword123!"})

    resp = await client.get("/", headers=HTML)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/admin"


async def test_admin_login_and_role_routing(client, ready, fake_store):
    fake_store.add_admin("admin@lume.app", "AdminPassword123!")

    resp = await client.post("/auth/login", json={"email": "admin@lume.app", "password": "AdminPassword123!"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["redirect"] == "/admin"
    assert body["actor"]["role"] == "admin"

    assert (await client.get("/admin")).status_code == 200
    assert (await client.get("/admin/professionals")).json()["view"] == "admin/professionals"

    wrong = await client.get("/professional")
    assert wrong.status_code == 403
    assert wrong.json()["detail"]["location"] == "/admin"


async def test_login_errors(client, ready, fake_store):
    fake_store.add_admin("admin@lume.app", "AdminPassword123!")

    bad = await client.post("/auth/login", json={"email": "admin@lume.app", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json()["detail"]["code"] == "INVALID_CREDENTIALS"

    malformed = await client.post("/auth/login", json={"email": "not-an-email", "password": "x"})
    assert malformed.status_code == 422

    fake_store.unavailable = True
    down = await client.post("/auth/login", json={"email": "admin@lume.app", "password": "AdminPassword123!"})
    assert down.status_code == 503
    assert down.json()["detail"]["code"] == "STORE_UNAVAILABLE"


async def test_register_then_professional_views(client, ready):
    resp = await client.post("/auth/register", json=profile_data())
    assert resp.status_code == 201
    assert resp.json()["redirect"] == "/professional"

    section = await client.get("/professional/agenda")
    assert section.status_code == 200
    assert section.json()["view"] == "professional/agenda"

    me = (await client.get("/auth/me")).json()
    assert me["is_authenticated"] is True
    assert me["role"] == "professional"
    assert me["is_trial_active"] is True
    assert me["has_active_subscription"] is True
    assert me["days_left"] == 3

    admin_page = await client.get("/admin")
    assert admin_page.status_code == 403
    assert admin_page.json()["detail"]["location"] == "/professional"


async def test_register_errors(client, ready):
    invalid = await client.post("/auth/register", json=profile_data(phone="", state="XYZ"))
    assert invalid.status_code == 422
    detail = invalid.json()["detail"]
    assert detail["code"] == "VALIDATION_ERROR"
    assert {"phone", "state"} <= set(detail["fields"])

    assert (await client.post("/auth/register", json=profile_data())).status_code == 201
    await client.post("/auth/logout")

    dup = await client.post("/auth/register", json=profile_data())
    assert dup.status_code == 409
    assert dup.json()["detail"]["code"] == "DUPLICATE_EMAIL"


async def test_expired_trial_is_redirected(client, ready, fake_store, clock):
    await client.post("/auth/register", json=profile_data())
    clock.advance(days=3, minutes=1)

    api = await client.get("/professional")
    assert api.status_code == 402
    assert api.json()["detail"] == {"code": "SUBSCRIPTION_EXPIRED", "location": "/subscription-expired"}

    browser = await client.get("/admin", headers=HTML)
    assert browser.status_code == 303
    assert browser.headers["location"] == "/subscription-expired"

    pro_id = ready.actor.professional.id
    assert fake_store.latest_for(pro_id).status == SubscriptionStatus.EXPIRED

    page = await client.get("/subscription-expired")
    assert page.status_code == 200
    assert page.json()["email"] == "ana@clinic.com.br"

    me = (await client.get("/auth/me")).json()
    assert me["has_active_subscription"] is False
    assert me["days_left"] == 0


async def test_renewal_restores_access(client, ready, fake_store, clock):
    await client.post("/auth/register", json=profile_data())
    clock.advance(days=5)
    assert (await client.get("/professional")).status_code == 402

    await subscriptions.renew(fake_store, ready.actor.professional.id, clock())
    await ready.sync_subscription()

    assert (await client.get("/professional")).status_code == 200


async def test_logout(client, ready, fake_store):
    await client.post("/auth/register", json=profile_data())

    resp = await client.post("/auth/logout")
    assert resp.json() == {"ok": True, "redirect": "/"}

    me = (await client.get("/auth/me")).json()
    assert me["is_authenticated"] is False
    assert me["actor"] is None
    assert (await client.get("/professional")).status_code == 401


def test_startup_seeds_admin_and_restores(tmp_path):
    settings = Settings(
        database_url="sqlite://",
        state_dir=tmp_path / "state",
        seed_admin=True,
        seed_admin_email="admin@lume.app",
        seed_admin_password="AdminPassword123!",
    )
    app = create_app(settings=settings)

    with TestClient(app) as client:
        assert client.get("/").json()["is_loading"] is False

        resp = client.post("/auth/login", json={"email": "admin@lume.app", "password": "AdminPassword123!"})
        assert resp.status_code == 200
        assert client.get("/admin").status_code == 200


def test_startup_survives_store_outage(settings, manager, fake_store):
    fake_store.unavailable = True
    app = create_app(settings=replace(settings, seed_admin=True), manager=manager)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert client.get("/").json()["is_loading"] is False

    assert "create_admin" in fake_store.calls


async def test_built_manager_uses_configured_renewal(settings):
    app = create_app(settings=replace(settings, renewal_days=45))
    manager = app.state.manager
    await manager.restore()
    await manager.register(profile_data())

    renewed = await manager.renew_subscription()

    assert renewed.current_period_end - renewed.current_period_start == timedelta(days=45)
