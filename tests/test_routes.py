"""
End-to-end tests for the plugin API: connect, callback, status,
disconnect and sync-now, against an in-memory database.
"""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from api.dependencies import db_session
from plugins.errors import ExchangeError
from plugins.oauth_state import pending_auths
from plugins.routes import router
from plugins.scheduler import PluginSyncScheduler
from plugins.sync import PluginSyncService
from tests.fakes import make_credentials, make_token

AUTH = {"Authorization": f"Bearer {make_token('user-1')}"}


@pytest_asyncio.fixture
async def client(session_factory, registry, fake_plugin):
    app = FastAPI()
    app.include_router(router, prefix="/api/v1/plugins")
    app.state.scheduler = PluginSyncScheduler(
        sync_service=PluginSyncService(registry=registry, session_factory=session_factory),
        registry=registry,
        session_factory=session_factory,
    )

    async def _db_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[db_session] = _db_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _start_connect(client, plugin_id="fake") -> str:
    resp = await client.get(f"/api/v1/plugins/{plugin_id}/connect", headers=AUTH)
    assert resp.status_code == 200
    query = parse_qs(urlsplit(resp.json()["auth_url"]).query)
    return query["state"][0]


async def _connect(client):
    state = await _start_connect(client)
    with patch("plugins.routes.exchange_code_for_tokens", AsyncMock(return_value=make_credentials())):
        resp = await client.get("/api/v1/plugins/fake/callback", params={"state": state, "code": "abc"})
    assert resp.status_code == 200
    return state


async def _status(client):
    resp = await client.get("/api/v1/plugins/fake", headers=AUTH)
    assert resp.status_code == 200
    return resp.json()


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_list_plugins(self, client):
        resp = await client.get("/api/v1/plugins/")
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()] == ["fake"]

    @pytest.mark.asyncio
    async def test_unknown_plugin_is_404(self, client):
        resp = await client.get("/api/v1/plugins/nope", headers=AUTH)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_bad_token_is_401(self, client):
        resp = await client.get("/api/v1/plugins/fake", headers={"Authorization": "Bearer forged.sig"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token_is_401(self, client):
        token = make_token("user-1", expires_in=-60)
        resp = await client.get("/api/v1/plugins/fake", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_scheduler_status(self, client):
        resp = await client.get("/api/v1/plugins/scheduler/status")
        assert resp.json() == {"running": False, "sweep_in_progress": False}


class TestConnectFlow:
    @pytest.mark.asyncio
    async def test_connect_issues_pkce_url(self, client):
        resp = await client.get("/api/v1/plugins/fake/connect", headers=AUTH)
        query = parse_qs(urlsplit(resp.json()["auth_url"]).query)

        assert query["code_challenge_method"] == ["S256"]
        assert query["state"][0] in pending_auths

    @pytest.mark.asyncio
    async def test_callback_stores_credentials(self, client):
        state = await _start_connect(client)
        exchange = AsyncMock(return_value=make_credentials())
        with patch("plugins.routes.exchange_code_for_tokens", exchange):
            resp = await client.get(
                "/api/v1/plugins/fake/callback", params={"state": state, "code": "abc"}
            )

        assert resp.status_code == 200
        assert "Connected!" in resp.text
        _, code, verifier = exchange.await_args.args
        assert code == "abc"
        assert verifier
        status = await _status(client)
        assert status["connected"] is True
        assert status["enabled"] is True

    @pytest.mark.asyncio
    async def test_state_cannot_be_replayed(self, client):
        state = await _connect(client)
        resp = await client.get("/api/v1/plugins/fake/callback", params={"state": state, "code": "abc"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_state_is_rejected(self, client):
        resp = await client.get(
            "/api/v1/plugins/fake/callback", params={"state": "forged", "code": "abc"}
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_denial_renders_failure(self, client):
        state = await _start_connect(client)
        resp = await client.get(
            "/api/v1/plugins/fake/callback", params={"state": state, "error": "access_denied"}
        )

        assert resp.status_code == 200
        assert "Failed" in resp.text
        assert "access_denied" in resp.text
        assert state not in pending_auths
        assert (await _status(client))["connected"] is False

    @pytest.mark.asyncio
    async def test_exchange_failure_renders_failure(self, client):
        state = await _start_connect(client)
        exchange = AsyncMock(side_effect=ExchangeError("Token exchange failed", 400, "invalid_grant"))
        with patch("plugins.routes.exchange_code_for_tokens", exchange):
            resp = await client.get(
                "/api/v1/plugins/fake/callback", params={"state": state, "code": "abc"}
            )

        assert "Failed" in resp.text
        assert (await _status(client))["connected"] is False


class TestSyncAndDisconnect:
    @pytest.mark.asyncio
    async def test_sync_now_imports(self, client, fake_plugin):
        await _connect(client)
        resp = await client.post(
            "/api/v1/plugins/fake/sync",
            headers=AUTH,
            json={"start_date": "2024-06-01", "end_date": "2024-06-10"},
        )

        assert resp.status_code == 200
        assert resp.json()["records_imported"] == 2
        assert fake_plugin.fetch_calls[0][1:] == ("2024-06-01", "2024-06-10")
        assert (await _status(client))["last_sync"] is not None

    @pytest.mark.asyncio
    async def test_sync_without_body_uses_default_window(self, client, fake_plugin):
        await _connect(client)
        resp = await client.post("/api/v1/plugins/fake/sync", headers=AUTH)

        assert resp.status_code == 200
        assert len(fake_plugin.fetch_calls) == 1

    @pytest.mark.asyncio
    async def test_sync_not_connected_is_400(self, client):
        resp = await client.post("/api/v1/plugins/fake/sync", headers=AUTH)
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_sync_unknown_plugin_is_404(self, client):
        resp = await client.post("/api/v1/plugins/nope/sync", headers=AUTH)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_sync_bad_range_is_422(self, client):
        await _connect(client)
        resp = await client.post(
            "/api/v1/plugins/fake/sync",
            headers=AUTH,
            json={"start_date": "2024-06-10", "end_date": "2024-06-01"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_disconnect(self, client):
        await _connect(client)
        resp = await client.delete("/api/v1/plugins/fake", headers=AUTH)

        assert resp.json() == {"success": True}
        status = await _status(client)
        assert status["connected"] is False
        assert status["enabled"] is False
        assert (await client.post("/api/v1/plugins/fake/sync", headers=AUTH)).status_code == 400
