"""
tests.test_api

HTTP and WebSocket surface: authentication, authorization, telemetry and monitoring.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from sqlalchemy import select
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from sitewatch.api.app import create_app
from sitewatch.auth.models import DENIED_REASON, DENIED_SUGGESTION
from sitewatch.db.models import PerformanceRecord
from sitewatch.monitoring.aggregator import RESPONSE_TIME_METRIC
from sitewatch.settings import Settings


@pytest_asyncio.fixture
async def app(settings: Settings) -> AsyncIterator[FastAPI]:
    application = create_app(settings=settings)
    await application.router.startup()
    try:
        yield application
    finally:
        await application.router.shutdown()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _token(client: httpx.AsyncClient, subject: str, role: str | None = None) -> dict:
    body = {"subject": subject, "display_name": subject.title()}
    if role is not None:
        body["role"] = role
    r = await client.post("/v1/dev/token", json=body)
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.mark.asyncio
async def test_me_reports_role_and_permissions(client: httpx.AsyncClient) -> None:
    headers = await _token(client, "maya", "project-manager")
    r = await client.get("/v1/access/me", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["role"] == "project-manager"
    assert body["is_manager"] is True
    assert body["is_admin"] is False
    assert "po:approve" in body["permissions"]
    assert "rab:delete" not in body["permissions"]


@pytest.mark.asyncio
async def test_me_requires_token(client: httpx.AsyncClient) -> None:
    assert (await client.get("/v1/access/me")).status_code == 401
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert (await client.get("/v1/access/me", headers=bad)).status_code == 401


@pytest.mark.asyncio
async def test_check_decisions(client: httpx.AsyncClient) -> None:
    # Anonymous: a plain denial.
    r = await client.post("/v1/access/check", json={"permission": "dashboard:view"})
    assert r.status_code == 200
    assert r.json()["allowed"] is False

    headers = await _token(client, "sam", "standard-user")
    r = await client.post(
        "/v1/access/check", json={"permission": "view_dashboard"}, headers=headers
    )
    assert r.json()["allowed"] is True

    r = await client.post(
        "/v1/access/check", json={"resource": "rab", "action": "delete"}, headers=headers
    )
    body = r.json()
    assert body["allowed"] is False
    assert body["reason"] == DENIED_REASON
    assert body["suggested_action"] == DENIED_SUGGESTION

    r = await client.post("/v1/access/check", json={"resource": "rab"}, headers=headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_admin_manages_roles_and_grants(client: httpx.AsyncClient) -> None:
    admin = await _token(client, "root", "admin")
    user = await _token(client, "sam", "standard-user")

    r = await client.post("/v1/access/users/sam/grants/edit_rab", headers=admin)
    assert r.status_code == 200
    assert r.json() == {"user_id": "sam", "permission": "rab:edit", "changed": True}

    r = await client.post(
        "/v1/access/check", json={"resource": "rab", "action": "edit"}, headers=user
    )
    assert r.json()["allowed"] is True

    r = await client.delete("/v1/access/users/sam/grants/rab:edit", headers=admin)
    assert r.json()["changed"] is True

    r = await client.put("/v1/access/users/sam/role", json={"role": "admin"}, headers=admin)
    assert r.status_code == 200
    assert (await client.get("/v1/access/me", headers=user)).json()["is_admin"] is True

    r = await client.put("/v1/access/users/ghost/role", json={"role": "admin"}, headers=admin)
    assert r.status_code == 404
    r = await client.post("/v1/access/users/sam/grants/rab:*", headers=admin)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_non_admin_gets_fixed_denial(client: httpx.AsyncClient) -> None:
    user = await _token(client, "sam", "standard-user")
    r = await client.put("/v1/access/users/sam/role", json={"role": "admin"}, headers=user)
    assert r.status_code == 403
    assert r.json()["detail"] == {"reason": DENIED_REASON, "suggested_action": DENIED_SUGGESTION}
    assert "users" not in r.text


@pytest.mark.asyncio
async def test_telemetry_write_path(client: httpx.AsyncClient) -> None:
    r = await client.post("/v1/telemetry/errors", json={"message": "boom", "severity": "low"})
    assert r.status_code == 201
    assert r.json()["id"]

    r = await client.post("/v1/telemetry/errors", json={"message": "boom", "severity": "meh"})
    assert r.status_code == 422

    r = await client.post("/v1/telemetry/activity", json={"action": "read", "resource": "rab"})
    assert r.status_code == 401

    headers = await _token(client, "sam")
    r = await client.post(
        "/v1/telemetry/activity", json={"action": "read", "resource": "rab"}, headers=headers
    )
    assert r.status_code == 201
    r = await client.post(
        "/v1/telemetry/performance",
        json={"metric_name": "page_load", "value": 120.5},
        headers=headers,
    )
    assert r.status_code == 201


@pytest.mark.asyncio
async def test_monitoring_flow(client: httpx.AsyncClient) -> None:
    admin = await _token(client, "root", "admin")
    manager = await _token(client, "maya", "project-manager")
    user = await _token(client, "sam", "standard-user")

    assert (await client.get("/v1/monitoring/health", headers=user)).status_code == 403
    r = await client.get("/v1/monitoring/health", headers=manager)
    assert r.status_code == 200
    assert r.json()["status"] == "warning"

    snapshot = {"cpu": 95, "memory": 100, "active_users": 1, "response_time": 50, "error_rate": 0}
    r = await client.post("/v1/monitoring/metrics", json=snapshot, headers=manager)
    assert r.status_code == 403
    r = await client.post("/v1/monitoring/metrics", json=snapshot, headers=admin)
    assert r.status_code == 201

    r = await client.get("/v1/monitoring/health", headers=manager)
    assert r.json()["status"] == "critical"
    assert r.json()["issues"] == ["CPU usage is critically high (>90%)"]

    r = await client.post("/v1/monitoring/health/poller/check", headers=admin)
    assert r.json()["state"] == "critical"
    r = await client.get("/v1/monitoring/health/poller", headers=manager)
    assert r.json()["loading"] is False

    r = await client.post("/v1/telemetry/errors", json={"message": "x", "severity": "critical"})
    error_id = r.json()["id"]
    r = await client.get("/v1/monitoring/errors", headers=manager)
    assert [e["id"] for e in r.json()] == [error_id]

    r = await client.post(f"/v1/monitoring/errors/{error_id}/resolve", headers=admin)
    assert r.json() == {"error_id": error_id, "resolved": True, "changed": True}
    r = await client.post(f"/v1/monitoring/errors/{error_id}/resolve", headers=admin)
    assert r.json()["changed"] is False
    r = await client.post("/v1/monitoring/errors/nope/resolve", headers=admin)
    assert r.status_code == 404

    assert (await client.get("/v1/monitoring/projects/none", headers=manager)).status_code == 404

    r = await client.get("/v1/monitoring/analytics?time_range=hour", headers=manager)
    assert r.status_code == 200
    assert r.json()["summary"]["critical_errors"] == 1
    r = await client.get("/v1/monitoring/analytics?time_range=year", headers=manager)
    assert r.status_code == 422

    r = await client.get("/v1/monitoring/stats", headers=manager)
    assert r.json()["system_metrics_count"] == 1
    assert r.json()["poller_running"] is False


@pytest.mark.asyncio
async def test_requests_are_timed(client: httpx.AsyncClient, app: FastAPI) -> None:
    headers = await _token(client, "sam")
    await client.get("/v1/access/me", headers=headers)
    await app.state.collector.drain()

    stmt = select(PerformanceRecord).where(PerformanceRecord.metric_name == RESPONSE_TIME_METRIC)
    async with app.state.sessionmaker() as session:
        rows = (await session.execute(stmt)).scalars().all()
    paths = {row.context["path"] for row in rows}
    assert "/v1/access/me" in paths


def test_websocket_feeds(settings: Settings) -> None:
    app = create_app(settings=settings)
    with TestClient(app) as client:
        admin = client.post("/v1/dev/token", json={"subject": "root", "role": "admin"})
        token = admin.json()["access_token"]
        user = client.post("/v1/dev/token", json={"subject": "sam"})

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(
                f"/v1/monitoring/ws/system-metrics?token={user.json()['access_token']}"
            ):
                pass
        assert exc.value.code == 1008

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/v1/monitoring/ws/errors"):
                pass

        with client.websocket_connect(f"/v1/monitoring/ws/system-metrics?token={token}") as ws:
            r = client.post(
                "/v1/monitoring/metrics",
                json={"cpu": 42, "memory": 10},
                headers={"Authorization": f"Bearer {token}"},
            )
            assert r.status_code == 201
            message = ws.receive_json()
            assert message["type"] == "system_metrics"
            assert message["data"]["cpu"] == 42

        with client.websocket_connect(f"/v1/monitoring/ws/errors?limit=2&token={token}") as ws:
            assert ws.receive_json() == {"type": "error_logs", "data": []}
            client.post("/v1/telemetry/errors", json={"message": "late", "severity": "high"})
            message = ws.receive_json()
            assert [e["message"] for e in message["data"]] == ["late"]
