"""
tests.test_smoke

Minimal smoke tests to validate the service can boot and serve core endpoints.

Responsibilities:
- Ensure the FastAPI app starts and DB readiness probe works in test mode.
- Ensure every response carries a request id.
"""

from __future__ import annotations

import httpx
import pytest

from sitewatch.api.app import create_app
from sitewatch.settings import Settings


@pytest.mark.asyncio
async def test_health_endpoints(settings: Settings) -> None:
    app = create_app(settings=settings)

    # httpx 0.28 ASGITransport does not manage lifespan automatically; do it explicitly.
    await app.router.startup()
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            r = await client.get("/healthz")
            assert r.status_code == 200
            assert r.json()["status"] == "ok"
            assert r.headers["x-request-id"]

            r = await client.get("/readyz", headers={"x-request-id": "req-42"})
            assert r.status_code == 200
            assert r.json()["status"] == "ready"
            assert r.headers["x-request-id"] == "req-42"
    finally:
        await app.router.shutdown()


# --- Module Notes -----------------------------------------------------------
# Endpoint behavior beyond boot is covered in `tests.test_api`.
