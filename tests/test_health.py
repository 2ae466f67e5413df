from unittest.mock import AsyncMock

from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from phonica.db.session import get_db


async def test_health_returns_ok(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert "version" in body


async def test_health_degraded_without_database(app: FastAPI, client: AsyncClient) -> None:
    broken = AsyncMock()
    broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

    async def _broken_db():
        yield broken

    app.dependency_overrides[get_db] = _broken_db

    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["database"] == "unreachable"


async def test_openapi_lists_api_routes(client: AsyncClient) -> None:
    resp = await client.get("/openapi.json")
    assert resp.status_code == 200
    paths = resp.json()["paths"]
    assert "/health" in paths
    assert "/api/v1/materials" in paths
    assert "/api/v1/materials/{slug}/download" in paths
    assert "/api/v1/master/tags/{tag_id}" in paths
