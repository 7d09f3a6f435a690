"""
Tests for the FastAPI application.

The lifespan is not run; the engine fixture is installed as the global engine.
"""

import asyncio

import httpx
import pytest

import app as app_module
from app import app


@pytest.fixture
async def client(engine, monkeypatch):
    monkeypatch.setattr(app_module, "engine", engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def create(client, **payload) -> dict:
    payload.setdefault("title", "Card")
    response = await client.post("/cards", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
class TestHealth:
    """Test service endpoints."""

    async def test_health_without_engine(self, monkeypatch):
        monkeypatch.setattr(app_module, "engine", None)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["engine_initialized"] is False

    async def test_uninitialized_engine_returns_503(self, monkeypatch):
        monkeypatch.setattr(app_module, "engine", None)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/cards/card_1")

        assert response.status_code == 503

    async def test_health(self, client):
        response = await client.get("/health")

        body = response.json()
        assert body["status"] == "healthy"
        assert body["card_store"] == "memory"
        assert body["vector_store"] == "memory"

    async def test_root(self, client):
        response = await client.get("/")

        assert response.json()["name"] == "CardGraph API"


@pytest.mark.asyncio
class TestCardRoutes:
    """Test card CRUD over HTTP."""

    async def test_create_and_get(self, client):
        card = await create(client, title="Graph Theory", tags=["math"], wait_for_embedding=True)

        response = await client.get(f"/cards/{card['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Graph Theory"
        assert body["embedding_status"] == "generated"

    async def test_create_blank_title(self, client):
        response = await client.post("/cards", json={"title": "   "})

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "ValidationError"

    async def test_create_with_missing_dependency(self, client):
        response = await client.post(
            "/cards", json={"title": "Graphs", "dependencies": ["card_missing"]}
        )

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NotFoundError"

    async def test_get_missing(self, client):
        response = await client.get("/cards/card_missing")

        assert response.status_code == 404
        assert response.json()["detail"]["context"] == {"card_id": "card_missing"}

    async def test_update(self, client):
        card = await create(client, title="Graphs", content="one")

        response = await client.patch(f"/cards/{card['id']}", json={"content": "two"})

        assert response.status_code == 200
        assert response.json()["content"] == "two"
        assert response.json()["title"] == "Graphs"

    async def test_delete(self, client):
        card = await create(client)

        response = await client.delete(f"/cards/{card['id']}")

        assert response.json() == {"id": card["id"], "deleted": True}
        assert (await client.get(f"/cards/{card['id']}")).status_code == 404
        assert (await client.delete(f"/cards/{card['id']}")).status_code == 404

    async def test_list_with_tag_filter(self, client):
        math = await create(client, title="Math", tags=["math"])
        await create(client, title="Food", tags=["cooking"])

        response = await client.get("/cards", params={"tags": ["MATH"]})

        assert [c["id"] for c in response.json()] == [math["id"]]

    async def test_search(self, client):
        card = await create(client, title="Graph theory", wait_for_embedding=True)
        await create(client, title="Cooking", wait_for_embedding=True)

        response = await client.post("/cards/search", json={"query": "graph theory", "limit": 5})

        body = response.json()
        assert response.status_code == 200
        assert body["hits"][0]["card"]["id"] == card["id"]
        assert body["degraded"] is False

    async def test_search_degraded(self, client, vector_store):
        await create(client, title="Graph theory")
        vector_store.down = True

        response = await client.post("/cards/search", json={"query": "graph"})

        assert response.status_code == 200
        assert response.json()["degraded"] is True


@pytest.mark.asyncio
class TestDependencyRoutes:
    """Test dependency management over HTTP."""

    async def test_add_resolve_remove(self, client):
        base = await create(client, title="Sets")
        top = await create(client, title="Graphs")

        added = await client.put(f"/cards/{top['id']}/dependencies/{base['id']}")
        assert added.json() == {"source": top["id"], "target": base["id"]}

        dependencies = await client.get(f"/cards/{top['id']}/dependencies")
        assert [c["id"] for c in dependencies.json()] == [base["id"]]

        dependents = await client.get(f"/cards/{base['id']}/dependents")
        assert [c["id"] for c in dependents.json()] == [top["id"]]

        removed = await client.delete(f"/cards/{top['id']}/dependencies/{base['id']}")
        assert removed.json()["removed"] is True

    async def test_cycle_returns_422(self, client):
        base = await create(client, title="Sets")
        top = await create(client, title="Graphs", dependencies=[base["id"]])

        response = await client.put(f"/cards/{base['id']}/dependencies/{top['id']}")

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "CycleDetectedError"

    async def test_self_reference_returns_422(self, client):
        card = await create(client)

        response = await client.put(f"/cards/{card['id']}/dependencies/{card['id']}")

        assert response.status_code == 422

    async def test_transitive(self, client):
        a = await create(client, title="A")
        b = await create(client, title="B", dependencies=[a["id"]])
        c = await create(client, title="C", dependencies=[b["id"]])

        response = await client.get(
            f"/cards/{c['id']}/dependencies", params={"transitive": "true"}
        )

        assert {card["id"] for card in response.json()} == {a["id"], b["id"]}


@pytest.mark.asyncio
class TestEmbeddingRoutes:
    """Test embedding status and regeneration over HTTP."""

    async def test_status(self, client):
        card = await create(client, wait_for_embedding=True)

        response = await client.get(f"/cards/{card['id']}/embedding")

        assert response.json()["status"] == "generated"

    async def test_failed_status_reports_error(self, client, embedder):
        embedder.always_fail = True
        card = await create(client, wait_for_embedding=True)

        response = await client.get(f"/cards/{card['id']}/embedding")

        assert response.json()["status"] == "failed"
        assert response.json()["last_error"] == "GenerationError"

    async def test_regenerate_and_wait(self, client, embedder):
        embedder.always_fail = True
        card = await create(client, wait_for_embedding=True)
        embedder.always_fail = False

        response = await client.post(
            f"/cards/{card['id']}/embedding", params={"wait": "true", "timeout": 2}
        )

        assert response.json() == {"id": card["id"], "outcome": "generated"}

    async def test_regenerate_queued(self, client):
        card = await create(client)

        response = await client.post(f"/cards/{card['id']}/embedding")

        assert response.json()["outcome"] == "queued"

    async def test_wait_timeout_returns_504(self, client, embedder):
        embedder.gate = asyncio.Event()

        response = await client.post(
            "/cards", json={"title": "Slow", "wait_for_embedding": True, "timeout": 0.05}
        )

        embedder.gate.set()
        assert response.status_code == 504
        assert response.json()["detail"]["error"] == "PipelineTimeoutError"

    async def test_resync(self, client):
        response = await client.post("/embeddings/resync")

        assert response.json() == {"submitted": 0}

    async def test_stats(self, client):
        await create(client, wait_for_embedding=True)

        response = await client.get("/stats")

        body = response.json()
        assert body["cards"]["total"] == 1
        assert body["cards"]["embedded"] == 1
        assert body["dependencies"]["total"] == 0
