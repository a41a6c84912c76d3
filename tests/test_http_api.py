"""Tests for the FastAPI surface via TestClient.

Covers:
- Store (single and batch), retrieve, search with filters, prune
- Context read / clear, summaries, stats
- Domain error mapping (EmbeddingError -> 502, StoreError -> 500, bad input -> 400/422)
"""

import pytest
from fastapi.testclient import TestClient

from recall.api.http_api import create_app


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


@pytest.fixture
def failing_client(make_service, failing_provider):
    with TestClient(create_app(make_service(failing_provider))) as test_client:
        yield test_client


# ── Memories ─────────────────────────────────────────────────────────────────


def test_store_and_retrieve(client):
    response = client.post("/v1/memories", json={
        "query": "What is my name?",
        "response": "Your name is Alice.",
        "metadata": {"category": "fact", "importance": "high", "tags": ["name"]},
    })
    assert response.status_code == 200
    entry = response.json()["entry"]
    assert entry["category"] == "fact"
    assert entry["importance"] == "high"
    assert entry["tags"] == ["name"]

    response = client.post("/v1/memories/retrieve", json={"query": "What is my name?", "threshold": 0.9})
    assert response.status_code == 200
    results = response.json()["results"]
    assert results[0]["entry"]["id"] == entry["id"]
    assert results[0]["similarity"] == pytest.approx(1.0, abs=1e-5)


def test_batch_store(client):
    response = client.post("/v1/memories", json={
        "interactions": [
            {"query": "one", "response": "a"},
            {"query": "two", "response": "b"},
        ],
    })

    assert response.status_code == 200
    assert len(response.json()["entries"]) == 2
    assert client.get("/v1/stats").json()["total_entries"] == 2


def test_store_requires_query_and_response(client):
    response = client.post("/v1/memories", json={"query": "only a query"})
    assert response.status_code == 400


def test_invalid_category_is_bad_request(client):
    response = client.post("/v1/memories", json={
        "query": "q", "response": "r", "metadata": {"category": "nonsense"},
    })
    assert response.status_code == 400


def test_retrieve_validates_limit(client):
    response = client.post("/v1/memories/retrieve", json={"query": "q", "limit": 0})
    assert response.status_code == 422


def test_search_with_filters(client):
    client.post("/v1/memories", json={
        "query": "python packaging", "response": "pyproject", "metadata": {"category": "fact"},
    })
    client.post("/v1/memories", json={"query": "python typing", "response": "hints"})

    response = client.post("/v1/memories/search", json={
        "query": "python",
        "filters": {"categories": ["fact"]},
    })

    assert response.status_code == 200
    assert [r["entry"]["query"] for r in response.json()["results"]] == ["python packaging"]


def test_prune_endpoint(client):
    client.post("/v1/memories", json={"query": "fresh", "response": "entry"})

    response = client.post("/v1/memories/prune", json={"older_than_days": 30, "min_importance": "high"})

    assert response.status_code == 200
    assert response.json() == {"removed": 0}


# ── Context & Summaries ──────────────────────────────────────────────────────


def test_context_round_trip(client):
    client.post("/v1/memories", json={"query": "My name is Alice", "response": "Nice to meet you, Alice."})

    context = client.get("/v1/context").json()
    assert [i["query"] for i in context["interactions"]] == ["My name is Alice"]
    assert context["prompt"] == "User: My name is Alice\nAssistant: Nice to meet you, Alice."
    assert context["is_truncated"] is False

    assert client.delete("/v1/context").json() == {"cleared": True}
    assert client.get("/v1/context").json()["interactions"] == []


def test_summary_endpoint(client):
    client.post("/v1/memories", json={"query": "Explain recursion", "response": "A function calling itself."})

    response = client.post("/v1/summaries", json={"max_length": 200})

    assert response.status_code == 200
    body = response.json()
    assert body["original_interaction_count"] == 1
    assert "Explain recursion" in body["text"]


def test_stats_endpoint(client):
    stats = client.get("/v1/stats").json()
    assert stats["total_entries"] == 0
    assert stats["last_optimization"] is None


# ── Error Mapping ────────────────────────────────────────────────────────────


def test_embedding_failure_maps_to_bad_gateway(failing_client):
    response = failing_client.post("/v1/memories", json={"query": "q", "response": "r"})

    assert response.status_code == 502
    assert "Embedding provider failed" in response.json()["error"]


def test_store_failure_maps_to_server_error(service, client):
    service.vector_store.close()

    response = client.post("/v1/memories", json={"query": "q", "response": "r"})

    assert response.status_code == 500
    assert response.json()["operation"] == "insert"
