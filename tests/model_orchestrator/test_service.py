"""
HTTP surface tests for the model orchestrator service.

Runs against in-process ASGI TestClient with callable backends (no live
model server needed).
"""

import pytest
from fastapi.testclient import TestClient

from model_orchestrator.config import OrchestratorConfig
from model_orchestrator.main import create_app
from model_orchestrator.orchestrator import ModelOrchestrator


@pytest.fixture
def client(two_backend_registry, scripted):
    registry, _, _ = two_backend_registry(b=scripted("B", fail_when=lambda p: "explode" in p))
    cfg = OrchestratorConfig(data={"dispatch": {"chunk_size": 100, "max_parallelism": 2,
                                                "min_divide_length": 200}})
    dispatcher = cfg.build_dispatcher(ModelOrchestrator(registry))
    with TestClient(create_app(dispatcher=dispatcher), raise_server_exceptions=False) as tc:
        yield tc


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["backends"] == ["A", "B"]
    assert data["default_backend"] == "A"
    assert data["dispatch"]["gate"]["tier"] == "default"


def test_backends(client):
    data = client.get("/backends").json()
    assert [b["name"] for b in data["backends"]] == ["A", "B"]
    assert data["default"] == "A"


def test_generate_default_tier(client):
    r = client.post("/generate", json={"prompt": "hello", "intent_tags": ["code"]})
    assert r.status_code == 200
    assert r.json()["backend"] == "A"


def test_generate_escalated_with_inferred_tags(client):
    r = client.post("/generate", json={
        "prompt": "debug this function", "infer_tags": True, "integration_score": 0.9,
    })
    assert r.status_code == 200
    assert r.json()["backend"] == "B"
    assert r.json()["text"] == "B:debug this function"


def test_generate_fallback_visible(client):
    r = client.post("/generate", json={
        "prompt": "explode", "intent_tags": ["code"], "integration_score": 0.9,
    })
    assert r.status_code == 200
    assert r.json()["backend"] == "A"
    assert r.json()["fallback_used"] is True


def test_generate_rejects_bad_score(client):
    r = client.post("/generate", json={"prompt": "x", "integration_score": 1.5})
    assert r.status_code == 422


def test_process_divides_large_text(client):
    r = client.post("/process", json={"task": "Summarize:", "text": "word " * 60})
    assert r.status_code == 200
    assert r.json()["text"].count("A:Summarize:") == 3


def test_plan(client):
    r = client.post("/plan", json={"text": "word " * 60, "chunk_size": 100})
    data = r.json()
    assert data["count"] == 3
    assert [c["index"] for c in data["chunks"]] == [0, 1, 2]


def test_metrics_after_traffic(client):
    client.post("/generate", json={"prompt": "hello"})
    client.post("/process", json={"task": "T:", "text": "word " * 60})
    data = client.get("/metrics").json()
    assert data["backends"]["A"]["execution_count"] == 4
    assert data["divide_and_conquer"]["divide_and_conquer"]["success_count"] == 1
    assert len(data["recent_routes"]) == 3
