"""Pytest suite for config loading, schema validation and env overlays."""

import json

import pytest

from model_orchestrator.config import OrchestratorConfig
from model_orchestrator.errors import ConfigValidationError
from model_orchestrator.integration_gate import ActiveTier
from model_orchestrator.providers import OllamaBackend, OpenAICompatibleBackend

TWO_BACKENDS = {
    "backends": [
        {"name": "general", "provider": "ollama", "model": "qwen2.5:7b",
         "tags": ["general", "chat"], "expected_latency_ms": 1000},
        {"name": "coder", "provider": "openai_compatible", "model": "coder-large",
         "endpoint": "http://127.0.0.1:4000/v1", "api_key_env": "CODER_KEY",
         "tags": ["code", "debugging"], "class": "code", "expected_latency_ms": 1500,
         "default": True},
    ],
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("MODEL_ORCH_CONFIG", raising=False)
    monkeypatch.delenv("MODEL_ORCH_DISPATCH__CHUNK_SIZE", raising=False)


def test_defaults_without_file():
    cfg = OrchestratorConfig()
    dispatch = cfg.dispatch_config()
    assert dispatch.chunk_size == 1000
    assert dispatch.merge_separator == "\n\n"
    assert dispatch.max_parallelism >= 2
    assert cfg.get("gate") == {"escalate_at": 0.5, "deescalate_below": 0.2}
    registry = cfg.build_registry()
    assert registry.names == ["general"]
    assert isinstance(registry.default.backend, OllamaBackend)


def test_partial_section_merges_over_defaults():
    cfg = OrchestratorConfig(data={"dispatch": {"chunk_size": 500}})
    assert cfg.get("dispatch")["chunk_size"] == 500
    assert cfg.get("dispatch")["min_divide_length"] == 2000


def test_build_registry_from_file(tmp_path, monkeypatch):
    monkeypatch.setenv("CODER_KEY", "sk-test")
    path = tmp_path / "orchestrator.json"
    path.write_text(json.dumps(TWO_BACKENDS), encoding="utf-8")

    registry = OrchestratorConfig(str(path)).build_registry()
    assert registry.names == ["general", "coder"]
    assert registry.default.name == "coder"
    coder = registry.get("coder")
    assert isinstance(coder.backend, OpenAICompatibleBackend)
    assert coder.backend.api_key == "sk-test"
    assert coder.tags == frozenset({"code", "debugging"})


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "c.json"
    path.write_text(json.dumps({"dispatch": {"chunk_size": 321}}), encoding="utf-8")
    monkeypatch.setenv("MODEL_ORCH_CONFIG", str(path))
    assert OrchestratorConfig().dispatch_config().chunk_size == 321


def test_env_overlay_coerces_types(monkeypatch):
    monkeypatch.setenv("MODEL_ORCH_DISPATCH__CHUNK_SIZE", "800")
    monkeypatch.setenv("MODEL_ORCH_DISPATCH__MERGE_RESULTS", "false")
    monkeypatch.setenv("MODEL_ORCH_GATE__ESCALATE_AT", "0.6")
    monkeypatch.setenv("MODEL_ORCH_DISPATCH__LOOKBACK_CHARS", "50")
    monkeypatch.setenv("MODEL_ORCH_DISPATCH__UNKNOWN_KEY", "1")
    cfg = OrchestratorConfig()
    assert cfg.get("dispatch")["chunk_size"] == 800
    assert cfg.get("dispatch")["merge_results"] is False
    assert cfg.get("dispatch")["lookback_chars"] == 50
    assert cfg.get("gate")["escalate_at"] == 0.6
    assert "unknown_key" not in cfg.get("dispatch")


def test_bad_overlay_value_is_ignored(monkeypatch):
    monkeypatch.setenv("MODEL_ORCH_DISPATCH__CHUNK_SIZE", "lots")
    assert OrchestratorConfig().get("dispatch")["chunk_size"] == 1000


@pytest.mark.parametrize("key,value,where", [
    ("MODEL_ORCH_DISPATCH__LOOKBACK_CHARS", "auto", "dispatch.lookback_chars"),
    ("MODEL_ORCH_DISPATCH__CHUNK_SIZE", "0", "dispatch.chunk_size"),
    ("MODEL_ORCH_GATE__ESCALATE_AT", "1.7", "gate.escalate_at"),
])
def test_overlaid_values_are_validated(monkeypatch, key, value, where):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigValidationError) as exc:
        OrchestratorConfig()
    assert "after env overlays" in str(exc.value)
    assert where in str(exc.value)


@pytest.mark.parametrize("data,where", [
    ({"dispatch": {"chunk_size": 0}}, "dispatch.chunk_size"),
    ({"dispatch": {"bogus": 1}}, "dispatch"),
    ({"gate": {"escalate_at": 1.5}}, "gate.escalate_at"),
    ({"backends": [{"name": "x", "provider": "ollama", "tags": []}]}, "backends.0.tags"),
    ({"backends": [{"name": "x", "provider": "ollama", "tags": ["a"], "class": "vision"}]},
     "backends.0.class"),
])
def test_schema_violations(data, where):
    with pytest.raises(ConfigValidationError) as exc:
        OrchestratorConfig(data=data)
    assert where in str(exc.value)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigValidationError):
        OrchestratorConfig(str(tmp_path / "nope.json"))


def test_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        OrchestratorConfig(str(path))


def test_unknown_provider_fails_at_build():
    cfg = OrchestratorConfig(data={"backends": [
        {"name": "x", "provider": "carrier-pigeon", "tags": ["general"]},
    ]})
    with pytest.raises(ValueError):
        cfg.build_registry()


def test_build_dispatcher_wires_sections():
    cfg = OrchestratorConfig(data={
        "dispatch": {"chunk_size": 640, "max_parallelism": 3, "min_divide_length": 100},
        "gate": {"escalate_at": 0.7, "deescalate_below": 0.3},
    })
    d = cfg.build_dispatcher()
    assert d.executor.config.chunk_size == 640
    assert d.executor.config.max_parallelism == 3
    assert d.min_divide_length == 100
    assert d.gate.escalate_at == 0.7
    assert d.gate.tier == ActiveTier.DEFAULT
