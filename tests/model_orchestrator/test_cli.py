"""Pytest suite for the command-line entry point."""

import json

import pytest

from model_orchestrator import cli


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("MODEL_ORCH_CONFIG", raising=False)
    path = tmp_path / "orchestrator.json"
    path.write_text(json.dumps({
        "dispatch": {"chunk_size": 100},
        "backends": [{"name": "local", "provider": "ollama", "model": "m",
                      "endpoint": "http://127.0.0.1:1", "tags": ["general"]}],
    }), encoding="utf-8")
    return str(path)


def test_plan_prints_chunks(config_file, capsys):
    rc = cli.main(["--config", config_file, "plan", "word " * 60])
    out = capsys.readouterr().out
    assert rc == 0
    assert "-> 3 chunks (size=100)" in out
    assert "[2]" in out


def test_plan_chunk_size_override(config_file, capsys):
    assert cli.main(["--config", config_file, "plan", "word " * 60, "--chunk-size", "1000"]) == 0
    assert "-> 1 chunks" in capsys.readouterr().out


def test_backends_lists_registry(config_file, capsys):
    assert cli.main(["--config", config_file, "backends"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["default"] == "local"


def test_invalid_config_exit_code(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"dispatch": {"chunk_size": -1}}), encoding="utf-8")
    assert cli.main(["--config", str(path), "plan", "x"]) == 2
    assert "ERROR" in capsys.readouterr().err


def test_invalid_env_overlay_exit_code(config_file, monkeypatch, capsys):
    monkeypatch.setenv("MODEL_ORCH_DISPATCH__LOOKBACK_CHARS", "auto")
    assert cli.main(["--config", config_file, "plan", "word " * 60]) == 2
    assert "dispatch.lookback_chars" in capsys.readouterr().err


def test_generate_reports_backend_failure(config_file, capsys):
    rc = cli.main(["--config", config_file, "generate", "hello", "--timeout", "5"])
    assert rc == 1
    assert "backend_invocation_failed" in capsys.readouterr().err


def test_subcommand_required():
    with pytest.raises(SystemExit):
        cli.main([])
