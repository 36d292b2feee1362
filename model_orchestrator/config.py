"""Configuration loading and validation for the model orchestrator.

Loads an optional JSON config file, validates it against the embedded
JSON Schema, applies environment variable overlays, and builds the engine
objects from the validated sections.

Usage:
    from model_orchestrator.config import OrchestratorConfig
    cfg = OrchestratorConfig("orchestrator.json")
    dispatcher = cfg.build_dispatcher()

Environment variable overlays:
    MODEL_ORCH_DISPATCH__CHUNK_SIZE=800
    MODEL_ORCH_GATE__ESCALATE_AT=0.6
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from model_orchestrator.divide_and_conquer import (
    DivideAndConquerConfig,
    DivideAndConquerExecutor,
    default_parallelism,
)
from model_orchestrator.dispatcher import MIN_DIVIDE_LENGTH, TurnDispatcher
from model_orchestrator.errors import ConfigValidationError
from model_orchestrator.integration_gate import DEESCALATE_BELOW, ESCALATE_AT, IntegrationGate
from model_orchestrator.orchestrator import ModelOrchestrator
from model_orchestrator.profiles import BackendClass, BackendRegistry
from model_orchestrator.providers import create_backend

logger = logging.getLogger("model-orchestrator.config")

ENV_PREFIX = "MODEL_ORCH_"
CONFIG_PATH_ENV = "MODEL_ORCH_CONFIG"

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "dispatch": {
            "type": "object",
            "properties": {
                "chunk_size": {"type": "integer", "minimum": 1},
                "max_parallelism": {"type": "integer", "minimum": 1},
                "merge_separator": {"type": "string"},
                "merge_results": {"type": "boolean"},
                "min_divide_length": {"type": "integer", "minimum": 0},
                "lookback_chars": {"type": ["integer", "null"], "minimum": 0},
            },
            "additionalProperties": False,
        },
        "gate": {
            "type": "object",
            "properties": {
                "escalate_at": {"type": "number", "minimum": 0, "maximum": 1},
                "deescalate_below": {"type": "number", "minimum": 0, "maximum": 1},
            },
            "additionalProperties": False,
        },
        "backends": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "provider", "tags"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "provider": {"type": "string"},
                    "model": {"type": "string"},
                    "endpoint": {"type": "string"},
                    "api_key_env": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                    "class": {"enum": [c.value for c in BackendClass]},
                    "max_tokens": {"type": "integer", "minimum": 1},
                    "expected_latency_ms": {"type": "number", "minimum": 0},
                    "timeout_s": {"type": "number", "exclusiveMinimum": 0},
                    "temperature": {"type": "number"},
                    "default": {"type": "boolean"},
                },
            },
        },
    },
}


def default_config() -> Dict[str, Any]:
    """Built-in configuration: one local Ollama backend."""
    return {
        "dispatch": {
            "chunk_size": 1000,
            "max_parallelism": default_parallelism(),
            "merge_separator": "\n\n",
            "merge_results": True,
            "min_divide_length": MIN_DIVIDE_LENGTH,
            "lookback_chars": None,
        },
        "gate": {
            "escalate_at": ESCALATE_AT,
            "deescalate_below": DEESCALATE_BELOW,
        },
        "backends": [
            {
                "name": "general",
                "provider": "ollama",
                "model": os.getenv("OLLAMA_MODEL", "qwen2.5:7b"),
                "tags": ["conversation", "general-purpose", "versatile", "chat", "general"],
                "class": "general",
                "max_tokens": 2048,
                "expected_latency_ms": 1000,
            },
        ],
    }


class OrchestratorConfig:
    """Validated orchestrator configuration with environment overlay support."""

    def __init__(self, config_path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        path = config_path or os.getenv(CONFIG_PATH_ENV)
        self.config_path = Path(path) if path else None
        self._raw: Dict[str, Any] = {}
        self._validated: Dict[str, Any] = {}
        self._load_and_validate(data)

    def _load_and_validate(self, data: Optional[Dict[str, Any]]) -> None:
        """Load config, validate against schema, apply env overlays."""
        if data is not None:
            self._raw = copy.deepcopy(data)
        elif self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigValidationError(f"Config file not found: {self.config_path}")
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    self._raw = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Config file is not valid JSON: {e}") from e
        else:
            logger.info("No config file given, using built-in defaults")
            self._raw = {}

        merged = default_config()
        for section, value in self._raw.items():
            if isinstance(value, dict) and isinstance(merged.get(section), dict):
                merged[section].update(value)
            else:
                merged[section] = value

        self._validate(merged, "Config")
        overlaid = self._apply_env_overlays(merged)
        self._validate(overlaid, "Config after env overlays")
        self._validated = overlaid

    @staticmethod
    def _validate(config: Dict[str, Any], label: str) -> None:
        try:
            jsonschema.validate(instance=config, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
            raise ConfigValidationError(
                f"{label} validation failed at '{path}': {e.message}"
            ) from e

    def _apply_env_overlays(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply MODEL_ORCH_SECTION__KEY environment variables as overrides.

        Section and key are case-insensitive, matched to existing config keys.
        Type coercion is based on the existing value's type.
        """
        for env_key, env_val in os.environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue
            rest = env_key[len(ENV_PREFIX):]
            if "__" not in rest:
                continue
            section, key = (part.lower() for part in rest.split("__", 1))

            if not isinstance(config.get(section), dict):
                continue
            if key not in config[section]:
                logger.debug("Env overlay %s: key '%s' not in section '%s', skipping",
                             env_key, key, section)
                continue

            existing = config[section][key]
            try:
                if isinstance(existing, bool):
                    config[section][key] = env_val.lower() in ("1", "true", "yes")
                elif isinstance(existing, int):
                    config[section][key] = int(env_val)
                elif isinstance(existing, float):
                    config[section][key] = float(env_val)
                elif existing is None and env_val.strip().lstrip("-").isdigit():
                    config[section][key] = int(env_val)
                else:
                    config[section][key] = env_val
                logger.info("Env overlay applied: %s.%s = %r", section, key, config[section][key])
            except (ValueError, TypeError) as e:
                logger.warning("Env overlay %s: type coercion failed: %s", env_key, e)

        return config

    # ---- typed access -----------------------------------------------------

    def get(self, section: str) -> Any:
        """Get a config section (post-overlay)."""
        return self._validated.get(section, {})

    @property
    def raw(self) -> Dict[str, Any]:
        return self._raw

    def dispatch_config(self) -> DivideAndConquerConfig:
        d = self.get("dispatch")
        return DivideAndConquerConfig(
            chunk_size=d["chunk_size"],
            max_parallelism=d["max_parallelism"],
            merge_separator=d["merge_separator"],
            merge_results=d["merge_results"],
            lookback_chars=d.get("lookback_chars"),
        )

    def backend_entries(self) -> List[Dict[str, Any]]:
        return list(self.get("backends") or [])

    # ---- builders ---------------------------------------------------------

    def build_registry(self) -> BackendRegistry:
        registry = BackendRegistry()
        default_name = None
        for entry in self.backend_entries():
            backend = create_backend(
                entry["provider"],
                model=entry.get("model", ""),
                endpoint=entry.get("endpoint"),
                api_key_env=entry.get("api_key_env"),
                timeout=entry.get("timeout_s", 120.0),
                temperature=entry.get("temperature"),
            )
            registry.with_backend(
                entry["name"],
                backend,
                backend_class=BackendClass(entry.get("class", "general")),
                tags=entry["tags"],
                max_tokens=entry.get("max_tokens", 2048),
                expected_latency_ms=entry.get("expected_latency_ms", 1000.0),
            )
            if entry.get("default"):
                default_name = entry["name"]
        if default_name:
            registry.set_default(default_name)
        return registry.build()

    def build_orchestrator(self) -> ModelOrchestrator:
        return ModelOrchestrator(self.build_registry())

    def build_dispatcher(self, orchestrator: Optional[ModelOrchestrator] = None) -> TurnDispatcher:
        orchestrator = orchestrator or self.build_orchestrator()
        gate_cfg = self.get("gate")
        return TurnDispatcher(
            orchestrator,
            executor=DivideAndConquerExecutor(orchestrator, self.dispatch_config()),
            gate=IntegrationGate(
                escalate_at=gate_cfg["escalate_at"],
                deescalate_below=gate_cfg["deescalate_below"],
            ),
            min_divide_length=self.get("dispatch")["min_divide_length"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._validated)
