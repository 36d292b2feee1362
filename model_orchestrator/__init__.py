"""
Model Orchestrator

Tag-routed text generation across registered backends with single-tier
fallback, plus bounded-parallel divide-and-conquer for oversized prompts.
"""

__version__ = "0.4.0"

from model_orchestrator.errors import (
    BackendInvocationFailed,
    BackendTimeout,
    ChunkFailed,
    ConfigValidationError,
    DuplicateBackendName,
    EmptyRegistry,
    ErrorKind,
    GenerationCancelled,
    InvalidBackendProfile,
    OrchestratorError,
    RegistryFrozen,
    UnknownBackendName,
)

from model_orchestrator.providers import (
    CallableBackend,
    GenerationBackend,
    OllamaBackend,
    OpenAICompatibleBackend,
)

from model_orchestrator.profiles import (
    BackendClass,
    BackendProfile,
    BackendRegistry,
    PerformanceMetrics,
)

from model_orchestrator.routing_engine import (
    RouteDecision,
    Router,
    infer_intent_tags,
)

from model_orchestrator.orchestrator import (
    GenerationOutcome,
    GenerationRequest,
    ModelOrchestrator,
)

from model_orchestrator.chunk_planner import (
    Chunk,
    ChunkPlanner,
)

from model_orchestrator.divide_and_conquer import (
    DivideAndConquerConfig,
    DivideAndConquerExecutor,
    MergeResult,
    MergeStatus,
)

from model_orchestrator.integration_gate import (
    ActiveTier,
    IntegrationGate,
)

from model_orchestrator.dispatcher import TurnDispatcher
