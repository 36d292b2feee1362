"""
Model Orchestrator - Generation with Single-Tier Fallback

Routes a request to one backend, invokes it under the request deadline
and cancel event, records metrics and falls back exactly once to the
registry's default backend on a backend error or timeout.

Failure policy:
    BackendInvocationFailed  -> one retry on the default backend
    BackendTimeout           -> one retry while the request deadline has budget
    GenerationCancelled      -> terminal, no retry
    asyncio.CancelledError   -> re-raised (task cancellation)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional

from model_orchestrator.errors import (
    BackendInvocationFailed,
    BackendTimeout,
    ErrorKind,
    GenerationCancelled,
    classify_exception,
    is_retryable,
)
from model_orchestrator.profiles import BackendProfile, BackendRegistry, PerformanceMetrics
from model_orchestrator.routing_engine import Router

logger = logging.getLogger("model-orchestrator.orchestrator")


# ---------------------------------------------------------------------------
# Request / outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationRequest:
    """
    One generation request.

    ``deadline`` is an absolute ``time.monotonic()`` value; ``None`` means
    no deadline.  ``cancel_event`` is observed by the backend call.
    """
    prompt: str
    intent_tags: FrozenSet[str] = frozenset()
    cancel_event: Optional[asyncio.Event] = field(default=None, compare=False)
    deadline: Optional[float] = None
    trace_id: str = ""

    @classmethod
    def create(
        cls,
        prompt: str,
        intent_tags: Iterable[str] = (),
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
        trace_id: str = "",
    ) -> "GenerationRequest":
        deadline = time.monotonic() + timeout_s if timeout_s is not None else None
        return cls(
            prompt=prompt,
            intent_tags=frozenset(t.strip().lower() for t in intent_tags if t and t.strip()),
            cancel_event=cancel_event,
            deadline=deadline,
            trace_id=trace_id or uuid.uuid4().hex[:12],
        )

    def with_prompt(self, prompt: str) -> "GenerationRequest":
        """Same tags, deadline and cancel event with a different prompt."""
        return GenerationRequest(
            prompt=prompt,
            intent_tags=self.intent_tags,
            cancel_event=self.cancel_event,
            deadline=self.deadline,
            trace_id=self.trace_id,
        )

    def remaining_s(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class GenerationOutcome:
    """Either a success (text) or a failure (error kind), never both."""
    backend: str
    text: Optional[str] = None
    latency_ms: float = 0.0
    error_kind: Optional[ErrorKind] = None
    error: str = ""
    fallback_used: bool = False

    def __post_init__(self):
        if (self.text is None) == (self.error_kind is None):
            raise ValueError("an outcome is either a success or a failure")

    @classmethod
    def success(cls, backend: str, text: str, latency_ms: float,
                fallback_used: bool = False) -> "GenerationOutcome":
        return cls(backend=backend, text=text, latency_ms=latency_ms,
                   fallback_used=fallback_used)

    @classmethod
    def failure(cls, backend: str, error_kind: ErrorKind, error: str = "",
                latency_ms: float = 0.0, fallback_used: bool = False) -> "GenerationOutcome":
        return cls(backend=backend, error_kind=error_kind, error=error,
                   latency_ms=latency_ms, fallback_used=fallback_used)

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "backend": self.backend,
            "text": self.text,
            "latency_ms": round(self.latency_ms, 2),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "fallback_used": self.fallback_used,
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ModelOrchestrator:
    """
    Owns the registry and router, performs the generation call and keeps
    per-backend metrics.  Metrics are only ever mutated here.
    """

    def __init__(self, registry: BackendRegistry):
        self._registry = registry.build()
        self._router = Router(self._registry)

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def router(self) -> Router:
        return self._router

    # ---- single invocation ------------------------------------------------

    async def _invoke(self, profile: BackendProfile, request: GenerationRequest) -> GenerationOutcome:
        """Call one backend and record exactly one metric update for it."""
        t0 = time.monotonic()
        try:
            if request.cancelled:
                raise GenerationCancelled("cancel event set before dispatch", backend=profile.name)

            remaining = request.remaining_s()
            if remaining is not None and remaining <= 0:
                raise BackendTimeout("deadline elapsed before dispatch", backend=profile.name)

            call = profile.backend.generate(
                request.prompt,
                max_tokens=profile.max_tokens,
                cancel_event=request.cancel_event,
            )
            if remaining is None:
                text = await call
            else:
                text = await asyncio.wait_for(call, timeout=remaining)
            if not isinstance(text, str):
                raise BackendInvocationFailed(
                    f"backend returned {type(text).__name__}, expected str", backend=profile.name
                )

            latency_ms = (time.monotonic() - t0) * 1000
            outcome = GenerationOutcome.success(profile.name, text, latency_ms)

        except asyncio.CancelledError:
            profile.metrics.record_failure((time.monotonic() - t0) * 1000)
            raise
        except Exception as e:
            latency_ms = (time.monotonic() - t0) * 1000
            profile.metrics.record_failure(latency_ms)
            kind = classify_exception(e)
            logger.warning("generate: %s failed (%s) after %.0fms trace=%s: %s",
                           profile.name, kind.value, latency_ms, request.trace_id, e)
            return GenerationOutcome.failure(profile.name, kind, str(e) or kind.value,
                                             latency_ms=latency_ms)

        profile.metrics.record_success(latency_ms)
        logger.debug("generate: %s ok in %.0fms trace=%s",
                     profile.name, latency_ms, request.trace_id)
        return outcome

    # ---- public API -------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """
        Route *request*, invoke the selected backend and apply the single
        fallback tier to the default backend on a retryable failure.
        """
        candidate = self._router.select(request)
        outcome = await self._invoke(candidate, request)
        if outcome.ok:
            return outcome

        default = self._registry.default
        if candidate.name == default.name or not is_retryable(outcome.error_kind):
            return outcome
        remaining = request.remaining_s()
        if remaining is not None and remaining <= 0:
            return outcome

        logger.info("generate: falling back %s -> %s (%s) trace=%s",
                    candidate.name, default.name, outcome.error_kind.value, request.trace_id)
        fallback = await self._invoke(default, request)
        if fallback.ok:
            return GenerationOutcome.success(fallback.backend, fallback.text,
                                             fallback.latency_ms, fallback_used=True)
        return GenerationOutcome.failure(fallback.backend, fallback.error_kind, fallback.error,
                                         latency_ms=fallback.latency_ms, fallback_used=True)

    async def generate_on_default(self, request: GenerationRequest) -> GenerationOutcome:
        """Direct single call against the default backend, no routing or fallback."""
        return await self._invoke(self._registry.default, request)

    async def generate_text(
        self,
        prompt: str,
        intent_tags: Iterable[str] = (),
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> GenerationOutcome:
        """Convenience wrapper building the request from plain arguments."""
        return await self.generate(GenerationRequest.create(
            prompt, intent_tags=intent_tags, cancel_event=cancel_event, timeout_s=timeout_s,
        ))

    # ---- diagnostics ------------------------------------------------------

    def get_metrics(self) -> Dict[str, PerformanceMetrics]:
        return {p.name: p.performance() for p in self._registry.profiles}

    async def aclose(self) -> None:
        for profile in self._registry.profiles:
            await profile.backend.aclose()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registry": self._registry.to_dict(),
            "router": self._router.to_dict(),
        }
