"""
Model Orchestrator - Backend Profiles and Registry

A backend profile describes one text-generation backend: identity,
capability tags, resource limits and rolling performance metrics.
The registry holds the profiles in registration order plus one default
and is frozen once built.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from model_orchestrator.errors import (
    DuplicateBackendName,
    EmptyRegistry,
    InvalidBackendProfile,
    RegistryFrozen,
    UnknownBackendName,
)
from model_orchestrator.providers import GenerationBackend

logger = logging.getLogger("model-orchestrator.profiles")


# ---------------------------------------------------------------------------
# Backend classes
# ---------------------------------------------------------------------------

class BackendClass(str, Enum):
    """Coarse classification of what a backend is good at."""
    GENERAL   = "general"
    CODE      = "code"
    REASONING = "reasoning"
    ANALYSIS  = "analysis"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PerformanceMetrics:
    """Read-only snapshot of one resource's rolling metrics."""
    resource_name: str
    execution_count: int
    success_count: int
    failure_count: int
    average_latency_ms: float
    success_rate: float
    last_used: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_name": self.resource_name,
            "execution_count": self.execution_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "average_latency_ms": round(self.average_latency_ms, 2),
            "success_rate": round(self.success_rate, 4),
            "last_used": self.last_used,
        }


class RollingMetrics:
    """
    Owned mutable metrics cell.

    Every update is one critical section under the cell's lock, so
    concurrent chunk workers and concurrent turns never observe a
    half-applied update.  Reads take the same lock and return copies.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._invocations = 0
        self._successes = 0
        self._failures = 0
        self._latency_ms = 0.0
        self._last_used: Optional[float] = None

    def record_success(self, latency_ms: float) -> None:
        with self._lock:
            self._invocations += 1
            self._successes += 1
            self._latency_ms += latency_ms
            self._last_used = time.time()

    def record_failure(self, latency_ms: float = 0.0) -> None:
        with self._lock:
            self._invocations += 1
            self._failures += 1
            self._latency_ms += latency_ms
            self._last_used = time.time()

    @property
    def invocations(self) -> int:
        with self._lock:
            return self._invocations

    @property
    def successes(self) -> int:
        with self._lock:
            return self._successes

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def cumulative_latency_ms(self) -> float:
        with self._lock:
            return self._latency_ms

    def average_latency_ms(self, fallback: float = 0.0) -> float:
        """Observed mean latency, or *fallback* before the first invocation."""
        with self._lock:
            if self._invocations == 0:
                return float(fallback)
            return self._latency_ms / self._invocations

    def snapshot(self, resource_name: str, fallback_latency_ms: float = 0.0) -> PerformanceMetrics:
        with self._lock:
            count = self._invocations
            avg = self._latency_ms / count if count else float(fallback_latency_ms)
            rate = self._successes / count if count else 0.0
            return PerformanceMetrics(
                resource_name=resource_name,
                execution_count=count,
                success_count=self._successes,
                failure_count=self._failures,
                average_latency_ms=avg,
                success_rate=rate,
                last_used=self._last_used,
            )


# ---------------------------------------------------------------------------
# Backend profile
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BackendProfile:
    """
    One registered text-generation backend.

    Fields
    ------
    name                 Unique within a registry
    backend              Provider performing the generation call
    tags                 Capability tags used by the router (non-empty)
    backend_class        Coarse classification
    max_tokens           Maximum output tokens requested from the backend
    expected_latency_ms  Static estimate used until metrics exist
    metrics              The only mutable part of a profile
    """
    name: str
    backend: GenerationBackend
    tags: FrozenSet[str]
    backend_class: BackendClass = BackendClass.GENERAL
    max_tokens: int = 2048
    expected_latency_ms: float = 1000.0
    metrics: RollingMetrics = field(default_factory=RollingMetrics, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        name: str,
        backend: GenerationBackend,
        tags: Iterable[str],
        backend_class: BackendClass = BackendClass.GENERAL,
        max_tokens: int = 2048,
        expected_latency_ms: float = 1000.0,
    ) -> "BackendProfile":
        return cls(
            name=name,
            backend=backend,
            tags=frozenset(t.strip().lower() for t in tags if t and t.strip()),
            backend_class=BackendClass(backend_class),
            max_tokens=max_tokens,
            expected_latency_ms=float(expected_latency_ms),
        )

    # ---- validation -------------------------------------------------------

    def validate(self) -> List[str]:
        """Return list of validation errors (empty == valid)."""
        errors: List[str] = []
        if not self.name or not self.name.strip():
            errors.append("name must be non-empty")
        if not self.tags:
            errors.append("tags must be non-empty")
        if self.max_tokens <= 0:
            errors.append("max_tokens must be > 0")
        if self.expected_latency_ms < 0:
            errors.append("expected_latency_ms must be >= 0")
        if self.backend is None:
            errors.append("backend is required")
        return errors

    # ---- router inputs ----------------------------------------------------

    def average_latency_ms(self) -> float:
        """Observed mean latency, falling back to the static estimate."""
        return self.metrics.average_latency_ms(fallback=self.expected_latency_ms)

    def performance(self) -> PerformanceMetrics:
        return self.metrics.snapshot(self.name, fallback_latency_ms=self.expected_latency_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tags": sorted(self.tags),
            "backend_class": self.backend_class.value,
            "max_tokens": self.max_tokens,
            "expected_latency_ms": self.expected_latency_ms,
            "backend": self.backend.describe(),
            "metrics": self.performance().to_dict(),
        }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class BackendRegistry:
    """
    Ordered collection of backend profiles plus a designated default.

    Mutable only until ``build()``.  After that it is read-only and safe
    to share between concurrent callers without locking.
    """

    def __init__(self):
        self._profiles: Dict[str, BackendProfile] = {}
        self._default_name: Optional[str] = None
        self._frozen = False

    # ---- mutation (before build) ------------------------------------------

    def register(self, profile: BackendProfile) -> BackendProfile:
        """Add *profile*.  Registration order is the router's tie-break order."""
        if self._frozen:
            raise RegistryFrozen("register")
        errors = profile.validate()
        if errors:
            raise InvalidBackendProfile(profile.name, errors)
        if profile.name in self._profiles:
            raise DuplicateBackendName(profile.name)
        self._profiles[profile.name] = profile
        logger.debug("registry: registered %s tags=%s latency=%.0fms",
                     profile.name, sorted(profile.tags), profile.expected_latency_ms)
        return profile

    def with_backend(
        self,
        name: str,
        backend: GenerationBackend,
        backend_class: BackendClass = BackendClass.GENERAL,
        tags: Iterable[str] = ("general",),
        max_tokens: int = 2048,
        expected_latency_ms: float = 1000.0,
    ) -> "BackendRegistry":
        """Fluent registration.  Returns the registry for chaining."""
        self.register(BackendProfile.create(
            name=name,
            backend=backend,
            tags=tags,
            backend_class=backend_class,
            max_tokens=max_tokens,
            expected_latency_ms=expected_latency_ms,
        ))
        return self

    def set_default(self, name: str) -> "BackendRegistry":
        """Mark an already-registered profile as the default."""
        if self._frozen:
            raise RegistryFrozen("set_default")
        if name not in self._profiles:
            raise UnknownBackendName(name)
        self._default_name = name
        return self

    def build(self) -> "BackendRegistry":
        """Freeze the registry and settle the default profile."""
        if self._frozen:
            return self
        if not self._profiles:
            raise EmptyRegistry()
        if self._default_name is None:
            self._default_name = next(iter(self._profiles))
        self._frozen = True
        logger.info("registry: built with %d backends, default=%s",
                    len(self._profiles), self._default_name)
        return self

    # ---- lookup -----------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def profiles(self) -> List[BackendProfile]:
        """Profiles in registration order."""
        return list(self._profiles.values())

    @property
    def names(self) -> List[str]:
        return list(self._profiles)

    @property
    def default(self) -> BackendProfile:
        if not self._profiles:
            raise EmptyRegistry()
        name = self._default_name or next(iter(self._profiles))
        return self._profiles[name]

    def get(self, name: str) -> Optional[BackendProfile]:
        return self._profiles.get(name)

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    # ---- diagnostics ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backends": [p.to_dict() for p in self._profiles.values()],
            "default": self._default_name,
            "frozen": self._frozen,
        }
