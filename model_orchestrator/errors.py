"""
Model Orchestrator - Error Taxonomy

Construction-time errors are raised and fatal to setup.  Runtime backend
errors are classified into ``ErrorKind`` buckets that drive the single
fallback tier inside the orchestrator.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    """Failure classification buckets carried on failed outcomes."""
    BACKEND_INVOCATION_FAILED = "backend_invocation_failed"  # Transport / backend error
    BACKEND_TIMEOUT = "backend_timeout"                      # Deadline exceeded
    CANCELLED = "cancelled"                                  # Cancel event observed
    CHUNK_FAILED = "chunk_failed"                            # A chunk failed terminally


class OrchestratorError(Exception):
    """Base class for every error raised by this package."""
    pass


# ── Setup errors ───────────────────────────────────────────────────────────

class RegistryError(OrchestratorError):
    pass


class DuplicateBackendName(RegistryError):
    """A profile with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"backend '{name}' is already registered")
        self.name = name


class UnknownBackendName(RegistryError):
    """A name was referenced that no registered profile carries."""

    def __init__(self, name: str):
        super().__init__(f"unknown backend '{name}'")
        self.name = name


class EmptyRegistry(RegistryError):
    """build() was called before any profile was registered."""

    def __init__(self):
        super().__init__("cannot build a registry with no backends")


class RegistryFrozen(RegistryError):
    """The registry was built; no further registration is allowed."""

    def __init__(self, operation: str = "register"):
        super().__init__(f"registry is frozen; '{operation}' is not allowed after build()")
        self.operation = operation


class InvalidBackendProfile(RegistryError):
    """Profile failed validation at registration."""

    def __init__(self, name: str, errors):
        super().__init__(f"invalid backend profile '{name}': {'; '.join(errors)}")
        self.name = name
        self.errors = list(errors)


class ConfigValidationError(OrchestratorError):
    """Raised when configuration fails schema validation."""
    pass


# ── Runtime errors ─────────────────────────────────────────────────────────

class GenerationError(OrchestratorError):
    """Base for errors raised while invoking a backend."""
    kind: ErrorKind = ErrorKind.BACKEND_INVOCATION_FAILED

    def __init__(self, message: str = "", backend: str = ""):
        super().__init__(message or self.kind.value)
        self.backend = backend


class BackendInvocationFailed(GenerationError):
    """Transport or backend error.  Eligible for one fallback attempt."""
    kind = ErrorKind.BACKEND_INVOCATION_FAILED

    def __init__(self, message: str = "", backend: str = "",
                 status_code: Optional[int] = None):
        super().__init__(message, backend)
        self.status_code = status_code


class BackendTimeout(GenerationError):
    """The backend did not answer in time.  Retried only with deadline budget left."""
    kind = ErrorKind.BACKEND_TIMEOUT


class GenerationCancelled(GenerationError):
    """The cancel event fired before or during the backend call."""
    kind = ErrorKind.CANCELLED


class ChunkFailed(GenerationError):
    """At least one chunk of a divide-and-conquer run failed terminally."""
    kind = ErrorKind.CHUNK_FAILED

    def __init__(self, message: str = "", failed_indices=()):
        super().__init__(message)
        self.failed_indices = tuple(failed_indices)


# ── Classification ─────────────────────────────────────────────────────────

def classify_exception(exc: BaseException) -> ErrorKind:
    """
    Map an arbitrary exception raised by a backend to an ``ErrorKind``.

    Checks are ordered from most-specific to least-specific so that the
    first match wins.  Anything unrecognised is a backend invocation
    failure, which keeps it eligible for fallback.
    """
    if isinstance(exc, GenerationError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.BACKEND_TIMEOUT
    return ErrorKind.BACKEND_INVOCATION_FAILED


def is_retryable(kind: ErrorKind) -> bool:
    """Backend errors and timeouts are eligible for the fallback tier; cancellation is not."""
    return kind in (ErrorKind.BACKEND_INVOCATION_FAILED, ErrorKind.BACKEND_TIMEOUT)
