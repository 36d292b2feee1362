"""Shared fixtures for the model orchestrator tests.

Backends here are in-process ``CallableBackend`` instances so no test
needs a live model server.
"""

import asyncio

import pytest

from model_orchestrator.errors import BackendInvocationFailed
from model_orchestrator.profiles import BackendClass, BackendRegistry
from model_orchestrator.providers import CallableBackend


class ScriptedBackend(CallableBackend):
    """Callable backend that records prompts and can fail or stall on demand."""

    def __init__(self, name, reply=None, fail=False, delay=0.0, fail_when=None):
        self.calls = []
        self.active = 0
        self.peak = 0
        self._reply = reply or (lambda prompt: f"{name}:{prompt}")
        self._fail = fail
        self._delay = delay
        self._fail_when = fail_when
        super().__init__(self._run, model=name)

    async def _run(self, prompt):
        self.calls.append(prompt)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            delay = self._delay(prompt) if callable(self._delay) else self._delay
            if delay:
                await asyncio.sleep(delay)
            if self._fail or (self._fail_when is not None and self._fail_when(prompt)):
                raise BackendInvocationFailed(f"{self.model} unavailable", backend=self.model)
            return self._reply(prompt)
        finally:
            self.active -= 1


@pytest.fixture
def scripted():
    """Factory for ``ScriptedBackend`` instances."""
    return ScriptedBackend


@pytest.fixture
def two_backend_registry():
    """Registry with a default general backend 'A' and a code backend 'B'."""

    def _build(a=None, b=None):
        a = a or ScriptedBackend("A")
        b = b or ScriptedBackend("B")
        registry = (
            BackendRegistry()
            .with_backend("A", a, BackendClass.GENERAL, tags=["general"], expected_latency_ms=100)
            .with_backend("B", b, BackendClass.CODE, tags=["code"], expected_latency_ms=200)
            .set_default("A")
        )
        return registry.build(), a, b

    return _build
