"""
Model Orchestrator - Generation Backends

The engine depends on a single abstract capability: an async
text-generation call that takes a prompt and a cancel event and returns
text or raises.  Currently implements: Ollama (local) and any
OpenAI-compatible chat completion endpoint, plus an in-process callable
adapter for embedding custom generators.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from model_orchestrator.errors import (
    BackendInvocationFailed,
    BackendTimeout,
    GenerationCancelled,
)

logger = logging.getLogger("model-orchestrator.providers")

_DEFAULT_TIMEOUT = 120.0


async def _wait_for_cancel(evt: asyncio.Event) -> None:
    await evt.wait()


class GenerationBackend(ABC):
    """Abstract base class for text-generation backends."""

    provider = "abstract"

    def __init__(self, model: str = "", endpoint: str = "",
                 api_key: Optional[str] = None, timeout: float = _DEFAULT_TIMEOUT):
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @abstractmethod
    async def _complete(self, prompt: str, max_tokens: Optional[int]) -> str:
        """Perform the raw generation call."""
        pass

    async def generate(
        self,
        prompt: str,
        *,
        max_tokens: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Generate text for *prompt*.

        When *cancel_event* is given the call is raced against it; if the
        event fires first the in-flight request is cancelled and
        ``GenerationCancelled`` is raised.
        """
        if cancel_event is None:
            return await self._complete(prompt, max_tokens)

        if cancel_event.is_set():
            raise GenerationCancelled("cancel event set before start", backend=self.model)

        call_task = asyncio.ensure_future(self._complete(prompt, max_tokens))
        cancel_waiter = asyncio.ensure_future(_wait_for_cancel(cancel_event))
        try:
            done, _ = await asyncio.wait(
                {call_task, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            call_task.cancel()
            cancel_waiter.cancel()
            raise

        if call_task in done:
            cancel_waiter.cancel()
            try:
                await cancel_waiter
            except asyncio.CancelledError:
                pass
            return call_task.result()

        # ---- cancel path ---------------------------------------------------
        call_task.cancel()
        try:
            await call_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("backend %s raised while cancelling: %s", self.model, e)
        raise GenerationCancelled("cancel event set during generation", backend=self.model)

    async def aclose(self) -> None:
        """Release transport resources (no-op by default)."""
        return None

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "endpoint": self.endpoint,
        }


class _HttpBackend(GenerationBackend):
    """Shared httpx plumbing for HTTP chat backends."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init a shared httpx.AsyncClient."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._get_client().post(url, json=payload, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise BackendTimeout(f"{self.provider} timed out: {e}", backend=self.model) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("%s HTTP error (%d) model=%s", self.provider, status, self.model)
            raise BackendInvocationFailed(
                f"{self.provider} HTTP error ({status})",
                backend=self.model,
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("%s request failed model=%s: %s", self.provider, self.model, e)
            raise BackendInvocationFailed(f"{self.provider} request failed: {e}",
                                          backend=self.model) from e
        except ValueError as e:
            raise BackendInvocationFailed(f"{self.provider} returned invalid JSON",
                                          backend=self.model) from e


class OllamaBackend(_HttpBackend):
    """Local Ollama provider."""

    provider = "ollama"

    def __init__(self, model: str = "", endpoint: Optional[str] = None,
                 timeout: float = _DEFAULT_TIMEOUT, temperature: Optional[float] = None):
        endpoint = endpoint or os.getenv("OLLAMA_ENDPOINT", "http://127.0.0.1:11434")
        model = model or os.getenv("OLLAMA_MODEL", "qwen2.5:7b")
        super().__init__(model=model, endpoint=endpoint, api_key=None, timeout=timeout)
        self.temperature = temperature

    async def _complete(self, prompt: str, max_tokens: Optional[int]) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
        }
        options: Dict[str, Any] = {}
        if max_tokens:
            options["num_predict"] = max_tokens
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if options:
            payload["options"] = options

        data = await self._post(f"{self.endpoint}/api/generate", payload)
        text = data.get("response")
        if text is None:
            raise BackendInvocationFailed("ollama response missing 'response'", backend=self.model)
        return text.strip()


class OpenAICompatibleBackend(_HttpBackend):
    """Any OpenAI-compatible ``/chat/completions`` endpoint."""

    provider = "openai_compatible"

    def __init__(self, model: str, endpoint: str, api_key: Optional[str] = None,
                 timeout: float = _DEFAULT_TIMEOUT, temperature: Optional[float] = None,
                 system_message: Optional[str] = None):
        super().__init__(model=model, endpoint=endpoint, api_key=api_key, timeout=timeout)
        self.temperature = temperature
        self.system_message = system_message

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _complete(self, prompt: str, max_tokens: Optional[int]) -> str:
        messages = []
        if self.system_message:
            messages.append({"role": "system", "content": self.system_message})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if self.temperature is not None:
            payload["temperature"] = self.temperature

        data = await self._post(f"{self.endpoint}/chat/completions", payload)
        try:
            return (data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as e:
            raise BackendInvocationFailed("malformed chat completion response",
                                          backend=self.model) from e


class CallableBackend(GenerationBackend):
    """Adapter around an in-process ``async fn(prompt) -> str``."""

    provider = "callable"

    def __init__(self, fn: Callable[[str], Awaitable[str]], model: str = "callable"):
        super().__init__(model=model)
        self._fn = fn

    async def _complete(self, prompt: str, max_tokens: Optional[int]) -> str:
        return await self._fn(prompt)


def create_backend(provider: str, model: str = "", endpoint: Optional[str] = None,
                   api_key: Optional[str] = None, api_key_env: Optional[str] = None,
                   timeout: float = _DEFAULT_TIMEOUT,
                   temperature: Optional[float] = None) -> GenerationBackend:
    """Build a backend from a configuration entry."""
    if api_key is None and api_key_env:
        api_key = os.getenv(api_key_env)

    if provider == "ollama":
        return OllamaBackend(model=model, endpoint=endpoint, timeout=timeout,
                             temperature=temperature)
    if provider in ("openai_compatible", "openai", "openrouter", "litellm"):
        if not endpoint:
            raise ValueError(f"provider '{provider}' requires an endpoint")
        return OpenAICompatibleBackend(model=model, endpoint=endpoint, api_key=api_key,
                                       timeout=timeout, temperature=temperature)
    raise ValueError(f"unknown provider '{provider}'")
