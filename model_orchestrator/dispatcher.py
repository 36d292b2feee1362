"""
Model Orchestrator - Turn Dispatcher

Caller-side generation policy for one conversation:

    score -> IntegrationGate -> tier
        DEFAULT       -> direct call on the default backend
        ORCHESTRATED  -> routed call, or divide-and-conquer for large input
                         with one direct unchunked retry when it fails
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from model_orchestrator.divide_and_conquer import DivideAndConquerExecutor, MergeStatus
from model_orchestrator.errors import ErrorKind
from model_orchestrator.integration_gate import ActiveTier, IntegrationGate
from model_orchestrator.orchestrator import GenerationOutcome, GenerationRequest, ModelOrchestrator

logger = logging.getLogger("model-orchestrator.dispatcher")

MIN_DIVIDE_LENGTH = 2000
DEFAULT_PREFIX = "Process:"


class TurnDispatcher:
    """Ties the gate, the orchestrator and the chunk executor together."""

    def __init__(
        self,
        orchestrator: ModelOrchestrator,
        executor: Optional[DivideAndConquerExecutor] = None,
        gate: Optional[IntegrationGate] = None,
        min_divide_length: int = MIN_DIVIDE_LENGTH,
    ):
        self.orchestrator = orchestrator
        self.executor = executor or DivideAndConquerExecutor(orchestrator)
        self.gate = gate or IntegrationGate()
        self.min_divide_length = min_divide_length

    def _wants_divide(self, text: str) -> bool:
        return len(text) > self.min_divide_length

    async def _divide_then_direct(
        self,
        prefix: str,
        text: str,
        direct_prompt: str,
        request: GenerationRequest,
    ) -> GenerationOutcome:
        logger.info("dispatch: large input (%d chars), dividing trace=%s",
                    len(text), request.trace_id)
        result = await self.executor.run(
            prefix, text,
            cancel_event=request.cancel_event,
            intent_tags=request.intent_tags,
            timeout_s=request.remaining_s(),
            trace_id=request.trace_id,
        )
        if result.status == MergeStatus.SUCCESS:
            backends = sorted({o.backend for o in result.outcomes if o is not None})
            return GenerationOutcome.success(
                ",".join(backends), result.merged_text or "", result.elapsed_ms,
            )
        if result.status == MergeStatus.CANCELLED:
            return GenerationOutcome.failure("divide_and_conquer", ErrorKind.CANCELLED,
                                             "cancelled during chunked execution",
                                             latency_ms=result.elapsed_ms)

        logger.warning("dispatch: chunked run failed (chunks %s), retrying unchunked trace=%s",
                       list(result.failed_indices), request.trace_id)
        return await self.orchestrator.generate(request.with_prompt(direct_prompt))

    async def respond(
        self,
        prompt: str,
        intent_tags: Iterable[str] = (),
        integration_score: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        use_divide_and_conquer: bool = False,
        timeout_s: Optional[float] = None,
    ) -> GenerationOutcome:
        """Generate one turn's response."""
        tier = self.gate.tier if integration_score is None else self.gate.observe(integration_score)
        request = GenerationRequest.create(prompt, intent_tags=intent_tags,
                                           cancel_event=cancel_event, timeout_s=timeout_s)

        if tier == ActiveTier.DEFAULT:
            return await self.orchestrator.generate_on_default(request)

        if use_divide_and_conquer and self._wants_divide(prompt):
            return await self._divide_then_direct(DEFAULT_PREFIX, prompt, prompt, request)
        return await self.orchestrator.generate(request)

    async def process_large_input(
        self,
        task: str,
        text: str,
        intent_tags: Iterable[str] = (),
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> GenerationOutcome:
        """Apply *task* to *text*, chunking when the text is large."""
        direct_prompt = f"{task}\n\n{text}"
        request = GenerationRequest.create(direct_prompt, intent_tags=intent_tags,
                                           cancel_event=cancel_event, timeout_s=timeout_s)
        if self._wants_divide(text):
            return await self._divide_then_direct(f"{task}\n\n", text, direct_prompt, request)
        return await self.orchestrator.generate(request)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gate": self.gate.to_dict(),
            "min_divide_length": self.min_divide_length,
            "divide_and_conquer": self.executor.config.to_dict(),
        }
