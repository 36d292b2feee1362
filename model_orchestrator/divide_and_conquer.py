"""
Model Orchestrator - Divide-and-Conquer Executor

Fans chunk requests out to ``ModelOrchestrator.generate`` through a
bounded pool of asyncio workers pulling from a shared queue.

Invariants:
    1. Pool size is min(max_parallelism, chunk count).
    2. Results land in a pre-sized slot list indexed by chunk index, so the
       merge always follows original chunk order regardless of completion
       order.
    3. Merged text exists only when every chunk succeeded.
    4. A set cancel event stops dispatch; in-flight chunks finish on their
       own and the whole run is reported as cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from model_orchestrator.chunk_planner import Chunk, ChunkPlanner
from model_orchestrator.errors import ChunkFailed, ErrorKind, classify_exception
from model_orchestrator.orchestrator import GenerationOutcome, GenerationRequest, ModelOrchestrator
from model_orchestrator.profiles import PerformanceMetrics, RollingMetrics

logger = logging.getLogger("model-orchestrator.divide-and-conquer")

OVERALL_RESOURCE = "divide_and_conquer"


def default_parallelism() -> int:
    """Half the available hardware parallelism, minimum 2."""
    return max(2, (os.cpu_count() or 1) // 2)


# ---------------------------------------------------------------------------
# Configuration / result
# ---------------------------------------------------------------------------

@dataclass
class DivideAndConquerConfig:
    """Tunables for chunked execution."""
    chunk_size: int = 1000
    max_parallelism: int = field(default_factory=default_parallelism)
    merge_separator: str = "\n\n"
    merge_results: bool = True
    lookback_chars: Optional[int] = None

    def validate(self) -> List[str]:
        errors: List[str] = []
        if self.chunk_size <= 0:
            errors.append("chunk_size must be > 0")
        if self.max_parallelism <= 0:
            errors.append("max_parallelism must be > 0")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_size": self.chunk_size,
            "max_parallelism": self.max_parallelism,
            "merge_separator": self.merge_separator,
            "merge_results": self.merge_results,
            "lookback_chars": self.lookback_chars,
        }


class MergeStatus(str, Enum):
    SUCCESS   = "success"
    FAILED    = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MergeResult:
    """Ordered per-chunk outcomes plus the merged text (success only)."""
    status: MergeStatus
    outcomes: Tuple[Optional[GenerationOutcome], ...] = ()
    merged_text: Optional[str] = None
    failed_indices: Tuple[int, ...] = ()
    error_kind: Optional[ErrorKind] = None
    elapsed_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == MergeStatus.SUCCESS

    def raise_for_status(self) -> "MergeResult":
        """Raise ``ChunkFailed`` unless every chunk succeeded."""
        if self.status != MergeStatus.SUCCESS:
            raise ChunkFailed(
                f"divide-and-conquer {self.status.value}: failed chunks {list(self.failed_indices)}",
                failed_indices=self.failed_indices,
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "merged_text": self.merged_text,
            "failed_indices": list(self.failed_indices),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "outcomes": [o.to_dict() if o else None for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class DivideAndConquerExecutor:
    """Bounded-parallel chunk dispatcher backed by a ``ModelOrchestrator``."""

    def __init__(self, orchestrator: ModelOrchestrator,
                 config: Optional[DivideAndConquerConfig] = None):
        self._orchestrator = orchestrator
        self.config = config or DivideAndConquerConfig()
        errors = self.config.validate()
        if errors:
            raise ValueError("; ".join(errors))
        self._planner = ChunkPlanner(self.config.chunk_size, self.config.lookback_chars)
        self._metrics: Dict[str, RollingMetrics] = {OVERALL_RESOURCE: RollingMetrics()}

    # ---- planning ---------------------------------------------------------

    def divide_into_chunks(self, text: str, chunk_size: Optional[int] = None) -> List[Chunk]:
        return self._planner.plan(text, chunk_size)

    # ---- metrics ----------------------------------------------------------

    def _metric(self, resource: str) -> RollingMetrics:
        cell = self._metrics.get(resource)
        if cell is None:
            cell = self._metrics.setdefault(resource, RollingMetrics())
        return cell

    def get_metrics(self) -> Dict[str, PerformanceMetrics]:
        return {name: cell.snapshot(name) for name, cell in sorted(self._metrics.items())}

    # ---- execution --------------------------------------------------------

    async def execute(
        self,
        instruction_prefix: str,
        chunks: Sequence[Chunk],
        cancel_event: Optional[asyncio.Event] = None,
        intent_tags: Iterable[str] = (),
        timeout_s: Optional[float] = None,
        trace_id: str = "",
    ) -> MergeResult:
        """
        Process *chunks* with bounded concurrency and merge in original order.

        Any failed chunk makes the whole result FAILED with no merged text;
        the caller is expected to retry once with a direct, unchunked call.
        """
        t0 = time.monotonic()
        count = len(chunks)
        if count == 0:
            merged = "" if self.config.merge_results else None
            return MergeResult(status=MergeStatus.SUCCESS, merged_text=merged)

        base = GenerationRequest.create(
            "", intent_tags=intent_tags, cancel_event=cancel_event,
            timeout_s=timeout_s, trace_id=trace_id,
        )
        slots: List[Optional[GenerationOutcome]] = [None] * count
        queue: asyncio.Queue = asyncio.Queue()
        for position, chunk in enumerate(chunks):
            queue.put_nowait((position, chunk))

        halted = asyncio.Event()
        workers = min(self.config.max_parallelism, count)

        async def worker(worker_id: int) -> None:
            while True:
                if halted.is_set() or (cancel_event is not None and cancel_event.is_set()):
                    return
                try:
                    position, chunk = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                request = base.with_prompt(instruction_prefix + chunk.text)
                try:
                    outcome = await self._orchestrator.generate(request)
                except Exception as e:
                    kind = classify_exception(e)
                    logger.warning("d&c: worker=%d chunk=%d raised %s trace=%s: %s",
                                   worker_id, position, kind.value, base.trace_id, e)
                    outcome = GenerationOutcome.failure(OVERALL_RESOURCE, kind, str(e) or kind.value)
                slots[position] = outcome

                cell = self._metric(f"chunk_{position}")
                if outcome.ok:
                    cell.record_success(outcome.latency_ms)
                else:
                    cell.record_failure(outcome.latency_ms)
                    halted.set()
                logger.debug("d&c: worker=%d chunk=%d %s via %s trace=%s",
                             worker_id, position, "ok" if outcome.ok else outcome.error_kind.value,
                             outcome.backend, base.trace_id)

        logger.info("d&c: dispatching %d chunks over %d workers trace=%s",
                    count, workers, base.trace_id)
        results = await asyncio.gather(*(worker(i) for i in range(workers)), return_exceptions=True)
        for err in results:
            if isinstance(err, BaseException):
                raise err

        elapsed_ms = (time.monotonic() - t0) * 1000
        result = self._settle(slots, cancel_event, elapsed_ms)

        overall = self._metric(OVERALL_RESOURCE)
        if result.success:
            overall.record_success(elapsed_ms)
        else:
            overall.record_failure(elapsed_ms)

        logger.info("d&c: %s in %.0fms (%d chunks) trace=%s",
                    result.status.value, elapsed_ms, count, base.trace_id)
        return result

    def _settle(self, slots: List[Optional[GenerationOutcome]],
                cancel_event: Optional[asyncio.Event], elapsed_ms: float) -> MergeResult:
        failed = tuple(i for i, o in enumerate(slots) if o is not None and not o.ok)
        cancelled = cancel_event is not None and cancel_event.is_set()

        if cancelled or any(slots[i].error_kind == ErrorKind.CANCELLED for i in failed):
            return MergeResult(
                status=MergeStatus.CANCELLED,
                failed_indices=failed,
                error_kind=ErrorKind.CANCELLED,
                elapsed_ms=elapsed_ms,
            )

        if failed:
            return MergeResult(
                status=MergeStatus.FAILED,
                outcomes=tuple(slots),
                failed_indices=failed,
                error_kind=ErrorKind.CHUNK_FAILED,
                elapsed_ms=elapsed_ms,
            )

        merged = None
        if self.config.merge_results:
            merged = self.config.merge_separator.join(o.text for o in slots)
        return MergeResult(
            status=MergeStatus.SUCCESS,
            outcomes=tuple(slots),
            merged_text=merged,
            elapsed_ms=elapsed_ms,
        )

    async def run(
        self,
        instruction_prefix: str,
        prompt: str,
        cancel_event: Optional[asyncio.Event] = None,
        intent_tags: Iterable[str] = (),
        timeout_s: Optional[float] = None,
        trace_id: str = "",
    ) -> MergeResult:
        """Plan *prompt* into chunks, then execute them."""
        chunks = self.divide_into_chunks(prompt)
        return await self.execute(instruction_prefix, chunks, cancel_event=cancel_event,
                                  intent_tags=intent_tags, timeout_s=timeout_s,
                                  trace_id=trace_id)
