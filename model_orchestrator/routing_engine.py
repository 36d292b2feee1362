"""
Model Orchestrator - Deterministic Router

Scores every registered backend by tag overlap with the request's intent
tags and breaks ties by observed latency, then registration order.  No
randomness -- identical inputs and metrics always yield the same selection.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple

from model_orchestrator.profiles import BackendProfile, BackendRegistry

logger = logging.getLogger("model-orchestrator.routing-engine")

_DECISION_LOG_MAX = 500


# ---------------------------------------------------------------------------
# Route decision
# ---------------------------------------------------------------------------

@dataclass
class RouteDecision:
    """Record of a single routing decision."""
    trace_id: str
    selected_backend: str
    score: int
    latency_ms: float
    intent_tags: List[str]
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "selected_backend": self.selected_backend,
            "score": self.score,
            "latency_ms": round(self.latency_ms, 2),
            "intent_tags": self.intent_tags,
            "candidates": self.candidates,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Intent tag inference
# ---------------------------------------------------------------------------

# Patterns map prompt keywords onto the tag vocabulary backends register with.
_INTENT_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"(?i)\b(code|program|debug|syntax|refactor|implement|function|compile)"), "code"),
    (re.compile(r"(?i)\b(reason|analy[sz]|logic|explain|plan|strateg|why)"), "reasoning"),
    (re.compile(r"(?i)\b(summari[sz]|condense|extract|tl;?dr|brief)"), "summarize"),
    (re.compile(r"(?i)\b(image|vision|visual|photo|picture|screenshot|camera)"), "vision"),
]


def infer_intent_tags(text: str) -> FrozenSet[str]:
    """
    Infer intent tags from free text.

    Deterministic: same input always yields the same tag set.  Text that
    matches no pattern is tagged ``general``.
    """
    tags = {tag for pattern, tag in _INTENT_PATTERNS if pattern.search(text or "")}
    return frozenset(tags) if tags else frozenset({"general"})


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class Router:
    """
    Tag-overlap router over a built registry.

    Ordering key per profile: (-score, average latency, registration index).
    The smallest key wins.  Selection is synchronous and never fails on a
    registry with at least one profile.
    """

    def __init__(self, registry: BackendRegistry):
        self._registry = registry.build()
        self._decision_log: List[RouteDecision] = []

    @staticmethod
    def score(intent_tags: Iterable[str], profile: BackendProfile) -> int:
        return len(frozenset(intent_tags) & profile.tags)

    def _rank(self, intent_tags: FrozenSet[str]) -> List[Tuple[int, float, int, BackendProfile]]:
        ranked = []
        for index, profile in enumerate(self._registry.profiles):
            ranked.append((
                self.score(intent_tags, profile),
                profile.average_latency_ms(),
                index,
                profile,
            ))
        ranked.sort(key=lambda r: (-r[0], r[1], r[2]))
        return ranked

    def decide(self, request) -> RouteDecision:
        """Rank every profile for *request* and record the decision."""
        intent_tags = frozenset(request.intent_tags or ())
        ranked = self._rank(intent_tags)
        score, latency, _, winner = ranked[0]

        decision = RouteDecision(
            trace_id=getattr(request, "trace_id", "") or "",
            selected_backend=winner.name,
            score=score,
            latency_ms=latency,
            intent_tags=sorted(intent_tags),
            candidates=[
                {"backend": p.name, "score": s, "latency_ms": round(lat, 2)}
                for s, lat, _, p in ranked
            ],
        )

        self._decision_log.append(decision)
        if len(self._decision_log) > _DECISION_LOG_MAX:
            self._decision_log = self._decision_log[-(_DECISION_LOG_MAX // 2):]

        logger.info("route: tags=%s -> %s (score=%d latency=%.0fms) trace=%s",
                    sorted(intent_tags), winner.name, score, latency, decision.trace_id)
        return decision

    def select(self, request) -> BackendProfile:
        """Return the best-matching profile for *request*."""
        decision = self.decide(request)
        return self._registry.get(decision.selected_backend)

    # ---- diagnostics ------------------------------------------------------

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def decision_log(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self._decision_log]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backends": self._registry.names,
            "default": self._registry.default.name,
            "recent_decisions": len(self._decision_log),
        }
