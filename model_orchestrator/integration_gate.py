"""
Model Orchestrator - Integration Gate

Per-turn tier switch between the default single backend and the
tag-routed orchestrator, driven by an externally computed integration
score in [0, 1].

States:
    DEFAULT       -- turns go straight to the default backend
    ORCHESTRATED  -- turns are routed across all registered backends

Edges:
    DEFAULT      -> ORCHESTRATED   when score >= escalate_at
    ORCHESTRATED -> DEFAULT        when score <  deescalate_below

Scores inside the band keep the current tier so a score hovering near a
single threshold cannot make the tier oscillate.
"""

import logging
import math
from enum import Enum
from typing import Any, Dict

logger = logging.getLogger("model-orchestrator.integration-gate")

ESCALATE_AT = 0.5
DEESCALATE_BELOW = 0.2


class ActiveTier(str, Enum):
    DEFAULT = "default"
    ORCHESTRATED = "orchestrated"


def next_tier(score: float, current: ActiveTier,
              escalate_at: float = ESCALATE_AT,
              deescalate_below: float = DEESCALATE_BELOW) -> ActiveTier:
    """Pure transition function of the gate."""
    if score is None or math.isnan(score) or not 0.0 <= score <= 1.0:
        raise ValueError(f"integration score must be within [0, 1], got {score!r}")
    if score >= escalate_at:
        return ActiveTier.ORCHESTRATED
    if score < deescalate_below:
        return ActiveTier.DEFAULT
    return current


class IntegrationGate:
    """Stateful hysteresis gate; one instance per conversation."""

    def __init__(self, escalate_at: float = ESCALATE_AT,
                 deescalate_below: float = DEESCALATE_BELOW,
                 initial: ActiveTier = ActiveTier.DEFAULT):
        if not 0.0 <= deescalate_below <= escalate_at <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= deescalate_below <= escalate_at <= 1")
        self.escalate_at = escalate_at
        self.deescalate_below = deescalate_below
        self._tier = ActiveTier(initial)
        self._transitions = 0

    @property
    def tier(self) -> ActiveTier:
        return self._tier

    @property
    def transitions(self) -> int:
        return self._transitions

    def observe(self, score: float) -> ActiveTier:
        """Feed one turn's score and return the tier for the next turn."""
        target = next_tier(score, self._tier, self.escalate_at, self.deescalate_below)
        if target != self._tier:
            logger.info("gate: %s -> %s (score=%.3f)", self._tier.value, target.value, score)
            self._tier = target
            self._transitions += 1
        return self._tier

    def reset(self, tier: ActiveTier = ActiveTier.DEFAULT) -> None:
        self._tier = ActiveTier(tier)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self._tier.value,
            "escalate_at": self.escalate_at,
            "deescalate_below": self.deescalate_below,
            "transitions": self._transitions,
        }
