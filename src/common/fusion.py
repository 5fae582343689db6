# ABOUTME: Reconciles the BKT posterior and the sequence-model estimate into one mastery value.
# ABOUTME: Declares the estimator interface both tracers implement; blending lives only here.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from .schemas import HistoryEntry


@dataclass(frozen=True)
class MasteryEstimate:
    probability: float
    confidence: float


class MasteryEstimator(Protocol):
    """Capability shared by the Bayesian and sequence tracers."""

    def estimate_mastery(
        self, history: Sequence[HistoryEntry], skill_id: str, prior: Optional[float] = None
    ) -> MasteryEstimate: ...


def bkt_confidence(attempt_count: int, half_point: float = 5.0) -> float:
    """Trust in the closed-form estimate grows with observations: n / (n + half_point)."""

    if attempt_count <= 0:
        return 0.0
    return attempt_count / (attempt_count + half_point)


def fuse(
    bkt_posterior: float,
    seq_probability: float,
    seq_confidence: float,
    attempt_count: int = 0,
    half_point: float = 5.0,
) -> Tuple[float, float]:
    """
    Blend the two estimates.

    probability = (1 - c) * bkt + c * seq, with c the sequence confidence, so
    c == 0 returns the BKT posterior exactly. Confidence is
    max(c, bkt_confidence(attempt_count)).
    """

    if not 0.0 <= seq_confidence <= 1.0:
        raise ValueError(f"seq_confidence must be in [0, 1], got {seq_confidence}")

    probability = (1.0 - seq_confidence) * bkt_posterior + seq_confidence * seq_probability
    probability = min(1.0, max(0.0, probability))
    confidence = max(seq_confidence, bkt_confidence(attempt_count, half_point))
    return probability, confidence


@dataclass(frozen=True)
class FusionPolicy:
    """Configured fusion: binds the BKT confidence half point."""

    half_point: float = 5.0

    def fuse(
        self, bkt_posterior: float, seq_probability: float, seq_confidence: float, attempt_count: int
    ) -> Tuple[float, float]:
        return fuse(bkt_posterior, seq_probability, seq_confidence, attempt_count, self.half_point)
