# ABOUTME: Closed-form Bayesian Knowledge Tracing update with partial credit and forgetting.
# ABOUTME: Looks up per-skill parameters from config and exposes the shared estimator interface.

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from src.common.config import BKTConfig, BKTParams
from src.common.fusion import MasteryEstimate, bkt_confidence
from src.common.schemas import HistoryEntry


def emission_likelihoods(correctness: float, params: BKTParams) -> Tuple[float, float]:
    """
    Likelihood of the observation under the mastered and unmastered states.

    Partial credit interpolates linearly between the fully-correct and
    fully-incorrect likelihoods:
        L_mastered   = c * (1 - slip) + (1 - c) * slip
        L_unmastered = c * guess      + (1 - c) * (1 - guess)
    """

    c = correctness
    mastered = c * (1.0 - params.p_slip) + (1.0 - c) * params.p_slip
    unmastered = c * params.p_guess + (1.0 - c) * (1.0 - params.p_guess)
    return mastered, unmastered


def update(prior: float, correctness: float, params: BKTParams) -> float:
    """
    One BKT step: Bayes' rule on the observation, then the learn/forget transition.

        P(m | obs) = prior * L_m / (prior * L_m + (1 - prior) * L_u)
        posterior  = P(m | obs) * (1 - forget) + (1 - P(m | obs)) * learn

    The returned value is the prior for the next attempt, clipped to [0, 1].
    """

    params.validate()
    if not 0.0 <= prior <= 1.0:
        raise ValueError(f"prior must be in [0, 1], got {prior}")
    if not 0.0 <= correctness <= 1.0:
        raise ValueError(f"correctness must be in [0, 1], got {correctness}")

    l_mastered, l_unmastered = emission_likelihoods(correctness, params)
    evidence = prior * l_mastered + (1.0 - prior) * l_unmastered
    conditioned = prior * l_mastered / evidence

    posterior = conditioned * (1.0 - params.p_forget) + (1.0 - conditioned) * params.p_learn
    return _clip(posterior)


def predict_correct(prior: float, params: BKTParams) -> float:
    """P(correct) = P(m) * (1 - slip) + (1 - P(m)) * guess."""

    return _clip(prior * (1.0 - params.p_slip) + (1.0 - prior) * params.p_guess)


def _clip(value: float) -> float:
    return min(1.0, max(0.0, value))


class BayesianTracer:
    """Per-skill BKT estimator backed by configuration."""

    def __init__(self, config: BKTConfig, confidence_half_point: float = 5.0):
        self.config = config
        self.confidence_half_point = confidence_half_point
        config.defaults.validate()
        for skill_id, params in config.skills.items():
            params.validate(skill_id)

    def params_for(self, skill_id: str) -> BKTParams:
        return self.config.params_for(skill_id)

    def prior_for(self, skill_id: str) -> float:
        return self.params_for(skill_id).prior

    def update(self, prior: float, correctness: float, skill_id: str) -> float:
        return update(prior, correctness, self.params_for(skill_id))

    def confidence(self, attempt_count: int) -> float:
        return bkt_confidence(attempt_count, self.confidence_half_point)

    def estimate_mastery(
        self,
        history: Sequence[HistoryEntry],
        skill_id: str,
        prior: Optional[float] = None,
    ) -> MasteryEstimate:
        """Fold the skill's observations through ``update`` starting from the prior."""

        probability = self.prior_for(skill_id) if prior is None else prior
        count = 0
        for entry in history:
            if entry.skill_id != skill_id:
                continue
            probability = self.update(probability, entry.correctness, skill_id)
            count += 1
        return MasteryEstimate(probability=probability, confidence=self.confidence(count))
