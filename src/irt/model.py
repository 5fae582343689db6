# ABOUTME: Two-parameter logistic IRT helpers shared by calibration and item selection.
# ABOUTME: Maps mastery probabilities onto the ability scale and back.

from __future__ import annotations

import math

import numpy as np


def p_correct(ability, difficulty, discrimination=1.0):
    """P(correct) = 1 / (1 + exp(-a * (theta - b))). Accepts scalars or arrays."""

    z = np.clip(np.multiply(discrimination, np.subtract(ability, difficulty)), -500, 500)
    result = 1.0 / (1.0 + np.exp(-z))
    if np.ndim(result) == 0:
        return float(result)
    return result


def mastery_to_ability(probability: float, clip: float = 0.01) -> float:
    """Logit of the clipped mastery probability, used as the ability proxy."""

    return logit(min(1.0 - clip, max(clip, probability)))


def logit(p: float) -> float:
    return math.log(p / (1.0 - p))


def ideal_difficulty(ability: float, discrimination: float, target_success: float) -> float:
    """Difficulty at which the 2PL model predicts ``target_success`` for ``ability``."""

    return ability - logit(target_success) / discrimination
