# ABOUTME: Fits per-item 2PL difficulty/discrimination from ability-bucketed responses.
# ABOUTME: Keeps previous parameters and flags low confidence on sparse data or non-convergence.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from src.common.config import CalibrationConfig
from src.common.schemas import CalibrationState, Item

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationOutcome:
    """Result of one item refit. ``low_confidence`` items keep their previous parameters."""

    item_id: str
    difficulty: float
    discrimination: float
    converged: bool
    low_confidence: bool
    iterations: int
    responses: int
    reason: str = ""


@dataclass(frozen=True)
class FitResult:
    discrimination: float
    difficulty: float
    converged: bool
    iterations: int


def fit_2pl(
    abilities: np.ndarray,
    responses: np.ndarray,
    corrects: np.ndarray,
    init_discrimination: float,
    init_difficulty: float,
    config: CalibrationConfig,
) -> FitResult:
    """
    Newton-Raphson on the binomial 2PL log-likelihood over ability buckets.

    The model is fitted as logit P = a * theta + c (so b = -c / a), which is
    concave in (a, c). A ridge of strength ``config.ridge`` anchored at the
    starting parameters keeps separable data finite. Iteration stops when
    both parameter deltas fall below ``config.epsilon``.
    """

    abilities = np.asarray(abilities, dtype=np.float64)
    n = np.asarray(responses, dtype=np.float64)
    y = np.asarray(corrects, dtype=np.float64)
    design = np.column_stack([abilities, np.ones_like(abilities)])

    anchor = np.array([init_discrimination, -init_discrimination * init_difficulty], dtype=np.float64)
    beta = anchor.copy()
    ridge = config.ridge * np.eye(2)

    for iteration in range(1, config.max_iterations + 1):
        z = np.clip(design @ beta, -30.0, 30.0)
        p = 1.0 / (1.0 + np.exp(-z))
        gradient = design.T @ (y - n * p) - ridge @ (beta - anchor)
        weights = n * p * (1.0 - p)
        hessian = -(design.T * weights) @ design - ridge
        try:
            step = np.linalg.solve(hessian, gradient)
        except np.linalg.LinAlgError:
            return FitResult(float(beta[0]), _difficulty(beta), False, iteration)

        # Cap the step; nearly separable buckets overshoot.
        largest = float(np.max(np.abs(step)))
        if largest > 2.0:
            step = step * (2.0 / largest)

        updated = beta - step
        delta = np.abs(updated - beta)
        beta = updated
        if not np.all(np.isfinite(beta)):
            return FitResult(float("nan"), float("nan"), False, iteration)
        if float(np.max(delta)) < config.epsilon:
            return FitResult(float(beta[0]), _difficulty(beta), True, iteration)

    return FitResult(float(beta[0]), _difficulty(beta), False, config.max_iterations)


def _difficulty(beta: np.ndarray) -> float:
    if abs(beta[0]) < 1e-12:
        return float("nan")
    return float(-beta[1] / beta[0])


def recalibrate(item: Item, state: Optional[CalibrationState], config: CalibrationConfig) -> CalibrationOutcome:
    """
    Refit one item. Never raises for data problems: the outcome carries the
    previous parameters with ``low_confidence`` set instead.
    """

    total = state.total_responses if state is not None else 0
    if total < config.min_responses:
        reason = f"insufficient data ({total} < {config.min_responses} responses)"
        logger.warning("Calibration skipped for item %s: %s", item.item_id, reason)
        return _retain(item, total, reason, iterations=0)

    abilities = np.array([b.ability for b in state.buckets], dtype=np.float64)
    responses = np.array([b.responses for b in state.buckets], dtype=np.float64)
    corrects = np.array([b.correct for b in state.buckets], dtype=np.float64)

    populated = len(np.unique(abilities[responses > 0]))
    if populated < 2:
        reason = f"responses span {populated} ability bucket(s); need at least 2 to identify (a, b)"
        logger.warning("Calibration skipped for item %s: %s", item.item_id, reason)
        return _retain(item, total, reason, iterations=0)

    fit = fit_2pl(abilities, responses, corrects, item.discrimination, item.difficulty, config)
    if not fit.converged:
        reason = f"no convergence after {fit.iterations} iterations"
        logger.warning("Calibration did not converge for item %s; keeping previous parameters", item.item_id)
        return _retain(item, total, reason, fit.iterations)

    within, why = _within_bounds(fit, config)
    if not within:
        logger.warning("Calibration for item %s out of bounds (%s); keeping previous parameters", item.item_id, why)
        return _retain(item, total, why, fit.iterations)

    return CalibrationOutcome(
        item_id=item.item_id,
        difficulty=fit.difficulty,
        discrimination=fit.discrimination,
        converged=True,
        low_confidence=False,
        iterations=fit.iterations,
        responses=total,
    )


def _within_bounds(fit: FitResult, config: CalibrationConfig) -> Tuple[bool, str]:
    a_lo, a_hi = config.discrimination_bounds
    b_lo, b_hi = config.difficulty_bounds
    if not a_lo <= fit.discrimination <= a_hi:
        return False, f"discrimination {fit.discrimination:.3f} outside [{a_lo}, {a_hi}]"
    if not b_lo <= fit.difficulty <= b_hi:
        return False, f"difficulty {fit.difficulty:.3f} outside [{b_lo}, {b_hi}]"
    return True, ""


def _retain(item: Item, responses: int, reason: str, iterations: int) -> CalibrationOutcome:
    return CalibrationOutcome(
        item_id=item.item_id,
        difficulty=item.difficulty,
        discrimination=item.discrimination,
        converged=False,
        low_confidence=True,
        iterations=iterations,
        responses=responses,
        reason=reason,
    )
