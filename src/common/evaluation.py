# ABOUTME: Offline evaluation of replayed next-attempt predictions.
# ABOUTME: Computes AUC, average precision, and expected calibration error with scikit-learn.

from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import average_precision_score, roc_auc_score

DEFAULT_METRICS = ("auc", "average_precision", "calibration_ece")


def evaluate_predictions(
    predictions: pd.DataFrame,
    metrics: Iterable[str] = DEFAULT_METRICS,
    threshold: float = 0.5,
) -> Mapping[str, float]:
    """
    Score predicted P(correct) against observed correctness.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred'] plus optional metadata such as
        'student_id', 'skill_id', 'item_id'. Partial-credit ``y_true`` values
        are binarized at ``threshold``.
    metrics : Iterable[str]
        Metric identifiers: 'auc', 'average_precision', 'calibration_ece'.
    """

    metrics = list(metrics)
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    y_true = (predictions["y_true"].astype(float) >= threshold).astype(int).to_numpy()
    y_pred = predictions["y_pred"].astype(float).clip(0.0, 1.0).to_numpy()
    two_classes = len(np.unique(y_true)) == 2

    results = {}
    for metric in metrics:
        if metric == "auc":
            results[metric] = float(roc_auc_score(y_true, y_pred)) if two_classes else np.nan
        elif metric == "average_precision":
            results[metric] = float(average_precision_score(y_true, y_pred)) if y_true.any() else np.nan
        elif metric == "calibration_ece":
            results[metric] = float(expected_calibration_error(y_true, y_pred))
        else:
            raise ValueError(f"Unsupported metric '{metric}'.")
    return results


def expected_calibration_error(y_true: np.ndarray, y_pred: np.ndarray, num_bins: int = 10) -> float:
    """Weighted gap between accuracy and mean confidence over equal-width bins."""

    total = len(y_true)
    if total == 0:
        return np.nan
    # a prediction of exactly 1.0 belongs to the last bin
    bins = np.minimum((np.asarray(y_pred) * num_bins).astype(int), num_bins - 1)

    ece = 0.0
    for b in range(num_bins):
        mask = bins == b
        count = int(mask.sum())
        if count == 0:
            continue
        ece += (count / total) * abs(float(np.mean(y_true[mask])) - float(np.mean(y_pred[mask])))
    return ece
