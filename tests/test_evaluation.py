# ABOUTME: Tests offline evaluation metrics for replayed predictions.
# ABOUTME: Cross-checks scikit-learn metrics and the calibration error helper.

import numpy as np
import pandas as pd
import pytest
from sklearn.metrics import average_precision_score, roc_auc_score

from src.common.evaluation import evaluate_predictions, expected_calibration_error


def test_evaluate_predictions_supports_common_metrics():
    preds = pd.DataFrame(
        {
            "y_true": [1, 0, 1, 0, 1],
            "y_pred": [0.9, 0.2, 0.7, 0.4, 0.6],
        }
    )

    results = evaluate_predictions(preds, metrics=["auc", "average_precision", "calibration_ece"])

    assert results["auc"] == pytest.approx(roc_auc_score(preds["y_true"], preds["y_pred"]))
    assert results["average_precision"] == pytest.approx(average_precision_score(preds["y_true"], preds["y_pred"]))
    assert 0.0 <= results["calibration_ece"] <= 1.0


def test_partial_credit_is_binarized():
    preds = pd.DataFrame({"y_true": [0.75, 0.25], "y_pred": [0.8, 0.3]})
    assert evaluate_predictions(preds, metrics=["auc"])["auc"] == 1.0


def test_single_class_auc_is_nan():
    preds = pd.DataFrame({"y_true": [1, 1], "y_pred": [0.4, 0.6]})
    assert np.isnan(evaluate_predictions(preds, metrics=["auc"])["auc"])


def test_empty_predictions_return_nan():
    results = evaluate_predictions(pd.DataFrame(columns=["y_true", "y_pred"]))
    assert all(np.isnan(v) for v in results.values())


def test_evaluate_predictions_rejects_unknown_metric():
    preds = pd.DataFrame({"y_true": [1, 0], "y_pred": [0.6, 0.4]})
    with pytest.raises(ValueError):
        evaluate_predictions(preds, metrics=["auc", "unknown_metric"])


def test_expected_calibration_error_places_certain_predictions_in_last_bin():
    y_true = np.array([1, 1, 0, 0])
    y_pred = np.array([1.0, 1.0, 0.0, 0.0])
    assert expected_calibration_error(y_true, y_pred) == 0.0
