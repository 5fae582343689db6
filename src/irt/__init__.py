# ABOUTME: Exposes the 2PL difficulty calibrator.
# ABOUTME: Groups the IRT model helpers, per-item refit, batch job, and exporters.

from .calibrate import CalibrationOutcome, fit_2pl, recalibrate
from .export import export_item_params
from .job import CalibrationJob
from .model import ideal_difficulty, mastery_to_ability, p_correct

__all__ = [
    "CalibrationOutcome",
    "fit_2pl",
    "recalibrate",
    "export_item_params",
    "CalibrationJob",
    "ideal_difficulty",
    "mastery_to_ability",
    "p_correct",
]
