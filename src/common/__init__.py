# ABOUTME: Makes the shared common package importable across engines.
# ABOUTME: Re-exports schema types, errors, and configuration loaders for convenience.

from .config import EngineConfig, load_engine_config
from .errors import (
    ConfigurationError,
    DegradedModeWarning,
    InsufficientHistoryError,
    KnowledgeTracingError,
    NoEligibleItemError,
    SkillGraphError,
    StaleWriteError,
    ValidationError,
)
from .evaluation import evaluate_predictions
from .schemas import Attempt, AttemptResult, HistoryEntry, Item, MasteryProfile, Skill

__all__ = [
    "EngineConfig",
    "load_engine_config",
    "ConfigurationError",
    "DegradedModeWarning",
    "InsufficientHistoryError",
    "KnowledgeTracingError",
    "NoEligibleItemError",
    "SkillGraphError",
    "StaleWriteError",
    "ValidationError",
    "evaluate_predictions",
    "Attempt",
    "AttemptResult",
    "HistoryEntry",
    "Item",
    "MasteryProfile",
    "Skill",
]
