# ABOUTME: Stateless sequence tracer: a pure function of the supplied attempt window.
# ABOUTME: Loads process-wide read-only weights once and reports window-length confidence.

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

import torch

from src.common.config import SequenceConfig
from src.common.errors import ConfigurationError, InsufficientHistoryError
from src.common.fusion import MasteryEstimate
from src.common.schemas import HistoryEntry

from .encoding import build_skill_vocab, encode_window, truncate_window
from .model import SelfAttentiveTracerModel, SequenceModelConfig, build_model, load_checkpoint

logger = logging.getLogger(__name__)


class SequenceTracer:
    """
    Wraps the frozen sequence model behind ``infer``.

    Callers never hold model state between requests: every call re-reads the
    full window. The model is never mutated after construction.
    """

    def __init__(self, model: SelfAttentiveTracerModel, skill_vocab: Dict[str, int], config: SequenceConfig):
        if model.training:
            raise ConfigurationError("Sequence model must be in eval mode for inference")
        if model.config.max_window < config.max_window:
            raise ConfigurationError(
                f"Model window {model.config.max_window} is shorter than sequence.max_window {config.max_window}"
            )
        if model.config.num_time_buckets < len(config.elapsed_time_edges) + 2:
            raise ConfigurationError("Sequence model has fewer time buckets than sequence.elapsed_time_edges implies")
        self.model = model
        self.skill_vocab = dict(skill_vocab)
        self.config = config

    @classmethod
    def from_config(cls, config: SequenceConfig, skill_ids: Iterable[str]) -> "SequenceTracer":
        """Load the checkpoint named in config, or build seeded weights over ``skill_ids``."""

        if config.checkpoint_path:
            path = Path(config.checkpoint_path)
            if not path.exists():
                raise ConfigurationError(f"Sequence checkpoint not found at {path}")
            model, vocab = load_checkpoint(path)
            logger.info("Loaded sequence model from %s (%d skills)", path, len(vocab))
            return cls(model, vocab, config)

        vocab = build_skill_vocab(skill_ids)
        model_config = SequenceModelConfig(
            num_skills=len(vocab) + 2,
            max_window=config.max_window,
            embedding_dim=config.embedding_dim,
            num_heads=config.num_heads,
            num_time_buckets=len(config.elapsed_time_edges) + 2,
        )
        model = build_model(model_config, seed=config.seed)
        logger.info("Built seeded sequence model (seed=%d, %d skills)", config.seed, len(vocab))
        return cls(model, vocab, config)

    def confidence(self, window_length: int) -> float:
        """Monotone in window length, saturating at ``confidence_saturation`` attempts."""

        if window_length <= 0:
            return 0.0
        return min(window_length / self.config.confidence_saturation, 1.0)

    def infer(self, history: Sequence[HistoryEntry], skill_of_interest: str) -> Tuple[float, float]:
        """Return (probability, confidence) for the skill of interest."""

        if not history:
            raise InsufficientHistoryError(f"No history to trace skill '{skill_of_interest}'")

        window = truncate_window(history, self.config.max_window)
        batch = encode_window(
            window,
            skill_of_interest,
            self.skill_vocab,
            self.model.config.max_window,
            self.config.elapsed_time_edges,
        )
        with torch.no_grad():
            probability = float(self.model(batch)[0])
        probability = min(1.0, max(0.0, probability))
        return probability, self.confidence(len(window))

    def estimate_mastery(
        self,
        history: Sequence[HistoryEntry],
        skill_id: str,
        prior: Optional[float] = None,
    ) -> MasteryEstimate:
        """Same contract as ``infer`` but maps missing history to the prior with zero confidence."""

        try:
            probability, confidence = self.infer(history, skill_id)
        except InsufficientHistoryError:
            return MasteryEstimate(probability=prior if prior is not None else 0.0, confidence=0.0)
        return MasteryEstimate(probability=probability, confidence=confidence)
