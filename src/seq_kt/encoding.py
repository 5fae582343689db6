# ABOUTME: Converts an ordered attempt window into the tensors the sequence model consumes.
# ABOUTME: Handles skill vocabulary indexing, left padding, truncation, and elapsed-time buckets.

from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence

import numpy as np
import torch

from src.common.schemas import HistoryEntry

PAD_INDEX = 0
UNKNOWN_INDEX = 1


def build_skill_vocab(skill_ids: Iterable[str]) -> Dict[str, int]:
    """
    Map skill ids to embedding indices.

    Index 0 is reserved for padding and 1 for skills the model never saw, so
    known skills start at 2.
    """

    unique = sorted({s for s in skill_ids if s})
    return {skill: idx + 2 for idx, skill in enumerate(unique)}


def truncate_window(history: Sequence[HistoryEntry], max_window: int) -> Sequence[HistoryEntry]:
    """Keep the most recent ``max_window`` entries, most recent last."""

    if len(history) <= max_window:
        return history
    return history[-max_window:]


def bucketize_elapsed(elapsed_time: Optional[float], edges: Sequence[float]) -> int:
    """Bucket response time in seconds; 0 means unknown, buckets start at 1."""

    if elapsed_time is None or elapsed_time < 0 or np.isnan(elapsed_time):
        return 0
    return int(np.searchsorted(np.asarray(edges, dtype=np.float64), elapsed_time, side="right")) + 1


def encode_window(
    history: Sequence[HistoryEntry],
    skill_of_interest: str,
    vocab: Dict[str, int],
    max_window: int,
    elapsed_edges: Sequence[float],
) -> Dict[str, torch.Tensor]:
    """
    Encode one window into a batch of size 1.

    Sequences are left-padded to ``max_window`` so the most recent attempt
    always sits in the last slot. ``padding_mask`` is True on padded slots.
    """

    window = truncate_window(history, max_window)
    pad = max_window - len(window)

    skills = np.full(max_window, PAD_INDEX, dtype=np.int64)
    correctness = np.zeros(max_window, dtype=np.float32)
    time_buckets = np.zeros(max_window, dtype=np.int64)
    padding_mask = np.ones(max_window, dtype=bool)

    for idx, entry in enumerate(window):
        slot = pad + idx
        skills[slot] = vocab.get(entry.skill_id, UNKNOWN_INDEX)
        correctness[slot] = float(entry.correctness)
        time_buckets[slot] = bucketize_elapsed(entry.elapsed_time, elapsed_edges)
        padding_mask[slot] = False

    return {
        "skills": torch.from_numpy(skills).unsqueeze(0),
        "correctness": torch.from_numpy(correctness).unsqueeze(0),
        "time_buckets": torch.from_numpy(time_buckets).unsqueeze(0),
        "padding_mask": torch.from_numpy(padding_mask).unsqueeze(0),
        "query": torch.tensor([vocab.get(skill_of_interest, UNKNOWN_INDEX)], dtype=torch.long),
    }
