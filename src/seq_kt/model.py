# ABOUTME: Declares the self-attentive sequence model behind the sequence tracer.
# ABOUTME: Provides checkpoint save/load and deterministic construction of frozen inference weights.

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Tuple

import torch
from torch import nn


@dataclass(frozen=True)
class SequenceModelConfig:
    """Architecture values stored alongside the weights in a checkpoint."""

    num_skills: int
    max_window: int
    embedding_dim: int = 32
    num_heads: int = 2
    num_time_buckets: int = 8


class SelfAttentiveTracerModel(nn.Module):
    """
    SAKT-style tracer.

    Keys/values are interaction embeddings (skill + scaled correctness +
    elapsed-time bucket + position); the query is the embedding of the skill
    of interest. The attended state is mapped to P(mastery) with a sigmoid.
    """

    def __init__(self, config: SequenceModelConfig):
        super().__init__()
        self.config = config
        dim = config.embedding_dim

        self.skill_embedding = nn.Embedding(config.num_skills, dim, padding_idx=0)
        self.query_embedding = nn.Embedding(config.num_skills, dim, padding_idx=0)
        self.time_embedding = nn.Embedding(config.num_time_buckets, dim, padding_idx=0)
        self.position_embedding = nn.Embedding(config.max_window, dim)
        self.correct_proj = nn.Linear(1, dim)

        self.attention = nn.MultiheadAttention(dim, config.num_heads, batch_first=True)
        self.norm = nn.LayerNorm(dim)
        self.ffn = nn.Sequential(nn.Linear(dim, dim), nn.ReLU(), nn.Linear(dim, dim))
        self.head = nn.Linear(dim, 1)

    def forward(self, batch: Dict[str, torch.Tensor]) -> torch.Tensor:
        """Return P(mastery of the queried skill), shape (batch,)."""

        skills = batch["skills"]
        positions = torch.arange(skills.shape[1], device=skills.device).unsqueeze(0)
        interactions = (
            self.skill_embedding(skills)
            + self.correct_proj(batch["correctness"].unsqueeze(-1))
            + self.time_embedding(batch["time_buckets"])
            + self.position_embedding(positions)
        )
        query = self.query_embedding(batch["query"]).unsqueeze(1)

        attended, _ = self.attention(
            query, interactions, interactions, key_padding_mask=batch["padding_mask"], need_weights=False
        )
        state = self.norm(attended + query)
        state = self.norm(state + self.ffn(state))
        return torch.sigmoid(self.head(state)).view(-1)


def build_model(config: SequenceModelConfig, seed: int) -> SelfAttentiveTracerModel:
    """Construct a frozen model with reproducible weights, without touching the global RNG."""

    with torch.random.fork_rng(devices=[]):
        torch.manual_seed(seed)
        model = SelfAttentiveTracerModel(config)
    return freeze(model)


def freeze(model: SelfAttentiveTracerModel) -> SelfAttentiveTracerModel:
    model.eval()
    for param in model.parameters():
        param.requires_grad_(False)
    return model


def save_checkpoint(model: SelfAttentiveTracerModel, skill_vocab: Dict[str, int], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    torch.save(
        {
            "model_state_dict": model.state_dict(),
            "model_config": asdict(model.config),
            "data_config": {"skill_vocab": dict(skill_vocab)},
        },
        path,
    )
    return path


def load_checkpoint(path: Path) -> Tuple[SelfAttentiveTracerModel, Dict[str, int]]:
    """Rebuild the model from a checkpoint written by ``save_checkpoint``."""

    checkpoint = torch.load(path, map_location="cpu", weights_only=False)
    config = SequenceModelConfig(**checkpoint["model_config"])
    model = SelfAttentiveTracerModel(config)
    model.load_state_dict(checkpoint["model_state_dict"])
    vocab = {str(k): int(v) for k, v in checkpoint["data_config"]["skill_vocab"].items()}
    return freeze(model), vocab
