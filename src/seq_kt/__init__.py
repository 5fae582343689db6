# ABOUTME: Groups the sequence-model mastery tracer.
# ABOUTME: Re-exports window encoding, the attention model, and the stateless tracer.

from .encoding import build_skill_vocab, encode_window, truncate_window
from .model import SelfAttentiveTracerModel, SequenceModelConfig, build_model, load_checkpoint, save_checkpoint
from .tracer import SequenceTracer

__all__ = [
    "build_skill_vocab",
    "encode_window",
    "truncate_window",
    "SelfAttentiveTracerModel",
    "SequenceModelConfig",
    "build_model",
    "load_checkpoint",
    "save_checkpoint",
    "SequenceTracer",
]
