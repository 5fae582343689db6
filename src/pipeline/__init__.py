# ABOUTME: Groups the real-time attempt update pipeline.
# ABOUTME: Re-exports the service facade, its builder, and the ordering primitives.

from .clock import MonotonicClock
from .sequencer import KeyedSequencer, Ticket
from .service import MasteryService, PipelineTrace, ReplayStep, build_service

__all__ = [
    "MonotonicClock",
    "KeyedSequencer",
    "Ticket",
    "MasteryService",
    "PipelineTrace",
    "ReplayStep",
    "build_service",
]
