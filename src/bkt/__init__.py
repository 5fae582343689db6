# ABOUTME: Exposes the Bayesian Knowledge Tracing engine.
# ABOUTME: Re-exports the closed-form update and the configured tracer.

from .tracer import BayesianTracer, emission_likelihoods, predict_correct, update

__all__ = [
    "BayesianTracer",
    "emission_likelihoods",
    "predict_correct",
    "update",
]
