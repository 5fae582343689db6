# ABOUTME: Tests the fusion of BKT and sequence-model estimates.
# ABOUTME: Zero sequence confidence must reproduce the BKT posterior exactly.

import pytest

from src.common.fusion import FusionPolicy, bkt_confidence, fuse


@pytest.mark.parametrize("bkt_posterior", [0.0, 0.123456789, 0.5, 0.795122, 1.0])
def test_zero_sequence_confidence_returns_bkt_posterior_exactly(bkt_posterior):
    probability, _ = fuse(bkt_posterior, 0.9, 0.0, attempt_count=3)
    assert probability == bkt_posterior


def test_weighted_average_and_confidence():
    probability, confidence = fuse(0.4, 0.8, 0.25, attempt_count=5, half_point=5.0)
    assert probability == pytest.approx(0.75 * 0.4 + 0.25 * 0.8)
    assert confidence == pytest.approx(0.5)


def test_confidence_takes_sequence_confidence_when_larger():
    _, confidence = fuse(0.4, 0.8, 0.9, attempt_count=1)
    assert confidence == 0.9


def test_bkt_confidence_grows_with_attempts():
    values = [bkt_confidence(n) for n in range(0, 30)]
    assert values[0] == 0.0
    assert all(a < b for a, b in zip(values, values[1:]))
    assert bkt_confidence(5, half_point=5.0) == pytest.approx(0.5)


def test_out_of_range_confidence_rejected():
    with pytest.raises(ValueError):
        fuse(0.5, 0.5, 1.5)


def test_policy_is_deterministic():
    policy = FusionPolicy(half_point=4.0)
    first = policy.fuse(0.31, 0.72, 0.45, 7)
    second = policy.fuse(0.31, 0.72, 0.45, 7)
    assert first == second
    assert first[1] == pytest.approx(max(0.45, 7 / 11))
