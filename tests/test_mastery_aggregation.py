# ABOUTME: Tests aggregation of the attempt log into per-item ability buckets.
# ABOUTME: Ensures attempts join current mastery by (student, skill) and bucket on the logit scale.

import math

import pandas as pd
import pytest

from src.common.mastery_aggregation import aggregate_item_responses, calibration_states


def test_aggregate_item_responses_buckets_by_ability():
    attempts = pd.DataFrame(
        {
            "student_id": ["u1", "u1", "u2", "u3", "u4"],
            "skill_id": ["s1", "s1", "s1", "s2", "s1"],
            "item_id": ["i1", "i2", "i1", "i3", "i1"],
            "correctness": [1.0, 0.0, 0.5, 1.0, 1.0],
        }
    )
    mastery = pd.DataFrame(
        {
            "student_id": ["u1", "u2", "u3"],
            "skill_id": ["s1", "s1", "s2"],
            "probability_mastery": [0.5, 0.55, 0.999],
        }
    )

    aggregated = aggregate_item_responses(attempts, mastery, bucket_width=0.5, mastery_clip=0.01)

    # u1 (logit 0.0) and u2 (logit 0.2) share bucket 0 on i1; u4 has no profile
    row_i1 = aggregated[aggregated["item_id"] == "i1"].iloc[0]
    assert row_i1["ability_bucket"] == 0
    assert row_i1["responses"] == 2
    assert row_i1["correct"] == 1.5
    assert row_i1["ability"] == pytest.approx(math.log(0.55 / 0.45) / 2)

    # mastery is clipped before the logit
    row_i3 = aggregated[aggregated["item_id"] == "i3"].iloc[0]
    assert row_i3["ability"] == pytest.approx(math.log(0.99 / 0.01))

    assert set(aggregated["item_id"]) == {"i1", "i2", "i3"}


def test_aggregate_item_responses_handles_empty_inputs():
    empty = aggregate_item_responses(pd.DataFrame(), pd.DataFrame())
    assert list(empty.columns) == ["item_id", "ability_bucket", "ability", "responses", "correct"]
    assert empty.empty


def test_calibration_states_group_buckets_per_item():
    responses = pd.DataFrame(
        {
            "item_id": ["i1", "i1", "i2"],
            "ability_bucket": [-1, 2, 0],
            "ability": [-0.3, 1.1, 0.2],
            "responses": [4, 6, 3],
            "correct": [1.0, 5.0, 2.0],
        }
    )

    states = calibration_states(responses)

    assert set(states) == {"i1", "i2"}
    assert states["i1"].total_responses == 10
    assert [b.ability for b in states["i1"].buckets] == [-0.3, 1.1]
