# ABOUTME: Aggregates the attempt log against a mastery snapshot into per-item calibration states.
# ABOUTME: Buckets each response by the respondent's current ability proxy on the item's skill.

from __future__ import annotations

from typing import Dict, Mapping, Tuple

import numpy as np
import pandas as pd

from .schemas import AbilityBucket, CalibrationState, MasteryProfile

PROFILE_COLUMNS = ["student_id", "skill_id", "probability_mastery", "confidence", "last_update", "attempt_count"]
RESPONSE_COLUMNS = ["item_id", "ability_bucket", "ability", "responses", "correct"]


def profiles_to_frame(snapshot: Mapping[Tuple[str, str], MasteryProfile]) -> pd.DataFrame:
    rows = [
        {
            "student_id": p.student_id,
            "skill_id": p.skill_id,
            "probability_mastery": p.probability_mastery,
            "confidence": p.confidence,
            "last_update": p.last_update,
            "attempt_count": p.attempt_count,
        }
        for p in snapshot.values()
    ]
    if not rows:
        return pd.DataFrame(columns=PROFILE_COLUMNS)
    return pd.DataFrame(rows, columns=PROFILE_COLUMNS).sort_values(["student_id", "skill_id"], kind="mergesort")


def aggregate_item_responses(
    attempts_df: pd.DataFrame,
    mastery_df: pd.DataFrame,
    bucket_width: float = 0.5,
    mastery_clip: float = 0.01,
) -> pd.DataFrame:
    """
    Bucket responses per item by respondent ability.

    Steps:
    - Join every attempt with the respondent's current mastery on (student_id, skill_id).
    - Convert mastery to ability via the logit of the clipped probability.
    - Group by (item_id, ability bucket) and sum responses and correctness.

    Attempts whose respondent has no committed profile yet are skipped.
    """

    if attempts_df is None or mastery_df is None or attempts_df.empty or mastery_df.empty:
        return pd.DataFrame(columns=RESPONSE_COLUMNS)

    joined = attempts_df[["student_id", "skill_id", "item_id", "correctness"]].merge(
        mastery_df[["student_id", "skill_id", "probability_mastery"]],
        on=["student_id", "skill_id"],
        how="inner",
        validate="many_to_one",
    )
    if joined.empty:
        return pd.DataFrame(columns=RESPONSE_COLUMNS)

    clipped = joined["probability_mastery"].astype(float).clip(mastery_clip, 1.0 - mastery_clip)
    joined["ability"] = np.log(clipped / (1.0 - clipped))
    joined["ability_bucket"] = np.floor(joined["ability"] / bucket_width).astype(int)

    grouped = (
        joined.groupby(["item_id", "ability_bucket"])
        .agg(
            ability=("ability", "mean"),
            responses=("correctness", "count"),
            correct=("correctness", "sum"),
        )
        .reset_index()
        .sort_values(["item_id", "ability_bucket"], kind="mergesort")
    )
    return grouped[RESPONSE_COLUMNS]


def calibration_states(responses_df: pd.DataFrame) -> Dict[str, CalibrationState]:
    """Group bucketed responses into one CalibrationState per item."""

    states: Dict[str, CalibrationState] = {}
    for item_id, item_df in responses_df.groupby("item_id", sort=True):
        states[str(item_id)] = CalibrationState(
            item_id=str(item_id),
            buckets=[
                AbilityBucket(
                    ability=float(row["ability"]),
                    responses=int(row["responses"]),
                    correct=float(row["correct"]),
                )
                for _, row in item_df.iterrows()
            ],
        )
    return states
