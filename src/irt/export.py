# ABOUTME: Exports calibrated item parameters and a markdown health summary.
# ABOUTME: Writes parquet artifacts consumed by reports and the demo CLI.

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import numpy as np
import pandas as pd

from src.common.schemas import Item

logger = logging.getLogger(__name__)

ITEM_COLUMNS = [
    "item_id",
    "skill_id",
    "difficulty",
    "discrimination",
    "exposure_count",
    "deprecated",
    "low_confidence",
    "calibrated_at",
]


def items_to_frame(items: Mapping[str, Item]) -> pd.DataFrame:
    rows = [
        {
            "item_id": item.item_id,
            "skill_id": item.skill_id,
            "difficulty": float(item.difficulty),
            "discrimination": float(item.discrimination),
            "exposure_count": int(item.exposure_count),
            "deprecated": bool(item.deprecated),
            "low_confidence": bool(item.calibration_low_confidence),
            "calibrated_at": item.calibrated_at,
        }
        for item in items.values()
    ]
    if not rows:
        return pd.DataFrame(columns=ITEM_COLUMNS)
    return pd.DataFrame(rows, columns=ITEM_COLUMNS).sort_values("item_id").reset_index(drop=True)


def compute_drift_flags(item_params_df: pd.DataFrame, threshold: float = 2.0) -> pd.DataFrame:
    """Flag items whose difficulty z-score within the bank exceeds ``threshold``."""

    difficulties = item_params_df["difficulty"].astype(float)
    std = float(difficulties.std(ddof=0)) if len(difficulties) > 1 else 0.0
    if std == 0.0 or np.isnan(std):
        scores = pd.Series(0.0, index=item_params_df.index)
    else:
        scores = (difficulties - difficulties.mean()).abs() / std
    return pd.DataFrame(
        {
            "item_id": item_params_df["item_id"].values,
            "drift_flag": [bool(s > threshold) for s in scores],
            "drift_score": scores.astype(float).values,
        }
    )


def export_item_params(items: Mapping[str, Item], output_dir: Path, drift_threshold: float = 2.0) -> pd.DataFrame:
    """Write item_params.parquet and item_health.md; return the exported frame."""

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    params_df = items_to_frame(items)
    if not params_df.empty:
        params_df = params_df.merge(compute_drift_flags(params_df, drift_threshold), on="item_id", how="left")
    params_path = output_dir / "item_params.parquet"
    params_df.to_parquet(params_path, index=False)
    logger.info("Exported %d item parameters to %s", len(params_df), params_path)

    _write_health_summary(params_df, output_dir / "item_health.md")
    return params_df


def _write_health_summary(params_df: pd.DataFrame, output_path: Path) -> None:
    """Markdown report summarizing calibration health by skill."""

    with open(output_path, "w") as f:
        f.write("# Item Calibration Health\n\n")
        f.write(f"Total items: {len(params_df)}\n\n")
        if params_df.empty:
            return

        f.write("## Difficulty Distribution\n\n")
        f.write(f"- Mean difficulty: {params_df['difficulty'].mean():.3f}\n")
        f.write(f"- Min difficulty: {params_df['difficulty'].min():.3f}\n")
        f.write(f"- Max difficulty: {params_df['difficulty'].max():.3f}\n\n")

        f.write("## Items by Skill\n\n")
        for skill_id, count in params_df["skill_id"].value_counts().sort_index().items():
            f.write(f"- {skill_id}: {count} items\n")

        flagged = params_df[params_df["low_confidence"]]
        f.write(f"\n## Low-Confidence Calibrations ({len(flagged)})\n\n")
        if not flagged.empty:
            f.write("| item_id | skill_id | difficulty | discrimination | exposure_count |\n")
            f.write("|---------|----------|------------|----------------|----------------|\n")
            for _, row in flagged.iterrows():
                f.write(
                    f"| {row['item_id']} | {row['skill_id']} | {row['difficulty']:.3f} | "
                    f"{row['discrimination']:.3f} | {row['exposure_count']} |\n"
                )
