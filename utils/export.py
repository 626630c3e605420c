"""
Tabular export of the latest-scores projection (pandas).
"""

from typing import Dict, List, Mapping, Optional

import pandas as pd

from models.schemas import ALL_PLATFORMS, PLATFORM_LABELS, PlatformScore, Property
from utils.scoring import format_score, property_metrics, round_score, score_tier


def scores_frame(
    properties: List[Property],
    latest: Mapping[str, Mapping[str, PlatformScore]],
    platforms: Optional[List[str]] = None,
) -> pd.DataFrame:
    """One row per property: per-platform normalized scores, weighted average, tier."""
    platforms = platforms or ALL_PLATFORMS
    rows: List[Dict] = []
    for prop in properties:
        scores = latest.get(prop.id) or {}
        avg, total_reviews = property_metrics(scores)
        row = {"name": prop.name, "city": prop.city, "state": prop.state}
        for platform in platforms:
            entry = scores.get(platform)
            label = PLATFORM_LABELS[platform]
            row[label] = round_score(entry.score) if entry else None
            row[f"{label} reviews"] = entry.count if entry else None
        row["Weighted Avg"] = round_score(avg)
        row["Total Reviews"] = total_reviews
        row["Tier"] = score_tier(avg)
        rows.append(row)

    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values("Weighted Avg", ascending=False, na_position="last").reset_index(drop=True)
    return df


def export_scores_csv(
    path: str,
    properties: List[Property],
    latest: Mapping[str, Mapping[str, PlatformScore]],
) -> int:
    df = scores_frame(properties, latest)
    df.to_csv(path, index=False)
    return len(df)


def summary_lines(df: pd.DataFrame) -> List[str]:
    """Console-friendly one-liners for the CLI."""
    lines = []
    for _, row in df.iterrows():
        avg = None if pd.isna(row["Weighted Avg"]) else row["Weighted Avg"]
        tier = "" if pd.isna(row["Tier"]) else row["Tier"]
        lines.append(
            f"  {row['name'][:40]:<40} {format_score(avg):>5}  "
            f"{int(row['Total Reviews']):>6} reviews  {tier}"
        )
    return lines
