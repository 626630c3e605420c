"""
Score normalization and review-count weighting.

  normalized = (raw_score / scale) * 10

  weighted_average = Σ(score × weight) / Σ(weight)

The weight is always a review count. A pair with weight ≤ 0 or score ≤ 0
is dropped: a zero normalized score is read as missing data, not as a
real rating (every source scale is strictly positive for a found rating).
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Tuple

import numpy as np

from models.schemas import PLATFORM_SCALES, PlatformScore, FOUND


def normalize(raw_score: float, scale: float) -> float:
    """Rescale a platform rating onto 0–10. Callers must not pass scale 0."""
    return (raw_score / scale) * 10


def normalize_for_platform(raw_score: float, platform: str) -> float:
    return normalize(raw_score, PLATFORM_SCALES[platform])


def _valid_pairs(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> np.ndarray:
    rows = [
        (float(score), float(weight))
        for score, weight in pairs
        if score is not None and weight is not None and score > 0 and weight > 0
    ]
    return np.array(rows, dtype=float).reshape(-1, 2)


def weighted_average(pairs: Iterable[Tuple[Optional[float], Optional[float]]]) -> Optional[float]:
    """
    Review-count weighted mean of (normalized_score, weight) pairs.
    Returns None when no pair survives filtering.
    """
    valid = _valid_pairs(pairs)
    if valid.shape[0] == 0:
        return None
    return float(np.average(valid[:, 0], weights=valid[:, 1]))


def property_metrics(
    platform_scores: Optional[Mapping[str, PlatformScore]],
) -> Tuple[Optional[float], int]:
    """
    Weighted average and total review count across a property's latest
    per-platform scores. Only contributing platforms count toward the total.
    """
    if not platform_scores:
        return None, 0

    pairs = [
        (s.score, s.count)
        for s in platform_scores.values()
        if s.status == FOUND
    ]
    valid = _valid_pairs(pairs)
    if valid.shape[0] == 0:
        return None, 0
    total_reviews = int(valid[:, 1].sum())
    return float(np.average(valid[:, 0], weights=valid[:, 1])), total_reviews


def round_score(score: Optional[float]) -> Optional[float]:
    return None if score is None else round(score, 2)


SCORE_TIERS = [
    (9.0, "Wonderful"),
    (8.0, "Very Good"),
    (7.0, "Good"),
    (6.0, "Pleasant"),
]


def score_tier(score: Optional[float]) -> Optional[str]:
    if score is None:
        return None
    for threshold, label in SCORE_TIERS:
        if score >= threshold:
            return label
    return "Needs Work"


def format_score(score: Optional[float]) -> str:
    if score is None:
        return "—"
    return f"{score:.1f}"

