"""
Score normalization, weighting and tiers.
Run with: python -m pytest tests/ -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime

import pytest

from models.schemas import BOOKING, FOUND, GOOGLE, NOT_LISTED, PlatformScore
from utils.scoring import (
    format_score, normalize, normalize_for_platform, property_metrics,
    round_score, score_tier, weighted_average,
)


def _score(score, count, status=FOUND):
    return PlatformScore(score=score, count=count, updated=datetime.utcnow(), status=status)


# ─── Normalization ───────────────────────────────────────────────────────────

class TestNormalize:
    @pytest.mark.parametrize("raw, scale, expected", [
        (4.5, 5.0, 9.0),
        (8.8, 10.0, 8.8),
        (5.0, 5.0, 10.0),
        (0.0, 10.0, 0.0),
    ])
    def test_rescales_to_ten(self, raw, scale, expected):
        assert normalize(raw, scale) == pytest.approx(expected)

    def test_monotonic_in_score(self):
        values = [normalize(raw / 10, 5.0) for raw in range(0, 51)]
        assert values == sorted(values)

    def test_platform_scales(self):
        assert normalize_for_platform(4.0, GOOGLE) == pytest.approx(8.0)
        assert normalize_for_platform(8.0, BOOKING) == pytest.approx(8.0)


# ─── Weighted average ────────────────────────────────────────────────────────

class TestWeightedAverage:
    def test_empty_is_none(self):
        assert weighted_average([]) is None

    def test_all_zero_weights_is_none(self):
        assert weighted_average([(9.0, 0), (7.0, 0)]) is None

    def test_review_weighting(self):
        expected = (9.0 * 1000 + 6.0 * 10) / 1010
        assert weighted_average([(9.0, 1000), (6.0, 10)]) == pytest.approx(expected)
        assert round_score(weighted_average([(9.0, 1000), (6.0, 10)])) == 8.97

    def test_zero_and_missing_scores_are_dropped(self):
        assert weighted_average([(0.0, 500), (None, 20), (8.0, 100)]) == pytest.approx(8.0)


class TestPropertyMetrics:
    def test_only_found_scores_contribute(self):
        scores = {
            "google": _score(9.0, 300),
            "booking": _score(8.0, 100),
            "expedia": _score(None, 0, status=NOT_LISTED),
        }
        avg, total = property_metrics(scores)
        assert avg == pytest.approx((9.0 * 300 + 8.0 * 100) / 400)
        assert total == 400

    def test_no_scores(self):
        assert property_metrics(None) == (None, 0)
        assert property_metrics({"google": _score(None, 0, status=NOT_LISTED)}) == (None, 0)


# ─── Display helpers ─────────────────────────────────────────────────────────

class TestDisplay:
    @pytest.mark.parametrize("score, tier", [
        (9.3, "Wonderful"),
        (8.0, "Very Good"),
        (7.5, "Good"),
        (6.1, "Pleasant"),
        (4.0, "Needs Work"),
        (None, None),
    ])
    def test_score_tier(self, score, tier):
        assert score_tier(score) == tier

    def test_format_score(self):
        assert format_score(8.666) == "8.7"
        assert format_score(None) == "—"
