"""
Group and portfolio roll-ups.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime

import pytest

from agents.aggregator import GroupAggregator, group_metrics, portfolio_metrics, sort_by_score
from conftest import make_property, run
from db.repository import NotFoundError
from models.schemas import (
    BOOKING, GOOGLE, Group, GroupMetrics, NOT_LISTED, PlatformScore, Snapshot,
)


def _entry(score, count, status="found"):
    return PlatformScore(score=score, count=count, updated=datetime.utcnow(), status=status)


@pytest.fixture
def latest():
    return {
        "a": {GOOGLE: _entry(9.0, 500)},
        "b": {GOOGLE: _entry(7.0, 60), BOOKING: _entry(7.0, 40)},
        "c": {BOOKING: _entry(None, 0, status=NOT_LISTED)},
    }


class TestGroupMetrics:
    def test_two_level_weighting(self, latest):
        metrics = group_metrics("g1", ["a", "b"], latest)
        assert metrics.avg_score == pytest.approx((9.0 * 500 + 7.0 * 100) / 600)
        assert round(metrics.avg_score, 2) == 8.67
        assert metrics.total_reviews == 600
        assert metrics.total_properties == 2

    def test_unscored_members_are_left_out(self, latest):
        metrics = group_metrics("g1", ["a", "c", "missing"], latest)
        assert metrics.avg_score == pytest.approx(9.0)
        assert metrics.total_reviews == 500
        assert metrics.total_properties == 3

    def test_no_scores(self, latest):
        assert group_metrics("g1", ["c"], latest).avg_score is None

    def test_sort_puts_unscored_last(self):
        groups = [Group("g1", "Empty"), Group("g2", "Good"), Group("g3", "Best")]
        metrics = {
            "g1": GroupMetrics("g1", None, 0, 0),
            "g2": GroupMetrics("g2", 7.5, 1, 10),
            "g3": GroupMetrics("g3", 9.1, 1, 10),
        }
        assert [g.id for g in sort_by_score(groups, metrics)] == ["g3", "g2", "g1"]

    def test_portfolio_single_platform(self, latest):
        metrics = portfolio_metrics(latest, GOOGLE)
        assert metrics.avg_score == pytest.approx((9.0 * 500 + 7.0 * 60) / 560)
        assert metrics.total_properties == 2
        assert portfolio_metrics(latest, BOOKING).total_reviews == 40


class TestGroupAggregator:
    def _seed(self, repository, add_properties):
        add_properties(make_property("a"), make_property("b"))
        for pid, score, count in (("a", 9.0, 500), ("b", 7.0, 100)):
            run(repository.insert_snapshot(Snapshot(
                property_id=pid, platform=GOOGLE, score_raw=score / 2, score_scale=5.0,
                review_count=count, normalized_score=score,
            )))
        group = run(repository.create_group("Portfolio"))
        run(repository.add_group_member(group.id, "a"))
        run(repository.add_group_member(group.id, "b"))
        return group

    def test_snapshot_persisted(self, repository, add_properties):
        group = self._seed(repository, add_properties)
        snapshot = run(GroupAggregator(repository).refresh_group_snapshot(group.id))
        assert snapshot.weighted_score == 8.67
        assert snapshot.total_reviews == 600
        assert len(run(repository.list_group_snapshots(group.id))) == 1

    def test_empty_group_writes_nothing(self, repository):
        group = run(repository.create_group("Empty"))
        assert run(GroupAggregator(repository).refresh_group_snapshot(group.id)) is None
        assert run(repository.list_group_snapshots(group.id)) == []

    def test_unknown_group(self, repository):
        with pytest.raises(NotFoundError):
            run(GroupAggregator(repository).refresh_group_snapshot("nope"))

    def test_all_group_metrics(self, repository, add_properties):
        group = self._seed(repository, add_properties)
        empty = run(repository.create_group("Another"))
        groups, metrics = run(GroupAggregator(repository).all_group_metrics())
        assert [g.id for g in groups] == [group.id, empty.id]
        assert metrics[empty.id].avg_score is None
