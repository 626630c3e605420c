"""
Group Aggregator
----------------
Two-level review-weighted averages:

  property_avg  = Σ(platform_score × platform_reviews) / Σ(platform_reviews)
  group_avg     = Σ(property_avg × property_reviews) / Σ(property_reviews)

Properties with no valid score are left out entirely rather than counted
as zero.
"""

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from db.repository import ReputationRepository
from models.schemas import FOUND, Group, GroupMetrics, GroupSnapshot, PlatformScore
from utils.scoring import property_metrics, round_score, weighted_average

logger = logging.getLogger("agent.aggregator")

ScoreMap = Mapping[str, Mapping[str, PlatformScore]]


def group_metrics(group_id: Optional[str], property_ids: List[str], latest: ScoreMap) -> GroupMetrics:
    pairs = []
    total_reviews = 0
    for property_id in property_ids:
        avg, reviews = property_metrics(latest.get(property_id))
        if avg is not None and reviews > 0:
            pairs.append((avg, reviews))
            total_reviews += reviews
    return GroupMetrics(
        group_id=group_id,
        avg_score=weighted_average(pairs),
        total_properties=len(property_ids),
        total_reviews=total_reviews,
    )


def sort_by_score(groups: List[Group], metrics: Mapping[str, GroupMetrics]) -> List[Group]:
    """Highest score first; groups without a score go last."""
    def key(group: Group) -> Tuple[int, float]:
        score = metrics[group.id].avg_score if group.id in metrics else None
        return (1, 0.0) if score is None else (0, -score)
    return sorted(groups, key=key)


def portfolio_metrics(latest: ScoreMap, platform: str, property_ids: Optional[List[str]] = None) -> GroupMetrics:
    """Review-weighted average of one platform's latest scores across properties."""
    ids = list(latest.keys()) if property_ids is None else property_ids
    pairs = []
    total_reviews = 0
    counted = 0
    for property_id in ids:
        entry = (latest.get(property_id) or {}).get(platform)
        if entry is None or entry.status != FOUND or not entry.score or entry.count <= 0:
            continue
        pairs.append((entry.score, entry.count))
        total_reviews += entry.count
        counted += 1
    return GroupMetrics(
        group_id=None,
        avg_score=weighted_average(pairs),
        total_properties=counted,
        total_reviews=total_reviews,
    )


class GroupAggregator:
    def __init__(self, repository: ReputationRepository):
        self.repository = repository

    async def metrics_for(self, group_id: str, latest: Optional[ScoreMap] = None) -> GroupMetrics:
        if latest is None:
            latest = await self.repository.latest_scores()
        property_ids = await self.repository.group_property_ids(group_id)
        return group_metrics(group_id, property_ids, latest)

    async def refresh_group_snapshot(self, group_id: str) -> Optional[GroupSnapshot]:
        """Persist the group's current weighted score; None when nothing contributes."""
        await self.repository.get_group(group_id)
        metrics = await self.metrics_for(group_id)
        if metrics.avg_score is None:
            logger.info(f"Group {group_id}: no contributing properties, snapshot skipped")
            return None
        snapshot = await self.repository.insert_group_snapshot(GroupSnapshot(
            group_id=group_id,
            weighted_score=round_score(metrics.avg_score),
            total_reviews=metrics.total_reviews,
        ))
        logger.info(
            f"Group {group_id}: {snapshot.weighted_score:.2f} over {metrics.total_reviews} reviews"
        )
        return snapshot

    async def all_group_metrics(self) -> Tuple[List[Group], Dict[str, GroupMetrics]]:
        """Metrics for every group, plus the groups sorted by score."""
        groups = await self.repository.list_groups()
        latest = await self.repository.latest_scores()
        metrics = {}
        for group in groups:
            metrics[group.id] = await self.metrics_for(group.id, latest)
        return sort_by_score(groups, metrics), metrics

    async def portfolio(self, platform: str) -> GroupMetrics:
        return portfolio_metrics(await self.repository.latest_scores(), platform)
