"""
Reputation repository: domain objects on top of the generic row store.

Snapshots are append-only. Aliases, debug logs and review analyses are
upserted by key. Every snapshot insert publishes a "snapshot committed"
notification to subscribers; `LatestScores` is one such subscriber and
rebuilds its projection lazily after being invalidated.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

from db.store import Row, RowStore
from models.schemas import (
    Candidate,
    DebugLog,
    FOUND,
    Group,
    GroupSnapshot,
    PlatformAlias,
    PlatformScore,
    Property,
    ReviewAnalysis,
    ReviewText,
    Snapshot,
)

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]

_PROPERTY_FIELDS = (
    "name", "city", "state", "google_place_id", "booking_url", "tripadvisor_url",
    "expedia_url", "kasa_url", "website_url",
)


class NotFoundError(LookupError):
    """Raised when a requested entity does not exist."""


# ─── Row mapping ─────────────────────────────────────────────────────────────

def _property_from_row(row: Row) -> Property:
    return Property(
        id=row["id"],
        name=row["name"],
        city=row["city"],
        state=row.get("state") or "",
        google_place_id=row.get("google_place_id"),
        booking_url=row.get("booking_url"),
        tripadvisor_url=row.get("tripadvisor_url"),
        expedia_url=row.get("expedia_url"),
        kasa_url=row.get("kasa_url"),
        website_url=row.get("website_url"),
        created_at=row.get("created_at"),
    )


def _alias_from_row(row: Row) -> PlatformAlias:
    return PlatformAlias(
        property_id=row["property_id"],
        platform=row["platform"],
        resolution_status=row.get("resolution_status") or "pending",
        source_id_or_url=row.get("source_id_or_url"),
        platform_id=row.get("platform_id"),
        platform_url=row.get("platform_url"),
        platform_name=row.get("platform_name"),
        confidence_score=row.get("confidence_score"),
        candidate_options=[Candidate.from_dict(c) for c in row.get("candidate_options") or []],
        last_resolved_at=row.get("last_resolved_at"),
        last_error=row.get("last_error"),
    )


def _alias_to_row(alias: PlatformAlias) -> Row:
    return {
        "property_id": alias.property_id,
        "platform": alias.platform,
        "resolution_status": alias.resolution_status,
        "source_id_or_url": alias.source_id_or_url,
        "platform_id": alias.platform_id,
        "platform_url": alias.platform_url,
        "platform_name": alias.platform_name,
        "confidence_score": alias.confidence_score,
        "candidate_options": [c.to_dict() for c in alias.candidate_options],
        "last_resolved_at": alias.last_resolved_at,
        "last_error": alias.last_error,
    }


def _snapshot_from_row(row: Row) -> Snapshot:
    return Snapshot(
        id=row.get("id"),
        property_id=row["property_id"],
        platform=row["platform"],
        score_raw=row.get("score_raw"),
        score_scale=row.get("score_scale"),
        review_count=row.get("review_count") or 0,
        normalized_score=row.get("normalized_score"),
        status=row.get("status") or FOUND,
        collected_at=row["collected_at"],
    )


# ─── Repository ──────────────────────────────────────────────────────────────

class ReputationRepository:
    def __init__(self, store: RowStore):
        self.store = store
        self._listeners: List[SnapshotListener] = []

    # Subscriptions

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot-committed listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, snapshot: Snapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener {listener!r} failed: {e}")

    # Properties

    async def add_property(self, prop: Property) -> Property:
        row = {"id": prop.id, "created_at": prop.created_at or datetime.utcnow()}
        row.update({f: getattr(prop, f) for f in _PROPERTY_FIELDS})
        return _property_from_row(await self.store.insert("property", row))

    async def get_property(self, property_id: str) -> Property:
        rows = await self.store.query("property", {"id": property_id})
        if not rows:
            raise NotFoundError(f"Property {property_id} not found")
        return _property_from_row(rows[0])

    async def list_properties(self) -> List[Property]:
        rows = await self.store.query("property", order_by="name")
        return [_property_from_row(r) for r in rows]

    async def update_property(self, property_id: str, **values: Any) -> Property:
        unknown = set(values) - set(_PROPERTY_FIELDS)
        if unknown:
            raise ValueError(f"Unknown property fields: {sorted(unknown)}")
        if values:
            await self.store.update("property", {"id": property_id}, values)
        return await self.get_property(property_id)

    async def delete_property(self, property_id: str) -> bool:
        for table in ("platform_alias", "debug_log", "review_text", "review_analysis", "group_property"):
            await self.store.delete(table, {"property_id": property_id})
        return await self.store.delete("property", {"id": property_id}) > 0

    # Aliases

    async def get_alias(self, property_id: str, platform: str) -> Optional[PlatformAlias]:
        rows = await self.store.query(
            "platform_alias", {"property_id": property_id, "platform": platform}
        )
        return _alias_from_row(rows[0]) if rows else None

    async def list_aliases(self, property_id: Optional[str] = None) -> List[PlatformAlias]:
        filters = {"property_id": property_id} if property_id else None
        return [_alias_from_row(r) for r in await self.store.query("platform_alias", filters)]

    async def upsert_alias(self, alias: PlatformAlias) -> PlatformAlias:
        row = await self.store.upsert(
            "platform_alias", _alias_to_row(alias), conflict_keys=("property_id", "platform")
        )
        return _alias_from_row(row)

    # Snapshots

    async def insert_snapshot(self, snapshot: Snapshot) -> Snapshot:
        row = await self.store.insert("source_snapshot", {
            "property_id": snapshot.property_id,
            "platform": snapshot.platform,
            "score_raw": snapshot.score_raw,
            "score_scale": snapshot.score_scale,
            "review_count": snapshot.review_count,
            "normalized_score": snapshot.normalized_score,
            "status": snapshot.status,
            "collected_at": snapshot.collected_at,
        })
        stored = _snapshot_from_row(row)
        self._publish(stored)
        return stored

    async def list_snapshots(
        self, property_id: Optional[str] = None, platform: Optional[str] = None
    ) -> List[Snapshot]:
        filters: Dict[str, Any] = {}
        if property_id:
            filters["property_id"] = property_id
        if platform:
            filters["platform"] = platform
        rows = await self.store.query("source_snapshot", filters, order_by="collected_at")
        return [_snapshot_from_row(r) for r in rows]

    async def latest_scores(self) -> Dict[str, Dict[str, PlatformScore]]:
        """Latest snapshot per (property, platform), as {property_id: {platform: PlatformScore}}."""
        snapshots = await self.list_snapshots()
        snapshots.sort(key=lambda s: (s.collected_at, s.id or 0))
        latest: Dict[str, Dict[str, PlatformScore]] = {}
        for snap in snapshots:
            latest.setdefault(snap.property_id, {})[snap.platform] = PlatformScore(
                score=snap.normalized_score,
                count=snap.review_count,
                updated=snap.collected_at,
                status=snap.status,
            )
        return latest

    # Groups

    async def create_group(self, name: str, group_id: Optional[str] = None) -> Group:
        row: Row = {"name": name, "created_at": datetime.utcnow()}
        if group_id:
            row["id"] = group_id
        row = await self.store.insert("property_group", row)
        return Group(id=row["id"], name=row["name"], created_at=row["created_at"])

    async def get_group(self, group_id: str) -> Group:
        rows = await self.store.query("property_group", {"id": group_id})
        if not rows:
            raise NotFoundError(f"Group {group_id} not found")
        return Group(id=rows[0]["id"], name=rows[0]["name"], created_at=rows[0]["created_at"])

    async def list_groups(self) -> List[Group]:
        rows = await self.store.query("property_group", order_by="name")
        return [Group(id=r["id"], name=r["name"], created_at=r["created_at"]) for r in rows]

    async def add_group_member(self, group_id: str, property_id: str) -> None:
        await self.store.upsert(
            "group_property",
            {"group_id": group_id, "property_id": property_id},
            conflict_keys=("group_id", "property_id"),
        )

    async def remove_group_member(self, group_id: str, property_id: str) -> bool:
        return await self.store.delete(
            "group_property", {"group_id": group_id, "property_id": property_id}
        ) > 0

    async def group_property_ids(self, group_id: str) -> List[str]:
        rows = await self.store.query("group_property", {"group_id": group_id})
        return [r["property_id"] for r in rows]

    async def insert_group_snapshot(self, snapshot: GroupSnapshot) -> GroupSnapshot:
        row = await self.store.insert("group_snapshot", {
            "group_id": snapshot.group_id,
            "weighted_score": snapshot.weighted_score,
            "total_reviews": snapshot.total_reviews,
            "collected_at": snapshot.collected_at,
        })
        return GroupSnapshot(
            id=row["id"],
            group_id=row["group_id"],
            weighted_score=row["weighted_score"],
            total_reviews=row["total_reviews"],
            collected_at=row["collected_at"],
        )

    async def list_group_snapshots(self, group_id: str) -> List[GroupSnapshot]:
        rows = await self.store.query("group_snapshot", {"group_id": group_id}, order_by="collected_at")
        return [
            GroupSnapshot(
                id=r["id"],
                group_id=r["group_id"],
                weighted_score=r["weighted_score"],
                total_reviews=r["total_reviews"],
                collected_at=r["collected_at"],
            )
            for r in rows
        ]

    # Debug logs

    async def upsert_debug_log(self, log: DebugLog) -> DebugLog:
        row = await self.store.upsert("debug_log", {
            "property_id": log.property_id,
            "platform": log.platform,
            "error_message": log.error_message,
            "retry_count": log.retry_count,
            "status": log.status,
            "updated_at": log.updated_at,
        }, conflict_keys=("property_id", "platform"))
        return DebugLog(
            property_id=row["property_id"],
            platform=row["platform"],
            error_message=row["error_message"],
            retry_count=row["retry_count"],
            status=row["status"],
            updated_at=row["updated_at"],
        )

    async def list_debug_logs(self, status: Optional[str] = None) -> List[DebugLog]:
        rows = await self.store.query(
            "debug_log", {"status": status} if status else None, order_by="updated_at", descending=True
        )
        return [
            DebugLog(
                property_id=r["property_id"],
                platform=r["platform"],
                error_message=r["error_message"],
                retry_count=r["retry_count"],
                status=r["status"],
                updated_at=r["updated_at"],
            )
            for r in rows
        ]

    # Review insights

    async def replace_review_texts(self, property_id: str, platform: str, reviews: List[ReviewText]) -> int:
        await self.store.delete("review_text", {"property_id": property_id, "platform": platform})
        for review in reviews:
            await self.store.insert("review_text", {
                "property_id": property_id,
                "platform": platform,
                "review_text": review.text,
                "review_rating": review.rating,
                "review_date": review.review_date,
                "reviewer_name": review.reviewer_name,
                "fetched_at": datetime.utcnow(),
            })
        return len(reviews)

    async def list_review_texts(self, property_id: str, limit: Optional[int] = None) -> List[ReviewText]:
        rows = await self.store.query(
            "review_text", {"property_id": property_id}, order_by="fetched_at", descending=True, limit=limit
        )
        return [
            ReviewText(
                property_id=r["property_id"],
                platform=r["platform"],
                text=r["review_text"],
                rating=r["review_rating"],
                review_date=r["review_date"],
                reviewer_name=r["reviewer_name"],
            )
            for r in rows
        ]

    async def upsert_review_analysis(self, analysis: ReviewAnalysis) -> ReviewAnalysis:
        await self.store.upsert("review_analysis", {
            "property_id": analysis.property_id,
            "positive_themes": analysis.positive_themes,
            "negative_themes": analysis.negative_themes,
            "summary": analysis.summary,
            "review_count": analysis.review_count,
            "analyzed_at": analysis.analyzed_at,
        }, conflict_keys=("property_id",))
        return analysis

    async def get_review_analysis(self, property_id: str) -> Optional[ReviewAnalysis]:
        rows = await self.store.query("review_analysis", {"property_id": property_id})
        if not rows:
            return None
        r = rows[0]
        return ReviewAnalysis(
            property_id=r["property_id"],
            positive_themes=r["positive_themes"] or [],
            negative_themes=r["negative_themes"] or [],
            summary=r["summary"] or "",
            review_count=r["review_count"] or 0,
            analyzed_at=r["analyzed_at"],
        )


# ─── Latest-scores projection ────────────────────────────────────────────────

class LatestScores:
    """
    Cached "latest scores by property" read projection.

    Subscribes to the repository and marks itself stale on every committed
    snapshot, so progressive readers see each cell as soon as it lands.
    """

    def __init__(self, repository: ReputationRepository):
        self.repository = repository
        self._cache: Optional[Dict[str, Dict[str, PlatformScore]]] = None
        self.invalidations = 0
        self._unsubscribe = repository.subscribe(self.invalidate)

    def invalidate(self, snapshot: Optional[Snapshot] = None) -> None:
        self._cache = None
        self.invalidations += 1

    @property
    def is_stale(self) -> bool:
        return self._cache is None

    async def get(self) -> Dict[str, Dict[str, PlatformScore]]:
        if self._cache is None:
            self._cache = await self.repository.latest_scores()
        return self._cache

    async def for_property(self, property_id: str) -> Dict[str, PlatformScore]:
        return (await self.get()).get(property_id, {})

    def close(self) -> None:
        self._unsubscribe()
