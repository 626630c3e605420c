"""
Core data models / schemas for the Hospitality Reputation Tracker.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import List, Optional, Dict, Any
from datetime import datetime


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------

GOOGLE = "google"
TRIPADVISOR = "tripadvisor"
BOOKING = "booking"
EXPEDIA = "expedia"
KASA = "kasa"

# Platforms covered by a default refresh, in fetch order.
REFRESH_PLATFORMS: List[str] = [GOOGLE, TRIPADVISOR, BOOKING, EXPEDIA]
ALL_PLATFORMS: List[str] = REFRESH_PLATFORMS + [KASA]
OTA_PLATFORMS: List[str] = [TRIPADVISOR, BOOKING, EXPEDIA]

PLATFORM_LABELS: Dict[str, str] = {
    GOOGLE: "Google",
    TRIPADVISOR: "TripAdvisor",
    BOOKING: "Booking.com",
    EXPEDIA: "Expedia",
    KASA: "Kasa",
}

PLATFORM_SCALES: Dict[str, float] = {
    GOOGLE: 5.0,
    TRIPADVISOR: 5.0,
    BOOKING: 10.0,
    EXPEDIA: 10.0,
    KASA: 5.0,
}


# ---------------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------------

# PlatformAlias.resolution_status
PENDING = "pending"
RESOLVED = "resolved"
NOT_LISTED = "not_listed"
NEEDS_REVIEW = "needs_review"
SCRAPE_FAILED = "scrape_failed"
TIMEOUT = "timeout"

TRANSIENT_RESOLUTION_STATUSES = {PENDING, SCRAPE_FAILED, TIMEOUT}

# Snapshot.status
FOUND = "found"

# Orchestrator phases
PHASE_IDLE = "idle"
PHASE_RESOLVING = "resolving"
PHASE_FETCHING = "fetching"
PHASE_COMPLETE = "complete"

# Per-cell refresh status
CELL_QUEUED = "queued"
CELL_RESOLVING = "resolving"
CELL_FETCHING = "fetching"
CELL_COMPLETE = "complete"
CELL_FAILED = "failed"
CELL_NOT_LISTED = "not_listed"

# Auto-heal item status
HEAL_QUEUED = "queued"
HEAL_RETRYING = "retrying"
HEAL_RESOLVED = "resolved"
HEAL_FAILED = "failed"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass
class Property:
    id: str
    name: str
    city: str
    state: str = ""
    google_place_id: Optional[str] = None
    booking_url: Optional[str] = None
    tripadvisor_url: Optional[str] = None
    expedia_url: Optional[str] = None
    kasa_url: Optional[str] = None
    website_url: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def location(self) -> str:
        return f"{self.city}, {self.state}" if self.state else self.city

    def identifier_for(self, platform: str) -> Optional[str]:
        """Identifier stored directly on the property row, if any."""
        if platform == GOOGLE:
            return self.google_place_id
        return getattr(self, f"{platform}_url", None)

    def with_identifier(self, platform: str, identifier: Optional[str]) -> "Property":
        """Copy of this property with the platform's identifier column filled in."""
        if not identifier:
            return self
        if platform == GOOGLE:
            return replace(self, google_place_id=identifier)
        column = f"{platform}_url"
        if hasattr(self, column):
            return replace(self, **{column: identifier})
        return self


@dataclass
class Candidate:
    name: str
    confidence: float
    reason: str
    url: Optional[str] = None
    platform_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "platform_id": self.platform_id,
            "confidence": self.confidence,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        return cls(
            name=data.get("name", ""),
            confidence=float(data.get("confidence") or 0.0),
            reason=data.get("reason", ""),
            url=data.get("url"),
            platform_id=data.get("platform_id"),
        )


@dataclass
class PlatformAlias:
    property_id: str
    platform: str
    resolution_status: str = PENDING
    source_id_or_url: Optional[str] = None
    platform_id: Optional[str] = None
    platform_url: Optional[str] = None
    platform_name: Optional[str] = None
    confidence_score: Optional[float] = None
    candidate_options: List[Candidate] = field(default_factory=list)
    last_resolved_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        return self.source_id_or_url or self.platform_url or self.platform_id

    @property
    def is_resolved(self) -> bool:
        return self.resolution_status == RESOLVED and bool(self.identifier)


@dataclass
class Resolution:
    """Outcome of one identity resolution attempt."""
    platform: str
    status: str
    platform_id: Optional[str] = None
    platform_url: Optional[str] = None
    platform_name: Optional[str] = None
    confidence: Optional[float] = None
    candidates: List[Candidate] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0
    queries: List[str] = field(default_factory=list)

    @property
    def identifier(self) -> Optional[str]:
        return self.platform_url or self.platform_id


@dataclass
class Snapshot:
    property_id: str
    platform: str
    score_raw: Optional[float]
    score_scale: Optional[float]
    review_count: int
    normalized_score: Optional[float]
    status: str = FOUND
    collected_at: datetime = field(default_factory=datetime.utcnow)
    id: Optional[int] = None


@dataclass
class PlatformScore:
    """One entry of the latest-scores projection."""
    score: Optional[float]
    count: int
    updated: datetime
    status: str = FOUND


@dataclass
class Group:
    id: str
    name: str
    created_at: Optional[datetime] = None


@dataclass
class GroupSnapshot:
    group_id: str
    weighted_score: float
    total_reviews: int = 0
    collected_at: datetime = field(default_factory=datetime.utcnow)
    id: Optional[int] = None


@dataclass
class GroupMetrics:
    group_id: Optional[str]
    avg_score: Optional[float]
    total_properties: int
    total_reviews: int


# ---------------------------------------------------------------------------
# Fetch results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FetchResult:
    kind = "unknown"
    transient = False

    @property
    def message(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Found(FetchResult):
    raw_score: float
    scale: float
    review_count: int = 0
    platform_id: Optional[str] = None
    platform_name: Optional[str] = None
    website_url: Optional[str] = None
    kind = "found"


@dataclass(frozen=True)
class NotListed(FetchResult):
    kind = "not_listed"


@dataclass(frozen=True)
class RateLimited(FetchResult):
    detail: str = "Rate limit exceeded"
    kind = "rate_limited"
    transient = True

    @property
    def message(self) -> Optional[str]:
        return self.detail


@dataclass(frozen=True)
class Timeout(FetchResult):
    detail: str = "Upstream request timed out"
    kind = "timeout"
    transient = True

    @property
    def message(self) -> Optional[str]:
        return self.detail


@dataclass(frozen=True)
class ApiError(FetchResult):
    detail: str = "API error"
    kind = "api_error"

    @property
    def message(self) -> Optional[str]:
        return self.detail

    @property
    def looks_transient(self) -> bool:
        text = self.detail.lower()
        return "timeout" in text or "rate limit" in text or "429" in text


@dataclass(frozen=True)
class NoIdentity(FetchResult):
    detail: str = "No resolved identity"
    kind = "no_identity"

    @property
    def message(self) -> Optional[str]:
        return self.detail


def is_retryable(result: FetchResult) -> bool:
    if result.transient:
        return True
    return isinstance(result, ApiError) and result.looks_transient


# ---------------------------------------------------------------------------
# Refresh / heal progress
# ---------------------------------------------------------------------------

@dataclass
class CellState:
    property_id: str
    platform: str
    status: str = CELL_QUEUED
    error: Optional[str] = None


@dataclass
class RefreshSummary:
    found: int = 0
    not_listed: int = 0
    failed: int = 0
    fetch_attempts: int = 0
    resolutions: int = 0

    @property
    def total(self) -> int:
        return self.found + self.not_listed + self.failed


@dataclass
class HealingItem:
    property_id: str
    property_name: str
    platform: str
    status: str = HEAL_QUEUED
    retry_count: int = 0
    error: Optional[str] = None


@dataclass
class HealingProgress:
    total: int = 0
    resolved: int = 0
    failed: int = 0
    in_progress: int = 0
    items: List[HealingItem] = field(default_factory=list)


@dataclass
class DebugLog:
    """Last known fetch outcome for a (property, platform) pair."""
    property_id: str
    platform: str
    error_message: Optional[str] = None
    retry_count: int = 0
    status: str = HEAL_FAILED
    updated_at: datetime = field(default_factory=datetime.utcnow)


# ---------------------------------------------------------------------------
# Review insights
# ---------------------------------------------------------------------------

@dataclass
class ReviewText:
    property_id: str
    platform: str
    text: str
    rating: Optional[float] = None
    review_date: Optional[str] = None
    reviewer_name: Optional[str] = None


@dataclass
class ReviewAnalysis:
    property_id: str
    positive_themes: List[Dict[str, Any]] = field(default_factory=list)
    negative_themes: List[Dict[str, Any]] = field(default_factory=list)
    summary: str = ""
    review_count: int = 0
    analyzed_at: datetime = field(default_factory=datetime.utcnow)
