"""
Core data models for the Hospitality Reputation Tracker.
"""

from .schemas import (
    Property,
    PlatformAlias,
    Candidate,
    Resolution,
    Snapshot,
    PlatformScore,
    Group,
    GroupSnapshot,
    GroupMetrics,
    FetchResult,
    Found,
    NotListed,
    RateLimited,
    Timeout,
    ApiError,
    NoIdentity,
    CellState,
    RefreshSummary,
    HealingItem,
    HealingProgress,
    DebugLog,
    ReviewText,
    ReviewAnalysis,
)

__all__ = [
    "Property",
    "PlatformAlias",
    "Candidate",
    "Resolution",
    "Snapshot",
    "PlatformScore",
    "Group",
    "GroupSnapshot",
    "GroupMetrics",
    "FetchResult",
    "Found",
    "NotListed",
    "RateLimited",
    "Timeout",
    "ApiError",
    "NoIdentity",
    "CellState",
    "RefreshSummary",
    "HealingItem",
    "HealingProgress",
    "DebugLog",
    "ReviewText",
    "ReviewAnalysis",
]
