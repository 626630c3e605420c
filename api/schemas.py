"""
Pydantic schemas for API request/response validation.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime


# ─── Request Schemas ─────────────────────────────────────────────────────────

class PropertyCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = ""
    google_place_id: Optional[str] = None
    booking_url: Optional[str] = None
    tripadvisor_url: Optional[str] = None
    expedia_url: Optional[str] = None
    kasa_url: Optional[str] = None
    website_url: Optional[str] = None


class PropertyUpdateRequest(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    google_place_id: Optional[str] = None
    booking_url: Optional[str] = None
    tripadvisor_url: Optional[str] = None
    expedia_url: Optional[str] = None
    kasa_url: Optional[str] = None
    website_url: Optional[str] = None


class RefreshRequest(BaseModel):
    platforms: Optional[List[str]] = Field(None, description="google | tripadvisor | booking | expedia | kasa")
    property_ids: Optional[List[str]] = None


class ResolveRequest(BaseModel):
    platforms: List[str] = Field(default_factory=lambda: ["google", "tripadvisor", "booking", "expedia"])
    force: bool = False


class AliasUpdateRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Place id or listing URL")
    platform_name: Optional[str] = None


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    property_ids: List[str] = []


class GroupMemberRequest(BaseModel):
    property_id: str


# ─── Response Schemas ────────────────────────────────────────────────────────

class PropertyResponse(BaseModel):
    id: str
    name: str
    city: str
    state: str
    google_place_id: Optional[str] = None
    booking_url: Optional[str] = None
    tripadvisor_url: Optional[str] = None
    expedia_url: Optional[str] = None
    kasa_url: Optional[str] = None
    website_url: Optional[str] = None
    created_at: Optional[datetime] = None


class PlatformScoreResponse(BaseModel):
    score: Optional[float]
    count: int
    updated: datetime
    status: str


class PropertyScoresResponse(BaseModel):
    property_id: str
    name: str
    weighted_score: Optional[float]
    total_reviews: int
    tier: Optional[str]
    platforms: Dict[str, PlatformScoreResponse]


class SnapshotResponse(BaseModel):
    id: Optional[int]
    property_id: str
    platform: str
    score_raw: Optional[float]
    score_scale: Optional[float]
    review_count: int
    normalized_score: Optional[float]
    status: str
    collected_at: datetime


class CandidateResponse(BaseModel):
    name: str
    confidence: float
    reason: str
    url: Optional[str] = None
    platform_id: Optional[str] = None


class AliasResponse(BaseModel):
    property_id: str
    platform: str
    resolution_status: str
    source_id_or_url: Optional[str] = None
    platform_id: Optional[str] = None
    platform_url: Optional[str] = None
    platform_name: Optional[str] = None
    confidence_score: Optional[float] = None
    candidate_options: List[CandidateResponse] = []
    last_resolved_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ResolutionResponse(BaseModel):
    platform: str
    status: str
    platform_id: Optional[str] = None
    platform_url: Optional[str] = None
    platform_name: Optional[str] = None
    confidence: Optional[float] = None
    candidates: List[CandidateResponse] = []
    error: Optional[str] = None


class RefreshStateResponse(BaseModel):
    phase: str
    running: bool
    complete: bool
    current_property: Optional[str]
    progress: float
    failed_count: int
    summary: Dict[str, int]
    cells: List[Dict[str, Any]]


class HealingResponse(BaseModel):
    total: int
    resolved: int
    failed: int
    in_progress: int
    items: List[Dict[str, Any]]


class DebugLogResponse(BaseModel):
    property_id: str
    platform: str
    error_message: Optional[str]
    retry_count: int
    status: Optional[str]
    updated_at: datetime


class GroupResponse(BaseModel):
    id: str
    name: str
    created_at: Optional[datetime] = None


class GroupMetricsResponse(BaseModel):
    group_id: Optional[str]
    name: Optional[str] = None
    avg_score: Optional[float]
    total_properties: int
    total_reviews: int


class GroupSnapshotResponse(BaseModel):
    id: Optional[int]
    group_id: str
    weighted_score: float
    total_reviews: int
    collected_at: datetime


class ReviewAnalysisResponse(BaseModel):
    property_id: str
    positive_themes: List[Dict[str, Any]]
    negative_themes: List[Dict[str, Any]]
    summary: str
    review_count: int
    analyzed_at: datetime


class TaskAcceptedResponse(BaseModel):
    status: str
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
