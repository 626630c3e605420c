"""
FastAPI Route Handlers
Hospitality Reputation Tracker
"""

import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks
from fastapi.responses import Response

from api.schemas import (
    AliasResponse, AliasUpdateRequest, DebugLogResponse, GroupCreateRequest,
    GroupMemberRequest, GroupMetricsResponse, GroupResponse, GroupSnapshotResponse,
    HealingResponse, HealthResponse, PropertyCreateRequest, PropertyResponse,
    PropertyScoresResponse, PropertyUpdateRequest, RefreshRequest, RefreshStateResponse,
    ResolutionResponse, ResolveRequest, ReviewAnalysisResponse, SnapshotResponse,
    TaskAcceptedResponse,
)
from agents.orchestrator import RefreshInProgress
from config.settings import settings
from models.schemas import ALL_PLATFORMS, Property
from utils.export import scores_frame
from utils.pipeline import ReputationService, build_service
from utils.scoring import property_metrics, round_score, score_tier

logger = logging.getLogger(__name__)

router = APIRouter()

# One service per process; tests swap it through app.dependency_overrides.
_service: Optional[ReputationService] = None


def get_service() -> ReputationService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


def _check_platform(platform: str) -> None:
    if platform not in ALL_PLATFORMS:
        raise HTTPException(status_code=400, detail=f"Unknown platform '{platform}'.")


def _check_idle(service: ReputationService) -> None:
    if service.orchestrator.running:
        raise HTTPException(status_code=409, detail="A refresh is already running.")


async def _run_in_background(label: str, job) -> None:
    try:
        await job()
    except RefreshInProgress as e:
        logger.warning(f"{label} skipped: {e}")
    except Exception as e:
        logger.error(f"❌ {label} failed: {e}")


# ─── Health ──────────────────────────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    return HealthResponse(
        status="ok",
        version=settings.APP_VERSION,
        timestamp=datetime.utcnow(),
    )


# ─── Properties ──────────────────────────────────────────────────────────────

@router.get("/properties", response_model=List[PropertyResponse], tags=["Properties"])
async def list_properties(service: ReputationService = Depends(get_service)):
    return [asdict(p) for p in await service.repository.list_properties()]


@router.post("/properties", response_model=PropertyResponse, status_code=201, tags=["Properties"])
async def create_property(request: PropertyCreateRequest, service: ReputationService = Depends(get_service)):
    prop = Property(id=str(uuid.uuid4()), **request.model_dump())
    return asdict(await service.repository.add_property(prop))


@router.get("/properties/{property_id}", response_model=PropertyResponse, tags=["Properties"])
async def get_property(property_id: str, service: ReputationService = Depends(get_service)):
    return asdict(await service.repository.get_property(property_id))


@router.patch("/properties/{property_id}", response_model=PropertyResponse, tags=["Properties"])
async def update_property(
    property_id: str,
    request: PropertyUpdateRequest,
    service: ReputationService = Depends(get_service),
):
    values = request.model_dump(exclude_unset=True)
    if not values:
        raise HTTPException(status_code=400, detail="No fields to update.")
    return asdict(await service.repository.update_property(property_id, **values))


@router.delete("/properties/{property_id}", status_code=204, tags=["Properties"])
async def delete_property(property_id: str, service: ReputationService = Depends(get_service)):
    if not await service.repository.delete_property(property_id):
        raise HTTPException(status_code=404, detail=f"Property {property_id} not found.")
    return Response(status_code=204)


@router.get("/properties/{property_id}/snapshots", response_model=List[SnapshotResponse], tags=["Properties"])
async def list_snapshots(
    property_id: str,
    platform: Optional[str] = None,
    service: ReputationService = Depends(get_service),
):
    await service.repository.get_property(property_id)
    if platform:
        _check_platform(platform)
    return [asdict(s) for s in await service.repository.list_snapshots(property_id, platform)]


# ─── Scores ──────────────────────────────────────────────────────────────────

@router.get("/scores", response_model=List[PropertyScoresResponse], tags=["Scores"])
async def latest_scores(
    background_tasks: BackgroundTasks,
    service: ReputationService = Depends(get_service),
):
    """
    Latest snapshot per (property, platform) plus the review-weighted average.
    The first read that finds properties starts the session's auto-heal sweep.
    """
    latest = await service.latest.get()
    props = await service.repository.list_properties()
    if props and not service.auto_heal.has_run:
        background_tasks.add_task(
            _run_in_background, "Auto-heal", lambda: service.auto_heal.maybe_run(props, latest)
        )
    rows = []
    for prop in props:
        scores = latest.get(prop.id) or {}
        avg, total = property_metrics(scores)
        rows.append(PropertyScoresResponse(
            property_id=prop.id,
            name=prop.name,
            weighted_score=round_score(avg),
            total_reviews=total,
            tier=score_tier(avg),
            platforms={platform: asdict(entry) for platform, entry in scores.items()},
        ))
    return rows


@router.get("/portfolio/{platform}", response_model=GroupMetricsResponse, tags=["Scores"])
async def portfolio(platform: str, service: ReputationService = Depends(get_service)):
    """Single-platform average across every property."""
    _check_platform(platform)
    metrics = await service.aggregator.portfolio(platform)
    return GroupMetricsResponse(**asdict(metrics), name=f"All properties ({platform})")


@router.get("/export/scores.csv", tags=["Scores"])
async def export_scores(service: ReputationService = Depends(get_service)):
    df = scores_frame(await service.repository.list_properties(), await service.latest.get())
    return Response(
        content=df.to_csv(index=False),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=scores.csv"},
    )


# ─── Identity resolution ─────────────────────────────────────────────────────

@router.get("/properties/{property_id}/aliases", response_model=List[AliasResponse], tags=["Resolution"])
async def list_aliases(property_id: str, service: ReputationService = Depends(get_service)):
    await service.repository.get_property(property_id)
    return [asdict(a) for a in await service.repository.list_aliases(property_id)]


@router.post(
    "/properties/{property_id}/resolve",
    response_model=List[ResolutionResponse],
    tags=["Resolution"],
)
async def resolve_property(
    property_id: str,
    request: ResolveRequest,
    service: ReputationService = Depends(get_service),
):
    """Resolve the property's identity on each requested platform, one after another."""
    for platform in request.platforms:
        _check_platform(platform)
    prop = await service.repository.get_property(property_id)
    results = []
    for platform in request.platforms:
        resolution = await service.resolver.resolve(prop, platform, force=request.force)
        results.append(resolution)
    return [
        ResolutionResponse(**{k: v for k, v in asdict(r).items() if k not in ("attempts", "queries")})
        for r in results
    ]


@router.put(
    "/properties/{property_id}/aliases/{platform}",
    response_model=AliasResponse,
    tags=["Resolution"],
)
async def update_alias(
    property_id: str,
    platform: str,
    request: AliasUpdateRequest,
    service: ReputationService = Depends(get_service),
):
    """Manually confirm a platform identifier (e.g. picking a needs-review candidate)."""
    _check_platform(platform)
    await service.repository.get_property(property_id)
    alias = await service.resolver.update_alias(
        property_id, platform, request.identifier, platform_name=request.platform_name
    )
    return asdict(alias)


# ─── Refresh ─────────────────────────────────────────────────────────────────

@router.get("/refresh/state", response_model=RefreshStateResponse, tags=["Refresh"])
async def refresh_state(service: ReputationService = Depends(get_service)):
    return service.orchestrator.state()


@router.get("/refresh/failed-count", tags=["Refresh"])
async def failed_count(service: ReputationService = Depends(get_service)):
    return {"failed_count": service.orchestrator.failed_count()}


@router.post("/refresh/all", response_model=TaskAcceptedResponse, status_code=202, tags=["Refresh"])
async def refresh_all(
    request: RefreshRequest,
    background_tasks: BackgroundTasks,
    service: ReputationService = Depends(get_service),
):
    """Resolve then fetch every in-scope (property, platform) pair. Poll /refresh/state."""
    _check_idle(service)
    for platform in request.platforms or []:
        _check_platform(platform)
    background_tasks.add_task(
        _run_in_background,
        "Refresh all",
        lambda: service.orchestrator.refresh_all(request.platforms, request.property_ids),
    )
    return TaskAcceptedResponse(status="accepted", message="Refresh started.")


@router.post(
    "/refresh/properties/{property_id}",
    response_model=TaskAcceptedResponse,
    status_code=202,
    tags=["Refresh"],
)
async def refresh_row(
    property_id: str,
    background_tasks: BackgroundTasks,
    service: ReputationService = Depends(get_service),
):
    _check_idle(service)
    prop = await service.repository.get_property(property_id)
    background_tasks.add_task(
        _run_in_background,
        f"Refresh {prop.name}",
        lambda: service.orchestrator.refresh_row(property_id),
    )
    return TaskAcceptedResponse(status="accepted", message=f"Refreshing {prop.name}.")


@router.post("/refresh/properties/{property_id}/{platform}", tags=["Refresh"])
async def refresh_cell(property_id: str, platform: str, service: ReputationService = Depends(get_service)):
    """Refresh one cell and wait for it; returns the cell's final state."""
    _check_platform(platform)
    _check_idle(service)
    cell = await service.orchestrator.refresh_cell(property_id, platform)
    return asdict(cell)


@router.post("/refresh/retry-failed", response_model=TaskAcceptedResponse, status_code=202, tags=["Refresh"])
async def retry_failed(background_tasks: BackgroundTasks, service: ReputationService = Depends(get_service)):
    _check_idle(service)
    count = service.orchestrator.failed_count()
    if not count:
        return TaskAcceptedResponse(status="noop", message="No failed cells to retry.")
    background_tasks.add_task(_run_in_background, "Retry failed", service.orchestrator.retry_all_failed)
    return TaskAcceptedResponse(status="accepted", message=f"Retrying {count} failed cells.")


@router.post("/refresh/reset", tags=["Refresh"])
async def reset_refresh(service: ReputationService = Depends(get_service)):
    service.orchestrator.reset()
    return {"status": "reset"}


# ─── Auto-heal ───────────────────────────────────────────────────────────────

@router.post("/auto-heal", response_model=TaskAcceptedResponse, status_code=202, tags=["Auto-heal"])
async def run_auto_heal(background_tasks: BackgroundTasks, service: ReputationService = Depends(get_service)):
    """Sweep every (property, platform) pair with no score. Poll GET /auto-heal."""
    if service.auto_heal.healing:
        raise HTTPException(status_code=409, detail="Auto-heal is already running.")
    background_tasks.add_task(_run_in_background, "Auto-heal", service.auto_heal.run)
    return TaskAcceptedResponse(status="accepted", message="Auto-heal started.")


@router.get("/auto-heal", response_model=HealingResponse, tags=["Auto-heal"])
async def auto_heal_progress(service: ReputationService = Depends(get_service)):
    if service.auto_heal.progress is None:
        raise HTTPException(status_code=404, detail="Auto-heal has not run yet.")
    return asdict(service.auto_heal.progress)


@router.get("/debug-logs", response_model=List[DebugLogResponse], tags=["Auto-heal"])
async def debug_logs(status: Optional[str] = None, service: ReputationService = Depends(get_service)):
    return [asdict(log) for log in await service.repository.list_debug_logs(status)]


# ─── Groups ──────────────────────────────────────────────────────────────────

@router.get("/groups", response_model=List[GroupMetricsResponse], tags=["Groups"])
async def list_groups(service: ReputationService = Depends(get_service)):
    """Groups with their current metrics, best score first, unscored last."""
    groups, metrics = await service.aggregator.all_group_metrics()
    return [GroupMetricsResponse(**asdict(metrics[g.id]), name=g.name) for g in groups]


@router.post("/groups", response_model=GroupResponse, status_code=201, tags=["Groups"])
async def create_group(request: GroupCreateRequest, service: ReputationService = Depends(get_service)):
    for property_id in request.property_ids:
        await service.repository.get_property(property_id)
    group = await service.repository.create_group(request.name)
    for property_id in request.property_ids:
        await service.repository.add_group_member(group.id, property_id)
    return asdict(group)


@router.post("/groups/{group_id}/members", status_code=204, tags=["Groups"])
async def add_group_member(
    group_id: str,
    request: GroupMemberRequest,
    service: ReputationService = Depends(get_service),
):
    await service.repository.get_group(group_id)
    await service.repository.get_property(request.property_id)
    await service.repository.add_group_member(group_id, request.property_id)
    return Response(status_code=204)


@router.delete("/groups/{group_id}/members/{property_id}", status_code=204, tags=["Groups"])
async def remove_group_member(group_id: str, property_id: str, service: ReputationService = Depends(get_service)):
    if not await service.repository.remove_group_member(group_id, property_id):
        raise HTTPException(status_code=404, detail="Membership not found.")
    return Response(status_code=204)


@router.get("/groups/{group_id}/metrics", response_model=GroupMetricsResponse, tags=["Groups"])
async def group_metrics(group_id: str, service: ReputationService = Depends(get_service)):
    group = await service.repository.get_group(group_id)
    metrics = await service.aggregator.metrics_for(group_id, await service.latest.get())
    return GroupMetricsResponse(**asdict(metrics), name=group.name)


@router.post("/groups/{group_id}/snapshots", response_model=GroupSnapshotResponse, tags=["Groups"])
async def snapshot_group(group_id: str, service: ReputationService = Depends(get_service)):
    snapshot = await service.aggregator.refresh_group_snapshot(group_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No member property has a score yet.")
    return asdict(snapshot)


@router.get("/groups/{group_id}/snapshots", response_model=List[GroupSnapshotResponse], tags=["Groups"])
async def list_group_snapshots(group_id: str, service: ReputationService = Depends(get_service)):
    await service.repository.get_group(group_id)
    return [asdict(s) for s in await service.repository.list_group_snapshots(group_id)]


# ─── Review insights ─────────────────────────────────────────────────────────

@router.post("/properties/{property_id}/insights", response_model=ReviewAnalysisResponse, tags=["Insights"])
async def analyze_reviews(property_id: str, service: ReputationService = Depends(get_service)):
    prop = await service.repository.get_property(property_id)
    result = await service.insights.execute(prop)
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error)
    return asdict(result.data)


@router.get("/properties/{property_id}/insights", response_model=ReviewAnalysisResponse, tags=["Insights"])
async def get_insights(property_id: str, service: ReputationService = Depends(get_service)):
    analysis = await service.repository.get_review_analysis(property_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="No analysis for this property yet.")
    return asdict(analysis)
