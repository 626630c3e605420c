"""
Refresh Orchestrator
--------------------
Drives Resolver then Fetcher across a scope (one cell, one row, or every
property), tracking phases and per-cell status:

  phase: idle → resolving → fetching → complete
  cell:  queued → resolving → fetching → complete | failed | not_listed

Calls are serialized and paced with fixed delays. Transient failures get
one extra attempt after a longer backoff. Found and not-listed outcomes
append exactly one Snapshot each; failures write nothing, so the latest
known good score stays readable. Observers are notified after every cell.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agents.base import TaskQueue
from agents.fetchers import BaseFetcher
from agents.resolver import IdentityResolver
from config.settings import settings
from db.repository import ReputationRepository
from models.schemas import (
    ApiError,
    CELL_COMPLETE,
    CELL_FAILED,
    CELL_FETCHING,
    CELL_NOT_LISTED,
    CELL_QUEUED,
    CELL_RESOLVING,
    CellState,
    FOUND,
    FetchResult,
    Found,
    GOOGLE,
    NOT_LISTED,
    NoIdentity,
    NotListed,
    PHASE_COMPLETE,
    PHASE_FETCHING,
    PHASE_IDLE,
    PHASE_RESOLVING,
    PLATFORM_SCALES,
    Property,
    REFRESH_PLATFORMS,
    RefreshSummary,
    Snapshot,
    is_retryable,
)
from utils.scoring import normalize, round_score

Observer = Callable[[str, Any], None]
CellKey = Tuple[str, str]
Scope = List[Tuple[Property, List[str]]]


class RefreshInProgress(RuntimeError):
    """A second run was requested while one is still going."""


async def commit_result(
    repository: ReputationRepository, prop: Property, platform: str, result: FetchResult
) -> Optional[Snapshot]:
    """
    Persist a fetch outcome. Found and NotListed append one Snapshot (a
    Google hit also records place id and website on the property); any
    other result writes nothing and returns None.
    """
    if isinstance(result, Found):
        snapshot = await repository.insert_snapshot(Snapshot(
            property_id=prop.id,
            platform=platform,
            score_raw=result.raw_score,
            score_scale=result.scale,
            review_count=max(0, result.review_count),
            normalized_score=round_score(normalize(result.raw_score, result.scale)),
        ))
        if platform == GOOGLE:
            values = {}
            if result.platform_id and result.platform_id != prop.google_place_id:
                values["google_place_id"] = result.platform_id
            if result.website_url and not prop.website_url:
                values["website_url"] = result.website_url
            if values:
                await repository.update_property(prop.id, **values)
        return snapshot

    if isinstance(result, NotListed):
        return await repository.insert_snapshot(Snapshot(
            property_id=prop.id,
            platform=platform,
            score_raw=None,
            score_scale=PLATFORM_SCALES.get(platform),
            review_count=0,
            normalized_score=None,
            status=NOT_LISTED,
        ))
    return None


class RefreshOrchestrator:
    """
    Standalone stateful refresh service. Owns no rendering; callers
    subscribe to "phase", "cell" and "complete" events.
    """

    def __init__(
        self,
        repository: ReputationRepository,
        resolver: IdentityResolver,
        fetchers: Dict[str, BaseFetcher],
        task_queue: Optional[TaskQueue] = None,
        insights=None,
        platforms: Sequence[str] = REFRESH_PLATFORMS,
        call_delay: Optional[float] = None,
        retry_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        resolve_pacing: Optional[float] = None,
    ):
        self.repository = repository
        self.resolver = resolver
        self.fetchers = fetchers
        self.task_queue = task_queue
        self.insights = insights
        self.platforms = list(platforms)
        self.call_delay = settings.DELAY_BETWEEN_CALLS_SECONDS if call_delay is None else call_delay
        self.retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.max_retries = settings.MAX_FETCH_RETRIES if max_retries is None else max_retries
        self.resolve_pacing = settings.RESOLVE_PACING_SECONDS if resolve_pacing is None else resolve_pacing
        self.logger = logging.getLogger("orchestrator")

        self._observers: List[Observer] = []
        self.phase = PHASE_IDLE
        self.running = False
        self.complete = False
        self.cells: Dict[CellKey, CellState] = {}
        self.summary = RefreshSummary()
        self.current_property: Optional[str] = None

    # ─── Observers ───────────────────────────────────────────────────────────

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _emit(self, event: str, payload: Any) -> None:
        for observer in list(self._observers):
            try:
                observer(event, payload)
            except Exception as e:
                self.logger.error(f"Observer {observer!r} failed on {event}: {e}")

    def _set_phase(self, phase: str) -> None:
        self.phase = phase
        self._emit("phase", phase)

    def _set_cell(self, prop_id: str, platform: str, status: str, error: Optional[str] = None) -> CellState:
        cell = self.cells.setdefault((prop_id, platform), CellState(prop_id, platform))
        cell.status = status
        cell.error = error
        self._emit("cell", cell)
        return cell

    # ─── Queries ─────────────────────────────────────────────────────────────

    def failed_count(self) -> int:
        return sum(1 for c in self.cells.values() if c.status == CELL_FAILED)

    def failed_cells(self) -> List[CellState]:
        return [c for c in self.cells.values() if c.status == CELL_FAILED]

    @property
    def progress(self) -> float:
        """Fraction of in-scope cells that reached a terminal status."""
        if not self.cells:
            return 0.0
        done = sum(
            1 for c in self.cells.values() if c.status in (CELL_COMPLETE, CELL_FAILED, CELL_NOT_LISTED)
        )
        return done / len(self.cells)

    def state(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "running": self.running,
            "complete": self.complete,
            "current_property": self.current_property,
            "progress": round(self.progress, 3),
            "failed_count": self.failed_count(),
            "summary": {
                "found": self.summary.found,
                "not_listed": self.summary.not_listed,
                "failed": self.summary.failed,
                "fetch_attempts": self.summary.fetch_attempts,
                "resolutions": self.summary.resolutions,
            },
            "cells": [
                {"property_id": c.property_id, "platform": c.platform, "status": c.status, "error": c.error}
                for c in self.cells.values()
            ],
        }

    def reset(self) -> None:
        if self.running:
            raise RefreshInProgress("Cannot reset while a refresh is running")
        self.phase = PHASE_IDLE
        self.complete = False
        self.cells = {}
        self.summary = RefreshSummary()
        self.current_property = None

    # ─── Commands ────────────────────────────────────────────────────────────

    async def refresh_cell(self, property_id: str, platform: str) -> CellState:
        prop = await self.repository.get_property(property_id)
        await self._run([(prop, [platform])], keep_cells=True)
        return self.cells[(property_id, platform)]

    async def retry_platform(self, property_id: str, platform: str) -> CellState:
        return await self.refresh_cell(property_id, platform)

    async def refresh_row(self, property_id: str, platforms: Optional[Sequence[str]] = None) -> RefreshSummary:
        prop = await self.repository.get_property(property_id)
        return await self._run([(prop, list(platforms or self.platforms))], keep_cells=True, spawn_insights=True)

    async def refresh_all(
        self,
        platforms: Optional[Sequence[str]] = None,
        property_ids: Optional[Sequence[str]] = None,
    ) -> RefreshSummary:
        props = await self.repository.list_properties()
        if property_ids is not None:
            wanted = set(property_ids)
            props = [p for p in props if p.id in wanted]
        platforms = list(platforms or self.platforms)
        return await self._run([(p, list(platforms)) for p in props])

    async def retry_all_failed(self) -> RefreshSummary:
        """Re-run only the cells currently marked failed."""
        by_property: Dict[str, List[str]] = {}
        for cell in self.failed_cells():
            by_property.setdefault(cell.property_id, []).append(cell.platform)
        scope: Scope = []
        for property_id, platforms in by_property.items():
            scope.append((await self.repository.get_property(property_id), platforms))
        if not scope:
            self.logger.info("No failed cells to retry")
            return RefreshSummary()
        return await self._run(scope, keep_cells=True)

    # ─── Run ─────────────────────────────────────────────────────────────────

    async def _run(self, scope: Scope, keep_cells: bool = False, spawn_insights: bool = False) -> RefreshSummary:
        if self.running:
            raise RefreshInProgress("A refresh is already running")
        self.running = True
        self.complete = False
        self.summary = RefreshSummary()
        if not keep_cells:
            self.cells = {}
        for prop, platforms in scope:
            for platform in platforms:
                self._set_cell(prop.id, platform, CELL_QUEUED)

        total = sum(len(platforms) for _, platforms in scope)
        self.logger.info(f"🚀 Refresh starting — {len(scope)} properties, {total} cells")
        try:
            self._set_phase(PHASE_RESOLVING)
            scope = await self._resolve_phase(scope)

            self._set_phase(PHASE_FETCHING)
            for i, (prop, platforms) in enumerate(scope):
                self.current_property = prop.id
                row_found = 0
                for j, platform in enumerate(platforms):
                    status = await self._refresh_pair(prop, platform)
                    if status == CELL_COMPLETE:
                        row_found += 1
                    last_call = i == len(scope) - 1 and j == len(platforms) - 1
                    if not last_call and self.call_delay:
                        await asyncio.sleep(self.call_delay)
                if spawn_insights and row_found:
                    self._spawn_insights(prop)
        finally:
            self.current_property = None
            self.running = False

        self.complete = True
        self._set_phase(PHASE_COMPLETE)
        s = self.summary
        self.logger.info(
            f"✅ Refresh complete — {s.found} found, {s.not_listed} not listed, "
            f"{s.failed} failed ({s.fetch_attempts} fetch attempts, {s.resolutions} resolutions)"
        )
        self._emit("complete", s)
        return s

    async def _resolve_phase(self, scope: Scope) -> Scope:
        """Resolve every pair lacking a usable alias; merge identifiers into local copies."""
        merged: Scope = []
        resolved_any = False
        for prop, platforms in scope:
            pending = []
            for platform in platforms:
                if prop.identifier_for(platform):
                    continue
                if await self.resolver.needs_resolution(prop, platform):
                    pending.append(platform)

            if pending and resolved_any and self.resolve_pacing:
                await asyncio.sleep(self.resolve_pacing)

            for platform in pending:
                self._set_cell(prop.id, platform, CELL_RESOLVING)
                try:
                    resolution = await self.resolver.resolve(prop, platform)
                except Exception as e:
                    self.logger.error(f"  ❌ Resolution crashed for {prop.name} [{platform}]: {e}")
                    self._set_cell(prop.id, platform, CELL_QUEUED)
                    continue
                self.summary.resolutions += 1
                resolved_any = True
                prop = prop.with_identifier(platform, resolution.identifier)
                self._set_cell(prop.id, platform, CELL_QUEUED)
            merged.append((prop, platforms))
        return merged

    async def _refresh_pair(self, prop: Property, platform: str) -> str:
        self.summary.fetch_attempts += 1
        try:
            alias = await self.repository.get_alias(prop.id, platform)
            if alias is not None and alias.resolution_status == NOT_LISTED:
                self.summary.not_listed += 1
                self._set_cell(prop.id, platform, CELL_NOT_LISTED)
                return CELL_NOT_LISTED

            result = await self._fetch_with_retry(prop, platform, alias)
            return await self._commit(prop, platform, result)
        except Exception as e:
            self.logger.error(f"  ❌ {prop.name} [{platform}] failed: {e}")
            self.summary.failed += 1
            self._set_cell(prop.id, platform, CELL_FAILED, str(e))
            return CELL_FAILED

    async def _fetch_with_retry(self, prop: Property, platform: str, alias) -> FetchResult:
        fetcher = self.fetchers.get(platform)
        if fetcher is None:
            return ApiError(f"No fetcher registered for {platform}")
        if (alias is None or not alias.is_resolved) and not prop.identifier_for(platform):
            status = alias.resolution_status if alias is not None else "missing"
            return NoIdentity(f"{platform} alias is {status}")

        attempt = 0
        while True:
            self._set_cell(prop.id, platform, CELL_FETCHING)
            result = await fetcher.fetch(prop, alias)
            if not is_retryable(result) or attempt >= self.max_retries:
                return result
            attempt += 1
            self.logger.warning(
                f"  ⏳ {prop.name} [{platform}] {result.kind}: {result.message}. "
                f"Retrying in {self.retry_delay:.0f}s ({attempt}/{self.max_retries})"
            )
            if self.retry_delay:
                await asyncio.sleep(self.retry_delay)

    async def _commit(self, prop: Property, platform: str, result: FetchResult) -> str:
        snapshot = await commit_result(self.repository, prop, platform, result)
        if snapshot is not None and snapshot.status == FOUND:
            self.summary.found += 1
            self._set_cell(prop.id, platform, CELL_COMPLETE)
            return CELL_COMPLETE
        if snapshot is not None:
            self.summary.not_listed += 1
            self._set_cell(prop.id, platform, CELL_NOT_LISTED)
            return CELL_NOT_LISTED

        self.summary.failed += 1
        self.logger.warning(f"  ❌ {prop.name} [{platform}] {result.kind}: {result.message}")
        self._set_cell(prop.id, platform, CELL_FAILED, result.message)
        return CELL_FAILED

    def _spawn_insights(self, prop: Property) -> None:
        if self.task_queue is None or self.insights is None:
            return
        insights = self.insights
        self.task_queue.spawn(lambda: insights.execute(prop), label=f"insights:{prop.id}")
