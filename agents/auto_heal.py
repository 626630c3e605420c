"""
Auto-Heal Sweep
---------------
Fills in missing scores without user action, once per session.

A (property, platform) pair is missing when the latest-scores projection
has no score for it and its latest status is not `not_listed`. Missing
pairs are processed in small batches with a pause between batches; each
item gets a fixed attempt budget with a delay between attempts:

  queued → retrying → resolved | failed

Every item's final outcome overwrites its debug log row, keyed by
(property, platform). One item's failure never stops the sweep.
"""

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from agents.base import Agent
from agents.fetchers import BaseFetcher
from agents.orchestrator import commit_result
from agents.resolver import IdentityResolver
from config.settings import settings
from db.repository import ReputationRepository
from models.schemas import (
    ApiError,
    DebugLog,
    FetchResult,
    HEAL_FAILED,
    HEAL_RESOLVED,
    HEAL_RETRYING,
    HealingItem,
    HealingProgress,
    NOT_LISTED,
    NoIdentity,
    NotListed,
    PlatformScore,
    Property,
    REFRESH_PLATFORMS,
    RESOLVED,
)

ProgressObserver = Callable[[HealingProgress], None]


def find_missing(
    properties: Sequence[Property],
    latest: Mapping[str, Mapping[str, PlatformScore]],
    platforms: Sequence[str] = REFRESH_PLATFORMS,
    not_listed_aliases: Optional[set] = None,
) -> List[HealingItem]:
    """Queue items for every pair with no score that is not known to be unlisted."""
    not_listed_aliases = not_listed_aliases or set()
    missing = []
    for prop in properties:
        scores = latest.get(prop.id) or {}
        for platform in platforms:
            entry = scores.get(platform)
            if entry is not None and entry.score is not None:
                continue
            if entry is not None and entry.status == NOT_LISTED:
                continue
            if (prop.id, platform) in not_listed_aliases:
                continue
            missing.append(HealingItem(property_id=prop.id, property_name=prop.name, platform=platform))
    return missing


class AutoHealSweep(Agent):
    """
    Input:  (properties, latest scores), or None to load both
    Output: HealingProgress
    """

    def __init__(
        self,
        repository: ReputationRepository,
        resolver: IdentityResolver,
        fetchers: Dict[str, BaseFetcher],
        platforms: Sequence[str] = REFRESH_PLATFORMS,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        batch_delay: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        super().__init__(name="AutoHealSweep")
        self.repository = repository
        self.resolver = resolver
        self.fetchers = fetchers
        self.platforms = list(platforms)
        self.batch_size = batch_size or settings.HEAL_BATCH_SIZE
        self.max_retries = max_retries or settings.HEAL_MAX_RETRIES
        self.batch_delay = settings.HEAL_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.retry_delay = settings.HEAL_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

        self.has_run = False
        self.healing = False
        self.progress: Optional[HealingProgress] = None
        self._observers: List[ProgressObserver] = []

    def subscribe(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self.progress)
            except Exception as e:
                self.logger.error(f"Progress observer failed: {e}")

    async def maybe_run(
        self,
        properties: Optional[Sequence[Property]],
        latest: Optional[Mapping[str, Mapping[str, PlatformScore]]],
    ) -> Optional[HealingProgress]:
        """Run the sweep the first time both inputs are available; no-op afterwards."""
        if self.has_run or not properties or latest is None:
            return None
        self.has_run = True
        return await self.run((properties, latest))

    async def run(self, data: Any = None) -> HealingProgress:
        if data is None:
            properties = await self.repository.list_properties()
            latest = await self.repository.latest_scores()
        else:
            properties, latest = data
        self.has_run = True

        not_listed_aliases = {
            (a.property_id, a.platform)
            for a in await self.repository.list_aliases()
            if a.resolution_status == NOT_LISTED
        }
        items = find_missing(properties, latest, self.platforms, not_listed_aliases)
        by_id = {p.id: p for p in properties}
        return await self.process(items, by_id)

    async def process(self, items: List[HealingItem], properties: Mapping[str, Property]) -> HealingProgress:
        self.progress = HealingProgress(total=len(items), items=items)
        if not items:
            self.logger.info("No missing scores to heal")
            return self.progress

        self.healing = True
        self.logger.info(f"🩹 Auto-heal starting — {len(items)} missing scores")
        try:
            for start in range(0, len(items), self.batch_size):
                for item in items[start:start + self.batch_size]:
                    await self._heal(item, properties.get(item.property_id))
                self._notify()
                if start + self.batch_size < len(items) and self.batch_delay:
                    await asyncio.sleep(self.batch_delay)
        finally:
            self.healing = False

        p = self.progress
        self.logger.info(f"✅ Auto-heal complete — {p.resolved} resolved, {p.failed} failed of {p.total}")
        return p

    async def _heal(self, item: HealingItem, prop: Optional[Property]) -> None:
        progress = self.progress
        if prop is None:
            item.status = HEAL_FAILED
            item.error = "Property not found"
            progress.failed += 1
            return

        item.status = HEAL_RETRYING
        progress.in_progress += 1
        last_error = "Unknown error"
        try:
            for attempt in range(self.max_retries):
                item.retry_count = attempt + 1
                try:
                    result = await self._attempt(prop, item.platform)
                    snapshot = await commit_result(self.repository, prop, item.platform, result)
                except Exception as e:
                    result, snapshot = ApiError(str(e)), None

                # NotListed also lands a snapshot, so it counts as healed
                if snapshot is not None:
                    item.status = HEAL_RESOLVED
                    progress.resolved += 1
                    await self._log(item, "Resolved successfully")
                    return

                last_error = result.message or result.kind
                self.logger.info(
                    f"[auto-heal] {prop.name}/{item.platform} attempt {attempt + 1} failed: {last_error}"
                )
                if attempt < self.max_retries - 1 and self.retry_delay:
                    await asyncio.sleep(self.retry_delay)

            item.status = HEAL_FAILED
            item.error = last_error
            progress.failed += 1
            await self._log(item, last_error)
        finally:
            progress.in_progress -= 1

    async def _attempt(self, prop: Property, platform: str) -> FetchResult:
        """Resolve if required, then fetch once."""
        fetcher = self.fetchers.get(platform)
        if fetcher is None:
            return ApiError(f"No fetcher registered for {platform}")

        if not prop.identifier_for(platform) and await self.resolver.needs_resolution(prop, platform):
            resolution = await self.resolver.resolve(prop, platform)
            if resolution.status == NOT_LISTED:
                return NotListed()
            if resolution.status != RESOLVED:
                return NoIdentity(resolution.error or f"{platform} alias is {resolution.status}")

        alias = await self.repository.get_alias(prop.id, platform)
        if alias is not None and alias.resolution_status == NOT_LISTED:
            return NotListed()
        if (alias is None or not alias.is_resolved) and not prop.identifier_for(platform):
            status = alias.resolution_status if alias is not None else "missing"
            return NoIdentity(f"{platform} alias is {status}")
        return await fetcher.fetch(prop, alias)

    async def _log(self, item: HealingItem, message: str) -> None:
        # A failed debug-log write must not stop the sweep
        try:
            await self.repository.upsert_debug_log(DebugLog(
                property_id=item.property_id,
                platform=item.platform,
                error_message=message,
                retry_count=item.retry_count,
                status=item.status,
            ))
        except Exception as e:
            self.logger.warning(f"[auto-heal] debug log for {item.property_id}/{item.platform} not saved: {e}")
