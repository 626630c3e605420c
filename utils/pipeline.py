"""
Service wiring: builds the repository, resolver, fetchers, orchestrator,
auto-heal sweep, aggregator and insights agent around one HTTP client and
one session factory.

Architecture:
  API / CLI → RefreshOrchestrator → IdentityResolver → fetchers → ReputationRepository
                                  ↘ TaskQueue → ReviewInsightsAgent
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from agents.aggregator import GroupAggregator
from agents.auto_heal import AutoHealSweep
from agents.base import TaskQueue
from agents.fetchers import BaseFetcher, build_fetchers
from agents.insights import LlmGateway, ReviewInsightsAgent
from agents.orchestrator import RefreshOrchestrator
from agents.resolver import IdentityResolver, MockResolver
from config.settings import settings
from db.database import SessionLocal
from db.repository import LatestScores, ReputationRepository
from db.store import SqlRowStore
from models.schemas import KASA, Property, TRIPADVISOR

logger = logging.getLogger(__name__)


@dataclass
class ReputationService:
    repository: ReputationRepository
    latest: LatestScores
    resolver: IdentityResolver
    fetchers: Dict[str, BaseFetcher]
    orchestrator: RefreshOrchestrator
    auto_heal: AutoHealSweep
    aggregator: GroupAggregator
    insights: ReviewInsightsAgent
    tasks: TaskQueue
    client: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        await self.tasks.join()
        if self.client is not None:
            await self.client.aclose()


def build_service(
    mock: bool = False,
    session_factory: Callable[[], Session] = SessionLocal,
    client: Optional[httpx.AsyncClient] = None,
    pacing: bool = True,
) -> ReputationService:
    """
    Wire the whole service. `mock` swaps every upstream call for the
    offline resolver and fetchers; `pacing=False` zeroes every delay.
    """
    repository = ReputationRepository(SqlRowStore(session_factory))
    # One client for every component, mock mode included, so aclose() releases it
    if client is None:
        client = httpx.AsyncClient(
            timeout=settings.REQUEST_TIMEOUT,
            headers={"User-Agent": settings.USER_AGENT},
            follow_redirects=True,
        )

    fetchers = build_fetchers(client=client, mock=mock)
    delay = None if pacing else 0.0
    if mock:
        resolver: IdentityResolver = MockResolver(repository, client=client, source_pause=delay)
    else:
        resolver = IdentityResolver(repository, client=client, source_pause=delay)

    tasks = TaskQueue()
    insights = ReviewInsightsAgent(
        repository,
        LlmGateway(client=client),
        review_sources={TRIPADVISOR: fetchers[TRIPADVISOR], KASA: fetchers[KASA]},
    )
    orchestrator = RefreshOrchestrator(
        repository,
        resolver,
        fetchers,
        task_queue=tasks,
        insights=None if mock else insights,
        call_delay=delay,
        retry_delay=delay,
        resolve_pacing=delay,
    )
    auto_heal = AutoHealSweep(
        repository, resolver, fetchers, batch_delay=delay, retry_delay=delay
    )
    return ReputationService(
        repository=repository,
        latest=LatestScores(repository),
        resolver=resolver,
        fetchers=fetchers,
        orchestrator=orchestrator,
        auto_heal=auto_heal,
        aggregator=GroupAggregator(repository),
        insights=insights,
        tasks=tasks,
        client=client,
    )


DEMO_PROPERTIES: List[Dict[str, str]] = [
    {"name": "The Hotel Nia, Autograph Collection", "city": "Menlo Park", "state": "CA"},
    {"name": "Kasa The Niche Hotel", "city": "Austin", "state": "TX"},
    {"name": "Hotel Zetta San Francisco", "city": "San Francisco", "state": "CA"},
    {"name": "The Alise Chicago", "city": "Chicago", "state": "IL"},
    {"name": "Lodge at the Presidio", "city": "San Francisco", "state": "CA"},
]


async def seed_demo(service: ReputationService) -> List[Property]:
    """Insert the demo properties and put them all in one group."""
    existing = await service.repository.list_properties()
    if existing:
        return existing
    props = []
    for p in DEMO_PROPERTIES:
        props.append(await service.repository.add_property(
            Property(id=str(uuid.uuid4()), name=p["name"], city=p["city"], state=p["state"])
        ))
    group = await service.repository.create_group("Demo Portfolio")
    for prop in props:
        await service.repository.add_group_member(group.id, prop.id)
    logger.info(f"Seeded {len(props)} demo properties into group '{group.name}'")
    return props
