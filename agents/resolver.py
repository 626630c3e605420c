"""
Identity Resolver
-----------------
Finds the stable external reference (place id or listing URL) for a
property on a platform and records it as a PlatformAlias.

  pending → resolved | not_listed | needs_review | scrape_failed | timeout

Google is searched through the Places text-search API; the OTAs through a
SerpAPI Google search restricted to the platform's hotel pages. Every hit
is scored by the hotel name matcher; the first confident match wins, an
unconfident result set is kept as candidates for human review, and an
empty one means the property is not listed.

The resolver never calls a fetcher.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import httpx

from agents.base import ResolutionError
from agents.fetchers import extract_expedia_hotel_id
from config.settings import settings
from db.repository import ReputationRepository
from models.schemas import (
    BOOKING,
    Candidate,
    EXPEDIA,
    GOOGLE,
    KASA,
    NEEDS_REVIEW,
    NOT_LISTED,
    PlatformAlias,
    Property,
    RESOLVED,
    Resolution,
    SCRAPE_FAILED,
    TIMEOUT,
    TRANSIENT_RESOLUTION_STATUSES,
    TRIPADVISOR,
)
from utils.hotel_names import analyze_hotel_match, generate_search_queries

logger = logging.getLogger(__name__)

GOOGLE_TEXTSEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
SERPAPI_URL = "https://serpapi.com/search.json"

SITE_FILTERS: Dict[str, str] = {
    BOOKING: "site:booking.com/hotel",
    TRIPADVISOR: "site:tripadvisor.com inurl:Hotel_Review",
    EXPEDIA: "site:expedia.com inurl:Hotel",
}

MAX_QUERIES = 3
MAX_RESULTS = 5

_RATE_LIMITED = "RATE_LIMITED"


class RateLimitedSearch(ResolutionError):
    pass


@dataclass
class SearchHit:
    name: str
    url: Optional[str] = None
    platform_id: Optional[str] = None


def _clean_title(title: str) -> str:
    """Drop the site name search engines append: 'Hotel Nia - Tripadvisor'."""
    return re.sub(
        r"\s*[-|–]\s*(tripadvisor|booking\.com|expedia(\.com)?)\s*$", "", title, flags=re.I
    ).strip()


class IdentityResolver:
    def __init__(
        self,
        repository: ReputationRepository,
        client: Optional[httpx.AsyncClient] = None,
        google_api_key: Optional[str] = None,
        serpapi_key: Optional[str] = None,
        source_pause: Optional[float] = None,
    ):
        self.repository = repository
        self.client = client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)
        self.google_api_key = google_api_key if google_api_key is not None else settings.GOOGLE_PLACES_API_KEY
        self.serpapi_key = serpapi_key if serpapi_key is not None else settings.SERPAPI_API_KEY
        self.source_pause = settings.RESOLVE_SOURCE_PAUSE_SECONDS if source_pause is None else source_pause
        self.logger = logging.getLogger("agent.resolver")

    # ─── Public API ──────────────────────────────────────────────────────────

    async def needs_resolution(self, prop: Property, platform: str) -> bool:
        alias = await self.repository.get_alias(prop.id, platform)
        if alias is None:
            return True
        if alias.resolution_status in TRANSIENT_RESOLUTION_STATUSES:
            return True
        if alias.resolution_status == RESOLVED:
            return not alias.identifier
        # not_listed and needs_review stay put until a human acts
        return False

    async def resolve(self, prop: Property, platform: str, force: bool = False) -> Resolution:
        """
        Resolve one (property, platform) pair and upsert its alias.
        An already-resolved alias is returned unchanged unless `force`.
        """
        if not force:
            existing = await self.repository.get_alias(prop.id, platform)
            if existing is not None and existing.is_resolved:
                return Resolution(
                    platform=platform,
                    status=RESOLVED,
                    platform_id=existing.platform_id,
                    platform_url=existing.platform_url or existing.source_id_or_url,
                    platform_name=existing.platform_name,
                    confidence=existing.confidence_score,
                )

        resolution = await self._resolve(prop, platform)
        self.logger.info(
            f"{prop.name} [{platform}] → {resolution.status}"
            + (f" ({resolution.platform_name})" if resolution.platform_name else "")
            + (f" error={resolution.error}" if resolution.error else "")
        )
        await self._store(prop, resolution)
        return resolution

    async def resolve_many(self, prop: Property, platforms: Iterable[str]) -> List[Resolution]:
        platforms = list(platforms)
        resolutions = []
        for i, platform in enumerate(platforms):
            resolutions.append(await self.resolve(prop, platform))
            if i < len(platforms) - 1 and self.source_pause:
                await asyncio.sleep(self.source_pause)
        return resolutions

    async def update_alias(
        self,
        property_id: str,
        platform: str,
        identifier: str,
        platform_name: Optional[str] = None,
    ) -> PlatformAlias:
        """Manual confirmation: move a pair straight to `resolved`."""
        is_url = identifier.startswith("http")
        platform_id = None if is_url else identifier
        if platform == EXPEDIA and is_url:
            platform_id = extract_expedia_hotel_id(identifier)
        alias = await self.repository.upsert_alias(PlatformAlias(
            property_id=property_id,
            platform=platform,
            resolution_status=RESOLVED,
            source_id_or_url=identifier,
            platform_id=platform_id,
            platform_url=identifier if is_url else None,
            platform_name=platform_name,
            confidence_score=1.0,
            candidate_options=[],
            last_resolved_at=datetime.utcnow(),
            last_error=None,
        ))
        await self._mirror_on_property(property_id, platform, identifier)
        self.logger.info(f"Manual alias for {property_id} [{platform}] → {identifier}")
        return alias

    # ─── Search ──────────────────────────────────────────────────────────────

    async def search(self, prop: Property, platform: str, query: str) -> List[SearchHit]:
        """Top search hits for one query. Raises RateLimitedSearch on HTTP 429."""
        if platform == GOOGLE:
            resp = await self.client.get(GOOGLE_TEXTSEARCH_URL, params={
                "query": query, "type": "lodging", "key": self.google_api_key,
            })
            if resp.status_code == 429:
                raise RateLimitedSearch(_RATE_LIMITED)
            if resp.status_code >= 400:
                return []
            data = resp.json()
            if data.get("status") != "OK":
                return []
            return [
                SearchHit(name=r.get("name", ""), platform_id=r.get("place_id"))
                for r in (data.get("results") or [])[:MAX_RESULTS]
            ]

        resp = await self.client.get(SERPAPI_URL, params={
            "api_key": self.serpapi_key,
            "q": f"{query} {SITE_FILTERS[platform]}",
            "engine": "google",
            "num": str(MAX_RESULTS),
        })
        if resp.status_code == 429:
            raise RateLimitedSearch(_RATE_LIMITED)
        if resp.status_code >= 400:
            return []
        hits = []
        for r in (resp.json().get("organic_results") or [])[:MAX_RESULTS]:
            link = r.get("link")
            hits.append(SearchHit(
                name=r.get("title", ""),
                url=link,
                platform_id=extract_expedia_hotel_id(link) if platform == EXPEDIA and link else None,
            ))
        return hits

    def _missing_key(self, platform: str) -> Optional[str]:
        if platform == GOOGLE and not self.google_api_key:
            return "GOOGLE_PLACES_API_KEY not configured"
        if platform != GOOGLE and not self.serpapi_key:
            return "SERPAPI_API_KEY not configured"
        return None

    # ─── Internals ───────────────────────────────────────────────────────────

    async def _resolve(self, prop: Property, platform: str) -> Resolution:
        if platform == KASA:
            if prop.kasa_url:
                return Resolution(platform, RESOLVED, platform_url=prop.kasa_url, confidence=1.0)
            return Resolution(platform, NOT_LISTED)
        if platform not in SITE_FILTERS and platform != GOOGLE:
            return Resolution(platform, SCRAPE_FAILED, error=f"Unsupported platform: {platform}")

        missing = self._missing_key(platform)
        if missing:
            return Resolution(platform, SCRAPE_FAILED, error=missing)

        confidence = settings.GOOGLE_MATCH_CONFIDENCE if platform == GOOGLE else settings.OTA_MATCH_CONFIDENCE
        queries: List[str] = []
        try:
            for query in generate_search_queries(prop.name, prop.city, prop.state)[:MAX_QUERIES]:
                queries.append(query)
                hits = await self.search(prop, platform, query)
                if not hits:
                    continue

                candidates = []
                for hit in hits:
                    match = analyze_hotel_match(prop.name, _clean_title(hit.name))
                    if match.is_match:
                        return Resolution(
                            platform,
                            RESOLVED,
                            platform_id=hit.platform_id,
                            platform_url=hit.url,
                            platform_name=hit.name,
                            confidence=confidence,
                            attempts=len(queries),
                            queries=queries,
                        )
                    candidates.append(Candidate(
                        name=hit.name,
                        url=hit.url,
                        platform_id=hit.platform_id,
                        confidence=settings.WEAK_CANDIDATE_CONFIDENCE,
                        reason=match.reason,
                    ))
                return Resolution(
                    platform, NEEDS_REVIEW, candidates=candidates, attempts=len(queries), queries=queries
                )
            return Resolution(platform, NOT_LISTED, attempts=len(queries), queries=queries)

        except RateLimitedSearch:
            return Resolution(platform, SCRAPE_FAILED, error=_RATE_LIMITED, attempts=len(queries), queries=queries)
        except httpx.TimeoutException as e:
            return Resolution(platform, TIMEOUT, error=f"Search timed out: {e}", attempts=len(queries), queries=queries)
        except (httpx.HTTPError, ResolutionError, ValueError) as e:
            return Resolution(platform, SCRAPE_FAILED, error=str(e), attempts=len(queries), queries=queries)

    async def _store(self, prop: Property, resolution: Resolution) -> None:
        await self.repository.upsert_alias(PlatformAlias(
            property_id=prop.id,
            platform=resolution.platform,
            resolution_status=resolution.status,
            source_id_or_url=resolution.identifier,
            platform_id=resolution.platform_id,
            platform_url=resolution.platform_url,
            platform_name=resolution.platform_name,
            confidence_score=resolution.confidence,
            candidate_options=resolution.candidates,
            last_resolved_at=datetime.utcnow(),
            last_error=resolution.error,
        ))
        if resolution.status == RESOLVED:
            await self._mirror_on_property(prop.id, resolution.platform, resolution.identifier)

    async def _mirror_on_property(self, property_id: str, platform: str, identifier: Optional[str]) -> None:
        if not identifier:
            return
        column = "google_place_id" if platform == GOOGLE else f"{platform}_url"
        await self.repository.update_property(property_id, **{column: identifier})

    async def aclose(self) -> None:
        await self.client.aclose()


class MockResolver(IdentityResolver):
    """Offline resolver for demo mode: every search returns the property itself."""

    def _missing_key(self, platform: str) -> Optional[str]:
        return None

    async def search(self, prop: Property, platform: str, query: str) -> List[SearchHit]:
        slug = re.sub(r"[^a-z0-9]+", "-", prop.name.lower()).strip("-")
        if platform == GOOGLE:
            return [SearchHit(name=prop.name, platform_id=f"mock-{prop.id}")]
        return [SearchHit(name=prop.name, url=f"https://www.{platform}.example/hotel/{slug}")]
