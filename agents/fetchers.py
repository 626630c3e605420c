"""
Platform Fetchers
-----------------
One adapter per rating source behind a uniform contract:

  fetch(property, alias) -> FetchResult
      Found | NotListed | RateLimited | Timeout | ApiError | NoIdentity

Adapters never resolve identities, never normalize and never persist.
Each one absorbs its own source's response quirks.

Supported sources:
  - Google Places Details API
  - TripAdvisor and Booking.com via Apify actors
  - Expedia via the hotels.com provider API (RapidAPI)
  - Kasa property pages (HTML)
  - Mock/demo mode for development
"""

import asyncio
import logging
import random
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup

from agents.base import FetchError
from config.settings import settings
from models.schemas import (
    ApiError,
    BOOKING,
    EXPEDIA,
    FetchResult,
    Found,
    GOOGLE,
    KASA,
    NoIdentity,
    NotListed,
    PLATFORM_SCALES,
    PlatformAlias,
    Property,
    RateLimited,
    ReviewText,
    Timeout,
    TRIPADVISOR,
)

logger = logging.getLogger(__name__)

APIFY_BASE_URL = "https://api.apify.com/v2"
GOOGLE_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"
HOTELS_COM_HOST = "hotels-com-provider.p.rapidapi.com"


class UpstreamTimeout(FetchError):
    """An upstream job did not finish inside its wait window."""


# ─── Parsing helpers ─────────────────────────────────────────────────────────


def parse_expedia_rating(value: Optional[str]) -> Optional[float]:
    """'8,8/10 Excellent' or '8.8/10 Excellent' -> 8.8"""
    if not value:
        return None
    match = re.match(r"^([\d.]+)\s*/\s*10", value.replace(",", ".", 1))
    return float(match.group(1)) if match else None


def parse_review_count(value: Optional[str]) -> int:
    """'901 reviews', 'See all 1,204 reviews' or '901' -> int"""
    if not value:
        return 0
    match = re.search(r"([\d,]+)\s*reviews?", value, re.I) or re.match(r"^([\d,]+)$", value.strip())
    return int(match.group(1).replace(",", "")) if match else 0


def extract_expedia_hotel_id(identifier: str) -> Optional[str]:
    if identifier.isdigit():
        return identifier
    match = re.search(r"/ho(\d+)", identifier)
    if match:
        return match.group(1)
    query = parse_qs(urlparse(identifier).query)
    for key in ("selected", "hotelId"):
        if query.get(key):
            return query[key][0]
    match = re.search(r"(?:selected|hotelId)=(\d+)", identifier)
    if match:
        return match.group(1)
    # Expedia hotel pages end in ".h<id>.Hotel-Information"
    match = re.search(r"\.h(\d+)\.", identifier)
    return match.group(1) if match else None


_KASA_PRIMARY = re.compile(r"(\d+\.\d{1,2})\s*[•·]\s*(\d+)\s*reviews?", re.I)
_KASA_TOTAL = re.compile(r"total\s+rating[:\s]+(\d+\.\d{1,2})\s+based\s+on\s+(\d+)\s*reviews?", re.I)


def parse_kasa_rating(text: str) -> Tuple[Optional[float], int]:
    """Aggregate rating from Kasa page text: '4.66 • 825 reviews'."""
    for pattern in (_KASA_PRIMARY, _KASA_TOTAL):
        match = pattern.search(text)
        if match:
            rating = float(match.group(1))
            if 1 <= rating <= 5:
                return rating, int(match.group(2))
    return None, 0


def parse_kasa_reviews(soup: BeautifulSoup, property_id: str, limit: int = 25) -> List[ReviewText]:
    """Guest quotes shown on a Kasa page, labelled 'From TripAdvisor' etc."""
    reviews: List[ReviewText] = []
    seen = set()
    text = soup.get_text("\n")
    for block in re.split(r"(?=From\s+(?:TripAdvisor|Expedia|Google|Booking\.com|Booking|Airbnb)\b)", text):
        source = re.match(r"From\s+(TripAdvisor|Expedia|Google|Booking\.com|Booking|Airbnb)", block, re.I)
        if not source:
            continue
        quote = re.search(r"[\"“]([^\"”]{20,})[\"”]", block)
        body = quote.group(1) if quote else block[source.end():].strip().split("\n\n")[0]
        body = re.sub(r"\s+", " ", body).strip()
        if len(body) < 20 or body in seen:
            continue
        seen.add(body)
        reviews.append(ReviewText(property_id=property_id, platform=KASA, text=body))
        if len(reviews) >= limit:
            break
    return reviews


def _first_number(item: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = item.get(key)
        if value is None or value == "":
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


# ─── Per-platform fetchers ───────────────────────────────────────────────────


class BaseFetcher:
    platform: str = ""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(
            timeout=settings.REQUEST_TIMEOUT,
            headers={"User-Agent": settings.USER_AGENT},
            follow_redirects=True,
        )

    @property
    def scale(self) -> float:
        return PLATFORM_SCALES[self.platform]

    def identifier_for(self, prop: Property, alias: Optional[PlatformAlias]) -> Optional[str]:
        if alias is not None and alias.is_resolved:
            return alias.identifier
        return prop.identifier_for(self.platform)

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        resp = await self.client.get(url, **kwargs)
        resp.raise_for_status()
        return resp

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        resp = await self.client.post(url, **kwargs)
        resp.raise_for_status()
        return resp

    async def fetch(self, prop: Property, alias: Optional[PlatformAlias] = None) -> FetchResult:
        identifier = self.identifier_for(prop, alias)
        if not identifier:
            return NoIdentity(f"No {self.platform} identifier for {prop.name}")
        try:
            return await self._fetch(prop, identifier)
        except httpx.TimeoutException as e:
            logger.warning(f"{self.platform}: timeout for {prop.name}: {e}")
            return Timeout(f"Request timed out: {e}" if str(e) else "Request timed out")
        except UpstreamTimeout as e:
            return Timeout(str(e))
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 429:
                return RateLimited(f"{self.platform} returned 429")
            return ApiError(f"{self.platform} HTTP {code}")
        except httpx.RequestError as e:
            return ApiError(f"{self.platform} request failed: {e}")
        except (FetchError, ValueError, KeyError, TypeError) as e:
            return ApiError(str(e))

    async def _fetch(self, prop: Property, identifier: str) -> FetchResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        await self.client.aclose()


class GoogleFetcher(BaseFetcher):
    """Google Places Details: rating on 1–5 plus user_ratings_total."""

    platform = GOOGLE

    def __init__(self, client: Optional[httpx.AsyncClient] = None, api_key: Optional[str] = None):
        super().__init__(client)
        self.api_key = api_key if api_key is not None else settings.GOOGLE_PLACES_API_KEY

    def identifier_for(self, prop: Property, alias: Optional[PlatformAlias]) -> Optional[str]:
        if alias is not None and alias.is_resolved:
            return alias.platform_id or alias.source_id_or_url
        return prop.google_place_id

    async def _fetch(self, prop: Property, place_id: str) -> FetchResult:
        if not self.api_key:
            return ApiError("GOOGLE_PLACES_API_KEY not configured")
        resp = await self._get(GOOGLE_DETAILS_URL, params={
            "place_id": place_id,
            "fields": "name,rating,user_ratings_total,website",
            "key": self.api_key,
        })
        data = resp.json()
        status = data.get("status")
        if status == "OVER_QUERY_LIMIT":
            return RateLimited("Google Places rate limit exceeded")
        if status != "OK" or not data.get("result"):
            return ApiError(f"Place not found: {status}")

        result = data["result"]
        if result.get("rating") is None:
            return NotListed()
        return Found(
            raw_score=float(result["rating"]),
            scale=self.scale,
            review_count=int(result.get("user_ratings_total") or 0),
            platform_id=place_id,
            platform_name=result.get("name"),
            website_url=result.get("website"),
        )


class ApifyFetcher(BaseFetcher):
    """Runs an Apify actor on the alias URL and reads the first dataset item."""

    actor_id: str = ""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        token: Optional[str] = None,
        wait_seconds: Optional[float] = None,
        poll_seconds: Optional[float] = None,
    ):
        super().__init__(client)
        self.token = token if token is not None else settings.APIFY_API_TOKEN
        self.wait_seconds = settings.APIFY_WAIT_SECONDS if wait_seconds is None else wait_seconds
        self.poll_seconds = settings.APIFY_POLL_SECONDS if poll_seconds is None else poll_seconds

    def build_input(self, url: str) -> Dict[str, Any]:
        return {"startUrls": [{"url": url}], "maxItems": 1}

    def parse_item(self, item: Dict[str, Any]) -> Tuple[Optional[float], int, str]:
        raise NotImplementedError

    async def run_actor(self, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not self.token:
            raise FetchError("APIFY_API_TOKEN not configured")
        params = {"token": self.token}
        resp = await self._post(f"{APIFY_BASE_URL}/acts/{self.actor_id}/runs", params=params, json=body)
        run_id = resp.json()["data"]["id"]
        logger.info(f"{self.platform}: Apify run started {run_id}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        while True:
            run = (await self._get(f"{APIFY_BASE_URL}/actor-runs/{run_id}", params=params)).json()["data"]
            status = run.get("status")
            if status == "SUCCEEDED":
                dataset_id = run["defaultDatasetId"]
                break
            if status in ("FAILED", "ABORTED"):
                raise FetchError(f"APIFY_RUN_{status}")
            if status == "TIMED-OUT":
                raise UpstreamTimeout("APIFY_RUN_TIMEOUT")
            if loop.time() >= deadline:
                raise UpstreamTimeout("APIFY_WAIT_TIMEOUT")
            await asyncio.sleep(self.poll_seconds)

        items = (await self._get(f"{APIFY_BASE_URL}/datasets/{dataset_id}/items", params=params)).json()
        return items or []

    async def _fetch(self, prop: Property, url: str) -> FetchResult:
        items = await self.run_actor(self.build_input(url))
        if not items:
            return ApiError("No results from Apify")
        rating, count, name = self.parse_item(items[0])
        if rating is None:
            return NotListed()
        return Found(raw_score=rating, scale=self.scale, review_count=count, platform_name=name or None)


class TripAdvisorFetcher(ApifyFetcher):
    platform = TRIPADVISOR
    actor_id = "dbEyMBriog95Fv8CW"

    def parse_item(self, item):
        rating = _first_number(item, "rating")
        count = _first_number(item, "reviewsCount", "numberOfReviews", "reviewCount") or 0
        return rating, int(count), item.get("name") or ""

    async def fetch_reviews(self, prop: Property, max_reviews: int = 50) -> List[ReviewText]:
        """Recent TripAdvisor review texts, found by name search."""
        items = await self.run_actor({
            "query": f"{prop.name} {prop.city}",
            "maxItems": 1,
            "language": "en",
            "includeReviews": True,
            "maxReviews": max_reviews,
        })
        if not items:
            return []
        return [
            ReviewText(
                property_id=prop.id,
                platform=TRIPADVISOR,
                text=r["text"],
                rating=r.get("rating"),
                review_date=r.get("publishedDate"),
                reviewer_name=(r.get("user") or {}).get("username"),
            )
            for r in items[0].get("reviews") or []
            if r.get("text")
        ]


class BookingFetcher(ApifyFetcher):
    platform = BOOKING
    actor_id = "oeiQgfg5fsmIJB7Cn"

    def build_input(self, url: str) -> Dict[str, Any]:
        return {"startUrls": [url], "maxItems": 1, "simple": True}

    def parse_item(self, item):
        rating = _first_number(item, "score", "reviewScore", "rating")
        count = _first_number(item, "reviewCount", "numberOfReviews", "reviews") or 0
        return rating, int(count), item.get("name") or item.get("hotelName") or ""


class ExpediaFetcher(BaseFetcher):
    """hotels.com provider reviews/scores endpoint; the same inventory backs Expedia."""

    platform = EXPEDIA

    def __init__(self, client: Optional[httpx.AsyncClient] = None, api_key: Optional[str] = None):
        super().__init__(client)
        self.api_key = api_key if api_key is not None else settings.RAPIDAPI_KEY

    def identifier_for(self, prop: Property, alias: Optional[PlatformAlias]) -> Optional[str]:
        if alias is not None and alias.is_resolved:
            return alias.platform_id or alias.identifier
        return prop.expedia_url

    async def _fetch(self, prop: Property, identifier: str) -> FetchResult:
        if not self.api_key:
            return ApiError("RAPIDAPI_KEY not configured")
        hotel_id = extract_expedia_hotel_id(identifier)
        if not hotel_id:
            return NoIdentity(f"Could not extract an Expedia hotel id from {identifier}")

        resp = await self._get(
            f"https://{HOTELS_COM_HOST}/v2/hotels/reviews/scores",
            params={"hotel_id": hotel_id, "locale": "en_US", "domain": "US"},
            headers={"x-rapidapi-host": HOTELS_COM_HOST, "x-rapidapi-key": self.api_key},
        )
        data = resp.json()
        review_data = data[0] if isinstance(data, list) and data else data
        if not review_data or not isinstance(review_data, dict):
            return NotListed()

        rating = parse_expedia_rating((review_data.get("overallScoreWithDescriptionA11y") or {}).get("value"))
        if rating is None and review_data.get("overallScore"):
            rating = parse_expedia_rating(str(review_data["overallScore"]))
        if rating is None and review_data.get("score") is not None:
            rating = float(review_data["score"])

        details = review_data.get("propertyReviewCountDetails") or {}
        if details.get("fullDescription"):
            count = parse_review_count(details["fullDescription"])
        elif details.get("shortDescription"):
            count = parse_review_count(details["shortDescription"])
        else:
            count = int(review_data.get("totalCount") or review_data.get("reviewCount") or 0)

        if rating is None:
            return NotListed()
        return Found(raw_score=rating, scale=self.scale, review_count=count, platform_id=hotel_id)


class KasaFetcher(BaseFetcher):
    """Scrapes the aggregate guest rating off a kasa.com property page."""

    platform = KASA

    async def _page(self, url: str) -> BeautifulSoup:
        resp = await self._get(url)
        return BeautifulSoup(resp.text, "html.parser")

    async def _fetch(self, prop: Property, url: str) -> FetchResult:
        soup = await self._page(url)
        rating, count = parse_kasa_rating(soup.get_text(" "))
        if rating is None:
            return NotListed()
        title = soup.find("h1")
        return Found(
            raw_score=rating,
            scale=self.scale,
            review_count=count,
            platform_name=title.get_text(strip=True) if title else None,
        )

    async def fetch_reviews(self, prop: Property, limit: int = 25) -> List[ReviewText]:
        if not prop.kasa_url:
            return []
        return parse_kasa_reviews(await self._page(prop.kasa_url), prop.id, limit)


class MockFetcher(BaseFetcher):
    """
    Deterministic synthetic ratings for development/demo.
    Seeded per (property, platform) so repeated refreshes are stable.
    """

    NOT_LISTED_RATE = 0.1

    def __init__(self, platform: str, client: Optional[httpx.AsyncClient] = None):
        self.platform = platform
        self.client = client

    def identifier_for(self, prop: Property, alias: Optional[PlatformAlias]) -> Optional[str]:
        return f"mock://{self.platform}/{prop.id}"

    async def _fetch(self, prop: Property, identifier: str) -> FetchResult:
        rng = random.Random(f"{prop.id}:{self.platform}")
        if rng.random() < self.NOT_LISTED_RATE:
            return NotListed()
        # Typical hotel ratings sit in the top third of each scale
        raw = round(rng.uniform(0.68, 0.98) * self.scale, 1)
        return Found(
            raw_score=raw,
            scale=self.scale,
            review_count=rng.randint(20, 3000),
            platform_name=prop.name,
        )

    async def aclose(self) -> None:
        return None


# ─── Registry ────────────────────────────────────────────────────────────────


_FETCHER_MAP = {
    GOOGLE: GoogleFetcher,
    TRIPADVISOR: TripAdvisorFetcher,
    BOOKING: BookingFetcher,
    EXPEDIA: ExpediaFetcher,
    KASA: KasaFetcher,
}


def build_fetchers(client: Optional[httpx.AsyncClient] = None, mock: bool = False) -> Dict[str, BaseFetcher]:
    """One fetcher per platform, sharing a single HTTP client."""
    if mock:
        return {platform: MockFetcher(platform) for platform in _FETCHER_MAP}
    client = client or httpx.AsyncClient(
        timeout=settings.REQUEST_TIMEOUT,
        headers={"User-Agent": settings.USER_AGENT},
        follow_redirects=True,
    )
    return {platform: cls(client=client) for platform, cls in _FETCHER_MAP.items()}
