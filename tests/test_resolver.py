"""
Identity resolution: search, matching, alias persistence.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx
import pytest

from agents.resolver import IdentityResolver
from conftest import make_property, run
from models.schemas import (
    BOOKING, EXPEDIA, GOOGLE, KASA, NEEDS_REVIEW, NOT_LISTED, PENDING, PlatformAlias,
    RESOLVED, SCRAPE_FAILED, TIMEOUT,
)


class CountingHandler:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def make_resolver(repository, handler, google_key="g", serp_key="s"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IdentityResolver(
        repository, client=client, google_api_key=google_key, serpapi_key=serp_key, source_pause=0
    )


@pytest.fixture
def zetta(repository, add_properties):
    (prop,) = add_properties(make_property("p1", with_ids=False))
    return prop


def google_hit(name="Hotel Zetta San Francisco", place_id="ChIJ-zetta"):
    return httpx.Response(200, json={"status": "OK", "results": [{"name": name, "place_id": place_id}]})


def serp_hits(*hits):
    return httpx.Response(200, json={"organic_results": [{"title": t, "link": l} for t, l in hits]})


# ─── Resolution outcomes ─────────────────────────────────────────────────────

class TestResolve:
    def test_google_match_resolves_and_mirrors(self, repository, zetta):
        resolver = make_resolver(repository, CountingHandler(google_hit()))
        resolution = run(resolver.resolve(zetta, GOOGLE))

        assert resolution.status == RESOLVED
        assert resolution.platform_id == "ChIJ-zetta"
        assert resolution.confidence == 0.9

        alias = run(repository.get_alias("p1", GOOGLE))
        assert alias.is_resolved
        assert alias.identifier == "ChIJ-zetta"
        assert run(repository.get_property("p1")).google_place_id == "ChIJ-zetta"

    def test_resolved_alias_is_not_searched_again(self, repository, zetta):
        handler = CountingHandler(google_hit())
        resolver = make_resolver(repository, handler)
        run(resolver.resolve(zetta, GOOGLE))
        before = run(repository.get_alias("p1", GOOGLE))

        handler.responses = [httpx.Response(500)]
        again = run(resolver.resolve(zetta, GOOGLE))
        after = run(repository.get_alias("p1", GOOGLE))

        assert len(handler.requests) == 1
        assert again.status == RESOLVED
        assert after.identifier == before.identifier
        assert after.resolution_status == before.resolution_status
        assert after.last_resolved_at == before.last_resolved_at

    def test_ota_match_strips_site_suffix(self, repository, zetta):
        handler = CountingHandler(serp_hits(
            ("Hotel Zetta San Francisco - Booking.com", "https://www.booking.com/hotel/us/zetta.html"),
        ))
        resolution = run(make_resolver(repository, handler).resolve(zetta, BOOKING))
        assert resolution.status == RESOLVED
        assert resolution.platform_url == "https://www.booking.com/hotel/us/zetta.html"
        assert resolution.confidence == 0.85
        assert "site:booking.com/hotel" in handler.requests[0].url.params["q"]
        assert run(repository.get_property("p1")).booking_url == "https://www.booking.com/hotel/us/zetta.html"

    def test_expedia_hit_carries_hotel_id(self, repository, zetta):
        url = "https://www.expedia.com/San-Francisco-Hotels-Hotel-Zetta.h12345.Hotel-Information"
        handler = CountingHandler(serp_hits(("Hotel Zetta San Francisco | Expedia", url)))
        resolution = run(make_resolver(repository, handler).resolve(zetta, EXPEDIA))
        assert resolution.status == RESOLVED
        assert resolution.platform_id == "12345"

    def test_unconfident_hits_need_review(self, repository, zetta):
        handler = CountingHandler(serp_hits(
            ("Hotel Emblem San Francisco - Booking.com", "https://www.booking.com/hotel/us/emblem.html"),
        ))
        resolution = run(make_resolver(repository, handler).resolve(zetta, BOOKING))

        assert resolution.status == NEEDS_REVIEW
        assert len(resolution.candidates) == 1
        assert resolution.candidates[0].confidence == 0.3
        alias = run(repository.get_alias("p1", BOOKING))
        assert alias.resolution_status == NEEDS_REVIEW
        assert alias.candidate_options[0].url == "https://www.booking.com/hotel/us/emblem.html"

    def test_no_hits_is_not_listed(self, repository, zetta):
        handler = CountingHandler(serp_hits())
        resolution = run(make_resolver(repository, handler).resolve(zetta, BOOKING))
        assert resolution.status == NOT_LISTED
        assert resolution.attempts == 3
        assert len(handler.requests) == 3

    def test_rate_limited_search(self, repository, zetta):
        handler = CountingHandler(httpx.Response(429))
        resolution = run(make_resolver(repository, handler).resolve(zetta, GOOGLE))
        assert resolution.status == SCRAPE_FAILED
        assert resolution.error == "RATE_LIMITED"
        assert run(repository.get_alias("p1", GOOGLE)).last_error == "RATE_LIMITED"

    def test_search_timeout(self, repository, zetta):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        resolution = run(make_resolver(repository, handler).resolve(zetta, GOOGLE))
        assert resolution.status == TIMEOUT

    def test_missing_search_key(self, repository, zetta):
        handler = CountingHandler(serp_hits())
        resolution = run(make_resolver(repository, handler, serp_key="").resolve(zetta, BOOKING))
        assert resolution.status == SCRAPE_FAILED
        assert resolution.error == "SERPAPI_API_KEY not configured"
        assert handler.requests == []

    def test_kasa_uses_stored_url(self, repository, add_properties):
        (kasa,) = add_properties(make_property("k1", name="Kasa The Niche", with_ids=False,
                                               kasa_url="https://kasa.com/niche"))
        resolver = make_resolver(repository, CountingHandler(httpx.Response(500)))
        assert run(resolver.resolve(kasa, KASA)).platform_url == "https://kasa.com/niche"

    def test_kasa_without_url_is_not_listed(self, repository, zetta):
        resolver = make_resolver(repository, CountingHandler(httpx.Response(500)))
        assert run(resolver.resolve(zetta, KASA)).status == NOT_LISTED


# ─── Needs-resolution rule ───────────────────────────────────────────────────

class TestNeedsResolution:
    @pytest.mark.parametrize("status, identifier, expected", [
        (PENDING, None, True),
        (SCRAPE_FAILED, None, True),
        (TIMEOUT, None, True),
        (RESOLVED, None, True),
        (RESOLVED, "ChIJ-zetta", False),
        (NOT_LISTED, None, False),
        (NEEDS_REVIEW, None, False),
    ])
    def test_truth_table(self, repository, zetta, status, identifier, expected):
        run(repository.upsert_alias(PlatformAlias(
            property_id="p1", platform=GOOGLE, resolution_status=status, source_id_or_url=identifier,
        )))
        resolver = make_resolver(repository, CountingHandler(httpx.Response(500)))
        assert run(resolver.needs_resolution(zetta, GOOGLE)) is expected

    def test_missing_alias(self, repository, zetta):
        resolver = make_resolver(repository, CountingHandler(httpx.Response(500)))
        assert run(resolver.needs_resolution(zetta, BOOKING)) is True


# ─── Manual override ─────────────────────────────────────────────────────────

class TestUpdateAlias:
    def test_manual_confirmation(self, repository, zetta):
        handler = CountingHandler(serp_hits(
            ("Hotel Emblem San Francisco - Booking.com", "https://www.booking.com/hotel/us/emblem.html"),
        ))
        resolver = make_resolver(repository, handler)
        run(resolver.resolve(zetta, BOOKING))

        url = "https://www.booking.com/hotel/us/zetta.html"
        alias = run(resolver.update_alias("p1", BOOKING, url, platform_name="Hotel Zetta"))

        assert alias.resolution_status == RESOLVED
        assert alias.confidence_score == 1.0
        assert alias.candidate_options == []
        assert alias.identifier == url
        assert run(repository.get_property("p1")).booking_url == url
        assert len(run(repository.list_aliases("p1"))) == 1
