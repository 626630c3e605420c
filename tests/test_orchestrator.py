"""
Refresh orchestration: phases, partitions, retries and isolation.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx
import pytest

from agents.base import AgentResult, TaskQueue
from agents.orchestrator import RefreshInProgress, RefreshOrchestrator
from agents.resolver import MockResolver
from conftest import ScriptedFetcher, make_property, run
from models.schemas import (
    ApiError, BOOKING, CELL_COMPLETE, CELL_FAILED, CELL_NOT_LISTED, EXPEDIA, FOUND, Found,
    GOOGLE, NEEDS_REVIEW, NOT_LISTED, NotListed, PHASE_COMPLETE, PHASE_FETCHING, PHASE_RESOLVING,
    PlatformAlias, RateLimited, REFRESH_PLATFORMS, Resolution, SCRAPE_FAILED, Timeout, TRIPADVISOR,
)


def found(raw=4.5, scale=5.0, count=100):
    return Found(raw_score=raw, scale=scale, review_count=count)


def all_found():
    return {
        GOOGLE: ScriptedFetcher(GOOGLE, found(4.5, 5.0, 1000)),
        TRIPADVISOR: ScriptedFetcher(TRIPADVISOR, found(4.0, 5.0, 500)),
        BOOKING: ScriptedFetcher(BOOKING, found(8.8, 10.0, 300)),
        EXPEDIA: ScriptedFetcher(EXPEDIA, found(9.0, 10.0, 200)),
    }


def make_orchestrator(repository, resolver, fetchers, **kwargs):
    kwargs.setdefault("max_retries", 1)
    return RefreshOrchestrator(
        repository, resolver, fetchers,
        call_delay=0, retry_delay=0, resolve_pacing=0, **kwargs
    )


class FakeInsights:
    def __init__(self):
        self.seen = []

    async def execute(self, prop):
        self.seen.append(prop.id)
        return AgentResult(agent_name="insights", success=True)


# ─── Bulk refresh ────────────────────────────────────────────────────────────

class TestRefreshAll:
    def test_every_pair_fetched_once(self, repository, mock_resolver, add_properties):
        add_properties(*(make_property(f"p{i}") for i in range(3)))
        fetchers = all_found()
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)

        summary = run(orchestrator.refresh_all())

        assert summary.fetch_attempts == 3 * len(REFRESH_PLATFORMS)
        assert summary.found == 12
        assert summary.resolutions == 0
        assert orchestrator.phase == PHASE_COMPLETE
        assert orchestrator.complete and not orchestrator.running
        assert orchestrator.progress == 1.0
        assert all(len(f.calls) == 3 for f in fetchers.values())
        assert len(run(repository.list_snapshots())) == 12

    def test_scores_are_normalized(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        run(make_orchestrator(repository, mock_resolver, all_found()).refresh_all())
        latest = run(repository.latest_scores())["p1"]
        assert latest[GOOGLE].score == 9.0
        assert latest[TRIPADVISOR].score == 8.0
        assert latest[BOOKING].score == 8.8
        assert latest[EXPEDIA].count == 200

    def test_partition_is_reported(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"), make_property("p2", name="Alise Chicago", city="Chicago"))
        fetchers = {
            GOOGLE: ScriptedFetcher(GOOGLE, found()),
            TRIPADVISOR: ScriptedFetcher(TRIPADVISOR, NotListed()),
            BOOKING: ScriptedFetcher(BOOKING, ApiError("boom")),
            EXPEDIA: ScriptedFetcher(EXPEDIA, RateLimited()),
        }
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)
        summary = run(orchestrator.refresh_all())

        assert (summary.found, summary.not_listed, summary.failed) == (2, 2, 4)
        assert summary.total == summary.fetch_attempts == 8
        assert orchestrator.phase == PHASE_COMPLETE
        assert orchestrator.cells[("p1", TRIPADVISOR)].status == CELL_NOT_LISTED
        assert orchestrator.cells[("p1", BOOKING)].error == "boom"
        assert orchestrator.failed_count() == 4

    def test_transient_failure_retried_once(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        fetchers = all_found()
        fetchers[EXPEDIA] = ScriptedFetcher(EXPEDIA, RateLimited(), found(9.0, 10.0, 50))
        fetchers[BOOKING] = ScriptedFetcher(BOOKING, ApiError("boom"))
        summary = run(make_orchestrator(repository, mock_resolver, fetchers).refresh_all())

        assert len(fetchers[EXPEDIA].calls) == 2
        assert len(fetchers[BOOKING].calls) == 1
        assert summary.found == 3
        assert summary.failed == 1
        assert summary.fetch_attempts == 4

    def test_retry_budget_is_bounded(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        fetchers = all_found()
        fetchers[GOOGLE] = ScriptedFetcher(GOOGLE, RateLimited())
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers, max_retries=2)
        run(orchestrator.refresh_all(platforms=[GOOGLE]))
        assert len(fetchers[GOOGLE].calls) == 3
        assert orchestrator.cells[("p1", GOOGLE)].status == CELL_FAILED

    def test_timeout_is_retried_once(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        fetchers = {GOOGLE: ScriptedFetcher(GOOGLE, Timeout(), found())}
        summary = run(make_orchestrator(repository, mock_resolver, fetchers).refresh_all(platforms=[GOOGLE]))
        assert len(fetchers[GOOGLE].calls) == 2
        assert summary.found == 1

    @pytest.mark.parametrize("message", ["upstream timeout", "rate limit exceeded", "HTTP 429"])
    def test_api_error_with_transient_signature_is_retried(
        self, repository, mock_resolver, add_properties, message
    ):
        add_properties(make_property("p1"))
        fetchers = {BOOKING: ScriptedFetcher(BOOKING, ApiError(message))}
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)
        run(orchestrator.refresh_all(platforms=[BOOKING]))

        assert len(fetchers[BOOKING].calls) == 2
        assert orchestrator.cells[("p1", BOOKING)].status == CELL_FAILED
        assert orchestrator.cells[("p1", BOOKING)].error == message

    def test_unresolved_properties_are_resolved_first(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1", with_ids=False))
        orchestrator = make_orchestrator(repository, mock_resolver, all_found())
        summary = run(orchestrator.refresh_all())

        assert summary.resolutions == len(REFRESH_PLATFORMS)
        assert summary.found == len(REFRESH_PLATFORMS)
        prop = run(repository.get_property("p1"))
        assert prop.google_place_id == "mock-p1"
        assert prop.booking_url.startswith("https://www.booking.example/hotel/")

    def test_property_scope(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"), make_property("p2"))
        fetchers = all_found()
        summary = run(make_orchestrator(repository, mock_resolver, fetchers).refresh_all(property_ids=["p2"]))
        assert summary.fetch_attempts == 4
        assert fetchers[GOOGLE].calls == ["p2"]


# ─── Failure isolation ───────────────────────────────────────────────────────

class TestFailureIsolation:
    def test_failed_fetch_keeps_previous_score(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        run(make_orchestrator(repository, mock_resolver, all_found()).refresh_all(platforms=[BOOKING]))

        failing = {BOOKING: ScriptedFetcher(BOOKING, ApiError("boom"))}
        run(make_orchestrator(repository, mock_resolver, failing).refresh_all(platforms=[BOOKING]))

        latest = run(repository.latest_scores())["p1"][BOOKING]
        assert latest.score == 8.8
        assert latest.status == FOUND
        assert len(run(repository.list_snapshots("p1", BOOKING))) == 1

    def test_not_listed_alias_is_never_fetched(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1", booking_url=None))
        run(repository.upsert_alias(PlatformAlias(
            property_id="p1", platform=BOOKING, resolution_status=NOT_LISTED,
        )))
        fetchers = all_found()
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)

        summary = run(orchestrator.refresh_all())
        run(orchestrator.refresh_row("p1"))

        assert fetchers[BOOKING].calls == []
        assert summary.not_listed == 1
        assert summary.resolutions == 0
        assert orchestrator.cells[("p1", BOOKING)].status == CELL_NOT_LISTED

    def test_needs_review_alias_fails_without_fetching(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1", booking_url=None))
        run(repository.upsert_alias(PlatformAlias(
            property_id="p1", platform=BOOKING, resolution_status=NEEDS_REVIEW,
        )))
        fetchers = all_found()
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)
        summary = run(orchestrator.refresh_all(platforms=[BOOKING]))

        assert fetchers[BOOKING].calls == []
        assert summary.resolutions == 0
        assert summary.failed == 1
        cell = orchestrator.cells[("p1", BOOKING)]
        assert cell.status == CELL_FAILED
        assert cell.error == "booking alias is needs_review"
        assert run(repository.list_snapshots("p1", BOOKING)) == []

    def test_failed_resolution_fails_without_fetching(self, repository, add_properties):
        class StuckResolver(MockResolver):
            async def _resolve(self, prop, platform):
                return Resolution(platform, SCRAPE_FAILED, error="RATE_LIMITED")

        add_properties(make_property("p1", booking_url=None))
        resolver = StuckResolver(repository, client=httpx.AsyncClient(), source_pause=0)
        fetchers = all_found()
        orchestrator = make_orchestrator(repository, resolver, fetchers, max_retries=3)
        summary = run(orchestrator.refresh_all(platforms=[BOOKING]))

        assert fetchers[BOOKING].calls == []
        assert summary.resolutions == 1
        assert orchestrator.cells[("p1", BOOKING)].status == CELL_FAILED
        assert orchestrator.cells[("p1", BOOKING)].error == "booking alias is scrape_failed"
        assert run(repository.get_alias("p1", BOOKING)).resolution_status == SCRAPE_FAILED

    def test_crashing_fetcher_is_isolated(self, repository, mock_resolver, add_properties):
        class Exploding:
            async def fetch(self, prop, alias=None):
                raise RuntimeError("kaboom")

        add_properties(make_property("p1"))
        fetchers = all_found()
        fetchers[TRIPADVISOR] = Exploding()
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)
        summary = run(orchestrator.refresh_all())

        assert summary.failed == 1
        assert summary.found == 3
        assert orchestrator.cells[("p1", TRIPADVISOR)].error == "kaboom"

    def test_concurrent_run_rejected(self, repository, mock_resolver):
        orchestrator = make_orchestrator(repository, mock_resolver, all_found())
        orchestrator.running = True
        with pytest.raises(RefreshInProgress):
            run(orchestrator.refresh_all())
        with pytest.raises(RefreshInProgress):
            orchestrator.reset()


# ─── Single cell / row / retry ───────────────────────────────────────────────

class TestTargetedRefresh:
    def test_retry_all_failed_only_touches_failed_cells(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        fetchers = all_found()
        fetchers[BOOKING] = ScriptedFetcher(BOOKING, ApiError("boom"), ApiError("boom"), found(8.0, 10.0, 10))
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers, max_retries=0)

        run(orchestrator.refresh_all())
        assert orchestrator.failed_count() == 1

        run(orchestrator.retry_all_failed())
        assert orchestrator.failed_count() == 1
        summary = run(orchestrator.retry_all_failed())

        assert summary.fetch_attempts == 1
        assert orchestrator.failed_count() == 0
        assert len(fetchers[GOOGLE].calls) == 1
        assert len(fetchers[BOOKING].calls) == 3
        assert orchestrator.cells[("p1", GOOGLE)].status == CELL_COMPLETE

    def test_retry_with_nothing_failed(self, repository, mock_resolver):
        orchestrator = make_orchestrator(repository, mock_resolver, all_found())
        assert run(orchestrator.retry_all_failed()).fetch_attempts == 0

    def test_refresh_cell(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        fetchers = all_found()
        orchestrator = make_orchestrator(repository, mock_resolver, fetchers)
        cell = run(orchestrator.retry_platform("p1", EXPEDIA))
        assert cell.status == CELL_COMPLETE
        assert len(fetchers[EXPEDIA].calls) == 1
        assert fetchers[GOOGLE].calls == []

    def test_row_refresh_spawns_insights(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        insights = FakeInsights()
        tasks = TaskQueue()
        orchestrator = make_orchestrator(
            repository, mock_resolver, all_found(), task_queue=tasks, insights=insights
        )

        async def go():
            summary = await orchestrator.refresh_row("p1")
            await tasks.join()
            return summary

        summary = run(go())
        assert summary.found == 4
        assert insights.seen == ["p1"]
        assert tasks.results[0].success

    def test_bulk_refresh_does_not_spawn_insights(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        insights = FakeInsights()
        tasks = TaskQueue()
        orchestrator = make_orchestrator(
            repository, mock_resolver, all_found(), task_queue=tasks, insights=insights
        )
        run(orchestrator.refresh_all())
        assert insights.seen == []


# ─── Observers ───────────────────────────────────────────────────────────────

class TestObservers:
    def test_phase_and_cell_events(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        events = []
        orchestrator = make_orchestrator(repository, mock_resolver, all_found())
        unsubscribe = orchestrator.subscribe(lambda event, payload: events.append((event, payload)))

        run(orchestrator.refresh_all())

        phases = [payload for event, payload in events if event == "phase"]
        assert phases == [PHASE_RESOLVING, PHASE_FETCHING, PHASE_COMPLETE]
        assert events[-1][0] == "complete"
        assert any(event == "cell" for event, _ in events)

        unsubscribe()
        events.clear()
        run(orchestrator.refresh_all())
        assert events == []

    def test_broken_observer_does_not_stop_refresh(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        orchestrator = make_orchestrator(repository, mock_resolver, all_found())

        def broken(event, payload):
            raise ValueError("observer bug")

        orchestrator.subscribe(broken)
        assert run(orchestrator.refresh_all()).found == 4

    def test_state_snapshot(self, repository, mock_resolver, add_properties):
        add_properties(make_property("p1"))
        orchestrator = make_orchestrator(repository, mock_resolver, all_found())
        run(orchestrator.refresh_all())
        state = orchestrator.state()
        assert state["phase"] == PHASE_COMPLETE
        assert state["summary"]["found"] == 4
        assert len(state["cells"]) == 4
        orchestrator.reset()
        assert orchestrator.state()["cells"] == []
