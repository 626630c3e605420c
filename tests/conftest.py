"""
Shared fixtures: in-memory database, repository, scripted fetchers.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from agents.resolver import MockResolver
from db.database import make_engine
from db.models import Base
from db.repository import ReputationRepository
from db.store import SqlRowStore
from models.schemas import FetchResult, Property


def run(coro):
    return asyncio.run(coro)


class ScriptedFetcher:
    """Returns queued results in order, then repeats the last one."""

    def __init__(self, platform, *results):
        self.platform = platform
        self.results = list(results)
        self.calls = []

    async def fetch(self, prop, alias=None) -> FetchResult:
        self.calls.append(prop.id)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    async def aclose(self):
        return None


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return ReputationRepository(SqlRowStore(session_factory))


@pytest.fixture
def mock_resolver(repository):
    return MockResolver(repository, client=httpx.AsyncClient(), source_pause=0)


def make_property(pid, name="Hotel Zetta", city="San Francisco", state="CA", with_ids=True, **extra):
    values = {}
    if with_ids:
        values = {
            "google_place_id": f"gp-{pid}",
            "tripadvisor_url": f"https://www.tripadvisor.com/Hotel_Review-{pid}",
            "booking_url": f"https://www.booking.com/hotel/us/{pid}.html",
            "expedia_url": f"https://www.expedia.com/h{pid}.Hotel-Information",
        }
    values.update(extra)
    return Property(id=pid, name=name, city=city, state=state, **values)


@pytest.fixture
def add_properties(repository):
    def _add(*props):
        async def go():
            return [await repository.add_property(p) for p in props]
        return run(go())
    return _add
