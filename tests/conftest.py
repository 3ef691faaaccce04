import os
import sys
from typing import Callable, Dict, Optional, Union

import pytest
import pytest_asyncio

# Add project root to sys.path so tests run without an editable install.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from harvester.infra.db import Database
from harvester.infra.store import ScrapeStateStore, SourceRepository
from harvester.interfaces import FetchStrategy
from harvester.models import EventSource, FetchResult, GeoFilter


ORG_ID = "org-1"


def event_page(count: int, prefix: str = "Family") -> str:
    """A listing page with ``count`` well-formed event cards."""
    cards = "\n".join(
        f"""
        <div class="event">
          <h3>{prefix} Event {i}</h3>
          <time datetime="2030-05-{i:02d}T10:00:00Z">May {i}, 2030</time>
          <p>A relaxed afternoon of activities for everyone in the community.</p>
          <a href="/events/{prefix.lower()}-{i}">More info</a>
        </div>"""
        for i in range(1, count + 1)
    )
    return f"<html><body><h1>Upcoming</h1><div class=\"events-list\">{cards}</div></body></html>"


def make_source(source_id: str, url: Optional[str] = None, **kwargs) -> EventSource:
    kwargs.setdefault("organization_id", ORG_ID)
    kwargs.setdefault("name", f"Source {source_id}")
    kwargs.setdefault("location", GeoFilter(city="Miami", state="FL"))
    return EventSource(id=source_id, url=url or f"https://{source_id}.example.org/events", **kwargs)


class StaticStrategy(FetchStrategy):
    """Serves canned pages by URL; an exception value is raised instead."""

    name = "static"

    def __init__(self, pages: Dict[str, Union[str, Exception]]):
        self.pages = pages
        self.calls = []

    async def attempt(self, url: str) -> Optional[FetchResult]:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise ConnectionError(f"no route to {url}")
        if isinstance(page, Exception):
            raise page
        return FetchResult(html=page, method=self.name, url=url)


class FakeHttp:
    """Stand-in for HttpClient; ``handler(url, **kwargs)`` returns or raises."""

    def __init__(self, handler: Callable):
        self.handler = handler
        self.calls = []
        self.closed = False

    async def get_text(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.handler(url, **kwargs)

    async def get_body(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.handler(url, **kwargs)

    async def close(self):
        self.closed = True


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "harvester.db"))
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def repository(db):
    repo = SourceRepository(db)
    await repo.save_organization(ORG_ID, "Inclusive Miami")
    return repo


@pytest.fixture
def state(db):
    return ScrapeStateStore(db)
