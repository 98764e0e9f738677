"""Shared fixtures: temporary database and an in-memory page fetcher."""

import hashlib
import tempfile
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from content_importer.core.errors import HttpStatusError
from content_importer.core.schema import Source
from content_importer.db.models import Base
from content_importer.ingestion.crawler import FetchResult, reset_default_crawler
from content_importer.ingestion.registry import reset_default_registry
from content_importer.web.dependencies import reset_dependencies


class FakeFetcher:
    """Serves canned HTML by URL and records every request."""

    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = dict(pages or {})
        self.errors: dict[str, BaseException] = {}
        self.requests: list[str] = []

    async def fetch(self, url: str, source: Source | None = None) -> FetchResult:
        self.requests.append(url)
        if url in self.errors:
            raise self.errors[url]
        if url not in self.pages:
            raise HttpStatusError(url, 404)
        text = self.pages[url]
        return FetchResult(
            url=url,
            final_url=url,
            text=text,
            content_hash=hashlib.sha256(text.encode()).hexdigest(),
            mime_type="text/html",
            status_code=200,
            fetched_at=datetime.now(UTC),
        )


async def no_sleep(seconds: float) -> None:
    """Sleep replacement that returns immediately."""


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop process-wide defaults built during a test."""
    yield
    reset_dependencies()
    reset_default_crawler()
    reset_default_registry()
