"""Shared test fixtures for TableTalk."""

import asyncio
import os
import re
from collections.abc import Callable, Generator, Sequence

import pytest

from tabletalk import TableTalk
from tabletalk.core.connection import DatabaseConnection
from tabletalk.query.generator import CompletionProvider
from tabletalk.schema.cache import SchemaCache
from tabletalk.schema.engine import SchemaStore
from tabletalk.storage.rows import RowStore

Reply = str | Exception | Callable[[str], str]


class FakeCompletionProvider(CompletionProvider):
    """Completion provider that plays back scripted replies.

    Each reply is a string, an exception to raise, or a callable that gets
    the prompt. The last reply repeats once the script runs out. ``delay``
    makes every call sleep first, to exercise timeouts.
    """

    def __init__(self, replies: Sequence[Reply] = ("SELECT 1",), delay: float = 0.0) -> None:
        self.replies = list(replies)
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, prompt: str) -> str:
        self.calls.append((system, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies[min(len(self.calls), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


def first_table(prompt: str) -> str:
    """Return the first table name listed in a generation prompt."""
    match = re.search(r"^Table: (\S+)$", prompt, re.MULTILINE)
    assert match is not None, f"No table in prompt:\n{prompt}"
    return match.group(1)


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        conn = DatabaseConnection(url)
        result = conn.test_connection()
        conn.close()
        return result
    except Exception:
        return False


# Skip marker for tests requiring PostgreSQL
requires_postgresql = pytest.mark.skipif(
    not _psycopg_available(),
    reason="psycopg not installed (install with: pip install tabletalk[postgresql])",
)


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from environment or use default.

    Tests using this fixture should also use @requires_postgresql marker.
    """
    url = os.environ.get("TEST_DATABASE_URL", "postgresql://localhost/tabletalk_test")

    if not _psycopg_available():
        pytest.skip("psycopg not installed")
    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")
    return url


@pytest.fixture
def fake_provider() -> FakeCompletionProvider:
    """Provider that answers every question with a query over the first table."""
    return FakeCompletionProvider([lambda prompt: f"SELECT * FROM {first_table(prompt)}"])


@pytest.fixture
def memory_db(fake_provider: FakeCompletionProvider) -> Generator[TableTalk, None, None]:
    """Create a TableTalk instance with SQLite in-memory and the fake provider."""
    database = TableTalk("sqlite:///:memory:", completion_provider=fake_provider)
    yield database
    database.close()


@pytest.fixture
def connection() -> Generator[DatabaseConnection, None, None]:
    """In-memory SQLite connection with the meta-tables created."""
    conn = DatabaseConnection("sqlite:///:memory:")
    SchemaStore(conn).initialize()
    yield conn
    conn.close()


@pytest.fixture
def cache() -> SchemaCache:
    return SchemaCache(ttl=300)


@pytest.fixture
def schema_store(connection: DatabaseConnection, cache: SchemaCache) -> SchemaStore:
    return SchemaStore(connection, cache=cache)


@pytest.fixture
def rows(connection: DatabaseConnection, cache: SchemaCache) -> RowStore:
    return RowStore(connection, cache=cache)


# Re-export for use in test files
__all__ = ["requires_postgresql", "FakeCompletionProvider", "first_table"]
