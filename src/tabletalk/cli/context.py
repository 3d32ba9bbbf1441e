"""CLI context management for database connections and shared state."""

import os
from dataclasses import dataclass, field

from tabletalk import PipelineSettings, TableTalk

DEFAULT_DATABASE_URL = "sqlite:///./tabletalk.db"


def get_database_url(url: str | None) -> str:
    """Resolve database URL from CLI arg, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. TABLETALK_URL environment variable
    3. Default: sqlite:///./tabletalk.db
    """
    if url:
        return url
    if env_url := os.getenv("TABLETALK_URL"):
        return env_url
    return DEFAULT_DATABASE_URL


@dataclass
class CLIContext:
    """Shared context for CLI commands.

    Manages database connection lifecycle and output preferences.
    """

    database_url: str
    echo: bool
    json_output: bool
    model: str | None = None
    _db: TableTalk | None = field(default=None, init=False, repr=False)

    def get_db(self) -> TableTalk:
        """Get or create the TableTalk instance (lazy initialization)."""
        if self._db is None:
            settings = PipelineSettings(model=self.model) if self.model else None
            self._db = TableTalk(self.database_url, echo=self.echo, settings=settings)
        return self._db

    def close(self) -> None:
        """Close database connection if open."""
        if self._db is not None:
            self._db.close()
            self._db = None
