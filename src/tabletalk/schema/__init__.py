"""Versioned global schemas for TableTalk."""

from tabletalk.schema.cache import SchemaCache
from tabletalk.schema.engine import SchemaStore
from tabletalk.schema.evolution import SchemaEvolutionMatcher
from tabletalk.schema.models import GlobalSchema, SchemaChangelog, SchemaVersion

__all__ = [
    "SchemaCache",
    "SchemaStore",
    "SchemaEvolutionMatcher",
    "GlobalSchema",
    "SchemaVersion",
    "SchemaChangelog",
]
