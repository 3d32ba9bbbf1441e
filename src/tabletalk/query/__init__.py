"""Natural-language query pipeline for TableTalk.

Stages, in the order a question passes through them:
    1. Schema Context Builder - tables, typed columns, samples and row counts
    2. Query Generator - completion call with timeout and a single retry
    3. Truncation Repair - restores quote and parenthesis balance
    4. Query Validator - SELECT-only keyword policy and table scope
    5. Query Executor - paginated, time-bounded execution

Example:
    result = await db.ask("Which region sold the most?", user_id="alice")

    # Or inspect what the generator is given
    context = db.get_schema_context(user_id="alice")
    print(context.to_prompt())
"""

from tabletalk.query.context import SchemaContextBuilder, get_schema_context
from tabletalk.query.executor import QueryExecutor
from tabletalk.query.generator import CompletionProvider, OpenAICompletionProvider, QueryGenerator
from tabletalk.query.pipeline import QueryPipeline
from tabletalk.query.repair import fix_truncated_query, repair_query
from tabletalk.query.validator import QueryValidator, ValidationResult, validate_query

__all__ = [
    "SchemaContextBuilder",
    "get_schema_context",
    "CompletionProvider",
    "OpenAICompletionProvider",
    "QueryGenerator",
    "fix_truncated_query",
    "repair_query",
    "QueryValidator",
    "ValidationResult",
    "validate_query",
    "QueryExecutor",
    "QueryPipeline",
]
