"""Natural-language to SQL generation.

The completion service sits behind ``CompletionProvider``, a one-method
interface (system + prompt in, text out), so tests and alternative
backends substitute trivially. ``QueryGenerator`` adds the timeout, the
single retry and the response cleanup; it does not try to repair
truncated output, which is handled downstream.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_fixed

from tabletalk.exceptions import GenerationError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

    from tabletalk.core.types import PipelineSettings, SchemaContext

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a SQL expert that translates natural language questions into SQL queries. "
    "You will be given database schema information and a question. "
    "Generate one valid query for the stated database dialect that answers the question. "
    "IMPORTANT: Only generate SELECT queries. Never generate INSERT, UPDATE, DELETE, "
    "or any other modifying statement. "
    "CRITICAL: Use the EXACT table names shown after 'Table:'. Do not use file names as "
    "table names. "
    "Only use columns that are listed for a table. Wrap column names that contain spaces "
    "or capital letters in double quotes. "
    "If the question cannot be answered from the available columns, reply with a short "
    "sentence explaining that the information is not available instead of a query. "
    "Return ONLY the raw SQL query, without markdown, code fences, explanations or comments."
)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


class CompletionProvider(ABC):
    """A text-completion capability.

    Implementations may be slow and may fail; callers bound them with a
    timeout.
    """

    @abstractmethod
    async def complete(self, system: str, prompt: str) -> str:
        """Return the completion text for a prompt."""
        ...


class OpenAICompletionProvider(CompletionProvider):
    """OpenAI chat-completions provider.

    Example:
        >>> provider = OpenAICompletionProvider()  # Uses OPENAI_API_KEY env var
        >>> sql = await provider.complete(SYSTEM_PROMPT, "Table: data_x ...")
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 1000,
    ) -> None:
        """Initialize OpenAI provider.

        Args:
            model: Chat model name
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY env var.
            temperature: Sampling temperature
            max_tokens: Completion length cap (long IN-lists can hit it)
        """
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ImportError(
                "openai is required for query generation. "
                "Install it with: pip install tabletalk[openai]"
            ) from e

        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self._client: AsyncOpenAI = AsyncOpenAI(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def complete(self, system: str, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        content = response.choices[0].message.content if response.choices else None
        return content or ""


def clean_completion(content: str) -> str:
    """Strip code fences and a leading language tag from a completion."""
    sql = content.strip()
    if sql.startswith("```"):
        sql = _FENCE_RE.sub("", sql).strip()
    if sql[:3].lower() == "sql" and (len(sql) == 3 or sql[3].isspace()):
        sql = sql[3:].strip()
    return sql


def build_prompt(question: str, context: SchemaContext, history: Sequence[str] = ()) -> str:
    """Assemble the user prompt from schema context, prior turns and the question."""
    parts = ["Database schema:", context.to_prompt()]
    if history:
        parts.append("Previous questions in this conversation:")
        parts.extend(f"- {turn}" for turn in history)
        parts.append("")
    parts.append(f"Question: {question}")
    parts.append("SQL query:")
    return "\n".join(parts)


class QueryGenerator:
    """Turns a question plus schema context into candidate SQL text.

    Each attempt is bounded by ``timeout``. A timed-out or failed attempt
    is retried exactly once after ``backoff`` seconds; a second failure
    raises ``GenerationError``.
    """

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        provider: CompletionProvider,
        timeout: float = 30.0,
        backoff: float = 1.0,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._backoff = backoff
        self._system_prompt = system_prompt

    @classmethod
    def from_settings(
        cls, provider: CompletionProvider, settings: PipelineSettings
    ) -> QueryGenerator:
        return cls(provider, timeout=settings.generation_timeout, backoff=settings.retry_backoff)

    async def generate(
        self,
        question: str,
        context: SchemaContext,
        history: Sequence[str] = (),
    ) -> str:
        """Generate candidate SQL for a question.

        Returns:
            Cleaned completion text; may be truncated or not SQL at all

        Raises:
            GenerationError: If both attempts fail or time out, or the reply is empty
        """
        prompt = build_prompt(question, context, history)
        logger.debug(f"Generation prompt ({len(prompt)} chars):\n{prompt}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.MAX_ATTEMPTS),
            wait=wait_fixed(self._backoff),
            after=self._log_failed_attempt,
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    content = await asyncio.wait_for(
                        self._provider.complete(self._system_prompt, prompt), timeout=self._timeout
                    )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            if isinstance(last_error, TimeoutError):
                message = f"Query generation timed out after {self.MAX_ATTEMPTS} attempts."
            else:
                message = (
                    f"Query generation failed after {self.MAX_ATTEMPTS} attempts: {last_error}"
                )
            raise GenerationError(message, self.MAX_ATTEMPTS) from last_error

        sql = clean_completion(content)
        if not sql:
            raise GenerationError(
                "Completion service returned an empty reply.", attempt.retry_state.attempt_number
            )
        logger.debug(f"Generated SQL: {sql}")
        return sql

    def _log_failed_attempt(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, TimeoutError):
            logger.warning(
                f"Generation attempt {retry_state.attempt_number} timed out after {self._timeout}s"
            )
        else:
            logger.warning(f"Generation attempt {retry_state.attempt_number} failed: {error}")
