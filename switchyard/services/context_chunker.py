"""Splitting oversized prompts into token-budget chunks and recombining results.

Provider adapters call into this module when a prompt's estimated input
tokens exceed the provider's effective input limit. Each chunk becomes an
independent model call carrying a "part i of n" note; the partial results
are stitched back into one document.

Splitting strategy, in priority order:
1. Heading boundaries (markdown "#" to "######")
2. Paragraphs (blank lines) for sections still over budget
3. Lines, then whitespace-separated words, for anything still over budget
Units are then packed greedily into chunks. Splits only ever happen at
whitespace, so no word is cut in half.

Usage:
    from switchyard.services.context_chunker import ContextChunker

    chunker = ContextChunker()
    chunks = chunker.split(document, max_tokens_per_chunk=20_000)
    combined = chunker.combine(results)
"""

import logging
import math
import re
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence

from switchyard.core.cancellation import CancellationToken, cancellable_sleep
from switchyard.core.constants import (
    CHARS_PER_TOKEN,
    CHUNK_DELAY_SECONDS,
    CHUNK_NOTE_RESERVE_TOKENS,
    CHUNK_OUTPUT_RESERVE_TOKENS,
)
from switchyard.core.errors import ChunkingError

if TYPE_CHECKING:
    from switchyard.providers.base import ChatMessage

logger = logging.getLogger(__name__)

HEADING_BOUNDARY = re.compile(r"\n(?=#{1,6}\s)")
PARAGRAPH_BOUNDARY = re.compile(r"\n\s*\n")

UNIT_SEPARATOR = "\n\n"


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class ContextChunker:
    """Token-budget splitter and result combiner."""

    def __init__(
        self,
        estimate: Callable[[str], int] = estimate_tokens,
        chunk_delay_seconds: float = CHUNK_DELAY_SECONDS,
        output_reserve_tokens: int = CHUNK_OUTPUT_RESERVE_TOKENS,
        note_reserve_tokens: int = CHUNK_NOTE_RESERVE_TOKENS,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.estimate = estimate
        self.chunk_delay_seconds = chunk_delay_seconds
        self.output_reserve_tokens = output_reserve_tokens
        self.note_reserve_tokens = note_reserve_tokens
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def split(self, content: str, max_tokens_per_chunk: int) -> List[str]:
        """Split content into ordered chunks of at most max_tokens_per_chunk.

        Content that already fits is returned unchanged as a single chunk.
        A single word larger than the budget becomes its own oversized chunk.

        Raises:
            ChunkingError: If the budget is not positive
        """
        if max_tokens_per_chunk <= 0:
            raise ChunkingError(f"Chunk budget must be positive, got {max_tokens_per_chunk}")
        if self.estimate(content) <= max_tokens_per_chunk:
            return [content]

        units: List[str] = []
        for section in HEADING_BOUNDARY.split(content):
            units.extend(self._fit_section(section, max_tokens_per_chunk))

        chunks = self._pack(units, UNIT_SEPARATOR, max_tokens_per_chunk)
        logger.debug(f"Split {self.estimate(content)} tokens into {len(chunks)} chunk(s)")
        return chunks

    def _fit_section(self, section: str, budget: int) -> List[str]:
        section = section.strip()
        if not section:
            return []
        if self.estimate(section) <= budget:
            return [section]

        units: List[str] = []
        for paragraph in PARAGRAPH_BOUNDARY.split(section):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if self.estimate(paragraph) <= budget:
                units.append(paragraph)
            else:
                units.extend(self._fit_paragraph(paragraph, budget))
        return units

    def _fit_paragraph(self, paragraph: str, budget: int) -> List[str]:
        units: List[str] = []
        for line in paragraph.split("\n"):
            line = line.strip()
            if not line:
                continue
            if self.estimate(line) <= budget:
                units.append(line)
            else:
                units.extend(self._pack(line.split(), " ", budget))
        return self._pack(units, "\n", budget)

    def _pack(self, units: Sequence[str], separator: str, budget: int) -> List[str]:
        """Greedily join units until adding the next would exceed budget."""
        chunks: List[str] = []
        current = ""
        for unit in units:
            candidate = f"{current}{separator}{unit}" if current else unit
            if current and self.estimate(candidate) > budget:
                chunks.append(current)
                current = unit
            else:
                current = candidate
        if current:
            chunks.append(current)
        return chunks

    # ------------------------------------------------------------------
    # Combining
    # ------------------------------------------------------------------

    def combine(self, chunk_results: Sequence[str]) -> str:
        """Merge partial results into one document.

        A single result is returned unchanged. Otherwise each result gets a
        labeled section and an integration note is appended.
        """
        if not chunk_results:
            return ""
        if len(chunk_results) == 1:
            return chunk_results[0]

        total = len(chunk_results)
        sections = [
            f"## Part {index} of {total}\n\n{result.strip()}"
            for index, result in enumerate(chunk_results, start=1)
        ]
        note = (
            f"---\n\n_Integration note: this document combines {total} responses, each produced "
            f"from a consecutive part of an input that exceeded the model's context window. "
            f"Review the transitions between parts for continuity._"
        )
        return UNIT_SEPARATOR.join(sections + [note])

    def output_budget_per_chunk(self, total_output_budget: int, chunk_count: int) -> int:
        """Share of the output budget for one chunk, plus a fixed reserve."""
        return total_output_budget // max(1, chunk_count) + self.output_reserve_tokens

    # ------------------------------------------------------------------
    # Sequential processing
    # ------------------------------------------------------------------

    async def _delay(self, cancel: Optional[CancellationToken]) -> None:
        if self.sleep is None:
            await cancellable_sleep(self.chunk_delay_seconds, cancel)
            return
        await self.sleep(self.chunk_delay_seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()

    async def process(
        self,
        messages: Sequence["ChatMessage"],
        input_budget: int,
        total_output_budget: int,
        call: Callable[[List["ChatMessage"], int], Awaitable[str]],
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Chunk the last user message and run one call per chunk.

        Non-user messages (system instructions, earlier turns) are sent with
        every chunk and count against the input budget.

        Args:
            messages: Full conversation to send
            input_budget: Effective input token limit of the target model
            total_output_budget: Output tokens for the whole request
            call: Adapter call taking (messages, max_output_tokens)
            cancel: Optional cancellation token, checked between chunks

        Returns:
            Combined text of all chunk results

        Raises:
            ChunkingError: If there is no user message or the context
                messages alone leave no room for content
        """
        user_index = next(
            (i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "user"),
            None,
        )
        if user_index is None:
            raise ChunkingError("Cannot chunk input: no user message present")

        context_tokens = sum(self.estimate(m.content) for i, m in enumerate(messages) if i != user_index)
        budget = input_budget - context_tokens - self.note_reserve_tokens
        if budget <= 0:
            raise ChunkingError(
                f"Cannot chunk input: context messages use {context_tokens} of {input_budget} tokens"
            )

        chunks = self.split(messages[user_index].content, budget)
        total = len(chunks)
        per_chunk_output = self.output_budget_per_chunk(total_output_budget, total)
        logger.info(f"Processing input in {total} chunk(s) of <= {budget} tokens")

        results: List[str] = []
        for index, chunk in enumerate(chunks, start=1):
            if index > 1:
                await self._delay(cancel)
            elif cancel is not None:
                cancel.raise_if_cancelled()

            content = chunk
            if total > 1:
                content = (
                    f"[Part {index} of {total}] This is part {index} of {total} of a larger input. "
                    f"Respond to this part only.\n\n{chunk}"
                )
            chunk_messages = list(messages)
            chunk_messages[user_index] = replace(messages[user_index], content=content)

            logger.debug(f"Dispatching chunk {index}/{total} ({self.estimate(chunk)} tokens)")
            results.append(await call(chunk_messages, per_chunk_output))

        return self.combine(results)
