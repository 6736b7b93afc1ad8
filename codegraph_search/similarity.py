"""Similarity backend adapter: retries, deadlines, and graceful degradation.

Wraps a :class:`~codegraph_search.backends.SearchBackend` so that a failing
channel turns into an empty result plus a recorded error instead of an
exception.  Only :class:`~codegraph_search.errors.SchemaError` at
initialisation is fatal.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .backends import IndexDocument, SearchBackend
from .config import SearchSettings
from .errors import BackendConnectionError
from .models import SearchHit

logger = logging.getLogger(__name__)


@dataclass
class ChannelResult:
    """Outcome of one retrieval channel for one query."""

    channel: str
    hits: List[SearchHit] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SimilarityAdapter:
    """Uniform keyword/vector query surface over a backend."""

    def __init__(self, backend: SearchBackend, settings: Optional[SearchSettings] = None) -> None:
        self.backend = backend
        self.settings = settings or SearchSettings()
        self.index_name: Optional[str] = None

    async def _with_retry(self, label: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            try:
                return await factory()
            except BackendConnectionError as exc:
                if attempt >= self.settings.max_retries:
                    raise
                attempt += 1
                delay = self.settings.retry_backoff * attempt
                logger.debug(
                    "%s: backend unavailable (%s), retry %d/%d in %.2fs",
                    label, exc, attempt, self.settings.max_retries, delay,
                )
                await asyncio.sleep(delay)

    async def initialize(self, index_name: Optional[str] = None) -> None:
        """Create or validate the index.  Safe to call repeatedly.

        Raises:
            SchemaError: existing index has an incompatible vector dimension.
            BackendConnectionError: backend still unreachable after retries.
        """
        name = index_name or self.settings.index_name
        if self.index_name == name:
            return
        await self._with_retry(
            "initialize",
            lambda: self.backend.ensure_index(name, self.settings.embedding_dim),
        )
        self.index_name = name
        logger.info("Search index '%s' ready on %s backend", name, self.backend.name)

    async def _run_channel(
        self,
        channel: str,
        factory: Callable[[], Awaitable[List[SearchHit]]],
        timeout: Optional[float],
    ) -> ChannelResult:
        """Run *factory* with retries, all within one *timeout* for the channel."""
        deadline = self.settings.channel_timeout if timeout is None else timeout
        try:
            hits = await asyncio.wait_for(self._with_retry(channel, factory), deadline)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("%s search timed out after %.2fs", channel, deadline)
            return ChannelResult(channel=channel, error=exc)
        except Exception as exc:
            logger.warning("%s search failed: %s", channel, exc)
            return ChannelResult(channel=channel, error=exc)
        logger.debug("%s search returned %d hits", channel, len(hits))
        return ChannelResult(channel=channel, hits=hits)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def keyword_channel(
        self,
        query: str,
        limit: int,
        filters: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ChannelResult:
        return await self._run_channel(
            "keyword",
            lambda: self.backend.keyword_query(query, limit, filters),
            timeout,
        )

    async def vector_channel(
        self,
        embedding: List[float],
        limit: int,
        filters: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ChannelResult:
        return await self._run_channel(
            "vector",
            lambda: self.backend.vector_query(embedding, limit, filters),
            timeout,
        )

    async def keyword_search(
        self,
        query: str,
        limit: int,
        filters: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchHit]:
        """Ranked keyword hits; ``[]`` on any failure."""
        return (await self.keyword_channel(query, limit, filters, timeout)).hits

    async def vector_search(
        self,
        embedding: List[float],
        limit: int,
        filters: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> List[SearchHit]:
        """Ranked vector hits; ``[]`` on any failure."""
        return (await self.vector_channel(embedding, limit, filters, timeout)).hits

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_documents(self, docs: Sequence[IndexDocument]) -> None:
        """Replace the index contents.  Errors propagate after retries."""
        if self.index_name is None:
            await self.initialize()
        await self._with_retry("replace_documents", lambda: self.backend.replace_documents(docs))

    async def count(self) -> int:
        return await self._with_retry("count", self.backend.count)
