"""Client for the queue-backed structural search service."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
import pydantic

from foldstory.backoff import BackoffPoller, PollTick, ProbeOutcome, Retryable, Success
from foldstory.config import SearchConfig
from foldstory.errors import SearchTimedOut, ValidationError
from foldstory.models import ProgressInfo, ProgressStage, SearchResponse, SearchResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressInfo], None]
PartialResultsCallback = Callable[[list[SearchResult]], None]


class SearchClient:
    """Issues a search and polls until the service hands back a full result set.

    The client never cancels an older search when a new one starts; callers
    tag each call with a request token and drop stale answers themselves.
    """

    def __init__(
        self,
        config: SearchConfig | None = None,
        http: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or SearchConfig()
        self._http = http
        self._sleep = sleep

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self.config.request_timeout_s) as client:
            yield client

    def _params(self, query_id: str, limit: int, superposition: bool) -> dict[str, str | int]:
        params: dict[str, str | int] = {"query": query_id, "limit": limit}
        if superposition:
            params["superposition"] = "True"
        return params

    async def search(
        self,
        query_id: str,
        limit: int | None = None,
        superposition: bool | None = None,
        on_progress: ProgressCallback | None = None,
        on_partial_results: PartialResultsCallback | None = None,
    ) -> list[SearchResult]:
        """Run one search to completion.

        Partial result lists are handed to ``on_partial_results`` as they
        arrive; they are not final and must not be treated as the answer.

        Raises:
            ValidationError: empty identifier.
            ExhaustedRetries: no complete answer within the attempt budget.
            SearchTimedOut: the overall time ceiling was hit first.
        """
        query_id = query_id.strip()
        if not query_id:
            raise ValidationError("Search identifier must not be empty")

        limit = limit if limit is not None else self.config.limit
        superposition = self.config.superposition if superposition is None else superposition
        poller = BackoffPoller(
            max_attempts=self.config.max_retries,
            initial_delay_ms=self.config.initial_backoff_ms,
            min_delay_ms=self.config.min_backoff_ms,
            max_delay_ms=self.config.max_backoff_ms,
            sleep=self._sleep,
        )
        url = f"{self.config.api_base_url.rstrip('/')}/search"
        params = self._params(query_id, limit, superposition)
        seen_partial: set[str] = set()

        def report(stage: ProgressStage, attempt: int, message: str = "",
                   queue_position: int | None = None) -> None:
            if on_progress is None:
                return
            on_progress(ProgressInfo(
                stage=stage,
                queue_position=queue_position,
                attempt=attempt,
                max_attempts=poller.max_attempts,
                message=message,
                partial_results_count=len(seen_partial) or None,
            ))

        def on_tick(tick: PollTick) -> None:
            stage = ProgressStage.QUEUED if tick.queue_position is not None else ProgressStage.PROCESSING
            report(stage, tick.attempt, tick.message, tick.queue_position)

        async def probe(attempt: int) -> ProbeOutcome:
            logger.info("Search %s (attempt %d/%d)", query_id, attempt, poller.max_attempts)
            report(ProgressStage.INITIALIZING, attempt)

            try:
                async with self._client() as client:
                    response = await client.get(url, params=params, headers={"Accept": "application/json"})
            except httpx.HTTPError as e:
                logger.warning("Search request error: %s", e)
                return Retryable(f"Error: {e}")

            logger.debug("Response status: %d (attempt %d)", response.status_code, attempt)
            if not response.is_success:
                logger.warning("HTTP error %d from search service", response.status_code)
                return Retryable(f"Search attempt encountered HTTP {response.status_code}. Retrying...")

            try:
                data = SearchResponse.model_validate(response.json())
            except (ValueError, pydantic.ValidationError) as e:
                logger.warning("Unreadable search response: %s", e)
                return Retryable("Malformed response, retrying...")

            if data.results and (data.is_partial_result or data.queue_position is not None):
                seen_partial.update(r.object_id for r in data.results)
                logger.debug("Partial results: %d (%d seen so far)", len(data.results), len(seen_partial))
                if on_partial_results is not None:
                    on_partial_results(list(data.results))
                return Retryable(
                    f"Received {len(data.results)} partial results, waiting for completion",
                    queue_position=data.queue_position,
                )

            if data.queue_position is not None:
                return Retryable(f"Queued at position {data.queue_position}",
                                 queue_position=data.queue_position)

            if data.results:
                logger.info("Found %d results in %.2fs", len(data.results), data.search_time or 0.0)
                report(ProgressStage.COMPLETED, attempt, f"Found {len(data.results)} results")
                return Success(list(data.results))

            return Retryable("No results found, retrying...")

        try:
            return await asyncio.wait_for(poller.run(probe, on_tick), timeout=self.config.timeout_s)
        except asyncio.TimeoutError:
            raise SearchTimedOut(
                f"Search timeout after {self.config.timeout_s:g}s"
            ) from None
