"""Reactive state synchronization between search, selection and the viewer."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from foldstory.config import Config
from foldstory.engine import VisualizationEngine
from foldstory.errors import FoldstoryError
from foldstory.examples import PRELOADED_RESULTS, default_query
from foldstory.mapping import IdentifierResolver, determine_input_type
from foldstory.models import (
    ProgressInfo,
    SearchOptions,
    SearchQuery,
    SearchResult,
    SearchType,
    Story,
    SyncState,
)
from foldstory.op_queue import OperationQueue
from foldstory.resolver import await_snapshot_registration, find_result, find_scene, key_for_result
from foldstory.search_client import SearchClient
from foldstory.store import Debouncer, Store, Subscription
from foldstory.story import build_story, to_snapshot_sequence

logger = logging.getLogger(__name__)


def _push_history(history: tuple[SearchQuery, ...], query: SearchQuery, size: int) -> tuple[SearchQuery, ...]:
    """Most recent first, one entry per identifier, at most ``size`` entries."""
    rest = tuple(q for q in history if q.input_value.upper() != query.input_value.upper())
    return ((query,) + rest)[:size]


class SyncEngine:
    """Owns ``SyncState`` and keeps it consistent with the visualization engine.

    Every transition publishes a new immutable state through ``store``.
    Engine commands (clear, load, apply) go through the ``OperationQueue``;
    viewer-originated scene changes come back debounced and update the
    selection without issuing another apply.

    ``engine`` may be None, in which case only state is managed.
    """

    def __init__(
        self,
        config: Config,
        engine: VisualizationEngine | None = None,
        client: SearchClient | None = None,
        resolver: IdentifierResolver | None = None,
        queue: OperationQueue | None = None,
        preload: bool | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.engine = engine
        self.client = client or SearchClient(config.search)
        self.resolver = resolver or IdentifierResolver(config.mapping)
        self.queue = queue or OperationQueue()
        self._sleep = sleep
        self._token = 0
        self._generation = 0
        self._commands_in_flight = 0
        self._engine_subscription: Subscription | None = None
        self._debouncer: Debouncer[str] = Debouncer(
            config.viewer.scene_change_debounce_ms, self._apply_viewer_change,
        )
        self.store: Store[SyncState] = Store(self._initial_state(
            config.preload_default if preload is None else preload
        ))

    def _initial_state(self, preload: bool) -> SyncState:
        if not preload:
            return SyncState()
        query = default_query(self.config.search.limit, self.config.search.superposition)
        story = build_story(query.input_value, PRELOADED_RESULTS, self.config.story)
        first = story.scenes[0]
        return SyncState(
            query=query,
            search_type=query.search_type,
            results=PRELOADED_RESULTS,
            story=story,
            active_scene_key=first.key,
            selected_result=first.result,
            history=(query,),
        )

    # --- Observation ---

    @property
    def state(self) -> SyncState:
        return self.store.state

    @property
    def request_token(self) -> int:
        return self._token

    def subscribe(self, listener: Callable[[SyncState, SyncState], None]) -> Subscription:
        return self.store.subscribe(listener)

    def watch(self, field: str, listener: Callable[[Any], None], emit_current: bool = True) -> Subscription:
        """Observe one ``SyncState`` field; the listener fires only when it changes."""
        if field not in SyncState.model_fields:
            raise ValueError(f"Unknown state field: {field}")
        return self.store.select(lambda s: getattr(s, field), listener, emit_current=emit_current)

    def _update(self, **changes: Any) -> SyncState:
        return self.store.update(lambda s: s.model_copy(update=changes))

    # --- Lifecycle ---

    def start(self) -> None:
        """Listen to the engine and push the current story into it.

        Call from inside the running event loop.
        """
        if self.engine is None or self._engine_subscription is not None:
            return
        self._engine_subscription = self.engine.subscribe(self._on_engine_changed)
        if self.state.story is not None:
            self._load_story(self.state.story, self.state.active_scene_key)

    def close(self) -> None:
        self._debouncer.cancel()
        if self._engine_subscription is not None:
            self._engine_subscription.unsubscribe()
            self._engine_subscription = None

    # --- Transitions ---

    def set_query(
        self,
        value: str,
        search_type: SearchType = SearchType.ALPHAFIND,
        options: SearchOptions | None = None,
    ) -> bool:
        """Start a new query. Returns False when it repeats the settled current one."""
        value = value.strip().upper()
        state = self.state
        if (
            state.query is not None
            and state.query.input_value == value
            and state.search_type == search_type
            and state.validation_error is None
            and not state.is_searching
        ):
            logger.debug("Query %s unchanged, nothing to do", value)
            return False

        options = options or SearchOptions(
            limit=self.config.search.limit,
            superposition=self.config.search.superposition,
        )
        query = SearchQuery(
            input_value=value,
            input_type=determine_input_type(value),
            search_type=search_type,
            options=options,
        )
        self._token += 1
        self._generation += 1
        logger.info("New query %s (%s), token %d", value, search_type.value, self._token)
        self._update(
            query=query,
            search_type=search_type,
            is_searching=True,
            validation_error=None,
            progress=None,
            history=_push_history(state.history, query, self.config.history_size),
        )
        return True

    def set_progress(self, progress: ProgressInfo | None) -> None:
        self._update(progress=progress)

    def set_results(self, results: Sequence[SearchResult], query_id: str | None = None) -> None:
        """Commit a complete result set and rebuild the story from it."""
        state = self.state
        query_id = query_id or (state.query.input_value if state.query else None)
        results = tuple(results)
        self._generation += 1
        story = build_story(query_id, results, self.config.story) if results and query_id else None

        active = state.active_scene_key
        if story is None:
            active = None
        elif find_scene(story, active) is None:
            active = story.scenes[0].key

        self._update(
            results=results,
            is_searching=False,
            is_validating=False,
            progress=None,
            story=story,
            active_scene_key=active,
            selected_result=find_result(story, active),
        )
        logger.info(
            "Committed %d results for %s, active scene %s", len(results), query_id, active,
        )

        if story is not None:
            self._load_story(story, active)
        elif self.engine is not None:
            self._submit(self.engine.clear, "clear")

    def set_validation_error(self, error: str | None) -> None:
        """Record an error; a non-null error drops every dependent field at once."""
        if error is None:
            self._update(validation_error=None)
            return
        logger.warning("Validation error: %s", error)
        self._debouncer.cancel()
        self._update(
            validation_error=error,
            is_validating=False,
            is_searching=False,
            results=(),
            progress=None,
            selected_result=None,
            story=None,
            active_scene_key=None,
        )

    def select_result(self, result: SearchResult | None) -> "asyncio.Task | None":
        """Select a result and move the viewer to its scene.

        Returns the queued apply task, if one was issued. Ignored while a
        clear is pending, since the viewer is about to be emptied.
        """
        if self.state.pending_clear:
            logger.debug("Ignoring selection while a clear is pending")
            return None
        self._debouncer.cancel()
        if result is None:
            self._update(selected_result=None, active_scene_key=None)
            return None

        key = key_for_result(result)
        if find_scene(self.state.story, key) is None:
            logger.warning("Selected result %s has no scene in the current story", result.object_id)
        self._update(selected_result=result, active_scene_key=key)
        return self._submit_apply(key)

    def clear(self) -> "asyncio.Task | None":
        """Clear the viewer, then reset state once the engine confirms.

        In-flight searches become stale. Returns the queued clear task.
        """
        self._token += 1
        clear_generation = self._generation
        self._debouncer.cancel()
        self._update(pending_clear=True)
        logger.info("Clear requested")

        if self.engine is None:
            self._clear_acknowledged(clear_generation)
            return None

        task = self._submit(self.engine.clear, "clear")
        task.add_done_callback(lambda _: self._clear_acknowledged(clear_generation))
        return task

    def _clear_acknowledged(self, clear_generation: int) -> None:
        if clear_generation != self._generation:
            # A new query or result set arrived while the engine was clearing
            logger.info("Clear acknowledged after newer activity; keeping state")
            self._update(pending_clear=False)
            return
        state = self.state
        self.store.update(lambda s: SyncState(search_type=state.search_type, history=state.history))
        logger.info("Clear acknowledged")

    # --- Search flow ---

    async def search(
        self,
        value: str,
        search_type: SearchType = SearchType.ALPHAFIND,
        limit: int | None = None,
        superposition: bool | None = None,
    ) -> list[SearchResult] | None:
        """Validate, resolve and search; commit results unless superseded.

        Returns the committed results, or None when the call was a no-op,
        failed, or was superseded by a newer query.
        """
        options = SearchOptions(
            limit=limit if limit is not None else self.config.search.limit,
            superposition=self.config.search.superposition if superposition is None else superposition,
        )
        if not self.set_query(value, search_type, options):
            return None
        token = self._token

        self._update(is_validating=True)
        try:
            uniprot_id = await self.resolver.resolve_uniprot_id(value)
            if token != self._token:
                logger.info("Discarding resolution for superseded query %s", value)
                return None
            self._update(is_validating=False)

            results = await self.client.search(
                uniprot_id,
                limit=options.limit,
                superposition=options.superposition,
                on_progress=lambda p: self._on_progress(token, p),
                on_partial_results=lambda r: self._on_partial_results(token, r),
            )
        except FoldstoryError as e:
            if token != self._token:
                logger.info("Discarding error from superseded query %s: %s", value, e)
                return None
            self.set_validation_error(str(e))
            return None

        if token != self._token:
            logger.info("Discarding %d stale results for %s", len(results), value)
            return None
        self.set_results(results, query_id=uniprot_id)
        return results

    def _on_progress(self, token: int, progress: ProgressInfo) -> None:
        if token == self._token:
            self.set_progress(progress)

    def _on_partial_results(self, token: int, results: list[SearchResult]) -> None:
        # Partial lists only feed the progress counter; results stay untouched
        if token != self._token:
            return
        logger.debug("Received %d partial results", len(results))
        progress = self.state.progress
        if progress is not None:
            self.set_progress(progress.model_copy(update={"partial_results_count": len(results)}))

    # --- Engine side ---

    def _submit(self, op: Callable[[], Awaitable[Any]], label: str) -> asyncio.Task:
        self._commands_in_flight += 1
        task = self.queue.submit(op, label)
        task.add_done_callback(self._command_done)
        return task

    def _command_done(self, task: asyncio.Task) -> None:
        self._commands_in_flight -= 1

    def _load_story(self, story: Story, active_key: str | None) -> None:
        if self.engine is None:
            return
        engine = self.engine
        sequence = to_snapshot_sequence(story)
        self._debouncer.cancel()
        self._submit(engine.clear, "clear")
        self._submit(lambda: engine.load_snapshot_sequence(sequence), "load")
        if active_key is not None:
            self._submit_apply(active_key)

    def _submit_apply(self, key: str) -> asyncio.Task | None:
        if self.engine is None:
            return None
        engine = self.engine
        viewer = self.config.viewer

        async def apply() -> None:
            await await_snapshot_registration(
                engine, key,
                max_attempts=viewer.snapshot_wait_attempts,
                delay_ms=viewer.snapshot_wait_delay_ms,
                sleep=self._sleep,
            )
            if engine.current_key == key:
                return
            await engine.apply_snapshot_by_key(key)

        return self._submit(apply, f"apply {key}")

    def _on_engine_changed(self, key: str) -> None:
        if self._commands_in_flight or self.state.pending_clear:
            # Echo of our own clear/load/apply
            return
        self._debouncer.push(key)

    def _apply_viewer_change(self, key: str) -> None:
        state = self.state
        if key == state.active_scene_key:
            return
        scene = find_scene(state.story, key)
        if scene is None:
            logger.debug("Viewer moved to unknown scene %s", key)
            return
        logger.debug("Viewer moved to scene %s", key)
        self._update(active_scene_key=key, selected_result=scene.result)
