"""Lookups between results, scene keys, scenes and engine snapshots."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from foldstory.engine import VisualizationEngine
from foldstory.errors import TimedOut
from foldstory.models import Scene, SearchResult, Snapshot, Story
from foldstory.story import scene_key

logger = logging.getLogger(__name__)


def key_for_result(result: SearchResult) -> str:
    return scene_key(result.object_id)


def find_scene(story: Story | None, key: str | None) -> Scene | None:
    if story is None or key is None:
        return None
    for scene in story.scenes:
        if scene.key == key:
            return scene
    return None


def find_result(story: Story | None, key: str | None) -> SearchResult | None:
    """Result backing the scene with this key, if the scene is result-backed."""
    scene = find_scene(story, key)
    return scene.result if scene is not None else None


async def await_snapshot_registration(
    engine: VisualizationEngine,
    key: str,
    max_attempts: int = 5,
    delay_ms: int = 100,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Snapshot:
    """Poll the engine until it has registered a snapshot for ``key``.

    The engine registers snapshots asynchronously after a load, so a
    selection can arrive before its snapshot exists.

    Raises:
        TimedOut: still missing after ``max_attempts`` checks.
    """
    for attempt in range(1, max_attempts + 1):
        snapshot = engine.find_snapshot(key)
        if snapshot is not None:
            if attempt > 1:
                logger.debug("Snapshot %s registered after %d checks", key, attempt)
            return snapshot
        if attempt < max_attempts:
            await sleep(delay_ms / 1000)

    logger.warning("No snapshot found for scene key %s after %d checks", key, max_attempts)
    raise TimedOut(f"No snapshot registered for {key} after {max_attempts} attempts")
