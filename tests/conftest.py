"""Shared test fixtures for foldstory tests."""

import json

import httpx
import pytest

from foldstory.config import Config, SearchConfig, ViewerConfig
from foldstory.engine import MemoryEngine
from foldstory.examples import PRELOADED_RESULTS
from foldstory.models import SearchResult
from foldstory.sync import SyncEngine


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays in seconds."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_result(object_id: str, **overrides) -> SearchResult:
    data = {
        "object_id": object_id,
        "aligned_percentage": 0.9,
        "rmsd": 1.5,
        "tm_score": 0.9,
        "tm_score_target": 0.88,
        "sequence_aligned_percentage": 0.7,
        "rotation_matrix": [[1, 0, 0], [0, 1, 0], [0, 0, 1]],
        "translation_vector": [0.0, 0.0, 0.0],
    }
    data.update(overrides)
    return SearchResult.model_validate(data)


def json_response(payload, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(payload).encode(),
                          headers={"Content-Type": "application/json"})


def scripted_transport(responses: list, requests: list | None = None) -> httpx.MockTransport:
    """Serve the given responses in order; the last one repeats."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.MockTransport(handler)


@pytest.fixture()
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture()
def config():
    """Config with fast viewer timings and no preloaded state."""
    return Config(
        search=SearchConfig(api_base_url="https://search.test"),
        viewer=ViewerConfig(
            scene_change_debounce_ms=20,
            snapshot_wait_attempts=5,
            snapshot_wait_delay_ms=1,
        ),
        preload_default=False,
    )


@pytest.fixture()
def results():
    return list(PRELOADED_RESULTS[:3])


@pytest.fixture()
def engine():
    return MemoryEngine()


@pytest.fixture()
def sync(config):
    """State-only sync engine: no viewer attached."""
    return SyncEngine(config)
