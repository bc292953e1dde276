"""Tests for the state synchronization engine."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import make_result
from foldstory.config import Config
from foldstory.engine import MemoryEngine
from foldstory.errors import ExhaustedRetries
from foldstory.models import InputType, ProgressInfo, ProgressStage, SearchType
from foldstory.sync import SyncEngine


class FakeClient:
    """Search client double with per-query gates and canned outcomes."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.partials: dict[str, list] = {}

    async def search(self, query_id, limit=None, superposition=None,
                     on_progress=None, on_partial_results=None):
        self.calls.append(query_id)
        if on_progress is not None:
            on_progress(ProgressInfo(
                stage=ProgressStage.PROCESSING, attempt=1, max_attempts=3, message="working",
            ))
        if on_partial_results is not None and query_id in self.partials:
            on_partial_results(self.partials[query_id])
        gate = self.gates.get(query_id)
        if gate is not None:
            await gate.wait()
        outcome = self.responses[query_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FailingLoadEngine(MemoryEngine):
    async def load_snapshot_sequence(self, sequence):
        raise RuntimeError("renderer exploded")


async def _settle(sync):
    await sync.queue.join()
    await asyncio.sleep(0)


class TestSetQuery:
    def test_identical_settled_query_is_noop(self, config, results):
        sync = SyncEngine(config)
        assert sync.set_query("Q9FFD0") is True
        sync.set_results(results)

        before = sync.state
        assert sync.set_query("Q9FFD0") is False
        assert sync.state is before

    def test_repeat_while_searching_restarts(self, config):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        token = sync.request_token
        assert sync.set_query("Q9FFD0") is True
        assert sync.request_token == token + 1

    def test_repeat_after_error_retries(self, config):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_validation_error("Search failed")
        assert sync.set_query("Q9FFD0") is True
        assert sync.state.validation_error is None
        assert sync.state.is_searching is True

    def test_new_query_clears_progress(self, config):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_progress(ProgressInfo(stage=ProgressStage.QUEUED, attempt=1, max_attempts=3))
        sync.set_query("P31323")
        assert sync.state.progress is None
        assert sync.state.query.input_value == "P31323"
        assert sync.state.query.input_type == InputType.UNIPROT

    def test_case_only_difference_is_noop(self, sync, results):
        assert sync.set_query("Q9FFD0") is True
        sync.set_results(results)

        before = sync.state
        assert sync.set_query(" q9ffd0") is False
        assert sync.state is before

    def test_history_is_bounded_and_recent_first(self):
        sync = SyncEngine(Config(history_size=2, preload_default=False))
        for q in ["Q9FFD0", "P31323", "V4KUL2", "P31323"]:
            sync.set_query(q)
        assert [q.input_value for q in sync.state.history] == ["P31323", "V4KUL2"]


class TestSetResults:
    def test_default_selection_is_first_scene(self, config, results):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_results(results[:2])

        state = sync.state
        assert state.active_scene_key == "scene_" + results[0].object_id
        assert state.selected_result == results[0]
        assert state.is_searching is False
        assert state.story.keys == [f"scene_{r.object_id}" for r in results[:2]]

    def test_active_scene_kept_when_still_present(self, config, results):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_results(results)
        sync.select_result(results[2])
        sync.set_results(results)
        assert sync.state.active_scene_key == "scene_" + results[2].object_id

    def test_results_order_preserved(self, config):
        ranked = [make_result("Z9", tm_score=0.1), make_result("A1", tm_score=0.99)]
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_results(ranked)
        assert [r.object_id for r in sync.state.results] == ["Z9", "A1"]

    def test_empty_results_drop_story(self, config):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_results([])
        assert sync.state.story is None
        assert sync.state.active_scene_key is None


class TestValidationError:
    def test_clears_dependents_in_one_transition(self, sync, results):
        sync.set_query("Q9FFD0")
        sync.set_results(results)
        sync.set_progress(ProgressInfo(stage=ProgressStage.PROCESSING, attempt=2, max_attempts=3))

        published = []
        sync.subscribe(lambda new, old: published.append(new))
        sync.set_validation_error("bad id")

        assert len(published) == 1
        state = published[0]
        assert state.validation_error == "bad id"
        assert state.results == ()
        assert state.progress is None
        assert state.selected_result is None
        assert state.story is None

    def test_none_only_clears_error(self, sync):
        sync.set_query("Q9FFD0")
        sync.set_validation_error("bad id")
        sync.set_validation_error(None)
        assert sync.state.validation_error is None


class TestObservers:
    def test_watch_field(self, config, results):
        sync = SyncEngine(config)
        keys = []
        with sync.watch("active_scene_key", keys.append):
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            sync.set_results(results)
        sync.select_result(results[1])
        assert keys == [None, "scene_" + results[0].object_id]

    def test_watch_unknown_field(self, config):
        with pytest.raises(ValueError, match="Unknown state field"):
            SyncEngine(config).watch("nope", print)


class TestEngineSync:
    def test_results_load_story_into_engine(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            return sync

        sync = asyncio.run(scenario())
        assert [op for op, _ in engine.operations] == ["clear", "load"]
        assert set(engine.snapshots) == set(sync.state.story.keys)
        assert engine.current_key == sync.state.active_scene_key
        assert engine.max_concurrency == 1

    def test_select_result_applies_snapshot(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            sync.select_result(results[2])
            assert sync.state.active_scene_key == "scene_" + results[2].object_id
            assert sync.state.selected_result == results[2]
            await _settle(sync)
            await asyncio.sleep(0.05)
            return sync

        sync = asyncio.run(scenario())
        assert engine.operations[-1] == ("apply", "scene_" + results[2].object_id)
        assert engine.current_key == "scene_" + results[2].object_id
        # The engine's echo must not bounce the selection around
        assert sync.state.selected_result == results[2]

    def test_select_waits_for_late_snapshot_registration(self, config, results):
        engine = MemoryEngine(registration_delay_turns=3)

        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            sync.select_result(results[1])
            await _settle(sync)

        asyncio.run(scenario())
        assert engine.current_key == "scene_" + results[1].object_id

    def test_viewer_change_updates_selection_without_apply(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            ops_before = len(engine.operations)
            engine.navigate("scene_" + results[1].object_id)
            await asyncio.sleep(0.06)
            await _settle(sync)
            return sync, ops_before

        sync, ops_before = asyncio.run(scenario())
        assert sync.state.selected_result == results[1]
        assert sync.state.active_scene_key == "scene_" + results[1].object_id
        assert len(engine.operations) == ops_before

    def test_viewer_burst_is_debounced(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            changes = []
            sync.watch("active_scene_key", changes.append, emit_current=False)
            for r in (results[1], results[2], results[1]):
                engine.navigate("scene_" + r.object_id)
            await asyncio.sleep(0.06)
            return changes

        changes = asyncio.run(scenario())
        assert changes == ["scene_" + results[1].object_id]

    def test_late_echo_of_active_scene_is_ignored(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            sync.select_result(results[2])
            await _settle(sync)

            before = sync.state
            ops_before = len(engine.operations)
            engine.navigate("scene_" + results[2].object_id)
            await asyncio.sleep(0.06)
            await _settle(sync)
            return sync, before, ops_before

        sync, before, ops_before = asyncio.run(scenario())
        assert sync.state is before
        assert len(engine.operations) == ops_before

    def test_unknown_viewer_key_ignored(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            before = sync.state
            sync._apply_viewer_change("scene_elsewhere")
            return sync, before

        sync, before = asyncio.run(scenario())
        assert sync.state is before

    def test_engine_failure_leaves_state_intact(self, config, results):
        engine = FailingLoadEngine()

        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            committed = sync.state
            await _settle(sync)
            return sync, committed

        sync, committed = asyncio.run(scenario())
        assert sync.state is committed
        assert sync.queue.failed >= 1
        assert sync.state.validation_error is None

    def test_close_stops_listening(self, config, results, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            sync.close()
            engine.navigate("scene_" + results[2].object_id)
            await asyncio.sleep(0.05)
            return sync

        sync = asyncio.run(scenario())
        assert sync.state.active_scene_key == "scene_" + results[0].object_id


class TestClear:
    def test_two_phase_clear(self, config, results):
        engine = MemoryEngine(op_delay_s=0.01)

        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)

            task = sync.clear()
            requested = sync.state
            await task
            await asyncio.sleep(0)
            return sync, requested

        sync, requested = asyncio.run(scenario())
        assert requested.pending_clear is True
        assert len(requested.results) == 3
        state = sync.state
        assert state.pending_clear is False
        assert state.results == ()
        assert state.story is None
        assert state.query is None
        assert [q.input_value for q in state.history] == ["Q9FFD0"]
        assert engine.snapshots == {}

    def test_clear_without_engine(self, config, results):
        sync = SyncEngine(config)
        sync.set_query("Q9FFD0")
        sync.set_results(results)
        assert sync.clear() is None
        assert sync.state.pending_clear is False
        assert sync.state.results == ()

    def test_new_query_during_clear_survives(self, config, results):
        engine = MemoryEngine(op_delay_s=0.01)

        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            task = sync.clear()
            sync.set_query("P31323")
            await task
            await asyncio.sleep(0)
            return sync

        sync = asyncio.run(scenario())
        assert sync.state.pending_clear is False
        assert sync.state.query.input_value == "P31323"

    def test_results_during_clear_stay_in_sync(self, config, results):
        engine = MemoryEngine(op_delay_s=0.01)

        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.clear()
            sync.set_results(results)
            await _settle(sync)
            return sync

        sync = asyncio.run(scenario())
        state = sync.state
        assert state.pending_clear is False
        assert len(state.results) == 3
        assert set(engine.snapshots) == set(state.story.keys)
        assert engine.current_key == state.active_scene_key

    def test_selection_during_clear_is_ignored(self, config, results):
        engine = MemoryEngine(op_delay_s=0.01)

        async def scenario():
            sync = SyncEngine(config, engine=engine)
            sync.start()
            sync.set_query("Q9FFD0")
            sync.set_results(results)
            await _settle(sync)
            sync.clear()
            assert sync.select_result(results[1]) is None
            await _settle(sync)
            return sync

        sync = asyncio.run(scenario())
        assert sync.state.story is None
        assert sync.state.selected_result is None
        assert engine.snapshots == {}
        assert engine.operations[-1] == ("clear", None)


class TestSearchFlow:
    def test_search_commits_results(self, config, results, engine):
        client = FakeClient({"Q9FFD0": results})

        async def scenario():
            sync = SyncEngine(config, engine=engine, client=client)
            sync.start()
            returned = await sync.search("q9ffd0 ")
            await _settle(sync)
            return sync, returned

        sync, returned = asyncio.run(scenario())
        assert returned == results
        assert client.calls == ["Q9FFD0"]
        state = sync.state
        assert state.results == tuple(results)
        assert state.is_searching is False
        assert state.is_validating is False
        assert state.progress is None
        assert state.active_scene_key == "scene_" + results[0].object_id
        assert engine.current_key == state.active_scene_key

    def test_search_options_forwarded(self, config, results):
        client = AsyncMock()
        client.search.return_value = results
        sync = SyncEngine(config, client=client)

        asyncio.run(sync.search("P31323", limit=5, superposition=False))

        client.search.assert_awaited_once()
        args, kwargs = client.search.await_args
        assert args == ("P31323",)
        assert kwargs["limit"] == 5
        assert kwargs["superposition"] is False
        assert sync.state.query.options.limit == 5
        assert len(sync.state.results) == 3

    def test_invalid_identifier_becomes_validation_error(self, config):
        client = FakeClient()
        sync = SyncEngine(config, client=client)
        assert asyncio.run(sync.search("not an id")) is None
        assert "valid PDB ID or UniProt ID" in sync.state.validation_error
        assert sync.state.is_searching is False
        assert client.calls == []

    def test_search_failure_becomes_validation_error(self, config):
        client = FakeClient({"Q9FFD0": ExhaustedRetries(3)})
        sync = SyncEngine(config, client=client)
        asyncio.run(sync.search("Q9FFD0"))
        assert sync.state.validation_error == "Search failed after 3 attempts"
        assert sync.state.results == ()

    def test_repeat_search_is_noop(self, config, results):
        client = FakeClient({"Q9FFD0": results})
        sync = SyncEngine(config, client=client)

        async def scenario():
            await sync.search("Q9FFD0")
            return await sync.search("Q9FFD0")

        assert asyncio.run(scenario()) is None
        assert client.calls == ["Q9FFD0"]

    def test_superseded_search_is_discarded(self, config, results):
        newer = [make_result("NEW1"), make_result("NEW2")]
        client = FakeClient({"Q9FFD0": results, "P31323": newer})
        client.gates["Q9FFD0"] = asyncio.Event()

        async def scenario():
            sync = SyncEngine(config, client=client)
            first = asyncio.create_task(sync.search("Q9FFD0"))
            await asyncio.sleep(0)
            second = await sync.search("P31323")
            client.gates["Q9FFD0"].set()
            return sync, await first, second

        sync, first, second = asyncio.run(scenario())
        assert first is None
        assert second == newer
        assert [r.object_id for r in sync.state.results] == ["NEW1", "NEW2"]
        assert sync.state.query.input_value == "P31323"

    def test_stale_error_is_discarded(self, config, results):
        client = FakeClient({"Q9FFD0": ExhaustedRetries(3), "P31323": results})
        client.gates["Q9FFD0"] = asyncio.Event()

        async def scenario():
            sync = SyncEngine(config, client=client)
            first = asyncio.create_task(sync.search("Q9FFD0"))
            await asyncio.sleep(0)
            await sync.search("P31323")
            client.gates["Q9FFD0"].set()
            await first
            return sync

        sync = asyncio.run(scenario())
        assert sync.state.validation_error is None
        assert len(sync.state.results) == 3

    def test_partial_results_only_touch_progress(self, config, results):
        client = FakeClient({"Q9FFD0": results})
        client.partials["Q9FFD0"] = results[:2]
        client.gates["Q9FFD0"] = asyncio.Event()

        async def scenario():
            sync = SyncEngine(config, client=client)
            task = asyncio.create_task(sync.search("Q9FFD0"))
            await asyncio.sleep(0)
            mid = sync.state
            client.gates["Q9FFD0"].set()
            await task
            return mid

        mid = asyncio.run(scenario())
        assert mid.results == ()
        assert mid.progress.partial_results_count == 2
        assert mid.is_searching is True

    def test_clear_makes_search_stale(self, config, results):
        client = FakeClient({"Q9FFD0": results})
        client.gates["Q9FFD0"] = asyncio.Event()

        async def scenario():
            sync = SyncEngine(config, client=client)
            task = asyncio.create_task(sync.search("Q9FFD0"))
            await asyncio.sleep(0)
            sync.clear()
            client.gates["Q9FFD0"].set()
            return sync, await task

        sync, returned = asyncio.run(scenario())
        assert returned is None
        assert sync.state.results == ()


class TestPreload:
    def test_seeded_state(self, config):
        sync = SyncEngine(config, preload=True)
        state = sync.state
        assert state.query.input_value == "Q9FFD0"
        assert len(state.results) == 5
        assert state.active_scene_key == "scene_V4KUL2"
        assert state.selected_result.object_id == "V4KUL2"
        assert state.search_type == SearchType.ALPHAFIND

    def test_start_loads_seeded_story(self, config, engine):
        async def scenario():
            sync = SyncEngine(config, engine=engine, preload=True)
            sync.start()
            await _settle(sync)

        asyncio.run(scenario())
        assert len(engine.snapshots) == 5
        assert engine.current_key == "scene_V4KUL2"
