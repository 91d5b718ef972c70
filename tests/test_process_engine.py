"""
Tests for the process execution engine.

Covers graph walking, gateways, retries, timeouts, cancellation, status and
timing queries, lifecycle hooks and emitted events.
"""

import asyncio
import threading
import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

from flask_bpmn.const import (
    EVENT_PROCESS_COMPLETED, EVENT_PROCESS_FAILED, EVENT_PROCESS_STARTED,
    EVENT_TASK_COMPLETED, EVENT_TASK_FAILED, EVENT_TASK_STARTED
)
from flask_bpmn.engine.backends import RedisContextBackend
from flask_bpmn.engine.context_manager import ProcessContextManager
from flask_bpmn.events import EventEmitter
from flask_bpmn.exceptions import ProcessExecutionError, ProcessValidationError
from flask_bpmn.models.context_models import ProcessStatus, StepStatus
from flask_bpmn.models.process_models import (
    EndEvent, Gateway, GatewayType, ProcessDefinition, RetryPolicy, StartEvent, Task
)

from bpmn_fixtures import (
    build_engine, exclusive_definition, flow, linear_definition, parallel_definition
)


class TestLinearExecution(unittest.TestCase):
    """Walking a straight sequence of tasks."""

    def setUp(self):
        self.engine, self.registry, self.handlers = build_engine(linear_definition())
        self.handlers.register("step:one", lambda value: {**value, "one": True})
        self.handlers.register("step:two", lambda value, context: {**value, "two": context.process_name})

    def test_execute_returns_last_output(self):
        result = asyncio.run(self.engine.execute("linear", {"id": 7}))
        self.assertEqual(result, {"id": 7, "one": True, "two": "linear"})

    def test_completed_context_history_matches_visited_tasks(self):
        async def run():
            result = await self.engine.execute("linear", {"id": 1})
            process_id = next(iter(self.engine._instances))
            return result, await self.engine.context_manager.get(process_id)

        result, context = asyncio.run(run())

        self.assertEqual(context.status, ProcessStatus.COMPLETED)
        self.assertIsNotNone(context.completed_at)
        self.assertEqual(len(context.step_history), 2)
        self.assertEqual([step.task_id for step in context.step_history], ["t1", "t2"])
        self.assertTrue(all(step.status == StepStatus.COMPLETED for step in context.step_history))
        self.assertEqual(context.data, {"input": {"id": 1}, "output": result})
        self.assertEqual(context.current_step, "t2")

    def test_handlers_run_in_registration_order(self):
        calls = []
        engine, _, handlers = build_engine(linear_definition(events=("chain",)))
        handlers.register("chain", lambda value: calls.append("first") or value + 1)
        handlers.register("chain", lambda value: calls.append("second") or value * 10)

        result = asyncio.run(engine.execute("linear", 1))

        self.assertEqual(result, 20)
        self.assertEqual(calls, ["first", "second"])

    def test_async_and_keyword_context_handlers(self):
        engine, _, handlers = build_engine(linear_definition(events=("async:step", "kw:step")))
        seen = {}

        async def async_handler(value):
            await asyncio.sleep(0)
            return value + ["async"]

        def keyword_handler(value, *, context):
            seen["current_step"] = context.current_step
            return value + ["keyword"]

        handlers.register("async:step", async_handler)
        handlers.register("kw:step", keyword_handler)

        result = asyncio.run(engine.execute("linear", []))

        self.assertEqual(result, ["async", "keyword"])
        self.assertEqual(seen["current_step"], "t2")

    def test_outputs_keep_their_python_types(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        output = {(1, 2): "pair", "when": when, "tags": {"a"}}
        self.handlers.register("step:two", lambda value: output)

        async def run():
            result = await self.engine.execute("linear", {"id": 7})
            process_id = next(iter(self.engine._instances))
            return result, await self.engine.context_manager.get(process_id)

        result, context = asyncio.run(run())

        self.assertEqual(result, output)
        self.assertEqual(context.step_history[-1].output, output)
        self.assertEqual(context.data, {"input": {"id": 7}, "output": output})

    def test_task_without_handlers_passes_input_through(self):
        engine, _, _ = build_engine(linear_definition(events=("nobody:listens",)))
        self.assertEqual(asyncio.run(engine.execute("linear", {"a": 1})), {"a": 1})

    def test_task_without_event_name_passes_input_through(self):
        definition = linear_definition(events=(None,))
        engine, _, _ = build_engine(definition)
        self.assertEqual(asyncio.run(engine.execute("linear", "payload")), "payload")

    def test_dead_end_returns_current_value(self):
        definition = ProcessDefinition(
            name="dead-end",
            tasks=[Task(id="only", name="Only", event_name="step")],
            flows=[flow("start", "only")],
            start_events=[StartEvent(id="start")],
            end_events=[EndEvent(id="end")]
        )
        engine, _, handlers = build_engine(definition)
        handlers.register("step", lambda value: value * 2)

        self.assertEqual(asyncio.run(engine.execute("dead-end", 21)), 42)

    def test_revisiting_task_is_a_cycle(self):
        definition = ProcessDefinition(
            name="loop",
            tasks=[Task(id="t1", name="Loop body", event_name="loop")],
            flows=[
                flow("start", "t1"),
                flow("t1", "gw"),
                flow("gw", "t1", condition="True"),
                flow("gw", "end"),
            ],
            start_events=[StartEvent(id="start")],
            end_events=[EndEvent(id="end")],
            gateways=[Gateway(id="gw", type=GatewayType.EXCLUSIVE)]
        )
        engine, _, handlers = build_engine(definition)
        handlers.register("loop", lambda value: value)

        with self.assertRaises(ProcessExecutionError) as ctx:
            asyncio.run(engine.execute("loop", {}))
        self.assertIn("Cycle detected", str(ctx.exception))
        self.assertEqual(ctx.exception.task_id, "t1")


class TestExecutionErrors(unittest.TestCase):
    """Failures before and during a walk."""

    def test_unknown_process_not_found_without_context(self):
        engine, _, _ = build_engine()

        with self.assertRaises(ProcessExecutionError) as ctx:
            asyncio.run(engine.execute("missing", {}))

        self.assertIn("not found", str(ctx.exception))
        self.assertEqual(ctx.exception.process_name, "missing")
        self.assertEqual(list(engine.context_manager.backend.keys()), [])

    def test_missing_start_event_fails_validation_without_context(self):
        definition = ProcessDefinition(
            name="no-start",
            tasks=[Task(id="t1", name="Task", event_name="x")],
            end_events=[EndEvent(id="end")]
        )
        sink = Mock()
        sink.emit_async = AsyncMock()
        engine, _, _ = build_engine(definition, event_sink=sink)

        with self.assertRaises(ProcessValidationError) as ctx:
            asyncio.run(engine.execute("no-start", {}))

        self.assertIn("STRUCT_002", ctx.exception.codes)
        self.assertEqual(list(engine.context_manager.backend.keys()), [])
        sink.emit_async.assert_not_called()

    def test_task_failure_marks_process_failed(self):
        engine, _, handlers = build_engine(linear_definition())

        def explode(value):
            raise ValueError("bad input")

        handlers.register("step:two", explode)

        async def run():
            try:
                await engine.execute("linear", {})
            except ProcessExecutionError as e:
                context = await engine.context_manager.get(e.process_id)
                return e, context

        error, context = asyncio.run(run())

        self.assertEqual(error.task_id, "t2")
        self.assertEqual(error.process_name, "linear")
        self.assertIsInstance(error.original_error, ValueError)
        self.assertIs(error.__cause__, error.original_error)
        self.assertEqual(context.status, ProcessStatus.FAILED)
        self.assertEqual(context.step_history[-1].status, StepStatus.FAILED)
        self.assertIn("bad input", context.step_history[-1].error)

    def test_timeout_counts_as_failure(self):
        definition = linear_definition(events=("slow",))
        definition.tasks[0].timeout = 0.05
        engine, _, handlers = build_engine(definition)

        async def sleepy(value):
            await asyncio.sleep(1)
            return value

        handlers.register("slow", sleepy)

        with self.assertRaises(ProcessExecutionError) as ctx:
            asyncio.run(engine.execute("linear", {}))
        self.assertIsInstance(ctx.exception.original_error, TimeoutError)
        self.assertIn("exceeded timeout", str(ctx.exception))

    def test_unstorable_output_fails_the_task(self):
        store = {}
        redis = Mock()
        redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
        redis.get.side_effect = lambda key: store.get(key)
        events = EventEmitter()
        received = []
        events.on("*", lambda name, payload: received.append(name))
        engine, _, handlers = build_engine(
            linear_definition(events=("step:one",)),
            event_sink=events,
            context_manager=ProcessContextManager(backend=RedisContextBackend(redis))
        )
        # JSON objects cannot have tuple keys
        handlers.register("step:one", lambda value: {(1, 2): "pair"})

        async def run():
            try:
                await engine.execute("linear", {})
            except ProcessExecutionError as e:
                return e, await engine.context_manager.get(e.process_id)

        error, context = asyncio.run(run())

        self.assertEqual(error.task_id, "t1")
        self.assertIsInstance(error.original_error, TypeError)
        self.assertEqual([record.status for record in context.step_history], [StepStatus.FAILED])
        self.assertEqual(received, [
            EVENT_PROCESS_STARTED, EVENT_TASK_STARTED, EVENT_TASK_FAILED, EVENT_PROCESS_FAILED
        ])


class TestRetryPolicy(unittest.TestCase):
    """Retries with exponential backoff."""

    def _flaky(self, failures):
        attempts = {"count": 0}

        def handler(value):
            attempts["count"] += 1
            if attempts["count"] <= failures:
                raise RuntimeError(f"attempt {attempts['count']} failed")
            return {**value, "attempts": attempts["count"]}

        return handler, attempts

    def test_succeeds_on_third_attempt(self):
        definition = linear_definition(events=("flaky",))
        definition.tasks[0].retry_policy = RetryPolicy(max_retries=3, backoff_ms=1)
        engine, _, handlers = build_engine(definition)
        handler, _ = self._flaky(failures=2)
        handlers.register("flaky", handler)

        async def run():
            result = await engine.execute("linear", {})
            process_id = next(iter(engine._instances))
            return result, await engine.context_manager.get(process_id)

        result, context = asyncio.run(run())

        self.assertEqual(result["attempts"], 3)
        self.assertEqual(len(context.step_history), 1)
        self.assertEqual(context.step_history[0].status, StepStatus.COMPLETED)

    def test_process_level_policy_applies_when_task_has_none(self):
        definition = linear_definition(events=("flaky",), retry_policy=RetryPolicy(max_retries=1, backoff_ms=1))
        engine, _, handlers = build_engine(definition)
        handler, attempts = self._flaky(failures=1)
        handlers.register("flaky", handler)

        self.assertEqual(asyncio.run(engine.execute("linear", {}))["attempts"], 2)
        self.assertEqual(attempts["count"], 2)

    def test_exhausted_retries_raise_last_failure(self):
        definition = linear_definition(events=("flaky",))
        definition.tasks[0].retry_policy = RetryPolicy(max_retries=2, backoff_ms=1)
        engine, _, handlers = build_engine(definition)
        handler, attempts = self._flaky(failures=10)
        handlers.register("flaky", handler)

        with self.assertRaises(ProcessExecutionError) as ctx:
            asyncio.run(engine.execute("linear", {}))
        self.assertEqual(attempts["count"], 3)
        self.assertIn("attempt 3 failed", str(ctx.exception))

    def test_no_policy_means_single_attempt(self):
        engine, _, handlers = build_engine(linear_definition(events=("flaky",)))
        handler, attempts = self._flaky(failures=1)
        handlers.register("flaky", handler)

        with self.assertRaises(ProcessExecutionError):
            asyncio.run(engine.execute("linear", {}))
        self.assertEqual(attempts["count"], 1)

    def test_timed_out_attempt_is_retried(self):
        definition = linear_definition(events=("slow",))
        definition.tasks[0].timeout = 0.05
        definition.tasks[0].retry_policy = RetryPolicy(max_retries=1, backoff_ms=1)
        engine, _, handlers = build_engine(definition)
        attempts = {"count": 0}

        async def slow_then_fast(value):
            attempts["count"] += 1
            if attempts["count"] == 1:
                await asyncio.sleep(1)
            return {**value, "attempts": attempts["count"]}

        handlers.register("slow", slow_then_fast)

        self.assertEqual(asyncio.run(engine.execute("linear", {})), {"attempts": 2})
        self.assertEqual(attempts["count"], 2)

    def test_backoff_delay(self):
        policy = RetryPolicy(max_retries=3, backoff_ms=1000, backoff_multiplier=2)
        self.assertEqual(policy.delay_for(0), 1.0)
        self.assertEqual(policy.delay_for(2), 4.0)


class TestGateways(unittest.TestCase):
    """Exclusive and parallel routing."""

    def _exclusive_engine(self, condition="amount > 100"):
        engine, _, handlers = build_engine(exclusive_definition(condition=condition))
        handlers.register("order:high", lambda value: {**value, "branch": "high"})
        handlers.register("order:low", lambda value: {**value, "branch": "low"})
        return engine

    def test_exclusive_takes_matching_branch(self):
        engine = self._exclusive_engine()
        self.assertEqual(asyncio.run(engine.execute("routing", {"amount": 200}))["branch"], "high")

    def test_exclusive_falls_back_to_default(self):
        engine = self._exclusive_engine()
        self.assertEqual(asyncio.run(engine.execute("routing", {"amount": 50}))["branch"], "low")

    def test_failing_condition_is_false(self):
        engine = self._exclusive_engine(condition="missing_field > 100")
        self.assertEqual(asyncio.run(engine.execute("routing", {"amount": 500}))["branch"], "low")

    def test_callable_condition(self):
        engine = self._exclusive_engine(condition=lambda context, value: value["vip"])
        self.assertEqual(asyncio.run(engine.execute("routing", {"vip": True}))["branch"], "high")

    def test_parallel_runs_all_branches(self):
        engine, _, handlers = build_engine(parallel_definition())
        seen_inputs = []

        def branch_a(value):
            seen_inputs.append(dict(value))
            return {**value, "branch": "a"}

        async def branch_b(value):
            seen_inputs.append(dict(value))
            await asyncio.sleep(0.01)
            return {**value, "branch": "b"}

        handlers.register("branch:a", branch_a)
        handlers.register("branch:b", branch_b)

        async def run():
            result = await engine.execute("fanout", {"order": 1})
            process_id = next(iter(engine._instances))
            return result, await engine.context_manager.get(process_id)

        result, context = asyncio.run(run())

        # continuation value comes from the branch that finished last
        self.assertEqual(result, {"order": 1, "branch": "b"})
        self.assertEqual(seen_inputs, [{"order": 1}, {"order": 1}])
        self.assertEqual(sorted(step.task_id for step in context.step_history), ["a", "b"])
        self.assertEqual(context.status, ProcessStatus.COMPLETED)

    def test_offloaded_sync_branches_run_concurrently(self):
        engine, _, handlers = build_engine(parallel_definition(), config={"offload_sync_handlers": True})
        b_started = threading.Event()
        seen = {}

        def branch_a(value):
            # only returns True when branch b runs at the same time
            seen["a"] = b_started.wait(2)
            return value

        def branch_b(value):
            b_started.set()
            return value

        handlers.register("branch:a", branch_a)
        handlers.register("branch:b", branch_b)

        asyncio.run(engine.execute("fanout", {}))

        self.assertTrue(seen["a"])

    def test_parallel_failure_waits_for_other_branches(self):
        engine, _, handlers = build_engine(parallel_definition())
        finished = []

        def branch_a(value):
            raise RuntimeError("branch a broke")

        async def branch_b(value):
            await asyncio.sleep(0.01)
            finished.append("b")
            return value

        handlers.register("branch:a", branch_a)
        handlers.register("branch:b", branch_b)

        with self.assertRaises(ProcessExecutionError) as ctx:
            asyncio.run(engine.execute("fanout", {}))
        self.assertEqual(ctx.exception.task_id, "a")
        self.assertEqual(finished, ["b"])

    def test_unknown_gateway_follows_first_flow(self):
        definition = exclusive_definition()
        definition.gateways[0].type = "complex"
        engine, _, handlers = build_engine(definition)
        handlers.register("order:high", lambda value: "high")
        handlers.register("order:low", lambda value: "low")

        self.assertEqual(asyncio.run(engine.execute("routing", {"amount": 1})), "high")


class TestCancellation(unittest.TestCase):
    """Cooperative cancellation between steps."""

    def test_cancel_running_instance(self):
        engine, _, handlers = build_engine(linear_definition())
        outcome = {}
        second = Mock(side_effect=lambda value: value)

        async def cancel_self(value, context):
            outcome["cancelled"] = await engine.cancel(context.process_id)
            outcome["process_id"] = context.process_id
            return value

        handlers.register("step:one", cancel_self)
        handlers.register("step:two", second)

        async def run():
            with self.assertRaises(ProcessExecutionError) as ctx:
                await engine.execute("linear", {})
            status = await engine.get_status(outcome["process_id"])
            stored = await engine.context_manager.get(outcome["process_id"])
            again = await engine.cancel(outcome["process_id"])
            return ctx.exception, status, stored, again

        error, status, stored, again = asyncio.run(run())

        self.assertTrue(outcome["cancelled"])
        self.assertIn("cancelled", str(error))
        second.assert_not_called()
        self.assertEqual(status.status, ProcessStatus.CANCELLED)
        self.assertEqual(stored.status, ProcessStatus.CANCELLED)
        self.assertFalse(again)
        self.assertEqual(engine.get_engine_stats()["instances_cancelled"], 1)

    def test_cancel_unknown_or_completed(self):
        engine, _, _ = build_engine(linear_definition())

        async def run():
            await engine.execute("linear", {})
            process_id = next(iter(engine._instances))
            return await engine.cancel(process_id), await engine.cancel("nope")

        completed, unknown = asyncio.run(run())
        self.assertFalse(completed)
        self.assertFalse(unknown)


class TestQueries(unittest.TestCase):
    """Status, timing, retry and background execution."""

    def setUp(self):
        self.engine, _, self.handlers = build_engine(linear_definition())
        self.handlers.register("step:one", lambda value: value)
        self.handlers.register("step:two", lambda value: value)

    def test_get_status(self):
        async def run():
            await self.engine.execute("linear", {})
            process_id = next(iter(self.engine._instances))
            return await self.engine.get_status(process_id), await self.engine.get_status("unknown")

        status, unknown = asyncio.run(run())
        self.assertEqual(status.status, ProcessStatus.COMPLETED)
        self.assertEqual(status.current_step, "t2")
        self.assertIsNone(unknown)

    def test_get_status_falls_back_to_store(self):
        engine, _, _ = build_engine(linear_definition(), config={"instance_retention_seconds": 0})

        async def run_with_keys():
            await engine.execute("linear", {})
            process_id = list(engine.context_manager.backend.keys())[0]
            return engine._instances.get(process_id), await engine.get_status(process_id)

        tracked, status = asyncio.run(run_with_keys())
        self.assertIsNone(tracked)
        self.assertEqual(status.status, ProcessStatus.COMPLETED)

    def test_get_timing(self):
        async def run():
            await self.engine.execute("linear", {})
            return next(iter(self.engine._instances))

        process_id = asyncio.run(run())
        timing = self.engine.get_timing(process_id)

        self.assertEqual(timing.process_name, "linear")
        self.assertGreaterEqual(timing.duration, 0)
        self.assertEqual([task.task_id for task in timing.tasks], ["t1", "t2"])
        self.assertIsNone(self.engine.get_timing("unknown"))

    def test_timing_entries_are_bounded(self):
        engine, _, _ = build_engine(linear_definition(), config={"max_timing_entries": 1})

        async def run():
            await engine.execute("linear", {})
            await engine.execute("linear", {})
            return list(engine._instances)

        first, second = asyncio.run(run())
        self.assertIsNone(engine.get_timing(first))
        self.assertIsNotNone(engine.get_timing(second))

    def test_retry_single_task(self):
        calls = []
        self.handlers.register("step:one", lambda value: calls.append(value) or value)

        async def run():
            await self.engine.execute("linear", {"n": 1})
            process_id = next(iter(self.engine._instances))
            result = await self.engine.retry(process_id, "t1")
            return result, await self.engine.context_manager.get(process_id)

        result, context = asyncio.run(run())

        self.assertEqual(result, {"input": {"n": 1}, "output": {"n": 1}})
        self.assertEqual(len(calls), 2)
        self.assertEqual(len(context.step_history), 3)
        self.assertEqual(context.step_history[-1].task_id, "t1")

    def test_retry_unknown_task_or_process(self):
        async def run():
            await self.engine.execute("linear", {})
            process_id = next(iter(self.engine._instances))
            with self.assertRaises(ProcessExecutionError) as ctx:
                await self.engine.retry(process_id, "nope")
            self.assertEqual(ctx.exception.task_id, "nope")
            with self.assertRaises(ProcessExecutionError):
                await self.engine.retry("unknown-process", "t1")

        asyncio.run(run())

    def test_execute_async(self):
        async def run():
            started = await self.engine.execute_async("linear", {"n": 2})
            initial = await self.engine.get_status(started.process_id)
            result = await self.engine.wait_for(started.process_id)
            final = await self.engine.get_status(started.process_id)
            return started, initial, result, final

        started, initial, result, final = asyncio.run(run())

        self.assertEqual(started.status, ProcessStatus.PENDING)
        self.assertEqual(started.process_name, "linear")
        self.assertEqual(initial.status, ProcessStatus.PENDING)
        self.assertEqual(result, {"n": 2})
        self.assertEqual(final.status, ProcessStatus.COMPLETED)

    def test_execute_async_failure_surfaces_in_wait_for(self):
        self.handlers.register("step:two", Mock(side_effect=RuntimeError("async boom")))

        async def run():
            started = await self.engine.execute_async("linear", {})
            with self.assertRaises(ProcessExecutionError) as ctx:
                await self.engine.wait_for(started.process_id)
            return ctx.exception, await self.engine.get_status(started.process_id)

        error, status = asyncio.run(run())
        self.assertEqual(error.task_id, "t2")
        self.assertEqual(status.status, ProcessStatus.FAILED)

    def test_engine_stats(self):
        asyncio.run(self.engine.execute("linear", {}))
        stats = self.engine.get_engine_stats()
        self.assertEqual(stats["instances_started"], 1)
        self.assertEqual(stats["instances_completed"], 1)
        self.assertEqual(stats["instances_failed"], 0)
        self.assertEqual(stats["active_instances"], 0)


class TestLifecycle(unittest.TestCase):
    """Lifecycle hooks and emitted events."""

    def setUp(self):
        self.events = EventEmitter()
        self.received = []
        self.events.on("*", lambda name, payload: self.received.append((name, payload)))
        self.engine, _, self.handlers = build_engine(
            linear_definition(events=("step:one",)), event_sink=self.events
        )

    def test_success_events(self):
        self.handlers.register("step:one", lambda value: "done")
        asyncio.run(self.engine.execute("linear", {}))

        names = [name for name, _ in self.received]
        self.assertEqual(names, [
            EVENT_PROCESS_STARTED, EVENT_TASK_STARTED, EVENT_TASK_COMPLETED, EVENT_PROCESS_COMPLETED
        ])
        completed = self.received[-1][1]
        self.assertEqual(completed["output"], "done")
        self.assertEqual(completed["process_name"], "linear")
        self.assertGreaterEqual(completed["duration"], 0)
        task_started = self.received[1][1]
        self.assertEqual(task_started["task_id"], "t1")
        self.assertEqual(task_started["task_name"], "Task 1")

    def test_failure_events(self):
        self.handlers.register("step:one", Mock(side_effect=RuntimeError("nope")))
        with self.assertRaises(ProcessExecutionError):
            asyncio.run(self.engine.execute("linear", {}))

        names = [name for name, _ in self.received]
        self.assertEqual(names, [
            EVENT_PROCESS_STARTED, EVENT_TASK_STARTED, EVENT_TASK_FAILED, EVENT_PROCESS_FAILED
        ])
        self.assertIsInstance(self.received[-1][1]["error"], ProcessExecutionError)

    def test_lifecycle_hooks(self):
        on_start, on_complete, on_error = Mock(), AsyncMock(), Mock()
        self.engine.register_lifecycle_hook("start", on_start)
        self.engine.register_lifecycle_hook("complete", on_complete)
        self.engine.register_lifecycle_hook("error", on_error)

        result = asyncio.run(self.engine.execute("linear", {"x": 1}))

        on_start.assert_called_once()
        self.assertEqual(on_start.call_args[0][0]["process_name"], "linear")
        on_complete.assert_awaited_once()
        self.assertEqual(on_complete.call_args[0][0]["output"], result)
        on_error.assert_not_called()

    def test_error_hook_runs_on_failure(self):
        on_error = Mock()
        self.engine.register_lifecycle_hook("error", on_error)
        self.handlers.register("step:one", Mock(side_effect=RuntimeError("nope")))

        with self.assertRaises(ProcessExecutionError):
            asyncio.run(self.engine.execute("linear", {}))
        self.assertIsInstance(on_error.call_args[0][0]["error"], ProcessExecutionError)

    def test_failing_hook_does_not_abort_process(self):
        self.engine.register_lifecycle_hook("start", Mock(side_effect=RuntimeError("hook broke")))
        self.engine.register_lifecycle_hook("complete", Mock(side_effect=RuntimeError("hook broke")))
        self.handlers.register("step:one", lambda value: "ok")

        self.assertEqual(asyncio.run(self.engine.execute("linear", {})), "ok")

    def test_unknown_hook_kind(self):
        with self.assertRaises(ValueError):
            self.engine.register_lifecycle_hook("finish", Mock())


if __name__ == '__main__':
    unittest.main(verbosity=2)
