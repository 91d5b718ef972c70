"""
Main Process Execution Engine.

Walks process definitions from their start event to an end event, running
tasks through the handler registry, routing through gateways, and keeping
each instance's context, status and timing up to date.
"""

import asyncio
import inspect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..const import (
    DEFAULT_ENGINE_CONFIG, EVENT_PROCESS_COMPLETED, EVENT_PROCESS_FAILED,
    EVENT_PROCESS_STARTED, LIFECYCLE_COMPLETE, LIFECYCLE_ERROR, LIFECYCLE_HOOKS,
    LIFECYCLE_START, WALK_STEP_MARGIN
)
from ..exceptions import ProcessEngineError, ProcessExecutionError
from ..models.context_models import (
    AsyncExecutionResult, ExecutionContext, ProcessStatus, ProcessStatusInfo,
    ProcessTiming, TaskTiming
)
from ..models.process_models import Gateway, GatewayType, ProcessDefinition, SequenceFlow
from ..validation.process_validator import ProcessValidator
from ..validation.type_registry import TypeRegistry
from .context_manager import ProcessContextManager
from .executors import GatewayExecutor, TaskExecutor
from .state_machine import ProcessStateMachine

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InstanceState:
    """In-memory bookkeeping for one process instance."""
    process_id: str
    process_name: str
    status: ProcessStatus
    started_at: datetime
    started_clock: float
    cancel_requested: bool = False
    task: Optional[asyncio.Task] = None
    result: Any = None
    error: Optional[BaseException] = None


class ProcessEngine:
    """
    Main process execution engine.

    Collaborators:
        definitions: anything with ``get_definition(name)`` and
            ``has_definition(name)``
        handlers: anything with ``lookup(event_name) -> list of callables``
        context_manager: the context store, in-memory by default
        event_sink: anything with ``emit(name, payload)``; ``emit_async``
            is awaited instead when present
    """

    def __init__(self, definitions, handlers,
                 context_manager: Optional[ProcessContextManager] = None,
                 type_registry: Optional[TypeRegistry] = None,
                 event_sink=None, config: Optional[Dict[str, Any]] = None):
        """Initialize the process engine."""
        self.definitions = definitions
        self.handlers = handlers
        self.context_manager = context_manager or ProcessContextManager()
        self.validator = ProcessValidator(type_registry)
        self.event_sink = event_sink
        self.state_machine = ProcessStateMachine()
        self.task_executor = TaskExecutor(self)
        self.gateway_executor = GatewayExecutor()

        # Engine configuration
        self.config = dict(DEFAULT_ENGINE_CONFIG)
        self.config.update(config or {})

        # Runtime state
        self._instances: Dict[str, InstanceState] = {}
        self._task_timings: Dict[str, List[TaskTiming]] = {}
        self._timing: "OrderedDict[str, ProcessTiming]" = OrderedDict()
        self._lifecycle_hooks: Dict[str, List[Callable]] = {kind: [] for kind in LIFECYCLE_HOOKS}
        self._lock = threading.RLock()
        self._engine_stats = {
            'instances_started': 0,
            'instances_completed': 0,
            'instances_failed': 0,
            'instances_cancelled': 0,
            'total_execution_time': 0.0,
            'avg_execution_time': 0.0
        }

        log.info("Process Engine initialized successfully")

    async def execute(self, process_name: str, input_data: Any = None) -> Any:
        """
        Run a process to completion.

        Args:
            process_name: Name of a registered process definition
            input_data: Input of the first task

        Returns:
            The output of the last task on the taken path

        Raises:
            ProcessExecutionError: unknown process, cancellation or task failure
            ProcessValidationError: the definition is invalid; no context is created
        """
        definition = self._resolve_definition(process_name)
        self.validator.validate_or_raise(definition)

        context = await self.context_manager.create(process_name, {'input': input_data, 'output': None})
        state = self._track(context, ProcessStatus.RUNNING)
        return await self._run(definition, context, input_data, state)

    async def execute_async(self, process_name: str, input_data: Any = None) -> AsyncExecutionResult:
        """
        Start a process in the background.

        Returns immediately with status ``pending``; the instance moves to
        ``running`` once the walk begins. Use :meth:`wait_for` to collect
        the outcome.
        """
        definition = self._resolve_definition(process_name)
        self.validator.validate_or_raise(definition)

        context = await self.context_manager.create(process_name, {'input': input_data, 'output': None})
        state = self._track(context, ProcessStatus.PENDING)
        state.task = asyncio.ensure_future(self._run_background(definition, context, input_data, state))

        return AsyncExecutionResult(
            process_id=context.process_id,
            process_name=process_name,
            status=ProcessStatus.PENDING,
            started_at=context.started_at
        )

    async def wait_for(self, process_id: str) -> Any:
        """Wait for a background instance and return its output or raise its error."""
        with self._lock:
            state = self._instances.get(process_id)
        if state is None or state.task is None:
            raise ProcessEngineError(f"No background execution tracked for process {process_id}")
        await asyncio.shield(state.task)
        if state.error is not None:
            raise state.error
        return state.result

    async def get_status(self, process_id: str) -> Optional[ProcessStatusInfo]:
        """
        Status and current step of an instance.

        Prefers the in-memory state while the instance is tracked, then
        falls back to the context store.
        """
        with self._lock:
            state = self._instances.get(process_id)
        context = await self.context_manager.get(process_id)
        if state is not None:
            return ProcessStatusInfo(
                status=state.status,
                current_step=context.current_step if context else None
            )
        if context is None:
            return None
        return ProcessStatusInfo(status=context.status, current_step=context.current_step)

    def get_timing(self, process_id: str) -> Optional[ProcessTiming]:
        """Timing of a finished instance, or None if unknown or expired."""
        with self._lock:
            return self._timing.get(process_id)

    async def cancel(self, process_id: str) -> bool:
        """
        Request cancellation of a running instance.

        The walk stops at its next step boundary; a handler already running
        is not interrupted.

        Returns:
            True if the instance was running, False otherwise
        """
        with self._lock:
            state = self._instances.get(process_id)
            if state is None or state.status != ProcessStatus.RUNNING:
                return False
            self._set_status(state, ProcessStatus.CANCELLED)
            state.cancel_requested = True

        await self.context_manager.update(process_id, status=ProcessStatus.CANCELLED)
        log.info(f"Cancellation requested for process instance {process_id}")
        return True

    async def retry(self, process_id: str, task_id: str) -> Any:
        """Run a single task again using the instance's current data."""
        context = await self.context_manager.get(process_id)
        if context is None:
            raise ProcessExecutionError(f'Process "{process_id}" not found', process_id=process_id)

        definition = self.definitions.get_definition(context.process_name)
        if definition is None:
            raise ProcessExecutionError(
                f'Process definition "{context.process_name}" not found',
                process_id=process_id, process_name=context.process_name
            )

        task = definition.get_task(task_id)
        if task is None:
            raise ProcessExecutionError(
                f'Task "{task_id}" not found in process',
                process_id=process_id, process_name=context.process_name, task_id=task_id
            )

        log.info(f"Retrying task {task_id} of process instance {process_id}")
        return await self.task_executor.execute(task, context.data, context, definition)

    def register_lifecycle_hook(self, kind: str, hook: Callable):
        """Register a hook for ``start``, ``complete`` or ``error``."""
        if kind not in LIFECYCLE_HOOKS:
            raise ValueError(f"Unknown lifecycle hook '{kind}', expected one of {', '.join(LIFECYCLE_HOOKS)}")
        if not callable(hook):
            raise ValueError("Lifecycle hook must be callable")
        with self._lock:
            self._lifecycle_hooks[kind].append(hook)
        log.debug(f"Registered {kind} lifecycle hook")

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine performance statistics."""
        with self._lock:
            stats = self._engine_stats.copy()
            stats['tracked_instances'] = len(self._instances)
            stats['active_instances'] = sum(
                1 for state in self._instances.values() if not state.status.is_terminal
            )
            stats['timing_entries'] = len(self._timing)
        return stats

    # Execution internals

    def _resolve_definition(self, process_name: str) -> ProcessDefinition:
        definition = self.definitions.get_definition(process_name)
        if definition is None:
            raise ProcessExecutionError(f'Process "{process_name}" not found', process_name=process_name)
        return definition

    def _track(self, context: ExecutionContext, status: ProcessStatus) -> InstanceState:
        state = InstanceState(
            process_id=context.process_id,
            process_name=context.process_name,
            status=status,
            started_at=context.started_at,
            started_clock=time.perf_counter()
        )
        with self._lock:
            self._instances[context.process_id] = state
            self._task_timings[context.process_id] = []
            self._engine_stats['instances_started'] += 1
        return state

    def _set_status(self, state: InstanceState, status: ProcessStatus):
        with self._lock:
            state.status = self.state_machine.transition(state.process_id, state.status, status)

    async def _run_background(self, definition: ProcessDefinition, context: ExecutionContext,
                              input_data: Any, state: InstanceState):
        try:
            self._set_status(state, ProcessStatus.RUNNING)
            state.result = await self._run(definition, context, input_data, state)
        except Exception as e:
            state.error = e
            log.error(f"Async process {context.process_name} ({context.process_id}) failed: {str(e)}")

    async def _run(self, definition: ProcessDefinition, context: ExecutionContext,
                   input_data: Any, state: InstanceState) -> Any:
        process_id = context.process_id
        process_name = context.process_name

        try:
            await self._emit(EVENT_PROCESS_STARTED, {
                'process_id': process_id,
                'process_name': process_name,
                'started_at': context.started_at
            })
            await self._run_lifecycle_hooks(LIFECYCLE_START, {
                'process_id': process_id,
                'process_name': process_name,
                'context': context
            })
            log.info(f"Started process instance {process_id} of '{process_name}'")

            result = await self._walk(definition, context, input_data, state)
            self._check_cancelled(state, definition)

            completed_at = _now()
            duration = (time.perf_counter() - state.started_clock) * 1000
            self._set_status(state, ProcessStatus.COMPLETED)
            await self.context_manager.update(
                process_id,
                status=ProcessStatus.COMPLETED,
                completed_at=completed_at,
                data={**(context.data or {}), 'output': result}
            )
            self._record_process_timing(state, completed_at, duration)

            await self._emit(EVENT_PROCESS_COMPLETED, {
                'process_id': process_id,
                'process_name': process_name,
                'completed_at': completed_at,
                'duration': duration,
                'output': result
            })
            await self._run_lifecycle_hooks(LIFECYCLE_COMPLETE, {
                'process_id': process_id,
                'process_name': process_name,
                'output': result,
                'context': context
            })

            with self._lock:
                self._engine_stats['instances_completed'] += 1
                self._update_avg_execution_time(duration)

            log.info(f"Process instance {process_id} completed in {duration:.1f}ms")
            return result

        except Exception as e:
            failed_at = _now()
            duration = (time.perf_counter() - state.started_clock) * 1000
            if isinstance(e, ProcessExecutionError):
                error = e
            else:
                error = ProcessExecutionError(
                    str(e), process_id=process_id, process_name=process_name, original_error=e
                )

            if state.status.is_terminal:
                # Cancelled instances keep their status
                await self.context_manager.update(process_id, completed_at=failed_at)
            else:
                self._set_status(state, ProcessStatus.FAILED)
                await self.context_manager.update(
                    process_id, status=ProcessStatus.FAILED, completed_at=failed_at
                )
            self._record_process_timing(state, failed_at, duration)

            await self._emit(EVENT_PROCESS_FAILED, {
                'process_id': process_id,
                'process_name': process_name,
                'failed_at': failed_at,
                'error': error
            })
            await self._run_lifecycle_hooks(LIFECYCLE_ERROR, {
                'process_id': process_id,
                'process_name': process_name,
                'error': error,
                'context': context
            })

            with self._lock:
                if state.status == ProcessStatus.CANCELLED:
                    self._engine_stats['instances_cancelled'] += 1
                else:
                    self._engine_stats['instances_failed'] += 1

            log.error(f"Process instance {process_id} of '{process_name}' {state.status.value}: {error.message}")
            if error is e:
                raise
            raise error from e

        finally:
            self._schedule_cleanup(process_id)

    async def _walk(self, definition: ProcessDefinition, context: ExecutionContext,
                    value: Any, state: InstanceState) -> Any:
        if not definition.start_events:
            raise ProcessExecutionError(
                "No start event found in process",
                process_id=context.process_id, process_name=definition.name
            )

        end_ids = {event.id for event in definition.end_events}
        current_id = definition.start_events[0].id
        visited = set()
        max_steps = definition.element_count + WALK_STEP_MARGIN

        for _ in range(max_steps):
            self._check_cancelled(state, definition)

            if current_id in end_ids:
                return value

            task = definition.get_task(current_id)
            if task is not None:
                if current_id in visited:
                    raise ProcessExecutionError(
                        f'Cycle detected: task "{task.id}" was already executed in this walk',
                        process_id=context.process_id, process_name=definition.name, task_id=task.id
                    )
                visited.add(current_id)
                value = await self.task_executor.execute(task, value, context, definition)

            flows = definition.flows_from(current_id)
            gateway = definition.get_gateway(current_id)
            if gateway is not None:
                kind = self._gateway_kind(gateway)
                if kind == GatewayType.EXCLUSIVE:
                    live_context = await self.context_manager.get(context.process_id) or context
                    flow = self.gateway_executor.select_flow(gateway, flows, live_context, value)
                    if flow is not None:
                        current_id = flow.target_ref
                        continue
                elif kind == GatewayType.PARALLEL and flows:
                    current_id, value = await self._run_parallel(
                        gateway, flows, value, context, definition, state, max_steps
                    )
                    continue

            if not flows:
                log.debug(f"Process {context.process_id} reached dead end at {current_id}")
                return value

            current_id = flows[0].target_ref

        raise ProcessExecutionError(
            f"Process exceeded the maximum of {max_steps} steps",
            process_id=context.process_id, process_name=definition.name
        )

    async def _run_parallel(self, gateway: Gateway, flows: List[SequenceFlow], value: Any,
                            context: ExecutionContext, definition: ProcessDefinition,
                            state: InstanceState, max_steps: int) -> Tuple[str, Any]:
        """
        Walk every outgoing branch concurrently.

        Continues from the first branch's terminal element with the value of
        the branch that finished last. The first failure in completion order
        is raised once every branch has settled.
        """
        completion_order: List[int] = []

        async def run_branch(index: int, flow: SequenceFlow):
            try:
                return await self._walk_branch(
                    flow.target_ref, gateway, value, context, definition, state, max_steps
                )
            finally:
                completion_order.append(index)

        results = await asyncio.gather(
            *(run_branch(index, flow) for index, flow in enumerate(flows)),
            return_exceptions=True
        )

        for index in completion_order:
            if isinstance(results[index], BaseException):
                raise results[index]

        terminal_id = results[0][0]
        return terminal_id, results[completion_order[-1]][1]

    async def _walk_branch(self, element_id: str, gateway: Gateway, value: Any,
                           context: ExecutionContext, definition: ProcessDefinition,
                           state: InstanceState, max_steps: int) -> Tuple[str, Any]:
        end_ids = {event.id for event in definition.end_events}
        visited = set()

        for _ in range(max_steps):
            self._check_cancelled(state, definition)
            if element_id in end_ids:
                break

            task = definition.get_task(element_id)
            if task is not None:
                if element_id in visited:
                    break
                visited.add(element_id)
                value = await self.task_executor.execute(task, value, context, definition)

            join = definition.get_gateway(element_id)
            if join is not None and join.id != gateway.id:
                break

            flows = definition.flows_from(element_id)
            if not flows:
                break
            element_id = flows[0].target_ref

        return element_id, value

    @staticmethod
    def _gateway_kind(gateway: Gateway) -> Optional[GatewayType]:
        if isinstance(gateway.type, GatewayType):
            return gateway.type
        try:
            return GatewayType(str(gateway.type).lower())
        except ValueError:
            return None

    def _check_cancelled(self, state: InstanceState, definition: ProcessDefinition):
        if state.cancel_requested:
            raise ProcessExecutionError(
                "Process was cancelled",
                process_id=state.process_id, process_name=definition.name
            )

    # Notifications

    async def _emit(self, event_name: str, payload: Dict[str, Any]):
        if self.event_sink is None:
            return
        try:
            emit_async = getattr(self.event_sink, 'emit_async', None)
            if emit_async is not None:
                await emit_async(event_name, payload)
            else:
                result = self.event_sink.emit(event_name, payload)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            log.error(f"Event sink failed for '{event_name}': {str(e)}")

    async def _run_lifecycle_hooks(self, kind: str, payload: Dict[str, Any]):
        with self._lock:
            hooks = list(self._lifecycle_hooks[kind])
        for hook in hooks:
            try:
                if asyncio.iscoroutinefunction(hook):
                    await hook(payload)
                else:
                    result = hook(payload)
                    if inspect.isawaitable(result):
                        await result
            except Exception as e:
                log.error(f"Lifecycle hook '{kind}' failed: {str(e)}")

    # Timing and retention

    def _record_task_timing(self, process_id: str, timing: TaskTiming):
        if not self.config.get('timing_enabled', True):
            return
        with self._lock:
            timings = self._task_timings.get(process_id)
            if timings is not None:
                timings.append(timing)

    def _record_process_timing(self, state: InstanceState, completed_at: datetime, duration: float):
        if not self.config.get('timing_enabled', True):
            return
        with self._lock:
            self._timing[state.process_id] = ProcessTiming(
                process_id=state.process_id,
                process_name=state.process_name,
                started_at=state.started_at,
                completed_at=completed_at,
                duration=duration,
                tasks=list(self._task_timings.get(state.process_id, []))
            )
            max_entries = self.config.get('max_timing_entries')
            while max_entries is not None and len(self._timing) > max_entries:
                self._timing.popitem(last=False)

    def _update_avg_execution_time(self, duration: float):
        self._engine_stats['total_execution_time'] += duration
        completed = self._engine_stats['instances_completed']
        if completed > 0:
            self._engine_stats['avg_execution_time'] = self._engine_stats['total_execution_time'] / completed

    def _schedule_cleanup(self, process_id: str):
        retention = self.config.get('instance_retention_seconds')
        if retention is None:
            return
        if retention <= 0:
            self._forget(process_id)
            return
        asyncio.get_running_loop().call_later(retention, self._forget, process_id)

    def _forget(self, process_id: str):
        with self._lock:
            self._instances.pop(process_id, None)
            self._task_timings.pop(process_id, None)
