"""
Process Node Executors.

Run the individual elements the engine meets while walking a process graph:
tasks run their handler chain, exclusive gateways pick one outgoing flow.
"""

import ast
import asyncio
import functools
import inspect
import logging
import operator as ops
import threading
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..const import EVENT_TASK_COMPLETED, EVENT_TASK_FAILED, EVENT_TASK_STARTED
from ..exceptions import ProcessExecutionError
from ..models.context_models import ExecutionContext, StepRecord, StepStatus, TaskTiming
from ..models.process_models import (
    Condition, Gateway, ProcessDefinition, RetryPolicy, SequenceFlow, Task
)

log = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskExecutor:
    """
    Executes a single task of a process instance.

    The handlers resolved for the task's event name run as a sequential
    reduction: each handler's output is the next handler's input. A failed
    chain is retried from the original input according to the effective
    retry policy; only the final failure is raised.
    """

    def __init__(self, engine):
        self.engine = engine

    async def execute(self, task: Task, value: Any, context: ExecutionContext,
                      definition: ProcessDefinition) -> Any:
        """
        Run ``task`` with ``value`` as input and return its output.

        Raises:
            ProcessExecutionError: carrying ``task_id`` once retries are exhausted
        """
        context_manager = self.engine.context_manager
        process_id = context.process_id
        started_at = _now()
        start_time = time.perf_counter()

        await context_manager.update(process_id, current_step=task.id)
        await context_manager.add_step_history(process_id, StepRecord(
            task_id=task.id,
            task_name=task.name,
            started_at=started_at,
            status=StepStatus.RUNNING
        ))

        await self.engine._emit(EVENT_TASK_STARTED, {
            'process_id': process_id,
            'task_id': task.id,
            'task_name': task.name,
            'started_at': started_at
        })

        if self.engine.config.get('trace_execution'):
            log.debug(f"Executing task {task.id} of process {process_id}")

        try:
            live_context = await context_manager.get(process_id) or context
            result = await self._execute_with_retry(task, value, live_context, definition)

            completed_at = _now()
            duration = (time.perf_counter() - start_time) * 1000
            await context_manager.update_step(
                process_id, task.id,
                status=StepStatus.COMPLETED,
                completed_at=completed_at,
                output=result
            )
        except Exception as e:
            completed_at = _now()
            await context_manager.update_step(
                process_id, task.id,
                status=StepStatus.FAILED,
                completed_at=completed_at,
                error=str(e)
            )
            await self.engine._emit(EVENT_TASK_FAILED, {
                'process_id': process_id,
                'task_id': task.id,
                'task_name': task.name,
                'failed_at': completed_at,
                'error': e
            })
            log.error(f"Task {task.id} of process {process_id} failed: {str(e)}")
            raise ProcessExecutionError(
                f'Task "{task.name}" ({task.id}) failed: {str(e)}',
                process_id=process_id,
                process_name=context.process_name,
                task_id=task.id,
                original_error=e
            ) from e

        await self.engine._emit(EVENT_TASK_COMPLETED, {
            'process_id': process_id,
            'task_id': task.id,
            'task_name': task.name,
            'completed_at': completed_at,
            'duration': duration,
            'output': result
        })

        self.engine._record_task_timing(process_id, TaskTiming(
            task_id=task.id,
            task_name=task.name,
            started_at=started_at,
            completed_at=completed_at,
            duration=duration
        ))

        threshold = self.engine.config.get('slow_task_threshold_ms')
        if threshold is not None and duration > threshold:
            log.warning(f"Slow task {task.id} in process {process_id}: {duration:.1f}ms (threshold {threshold}ms)")

        return result

    async def _execute_with_retry(self, task: Task, value: Any, context: ExecutionContext,
                                  definition: ProcessDefinition) -> Any:
        if not task.event_name:
            return value

        handlers = self.engine.handlers.lookup(task.event_name)
        if not handlers:
            log.debug(f"No handlers for event '{task.event_name}', passing input through")
            return value

        policy = task.retry_policy or definition.retry_policy or RetryPolicy()
        attempt = 0
        while True:
            try:
                return await self._run_attempt(task, handlers, value, context)
            except Exception as e:
                if attempt >= policy.max_retries:
                    raise
                delay = policy.delay_for(attempt)
                log.warning(
                    f'Task "{task.name}" failed (attempt {attempt + 1}/{policy.max_retries + 1}), '
                    f"retrying in {delay * 1000:.0f}ms: {str(e)}"
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _run_attempt(self, task: Task, handlers: List[Callable], value: Any,
                           context: ExecutionContext) -> Any:
        if not task.timeout:
            return await self._run_chain(handlers, value, context)
        try:
            return await asyncio.wait_for(self._run_chain(handlers, value, context), timeout=task.timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f'Task "{task.name}" exceeded timeout of {task.timeout}s')

    async def _run_chain(self, handlers: List[Callable], value: Any, context: ExecutionContext) -> Any:
        offload = bool(self.engine.config.get('offload_sync_handlers'))
        for handler in handlers:
            value = await invoke_handler(handler, value, context, offload=offload)
        return value


def _context_mode(handler: Callable) -> Optional[str]:
    """How ``handler`` takes the context: 'positional', 'keyword' or None."""
    try:
        parameters = inspect.signature(handler).parameters.values()
    except (TypeError, ValueError):
        return None

    positional = 0
    for parameter in parameters:
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return 'positional'
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY,
                              inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
        elif parameter.kind == inspect.Parameter.KEYWORD_ONLY and parameter.name == 'context':
            return 'keyword'
    return 'positional' if positional >= 2 else None


async def invoke_handler(handler: Callable, value: Any, context: ExecutionContext,
                         offload: bool = False) -> Any:
    """
    Call a sync or async handler, passing the context when it asks for one.

    Sync handlers run on the event loop thread unless ``offload`` is set, in
    which case they run in the loop's default executor. On the loop thread a
    blocking handler stalls every other instance and parallel branch, and a
    task timeout cannot interrupt it.
    """
    mode = _context_mode(handler)
    if mode == 'positional':
        call = functools.partial(handler, value, context)
    elif mode == 'keyword':
        call = functools.partial(handler, value, context=context)
    else:
        call = functools.partial(handler, value)

    if offload and not asyncio.iscoroutinefunction(handler):
        result = await asyncio.get_running_loop().run_in_executor(None, call)
    else:
        result = call()
    if inspect.isawaitable(result):
        result = await result
    return result


class ConditionEvaluator:
    """
    Restricted evaluator for sequence flow conditions.

    Expressions use Python syntax over a small subset: literals, names,
    attribute and subscript access, comparisons, boolean and arithmetic
    operators, and a few safe builtins. Names resolve against the keys of
    the current value, plus ``data`` (the value itself) and ``context``.
    Attribute access on a mapping reads the key of the same name.
    """

    SAFE_OPERATORS = {
        ast.Add: ops.add, ast.Sub: ops.sub, ast.Mult: ops.mul,
        ast.Div: ops.truediv, ast.FloorDiv: ops.floordiv, ast.Mod: ops.mod,
        ast.Eq: ops.eq, ast.NotEq: ops.ne, ast.Lt: ops.lt,
        ast.LtE: ops.le, ast.Gt: ops.gt, ast.GtE: ops.ge,
        ast.Is: ops.is_, ast.IsNot: ops.is_not,
        ast.In: lambda a, b: a in b, ast.NotIn: lambda a, b: a not in b,
        ast.Not: ops.not_, ast.USub: ops.neg, ast.UAdd: ops.pos
    }

    SAFE_FUNCTIONS = {
        'len': len, 'abs': abs, 'min': min, 'max': max,
        'str': str, 'int': int, 'float': float, 'bool': bool
    }

    def __init__(self):
        self._compiled: Dict[str, ast.Expression] = {}
        self._lock = threading.Lock()

    def evaluate(self, condition: Condition, context: Any, value: Any) -> bool:
        """Evaluate a condition string or predicate; errors propagate to the caller."""
        if callable(condition):
            return bool(condition(context, value))

        variables = {}
        if isinstance(value, Mapping):
            variables.update({k: v for k, v in value.items() if isinstance(k, str)})
        variables['data'] = value
        variables['context'] = context
        return bool(self._eval_node(self._parse(condition).body, variables))

    def _parse(self, expression: str) -> ast.Expression:
        with self._lock:
            tree = self._compiled.get(expression)
            if tree is None:
                tree = ast.parse(expression.strip(), mode='eval')
                self._compiled[expression] = tree
            return tree

    def _eval_node(self, node, variables: Dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        elif isinstance(node, ast.Name):
            if node.id in variables:
                return variables[node.id]
            if node.id in self.SAFE_FUNCTIONS:
                return self.SAFE_FUNCTIONS[node.id]
            raise NameError(f"Variable '{node.id}' not defined")
        elif isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval_node(element, variables) for element in node.elts]
        elif isinstance(node, ast.Attribute):
            target = self._eval_node(node.value, variables)
            if node.attr.startswith('_'):
                raise AttributeError(f"Access to '{node.attr}' is not allowed")
            if isinstance(target, Mapping):
                return target[node.attr]
            return getattr(target, node.attr)
        elif isinstance(node, ast.Subscript):
            target = self._eval_node(node.value, variables)
            return target[self._eval_node(node.slice, variables)]
        elif isinstance(node, ast.BinOp):
            return self._operator(node.op)(
                self._eval_node(node.left, variables),
                self._eval_node(node.right, variables)
            )
        elif isinstance(node, ast.UnaryOp):
            return self._operator(node.op)(self._eval_node(node.operand, variables))
        elif isinstance(node, ast.Compare):
            left = self._eval_node(node.left, variables)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval_node(comparator, variables)
                if not self._operator(op)(left, right):
                    return False
                left = right
            return True
        elif isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result = True
                for value in node.values:
                    result = self._eval_node(value, variables)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval_node(value, variables)
                if result:
                    return result
            return result
        elif isinstance(node, ast.IfExp):
            if self._eval_node(node.test, variables):
                return self._eval_node(node.body, variables)
            return self._eval_node(node.orelse, variables)
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in self.SAFE_FUNCTIONS:
                raise TypeError("Only builtin helper functions may be called")
            if node.keywords:
                raise TypeError("Keyword arguments are not supported")
            args = [self._eval_node(arg, variables) for arg in node.args]
            return self.SAFE_FUNCTIONS[node.func.id](*args)
        raise TypeError(f"Unsupported expression: {type(node).__name__}")

    def _operator(self, op) -> Callable:
        func = self.SAFE_OPERATORS.get(type(op))
        if func is None:
            raise TypeError(f"Unsupported operator: {type(op).__name__}")
        return func


class GatewayExecutor:
    """Chooses the outgoing flow of an exclusive gateway."""

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def select_flow(self, gateway: Gateway, flows: List[SequenceFlow], context: Any,
                    value: Any) -> Optional[SequenceFlow]:
        """
        First flow whose condition holds, in declaration order.

        Flows without a condition are only taken as the fallback: the
        gateway's default flow, or else the last outgoing flow. A condition
        that fails to evaluate counts as false.
        """
        for flow in flows:
            if flow.condition_expression is None or flow.condition_expression == '':
                continue
            try:
                if self.evaluator.evaluate(flow.condition_expression, context, value):
                    return flow
            except Exception as e:
                log.debug(f"Condition on flow {flow.id} of gateway {gateway.id} failed: {str(e)}")

        if not flows:
            return None
        if gateway.default:
            for flow in flows:
                if flow.id == gateway.default:
                    return flow
        return flows[-1]
