from .context_models import (
    AsyncExecutionResult,
    ExecutionContext,
    ProcessStatus,
    ProcessStatusInfo,
    ProcessTiming,
    StepRecord,
    StepStatus,
    TaskTiming,
)
from .process_models import (
    EndEvent,
    Gateway,
    GatewayType,
    ProcessDefinition,
    RetryPolicy,
    SequenceFlow,
    StartEvent,
    Task,
    TaskType,
)

__all__ = [
    'AsyncExecutionResult',
    'EndEvent',
    'ExecutionContext',
    'Gateway',
    'GatewayType',
    'ProcessDefinition',
    'ProcessStatus',
    'ProcessStatusInfo',
    'ProcessTiming',
    'RetryPolicy',
    'SequenceFlow',
    'StartEvent',
    'StepRecord',
    'StepStatus',
    'Task',
    'TaskTiming',
    'TaskType',
]
