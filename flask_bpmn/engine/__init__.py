"""
Process Execution Engine.

Walks process graphs, runs task handler chains and tracks the state of
every running instance.
"""

from .backends import ContextBackend, MemoryContextBackend, RedisContextBackend
from .context_manager import ContextManagerError, ProcessContextManager
from .executors import ConditionEvaluator, GatewayExecutor, TaskExecutor
from .process_engine import ProcessEngine
from .state_machine import ProcessStateMachine

__all__ = [
    'ConditionEvaluator',
    'ContextBackend',
    'ContextManagerError',
    'GatewayExecutor',
    'MemoryContextBackend',
    'ProcessContextManager',
    'ProcessEngine',
    'ProcessStateMachine',
    'RedisContextBackend',
    'TaskExecutor'
]
