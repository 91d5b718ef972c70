__version__ = "0.1.0"

from .definitions import ProcessDefinitionRegistry  # noqa: F401
from .engine import (  # noqa: F401
    MemoryContextBackend,
    ProcessContextManager,
    ProcessEngine,
    RedisContextBackend,
)
from .events import EventEmitter  # noqa: F401
from .exceptions import (  # noqa: F401
    DependencyCycleError,
    ProcessEngineError,
    ProcessExecutionError,
    ProcessLoaderError,
    ProcessValidationError,
    StateTransitionError,
)
from .extension import BPMN, get_engine  # noqa: F401
from .graph import DependencyGraph  # noqa: F401
from .handlers import HandlerRegistry  # noqa: F401
from .models import (  # noqa: F401
    EndEvent,
    ExecutionContext,
    Gateway,
    GatewayType,
    ProcessDefinition,
    ProcessStatus,
    RetryPolicy,
    SequenceFlow,
    StartEvent,
    StepRecord,
    Task,
    TaskType,
)
from .triggers import IntervalTrigger, ManualTrigger  # noqa: F401
from .validation import ProcessValidator, TypeRegistry  # noqa: F401
