"""
Constants shared across the BPMN engine.
"""

# Lifecycle events emitted to the event sink
EVENT_PROCESS_STARTED = "process.started"
EVENT_PROCESS_COMPLETED = "process.completed"
EVENT_PROCESS_FAILED = "process.failed"
EVENT_TASK_STARTED = "task.started"
EVENT_TASK_COMPLETED = "task.completed"
EVENT_TASK_FAILED = "task.failed"

ALL_EVENTS = (
    EVENT_PROCESS_STARTED,
    EVENT_PROCESS_COMPLETED,
    EVENT_PROCESS_FAILED,
    EVENT_TASK_STARTED,
    EVENT_TASK_COMPLETED,
    EVENT_TASK_FAILED,
)

# Lifecycle hook kinds
LIFECYCLE_START = "start"
LIFECYCLE_COMPLETE = "complete"
LIFECYCLE_ERROR = "error"

LIFECYCLE_HOOKS = (LIFECYCLE_START, LIFECYCLE_COMPLETE, LIFECYCLE_ERROR)

# Validation codes
STRUCT_NO_NAME = "STRUCT_001"
STRUCT_NO_START_EVENT = "STRUCT_002"
STRUCT_NO_END_EVENT = "STRUCT_003"
STRUCT_DUPLICATE_TASK_ID = "STRUCT_004"
STRUCT_NO_TASKS = "STRUCT_W001"
TYPE_UNKNOWN_INPUT = "TYPE_W001"
TYPE_UNKNOWN_OUTPUT = "TYPE_W002"
FLOW_UNKNOWN_SOURCE = "FLOW_001"
FLOW_UNKNOWN_TARGET = "FLOW_002"
FLOW_NO_EVENT_NAME = "FLOW_W001"

# Retry defaults
DEFAULT_BACKOFF_MS = 1000
DEFAULT_BACKOFF_MULTIPLIER = 2

# Extra steps allowed on top of the element count before a walk is aborted
WALK_STEP_MARGIN = 10

DEFAULT_REDIS_KEY_PREFIX = "bpmn:ctx:"

DEFAULT_ENGINE_CONFIG = {
    "instance_retention_seconds": 300,
    "max_timing_entries": 1000,
    "slow_task_threshold_ms": None,
    "timing_enabled": True,
    "trace_execution": False,
    "offload_sync_handlers": False,
}

# Flask configuration keys and their defaults
DEFAULT_APP_CONFIG = {
    "BPMN_DEFINITIONS_PATH": None,
    "BPMN_CONTEXT_PERSISTENCE": "memory",
    "BPMN_CONTEXT_MAX_HISTORY_SIZE": None,
    "BPMN_CONTEXT_TTL_SECONDS": 3600,
    "BPMN_REDIS_KEY_PREFIX": DEFAULT_REDIS_KEY_PREFIX,
    "BPMN_INSTANCE_RETENTION_SECONDS": 300,
    "BPMN_MAX_TIMING_ENTRIES": 1000,
    "BPMN_SLOW_TASK_THRESHOLD_MS": None,
    "BPMN_TRACE_EXECUTION": False,
    "BPMN_OFFLOAD_SYNC_HANDLERS": False,
    "BPMN_LOG_LEVEL": None,
}
