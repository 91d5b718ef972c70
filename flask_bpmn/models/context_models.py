"""
Execution context models.

Per-instance state tracked by the context manager, plus the timing and
status records returned by the engine's query API.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ProcessStatus(Enum):
    """Process instance status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessStatus.COMPLETED, ProcessStatus.FAILED, ProcessStatus.CANCELLED)


class StepStatus(Enum):
    """Status of a single step in the history."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepRecord:
    task_id: str
    task_name: str
    started_at: datetime
    status: StepStatus = StepStatus.RUNNING
    completed_at: Optional[datetime] = None
    output: Any = None
    error: Optional[str] = None


@dataclass
class ExecutionContext:
    """
    Mutable state of one process instance.

    Owned by the context manager; the engine changes it only through the
    manager's API.
    """
    process_id: str
    process_name: str
    started_at: datetime
    status: ProcessStatus = ProcessStatus.RUNNING
    current_step: str = ""
    step_history: List[StepRecord] = field(default_factory=list)
    data: Any = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskTiming:
    task_id: str
    task_name: str
    started_at: datetime
    completed_at: datetime
    duration: float  # ms


@dataclass
class ProcessTiming:
    process_id: str
    process_name: str
    started_at: datetime
    completed_at: datetime
    duration: float  # ms
    tasks: List[TaskTiming] = field(default_factory=list)


@dataclass
class ProcessStatusInfo:
    status: ProcessStatus
    current_step: Optional[str] = None


@dataclass
class AsyncExecutionResult:
    process_id: str
    process_name: str
    status: ProcessStatus
    started_at: datetime
