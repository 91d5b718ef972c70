"""
Process graph models.

Passive data structures describing a process definition: events, tasks,
gateways and the sequence flows connecting them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..const import DEFAULT_BACKOFF_MS, DEFAULT_BACKOFF_MULTIPLIER


class TaskType(Enum):
    """BPMN task kinds."""
    SERVICE = "service"
    USER = "user"
    SCRIPT = "script"
    SEND = "send"
    RECEIVE = "receive"
    MANUAL = "manual"
    BUSINESS_RULE = "business_rule"


class GatewayType(Enum):
    """Gateway kinds. Inclusive gateways only follow their first flow."""
    EXCLUSIVE = "exclusive"
    PARALLEL = "parallel"
    INCLUSIVE = "inclusive"


Condition = Union[str, Callable[[Any, Any], bool]]


@dataclass
class RetryPolicy:
    """Retry settings for a task's handler chain."""
    max_retries: int = 0
    backoff_ms: float = DEFAULT_BACKOFF_MS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retrying after ``attempt`` (0-based)."""
        return (self.backoff_ms * (self.backoff_multiplier ** attempt)) / 1000.0


@dataclass
class Task:
    id: str
    name: str
    type: TaskType = TaskType.SERVICE
    event_name: Optional[str] = None
    description: Optional[str] = None
    input_type: Optional[str] = None
    output_type: Optional[str] = None
    timeout: Optional[float] = None  # seconds
    retry_policy: Optional[RetryPolicy] = None
    incoming: List[str] = field(default_factory=list)
    outgoing: List[str] = field(default_factory=list)
    extension_elements: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SequenceFlow:
    id: str
    source_ref: str
    target_ref: str
    name: Optional[str] = None
    condition_expression: Optional[Condition] = None


@dataclass
class Gateway:
    id: str
    type: Union[GatewayType, str] = GatewayType.EXCLUSIVE
    default: Optional[str] = None
    name: Optional[str] = None
    incoming: List[str] = field(default_factory=list)
    outgoing: List[str] = field(default_factory=list)


@dataclass
class StartEvent:
    id: str
    name: Optional[str] = None
    outgoing: List[str] = field(default_factory=list)


@dataclass
class EndEvent:
    id: str
    name: Optional[str] = None
    incoming: List[str] = field(default_factory=list)


@dataclass
class ProcessDefinition:
    """
    Static graph of a process.

    Identified by ``name``. Treated as immutable once registered; lookups
    below never modify the graph.
    """
    name: str
    tasks: List[Task] = field(default_factory=list)
    flows: List[SequenceFlow] = field(default_factory=list)
    start_events: List[StartEvent] = field(default_factory=list)
    end_events: List[EndEvent] = field(default_factory=list)
    gateways: List[Gateway] = field(default_factory=list)
    retry_policy: Optional[RetryPolicy] = None
    description: Optional[str] = None
    version: Optional[str] = None
    source: Optional[str] = None

    def get_task(self, task_id: str) -> Optional[Task]:
        return next((task for task in self.tasks if task.id == task_id), None)

    def get_gateway(self, gateway_id: str) -> Optional[Gateway]:
        return next((gw for gw in self.gateways if gw.id == gateway_id), None)

    def flows_from(self, element_id: str) -> List[SequenceFlow]:
        """Outgoing flows of an element, in declaration order."""
        return [flow for flow in self.flows if flow.source_ref == element_id]

    def element_ids(self) -> set:
        """Ids of every flow node a sequence flow may reference."""
        ids = {event.id for event in self.start_events}
        ids.update(event.id for event in self.end_events)
        ids.update(task.id for task in self.tasks)
        ids.update(gateway.id for gateway in self.gateways)
        return ids

    @property
    def element_count(self) -> int:
        return (len(self.tasks) + len(self.start_events) + len(self.end_events)
                + len(self.flows) + len(self.gateways))
