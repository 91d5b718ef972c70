"""
Process State Machine.

Validates process instance status transitions. Terminal statuses have no
exits, so a finished instance can never be reopened.
"""

import logging
import threading
from typing import Callable, Dict, List, Set, Tuple, Union

from ..exceptions import StateTransitionError
from ..models.context_models import ProcessStatus

log = logging.getLogger(__name__)

StatusLike = Union[ProcessStatus, str]


def _status(value: StatusLike) -> ProcessStatus:
    return value if isinstance(value, ProcessStatus) else ProcessStatus(value)


class ProcessStateMachine:
    """
    Transition table for process instances.

    pending -> running | cancelled
    running -> completed | failed | cancelled
    """

    def __init__(self):
        self._lock = threading.RLock()

        self.transitions: Dict[ProcessStatus, Set[ProcessStatus]] = {
            ProcessStatus.PENDING: {
                ProcessStatus.RUNNING,
                ProcessStatus.CANCELLED
            },
            ProcessStatus.RUNNING: {
                ProcessStatus.COMPLETED,
                ProcessStatus.FAILED,
                ProcessStatus.CANCELLED
            },
            ProcessStatus.COMPLETED: set(),
            ProcessStatus.FAILED: set(),
            ProcessStatus.CANCELLED: set()
        }

        self.transition_hooks: Dict[Tuple[ProcessStatus, ProcessStatus], List[Callable]] = {}

    def is_valid_transition(self, from_status: StatusLike, to_status: StatusLike) -> bool:
        """Check if process state transition is valid."""
        with self._lock:
            return _status(to_status) in self.transitions.get(_status(from_status), set())

    def get_valid_transitions(self, current_status: StatusLike) -> Set[ProcessStatus]:
        """Get all valid transitions from current process status."""
        with self._lock:
            return self.transitions.get(_status(current_status), set()).copy()

    def is_terminal(self, status: StatusLike) -> bool:
        return not self.get_valid_transitions(status)

    def transition(self, process_id: str, from_status: StatusLike,
                   to_status: StatusLike) -> ProcessStatus:
        """
        Validate a transition and run its hooks.

        Returns:
            The new status

        Raises:
            StateTransitionError: if the table does not allow the move
        """
        old_status, new_status = _status(from_status), _status(to_status)
        with self._lock:
            if new_status not in self.transitions.get(old_status, set()):
                raise StateTransitionError(
                    f"Invalid process transition from {old_status.value} to {new_status.value} "
                    f"for instance {process_id}"
                )
            hooks = list(self.transition_hooks.get((old_status, new_status), []))

        for hook in hooks:
            try:
                hook(process_id, old_status, new_status)
            except Exception as e:
                log.error(f"Transition hook failed for {process_id}: {str(e)}")

        log.debug(f"Process instance {process_id} transitioned from {old_status.value} to {new_status.value}")
        return new_status

    def register_transition_hook(self, from_status: StatusLike, to_status: StatusLike,
                                 hook: Callable):
        """Register hook for specific process state transition."""
        with self._lock:
            transition = (_status(from_status), _status(to_status))
            self.transition_hooks.setdefault(transition, []).append(hook)
            log.debug(f"Registered process transition hook: {transition[0].value} -> {transition[1].value}")
