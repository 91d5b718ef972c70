"""
Exception hierarchy for the BPMN engine.

Loader, validation and execution failures are kept distinguishable so callers
can tell a broken process source from a broken definition from a failed run.
"""

from typing import Any, Dict, List, Optional


class ProcessEngineError(Exception):
    """Base exception for process engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {"name": type(self).__name__, "message": self.message}


class ProcessLoaderError(ProcessEngineError):
    """Raised when a process source cannot be read or parsed."""

    def __init__(self, message: str, source: Optional[str] = None,
                 original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.source = source
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["source"] = self.source
        return data


class ProcessValidationError(ProcessEngineError):
    """
    Aggregate of every structural error found in a process definition.

    Carries the full error and warning lists so tooling can report all
    problems at once instead of the first one.
    """

    def __init__(self, errors: List[Any], warnings: Optional[List[Any]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        summary = "; ".join(error.message for error in self.errors)
        super().__init__(
            f"BPMN validation failed with {len(self.errors)} error(s): {summary}"
        )

    @property
    def codes(self) -> List[str]:
        return [error.code for error in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = [error.to_dict() for error in self.errors]
        data["warnings"] = [warning.to_dict() for warning in self.warnings]
        return data


class ProcessExecutionError(ProcessEngineError):
    """Exception raised while walking a process graph or running a task."""

    def __init__(self, message: str, process_id: str = "", process_name: str = "",
                 task_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None,
                 original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.process_id = process_id
        self.process_name = process_name
        self.task_id = task_id
        self.context = context
        self.original_error = original_error
        if original_error is not None:
            self.__cause__ = original_error

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "process_id": self.process_id,
            "process_name": self.process_name,
            "task_id": self.task_id,
            "context": self.context,
        })
        return data


class DependencyCycleError(ProcessEngineError):
    """Raised when handler plugins depend on each other in a cycle."""

    def __init__(self, message: str, result: List[str], missing_vertices: List[str]):
        super().__init__(f"{message} Unresolved: {', '.join(missing_vertices)}")
        self.result = result
        self.missing_vertices = missing_vertices

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["missing_vertices"] = self.missing_vertices
        return data


class StateTransitionError(ProcessEngineError):
    """Exception raised for invalid state transitions."""
    pass
