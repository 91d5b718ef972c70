"""
Process Definition Validator.

Structural and type checks over a process definition. Errors make a
definition unexecutable; warnings are informational only.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .. import const
from ..exceptions import ProcessValidationError
from ..models.process_models import ProcessDefinition, TaskType
from .type_registry import TypeRegistry

log = logging.getLogger(__name__)


@dataclass
class ValidationErrorDetail:
    code: str
    message: str
    task_id: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'task_id': self.task_id,
            'path': self.path
        }


@dataclass
class ValidationWarningDetail(ValidationErrorDetail):
    pass


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationErrorDetail] = field(default_factory=list)
    warnings: List[ValidationWarningDetail] = field(default_factory=list)


class ProcessValidator:
    """
    Validator for process definitions.

    Every check runs on every call; nothing short-circuits, so a single
    result lists all problems of a definition.
    """

    def __init__(self, type_registry: Optional[TypeRegistry] = None):
        self.type_registry = type_registry or TypeRegistry()

    def validate(self, definition: ProcessDefinition) -> ValidationResult:
        """
        Validate a process definition.

        Args:
            definition: Process definition to check

        Returns:
            ValidationResult with errors and warnings
        """
        errors: List[ValidationErrorDetail] = []
        warnings: List[ValidationWarningDetail] = []

        self._validate_structure(definition, errors, warnings)
        self._validate_type_constraints(definition, warnings)
        self._validate_flows(definition, errors, warnings)

        if errors:
            log.debug(f"Process '{definition.name}' failed validation with {len(errors)} error(s)")

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

    def validate_or_raise(self, definition: ProcessDefinition) -> ValidationResult:
        """Validate and raise ProcessValidationError if the definition is invalid."""
        result = self.validate(definition)
        if not result.valid:
            raise ProcessValidationError(result.errors, result.warnings)
        return result

    def _validate_structure(self, definition: ProcessDefinition,
                            errors: List[ValidationErrorDetail],
                            warnings: List[ValidationWarningDetail]):
        if not definition.name:
            errors.append(ValidationErrorDetail(const.STRUCT_NO_NAME, "Process must have a name"))

        if not definition.start_events:
            errors.append(ValidationErrorDetail(
                const.STRUCT_NO_START_EVENT, "Process must have at least one start event"
            ))

        if not definition.end_events:
            errors.append(ValidationErrorDetail(
                const.STRUCT_NO_END_EVENT, "Process must have at least one end event"
            ))

        if not definition.tasks:
            warnings.append(ValidationWarningDetail(const.STRUCT_NO_TASKS, "Process has no tasks defined"))

        seen = set()
        for task in definition.tasks:
            if task.id in seen:
                errors.append(ValidationErrorDetail(
                    const.STRUCT_DUPLICATE_TASK_ID, f"Duplicate task ID: {task.id}", task_id=task.id
                ))
            seen.add(task.id)

    def _validate_type_constraints(self, definition: ProcessDefinition,
                                   warnings: List[ValidationWarningDetail]):
        for task in definition.tasks:
            if task.input_type and not self.type_registry.has_type(task.input_type):
                warnings.append(ValidationWarningDetail(
                    const.TYPE_UNKNOWN_INPUT,
                    f'Input type "{task.input_type}" not registered in type registry',
                    task_id=task.id
                ))
            if task.output_type and not self.type_registry.has_type(task.output_type):
                warnings.append(ValidationWarningDetail(
                    const.TYPE_UNKNOWN_OUTPUT,
                    f'Output type "{task.output_type}" not registered in type registry',
                    task_id=task.id
                ))

    def _validate_flows(self, definition: ProcessDefinition,
                        errors: List[ValidationErrorDetail],
                        warnings: List[ValidationWarningDetail]):
        element_ids = definition.element_ids()

        for index, flow in enumerate(definition.flows):
            if flow.source_ref not in element_ids:
                errors.append(ValidationErrorDetail(
                    const.FLOW_UNKNOWN_SOURCE,
                    f'Flow "{flow.id}" references non-existent source: {flow.source_ref}',
                    path=f"flows[{index}].source_ref"
                ))
            if flow.target_ref not in element_ids:
                errors.append(ValidationErrorDetail(
                    const.FLOW_UNKNOWN_TARGET,
                    f'Flow "{flow.id}" references non-existent target: {flow.target_ref}',
                    path=f"flows[{index}].target_ref"
                ))

        for task in definition.tasks:
            if task.type == TaskType.SERVICE and not task.event_name:
                warnings.append(ValidationWarningDetail(
                    const.FLOW_NO_EVENT_NAME,
                    f'Service task "{task.id}" has no event name - it won\'t be executable',
                    task_id=task.id
                ))
