"""
Type Registry.

Maps type names referenced by tasks (``input_type`` / ``output_type``) to
flat property schemas. Validation is intentionally shallow: a value must be
an object and carry every required key.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator

log = logging.getLogger(__name__)


class TypeRegistry:
    """Name -> schema registry used for advisory type checks."""

    def __init__(self):
        self._types: Dict[str, Optional[Dict[str, Any]]] = {}
        self._validators: Dict[str, Draft7Validator] = {}
        self._lock = threading.RLock()

    def register(self, name: str, schema: Optional[Dict[str, Any]] = None):
        """
        Register a type.

        Args:
            name: Type name as referenced from task definitions
            schema: Optional flat map of property name -> ``{"required": bool}``
        """
        with self._lock:
            self._types[name] = schema
            self._validators.pop(name, None)
        log.debug(f"Registered type: {name}")

    def unregister(self, name: str) -> bool:
        with self._lock:
            self._validators.pop(name, None)
            if name not in self._types:
                return False
            del self._types[name]
            return True

    def has_type(self, name: str) -> bool:
        with self._lock:
            return name in self._types

    def get_schema(self, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._types.get(name)

    def get_all_types(self) -> List[str]:
        with self._lock:
            return list(self._types)

    def validate(self, name: str, data: Any) -> Tuple[bool, List[str]]:
        """
        Check ``data`` against the schema registered for ``name``.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        with self._lock:
            if name not in self._types:
                return False, [f'Type "{name}" not registered']
            schema = self._types[name]
            if not schema:
                return True, []
            validator = self._validators.get(name)
            if validator is None:
                validator = Draft7Validator(self._to_json_schema(schema))
                self._validators[name] = validator

        if not isinstance(data, dict):
            return False, [f'Expected object for type "{name}"']

        errors = [
            f'Type "{name}": {error.message}'
            for error in sorted(validator.iter_errors(data), key=lambda e: e.message)
        ]
        return len(errors) == 0, errors

    @staticmethod
    def _to_json_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
        required = [
            key for key, constraint in schema.items()
            if isinstance(constraint, dict) and constraint.get("required")
        ]
        return {"type": "object", "required": required}
