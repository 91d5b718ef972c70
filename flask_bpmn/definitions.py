"""
Process Definition Registry.

Holds process definitions by name and builds them from dict or JSON sources.
Registering a name that already exists replaces the previous definition;
running instances keep the definition they were started with.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

from marshmallow import ValidationError as SchemaValidationError

from .exceptions import ProcessLoaderError
from .models.process_models import ProcessDefinition
from .models.schemas import ProcessDefinitionSchema

log = logging.getLogger(__name__)


class ProcessDefinitionRegistry:
    """Name -> ProcessDefinition lookup used by the engine."""

    def __init__(self):
        self._definitions: Dict[str, ProcessDefinition] = {}
        self._lock = threading.RLock()
        self.schema = ProcessDefinitionSchema()

    def register(self, definition: ProcessDefinition) -> ProcessDefinition:
        with self._lock:
            replaced = definition.name in self._definitions
            self._definitions[definition.name] = definition
        if replaced:
            log.info(f"Replaced process definition '{definition.name}'")
        else:
            log.info(f"Registered process definition '{definition.name}'")
        return definition

    def get_definition(self, name: str) -> Optional[ProcessDefinition]:
        with self._lock:
            return self._definitions.get(name)

    def has_definition(self, name: str) -> bool:
        with self._lock:
            return name in self._definitions

    def get_all_definitions(self) -> List[ProcessDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._definitions.pop(name, None) is not None

    def load_dict(self, data: Dict[str, Any], source: Optional[str] = None) -> ProcessDefinition:
        """
        Build a definition from a dict and register it.

        Raises:
            ProcessLoaderError: if the dict does not describe a process
        """
        if not isinstance(data, dict):
            raise ProcessLoaderError("Process source must be an object", source)
        try:
            definition = self.schema.load(data)
        except SchemaValidationError as e:
            raise ProcessLoaderError(
                f"Invalid process definition{f': {source}' if source else ''}: {e.messages}",
                source, e
            )
        definition.source = source
        return self.register(definition)

    def load_json(self, text: str, source: Optional[str] = None) -> ProcessDefinition:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ProcessLoaderError(
                f"Failed to parse process JSON{f': {source}' if source else ''}", source, e
            )
        return self.load_dict(data, source)

    def load_file(self, path: str) -> ProcessDefinition:
        try:
            with open(path, "rt", encoding="utf8") as f:
                text = f.read()
        except OSError as e:
            raise ProcessLoaderError(f"Failed to load process file: {path}", path, e)
        return self.load_json(text, path)

    def load_directory(self, path: str) -> List[ProcessDefinition]:
        """Load every ``*.json`` file of a directory, in name order."""
        try:
            names = sorted(os.listdir(path))
        except OSError as e:
            raise ProcessLoaderError(f"Failed to load process directory: {path}", path, e)
        return [
            self.load_file(os.path.join(path, name))
            for name in names
            if name.lower().endswith(".json")
        ]

    def reload(self, name: str) -> Optional[ProcessDefinition]:
        """Re-read a file-backed definition from its source."""
        definition = self.get_definition(name)
        if definition is None or not definition.source:
            return None
        return self.load_file(definition.source)
