"""
Process Context Manager.

Creates, mutates and serializes per-instance execution contexts. Backends
hand out copies, so no caller can change stored state by reference. The
JSON form is only produced by ``serialize`` and by backends that store text.
"""

import asyncio
import logging
import threading
import uuid
import weakref
from dataclasses import fields as dataclass_fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from marshmallow import ValidationError as SchemaValidationError

from ..exceptions import ProcessEngineError
from ..models.context_models import ExecutionContext, ProcessStatus, StepRecord, StepStatus
from ..models.schemas import dump_context, load_context
from .backends import ContextBackend, MemoryContextBackend

log = logging.getLogger(__name__)

_CONTEXT_FIELDS = {f.name for f in dataclass_fields(ExecutionContext)}
_STEP_FIELDS = {f.name for f in dataclass_fields(StepRecord)}


class ContextManagerError(ProcessEngineError):
    """Base exception for context manager errors."""
    pass


class ProcessContextManager:
    """
    Manages process execution contexts.

    Writes to one ``process_id`` are serialized through a per-id asyncio
    lock; operations on different ids never wait on each other.
    """

    def __init__(self, backend: Optional[ContextBackend] = None,
                 max_history_size: Optional[int] = None, ttl_seconds: Optional[float] = None):
        """Initialize context manager."""
        self.backend = backend or MemoryContextBackend()
        self.config = {
            'max_history_size': max_history_size,
            'ttl_seconds': ttl_seconds
        }
        # Locks live only while some operation holds them
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

        log.debug("Process Context Manager initialized")

    async def create(self, process_name: str, initial_data: Any = None) -> ExecutionContext:
        """Create and store a new running context."""
        context = ExecutionContext(
            process_id=str(uuid.uuid4()),
            process_name=process_name,
            started_at=datetime.now(timezone.utc),
            status=ProcessStatus.RUNNING,
            data=initial_data,
        )
        async with self._lock_for(context.process_id):
            self._store(context)
        log.debug(f"Created context {context.process_id} for process '{process_name}'")
        return self._load(context.process_id)

    async def get(self, process_id: str) -> Optional[ExecutionContext]:
        """Return a copy of the context, or None if it does not exist."""
        try:
            return self._load(process_id)
        except ContextManagerError as e:
            log.error(f"Error loading context {process_id}: {str(e)}")
            return None

    async def update(self, process_id: str, **updates) -> Optional[ExecutionContext]:
        """
        Merge fields into a stored context.

        Returns:
            The updated context, or None if the id is unknown
        """
        unknown = set(updates) - _CONTEXT_FIELDS
        if unknown:
            raise ContextManagerError(f"Unknown context field(s): {', '.join(sorted(unknown))}")

        async with self._lock_for(process_id):
            context = self._load(process_id)
            if context is None:
                return None
            for name, value in updates.items():
                if name == 'status' and not isinstance(value, ProcessStatus):
                    value = ProcessStatus(value)
                setattr(context, name, value)
            self._trim_history(context)
            self._store(context)
            return context

    async def add_step_history(self, process_id: str, record: StepRecord):
        """Append a step record, keeping only the most recent entries if bounded."""
        async with self._lock_for(process_id):
            context = self._load(process_id)
            if context is None:
                return
            context.step_history.append(record)
            self._trim_history(context)
            self._store(context)

    async def update_step(self, process_id: str, task_id: str, **updates) -> Optional[StepRecord]:
        """
        Update the latest running record of ``task_id`` in place.

        Falls back to the latest record of the task when none is running.
        Returns the updated record, or None when nothing matched.
        """
        unknown = set(updates) - _STEP_FIELDS
        if unknown:
            raise ContextManagerError(f"Unknown step field(s): {', '.join(sorted(unknown))}")

        async with self._lock_for(process_id):
            context = self._load(process_id)
            if context is None:
                return None

            candidates = [r for r in reversed(context.step_history) if r.task_id == task_id]
            record = next((r for r in candidates if r.status == StepStatus.RUNNING), None)
            if record is None and candidates:
                record = candidates[0]
            if record is None:
                return None

            for name, value in updates.items():
                setattr(record, name, value)
            self._store(context)
            return record

    async def serialize(self, process_id: str) -> Optional[str]:
        """
        Return the JSON form of a context, or None if it does not exist.

        Payload values JSON cannot express are stringified.
        """
        context = self._load(process_id)
        if context is None:
            return None
        try:
            return dump_context(context)
        except (TypeError, ValueError) as e:
            raise ContextManagerError(f"Context {process_id} cannot be serialized: {str(e)}")

    async def deserialize(self, serialized: str) -> ExecutionContext:
        """Load a serialized context and store it under its original id."""
        context = self._decode(serialized)
        async with self._lock_for(context.process_id):
            self._store(context)
        log.debug(f"Restored context {context.process_id}")
        return self._load(context.process_id)

    async def delete(self, process_id: str) -> bool:
        async with self._lock_for(process_id):
            removed = self.backend.delete(process_id)
        with self._locks_guard:
            self._locks.pop(process_id, None)
        return removed

    def get_context_stats(self) -> Dict[str, Any]:
        """Get context manager statistics."""
        return {
            'stored_contexts': len(list(self.backend.keys())),
            'active_locks': len(self._locks),
            'backend': type(self.backend).__name__,
            'config': self.config.copy()
        }

    def _lock_for(self, process_id: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._locks.get(process_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[process_id] = lock
            return lock

    def _trim_history(self, context: ExecutionContext):
        max_history = self.config['max_history_size']
        if max_history and len(context.step_history) > max_history:
            context.step_history = context.step_history[-max_history:]

    def _decode(self, serialized: str) -> ExecutionContext:
        try:
            return load_context(serialized)
        except (ValueError, TypeError, SchemaValidationError) as e:
            raise ContextManagerError(f"Invalid serialized context: {str(e)}")

    def _store(self, context: ExecutionContext):
        self.backend.set(context.process_id, context, self.config['ttl_seconds'])

    def _load(self, process_id: str) -> Optional[ExecutionContext]:
        try:
            return self.backend.get(process_id)
        except (ValueError, TypeError, SchemaValidationError) as e:
            raise ContextManagerError(f"Invalid stored context {process_id}: {str(e)}")
