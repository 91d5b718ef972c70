"""
Flask integration.

Wires the definition registry, handler registry, type registry, event
emitter, context store and engine from the application's ``BPMN_*``
configuration and publishes them on ``app.extensions``.
"""

import logging

from flask import current_app

from .const import DEFAULT_APP_CONFIG
from .definitions import ProcessDefinitionRegistry
from .engine.backends import MemoryContextBackend, RedisContextBackend
from .engine.context_manager import ProcessContextManager
from .engine.process_engine import ProcessEngine
from .events import EventEmitter
from .exceptions import ProcessEngineError
from .handlers import HandlerRegistry
from .validation.type_registry import TypeRegistry

log = logging.getLogger(__name__)


class BPMN:
    """
    Flask extension owning one process engine per application.

    Usage::

        bpmn = BPMN(app)

        @bpmn.handlers.handler("order:validate")
        def validate(order, context):
            ...
    """

    def __init__(self, app=None):
        """
        Initialize the extension.

        Args:
            app: Flask application instance (optional)
        """
        self.app = None
        self.definitions = ProcessDefinitionRegistry()
        self.handlers = HandlerRegistry()
        self.type_registry = TypeRegistry()
        self.events = EventEmitter()
        self.context_manager = None
        self.engine = None

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """
        Initialize the extension with a Flask app.

        Args:
            app: Flask application instance
        """
        self.app = app
        for key, value in DEFAULT_APP_CONFIG.items():
            app.config.setdefault(key, value)

        log_level = app.config["BPMN_LOG_LEVEL"]
        if log_level:
            logging.getLogger("flask_bpmn").setLevel(log_level)

        self.context_manager = ProcessContextManager(
            backend=self._create_backend(app),
            max_history_size=app.config["BPMN_CONTEXT_MAX_HISTORY_SIZE"],
            ttl_seconds=app.config["BPMN_CONTEXT_TTL_SECONDS"]
        )
        self.engine = ProcessEngine(
            self.definitions,
            self.handlers,
            context_manager=self.context_manager,
            type_registry=self.type_registry,
            event_sink=self.events,
            config={
                "instance_retention_seconds": app.config["BPMN_INSTANCE_RETENTION_SECONDS"],
                "max_timing_entries": app.config["BPMN_MAX_TIMING_ENTRIES"],
                "slow_task_threshold_ms": app.config["BPMN_SLOW_TASK_THRESHOLD_MS"],
                "trace_execution": app.config["BPMN_TRACE_EXECUTION"],
                "offload_sync_handlers": app.config["BPMN_OFFLOAD_SYNC_HANDLERS"]
            }
        )

        definitions_path = app.config["BPMN_DEFINITIONS_PATH"]
        if definitions_path:
            loaded = self.definitions.load_directory(definitions_path)
            log.info(f"Loaded {len(loaded)} process definition(s) from {definitions_path}")

        if not hasattr(app, "extensions"):
            app.extensions = {}
        app.extensions["bpmn"] = self
        app.extensions["bpmn_engine"] = self.engine

    def _create_backend(self, app):
        persistence = app.config["BPMN_CONTEXT_PERSISTENCE"]
        if persistence == "memory":
            return MemoryContextBackend()
        if persistence == "redis":
            redis_client = app.extensions.get("redis")
            if redis_client is None:
                raise ProcessEngineError(
                    "BPMN_CONTEXT_PERSISTENCE is 'redis' but no redis client is registered "
                    "in app.extensions['redis']"
                )
            return RedisContextBackend(
                redis_client,
                key_prefix=app.config["BPMN_REDIS_KEY_PREFIX"],
                ttl_seconds=app.config["BPMN_CONTEXT_TTL_SECONDS"]
            )
        raise ProcessEngineError(f"Unknown BPMN_CONTEXT_PERSISTENCE: {persistence}")


def get_engine() -> ProcessEngine:
    """Engine of the current Flask application."""
    engine = current_app.extensions.get("bpmn_engine")
    if engine is None:
        raise ProcessEngineError("BPMN extension is not initialized for this application")
    return engine
