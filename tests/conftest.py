"""
Pytest configuration and fixtures for the BPMN engine tests.
"""

import json

import pytest
from flask import Flask

from flask_bpmn import BPMN


ORDER_PROCESS = {
    "name": "order-processing",
    "description": "Validate and ship an order",
    "tasks": [
        {"id": "validate", "name": "Validate order", "type": "serviceTask", "event_name": "order:validate"},
        {"id": "ship", "name": "Ship order", "type": "serviceTask", "event_name": "order:ship"},
    ],
    "flows": [
        {"id": "f1", "source_ref": "start", "target_ref": "validate"},
        {"id": "f2", "source_ref": "validate", "target_ref": "ship"},
        {"id": "f3", "source_ref": "ship", "target_ref": "end"},
    ],
    "start_events": [{"id": "start"}],
    "end_events": [{"id": "end"}],
}


@pytest.fixture
def order_process():
    """Order process as a plain dict."""
    return json.loads(json.dumps(ORDER_PROCESS))


@pytest.fixture
def definitions_dir(tmp_path, order_process):
    """Directory holding one JSON process definition."""
    (tmp_path / "order.json").write_text(json.dumps(order_process))
    (tmp_path / "notes.txt").write_text("not a process")
    return tmp_path


@pytest.fixture
def app():
    """Create Flask application for testing."""
    app = Flask(__name__)
    app.config.update({
        "TESTING": True,
        "BPMN_INSTANCE_RETENTION_SECONDS": 60,
    })
    return app


@pytest.fixture
def bpmn(app):
    """BPMN extension bound to the test app."""
    return BPMN(app)
