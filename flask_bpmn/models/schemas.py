"""
Marshmallow schemas for process definitions and execution contexts.

Definition schemas turn plain dicts (for example parsed JSON) into the typed
graph model. Context schemas give execution contexts a JSON form for
export and for backends that store text.
"""

import json

from marshmallow import EXCLUDE, Schema, fields, post_load, validate

from .context_models import ExecutionContext, ProcessStatus, StepRecord, StepStatus
from .process_models import (
    EndEvent, Gateway, GatewayType, ProcessDefinition, RetryPolicy,
    SequenceFlow, StartEvent, Task, TaskType
)

# BPMN element names accepted as task types
TASK_TYPE_ALIASES = {
    "task": TaskType.SERVICE,
    "serviceTask": TaskType.SERVICE,
    "userTask": TaskType.USER,
    "scriptTask": TaskType.SCRIPT,
    "sendTask": TaskType.SEND,
    "receiveTask": TaskType.RECEIVE,
    "manualTask": TaskType.MANUAL,
    "businessRuleTask": TaskType.BUSINESS_RULE,
}
TASK_TYPE_ALIASES.update({task_type.value: task_type for task_type in TaskType})


class _DefinitionSchema(Schema):
    class Meta:
        unknown = EXCLUDE


class RetryPolicySchema(_DefinitionSchema):
    max_retries = fields.Integer(load_default=0, validate=validate.Range(min=0))
    backoff_ms = fields.Float(load_default=1000, validate=validate.Range(min=0))
    backoff_multiplier = fields.Float(load_default=2, validate=validate.Range(min=0))

    @post_load
    def make_policy(self, data, **kwargs):
        return RetryPolicy(**data)


class TaskSchema(_DefinitionSchema):
    id = fields.String(required=True, validate=validate.Length(min=1))
    name = fields.String(load_default=None)
    type = fields.String(
        load_default=TaskType.SERVICE.value,
        validate=validate.OneOf(list(TASK_TYPE_ALIASES))
    )
    event_name = fields.String(load_default=None, allow_none=True)
    description = fields.String(load_default=None, allow_none=True)
    input_type = fields.String(load_default=None, allow_none=True)
    output_type = fields.String(load_default=None, allow_none=True)
    timeout = fields.Float(load_default=None, allow_none=True, validate=validate.Range(min=0))
    retry_policy = fields.Nested(RetryPolicySchema, load_default=None, allow_none=True)
    incoming = fields.List(fields.String(), load_default=list)
    outgoing = fields.List(fields.String(), load_default=list)
    extension_elements = fields.Dict(load_default=dict)

    @post_load
    def make_task(self, data, **kwargs):
        data["type"] = TASK_TYPE_ALIASES[data["type"]]
        data["name"] = data["name"] or data["id"]
        return Task(**data)


class SequenceFlowSchema(_DefinitionSchema):
    id = fields.String(required=True, validate=validate.Length(min=1))
    source_ref = fields.String(required=True)
    target_ref = fields.String(required=True)
    name = fields.String(load_default=None, allow_none=True)
    condition_expression = fields.String(load_default=None, allow_none=True)

    @post_load
    def make_flow(self, data, **kwargs):
        return SequenceFlow(**data)


class GatewaySchema(_DefinitionSchema):
    id = fields.String(required=True, validate=validate.Length(min=1))
    type = fields.String(load_default=GatewayType.EXCLUSIVE.value)
    default = fields.String(load_default=None, allow_none=True)
    name = fields.String(load_default=None, allow_none=True)
    incoming = fields.List(fields.String(), load_default=list)
    outgoing = fields.List(fields.String(), load_default=list)

    @post_load
    def make_gateway(self, data, **kwargs):
        try:
            data["type"] = GatewayType(data["type"])
        except ValueError:
            # Unknown kinds are kept as-is and routed through the first flow
            pass
        return Gateway(**data)


class StartEventSchema(_DefinitionSchema):
    id = fields.String(required=True, validate=validate.Length(min=1))
    name = fields.String(load_default=None, allow_none=True)
    outgoing = fields.List(fields.String(), load_default=list)

    @post_load
    def make_event(self, data, **kwargs):
        return StartEvent(**data)


class EndEventSchema(_DefinitionSchema):
    id = fields.String(required=True, validate=validate.Length(min=1))
    name = fields.String(load_default=None, allow_none=True)
    incoming = fields.List(fields.String(), load_default=list)

    @post_load
    def make_event(self, data, **kwargs):
        return EndEvent(**data)


class ProcessDefinitionSchema(_DefinitionSchema):
    name = fields.String(load_default="")
    description = fields.String(load_default=None, allow_none=True)
    version = fields.String(load_default=None, allow_none=True)
    retry_policy = fields.Nested(RetryPolicySchema, load_default=None, allow_none=True)
    tasks = fields.List(fields.Nested(TaskSchema), load_default=list)
    flows = fields.List(fields.Nested(SequenceFlowSchema), load_default=list)
    start_events = fields.List(fields.Nested(StartEventSchema), load_default=list)
    end_events = fields.List(fields.Nested(EndEventSchema), load_default=list)
    gateways = fields.List(fields.Nested(GatewaySchema), load_default=list)

    @post_load
    def make_definition(self, data, **kwargs):
        return ProcessDefinition(**data)


class StepRecordSchema(Schema):
    """Schema for step history serialization"""

    task_id = fields.String(required=True)
    task_name = fields.String(required=True)
    started_at = fields.DateTime(required=True)
    completed_at = fields.DateTime(allow_none=True, load_default=None)
    status = fields.Enum(StepStatus, by_value=True, required=True)
    output = fields.Raw(allow_none=True, load_default=None)
    error = fields.String(allow_none=True, load_default=None)

    @post_load
    def make_record(self, data, **kwargs):
        return StepRecord(**data)


class ExecutionContextSchema(Schema):
    """Schema for execution context serialization"""

    process_id = fields.String(required=True)
    process_name = fields.String(required=True)
    current_step = fields.String(load_default="")
    step_history = fields.List(fields.Nested(StepRecordSchema), load_default=list)
    data = fields.Raw(allow_none=True, load_default=None)
    started_at = fields.DateTime(required=True)
    completed_at = fields.DateTime(allow_none=True, load_default=None)
    status = fields.Enum(ProcessStatus, by_value=True, required=True)
    metadata = fields.Dict(load_default=dict)

    @post_load
    def make_context(self, data, **kwargs):
        return ExecutionContext(**data)


def dump_context(context: ExecutionContext) -> str:
    """JSON form of a context. Payload values JSON cannot express are stringified."""
    return json.dumps(ExecutionContextSchema().dump(context), default=str)


def load_context(serialized: str) -> ExecutionContext:
    """
    Parse the JSON form of a context.

    Raises:
        ValueError: the text is not JSON
        marshmallow.ValidationError: the document is not a context
    """
    return ExecutionContextSchema().load(json.loads(serialized))
