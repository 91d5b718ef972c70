"""
Tests for condition evaluation, gateway routing, handler invocation and
the instance state machine.
"""

import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import Mock

from flask_bpmn.engine.executors import ConditionEvaluator, GatewayExecutor, invoke_handler
from flask_bpmn.engine.state_machine import ProcessStateMachine
from flask_bpmn.exceptions import StateTransitionError
from flask_bpmn.models.context_models import ProcessStatus
from flask_bpmn.models.process_models import Gateway, GatewayType

from bpmn_fixtures import flow


class TestConditionEvaluator(unittest.TestCase):
    """Restricted expression evaluation."""

    def setUp(self):
        self.evaluator = ConditionEvaluator()
        self.context = SimpleNamespace(process_name="orders", current_step="check")

    def evaluate(self, expression, value):
        return self.evaluator.evaluate(expression, self.context, value)

    def test_comparisons_on_value_keys(self):
        self.assertTrue(self.evaluate("amount > 100", {"amount": 200}))
        self.assertFalse(self.evaluate("amount > 100", {"amount": 50}))
        self.assertTrue(self.evaluate("10 < amount <= 20", {"amount": 20}))

    def test_data_and_context_names(self):
        value = {"customer": {"tier": "gold"}, "items": [1, 2, 3]}
        self.assertTrue(self.evaluate("data.customer.tier == 'gold'", value))
        self.assertTrue(self.evaluate("data['items'][0] == 1", value))
        self.assertTrue(self.evaluate("context.process_name == 'orders'", value))

    def test_boolean_membership_and_helpers(self):
        value = {"tier": "gold", "items": [1, 2, 3], "total": 12.5}
        self.assertTrue(self.evaluate("tier in ['gold', 'platinum'] and len(items) == 3", value))
        self.assertTrue(self.evaluate("not tier == 'silver' or total > 100", value))
        self.assertTrue(self.evaluate("int(total) % 2 == 0", value))
        self.assertTrue(self.evaluate("max(items) - min(items) == 2", value))

    def test_non_mapping_value(self):
        self.assertTrue(self.evaluate("data > 3", 5))

    def test_callable_condition(self):
        predicate = Mock(return_value=1)
        self.assertTrue(self.evaluator.evaluate(predicate, self.context, {"a": 1}))
        predicate.assert_called_once_with(self.context, {"a": 1})

    def test_rejects_unsafe_expressions(self):
        value = {"amount": 1}
        for expression in (
            "__import__('os')",
            "open('x')",
            "data.__class__",
            "(lambda: 1)()",
            "[x for x in data]",
        ):
            with self.assertRaises(Exception, msg=expression):
                self.evaluate(expression, value)

    def test_unknown_name(self):
        with self.assertRaises(NameError):
            self.evaluate("missing > 1", {"amount": 1})


class TestGatewayExecutor(unittest.TestCase):
    """Exclusive gateway flow selection."""

    def setUp(self):
        self.executor = GatewayExecutor()
        self.gateway = Gateway(id="gw", type=GatewayType.EXCLUSIVE, default="to_low")
        self.flows = [
            flow("gw", "high", condition="amount > 100", flow_id="to_high"),
            flow("gw", "mid", condition="amount > 50", flow_id="to_mid"),
            flow("gw", "low", flow_id="to_low"),
        ]

    def test_first_true_condition_wins(self):
        selected = self.executor.select_flow(self.gateway, self.flows, None, {"amount": 500})
        self.assertEqual(selected.id, "to_high")
        selected = self.executor.select_flow(self.gateway, self.flows, None, {"amount": 70})
        self.assertEqual(selected.id, "to_mid")

    def test_default_flow(self):
        selected = self.executor.select_flow(self.gateway, self.flows, None, {"amount": 1})
        self.assertEqual(selected.id, "to_low")

    def test_last_flow_without_default(self):
        gateway = Gateway(id="gw", type=GatewayType.EXCLUSIVE)
        flows = [
            flow("gw", "a", condition="False", flow_id="to_a"),
            flow("gw", "b", condition="False", flow_id="to_b"),
        ]
        self.assertEqual(self.executor.select_flow(gateway, flows, None, {}).id, "to_b")

    def test_erroring_condition_is_skipped(self):
        flows = [flow("gw", "x", condition="1 / 0", flow_id="broken")] + self.flows
        selected = self.executor.select_flow(self.gateway, flows, None, {"amount": 500})
        self.assertEqual(selected.id, "to_high")

    def test_no_flows(self):
        self.assertIsNone(self.executor.select_flow(self.gateway, [], None, {}))


class TestInvokeHandler(unittest.TestCase):
    """Context is passed only to handlers that accept it."""

    def test_single_argument_handler(self):
        self.assertEqual(asyncio.run(invoke_handler(lambda value: value + 1, 1, "ctx")), 2)

    def test_positional_context(self):
        handler = Mock(return_value="out")
        self.assertEqual(asyncio.run(invoke_handler(handler, "in", "ctx")), "out")
        handler.assert_called_once_with("in", "ctx")

    def test_keyword_context(self):
        def handler(value, *, context):
            return (value, context)

        self.assertEqual(asyncio.run(invoke_handler(handler, "in", "ctx")), ("in", "ctx"))

    def test_bound_method(self):
        class Service:
            def handle(self, value, context):
                return f"{value}:{context}"

        self.assertEqual(asyncio.run(invoke_handler(Service().handle, "in", "ctx")), "in:ctx")

    def test_coroutine_handler(self):
        async def handler(value):
            return value * 2

        self.assertEqual(asyncio.run(invoke_handler(handler, 4, None)), 8)


class TestStateMachine(unittest.TestCase):
    """Instance transition table."""

    def setUp(self):
        self.state_machine = ProcessStateMachine()

    def test_valid_transitions(self):
        self.assertTrue(self.state_machine.is_valid_transition(ProcessStatus.PENDING, ProcessStatus.RUNNING))
        self.assertTrue(self.state_machine.is_valid_transition("running", "cancelled"))
        self.assertTrue(self.state_machine.is_valid_transition(ProcessStatus.RUNNING, ProcessStatus.FAILED))

    def test_terminal_states_have_no_exits(self):
        for status in (ProcessStatus.COMPLETED, ProcessStatus.FAILED, ProcessStatus.CANCELLED):
            self.assertTrue(self.state_machine.is_terminal(status))
            self.assertFalse(self.state_machine.is_valid_transition(status, ProcessStatus.RUNNING))

    def test_invalid_transition_raises(self):
        with self.assertRaises(StateTransitionError):
            self.state_machine.transition("p1", ProcessStatus.CANCELLED, ProcessStatus.COMPLETED)
        with self.assertRaises(StateTransitionError):
            self.state_machine.transition("p1", ProcessStatus.PENDING, ProcessStatus.COMPLETED)

    def test_transition_hooks(self):
        hook = Mock()
        failing = Mock(side_effect=RuntimeError("hook failed"))
        self.state_machine.register_transition_hook("running", "completed", failing)
        self.state_machine.register_transition_hook(ProcessStatus.RUNNING, ProcessStatus.COMPLETED, hook)

        new_status = self.state_machine.transition("p1", "running", "completed")

        self.assertEqual(new_status, ProcessStatus.COMPLETED)
        hook.assert_called_once_with("p1", ProcessStatus.RUNNING, ProcessStatus.COMPLETED)


if __name__ == '__main__':
    unittest.main(verbosity=2)
