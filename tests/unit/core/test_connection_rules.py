"""
Tests for the connection validator (core/connection_rules.py).

Covers the resolve phase, each validate-phase rule, the rule ordering and
the config injection of ConnectionValidator.
"""
import unittest
from dataclasses import FrozenInstanceError

import pytest

from core.connection_rules import (
    VALIDATE_RULES,
    ConnectionContext,
    ConnectionValidator,
    ResolvedConnectionContext,
    compose_validators,
    handle_max_one_edge,
    no_duplicate_connection,
    no_self_connection,
    resolve_context,
    validate_connection,
)
from core.ontology import NODE_TYPE_CONFIG, NodeType, NodeTypeConfig
from core.schemas import ConnectionResult
from tests.factories import (
    connection,
    downsell,
    edge,
    order_page,
    sales_page,
    thank_you,
    upsell,
)


# =============================================================================
# SCENARIOS
# =============================================================================

class TestSalesPageScenarios(unittest.TestCase):
    """Sales page entry rules."""

    def test_sales_page_to_order_page_is_valid(self):
        nodes = [sales_page(), order_page()]
        result = validate_connection(connection("sp-1", "op-1"), nodes, [])
        self.assertTrue(result.valid)
        self.assertIsNone(result.error)

    def test_sales_page_to_thank_you_is_rejected(self):
        nodes = [sales_page(), thank_you()]
        result = validate_connection(connection("sp-1", "ty-1"), nodes, [])
        self.assertFalse(result.valid)
        self.assertIn("Order Page", result.error)

    def test_second_sales_page_connection_is_rejected(self):
        nodes = [sales_page(), order_page()]
        edges = [edge("sp-1", "op-1")]
        result = validate_connection(connection("sp-1", "op-1"), nodes, edges)
        self.assertFalse(result.valid)
        self.assertIn("one outgoing connection", result.error)

    def test_second_order_page_target_is_rejected(self):
        nodes = [sales_page(), order_page(), order_page(id="op-2")]
        edges = [edge("sp-1", "op-1")]
        result = validate_connection(connection("sp-1", "op-2"), nodes, edges)
        self.assertEqual(result.error, "Sales Page can only have one outgoing connection")


# =============================================================================
# RESOLVE PHASE
# =============================================================================

def test_missing_source_node():
    result = validate_connection(connection("ghost", "op-1"), [order_page()], [])
    assert result == ConnectionResult(valid=False, error="Source node not found")


def test_missing_target_node():
    result = validate_connection(connection("sp-1", "ghost"), [sales_page()], [])
    assert result.error == "Target node not found"


def test_source_checked_before_target():
    result = validate_connection(connection("ghost-a", "ghost-b"), [], [])
    assert result.error == "Source node not found"


def test_resolve_context_attaches_nodes():
    sp, op = sales_page(), order_page()
    context = ConnectionContext(connection=connection("sp-1", "op-1"), nodes=[sp, op], edges=[])

    resolved = resolve_context(context)

    assert isinstance(resolved, ResolvedConnectionContext)
    assert resolved.source_node is sp
    assert resolved.target_node is op
    assert resolved.node_type_config is NODE_TYPE_CONFIG


def test_resolve_context_returns_failure():
    context = ConnectionContext(connection=connection("sp-1", "op-1"), nodes=[sales_page()], edges=[])
    resolved = resolve_context(context)
    assert isinstance(resolved, ConnectionResult)
    assert not resolved.valid


def test_resolved_context_requires_nodes():
    with pytest.raises(TypeError):
        ResolvedConnectionContext(connection=connection("a", "b"), nodes=[], edges=[])


def test_contexts_are_immutable():
    context = ConnectionContext(connection=connection("sp-1", "op-1"), nodes=[], edges=[])
    with pytest.raises(FrozenInstanceError):
        context.edges = [edge("sp-1", "op-1")]


# =============================================================================
# VALIDATE PHASE RULES
# =============================================================================

class TestConnectionRules(unittest.TestCase):
    """One test per rule, each in isolation from the rules before it."""

    def test_self_connection_mentions_itself(self):
        nodes = [upsell()]
        result = validate_connection(connection("us-1", "us-1", "accepted"), nodes, [])
        self.assertFalse(result.valid)
        self.assertIn("itself", result.error)

    def test_self_connection_checked_before_type_rules(self):
        nodes = [thank_you()]
        result = validate_connection(connection("ty-1", "ty-1"), nodes, [])
        self.assertEqual(result.error, "Cannot connect a node to itself")

    def test_target_handle_is_rejected(self):
        nodes = [order_page(), upsell()]
        result = validate_connection(
            connection("op-1", "us-1", "accepted", target_handle="declined"), nodes, []
        )
        self.assertEqual(result.error, "Cannot connect to an output handle")

    def test_thank_you_has_no_outgoing(self):
        nodes = [thank_you(), upsell()]
        result = validate_connection(connection("ty-1", "us-1"), nodes, [])
        self.assertEqual(result.error, "Thank You pages cannot have outgoing connections")

    def test_duplicate_connection_is_rejected(self):
        nodes = [upsell(), thank_you()]
        edges = [edge("us-1", "ty-1", "accepted")]
        result = validate_connection(connection("us-1", "ty-1", "accepted"), nodes, edges)
        self.assertEqual(result.error, "This connection already exists")

    def test_same_pair_on_other_handle_is_allowed(self):
        nodes = [downsell(), thank_you()]
        edges = [edge("ds-1", "ty-1", "accepted")]
        result = validate_connection(connection("ds-1", "ty-1", "declined"), nodes, edges)
        self.assertTrue(result.valid)

    def test_order_page_accepts_one_incoming(self):
        nodes = [sales_page(), upsell(), order_page()]
        edges = [edge("sp-1", "op-1")]
        result = validate_connection(connection("us-1", "op-1", "declined"), nodes, edges)
        self.assertEqual(result.error, "Order Page can only have 1 incoming connection")

    def test_sales_page_accepts_no_incoming(self):
        nodes = [upsell(), sales_page()]
        result = validate_connection(connection("us-1", "sp-1", "accepted"), nodes, [])
        self.assertEqual(result.error, "Sales Page cannot have incoming connections")

    def test_thank_you_accepts_many_incoming(self):
        nodes = [order_page(), upsell(), downsell(), thank_you()]
        edges = [
            edge("op-1", "ty-1", "declined"),
            edge("us-1", "ty-1", "accepted"),
        ]
        result = validate_connection(connection("ds-1", "ty-1", "accepted"), nodes, edges)
        self.assertTrue(result.valid)

    def test_handle_drives_one_edge(self):
        nodes = [order_page(), upsell(), thank_you()]
        edges = [edge("op-1", "us-1", "accepted")]
        result = validate_connection(connection("op-1", "ty-1", "accepted"), nodes, edges)
        self.assertEqual(result.error, "This handle already has a connection")

    def test_other_handle_still_free(self):
        nodes = [order_page(), upsell(), thank_you()]
        edges = [edge("op-1", "us-1", "accepted")]
        result = validate_connection(connection("op-1", "ty-1", "declined"), nodes, edges)
        self.assertTrue(result.valid)


def test_plural_incoming_limit_message():
    config = dict(NODE_TYPE_CONFIG)
    config[NodeType.THANK_YOU] = NodeTypeConfig(
        label="Thank You",
        icon="i-lucide-check-circle",
        default_button_label="",
        default_title="Thank You",
        allows_outgoing=False,
        max_outgoing_edges=0,
        max_incoming_edges=2,
    )
    nodes = [upsell(), downsell(), order_page(), thank_you()]
    edges = [edge("us-1", "ty-1", "accepted"), edge("ds-1", "ty-1", "accepted")]

    result = validate_connection(connection("op-1", "ty-1", "declined"), nodes, edges, config)

    assert result.error == "Thank You can only have 2 incoming connections"


def test_default_table_leaves_thank_you_unlimited():
    """The injected table above must not leak into the shared validator."""
    nodes = [upsell(), downsell(), order_page(), thank_you()]
    edges = [edge("us-1", "ty-1", "accepted"), edge("ds-1", "ty-1", "accepted")]
    assert validate_connection(connection("op-1", "ty-1", "declined"), nodes, edges).valid


# =============================================================================
# COMPOSITION
# =============================================================================

def test_compose_validators_short_circuits():
    calls = []

    def failing(context):
        calls.append("failing")
        return ConnectionResult.reject("first")

    def never(context):
        calls.append("never")
        return ConnectionResult.reject("second")

    validator = ConnectionValidator(rules=[failing, never])
    result = validator(connection("sp-1", "op-1"), [sales_page(), order_page()], [])

    assert result.error == "first"
    assert calls == ["failing"]


def test_rules_do_not_run_when_resolution_fails():
    calls = []

    def spy(context):
        calls.append(context)
        return ConnectionResult.ok()

    validator = ConnectionValidator(rules=[spy])
    validator.validate(connection("sp-1", "missing"), [sales_page()], [])
    assert calls == []


def test_compose_validators_passes_when_all_pass():
    composed = compose_validators(no_self_connection, no_duplicate_connection, handle_max_one_edge)
    context = resolve_context(
        ConnectionContext(connection=connection("sp-1", "op-1"), nodes=[sales_page(), order_page()], edges=[])
    )
    assert composed(context).valid


def test_default_rule_order():
    assert [rule.__name__ for rule in VALIDATE_RULES] == [
        "no_self_connection",
        "no_source_to_source",
        "thank_you_no_outgoing",
        "sales_page_target",
        "sales_page_max_connections",
        "no_duplicate_connection",
        "max_incoming_edges",
        "handle_max_one_edge",
    ]


# =============================================================================
# PROPERTIES
# =============================================================================

def test_accepted_connections_never_reaccepted():
    """Edges built only from accepted connections are rejected on a replay."""
    nodes = [sales_page(), order_page(), upsell(), downsell(), thank_you()]
    attempts = [
        connection("sp-1", "op-1"),
        connection("op-1", "us-1", "accepted"),
        connection("op-1", "ty-1", "declined"),
        connection("us-1", "ty-1", "accepted"),
        connection("us-1", "ds-1", "declined"),
        connection("ds-1", "ty-1", "accepted"),
        connection("ds-1", "ty-1", "declined"),
    ]

    edges = []
    for attempt in attempts:
        result = validate_connection(attempt, nodes, edges)
        assert result.valid, result.error
        edges.append(attempt.to_edge())

    replay_errors = {
        validate_connection(attempt, nodes, edges).error for attempt in attempts
    }
    assert None not in replay_errors


def test_validation_does_not_mutate_inputs():
    nodes = [sales_page(), order_page()]
    edges = [edge("sp-1", "op-1")]
    nodes_before, edges_before = list(nodes), list(edges)

    validate_connection(connection("sp-1", "op-1"), nodes, edges)

    assert nodes == nodes_before
    assert edges == edges_before


def test_none_nodes_fail_loud():
    with pytest.raises(TypeError):
        validate_connection(connection("sp-1", "op-1"), None, [])
