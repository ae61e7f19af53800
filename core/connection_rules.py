"""
FUNNEL CONNECTION RULES - The Gatekeeper

Decides whether a single candidate edge may be added to the funnel. Runs on
every connect gesture, BEFORE the editing layer commits anything.

Pipeline (order matters, first failure wins):

  Resolve phase   ConnectionContext -> ResolvedConnectionContext
    1. source_node_exists
    2. target_node_exists

  Validate phase  ResolvedConnectionContext -> ConnectionResult
    3. no_self_connection
    4. no_source_to_source
    5. thank_you_no_outgoing
    6. sales_page_target
    7. sales_page_max_connections
    8. no_duplicate_connection
    9. max_incoming_edges
   10. handle_max_one_edge

Design Philosophy:
- Rejections are expected and frequent. They are VALUES, never exceptions.
- Contexts are immutable. The resolve phase builds a new, richer context
  instead of filling optional fields in place, so every validate-phase rule
  reads non-null nodes.
- The NodeTypeConfig table is injected through the context, not read from
  ambient state.

Performance: each rule is at most one linear scan over edges, O(E) per call.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from core.ontology import NodeType, NodeTypeConfig, get_node_type_config
from core.schemas import Connection, ConnectionResult, Edge, Node


logger = logging.getLogger(__name__)


# =============================================================================
# CONTEXTS
# =============================================================================

@dataclass(frozen=True)
class ConnectionContext:
    """Read-only snapshot handed to the resolve phase."""
    connection: Connection
    nodes: Sequence[Node]
    edges: Sequence[Edge]
    node_type_config: Dict[NodeType, NodeTypeConfig] = field(default_factory=get_node_type_config)


@dataclass(frozen=True)
class ResolvedConnectionContext(ConnectionContext):
    """Context after node resolution. Both endpoints are guaranteed present."""
    source_node: Node = None
    target_node: Node = None

    def __post_init__(self):
        if self.source_node is None or self.target_node is None:
            raise TypeError("ResolvedConnectionContext requires source_node and target_node")


ConnectionRule = Callable[[ResolvedConnectionContext], ConnectionResult]
ResolveStep = Tuple[ConnectionResult, Optional[Node]]


def _find_node(nodes: Sequence[Node], node_id: str) -> Optional[Node]:
    return next((n for n in nodes if n.id == node_id), None)


# =============================================================================
# RESOLVE PHASE
# =============================================================================

def source_node_exists(context: ConnectionContext) -> ResolveStep:
    """Look up the source node. Returns (result, node or None)."""
    node = _find_node(context.nodes, context.connection.source)
    if node is None:
        return ConnectionResult.reject("Source node not found"), None
    return ConnectionResult.ok(), node


def target_node_exists(context: ConnectionContext) -> ResolveStep:
    """Look up the target node. Returns (result, node or None)."""
    node = _find_node(context.nodes, context.connection.target)
    if node is None:
        return ConnectionResult.reject("Target node not found"), None
    return ConnectionResult.ok(), node


def resolve_context(
    context: ConnectionContext,
) -> Union[ResolvedConnectionContext, ConnectionResult]:
    """
    Run the resolve phase.

    Returns:
        ResolvedConnectionContext on success, or the first failing
        ConnectionResult.
    """
    result, source_node = source_node_exists(context)
    if not result.valid:
        return result

    result, target_node = target_node_exists(context)
    if not result.valid:
        return result

    return ResolvedConnectionContext(
        connection=context.connection,
        nodes=context.nodes,
        edges=context.edges,
        node_type_config=context.node_type_config,
        source_node=source_node,
        target_node=target_node,
    )


# =============================================================================
# VALIDATE PHASE (Rules)
# =============================================================================

def no_self_connection(context: ResolvedConnectionContext) -> ConnectionResult:
    if context.connection.source == context.connection.target:
        return ConnectionResult.reject("Cannot connect a node to itself")
    return ConnectionResult.ok()


def no_source_to_source(context: ResolvedConnectionContext) -> ConnectionResult:
    """Nodes have a single unnamed input, so a target handle means the drag ended on an output."""
    if context.connection.target_handle:
        return ConnectionResult.reject("Cannot connect to an output handle")
    return ConnectionResult.ok()


def thank_you_no_outgoing(context: ResolvedConnectionContext) -> ConnectionResult:
    if context.source_node.type == NodeType.THANK_YOU:
        return ConnectionResult.reject("Thank You pages cannot have outgoing connections")
    return ConnectionResult.ok()


def sales_page_target(context: ResolvedConnectionContext) -> ConnectionResult:
    if (
        context.source_node.type == NodeType.SALES_PAGE
        and context.target_node.type != NodeType.ORDER_PAGE
    ):
        return ConnectionResult.reject("Sales Page can only connect to Order Page")
    return ConnectionResult.ok()


def sales_page_max_connections(context: ResolvedConnectionContext) -> ConnectionResult:
    if context.source_node.type == NodeType.SALES_PAGE:
        source_id = context.source_node.id
        if any(e.source == source_id for e in context.edges):
            return ConnectionResult.reject("Sales Page can only have one outgoing connection")
    return ConnectionResult.ok()


def no_duplicate_connection(context: ResolvedConnectionContext) -> ConnectionResult:
    """
    Reject an exact repeat of (source, target, source_handle).

    Two edges between the same pair on different handles are allowed.
    target_handle is not compared: it is always None while nodes have a
    single input. Revisit this rule if multi-input nodes are introduced.
    """
    conn = context.connection
    for e in context.edges:
        if (
            e.source == conn.source
            and e.target == conn.target
            and e.source_handle == conn.source_handle
        ):
            return ConnectionResult.reject("This connection already exists")
    return ConnectionResult.ok()


def max_incoming_edges(context: ResolvedConnectionContext) -> ConnectionResult:
    """
    Config-driven incoming edge limit per node type.

    max_incoming_edges None = unlimited, 0 = no incoming allowed.
    """
    config = context.node_type_config[context.target_node.type]
    limit = config.max_incoming_edges
    if limit is None:
        return ConnectionResult.ok()

    target_id = context.connection.target
    incoming_count = sum(1 for e in context.edges if e.target == target_id)

    if incoming_count >= limit:
        if limit == 0:
            return ConnectionResult.reject(f"{config.label} cannot have incoming connections")
        plural = "s" if limit > 1 else ""
        return ConnectionResult.reject(
            f"{config.label} can only have {limit} incoming connection{plural}"
        )
    return ConnectionResult.ok()


def handle_max_one_edge(context: ResolvedConnectionContext) -> ConnectionResult:
    """
    Each source handle drives at most one edge.

    Distinct from node-level limits: a node with two handles can have two
    outgoing edges, but never two from the same handle.
    """
    source_handle = context.connection.source_handle
    if not source_handle:
        return ConnectionResult.ok()

    source_id = context.connection.source
    for e in context.edges:
        if e.source == source_id and e.source_handle == source_handle:
            return ConnectionResult.reject("This handle already has a connection")
    return ConnectionResult.ok()


VALIDATE_RULES: Tuple[ConnectionRule, ...] = (
    no_self_connection,
    no_source_to_source,
    thank_you_no_outgoing,
    sales_page_target,
    sales_page_max_connections,
    no_duplicate_connection,
    max_incoming_edges,
    handle_max_one_edge,
)


# =============================================================================
# COMPOSITION
# =============================================================================

def compose_validators(*rules: ConnectionRule) -> ConnectionRule:
    """Chain rules into one validator that short-circuits on the first failure."""
    def composed(context: ResolvedConnectionContext) -> ConnectionResult:
        for rule in rules:
            result = rule(context)
            if not result.valid:
                return result
        return ConnectionResult.ok()

    return composed


class ConnectionValidator:
    """
    The composed two-phase connection validator.

    Usage:
        validator = ConnectionValidator()
        result = validator.validate(Connection(source="sp-1", target="op-1"), nodes, edges)
        if not result.valid:
            show(result.error)
    """

    def __init__(
        self,
        node_type_config: Optional[Dict[NodeType, NodeTypeConfig]] = None,
        rules: Sequence[ConnectionRule] = VALIDATE_RULES,
    ):
        """
        Args:
            node_type_config: Node type table. Defaults to the static table.
            rules: Validate-phase rules, run in order after resolution.
        """
        self.node_type_config = (
            node_type_config if node_type_config is not None else get_node_type_config()
        )
        self._validate = compose_validators(*rules)

    def validate(
        self,
        connection: Connection,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
    ) -> ConnectionResult:
        context = ConnectionContext(
            connection=connection,
            nodes=nodes,
            edges=edges,
            node_type_config=self.node_type_config,
        )
        return self.validate_context(context)

    def validate_context(self, context: ConnectionContext) -> ConnectionResult:
        resolved = resolve_context(context)
        if isinstance(resolved, ConnectionResult):
            result = resolved
        else:
            result = self._validate(resolved)

        if not result.valid:
            logger.debug(
                f"Rejected connection {context.connection.source} -> "
                f"{context.connection.target} "
                f"(handle={context.connection.source_handle}): {result.error}"
            )
        return result

    __call__ = validate


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_default_validator: Optional[ConnectionValidator] = None


def get_connection_validator() -> ConnectionValidator:
    """Shared validator bound to the static node type table."""
    global _default_validator
    if _default_validator is None:
        _default_validator = ConnectionValidator()
    return _default_validator


def validate_connection(
    connection: Connection,
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    node_type_config: Optional[Dict[NodeType, NodeTypeConfig]] = None,
) -> ConnectionResult:
    """Validate a candidate edge against the current graph."""
    if node_type_config is not None:
        return ConnectionValidator(node_type_config).validate(connection, nodes, edges)
    return get_connection_validator().validate(connection, nodes, edges)
