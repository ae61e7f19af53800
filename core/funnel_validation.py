"""
FUNNEL STRUCTURAL VALIDATION - The Funnel Inspector

Where connection_rules.py guards a single edge, this module inspects the
WHOLE graph and reports every structural defect it finds. It never
short-circuits: all analyzers run and their findings are concatenated.

Analyzers (run in this order):

  Errors (funnel is unusable)
    1. validate_empty_funnel          -> empty-funnel
    2. validate_missing_entry_point   -> missing-entry-point
    3. validate_missing_terminal      -> missing-terminal
    4. validate_orphan_nodes          -> orphan-{node_id}
    5. validate_dead_end_nodes        -> dead-end-{node_id}

  Warnings (funnel is usable but suspicious)
    6. validate_unreachable_nodes     -> unreachable-{node_id}
    7. validate_multiple_entry_points -> multiple-entry-points
    8. validate_incomplete_offer_paths-> incomplete-offer-{node_id}

Design Philosophy:
- Findings are VALUES, not exceptions. A defective funnel is still editable.
- Every analyzer is a pure function of (nodes, edges); the config table is
  only needed for labels in messages.
- Orphans (no edges at all) and dead ends (incoming but no outgoing) are
  mutually exclusive by construction.

Performance: O(V+E) per full pass. Reachability uses rustworkx traversal.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

import rustworkx as rx

from core.ontology import (
    NodeType,
    NodeTypeConfig,
    Severity,
    ENTRY_NODE_TYPES,
    TERMINAL_NODE_TYPES,
    OFFER_NODE_TYPES,
    get_node_type_config,
)
from core.schemas import Edge, FunnelIssue, FunnelResult, Node


logger = logging.getLogger(__name__)

NodeTypeTable = Dict[NodeType, NodeTypeConfig]
FunnelAnalyzer = Callable[..., List[FunnelIssue]]


# =============================================================================
# HELPERS
# =============================================================================

def _table(node_type_config: Optional[NodeTypeTable]) -> NodeTypeTable:
    return node_type_config if node_type_config is not None else get_node_type_config()


def _node_issue(prefix: str, severity: Severity, node: Node, message: str) -> FunnelIssue:
    return FunnelIssue(
        id=f"{prefix}-{node.id}",
        severity=severity,
        message=message,
        node_id=node.id,
        node_name=node.name,
    )


def _entry_nodes(nodes: Sequence[Node]) -> List[Node]:
    return [n for n in nodes if n.type in ENTRY_NODE_TYPES]


def get_reachable_node_ids(entry_node_ids: Iterable[str], edges: Sequence[Edge]) -> Set[str]:
    """
    Ids reachable from any entry node by following outgoing edges.

    The entry ids themselves are included. Cycles are safe: rustworkx
    visits each index once.

    Args:
        entry_node_ids: Starting set (the sales pages)
        edges: Edge list to traverse

    Returns:
        Set of reachable node ids
    """
    entry_ids = list(entry_node_ids)
    graph = rx.PyDiGraph(multigraph=True)
    index: Dict[str, int] = {}

    def index_of(node_id: str) -> int:
        if node_id not in index:
            index[node_id] = graph.add_node(node_id)
        return index[node_id]

    for node_id in entry_ids:
        index_of(node_id)
    for edge in edges:
        graph.add_edge(index_of(edge.source), index_of(edge.target), edge.id)

    reachable: Set[str] = set(entry_ids)
    for node_id in entry_ids:
        for idx in rx.descendants(graph, index[node_id]):
            reachable.add(graph[idx])

    return reachable


# =============================================================================
# ERROR ANALYZERS
# =============================================================================

def validate_empty_funnel(nodes: Sequence[Node], edges: Sequence[Edge], **_) -> List[FunnelIssue]:
    if len(nodes) == 0:
        return [FunnelIssue(
            id="empty-funnel",
            severity=Severity.ERROR,
            message="This funnel has no nodes",
        )]
    return []


def validate_missing_entry_point(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    node_type_config: Optional[NodeTypeTable] = None,
) -> List[FunnelIssue]:
    """Empty funnels are left to validate_empty_funnel."""
    if nodes and not _entry_nodes(nodes):
        label = _table(node_type_config)[NodeType.SALES_PAGE].label
        return [FunnelIssue(
            id="missing-entry-point",
            severity=Severity.ERROR,
            message=f"This funnel has no {label} (entry point)",
        )]
    return []


def validate_missing_terminal(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    node_type_config: Optional[NodeTypeTable] = None,
) -> List[FunnelIssue]:
    if nodes and not any(n.type in TERMINAL_NODE_TYPES for n in nodes):
        label = _table(node_type_config)[NodeType.THANK_YOU].label
        return [FunnelIssue(
            id="missing-terminal",
            severity=Severity.ERROR,
            message=f"This funnel has no {label} page (terminal)",
        )]
    return []


def validate_orphan_nodes(nodes: Sequence[Node], edges: Sequence[Edge], **_) -> List[FunnelIssue]:
    connected = {e.source for e in edges} | {e.target for e in edges}
    return [
        _node_issue(
            "orphan", Severity.ERROR, node,
            f'"{node.name}" is an orphan node (no connections)',
        )
        for node in nodes
        if node.id not in connected
    ]


def validate_dead_end_nodes(nodes: Sequence[Node], edges: Sequence[Edge], **_) -> List[FunnelIssue]:
    """Non-terminal nodes that are entered but never left."""
    sources = {e.source for e in edges}
    targets = {e.target for e in edges}
    return [
        _node_issue(
            "dead-end", Severity.ERROR, node,
            f'"{node.name}" has no outgoing connection',
        )
        for node in nodes
        if node.type not in TERMINAL_NODE_TYPES
        and node.id in targets
        and node.id not in sources
    ]


# =============================================================================
# WARNING ANALYZERS
# =============================================================================

def validate_unreachable_nodes(nodes: Sequence[Node], edges: Sequence[Edge], **_) -> List[FunnelIssue]:
    """Missing entry points are reported by validate_missing_entry_point instead."""
    entry_nodes = _entry_nodes(nodes)
    if not entry_nodes:
        return []

    reachable = get_reachable_node_ids([n.id for n in entry_nodes], edges)
    return [
        _node_issue(
            "unreachable", Severity.WARNING, node,
            f'"{node.name}" is unreachable from the entry point',
        )
        for node in nodes
        if node.type not in ENTRY_NODE_TYPES and node.id not in reachable
    ]


def validate_multiple_entry_points(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    node_type_config: Optional[NodeTypeTable] = None,
) -> List[FunnelIssue]:
    count = len(_entry_nodes(nodes))
    if count > 1:
        label = _table(node_type_config)[NodeType.SALES_PAGE].label
        return [FunnelIssue(
            id="multiple-entry-points",
            severity=Severity.WARNING,
            message=f"This funnel has {count} {label}s",
        )]
    return []


def validate_incomplete_offer_paths(nodes: Sequence[Node], edges: Sequence[Edge], **_) -> List[FunnelIssue]:
    """
    Offers are modelled with exactly two branches (accept/decline).

    Exactly one connected branch is the only partial state flagged: zero is
    already an orphan or dead end, and two or more is tolerated.
    """
    issues = []
    for node in nodes:
        if node.type not in OFFER_NODE_TYPES:
            continue
        outgoing_count = sum(1 for e in edges if e.source == node.id)
        if outgoing_count == 1:
            issues.append(_node_issue(
                "incomplete-offer", Severity.WARNING, node,
                f'"{node.name}" should have both accept and decline paths',
            ))
    return issues


ERROR_ANALYZERS: List[FunnelAnalyzer] = [
    validate_empty_funnel,
    validate_missing_entry_point,
    validate_missing_terminal,
    validate_orphan_nodes,
    validate_dead_end_nodes,
]

WARNING_ANALYZERS: List[FunnelAnalyzer] = [
    validate_unreachable_nodes,
    validate_multiple_entry_points,
    validate_incomplete_offer_paths,
]


# =============================================================================
# FUNNEL VALIDATOR
# =============================================================================

class FunnelValidator:
    """
    Runs every structural analyzer over a graph snapshot.

    The validator holds no graph state; the same instance can be reused for
    every recomputation.
    """

    def __init__(
        self,
        node_type_config: Optional[NodeTypeTable] = None,
        error_analyzers: Optional[Sequence[FunnelAnalyzer]] = None,
        warning_analyzers: Optional[Sequence[FunnelAnalyzer]] = None,
    ):
        self.node_type_config = _table(node_type_config)
        self.error_analyzers = list(error_analyzers) if error_analyzers is not None else list(ERROR_ANALYZERS)
        self.warning_analyzers = list(warning_analyzers) if warning_analyzers is not None else list(WARNING_ANALYZERS)

    def _run(self, analyzers: Sequence[FunnelAnalyzer], nodes, edges) -> List[FunnelIssue]:
        issues: List[FunnelIssue] = []
        for analyzer in analyzers:
            issues.extend(analyzer(nodes, edges, node_type_config=self.node_type_config))
        return issues

    def validate(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> FunnelResult:
        """
        Run all analyzers and aggregate their findings.

        Returns:
            FunnelResult with is_valid = no errors
        """
        errors = self._run(self.error_analyzers, nodes, edges)
        warnings = self._run(self.warning_analyzers, nodes, edges)

        logger.debug(
            f"Validated funnel: {len(nodes)} nodes, {len(edges)} edges -> "
            f"{len(errors)} errors, {len(warnings)} warnings"
        )

        return FunnelResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    __call__ = validate


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def validate_funnel(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    node_type_config: Optional[NodeTypeTable] = None,
) -> FunnelResult:
    """Validate a whole funnel graph."""
    return FunnelValidator(node_type_config).validate(nodes, edges)


def is_valid_funnel(nodes: Sequence[Node], edges: Sequence[Edge]) -> bool:
    """Quick check: True if the funnel has no structural errors."""
    return validate_funnel(nodes, edges).is_valid
