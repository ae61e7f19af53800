"""
FUNNEL SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the page types we can use),
schemas.py is the Grammar (defining how we structure a funnel).

This module defines the data structures that flow through the validators:
- Position / NodeData / Node: A funnel step on the canvas
- Edge: A navigation path between two steps
- Connection: A candidate edge proposed by a connect gesture
- ConnectionResult: Verdict of the connection validator
- FunnelIssue / FunnelResult: Findings of the structural validator
- SavedFunnel: The JSON interchange document for export/import

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. IMMUTABLE SNAPSHOTS: Nodes, edges and connections are frozen; the editing
   layer replaces them instead of mutating in place
3. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
4. WIRE COMPATIBILITY: rename="camel" keeps the document keys of the
   exported JSON (sourceHandle, nodeTypeCounts, ...)
"""
import msgspec
from typing import Optional, Dict, List
import time
import uuid

from core.ontology import NodeType, Severity


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_ms() -> int:
    """Current time as epoch milliseconds (document timestamp unit)."""
    return int(time.time() * 1000)


def generate_funnel_id() -> str:
    """Generate a new funnel document id."""
    return f"funnel_{now_ms()}_{uuid.uuid4().hex[:7]}"


def default_node_type_counts() -> Dict[str, int]:
    """Fresh per-type sequence counters for auto-increment types."""
    return {NodeType.UPSELL.value: 0, NodeType.DOWNSELL.value: 0}


# =============================================================================
# NODE (A Funnel Step)
# =============================================================================

class Position(msgspec.Struct, kw_only=True, frozen=True):
    """Canvas coordinates. Opaque to the validators."""
    x: float = 0.0
    y: float = 0.0


class NodeData(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    Display payload of a node.

    node_type mirrors Node.type. sequence_number is only set for
    auto-increment types and records creation order within the type.
    """
    title: str
    icon: str
    node_type: NodeType
    primary_button_label: Optional[str] = None
    sequence_number: Optional[int] = None


class Node(msgspec.Struct, kw_only=True, frozen=True):
    """
    A funnel step.

    Architecture Notes:
    - `id`: Business id (e.g. "node-3"), NOT the rustworkx integer index
    - `type`: Drives every rule via the NodeTypeConfig table
    """
    id: str
    type: NodeType
    data: NodeData
    position: Position = msgspec.field(default_factory=Position)

    @property
    def name(self) -> str:
        """Human-facing name used in issue messages (an empty title stays empty)."""
        return self.data.title if self.data.title is not None else self.id

    @classmethod
    def create(
        cls,
        id: str,
        type: NodeType,
        title: Optional[str] = None,
        icon: str = "i-lucide-box",
        x: float = 0.0,
        y: float = 0.0,
        **data_kwargs
    ) -> "Node":
        """Factory that keeps data.node_type in sync with type."""
        node_type = NodeType(type)
        return cls(
            id=id,
            type=node_type,
            position=Position(x=x, y=y),
            data=NodeData(
                title=title if title is not None else node_type.value,
                icon=icon,
                node_type=node_type,
                **data_kwargs
            ),
        )


# =============================================================================
# EDGE & CONNECTION (Navigation Paths)
# =============================================================================

class Edge(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    A committed navigation path.

    source_handle names the outcome branch ("accepted"/"declined") on
    multi-handle nodes. target_handle is always None in this model.
    """
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    @classmethod
    def create(
        cls,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
        id: Optional[str] = None,
        **kwargs
    ) -> "Edge":
        """Factory using the editor's edge id convention."""
        return cls(
            id=id or make_edge_id(source, target, source_handle),
            source=source,
            target=target,
            source_handle=source_handle,
            **kwargs
        )


class Connection(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """A candidate edge, not yet committed."""
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    def to_edge(self, id: Optional[str] = None) -> Edge:
        """Materialize the accepted connection as an edge."""
        return Edge(
            id=id or make_edge_id(self.source, self.target, self.source_handle),
            source=self.source,
            target=self.target,
            source_handle=self.source_handle,
            target_handle=self.target_handle,
        )


def make_edge_id(source: str, target: str, source_handle: Optional[str] = None) -> str:
    """Edge id convention: e-{source}[-{handle}]-{target}."""
    if source_handle:
        return f"e-{source}-{source_handle}-{target}"
    return f"e-{source}-{target}"


# =============================================================================
# VALIDATION RESULTS
# =============================================================================

class ConnectionResult(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    """Verdict of the connection validator. error is set iff valid is False."""
    valid: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "ConnectionResult":
        return _VALID

    @classmethod
    def reject(cls, error: str) -> "ConnectionResult":
        return cls(valid=False, error=error)


_VALID = ConnectionResult(valid=True)


class FunnelIssue(msgspec.Struct, kw_only=True, frozen=True, rename="camel", omit_defaults=True):
    """
    A single structural problem found in the funnel graph.

    id is deterministic ("{rule}-{node_id}" or the rule name for
    funnel-wide issues) so it can key UI rows and test assertions.
    """
    id: str
    severity: Severity
    message: str
    node_id: Optional[str] = None
    node_name: Optional[str] = None


class FunnelResult(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """
    Aggregated structural report.

    is_valid reflects errors only. A funnel with warnings but no errors
    is still valid.
    """
    is_valid: bool
    errors: List[FunnelIssue] = msgspec.field(default_factory=list)
    warnings: List[FunnelIssue] = msgspec.field(default_factory=list)

    @property
    def all_issues(self) -> List[FunnelIssue]:
        """Errors first, then warnings."""
        return [*self.errors, *self.warnings]

    @property
    def issue_ids(self) -> List[str]:
        return [issue.id for issue in self.all_issues]


# =============================================================================
# FUNNEL DOCUMENT (The Interchange Format)
# =============================================================================

class SavedFunnel(msgspec.Struct, kw_only=True, rename="camel"):
    """
    The persisted/exported funnel document.

    Only name, nodes and edges are required on import; the counters fall
    back to fresh values when an older document omits them.
    """
    name: str
    nodes: List[Node]
    edges: List[Edge]
    id: str = ""
    node_type_counts: Dict[str, int] = msgspec.field(default_factory=default_node_type_counts)
    node_id_counter: int = 0
    created_at: int = 0
    updated_at: int = 0


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders, reused across the application

_json_encoder = msgspec.json.Encoder()
_funnel_decoder = msgspec.json.Decoder(type=SavedFunnel)
_node_list_decoder = msgspec.json.Decoder(type=List[Node])
_edge_list_decoder = msgspec.json.Decoder(type=List[Edge])


def encode_json(obj) -> bytes:
    """Encode any schema object (or list of them) to compact JSON bytes."""
    return _json_encoder.encode(obj)


def encode_json_pretty(obj) -> bytes:
    """Encode to JSON indented by two spaces, as the export file is written."""
    return msgspec.json.format(_json_encoder.encode(obj), indent=2)


def decode_funnel(data: bytes) -> SavedFunnel:
    """Decode a funnel document. Raises msgspec.DecodeError/ValidationError."""
    return _funnel_decoder.decode(data)


def decode_nodes(data: bytes) -> List[Node]:
    """Decode a JSON array of nodes."""
    return _node_list_decoder.decode(data)


def decode_edges(data: bytes) -> List[Edge]:
    """Decode a JSON array of edges."""
    return _edge_list_decoder.decode(data)
