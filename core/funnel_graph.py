"""
FUNNEL GRAPH - The Editing Layer

Owns the only mutable aggregate in the system: the funnel's nodes and edges.
Every user action (palette add, connect, delete) goes through this class,
which consults the validators and publishes change events. The validators
themselves never see this object, only the immutable snapshots it hands out.

Architecture (The Bridge Pattern):
  Python Layer (Business Logic)
  - Uses string ids: "node-1", "e-node-1-accepted-node-2"
  - Calls: graph.create_node(NodeType.UPSELL), graph.connect(connection)

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (node id -> index), insertion ordered
  - _edge_map: Dict[str, int]  (edge id -> edge index), insertion ordered

  Rust Layer (rustworkx.PyDiGraph, multigraph)
  - Node payload: Node, edge payload: Edge

Lifecycle rules:
- Edges are only committed by connect() after the connection validator
  passes (add_edge() is the raw path used by document loading).
- Deleting a node deletes every edge touching it and releases one slot of
  that type's sequence counter.
"""
import logging
from contextlib import contextmanager
import rustworkx as rx
from typing import Dict, List, Optional, Tuple

from core.ontology import NodeType, NodeTypeConfig, get_node_type_config
from core.schemas import (
    Connection,
    ConnectionResult,
    Edge,
    FunnelResult,
    Node,
    NodeData,
    Position,
    SavedFunnel,
    default_node_type_counts,
)
from core.connection_rules import ConnectionValidator
from core.funnel_validation import FunnelValidator
from core.serialization import FunnelImportError, check_document
from infrastructure.config import FunnelConfig
from infrastructure.event_bus import EventBus, EventType, get_event_bus, publish_event


logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class FunnelGraphError(Exception):
    """Base exception for editing operations."""
    pass


class NodeNotFoundError(FunnelGraphError):
    """Raised when a node id is not in the graph."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class EdgeNotFoundError(FunnelGraphError):
    """Raised when an edge id is not in the graph."""
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge not found: {edge_id}")


class DuplicateNodeError(FunnelGraphError):
    """Raised when attempting to add a node with an existing id."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")


class DuplicateEdgeError(FunnelGraphError):
    """Raised when attempting to add an edge with an existing id."""
    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge already exists: {edge_id}")


# =============================================================================
# FUNNEL GRAPH
# =============================================================================

class FunnelGraph:
    """
    In-memory funnel graph backed by rustworkx.

    Usage:
        graph = FunnelGraph()
        sp = graph.create_node(NodeType.SALES_PAGE)
        op = graph.create_node(NodeType.ORDER_PAGE)

        result = graph.connect(Connection(source=sp.id, target=op.id))
        if not result.valid:
            print(result.error)

        report = graph.validate()

    Thread Safety:
        NOT thread-safe. Use external locking if needed for concurrent access.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        node_type_config: Optional[Dict[NodeType, NodeTypeConfig]] = None,
        event_bus: Optional[EventBus] = None,
        config: Optional[FunnelConfig] = None,
    ):
        """
        Args:
            name: Funnel display name (defaults to config.default_funnel_name)
            node_type_config: Node type table shared with both validators
            event_bus: Bus for change events (defaults to the global bus)
            config: Canvas and naming settings
        """
        self.config = config if config is not None else FunnelConfig()
        self.node_type_config = (
            node_type_config if node_type_config is not None else get_node_type_config()
        )
        self._connection_validator = ConnectionValidator(self.node_type_config)
        self._funnel_validator = FunnelValidator(self.node_type_config)
        self._event_bus = event_bus if event_bus is not None else get_event_bus()
        self._muted_depth = 0

        self._init_storage()

        # Document metadata
        self.funnel_id: Optional[str] = None
        self.name = name if name is not None else self.config.default_funnel_name
        self.created_at: Optional[int] = None
        self.node_type_counts: Dict[str, int] = default_node_type_counts()
        self.node_id_counter = 0

    def _init_storage(self) -> None:
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=True)
        self._node_map: Dict[str, int] = {}
        self._edge_map: Dict[str, int] = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def node_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.num_edges()

    @property
    def is_empty(self) -> bool:
        return self.node_count == 0

    @property
    def has_content(self) -> bool:
        """True if there is anything worth saving."""
        return self.node_count > 0 or self.name != self.config.default_funnel_name

    @property
    def nodes(self) -> List[Node]:
        """Nodes in insertion order."""
        return [self._graph[idx] for idx in self._node_map.values()]

    @property
    def edges(self) -> List[Edge]:
        """Edges in insertion order."""
        return [self._graph.get_edge_data_by_index(idx) for idx in self._edge_map.values()]

    def snapshot(self) -> Tuple[List[Node], List[Edge]]:
        """Read-only view handed to the validators."""
        return self.nodes, self.edges

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def add_node(self, node: Node) -> int:
        """
        Add a fully-formed node.

        Returns:
            The rustworkx index of the node

        Raises:
            DuplicateNodeError: If the id already exists
        """
        if node.id in self._node_map:
            raise DuplicateNodeError(node.id)

        idx = self._graph.add_node(node)
        self._node_map[node.id] = idx

        logger.debug(f"Added node {node.id} ({node.type.value})")
        self._publish(EventType.NODE_CREATED, {
            "node_id": node.id,
            "node_type": node.type.value,
            "title": node.data.title,
        })
        return idx

    def create_node(
        self,
        node_type: NodeType,
        position: Optional[Position] = None,
    ) -> Node:
        """
        Create a node from the type's defaults (palette add).

        Auto-increment types get a sequence number and a numbered title
        ("Upsell 2"). Ids follow node-{counter}.
        """
        node_type = NodeType(node_type)
        type_config = self.node_type_config[node_type]

        self.node_id_counter += 1
        title = type_config.default_title
        sequence_number = None

        if type_config.auto_increment:
            sequence_number = self.node_type_counts.get(node_type.value, 0) + 1
            self.node_type_counts[node_type.value] = sequence_number
            title = f"{type_config.default_title} {sequence_number}"

        node = Node(
            id=f"node-{self.node_id_counter}",
            type=node_type,
            position=position or Position(),
            data=NodeData(
                title=title,
                icon=type_config.icon,
                node_type=node_type,
                primary_button_label=type_config.default_button_label,
                sequence_number=sequence_number,
            ),
        )
        self.add_node(node)
        return node

    def add_node_to_canvas(
        self,
        node_type: NodeType,
        node_width: Optional[int] = None,
        gap: Optional[int] = None,
    ) -> Node:
        """Create a node to the right of the last one (keyboard insert)."""
        if node_width is None:
            node_width = self.config.node_width
        if gap is None:
            gap = self.config.keyboard_insert_node_gap

        nodes = self.nodes
        if nodes:
            last = nodes[-1].position
            position = Position(x=last.x + node_width + gap, y=last.y)
        else:
            position = Position(x=0, y=0)
        return self.create_node(node_type, position)

    def get_node(self, node_id: str) -> Node:
        """
        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        return self._graph[self._get_index(node_id)]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    def delete_node(self, node_id: str) -> Node:
        """
        Delete a node and every edge touching it.

        Returns:
            The deleted Node

        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        idx = self._get_index(node_id)
        node = self._graph[idx]

        type_config = self.node_type_config.get(node.type)
        if type_config is not None and type_config.auto_increment:
            key = node.type.value
            self.node_type_counts[key] = self.node_type_counts.get(key, 1) - 1

        for edge in [e for e in self.edges if e.source == node_id or e.target == node_id]:
            self.remove_edge(edge.id)

        self._graph.remove_node(idx)
        del self._node_map[node_id]

        logger.debug(f"Deleted node {node_id}")
        self._publish(EventType.NODE_DELETED, {
            "node_id": node_id,
            "node_type": node.type.value,
        })
        return node

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def validate_connection(self, connection: Connection) -> ConnectionResult:
        """Ask the connection validator about a candidate edge. No side effects."""
        nodes, edges = self.snapshot()
        return self._connection_validator.validate(connection, nodes, edges)

    def connect(self, connection: Connection) -> ConnectionResult:
        """
        Validate a candidate edge and commit it when accepted.

        Returns:
            The validator's verdict. The graph is unchanged on rejection.
        """
        result = self.validate_connection(connection)
        if not result.valid:
            self._publish(EventType.CONNECTION_REJECTED, {
                "source": connection.source,
                "target": connection.target,
                "source_handle": connection.source_handle,
                "error": result.error,
            })
            return result

        self.add_edge(connection.to_edge())
        return result

    def add_edge(self, edge: Edge) -> int:
        """
        Add an edge without consulting the connection rules.

        Raises:
            NodeNotFoundError: If either endpoint doesn't exist
            DuplicateEdgeError: If the edge id already exists
        """
        if edge.id in self._edge_map:
            raise DuplicateEdgeError(edge.id)

        source_idx = self._get_index(edge.source)
        target_idx = self._get_index(edge.target)

        edge_idx = self._graph.add_edge(source_idx, target_idx, edge)
        self._edge_map[edge.id] = edge_idx

        logger.debug(f"Added edge {edge.id}")
        self._publish(EventType.EDGE_CREATED, {
            "edge_id": edge.id,
            "source": edge.source,
            "target": edge.target,
            "source_handle": edge.source_handle,
        })
        return edge_idx

    def get_edge(self, edge_id: str) -> Edge:
        if edge_id not in self._edge_map:
            raise EdgeNotFoundError(edge_id)
        return self._graph.get_edge_data_by_index(self._edge_map[edge_id])

    def has_edge(self, edge_id: str) -> bool:
        return edge_id in self._edge_map

    def remove_edge(self, edge_id: str) -> Edge:
        """
        Raises:
            EdgeNotFoundError: If edge doesn't exist
        """
        edge = self.get_edge(edge_id)
        self._graph.remove_edge_from_index(self._edge_map.pop(edge_id))

        logger.debug(f"Removed edge {edge_id}")
        self._publish(EventType.EDGE_DELETED, {
            "edge_id": edge_id,
            "source": edge.source,
            "target": edge.target,
        })
        return edge

    def get_outgoing_edges(self, node_id: str) -> List[Edge]:
        idx = self._get_index(node_id)
        return [data for _, _, data in self._graph.out_edges(idx)]

    def get_incoming_edges(self, node_id: str) -> List[Edge]:
        idx = self._get_index(node_id)
        return [data for _, _, data in self._graph.in_edges(idx)]

    def get_successors(self, node_id: str) -> List[Node]:
        return list(self._graph.successors(self._get_index(node_id)))

    def get_descendants(self, node_id: str) -> List[Node]:
        """All nodes reachable from node_id (excluding itself)."""
        idx = self._get_index(node_id)
        return [self._graph[i] for i in rx.descendants(self._graph, idx)]

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self) -> FunnelResult:
        """Run the structural validator over the current graph."""
        nodes, edges = self.snapshot()
        return self._funnel_validator.validate(nodes, edges)

    # =========================================================================
    # DOCUMENT LIFECYCLE
    # =========================================================================

    def reset(self, name: Optional[str] = None) -> None:
        """Clear the graph and start a new, unsaved funnel."""
        if name is None:
            name = self.config.default_funnel_name
        self._init_storage()
        self.funnel_id = None
        self.name = name
        self.created_at = None
        self.node_type_counts = default_node_type_counts()
        self.node_id_counter = 0

        logger.debug("Reset funnel graph")
        self._publish(EventType.FUNNEL_RESET, {"name": name})

    def load_document(self, document: SavedFunnel) -> None:
        """
        Replace the graph with a document's contents.

        Edges are added without re-running the connection rules.

        Raises:
            FunnelImportError: If the document is not well-formed. The graph
                is left untouched.
        """
        problems = check_document(document)
        if problems:
            raise FunnelImportError(
                f"Cannot load funnel '{document.name}': {len(problems)} problem(s)",
                problems=problems,
            )

        self._init_storage()
        self.funnel_id = document.id or None
        self.name = document.name
        self.created_at = document.created_at or None
        self.node_type_counts = dict(document.node_type_counts)
        self.node_id_counter = document.node_id_counter

        with self._muted():
            for node in document.nodes:
                self.add_node(node)
            for edge in document.edges:
                self.add_edge(edge)

        logger.info(
            f"Loaded funnel '{self.name}' ({self.node_count} nodes, {self.edge_count} edges)"
        )
        self._publish(EventType.FUNNEL_LOADED, {
            "funnel_id": self.funnel_id,
            "name": self.name,
            "node_count": self.node_count,
            "edge_count": self.edge_count,
        })

    def to_document(self) -> SavedFunnel:
        """Serialize the current graph (see core.serialization)."""
        from core.serialization import serialize_funnel
        return serialize_funnel(self)

    @classmethod
    def from_document(cls, document: SavedFunnel, **kwargs) -> "FunnelGraph":
        """Build a graph holding a well-formed document."""
        graph = cls(name=document.name, **kwargs)
        graph.load_document(document)
        return graph

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _get_index(self, node_id: str) -> int:
        if node_id not in self._node_map:
            raise NodeNotFoundError(node_id)
        return self._node_map[node_id]

    def _publish(self, event_type: EventType, payload: Dict) -> None:
        if self._muted_depth:
            return
        publish_event(event_type, payload, source="funnel_graph", bus=self._event_bus)

    @contextmanager
    def _muted(self):
        """Suppress per-item events during bulk loads."""
        self._muted_depth += 1
        try:
            yield
        finally:
            self._muted_depth -= 1

    # =========================================================================
    # MAGIC METHODS
    # =========================================================================

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: str) -> bool:
        return self.has_node(node_id)

    def __repr__(self) -> str:
        return f"FunnelGraph(name={self.name!r}, nodes={self.node_count}, edges={self.edge_count})"
