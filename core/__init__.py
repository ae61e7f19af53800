"""
FUNNEL CORE - Central exports for the funnel model and its validators.

This module provides access to:
- The node type table (ontology)
- Funnel data structures (schemas)
- Connection rules and structural validation
- The editing layer (FunnelGraph) and document import/export
"""

from core.ontology import (
    NodeType,
    HandleId,
    Severity,
    HandleDef,
    NodeTypeConfig,
    NODE_TYPE_CONFIG,
    get_node_type_config,
    get_config_for_type,
)
from core.schemas import (
    Position,
    NodeData,
    Node,
    Edge,
    Connection,
    ConnectionResult,
    FunnelIssue,
    FunnelResult,
    SavedFunnel,
)
from core.connection_rules import (
    ConnectionContext,
    ResolvedConnectionContext,
    ConnectionValidator,
    validate_connection,
)
from core.funnel_validation import (
    FunnelValidator,
    validate_funnel,
    get_reachable_node_ids,
)
from core.funnel_graph import (
    FunnelGraph,
    FunnelGraphError,
    NodeNotFoundError,
    EdgeNotFoundError,
    DuplicateNodeError,
    DuplicateEdgeError,
)
from core.serialization import (
    FunnelImportError,
    serialize_funnel,
    export_funnel_json,
    import_funnel_json,
    load_funnel_document,
    deserialize_graph,
)

__all__ = [
    # Ontology
    "NodeType",
    "HandleId",
    "Severity",
    "HandleDef",
    "NodeTypeConfig",
    "NODE_TYPE_CONFIG",
    "get_node_type_config",
    "get_config_for_type",
    # Schemas
    "Position",
    "NodeData",
    "Node",
    "Edge",
    "Connection",
    "ConnectionResult",
    "FunnelIssue",
    "FunnelResult",
    "SavedFunnel",
    # Validators
    "ConnectionContext",
    "ResolvedConnectionContext",
    "ConnectionValidator",
    "validate_connection",
    "FunnelValidator",
    "validate_funnel",
    "get_reachable_node_ids",
    # Editing layer
    "FunnelGraph",
    "FunnelGraphError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "DuplicateNodeError",
    "DuplicateEdgeError",
    # Import/export
    "FunnelImportError",
    "serialize_funnel",
    "export_funnel_json",
    "import_funnel_json",
    "load_funnel_document",
    "deserialize_graph",
]
