"""
FUNNEL SERIALIZATION - The Import/Export Boundary

Converts between the in-memory FunnelGraph and the SavedFunnel JSON
document. This is the ONLY place untrusted funnel data enters the system,
so well-formedness is enforced here:

- name, nodes and edges must be present
- node types must be known NodeType values
- node.data.nodeType must match node.type
- node ids and edge ids must be unique
- every edge must reference two existing nodes

Past this boundary the validators assume every edge references two existing
nodes and never defend against dangling edges themselves.
"""
import logging
import re
from pathlib import Path
from typing import List, Optional, Union

import msgspec

from core.schemas import (
    SavedFunnel,
    decode_funnel,
    encode_json_pretty,
    generate_funnel_id,
    now_ms,
)


logger = logging.getLogger(__name__)


class FunnelImportError(Exception):
    """Raised when a funnel document is malformed."""
    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        super().__init__(message)


# =============================================================================
# EXPORT
# =============================================================================

def serialize_funnel(graph) -> SavedFunnel:
    """
    Snapshot a FunnelGraph as a document.

    A graph that was never saved gets a fresh id; created_at is kept from
    the first save, updated_at is always now.
    """
    now = now_ms()
    return SavedFunnel(
        id=graph.funnel_id or generate_funnel_id(),
        name=graph.name,
        nodes=graph.nodes,
        edges=graph.edges,
        node_type_counts=dict(graph.node_type_counts),
        node_id_counter=graph.node_id_counter,
        created_at=graph.created_at or now,
        updated_at=now,
    )


def export_funnel_json(graph) -> bytes:
    """Pretty-printed JSON export of a graph."""
    return encode_json_pretty(serialize_funnel(graph))


def export_filename(name: str) -> str:
    """Download filename for a funnel: non-alphanumerics become underscores."""
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE) + ".json"


def write_funnel_file(graph, path: Union[str, Path]) -> Path:
    """Write the export to path (a directory gets export_filename(name))."""
    path = Path(path)
    if path.is_dir():
        path = path / export_filename(graph.name)
    path.write_bytes(export_funnel_json(graph))
    logger.info(f"Exported funnel '{graph.name}' to {path}")
    return path


# =============================================================================
# IMPORT
# =============================================================================

def check_document(document: SavedFunnel) -> List[str]:
    """
    List the well-formedness problems of a decoded document.

    Returns:
        Human-readable problems (empty when the document is well-formed)
    """
    problems = []

    node_ids = set()
    for node in document.nodes:
        if node.id in node_ids:
            problems.append(f"Duplicate node id: {node.id}")
        node_ids.add(node.id)
        if node.data.node_type != node.type:
            problems.append(
                f"Node {node.id} has type {node.type.value} but data.nodeType "
                f"{node.data.node_type.value}"
            )

    edge_ids = set()
    for edge in document.edges:
        if edge.id in edge_ids:
            problems.append(f"Duplicate edge id: {edge.id}")
        edge_ids.add(edge.id)
        if edge.source not in node_ids:
            problems.append(f"Edge {edge.id} references missing source node {edge.source}")
        if edge.target not in node_ids:
            problems.append(f"Edge {edge.id} references missing target node {edge.target}")

    return problems


def load_funnel_document(data: Union[bytes, str]) -> SavedFunnel:
    """
    Decode and check a funnel document.

    Raises:
        FunnelImportError: If the JSON is invalid, required fields are
            missing, a node type is unknown, or the graph is not well-formed
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    try:
        document = decode_funnel(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        logger.warning(f"Rejected funnel document: {e}")
        raise FunnelImportError(f"Invalid funnel file format: {e}") from e

    problems = check_document(document)
    if problems:
        logger.warning(f"Rejected funnel document '{document.name}': {problems}")
        raise FunnelImportError(
            f"Invalid funnel file format: {len(problems)} problem(s)",
            problems=problems,
        )

    return document


def read_funnel_file(path: Union[str, Path]) -> SavedFunnel:
    """Read and check a funnel document from disk."""
    return load_funnel_document(Path(path).read_bytes())


def deserialize_graph(document: SavedFunnel, **graph_kwargs):
    """Build a FunnelGraph holding a checked document."""
    from core.funnel_graph import FunnelGraph

    return FunnelGraph.from_document(document, **graph_kwargs)


def import_funnel_json(data: Union[bytes, str], graph) -> SavedFunnel:
    """
    Import a document into an existing graph under a NEW funnel id.

    The graph is left untouched when the document is rejected.

    Raises:
        FunnelImportError: If the document is malformed
    """
    document = load_funnel_document(data)
    document = msgspec.structs.replace(document, id=generate_funnel_id(), created_at=0)
    graph.load_document(document)
    return document
