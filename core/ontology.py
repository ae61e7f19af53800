"""
FUNNEL ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how we structure a funnel document),
ontology.py is the Dictionary (the page types we can use).

This module defines:
- Enums: The vocabulary (NodeType, HandleId, Severity)
- HandleDef: A named output port on a node
- NodeTypeConfig: Per-type capability limits and labels
- NODE_TYPE_CONFIG: The closed lookup table, one entry per NodeType

Key Principle: The node type set is CLOSED.
Behaviour varies by node type through this table, not through subclasses.
Validators receive the table as an explicit dependency; get_node_type_config()
is only the default supplier.
"""
from typing import Dict, List, Optional, Tuple, Literal
from enum import Enum
import warnings

import msgspec


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Kinds of funnel steps. Closed enumeration."""
    SALES_PAGE = "sales-page"        # Entry point
    ORDER_PAGE = "order-page"        # Checkout with purchased/declined branches
    UPSELL = "upsell"                # Post-purchase offer
    DOWNSELL = "downsell"            # Cheaper offer after a decline
    THANK_YOU = "thank-you"          # Terminal


class HandleId(str, Enum):
    """Named outcome ports on multi-handle nodes."""
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Severity(str, Enum):
    """Severity of a structural issue."""
    ERROR = "error"      # Funnel is unusable
    WARNING = "warning"  # Funnel is usable but suspicious


# =============================================================================
# Type Aliases
# =============================================================================

HandleColor = Literal["success", "error"]
HandlePosition = Literal["right", "bottom"]


# =============================================================================
# NODE TYPE CONFIGURATION
# =============================================================================

class HandleDef(msgspec.Struct, kw_only=True, frozen=True):
    """A named output port. Each handle drives at most one edge."""
    id: str
    label: str
    icon: str
    color: HandleColor
    position: HandlePosition


class NodeTypeConfig(msgspec.Struct, kw_only=True, frozen=True):
    """
    Static capabilities and labels for one node type.

    max_incoming_edges: None = unlimited, 0 = forbidden.
    handles: None = a single unnamed output.
    """
    label: str
    icon: str
    default_button_label: str
    default_title: str
    allows_outgoing: bool
    max_outgoing_edges: Optional[int] = None
    max_incoming_edges: Optional[int] = None
    auto_increment: bool = False
    handles: Optional[Tuple[HandleDef, ...]] = None

    @property
    def handle_ids(self) -> List[str]:
        """Ids of the named output ports (empty for single-output types)."""
        if not self.handles:
            return []
        return [h.id for h in self.handles]


def _branch_handles(accepted_label: str) -> Tuple[HandleDef, ...]:
    return (
        HandleDef(
            id=HandleId.ACCEPTED.value,
            label=accepted_label,
            icon="i-lucide-check",
            color="success",
            position="right",
        ),
        HandleDef(
            id=HandleId.DECLINED.value,
            label="Declined",
            icon="i-lucide-x",
            color="error",
            position="bottom",
        ),
    )


# =============================================================================
# NODE TYPE REGISTRY
# =============================================================================

NODE_TYPE_CONFIG: Dict[NodeType, NodeTypeConfig] = {

    NodeType.SALES_PAGE: NodeTypeConfig(
        label="Sales Page",
        icon="i-lucide-presentation",
        default_button_label="Order Now",
        default_title="Sales Page",
        allows_outgoing=True,
        max_outgoing_edges=1,
        max_incoming_edges=0,
    ),

    NodeType.ORDER_PAGE: NodeTypeConfig(
        label="Order Page",
        icon="i-lucide-shopping-cart",
        default_button_label="Complete Order",
        default_title="Order Page",
        allows_outgoing=True,
        max_outgoing_edges=2,
        max_incoming_edges=1,
        handles=_branch_handles("Purchased"),
    ),

    NodeType.UPSELL: NodeTypeConfig(
        label="Upsell",
        icon="i-lucide-trending-up",
        default_button_label="Yes, Add This",
        default_title="Upsell",
        allows_outgoing=True,
        max_outgoing_edges=2,
        auto_increment=True,
        handles=_branch_handles("Accepted"),
    ),

    NodeType.DOWNSELL: NodeTypeConfig(
        label="Downsell",
        icon="i-lucide-trending-down",
        default_button_label="Take This Deal",
        default_title="Downsell",
        allows_outgoing=True,
        max_outgoing_edges=2,
        auto_increment=True,
        handles=_branch_handles("Accepted"),
    ),

    NodeType.THANK_YOU: NodeTypeConfig(
        label="Thank You",
        icon="i-lucide-check-circle",
        default_button_label="",
        default_title="Thank You",
        allows_outgoing=False,
        max_outgoing_edges=0,
    ),
}

# Structural roles used by the funnel validator
ENTRY_NODE_TYPES: Tuple[NodeType, ...] = (NodeType.SALES_PAGE,)
TERMINAL_NODE_TYPES: Tuple[NodeType, ...] = (NodeType.THANK_YOU,)
OFFER_NODE_TYPES: Tuple[NodeType, ...] = (NodeType.UPSELL, NodeType.DOWNSELL)


# =============================================================================
# LOOKUP FUNCTIONS
# =============================================================================

def get_node_type_config() -> Dict[NodeType, NodeTypeConfig]:
    """Return the static node type table."""
    return NODE_TYPE_CONFIG


def get_config_for_type(
    node_type: str,
    node_type_config: Optional[Dict[NodeType, NodeTypeConfig]] = None,
) -> NodeTypeConfig:
    """
    Look up the config entry for a node type.

    Raises:
        ValueError: If node_type is not a NodeType value
        KeyError: If the table has no entry for the type
    """
    table = node_type_config if node_type_config is not None else NODE_TYPE_CONFIG
    return table[NodeType(node_type)]


def is_auto_increment(node_type: str) -> bool:
    """Check if titles for this type carry a sequence number."""
    return get_config_for_type(node_type).auto_increment


def validate_node_type(type_str: str) -> bool:
    """Check if a string is a valid NodeType value."""
    return type_str in {nt.value for nt in NodeType}


# =============================================================================
# MODULE INITIALIZATION
# =============================================================================

def _validate_config(table: Dict[NodeType, NodeTypeConfig]) -> List[str]:
    """Validate that the table covers every type and is internally consistent."""
    errors = []

    for node_type in NodeType:
        if node_type not in table:
            errors.append(f"Missing config for node type: {node_type.value}")

    for node_type, config in table.items():
        if config.handles:
            ids = config.handle_ids
            if len(ids) != len(set(ids)):
                errors.append(f"Duplicate handle ids for {node_type.value}: {ids}")
            if config.max_outgoing_edges is not None and config.max_outgoing_edges < len(ids):
                errors.append(
                    f"{node_type.value} declares {len(ids)} handles but "
                    f"max_outgoing_edges={config.max_outgoing_edges}"
                )
        if not config.allows_outgoing and config.max_outgoing_edges:
            errors.append(f"{node_type.value} forbids outgoing edges but sets a limit")
        if config.max_incoming_edges is not None and config.max_incoming_edges < 0:
            errors.append(f"Negative max_incoming_edges for {node_type.value}")

    return errors


# Run validation on module load
_validation_errors = _validate_config(NODE_TYPE_CONFIG)
if _validation_errors:
    for err in _validation_errors:
        warnings.warn(f"Node type config validation: {err}")
