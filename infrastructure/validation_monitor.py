"""
VALIDATION MONITOR - Live Structural Report

Keeps the structural validation report of one FunnelGraph current. The
monitor listens on the graph's event bus and recomputes after every graph
change; when the new report differs from the previous one it publishes
VALIDATION_CHANGED so summary panels can redraw.

Usage:
    graph = FunnelGraph()
    with ValidationMonitor(graph) as monitor:
        graph.create_node(NodeType.SALES_PAGE)
        print(monitor.total_issue_count)
"""
import logging
from typing import List, Optional

from core.schemas import FunnelIssue, FunnelResult
from infrastructure.event_bus import (
    GRAPH_CHANGE_EVENTS,
    EventType,
    FunnelEvent,
    publish_event,
)


logger = logging.getLogger(__name__)


class ValidationMonitor:
    """Recomputes a graph's FunnelResult on every change event."""

    def __init__(self, graph, attach: bool = True):
        self.graph = graph
        self._result: FunnelResult = graph.validate()
        self._attached = False
        if attach:
            self.attach()

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def attach(self) -> None:
        """Subscribe to graph change events (idempotent)."""
        if self._attached:
            return
        for event_type in GRAPH_CHANGE_EVENTS:
            self.graph.event_bus.subscribe(event_type, self._on_graph_changed)
        self._attached = True
        self.refresh()

    def detach(self) -> None:
        if not self._attached:
            return
        for event_type in GRAPH_CHANGE_EVENTS:
            self.graph.event_bus.unsubscribe(event_type, self._on_graph_changed)
        self._attached = False

    @property
    def attached(self) -> bool:
        return self._attached

    def _on_graph_changed(self, event: FunnelEvent) -> None:
        logger.debug(f"Revalidating after {event.type.value}")
        self.refresh()

    # =========================================================================
    # REPORT
    # =========================================================================

    def refresh(self) -> FunnelResult:
        """
        Recompute the report now.

        Returns:
            The current FunnelResult. VALIDATION_CHANGED is published only
            when it differs from the previous report.
        """
        previous = self._result
        self._result = self.graph.validate()

        if self._result != previous:
            logger.debug(
                f"Validation changed: {len(self.errors)} error(s), "
                f"{len(self.warnings)} warning(s)"
            )
            publish_event(
                EventType.VALIDATION_CHANGED,
                {
                    "is_valid": self._result.is_valid,
                    "error_count": len(self._result.errors),
                    "warning_count": len(self._result.warnings),
                    "issue_ids": self._result.issue_ids,
                },
                source="validation_monitor",
                bus=self.graph.event_bus,
            )
        return self._result

    @property
    def result(self) -> FunnelResult:
        return self._result

    @property
    def is_valid(self) -> bool:
        return self._result.is_valid

    @property
    def errors(self) -> List[FunnelIssue]:
        return self._result.errors

    @property
    def warnings(self) -> List[FunnelIssue]:
        return self._result.warnings

    @property
    def has_errors(self) -> bool:
        return len(self._result.errors) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self._result.warnings) > 0

    @property
    def total_issue_count(self) -> int:
        return len(self._result.errors) + len(self._result.warnings)

    @property
    def all_issues(self) -> List[FunnelIssue]:
        """Errors first, then warnings."""
        return self._result.all_issues

    def issues_for_node(self, node_id: str) -> List[FunnelIssue]:
        return [issue for issue in self.all_issues if issue.node_id == node_id]

    def first_issue(self) -> Optional[FunnelIssue]:
        issues = self.all_issues
        return issues[0] if issues else None

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        self.attach()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.detach()
        return False
