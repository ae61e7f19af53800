"""
FUNNEL BUILDER MAIN - Entry Point and CLI

Commands:
    validate - Run the structural validator over a saved funnel
    connect  - Check (and optionally commit) a connection in a saved funnel
    types    - Show the node type table

Usage:
    # Validate a funnel export
    python main.py validate my_funnel.json

    # Machine-readable report
    python main.py validate my_funnel.json --json

    # Would the upsell's "accepted" handle be allowed to reach the thank-you page?
    python main.py connect my_funnel.json node-3 node-5 --handle accepted

    # Commit the connection and write the updated funnel
    python main.py connect my_funnel.json node-3 node-5 --handle accepted -o out.json

    # List node types and their limits
    python main.py types
"""
import logging
import sys
from typing import List, Optional

logger = logging.getLogger("funnel_builder")


def _load_graph(args):
    """Read a funnel file into a FunnelGraph, exiting on malformed input."""
    from core.funnel_graph import FunnelGraph
    from core.serialization import FunnelImportError, read_funnel_file

    try:
        document = read_funnel_file(args.file)
    except FileNotFoundError:
        print(f"File not found: {args.file}")
        sys.exit(1)
    except FunnelImportError as e:
        print(f"Import failed: {e}")
        for problem in e.problems:
            print(f"  - {problem}")
        sys.exit(1)

    return FunnelGraph.from_document(document, config=args.config_obj)


def cmd_validate(args):
    """Handle validate command - structural report for a funnel file."""
    from core.schemas import encode_json_pretty

    graph = _load_graph(args)
    result = graph.validate()

    if args.json:
        print(encode_json_pretty(result).decode("utf-8"))
    else:
        print(f"Funnel: {graph.name} ({graph.node_count} nodes, {graph.edge_count} edges)")
        if not result.errors and not result.warnings:
            print("No issues found")
        for issue in result.all_issues:
            print(f"  {issue.severity.value.upper():<8} {issue.message}")
        print(f"{len(result.errors)} error(s), {len(result.warnings)} warning(s)")

    if not result.is_valid:
        sys.exit(1)


def cmd_connect(args):
    """Handle connect command - run the connection rules for one candidate edge."""
    from core.schemas import Connection
    from core.serialization import write_funnel_file

    graph = _load_graph(args)
    connection = Connection(
        source=args.source,
        target=args.target,
        source_handle=args.handle,
    )

    result = graph.connect(connection)
    if not result.valid:
        print(f"Rejected: {result.error}")
        sys.exit(1)

    print(f"Accepted: {connection.to_edge().id}")
    if args.output:
        path = write_funnel_file(graph, args.output)
        print(f"Wrote {path}")


def cmd_types(args):
    """Handle types command - print the node type table."""
    from core.ontology import get_node_type_config

    def limit(value: Optional[int]) -> str:
        return "-" if value is None else str(value)

    print(f"{'TYPE':<12} {'LABEL':<12} {'IN':>3} {'OUT':>3}  HANDLES")
    for node_type, config in get_node_type_config().items():
        handles = ", ".join(
            f"{handle.id} ({handle.label})" for handle in (config.handles or ())
        )
        print(
            f"{node_type.value:<12} {config.label:<12} "
            f"{limit(config.max_incoming_edges):>3} {limit(config.max_outgoing_edges):>3}  "
            f"{handles or '-'}"
        )


def main(argv: Optional[List[str]] = None):
    """Main entry point with subcommands."""
    import argparse
    from infrastructure.config import configure_logging, load_config

    parser = argparse.ArgumentParser(
        description="Funnel Builder - Sales Funnel Validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a funnel.toml (defaults to config/funnel.toml)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ...)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a funnel file")
    validate_parser.add_argument("file", help="Path to a funnel JSON export")
    validate_parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    validate_parser.set_defaults(func=cmd_validate)

    # connect command
    connect_parser = subparsers.add_parser("connect", help="Check a connection between two nodes")
    connect_parser.add_argument("file", help="Path to a funnel JSON export")
    connect_parser.add_argument("source", help="Source node id")
    connect_parser.add_argument("target", help="Target node id")
    connect_parser.add_argument("--handle", default=None, help="Source handle (accepted/declined)")
    connect_parser.add_argument("--output", "-o", default=None, help="Write the updated funnel here")
    connect_parser.set_defaults(func=cmd_connect)

    # types command
    types_parser = subparsers.add_parser("types", help="Show the node type table")
    types_parser.set_defaults(func=cmd_types)

    args = parser.parse_args(argv)

    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)
    args.config_obj = config

    if args.command is None:
        parser.print_help()
        sys.exit(2)

    logger.debug(f"Running command: {args.command}")
    args.func(args)


if __name__ == "__main__":
    main()
