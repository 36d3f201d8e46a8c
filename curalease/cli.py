"""curalease CLI: leased curation sessions.

Usage:
    curalease serve                      Run the REST API
    curalease import-items <file>        Register work items from JSON
    curalease allocate --curator alice   Lease a batch and open a session
    curalease sessions                   List sessions
    curalease show <session_id>          Session summary
    curalease finalize <id> <action>     commit | discard | revisit
    curalease sweep                      Reap expired leases, abandon idle sessions
    curalease stats                      Curation progress
"""

import argparse
import json
import sys
from typing import Any, List, Optional

from curalease.exceptions import CurationError


def _json_out(data: Any) -> None:
    """Print data as formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def _get_service(args: argparse.Namespace):
    """Build a CurationService from CURALEASE_* env vars and CLI overrides."""
    from curalease.configs.base import CurationConfig
    from curalease.service import CurationService

    config = CurationConfig.from_env()
    if getattr(args, "db", None):
        config.store.db_path = args.db
    return CurationService(config)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

def cmd_serve(args: argparse.Namespace) -> None:
    """Run the REST API server."""
    import os

    from curalease.api.app import run

    if args.db:
        os.environ["CURALEASE_DB_PATH"] = args.db
    run(host=args.host, port=args.port, reload=args.reload)


def cmd_import_items(args: argparse.Namespace) -> None:
    """Register work items from a JSON file (a list, or {"items": [...]})."""
    with open(args.file, "r") as f:
        data = json.load(f)
    items = data.get("items", []) if isinstance(data, dict) else data
    if not items:
        print("No work items found in file.")
        return
    with _get_service(args) as service:
        count = service.register_items(items)
    if args.json:
        _json_out({"registered": count})
    else:
        print(f"Registered {count} work items.")


def cmd_allocate(args: argparse.Namespace) -> None:
    """Lease a batch of work items for a curator."""
    with _get_service(args) as service:
        result = service.allocate(args.curator, args.batch_size)
    if args.json:
        _json_out(result)
        return
    session = result["session"]
    print(f"Session {session['session_id']} for {session['curator_id']}: "
          f"{result['allocated']}/{result['requested']} items")
    for item in result["items"]:
        print(f"  {item['item_id']:<16} conf={item['best_confidence']:.3f}  evidence={item['evidence_count']}")
    if result["dropped_item_ids"]:
        print(f"  dropped (claimed concurrently): {', '.join(result['dropped_item_ids'])}")


def cmd_sessions(args: argparse.Namespace) -> None:
    """List sessions."""
    with _get_service(args) as service:
        result = service.list_sessions(curator_id=args.curator, status=args.status, limit=args.limit)
    if args.json:
        _json_out(result)
        return
    sessions = result["sessions"]
    if not sessions:
        print("No sessions found.")
        return
    for s in sessions:
        print(
            f"  {s['session_id']}  {s['curator_id']:<12} {s['status']:<12} "
            f"{s['reviewed_count']}/{s['target_size']} reviewed  "
            f"{s['total_decisions']} decisions  created {s['created_at']}"
        )
    summary = result["summary"]
    print(f"\nTotal: {summary['total_sessions']} sessions "
          f"({summary['active_sessions']} active, {summary['committed_sessions']} committed)")


def cmd_show(args: argparse.Namespace) -> None:
    """Show one session with its decision statistics."""
    with _get_service(args) as service:
        result = service.get_session_summary(args.session_id)
    if args.json:
        _json_out(result)
        return
    session = result["session"]
    stats = result["statistics"]
    print(f"Session:     {session['session_id']}")
    print(f"Curator:     {session['curator_id']}")
    print(f"Status:      {session['status']}")
    print(f"Progress:    {session['reviewed_count']}/{session['target_size']} "
          f"({result['completion_percentage']}%)")
    print(f"Live leases: {result['live_leases']}")
    print(f"Decisions:   {stats['total_decisions']} "
          f"(domains {stats['has_domain_count']}, fragments {stats['fragment_count']}, "
          f"flagged {stats['flagged_count']})")
    if session.get("notes"):
        print(f"Notes:       {session['notes']}")


def cmd_finalize(args: argparse.Namespace) -> None:
    """Finalize a session."""
    with _get_service(args) as service:
        result = service.finalize(args.session_id, args.action, args.notes)
    if args.json:
        _json_out(result)
    else:
        print(f"Session {result['session_id']} -> {result['session_status']} "
              f"({result['committed_items']} items committed, {result['released_leases']} leases released)")
        if result.get("lost_item_ids"):
            print(f"  not committed (lease lost): {', '.join(result['lost_item_ids'])}")


def cmd_sweep(args: argparse.Namespace) -> None:
    """Run one reaper sweep."""
    with _get_service(args) as service:
        result = service.reap()
    if args.json:
        _json_out(result)
    else:
        print(f"Reaped {len(result['reaped_leases'])} leases, "
              f"abandoned {len(result['abandoned_sessions'])} sessions.")
        for error in result["errors"]:
            print(f"  {error['step']} failed: {error['error']}", file=sys.stderr)


def cmd_stats(args: argparse.Namespace) -> None:
    """Curation progress statistics."""
    with _get_service(args) as service:
        result = service.statistics(args.days)
    if args.json:
        _json_out(result)
        return
    sessions = result["sessions"]
    decisions = result["decisions"]
    print(f"Last {result['window_days']} days:")
    print(f"  Sessions:   {sessions['total_sessions']} "
          f"({sessions['committed_sessions']} committed, {sessions['active_sessions']} active)")
    print(f"  Curators:   {sessions['unique_curators']}")
    print(f"  Decisions:  {decisions['total_decisions']} "
          f"(avg confidence {decisions['avg_confidence']}, avg review {decisions['avg_review_time']}s)")
    print(f"Progress:     {result['items_curated']}/{result['total_curable_items']} "
          f"({result['completion_percentage']}%)")
    print(f"Live leases:  {result['live_leases']}")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    from curalease import __version__

    parser = argparse.ArgumentParser(
        prog="curalease",
        description="curalease: leased work allocation for curators",
    )
    parser.add_argument(
        "--version", action="version", version=f"curalease {__version__}",
    )
    parser.add_argument("--db", help="SQLite database path (overrides CURALEASE_DB_PATH)")
    sub = parser.add_subparsers(dest="command")

    # serve
    p_serve = sub.add_parser("serve", help="Run the REST API")
    p_serve.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    p_serve.add_argument("--port", type=int, default=8200, help="Port to listen on")
    p_serve.add_argument("--reload", action="store_true", help="Enable auto-reload")

    # import-items
    p_import = sub.add_parser("import-items", help="Register work items from JSON")
    p_import.add_argument("file", help="JSON file to import")
    p_import.add_argument("--json", action="store_true", help="JSON output")

    # allocate
    p_alloc = sub.add_parser("allocate", help="Lease a batch and open a session")
    p_alloc.add_argument("--curator", required=True, help="Curator ID")
    p_alloc.add_argument("--batch-size", type=int, default=None, help="Items to lease")
    p_alloc.add_argument("--json", action="store_true", help="JSON output")

    # sessions
    p_sessions = sub.add_parser("sessions", help="List sessions")
    p_sessions.add_argument("--curator", default=None, help="Filter by curator")
    p_sessions.add_argument(
        "--status",
        choices=["in_progress", "abandoned", "committed", "discarded", "completed"],
        help="Filter by status",
    )
    p_sessions.add_argument("--limit", type=int, default=20, help="Max results")
    p_sessions.add_argument("--json", action="store_true", help="JSON output")

    # show
    p_show = sub.add_parser("show", help="Show a session")
    p_show.add_argument("session_id", help="Session ID")
    p_show.add_argument("--json", action="store_true", help="JSON output")

    # finalize
    p_final = sub.add_parser("finalize", help="Finalize a session")
    p_final.add_argument("session_id", help="Session ID")
    p_final.add_argument("action", choices=["commit", "discard", "revisit"], help="Finalize action")
    p_final.add_argument("--notes", default=None, help="Final notes")
    p_final.add_argument("--json", action="store_true", help="JSON output")

    # sweep
    p_sweep = sub.add_parser("sweep", help="Reap expired leases and abandon idle sessions")
    p_sweep.add_argument("--json", action="store_true", help="JSON output")

    # stats
    p_stats = sub.add_parser("stats", help="Curation statistics")
    p_stats.add_argument("--days", type=int, default=None, help="Window in days")
    p_stats.add_argument("--json", action="store_true", help="JSON output")

    return parser


COMMAND_MAP = {
    "serve": cmd_serve,
    "import-items": cmd_import_items,
    "allocate": cmd_allocate,
    "sessions": cmd_sessions,
    "show": cmd_show,
    "finalize": cmd_finalize,
    "sweep": cmd_sweep,
    "stats": cmd_stats,
}


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    handler = COMMAND_MAP.get(args.command)
    if handler:
        try:
            handler(args)
        except KeyboardInterrupt:
            print("\nInterrupted.")
            sys.exit(1)
        except CurationError as e:
            print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            sys.exit(2)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
