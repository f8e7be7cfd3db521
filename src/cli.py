"""
Command-line interface for Cartograph.

Usage:
    cartograph index [--force]
    cartograph search <query> [--max N] [--min-score N] [--level 0-4]
    cartograph extract <keys...> | --query <query> [--output DIR]
    cartograph reinject [artifact] [--snapshot FILE] [--force] [--dry-run] [--no-backup]
    cartograph annotate <query>
    cartograph stats

Global options: --project <path>, --verbose
"""

import argparse
import json
import logging
import sys

from .engine import CartographEngine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cartograph",
        description="Cartograph - method index, search and surgical reinjection",
    )
    parser.add_argument("--project", help="Project root (default: $CARTOGRAPH_PROJECT_PATH or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # index
    index_parser = subparsers.add_parser("index", help="Build or update the method index")
    index_parser.add_argument("--force", action="store_true", help="Re-parse every file")
    index_parser.add_argument("--progress", action="store_true", help="Show a progress bar")

    # search
    search_parser = subparsers.add_parser("search", help="Find methods relevant to a query")
    search_parser.add_argument("query", help="Free-text query, may contain Class.method")
    search_parser.add_argument("--max", type=int, default=10, dest="max_methods", help="Max results")
    search_parser.add_argument("--min-score", type=int, default=3, help="Minimum score")
    search_parser.add_argument("--role", action="append", dest="roles", help="Only these roles (repeatable)")
    search_parser.add_argument("--include-private", action="store_true", help="Include private methods")
    search_parser.add_argument("--level", type=int, choices=range(5), default=1, help="Detail level 0-4")

    # extract
    extract_parser = subparsers.add_parser("extract", help="Snapshot methods into an editable artifact")
    extract_parser.add_argument("keys", nargs="*", help="Method keys (Class.method)")
    extract_parser.add_argument("--query", help="Extract the search results of this query")
    extract_parser.add_argument("--output", help="Output directory (default: .cartograph/work)")

    # reinject
    reinject_parser = subparsers.add_parser("reinject", help="Apply an edited artifact to the sources")
    reinject_parser.add_argument("artifact", nargs="?", help="Edited artifact (default: .cartograph/work/methods.js)")
    reinject_parser.add_argument("--snapshot", help="Snapshot file (default: next to the artifact)")
    reinject_parser.add_argument("--force", action="store_true", help="Ignore files changed since the snapshot")
    reinject_parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    reinject_parser.add_argument("--no-backup", action="store_true", help="Do not write .backup files")

    # annotate
    annotate_parser = subparsers.add_parser("annotate", help="Heuristic annotations for a query's results")
    annotate_parser.add_argument("query", help="Free-text query")

    # stats
    subparsers.add_parser("stats", help="Index and annotation statistics")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    commands = {
        "index": cmd_index,
        "search": cmd_search,
        "extract": cmd_extract,
        "reinject": cmd_reinject,
        "annotate": cmd_annotate,
        "stats": cmd_stats,
    }

    try:
        engine = CartographEngine.for_project(args.project)
        result = commands[args.command](engine, args)
        print(json.dumps(result, indent=2, ensure_ascii=False))
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if isinstance(result, dict) and result.get("success") is False:
        sys.exit(1)


def cmd_index(engine: CartographEngine, args) -> dict:
    return engine.index_all(force=args.force, show_progress=args.progress).to_dict()


def cmd_search(engine: CartographEngine, args) -> dict:
    session = engine.create_search_session(
        args.query,
        max_methods=args.max_methods,
        min_score=args.min_score,
        roles=args.roles,
        include_private=args.include_private,
    )
    return {
        "query": args.query,
        "count": session.count,
        "results": session.get_at_level(args.level),
    }


def cmd_extract(engine: CartographEngine, args) -> dict:
    if not args.keys and not args.query:
        raise ValueError("give method keys or --query")
    return engine.extract(keys=args.keys or None, query=args.query, output_dir=args.output)


def cmd_reinject(engine: CartographEngine, args) -> dict:
    result = engine.reinject(
        artifact_path=args.artifact,
        snapshot_path=args.snapshot,
        force=args.force,
        backup=not args.no_backup,
        dry_run=args.dry_run,
    )
    return result.to_dict()


def cmd_annotate(engine: CartographEngine, args) -> dict:
    return engine.annotate(args.query)


def cmd_stats(engine: CartographEngine, args) -> dict:
    return engine.stats()


if __name__ == "__main__":
    main()
