"""
`codegraph` command line interface.

Commands
--------
codegraph extract --extractors all --output graph        -- extract and upsert into the store
codegraph extract --output json --file out/graph.json    -- extract to nodes.json / relationships.json
codegraph extract --output console                       -- print counts only
codegraph extract --watch                                -- extract, then re-run on file changes
codegraph query --find-entity User --include-related     -- JSON answer for tools and assistants
codegraph query --find-symbol createUserSession --format text
codegraph query --find-pattern add_field --for-entity User
codegraph stats                                          -- node / relationship counts by type

Exit codes: 0 on success, 2 for configuration errors, 1 when the sink is
unreachable, every extractor failed or a query could not be answered.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Optional

from tqdm import tqdm

from .config import Config
from .correlation import CorrelationAnalyzer, build_matcher
from .errors import CodeGraphError, ConfigError, GraphStoreError, OperationCancelled
from .extractors.orchestrator import ExtractionOrchestrator, ExtractorOutcome, OrchestrationResult
from .extractors.registry import resolve_kinds
from .graph.model import GraphNode, NodeType
from .query.context_manager import build_suggestion
from .query.engine import IntelligentQueryEngine, QueryResult
from .query.intent import Action, detect_action
from .store import GraphStats, create_store, load_json_snapshot, write_json_snapshot

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

OUTPUTS = ("graph", "json", "console")
QUERY_TYPES = ("find_entity", "find_symbol", "find_pattern")

RELATED_FILE_BUCKETS = ("schemas", "apis", "ui_components", "tests", "migrations", "other")

# bucket -> path segments, checked in order
_FILE_BUCKETS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("migrations", ("migration", "migrations", "alembic")),
    ("tests", ("test", "tests", "__tests__", "spec")),
    ("schemas", ("schema", "schemas", "types", "models", "entities", "prisma")),
    ("apis", ("api", "apis", "trpc", "routes", "router", "routers", "endpoints", "handlers")),
    ("ui_components", ("ui", "components", "component", "pages", "views", "forms", "form")),
)

_COMMON_FIELD_TYPES = {
    "typescript": {
        "string": "z.string().optional()",
        "number": "z.number().optional()",
        "date": "z.date().optional()",
        "boolean": "z.boolean().optional()",
        "email": "z.string().email().optional()",
        "url": "z.string().url().optional()",
    },
    "python": {
        "string": "Optional[str] = None",
        "number": "Optional[float] = None",
        "date": "Optional[datetime] = None",
        "boolean": "Optional[bool] = None",
        "email": "Optional[EmailStr] = None",
        "url": "Optional[HttpUrl] = None",
    },
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    if not logging.root.handlers:
        logging.basicConfig(level=level, format="%(levelname)s  %(name)s  %(message)s")
    else:
        logging.root.setLevel(level)


def _load_config(args: argparse.Namespace) -> Config:
    if args.config and not os.path.isfile(args.config):
        raise ConfigError(f"Config file not found: {args.config}")
    return Config.load(args.config)


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _print_outcomes(outcomes: dict[str, ExtractorOutcome], stream=None) -> None:
    stream = stream or sys.stdout
    for name, outcome in outcomes.items():
        if outcome.success:
            print(f"  {name:<10} ok      {outcome.node_count:>6} nodes  "
                  f"{outcome.relationship_count:>6} rels  "
                  f"{outcome.source_count:>5} sources  {outcome.elapsed_seconds:.2f}s", file=stream)
        else:
            print(f"  {name:<10} FAILED  {outcome.error}", file=stream)


def _print_counts(result: OrchestrationResult) -> None:
    stats = GraphStats.from_elements(result.nodes, result.relationships)
    print(f"\nNodes: {stats.node_count}")
    for name, count in sorted(stats.node_types.items()):
        print(f"  {name:<12} {count}")
    print(f"Relationships: {stats.relationship_count} ({result.correlated} correlated)")
    for name, count in sorted(stats.relationship_types.items()):
        print(f"  {name:<12} {count}")


def _json_output_dir(args: argparse.Namespace, config: Config) -> str:
    if args.file:
        return os.path.dirname(os.path.abspath(args.file)) or "."
    return config.OUTPUT_DIR


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------

def _run_extraction(args: argparse.Namespace, config: Config, kinds) -> int:
    orchestrator = ExtractionOrchestrator(
        working_dir=args.working_dir,
        config=config,
        correlator=CorrelationAnalyzer(config, build_matcher(config, logger), logger),
        logger=logger,
    )

    pbar = tqdm(total=len(kinds), unit="extractor", desc="Extracting", disable=not sys.stderr.isatty())

    def _progress(outcome: ExtractorOutcome) -> None:
        pbar.set_postfix_str(outcome.name, refresh=False)
        pbar.update(1)

    try:
        result = orchestrator.run(kinds, progress_callback=_progress)
    finally:
        pbar.close()

    if result.all_failed:
        print("All extractors failed:", file=sys.stderr)
        _print_outcomes(result.outcomes, stream=sys.stderr)
        return EXIT_FAILURE

    print(f"Extracted from {os.path.abspath(args.working_dir)} in {result.elapsed_seconds:.1f}s")
    _print_outcomes(result.outcomes)

    if args.output == "console":
        _print_counts(result)
    elif args.output == "json":
        out_dir = _json_output_dir(args, config)
        nodes_path, rels_path = write_json_snapshot(out_dir, result.nodes, result.relationships)
        print(f"\nWrote {len(result.nodes)} nodes to {nodes_path}")
        print(f"Wrote {len(result.relationships)} relationships to {rels_path}")
    else:
        with create_store(config, logger) as store:
            if args.clear:
                store.clear_database()
            if args.clear or args.full:
                summary = store.import_data(result.nodes, result.relationships)
            else:
                summary = store.incremental_update(result.nodes, result.relationships,
                                                   extractors=result.succeeded)
        print(
            f"\nGraph store ({config.BACKEND}) updated [{summary.mode}]:\n"
            f"  Nodes:          {summary.nodes_written}\n"
            f"  Relationships:  {summary.relationships_written}\n"
            f"  Removed stale:  {summary.removed}\n"
            f"  Time:           {summary.elapsed_seconds:.1f}s"
        )

    if result.failed:
        print(f"\nWarning: {len(result.failed)} extractor(s) failed: {', '.join(result.failed)}",
              file=sys.stderr)
    return EXIT_OK


def _cmd_extract(args: argparse.Namespace) -> int:
    """Validate everything up front, run once, then optionally watch."""
    try:
        config = _load_config(args)
        kinds = resolve_kinds(args.extractors)
        if not os.path.isdir(args.working_dir):
            raise ConfigError(f"Working directory not found: {args.working_dir}")
        if args.output == "graph":
            config.validate_store()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        code = _run_extraction(args, config, kinds)
    except GraphStoreError as exc:
        print(f"Graph store error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except (OperationCancelled, KeyboardInterrupt):
        print("\nExtraction interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED

    if args.watch:
        from .watcher import ExtractionWatcher

        # Only the first run clears the store
        args.clear = False

        def _rerun(changed: list[str]) -> None:
            print(f"\n{len(changed)} file(s) changed; re-extracting...")
            try:
                _run_extraction(args, config, kinds)
            except CodeGraphError as exc:
                print(f"Re-run failed: {exc}", file=sys.stderr)

        print("\nWatching for changes... (Ctrl+C to stop)")
        ExtractionWatcher(_rerun, args.working_dir).start()
        print("\nWatch mode stopped.")
    return code


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------

def _load_graph(args: argparse.Namespace, config: Config):
    if args.source == "json":
        return load_json_snapshot(args.data_dir or config.OUTPUT_DIR)
    with create_store(config, logger, read_only=True) as store:
        return store.load_snapshot()


def _node_summary(node: GraphNode, score: float = 0.0) -> dict:
    summary = {
        "id": node.id,
        "name": node.name,
        "type": node.type.value,
        "file_path": node.file_path,
        "description": str(node.properties.get("description") or ""),
        "package": node.package,
        "score": round(score, 4),
    }
    if node.type == NodeType.ENTITY:
        summary["current_fields"] = list(node.properties.get("fields") or [])
    return summary


def select_primary_target(result: QueryResult, target: str) -> Optional[dict]:
    """Exact name match, then a definition containing *target*, then the top result."""
    if not result.nodes:
        return None
    wanted = (target or "").strip().lower()
    chosen = next((s for s in result.nodes if s.node.name.lower() == wanted), None)
    if chosen is None:
        chosen = next(
            (s for s in result.nodes
             if wanted and wanted in s.node.name.lower()
             and s.node.type in (NodeType.ENTITY, NodeType.CLASS, NodeType.INTERFACE)),
            None,
        )
    if chosen is None:
        chosen = result.nodes[0]
    return _node_summary(chosen.node, chosen.score)


def bucket_related_files(nodes, name: str) -> dict[str, list[str]]:
    """
    Group file paths of nodes related to *name* (by node name or path) into
    schemas, apis, ui_components, tests, migrations and other.
    """
    buckets: dict[str, list[str]] = {key: [] for key in RELATED_FILE_BUCKETS}
    wanted = (name or "").lower()
    if not wanted:
        return buckets
    for node in nodes:
        path = node.file_path
        if not path or (wanted not in node.name.lower() and wanted not in path.lower()):
            continue
        parts = set(path.lower().replace("\\", "/").replace(".", "/").split("/"))
        bucket = next((key for key, words in _FILE_BUCKETS if parts & set(words)), "other")
        if path not in buckets[bucket]:
            buckets[bucket].append(path)
    for paths in buckets.values():
        paths.sort()
    return buckets


def _entity_suggestions(primary: dict) -> dict:
    language = "python" if primary.get("file_path", "").endswith(".py") else "typescript"
    add_field = build_suggestion(Action.ADD_FIELD, primary["name"], [primary["file_path"]] if primary.get("file_path") else [])
    return {
        "add_field": {"description": add_field.description, "steps": add_field.steps},
        "common_field_types": dict(_COMMON_FIELD_TYPES[language]),
    }


def _pattern_suggestions(engine: IntelligentQueryEngine, pattern: str, for_entity: Optional[str]) -> list[dict]:
    action = detect_action(pattern)
    if action == Action.UNKNOWN:
        return []
    target = for_entity or "the entity"
    related = bucket_related_files(engine.nodes.values(), for_entity) if for_entity else None
    files = [p for paths in (related or {}).values() for p in paths]
    suggestion = build_suggestion(action, target, files)
    return [{
        "name": action.value,
        "title": suggestion.title,
        "description": suggestion.description,
        "steps": suggestion.steps,
        "priority": suggestion.priority,
        "example_files": related,
    }]


def run_query(engine: IntelligentQueryEngine, query_type: str, target: str,
              for_entity: Optional[str] = None, include_related: bool = False) -> dict:
    """Answer one CLI query and return the JSON-ready payload."""
    start = time.perf_counter()
    results = {"primary_target": None, "related_files": {}, "suggestions": {}, "patterns": []}

    if query_type == "find_entity":
        result = engine.find_entity(target, include_related=include_related)
        results["primary_target"] = select_primary_target(result, target)
        if include_related and results["primary_target"]:
            results["related_files"] = bucket_related_files(engine.nodes.values(),
                                                            results["primary_target"]["name"])
            results["suggestions"] = _entity_suggestions(results["primary_target"])
    elif query_type == "find_symbol":
        result = engine.find_symbol(target, include_related=include_related)
        results["primary_target"] = select_primary_target(result, target)
        if include_related and results["primary_target"]:
            results["related_files"] = bucket_related_files(engine.nodes.values(),
                                                            results["primary_target"]["name"])
    else:
        result = engine.find_pattern(" ".join(filter(None, [target, for_entity])),
                                     include_related=include_related)
        results["patterns"] = _pattern_suggestions(engine, target, for_entity)

    if include_related:
        results["relationships"] = [r.to_dict() for r in result.relationships]
    if not result.nodes:
        results["suggestions"] = {"hints": ["Try broader terms", "Check the spelling of the name",
                                            "Run `codegraph extract` if the graph is out of date"]}

    return {
        "success": True,
        "query": {"type": query_type, "target": target, "for_entity": for_entity,
                  "include_related": include_related},
        "results": results,
        "metadata": {
            "execution_time_ms": round((time.perf_counter() - start) * 1000, 2),
            "confidence": round(result.confidence, 4),
            "total_found": result.total_found,
        },
    }


def _print_query_text(payload: dict) -> None:
    query, results, meta = payload["query"], payload["results"], payload["metadata"]
    print(f"\nQuery:      {query['type']} '{query['target']}'")
    print(f"Time:       {meta['execution_time_ms']}ms")
    print(f"Confidence: {meta['confidence'] * 100:.1f}%  ({meta['total_found']} found)\n")

    target = results.get("primary_target")
    if target:
        print("Target:")
        print(f"  Name:     {target['name']}")
        print(f"  Type:     {target['type']}")
        print(f"  File:     {target['file_path']}")
        print(f"  Package:  {target['package']}")
        if target.get("current_fields"):
            print(f"  Fields:   {', '.join(target['current_fields'])}")
        print()
    if any(results.get("related_files", {}).values()):
        print("Related files:")
        for bucket, paths in results["related_files"].items():
            if paths:
                print(f"  {bucket}: {', '.join(paths)}")
        print()
    for i, pattern in enumerate(results.get("patterns", []), 1):
        print(f"{i}. {pattern['title']}")
        print(f"   {pattern['description']}")
        for step in pattern["steps"]:
            print(f"   - {step}")
    for hint in results.get("suggestions", {}).get("hints", []):
        print(f"  hint: {hint}")


def _cmd_query(args: argparse.Namespace) -> int:
    if args.find_entity is not None:
        query_type, target = "find_entity", args.find_entity
    elif args.find_symbol is not None:
        query_type, target = "find_symbol", args.find_symbol
    else:
        query_type, target = "find_pattern", args.find_pattern
    query_echo = {"type": query_type, "target": target, "for_entity": args.for_entity,
                  "include_related": args.include_related}

    try:
        config = _load_config(args)
        nodes, relationships = _load_graph(args, config)
        engine = IntelligentQueryEngine(nodes, relationships, config, logger)
        payload = run_query(engine, query_type, target, args.for_entity, args.include_related)
    except Exception as exc:
        logger.debug("Query failed", exc_info=True)
        _print_json({"success": False, "error": str(exc), "query": query_echo})
        return EXIT_FAILURE

    if args.format == "text":
        _print_query_text(payload)
    else:
        _print_json(payload)
    return EXIT_OK


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------

def _cmd_stats(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        if args.source == "json":
            stats = GraphStats.from_elements(*load_json_snapshot(args.data_dir or config.OUTPUT_DIR))
        else:
            with create_store(config, logger, read_only=True) as store:
                stats = store.get_stats()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except GraphStoreError as exc:
        print(f"Graph store error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    if args.format == "json":
        _print_json(stats.to_dict())
        return EXIT_OK

    print("\nCode Graph Statistics")
    print("=" * 40)
    print(f"  {'Nodes':<20} {stats.node_count}")
    for name, count in sorted(stats.node_types.items()):
        print(f"    {name:<18} {count}")
    print(f"  {'Relationships':<20} {stats.relationship_count}")
    for name, count in sorted(stats.relationship_types.items()):
        print(f"    {name:<18} {count}")
    print(f"  {'Last updated':<20} {stats.last_updated or '-'}")
    print()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Path to a .codegraph.yaml file")
    common.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for progress logging, -vv for debug logging")

    parser = argparse.ArgumentParser(
        prog="codegraph",
        description="Code knowledge graph: extraction, correlation, storage and query",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- extract ---
    extract_p = subparsers.add_parser("extract", parents=[common],
                                      help="Extract the source tree into the graph")
    extract_p.add_argument("--extractors", default="all",
                           help="Comma-separated extractor names, or 'all' (default)")
    extract_p.add_argument("--output", choices=OUTPUTS, default="graph",
                           help="Sink: graph store, JSON files or console summary")
    extract_p.add_argument("--clear", action="store_true",
                           help="Delete the stored graph before importing")
    extract_p.add_argument("--file", default=None,
                           help="JSON output file; its directory receives nodes.json and relationships.json")
    extract_p.add_argument("--working-dir", default=".", help="Root of the source tree")
    mode = extract_p.add_mutually_exclusive_group()
    mode.add_argument("--incremental", dest="full", action="store_false",
                      help="Upsert and sweep stale elements (default)")
    mode.add_argument("--full", dest="full", action="store_true",
                      help="Upsert without sweeping")
    extract_p.set_defaults(full=False)
    extract_p.add_argument("--watch", action="store_true",
                           help="After extracting, re-run on file changes")
    extract_p.set_defaults(func=_cmd_extract)

    # --- query ---
    query_p = subparsers.add_parser("query", parents=[common], help="Query the graph")
    target = query_p.add_mutually_exclusive_group(required=True)
    target.add_argument("--find-entity", metavar="NAME", help="Find an entity / class definition")
    target.add_argument("--find-symbol", metavar="NAME", help="Find any symbol by name")
    target.add_argument("--find-pattern", metavar="PATTERN", help="Find an implementation pattern")
    query_p.add_argument("--for-entity", metavar="NAME", default=None,
                         help="Entity the pattern applies to")
    query_p.add_argument("--include-related", action="store_true",
                         help="Include related files, relationships and suggestions")
    query_p.add_argument("--format", choices=("json", "text"), default="json")
    query_p.add_argument("--source", choices=("graph", "json"), default="graph",
                         help="Read from the graph store or a JSON snapshot")
    query_p.add_argument("--data-dir", default=None,
                         help="JSON snapshot directory (default: output_dir from config)")
    query_p.set_defaults(func=_cmd_query)

    # --- stats ---
    stats_p = subparsers.add_parser("stats", parents=[common], help="Show graph statistics")
    stats_p.add_argument("--format", choices=("json", "text"), default="text")
    stats_p.add_argument("--source", choices=("graph", "json"), default="graph")
    stats_p.add_argument("--data-dir", default=None)
    stats_p.set_defaults(func=_cmd_stats)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """
    Entry point for the ``codegraph`` console script.

    Parameters
    ----------
    argv:
        Argument list without the program name. Defaults to ``sys.argv[1:]``.

    Returns
    -------
    int
        Process exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
