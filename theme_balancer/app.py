"""Command line entry point: run, stats, runs, seed-taxonomy."""

from __future__ import annotations

import argparse
import sys

from rich.table import Table

from .config import (
    COMMIT_RETRIES,
    COMPUTE_WORKERS,
    LABELS_FILE,
    LIVE_COMMIT,
    LOG_FILE,
    MAX_CATEGORIES,
    MIN_DIVERSITY,
    MIN_SUBSTRING_LENGTH,
    OVERUSE_THRESHOLD,
    STATE_DB_FILE,
    STORY_API_KEY,
    STORY_API_URL,
    TAXONOMY_FILE,
    __version__,
    console,
    log,
)
from .constants import RUN_MODES
from .db import LocalStateDB
from .exceptions import BalancerError, ConfigError, PersistenceUnavailable, TaxonomyUnavailable
from .labels import JsonlLabelSource
from .models import BalancePolicy
from .pipeline import AssignmentPipeline, load_existing_assignments
from .statistics import concentration_summary, show_concentration, show_run_report
from .taxonomy import JsonTaxonomyStore, load_active_categories, write_default_taxonomy

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_TAXONOMY = 2
EXIT_PERSISTENCE = 3
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="theme-balancer",
        description="Map free-text theme labels onto the curated taxonomy with diversity balancing.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--backend", choices=("local", "api"), default="local",
                        help="local: JSON taxonomy + JSONL labels + SQLite; api: story REST backend")
    parser.add_argument("--taxonomy", default=TAXONOMY_FILE, help="taxonomy JSON file (local backend)")
    parser.add_argument("--state-db", default=STATE_DB_FILE, help="SQLite state database")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="assign themes to records")
    run_p.add_argument("--mode", choices=RUN_MODES, default="fresh")
    run_p.add_argument("--labels", default=LABELS_FILE, help="JSONL file with raw labels (local backend)")
    run_p.add_argument("--record", action="append", dest="records", help="only this record id (repeatable)")
    run_p.add_argument("--min-diversity", type=int, default=MIN_DIVERSITY)
    run_p.add_argument("--max-categories", type=int, default=MAX_CATEGORIES)
    run_p.add_argument("--overuse-threshold", type=int, default=OVERUSE_THRESHOLD)
    run_p.add_argument("--min-substring-length", type=int, default=MIN_SUBSTRING_LENGTH)
    run_p.add_argument("--workers", type=int, default=COMPUTE_WORKERS)
    run_p.add_argument("--commit-retries", type=int, default=COMMIT_RETRIES)
    run_p.add_argument("--live", action="store_true", default=LIVE_COMMIT,
                       help="commit after every record so later records see updated counts (sequential)")
    run_p.add_argument("--dry-run", action="store_true", help="compute and report, write no assignments")
    run_p.add_argument("--force", action="store_true", help="fresh mode: also recompute records that have an assignment")
    run_p.add_argument("--resume", type=int, metavar="RUN_ID", help="resume an interrupted run")

    stats_p = sub.add_parser("stats", help="theme concentration over persisted assignments")
    stats_p.add_argument("--overuse-threshold", type=int, default=OVERUSE_THRESHOLD)

    runs_p = sub.add_parser("runs", help="list recent runs")
    runs_p.add_argument("--limit", type=int, default=20)

    seed_p = sub.add_parser("seed-taxonomy", help="write the built-in theme taxonomy to --taxonomy")
    seed_p.add_argument("--overwrite", action="store_true")
    return parser


def _build_backend(args, run_db: LocalStateDB):
    """Return (taxonomy_store, persistence, label_source) for the chosen backend."""
    if args.backend == "api":
        if not STORY_API_URL:
            raise ConfigError("STORY_API_URL is not set")
        from .client import StoryApiClient
        client = StoryApiClient(STORY_API_URL, STORY_API_KEY)
        return client, client, client
    labels_path = getattr(args, "labels", LABELS_FILE)
    return JsonTaxonomyStore(args.taxonomy), run_db, JsonlLabelSource(labels_path)


def action_run(args, run_db: LocalStateDB) -> int:
    policy = BalancePolicy(
        min_diversity=args.min_diversity,
        max_categories=args.max_categories,
        overuse_threshold=args.overuse_threshold,
        min_substring_length=args.min_substring_length,
    )
    taxonomy_store, persistence, label_source = _build_backend(args, run_db)
    pipeline = AssignmentPipeline(
        taxonomy_store,
        persistence,
        label_source=label_source,
        run_db=run_db,
        policy=policy,
        workers=args.workers,
        live_commit=args.live,
        commit_retries=args.commit_retries,
    )
    try:
        report = pipeline.run(
            args.mode,
            record_ids=args.records,
            force=args.force,
            dry_run=args.dry_run,
            resume_run_id=args.resume,
        )
    except KeyboardInterrupt:
        if pipeline.last_report is not None:
            show_run_report(pipeline.last_report)
            if pipeline.last_report.run_id is not None:
                console.print(f"Resume with: theme-balancer run --resume {pipeline.last_report.run_id}")
        raise
    show_run_report(report, pipeline.last_run.categories)
    return EXIT_OK


def action_stats(args, run_db: LocalStateDB) -> int:
    taxonomy_store, persistence, _ = _build_backend(args, run_db)
    categories = load_active_categories(taxonomy_store)
    summary = concentration_summary(
        load_existing_assignments(persistence), categories, overuse_threshold=args.overuse_threshold,
    )
    show_concentration(summary)
    return EXIT_OK


def action_runs(args, run_db: LocalStateDB) -> int:
    table = Table(title="Recent runs", show_header=True)
    table.add_column("Run", justify="right", style="cyan")
    table.add_column("Started")
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Assigned", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Checkpoint")
    for run in run_db.list_runs(limit=args.limit):
        summary = run.get("summary") or {}
        mode = run["mode"] + (" (dry)" if run["dry_run"] else "")
        table.add_row(
            str(run["id"]), run["started_at"], mode, run["status"],
            str(summary.get("processed", "-")), str(summary.get("failed", "-")),
            run.get("last_committed_record") or "-",
        )
    console.print(table)
    return EXIT_OK


def action_seed(args) -> int:
    write_default_taxonomy(args.taxonomy, overwrite=args.overwrite)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log.debug(f"Theme Balancer v{__version__} - log file {LOG_FILE}")
    if args.command == "seed-taxonomy":
        return action_seed(args)

    run_db = LocalStateDB(args.state_db)
    actions = {"run": action_run, "stats": action_stats, "runs": action_runs}
    try:
        return actions[args.command](args, run_db)
    except TaxonomyUnavailable as exc:
        log.error(f"[red]Taxonomy unavailable:[/red] {exc} - run aborted, nothing written")
        return EXIT_TAXONOMY
    except PersistenceUnavailable as exc:
        log.error(f"[red]Persistence unavailable:[/red] {exc} - run aborted, nothing written")
        return EXIT_PERSISTENCE
    except BalancerError as exc:
        log.error(f"[red]{type(exc).__name__}:[/red] {exc}")
        return EXIT_CONFIG
    except KeyboardInterrupt:
        console.print("\n[bold]Interrupted.[/bold]")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
