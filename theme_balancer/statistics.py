"""Theme concentration statistics and run report rendering."""

from __future__ import annotations

import math
from collections import Counter

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import OVERUSE_THRESHOLD, STATS_TOP_N, console
from .constants import STATUS_FAILED
from .models import CanonicalCategory, RunReport
from .utils import _build_id_name_map


def concentration_summary(assignments: list[dict], categories: list[CanonicalCategory],
                          overuse_threshold: int = OVERUSE_THRESHOLD, top_n: int = STATS_TOP_N) -> dict:
    """How evenly persisted assignments spread over the taxonomy."""
    names = _build_id_name_map(categories)
    usage: Counter = Counter()
    records = 0
    for row in assignments or []:
        ids = {int(c) for c in row.get("category_ids") or []}
        records += 1
        usage.update(ids)

    total_links = sum(usage.values())
    available = len(categories)
    used_ids = [cid for cid in usage if cid in names]

    per_category = []
    for category in sorted(categories, key=lambda c: c.id):
        count = usage.get(category.id, 0)
        per_category.append({
            "id": category.id,
            "name": category.name,
            "count": count,
            "record_share": round(count / records * 100, 1) if records else 0.0,
            "link_share": round(count / total_links * 100, 1) if total_links else 0.0,
            "overused": count > overuse_threshold,
        })
    ranked = sorted(per_category, key=lambda row: (-row["count"], row["id"]))

    entropy = 0.0
    for count in usage.values():
        if count > 0 and total_links:
            p = count / total_links
            entropy -= p * math.log(p)
    diversity_index = round(entropy / math.log(available), 3) if available > 1 and total_links else 0.0

    unknown = sorted(cid for cid in usage if cid not in names)
    return {
        "records": records,
        "category_links": total_links,
        "available": available,
        "unique_used": len(used_ids),
        "coverage": round(len(used_ids) / available * 100, 1) if available else 0.0,
        "top": ranked[:max(0, top_n)],
        "overused": [row for row in ranked if row["overused"]],
        "unused": [row["name"] for row in per_category if row["count"] == 0],
        "max_link_share": ranked[0]["link_share"] if ranked and total_links else 0.0,
        "diversity_index": diversity_index,
        "unknown_ids": unknown,
        "per_category": per_category,
    }


def show_concentration(summary: dict):
    """Print the concentration summary as rich tables."""
    console.print(Panel("[bold]Theme concentration[/bold]", border_style="blue"))

    table = Table(title="Overview", show_header=True, width=60)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="bold")
    table.add_row("Assigned records", str(summary["records"]))
    table.add_row("Theme links", str(summary["category_links"]))
    table.add_row("Themes used / available", f"{summary['unique_used']} / {summary['available']}")
    table.add_row("Coverage", f"{summary['coverage']:.1f}%")
    table.add_row("Largest share of links", f"{summary['max_link_share']:.1f}%")
    table.add_row("Diversity index (0-1)", f"{summary['diversity_index']:.3f}")
    console.print(table)

    if summary["top"]:
        top = Table(title="Most used themes", show_header=True)
        top.add_column("Theme", style="green")
        top.add_column("Records", justify="right")
        top.add_column("% of records", justify="right")
        top.add_column("% of links", justify="right")
        for row in summary["top"]:
            name = f"[red]{row['name']}[/red]" if row["overused"] else row["name"]
            top.add_row(name, str(row["count"]), f"{row['record_share']:.1f}", f"{row['link_share']:.1f}")
        console.print(top)

    if summary["overused"]:
        console.print(f"[yellow]Overused:[/yellow] {', '.join(r['name'] for r in summary['overused'])}")
    if summary["unused"]:
        console.print(f"[dim]Never used:[/dim] {', '.join(summary['unused'])}")
    if summary["unknown_ids"]:
        console.print(f"[red]Assignments reference unknown/inactive theme ids:[/red] {summary['unknown_ids']}")


def show_run_report(report: RunReport, categories: list[CanonicalCategory] | None = None):
    """Print a run report; per-record failures are listed, not only logged."""
    names = _build_id_name_map(categories or [])
    title = f"Run {report.run_id if report.run_id is not None else '-'} ({report.mode})"
    if report.dry_run:
        title += " [dim]dry run[/dim]"
    console.print(Panel(f"[bold]{title}[/bold]", border_style="blue"))

    table = Table(show_header=True, width=50)
    table.add_column("Outcome", style="cyan")
    table.add_column("Records", justify="right", style="bold")
    table.add_row("Assigned", str(report.processed))
    table.add_row("  of which empty", str(report.empty_results))
    table.add_row("Skipped (no labels)", str(report.skipped_no_labels))
    table.add_row("Skipped (already assigned)", str(report.skipped_existing))
    table.add_row("Failed", f"[red]{report.failed}[/red]" if report.failed else "0")
    console.print(table)

    if report.category_distribution:
        dist = Table(title="Theme distribution (this run)", show_header=True)
        dist.add_column("Theme", style="green")
        dist.add_column("Records", justify="right")
        for cid, count in sorted(report.category_distribution.items(), key=lambda x: (-x[1], x[0])):
            dist.add_row(names.get(cid, f"#{cid}"), str(count))
        console.print(dist)

    failures = [o for o in report.outcomes if o.status == STATUS_FAILED]
    if failures:
        fail_table = Table(title="Failed records", show_header=True)
        fail_table.add_column("Record", style="red")
        fail_table.add_column("Error")
        for outcome in failures[:50]:
            fail_table.add_row(escape(outcome.record_id), escape(outcome.error[:120]))
        console.print(fail_table)

    if report.interrupted:
        console.print(f"[yellow]Interrupted[/yellow] - last committed record: {report.last_committed_record or '-'}")
