"""Typer CLI entrypoint for the listing pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigLocator, ConfigRepository, ScheduleConfig, ScheduleType
from .errors import ConfigurationError
from .logging_conf import available_run_logs, configure_logging, rotate_logs, tail_log
from .models import ListingState, PriceHistoryEntry
from .orchestrator import Pipeline, RunSummary
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="Listing ingestion and lifecycle pipeline.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect per-run audit logs.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
app.add_typer(log_app, name="log")

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    pipeline: Pipeline
    scheduler: APSchedulerAdapter


def build_state(verbose: bool, home: Path | None = None) -> AppState:
    repository = ConfigRepository(ConfigLocator(project_root=home))
    config = repository.load_config()
    configure_logging(
        verbose=verbose, level=config.log_level, log_dir=repository.locator.logs_dir
    )
    pipeline = Pipeline(repository)
    return AppState(repository=repository, pipeline=pipeline, scheduler=APSchedulerAdapter())


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: ScheduleConfig) -> str:
    data = schedule.value
    label = schedule.type.value
    if data in (None, "", [], {}):
        return label
    if schedule.type is ScheduleType.CRON:
        return f"cron ({data})"
    if schedule.type is ScheduleType.INTERVAL:
        return f"interval ({data})"
    return f"{label} ({data})"


def _render_summary_table(summary: RunSummary) -> Table:
    table = Table(title=f"Run {summary.run_id}", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for name, value in summary.counts().items():
        table.add_row(name.replace("_", " "), str(value))
    return table


def _render_sources_table(summary: RunSummary) -> Table:
    table = Table(title="Per source", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    for column in ("fetched", "new", "updated", "duplicate", "invalid", "errored"):
        table.add_column(column, justify="right")
    table.add_column("Error", style="red", overflow="fold")
    for name, source in summary.sources.items():
        table.add_row(
            name,
            str(source.fetched),
            str(source.new),
            str(source.updated),
            str(source.duplicate),
            str(source.invalid),
            str(source.errored),
            source.error or "",
        )
    return table


def _render_jobs_table(jobs: Iterable[dict]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time") or "-"),
            str(job.get("trigger", "-")),
        )
    return table


def _render_history_table(entry: PriceHistoryEntry) -> Table:
    table = Table(
        title=f"{entry.title} · {entry.price_trend.value}",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("Date", style="green")
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("%", justify="right")
    for change in entry.changes:
        table.add_row(
            change.date.isoformat(timespec="seconds"),
            f"{change.old_price:,.2f}",
            f"{change.new_price:,.2f}",
            f"{change.change_amount:+,.2f}",
            f"{change.change_percent:+.2f}",
        )
    return table


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    home: Optional[Path] = typer.Option(
        None,
        "--home",
        help="Project root holding data/ and logs/ (defaults to $LISTING_PIPELINE_HOME or cwd).",
    ),
) -> None:
    try:
        ctx.obj = build_state(verbose, home)
    except ConfigurationError as exc:
        console.print(f"Configuration error: {exc}", style="red")
        raise typer.Exit(code=2) from exc


@app.command("run", help="Ingest configured sources and track prices.")
def run(
    ctx: typer.Context,
    sources: Optional[List[str]] = typer.Argument(None, help="Source names (default: all enabled)."),
    maintenance: bool = typer.Option(
        False, "--maintenance", help="Purge and enforce retention after ingesting."
    ),
    quiet: bool = typer.Option(False, "--quiet", help="Only print a one-line result."),
) -> None:
    state = _get_state(ctx)
    try:
        summary = state.pipeline.run(sources or None, maintenance=maintenance)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    if quiet:
        counts = summary.counts()
        console.print(
            f"Run complete: new {counts['new']}, updated {counts['updated']}, "
            f"duplicate {counts['duplicate']}, invalid {counts['invalid']}, "
            f"errored {counts['errored']}"
        )
    else:
        console.print(_render_summary_table(summary))
        if summary.sources:
            console.print(_render_sources_table(summary))
    if summary.errors:
        raise typer.Exit(code=1)


@app.command("approve", help="Move pending listings to active (all when no ids are given).")
def approve(
    ctx: typer.Context,
    ids: Optional[List[str]] = typer.Argument(None, help="Listing ids to approve."),
) -> None:
    state = _get_state(ctx)
    lifecycle = state.pipeline.lifecycle()
    if ids:
        approved = lifecycle.approve(ids)
        console.print(f"Approved {len(approved)} of {len(ids)} listings.", style="green")
    else:
        count = lifecycle.approve_all_pending()
        console.print(f"Approved {count} pending listings.", style="green")


@app.command("mark-sold", help="Record completed purchases for active listings.")
def mark_sold(
    ctx: typer.Context,
    ids: List[str] = typer.Argument(..., help="Listing ids that were sold."),
) -> None:
    state = _get_state(ctx)
    sold = state.pipeline.lifecycle().mark_sold(ids)
    console.print(f"Marked {len(sold)} listings as sold.", style="green")
    missing = sorted(set(ids) - set(sold))
    if missing:
        console.print("Not active: " + ", ".join(missing), style="yellow")


@app.command("purge", help="Archive pending/active listings older than the purge threshold.")
def purge(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    lifecycle = state.pipeline.lifecycle()
    result = lifecycle.purge_aged()
    lifecycle.write_purge_record(result)
    table = Table(title="Purge", box=box.SIMPLE_HEAD)
    table.add_column("Collection", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Archived", justify="right", style="green")
    table.add_row("active", str(result.total_active), str(result.purged_active))
    table.add_row("pending", str(result.total_pending), str(result.purged_pending))
    console.print(table)


@app.command("retention", help="Permanently delete archived listings past retention.")
def retention(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    result = state.pipeline.lifecycle().enforce_retention()
    console.print(
        f"Removed {result.removed} archived listings "
        f"({result.expired} expired, {result.trimmed} over the archive cap).",
        style="green",
    )


@app.command("dedup", help="Remove duplicate listings from the collections.")
def dedup(
    ctx: typer.Context,
    similar: bool = typer.Option(
        False, "--similar", help="Also remove near-duplicates by title/location similarity."
    ),
) -> None:
    state = _get_state(ctx)
    result = state.pipeline.lifecycle().dedup_sweep(similar=similar)
    table = Table(title="Duplicate sweep", box=box.SIMPLE_HEAD)
    table.add_column("Kind", style="cyan")
    table.add_column("Removed", justify="right", style="green")
    for state_name, count in result.removed_within.items():
        table.add_row(f"same id in {state_name}", str(count))
    table.add_row("same id across collections", str(result.removed_across))
    if similar:
        table.add_row("similar title/location", str(result.removed_similar))
    console.print(table)


@app.command("repair", help="Validate collections; restore or reset corrupt ones.")
def repair(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    report = state.pipeline.lifecycle().repair()
    table = Table(title="Repair", box=box.SIMPLE_HEAD)
    table.add_column("Collection", style="cyan")
    table.add_column("Status")
    for name, status in report.items():
        style = "green" if status == "ok" else "yellow"
        table.add_row(name, f"[{style}]{status}[/{style}]")
    console.print(table)


@app.command("backup", help="Snapshot all data files, or list existing backups.")
def backup(
    ctx: typer.Context,
    list_only: bool = typer.Option(False, "--list", help="List backups instead of creating one."),
) -> None:
    state = _get_state(ctx)
    store = state.pipeline.store
    if list_only:
        backups = store.list_backups()
        if not backups:
            console.print("No backups yet.", style="dim")
            return
        table = Table(title="Backups", box=box.SIMPLE_HEAD)
        table.add_column("Name", style="green")
        for path in backups:
            table.add_row(path.name)
        console.print(table)
        return
    path = state.pipeline.lifecycle().backup()
    console.print(f"Backup created: {path.name}", style="green")


@app.command("restore", help="Restore data files from a backup (latest by default).")
def restore(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Backup name."),
) -> None:
    state = _get_state(ctx)
    try:
        path = state.pipeline.lifecycle().restore_from_backup(name)
    except FileNotFoundError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1) from exc
    console.print(f"Restored from backup {path.name}", style="green")


@app.command("history", help="Show the price history of one listing.")
def history(
    ctx: typer.Context,
    listing_id: str = typer.Argument(..., help="Listing id."),
) -> None:
    state = _get_state(ctx)
    entry = state.pipeline.tracker().history_for(listing_id)
    if entry is None:
        console.print("No price history for this listing.", style="dim")
        raise typer.Exit(code=1)
    console.print(
        f"First seen {entry.first_seen_price:,.2f} · current {entry.current_price:,.2f}",
        style="cyan",
    )
    if entry.changes:
        console.print(_render_history_table(entry))


@app.command("notifications", help="Show recent price-change notifications.")
def notifications(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", help="Number of notifications to show."),
) -> None:
    state = _get_state(ctx)
    items = state.pipeline.tracker().recent_notifications(limit)
    if not items:
        console.print("No price changes recorded.", style="dim")
        return
    table = Table(title=f"Latest {len(items)} price changes", box=box.SIMPLE_HEAD)
    table.add_column("Detected", style="green")
    table.add_column("Title", overflow="fold")
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Change", justify="right")
    for item in items:
        sign = "+" if item.change_type.value == "increase" else "-"
        table.add_row(
            item.detected_at.isoformat(timespec="seconds"),
            item.title,
            f"{item.old_price:,.2f}",
            f"{item.new_price:,.2f}",
            f"{sign}{item.change_percent:.2f}%",
        )
    console.print(table)


@app.command("stats", help="Collection sizes and price tracking statistics.")
def stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    pipeline = state.pipeline
    table = Table(title="Collections", box=box.SIMPLE_HEAD)
    table.add_column("State", style="cyan")
    table.add_column("Listings", justify="right", style="green")
    for listing_state in ListingState:
        table.add_row(listing_state.value, str(len(pipeline.store.read_collection(listing_state))))
    console.print(table)

    tracker_stats = pipeline.tracker().stats()
    price_table = Table(title="Price tracking", box=box.SIMPLE_HEAD)
    price_table.add_column("Metric", style="cyan")
    price_table.add_column("Value", justify="right")
    price_table.add_row("tracked listings", str(tracker_stats.total_tracked))
    price_table.add_row("listings with changes", str(tracker_stats.with_changes))
    price_table.add_row("average change %", f"{tracker_stats.average_change_percent:.2f}")
    if tracker_stats.biggest_increase:
        price_table.add_row("biggest increase", tracker_stats.biggest_increase.title)
    if tracker_stats.biggest_decrease:
        price_table.add_row("biggest decrease", tracker_stats.biggest_decrease.title)
    console.print(price_table)


@app.command("schedule", help="Run ingestion and maintenance on the configured schedules.")
def schedule(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show the jobs that would be scheduled and exit."
    ),
) -> None:
    state = _get_state(ctx)
    config = state.repository.load_config()
    state.scheduler.schedule_pipeline(
        config,
        run=lambda: state.pipeline.run(),
        maintenance=lambda: state.pipeline.lifecycle().run_maintenance(),
    )
    console.print(f"run: {_format_schedule(config.run_schedule)}", style="dim")
    console.print(f"maintenance: {_format_schedule(config.maintenance_schedule)}", style="dim")
    if dry_run:
        console.print(_render_jobs_table(state.scheduler.list_jobs()))
        return
    state.scheduler.start()
    console.print(_render_jobs_table(state.scheduler.list_jobs()))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        state.scheduler.shutdown()


@log_app.command("list", help="List per-run log files.")
def log_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    logs = list(available_run_logs(state.repository.locator.logs_dir))
    if not logs:
        console.print("No run logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    table.add_column("Size", justify="right")
    for path in logs:
        table.add_row(path.name, f"{path.stat().st_size:,}")
    console.print(table)


@log_app.command("show", help="Show the tail of a run log (latest by default).")
def log_show(
    ctx: typer.Context,
    run_id: Optional[str] = typer.Argument(None, help="Run id, e.g. 20240101-060000-000000."),
    tail: int = typer.Option(100, "--tail", help="Number of lines to show."),
) -> None:
    state = _get_state(ctx)
    logs_dir = state.repository.locator.logs_dir
    if run_id:
        path = logs_dir / "runs" / f"run-{run_id}.log"
    else:
        logs = list(available_run_logs(logs_dir))
        if not logs:
            console.print("No run logs yet.", style="dim")
            return
        path = logs[-1]
    lines = tail_log(path, tail)
    if not lines:
        console.print("Log is empty or missing.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


@log_app.command("rotate", help="Delete run logs older than the retention window.")
def log_rotate(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(None, "--days", help="Maximum age in days."),
) -> None:
    state = _get_state(ctx)
    max_age = days if days is not None else state.repository.load_config().log_retention_days
    removed = rotate_logs(state.repository.locator.logs_dir, max_age_days=max_age)
    console.print(f"Removed {len(removed)} run logs older than {max_age} days.", style="green")


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
