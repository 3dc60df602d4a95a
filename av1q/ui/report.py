from typing import List
from rich.console import Console
from rich.table import Table
from av1q.domain.models import BatchSummary, JobOutcome, QualityProbe


def render_summary(console: Console, summary: BatchSummary):
    """Prints batch counters and one row per failed source."""
    counts = Table(title="av1q batch summary", show_header=True, header_style="bold")
    counts.add_column("Succeeded", justify="right", style="green")
    counts.add_column("Failed", justify="right", style="red")
    counts.add_column("Skipped", justify="right", style="cyan")
    counts.add_column("Not started", justify="right", style="yellow")
    counts.add_row(str(summary.succeeded), str(summary.failed), str(summary.skipped), str(summary.not_started))
    console.print(counts)

    if summary.interrupted:
        console.print("[yellow]Batch interrupted by operator.[/yellow]")
    if summary.abandoned:
        console.print(f"[yellow]{summary.abandoned} jobs did not stop within the grace period; they will be redone next run.[/yellow]")

    if summary.failures:
        failed = Table(title="Failed sources", show_header=True, header_style="bold red")
        failed.add_column("Source", overflow="fold")
        failed.add_column("Reason")
        failed.add_column("Details", overflow="fold")
        for entry in summary.failures:
            failed.add_row(str(entry.source), entry.reason.value, entry.message or "")
        console.print(failed)


def render_probes(console: Console, probes: List[QualityProbe], target: float):
    """Prints the search trace of a single job."""
    table = Table(title=f"Probes (target {target})", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("CQ", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Error", overflow="fold")
    for index, probe in enumerate(probes, start=1):
        table.add_row(
            str(index),
            str(probe.quality_param),
            f"{probe.score:.2f}" if probe.score is not None else "-",
            format_size(probe.size_bytes) if probe.size_bytes is not None else "-",
            f"{probe.elapsed_seconds:.1f}s",
            probe.error or "",
        )
    console.print(table)


def render_outcome(console: Console, outcome: JobOutcome):
    if outcome.reason is None:
        console.print(f"[green]{outcome.status.value}[/green] {outcome.source} -> {outcome.output_path}")
    else:
        console.print(f"[red]{outcome.status.value}[/red] ({outcome.reason.value}) {outcome.source}: {outcome.message}")


def format_size(size: float) -> str:
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"
