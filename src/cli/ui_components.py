"""Rich UI components for the CLI.

Kept apart from the commands so tables and panels can be reused and the
banner can be skipped in non-interactive modes (cron, pipes).
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config import APP_VERSION
from core.domain.models import ConvertedArtifact, FetchReport, FetchStatus, ScheduleEntry


def print_banner(console: Console) -> None:
    title = Text("wallow", style="bold cyan")
    subtitle = Text(f"Wallpapers • Themes • Schedules   v{APP_VERSION}", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


_STATUS_STYLE = {
    FetchStatus.SUCCESS: "green",
    FetchStatus.PARTIAL: "yellow",
    FetchStatus.FAILED: "red",
}


def build_fetch_table(report: FetchReport) -> Table:
    """One row per file touched by a fetch batch."""

    status = report.status
    title = (
        f"{report.source.value}: {len(report.committed)}/{report.requested} downloaded "
        f"[{_STATUS_STYLE[status]}]({status.value})[/{_STATUS_STYLE[status]}]"
    )
    table = Table(title=title)
    table.add_column("Result", no_wrap=True)
    table.add_column("File", style="white")
    table.add_column("Details", style="dim")

    for path in report.committed:
        table.add_row("[green]saved[/green]", str(path), "")
    for path in report.skipped:
        table.add_row("[cyan]exists[/cyan]", str(path), "already downloaded")
    for task in report.failed:
        table.add_row(
            "[red]failed[/red]",
            task.candidate.id,
            f"{task.error} (attempts: {task.attempts})",
        )
    return table


def build_artifacts_table(artifacts: Iterable[ConvertedArtifact]) -> Table:
    table = Table(title="Converted")
    table.add_column("Theme", style="magenta", no_wrap=True)
    table.add_column("Directory", style="white")
    table.add_column("Files", style="green")
    for artifact in artifacts:
        table.add_row(artifact.theme, str(artifact.output_dir), "\n".join(p.name for p in artifact.paths))
    return table


def build_themes_table(themes: Iterable[str]) -> Table:
    table = Table(title="gowall themes")
    table.add_column("Theme", style="magenta")
    for theme in themes:
        table.add_row(theme)
    return table


def build_schedule_panel(entry: ScheduleEntry | None) -> Panel:
    if entry is None:
        return Panel(Text("No wallow schedule installed.", style="dim"), title="Schedule", border_style="dim")
    body = Text()
    body.append("Cron:    ", style="bold")
    body.append(entry.cron_expression + "\n")
    body.append("Command: ", style="bold")
    body.append(entry.command)
    return Panel(body, title="Schedule", border_style="green")


def build_images_table(paths: Iterable[Path]) -> Table:
    table = Table(title="Wallpapers")
    table.add_column("File", style="white")
    table.add_column("Directory", style="dim")
    for path in paths:
        table.add_row(path.name, str(path.parent))
    return table
