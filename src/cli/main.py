"""wallow command line.

Commands only parse options, call into `core.services` / `adapters` and
render results with rich. Every `WallowError` is turned into one red line
and the exit code of its category (see `core.domain.errors.ExitCode`).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from adapters.crontab import CrontabTable
from adapters.desktop_setter import set_wallpaper
from adapters.terminal_preview import (
    detect_capability,
    ensure_capability,
    pick_with_fzf,
    render_preview_command,
)
from adapters.theme_converter import ThemeConverter
from cli import doctor
from cli.ui_components import (
    build_artifacts_table,
    build_fetch_table,
    build_images_table,
    build_schedule_panel,
    build_themes_table,
    print_banner,
)
from core.config import CONFIG_KEYS, AppSettings, get_user_env_file, write_user_env_vars
from core.domain.errors import ExitCode, TerminalCapabilityUnavailable, WallowError
from core.domain.models import DownloadTask, FetchStatus, Source
from core.services.fetch_pipeline import FetchHooks, build_query, fetch_wallpapers
from core.services.scheduler import ScheduleManager
from core.services.wallpaper_pipeline import RunRequest, clean as clean_files, collect_images, run_pipeline

app = typer.Typer(
    no_args_is_help=True,
    help="Fetch wallpapers, theme them with gowall and keep them fresh with cron.",
)
config_app = typer.Typer(no_args_is_help=True, help="Show or change stored defaults.")
app.add_typer(config_app, name="config")
app.add_typer(doctor.app, name="doctor")

_console = Console()
_err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_err_console, show_path=False, rich_tracebacks=verbose)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_settings() -> AppSettings:
    return AppSettings()


def _schedule_manager(settings: AppSettings) -> ScheduleManager:
    return ScheduleManager(CrontabTable(), settings=settings)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except WallowError as exc:
        _err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=int(exc.exit_code)) from exc
    except ValidationError as exc:
        _err_console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(code=int(ExitCode.USAGE)) from exc
    except KeyboardInterrupt:
        _err_console.print("[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=int(ExitCode.INTERRUPTED))


def _progress_hooks() -> FetchHooks:
    def committed(task: DownloadTask) -> None:
        _console.print(f"[green]✓[/green] {task.destination.name}")

    def skipped(path: Path) -> None:
        _console.print(f"[cyan]=[/cyan] {path.name} [dim](already downloaded)[/dim]")

    def failed(task: DownloadTask) -> None:
        _console.print(f"[red]✗[/red] {task.candidate.id}: {task.error}")

    return FetchHooks(committed=committed, skipped=skipped, failed=failed)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr."),
) -> None:
    _setup_logging(verbose)


@app.command()
def fetch(
    query: Optional[str] = typer.Argument(None, help="Search keywords (default: stored query)."),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of wallpapers to download."),
    source: Optional[Source] = typer.Option(None, "--source", "-s", help="Provider (default: stored source)."),
    resolution: Optional[str] = typer.Option(None, "--res", "--resolution", help="WIDTHxHEIGHT filter."),
    sorting: Optional[str] = typer.Option(None, "--sorting", help="Provider sort order."),
    purity: Optional[str] = typer.Option(None, "--purity", help="Wallhaven purity bits (sfw/sketchy/nsfw)."),
    categories: Optional[str] = typer.Option(None, "--categories", help="Wallhaven category bits."),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Provider key for this call only."),
    directory: Optional[Path] = typer.Option(None, "--dir", help="Destination directory."),
) -> None:
    """Download COUNT wallpapers into the wallpaper directory."""

    with _handle_errors():
        settings = _load_settings()
        chosen = source or settings.default_source
        search = build_query(
            settings,
            query=query,
            resolution=resolution,
            categories=categories,
            purity=purity,
            sorting=sorting,
        )
        report = asyncio.run(
            fetch_wallpapers(
                settings=settings,
                source=chosen,
                query=search,
                count=count,
                api_key=api_key,
                dest_dir=directory,
                hooks=_progress_hooks(),
            )
        )
        _console.print(build_fetch_table(report))
        if report.interrupted_by is not None:
            _err_console.print(f"[yellow]Search stopped early:[/yellow] {report.interrupted_by}")

    if report.status is FetchStatus.PARTIAL:
        raise typer.Exit(code=int(ExitCode.PARTIAL))


@app.command()
def convert(
    image: Path = typer.Argument(..., help="Image to convert."),
    theme: str = typer.Argument(..., help="gowall theme (see `wallow themes`)."),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Target file, or directory (default: every converted directory)."
    ),
) -> None:
    """Convert IMAGE with a gowall THEME into every converted directory."""

    with _handle_errors():
        settings = _load_settings()
        converter = ThemeConverter()
        image = image.expanduser()
        if output is None:
            artifacts = converter.convert(image, theme, settings.output_dirs)
        elif output.expanduser().is_dir():
            artifacts = converter.convert(image, theme, [output.expanduser()])
        else:
            artifacts = [converter.convert_file(image, theme, output.expanduser())]
        _console.print(build_artifacts_table(artifacts))


@app.command()
def themes() -> None:
    """List the themes gowall knows about."""

    with _handle_errors():
        _console.print(build_themes_table(ThemeConverter().list_themes()))


@app.command(name="run")
def run_command(
    query: Optional[str] = typer.Argument(None, help="Search keywords (default: stored query)."),
    theme: Optional[str] = typer.Option(None, "--theme", "-t", help="gowall theme (default: stored theme)."),
    source: Optional[Source] = typer.Option(None, "--source", "-s"),
    resolution: Optional[str] = typer.Option(None, "--res", "--resolution", help="WIDTHxHEIGHT filter."),
    sorting: Optional[str] = typer.Option(None, "--sorting", help="Provider sort order."),
    purity: Optional[str] = typer.Option(None, "--purity", help="Wallhaven purity bits (sfw/sketchy/nsfw)."),
    categories: Optional[str] = typer.Option(None, "--categories", help="Wallhaven category bits."),
    api_key: Optional[str] = typer.Option(None, "--api-key"),
    no_apply: bool = typer.Option(False, "--no-apply", help="Fetch and convert only."),
) -> None:
    """Fetch one wallpaper, convert it and set it as the background."""

    with _handle_errors():
        settings = _load_settings()
        print_banner(_console)
        _run(
            settings,
            query=query,
            theme=theme,
            source=source,
            resolution=resolution,
            categories=categories,
            purity=purity,
            sorting=sorting,
            api_key=api_key,
            apply=not no_apply,
        )


def _run(
    settings: AppSettings,
    *,
    query: str | None = None,
    theme: str | None = None,
    source: Source | None = None,
    resolution: str | None = None,
    categories: str | None = None,
    purity: str | None = None,
    sorting: str | None = None,
    api_key: str | None = None,
    apply: bool = True,
) -> None:
    request = RunRequest(
        source=source or settings.default_source,
        query=build_query(
            settings,
            query=query,
            resolution=resolution,
            categories=categories,
            purity=purity,
            sorting=sorting,
        ),
        theme=theme,
        apply=apply,
        api_key=api_key,
    )
    result = asyncio.run(run_pipeline(request, settings=settings, hooks=_progress_hooks()))
    if result.artifacts:
        _console.print(build_artifacts_table(result.artifacts))
    if result.applied:
        _console.print(f"[green]Wallpaper set:[/green] {result.applied}")
    else:
        _console.print(f"[green]Saved:[/green] {result.original}")


@app.command(name="list")
def list_(
    fzf: bool = typer.Option(False, "--fzf", help="Pick interactively with image previews."),
    no_apply: bool = typer.Option(False, "--no-apply", help="Print the selection instead of applying it."),
) -> None:
    """List downloaded and converted wallpapers."""

    with _handle_errors():
        settings = _load_settings()
        images = collect_images(settings)
        if not images:
            _console.print(f"[yellow]No wallpapers yet in {settings.wallpaper_path}.[/yellow] Try `wallow fetch`.")
            return
        if not fzf:
            _console.print(build_images_table(images))
            return

        capability = detect_capability()
        try:
            ensure_capability(capability)
        except TerminalCapabilityUnavailable as exc:
            _err_console.print(f"[yellow]{exc}[/yellow]")
        selected = pick_with_fzf(images, render_preview_command(capability))
        if selected is None:
            _console.print("[dim]Nothing selected.[/dim]")
            return
        if no_apply:
            _console.print(str(selected))
            return
        set_wallpaper(selected)
        _console.print(f"[green]Wallpaper set:[/green] {selected}")


@app.command()
def apply(image: Path = typer.Argument(..., help="Image to use as background.")) -> None:
    """Set IMAGE as the desktop background."""

    with _handle_errors():
        set_wallpaper(image)
        _console.print(f"[green]Wallpaper set:[/green] {image}")


@app.command()
def schedule(
    cron: Optional[str] = typer.Argument(None, help='Cron expression, e.g. "0 * * * *" (default: stored).'),
    run_now: bool = typer.Option(False, "--run", help="Execute one scheduled run (used by the crontab line)."),
    remove: bool = typer.Option(False, "--remove", help="Uninstall the wallow crontab line."),
    show: bool = typer.Option(False, "--show", help="Show the installed wallow crontab line."),
) -> None:
    """Install, replace, show or remove the periodic wallow run."""

    if sum((run_now, remove, show)) > 1:
        raise typer.BadParameter("--run, --remove and --show are mutually exclusive")

    with _handle_errors():
        settings = _load_settings()
        if run_now:
            _run(settings)
            return

        manager = _schedule_manager(settings)
        if show:
            _console.print(build_schedule_panel(manager.current()))
            return
        if remove:
            if manager.remove():
                _console.print("[green]Schedule removed.[/green]")
            else:
                _console.print("[dim]No wallow schedule installed.[/dim]")
            return

        entry = manager.upsert(cron)
        _console.print(build_schedule_panel(entry))


@app.command()
def clean(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every wallow-* file from the wallpaper and converted directories."""

    with _handle_errors():
        settings = _load_settings()
        if not yes:
            typer.confirm(f"Delete wallow files under {settings.wallpaper_path}?", abort=True)
        removed = clean_files(settings)
        _console.print(f"[green]Removed {len(removed)} file(s).[/green]")


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""

    with _handle_errors():
        settings = _load_settings()
        table = Table(title=f"wallow config ({get_user_env_file()})")
        table.add_column("Setting", style="bright_green", no_wrap=True)
        table.add_column("Value", style="white")

        for name, value in settings.model_dump().items():
            if name.endswith(("_api_key", "_access_key")):
                value = "set" if value else "-"
            elif isinstance(value, list):
                value = ", ".join(str(v) for v in value) or "-"
            table.add_row(name, "-" if value is None else str(getattr(value, "value", value)))
        table.add_row("output_dirs (effective)", ", ".join(str(p) for p in settings.output_dirs))
        _console.print(table)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help=f"One of: {', '.join(CONFIG_KEYS)}."),
    value: str = typer.Argument(..., help="New value."),
) -> None:
    """Store a default in the user config file."""

    env_name = CONFIG_KEYS.get(key.lower())
    if env_name is None:
        raise typer.BadParameter(f"unknown key '{key}' (expected one of: {', '.join(CONFIG_KEYS)})")

    with _handle_errors():
        # Validate through the settings model before persisting.
        field_name = env_name.removeprefix("WALLOW_").lower()
        AppSettings(_env_file=None, **{field_name: value})
        env_path = write_user_env_vars({env_name: value})
        _console.print(f"[green]Saved[/green] {key}={value} [dim]to {env_path}[/dim]")


def run() -> None:
    """Console-script entry point."""

    app()


if __name__ == "__main__":
    app()
