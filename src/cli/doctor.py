"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio
import shutil

import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import build_async_client
from adapters.terminal_preview import detect_capability
from adapters.theme_converter import ThemeConverter
from core.config import AppSettings, get_user_env_file, write_user_env_vars
from core.domain.models import Source, TerminalCapability

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()

# (binary, what it is used for, required)
_TOOLS: tuple[tuple[str, str, bool], ...] = (
    ("gowall", "theme conversion", False),
    ("fzf", "interactive `list --fzf`", False),
    ("chafa", "image previews in fzf", False),
    ("crontab", "`schedule`", False),
)

_PROBE_URLS: dict[Source, str] = {
    Source.WALLHAVEN: "https://wallhaven.cc/api/v1/search",
    Source.UNSPLASH: "https://api.unsplash.com/",
}


async def _check_http(url: str, settings: AppSettings) -> tuple[bool, str]:
    try:
        async with build_async_client(settings) as client:
            response = await client.get(url)
        return True, f"HTTP {response.status_code}"
    except Exception as exc:
        return False, str(exc) or type(exc).__name__


@app.command()
def run(
    offline: bool = typer.Option(False, "--offline", help="Skip the connectivity checks."),
) -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="wallow doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Tools
    for binary, purpose, required in _TOOLS:
        path = shutil.which(binary)
        if path:
            table.add_row(binary, "OK", path)
        else:
            table.add_row(binary, "MISSING" if required else "OPTIONAL", f"needed for {purpose}")

    capability = detect_capability()
    table.add_row(
        "Preview",
        "OK" if capability is not TerminalCapability.NONE else "DEGRADED",
        capability.value,
    )

    # Config
    table.add_row("Config file", "OK" if get_user_env_file().exists() else "DEFAULTS", str(get_user_env_file()))
    table.add_row("Wallpaper dir", "OK", str(settings.wallpaper_path))
    for source in Source:
        if settings.api_key_for(source):
            table.add_row(f"{source.value} key", "OK", source.env_var)
        elif source.requires_key:
            table.add_row(f"{source.value} key", "MISSING", f"set {source.env_var} or run `wallow doctor setup-keys`")
        else:
            table.add_row(f"{source.value} key", "OPTIONAL", "only needed for NSFW results")

    # Connectivity (best-effort)
    if not offline:
        for source, url in _PROBE_URLS.items():
            ok_http, detail_http = asyncio.run(_check_http(url, settings))
            table.add_row(f"{source.value} reachable", "OK" if ok_http else "FAIL", detail_http)

    _console.print(table)

    if not ThemeConverter().is_installed():
        _console.print(
            "\n[yellow]Note:[/yellow] Without gowall, `--theme` is unavailable; originals are still downloaded."
        )


@app.command(name="setup-keys")
def setup_keys() -> None:
    """Interactive credential setup (stored in the user config .env)."""

    wallhaven = typer.prompt(
        "Wallhaven API key (optional, Enter to skip)",
        default="",
        show_default=False,
        hide_input=True,
    ).strip()
    unsplash = typer.prompt(
        "Unsplash access key (optional, Enter to skip)",
        default="",
        show_default=False,
        hide_input=True,
    ).strip()

    if not wallhaven and not unsplash:
        raise typer.BadParameter("at least one key is required")

    env_path = write_user_env_vars(
        {
            "WALLHAVEN_API_KEY": wallhaven or None,
            "UNSPLASH_ACCESS_KEY": unsplash or None,
        }
    )

    _console.print(f"[green]Saved credentials to:[/green] {env_path}")
