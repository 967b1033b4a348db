"""Set the desktop background.

One command per desktop environment; on Linux the first mechanism whose
tool is present and whose desktop matches `XDG_CURRENT_DESKTOP` wins, with
`swww` and `feh` as generic fallbacks for tiling setups.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable, Mapping

from core.domain.errors import ApplyError

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]
Which = Callable[[str], str | None]

SPI_SETDESKWALLPAPER = 20
SPIF_UPDATEINIFILE_SENDCHANGE = 0x01 | 0x02


def _macos_commands(path: Path, env: Mapping[str, str]) -> list[list[str]]:
    script = (
        'tell application "System Events" to tell every desktop '
        f'to set picture to "{path}"'
    )
    return [["osascript", "-e", script]]


def _linux_commands(path: Path, env: Mapping[str, str]) -> list[list[str]]:
    desktop = env.get("XDG_CURRENT_DESKTOP", "").upper()
    uri = path.as_uri()
    commands: list[list[str]] = []

    if any(name in desktop for name in ("GNOME", "UNITY", "PANTHEON", "BUDGIE")):
        schema = "org.gnome.desktop.background"
        commands.append(["gsettings", "set", schema, "picture-uri", uri])
        commands.append(["gsettings", "set", schema, "picture-uri-dark", uri])
        return commands
    if "KDE" in desktop:
        return [["plasma-apply-wallpaperimage", str(path)]]
    if env.get("WAYLAND_DISPLAY"):
        commands.append(["swww", "img", str(path)])
    commands.append(["feh", "--bg-fill", str(path)])
    return commands


def _set_windows(path: Path) -> None:
    import ctypes  # noqa: PLC0415

    ok = ctypes.windll.user32.SystemParametersInfoW(  # type: ignore[attr-defined]
        SPI_SETDESKWALLPAPER, 0, str(path), SPIF_UPDATEINIFILE_SENDCHANGE
    )
    if not ok:
        raise ApplyError(f"SystemParametersInfoW refused {path}")


def set_wallpaper(
    path: Path,
    *,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
    runner: Runner = subprocess.run,
    which: Which = shutil.which,
) -> None:
    """Make `path` the desktop background or raise `ApplyError`."""

    path = Path(path).expanduser().resolve()
    if not path.is_file():
        raise ApplyError(f"Image not found: {path}")

    platform = platform or sys.platform
    env = os.environ if environ is None else environ

    if platform == "win32":
        _set_windows(path)
        return
    if platform == "darwin":
        commands = _macos_commands(path, env)
    elif platform.startswith("linux") or "bsd" in platform:
        commands = _linux_commands(path, env)
    else:
        raise ApplyError(f"Unsupported platform: {platform}")

    # GNOME needs both keys set; the generic fallbacks stop at the first that works.
    set_all = commands[0][0] == "gsettings"
    errors: list[str] = []
    applied = False
    for command in commands:
        if which(command[0]) is None:
            errors.append(f"{command[0]} not found")
            continue
        result = runner(command, capture_output=True, text=True, check=False)
        if result.returncode != 0:
            errors.append(f"{command[0]}: {(result.stderr or '').strip() or result.returncode}")
            if set_all:
                break
            continue
        logger.debug("applied with %s", command[0])
        applied = True
        if not set_all:
            return

    if applied and not errors:
        return
    raise ApplyError("Could not set the wallpaper (" + "; ".join(errors or ["no mechanism"]) + ")")
