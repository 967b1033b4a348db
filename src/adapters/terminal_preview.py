"""Terminal image previews for the fzf picker.

Capability detection is a priority-ordered decision table: each rule names a
capability, the environment predicate that makes it applicable, the binary it
needs and whether it is a terminal-native protocol. Quirks (terminals whose
native path breaks inside fzf) veto every native rule. New terminal quirks
are added as data, not as new branches.

Known quirk: WezTerm never finishes drawing `wezterm imgcat` output inside
an fzf preview (wezterm#6088, fzf#3646), so it is routed through
`chafa -f iterm` instead.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from core.domain.errors import TerminalCapabilityUnavailable, ToolNotFoundError
from core.domain.models import TerminalCapability

logger = logging.getLogger(__name__)

Environ = Mapping[str, str]
Which = Callable[[str], str | None]


def is_kitty(env: Environ) -> bool:
    return env.get("TERM") == "xterm-kitty" or bool(env.get("KITTY_WINDOW_ID"))


def is_iterm2(env: Environ) -> bool:
    return env.get("TERM_PROGRAM") == "iTerm.app" or env.get("LC_TERMINAL") == "iTerm2"


def is_wezterm(env: Environ) -> bool:
    return env.get("TERM_PROGRAM") == "WezTerm" or bool(env.get("WEZTERM_EXECUTABLE"))


def _any_terminal(env: Environ) -> bool:
    return True


@dataclass(frozen=True)
class CapabilityRule:
    capability: TerminalCapability
    applies: Callable[[Environ], bool]
    binary: str | None = None
    native: bool = False


# Highest fidelity first.
DECISION_TABLE: tuple[CapabilityRule, ...] = (
    CapabilityRule(TerminalCapability.KITTY_GRAPHICS, is_kitty, binary="kitty", native=True),
    CapabilityRule(TerminalCapability.ITERM2_INLINE, is_iterm2, binary="imgcat", native=True),
    CapabilityRule(TerminalCapability.WEZTERM_VIA_CHAFA, is_wezterm, binary="chafa"),
    CapabilityRule(TerminalCapability.GENERIC_CHAFA, _any_terminal, binary="chafa"),
)

# Terminals whose native image path is broken inside fzf previews.
BROKEN_NATIVE_PROTOCOL: tuple[Callable[[Environ], bool], ...] = (is_wezterm,)


def detect_capability(
    environ: Environ | None = None,
    *,
    which: Which = shutil.which,
) -> TerminalCapability:
    """Pick the best preview protocol for the current terminal.

    Computed once per invocation and handed to the renderer.
    """

    env = os.environ if environ is None else environ
    native_vetoed = any(quirk(env) for quirk in BROKEN_NATIVE_PROTOCOL)

    for rule in DECISION_TABLE:
        if rule.native and native_vetoed:
            continue
        if not rule.applies(env):
            continue
        if rule.binary and which(rule.binary) is None:
            logger.debug("%s applies but '%s' is missing", rule.capability.value, rule.binary)
            continue
        return rule.capability
    return TerminalCapability.NONE


def ensure_capability(capability: TerminalCapability) -> TerminalCapability:
    """Raise `TerminalCapabilityUnavailable` for callers that want to warn about degrading."""

    if capability is TerminalCapability.NONE:
        raise TerminalCapabilityUnavailable(
            "No image renderer found (install chafa for previews); showing file names only."
        )
    return capability


def preview_size(columns: int | None = None, rows: int | None = None) -> tuple[int, int]:
    """Chafa geometry for a right-hand preview pane taking 60% of the width.

    fzf preview commands run with stdout redirected, so the size is measured
    here and baked into the command.
    """

    if columns is None or rows is None:
        size = shutil.get_terminal_size(fallback=(80, 24))
        columns = size.columns if columns is None else columns
        rows = size.lines if rows is None else rows
    return max(20, columns * 60 // 100), max(10, rows - 2)


def render_preview_command(
    capability: TerminalCapability,
    size: tuple[int, int] | None = None,
) -> str:
    """Shell template used as fzf's `--preview`; `{}` is the selected path."""

    if capability is TerminalCapability.KITTY_GRAPHICS:
        return (
            "kitty +kitten icat --clear --transfer-mode=memory --stdin=no "
            "--place=${FZF_PREVIEW_COLUMNS}x${FZF_PREVIEW_LINES}@0x0 {}"
        )
    if capability is TerminalCapability.ITERM2_INLINE:
        return "imgcat -W ${FZF_PREVIEW_COLUMNS} -H ${FZF_PREVIEW_LINES} {}"

    width, height = size or preview_size()
    if capability is TerminalCapability.WEZTERM_VIA_CHAFA:
        return f"chafa -f iterm -s {width}x{height} --animate false {{}}"
    if capability is TerminalCapability.GENERIC_CHAFA:
        return f"chafa -s {width}x{height} --animate false {{}}"
    return "echo {}"


def pick_with_fzf(
    paths: Sequence[Path],
    preview_command: str,
    *,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    which: Which = shutil.which,
) -> Path | None:
    """Let the user pick one of `paths` in fzf; None when the picker is dismissed.

    fzf draws its UI on /dev/tty when stdout is captured, so the selection
    is read back from stdout.
    """

    fzf = which("fzf")
    if not fzf:
        raise ToolNotFoundError("fzf is required for interactive selection (https://github.com/junegunn/fzf).")
    if not paths:
        return None

    result = runner(
        [
            fzf,
            "--preview",
            preview_command,
            "--preview-window=right:60%",
            "--ansi",
        ],
        input="\n".join(str(p) for p in paths) + "\n",
        stdout=subprocess.PIPE,
        text=True,
        check=False,
    )
    # 1: no match, 130: interrupted with ESC/Ctrl-C.
    if result.returncode != 0:
        logger.debug("fzf exited with %s", result.returncode)
        return None
    selected = (result.stdout or "").strip()
    return Path(selected) if selected else None
