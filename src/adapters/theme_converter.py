"""Adapter for the external theme converter (gowall).

Responsibilities:
- Run `gowall convert <image> -t <theme> --output <file>` once per output
  directory and normalize the result as `ConvertedArtifact`s.
- List available themes (`gowall list`).

The input image is never modified or removed; a failed conversion leaves
no partial output behind.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Sequence

from core.domain.errors import ConversionError
from core.domain.models import FILENAME_PREFIX, ConvertedArtifact

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


def converted_filename(input_path: Path, theme: str) -> str:
    """`wallow-wallhaven-x.jpg` + `nord` -> `wallow-nord-wallhaven-x.jpg`."""

    name = input_path.name.removeprefix(FILENAME_PREFIX)
    safe_theme = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in theme)
    return f"{FILENAME_PREFIX}{safe_theme}-{name}"


class ThemeConverter:
    def __init__(
        self,
        executable: str = "gowall",
        *,
        runner: Runner = subprocess.run,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._executable = executable
        self._runner = runner
        self._which = which

    def _resolve(self) -> str:
        path = self._which(self._executable)
        if not path:
            raise ConversionError(
                f"'{self._executable}' is not installed or not on PATH "
                "(see https://github.com/Achno/gowall)."
            )
        return path

    def is_installed(self) -> bool:
        return self._which(self._executable) is not None

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        try:
            return self._runner(list(args), capture_output=True, text=True, check=False)
        except OSError as exc:
            raise ConversionError(f"Could not run {args[0]}: {exc}") from exc

    def convert(
        self,
        input_path: Path,
        theme: str,
        output_dirs: Sequence[Path],
    ) -> list[ConvertedArtifact]:
        """Convert `input_path` with `theme` into every directory of `output_dirs`.

        Returns one artifact per directory, in the given order. Raises
        `ConversionError` on a missing executable, a non-zero exit or an
        empty output; files already written for earlier directories are
        removed first.
        """

        if not theme.strip():
            raise ConversionError("A theme name is required.")
        if not input_path.is_file():
            raise ConversionError(f"Input image not found: {input_path}")
        if not output_dirs:
            raise ConversionError("No output directory configured for converted wallpapers.")

        executable = self._resolve()
        artifacts: list[ConvertedArtifact] = []
        try:
            for output_dir in output_dirs:
                target = output_dir / converted_filename(input_path, theme)
                artifacts.append(self._convert_one(executable, input_path, theme, target))
        except ConversionError:
            # All directories or none.
            for artifact in artifacts:
                for path in artifact.paths:
                    path.unlink(missing_ok=True)
            raise
        return artifacts

    def convert_file(self, input_path: Path, theme: str, target: Path) -> ConvertedArtifact:
        """Convert `input_path` with `theme` into the explicit file `target`."""

        if not theme.strip():
            raise ConversionError("A theme name is required.")
        if not input_path.is_file():
            raise ConversionError(f"Input image not found: {input_path}")
        if target.resolve() == input_path.resolve():
            raise ConversionError("The output path must differ from the input image.")
        return self._convert_one(self._resolve(), input_path, theme, target)

    def _convert_one(self, executable: str, input_path: Path, theme: str, target: Path) -> ConvertedArtifact:
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("gowall %s -> %s", input_path, target)

        result = self._run([executable, "convert", str(input_path), "-t", theme, "--output", str(target)])
        if result.returncode != 0:
            target.unlink(missing_ok=True)
            reason = (result.stderr or result.stdout or "").strip() or f"exit code {result.returncode}"
            raise ConversionError(f"gowall failed to convert {input_path.name} with '{theme}': {reason}")
        if not target.is_file() or target.stat().st_size == 0:
            target.unlink(missing_ok=True)
            raise ConversionError(f"gowall reported success but produced no output at {target}")
        return ConvertedArtifact(theme=theme, output_dir=target.parent, paths=[target])

    def list_themes(self) -> list[str]:
        executable = self._resolve()
        result = self._run([executable, "list"])
        if result.returncode != 0:
            raise ConversionError(f"gowall list failed: {(result.stderr or '').strip()}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
