"""Crontab access through the `crontab` binary.

`crontab -l` reads the whole table and `crontab -` installs a whole table
from stdin; the binary swaps the spool file itself, so an install either
fully happens or does not happen at all.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Callable

from core.domain.errors import ScheduleWriteError
from core.interfaces.schedule import PeriodicTaskTable

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


class CrontabTable(PeriodicTaskTable):
    """The current user's crontab."""

    def __init__(self, executable: str = "crontab", *, runner: Runner = subprocess.run) -> None:
        self._executable = executable
        self._runner = runner

    def _run(self, args: list[str], *, stdin: str | None = None) -> subprocess.CompletedProcess:
        try:
            return self._runner(
                [self._executable, *args],
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise ScheduleWriteError(f"Could not run '{self._executable}': {exc}") from exc

    def read(self) -> str:
        result = self._run(["-l"])
        if result.returncode == 0:
            return result.stdout or ""
        stderr = (result.stderr or "").strip()
        # "no crontab for <user>" is how an empty table is reported.
        if "no crontab" in stderr.lower():
            return ""
        raise ScheduleWriteError(f"crontab -l failed: {stderr or f'exit code {result.returncode}'}")

    def replace(self, content: str) -> None:
        if content and not content.endswith("\n"):
            content += "\n"
        result = self._run(["-"], stdin=content)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ScheduleWriteError(f"crontab install failed: {stderr or f'exit code {result.returncode}'}")
        logger.debug("installed crontab (%s lines)", len(content.splitlines()))

