"""Managed schedule entry in the user's periodic-task table.

wallow owns exactly one line in the table, marked with
`SCHEDULE_SENTINEL`. Every change reads the whole table, rewrites the
managed line and installs the whole table again; lines that do not carry
the sentinel are preserved byte for byte.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import sys
from pathlib import Path

from core.config import SCHEDULE_CRON_KEY, AppSettings, write_user_env_vars
from core.domain.errors import InvalidCronExpression, ScheduleWriteError
from core.domain.models import SCHEDULE_SENTINEL, ScheduleEntry
from core.interfaces.schedule import PeriodicTaskTable

logger = logging.getLogger(__name__)

CRON_MACROS = frozenset(
    {"@reboot", "@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}
)


def validate_cron(expression: str) -> str:
    """Return the normalized expression or raise `InvalidCronExpression`.

    Only the shape is checked (five fields or a macro); field ranges are left
    to cron itself.
    """

    if "\n" in expression or "\r" in expression:
        raise InvalidCronExpression("Cron expression must be a single line.")
    if SCHEDULE_SENTINEL in expression:
        raise InvalidCronExpression("Cron expression must not contain the wallow marker.")
    fields = expression.split()
    if not fields:
        raise InvalidCronExpression("Cron expression is empty.")
    if fields[0].startswith("@"):
        if len(fields) != 1 or fields[0] not in CRON_MACROS:
            raise InvalidCronExpression(f"Unknown cron macro: {expression!r}")
    elif len(fields) != 5:
        raise InvalidCronExpression(
            f"Cron expression needs 5 fields (minute hour day month weekday), got {len(fields)}: {expression!r}"
        )
    return " ".join(fields)


def default_invocation_command() -> str:
    """Command line the scheduled entry runs.

    Prefers the installed `wallow` script; falls back to the current
    interpreter running the CLI module.
    """

    script = shutil.which("wallow")
    if script:
        parts = [str(Path(script).resolve())]
    else:
        parts = [sys.executable, "-m", "cli.main"]
    return " ".join(shlex.quote(p) for p in parts) + " schedule --run"


def _without_managed_lines(table: str, sentinel: str) -> list[str]:
    return [line for line in table.splitlines() if sentinel not in line]


class ScheduleManager:
    def __init__(
        self,
        table: PeriodicTaskTable,
        *,
        settings: AppSettings | None = None,
        command: str | None = None,
        env_path: Path | None = None,
        sentinel: str = SCHEDULE_SENTINEL,
    ) -> None:
        self._table = table
        self._settings = settings
        self._command = command
        self._env_path = env_path
        self._sentinel = sentinel

    @property
    def command(self) -> str:
        if self._command is None:
            self._command = default_invocation_command()
        return self._command

    def upsert(self, cron_expression: str | None = None) -> ScheduleEntry:
        """Install (or replace) the managed entry.

        With no expression the stored `schedule_cron` is reused. The table is
        installed first and the expression persisted afterwards, so a failed
        install never leaves config and table disagreeing.
        """

        if cron_expression is None:
            cron_expression = self._settings.schedule_cron if self._settings else None
            if not cron_expression:
                raise ScheduleWriteError(
                    "No cron expression given and none stored; run e.g. `wallow schedule \"0 * * * *\"`."
                )
        expression = validate_cron(cron_expression)
        entry = ScheduleEntry(cron_expression=expression, command=self.command, sentinel=self._sentinel)

        lines = _without_managed_lines(self._table.read(), self._sentinel)
        lines.append(entry.render())
        self._table.replace("\n".join(lines) + "\n")
        logger.info("installed schedule: %s", entry.render())

        write_user_env_vars({SCHEDULE_CRON_KEY: expression}, self._env_path)
        return entry

    def remove(self) -> bool:
        """Drop the managed entry; False when there was none."""

        current = self._table.read()
        lines = _without_managed_lines(current, self._sentinel)
        if len(lines) == len(current.splitlines()):
            return False
        self._table.replace("\n".join(lines) + "\n" if lines else "")
        logger.info("removed schedule entry")
        return True

    def current(self) -> ScheduleEntry | None:
        for line in self._table.read().splitlines():
            entry = ScheduleEntry.parse(line, sentinel=self._sentinel)
            if entry is not None:
                return entry
        return None
