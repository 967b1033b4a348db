"""Error taxonomy for wallow.

Every error the core raises derives from `WallowError` and carries the exit
code the CLI uses, so scripting callers can branch on the failure category.
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes, one per error category."""

    OK = 0
    FAILURE = 1
    USAGE = 2
    PARTIAL = 3
    NETWORK = 4
    AUTH = 5
    RATE_LIMIT = 6
    CONVERSION = 7
    SCHEDULE = 8
    APPLY = 9
    TOOL_MISSING = 10
    INTERRUPTED = 130


class WallowError(Exception):
    """Base class for every error surfaced to the user."""

    exit_code: ExitCode = ExitCode.FAILURE


class NetworkError(WallowError):
    """HTTP or transport failure.

    `transient` marks failures worth retrying (timeouts, resets, 5xx,
    truncated bodies). Everything else (404, other 4xx, malformed payloads)
    is permanent.
    """

    exit_code = ExitCode.NETWORK

    def __init__(self, message: str, *, transient: bool, status_code: int | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class AuthError(WallowError):
    """Missing or rejected provider credential."""

    exit_code = ExitCode.AUTH


class RateLimitError(WallowError):
    """Provider kept answering 429/403 after the backoff retry."""

    exit_code = ExitCode.RATE_LIMIT


class ConversionError(WallowError):
    """The theme converter is missing or exited with a non-zero status."""

    exit_code = ExitCode.CONVERSION


class TerminalCapabilityUnavailable(WallowError):
    """No image renderer is usable in this terminal.

    Informational only: previews degrade to plain filenames.
    """


class ScheduleWriteError(WallowError):
    """Reading, rewriting or installing the crontab failed."""

    exit_code = ExitCode.SCHEDULE


class InvalidCronExpression(ScheduleWriteError):
    """The cron expression would produce a malformed crontab line."""


class ApplyError(WallowError):
    """Setting the desktop background failed."""

    exit_code = ExitCode.APPLY


class ToolNotFoundError(WallowError):
    """A required external executable is not on PATH."""

    exit_code = ExitCode.TOOL_MISSING


class FetchFailedError(WallowError):
    """A fetch batch ended without committing or finding any wallpaper."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        if isinstance(cause, WallowError):
            self.exit_code = cause.exit_code
