"""Periodic-task table contract.

The table is a shared external resource, so it is only ever read whole and
replaced whole; there is no line-level patching API on purpose.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PeriodicTaskTable(Protocol):
    def read(self) -> str:
        """Return the entire table as text ('' when the user has none)."""

        ...

    def replace(self, content: str) -> None:
        """Install `content` as the entire table in one operation."""

        ...
