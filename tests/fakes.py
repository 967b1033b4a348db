from __future__ import annotations


class InMemoryTable:
    """Periodic-task table held in memory."""

    def __init__(self, content: str = "") -> None:
        self.content = content
        self.writes = 0

    def read(self) -> str:
        return self.content

    def replace(self, content: str) -> None:
        self.content = content
        self.writes += 1
