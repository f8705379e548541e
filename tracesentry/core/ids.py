"""Run-scoped monotonic identifiers."""

from __future__ import annotations


class IdSequence:
    """Produces ``PREFIX-0001``, ``PREFIX-0002``, ... for a single run.

    Each detector pass or normalization call owns its own sequence, so
    identifiers never leak between runs.
    """

    def __init__(self, prefix: str, width: int = 4) -> None:
        self.prefix = prefix
        self.width = width
        self._last = 0

    def next(self) -> str:
        self._last += 1
        return f"{self.prefix}-{self._last:0{self.width}d}"

    @property
    def issued(self) -> int:
        return self._last
