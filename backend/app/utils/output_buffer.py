"""Bounded capture of build/dev-server output."""
from collections import deque
from typing import Iterable, List


class OutputBuffer:
    """Fixed-capacity ring buffer of output lines, newest last.

    Once full, each appended line overwrites the oldest one.
    """

    def __init__(self, max_lines: int = 200, initial: Iterable[str] = ()):
        if max_lines < 1:
            raise ValueError("max_lines must be at least 1")
        self._lines: deque[str] = deque(initial, maxlen=max_lines)

    @property
    def max_lines(self) -> int:
        return self._lines.maxlen

    def append(self, line: str) -> None:
        self._lines.append(line.rstrip("\r\n"))

    def extend(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.append(line)

    def lines(self) -> List[str]:
        return list(self._lines)

    def tail(self, count: int) -> List[str]:
        if count <= 0:
            return []
        return list(self._lines)[-count:]

    def __len__(self) -> int:
        return len(self._lines)
