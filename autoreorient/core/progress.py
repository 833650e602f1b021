"""
Progress reporting for batch reorientation.

Progress sinks are purely observational: nothing they do affects the result.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from tqdm import tqdm


class ProgressSink(ABC):
    """Receives one init(), a number of advance() calls and a final clear()."""

    @abstractmethod
    def init(self, total: int) -> None:
        """Start reporting for `total` steps."""
        pass

    @abstractmethod
    def advance(self) -> None:
        """Mark one more step as completed."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Stop reporting."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class NullProgress(ProgressSink):
    """Discards all progress."""

    def init(self, total: int) -> None:
        pass

    def advance(self) -> None:
        pass

    def clear(self) -> None:
        pass


class TqdmProgress(ProgressSink):
    """Progress bar on the terminal."""

    def __init__(self, desc: str = 'Auto-Reorient to MNI space', unit: str = 'volume'):
        self.desc = desc
        self.unit = unit
        self._bar: Optional[tqdm] = None

    def init(self, total: int) -> None:
        self.clear()
        self._bar = tqdm(total=total, desc=self.desc, unit=self.unit)

    def advance(self) -> None:
        if self._bar is not None:
            self._bar.update(1)

    def clear(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


class RecordingProgress(ProgressSink):
    """Keeps the sequence of calls, e.g. for callers that poll completion."""

    def __init__(self):
        self.total: Optional[int] = None
        self.completed = 0
        self.events: List[str] = []

    def init(self, total: int) -> None:
        self.total = total
        self.completed = 0
        self.events.append(f'init:{total}')

    def advance(self) -> None:
        self.completed += 1
        self.events.append(f'advance:{self.completed}')

    def clear(self) -> None:
        self.events.append('clear')
