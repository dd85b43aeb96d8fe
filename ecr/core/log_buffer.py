"""Thread-safe tail of worker stderr output.

Keeps the most recent lines the worker wrote to stderr so that they can be
reported alongside a crash, without keeping the whole stream in memory.
Every line is tagged with the worker generation that wrote it, so a crash
report shows the output of the process that died and not its replacement.
"""

import logging
from collections import deque
from threading import Lock
from typing import Callable, Deque, List, Optional, Tuple


def _default_timestamp() -> str:
    """Get current timestamp in ISO format (testable via injection)."""
    from datetime import datetime

    return datetime.now().isoformat(timespec="seconds")


class LogBuffer:
    """Bounded, generation-tagged buffer of worker output lines."""

    MAX_LINES = 500
    MAX_CHARS_PER_LINE = 2000

    def __init__(self, timestamp_fn: Optional[Callable[[], str]] = None, max_lines: int = MAX_LINES) -> None:
        """
        Args:
            timestamp_fn: Returns the timestamp string; inject for testing
            max_lines: Number of entries kept across all generations (oldest dropped first)
        """
        self._entries: Deque[Tuple[int, str]] = deque(maxlen=max_lines)
        self._lock = Lock()
        self._timestamp_fn = timestamp_fn or _default_timestamp

    def append(self, message: str, generation: int = 0, level: int = logging.INFO) -> None:
        if len(message) > self.MAX_CHARS_PER_LINE:
            message = message[: self.MAX_CHARS_PER_LINE] + "...[truncated]"

        entry = f"[{self._timestamp_fn()}] [{logging.getLevelName(level)}] {message}"
        with self._lock:
            self._entries.append((generation, entry))

    def tail(self, count: Optional[int] = None, generation: Optional[int] = None) -> List[str]:
        """Newest `count` lines, oldest first; all lines when count is None.

        With `generation`, only lines written by that worker generation are returned.
        """
        with self._lock:
            lines = [entry for gen, entry in self._entries if generation is None or gen == generation]
        if count is None:
            return lines
        return lines[-count:] if count > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
