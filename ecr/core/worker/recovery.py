"""Restart policy for the worker process.

Bounded exponential backoff: the n-th consecutive restart (0-based) waits
initial_delay * multiplier**n seconds, capped at max_delay. The counter is
reset whenever the worker reports ready. With max_restarts set, the
supervisor gives up after that many consecutive failed restarts.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ecr.common.typed_config import WorkerConfig


@dataclass(frozen=True)
class RestartPolicy:
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_restarts: Optional[int] = None

    @staticmethod
    def from_config(config: "WorkerConfig") -> "RestartPolicy":
        return RestartPolicy(
            initial_delay=config.restart_delay,
            multiplier=config.restart_backoff,
            max_delay=max(config.max_restart_delay, config.restart_delay),
            max_restarts=config.max_restarts,
        )

    def delay(self, attempt: int) -> Optional[float]:
        """Seconds to wait before restart number `attempt`, or None to give up."""
        if self.max_restarts is not None and attempt >= self.max_restarts:
            return None
        # float pow overflows past n = 1023
        return min(self.max_delay, self.initial_delay * self.multiplier ** min(attempt, 64))
