# ecr/common/typed_config.py
#
# Frozen dataclass definitions and type conversion helpers.

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any

# Recognized bool strings
_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no"})

CACHE_POLICIES = ("fifo", "lru")


# =============================================================================
# Helper Functions
# =============================================================================


def safe_int(value: Any, default: int) -> int:
    """int conversion. None/bool/float/failure -> default.

    Note:
        bool is a subclass of int but deliberately returns default, so that
        True/False never silently become 1/0. float also returns default to
        avoid implicit truncation.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def safe_float(value: Any, default: float) -> float:
    """float conversion. None/bool/failure -> default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def safe_bool(value: Any, default: bool = False) -> bool:
    """bool conversion. Unrecognized strings ("fasle", "abc") -> default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lower = value.lower()
        if lower in _TRUE_STRINGS:
            return True
        if lower in _FALSE_STRINGS:
            return False
    return default


def safe_str(value: Any, default: str) -> str:
    """String conversion. None/empty/non-str -> default."""
    if not isinstance(value, str) or not value:
        return default
    return value


def normalize_path(value: Any) -> str | None:
    """Path normalization. None/empty/whitespace-only/non-str -> None."""
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def safe_command(value: Any) -> tuple[str, ...] | None:
    """argv list -> tuple of strings. Anything else (or an empty list) -> None."""
    if not isinstance(value, (list, tuple)) or not value:
        return None
    if not all(isinstance(part, str) and part for part in value):
        return None
    return tuple(value)


def default_worker_command() -> tuple[str, ...]:
    return (sys.executable, "-m", "ecr.core.worker.service")


# =============================================================================
# Dataclasses
# =============================================================================


@dataclass(frozen=True)
class WorkerConfig:
    """Worker supervisor settings (worker section).

    Thread-safety: Immutable (frozen=True)

    Attributes:
        command: argv used to spawn the worker
        startup_timeout: Seconds start() waits for the ready message
        restart_delay: Delay before the first restart after an exit
        restart_backoff: Delay multiplier per consecutive restart
        max_restart_delay: Upper bound on the restart delay
        max_restarts: Consecutive restarts before giving up (None = unlimited)
        cache_size: Prediction cache capacity
        cache_policy: "fifo" (evict oldest insert) or "lru"
        threads: Request handler threads inside the worker
    """

    command: tuple[str, ...] = field(default_factory=default_worker_command)
    startup_timeout: float = 10.0
    restart_delay: float = 1.0
    restart_backoff: float = 2.0
    max_restart_delay: float = 30.0
    max_restarts: int | None = None
    cache_size: int = 1000
    cache_policy: str = "fifo"
    threads: int = 4

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WorkerConfig":
        """Build from a dict. Missing keys -> defaults, invalid values -> safely converted."""
        policy = safe_str(d.get("cache_policy"), "fifo").lower()
        max_restarts = d.get("max_restarts")
        return cls(
            command=safe_command(d.get("command")) or default_worker_command(),
            startup_timeout=max(0.1, safe_float(d.get("startup_timeout"), 10.0)),
            restart_delay=max(0.0, safe_float(d.get("restart_delay"), 1.0)),
            restart_backoff=max(1.0, safe_float(d.get("restart_backoff"), 2.0)),
            max_restart_delay=max(0.0, safe_float(d.get("max_restart_delay"), 30.0)),
            max_restarts=None if max_restarts is None else max(0, safe_int(max_restarts, 0)),
            cache_size=max(1, safe_int(d.get("cache_size"), 1000)),
            cache_policy=policy if policy in CACHE_POLICIES else "fifo",
            threads=max(1, safe_int(d.get("threads"), 4)),
        )


@dataclass(frozen=True)
class ModelConfig:
    """Residual model settings (model section).

    Attributes:
        enabled: Use the residual model at all
        model_path: ONNX artifact path
        metadata_path: Sidecar metadata JSON path
        threads: Inference intra-op threads
    """

    enabled: bool = True
    model_path: str = "models/ecr_production/ecr_model_v1.onnx"
    metadata_path: str = "models/ecr_production/ecr_model_metadata.json"
    threads: int = 1

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ModelConfig":
        return cls(
            enabled=safe_bool(d.get("enabled"), True),
            model_path=normalize_path(d.get("model_path")) or cls.model_path,
            metadata_path=normalize_path(d.get("metadata_path")) or cls.metadata_path,
            threads=max(1, safe_int(d.get("threads"), 1)),
        )


@dataclass(frozen=True)
class ECRConfig:
    """Top-level configuration."""

    worker: WorkerConfig = field(default_factory=WorkerConfig)
    model: ModelConfig = field(default_factory=ModelConfig)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ECRConfig":
        worker = d.get("worker")
        model = d.get("model")
        return cls(
            worker=WorkerConfig.from_dict(dict(worker) if isinstance(worker, dict) else {}),
            model=ModelConfig.from_dict(dict(model) if isinstance(model, dict) else {}),
        )
