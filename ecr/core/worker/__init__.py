"""eCR worker process and its supervisor.

This package provides:
- The line-delimited JSON protocol spoken over the worker's stdin/stdout
- WorkerService, the pipeline host running inside the worker process
- WorkerSupervisor, which spawns the worker, multiplexes requests and restarts it
"""

from ecr.core.worker.cache import PredictionCache, cache_key
from ecr.core.worker.recovery import RestartPolicy
from ecr.core.worker.supervisor import WorkerState, WorkerSupervisor, get_supervisor

__all__ = [
    # Cache
    "PredictionCache",
    "cache_key",
    # Recovery
    "RestartPolicy",
    # Supervisor
    "WorkerState",
    "WorkerSupervisor",
    "get_supervisor",
]
