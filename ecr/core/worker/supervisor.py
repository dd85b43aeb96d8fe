"""Supervisor for the long-lived eCR worker process.

Owns exactly one worker process and multiplexes concurrent requests over its
stdin/stdout via requestId correlation. Responses may arrive in any order.

State machine:
    STOPPED -> STARTING -> READY
    READY/STARTING --(process exit)--> STOPPED --(restart policy delay)--> STARTING
    any --(stop())--> STOPPED (no restart)

Thread Safety:
    - Process, state, correlation table and request counter are guarded by _lock
    - Futures are settled outside the lock
    - stdin writes are serialized by _write_lock
    - Each process generation has its own reader threads; events from a
      previous generation are ignored
"""

import logging
import subprocess
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ecr.common.typed_config import WorkerConfig
from ecr.core.errors import (
    WorkerCommandError,
    WorkerCrashedError,
    WorkerError,
    WorkerNotReadyError,
    WorkerStoppedError,
)
from ecr.core.features.models import FeatureVector
from ecr.core.log_buffer import LogBuffer
from ecr.core.prediction import PredictionResult
from ecr.core.worker.cache import PredictionCache, cache_key
from ecr.core.worker.protocol import (
    COMMAND_FEATURES,
    COMMAND_PING,
    COMMAND_PREDICT,
    STATUS_OK,
    decode_message,
    encode_request,
    is_ready_message,
    request_id_of,
)
from ecr.core.worker.recovery import RestartPolicy

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    READY = "ready"


@dataclass
class PendingRequest:
    """Correlation-table entry, alive until a matching response or worker exit."""

    request_id: int
    command: str
    payload: Any
    future: Future
    sent_at: float = field(default_factory=time.time)


class WorkerSupervisor:
    """Starts and communicates with the eCR worker process.

    Args:
        config: Worker settings (command, timeouts, restart policy, cache)
        config_path: Config file passed on to the worker with --config
    """

    STDERR_TAIL_LINES = 20

    def __init__(self, config: Optional[WorkerConfig] = None, config_path: Optional[str] = None):
        self.config = config or WorkerConfig()
        self.command: List[str] = list(self.config.command)
        if config_path:
            self.command += ["--config", config_path]
        self.restart_policy = RestartPolicy.from_config(self.config)
        self.cache = PredictionCache(self.config.cache_size, self.config.cache_policy)
        self.stderr_log = LogBuffer()

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._state = WorkerState.STOPPED
        self._ready_event = threading.Event()
        self._pending: Dict[int, PendingRequest] = {}
        self._request_counter = 0
        self._generation = 0
        self._restart_attempts = 0
        self._restart_timer: Optional[threading.Timer] = None
        self._stopping = False
        self.exit_codes: List[Optional[int]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkerState:
        with self._lock:
            return self._state

    @property
    def is_ready(self) -> bool:
        return self.state is WorkerState.READY

    @property
    def pid(self) -> Optional[int]:
        with self._lock:
            return self._process.pid if self._process else None

    def start(self) -> bool:
        """Spawn the worker and wait for its ready message.

        No-op if a worker process is already active. Blocks until ready or
        startup_timeout, whichever comes first.

        Returns:
            True if the worker reported ready.
        """
        with self._lock:
            self._stopping = False
            self._cancel_restart_timer()
        return self._spawn()

    def _spawn(self, restart: bool = False) -> bool:
        with self._lock:
            if restart:
                if self._stopping:
                    return False
                self._restart_timer = None
            if self._process is not None:
                return self._state is WorkerState.READY
            try:
                logger.info(f"Starting eCR worker: {self.command}")
                startupinfo = None
                if hasattr(subprocess, "STARTUPINFO"):
                    startupinfo = subprocess.STARTUPINFO()
                    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # stop command box popups on win
                process = subprocess.Popen(
                    self.command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                    startupinfo=startupinfo,
                )
            except (FileNotFoundError, PermissionError, OSError) as e:
                logger.error(f"Starting eCR worker failed: {self.command}: {e}")
                self._schedule_restart_locked()
                return False
            self._generation += 1
            generation = self._generation
            self._process = process
            self._state = WorkerState.STARTING
            ready_event = self._ready_event = threading.Event()

        threading.Thread(
            target=self._read_stdout_thread,
            args=(process, generation, ready_event),
            daemon=True,
            name=f"ecr-worker-stdout-{generation}",
        ).start()
        threading.Thread(
            target=self._read_stderr_thread,
            args=(process, generation),
            daemon=True,
            name=f"ecr-worker-stderr-{generation}",
        ).start()

        if not ready_event.wait(self.config.startup_timeout):
            logger.error(f"eCR worker did not report ready within {self.config.startup_timeout}s")
            return False
        return True

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the current (or next restarted) worker is ready."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                if self._state is WorkerState.READY:
                    return True
                if self._stopping:
                    return False
                event = self._ready_event
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            # poll, since a restart replaces the event
            event.wait(0.1 if remaining is None else min(remaining, 0.1))

    def stop(self) -> None:
        """Terminate the worker without scheduling a restart.

        Pending requests are rejected with WorkerStoppedError.
        """
        with self._lock:
            self._stopping = True
            self._cancel_restart_timer()
            process = self._process
            self._process = None
            self._state = WorkerState.STOPPED
            self._generation += 1  # reader threads of this process become stale
            pending = self._take_pending_locked()

        self._reject_all(pending, WorkerStoppedError("eCR worker stopped"))
        if process is not None:
            self._terminate(process)
            logger.info("Stopped eCR worker")

    def _terminate(self, process: subprocess.Popen) -> None:
        try:
            if process.stdin:
                process.stdin.close()
        except OSError as e:
            logger.debug(f"Stop: error closing stdin: {e}")
        try:
            process.terminate()
            process.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            logger.debug("Worker still alive after terminate, forcing kill")
            process.kill()
            try:
                process.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                logger.error("Worker did not respond to kill - process may be orphaned")
        except OSError as e:
            logger.debug(f"Stop: OSError during terminate: {e}")

    # ------------------------------------------------------------------
    # Exit handling and restart
    # ------------------------------------------------------------------

    def _take_pending_locked(self) -> List[PendingRequest]:
        pending = list(self._pending.values())
        self._pending = {}
        return pending

    @staticmethod
    def _reject_all(pending: Sequence[PendingRequest], error: WorkerError) -> None:
        for request in pending:
            if not request.future.done():
                request.future.set_exception(error)

    def _cancel_restart_timer(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    def _schedule_restart_locked(self) -> Optional[float]:
        """Arm the restart timer per policy (caller holds _lock). Returns the delay."""
        if self._stopping:
            return None
        delay = self.restart_policy.delay(self._restart_attempts)
        if delay is None:
            logger.error(f"eCR worker failed {self._restart_attempts} consecutive restarts, giving up")
            return None
        self._restart_attempts += 1
        timer = threading.Timer(delay, self._restart)
        timer.daemon = True
        self._restart_timer = timer
        timer.start()
        return delay

    def _restart(self) -> None:
        self._spawn(restart=True)

    def _handle_exit(self, process: subprocess.Popen, generation: int) -> None:
        try:
            code = process.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            # stdout closed but process lingers; treat as dead
            process.kill()
            code = process.wait()
        with self._lock:
            if generation != self._generation:
                return
            self._process = None
            self._state = WorkerState.STOPPED
            self.exit_codes.append(code)
            pending = self._take_pending_locked()
            delay = self._schedule_restart_locked()

        tail = self.stderr_log.tail(self.STDERR_TAIL_LINES, generation=generation)
        logger.error(
            f"eCR worker exited with code {code}, rejecting {len(pending)} pending requests"
            + (f", restarting in {delay:.1f}s" if delay is not None else "")
            + ("\nLast worker output:\n" + "\n".join(tail) if tail else "")
        )
        self._reject_all(
            pending,
            WorkerCrashedError(
                f"eCR worker exited with code {code}",
                user_message="eCR service crashed",
                context={"exit_code": code},
            ),
        )

    # ------------------------------------------------------------------
    # Reader threads
    # ------------------------------------------------------------------

    def _read_stdout_thread(self, process: subprocess.Popen, generation: int, ready_event: threading.Event) -> None:
        """Parse protocol lines until EOF, then handle the process exit."""
        try:
            for raw_line in process.stdout:
                line = raw_line.strip()
                if line:
                    self._handle_line(line, generation, ready_event)
        except (OSError, ValueError) as e:
            logger.debug(f"Worker stdout closed: {e}")
        self._handle_exit(process, generation)

    def _handle_line(self, line: str, generation: int, ready_event: threading.Event) -> None:
        try:
            message = decode_message(line)
        except ValueError as e:
            logger.warning(f"eCR worker sent unparseable line {line[:200]!r}: {e}")
            return

        if is_ready_message(message):
            with self._lock:
                if generation != self._generation:
                    return
                self._state = WorkerState.READY
                self._restart_attempts = 0
            ready_event.set()
            logger.info("eCR worker ready")
            return

        request_id = request_id_of(message)
        if request_id is None:
            logger.debug(f"eCR worker control message ignored: {message}")
            return

        with self._lock:
            request = self._pending.pop(request_id, None)
        if request is None:
            logger.debug(f"Response for unknown request {request_id} discarded")
            return

        logger.debug(
            f"[{time.time() - request.sent_at:.2f}s][{request_id}] {request.command} -> {message.get('status')}"
        )
        if message.get("status") == STATUS_OK:
            request.future.set_result(message.get("result"))
        else:
            request.future.set_exception(
                WorkerCommandError(
                    str(message.get("error") or "eCR worker returned an error"),
                    context={"request_id": request_id, "command": request.command},
                )
            )

    def _read_stderr_thread(self, process: subprocess.Popen, generation: int) -> None:
        try:
            for raw_line in process.stderr:
                line = raw_line.rstrip()
                if line:
                    self.stderr_log.append(line, generation)
                    logger.debug(f"[worker] {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Worker stderr closed: {e}")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _send_command(self, command: str, payload: Any) -> Future:
        """Send one request; the returned future settles with its response.

        Raises:
            WorkerNotReadyError: The worker has not reported ready.
        """
        future: Future = Future()
        with self._lock:
            if self._state is not WorkerState.READY or self._process is None:
                raise WorkerNotReadyError("eCR service not ready", context={"state": self._state.value})
            self._request_counter += 1
            request_id = self._request_counter
            self._pending[request_id] = PendingRequest(request_id, command, payload, future)
            process = self._process

        line = encode_request(command, payload, request_id)
        try:
            with self._write_lock:
                process.stdin.write(line)
                process.stdin.flush()
        except (OSError, ValueError) as e:
            logger.debug(f"Exception in writing to eCR worker: {e}")
            with self._lock:
                request = self._pending.pop(request_id, None)
            # if the exit handler got there first it has already rejected the future
            if request is not None:
                future.set_exception(WorkerCrashedError(f"eCR worker pipe closed: {e}"))
        return future

    def predict(self, stat: Dict[str, Any]) -> PredictionResult:
        """eCR prediction for a stat block, served from the cache when possible."""
        key = cache_key(stat)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        result = PredictionResult.from_dict(self._send_command(COMMAND_PREDICT, stat).result())
        self.cache.put(key, result)
        return result

    def features(self, stat: Dict[str, Any]) -> FeatureVector:
        """Feature vector of a stat block (uncached)."""
        return FeatureVector.from_dict(self._send_command(COMMAND_FEATURES, stat).result())

    def ping(self) -> bool:
        try:
            self._send_command(COMMAND_PING, {}).result()
            return True
        except WorkerError:
            return False

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = {
                "state": self._state.value,
                "pid": self._process.pid if self._process else None,
                "pending": len(self._pending),
                "requests_sent": self._request_counter,
                "restart_attempts": self._restart_attempts,
                "exit_codes": list(self.exit_codes),
            }
        snapshot["cache"] = self.cache.stats()
        snapshot["stderr"] = self.stderr_log.tail(self.STDERR_TAIL_LINES)
        return snapshot


_supervisor: Optional[WorkerSupervisor] = None
_supervisor_lock = threading.Lock()


def get_supervisor(config: Optional[WorkerConfig] = None, config_path: Optional[str] = None) -> WorkerSupervisor:
    """Process-wide supervisor. Arguments only apply on the first call."""
    global _supervisor
    with _supervisor_lock:
        if _supervisor is None:
            _supervisor = WorkerSupervisor(config, config_path)
        return _supervisor
