"""Tests for WorkerSupervisor.

Uses real subprocesses: the scripted fake worker from tests/fakes.py for
protocol and lifecycle behavior, and the real worker module end to end.
"""

import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from ecr.core.errors import (
    WorkerCommandError,
    WorkerCrashedError,
    WorkerNotReadyError,
    WorkerStoppedError,
)
from ecr.core.features.models import FeatureVector
from ecr.core.prediction import PredictionResult
from ecr.core.worker.protocol import COMMAND_PREDICT
from ecr.core.worker.supervisor import WorkerState, WorkerSupervisor, get_supervisor
from tests.conftest import fake_worker_config


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def supervisor(fake_config):
    sup = WorkerSupervisor(fake_config)
    yield sup
    sup.stop()


class TestNotStarted:
    """Commands before Ready are rejected immediately."""

    def test_initial_state(self, fake_config):
        sup = WorkerSupervisor(fake_config)
        assert sup.state is WorkerState.STOPPED
        assert sup.pid is None
        assert not sup.is_ready

    def test_predict_rejected(self, fake_config):
        sup = WorkerSupervisor(fake_config)
        with pytest.raises(WorkerNotReadyError):
            sup.predict({"name": "Goblin"})
        assert sup.pending_count() == 0

    def test_ping_false(self, fake_config):
        assert WorkerSupervisor(fake_config).ping() is False

    def test_stop_without_start(self, fake_config):
        sup = WorkerSupervisor(fake_config)
        sup.stop()
        assert sup.state is WorkerState.STOPPED


class TestStart:
    def test_start_ready(self, supervisor):
        assert supervisor.start() is True
        assert supervisor.state is WorkerState.READY
        assert supervisor.pid is not None

    def test_start_twice_is_noop(self, supervisor):
        supervisor.start()
        pid = supervisor.pid
        assert supervisor.start() is True
        assert supervisor.pid == pid

    def test_startup_timeout(self):
        sup = WorkerSupervisor(fake_worker_config("--no-ready", startup_timeout=0.5))
        try:
            started = time.monotonic()
            assert sup.start() is False
            assert time.monotonic() - started < 5
            assert sup.state is WorkerState.STARTING
            with pytest.raises(WorkerNotReadyError):
                sup.predict({"name": "Goblin"})
        finally:
            sup.stop()

    def test_missing_executable(self, caplog):
        sup = WorkerSupervisor(fake_worker_config(command=("/nonexistent/ecr-worker",), max_restarts=0))
        with caplog.at_level(logging.ERROR, logger="ecr.core.worker.supervisor"):
            assert sup.start() is False
        assert sup.state is WorkerState.STOPPED
        assert "Starting eCR worker failed" in caplog.text
        sup.stop()

    def test_config_path_forwarded(self, fake_config):
        sup = WorkerSupervisor(fake_config, config_path="/etc/ecr.json")
        assert sup.command[-2:] == ["--config", "/etc/ecr.json"]

    def test_stderr_captured(self, supervisor):
        supervisor.start()
        assert wait_for(lambda: supervisor.stderr_log.tail())
        assert "fake worker started" in supervisor.stderr_log.tail()[0]


class TestRequests:
    """Request/response correlation over the running fake worker."""

    def test_ping(self, supervisor):
        supervisor.start()
        assert supervisor.ping() is True

    def test_predict(self, supervisor):
        supervisor.start()
        result = supervisor.predict({"name": "Goblin", "cr": "1/4"})

        assert isinstance(result, PredictionResult)
        assert result.ecr == "1"
        assert result.features["name"] == "Goblin"
        assert supervisor.pending_count() == 0

    def test_features(self, supervisor):
        supervisor.start()
        features = supervisor.features({"name": "Goblin"})

        assert isinstance(features, FeatureVector)
        assert features.ac == 12
        assert features.hp_avg == 7.0
        assert features.traits["trait_web"] == 1

    def test_request_ids_monotonic(self, supervisor):
        supervisor.start()
        first = supervisor._send_command(COMMAND_PREDICT, {"name": "a"}).result(timeout=5)
        second = supervisor._send_command(COMMAND_PREDICT, {"name": "b"}).result(timeout=5)
        assert second["features"]["requestId"] > first["features"]["requestId"]

    def test_out_of_order_responses(self, supervisor):
        """Responses arriving in reverse order still reach the right caller."""
        supervisor.start()
        first = supervisor._send_command(COMMAND_PREDICT, {"name": "deferred"})
        second = supervisor._send_command(COMMAND_PREDICT, {"name": "deferred"})
        assert not first.done()

        assert supervisor.ping() is True

        assert first.result(timeout=5)["features"]["requestId"] == 1
        assert second.result(timeout=5)["features"]["requestId"] == 2
        assert supervisor.pending_count() == 0

    def test_error_response(self, supervisor):
        supervisor.start()
        with pytest.raises(WorkerCommandError, match="boom"):
            supervisor.predict({"name": "explode"})
        assert supervisor.pending_count() == 0
        assert supervisor.ping() is True

    def test_garbage_lines_tolerated(self, supervisor, caplog):
        supervisor.start()
        with caplog.at_level(logging.WARNING, logger="ecr.core.worker.supervisor"):
            result = supervisor.predict({"name": "garbage"})

        assert result.features["name"] == "garbage"
        assert "unparseable" in caplog.text
        assert supervisor.is_ready

    def test_concurrent_callers(self, supervisor):
        supervisor.start()
        names = [f"monster-{i}" for i in range(50)]

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(lambda n: supervisor.predict({"name": n}), names))

        assert [r.features["name"] for r in results] == names
        assert supervisor.pending_count() == 0


class TestCache:
    def test_hit_skips_ipc(self, supervisor):
        supervisor.start()
        stat = {"name": "Goblin", "cr": "1/4"}

        first = supervisor.predict(stat)
        second = supervisor.predict(stat)

        assert second is first
        assert supervisor.status()["requests_sent"] == 1
        assert supervisor.cache.hits == 1

    def test_key_includes_cr(self, supervisor):
        supervisor.start()
        supervisor.predict({"name": "Bandit", "cr": "1/8"})
        supervisor.predict({"name": "Bandit", "cr": "2"})
        assert supervisor.status()["requests_sent"] == 2

    def test_bounded(self):
        sup = WorkerSupervisor(fake_worker_config(cache_size=3))
        try:
            sup.start()
            for i in range(4):
                sup.predict({"name": f"m{i}"})
            assert len(sup.cache) == 3
            sup.predict({"name": "m0"})
            assert sup.status()["requests_sent"] == 5
        finally:
            sup.stop()

    def test_features_uncached(self, supervisor):
        supervisor.start()
        supervisor.features({"name": "Goblin"})
        supervisor.features({"name": "Goblin"})
        assert supervisor.status()["requests_sent"] == 2


class TestCrashRecovery:
    """Worker exit rejects pending requests and triggers a restart."""

    def test_pending_rejected_on_crash(self, supervisor):
        supervisor.start()
        pending = [supervisor._send_command(COMMAND_PREDICT, {"name": "hang"}) for _ in range(5)]
        assert supervisor.pending_count() == 5

        supervisor._send_command(COMMAND_PREDICT, {"name": "exit"})

        for future in pending:
            with pytest.raises(WorkerCrashedError) as exc_info:
                future.result(timeout=5)
            assert exc_info.value.context["exit_code"] == 3
        assert supervisor.pending_count() == 0

    def test_restart_then_predict(self, supervisor):
        supervisor.start()
        old_pid = supervisor.pid
        crashed = supervisor._send_command(COMMAND_PREDICT, {"name": "exit"})
        with pytest.raises(WorkerCrashedError):
            crashed.result(timeout=5)

        assert supervisor.wait_until_ready(timeout=10)
        assert supervisor.pid != old_pid
        assert supervisor.predict({"name": "Goblin"}).ecr == "1"
        assert supervisor.status()["exit_codes"] == [3]

    def test_stderr_tagged_by_generation(self, supervisor, caplog):
        supervisor.start()
        first = supervisor._generation
        assert wait_for(lambda: supervisor.stderr_log.tail(generation=first))

        with caplog.at_level(logging.ERROR, logger="ecr.core.worker.supervisor"):
            with pytest.raises(WorkerCrashedError):
                supervisor._send_command(COMMAND_PREDICT, {"name": "exit"}).result(timeout=5)
        assert "fake worker started" in caplog.text

        assert supervisor.wait_until_ready(timeout=10)
        second = supervisor._generation
        assert second != first
        assert wait_for(lambda: supervisor.stderr_log.tail(generation=second))
        assert len(supervisor.stderr_log.tail(generation=first)) == 1
        assert len(supervisor.stderr_log.tail()) == 2

    def test_killed_process(self, supervisor):
        supervisor.start()
        future = supervisor._send_command(COMMAND_PREDICT, {"name": "hang"})
        supervisor._process.kill()

        with pytest.raises(WorkerCrashedError):
            future.result(timeout=5)
        assert supervisor.wait_until_ready(timeout=10)
        assert supervisor.ping() is True

    def test_restart_attempts_reset_on_ready(self, supervisor):
        supervisor.start()
        for _ in range(2):
            with pytest.raises(WorkerCrashedError):
                supervisor._send_command(COMMAND_PREDICT, {"name": "exit"}).result(timeout=5)
            assert supervisor.wait_until_ready(timeout=10)
        assert supervisor.status()["restart_attempts"] == 0

    def test_no_restart_after_max_restarts(self):
        sup = WorkerSupervisor(fake_worker_config(max_restarts=0))
        try:
            sup.start()
            with pytest.raises(WorkerCrashedError):
                sup._send_command(COMMAND_PREDICT, {"name": "exit"}).result(timeout=5)
            time.sleep(0.3)
            assert sup.state is WorkerState.STOPPED
            assert sup.wait_until_ready(timeout=0.2) is False
        finally:
            sup.stop()


class TestStop:
    def test_stop_rejects_pending(self, supervisor):
        supervisor.start()
        future = supervisor._send_command(COMMAND_PREDICT, {"name": "hang"})

        supervisor.stop()

        with pytest.raises(WorkerStoppedError):
            future.result(timeout=5)
        assert supervisor.state is WorkerState.STOPPED
        assert supervisor.pid is None

    def test_no_restart_after_stop(self, supervisor):
        supervisor.start()
        supervisor.stop()
        time.sleep(0.3)
        assert supervisor.state is WorkerState.STOPPED
        assert supervisor.status()["exit_codes"] == []
        assert supervisor.ping() is False

    def test_start_after_stop(self, supervisor):
        supervisor.start()
        supervisor.stop()
        assert supervisor.start() is True
        assert supervisor.ping() is True


class TestSingleton:
    def test_get_supervisor(self):
        assert get_supervisor() is get_supervisor()


class TestRealWorker:
    """End to end against `python -m ecr.core.worker.service --rules-only`."""

    @pytest.fixture
    def real_supervisor(self, real_worker_config):
        sup = WorkerSupervisor(real_worker_config)
        yield sup
        sup.stop()

    def test_predict_and_features(self, real_supervisor, low_power_stat, fivetools_stat):
        assert real_supervisor.start() is True, real_supervisor.stderr_log.tail()

        result = real_supervisor.predict(low_power_stat)
        assert result.ecr == "1/8"
        assert result.method == "rules"

        features = real_supervisor.features(fivetools_stat)
        assert features.atk_best == 5
        assert features.cr_official == 3.0
        assert real_supervisor.ping() is True

    def test_concurrent_predictions(self, real_supervisor, low_power_stat):
        real_supervisor.start()
        stats = [dict(low_power_stat, name=f"Kobold {i}") for i in range(30)]

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(real_supervisor.predict, stats))

        assert all(r.ecr == "1/8" for r in results)
        assert real_supervisor.pending_count() == 0
