"""Tests for LogBuffer."""

import logging
import threading

from ecr.core.log_buffer import LogBuffer


def fixed_timestamp():
    return "2026-01-01T00:00:00"


class TestLogBuffer:
    def test_format(self):
        buffer = LogBuffer(timestamp_fn=fixed_timestamp)
        buffer.append("worker started", level=logging.WARNING)
        assert buffer.tail() == ["[2026-01-01T00:00:00] [WARNING] worker started"]

    def test_bounded(self):
        buffer = LogBuffer(timestamp_fn=fixed_timestamp, max_lines=3)
        for i in range(5):
            buffer.append(f"line {i}")

        lines = buffer.tail()
        assert len(buffer) == 3
        assert lines[0].endswith("line 2")
        assert lines[-1].endswith("line 4")

    def test_tail(self):
        buffer = LogBuffer(timestamp_fn=fixed_timestamp)
        for i in range(5):
            buffer.append(f"line {i}")

        assert [line[-6:] for line in buffer.tail(2)] == ["line 3", "line 4"]
        assert buffer.tail(0) == []
        assert len(buffer.tail(50)) == 5

    def test_tail_by_generation(self):
        """Lines from a restarted worker do not leak into the previous worker's tail."""
        buffer = LogBuffer(timestamp_fn=fixed_timestamp)
        buffer.append("first boot", generation=1)
        buffer.append("Traceback: boom", generation=1)
        buffer.append("second boot", generation=2)

        assert [line.split("] ")[-1] for line in buffer.tail(generation=1)] == ["first boot", "Traceback: boom"]
        assert [line.split("] ")[-1] for line in buffer.tail(1, generation=1)] == ["Traceback: boom"]
        assert [line.split("] ")[-1] for line in buffer.tail(generation=2)] == ["second boot"]
        assert buffer.tail(generation=3) == []
        assert len(buffer.tail()) == 3

    def test_truncates_long_lines(self):
        buffer = LogBuffer(timestamp_fn=fixed_timestamp)
        buffer.append("x" * (LogBuffer.MAX_CHARS_PER_LINE + 10))
        assert buffer.tail()[0].endswith("...[truncated]")

    def test_concurrent_append(self):
        buffer = LogBuffer(max_lines=10000)

        def write(n):
            for i in range(200):
                buffer.append(f"{n}-{i}", generation=n)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(buffer) == 1000
        assert len(buffer.tail(generation=2)) == 200
