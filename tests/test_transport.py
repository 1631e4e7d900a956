"""Tests for the child-process transport."""

import json
import sys
import threading

import pytest

from conftest import STUB_ENGINE
from enginemux import EndOfStreamError
from enginemux import SpawnError
from enginemux import TransportClosedError
from enginemux.transport import ProcessTransport


def _stub_command(*stub_args: str) -> list[str]:
    """Return the argv that launches the stub engine.

    :param stub_args: Arguments for the stub engine.
    :returns: Command line.
    """
    return [sys.executable, "-u", str(STUB_ENGINE), *stub_args]


def test_spawn_failure_raises_spawn_error() -> None:
    """A missing executable is reported as SpawnError."""
    transport: ProcessTransport = ProcessTransport(["/nonexistent/engine-binary", "analysis"])
    with pytest.raises(SpawnError) as exc_info:
        transport.start()
    assert exc_info.value.command == ["/nonexistent/engine-binary", "analysis"]


def test_write_then_read_one_line() -> None:
    """One written line yields one reply line with the same id."""
    transport: ProcessTransport = ProcessTransport(_stub_command("--mode", "echo"))
    transport.start()
    try:
        assert transport.is_running is True
        transport.write_line(b'{"id":"t1"}')
        reply: dict[str, object] = json.loads(transport.read_line())
        assert reply["id"] == "t1"
    finally:
        returncode: int | None = transport.terminate(kill_timeout=5.0)
    assert returncode == 0
    assert transport.is_running is False


def test_write_rejects_embedded_newline() -> None:
    """A payload spanning lines would corrupt framing."""
    transport: ProcessTransport = ProcessTransport(_stub_command())
    with pytest.raises(ValueError):
        transport.write_line(b'{"id":"a"}\n{"id":"b"}')


def test_write_before_start_and_after_terminate_fails() -> None:
    """Writes need a live, non-terminated process."""
    transport: ProcessTransport = ProcessTransport(_stub_command("--mode", "echo"))
    with pytest.raises(TransportClosedError):
        transport.write_line(b'{"id":"early"}')

    transport.start()
    transport.terminate(kill_timeout=5.0)
    with pytest.raises(TransportClosedError):
        transport.write_line(b'{"id":"late"}')
    with pytest.raises(EndOfStreamError):
        transport.read_line()
    transport.close_pipes()


def test_read_reports_end_of_stream_when_engine_exits() -> None:
    """Engine exit surfaces as EndOfStreamError and its exit status is kept."""
    transport: ProcessTransport = ProcessTransport(_stub_command("--mode", "exit-after", "--count", "1"))
    transport.start()
    try:
        transport.write_line(b'{"id":"bye"}')
        with pytest.raises(EndOfStreamError):
            transport.read_line()
        assert transport.wait(timeout=5.0) == 3
        with pytest.raises(TransportClosedError):
            transport.write_line(b'{"id":"after-exit"}')
    finally:
        transport.terminate(kill_timeout=5.0)
        transport.close_pipes()


def test_stderr_lines_reach_diagnostic_sink() -> None:
    """Engine stderr is drained into the sink without touching stdout."""
    received: list[str] = []
    seen: threading.Event = threading.Event()

    def sink(line: str) -> None:
        """Collect one diagnostic line.

        :param line: Engine stderr line.
        """
        received.append(line)
        seen.set()

    transport: ProcessTransport = ProcessTransport(_stub_command("--mode", "echo", "--stderr"), diagnostic_sink=sink)
    transport.start()
    try:
        transport.write_line(b'{"id":"diag"}')
        assert json.loads(transport.read_line())["id"] == "diag"
        assert seen.wait(timeout=5.0) is True
    finally:
        transport.terminate(kill_timeout=5.0)
        transport.close_pipes()
    assert received == ["stub received diag"]


def test_failing_sink_does_not_break_protocol() -> None:
    """Sink exceptions are logged and the protocol keeps working."""

    def broken_sink(line: str) -> None:
        """Always fail.

        :param line: Engine stderr line.
        """
        raise RuntimeError(f"sink failed on {line}")

    transport: ProcessTransport = ProcessTransport(
        _stub_command("--mode", "echo", "--stderr"),
        diagnostic_sink=broken_sink,
    )
    transport.start()
    try:
        for index in range(3):
            transport.write_line(json.dumps({"id": f"s{index}"}).encode("utf-8"))
            assert json.loads(transport.read_line())["id"] == f"s{index}"
    finally:
        transport.terminate(kill_timeout=5.0)
        transport.close_pipes()


def test_terminate_escalates_to_kill_after_deadline() -> None:
    """An engine that ignores end of input is killed once the deadline passes."""
    transport: ProcessTransport = ProcessTransport(_stub_command("--mode", "ignore-eof"))
    transport.start()
    returncode: int | None = transport.terminate(kill_timeout=0.5)
    transport.close_pipes()
    assert returncode is not None
    assert returncode != 0
    assert transport.is_running is False


def test_second_terminate_kills_immediately() -> None:
    """A repeated terminate does not wait for a graceful exit."""
    transport: ProcessTransport = ProcessTransport(_stub_command("--mode", "ignore-eof"))
    transport.start()
    first_result: dict[str, int | None] = {}

    def first_terminate() -> None:
        """Run the first, unbounded terminate."""
        first_result["returncode"] = transport.terminate()

    waiter = threading.Thread(target=first_terminate)
    waiter.start()
    try:
        waiter.join(timeout=0.5)
        assert waiter.is_alive() is True
        second: int | None = transport.terminate()
        assert second is not None
    finally:
        waiter.join(timeout=5.0)
        transport.close_pipes()
    assert waiter.is_alive() is False
    assert first_result["returncode"] == second
