"""Child-process transport with line-granularity access to its pipes."""

import logging
import subprocess
import threading
import time
from collections.abc import Mapping
from typing import IO

from enginemux.config import DiagnosticSink
from enginemux.errors import EndOfStreamError
from enginemux.errors import SpawnError
from enginemux.errors import TransportClosedError
from enginemux.log import log_engine_stderr

logger = logging.getLogger(__name__)

_STDERR_JOIN_TIMEOUT: float = 2.0


class ProcessTransport:
    """Own one engine process and its three standard streams."""

    _command: list[str]
    _diagnostic_sink: DiagnosticSink
    _cwd: str | None
    _env: Mapping[str, str] | None
    _process: subprocess.Popen[bytes] | None
    _stderr_thread: threading.Thread | None
    _write_lock: threading.Lock
    _state_lock: threading.Lock
    _terminate_requested: bool

    def __init__(
        self,
        command: list[str],
        diagnostic_sink: DiagnosticSink | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize an unstarted transport.

        :param command: Executable followed by its arguments.
        :param diagnostic_sink: Receives each engine stderr line.
        :param cwd: Optional working directory for the engine.
        :param env: Optional environment for the engine.
        """
        self._command = list(command)
        self._diagnostic_sink = diagnostic_sink or log_engine_stderr
        self._cwd = cwd
        self._env = env
        self._process = None
        self._stderr_thread = None
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._terminate_requested = False

    @property
    def pid(self) -> int | None:
        """Return the engine process id, when started."""
        process: subprocess.Popen[bytes] | None = self._process
        if process is None:
            return None
        return process.pid

    @property
    def returncode(self) -> int | None:
        """Return the exit status, or ``None`` while running or unstarted."""
        process: subprocess.Popen[bytes] | None = self._process
        if process is None:
            return None
        return process.poll()

    @property
    def is_running(self) -> bool:
        """Report whether the engine process is alive."""
        process: subprocess.Popen[bytes] | None = self._process
        return process is not None and process.poll() is None

    def start(self) -> None:
        """Spawn the engine process and the stderr drain thread.

        :raises SpawnError: If the executable cannot be found or launched.
        """
        with self._state_lock:
            if self._process is not None:
                return
            if self._terminate_requested is True:
                raise TransportClosedError("Transport was terminated before start")

            try:
                process: subprocess.Popen[bytes] = subprocess.Popen(
                    self._command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    cwd=self._cwd,
                    env=None if self._env is None else dict(self._env),
                )
            except (FileNotFoundError, PermissionError, OSError) as exc:
                raise SpawnError(self._command, str(exc)) from exc

            self._process = process
            stderr_thread = threading.Thread(
                target=self._drain_stderr,
                args=(process.stderr,),
                name=f"enginemux-stderr-{process.pid}",
                daemon=True,
            )
            self._stderr_thread = stderr_thread
            stderr_thread.start()
            logger.info("Started engine pid=%d: %s", process.pid, self._command)

    def _require_process(self) -> subprocess.Popen[bytes]:
        """Return the live process.

        :returns: Running process handle.
        :raises TransportClosedError: If the transport is not usable for writes.
        """
        if self._terminate_requested is True:
            raise TransportClosedError("Transport is terminated")
        process: subprocess.Popen[bytes] | None = self._process
        if process is None:
            raise TransportClosedError("Transport is not started")
        if process.poll() is not None:
            raise TransportClosedError(f"Engine process exited (returncode={process.returncode})")
        return process

    def write_line(self, payload: bytes) -> None:
        """Write one payload followed by a newline to the engine's stdin.

        :param payload: Encoded line without its newline.
        :raises ValueError: If the payload contains a newline.
        :raises TransportClosedError: If the engine can no longer receive input.
        """
        if b"\n" in payload:
            raise ValueError("Payload must not contain a newline")

        with self._write_lock:
            process: subprocess.Popen[bytes] = self._require_process()
            stdin: IO[bytes] | None = process.stdin
            if stdin is None:
                raise TransportClosedError("Engine stdin is not available")
            try:
                stdin.write(payload + b"\n")
                stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise TransportClosedError("Failed to write to engine stdin") from exc

    def read_line(self) -> bytes:
        """Block until one complete line is read from the engine's stdout.

        :returns: Line without its trailing newline.
        :raises EndOfStreamError: If the engine closed stdout.
        """
        process: subprocess.Popen[bytes] | None = self._process
        if process is None or process.stdout is None:
            raise EndOfStreamError("Transport is not started")
        try:
            raw: bytes = process.stdout.readline()
        except (OSError, ValueError) as exc:
            raise EndOfStreamError("Failed to read engine stdout") from exc
        if raw == b"":
            raise EndOfStreamError("Engine closed stdout")
        return raw.rstrip(b"\r\n")

    def _drain_stderr(self, stream: IO[bytes] | None) -> None:
        """Forward every engine stderr line to the diagnostic sink.

        :param stream: Engine stderr pipe.
        """
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line: str = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                try:
                    self._diagnostic_sink(line)
                except Exception:
                    logger.exception("Diagnostic sink failed for engine stderr line")
        except (OSError, ValueError):
            logger.debug("Engine stderr closed while draining")

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the engine to exit.

        :param timeout: Optional deadline in seconds.
        :returns: Exit status, or ``None`` when the deadline passed first.
        """
        process: subprocess.Popen[bytes] | None = self._process
        if process is None:
            return None
        try:
            return process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def kill(self) -> None:
        """Force-kill the engine process when it is still alive."""
        process: subprocess.Popen[bytes] | None = self._process
        if process is None or process.poll() is not None:
            return
        logger.warning("Killing engine pid=%d", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            return

    def terminate(self, kill_timeout: float | None = None) -> int | None:
        """Close stdin, wait for the engine to exit, and reap it.

        The first call waits without a deadline unless ``kill_timeout`` is
        given. Any later call kills the process immediately.

        :param kill_timeout: Optional deadline before escalating to kill.
        :returns: Engine exit status, or ``None`` when never started.
        """
        with self._state_lock:
            already_requested: bool = self._terminate_requested
            self._terminate_requested = True
            process: subprocess.Popen[bytes] | None = self._process

        if process is None:
            return None

        if already_requested is True:
            self.kill()
            return process.wait()

        deadline: float | None = None
        if kill_timeout is not None:
            deadline = time.monotonic() + kill_timeout

        # A writer blocked on a full pipe holds the lock until the engine dies.
        acquired: bool = self._write_lock.acquire(timeout=-1 if kill_timeout is None else kill_timeout)
        if acquired is False:
            logger.warning("Engine pid=%d stdin stayed busy for %ss", process.pid, kill_timeout)
            self.kill()
            self._write_lock.acquire()
        try:
            stdin: IO[bytes] | None = process.stdin
            if stdin is not None:
                try:
                    stdin.close()
                except (BrokenPipeError, OSError):
                    logger.debug("Engine stdin already broken on close")
        finally:
            self._write_lock.release()

        remaining: float | None = None
        if deadline is not None:
            remaining = max(0.0, deadline - time.monotonic())
        returncode: int | None = self.wait(timeout=remaining)
        if returncode is None:
            logger.warning("Engine pid=%d did not exit within %ss", process.pid, kill_timeout)
            self.kill()
            returncode = process.wait()

        stderr_thread: threading.Thread | None = self._stderr_thread
        if stderr_thread is not None and stderr_thread is not threading.current_thread():
            stderr_thread.join(timeout=_STDERR_JOIN_TIMEOUT)
            if stderr_thread.is_alive() is True:
                logger.debug("Stderr drain thread did not stop within %ss", _STDERR_JOIN_TIMEOUT)

        logger.info("Engine pid=%d exited with returncode=%s", process.pid, returncode)
        return returncode

    def close_pipes(self) -> None:
        """Close the engine's stdout and stderr once no reader uses them."""
        process: subprocess.Popen[bytes] | None = self._process
        if process is None:
            return
        for stream in (process.stdout, process.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                logger.debug("Engine pipe already closed")
