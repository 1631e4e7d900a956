"""Engine session: one child process shared by many concurrent callers."""

import atexit
import enum
import logging
import threading
import time
from collections.abc import Iterable

from enginemux.codec import decode_reply
from enginemux.codec import encode_request
from enginemux.codec import request_id as extract_request_id
from enginemux.config import SessionConfig
from enginemux.correlator import Correlator
from enginemux.correlator import PendingReply
from enginemux.correlator import Reply
from enginemux.errors import DecodeError
from enginemux.errors import DuplicateIDError
from enginemux.errors import EndOfStreamError
from enginemux.errors import EngineMuxError
from enginemux.errors import ProcessExitedError
from enginemux.errors import SessionClosedError
from enginemux.errors import TransportClosedError
from enginemux.transport import ProcessTransport

logger = logging.getLogger(__name__)

_DISPATCH_JOIN_TIMEOUT: float = 5.0
_EXIT_STATUS_WAIT: float = 1.0


class Unset(enum.Enum):
    """Sentinel for arguments that fall back to the session configuration."""

    TOKEN = 0


UNSET = Unset.TOKEN


class SessionState(enum.Enum):
    """Lifecycle of an engine session."""

    STARTING = "starting"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"


class EngineSession:
    """Manage one engine process, its dispatch thread, and its pending calls."""

    _config: SessionConfig
    _transport: ProcessTransport
    _correlator: Correlator
    _state: SessionState
    _lock: threading.RLock
    _dispatch_thread: threading.Thread | None
    _closed_event: threading.Event
    _returncode: int | None

    def __init__(self, config: SessionConfig) -> None:
        """Initialize an unstarted session.

        :param config: Launch and runtime settings.
        """
        self._config = config
        self._transport = ProcessTransport(
            config.command,
            diagnostic_sink=config.diagnostic_sink,
            cwd=config.cwd,
            env=config.env,
        )
        self._correlator = Correlator()
        self._state = SessionState.STARTING
        self._lock = threading.RLock()
        self._dispatch_thread = None
        self._closed_event = threading.Event()
        self._returncode = None

    def __enter__(self) -> "EngineSession":
        """Start the session if needed and return it."""
        self.start()
        return self

    def __exit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        """Close the session."""
        self.close()

    def __repr__(self) -> str:
        return f"<EngineSession pid={self.pid} state={self.state.value} pending={self.pending_count}>"

    @property
    def config(self) -> SessionConfig:
        """Return the session configuration."""
        return self._config

    @property
    def state(self) -> SessionState:
        """Return the current lifecycle state."""
        with self._lock:
            return self._state

    @property
    def pid(self) -> int | None:
        """Return the engine process id, when started."""
        return self._transport.pid

    @property
    def returncode(self) -> int | None:
        """Return the engine exit status once the session is closed."""
        with self._lock:
            return self._returncode

    @property
    def pending_count(self) -> int:
        """Return the number of calls awaiting replies."""
        return len(self._correlator)

    def start(self) -> None:
        """Spawn the engine and start the dispatch thread.

        :raises SpawnError: If the engine cannot be launched.
        :raises SessionClosedError: If the session was already closed.
        """
        with self._lock:
            if self._state is SessionState.RUNNING:
                return
            if self._state is not SessionState.STARTING:
                raise SessionClosedError("Session is closed")

            try:
                self._transport.start()
            except EngineMuxError as exc:
                self._state = SessionState.CLOSED
                self._correlator.abort_all(SessionClosedError(f"Engine failed to start: {exc}"))
                self._closed_event.set()
                raise

            dispatch_thread = threading.Thread(
                target=self._dispatch_loop,
                name=f"enginemux-dispatch-{self._transport.pid}",
                daemon=True,
            )
            self._dispatch_thread = dispatch_thread
            self._state = SessionState.RUNNING
            dispatch_thread.start()
            atexit.register(self.close)

    def submit_async(self, request: object) -> PendingReply:
        """Send one request and return a handle for its reply.

        :param request: Request value carrying a unique ``id``.
        :returns: Handle resolved by the dispatch thread.
        :raises EncodeError: If the request cannot be serialized.
        :raises DuplicateIDError: If the id is already pending.
        :raises SessionClosedError: If the session is not running.
        :raises TransportClosedError: If the engine can no longer receive input.
        """
        with self._lock:
            state: SessionState = self._state
        if state is not SessionState.RUNNING:
            raise SessionClosedError(f"Session is {state.value}")

        request_id: str = extract_request_id(request)
        line: bytes = encode_request(request)
        pending: PendingReply = self._correlator.register(request_id)
        try:
            self._transport.write_line(line)
        except TransportClosedError as exc:
            self._correlator.abort(request_id, exc, owner=pending)
            raise
        logger.debug("Sent request id=%r (%d bytes)", request_id, len(line))
        return pending

    def _effective_timeout(self, timeout: "float | None | Unset") -> float | None:
        """Resolve a per-call timeout against the configured default.

        :param timeout: Explicit timeout, ``None`` for no deadline, or unset.
        :returns: Timeout in seconds, or ``None``.
        """
        if timeout is UNSET:
            return self._config.request_timeout
        return timeout  # type: ignore[return-value]

    def submit(self, request: object, timeout: "float | None | Unset" = UNSET) -> Reply:
        """Send one request and block until its reply arrives.

        :param request: Request value carrying a unique ``id``.
        :param timeout: Optional deadline; defaults to ``config.request_timeout``.
        :returns: The reply whose ``id`` matches the request.
        :raises EngineTimeoutError: If the deadline passes first.
        :raises SessionClosedError: If the session closes before the reply.
        :raises ProcessExitedError: If the engine exits before the reply.
        """
        pending: PendingReply = self.submit_async(request)
        return pending.result(timeout=self._effective_timeout(timeout))

    def submit_batch(
        self,
        requests: Iterable[object],
        timeout: "float | None | Unset" = UNSET,
    ) -> list[Reply]:
        """Send several requests and return their replies in input order.

        The timeout bounds the whole batch. When any item fails, the rest of
        the batch is dropped from the pending table and the error is raised.

        :param requests: Request values with distinct ids.
        :param timeout: Optional deadline; defaults to ``config.request_timeout``.
        :returns: Replies ordered like ``requests``.
        :raises DuplicateIDError: If two requests in the batch share an id.
        """
        batch: list[object] = list(requests)
        seen_ids: set[str] = set()
        for request in batch:
            request_id: str = extract_request_id(request)
            if request_id in seen_ids:
                raise DuplicateIDError(request_id)
            seen_ids.add(request_id)

        effective_timeout: float | None = self._effective_timeout(timeout)
        deadline: float | None = None
        if effective_timeout is not None:
            deadline = time.monotonic() + effective_timeout

        pendings: list[PendingReply] = []
        replies: list[Reply] = []
        try:
            for request in batch:
                pendings.append(self.submit_async(request))
            for pending in pendings:
                remaining: float | None = None
                if deadline is not None:
                    remaining = max(0.0, deadline - time.monotonic())
                replies.append(pending.result(timeout=remaining))
        except BaseException:
            for pending in pendings:
                if pending.done() is False:
                    self._correlator.discard(pending.request_id, owner=pending)
            raise
        return replies

    def _dispatch_loop(self) -> None:
        """Read engine replies and resolve their waiters until the stream ends."""
        consecutive_decode_errors: int = 0
        failure: BaseException | None = None
        while True:
            try:
                raw: bytes = self._transport.read_line()
            except EndOfStreamError:
                break

            if raw.strip() == b"":
                continue

            try:
                reply: Reply = decode_reply(raw)
            except DecodeError as exc:
                consecutive_decode_errors += 1
                logger.warning("Ignoring undecodable engine line (%s): %r", exc, exc.line[:200])
                if consecutive_decode_errors >= self._config.max_consecutive_decode_errors:
                    failure = exc
                    break
                continue

            consecutive_decode_errors = 0
            reply_id: str = reply["id"]  # type: ignore[assignment]
            logger.debug("Received reply id=%r", reply_id)
            self._correlator.resolve(reply_id, reply)

        self._finish_dispatch(failure)

    def _finish_dispatch(self, failure: BaseException | None) -> None:
        """Abort pending callers after the dispatch loop stops.

        :param failure: Decode error that stopped the loop, or ``None`` at end of stream.
        """
        with self._lock:
            closing: bool = self._state is not SessionState.RUNNING
            if closing is False:
                self._state = SessionState.CLOSING

        if closing is True:
            self._correlator.abort_all(SessionClosedError("Engine session closed"))
            return

        returncode: int | None
        if failure is not None:
            logger.error(
                "Engine produced %d undecodable lines in a row; stopping it",
                self._config.max_consecutive_decode_errors,
            )
            self._correlator.abort_all(failure)
            self._transport.kill()
        else:
            returncode = self._transport.wait(timeout=_EXIT_STATUS_WAIT)
            logger.error("Engine exited unexpectedly (returncode=%s)", returncode)
            self._correlator.abort_all(ProcessExitedError(returncode))

        returncode = self._transport.terminate(kill_timeout=self._config.kill_timeout)
        self._transport.close_pipes()
        with self._lock:
            self._returncode = returncode
            self._state = SessionState.CLOSED
        self._closed_event.set()
        atexit.unregister(self.close)

    def close(self, kill_timeout: "float | None | Unset" = UNSET) -> int | None:
        """Shut the session down and fail every pending call.

        Idempotent. A call made while another close is still waiting for the
        engine kills the engine instead of waiting.

        :param kill_timeout: Deadline before killing the engine; defaults to ``config.kill_timeout``.
        :returns: Engine exit status, or ``None`` if it never started.
        """
        with self._lock:
            state: SessionState = self._state
            if state is SessionState.STARTING:
                self._state = SessionState.CLOSED
                self._correlator.abort_all(SessionClosedError("Session closed before start"))
                self._closed_event.set()
                return None
            if state is SessionState.RUNNING:
                self._state = SessionState.CLOSING

        if state is SessionState.CLOSED:
            return self.returncode
        if state is SessionState.CLOSING:
            self._transport.kill()
            self._closed_event.wait()
            return self.returncode

        effective_kill_timeout: float | None = self._config.kill_timeout
        if kill_timeout is not UNSET:
            effective_kill_timeout = kill_timeout  # type: ignore[assignment]

        logger.info("Closing engine session pid=%s", self.pid)
        returncode: int | None = self._transport.terminate(kill_timeout=effective_kill_timeout)
        self._correlator.abort_all(SessionClosedError("Engine session closed"))

        dispatch_thread: threading.Thread | None = self._dispatch_thread
        if dispatch_thread is not None and dispatch_thread is not threading.current_thread():
            dispatch_thread.join(timeout=_DISPATCH_JOIN_TIMEOUT)
            if dispatch_thread.is_alive() is True:
                logger.warning("Dispatch thread did not stop within %ss", _DISPATCH_JOIN_TIMEOUT)
            else:
                self._transport.close_pipes()

        with self._lock:
            self._returncode = returncode
            self._state = SessionState.CLOSED
        self._closed_event.set()
        atexit.unregister(self.close)
        return returncode


def open_session(config: SessionConfig) -> EngineSession:
    """Create and start a session.

    :param config: Launch and runtime settings.
    :returns: Running session.
    :raises SpawnError: If the engine cannot be launched.
    """
    session: EngineSession = EngineSession(config)
    session.start()
    return session
