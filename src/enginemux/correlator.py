"""Correlation table matching engine replies to waiting callers."""

import concurrent.futures
import logging
import threading

from enginemux.errors import DuplicateIDError
from enginemux.errors import EngineTimeoutError
from enginemux.errors import SessionClosedError

logger = logging.getLogger(__name__)

Reply = dict[str, object]


class PendingReply:
    """Handle for one in-flight request awaiting its reply."""

    request_id: str
    _future: "concurrent.futures.Future[Reply]"
    _correlator: "Correlator"

    def __init__(self, request_id: str, correlator: "Correlator") -> None:
        """Initialize a pending handle.

        :param request_id: Request id this handle waits for.
        :param correlator: Owning correlator, used to expire the entry on timeout.
        """
        self.request_id = request_id
        self._future = concurrent.futures.Future()
        self._correlator = correlator

    def done(self) -> bool:
        """Report whether a reply or failure has been delivered."""
        return self._future.done()

    def result(self, timeout: float | None = None) -> Reply:
        """Block until the reply or a failure is delivered.

        :param timeout: Optional deadline in seconds.
        :returns: Decoded reply.
        :raises EngineTimeoutError: If the deadline passes first.
        :raises EngineMuxError: If the request was aborted.
        """
        try:
            return self._future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            if self._future.done() is True:
                raise
        expired_after: float = 0.0 if timeout is None else timeout
        self._correlator.abort(self.request_id, EngineTimeoutError(self.request_id, expired_after), owner=self)
        return self._future.result()

    def _deliver(self, reply: Reply) -> None:
        """Complete the handle with a reply."""
        self._future.set_result(reply)

    def _fail(self, error: BaseException) -> None:
        """Complete the handle with a failure."""
        self._future.set_exception(error)

    def _cancel(self) -> None:
        """Cancel the handle without an outcome."""
        self._future.cancel()


class Correlator:
    """Map in-flight request ids to the callers waiting on them.

    Every mutation happens under one lock. Entries are removed under the lock
    before delivery, so each waiter receives exactly one outcome.
    """

    _lock: threading.Lock
    _pending: dict[str, PendingReply]
    _close_error: BaseException | None
    _unmatched_count: int

    def __init__(self) -> None:
        """Initialize an empty correlation table."""
        self._lock = threading.Lock()
        self._pending = {}
        self._close_error = None
        self._unmatched_count = 0

    def __len__(self) -> int:
        """Return the number of pending entries."""
        with self._lock:
            return len(self._pending)

    @property
    def is_closed(self) -> bool:
        """Report whether ``abort_all`` has run."""
        with self._lock:
            return self._close_error is not None

    @property
    def unmatched_count(self) -> int:
        """Return how many replies arrived with no pending entry."""
        with self._lock:
            return self._unmatched_count

    def pending_ids(self) -> list[str]:
        """Return a snapshot of the ids currently awaiting replies."""
        with self._lock:
            return list(self._pending)

    def register(self, request_id: str) -> PendingReply:
        """Record a pending entry for ``request_id``.

        :param request_id: Correlation id of the outgoing request.
        :returns: Handle the caller waits on.
        :raises DuplicateIDError: If the id is already pending.
        :raises SessionClosedError: If the table was closed by ``abort_all``.
        """
        with self._lock:
            close_error: BaseException | None = self._close_error
            if close_error is not None:
                raise SessionClosedError(f"Cannot register {request_id!r}: {close_error}") from close_error
            if request_id in self._pending:
                raise DuplicateIDError(request_id)
            pending: PendingReply = PendingReply(request_id, self)
            self._pending[request_id] = pending
            return pending

    def resolve(self, request_id: str, reply: Reply) -> bool:
        """Deliver a reply to the caller waiting on ``request_id``.

        :param request_id: Id read from the reply.
        :param reply: Decoded reply.
        :returns: ``True`` when a waiter received the reply; ``False`` for an unmatched reply.
        """
        with self._lock:
            pending: PendingReply | None = self._pending.pop(request_id, None)
            if pending is None:
                self._unmatched_count += 1
        if pending is None:
            logger.warning("Discarding reply with no pending request: id=%r", request_id)
            return False
        pending._deliver(reply)
        return True

    def _pop_pending(self, request_id: str, owner: PendingReply | None) -> PendingReply | None:
        """Remove the entry for ``request_id`` when it belongs to ``owner``.

        :param request_id: Id to remove.
        :param owner: Expected handle, or ``None`` to remove whatever is pending.
        :returns: Removed handle, or ``None``.
        """
        with self._lock:
            pending: PendingReply | None = self._pending.get(request_id)
            if pending is None:
                return None
            if owner is not None and pending is not owner:
                return None
            del self._pending[request_id]
            return pending

    def abort(self, request_id: str, error: BaseException, owner: PendingReply | None = None) -> bool:
        """Deliver a failure instead of a reply to one waiter.

        With ``owner`` set, an entry registered later under the same id is
        left alone.

        :param request_id: Id to abort.
        :param error: Exception raised to the waiter.
        :param owner: Handle the caller holds for ``request_id``.
        :returns: ``True`` when a matching entry was pending.
        """
        pending: PendingReply | None = self._pop_pending(request_id, owner)
        if pending is None:
            return False
        pending._fail(error)
        return True

    def abort_all(self, error: BaseException) -> int:
        """Fail every pending waiter and refuse further registrations.

        :param error: Exception raised to each waiter.
        :returns: Number of waiters aborted.
        """
        with self._lock:
            if self._close_error is None:
                self._close_error = error
            aborted: list[PendingReply] = list(self._pending.values())
            self._pending.clear()
        for pending in aborted:
            pending._fail(error)
        if len(aborted) > 0:
            logger.info("Aborted %d pending request(s): %s", len(aborted), error)
        return len(aborted)

    def discard(self, request_id: str, owner: PendingReply | None = None) -> bool:
        """Drop a pending entry without delivering anything to it.

        A later reply for the id is treated as unmatched.

        :param request_id: Id to drop.
        :param owner: Handle the caller holds for ``request_id``.
        :returns: ``True`` when a matching entry was pending.
        """
        pending: PendingReply | None = self._pop_pending(request_id, owner)
        if pending is None:
            return False
        pending._cancel()
        return True
