"""Custom error types for enginemux."""


class EngineMuxError(Exception):
    """Base class for all enginemux errors."""


class SpawnError(EngineMuxError):
    """Raised when the engine process cannot be found or launched."""

    command: list[str]

    def __init__(self, command: list[str], reason: str) -> None:
        """Initialize a spawn failure.

        :param command: Command line that failed to start.
        :param reason: Description of the underlying failure.
        """
        self.command = list(command)
        super().__init__(f"Failed to start engine {command!r}: {reason}")


class TransportClosedError(EngineMuxError):
    """Raised when a write is attempted after shutdown or process exit."""


class EndOfStreamError(EngineMuxError):
    """Raised when the engine closes its standard output."""


class ProcessExitedError(EndOfStreamError):
    """Raised for pending calls when the engine process exits under them."""

    returncode: int | None

    def __init__(self, returncode: int | None) -> None:
        """Initialize a process-exit failure.

        :param returncode: Exit status of the engine, when known.
        """
        self.returncode = returncode
        super().__init__(f"Engine process exited (returncode={returncode})")


class EncodeError(EngineMuxError):
    """Raised when a request cannot be serialized to one JSON line."""


class DecodeError(EngineMuxError):
    """Raised when an engine output line is not a JSON object."""

    line: str

    def __init__(self, message: str, line: str) -> None:
        """Initialize a decode failure.

        :param message: Failure description.
        :param line: Offending line, as text.
        """
        self.line = line
        super().__init__(message)


class MissingIDError(DecodeError):
    """Raised when a decoded reply lacks a usable ``id`` field."""


class DuplicateIDError(EngineMuxError):
    """Raised when a request id is already pending on the session."""

    request_id: str

    def __init__(self, request_id: str) -> None:
        """Initialize a duplicate-id failure.

        :param request_id: Colliding request id.
        """
        self.request_id = request_id
        super().__init__(f"Request id {request_id!r} is already pending")


class EngineTimeoutError(EngineMuxError, TimeoutError):
    """Raised when one call's deadline passes before its reply arrives."""

    request_id: str
    timeout: float

    def __init__(self, request_id: str, timeout: float) -> None:
        """Initialize a per-call timeout failure.

        :param request_id: Request id that timed out.
        :param timeout: Deadline in seconds.
        """
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(f"No reply for request {request_id!r} within {timeout}s")


class SessionClosedError(EngineMuxError):
    """Raised for pending and new calls once the session is shut down."""
