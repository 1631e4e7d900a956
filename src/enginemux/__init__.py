"""Public package API for enginemux."""

from enginemux.api import open_engine
from enginemux.config import SessionConfig
from enginemux.correlator import PendingReply
from enginemux.errors import DecodeError
from enginemux.errors import DuplicateIDError
from enginemux.errors import EncodeError
from enginemux.errors import EndOfStreamError
from enginemux.errors import EngineMuxError
from enginemux.errors import EngineTimeoutError
from enginemux.errors import MissingIDError
from enginemux.errors import ProcessExitedError
from enginemux.errors import SessionClosedError
from enginemux.errors import SpawnError
from enginemux.errors import TransportClosedError
from enginemux.session import EngineSession
from enginemux.session import SessionState
from enginemux.session import open_session

__all__: list[str] = [
    "open_engine",
    "open_session",
    "EngineSession",
    "PendingReply",
    "SessionConfig",
    "SessionState",
    "DecodeError",
    "DuplicateIDError",
    "EncodeError",
    "EndOfStreamError",
    "EngineMuxError",
    "EngineTimeoutError",
    "MissingIDError",
    "ProcessExitedError",
    "SessionClosedError",
    "SpawnError",
    "TransportClosedError",
]
