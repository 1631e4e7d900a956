"""Shared fixtures for the enginemux tests."""

import sys
from collections.abc import Callable
from collections.abc import Iterator
from pathlib import Path

import pytest

from enginemux import EngineSession
from enginemux import SessionConfig
from enginemux import open_session

STUB_ENGINE: Path = Path(__file__).resolve().parent / "fixtures" / "stub_engine.py"
SessionFactory = Callable[..., EngineSession]


def stub_config(*stub_args: str, **overrides: object) -> SessionConfig:
    """Build a configuration that launches the stub engine.

    :param stub_args: Arguments for the stub engine.
    :param overrides: Other ``SessionConfig`` fields.
    :returns: Configuration for ``open_session``.
    """
    return SessionConfig(
        executable=sys.executable,
        arguments=("-u", str(STUB_ENGINE), *stub_args),
        **overrides,  # type: ignore[arg-type]
    )


@pytest.fixture
def open_stub() -> Iterator[SessionFactory]:
    """Open stub-engine sessions and close them after the test.

    :yields: Factory taking stub arguments and ``SessionConfig`` overrides.
    """
    sessions: list[EngineSession] = []

    def factory(*stub_args: str, **overrides: object) -> EngineSession:
        """Open one stub session.

        :param stub_args: Arguments for the stub engine.
        :param overrides: Other ``SessionConfig`` fields.
        :returns: Running session.
        """
        session: EngineSession = open_session(stub_config(*stub_args, **overrides))
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close(kill_timeout=5.0)
