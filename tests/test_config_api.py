"""Tests for session configuration and the public entrypoints."""

import logging
import sys

import pytest

import enginemux
from conftest import STUB_ENGINE
from enginemux import EngineSession
from enginemux import SessionConfig
from enginemux import SessionState
from enginemux import open_engine
from enginemux.log import ENGINE_STDERR_LOGGER
from enginemux.log import log_engine_stderr


def test_config_builds_command_and_normalizes_arguments() -> None:
    """Arguments become a tuple of strings appended to the executable."""
    config: SessionConfig = SessionConfig(executable="katago", arguments=["analysis", "-config", "a.cfg"])
    assert config.arguments == ("analysis", "-config", "a.cfg")
    assert config.command == ["katago", "analysis", "-config", "a.cfg"]
    assert config.request_timeout is None
    assert config.kill_timeout is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"executable": ""},
        {"executable": "katago", "request_timeout": 0},
        {"executable": "katago", "kill_timeout": -1.0},
        {"executable": "katago", "max_consecutive_decode_errors": 0},
    ],
)
def test_config_rejects_invalid_settings(overrides: dict[str, object]) -> None:
    """Out-of-range settings fail fast."""
    with pytest.raises(ValueError):
        SessionConfig(**overrides)  # type: ignore[arg-type]


def test_config_with_overrides_returns_copy() -> None:
    """Overrides leave the base configuration untouched."""
    base: SessionConfig = SessionConfig(executable="katago", request_timeout=5.0)
    changed: SessionConfig = base.with_overrides(request_timeout=1.0)
    assert changed.request_timeout == 1.0
    assert base.request_timeout == 5.0


def test_default_sink_logs_engine_stderr(caplog: pytest.LogCaptureFixture) -> None:
    """The default diagnostic sink logs at DEBUG on the engine stderr logger."""
    with caplog.at_level(logging.DEBUG, logger=ENGINE_STDERR_LOGGER):
        log_engine_stderr("KataGo loaded model")
    assert [record.getMessage() for record in caplog.records] == ["KataGo loaded model"]
    assert caplog.records[0].name == ENGINE_STDERR_LOGGER


def test_open_engine_applies_overrides() -> None:
    """``open_engine`` launches the executable with the given config overrides."""
    base: SessionConfig = SessionConfig(executable="placeholder", request_timeout=30.0)
    session: EngineSession = open_engine(
        sys.executable,
        ["-u", str(STUB_ENGINE), "--mode", "echo"],
        config=base,
        kill_timeout=5.0,
    )
    try:
        assert session.config.executable == sys.executable
        assert session.config.request_timeout == 30.0
        assert session.config.kill_timeout == 5.0
        assert session.pid is not None
        assert session.submit({"id": "api"})["id"] == "api"
    finally:
        session.close()
    assert session.state is SessionState.CLOSED


def test_package_exports() -> None:
    """The package root exposes the session API and the error taxonomy."""
    for name in enginemux.__all__:
        assert hasattr(enginemux, name) is True
    assert issubclass(enginemux.MissingIDError, enginemux.DecodeError) is True
    assert issubclass(enginemux.ProcessExitedError, enginemux.EndOfStreamError) is True
    assert issubclass(enginemux.EngineTimeoutError, TimeoutError) is True
