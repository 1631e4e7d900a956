"""User-facing API entrypoints for enginemux."""

from collections.abc import Sequence

from enginemux.config import SessionConfig
from enginemux.session import EngineSession
from enginemux.session import open_session


def open_engine(
    executable_path: str,
    arguments: Sequence[str] = (),
    config: SessionConfig | None = None,
    **overrides: object,
) -> EngineSession:
    """Launch an engine process and return a running session.

    :param executable_path: Engine executable.
    :param arguments: Command-line arguments for the engine.
    :param config: Optional base configuration; its executable and arguments are replaced.
    :param overrides: Other ``SessionConfig`` fields, such as ``request_timeout``.
    :returns: Running session; close it with ``session.close()`` or a ``with`` block.
    :raises SpawnError: If the engine cannot be launched.
    """
    resolved: SessionConfig
    if config is None:
        resolved = SessionConfig(
            executable=executable_path,
            arguments=tuple(arguments),
            **overrides,  # type: ignore[arg-type]
        )
    else:
        resolved = config.with_overrides(
            executable=executable_path,
            arguments=tuple(arguments),
            **overrides,
        )
    return open_session(resolved)
