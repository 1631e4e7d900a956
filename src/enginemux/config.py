"""Session configuration for enginemux."""

import dataclasses
from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass

DiagnosticSink = Callable[[str], None]
DEFAULT_MAX_CONSECUTIVE_DECODE_ERRORS: int = 8


@dataclass(frozen=True)
class SessionConfig:
    """Launch and runtime settings for one engine session.

    ``request_timeout`` is the default per-call deadline; ``None`` waits until
    the reply arrives or the session closes. ``kill_timeout`` bounds how long
    ``close()`` waits for a graceful exit before killing the engine; ``None``
    waits indefinitely.
    """

    executable: str
    arguments: tuple[str, ...] = ()
    request_timeout: float | None = None
    kill_timeout: float | None = None
    diagnostic_sink: DiagnosticSink | None = None
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    max_consecutive_decode_errors: int = DEFAULT_MAX_CONSECUTIVE_DECODE_ERRORS

    def __post_init__(self) -> None:
        """Normalize and validate settings.

        :raises ValueError: If a setting is out of range.
        """
        if isinstance(self.executable, str) is False or self.executable == "":
            raise ValueError("executable must be a non-empty string")
        object.__setattr__(self, "arguments", tuple(str(argument) for argument in self.arguments))
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout!r}")
        if self.kill_timeout is not None and self.kill_timeout < 0:
            raise ValueError(f"kill_timeout must be non-negative, got {self.kill_timeout!r}")
        if self.max_consecutive_decode_errors < 1:
            raise ValueError("max_consecutive_decode_errors must be at least 1")

    @property
    def command(self) -> list[str]:
        """Return the full argv used to launch the engine.

        :returns: Executable followed by its arguments.
        """
        return [self.executable, *self.arguments]

    def with_overrides(self, **overrides: object) -> "SessionConfig":
        """Return a copy with selected fields replaced.

        :param overrides: Field values to replace.
        :returns: New configuration.
        """
        return dataclasses.replace(self, **overrides)  # type: ignore[arg-type]
