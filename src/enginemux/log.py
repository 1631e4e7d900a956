"""Logging helpers for enginemux."""

import logging
import sys

DEFAULT_FORMAT: str = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
ENGINE_STDERR_LOGGER: str = "enginemux.engine.stderr"


def configure_logging(level: int = logging.INFO, log_format: str | None = None) -> None:
    """Configure the root logger once, leaving existing configuration alone.

    :param level: Root log level.
    :param log_format: Optional format string; ``DEFAULT_FORMAT`` when omitted.
    """
    has_handlers: bool = len(logging.getLogger().handlers) > 0
    if has_handlers is True:
        return

    logging.basicConfig(
        level=level,
        format=log_format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def log_engine_stderr(line: str) -> None:
    """Default diagnostic sink: forward one engine stderr line to logging.

    :param line: Engine stderr line without its newline.
    """
    logging.getLogger(ENGINE_STDERR_LOGGER).debug("%s", line)
