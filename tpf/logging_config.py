"""
Logging for the tpf package.

Nothing is printed unless the application asks for it: the ``tpf`` logger
carries a NullHandler at WARNING level on import. `configure_logging` opts
in to output; the filter's ``verbose`` keyword only decides whether its
progress records are emitted at INFO or DEBUG.
"""

import logging
import sys
from typing import Any, Iterable, Mapping, Optional, Union

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

PACKAGE_LOGGER = "tpf"

# verbose keyword of the filter -> least detailed record class shown at INFO
VERBOSITY = {"none": 0, "low": 1, "high": 2}

_pkg_logger = logging.getLogger(PACKAGE_LOGGER)
_pkg_logger.addHandler(logging.NullHandler())
_pkg_logger.setLevel(logging.WARNING)


def _as_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"Unknown logging level {level!r}.")
        return value
    return int(level)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    format_str: Optional[str] = None,
    handlers: Optional[Union[Mapping[str, logging.Handler], Iterable[logging.Handler]]] = None
) -> logging.Logger:
    """
    Send tpf log records to `handlers` (stderr by default).

    Args:
        level: level name or number for the ``tpf`` logger (default: INFO)
        format_str: record format (default: timestamp, logger name, level, message)
        handlers: handlers to attach, as a mapping of name to handler or a list

    Returns:
        The configured ``tpf`` logger. Records do not propagate to the root
        logger, so repeated calls replace rather than duplicate output.
    """
    formatter = logging.Formatter(format_str or DEFAULT_FORMAT)

    pkg = logging.getLogger(PACKAGE_LOGGER)
    for handler in pkg.handlers[:]:
        pkg.removeHandler(handler)
    pkg.setLevel(_as_level(level))

    if handlers is None:
        handlers = [logging.StreamHandler(sys.stderr)]
    elif isinstance(handlers, Mapping):
        handlers = list(handlers.values())

    for handler in handlers:
        handler.setFormatter(formatter)
        pkg.addHandler(handler)
    pkg.propagate = False

    pkg.debug("Logging configured for tpf package")
    return pkg


def reset_logging() -> None:
    """Restore the silent import-time state of the ``tpf`` logger."""
    pkg = logging.getLogger(PACKAGE_LOGGER)
    for handler in pkg.handlers[:]:
        pkg.removeHandler(handler)
    pkg.addHandler(logging.NullHandler())
    pkg.setLevel(logging.WARNING)
    pkg.propagate = True


def verbosity(verbose: str) -> int:
    try:
        return VERBOSITY[verbose]
    except KeyError:
        raise ValueError(f"verbose must be one of {sorted(VERBOSITY)}, got {verbose!r}.") from None


def log_progress(logger: logging.Logger, report: int, needed: str, msg: str, *args: Any) -> None:
    """Log at INFO when the requested verbosity reaches `needed`, at DEBUG otherwise."""
    if report >= VERBOSITY[needed]:
        logger.info(msg, *args)
    else:
        logger.debug(msg, *args)


def get_logger(name: str) -> logging.Logger:
    """Logger ``tpf.<name>`` for one module of the package."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


__all__ = [
    "configure_logging",
    "reset_logging",
    "get_logger",
    "log_progress",
    "verbosity",
    "VERBOSITY",
    "DEFAULT_FORMAT",
]
