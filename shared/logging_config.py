"""Central logging configuration for the brunodo command line.

Diagnostics go to a log file shared across invocations so a failed download can
be inspected after the fact, and user-facing progress goes to stderr.  Records
written to the file have the user's home directory and account name replaced
by placeholders.

Two environment variables relocate the log file:

``BRUNODO_LOG_FILE``
    Absolute path to the log file.

``BRUNODO_LOG_DIR``
    Directory holding ``brunodo.log``.  Ignored when ``BRUNODO_LOG_FILE`` is set.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from enum import Enum
from pathlib import Path
from typing import TextIO

_LOG_FILE_ENV = "BRUNODO_LOG_FILE"
_LOG_DIR_ENV = "BRUNODO_LOG_DIR"
_DEFAULT_DIRNAME = ".brunodo"
_DEFAULT_LOGNAME = "brunodo.log"
_HANDLER_TAG = "_brunodo_logging_handler"
_CONSOLE_FORMAT = "[brunodo %(levelname)s] %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LOG_PATH: Path | None = None
_FILE_HANDLER: logging.Handler | None = None
_CONSOLE_HANDLER: logging.Handler | None = None

USER_PLACEHOLDER = "<user>"
USER_HOME_PLACEHOLDER = "<user_home>"


class LogVerbosity(str, Enum):
    """Verbosity levels supported by the log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"


_VERBOSITY_LEVELS: dict[LogVerbosity, int] = {
    LogVerbosity.DISABLED: logging.CRITICAL + 1,
    LogVerbosity.ERROR: logging.ERROR,
    LogVerbosity.WARNING: logging.WARNING,
    LogVerbosity.INFO: logging.INFO,
    LogVerbosity.VERBOSE: logging.DEBUG,
}

_DEFAULT_VERBOSITY = LogVerbosity.VERBOSE
_CURRENT_VERBOSITY = _DEFAULT_VERBOSITY


def _home_candidates() -> set[str]:
    candidates = {str(Path.home())}
    for env_var in ("HOME", "USERPROFILE"):
        value = os.environ.get(env_var)
        if value:
            candidates.add(os.path.expanduser(value))
    return {
        os.path.normpath(candidate)
        for candidate in candidates
        if candidate and os.path.normpath(candidate) not in {os.sep, "."}
    }


def _username_candidates() -> set[str]:
    names = {Path.home().name}
    for env_var in ("USERNAME", "USER", "LOGNAME"):
        value = os.environ.get(env_var)
        if value:
            names.add(value)
    return {name.strip() for name in names if name and name.strip()}


def _build_redaction_patterns() -> tuple[tuple[re.Pattern[str], str], ...]:
    flags = re.IGNORECASE if os.name == "nt" else 0
    patterns: list[tuple[re.Pattern[str], str]] = []
    # Longest first so a nested home path is not partially replaced.
    for home in sorted(_home_candidates(), key=len, reverse=True):
        for variant in {home, home.replace("\\", "/")}:
            patterns.append((re.compile(re.escape(variant), flags), USER_HOME_PLACEHOLDER))
    for name in sorted(_username_candidates(), key=len, reverse=True):
        if any(character.isalnum() for character in name):
            pattern = re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE)
        else:
            pattern = re.compile(re.escape(name), re.IGNORECASE)
        patterns.append((pattern, USER_PLACEHOLDER))
    return tuple(patterns)


_REDACTION_PATTERNS = _build_redaction_patterns()


def redact(message: str) -> str:
    """Replace the user's home directory and account name in ``message``."""

    if not message:
        return message
    for pattern, replacement in _REDACTION_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class _RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def ensure_app_logging() -> Path:
    """Attach the file handler to the root logger and return the log path.

    Repeated calls keep the existing handler.
    """

    global _LOG_PATH, _FILE_HANDLER

    if _FILE_HANDLER is not None and _LOG_PATH is not None:
        return _LOG_PATH

    log_path = _resolve_log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(_VERBOSITY_LEVELS[_CURRENT_VERBOSITY])
    handler.setFormatter(_RedactingFormatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    setattr(handler, _HANDLER_TAG, True)
    root.addHandler(handler)

    _FILE_HANDLER = handler
    _LOG_PATH = log_path
    logging.getLogger(__name__).debug(
        "Writing logs to %s (verbosity=%s)", log_path, _CURRENT_VERBOSITY.value
    )
    return log_path


def configure_cli_logging(*, debug: bool = False, stream: TextIO | None = None) -> Path | None:
    """Set up console output for the command line, plus the log file when writable.

    ``debug`` lowers both the console and the file threshold to DEBUG; otherwise
    the file records INFO and above.

    Returns the log file path, or ``None`` when the file handler could not be
    created (for example on a read-only home directory).
    """

    global _CONSOLE_HANDLER

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    level = logging.DEBUG if debug else logging.INFO
    if _CONSOLE_HANDLER is None:
        console = logging.StreamHandler(stream if stream is not None else sys.stderr)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        setattr(console, _HANDLER_TAG, True)
        root.addHandler(console)
        _CONSOLE_HANDLER = console
    _CONSOLE_HANDLER.setLevel(level)
    set_file_log_verbosity(LogVerbosity.VERBOSE if debug else LogVerbosity.INFO)

    try:
        return ensure_app_logging()
    except OSError as exc:
        logging.getLogger(__name__).debug("File logging unavailable: %s", exc)
        return None


def set_file_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Adjust the minimum severity recorded in the log file."""

    global _CURRENT_VERBOSITY

    if isinstance(verbosity, str):
        try:
            verbosity = LogVerbosity(verbosity.lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported log verbosity: {verbosity}") from exc

    _CURRENT_VERBOSITY = verbosity
    if _FILE_HANDLER is not None:
        _FILE_HANDLER.setLevel(_VERBOSITY_LEVELS[verbosity])
    logging.getLogger(__name__).debug("File log verbosity set to %s", verbosity.value)


def get_file_log_verbosity() -> LogVerbosity:
    return _CURRENT_VERBOSITY


def _resolve_log_path() -> Path:
    env_file = os.environ.get(_LOG_FILE_ENV)
    if env_file:
        return Path(env_file).expanduser()

    env_dir = os.environ.get(_LOG_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser() / _DEFAULT_LOGNAME

    return Path.home() / _DEFAULT_DIRNAME / "logs" / _DEFAULT_LOGNAME


def _reset_for_tests() -> None:
    """Remove handlers installed by this module."""

    global _LOG_PATH, _FILE_HANDLER, _CONSOLE_HANDLER, _CURRENT_VERBOSITY

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    _LOG_PATH = None
    _FILE_HANDLER = None
    _CONSOLE_HANDLER = None
    _CURRENT_VERBOSITY = _DEFAULT_VERBOSITY


__all__ = [
    "LogVerbosity",
    "USER_HOME_PLACEHOLDER",
    "USER_PLACEHOLDER",
    "configure_cli_logging",
    "ensure_app_logging",
    "get_file_log_verbosity",
    "redact",
    "set_file_log_verbosity",
]
