"""
Error kinds raised by the command pipeline and the providers built on it.

Every error carries an ``ErrorKind`` and a small diagnostic payload. The core
pipeline never decides caller-visible status codes; ``ErrorKind.status`` is
only consulted by the provider and CLI layers.

Outage detection mirrors the controller error messages emitted by the
scheduler clients: https://github.com/SchedMD/slurm/blob/master/src/common/slurm_errno.c
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence

from .logging_setup import get_logger

if TYPE_CHECKING:
    from .cmd.executor import CommandResult

logger = get_logger(__name__)


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    PROCESS_START = "process_start"
    PROCESS_TIMEOUT = "process_timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    MALFORMED_OUTPUT = "malformed_output"
    UNRECOGNIZED_STATUS = "unrecognized_status"
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    UNSUPPORTED = "unsupported"

    @property
    def status(self) -> HTTPStatus:
        return _STATUS_BY_KIND.get(self, HTTPStatus.INTERNAL_SERVER_ERROR)


_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorKind.BAD_REQUEST: HTTPStatus.BAD_REQUEST,
    ErrorKind.UNSUPPORTED: HTTPStatus.NOT_IMPLEMENTED,
}


class GridEngineError(RuntimeError):
    """Base class for all errors raised by gridbridge."""

    kind: ErrorKind = ErrorKind.NON_ZERO_EXIT

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(GridEngineError):
    """A deployment asset (template, engine binding) is missing or invalid."""

    kind = ErrorKind.CONFIGURATION


class ProcessStartFailure(GridEngineError):
    """The external process could not be started at all."""

    kind = ErrorKind.PROCESS_START


class ProcessTimeout(GridEngineError):
    kind = ErrorKind.PROCESS_TIMEOUT


class NonZeroExit(GridEngineError):
    """A command finished with a non-zero exit code the caller cannot accept."""

    kind = ErrorKind.NON_ZERO_EXIT

    def __init__(self, message: str, result: "CommandResult", **details: Any):
        super().__init__(message, exit_code=result.exit_code, **details)
        self.result = result


class MalformedOutput(GridEngineError):
    """Command output does not match the expected shape."""

    kind = ErrorKind.MALFORMED_OUTPUT

    def __init__(
        self,
        message: str,
        *,
        line: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
        **details: Any,
    ):
        super().__init__(message, line=line, expected=expected, actual=actual, **details)
        self.line = line
        self.expected = expected
        self.actual = actual


class UnrecognizedStatus(GridEngineError):
    """A parsed status value cannot be represented by the status enum."""

    kind = ErrorKind.UNRECOGNIZED_STATUS

    def __init__(self, message: str, value: Any):
        super().__init__(message, value=value)
        self.value = value


class SchedulerUnreachable(GridEngineError):
    kind = ErrorKind.NOT_FOUND


class JobNotFound(GridEngineError):
    kind = ErrorKind.NOT_FOUND


class InvalidRequest(GridEngineError):
    kind = ErrorKind.BAD_REQUEST


class UnsupportedOperation(GridEngineError):
    kind = ErrorKind.UNSUPPORTED


def merge_output_lines(lines: Sequence[str]) -> str:
    return "\n".join(line for line in lines if line.strip())


def execution_details(result: "CommandResult") -> str:
    """Human readable summary of a command result for error messages."""
    return (
        f"exitCode = {result.exit_code}\n"
        f"stdOut: {merge_output_lines(result.stdout)}\n"
        f"stdErr: {merge_output_lines(result.stderr)}"
    )


class CommandFamily(Enum):
    """Operation context for outage classification."""

    SUBMIT = "submit"
    LIST = "list"
    DELETE = "delete"
    QUEUE = "queue"
    HOST = "host"
    HEALTH = "health"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class _Pattern:
    regex: re.Pattern[str]
    description: str
    families: tuple[CommandFamily, ...]


_ALL_FAMILIES = tuple(CommandFamily)


def _compile_patterns() -> tuple[_Pattern, ...]:
    raw_patterns: Iterable[tuple[str, str, Iterable[CommandFamily]]] = [
        (
            r"socket timed out",
            "Network timeout reaching the scheduler controller",
            _ALL_FAMILIES,
        ),
        (
            r"communications connection failure",
            "Connection failure talking to the scheduler controller",
            _ALL_FAMILIES,
        ),
        (
            r"connection (?:timed out|refused|reset by peer)",
            "Connection problem talking to the scheduler controller",
            _ALL_FAMILIES,
        ),
        (
            r"unable to contact slurm controller",
            "Unable to contact SLURM controller",
            _ALL_FAMILIES,
        ),
        (
            r"slurm controller .*? not responding",
            "SLURM controller not responding",
            _ALL_FAMILIES,
        ),
        (
            r"unable to contact qmaster",
            "Unable to contact SGE qmaster",
            _ALL_FAMILIES,
        ),
        (
            r"can't find connection",
            "Can`t find connection via specified port",
            (CommandFamily.HEALTH, CommandFamily.LIST, CommandFamily.HOST),
        ),
    ]

    patterns: list[_Pattern] = []
    for expr, description, families in raw_patterns:
        try:
            regex = re.compile(expr, re.IGNORECASE)
        except re.error as exc:
            logger.warning(f"Failed to compile outage pattern '{expr}': {exc}")
            continue
        patterns.append(_Pattern(regex=regex, description=description, families=tuple(families)))
    return tuple(patterns)


_OUTAGE_PATTERNS = _compile_patterns()


def detect_unavailability(
    message: Optional[str],
    *,
    family: CommandFamily = CommandFamily.UNKNOWN,
) -> Optional[str]:
    """Return a description if the message looks like a scheduler outage."""
    if not message:
        return None
    normalized = message.strip().lower()
    if not normalized:
        return None

    for pattern in _OUTAGE_PATTERNS:
        if family not in pattern.families and family is not CommandFamily.UNKNOWN:
            continue
        if pattern.regex.search(normalized):
            return pattern.description
    return None


def raise_if_unavailable(
    message: Optional[str],
    *,
    family: CommandFamily = CommandFamily.UNKNOWN,
) -> None:
    """Raise SchedulerUnreachable if the message indicates an outage."""
    detail = detect_unavailability(message, family=family)
    if detail:
        text = message.strip() if message else ""
        composed = f"{detail}: {text}" if text else detail
        raise SchedulerUnreachable(composed)
