from datetime import datetime
from typing import Mapping

from ..cmd.executor import CommandResult
from ..entities import NOT_PROVIDED, HealthStatus
from ..errors import SchedulerUnreachable, UnrecognizedStatus, execution_details


CANT_FIND_CONNECTION = "can't find connection"
CANT_FIND_CONNECTION_MESSAGE = "Can`t find connection via specified port"

STATUS_CODES: Mapping[str, int] = {"UP": HealthStatus.OK.value, "DOWN": HealthStatus.DOWN.value}


def validate_health_response(result: CommandResult, min_lines: int = 1) -> None:
    """Raise SchedulerUnreachable when the command never reached the scheduler."""
    if len(result.stdout) < min_lines:
        raise SchedulerUnreachable(
            f"Scheduler error during health check.\n{execution_details(result)}",
            exit_code=result.exit_code,
        )
    if (
        result.exit_code != 0
        and CANT_FIND_CONNECTION in result.stdout[0]
        and len(result.stderr) > 0
    ):
        raise SchedulerUnreachable(CANT_FIND_CONNECTION_MESSAGE, exit_code=result.exit_code)


def status_code(text: str) -> int:
    """UP -> 0, DOWN -> 2, anything else -> NOT_PROVIDED."""
    return STATUS_CODES.get(text.strip().upper(), NOT_PROVIDED)


def classify_status(code: int) -> HealthStatus:
    try:
        return HealthStatus(code)
    except ValueError:
        raise UnrecognizedStatus(f"Not valid status value provided: {code}", value=code) from None


def now() -> datetime:
    """Current scheduler-local time, without timezone, to the second."""
    return datetime.now().replace(microsecond=0)
