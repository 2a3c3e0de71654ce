"""Parsers for the three SLURM commands that can tell whether slurmctld is alive.

``scontrol show config`` is the one used by the health-check provider; the
``scontrol ping`` and ``sinfo --summarize`` parsers are kept for deployments
whose users may not read the controller configuration.
"""

from datetime import datetime

from ..cmd.executor import CommandResult
from ..entities import HealthCheckInfo
from ..errors import MalformedOutput
from ..parse.common import collapse_whitespace, parse_datetime, parse_header_table
from ..parse.health import classify_status, now, status_code, validate_health_response


BOOT_TIME = "BOOT_TIME"
BOOT_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
UP_STATE = "UP"
DOWN_STATE = "DOWN"
SINFO_STATUS = "AVAIL"
SECTION_END = " "


def _last_token(line: str) -> str:
    tokens = line.split()
    return tokens[-1] if tokens else ""


def parse_show_config(result: CommandResult) -> HealthCheckInfo:
    """The last line reads "Slurmctld(primary) at <host> is UP|DOWN"."""
    validate_health_response(result)
    stdout = list(result.stdout)

    code = status_code(_last_token(stdout[-1]))
    status = classify_status(code)

    info_lines = []
    for line in stdout:
        if line == SECTION_END:
            break
        if not line.strip():
            continue
        info_lines.append(collapse_whitespace(line))

    return HealthCheckInfo(
        code=code,
        status=status,
        info="; ".join(info_lines),
        start_time=_boot_time(stdout),
        check_time=now(),
    )


def _boot_time(stdout: list[str]) -> datetime:
    for line in stdout:
        if BOOT_TIME in line:
            _, _, value = collapse_whitespace(line).partition("=")
            start = parse_datetime(value, BOOT_TIME_FORMAT)
            if start is None:
                break
            return start
    raise MalformedOutput(f"boot time wasn't found in stdOut, stdOut: {stdout}", expected=BOOT_TIME)


def parse_ping(result: CommandResult) -> HealthCheckInfo:
    """``scontrol ping``: "Slurmctld(primary) at head is UP"."""
    validate_health_response(result)
    stdout = list(result.stdout)

    code = status_code(_last_token(stdout[0]))
    status = classify_status(code)

    info = next((line for line in stdout if UP_STATE in line or DOWN_STATE in line), None)
    if info is None:
        raise MalformedOutput(f"unable to find server status in stdOut, stdOut: {stdout}", expected=UP_STATE)

    return HealthCheckInfo(code=code, status=status, info=collapse_whitespace(info), check_time=now())


def parse_sinfo_health(result: CommandResult) -> HealthCheckInfo:
    """``sinfo --summarize``: a header row and a value row, AVAIL is up or down."""
    validate_health_response(result, min_lines=2)
    table = parse_header_table(list(result.stdout[:2]))

    code = status_code(table.get(SINFO_STATUS, ""))
    status = classify_status(code)

    return HealthCheckInfo(
        code=code,
        status=status,
        info=" ".join(f"{key}={value}" for key, value in table.items()),
        check_time=now(),
    )
