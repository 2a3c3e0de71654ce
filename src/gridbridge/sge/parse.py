import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Optional

from ..cmd.executor import CommandResult
from ..entities import (
    NOT_PROVIDED,
    DeletedJobInfo,
    HealthCheckInfo,
    Host,
    Job,
    JobState,
    JobStateCategory,
    Queue,
    SlotsDescription,
)
from ..errors import JobNotFound, MalformedOutput, execution_details
from ..parse.common import collapse_whitespace, non_blank, parse_datetime, parse_int, parse_memory
from ..parse.health import classify_status, validate_health_response


SUBMITTED_JOB_PATTERN = re.compile(r"Your job(?:-array)? (\d+)(?:\.\S+)? \(.*\) has been submitted")
DELETED_JOB_PATTERN = re.compile(r"has (?:registered the job|deleted job) (\d+)")
DELETE_DENIED_PATTERN = re.compile(r'denied: job "?(\d+)"? does not exist')

XML_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
QPING_TIME_FORMAT = "%m/%d/%Y %H:%M:%S"
QPING_CHECK_TIME_FORMAT = "%m/%d/%Y %H:%M:%S:"

GLOBAL_HOST = "global"
HOST_VALUES = ("arch_string", "num_proc", "m_socket", "m_core", "m_thread", "mem_total", "mem_used")
UNDEFINED = "-"
NONE_VALUE = "NONE"

_PER_HOST_SLOTS = re.compile(r"\[\s*([^=\]\s]+)\s*=\s*(\d+)\s*\]")
_LIST_SEPARATOR = re.compile(r"[\s,]+")


def _parse_xml(result: CommandResult) -> ET.Element:
    document = "\n".join(result.stdout)
    try:
        return ET.fromstring(document)
    except ET.ParseError as exc:
        raise MalformedOutput(f"Output is not a valid XML document: {exc}", line=result.stdout[0] if result.stdout else None)


def _text(element: ET.Element, tag: str) -> Optional[str]:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def _xml_time(value: Optional[str]) -> Optional[datetime]:
    # newer releases append milliseconds: 2022-05-10T10:00:00.123
    return parse_datetime(value[:19] if value else value, XML_TIME_FORMAT)


def parse_job_state(code: str) -> JobState:
    """Map an SGE state code such as ``qw``, ``r`` or ``Eqw`` onto the common categories."""
    if "E" in code or "d" in code:
        category = JobStateCategory.FAILED
    elif any(flag in code for flag in "sST"):
        category = JobStateCategory.SUSPENDED
    elif any(flag in code for flag in "rtR"):
        category = JobStateCategory.RUNNING
    elif any(flag in code for flag in "qwh"):
        category = JobStateCategory.PENDING
    else:
        category = JobStateCategory.UNKNOWN
    return JobState(category=category, native=code or None)


def _job_from_element(element: ET.Element) -> Job:
    number = _text(element, "JB_job_number")
    if number is None:
        raise MalformedOutput("job_list entry without JB_job_number", expected="JB_job_number")
    queue_name = _text(element, "queue_name")
    queue, _, host = (queue_name or "").partition("@")
    priority = _text(element, "JAT_prio")
    slots = _text(element, "slots")
    try:
        prio_value = float(priority) if priority else None
    except ValueError:
        raise MalformedOutput(f"JAT_prio is not a number: {priority!r}", expected="float", actual=priority)
    return Job(
        id=parse_int(number, "JB_job_number"),
        name=_text(element, "JB_name"),
        owner=_text(element, "JB_owner"),
        state=parse_job_state(_text(element, "state") or ""),
        queue=queue or None,
        priority=prio_value,
        submission_time=_xml_time(_text(element, "JB_submission_time")),
        start_time=_xml_time(_text(element, "JAT_start_time")),
        slots=parse_int(slots, "slots") if slots else 0,
        nodes=(host,) if host else (),
    )


def parse_jobs(result: CommandResult) -> list[Job]:
    """Parse ``qstat -xml``; running and pending jobs both appear as job_list elements."""
    if not non_blank(result.stdout):
        return []
    root = _parse_xml(result)
    return [_job_from_element(element) for element in root.iter("job_list")]


def parse_submitted_job_id(result: CommandResult) -> int:
    first_line = result.stdout[0] if result.stdout else ""
    match = SUBMITTED_JOB_PATTERN.search(first_line)
    if not match:
        raise MalformedOutput(
            f"Job was submitted but its id cannot be recognized.\n{execution_details(result)}",
            line=first_line,
            expected=SUBMITTED_JOB_PATTERN.pattern,
        )
    return int(match.group(1))


def parse_deleted_jobs(result: CommandResult, owner: Optional[str] = None) -> list[DeletedJobInfo]:
    """Jobs qdel registered for deletion, minus those it reported as missing."""
    lines = list(result.stdout) + list(result.stderr)
    denied = {match.group(1) for match in map(DELETE_DENIED_PATTERN.search, lines) if match}
    deleted: dict[str, None] = {}
    for match in map(DELETED_JOB_PATTERN.search, result.stdout):
        if match and match.group(1) not in denied:
            deleted.setdefault(match.group(1), None)
    if not deleted:
        raise JobNotFound(f"No jobs were deleted.\n{execution_details(result)}", exit_code=result.exit_code)
    return [DeletedJobInfo(id=int(job_id), owner=owner) for job_id in deleted]


def _host_number(values: dict[str, str], name: str, host: str) -> int:
    value = values[name]
    if value == UNDEFINED:
        return 0
    try:
        return int(float(value))
    except ValueError:
        raise MalformedOutput(f"Host {host}: {name} is not a number: {value!r}", expected="int", actual=value)


def _host_from_element(element: ET.Element) -> Host:
    name = element.get("name", "")
    values = {
        value.get("name"): (value.text or "").strip()
        for value in element.findall("hostvalue")
    }
    for key in HOST_VALUES:
        if key not in values:
            raise MalformedOutput(f"Required key '{key}' is missing from host {name}", expected=key)

    sockets = _host_number(values, "m_socket", name)
    cores = _host_number(values, "m_core", name)
    threads = _host_number(values, "m_thread", name)
    physical = parse_memory(values["mem_total"])
    allocated = parse_memory(values["mem_used"])
    if physical is not None and allocated is not None and allocated > physical:
        raise MalformedOutput(
            f"Host {name} reports more used than total memory",
            expected=f"<= {physical}",
            actual=allocated,
        )

    return Host(
        name=name,
        arch=None if values["arch_string"] == UNDEFINED else values["arch_string"],
        cpu_total=_host_number(values, "num_proc", name),
        sockets=sockets,
        cores_per_socket=cores // sockets if sockets else 0,
        threads_per_core=threads // cores if cores else 0,
        physical_memory=physical,
        allocated_memory=allocated,
    )


def parse_hosts(result: CommandResult) -> list[Host]:
    """Parse ``qhost -xml``, skipping the synthetic "global" host."""
    root = _parse_xml(result)
    return [
        _host_from_element(element)
        for element in root.iter("host")
        if element.get("name") != GLOBAL_HOST
    ]


def parse_queue_names(result: CommandResult) -> list[str]:
    return [line.strip() for line in non_blank(result.stdout)]


def parse_queue_config(result: CommandResult) -> dict[str, str]:
    """``qconf -sq`` prints "key   value" lines; a trailing backslash continues a value."""
    config: dict[str, str] = {}
    pending = ""
    for raw in result.stdout:
        line = pending + raw.strip()
        if line.endswith("\\"):
            pending = line[:-1] + " "
            continue
        pending = ""
        if not line:
            continue
        parts = line.split(None, 1)
        config[parts[0]] = collapse_whitespace(parts[1]) if len(parts) > 1 else ""
    return config


def _list_value(value: str) -> tuple[str, ...]:
    if not value or value.upper() == NONE_VALUE:
        return ()
    return tuple(item for item in _LIST_SEPARATOR.split(value) if item)


def parse_slots(value: str) -> SlotsDescription:
    """``1,[node1=4],[node2=8]``: a default followed by per-host overrides."""
    per_host = {host: int(slots) for host, slots in _PER_HOST_SLOTS.findall(value)}
    if per_host:
        return SlotsDescription(total_slots=sum(per_host.values()), per_host_slots=per_host)
    default = _PER_HOST_SLOTS.sub("", value).split(",")[0].strip()
    return SlotsDescription(total_slots=parse_int(default, "slots", value))


def parse_queue(result: CommandResult) -> Queue:
    config = parse_queue_config(result)
    for key in ("qname", "hostlist", "slots"):
        if key not in config:
            raise MalformedOutput(f"Required key '{key}' is missing from queue configuration", expected=key)
    return Queue(
        name=config["qname"],
        host_list=_list_value(config["hostlist"]),
        allowed_user_groups=_list_value(config.get("user_lists", "")),
        slots=parse_slots(config["slots"]),
    )


def _qping_values(stdout: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in stdout[1:]:
        key, sep, value = line.partition(":")
        if sep:
            values[key.strip()] = value.strip()
    return values


def _qping_check_time(first_line: str) -> datetime:
    try:
        return datetime.strptime(first_line.strip(), QPING_CHECK_TIME_FORMAT)
    except ValueError:
        raise MalformedOutput(
            f"qping check time is not in {QPING_CHECK_TIME_FORMAT!r} format: {first_line!r}",
            line=first_line,
            expected=QPING_CHECK_TIME_FORMAT,
        ) from None


def parse_health(result: CommandResult) -> HealthCheckInfo:
    """Parse ``qping -info``; ``status`` is 0 for a healthy qmaster."""
    validate_health_response(result)
    stdout = list(result.stdout)
    values = _qping_values(stdout)

    status_text = values.get("status", "")
    code = int(status_text) if status_text.isdigit() else NOT_PROVIDED
    status = classify_status(code)

    start_text = values.get("start time")
    if not start_text:
        raise MalformedOutput(f"start time wasn't found in stdOut, stdOut: {stdout}", expected="start time")

    return HealthCheckInfo(
        code=code,
        status=status,
        info=collapse_whitespace(values.get("info", "")),
        start_time=parse_datetime(start_text[:19], QPING_TIME_FORMAT),
        check_time=_qping_check_time(stdout[0]),
    )
