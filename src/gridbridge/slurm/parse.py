import re
from dataclasses import dataclass
from typing import Optional

from ..cmd.executor import CommandResult
from ..entities import DeletedJobInfo, Host, Job, JobState, JobStateCategory, Queue, SlotsDescription
from ..errors import JobNotFound, MalformedOutput, NonZeroExit, execution_details, merge_output_lines
from ..logging_setup import get_logger
from ..parse.common import (
    decrypt_group_of_nodes,
    non_blank,
    parse_datetime,
    parse_int,
    parse_key_values,
    require_keys,
    split_fields,
    split_hostlist,
)


logger = get_logger(__name__)

SLURM_DELIMITER = "|"

# squeue --format=%i|%P|%j|%u|%T|%V|%S|%C|%Q|%N, preceded by one header line
JOB_OUTPUT_HEADER_LINES_COUNT = 1
SQUEUE_FIELDS = 10
SQUEUE_ID, SQUEUE_PARTITION, SQUEUE_NAME, SQUEUE_USER, SQUEUE_STATE = range(5)
SQUEUE_SUBMIT_TIME, SQUEUE_START_TIME, SQUEUE_CPUS, SQUEUE_PRIORITY, SQUEUE_NODELIST = range(5, 10)

SQUEUE_JOB_ID_ERROR_PATTERN = re.compile(r".*Invalid job id specified.*")

SUBMITTED_JOB_PATTERN = re.compile(r"Submitted batch job (\d+).*")

START_TERMINATING_JOB_PREFIX = "scancel: Terminating job"
KILL_JOB_ERROR_PREFIX = "scancel: error: Kill job error on job id"
JOB_ID_START_POSITION = len(START_TERMINATING_JOB_PREFIX) + 1
ERROR_JOB_ID_POSITION = len(KILL_JOB_ERROR_PREFIX) + 1

# sinfo -h -N -o %all
SINFO_OUTPUT_SIZE = 42
SINFO_PARTNAME_INDEX = 33
SINFO_NODES_INDEX = 31
SINFO_USERGROUPS_INDEX = 6
SINFO_CPUS_INDEX = 2

NODE_NAME = "NodeName"
ARCHITECTURE = "Arch"
CPU_TOTAL = "CPUTot"
SOCKETS = "Sockets"
CORES_PER_SOCKET = "CoresPerSocket"
THREADS_PER_CORE = "ThreadsPerCore"
REAL_MEMORY = "RealMemory"
ALLOCATED_MEMORY = "AllocMem"
NODE_REQUIRED_KEYS = (
    NODE_NAME, ARCHITECTURE, CPU_TOTAL, SOCKETS, CORES_PER_SOCKET, THREADS_PER_CORE, REAL_MEMORY, ALLOCATED_MEMORY,
)
MEBIBYTE = 1024 * 1024

_STATE_CATEGORIES = {
    "PENDING": JobStateCategory.PENDING,
    "RUNNING": JobStateCategory.RUNNING,
    "COMPLETING": JobStateCategory.RUNNING,
    "CONFIGURING": JobStateCategory.RUNNING,
    "RESIZING": JobStateCategory.RUNNING,
    "SIGNALING": JobStateCategory.RUNNING,
    "STAGE_OUT": JobStateCategory.RUNNING,
    "SUSPENDED": JobStateCategory.SUSPENDED,
    "STOPPED": JobStateCategory.SUSPENDED,
    "REQUEUE_HOLD": JobStateCategory.SUSPENDED,
    "RESV_DEL_HOLD": JobStateCategory.SUSPENDED,
    "COMPLETED": JobStateCategory.COMPLETED,
    "FAILED": JobStateCategory.FAILED,
    "CANCELLED": JobStateCategory.FAILED,
    "TIMEOUT": JobStateCategory.FAILED,
    "NODE_FAIL": JobStateCategory.FAILED,
    "OUT_OF_MEMORY": JobStateCategory.FAILED,
    "BOOT_FAIL": JobStateCategory.FAILED,
    "DEADLINE": JobStateCategory.FAILED,
    "PREEMPTED": JobStateCategory.FAILED,
    "REVOKED": JobStateCategory.FAILED,
    "SPECIAL_EXIT": JobStateCategory.FAILED,
}


def parse_job_state(native: str) -> JobState:
    """Map a long-form SLURM job state onto the common state categories."""
    text = native.strip().upper()
    # "CANCELLED by 1000" carries the requesting uid after the state name
    key = text.split(" ", 1)[0] if text else ""
    return JobState(category=_STATE_CATEGORIES.get(key, JobStateCategory.UNKNOWN), native=native.strip() or None)


def job_not_found_by_id_error(result: CommandResult) -> bool:
    """True when every stderr line is squeue's "Invalid job id specified" complaint."""
    stderr = non_blank(result.stderr)
    return bool(stderr) and all(SQUEUE_JOB_ID_ERROR_PATTERN.match(line) for line in stderr)


def check_listing_result(result: CommandResult) -> bool:
    """Decide whether a squeue result carries a listing.

    Unknown job ids make squeue exit non-zero; that is reported as an empty
    listing rather than a failure. Any other non-zero exit raises.
    """
    if result.exit_code != 0:
        if job_not_found_by_id_error(result):
            logger.warning(f"No jobs found for the requested ids: {merge_output_lines(result.stderr)}")
            return False
        raise NonZeroExit(f"squeue failed.\n{execution_details(result)}", result)
    if non_blank(result.stderr):
        logger.warning(merge_output_lines(result.stderr))
    return True


def _parse_job_id(value: str, line: str) -> int:
    # array tasks are reported as <job>_<task>; the listing is per parent job id
    return parse_int(value.split("_", 1)[0], "JOBID", line)


def parse_job_line(line: str) -> Job:
    fields = split_fields(line, SLURM_DELIMITER, SQUEUE_FIELDS)
    priority = fields[SQUEUE_PRIORITY].strip()
    nodelist = fields[SQUEUE_NODELIST].strip()
    return Job(
        id=_parse_job_id(fields[SQUEUE_ID], line),
        name=fields[SQUEUE_NAME].strip() or None,
        owner=fields[SQUEUE_USER].strip() or None,
        state=parse_job_state(fields[SQUEUE_STATE]),
        queue=fields[SQUEUE_PARTITION].strip() or None,
        priority=float(parse_int(priority, "PRIORITY", line)) if priority else None,
        submission_time=parse_datetime(fields[SQUEUE_SUBMIT_TIME]),
        start_time=parse_datetime(fields[SQUEUE_START_TIME]),
        slots=parse_int(fields[SQUEUE_CPUS], "CPUS", line) if fields[SQUEUE_CPUS].strip() else 0,
        nodes=tuple(decrypt_group_of_nodes(split_hostlist(nodelist))) if nodelist else (),
    )


def parse_jobs(result: CommandResult) -> list[Job]:
    """Parse a squeue listing; the first stdout line is the column header."""
    if not check_listing_result(result):
        return []
    lines = list(result.stdout)
    if len(lines) <= JOB_OUTPUT_HEADER_LINES_COUNT:
        return []
    return [parse_job_line(line) for line in non_blank(lines[JOB_OUTPUT_HEADER_LINES_COUNT:])]


def parse_submitted_job_id(result: CommandResult) -> int:
    """Extract the job id from sbatch's "Submitted batch job <id>" line."""
    first_line = result.stdout[0] if result.stdout else ""
    match = SUBMITTED_JOB_PATTERN.search(first_line)
    if not match:
        raise MalformedOutput(
            f"Job was submitted but its id cannot be recognized.\n{execution_details(result)}",
            line=first_line,
            expected=SUBMITTED_JOB_PATTERN.pattern,
        )
    return int(match.group(1))


def _error_job_id(line: str) -> str:
    end = line.find(":", ERROR_JOB_ID_POSITION)
    return line[ERROR_JOB_ID_POSITION:end if end != -1 else None].strip()


def parse_deleted_jobs(result: CommandResult, owner: Optional[str] = None) -> list[DeletedJobInfo]:
    """Collect the jobs scancel confirmed terminating, minus those it failed to kill."""
    error_deleting_jobs = {
        _error_job_id(line) for line in result.stderr if line.startswith(KILL_JOB_ERROR_PREFIX)
    }
    deleted_job_ids = [
        job_id
        for job_id in (
            line[JOB_ID_START_POSITION:].strip()
            for line in result.stderr
            if line.startswith(START_TERMINATING_JOB_PREFIX)
        )
        if job_id not in error_deleting_jobs
    ]
    if not deleted_job_ids:
        raise JobNotFound(f"No jobs were deleted.\n{execution_details(result)}", exit_code=result.exit_code)
    # array tasks <job>_<task> collapse to their parent job
    parent_ids = dict.fromkeys(_parse_job_id(job_id, job_id) for job_id in deleted_job_ids)
    return [DeletedJobInfo(id=job_id, owner=owner) for job_id in parent_ids]


@dataclass(frozen=True)
class PartitionState:
    """Normalized view of a partition used to detect no-op updates."""
    hosts: list[str]
    user_groups: list[str]
    cpus: int


def _partition_rows(result: CommandResult) -> list[list[str]]:
    return [split_fields(line, SLURM_DELIMITER, SINFO_OUTPUT_SIZE) for line in non_blank(result.stdout)]


def _split_groups(value: str) -> list[str]:
    return [group.strip() for group in value.split(",") if group.strip()]


def parse_partition_names(result: CommandResult) -> list[Queue]:
    names: dict[str, None] = {}
    for row in _partition_rows(result):
        names.setdefault(row[SINFO_PARTNAME_INDEX].strip(), None)
    return [Queue(name=name) for name in names]


def parse_partitions(result: CommandResult) -> list[Queue]:
    """Group node-oriented sinfo rows into partitions with per-host CPU slots."""
    hosts_by_partition: dict[str, dict[str, int]] = {}
    groups_by_partition: dict[str, dict[str, None]] = {}

    for row in _partition_rows(result):
        partition = row[SINFO_PARTNAME_INDEX].strip()
        cpus = parse_int(row[SINFO_CPUS_INDEX], "CPUS", SLURM_DELIMITER.join(row))
        hosts = hosts_by_partition.setdefault(partition, {})
        for host in decrypt_group_of_nodes(split_hostlist(row[SINFO_NODES_INDEX])):
            hosts[host] = cpus
        groups = groups_by_partition.setdefault(partition, {})
        for group in _split_groups(row[SINFO_USERGROUPS_INDEX]):
            groups.setdefault(group, None)

    return [
        Queue(
            name=partition,
            host_list=tuple(hosts),
            allowed_user_groups=tuple(groups_by_partition[partition]),
            slots=SlotsDescription(total_slots=sum(hosts.values()), per_host_slots=dict(hosts)),
        )
        for partition, hosts in hosts_by_partition.items()
    ]


def parse_partition_state(result: CommandResult) -> PartitionState:
    rows = _partition_rows(result)
    hosts = decrypt_group_of_nodes(
        host for row in rows for host in split_hostlist(row[SINFO_NODES_INDEX])
    )
    groups = sorted({group.upper() for row in rows for group in _split_groups(row[SINFO_USERGROUPS_INDEX])})
    cpus = sum(parse_int(row[SINFO_CPUS_INDEX], "CPUS") for row in rows)
    return PartitionState(hosts=hosts, user_groups=groups, cpus=cpus)


def parse_node_line(line: str) -> Host:
    data = parse_key_values(line)
    require_keys(data, NODE_REQUIRED_KEYS, line)

    physical_memory = parse_int(data[REAL_MEMORY], REAL_MEMORY, line) * MEBIBYTE
    allocated_memory = parse_int(data[ALLOCATED_MEMORY], ALLOCATED_MEMORY, line) * MEBIBYTE
    if allocated_memory > physical_memory:
        raise MalformedOutput(
            f"Node {data[NODE_NAME]} reports more allocated than physical memory",
            line=line,
            expected=f"<= {physical_memory}",
            actual=allocated_memory,
        )

    return Host(
        name=data[NODE_NAME],
        arch=data[ARCHITECTURE],
        cpu_total=parse_int(data[CPU_TOTAL], CPU_TOTAL, line),
        sockets=parse_int(data[SOCKETS], SOCKETS, line),
        cores_per_socket=parse_int(data[CORES_PER_SOCKET], CORES_PER_SOCKET, line),
        threads_per_core=parse_int(data[THREADS_PER_CORE], THREADS_PER_CORE, line),
        physical_memory=physical_memory,
        allocated_memory=allocated_memory,
    )


def parse_nodes(result: CommandResult) -> list[Host]:
    """Parse ``scontrol -o show node``: one node per line of key=value pairs."""
    return [parse_node_line(line) for line in non_blank(result.stdout)]
