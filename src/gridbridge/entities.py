from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional


class EngineKind(str, Enum):
    """Which scheduler family a template or parser set belongs to."""

    SLURM = "slurm"
    SGE = "sge"


class JobStateCategory(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUSPENDED = "SUSPENDED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class JobState:
    category: JobStateCategory
    native: Optional[str] = None   # scheduler-native state, e.g. "COMPLETING" or "qw"


@dataclass(frozen=True)
class Job:
    """A job as reported by a listing or a successful submission."""
    id: int
    state: JobState
    name: Optional[str] = None
    owner: Optional[str] = None
    queue: Optional[str] = None
    priority: Optional[float] = None
    submission_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    slots: int = 0
    nodes: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeletedJobInfo:
    id: int
    owner: Optional[str] = None


@dataclass(frozen=True)
class SlotsDescription:
    """Slot capacity of a queue; the total is the sum of per-host slots when those are known."""
    total_slots: int
    per_host_slots: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if self.per_host_slots and self.total_slots != sum(self.per_host_slots.values()):
            raise ValueError(
                f"total_slots={self.total_slots} does not match per-host sum "
                f"{sum(self.per_host_slots.values())}"
            )


@dataclass(frozen=True)
class Queue:
    name: str
    host_list: tuple[str, ...] = ()
    allowed_user_groups: tuple[str, ...] = ()
    slots: Optional[SlotsDescription] = None


@dataclass(frozen=True)
class Host:
    name: str
    arch: Optional[str] = None
    cpu_total: int = 0
    sockets: int = 0
    cores_per_socket: int = 0
    threads_per_core: int = 0
    physical_memory: Optional[int] = None   # bytes
    allocated_memory: Optional[int] = None  # bytes


class HealthStatus(IntEnum):
    OK = 0
    DOWN = 2


# Code reported when the scheduler status text is outside the known vocabulary.
# Outside HealthStatus; classify_status rejects it.
NOT_PROVIDED = 99999


@dataclass(frozen=True)
class HealthCheckInfo:
    code: int
    status: HealthStatus
    info: str
    check_time: datetime
    start_time: Optional[datetime] = None


# Request objects. Providers validate them before anything is compiled.

@dataclass
class JobFilter:
    ids: list[int] = field(default_factory=list)
    users: list[str] = field(default_factory=list)
    states: list[str] = field(default_factory=list)
    names: list[str] = field(default_factory=list)


@dataclass
class ParallelExecutionOptions:
    num_tasks: Optional[int] = None
    nodes: Optional[int] = None
    cpus_per_task: Optional[int] = None
    num_tasks_per_node: Optional[int] = None
    exclusive: bool = False


@dataclass
class JobOptions:
    command: str
    arguments: list[str] = field(default_factory=list)
    can_be_binary: bool = False
    name: Optional[str] = None
    queue: Optional[str] = None
    priority: Optional[int] = None
    working_dir: Optional[str] = None
    env_variables: dict[str, str] = field(default_factory=dict)
    parallel_exec_options: Optional[ParallelExecutionOptions] = None
    parallel_env: Optional[str] = None


@dataclass
class DeleteJobFilter:
    id: Optional[int] = None
    user: Optional[str] = None
    force: bool = False


@dataclass
class QueueVO:
    name: Optional[str] = None
    host_list: Optional[list[str]] = None
    allowed_user_groups: Optional[list[str]] = None
    owner_list: Optional[list[str]] = None
    parallel_environment_names: Optional[list[str]] = None


@dataclass
class QueueFilter:
    queues: Optional[list[str]] = None


@dataclass
class HostFilter:
    hosts: list[str] = field(default_factory=list)
