from typing import Optional

from ..cmd.args import SPACE, env_variables_to_string, escape_quotes
from ..entities import (
    DeletedJobInfo,
    DeleteJobFilter,
    EngineKind,
    HealthCheckInfo,
    Host,
    HostFilter,
    Job,
    JobFilter,
    JobOptions,
    JobState,
    JobStateCategory,
    Queue,
    QueueFilter,
    QueueVO,
)
from ..errors import CommandFamily, UnsupportedOperation
from ..sge.parse import (
    parse_deleted_jobs,
    parse_health,
    parse_hosts,
    parse_jobs,
    parse_queue,
    parse_queue_names,
    parse_submitted_job_id,
)
from .base import (
    HealthCheckProvider,
    HostProvider,
    JobProvider,
    QueueProvider,
    validate_delete_filter,
    validate_job_options,
)


MIN_PRIORITY = -1023
MAX_PRIORITY = 1024
ALL_USERS = "*"


def _matches(job: Job, job_filter: JobFilter) -> bool:
    """qstat only filters by user; ids, names and states are matched here."""
    if job_filter.ids and job.id not in job_filter.ids:
        return False
    if job_filter.names and job.name not in job_filter.names:
        return False
    if job_filter.states:
        wanted = {state.upper() for state in job_filter.states}
        native = (job.state.native or "").upper()
        if job.state.category.value not in wanted and native not in wanted:
            return False
    return True


class SgeJobProvider(JobProvider):
    engine = EngineKind.SGE

    def list_jobs(self, job_filter: Optional[JobFilter] = None) -> list[Job]:
        job_filter = job_filter or JobFilter()
        result = self.run("qstat", {"users": job_filter.users or [ALL_USERS]})
        self.ensure_success(result, "qstat", family=CommandFamily.LIST)
        return [job for job in self.pipeline.parse(parse_jobs, result) if _matches(job, job_filter)]

    def submit(self, options: JobOptions) -> Job:
        validate_job_options(options, MIN_PRIORITY, MAX_PRIORITY)
        if options.parallel_exec_options is not None:
            raise UnsupportedOperation("Parallel execution options are not supported by SGE, use parallel_env")

        result = self.run("qsub", {
            "options": options,
            "log_dir": self.config.log_dir,
            "env_variables": env_variables_to_string(options.env_variables),
            "arguments": SPACE.join(escape_quotes(options.arguments)),
        })
        self.ensure_success(result, "qsub", family=CommandFamily.SUBMIT)
        job_id = self.pipeline.parse(parse_submitted_job_id, result)
        self.logger.info(f"Job submitted: {job_id}", job_id=job_id, operation="qsub")
        return Job(id=job_id, state=JobState(category=JobStateCategory.PENDING, native="qw"), name=options.name)

    def delete(self, delete_filter: DeleteJobFilter) -> list[DeletedJobInfo]:
        validate_delete_filter(delete_filter)
        owner = self.resolve_owner(delete_filter)
        result = self.run("qdel", {"filter": delete_filter})
        self.ensure_deleted(result, "qdel")
        return self.pipeline.parse(parse_deleted_jobs, result, owner)


class SgeQueueProvider(QueueProvider):
    engine = EngineKind.SGE

    def register(self, request: QueueVO) -> Queue:
        raise UnsupportedOperation("Queue registration is not supported for SGE")

    def update(self, request: QueueVO) -> Queue:
        raise UnsupportedOperation("Queue update is not supported for SGE")

    def delete(self, name: str) -> Queue:
        raise UnsupportedOperation("Queue deletion is not supported for SGE")

    def list(self, queue_filter: Optional[QueueFilter] = None) -> list[Queue]:
        result = self.run("qconf_queue_names")
        self.ensure_success(result, "qconf -sql", family=CommandFamily.QUEUE)
        names = self.pipeline.parse(parse_queue_names, result)
        if queue_filter is None:
            return [Queue(name=name) for name in names]
        if queue_filter.queues is not None:
            names = [name for name in names if name in queue_filter.queues]
        return [self._describe(name) for name in names]

    def _describe(self, name: str) -> Queue:
        result = self.run("qconf_queue", {"queue_name": name})
        self.ensure_success(result, "qconf -sq", family=CommandFamily.QUEUE)
        return self.pipeline.parse(parse_queue, result)


class SgeHostProvider(HostProvider):
    engine = EngineKind.SGE

    def list_hosts(self, host_filter: Optional[HostFilter] = None) -> list[Host]:
        hosts = host_filter.hosts if host_filter is not None else []
        result = self.run("qhost", {"hosts": hosts})
        self.ensure_success(result, "qhost", family=CommandFamily.HOST)
        return self.pipeline.parse(parse_hosts, result)


class SgeHealthCheckProvider(HealthCheckProvider):
    engine = EngineKind.SGE

    def check_health(self) -> HealthCheckInfo:
        result = self.run("qping", {
            "qmaster_host": self.config.sge.qmaster_host,
            "qmaster_port": self.config.sge.qmaster_port,
        })
        return self.pipeline.parse(parse_health, result)
