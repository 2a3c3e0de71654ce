from dataclasses import replace
from typing import Optional

from ..cmd.args import SPACE, binary_command, env_variables_to_string, escape_quotes
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
    SlotsDescription,
)
from ..errors import CommandFamily, InvalidRequest, UnsupportedOperation, merge_output_lines, raise_if_unavailable
from ..parse.common import decrypt_group_of_nodes, non_blank
from ..slurm.healthcheck import parse_show_config
from ..slurm.parse import (
    parse_deleted_jobs,
    parse_jobs,
    parse_nodes,
    parse_partition_names,
    parse_partition_state,
    parse_partitions,
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


MIN_PRIORITY = 0
MAX_PRIORITY = 4_294_967_294
EXPORT_ALL = "ALL"

SCONTROL_CREATE = "create"
SCONTROL_UPDATE = "update"
SCONTROL_DELETE = "delete"


class SlurmJobProvider(JobProvider):
    engine = EngineKind.SLURM

    def list_jobs(self, job_filter: Optional[JobFilter] = None) -> list[Job]:
        job_filter = job_filter or JobFilter()
        # squeue rejects the whole request for a single malformed id
        job_filter = replace(job_filter, ids=[job_id for job_id in job_filter.ids if job_id > 0])
        result = self.run("squeue", {"filter": job_filter})
        if result.exit_code != 0:
            raise_if_unavailable(merge_output_lines(result.stderr), family=CommandFamily.LIST)
        return self.pipeline.parse(parse_jobs, result)

    def submit(self, options: JobOptions) -> Job:
        validate_job_options(options, MIN_PRIORITY, MAX_PRIORITY)
        if options.parallel_env:
            raise UnsupportedOperation("Parallel environment variables are not supported yet!")

        env = env_variables_to_string(options.env_variables)
        context = {
            "options": options,
            "log_dir": self.config.log_dir,
            "export": f"{EXPORT_ALL},{env}" if env else EXPORT_ALL,
        }
        wrap = []
        if options.can_be_binary:
            # one argv element: sbatch passes it to /bin/sh as a command line
            wrap.append(f"--wrap={binary_command(options.command, options.arguments)}")
        else:
            context["script"] = options.command
            context["arguments"] = SPACE.join(escape_quotes(options.arguments))

        result = self.run("sbatch", context, extra_args=wrap)
        self.ensure_success(result, "sbatch", family=CommandFamily.SUBMIT)
        job_id = self.pipeline.parse(parse_submitted_job_id, result)
        self.logger.info(f"Job submitted: {job_id}", job_id=job_id, operation="sbatch")
        return Job(id=job_id, state=JobState(category=JobStateCategory.PENDING), name=options.name)

    def delete(self, delete_filter: DeleteJobFilter) -> list[DeletedJobInfo]:
        validate_delete_filter(delete_filter)
        owner = self.resolve_owner(delete_filter)
        result = self.run("scancel", {"filter": delete_filter})
        self.ensure_deleted(result, "scancel")
        deleted = self.pipeline.parse(parse_deleted_jobs, result, owner)
        self.logger.info(f"Deleted {len(deleted)} job(s) of {owner}", operation="scancel")
        return deleted


def _check_partition_request(request: QueueVO) -> None:
    if not request.name:
        raise UnsupportedOperation("Partition name option is obligatory")
    if request.parallel_environment_names is not None:
        raise UnsupportedOperation("Parallel environment variables cannot be used in Slurm!")
    if request.owner_list is not None:
        raise UnsupportedOperation("Owners cannot be set for partitions in slurm")


class SlurmQueueProvider(QueueProvider):
    engine = EngineKind.SLURM

    def register(self, request: QueueVO) -> Queue:
        _check_partition_request(request)
        result = self.run("scontrol_partition", {
            "command": SCONTROL_CREATE,
            "partition_name": request.name,
            "allowed_user_groups": request.allowed_user_groups,
            "host_list": request.host_list,
        })
        self.ensure_success(result, "scontrol create", family=CommandFamily.QUEUE, allow_stderr=False)
        return Queue(
            name=request.name,
            host_list=tuple(request.host_list or ()),
            allowed_user_groups=tuple(request.allowed_user_groups or ()),
        )

    def update(self, request: QueueVO) -> Queue:
        _check_partition_request(request)
        if request.host_list is None or request.allowed_user_groups is None:
            raise UnsupportedOperation(
                "Name, hostList and allowedUserGroups should be specified for successful partition update"
            )

        result = self.run("sinfo", {"partition_name": request.name})
        if result.exit_code != 0 or non_blank(result.stderr) or not non_blank(result.stdout):
            raise InvalidRequest(
                f"Failed to fetch partition data. Check partition name. exitCode = {result.exit_code}",
                exit_code=result.exit_code,
            )
        current = self.pipeline.parse(parse_partition_state, result)

        hosts = decrypt_group_of_nodes(request.host_list)
        groups = sorted(group.upper() for group in request.allowed_user_groups)
        if hosts == current.hosts and groups == current.user_groups:
            raise InvalidRequest("New partition properties and the current one are equal")

        result = self.run("scontrol_partition", {
            "command": SCONTROL_UPDATE,
            "partition_name": request.name,
            "allowed_user_groups": request.allowed_user_groups,
            "host_list": hosts,
        })
        self.ensure_success(result, "scontrol update", family=CommandFamily.QUEUE, allow_stderr=False)
        return Queue(
            name=request.name,
            host_list=tuple(hosts),
            allowed_user_groups=tuple(sorted(request.allowed_user_groups)),
            slots=SlotsDescription(total_slots=current.cpus),
        )

    def list(self, queue_filter: Optional[QueueFilter] = None) -> list[Queue]:
        context = {}
        if queue_filter is not None and queue_filter.queues is not None:
            context["partition_name"] = queue_filter.queues
        result = self.run("sinfo", context)
        self.ensure_success(result, "sinfo", family=CommandFamily.QUEUE, allow_stderr=False)
        if not result.stdout:
            return []
        if queue_filter is None:
            return self.pipeline.parse(parse_partition_names, result)
        return self.pipeline.parse(parse_partitions, result)

    def delete(self, name: str) -> Queue:
        if not name:
            raise UnsupportedOperation("Partition name for deletion should be specified")
        result = self.run("scontrol_partition", {"command": SCONTROL_DELETE, "partition_name": name})
        self.ensure_success(result, "scontrol delete", family=CommandFamily.QUEUE, allow_stderr=False)
        return Queue(name=name)


class SlurmHostProvider(HostProvider):
    engine = EngineKind.SLURM

    def list_hosts(self, host_filter: Optional[HostFilter] = None) -> list[Host]:
        hosts = host_filter.hosts if host_filter is not None else []
        result = self.run("scontrol_show_node", {"hosts": hosts})
        self.ensure_success(result, "scontrol show node", family=CommandFamily.HOST)
        return self.pipeline.parse(parse_nodes, result)


class SlurmHealthCheckProvider(HealthCheckProvider):
    engine = EngineKind.SLURM

    def check_health(self) -> HealthCheckInfo:
        result = self.run("show_config")
        return self.pipeline.parse(parse_show_config, result)
