from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence, TypeVar

from ..cmd.compiler import CommandCompiler, CommandContext
from ..cmd.executor import CommandResult, ProcessExecutor
from ..cmd.templates import CommandTemplateStore
from ..config import Config
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
    Queue,
    QueueFilter,
    QueueVO,
)
from ..errors import (
    CommandFamily,
    ErrorKind,
    GridEngineError,
    InvalidRequest,
    JobNotFound,
    NonZeroExit,
    execution_details,
    merge_output_lines,
    raise_if_unavailable,
)
from ..logging_setup import get_logger
from ..metrics import PipelineMetrics
from ..parse.common import non_blank


logger = get_logger(__name__)

T = TypeVar("T")

_PARSE_ERROR_KINDS = (ErrorKind.MALFORMED_OUTPUT, ErrorKind.UNRECOGNIZED_STATUS)


class Pipeline:
    """Compile, execute, parse: the one path every provider call takes."""

    def __init__(
        self,
        store: CommandTemplateStore,
        executor: Optional[ProcessExecutor] = None,
        metrics: Optional[PipelineMetrics] = None,
    ):
        self.store = store
        self.compiler = CommandCompiler(store)
        self.executor = executor or ProcessExecutor(metrics=metrics)
        self.metrics = metrics

    @classmethod
    def from_config(cls, config: Config, metrics: Optional[PipelineMetrics] = None) -> "Pipeline":
        store = CommandTemplateStore.load(config.templates_dir)
        executor = ProcessExecutor(timeout=config.executor.timeout_s, metrics=metrics)
        return cls(store, executor=executor, metrics=metrics)

    def compile(self, engine: EngineKind, operation: str, context: Optional[CommandContext] = None) -> list[str]:
        return self.compiler.compile(engine, operation, context)

    def run(
        self,
        engine: EngineKind,
        operation: str,
        context: Optional[CommandContext] = None,
        extra_args: Sequence[str] = (),
    ) -> CommandResult:
        """Compile and execute; `extra_args` are appended to the argv untokenized."""
        return self.executor.execute([*self.compile(engine, operation, context), *extra_args])

    def parse(self, parser: Callable[..., T], result: CommandResult, *args: Any) -> T:
        """Apply a parser, counting rejected outputs before re-raising."""
        try:
            return parser(result, *args)
        except GridEngineError as e:
            if self.metrics is not None and e.kind in _PARSE_ERROR_KINDS:
                self.metrics.record_parse_error(e.kind.value)
            raise


def validate_job_options(options: JobOptions, min_priority: int, max_priority: int) -> None:
    if not options.command or not options.command.strip():
        raise InvalidRequest("Command should be specified!")
    if options.priority is not None and not min_priority <= options.priority <= max_priority:
        raise InvalidRequest(f"Priority should be between {min_priority} and {max_priority}")


def validate_delete_filter(delete_filter: DeleteJobFilter) -> None:
    has_user = bool(delete_filter.user and delete_filter.user.strip())
    if not has_user and delete_filter.id is None:
        raise InvalidRequest(
            f"Incorrect filling in {delete_filter}. Either `id` or `user` should be specified for job removal!"
        )
    if delete_filter.id is not None and delete_filter.id <= 0:
        raise InvalidRequest(f"Id specified in {delete_filter} for job removal is invalid!")


class Provider:
    """Common state of all providers: the engine they serve and the pipeline they drive."""

    engine: EngineKind

    def __init__(self, pipeline: Pipeline, config: Config):
        self.pipeline = pipeline
        self.config = config
        self.logger = logger.bind(engine=self.engine.value)

    def run(
        self, operation: str, context: Optional[CommandContext] = None, extra_args: Sequence[str] = ()
    ) -> CommandResult:
        self.logger.debug(f"Running {operation}", operation=operation)
        return self.pipeline.run(self.engine, operation, context, extra_args)

    def ensure_success(
        self,
        result: CommandResult,
        operation: str,
        *,
        family: CommandFamily = CommandFamily.UNKNOWN,
        allow_stderr: bool = True,
    ) -> None:
        """Raise NonZeroExit (or SchedulerUnreachable) unless the command succeeded."""
        if result.exit_code == 0 and (allow_stderr or not non_blank(result.stderr)):
            return
        raise_if_unavailable(merge_output_lines(result.stderr) or merge_output_lines(result.stdout), family=family)
        self.logger.error(
            f"{operation} failed",
            operation=operation,
            exit_code=result.exit_code,
            details=merge_output_lines(result.stderr),
        )
        raise NonZeroExit(f"{operation} failed.\n{execution_details(result)}", result, operation=operation)

    def ensure_deleted(self, result: CommandResult, operation: str) -> None:
        """A failed deletion command means nothing matching was found."""
        if result.exit_code == 0:
            return
        raise_if_unavailable(merge_output_lines(result.stderr), family=CommandFamily.DELETE)
        raise JobNotFound(f"{operation} failed.\n{execution_details(result)}", exit_code=result.exit_code)


class JobProvider(Provider, ABC):
    @abstractmethod
    def list_jobs(self, job_filter: Optional[JobFilter] = None) -> list[Job]:
        """List jobs matching the filter."""

    @abstractmethod
    def submit(self, options: JobOptions) -> Job:
        """Submit a job and return it in its initial state."""

    @abstractmethod
    def delete(self, delete_filter: DeleteJobFilter) -> list[DeletedJobInfo]:
        """Delete jobs; only those the scheduler confirmed are returned."""

    def find_job(self, job_id: int) -> Job:
        jobs = [job for job in self.list_jobs(JobFilter(ids=[job_id])) if job.id == job_id]
        if not jobs:
            raise JobNotFound(f"Id specified in {job_id} for job removal not found!", job_id=job_id)
        return jobs[0]

    def resolve_owner(self, delete_filter: DeleteJobFilter) -> str:
        if delete_filter.user and delete_filter.user.strip():
            return delete_filter.user
        return self.find_job(delete_filter.id).owner


class QueueProvider(Provider, ABC):
    @abstractmethod
    def register(self, request: QueueVO) -> Queue:
        ...

    @abstractmethod
    def update(self, request: QueueVO) -> Queue:
        ...

    @abstractmethod
    def list(self, queue_filter: Optional[QueueFilter] = None) -> list[Queue]:
        """Without a filter only queue names are returned; with one, full descriptions."""

    @abstractmethod
    def delete(self, name: str) -> Queue:
        ...


class HostProvider(Provider, ABC):
    @abstractmethod
    def list_hosts(self, host_filter: Optional[HostFilter] = None) -> list[Host]:
        ...


class HealthCheckProvider(Provider, ABC):
    @abstractmethod
    def check_health(self) -> HealthCheckInfo:
        ...
