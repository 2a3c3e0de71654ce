#!/usr/bin/env python3

import dataclasses
import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Optional

import typer
from pydantic import ValidationError

from .cmd.compiler import CommandCompiler
from .cmd.templates import CommandTemplateStore
from .config import Config, load_config
from .entities import DeleteJobFilter, EngineKind, HostFilter, JobFilter, JobOptions, QueueFilter
from .errors import GridEngineError
from .logging_setup import get_logger, setup_logging
from .metrics import PipelineMetrics, start_metrics_server
from .providers import Pipeline, Providers, make_providers


app = typer.Typer(
    name="gridbridge",
    help="Uniform job, queue, host and health operations over SLURM and SGE",
    no_args_is_help=True
)
jobs_app = typer.Typer(help="List, submit and delete jobs", no_args_is_help=True)
queues_app = typer.Typer(help="Inspect queues and partitions", no_args_is_help=True)
hosts_app = typer.Typer(help="Inspect execution hosts", no_args_is_help=True)
app.add_typer(jobs_app, name="jobs")
app.add_typer(queues_app, name="queues")
app.add_typer(hosts_app, name="hosts")


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


def _print(data: Any) -> None:
    print(json.dumps(_jsonable(data), indent=2, default=str))


def _load(config: str) -> Config:
    logger = get_logger(__name__)
    try:
        return load_config(Path(config))
    except FileNotFoundError:
        setup_logging("WARNING")
        logger.error(f"Configuration file not found: {config}")
        raise typer.Exit(1)
    except (ValidationError, GridEngineError) as e:
        setup_logging("WARNING")
        logger.error(f"Configuration is invalid: {e}")
        raise typer.Exit(1)


def _providers(cfg: Config) -> Providers:
    setup_logging(cfg.logging.level)
    metrics = None
    if cfg.metrics.enabled:
        metrics = PipelineMetrics()
        start_metrics_server(metrics, cfg.metrics.bind, cfg.metrics.port)
    pipeline = Pipeline.from_config(cfg, metrics)
    return make_providers(cfg.engine, pipeline, cfg)


def _execute(config: str, action: Callable[[Providers], Any]) -> None:
    """Run one provider call, print its result as JSON, exit 1 on scheduler errors."""
    cfg = _load(config)
    logger = get_logger(__name__).bind(engine=cfg.engine.value)
    try:
        result = action(_providers(cfg))
    except GridEngineError as e:
        logger.error(
            f"{type(e).__name__}: {e.message}",
            event=e.kind.value,
            details=e.details,
        )
        raise typer.Exit(1)
    _print(result)


def _to_namespace(value: Any) -> Any:
    if isinstance(value, dict):
        return SimpleNamespace(**{k: _to_namespace(v) for k, v in value.items()})
    return value


def _parse_params(params: list[str]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into a template context; dotted keys build nested objects."""
    context: dict[str, Any] = {}
    for param in params:
        key, sep, value = param.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {param!r}")
        *parents, leaf = key.split(".")
        target = context
        for parent in parents:
            target = target.setdefault(parent, {})
            if not isinstance(target, dict):
                raise typer.BadParameter(f"{parent} is both a value and an object in {param!r}")
        target[leaf] = value
    return {k: _to_namespace(v) for k, v in context.items()}


def _key_values(pairs: list[str]) -> dict[str, str]:
    result = {}
    for pair in pairs:
        key, _, value = pair.partition("=")
        result[key] = value
    return result


@app.command()
def validate(config: str = typer.Option(..., "--config", "-c", help="Path to configuration file")):
    """Validate configuration file and command templates."""
    cfg = _load(config)
    setup_logging("WARNING")

    try:
        store = CommandTemplateStore.load(cfg.templates_dir)
    except GridEngineError as e:
        print(f"✗ Templates are invalid: {e}")
        raise typer.Exit(1)

    print(f"✓ Configuration is valid")
    print(f"✓ Engine: {cfg.engine.value}")
    print(f"✓ Log directory: {cfg.log_dir}")
    for operation in store.operations(cfg.engine):
        print(f"  - {operation}")


@app.command("compile")
def compile_command(
    operation: str = typer.Argument(..., help="Template operation name, e.g. squeue or qsub"),
    config: str = typer.Option(..., "--config", "-c", help="Path to configuration file"),
    param: list[str] = typer.Option(
        [],
        "--param",
        "-p",
        help="Template value as key=value; dotted keys such as options.name are nested"
    ),
    engine: Optional[EngineKind] = typer.Option(
        None,
        "--engine",
        "-e",
        help="Override the engine from the configuration"
    )
):
    """Print the argument vector an operation compiles to, without running it."""
    cfg = _load(config)
    setup_logging(cfg.logging.level)
    logger = get_logger(__name__)

    context = _parse_params(param)
    context.setdefault("log_dir", cfg.log_dir)
    try:
        compiler = CommandCompiler(CommandTemplateStore.load(cfg.templates_dir))
        argv = compiler.compile(engine or cfg.engine, operation, context)
    except GridEngineError as e:
        logger.error(f"{type(e).__name__}: {e.message}", event=e.kind.value)
        raise typer.Exit(1)
    _print(argv)


@jobs_app.command("list")
def jobs_list(
    config: str = typer.Option(..., "--config", "-c", help="Path to configuration file"),
    ids: list[int] = typer.Option([], "--id", help="Job id (repeatable)"),
    users: list[str] = typer.Option([], "--user", "-u", help="Job owner (repeatable)"),
    states: list[str] = typer.Option([], "--state", "-s", help="Job state (repeatable)"),
    names: list[str] = typer.Option([], "--name", "-n", help="Job name (repeatable)")
):
    """List jobs."""
    job_filter = JobFilter(ids=list(ids), users=list(users), states=list(states), names=list(names))
    _execute(config, lambda p: p.jobs.list_jobs(job_filter))


@jobs_app.command("submit")
def jobs_submit(
    command: str = typer.Argument(..., help="Script or binary to run"),
    arguments: Optional[list[str]] = typer.Argument(None, help="Arguments passed to the command"),
    config: str = typer.Option(..., "--config", "-c", help="Path to configuration file"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Job name"),
    queue: Optional[str] = typer.Option(None, "--queue", "-q", help="Queue or partition"),
    priority: Optional[int] = typer.Option(None, "--priority", help="Job priority"),
    working_dir: Optional[str] = typer.Option(None, "--working-dir", "-w", help="Working directory"),
    binary: bool = typer.Option(False, "--binary", "-b", help="Run the command as a binary instead of a script"),
    env: list[str] = typer.Option([], "--env", help="Environment variable as NAME=VALUE (repeatable)")
):
    """Submit a job."""
    options = JobOptions(
        command=command,
        arguments=list(arguments or []),
        can_be_binary=binary,
        name=name,
        queue=queue,
        priority=priority,
        working_dir=working_dir,
        env_variables=_key_values(env),
    )
    _execute(config, lambda p: p.jobs.submit(options))


@jobs_app.command("delete")
def jobs_delete(
    config: str = typer.Option(..., "--config", "-c", help="Path to configuration file"),
    job_id: Optional[int] = typer.Option(None, "--id", help="Job id"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Delete all jobs of this user"),
    force: bool = typer.Option(False, "--force", "-f", help="Force deletion (SGE)")
):
    """Delete jobs by id or owner."""
    delete_filter = DeleteJobFilter(id=job_id, user=user, force=force)
    _execute(config, lambda p: p.jobs.delete(delete_filter))


@queues_app.command("list")
def queues_list(
    config: str = typer.Option(..., "--config", "-c", help="Path to configuration file"),
    queues: list[str] = typer.Option([], "--queue", "-q", help="Queue name (repeatable)"),
    details: bool = typer.Option(False, "--details", "-d", help="Include hosts, user groups and slots")
):
    """List queues; names only unless queues are named or --details is given."""
    queue_filter = QueueFilter(queues=list(queues) or None) if queues or details else None
    _execute(config, lambda p: p.queues.list(queue_filter))


@hosts_app.command("list")
def hosts_list(
    config: str = typer.Option(..., "--config", "-c", help="Path to configuration file"),
    hosts: list[str] = typer.Option([], "--host", "-h", help="Host name (repeatable)")
):
    """List execution hosts."""
    host_filter = HostFilter(hosts=list(hosts))
    _execute(config, lambda p: p.hosts.list_hosts(host_filter))


@app.command()
def health(config: str = typer.Option(..., "--config", "-c", help="Path to configuration file")):
    """Check whether the scheduler master is up."""
    _execute(config, lambda p: p.health.check_health())


if __name__ == "__main__":
    app()
