import pytest

from gridbridge.cmd.compiler import CommandCompiler
from gridbridge.cmd.templates import CommandTemplateStore
from gridbridge.entities import (
    DeleteJobFilter,
    EngineKind,
    JobFilter,
    JobOptions,
    ParallelExecutionOptions,
)
from gridbridge.errors import ConfigurationError, ErrorKind


def _compiler(**templates):
    return CommandCompiler(CommandTemplateStore({(EngineKind.SLURM, op): t for op, t in templates.items()}))


def test_prefix_only_rendered_when_value_present():
    c = _compiler(op="cmd {queue:--partition=}")
    assert c.compile(EngineKind.SLURM, "op", {"queue": "normal"}) == ["cmd", "--partition=normal"]
    assert c.compile(EngineKind.SLURM, "op", {"queue": None}) == ["cmd"]
    assert c.compile(EngineKind.SLURM, "op", {"queue": "  "}) == ["cmd"]
    assert c.compile(EngineKind.SLURM, "op", {}) == ["cmd"]


def test_zero_is_a_value():
    c = _compiler(op="cmd {priority:--priority=}")
    assert c.compile(EngineKind.SLURM, "op", {"priority": 0}) == ["cmd", "--priority=0"]


def test_collections_are_comma_joined():
    c = _compiler(op="cmd {ids:--jobs=} {groups:AllowGroups=}")
    argv = c.compile(EngineKind.SLURM, "op", {"ids": [3, 1], "groups": {"b", "a"}})
    assert argv == ["cmd", "--jobs=3,1", "AllowGroups=a,b"]
    assert c.compile(EngineKind.SLURM, "op", {"ids": [], "groups": set()}) == ["cmd"]


def test_booleans_emit_their_spec_when_true():
    c = _compiler(op="qdel {force:-f} {id}")
    assert c.compile(EngineKind.SLURM, "op", {"force": True, "id": 5}) == ["qdel", "-f", "5"]
    assert c.compile(EngineKind.SLURM, "op", {"force": False, "id": 5}) == ["qdel", "5"]


def test_pattern_spec_substitutes_value():
    c = _compiler(op='sbatch {cmd:--wrap="%s"}')
    assert c.compile(EngineKind.SLURM, "op", {"cmd": "echo hi"}) == ["sbatch", '--wrap="echo hi"']


def test_missing_attributes_render_empty():
    c = _compiler(op="sbatch {options.name:--job-name=} {options.parallel_exec_options.nodes:--nodes=} x")
    assert c.compile(EngineKind.SLURM, "op", {"options": JobOptions(command="x")}) == ["sbatch", "x"]
    options = JobOptions(command="x", name="n", parallel_exec_options=ParallelExecutionOptions(nodes=2))
    assert c.compile(EngineKind.SLURM, "op", {"options": options}) == ["sbatch", "--job-name=n", "--nodes=2", "x"]


def test_enums_render_their_value():
    c = _compiler(op="cmd {engine}")
    assert c.compile(EngineKind.SLURM, "op", {"engine": EngineKind.SGE}) == ["cmd", "sge"]


def test_unknown_operation_is_a_configuration_error():
    with pytest.raises(ConfigurationError) as exc:
        _compiler().compile(EngineKind.SLURM, "missing", {})
    assert exc.value.kind is ErrorKind.CONFIGURATION
    assert exc.value.details == {"engine": "slurm", "operation": "missing"}


def test_broken_template_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        _compiler(op="cmd {unclosed").compile(EngineKind.SLURM, "op", {})


def test_packaged_squeue_template(store):
    argv = CommandCompiler(store).compile(EngineKind.SLURM, "squeue", {"filter": JobFilter(ids=[5, 6], users=["alice"])})
    assert argv == ["squeue", "--format=%i|%P|%j|%u|%T|%V|%S|%C|%Q|%N", "--jobs=5,6", "--user=alice"]


def test_packaged_sbatch_template(store):
    options = JobOptions(command="/data/test.py", name="someTaskName", queue="someQueue", working_dir="/data")
    context = {"options": options, "log_dir": "/data/logs", "export": "ALL,A=1", "script": options.command}
    argv = CommandCompiler(store).compile(EngineKind.SLURM, "sbatch", context)
    assert argv == [
        "sbatch",
        "--export=ALL,A=1",
        "--job-name=someTaskName",
        "--partition=someQueue",
        "--chdir=/data",
        "--output=/data/logs/%j.out",
        "--error=/data/logs/%j.err",
        "/data/test.py",
    ]


def test_packaged_qdel_template(store):
    argv = CommandCompiler(store).compile(EngineKind.SGE, "qdel", {"filter": DeleteJobFilter(id=7, force=True)})
    assert argv == ["qdel", "-f", "7"]


def test_packaged_qsub_binary_template(store):
    options = JobOptions(command="hostname", can_be_binary=True, name="h")
    context = {"options": options, "log_dir": "/data/logs", "env_variables": "A=1,B"}
    argv = CommandCompiler(store).compile(EngineKind.SGE, "qsub", context)
    assert argv == [
        "qsub", "-N", "h", "-v", "A=1,B",
        "-o", "/data/logs/$JOB_ID.out", "-e", "/data/logs/$JOB_ID.err",
        "-b", "y", "hostname",
    ]
