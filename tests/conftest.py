import logging
import subprocess
import textwrap
import types
from typing import Callable, Dict, Optional

import pytest

from gridbridge.cmd.executor import CommandResult
from gridbridge.cmd.templates import CommandTemplateStore
from gridbridge.config import Config
from gridbridge.entities import EngineKind
from gridbridge.providers import Pipeline, make_providers


def _lines(text: str) -> list[str]:
    return textwrap.dedent(text).strip("\n").splitlines() if text else []


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging() replaces root handlers; put the test runner's back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def env(monkeypatch):
    """Helper to set/clear environment variables."""
    def _setter(mapping: Optional[Dict[str, str]] = None, clear: Optional[list[str]] = None):
        if mapping:
            for k, v in mapping.items():
                monkeypatch.setenv(k, v)
        if clear:
            for k in clear:
                monkeypatch.delenv(k, raising=False)
    return _setter


@pytest.fixture()
def make_result():
    """Build a CommandResult from dedented multi-line text."""
    def _make(stdout: str = "", stderr: str = "", exit_code: int = 0) -> CommandResult:
        return CommandResult.of(exit_code, _lines(stdout), _lines(stderr))
    return _make


def completed(stdout: str = "", stderr: str = "", returncode: int = 0):
    def _script(cmd):
        out = textwrap.dedent(stdout).strip("\n") + "\n" if stdout else ""
        err = textwrap.dedent(stderr).strip("\n") + "\n" if stderr else ""
        return subprocess.CompletedProcess(cmd, returncode, stdout=out, stderr=err)
    return _script


@pytest.fixture()
def fake_subprocess_run(monkeypatch):
    """Patch subprocess.run to return scripted outputs based on argv[0]; calls are recorded."""
    scripts: Dict[str, Callable[[list[str]], subprocess.CompletedProcess]] = {}
    calls: list[list[str]] = []

    def register(cmd0: str, func=None, **output):
        scripts[cmd0] = func or completed(**output)

    def _run(cmd, capture_output=True, text=True, timeout=None, **kwargs):
        assert not kwargs.get("shell"), "commands must never go through a shell"
        calls.append(list(cmd))
        key = cmd[0] if cmd else ""
        if key in scripts:
            return scripts[key](cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(subprocess, "run", _run)
    return types.SimpleNamespace(register=register, calls=calls)


@pytest.fixture(scope="session")
def store():
    return CommandTemplateStore.load()


@pytest.fixture()
def pipeline(store):
    return Pipeline(store)


@pytest.fixture()
def slurm_config(tmp_path):
    return Config(engine="slurm", shared_folder=str(tmp_path), log_dir="logs")


@pytest.fixture()
def sge_config(tmp_path):
    return Config(engine="sge", shared_folder=str(tmp_path), log_dir="logs")


@pytest.fixture()
def slurm(pipeline, slurm_config):
    return make_providers(EngineKind.SLURM, pipeline, slurm_config)


@pytest.fixture()
def sge(pipeline, sge_config):
    return make_providers(EngineKind.SGE, pipeline, sge_config)
