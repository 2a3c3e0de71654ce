import os
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from ..errors import ProcessStartFailure, ProcessTimeout
from ..logging_setup import get_logger
from ..metrics import PipelineMetrics


logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit code and captured output lines of one finished command."""
    exit_code: int
    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()

    @classmethod
    def of(cls, exit_code: int, stdout: Sequence[str] = (), stderr: Sequence[str] = ()) -> "CommandResult":
        return cls(exit_code=exit_code, stdout=tuple(stdout), stderr=tuple(stderr))


def _lines(text: Optional[str]) -> tuple[str, ...]:
    return tuple(text.splitlines()) if text else ()


class ProcessExecutor:
    """Runs argument vectors directly, without a shell, and captures their output.

    A non-zero exit code is a normal result; only failing to start the
    process (or an expired watchdog timeout) raises.
    """

    def __init__(self, timeout: Optional[float] = None, metrics: Optional[PipelineMetrics] = None):
        self.timeout = timeout
        self.metrics = metrics

    def execute(self, argv: Sequence[str]) -> CommandResult:
        if not argv:
            raise ProcessStartFailure("Cannot execute an empty argument vector")

        cmd = list(argv)
        command_name = os.path.basename(cmd[0])
        logger.debug(f"Running command: {' '.join(cmd)}", command=command_name)

        started = time.monotonic()
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            self._record(command_name, "timeout", started)
            logger.error(f"Command timed out after {self.timeout}s: {' '.join(cmd)}", command=command_name)
            raise ProcessTimeout(f"{command_name} timed out after {self.timeout}s", argv=cmd)
        except OSError as exc:
            self._record(command_name, "start_failure", started)
            logger.error(f"Command failed to start: {exc}", command=command_name)
            raise ProcessStartFailure(f"Failed to start {command_name}: {exc}", argv=cmd) from exc

        result = CommandResult(
            exit_code=completed.returncode,
            stdout=_lines(completed.stdout),
            stderr=_lines(completed.stderr),
        )
        self._record(command_name, "ok" if result.exit_code == 0 else "nonzero", started)
        logger.debug(
            f"Command {command_name} finished with exit code {result.exit_code}",
            command=command_name,
            exit_code=result.exit_code,
        )
        return result

    def _record(self, command_name: str, status: str, started: float) -> None:
        if self.metrics is not None:
            self.metrics.record_command(command_name, status, time.monotonic() - started)
