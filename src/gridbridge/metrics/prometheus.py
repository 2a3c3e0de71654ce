from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

from ..logging_setup import get_logger


logger = get_logger(__name__)


class PipelineMetrics:
    """Prometheus metrics for command executions and output parsing."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        # Per-instance registry so repeated construction (tests, several pipelines) never collides
        self.registry: CollectorRegistry = registry or CollectorRegistry()

        self.commands_total = Counter(
            'gridbridge_commands_total',
            'Total number of scheduler commands executed',
            ['command', 'status'],
            registry=self.registry
        )

        self.command_duration = Histogram(
            'gridbridge_command_duration_seconds',
            'Wall-clock duration of scheduler commands',
            ['command'],
            registry=self.registry
        )

        self.parse_errors_total = Counter(
            'gridbridge_parse_errors_total',
            'Total number of rejected scheduler outputs',
            ['kind'],
            registry=self.registry
        )

    def record_command(self, command: str, status: str, duration_s: float) -> None:
        self.commands_total.labels(command=command, status=status).inc()
        self.command_duration.labels(command=command).observe(duration_s)

    def record_parse_error(self, kind: str) -> None:
        self.parse_errors_total.labels(kind=kind).inc()


def start_metrics_server(metrics: PipelineMetrics, bind: str, port: int) -> None:
    """Expose the metrics registry over HTTP."""
    start_http_server(port, addr=bind, registry=metrics.registry)
    logger.info(f"Metrics server listening on {bind}:{port}")
