from dataclasses import dataclass
from typing import Union

from ..config import Config
from ..entities import EngineKind
from ..errors import ConfigurationError
from .base import HealthCheckProvider, HostProvider, JobProvider, Pipeline, QueueProvider
from .sge import SgeHealthCheckProvider, SgeHostProvider, SgeJobProvider, SgeQueueProvider
from .slurm import SlurmHealthCheckProvider, SlurmHostProvider, SlurmJobProvider, SlurmQueueProvider


@dataclass(frozen=True)
class Providers:
    jobs: JobProvider
    queues: QueueProvider
    hosts: HostProvider
    health: HealthCheckProvider


_PROVIDER_CLASSES = {
    EngineKind.SLURM: (SlurmJobProvider, SlurmQueueProvider, SlurmHostProvider, SlurmHealthCheckProvider),
    EngineKind.SGE: (SgeJobProvider, SgeQueueProvider, SgeHostProvider, SgeHealthCheckProvider),
}


def make_providers(engine: Union[EngineKind, str], pipeline: Pipeline, config: Config) -> Providers:
    try:
        classes = _PROVIDER_CLASSES[EngineKind(engine)]
    except (KeyError, ValueError):
        raise ConfigurationError(f"Unsupported engine type: {engine}", engine=str(engine)) from None
    jobs, queues, hosts, health = (cls(pipeline, config) for cls in classes)
    return Providers(jobs=jobs, queues=queues, hosts=hosts, health=health)


__all__ = [
    "HealthCheckProvider",
    "HostProvider",
    "JobProvider",
    "Pipeline",
    "Providers",
    "QueueProvider",
    "make_providers",
]
