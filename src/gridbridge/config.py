from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .entities import EngineKind
from .errors import ConfigurationError


class MetricsConfig(BaseModel):
    enabled: bool = False
    bind: str = "0.0.0.0"
    port: int = 9316


class LoggingConfig(BaseModel):
    level: str = "INFO"

    @field_validator("level")
    def normalize_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


class ExecutorConfig(BaseModel):
    # None waits for the scheduler command indefinitely
    timeout_s: Optional[float] = None

    @field_validator("timeout_s")
    def positive_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("executor.timeout_s must be positive")
        return v


class SGEConfig(BaseModel):
    qmaster_host: str = "localhost"
    qmaster_port: int = 6444


class Config(BaseModel):
    engine: EngineKind
    templates_dir: Optional[str] = None
    shared_folder: str = "/data"
    log_dir: str = "logs"
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    sge: SGEConfig = Field(default_factory=SGEConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def resolve_log_dir(self) -> "Config":
        shared = Path(self.shared_folder)
        log_dir = Path(self.log_dir)
        if log_dir.is_absolute():
            if shared != log_dir and shared not in log_dir.parents:
                raise ValueError(f"log_dir {log_dir} must be inside shared_folder {shared}")
        else:
            log_dir = shared / log_dir
        self.log_dir = str(log_dir)
        return self


def expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR} patterns in configuration data."""
    if isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            return os.environ.get(var_name, data)
        return data
    elif isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    return data


def load_config(config_path: str | Path) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open() as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML config {config_path}: {e}", source=str(config_path))

    if not isinstance(raw_data, dict):
        raise ConfigurationError(f"Configuration in {config_path} must be a mapping", source=str(config_path))

    return Config(**expand_env_vars(raw_data))
