from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

import yaml

from ..entities import EngineKind
from ..errors import ConfigurationError
from ..logging_setup import get_logger


logger = get_logger(__name__)

TemplateKey = tuple[EngineKind, str]


def _parse_template_document(text: str, source: str) -> dict[str, str]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse command templates from {source}: {exc}", source=source)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Command templates in {source} must be a mapping", source=source)

    templates: dict[str, str] = {}
    for operation, template in data.items():
        if not isinstance(template, str):
            raise ConfigurationError(
                f"Template '{operation}' in {source} must be a string",
                source=source,
                operation=operation,
            )
        templates[str(operation)] = template
    return templates


def _packaged_templates(engine: EngineKind) -> dict[str, str]:
    asset = resources.files("gridbridge.cmd").joinpath("templates", f"{engine.value}.yaml")
    if not asset.is_file():
        return {}
    return _parse_template_document(asset.read_text(encoding="utf-8"), f"package:{engine.value}.yaml")


class CommandTemplateStore:
    """Read-only lookup of command templates by (engine kind, operation name)."""

    def __init__(self, templates: Mapping[TemplateKey, str]):
        self._templates = MappingProxyType(dict(templates))

    @classmethod
    def load(cls, override_dir: Optional[Union[str, Path]] = None) -> "CommandTemplateStore":
        """Load the packaged templates, letting ``<override_dir>/<engine>.yaml`` replace single entries."""
        templates: dict[TemplateKey, str] = {}
        for engine in EngineKind:
            for operation, template in _packaged_templates(engine).items():
                templates[(engine, operation)] = template

            if override_dir is None:
                continue
            path = Path(override_dir) / f"{engine.value}.yaml"
            if not path.is_file():
                continue
            overrides = _parse_template_document(path.read_text(encoding="utf-8"), str(path))
            logger.info(f"Loaded {len(overrides)} template overrides for {engine.value} from {path}")
            for operation, template in overrides.items():
                templates[(engine, operation)] = template

        return cls(templates)

    def get(self, engine: EngineKind, operation: str) -> str:
        try:
            return self._templates[(engine, operation)]
        except KeyError:
            raise ConfigurationError(
                f"No command template registered for {engine.value}/{operation}",
                engine=engine.value,
                operation=operation,
            ) from None

    def operations(self, engine: EngineKind) -> list[str]:
        return sorted(op for kind, op in self._templates if kind == engine)

    def __contains__(self, key: object) -> bool:
        return key in self._templates
