import string
from enum import Enum
from typing import Any, Mapping, Optional

from ..entities import EngineKind
from ..errors import ConfigurationError
from ..logging_setup import get_logger
from .args import COMMA, tokenize
from .templates import CommandTemplateStore


logger = get_logger(__name__)

CommandContext = Mapping[str, Any]


def _is_blank(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


class TemplateFormatter(string.Formatter):
    """str.format with forgiving lookups and scheduler-friendly rendering.

    Missing names, missing attributes and None render as empty text.
    Collections are joined with the scheduler delimiter. A format spec is a
    prefix written only when the value is set, or a pattern when it holds
    ``%s``; booleans emit their spec when true.
    """

    def __init__(self, delimiter: str = COMMA):
        super().__init__()
        self.delimiter = delimiter

    def get_value(self, key, args, kwargs):
        if isinstance(key, int):
            return super().get_value(key, args, kwargs)
        return kwargs.get(key)

    def get_field(self, field_name, args, kwargs):
        try:
            return super().get_field(field_name, args, kwargs)
        except (AttributeError, KeyError, IndexError, TypeError):
            return None, field_name

    def convert_field(self, value, conversion):
        if value is None:
            return None
        return super().convert_field(value, conversion)

    def format_field(self, value, format_spec):
        if _is_blank(value):
            return ""
        if isinstance(value, bool):
            return format_spec or "true"
        text = self.render_value(value)
        if not format_spec:
            return text
        if "%s" in format_spec:
            return format_spec.replace("%s", text)
        return format_spec + text

    def render_value(self, value: Any) -> str:
        if isinstance(value, Enum):
            return str(value.value)
        if isinstance(value, (set, frozenset)):
            return self.delimiter.join(sorted(self.render_value(item) for item in value))
        if isinstance(value, (list, tuple)):
            return self.delimiter.join(self.render_value(item) for item in value)
        return str(value)


class CommandCompiler:
    """Turns (engine, operation, context) into an argument vector."""

    def __init__(self, store: CommandTemplateStore, delimiter: str = COMMA):
        self.store = store
        self._formatter = TemplateFormatter(delimiter)

    def render(self, engine: EngineKind, operation: str, context: Optional[CommandContext] = None) -> str:
        template = self.store.get(engine, operation)
        try:
            return self._formatter.vformat(template, (), dict(context or {}))
        except (ValueError, IndexError) as exc:
            raise ConfigurationError(
                f"Template {engine.value}/{operation} cannot be rendered: {exc}",
                engine=engine.value,
                operation=operation,
            ) from exc

    def compile(self, engine: EngineKind, operation: str, context: Optional[CommandContext] = None) -> list[str]:
        argv = tokenize(self.render(engine, operation, context))
        logger.debug(
            f"Compiled {engine.value}/{operation}: {' '.join(argv)}",
            engine=engine.value,
            operation=operation,
        )
        return argv
