"""Command compilation and execution: templates in, argument vectors out, results back."""

from .args import binary_command, env_variables_to_string, escape, escape_quotes, enclose_in_quotes, tokenize
from .compiler import CommandCompiler, TemplateFormatter
from .executor import CommandResult, ProcessExecutor
from .templates import CommandTemplateStore

__all__ = [
    "tokenize",
    "escape",
    "escape_quotes",
    "enclose_in_quotes",
    "env_variables_to_string",
    "binary_command",
    "CommandCompiler",
    "TemplateFormatter",
    "CommandResult",
    "ProcessExecutor",
    "CommandTemplateStore",
]
