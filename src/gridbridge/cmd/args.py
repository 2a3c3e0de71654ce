"""Splitting rendered command text into argument vectors, and the inverse escaping helpers."""

from typing import Iterable, Mapping, Optional, Union, overload


CR = "\r"
LF = "\n"
TAB = "\t"
SPACE = " "
QUOTE = '"'
BACKSLASH = "\\"
COMMA = ","

WHITESPACE = frozenset((CR, LF, TAB, SPACE))


def tokenize(command: str) -> list[str]:
    """Split a rendered command into arguments.

    Whitespace outside quotes separates arguments; quoted spans keep their
    whitespace. Quote characters and escape markers stay in the tokens, the
    tokenizer only decides where one argument ends and the next begins.
    """
    result: list[str] = []
    token: list[str] = []

    is_quote = False
    is_token = False
    is_quote_escaped_token = False

    for i, ch in enumerate(command):
        if not is_token:
            if ch in WHITESPACE:
                continue
            is_token = True

        if not is_quote and ch in WHITESPACE:
            result.append("".join(token))
            token.clear()
            is_token = False
            continue

        if ch == QUOTE:
            if len(token) == 1 and command[i - 1] == BACKSLASH:
                # token opened with \" : the next quote closes it whatever precedes it
                is_quote_escaped_token = True
                is_quote = True
            else:
                if not is_quote or command[i - 1] != BACKSLASH:
                    is_quote = not is_quote
                if is_quote_escaped_token:
                    is_quote = False
                is_quote_escaped_token = False

        token.append(ch)

    if token:
        result.append("".join(token))
    return result


def enclose_in_quotes(value: str) -> str:
    return f"{QUOTE}{value}{QUOTE}"


@overload
def escape_quotes(value: str) -> str: ...


@overload
def escape_quotes(value: Iterable[str]) -> list[str]: ...


def escape_quotes(value):
    """Prefix every double quote with a backslash."""
    if isinstance(value, str):
        return value.replace(QUOTE, BACKSLASH + QUOTE)
    return [escape_quotes(item) for item in value]


def env_variables_to_string(variables: Optional[Mapping[str, Optional[str]]]) -> str:
    """Render environment variables as ``NAME=VALUE`` pairs joined by commas.

    Blank values render as the bare name.
    """
    if not variables:
        return ""
    return COMMA.join(_env_var_to_string(name, value) for name, value in variables.items())


def _env_var_to_string(name: str, value: Optional[str]) -> str:
    if value is not None and value.strip():
        return f"{name}={value}"
    return name


def escape(value: Union[str, Mapping[str, Optional[str]]]) -> str:
    """Produce a shell-safe representation of an argument or of an environment mapping."""
    if isinstance(value, Mapping):
        return env_variables_to_string(value)
    return enclose_in_quotes(escape_quotes(value))


def binary_command(command: str, arguments: Iterable[str] = ()) -> str:
    """Join a binary with its arguments into a `/bin/sh` command line, each argument quoted."""
    quoted = [escape(arg) for arg in arguments]
    return SPACE.join([command, *quoted]) if quoted else command
