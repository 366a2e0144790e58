"""Error kinds raised while parsing, validating and executing actions."""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal[
    "malformed_block",
    "unknown_kind",
    "path_escape",
    "denied",
    "io_failure",
    "timeout",
    "non_zero_exit",
    "cancelled",
]


class InterpreterError(Exception):
    """Base class for every per-action failure."""

    kind: ErrorKind

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ParseError(InterpreterError):
    """A command block could not be turned into an action."""

    def __init__(self, detail: str, *, index: int, block: object = None) -> None:
        super().__init__(detail)
        self.index = index
        self.block = block


class MalformedBlockError(ParseError):
    kind: ErrorKind = "malformed_block"


class UnknownKindError(ParseError):
    kind: ErrorKind = "unknown_kind"


class ValidationError(InterpreterError):
    """An action was rejected before execution."""


class PathEscapeError(ValidationError):
    kind: ErrorKind = "path_escape"


class DeniedError(ValidationError):
    kind: ErrorKind = "denied"


class ExecutionError(InterpreterError):
    """An action ran and failed."""

    def __init__(self, detail: str, *, output: str = "") -> None:
        super().__init__(detail)
        self.output = output


class IOFailureError(ExecutionError):
    kind: ErrorKind = "io_failure"


class CommandTimeoutError(ExecutionError):
    kind: ErrorKind = "timeout"


class NonZeroExitError(ExecutionError):
    kind: ErrorKind = "non_zero_exit"

    def __init__(self, detail: str, *, returncode: int, output: str = "") -> None:
        super().__init__(detail, output=output)
        self.returncode = returncode
