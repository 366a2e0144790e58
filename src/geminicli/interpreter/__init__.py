"""Command interpreter for actions proposed by the model."""

from .errors import (
    CommandTimeoutError,
    DeniedError,
    ExecutionError,
    InterpreterError,
    IOFailureError,
    MalformedBlockError,
    NonZeroExitError,
    ParseError,
    PathEscapeError,
    UnknownKindError,
    ValidationError,
)
from .interpreter import CommandInterpreter
from .models import (
    ACTION_KINDS,
    Action,
    CreateFile,
    CreateFolder,
    ExecuteCommand,
    ExecutionResult,
    ParsedReply,
    WriteCodeToFile,
)
from .parser import parse_reply
from .policy import CommandPolicy
from .validator import validate

__all__ = [
    "ACTION_KINDS",
    "Action",
    "CommandInterpreter",
    "CommandPolicy",
    "CommandTimeoutError",
    "CreateFile",
    "CreateFolder",
    "DeniedError",
    "ExecuteCommand",
    "ExecutionError",
    "ExecutionResult",
    "IOFailureError",
    "InterpreterError",
    "MalformedBlockError",
    "NonZeroExitError",
    "ParseError",
    "ParsedReply",
    "PathEscapeError",
    "UnknownKindError",
    "ValidationError",
    "WriteCodeToFile",
    "parse_reply",
    "validate",
]
