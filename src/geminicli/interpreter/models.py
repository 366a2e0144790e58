"""Data models for parsed actions and their execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal

from geminicli.interpreter.errors import ErrorKind, ParseError

ActionKind = Literal["create_folder", "create_file", "write_code_to_file", "execute_command"]


@dataclass(frozen=True, slots=True)
class CreateFolder:
    """Create a directory and any missing parents."""

    kind: ClassVar[ActionKind] = "create_folder"
    path: str

    def describe(self) -> str:
        return f"path: {self.path}"


@dataclass(frozen=True, slots=True)
class CreateFile:
    """Create an empty file inside an existing directory."""

    kind: ClassVar[ActionKind] = "create_file"
    path: str

    def describe(self) -> str:
        return f"path: {self.path}"


@dataclass(frozen=True, slots=True)
class WriteCodeToFile:
    """Create or overwrite a file with the given content."""

    kind: ClassVar[ActionKind] = "write_code_to_file"
    path: str
    content: str

    def describe(self) -> str:
        return f"path: {self.path} ({len(self.content)} chars)"


@dataclass(frozen=True, slots=True)
class ExecuteCommand:
    """Run a shell command inside the sandbox root."""

    kind: ClassVar[ActionKind] = "execute_command"
    command_line: str

    def describe(self) -> str:
        return f"command: {self.command_line}"


Action = CreateFolder | CreateFile | WriteCodeToFile | ExecuteCommand
PathAction = CreateFolder | CreateFile | WriteCodeToFile

ACTION_KINDS: frozenset[str] = frozenset(
    cls.kind for cls in (CreateFolder, CreateFile, WriteCodeToFile, ExecuteCommand)
)


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one command block, in reply order."""

    action: Action | None
    succeeded: bool
    output: str = ""
    index: int = 0
    error_kind: ErrorKind | None = None
    error_detail: str | None = None

    @property
    def command_type(self) -> str:
        if self.action is not None:
            return self.action.kind
        return "unparsed_block"

    @property
    def command_details(self) -> str:
        if self.action is not None:
            return self.action.describe()
        return f"block #{self.index}"


@dataclass(slots=True)
class ParsedReply:
    """Command blocks and message extracted from one model reply."""

    blocks: list[Action | ParseError] = field(default_factory=list)
    user_message: str = ""
    done: bool = True

    @property
    def actions(self) -> list[Action]:
        return [block for block in self.blocks if not isinstance(block, ParseError)]
