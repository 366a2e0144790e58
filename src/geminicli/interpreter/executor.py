"""Apply validated actions to the sandbox and report what happened."""

from __future__ import annotations

import logging
from pathlib import Path

from geminicli.interpreter.errors import (
    CommandTimeoutError,
    ExecutionError,
    InterpreterError,
    IOFailureError,
    NonZeroExitError,
)
from geminicli.interpreter.models import (
    Action,
    CreateFile,
    CreateFolder,
    ExecuteCommand,
    ExecutionResult,
    WriteCodeToFile,
)
from geminicli.interpreter.validator import resolve_in_sandbox
from geminicli.shell import CommandResult, ShellAdapter

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_CHARS = 8000


def truncate_output(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    dropped = len(text) - max_chars
    return f"{text[:max_chars]}\n... [truncated {dropped} chars]"


def combine_output(result: CommandResult) -> str:
    stdout = result.stdout.rstrip("\n")
    stderr = result.stderr.rstrip("\n")
    if stdout and stderr:
        return f"{stdout}\n{stderr}"
    return stdout or stderr


class ActionExecutor:
    """Runs one action at a time against a fixed sandbox root.

    Actions must already have passed validation. Paths are resolved again here
    so the executor never touches anything the validator would have refused.
    """

    def __init__(
        self,
        *,
        sandbox_root: str | Path,
        shell: ShellAdapter,
        command_timeout: float = 60.0,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        self.sandbox_root = Path(sandbox_root).resolve()
        self.shell = shell
        self.command_timeout = command_timeout
        self.max_output_chars = max_output_chars

    def execute(self, action: Action, *, index: int = 0) -> ExecutionResult:
        try:
            output = self._dispatch(action)
        except InterpreterError as exc:
            LOGGER.warning(
                "action_failed",
                extra={"kind": action.kind, "error_kind": exc.kind, "detail": exc.detail},
            )
            partial = exc.output if isinstance(exc, ExecutionError) else ""
            return ExecutionResult(
                action=action,
                succeeded=False,
                output=partial,
                index=index,
                error_kind=exc.kind,
                error_detail=exc.detail,
            )

        LOGGER.info("action_executed", extra={"kind": action.kind, "index": index})
        return ExecutionResult(
            action=action,
            succeeded=True,
            output=output,
            index=index,
        )

    def _dispatch(self, action: Action) -> str:
        if isinstance(action, CreateFolder):
            return self._create_folder(action)
        if isinstance(action, CreateFile):
            return self._create_file(action)
        if isinstance(action, WriteCodeToFile):
            return self._write_code_to_file(action)
        if isinstance(action, ExecuteCommand):
            return self._execute_command(action)
        msg = f"Unsupported action: {action!r}"
        raise TypeError(msg)

    def _create_folder(self, action: CreateFolder) -> str:
        target = resolve_in_sandbox(action.path, self.sandbox_root)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailureError(f"Failed to create folder {action.path}: {exc}") from exc
        return f"Created folder: {action.path}"

    def _create_file(self, action: CreateFile) -> str:
        target = resolve_in_sandbox(action.path, self.sandbox_root)
        if not target.parent.is_dir():
            raise IOFailureError(
                f"Failed to create file {action.path}: parent directory does not exist"
            )
        if target.exists() and not target.is_file():
            raise IOFailureError(f"Failed to create file {action.path}: not a regular file")
        try:
            target.touch(exist_ok=True)
        except OSError as exc:
            raise IOFailureError(f"Failed to create file {action.path}: {exc}") from exc
        return f"Created file: {action.path}"

    def _write_code_to_file(self, action: WriteCodeToFile) -> str:
        target = resolve_in_sandbox(action.path, self.sandbox_root)
        if not target.parent.is_dir():
            raise IOFailureError(
                f"Failed to write file {action.path}: parent directory does not exist"
            )
        try:
            target.write_text(action.content, encoding="utf-8")
        except OSError as exc:
            raise IOFailureError(f"Failed to write file {action.path}: {exc}") from exc
        return f"Wrote {len(action.content)} chars to {action.path}"

    def _execute_command(self, action: ExecuteCommand) -> str:
        result = self.shell.execute(
            action.command_line,
            cwd=str(self.sandbox_root),
            timeout=self.command_timeout,
            max_output_chars=self.max_output_chars,
        )
        output = self._bounded_output(result)
        if result.timed_out:
            raise CommandTimeoutError(
                f"Command timed out after {self.command_timeout:g}s", output=output
            )
        if not result.executed:
            raise IOFailureError(result.stderr or "command could not be started")
        if result.returncode != 0:
            raise NonZeroExitError(
                f"Command exited with status {result.returncode}",
                returncode=result.returncode,
                output=output,
            )
        return output

    def _bounded_output(self, result: CommandResult) -> str:
        output = truncate_output(combine_output(result), self.max_output_chars)
        if result.discarded_bytes:
            output = f"{output}\n... [discarded {result.discarded_bytes} bytes]"
        return output
