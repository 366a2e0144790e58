"""Base shell adapter: spawn, time-bound and capture one command."""

from __future__ import annotations

import abc
import codecs
import locale
import logging
import os
import re
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import IO

LOGGER = logging.getLogger(__name__)

# Worst-case UTF-8 width, so a char cap never clips text that would fit.
_BYTES_PER_CHAR = 4
_READ_CHUNK_BYTES = 65536
_DRAIN_TIMEOUT_SECONDS = 5.0

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


@dataclass(slots=True)
class CommandResult:
    """Result of a command execution."""

    command: str
    shell: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_seconds: float = 0.0
    executed: bool = True
    discarded_bytes: int = 0


class ShellAdapter(abc.ABC):
    """Abstract adapter for shell-specific command execution."""

    def __init__(self, executable: str) -> None:
        self.executable = executable

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly shell adapter name."""

    @abc.abstractmethod
    def build_args(self, command: str) -> list[str]:
        """Return the argv that runs ``command`` in this shell."""

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        max_output_chars: int | None = None,
    ) -> CommandResult:
        """Run ``command`` and wait for it, killing its process group on timeout.

        With ``max_output_chars`` set, each pipe keeps at most
        ``_BYTES_PER_CHAR * max_output_chars`` bytes and the rest is counted in
        ``discarded_bytes`` instead of being held in memory.
        """
        self.log_request(command, cwd=cwd, timeout=timeout)
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                self.build_args(command),
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **_new_process_group_kwargs(),
            )
        except FileNotFoundError:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=127,
                stdout="",
                stderr=f"{self.name} executable not found: {self.executable}",
                executed=False,
                duration_seconds=self.monotonic_now() - started,
            )
            self.log_result(result)
            return result
        except (OSError, ValueError) as exc:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=126,
                stdout="",
                stderr=f"{self.name} could not start: {exc}",
                executed=False,
                duration_seconds=self.monotonic_now() - started,
            )
            self.log_result(result)
            return result

        limit = None if max_output_chars is None else max(max_output_chars, 0) * _BYTES_PER_CHAR
        readers = [_PipeReader(process.stdout, limit), _PipeReader(process.stderr, limit)]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            process.wait()
            timed_out = True
        for reader in readers:
            reader.join(timeout=_DRAIN_TIMEOUT_SECONDS)

        stdout_reader, stderr_reader = readers
        result = CommandResult(
            command=command,
            shell=self.name,
            returncode=124 if timed_out else process.returncode,
            stdout=stdout_reader.text(),
            stderr=stderr_reader.text(),
            timed_out=timed_out,
            duration_seconds=self.monotonic_now() - started,
            discarded_bytes=stdout_reader.discarded + stderr_reader.discarded,
        )
        self.log_result(result)
        return result

    def log_request(self, command: str, *, cwd: str | None, timeout: float | None) -> None:
        LOGGER.info(
            "command_request",
            extra={
                "shell": self.name,
                "command": sanitize_command(command),
                "cwd": cwd,
                "timeout": timeout,
            },
        )

    def log_result(self, result: CommandResult) -> None:
        LOGGER.info(
            "command_result",
            extra={
                "shell": result.shell,
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "duration_seconds": round(result.duration_seconds, 4),
                "executed": result.executed,
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
                "discarded_bytes": result.discarded_bytes,
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()


class _PipeReader(threading.Thread):
    """Drain one pipe, keeping at most ``limit`` bytes and counting the rest."""

    def __init__(self, stream: IO[bytes] | None, limit: int | None) -> None:
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.chunks: list[bytes] = []
        self.kept = 0
        self.discarded = 0

    def run(self) -> None:
        if self.stream is None:
            return
        read = getattr(self.stream, "read1", self.stream.read)
        try:
            for chunk in iter(partial(read, _READ_CHUNK_BYTES), b""):
                self._keep(chunk)
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill.
            pass
        finally:
            self.stream.close()

    def _keep(self, chunk: bytes) -> None:
        if self.limit is None:
            self.chunks.append(chunk)
            return
        room = max(self.limit - self.kept, 0)
        if room:
            self.chunks.append(chunk[:room])
            self.kept += min(room, len(chunk))
        self.discarded += max(len(chunk) - room, 0)

    def text(self) -> str:
        payload = b"".join(self.chunks)
        if not self.discarded:
            return normalize_output(payload)
        # A clipped buffer may end mid-character; drop the incomplete tail.
        try:
            return codecs.getincrementaldecoder("utf-8")().decode(payload, final=False)
        except UnicodeDecodeError:
            return normalize_output(payload)


def sanitize_command(command: str) -> str:
    """Mask secret-looking arguments before a command is logged."""
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", "utf-16", locale.getpreferredencoding(False), "cp1252"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")


def _new_process_group_kwargs() -> dict[str, object]:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    if os.name == "nt":
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
