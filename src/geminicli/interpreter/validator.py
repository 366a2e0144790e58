"""Pre-execution checks that confine actions to the sandbox root."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath, PureWindowsPath

from geminicli.interpreter.errors import DeniedError, PathEscapeError
from geminicli.interpreter.models import Action, ExecuteCommand
from geminicli.interpreter.policy import CommandPolicy

LOGGER = logging.getLogger(__name__)


def resolve_in_sandbox(path: str, sandbox_root: str | Path) -> Path:
    """Resolve ``path`` against ``sandbox_root`` or raise ``PathEscapeError``.

    Absolute and drive-anchored paths are rejected outright. Relative paths
    are resolved with symlinks followed and must land on the root or below it.
    """
    normalized = path.strip().replace("\\", "/")
    if not normalized:
        raise PathEscapeError("empty path")
    if "\x00" in normalized:
        raise PathEscapeError(f"path contains a NUL byte: {path!r}")
    if PurePosixPath(normalized).is_absolute() or PureWindowsPath(normalized).anchor:
        raise PathEscapeError(f"absolute path not allowed: {path}")

    root = Path(sandbox_root).resolve()
    try:
        candidate = (root / normalized).resolve()
    except (OSError, RuntimeError, ValueError) as exc:
        raise PathEscapeError(f"path cannot be resolved: {path!r} ({exc})") from exc
    if candidate != root and not candidate.is_relative_to(root):
        raise PathEscapeError(f"path escapes sandbox root: {path}")
    return candidate


def validate(action: Action, sandbox_root: str | Path, policy: CommandPolicy) -> Action:
    """Return ``action`` unchanged when it is safe to execute."""
    if isinstance(action, ExecuteCommand):
        if not action.command_line.strip():
            raise DeniedError("empty command")
        if "\x00" in action.command_line:
            raise DeniedError("command contains a NUL byte")
        reason = policy.check(action.command_line)
        if reason is not None:
            LOGGER.warning(
                "command_denied",
                extra={"command": action.command_line, "reason": reason},
            )
            raise DeniedError(reason)
        return action

    try:
        resolve_in_sandbox(action.path, sandbox_root)
    except PathEscapeError as exc:
        LOGGER.warning(
            "path_escape_rejected",
            extra={"kind": action.kind, "path": action.path, "detail": exc.detail},
        )
        raise
    return action
