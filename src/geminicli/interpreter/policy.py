"""Allow/deny policy applied to model-proposed shell commands."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

DEFAULT_DENY_PATTERNS: tuple[str, ...] = (
    r"\brm\s+-(?:[a-z]*r[a-z]*f|[a-z]*f[a-z]*r)[a-z]*\b",
    r"\brm\s+-r\b.*\s/(?:\s|$)",
    r"\bdel\s+(?:/[a-z]\s+)*/s\b",
    r"\brmdir\s+/s\b",
    r"\bformat\s+[a-z]:",
    r"\bremove-item\b.*-recurse\b",
    r"\bdrop\s+(?:table|database)\b",
    r"\bmkfs(?:\.\w+)?\b",
    r"\bdd\b.*\bof=/dev/",
    r"\b(?:shutdown|reboot|halt|poweroff)\b",
    r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
    r"\bchmod\s+-R\s+0?777\s+/(?:\s|$)",
    r">\s*/dev/sd[a-z]\b",
)


def _compile(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


@dataclass(frozen=True, slots=True)
class CommandPolicy:
    """Regex allow/deny lists checked before a command is spawned.

    A command matching any deny pattern is rejected. When allow patterns are
    present, a command must also match at least one of them.
    """

    deny_patterns: tuple[str, ...] = ()
    allow_patterns: tuple[str, ...] = ()
    _deny: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)
    _allow: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_deny", _compile(self.deny_patterns))
        object.__setattr__(self, "_allow", _compile(self.allow_patterns))

    @classmethod
    def default(
        cls,
        *,
        extra_deny: Iterable[str] = (),
        allow: Iterable[str] = (),
    ) -> CommandPolicy:
        return cls(
            deny_patterns=(*DEFAULT_DENY_PATTERNS, *extra_deny),
            allow_patterns=tuple(allow),
        )

    @classmethod
    def allow_all(cls) -> CommandPolicy:
        return cls()

    def check(self, command: str) -> str | None:
        """Return a rejection reason, or ``None`` when the command may run."""
        for pattern in self._deny:
            if pattern.search(command):
                return f"command blocked by denylist policy ({pattern.pattern})"
        if self._allow and not any(pattern.search(command) for pattern in self._allow):
            return "command rejected by allowlist policy"
        return None
