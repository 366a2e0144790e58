"""Environment-backed application configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from geminicli.interpreter.policy import CommandPolicy
from geminicli.llm.client import DEFAULT_GEMINI_MODEL, default_api_url

LOGGER = logging.getLogger(__name__)

CONFIG_FILE_NAME = "geminicli.config.json"
LOCAL_CONFIG_FILE_NAME = "geminicli.config.local.json"


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    api_key: str | None
    model: str
    api_url: str
    request_timeout: float
    sandbox_root: str | None
    shell: str
    command_timeout: float
    max_output_chars: int
    max_rounds: int
    log_dir: str
    log_level: str
    allow_all_commands: bool = False
    deny_patterns: list[str] = field(default_factory=list)
    allow_patterns: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        policy_from_file = file_config.get("command_policy")
        policy_config = policy_from_file if isinstance(policy_from_file, dict) else {}

        model = (
            os.getenv("GEMINI_MODEL")
            or _to_optional_string(file_config.get("model"))
            or DEFAULT_GEMINI_MODEL
        )
        return cls(
            api_key=(
                os.getenv("GEMINI_API_KEY") or _to_optional_string(file_config.get("api_key"))
            ),
            model=model,
            api_url=(
                os.getenv("GEMINI_API_ENDPOINT")
                or _to_optional_string(file_config.get("api_url"))
                or default_api_url(model)
            ),
            request_timeout=_to_positive_float(
                os.getenv("GEMINICLI_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                default=60.0,
            ),
            sandbox_root=(
                os.getenv("GEMINICLI_SANDBOX_ROOT")
                or _to_optional_string(file_config.get("sandbox_root"))
            ),
            shell=_resolve_shell(
                os.getenv("GEMINICLI_SHELL") or _to_optional_string(file_config.get("shell"))
            ),
            command_timeout=_to_positive_float(
                os.getenv("GEMINICLI_COMMAND_TIMEOUT") or file_config.get("command_timeout"),
                default=60.0,
            ),
            max_output_chars=_to_positive_int(
                os.getenv("GEMINICLI_MAX_OUTPUT_CHARS") or file_config.get("max_output_chars"),
                default=8000,
            ),
            max_rounds=_to_positive_int(
                os.getenv("GEMINICLI_MAX_ROUNDS") or file_config.get("max_rounds"),
                default=5,
            ),
            log_dir=(
                os.getenv("GEMINICLI_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            log_level=_resolve_log_level(
                os.getenv("GEMINICLI_LOG_LEVEL")
                or _to_optional_string(file_config.get("log_level"))
            ),
            allow_all_commands=_to_bool(
                os.getenv("GEMINICLI_ALLOW_ALL_COMMANDS"),
                default=bool(file_config.get("allow_all_commands", False)),
            ),
            deny_patterns=_to_string_list(policy_config.get("deny")),
            allow_patterns=_to_string_list(policy_config.get("allow")),
        )

    def command_policy(self) -> CommandPolicy:
        if self.allow_all_commands:
            return CommandPolicy(
                deny_patterns=tuple(self.deny_patterns),
                allow_patterns=tuple(self.allow_patterns),
            )
        return CommandPolicy.default(extra_deny=self.deny_patterns, allow=self.allow_patterns)


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("config_file_unreadable", extra={"path": str(path), "error": str(exc)})
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("GEMINICLI_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config(CONFIG_FILE_NAME)
    local_override = _load_file_config(LOCAL_CONFIG_FILE_NAME)
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _shell_value(value: str) -> str:
    normalized = value.strip().lower()
    aliases = {
        "cmd": "cmd",
        "powershell": "powershell",
        "pwsh": "powershell",
        "bash": "bash",
        "sh": "sh",
        "shell": "bash",
    }
    return aliases.get(normalized, _default_shell_for_platform())


def _default_shell_for_platform(os_name: str | None = None) -> str:
    platform_name = os.name if os_name is None else os_name
    return "powershell" if platform_name == "nt" else "bash"


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return _default_shell_for_platform()
    return _shell_value(value)


def _resolve_log_level(value: str | None) -> str:
    if value is None:
        return "WARNING"
    normalized = value.strip().upper()
    if normalized in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        return normalized
    return "WARNING"


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
