"""Scaffold a codebase from a markdown reply full of fenced files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from geminicli.agent.loop import ReplyGenerator
from geminicli.interpreter import (
    Action,
    CommandInterpreter,
    CreateFolder,
    ExecutionResult,
    WriteCodeToFile,
)
from geminicli.llm.prompts import build_codebase_prompt

LOGGER = logging.getLogger(__name__)

ExtractedFile = tuple[str, str]

EXTENSIONS_BY_LANGUAGE = {
    "python": "py",
    "py": "py",
    "javascript": "js",
    "js": "js",
    "typescript": "ts",
    "ts": "ts",
    "jsx": "jsx",
    "tsx": "tsx",
    "html": "html",
    "css": "css",
    "rust": "rs",
    "rs": "rs",
    "go": "go",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "c++": "cpp",
    "csharp": "cs",
    "cs": "cs",
    "php": "php",
    "ruby": "rb",
    "rb": "rb",
    "shell": "sh",
    "sh": "sh",
    "bash": "sh",
    "sql": "sql",
    "json": "json",
    "yaml": "yml",
    "yml": "yml",
    "toml": "toml",
    "markdown": "md",
    "md": "md",
    "dockerfile": "Dockerfile",
    "makefile": "Makefile",
}

EXTENSIONLESS_NAMES = frozenset({"Dockerfile", "Makefile", "Procfile", "LICENSE", "Gemfile"})

_HEADING_PATTERNS = [
    re.compile(r"^#{1,6}\s+(?:\d+\.\s*)?`?([^\s`]+)`?\s*$"),
    re.compile(r"^(?:file|filename|path)\s*:\s*`?([^\s`]+)`?\s*$", re.IGNORECASE),
    re.compile(r"^\*\*`?([^\s`*]+)`?\*\*\s*:?\s*$"),
]
_CODE_BLOCK_PATTERN = re.compile(r"^```([\w+#-]+)?[^\n]*\n(.*?)^```", re.MULTILINE | re.DOTALL)


def extension_for_language(language: str) -> str:
    return EXTENSIONS_BY_LANGUAGE.get(language.strip().lower(), "txt")


def infer_extension(content: str) -> str:
    """Guess a file extension from the code itself."""
    if "<?php" in content:
        return "php"
    if "<!DOCTYPE html" in content or "<html" in content:
        return "html"
    if "import React" in content or "from 'react'" in content:
        return "jsx"
    if "import " in content and "from '" in content and "export " in content:
        return "js"
    if "#include <" in content:
        return "cpp" if "iostream" in content else "c"
    if "package " in content and "import " in content and "public class " in content:
        return "java"
    if "def " in content and "import " in content:
        return "py"
    if "fn " in content and "pub " in content and "use " in content:
        return "rs"
    return "txt"


def _looks_like_filename(value: str) -> bool:
    name = PurePosixPath(value).name
    return "." in name or name in EXTENSIONLESS_NAMES


def _name_from_info(info: str) -> str | None:
    if ":" in info:
        _, _, filename = info.partition(":")
        filename = filename.strip()
        return filename or None
    if info and " " not in info and _looks_like_filename(info):
        return info
    return None


def _name_from_heading(line: str) -> str | None:
    for pattern in _HEADING_PATTERNS:
        match = pattern.match(line)
        if match and _looks_like_filename(match.group(1)):
            return match.group(1)
    return None


def extract_files_from_markdown(text: str) -> list[ExtractedFile]:
    """Collect fenced blocks that are named by their info string or a heading."""
    files: list[ExtractedFile] = []
    pending_name: str | None = None
    current_name: str | None = None
    inside = False
    buffer: list[str] = []

    for line in text.splitlines():
        stripped = line.strip()
        if not inside:
            if stripped.startswith("```"):
                info = stripped.lstrip("`").strip()
                current_name = _name_from_info(info) or pending_name
                pending_name = None
                inside = True
                buffer = []
                continue
            heading_name = _name_from_heading(stripped)
            if heading_name is not None:
                pending_name = heading_name
            continue

        if stripped == "```":
            if current_name:
                LOGGER.debug("markdown_file_extracted", extra={"path": current_name})
                files.append((current_name, "".join(buffer)))
            inside = False
            current_name = None
            continue
        buffer.append(f"{line}\n")

    if inside and current_name:
        LOGGER.debug("markdown_file_extracted_unclosed", extra={"path": current_name})
        files.append((current_name, "".join(buffer)))

    LOGGER.info("markdown_files_extracted", extra={"count": len(files)})
    return files


def extract_files_from_code_blocks(text: str) -> list[ExtractedFile]:
    """Name every fenced block ``file_N.<ext>`` from its language tag."""
    files: list[ExtractedFile] = []
    for counter, match in enumerate(_CODE_BLOCK_PATTERN.finditer(text), start=1):
        extension = extension_for_language(match.group(1) or "txt")
        files.append((f"file_{counter}.{extension}", match.group(2)))
    LOGGER.info("code_block_files_extracted", extra={"count": len(files)})
    return files


def extract_files(text: str) -> list[ExtractedFile]:
    files = extract_files_from_markdown(text)
    if not files:
        files = extract_files_from_code_blocks(text)
    if not files:
        LOGGER.warning("no_files_in_reply", extra={"reply_chars": len(text)})
        files = [("README.md", text)]
    return files


def normalize_file_path(path: str, content: str) -> str:
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if not _looks_like_filename(normalized):
        normalized = f"{normalized}.{infer_extension(content)}"
    return normalized


def scaffold_actions(files: list[ExtractedFile]) -> list[Action]:
    """Turn extracted files into folder-then-write actions, in file order."""
    actions: list[Action] = []
    created: set[str] = set()
    for raw_path, content in files:
        path = normalize_file_path(raw_path, content)
        pure = PurePosixPath(path)
        if not pure.is_absolute() and ".." not in pure.parts:
            for parent in reversed(pure.parents):
                folder = str(parent)
                if folder == "." or folder in created:
                    continue
                created.add(folder)
                actions.append(CreateFolder(path=folder))
        actions.append(WriteCodeToFile(path=path, content=content))
    return actions


@dataclass(slots=True)
class CodebaseResult:
    """Outcome of one create-codebase request."""

    reply: str = ""
    files: list[ExtractedFile] = field(default_factory=list)
    results: list[ExecutionResult] = field(default_factory=list)
    error: str | None = None

    @property
    def written_paths(self) -> list[str]:
        return [
            result.action.path
            for result in self.results
            if result.succeeded and isinstance(result.action, WriteCodeToFile)
        ]


class CodebaseBuilder:
    """Asks Gemini for a codebase and writes it under the sandbox root."""

    def __init__(self, *, client: ReplyGenerator, interpreter: CommandInterpreter) -> None:
        self.client = client
        self.interpreter = interpreter

    def build(self, description: str) -> CodebaseResult:
        self.interpreter.sandbox_root.mkdir(parents=True, exist_ok=True)
        reply = self.client.generate(build_codebase_prompt(description), code_execution=True)
        if not reply.ok:
            return CodebaseResult(error=reply.error)

        text = reply.text
        if not text.strip():
            return CodebaseResult(error="No text content in response")

        files = extract_files(text)
        results = self.interpreter.run_actions(scaffold_actions(files))
        LOGGER.info(
            "codebase_created",
            extra={
                "sandbox_root": str(self.interpreter.sandbox_root),
                "files": len(files),
                "failed": sum(1 for result in results if not result.succeeded),
            },
        )
        return CodebaseResult(reply=text, files=files, results=results)
