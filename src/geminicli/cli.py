"""Command-line interface for geminicli."""

from __future__ import annotations

import argparse
import logging
import os
import platform
from pathlib import Path
from typing import cast

from .agent.codebase import CodebaseBuilder
from .agent.loop import ChatLoop
from .agent.models import RoundRecord, Session
from .config import AppConfig
from .interpreter import CommandInterpreter, ExecutionResult
from .llm.client import GeminiClient, GeminiReply
from .shell import create_shell_adapter

LOGGER = logging.getLogger(__name__)


class CLIArgs(argparse.Namespace):
    command: str
    verbose: bool
    query: str
    sandbox: str | None
    follow_up: bool
    description: str
    output_dir: str


def build_system_info(sandbox_root: str | Path, shell_name: str) -> str:
    """Describe the machine so the model can pick suitable commands."""
    return "\n".join(
        [
            f"OS: {platform.system()} {platform.release()}",
            f"Arch: {platform.machine()}",
            f"os_name: {os.name}",
            f"Shell: {shell_name}",
            f"Dir: {sandbox_root}",
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="geminicli", description="Interactive CLI with Gemini")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    chat = subparsers.add_parser("chat", help="Chat with Gemini and execute commands")
    chat.add_argument("--query", required=True, help="The query to send to Gemini")
    chat.add_argument(
        "--sandbox",
        help=(
            "Directory all file and command actions are confined to. "
            "Takes precedence over config/env sandbox values."
        ),
    )
    chat.add_argument(
        "--no-follow-up",
        dest="follow_up",
        action="store_false",
        help="Exit after the first query instead of asking for follow-up instructions",
    )

    execute = subparsers.add_parser("execute", help="Execute code with Gemini")
    execute.add_argument("--query", required=True, help="The query to send to Gemini")

    codebase = subparsers.add_parser(
        "create-codebase", help="Create a codebase from a description"
    )
    codebase.add_argument(
        "--description", required=True, help="Description of the codebase to create"
    )
    codebase.add_argument(
        "--output-dir", default=".", help="Output directory for the generated codebase"
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    config = AppConfig.from_env()
    configure_logging("DEBUG" if args.verbose else config.log_level)

    if not config.api_key:
        print(
            "GEMINI_API_KEY environment variable not set. "
            "Please set it with: export GEMINI_API_KEY=your_api_key_here"
        )
        return 1

    client = GeminiClient(
        api_key=config.api_key,
        model=config.model,
        api_url=config.api_url,
        timeout=config.request_timeout,
    )
    if args.command == "chat":
        return _run_chat(args, config, client)
    if args.command == "execute":
        return _run_execute(args.query, client)
    return _run_create_codebase(args, config, client)


def _build_interpreter(config: AppConfig, sandbox_root: Path) -> CommandInterpreter:
    return CommandInterpreter(
        sandbox_root=sandbox_root,
        shell=create_shell_adapter(config.shell),
        policy=config.command_policy(),
        command_timeout=config.command_timeout,
        max_output_chars=config.max_output_chars,
    )


def _run_chat(args: CLIArgs, config: AppConfig, client: GeminiClient) -> int:
    configured_sandbox = args.sandbox if args.sandbox is not None else config.sandbox_root
    sandbox_root = Path(configured_sandbox or Path.cwd()).expanduser().resolve()
    if not sandbox_root.is_dir():
        print(f"Invalid sandbox directory: {configured_sandbox}")
        return 1

    interpreter = _build_interpreter(config, sandbox_root)
    loop = ChatLoop(
        client=client,
        interpreter=interpreter,
        log_dir=config.log_dir,
        system_info=build_system_info(sandbox_root, interpreter.shell.name),
        max_rounds=config.max_rounds,
    )
    session = Session()
    query = args.query
    while True:
        LOGGER.info("user_query", extra={"query": query})
        rounds = loop.run(query, session)
        for idx, record in enumerate(rounds, start=1):
            print(_render_round(record, idx))
        if rounds and rounds[-1].error is not None:
            return 1

        if not args.follow_up:
            break
        follow_up = input("\nFollow-up instruction (leave empty to exit): ").strip()
        if not follow_up:
            break
        query = follow_up

    return 0


def _run_execute(query: str, client: GeminiClient) -> int:
    LOGGER.info("user_query_code_execution", extra={"query": query})
    reply = client.generate(query, code_execution=True)
    if not reply.ok:
        print(f"Error communicating with Gemini API: {reply.error}")
        return 1
    print(_render_execution_reply(reply))
    return 0


def _run_create_codebase(args: CLIArgs, config: AppConfig, client: GeminiClient) -> int:
    output_dir = Path(args.output_dir).expanduser().resolve()
    if output_dir.exists() and not output_dir.is_dir():
        print(f"Invalid output directory: {args.output_dir}")
        return 1

    builder = CodebaseBuilder(client=client, interpreter=_build_interpreter(config, output_dir))
    result = builder.build(args.description)
    if result.error is not None:
        print(f"Error creating codebase: {result.error}")
        return 1

    print("--- Codebase Creation Complete ---")
    written = result.written_paths
    print(f"Created {len(written)} files in {output_dir}")
    for path in written:
        print(f"- {path}")
    failures = [res for res in result.results if not res.succeeded]
    for failure in failures:
        print(f"! {failure.command_details}: {failure.error_detail}")
    return 1 if failures else 0


def _render_result(result: ExecutionResult) -> str:
    status = "ok" if result.succeeded else f"failed ({result.error_kind})"
    lines = [f"[{result.index + 1}] {result.command_type} {result.command_details} -> {status}"]
    if result.error_detail:
        lines.append(f"    {result.error_detail}")
    output = result.output.rstrip()
    if output and result.command_type == "execute_command":
        lines.extend(f"    {line}" for line in output.splitlines())
    return "\n".join(lines)


def _render_round(record: RoundRecord, idx: int) -> str:
    lines = [f"=== Round {idx} ==="]
    if record.error is not None:
        lines.append(f"Error communicating with Gemini API: {record.error}")
        return "\n".join(lines)
    lines.extend(_render_result(result) for result in record.results)
    if record.user_message:
        lines.append("")
        lines.append(record.user_message)
    return "\n".join(lines)


def _render_execution_reply(reply: GeminiReply) -> str:
    lines = ["\n--- Gemini Response ---"]
    for part in reply.parts:
        if part.kind == "code":
            lines.append(f"\n--- Generated Code ({part.language or 'unknown'}) ---")
            lines.append(part.text)
            lines.append("--- End of Generated Code ---")
        elif part.kind == "result":
            lines.append(f"\n--- Execution Result: {part.outcome} ---")
            lines.append(part.text)
            lines.append("--- End of Execution Result ---")
        elif part.text:
            lines.append(part.text)
    return "\n".join(lines)


if __name__ == "__main__":
    raise SystemExit(main())
