from __future__ import annotations

import json
import os
import shutil
import threading
from pathlib import Path

import pytest

from geminicli.interpreter import (
    CommandInterpreter,
    CommandPolicy,
    CreateFile,
    CreateFolder,
    ExecuteCommand,
    WriteCodeToFile,
)
from geminicli.shell import BashAdapter, CommandResult


class FakeShell:
    name = "fake"

    def __init__(self, results: dict[str, CommandResult] | None = None) -> None:
        self.results = results or {}
        self.calls: list[tuple[str, str | None, float | None]] = []

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        max_output_chars: int | None = None,
    ) -> CommandResult:
        self.calls.append((command, cwd, timeout))
        return self.results.get(
            command,
            CommandResult(command=command, shell=self.name, returncode=0, stdout="ok", stderr=""),
        )


def _interpreter(root: Path, shell: object | None = None, **kwargs: object) -> CommandInterpreter:
    return CommandInterpreter(
        sandbox_root=root,
        shell=shell or FakeShell(),  # type: ignore[arg-type]
        **kwargs,  # type: ignore[arg-type]
    )


def _reply(*commands: dict[str, object]) -> str:
    return "Here you go:\n" + json.dumps({"commands": list(commands), "user_message": "done"})


def _snapshot(root: Path) -> list[str]:
    return sorted(path.relative_to(root).as_posix() for path in root.rglob("*"))


def test_reply_without_blocks_has_no_results_or_side_effects(tmp_path: Path) -> None:
    shell = FakeShell()
    interpreter = _interpreter(tmp_path, shell)

    results = interpreter.run_round("Just chatting, nothing to run.")

    assert results == []
    assert shell.calls == []
    assert _snapshot(tmp_path) == []


def test_path_escape_is_rejected_without_execution(tmp_path: Path) -> None:
    sandbox = tmp_path / "sandbox"
    sandbox.mkdir()
    interpreter = _interpreter(sandbox)

    results = interpreter.run_round(
        _reply({"type": "write_code_to_file", "path": "../escaped.txt", "code": "x"})
    )

    assert len(results) == 1
    assert results[0].succeeded is False
    assert results[0].error_kind == "path_escape"
    assert not (tmp_path / "escaped.txt").exists()


def test_create_folder_is_idempotent(tmp_path: Path) -> None:
    interpreter = _interpreter(tmp_path)
    action = CreateFolder(path="pkg/sub")

    first = interpreter.execute(action)
    after_first = _snapshot(tmp_path)
    second = interpreter.execute(action)

    assert first.succeeded is True
    assert second.succeeded is True
    assert _snapshot(tmp_path) == after_first == ["pkg", "pkg/sub"]


def test_create_folder_fails_when_a_file_is_in_the_way(tmp_path: Path) -> None:
    (tmp_path / "taken").write_text("", encoding="utf-8")

    result = _interpreter(tmp_path).execute(CreateFolder(path="taken"))

    assert result.succeeded is False
    assert result.error_kind == "io_failure"


def test_order_is_preserved_so_later_actions_see_earlier_effects(tmp_path: Path) -> None:
    interpreter = _interpreter(tmp_path)

    results = interpreter.run_round(
        _reply(
            {"type": "create_folder", "path": "a"},
            {"type": "write_code_to_file", "path": "a/x.txt", "code": "hi"},
        )
    )

    assert [result.succeeded for result in results] == [True, True]
    assert (tmp_path / "a" / "x.txt").read_text(encoding="utf-8") == "hi"


def test_reversed_order_fails_the_folder_dependent_write(tmp_path: Path) -> None:
    interpreter = _interpreter(tmp_path)

    results = interpreter.run_round(
        _reply(
            {"type": "write_code_to_file", "path": "a/x.txt", "code": "hi"},
            {"type": "create_folder", "path": "a"},
        )
    )

    assert [result.succeeded for result in results] == [False, True]
    assert results[0].error_kind == "io_failure"
    assert not (tmp_path / "a" / "x.txt").exists()


def test_malformed_block_does_not_block_its_neighbours(tmp_path: Path) -> None:
    interpreter = _interpreter(tmp_path)

    results = interpreter.run_round(
        _reply(
            {"type": "create_folder", "path": "first"},
            {"type": "write_code_to_file", "code": "no path"},
            {"type": "create_file", "path": "missing-dir/third.txt"},
        )
    )

    assert [result.index for result in results] == [0, 1, 2]
    assert results[0].succeeded is True
    assert results[1].succeeded is False
    assert results[1].error_kind == "malformed_block"
    assert results[1].action is None
    assert results[2].succeeded is False
    assert results[2].error_kind == "io_failure"


def test_unknown_kind_is_reported(tmp_path: Path) -> None:
    results = _interpreter(tmp_path).run_round(_reply({"type": "rename_file", "path": "a"}))

    assert results[0].succeeded is False
    assert results[0].error_kind == "unknown_kind"


def test_create_file_creates_empty_file_and_keeps_existing_content(tmp_path: Path) -> None:
    interpreter = _interpreter(tmp_path)
    (tmp_path / "keep.txt").write_text("content", encoding="utf-8")

    results = interpreter.run_round(
        _reply(
            {"type": "create_file", "path": "new.txt"},
            {"type": "create_file", "path": "keep.txt"},
        )
    )

    assert all(result.succeeded for result in results)
    assert (tmp_path / "new.txt").read_text(encoding="utf-8") == ""
    assert (tmp_path / "keep.txt").read_text(encoding="utf-8") == "content"


def test_write_code_to_file_overwrites_unconditionally(tmp_path: Path) -> None:
    (tmp_path / "main.py").write_text("old\n", encoding="utf-8")

    result = _interpreter(tmp_path).execute(WriteCodeToFile(path="main.py", content="new\n"))

    assert result.succeeded is True
    assert (tmp_path / "main.py").read_text(encoding="utf-8") == "new\n"


def test_execute_command_runs_in_sandbox_with_timeout(tmp_path: Path) -> None:
    shell = FakeShell()
    interpreter = _interpreter(tmp_path, shell, command_timeout=7.5)

    result = interpreter.execute(ExecuteCommand(command_line="ls"))

    assert result.succeeded is True
    assert result.output == "ok"
    assert shell.calls == [("ls", str(tmp_path.resolve()), 7.5)]


def test_execute_command_maps_non_zero_exit(tmp_path: Path) -> None:
    shell = FakeShell(
        {
            "make": CommandResult(
                command="make", shell="fake", returncode=2, stdout="", stderr="no rule"
            )
        }
    )

    result = _interpreter(tmp_path, shell).execute(ExecuteCommand(command_line="make"))

    assert result.succeeded is False
    assert result.error_kind == "non_zero_exit"
    assert result.error_detail is not None and "2" in result.error_detail
    assert result.output == "no rule"


def test_execute_command_output_is_truncated(tmp_path: Path) -> None:
    shell = FakeShell(
        {
            "big": CommandResult(
                command="big", shell="fake", returncode=0, stdout="x" * 50, stderr=""
            )
        }
    )

    result = _interpreter(tmp_path, shell, max_output_chars=10).execute(
        ExecuteCommand(command_line="big")
    )

    assert result.output.startswith("x" * 10)
    assert "[truncated 40 chars]" in result.output


def test_denied_command_is_never_spawned(tmp_path: Path) -> None:
    shell = FakeShell()

    results = _interpreter(tmp_path, shell).run_round(
        _reply({"type": "execute_command", "command": "rm -rf /"})
    )

    assert results[0].error_kind == "denied"
    assert shell.calls == []


def test_custom_policy_is_applied(tmp_path: Path) -> None:
    shell = FakeShell()
    interpreter = _interpreter(tmp_path, shell, policy=CommandPolicy(allow_patterns=(r"^echo",)))

    results = interpreter.run_round(
        _reply(
            {"type": "execute_command", "command": "echo hi"},
            {"type": "execute_command", "command": "ls"},
        )
    )

    assert [result.succeeded for result in results] == [True, False]
    assert [call[0] for call in shell.calls] == ["echo hi"]


def test_cancellation_stops_remaining_actions(tmp_path: Path) -> None:
    interpreter = _interpreter(tmp_path)
    checks: list[int] = []

    def should_cancel() -> bool:
        checks.append(len(checks))
        return len(checks) > 1

    results = interpreter.run_round(
        _reply(
            {"type": "create_folder", "path": "one"},
            {"type": "create_folder", "path": "two"},
            {"type": "create_folder", "path": "three"},
        ),
        should_cancel=should_cancel,
    )

    assert [result.succeeded for result in results] == [True, False, False]
    assert [result.error_kind for result in results] == [None, "cancelled", "cancelled"]
    assert (tmp_path / "one").is_dir()
    assert not (tmp_path / "two").exists()


def test_concurrent_round_on_same_interpreter_is_rejected(tmp_path: Path) -> None:
    started = threading.Event()
    release = threading.Event()

    class BlockingShell(FakeShell):
        def execute(self, command: str, **_kwargs: object) -> CommandResult:
            started.set()
            release.wait(timeout=5)
            return super().execute(command)

    interpreter = _interpreter(tmp_path, BlockingShell())
    worker = threading.Thread(
        target=interpreter.run_round,
        args=(_reply({"type": "execute_command", "command": "slow"}),),
    )
    worker.start()
    try:
        assert started.wait(timeout=5)
        with pytest.raises(RuntimeError, match="already running"):
            interpreter.run_round(_reply({"type": "create_folder", "path": "x"}))
    finally:
        release.set()
        worker.join(timeout=5)

    assert interpreter.run_round(_reply({"type": "create_folder", "path": "x"}))[0].succeeded


@pytest.mark.skipif(
    os.name == "nt" or not (shutil.which("bash") or shutil.which("sh")),
    reason="needs a POSIX shell",
)
def test_timeout_terminates_the_subprocess(tmp_path: Path) -> None:
    interpreter = _interpreter(
        tmp_path,
        BashAdapter(),
        policy=CommandPolicy.allow_all(),
        command_timeout=0.5,
    )

    result = interpreter.execute(ExecuteCommand(command_line="echo $$ > pid.txt; sleep 30"))

    assert result.succeeded is False
    assert result.error_kind == "timeout"
    assert result.error_detail == "Command timed out after 0.5s"
    pid = int((tmp_path / "pid.txt").read_text(encoding="utf-8").strip())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_nul_byte_in_path_fails_only_its_block(tmp_path: Path) -> None:
    results = _interpreter(tmp_path).run_round(
        _reply(
            {"type": "create_file", "path": "bad\x00name.txt"},
            {"type": "create_folder", "path": "ok"},
        )
    )

    assert len(results) == 2
    assert results[0].error_kind == "path_escape"
    assert results[1].succeeded is True
    assert (tmp_path / "ok").is_dir()


@pytest.mark.skipif(os.name == "nt", reason="symlink creation needs privileges on Windows")
def test_symlink_loop_fails_only_its_block(tmp_path: Path) -> None:
    (tmp_path / "loop").symlink_to("loop")

    results = _interpreter(tmp_path).run_round(
        _reply(
            {"type": "create_file", "path": "loop/x"},
            {"type": "create_folder", "path": "ok"},
        )
    )

    assert len(results) == 2
    assert results[0].succeeded is False
    assert results[0].error_kind in {"path_escape", "io_failure"}
    assert results[1].succeeded is True
    assert (tmp_path / "ok").is_dir()


def test_nul_byte_in_command_is_denied_and_never_spawned(tmp_path: Path) -> None:
    shell = FakeShell()

    results = _interpreter(tmp_path, shell).run_round(
        _reply(
            {"type": "execute_command", "command": "echo a\x00b"},
            {"type": "create_folder", "path": "ok"},
        )
    )

    assert [result.error_kind for result in results] == ["denied", None]
    assert shell.calls == []


def test_create_file_on_existing_directory_fails(tmp_path: Path) -> None:
    (tmp_path / "pkg").mkdir()

    result = _interpreter(tmp_path).execute(CreateFile(path="pkg"))

    assert result.succeeded is False
    assert result.error_kind == "io_failure"
    assert "not a regular file" in (result.error_detail or "")


def test_execute_command_passes_output_cap_and_reports_discarded_bytes(tmp_path: Path) -> None:
    class CappedShell(FakeShell):
        def execute(self, command: str, **kwargs: object) -> CommandResult:
            self.caps = kwargs.get("max_output_chars")
            return CommandResult(
                command=command,
                shell=self.name,
                returncode=0,
                stdout="y\n" * 20,
                stderr="",
                discarded_bytes=5000,
            )

    shell = CappedShell()

    result = _interpreter(tmp_path, shell, max_output_chars=40).execute(
        ExecuteCommand(command_line="yes")
    )

    assert shell.caps == 40
    assert result.succeeded is True
    assert result.output.endswith("... [discarded 5000 bytes]")
