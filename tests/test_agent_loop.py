from __future__ import annotations

import json

from geminicli.agent.loop import ChatLoop
from geminicli.agent.models import RoundRecord, Session, feedback_entry
from geminicli.interpreter import CommandInterpreter, CreateFolder, ExecutionResult
from geminicli.llm.client import GeminiReply, ReplyPart
from geminicli.shell import CommandResult


class FakeShell:
    name = "fake"

    def __init__(self) -> None:
        self.commands: list[str] = []

    def execute(
        self, command: str, *, cwd=None, timeout=None, max_output_chars=None
    ) -> CommandResult:
        self.commands.append(command)
        if command.startswith("python"):
            return CommandResult(
                command=command,
                shell=self.name,
                returncode=1,
                stdout="",
                stderr="ModuleNotFoundError: No module named 'flask'",
            )
        return CommandResult(command=command, shell=self.name, returncode=0, stdout="ok", stderr="")


class ScriptedClient:
    model = "gemini-test"

    def __init__(self, *replies: GeminiReply) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    def generate(self, prompt: str, *, code_execution: bool = False) -> GeminiReply:
        self.prompts.append(prompt)
        return self.replies.pop(0)


def _text_reply(payload: dict[str, object]) -> GeminiReply:
    return GeminiReply(
        parts=[ReplyPart(kind="text", text=json.dumps(payload))], finish_reason="STOP"
    )


def _loop(tmp_path, client: ScriptedClient, *, max_rounds: int = 5) -> ChatLoop:
    sandbox = tmp_path / "sandbox"
    sandbox.mkdir(exist_ok=True)
    return ChatLoop(
        client=client,
        interpreter=CommandInterpreter(sandbox_root=sandbox, shell=FakeShell()),
        log_dir=tmp_path / "logs",
        system_info="OS: Linux",
        max_rounds=max_rounds,
    )


def _read_log(tmp_path) -> list[dict[str, object]]:
    log_files = list((tmp_path / "logs").glob("session-*.log"))
    assert len(log_files) == 1
    return [json.loads(line) for line in log_files[0].read_text(encoding="utf-8").splitlines()]


def test_loop_stops_after_single_successful_round(tmp_path) -> None:
    client = ScriptedClient(
        _text_reply(
            {
                "commands": [{"type": "create_folder", "path": "app"}],
                "user_message": "Created app.",
                "done": True,
            }
        )
    )
    session = Session()

    rounds = _loop(tmp_path, client).run("make an app folder", session)

    assert len(rounds) == 1
    assert rounds[0].user_message == "Created app."
    assert rounds[0].results[0].succeeded is True
    assert (tmp_path / "sandbox" / "app").is_dir()
    assert session.history == rounds
    assert "User Query:\nmake an app folder" in client.prompts[0]
    assert "System Information:\nOS: Linux" in client.prompts[0]


def test_loop_feeds_failures_back_into_next_prompt(tmp_path) -> None:
    client = ScriptedClient(
        _text_reply(
            {
                "commands": [{"type": "execute_command", "command": "python app.py"}],
                "user_message": "Running.",
                "done": True,
            }
        ),
        _text_reply(
            {
                "commands": [{"type": "execute_command", "command": "pip install flask"}],
                "user_message": "Installed flask.",
                "done": True,
            }
        ),
    )

    rounds = _loop(tmp_path, client).run("run my app", Session())

    assert len(rounds) == 2
    assert rounds[0].failed is True
    assert rounds[1].failed is False
    second_prompt = client.prompts[1]
    assert "ModuleNotFoundError" in second_prompt
    assert '"status": "failure"' in second_prompt
    assert "run my app" in second_prompt


def test_loop_continues_while_model_is_not_done(tmp_path) -> None:
    client = ScriptedClient(
        _text_reply(
            {"commands": [{"type": "execute_command", "command": "ls"}], "done": False}
        ),
        _text_reply({"commands": [], "user_message": "All files listed."}),
    )

    rounds = _loop(tmp_path, client).run("list files", Session())

    assert len(rounds) == 2
    assert rounds[1].results == []
    assert rounds[1].user_message == "All files listed."


def test_loop_respects_round_budget(tmp_path) -> None:
    failing = {"commands": [{"type": "execute_command", "command": "python x.py"}]}
    client = ScriptedClient(*(_text_reply(failing) for _ in range(3)))

    rounds = _loop(tmp_path, client, max_rounds=2).run("run x", Session())

    assert len(rounds) == 2
    assert len(client.replies) == 1


def test_loop_records_client_error_and_stops(tmp_path) -> None:
    client = ScriptedClient(GeminiReply(error="API request failed with HTTP 500: boom"))
    session = Session()

    rounds = _loop(tmp_path, client).run("hello", session)

    assert len(rounds) == 1
    assert rounds[0].error == "API request failed with HTTP 500: boom"
    assert rounds[0].failed is True
    assert session.feedback() == ""


def test_loop_appends_jsonl_log_per_round(tmp_path) -> None:
    client = ScriptedClient(
        _text_reply(
            {
                "commands": [
                    {"type": "create_folder", "path": "a"},
                    {"type": "write_code_to_file", "path": "../escape.txt", "code": "x"},
                ],
                "user_message": "Tried.",
            }
        ),
        _text_reply({"commands": [], "user_message": "Gave up."}),
    )

    _loop(tmp_path, client).run("make files", Session())

    entries = _read_log(tmp_path)
    assert [entry["round_index"] for entry in entries] == [1, 2]
    first = entries[0]
    assert first["log_version"] == 1
    assert first["query"] == "make files"
    assert first["model"] == "gemini-test"
    assert first["shell"] == "fake"
    assert [result["status"] for result in first["results"]] == ["success", "failure"]
    assert first["results"][1]["error_kind"] == "path_escape"


def test_session_feedback_describes_last_round_only() -> None:
    session = Session()
    assert session.feedback() == ""

    session.append(
        RoundRecord(
            prompt="p1",
            reply="r1",
            results=[ExecutionResult(action=CreateFolder(path="old"), succeeded=True)],
        )
    )
    session.append(
        RoundRecord(
            prompt="p2",
            reply="r2",
            results=[
                ExecutionResult(
                    action=None,
                    succeeded=False,
                    index=0,
                    error_kind="malformed_block",
                    error_detail="missing 'path'",
                )
            ],
        )
    )

    feedback = json.loads(session.feedback())
    assert feedback == [
        {
            "command_type": "unparsed_block",
            "command_details": "block #0",
            "status": "failure",
            "message": "[malformed_block] missing 'path'",
        }
    ]


def test_session_feedback_skips_rounds_without_results() -> None:
    session = Session()
    session.append(
        RoundRecord(
            prompt="p1",
            reply="r1",
            results=[
                ExecutionResult(
                    action=CreateFolder(path="src"), succeeded=True, output="Created folder: src"
                )
            ],
        )
    )
    session.append(RoundRecord(prompt="p2", reply="just text"))
    session.append(RoundRecord(prompt="p3", reply="", error="API request transport error: x"))

    feedback = json.loads(session.feedback())

    assert [entry["command_details"] for entry in feedback] == ["path: src"]
    assert feedback[0]["message"] == "Created folder: src"


def test_feedback_entry_uses_output_for_success() -> None:
    entry = feedback_entry(
        ExecutionResult(
            action=CreateFolder(path="src"), succeeded=True, output="Created folder: src"
        )
    )

    assert entry["status"] == "success"
    assert entry["command_type"] == "create_folder"
    assert entry["message"] == "Created folder: src"
