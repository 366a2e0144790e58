"""Feedback loop: prompt, execute the reply's commands, report back."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from geminicli.agent.models import RoundRecord, Session, feedback_entry
from geminicli.interpreter import CommandInterpreter
from geminicli.llm.client import GeminiReply
from geminicli.llm.prompts import FOLLOW_UP_QUERY, build_chat_prompt

LOGGER = logging.getLogger(__name__)


class ReplyGenerator(Protocol):
    def generate(self, prompt: str, *, code_execution: bool = False) -> GeminiReply: ...


class ChatLoop:
    """Runs prompt/execute/feedback rounds until the model is done."""

    def __init__(
        self,
        *,
        client: ReplyGenerator,
        interpreter: CommandInterpreter,
        log_dir: str | Path,
        system_info: str,
        max_rounds: int = 5,
    ) -> None:
        self.client = client
        self.interpreter = interpreter
        self.log_dir = Path(log_dir)
        self.system_info = system_info
        self.max_rounds = max_rounds

    def run(self, query: str, session: Session) -> list[RoundRecord]:
        """Run rounds for ``query``, appending each one to ``session``."""
        rounds: list[RoundRecord] = []
        current_query = query
        for round_index in range(self.max_rounds):
            prompt = build_chat_prompt(
                query=current_query,
                system_info=self.system_info,
                feedback=session.feedback(),
            )
            reply = self.client.generate(prompt)
            if not reply.ok:
                record = RoundRecord(prompt=prompt, reply="", error=reply.error)
                session.append(record)
                rounds.append(record)
                self._append_log(record, query=query, round_index=round_index + 1)
                break

            parsed = self.interpreter.parse(reply.text)
            results = self.interpreter.run_parsed(parsed)
            record = RoundRecord(
                prompt=prompt,
                reply=reply.text,
                results=results,
                user_message=parsed.user_message,
            )
            session.append(record)
            rounds.append(record)
            self._append_log(record, query=query, round_index=round_index + 1)

            if not results:
                break
            if parsed.done and not record.failed:
                break
            current_query = FOLLOW_UP_QUERY.format(query=query)
        else:
            LOGGER.warning(
                "round_budget_exhausted",
                extra={"query": query, "max_rounds": self.max_rounds},
            )

        return rounds

    def _append_log(self, record: RoundRecord, *, query: str, round_index: int) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        day_file = self.log_dir / f"session-{datetime.now(timezone.utc).date().isoformat()}.log"
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "query": query,
            "model": getattr(self.client, "model", None),
            "shell": self.interpreter.shell.name,
            "sandbox_root": str(self.interpreter.sandbox_root),
            "round_index": round_index,
            "prompt": record.prompt,
            "reply": record.reply,
            "user_message": record.user_message,
            "error": record.error,
            "results": [
                {**feedback_entry(result), "error_kind": result.error_kind}
                for result in record.results
            ],
        }
        with day_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")
