"""Session history shared across feedback rounds."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from geminicli.interpreter.models import ExecutionResult


@dataclass(slots=True)
class RoundRecord:
    """Prompt sent, reply received and results produced in one round."""

    prompt: str
    reply: str
    results: list[ExecutionResult] = field(default_factory=list)
    user_message: str = ""
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None or any(not result.succeeded for result in self.results)


@dataclass(slots=True)
class Session:
    """Ordered round history owned by the caller for one process run."""

    history: list[RoundRecord] = field(default_factory=list)

    def append(self, record: RoundRecord) -> None:
        self.history.append(record)

    @property
    def last_round(self) -> RoundRecord | None:
        return self.history[-1] if self.history else None

    def feedback(self) -> str:
        """Serialize the results of the latest round that produced any.

        Rounds without results (plain replies, API errors) leave the previous
        feedback in place.
        """
        for record in reversed(self.history):
            if record.results:
                return json.dumps(
                    [feedback_entry(result) for result in record.results], ensure_ascii=False
                )
        return ""


def feedback_entry(result: ExecutionResult) -> dict[str, object]:
    if result.succeeded:
        message = result.output or "ok"
    else:
        message = f"[{result.error_kind}] {result.error_detail or ''}".strip()
        if result.output:
            message = f"{message}\n{result.output}"
    return {
        "command_type": result.command_type,
        "command_details": result.command_details,
        "status": "success" if result.succeeded else "failure",
        "message": message,
    }
