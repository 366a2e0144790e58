"""Parse, validate and execute the command blocks of one model reply."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from geminicli.interpreter.errors import ErrorKind, ParseError, ValidationError
from geminicli.interpreter.executor import DEFAULT_MAX_OUTPUT_CHARS, ActionExecutor
from geminicli.interpreter.models import Action, ExecutionResult, ParsedReply
from geminicli.interpreter.parser import parse_reply
from geminicli.interpreter.policy import CommandPolicy
from geminicli.interpreter.validator import validate
from geminicli.shell import ShellAdapter

LOGGER = logging.getLogger(__name__)

ShouldCancel = Callable[[], bool]


class CommandInterpreter:
    """Runs rounds of model-proposed actions inside one sandbox root.

    Blocks execute one at a time in reply order. Every block yields exactly
    one result, so a bad block never hides the outcome of its neighbours.
    """

    def __init__(
        self,
        *,
        sandbox_root: str | Path,
        shell: ShellAdapter,
        policy: CommandPolicy | None = None,
        command_timeout: float = 60.0,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        self.sandbox_root = Path(sandbox_root).resolve()
        self.policy = policy if policy is not None else CommandPolicy.default()
        self.executor = ActionExecutor(
            sandbox_root=self.sandbox_root,
            shell=shell,
            command_timeout=command_timeout,
            max_output_chars=max_output_chars,
        )
        self._round_lock = threading.Lock()

    @property
    def shell(self) -> ShellAdapter:
        return self.executor.shell

    def parse(self, reply: str) -> ParsedReply:
        return parse_reply(reply)

    def validate(self, action: Action) -> Action:
        return validate(action, self.sandbox_root, self.policy)

    def execute(self, action: Action, *, index: int = 0) -> ExecutionResult:
        return self.executor.execute(action, index=index)

    def run_round(
        self, reply: str, *, should_cancel: ShouldCancel | None = None
    ) -> list[ExecutionResult]:
        return self.run_parsed(self.parse(reply), should_cancel=should_cancel)

    def run_parsed(
        self, parsed: ParsedReply, *, should_cancel: ShouldCancel | None = None
    ) -> list[ExecutionResult]:
        return self._run_blocks(parsed.blocks, should_cancel=should_cancel)

    def run_actions(
        self, actions: Sequence[Action], *, should_cancel: ShouldCancel | None = None
    ) -> list[ExecutionResult]:
        return self._run_blocks(list(actions), should_cancel=should_cancel)

    def _run_blocks(
        self,
        blocks: Sequence[Action | ParseError],
        *,
        should_cancel: ShouldCancel | None,
    ) -> list[ExecutionResult]:
        if not self._round_lock.acquire(blocking=False):
            msg = f"A round is already running in sandbox {self.sandbox_root}"
            raise RuntimeError(msg)
        try:
            results: list[ExecutionResult] = []
            cancelled = False
            for index, block in enumerate(blocks):
                if isinstance(block, ParseError):
                    results.append(self._failed(None, index, block.kind, block.detail))
                    continue

                try:
                    action = self.validate(block)
                except ValidationError as exc:
                    results.append(self._failed(block, index, exc.kind, exc.detail))
                    continue

                if not cancelled and should_cancel is not None and should_cancel():
                    LOGGER.info("round_cancelled", extra={"index": index})
                    cancelled = True
                if cancelled:
                    results.append(
                        self._failed(action, index, "cancelled", "Round cancelled before execution")
                    )
                    continue

                results.append(self.execute(action, index=index))
        finally:
            self._round_lock.release()

        LOGGER.info(
            "round_finished",
            extra={
                "sandbox_root": str(self.sandbox_root),
                "blocks": len(results),
                "failed": sum(1 for result in results if not result.succeeded),
            },
        )
        return results

    @staticmethod
    def _failed(
        action: Action | None, index: int, kind: ErrorKind, detail: str
    ) -> ExecutionResult:
        return ExecutionResult(
            action=action,
            succeeded=False,
            index=index,
            error_kind=kind,
            error_detail=detail,
        )
