"""Extract command blocks from free-form model replies.

A reply carries one or more JSON envelopes, either bare or inside markdown
fences, surrounded by arbitrary prose::

    {"commands": [{"type": "create_folder", "path": "app"}],
     "user_message": "Created the app folder.",
     "done": true}

Every element of ``commands`` is a command block. Blocks become actions or
parse errors, one entry per block, in reply order.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from typing import cast

from geminicli.interpreter.errors import MalformedBlockError, ParseError, UnknownKindError
from geminicli.interpreter.models import (
    Action,
    CreateFile,
    CreateFolder,
    ExecuteCommand,
    ParsedReply,
    WriteCodeToFile,
)

LOGGER = logging.getLogger(__name__)

BlockBuilder = Callable[[int, dict[str, object]], Action]

_DECODER = json.JSONDecoder()


def parse_reply(reply: str) -> ParsedReply:
    """Parse every command block found in ``reply``.

    Text outside envelopes is ignored. A reply without envelopes is a plain
    conversational response and yields no blocks.
    """
    envelopes = list(_iter_envelopes(reply))
    if not envelopes:
        LOGGER.debug("reply_without_commands", extra={"reply_chars": len(reply)})
        return ParsedReply(blocks=[], user_message=reply.strip(), done=True)

    blocks: list[Action | ParseError] = []
    messages: list[str] = []
    done = True
    index = 0
    for envelope in envelopes:
        commands = cast(list[object], envelope["commands"])
        for raw_block in commands:
            try:
                blocks.append(parse_block(index, raw_block))
            except ParseError as exc:
                LOGGER.warning(
                    "command_block_rejected",
                    extra={"index": index, "error_kind": exc.kind, "detail": exc.detail},
                )
                blocks.append(exc)
            index += 1

        message = envelope.get("user_message")
        if isinstance(message, str) and message.strip():
            messages.append(message.strip())
        if envelope.get("done") is False:
            done = False

    LOGGER.debug(
        "reply_parsed",
        extra={"envelopes": len(envelopes), "blocks": len(blocks), "done": done},
    )
    return ParsedReply(blocks=blocks, user_message="\n\n".join(messages), done=done)


def parse_block(index: int, raw_block: object) -> Action:
    """Turn a single decoded command block into an action."""
    if not isinstance(raw_block, dict):
        raise MalformedBlockError(
            f"command block #{index} is not an object", index=index, block=raw_block
        )
    block = {str(key): value for key, value in raw_block.items()}

    kind = block.get("type")
    if not isinstance(kind, str) or not kind.strip():
        raise MalformedBlockError(
            f"command block #{index} is missing its type", index=index, block=block
        )

    builder = _BUILDERS.get(kind.strip().lower())
    if builder is None:
        raise UnknownKindError(
            f"command block #{index} has unknown type {kind!r}", index=index, block=block
        )
    return builder(index, block)


def _iter_envelopes(reply: str) -> Iterator[dict[str, object]]:
    position = reply.find("{")
    while position != -1:
        try:
            value, end = _DECODER.raw_decode(reply, position)
        except json.JSONDecodeError:
            position = reply.find("{", position + 1)
            continue

        if isinstance(value, dict) and isinstance(value.get("commands"), list):
            yield value
        position = reply.find("{", end)


def _required_string(
    block: dict[str, object],
    index: int,
    *keys: str,
    allow_empty: bool = False,
) -> str:
    for key in keys:
        if key not in block:
            continue
        value = block[key]
        if not isinstance(value, str):
            raise MalformedBlockError(
                f"command block #{index} has a non-string {key!r}", index=index, block=block
            )
        if not allow_empty and not value.strip():
            raise MalformedBlockError(
                f"command block #{index} has an empty {key!r}", index=index, block=block
            )
        return value

    names = " or ".join(repr(key) for key in keys)
    raise MalformedBlockError(
        f"{block.get('type')} block #{index} is missing {names}", index=index, block=block
    )


def _build_create_folder(index: int, block: dict[str, object]) -> Action:
    return CreateFolder(path=_required_string(block, index, "path").strip())


def _build_create_file(index: int, block: dict[str, object]) -> Action:
    return CreateFile(path=_required_string(block, index, "path").strip())


def _build_write_code_to_file(index: int, block: dict[str, object]) -> Action:
    path = _required_string(block, index, "path").strip()
    content = _required_string(block, index, "code", "content", allow_empty=True)
    return WriteCodeToFile(path=path, content=content)


def _build_execute_command(index: int, block: dict[str, object]) -> Action:
    command = _required_string(block, index, "command").strip()
    args = block.get("args")
    if args is None:
        return ExecuteCommand(command_line=command)
    if not isinstance(args, list) or not all(isinstance(arg, str) for arg in args):
        raise MalformedBlockError(
            f"execute_command block #{index} has non-string args", index=index, block=block
        )
    return ExecuteCommand(command_line=" ".join([command, *args]).strip())


_BUILDERS: dict[str, BlockBuilder] = {
    CreateFolder.kind: _build_create_folder,
    CreateFile.kind: _build_create_file,
    WriteCodeToFile.kind: _build_write_code_to_file,
    ExecuteCommand.kind: _build_execute_command,
}
