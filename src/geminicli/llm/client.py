"""Thin client for Gemini's generateContent REST endpoint."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Literal
from urllib import parse, request
from urllib.error import HTTPError, URLError

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-thinking-exp-01-21"

PartKind = Literal["text", "code", "result"]
LOGGER = logging.getLogger(__name__)


def default_api_url(model: str) -> str:
    return f"{GEMINI_API_BASE_URL}/{model}:generateContent"


@dataclass(slots=True)
class ReplyPart:
    """One normalized part of a Gemini candidate."""

    kind: PartKind
    text: str
    language: str | None = None
    outcome: str | None = None


@dataclass(slots=True)
class GeminiReply:
    """Normalized model reply, or the reason no usable reply was produced."""

    parts: list[ReplyPart] = field(default_factory=list)
    finish_reason: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if part.kind == "text")

    def render(self) -> str:
        """Render every part, including generated code and execution results."""
        chunks: list[str] = []
        for part in self.parts:
            if part.kind == "code":
                chunks.append(f"```{part.language or ''}\n{part.text}\n```\n")
            elif part.kind == "result":
                chunks.append(f"Execution result: {part.outcome}\nOutput: {part.text}\n")
            else:
                chunks.append(part.text)
        return "".join(chunks)


class GeminiClient:
    """Small HTTP client for single-shot Gemini calls."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_GEMINI_MODEL,
        api_url: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url or default_api_url(model)
        self.timeout = timeout

    def generate(self, prompt: str, *, code_execution: bool = False) -> GeminiReply:
        if not self.api_key:
            return GeminiReply(
                error=(
                    "GEMINI_API_KEY environment variable not set. Please set it with: "
                    "export GEMINI_API_KEY=your_api_key_here"
                )
            )

        payload = self._build_payload(prompt, code_execution=code_execution)
        body = json.dumps(payload).encode("utf-8")
        LOGGER.debug(
            "gemini_request_prepared",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "code_execution": code_execution,
            },
        )

        req = request.Request(
            self._request_url(),
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "gemini_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"API request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            return GeminiReply(error=details)
        except URLError as exc:
            LOGGER.error(
                "gemini_request_transport_error",
                extra={"api_url": self.api_url, "model": self.model, "reason": str(exc.reason)},
            )
            return GeminiReply(error=f"API request transport error: {exc.reason}")
        except TimeoutError:
            LOGGER.error(
                "gemini_request_timeout",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "timeout_seconds": self.timeout,
                },
            )
            return GeminiReply(error=f"API request timed out after {self.timeout:.1f}s")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "gemini_response_parse_error",
                extra={"api_url": self.api_url, "model": self.model, "error": str(exc)},
            )
            return GeminiReply(error=f"API response parsing error: {exc}")

        raw = self._coerce_object_dict(raw_response)
        if raw is None:
            return GeminiReply(error="API response parsing error: expected top-level object")
        reply = self._to_reply(raw)
        if reply.ok:
            LOGGER.info(
                "gemini_reply_received",
                extra={
                    "model": self.model,
                    "parts": len(reply.parts),
                    "finish_reason": reply.finish_reason,
                },
            )
        return reply

    def _request_url(self) -> str:
        separator = "&" if "?" in self.api_url else "?"
        return f"{self.api_url}{separator}{parse.urlencode({'key': self.api_key or ''})}"

    @staticmethod
    def _build_payload(prompt: str, *, code_execution: bool) -> dict[str, object]:
        payload: dict[str, object] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if code_execution:
            payload["tools"] = [{"code_execution": {}}]
        return payload

    @staticmethod
    def _coerce_object_dict(value: object) -> dict[str, object] | None:
        if not isinstance(value, dict):
            return None
        return {str(key): raw_value for key, raw_value in value.items()}

    @staticmethod
    def _field(payload: dict[str, object], camel: str, snake: str) -> object:
        if camel in payload:
            return payload[camel]
        return payload.get(snake)

    @classmethod
    def _to_reply(cls, payload: dict[str, object]) -> GeminiReply:
        feedback = cls._coerce_object_dict(cls._field(payload, "promptFeedback", "prompt_feedback"))
        if feedback is not None:
            block_reason = cls._field(feedback, "blockReason", "block_reason")
            if isinstance(block_reason, str) and block_reason:
                LOGGER.error("gemini_prompt_blocked", extra={"block_reason": block_reason})
                return GeminiReply(error=f"Request was blocked: {block_reason}")

        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return GeminiReply(error="No candidates received from Gemini API")

        candidate = cls._coerce_object_dict(candidates[0]) or {}
        finish_reason = cls._field(candidate, "finishReason", "finish_reason")
        if not isinstance(finish_reason, str):
            finish_reason = None
        elif finish_reason != "STOP":
            LOGGER.warning("gemini_reply_cut_off", extra={"finish_reason": finish_reason})

        content = cls._coerce_object_dict(candidate.get("content")) or {}
        raw_parts = content.get("parts")
        parts = [
            part
            for part in (
                cls._to_part(item) for item in (raw_parts if isinstance(raw_parts, list) else [])
            )
            if part is not None
        ]
        if not parts:
            return GeminiReply(finish_reason=finish_reason, error="Empty response from Gemini")
        return GeminiReply(parts=parts, finish_reason=finish_reason)

    @classmethod
    def _to_part(cls, item: object) -> ReplyPart | None:
        part = cls._coerce_object_dict(item)
        if part is None:
            return None

        code = cls._coerce_object_dict(cls._field(part, "executableCode", "executable_code"))
        if code is not None:
            language = code.get("language")
            return ReplyPart(
                kind="code",
                text=str(code.get("code", "")),
                language=str(language).lower() if isinstance(language, str) else None,
            )

        result = cls._coerce_object_dict(
            cls._field(part, "codeExecutionResult", "code_execution_result")
        )
        if result is not None:
            outcome = result.get("outcome")
            return ReplyPart(
                kind="result",
                text=str(result.get("output", "")),
                outcome=str(outcome) if outcome is not None else None,
            )

        text = part.get("text")
        if isinstance(text, str):
            return ReplyPart(kind="text", text=text)
        return None

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
