"""LLM client and response-parsing helpers for generation steps.

This module provides:
- LLMClient: thin wrapper around LiteLLM's ``acompletion``. Failures are
  surfaced to the caller unchanged; there is no retry or backoff.
- MockLLMClient: queued or computed responses for tests and offline mode
- strip_code_fences: remove markdown fences from model output
- extract_json_from_response: tolerant JSON object extraction
"""

import json
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from litellm import ModelResponse, acompletion

logger = structlog.get_logger()

DEFAULT_MODEL = "deepseek/deepseek-chat"


@dataclass
class LLMResponse:
    """Structured response from an LLM call.

    Attributes:
        content: The text content of the response
        model: The model that produced it
        finish_reason: Why the model stopped (stop, length, etc.)
        input_tokens: Prompt token count reported by the provider
        output_tokens: Completion token count reported by the provider
        latency_ms: Wall-clock latency of the request
        raw_response: The original ModelResponse from LiteLLM
    """

    content: str
    model: str
    finish_reason: str = "stop"
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    raw_response: ModelResponse | None = field(default=None, repr=False)


class LLMClient:
    """LLM collaborator backed by LiteLLM.

    Attributes:
        default_model: Model used when a call does not name one
        request_timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        default_model: str | None = None,
        request_timeout: float = 120.0,
    ) -> None:
        self.default_model = default_model or DEFAULT_MODEL
        self.request_timeout = request_timeout

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        temperature: float = 0.7,
    ) -> str:
        """Run a system + user prompt pair and return the response text."""
        response = await self.call(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=model,
            temperature=temperature,
        )
        return response.content

    async def call(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Make a single chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to self.default_model)
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with content and usage

        Raises:
            Exception: Whatever LiteLLM raises; callers decide how to wrap it.
        """
        model = model or self.default_model
        start_time = time.time()

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "timeout": self.request_timeout,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(
                "llm_call_failed",
                model=model,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        llm_response = self._parse_response(response, model, latency_ms)
        logger.info(
            "llm_call_complete",
            model=model,
            input_tokens=llm_response.input_tokens,
            output_tokens=llm_response.output_tokens,
            latency_ms=latency_ms,
        )
        return llm_response

    def _parse_response(
        self,
        response: ModelResponse,
        model: str,
        latency_ms: int,
    ) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=extract_text_content(choice.message.content),
            model=model,
            finish_reason=choice.finish_reason or "unknown",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
            raw_response=response,
        )


Responder = Callable[[list[dict[str, Any]]], str]


class MockLLMClient(LLMClient):
    """LLM client returning queued or computed responses.

    Queued entries are consumed in order; an ``Exception`` entry is raised
    instead of returned. Once the queue is empty the optional ``responder``
    computes a reply from the messages.

    Usage:
        >>> client = MockLLMClient(responses=['{"features": []}', "<div></div>"])
        >>> text = await client.complete("system", "user")
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        responder: Responder | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.responder = responder
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    async def call(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.call_history.append({
            "messages": messages,
            "model": model or self.default_model,
            "temperature": temperature,
        })

        if self._response_index < len(self.responses):
            reply = self.responses[self._response_index]
            self._response_index += 1
        elif self.responder is not None:
            reply = self.responder(messages)
        else:
            raise IndexError("No more mock responses available")

        if isinstance(reply, Exception):
            raise reply

        logger.debug("mock_llm_call", content_preview=reply[:50])
        return LLMResponse(content=reply, model=model or self.default_model)


def extract_text_content(content: Any) -> str:
    """Flatten message content that may be a string or a list of parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return str(content)


_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences (with or without a language tag)."""
    return _FENCE_RE.sub("", text).strip()


def _balanced_objects(text: str) -> list[str]:
    """Find brace-balanced ``{...}`` candidates, ignoring braces inside strings."""
    candidates: list[str] = []
    for start, ch in enumerate(text):
        if ch != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        for end in range(start, len(text)):
            c = text[end]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
            elif c == '"':
                in_string = True
            elif c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    candidates.append(text[start : end + 1])
                    break
    return candidates


def extract_json_from_response(response: str) -> dict[str, Any] | None:
    """Extract a JSON object from an LLM response.

    Tries the fence-stripped response as a whole first, then any balanced
    object embedded in surrounding prose.

    Returns:
        Parsed JSON dict if found, None otherwise
    """

    def try_parse(candidate: str) -> dict[str, Any] | None:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    cleaned = strip_code_fences(response)
    parsed = try_parse(cleaned)
    if parsed is not None:
        return parsed

    for candidate in _balanced_objects(cleaned):
        parsed = try_parse(candidate)
        if parsed is not None:
            return parsed
    return None
