"""OpenRouter LLM client with tool calling, streaming and multi-model fallback."""

import json
import logging
from typing import Any, AsyncIterator

import httpx

from config.settings import settings
from aether.models.command import ReasoningStep, StreamChunk, ToolCall

logger = logging.getLogger(__name__)


class ReasoningBackendError(Exception):
    """The remote model could not produce a reply on any configured model."""


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments. Anything unparsable becomes empty params."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Malformed tool arguments, using empty params: {str(raw)[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenRouterClient:
    """Client for the OpenRouter chat-completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        fallback_models: list[str] | None = None,
        max_tokens: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = settings.openrouter_api_key if api_key is None else api_key
        self._base_url = base_url or settings.openrouter_base_url
        self.model = model or settings.openrouter_default_model
        self.fallback_models = list(
            settings.openrouter_fallback_models if fallback_models is None else fallback_models
        )
        self._max_tokens = max_tokens or settings.ai_max_tokens
        self._client = httpx.AsyncClient(timeout=60.0, transport=transport)
        self._request_count = 0

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key) and self._api_key != "your_openrouter_api_key_here"

    @property
    def request_count(self) -> int:
        return self._request_count

    def _models_to_try(self) -> list[str]:
        return [self.model] + [m for m in self.fallback_models if m != self.model]

    def _headers(self) -> dict[str, str]:
        if not self.is_configured:
            raise ValueError("OpenRouter API key not configured")
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "http://localhost:8000",
            "X-Title": "AETHER AI",
        }

    def _body(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        stream: bool = False,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}] + messages,
            "max_tokens": self._max_tokens,
        }
        if tools:
            body["tools"] = tools
        if stream:
            body["stream"] = True
        return body

    # ------------------------------------------------------------------
    # Buffered
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ReasoningStep:
        """One reasoning step, trying each model in turn."""
        last_error: Exception | None = None
        for m in self._models_to_try():
            try:
                return await self._send_request(m, system_prompt, messages, tools)
            except Exception as e:
                logger.warning(f"Model {m} failed: {e}")
                last_error = e
        raise ReasoningBackendError(f"All LLM models unavailable: {last_error}")

    async def _send_request(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ReasoningStep:
        resp = await self._client.post(
            f"{self._base_url}/chat/completions",
            headers=self._headers(),
            json=self._body(model, system_prompt, messages, tools),
        )
        resp.raise_for_status()
        data = resp.json()
        if data.get("error"):
            raise ReasoningBackendError(str(data["error"]))

        self._request_count += 1
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        tool_calls = [
            ToolCall(
                id=tc.get("id") or f"call_{i}",
                name=(tc.get("function") or {}).get("name", ""),
                arguments=parse_arguments((tc.get("function") or {}).get("arguments")),
            )
            for i, tc in enumerate(message.get("tool_calls") or [])
        ]
        content = message.get("content") or ""
        logger.debug(f"OpenRouter [{model}] response: {content[:100]}... tools={len(tool_calls)}")
        return ReasoningStep(
            text=content,
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason") or ("tool_calls" if tool_calls else "stop"),
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamChunk]:
        """Stream one reasoning step.

        Yields text fragments as they arrive, then each assembled tool call,
        then a single "finish" chunk. Falls back to the next model only if
        nothing has been yielded yet.
        """
        last_error: Exception | None = None
        for m in self._models_to_try():
            started = False
            try:
                async for chunk in self._stream_request(m, system_prompt, messages, tools):
                    started = True
                    yield chunk
                return
            except Exception as e:
                if started:
                    raise ReasoningBackendError(f"Stream from {m} broke off: {e}") from e
                logger.warning(f"Model {m} failed to stream: {e}")
                last_error = e
        raise ReasoningBackendError(f"All LLM models unavailable: {last_error}")

    async def _stream_request(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamChunk]:
        tool_parts: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None

        async with self._client.stream(
            "POST",
            f"{self._base_url}/chat/completions",
            headers=self._headers(),
            json=self._body(model, system_prompt, messages, tools, stream=True),
        ) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                resp.raise_for_status()
            self._request_count += 1

            async for line in resp.aiter_lines():
                line = line.strip()
                # OpenRouter interleaves ": OPENROUTER PROCESSING" keep-alive comments
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if payload == "[DONE]":
                    break
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping unparsable stream line: {payload[:100]}")
                    continue
                if chunk.get("error"):
                    raise ReasoningBackendError(str(chunk["error"]))

                choices = chunk.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                if delta.get("content"):
                    yield StreamChunk(kind="text", text=delta["content"])

                for tc in delta.get("tool_calls") or []:
                    part = tool_parts.setdefault(
                        tc.get("index", 0), {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.get("id"):
                        part["id"] = tc["id"]
                    fn = tc.get("function") or {}
                    if fn.get("name"):
                        part["name"] += fn["name"]
                    if fn.get("arguments"):
                        part["arguments"] += fn["arguments"]

                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        for index in sorted(tool_parts):
            part = tool_parts[index]
            yield StreamChunk(
                kind="tool_call",
                tool_call=ToolCall(
                    id=part["id"] or f"call_{index}",
                    name=part["name"],
                    arguments=parse_arguments(part["arguments"]),
                ),
            )

        yield StreamChunk(
            kind="finish",
            finish_reason=finish_reason or ("tool_calls" if tool_parts else "stop"),
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def ping(self, timeout: float = 5.0) -> None:
        """Minimal request used by the health probe. Raises on any failure."""
        resp = await self._client.post(
            f"{self._base_url}/chat/completions",
            headers=self._headers(),
            json={
                "model": self.model,
                "messages": [{"role": "user", "content": "ping"}],
                "max_tokens": 1,
            },
            timeout=timeout,
        )
        resp.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()
