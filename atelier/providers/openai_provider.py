"""
OpenAI Adapter
==============

GPT models through Chat Completions, using the function-calling protocol:

- The catalog goes out as `functions` (schema re-keyed to `parameters`)
  with function_call="auto"
- The model returns at most one function_call per response; it is given a
  synthetic call id so it can flow through the neutral history
- Tool results go back as role "function" messages keyed by tool name
- A response with no function_call is text-only and ends the turn

Chat-mode user turns may carry up to four images, sent as image_url parts.

OpenAICompatibleAdapter holds what this adapter shares with other vendors
that speak the Chat Completions dialect (see grok_provider).
"""

import json
import uuid
from typing import Any

import openai

from atelier.messages import (
    ASSISTANT,
    TOOL,
    USER,
    Message,
    ProviderResponse,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from atelier.providers.base import ProviderAdapter, TextCallback, classify_by_message, maybe_await
from atelier.providers.errors import ModelAccessError, ProviderAPIError, ProviderError, RateLimitError
from atelier.tools import ToolDefinition


def new_call_id() -> str:
    """Synthetic id for vendors that do not assign call ids."""
    return f"call_{uuid.uuid4().hex[:12]}"


def parse_arguments(raw: str | None) -> dict[str, Any]:
    """
    Decode a JSON arguments string.

    Malformed or non-object arguments become {} so schema validation
    reports the problem back to the model.
    """
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def user_content(message: Message) -> str | list[dict]:
    """Plain text, or multimodal parts when the turn carries images."""
    images = message.images()
    if not images:
        return message.text()
    parts: list[dict] = []
    text = message.text()
    if text:
        parts.append({"type": "text", "text": text})
    for image in images:
        parts.append({"type": "image_url", "image_url": {"url": image.data_url}})
    return parts


class OpenAICompatibleAdapter(ProviderAdapter):
    """Shared plumbing for Chat Completions vendors."""

    natural_stop_reasons = ("stop",)
    base_url: str | None = None

    def _build_client(self, api_key: str) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _to_wire(self, messages: list[Message], system_prompt: str) -> list[dict]:
        raise NotImplementedError

    def _parse_message(self, message: Any) -> list[TextBlock | ToolUseBlock]:
        raise NotImplementedError

    def _tool_params(self, tools: list[ToolDefinition]) -> dict[str, Any]:
        raise NotImplementedError

    async def _create(
        self,
        messages: list[Message],
        system_prompt: str,
        tools: list[ToolDefinition]
    ) -> ProviderResponse:
        params: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._to_wire(messages, system_prompt),
        }
        if tools:
            params.update(self._tool_params(tools))

        response = await self.client.chat.completions.create(**params)
        if not response.choices:
            raise ProviderAPIError("Empty response from provider", self.provider_id)

        choice = response.choices[0]
        return self._response(self._parse_message(choice.message), choice.finish_reason)

    async def _stream(
        self,
        messages: list[Message],
        system_prompt: str,
        on_text: TextCallback | None
    ) -> ProviderResponse:
        text = ""
        finish_reason = None

        stream = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=self._to_wire(messages, system_prompt),
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta.content if choice.delta else None
            if delta:
                text += delta
                if on_text is not None:
                    await maybe_await(on_text(delta, text))
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        return self._response([TextBlock(text)] if text else [], finish_reason)

    async def _complete_text(self, prompt: str, system: str, max_tokens: int) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def _classify(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, openai.RateLimitError):
            return RateLimitError(str(exc), self.provider_id)
        if isinstance(exc, (openai.PermissionDeniedError, openai.NotFoundError)):
            return ModelAccessError(str(exc), self.provider_id, self.model)
        if isinstance(exc, openai.APITimeoutError):
            return ProviderAPIError(f"Request timed out: {exc}", self.provider_id)
        return classify_by_message(exc, self.provider_id, self.model)


class OpenAIAdapter(OpenAICompatibleAdapter):
    """
    Adapter for GPT models (function-calling protocol).

    Example:
        adapter = OpenAIAdapter(api_key=config.keys.openai, model="gpt-4o")
        response = await adapter.send(messages, system_prompt, tools=AGENT_TOOLS)
        call = response.tool_calls[0]   # at most one
    """

    provider_id = "openai"
    supports_images = True

    def _tool_params(self, tools: list[ToolDefinition]) -> dict[str, Any]:
        return {
            "functions": [t.to_openai_function() for t in tools],
            "function_call": "auto",
        }

    def _to_wire(self, messages: list[Message], system_prompt: str) -> list[dict]:
        """
        Convert neutral messages to the function-calling shape.

        The protocol has no call ids: each function result must directly
        follow the assistant message that requested it. An assistant turn
        holding several calls (history written by another vendor) is split
        into one function_call message per call, each followed by its result.
        """
        results: dict[str, ToolResultBlock] = {}
        for message in messages:
            for block in message.tool_results():
                results[block.tool_use_id] = block

        wire: list[dict] = [{"role": "system", "content": system_prompt}]
        emitted: set[str] = set()

        for message in messages:
            if message.role == USER:
                wire.append({"role": "user", "content": user_content(message)})

            elif message.role == ASSISTANT:
                calls = message.tool_uses()
                text = message.text()
                if not calls:
                    wire.append({"role": "assistant", "content": text})
                    continue
                for index, call in enumerate(calls):
                    wire.append({
                        "role": "assistant",
                        "content": (text or None) if index == 0 else None,
                        "function_call": {"name": call.name, "arguments": json.dumps(call.input)},
                    })
                    result = results.get(call.id)
                    if result is not None:
                        wire.append(self._function_message(call.name, result))
                        emitted.add(call.id)

            elif message.role == TOOL:
                for block in message.tool_results():
                    if block.tool_use_id in emitted:
                        continue
                    wire.append(self._function_message(block.tool_name or message.tool_name or "tool", block))

        return wire

    @staticmethod
    def _function_message(name: str, result: ToolResultBlock) -> dict:
        return {"role": "function", "name": name, "content": result.content}

    def _parse_message(self, message: Any) -> list[TextBlock | ToolUseBlock]:
        blocks: list[TextBlock | ToolUseBlock] = []
        if message.content:
            blocks.append(TextBlock(message.content))
        function_call = getattr(message, "function_call", None)
        if function_call is not None and function_call.name:
            blocks.append(ToolUseBlock(
                id=new_call_id(),
                name=function_call.name,
                input=parse_arguments(function_call.arguments),
            ))
        return blocks

