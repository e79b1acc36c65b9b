"""
Anthropic Adapter
=================

Claude models through the Messages API.

Translation rules:
- The system prompt goes in the top-level `system` parameter
- Tool results are sent as tool_result blocks inside a user turn; results
  for one assistant turn are merged into a single user message
- Consecutive same-role turns are merged (the API requires alternation),
  and leading assistant turns left over from history trimming are dropped
- Tool catalogs are sent as {name, description, input_schema}
- Streaming accumulates text_delta events
"""

import re
from typing import Any

import anthropic

from atelier.messages import (
    ASSISTANT,
    TOOL,
    USER,
    ImageBlock,
    Message,
    ProviderResponse,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from atelier.providers.base import ProviderAdapter, TextCallback, classify_by_message, maybe_await
from atelier.providers.errors import ModelAccessError, ProviderAPIError, ProviderError, RateLimitError
from atelier.tools import ToolDefinition

_DATA_URL = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.*)$", re.DOTALL)


def image_to_anthropic(block: ImageBlock) -> dict | None:
    """Turn a base64 data URL into an image source block (None if unusable)."""
    match = _DATA_URL.match(block.data_url or "")
    if not match:
        return None
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": block.mime or match.group("mime"),
            "data": match.group("data"),
        },
    }


def _block_to_anthropic(block: Any) -> dict | None:
    if isinstance(block, TextBlock):
        # The API rejects empty text blocks
        return {"type": "text", "text": block.text} if block.text else None
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
            "is_error": block.is_error,
        }
    if isinstance(block, ImageBlock):
        return image_to_anthropic(block)
    return None


def to_anthropic_messages(messages: list[Message]) -> list[dict]:
    """
    Convert neutral messages to the Messages API shape.

    System display rows are skipped; tool rows become user turns.
    """
    converted: list[dict] = []
    for message in messages:
        if message.role == TOOL:
            role = USER
        elif message.role in (USER, ASSISTANT):
            role = message.role
        else:
            continue

        blocks = [b for b in (_block_to_anthropic(x) for x in message.blocks()) if b]
        if not blocks:
            continue

        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    # The conversation must open with a user turn
    while converted and converted[0]["role"] != USER:
        converted.pop(0)
    return converted


class AnthropicAdapter(ProviderAdapter):
    """
    Adapter for Claude.

    Example:
        adapter = AnthropicAdapter(api_key=config.keys.claude)
        response = await adapter.send(messages, system_prompt, tools=AGENT_TOOLS)
    """

    provider_id = "claude"
    supports_images = False
    natural_stop_reasons = ("end_turn", "stop_sequence")

    def _build_client(self, api_key: str) -> anthropic.AsyncAnthropic:
        return anthropic.AsyncAnthropic(api_key=api_key, timeout=self.timeout, max_retries=0)

    async def _create(
        self,
        messages: list[Message],
        system_prompt: str,
        tools: list[ToolDefinition]
    ) -> ProviderResponse:
        params: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": to_anthropic_messages(messages),
        }
        if tools:
            params["tools"] = [t.to_anthropic_tool() for t in tools]

        response = await self.client.messages.create(**params)

        blocks: list[TextBlock | ToolUseBlock] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(TextBlock(block.text))
            elif block.type == "tool_use":
                blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))

        return self._response(blocks, response.stop_reason)

    async def _stream(
        self,
        messages: list[Message],
        system_prompt: str,
        on_text: TextCallback | None
    ) -> ProviderResponse:
        text = ""
        stop_reason = None

        async with self.client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system_prompt,
            messages=to_anthropic_messages(messages),
        ) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and getattr(event.delta, "type", None) == "text_delta":
                    delta = event.delta.text
                    text += delta
                    if on_text is not None:
                        await maybe_await(on_text(delta, text))
                elif event.type == "message_delta":
                    stop_reason = getattr(event.delta, "stop_reason", None) or stop_reason

        return self._response([TextBlock(text)] if text else [], stop_reason)

    async def _complete_text(self, prompt: str, system: str, max_tokens: int) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(b.text for b in response.content if b.type == "text")

    def _classify(self, exc: BaseException) -> ProviderError:
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError(str(exc), self.provider_id)
        if isinstance(exc, (anthropic.PermissionDeniedError, anthropic.NotFoundError)):
            return ModelAccessError(str(exc), self.provider_id, self.model)
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderAPIError(f"Request timed out: {exc}", self.provider_id)
        return classify_by_message(exc, self.provider_id, self.model)
