"""
Grok Adapter
============

xAI's Grok models through their OpenAI-compatible endpoint, using the
tools protocol:

- The catalog goes out as `tools` entries of type "function"
- The model may return several tool_calls per response, each with an id
- Tool results go back as role "tool" messages carrying tool_call_id

Grok does not receive image attachments.
"""

import json
from typing import Any

from atelier.messages import ASSISTANT, TOOL, USER, Message, TextBlock, ToolUseBlock
from atelier.providers.openai_provider import OpenAICompatibleAdapter, new_call_id, parse_arguments
from atelier.tools import ToolDefinition

XAI_BASE_URL = "https://api.x.ai/v1"


class GrokAdapter(OpenAICompatibleAdapter):
    """Adapter for Grok (tools protocol)."""

    provider_id = "grok"
    supports_images = False
    base_url = XAI_BASE_URL

    def _tool_params(self, tools: list[ToolDefinition]) -> dict[str, Any]:
        return {
            "tools": [t.to_openai_tool() for t in tools],
            "tool_choice": "auto",
        }

    def _to_wire(self, messages: list[Message], system_prompt: str) -> list[dict]:
        wire: list[dict] = [{"role": "system", "content": system_prompt}]
        for message in messages:
            if message.role == USER:
                wire.append({"role": "user", "content": message.text()})

            elif message.role == ASSISTANT:
                entry: dict[str, Any] = {"role": "assistant", "content": message.text() or None}
                calls = message.tool_uses()
                if calls:
                    entry["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.input)},
                        }
                        for call in calls
                    ]
                elif entry["content"] is None:
                    entry["content"] = ""
                wire.append(entry)

            elif message.role == TOOL:
                for block in message.tool_results():
                    wire.append({
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": block.content,
                    })
        return wire

    def _parse_message(self, message: Any) -> list[TextBlock | ToolUseBlock]:
        blocks: list[TextBlock | ToolUseBlock] = []
        if message.content:
            blocks.append(TextBlock(message.content))
        for call in getattr(message, "tool_calls", None) or []:
            function = call.function
            blocks.append(ToolUseBlock(
                id=call.id or new_call_id(),
                name=function.name,
                input=parse_arguments(function.arguments),
            ))
        return blocks
