"""
Tool Registry
=============

Static catalog of the tools the agent may call.

Each tool has a unique name, a description shown to the model, and a JSON
Schema describing its input object. Definitions are immutable; the registry
only maps names to definitions and renders the catalog in each vendor's
shape. Executing a tool is the Tool Executor's job
(atelier.agent.tools_executor).
"""

import json
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator

from atelier.utils.logger import Logger

logger = Logger("Tools")


@dataclass
class ToolResult:
    """
    Normalized result of one tool invocation.

    Attributes:
        success: Whether the tool ran
        output: Text handed back to the model (empty on failure)
        error: Error message if success is False
    """
    success: bool
    output: str = ""
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "output": self.output}
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_message(self) -> str:
        """The text the model sees for this result."""
        if self.success:
            return self.output
        return self.error or ""

    @classmethod
    def ok(cls, output: Any) -> "ToolResult":
        return cls(success=True, output=safe_text(output))

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, output="", error=error)


def safe_text(value: Any) -> str:
    """
    Coerce any tool output to text.

    None becomes "", strings pass through, everything else is JSON-encoded
    when possible.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


@dataclass(frozen=True)
class ToolDefinition:
    """
    Definition of a tool.

    Attributes:
        name: Unique identifier for the tool
        description: What the tool does (shown to the model)
        input_schema: JSON Schema for the input object

    Example:
        tool = ToolDefinition(
            name="read_file",
            description="Read the contents of a project file",
            input_schema={
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
        )
    """
    name: str
    description: str
    input_schema: dict = field(hash=False)

    @property
    def required_fields(self) -> list[str]:
        return list(self.input_schema.get("required", []))

    def to_anthropic_tool(self) -> dict:
        """Anthropic Messages API shape."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def to_openai_function(self) -> dict:
        """
        OpenAI legacy function-calling shape.

        The schema key is re-keyed from input_schema to parameters.
        """
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema,
        }

    def to_openai_tool(self) -> dict:
        """OpenAI-compatible "tools" shape."""
        return {"type": "function", "function": self.to_openai_function()}


class ToolRegistry:
    """
    Central registry for all available tools.

    Example:
        registry = ToolRegistry()
        registry.register(read_file_tool)

        registry.get("read_file")
        registry.validate("read_file", {"path": "a.py"})  # -> None
    """

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        self._validators: dict[str, Draft7Validator] = {}

    def register(self, tool: ToolDefinition) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with this name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        Draft7Validator.check_schema(tool.input_schema)
        self._tools[tool.name] = tool
        self._validators[tool.name] = Draft7Validator(tool.input_schema)
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_all(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def validate(self, name: str, tool_input: Any) -> str | None:
        """
        Validate an input object against a tool's schema.

        Args:
            name: The tool name (must be registered)
            tool_input: The input object from the model

        Returns:
            None when valid, otherwise a readable description of every error
        """
        validator = self._validators[name]
        errors = sorted(validator.iter_errors(tool_input), key=lambda e: list(e.path))
        if not errors:
            return None
        return "; ".join(_format_validation_error(e) for e in errors)

    def get_anthropic_tools(self) -> list[dict]:
        return [tool.to_anthropic_tool() for tool in self._tools.values()]

    def get_openai_functions(self) -> list[dict]:
        return [tool.to_openai_function() for tool in self._tools.values()]

    def get_openai_tools(self) -> list[dict]:
        return [tool.to_openai_tool() for tool in self._tools.values()]


def _format_validation_error(error) -> str:
    path = ".".join(str(part) for part in error.path)
    if path:
        return f"{path}: {error.message}"
    return error.message
