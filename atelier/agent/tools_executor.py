"""
Tool Executor
=============

Runs the tools the model asks for.

The executor:
1. Rejects unknown tool names
2. Validates the input against the tool's JSON Schema
3. Dispatches to exactly one bridge call (filesystem or terminal)
4. Normalizes the outcome into a ToolResult
5. Mirrors every invocation to the audit log

It never raises: validation problems, unknown tools and bridge exceptions
all come back as ToolResult(success=False) so the model can react to them
in its next turn.

run_command is fire-and-forget. The command is typed into the terminal and
the result is only a confirmation; the agent cannot see the command output.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from atelier.messages import Message, ToolUseBlock
from atelier.tools import (
    DirectoryEntry,
    FileBridge,
    TerminalBridge,
    ToolRegistry,
    ToolResult,
    safe_text,
    tool_registry,
)
from atelier.utils.audit import AuditSink, NullAuditLog
from atelier.utils.logger import Logger

logger = Logger("ToolExecutor")

FileUpdateCallback = Callable[[str], Awaitable[None] | None]

# Tools whose success means a file on disk changed
WRITE_TOOLS = ("write_file", "create_file")


@dataclass
class ToolCallResult:
    """
    Result of executing one tool call.

    Attributes:
        tool_call_id: The id of the call being answered
        name: The tool name
        input: The input the model sent
        result: The tool result
    """
    tool_call_id: str
    name: str
    input: dict[str, Any]
    result: ToolResult

    @property
    def modified_path(self) -> str | None:
        """Path written by this call, if it wrote one."""
        if self.name in WRITE_TOOLS and self.result.success:
            return self.input.get("path")
        return None

    def to_message(self) -> Message:
        """The tool-result message answering this call."""
        return Message.tool_result(
            tool_use_id=self.tool_call_id,
            output=self.result.to_message(),
            is_error=not self.result.success,
            tool_name=self.name,
        )


def flatten_tree(items: list[DirectoryEntry], depth: int = 0) -> list[str]:
    """
    Render a directory tree as indented lines.

    Example:
        [dir] src
          [file] main.py
        [file] README.md
    """
    lines = []
    for item in items:
        marker = "[dir] " if item.is_directory else "[file] "
        lines.append("  " * depth + marker + item.name)
        if item.children:
            lines.extend(flatten_tree(item.children, depth + 1))
    return lines


class ToolExecutor:
    """
    Executes tools called by the model.

    Example:
        executor = ToolExecutor(files=LocalFileBridge(), terminal=ShellTerminalBridge())

        result = await executor.execute("read_file", {"path": "/p/a.py"})
        if result.success:
            print(result.output)
    """

    def __init__(
        self,
        files: FileBridge,
        terminal: TerminalBridge,
        audit: AuditSink | None = None,
        registry: ToolRegistry | None = None,
        active_file_path: str | None = None,
        on_file_update: FileUpdateCallback | None = None
    ):
        """
        Args:
            files: Filesystem bridge
            terminal: Terminal bridge for run_command
            audit: Audit sink (defaults to discarding)
            registry: Tool catalog (defaults to the canonical tools)
            active_file_path: Path open in the editor, if any
            on_file_update: Called with new content when write_file
                targets the active file
        """
        self.files = files
        self.terminal = terminal
        self.audit = audit or NullAuditLog()
        self.registry = registry or tool_registry
        self.active_file_path = active_file_path
        self.on_file_update = on_file_update

        self._handlers = {
            "read_file": self._read_file,
            "write_file": self._write_file,
            "create_file": self._create_file,
            "list_files": self._list_files,
            "run_command": self._run_command,
        }

    async def execute(self, tool_name: str, tool_input: Any) -> ToolResult:
        """
        Validate and run one tool.

        Args:
            tool_name: Name of the tool
            tool_input: Input object from the model

        Returns:
            ToolResult; never raises
        """
        tool_input = tool_input if tool_input is not None else {}

        if tool_name not in self.registry or tool_name not in self._handlers:
            logger.warning(f"Unknown tool requested: {tool_name}")
            self._audit("error", f"Unknown tool: {tool_name}", tool_name, tool_input)
            return ToolResult.fail(f"Unknown tool: {tool_name}")

        problem = self.registry.validate(tool_name, tool_input)
        if problem:
            logger.warning(f"Validation failed for {tool_name}: {problem}")
            self._audit("error", f"Validation failed for {tool_name}: {problem}", tool_name, tool_input)
            return ToolResult.fail(f"Validation error: {problem}")

        logger.info(f"Executing tool: {tool_name}")
        try:
            result = await self._handlers[tool_name](tool_input)
        except Exception as e:  # noqa: BLE001 - bridge failures become tool results
            message = str(e) or type(e).__name__
            logger.warning(f"Tool {tool_name} failed: {message}")
            self._audit("error", f"Error: {message}", tool_name, tool_input)
            return ToolResult.fail(message)

        self._audit("info", self._describe(tool_name, tool_input), tool_name, tool_input)
        return result

    async def execute_call(self, call: ToolUseBlock) -> ToolCallResult:
        """Execute a tool-use block and pair the result with its id."""
        result = await self.execute(call.name, call.input)
        return ToolCallResult(
            tool_call_id=call.id,
            name=call.name,
            input=call.input,
            result=result
        )

    async def execute_all(self, calls: list[ToolUseBlock]) -> list[ToolCallResult]:
        """
        Execute tool calls strictly in order.

        Later calls may depend on files written by earlier ones, so each is
        awaited before the next starts.
        """
        results = []
        for call in calls:
            results.append(await self.execute_call(call))
        return results

    def get_available_tools(self) -> list[str]:
        return self.registry.list_names()

    def has_tool(self, name: str) -> bool:
        return name in self.registry

    # ==========================================================================
    # Handlers
    # ==========================================================================

    async def _read_file(self, tool_input: dict) -> ToolResult:
        content = await self.files.read_file(tool_input["path"])
        return ToolResult.ok(content)

    async def _write_file(self, tool_input: dict) -> ToolResult:
        path = tool_input["path"]
        content = tool_input["content"]
        await self.files.write_file(path, content)
        if self.active_file_path and self.active_file_path == path:
            await self._notify_file_update(content)
        return ToolResult.ok(f"File written successfully: {path}")

    async def _create_file(self, tool_input: dict) -> ToolResult:
        path = tool_input["path"]
        await self.files.write_file(path, tool_input.get("content") or "")
        return ToolResult.ok(f"File created successfully: {path}")

    async def _list_files(self, tool_input: dict) -> ToolResult:
        tree = await self.files.read_directory(tool_input["path"])
        return ToolResult.ok("\n".join(flatten_tree(tree)))

    async def _run_command(self, tool_input: dict) -> ToolResult:
        command = tool_input["command"]
        await self.terminal.send_input(command + "\r")
        return ToolResult.ok(f"Command sent to terminal: {command}")

    # ==========================================================================
    # Helpers
    # ==========================================================================

    async def _notify_file_update(self, content: str) -> None:
        if self.on_file_update is None:
            return
        try:
            outcome = self.on_file_update(content)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:  # noqa: BLE001 - the write itself already succeeded
            logger.warning(f"Editor refresh after write failed: {e}")

    @staticmethod
    def _describe(tool_name: str, tool_input: dict) -> str:
        if tool_name == "read_file":
            return f"Read: {tool_input.get('path')}"
        if tool_name == "write_file":
            return f"Modified: {tool_input.get('path')}"
        if tool_name == "create_file":
            return f"Created: {tool_input.get('path')}"
        if tool_name == "list_files":
            return f"Listed: {tool_input.get('path')}"
        return f"Command: {tool_input.get('command')}"

    def _audit(self, level: str, message: str, tool_name: str, tool_input: Any) -> None:
        meta: dict[str, Any] = {"tool": tool_name}
        if isinstance(tool_input, dict):
            for key in ("path", "command"):
                if key in tool_input:
                    meta[key] = tool_input[key]
        if level == "error":
            meta["input"] = safe_text(tool_input)[:500]
        try:
            self.audit.log(level, message, meta)
        except Exception as e:  # noqa: BLE001 - the audit channel is best-effort
            logger.debug(f"Audit sink unavailable: {e}")
