"""
Agent Tools
===========

Tools are the actions the model can take on the project: read, write and
create files, list a directory tree, and send a command to the terminal.

How a tool call flows:
1. The provider adapter turns the vendor reply into ToolUseBlocks
2. The Tool Executor validates each input against the tool's schema
3. The matching bridge performs the effect (filesystem or terminal)
4. A ToolResult goes back to the model as a tool-result message

This module provides:
- ToolDefinition and ToolResult
- ToolRegistry, and tool_registry holding the five canonical tools
- The bridge contracts the executor dispatches to
"""

from atelier.tools.bridges import (
    DirectoryEntry,
    FileBridge,
    LocalFileBridge,
    ShellTerminalBridge,
    TerminalBridge,
)
from atelier.tools.catalog import AGENT_TOOLS, TOOL_ICONS
from atelier.tools.registry import ToolDefinition, ToolRegistry, ToolResult, safe_text


def build_default_registry() -> ToolRegistry:
    """A fresh registry holding the canonical agent tools."""
    registry = ToolRegistry()
    for tool in AGENT_TOOLS:
        registry.register(tool)
    return registry


# Global registry of the canonical tools
tool_registry = build_default_registry()


__all__ = [
    "AGENT_TOOLS",
    "TOOL_ICONS",
    "DirectoryEntry",
    "FileBridge",
    "LocalFileBridge",
    "ShellTerminalBridge",
    "TerminalBridge",
    "ToolDefinition",
    "ToolRegistry",
    "ToolResult",
    "build_default_registry",
    "safe_text",
    "tool_registry",
]
