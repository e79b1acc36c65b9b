"""
Canonical Tools
===============

The five tools every agent run is offered. The schemas are what the model
sees; the Tool Executor validates inputs against them before dispatching.

create_file is the lenient twin of write_file: both overwrite the full
file, but create_file accepts a missing content field (an empty file).
"""

from atelier.tools.registry import ToolDefinition

READ_FILE = ToolDefinition(
    name="read_file",
    description="Read the contents of a project file.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute path of the file to read"},
        },
        "required": ["path"],
    },
)

WRITE_FILE = ToolDefinition(
    name="write_file",
    description="Write or modify a project file. The content replaces the whole file.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute path of the file"},
            "content": {"type": "string", "description": "Complete file content"},
        },
        "required": ["path", "content"],
    },
)

CREATE_FILE = ToolDefinition(
    name="create_file",
    description="Create a new file.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute path of the new file"},
            "content": {"type": "string", "description": "Initial file content"},
        },
        "required": ["path"],
    },
)

LIST_FILES = ToolDefinition(
    name="list_files",
    description="List the files of a directory, recursively.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory to list"},
        },
        "required": ["path"],
    },
)

RUN_COMMAND = ToolDefinition(
    name="run_command",
    description=(
        "Send a command to the project's terminal. The command runs in the "
        "background; its output is not returned."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "Command to run"},
        },
        "required": ["command"],
    },
)

AGENT_TOOLS = (READ_FILE, WRITE_FILE, CREATE_FILE, LIST_FILES, RUN_COMMAND)

# Short markers for tool rows in the conversation view
TOOL_ICONS = {
    "read_file": "📖",
    "write_file": "✏️",
    "create_file": "✨",
    "list_files": "📂",
    "run_command": "🖥️",
}
