"""
Atelier - Conversational Agent Engine for a Code Editor
=======================================================

The orchestration core of an AI-assisted code editor: it turns a chat
message or an autonomous task into a bounded sequence of model calls
interleaved with tool executions on the open project.

This package provides:
- Agent loop with stall handling, an iteration ceiling and cancellation
- Context budgeting (history window, rolling summary, file excerpt)
- Adapters for Claude, ChatGPT and Grok behind one contract
- Schema-validated tools for files, directories and the terminal
- Per-project conversation history and project memory
"""

__version__ = "1.0.0"
