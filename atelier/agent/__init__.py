"""
Agent System
============

The orchestration core. It:
1. Budgets the conversation (history, summary, project memory, file)
2. Sends requests to the selected provider
3. Executes the tools the model calls, strictly in order
4. Stops on completion, stall, the iteration ceiling, failure or cancel
5. Hands the result back to the session for display and persistence

This module provides:
- AgentLoop: The bounded tool-calling loop
- ContextBudgeter: Selects what each model call carries
- ToolExecutor: Validates and runs tool calls
- ChatSession: Per-conversation front door for chat and agent modes
"""

from atelier.agent.context import BudgetConfig, ContextBudgeter, build_system_prompt
from atelier.agent.core import (
    AgentEvent,
    AgentLoop,
    AgentRunResult,
    AgentRunState,
    AgentState,
    CancellationToken,
    RunOutcome,
)
from atelier.agent.tools_executor import ToolExecutor
from atelier.agent.session import ChatSession, SessionBusyError

__all__ = [
    "AgentEvent",
    "AgentLoop",
    "AgentRunResult",
    "AgentRunState",
    "AgentState",
    "BudgetConfig",
    "CancellationToken",
    "ChatSession",
    "ContextBudgeter",
    "RunOutcome",
    "SessionBusyError",
    "ToolExecutor",
    "build_system_prompt",
]
