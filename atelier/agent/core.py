"""
Agent Core
==========

The autonomous agent loop.

The loop turns a task into a bounded sequence of model calls interleaved
with tool executions. It owns its run state explicitly; the UI only watches
it through events.

Agent Loop:
    Task
     │
     ▼
    Model call with tools  ◄─────────────────────┐
     │                                           │
     ├── tool calls ──► execute in order ──► results appended
     │                       (iteration 20 reached → aborted)
     │
     ├── end_turn, no calls ──► completed
     │
     └── no calls, no natural stop ──► stalled
              first time:  corrective instruction, ask again
              second time: completed (degraded, outcome no_tool_use)

Any provider error or unexpected exception ends the run as failed, listing
the files already modified. A cancellation token is checked before every
model call and after every tool execution.
"""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from atelier.agent.context import MODE_AGENT, build_system_prompt
from atelier.agent.tools_executor import ToolExecutor
from atelier.messages import END_TURN, Message, ProviderResponse, ToolUseBlock
from atelier.providers import ProviderAdapter, ProviderError
from atelier.providers.errors import RequestCancelledError
from atelier.tools import AGENT_TOOLS, ToolDefinition
from atelier.utils.logger import Logger

logger = Logger("Agent")

DEFAULT_MAX_ITERATIONS = 20

STALL_INSTRUCTION = (
    "Please now execute the actions by calling the provided tools "
    "(read_file, write_file, create_file, list_files, run_command). "
    "Don't just explain, execute."
)


class AgentState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    TOOL_EXECUTING = "tool_executing"
    COMPLETED = "completed"
    STALLED = "stalled"
    ABORTED = "aborted"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunOutcome(str, Enum):
    END_TURN = "end_turn"
    NO_TOOL_USE = "no_tool_use"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATES = (AgentState.COMPLETED, AgentState.ABORTED, AgentState.FAILED, AgentState.CANCELLED)


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its owner."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class AgentEvent:
    """
    A progress notification for the UI.

    Types:
        status          - data: {"message"}
        assistant_text  - data: {"text"}
        tool_started    - data: {"id", "name", "input"}
        tool_finished   - data: {"id", "name", "success", "output"}
        retry_wait      - data: {"attempt", "delay"}
        finished        - data: {"state", "outcome", "modified_files", "error"}
    """
    type: str
    data: dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[[AgentEvent], Awaitable[None] | None]


@dataclass
class AgentRunState:
    """Everything a run knows about itself."""
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    iteration: int = 0
    messages: list[Message] = field(default_factory=list)
    state: AgentState = AgentState.IDLE
    outcome: RunOutcome | None = None
    stall_count: int = 0
    modified_files: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def finish(self, state: AgentState, outcome: RunOutcome, error: str | None = None) -> None:
        self.state = state
        self.outcome = outcome
        self.error = error

    def record_modified(self, path: str | None) -> None:
        if path and path not in self.modified_files:
            self.modified_files.append(path)


@dataclass
class AgentRunResult:
    """
    Outcome of one run.

    Attributes:
        state: Terminal state
        outcome: Why the run ended
        final_text: Text of the last assistant reply
        messages: Full vendor-neutral history of the run
        modified_files: Paths written or created, in first-write order
        iterations: Model calls made
        error: User-facing error text for failed runs
    """
    state: AgentState
    outcome: RunOutcome
    final_text: str
    messages: list[Message]
    modified_files: list[str]
    iterations: int
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == AgentState.COMPLETED

    def summary_line(self) -> str:
        """One-line status for the conversation view."""
        if self.state == AgentState.COMPLETED and self.outcome == RunOutcome.NO_TOOL_USE:
            return "Agent finished (model answered without calling tools)."
        if self.state == AgentState.COMPLETED:
            return "Agent finished: task completed."
        if self.state == AgentState.ABORTED:
            return f"Agent stopped after {self.iterations} iterations."
        if self.state == AgentState.CANCELLED:
            return "Agent cancelled."
        line = f"Agent failed: {self.error}"
        if self.modified_files:
            line += "\nFiles already modified: " + ", ".join(self.modified_files)
        return line


class AgentLoop:
    """
    Runs one autonomous task against one provider.

    Example:
        loop = AgentLoop(adapter, executor, on_event=print)
        result = await loop.run(
            "Add a README describing the project",
            project_path="/home/me/app",
        )
        print(result.outcome, result.modified_files)
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        executor: ToolExecutor,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        on_event: EventCallback | None = None,
        tools: list[ToolDefinition] | tuple[ToolDefinition, ...] = AGENT_TOOLS
    ):
        """
        Args:
            adapter: Provider adapter for the selected vendor and model
            executor: Tool executor bound to the project's bridges
            max_iterations: Model-call ceiling for one run
            on_event: Progress callback (sync or async)
            tools: Catalog offered to the model
        """
        self.adapter = adapter
        self.executor = executor
        self.max_iterations = max(1, max_iterations)
        self.on_event = on_event
        self.tools = list(tools)

    async def run(
        self,
        task: str | Message,
        history: list[Message] | None = None,
        system_prompt: str | None = None,
        token: CancellationToken | None = None,
        project_path: str | None = None,
        active_file_path: str | None = None,
        project_memory: str = "",
        conversation_summary: str = ""
    ) -> AgentRunResult:
        """
        Run the task until completion, abort, failure or cancellation.

        Args:
            task: The user's task (text or a prepared user message)
            history: Prior budgeted turns to seed the run with
            system_prompt: Prepared system prompt; built in agent mode
                from the project fields when omitted
            token: Cancellation token

        Returns:
            AgentRunResult; never raises for provider or tool failures
        """
        token = token or CancellationToken()
        if system_prompt is None:
            system_prompt = build_system_prompt(
                mode=MODE_AGENT,
                project_path=project_path,
                active_file_path=active_file_path,
                project_memory=project_memory,
                conversation_summary=conversation_summary,
            )

        task_message = task if isinstance(task, Message) else Message.user(task)
        run = AgentRunState(
            max_iterations=self.max_iterations,
            messages=list(history or []) + [task_message],
        )
        final_text = ""

        logger.info(f"Agent run started with {self.adapter.name} ({self.adapter.model})")
        await self._emit("status", message="Agent started")

        try:
            while run.iteration < run.max_iterations:
                if token.cancelled:
                    run.finish(AgentState.CANCELLED, RunOutcome.CANCELLED)
                    break

                run.state = AgentState.REQUESTING
                run.iteration += 1
                logger.debug(f"Iteration {run.iteration}/{run.max_iterations}")
                response = await self.adapter.send(
                    run.messages,
                    system_prompt,
                    tools=self.tools,
                    on_retry=self._on_retry,
                    should_abort=lambda: token.cancelled,
                )
                run.messages.append(response.to_message())

                if response.text.strip():
                    final_text = response.text
                    await self._emit("assistant_text", text=response.text)

                if response.tool_calls:
                    await self._execute_tools(response.tool_calls, run, token)
                    if run.finished:
                        break
                    continue

                if self._handle_stop(response, run):
                    break
            else:
                run.finish(AgentState.ABORTED, RunOutcome.MAX_ITERATIONS)
                logger.warning(f"Agent stopped at the iteration ceiling ({run.max_iterations})")

        except RequestCancelledError:
            logger.info("Agent cancelled during a rate-limit wait")
            run.finish(AgentState.CANCELLED, RunOutcome.CANCELLED)
        except ProviderError as e:
            logger.error("Provider call failed", e)
            run.finish(AgentState.FAILED, RunOutcome.ERROR, e.user_message)
        except Exception as e:  # noqa: BLE001 - the run boundary reports every failure
            logger.error("Agent run failed", e)
            run.finish(AgentState.FAILED, RunOutcome.ERROR, f"Error: {e}")

        result = AgentRunResult(
            state=run.state,
            outcome=run.outcome,
            final_text=final_text,
            messages=run.messages,
            modified_files=list(run.modified_files),
            iterations=run.iteration,
            error=run.error,
        )
        logger.info(
            f"Agent run finished: {run.state.value}",
            {"outcome": run.outcome.value, "iterations": run.iteration, "modified": len(run.modified_files)}
        )
        await self._emit(
            "finished",
            state=run.state.value,
            outcome=run.outcome.value,
            modified_files=list(run.modified_files),
            error=run.error,
        )
        return result

    async def _execute_tools(
        self,
        calls: list[ToolUseBlock],
        run: AgentRunState,
        token: CancellationToken
    ) -> None:
        run.state = AgentState.TOOL_EXECUTING
        for call in calls:
            await self._emit("tool_started", id=call.id, name=call.name, input=call.input)
            outcome = await self.executor.execute_call(call)
            run.messages.append(outcome.to_message())
            run.record_modified(outcome.modified_path)
            await self._emit(
                "tool_finished",
                id=call.id,
                name=call.name,
                success=outcome.result.success,
                output=outcome.result.to_message(),
            )
            if token.cancelled:
                run.finish(AgentState.CANCELLED, RunOutcome.CANCELLED)
                return

    def _handle_stop(self, response: ProviderResponse, run: AgentRunState) -> bool:
        """
        Decide what a reply without tool calls means.

        Returns:
            True when the run is over
        """
        if response.stop_reason == END_TURN:
            run.finish(AgentState.COMPLETED, RunOutcome.END_TURN)
            return True

        run.stall_count += 1
        if run.stall_count == 1:
            run.state = AgentState.STALLED
            logger.warning(f"Model stopped without calling tools ({response.stop_reason}), nudging once")
            run.messages.append(Message.user(STALL_INSTRUCTION))
            return False

        # Degraded completion: the model keeps describing instead of acting
        run.finish(AgentState.COMPLETED, RunOutcome.NO_TOOL_USE)
        return True

    async def _on_retry(self, attempt: int, delay: float) -> None:
        await self._emit("retry_wait", attempt=attempt, delay=delay)

    async def _emit(self, event_type: str, **data) -> None:
        if self.on_event is None:
            return
        try:
            outcome = self.on_event(AgentEvent(event_type, data))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:  # noqa: BLE001 - a broken observer must not end the run
            logger.warning(f"Event callback failed for {event_type}: {e}")
