"""
Chat Session
============

The per-conversation front door. A session owns the mode, the provider and
model selection, the display message list, the rolling conversation summary
and the project memory, and turns each user message into one run.

Two modes:
    chat  - one streamed model call. A <file>...</file> block in the reply
            is proposed as the new content of the active file (or applied
            directly when no one is there to approve it).
    agent - an AgentLoop run with the tools. Tool calls show up as rows that
            go from "running" to "done"; writes apply immediately.

Only one run may be active per session; a second send_message() while one
is running raises SessionBusyError.

After every change the conversation is saved through the debouncer. In chat
mode with a project open, the project memory is refreshed once the
conversation has been quiet for a few seconds.
"""

from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from atelier.agent.context import MODE_AGENT, MODE_CHAT, BudgetConfig, ContextBudgeter
from atelier.agent.core import AgentEvent, AgentLoop, AgentRunResult, AgentState, CancellationToken
from atelier.agent.tools_executor import ToolExecutor
from atelier.memory import Conversation, MemoryManager, ProjectMemoryUpdater, derive_title, new_conversation_id
from atelier.messages import (
    ASSISTANT,
    STATUS_DONE,
    STATUS_RUNNING,
    SYSTEM,
    TOOL,
    ImageBlock,
    Message,
    TextBlock,
)
from atelier.providers import PROVIDERS, MissingCredentialError, ProviderAdapter, ProviderError, create_adapter
from atelier.providers.base import maybe_await
from atelier.tools import TOOL_ICONS, FileBridge, TerminalBridge
from atelier.utils.audit import AuditSink, NullAuditLog
from atelier.utils.config import Config, get_config
from atelier.utils.logger import Logger
from atelier.utils.text import extract_file_block

logger = Logger("Session")

MODES = (MODE_CHAT, MODE_AGENT)
MAX_IMAGES = 4

UpdateCallback = Callable[[list[Message]], None]
FileUpdateCallback = Callable[[str], Awaitable[None] | None]
ProposeCallback = Callable[[str, str], Awaitable[None] | None]
AdapterFactory = Callable[..., ProviderAdapter]


class SessionBusyError(Exception):
    """A run is already active in this session."""
    pass


def tool_row_label(name: str, tool_input: Mapping[str, Any]) -> str:
    """Short label for a tool row: the tool name and the file or command it targets."""
    target = tool_input.get("path") or tool_input.get("command") or ""
    short = Path(str(target)).name if tool_input.get("path") else str(target)
    return f"{name}: {short}" if short else name


class ChatSession:
    """
    One conversation with the assistant.

    Example:
        session = ChatSession(
            memory=MemoryManager.from_config(),
            files=LocalFileBridge(),
            terminal=ShellTerminalBridge(cwd="/home/me/app"),
            project_path="/home/me/app",
            provider="claude",
            mode="agent",
        )
        await session.open()
        await session.send_message("Add a .gitignore for Python")
        for message in session.messages:
            print(message.role, message.display or message.text())
    """

    def __init__(
        self,
        memory: MemoryManager,
        files: FileBridge,
        terminal: TerminalBridge,
        project_path: str | None = None,
        provider: str | None = None,
        model: str | None = None,
        mode: str = MODE_CHAT,
        config: Config | None = None,
        audit: AuditSink | None = None,
        adapter_factory: AdapterFactory = create_adapter,
        budget_overrides: Mapping[str, Any] | None = None,
        on_update: UpdateCallback | None = None,
        on_event: Callable[[AgentEvent], Any] | None = None,
        on_file_update: FileUpdateCallback | None = None,
        on_propose_file_update: ProposeCallback | None = None
    ):
        """
        Args:
            memory: Conversation and project memory facade
            files: Filesystem bridge
            terminal: Terminal bridge (agent run_command)
            project_path: Open project, if any
            provider: Provider id (defaults to the configured one)
            model: Model id (defaults to the provider's default)
            mode: "chat" or "agent"
            config: Configuration (defaults to get_config())
            audit: Audit sink for tool invocations
            adapter_factory: Builds provider adapters (tests inject fakes)
            budget_overrides: User overrides for the context budget
            on_update: Called with the message list after every change
            on_event: Receives raw agent events
            on_file_update: Called with new content for the active file
            on_propose_file_update: Called with (path, content) when chat
                proposes a rewrite of the active file
        """
        self.config = config or get_config()
        self.memory = memory
        self.files = files
        self.terminal = terminal
        self.audit = audit or NullAuditLog()
        self.adapter_factory = adapter_factory
        self.budget_overrides = dict(budget_overrides or {})

        self.on_update = on_update
        self.on_event = on_event
        self.on_file_update = on_file_update
        self.on_propose_file_update = on_propose_file_update

        self.project_path = project_path
        self.provider = provider or self.config.models.default_provider
        self.model = model
        self.mode = MODE_CHAT
        self.set_mode(mode)

        self.messages: list[Message] = []
        self.conversation_id = new_conversation_id()
        self.summary = ""
        self.project_memory = ""
        self.active_file_path: str | None = None
        self.active_file_content: str | None = None

        self.memory_updater = ProjectMemoryUpdater()
        self._adapter: ProviderAdapter | None = None
        self._token: CancellationToken | None = None
        self._busy = False

    # ==========================================================================
    # Settings
    # ==========================================================================

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def adapter(self) -> ProviderAdapter:
        """The adapter for the current provider and model (built once per selection)."""
        if self._adapter is None:
            self._adapter = self.adapter_factory(self.provider, self.model, self.config)
            self.model = self._adapter.model
        return self._adapter

    @property
    def can_use_images(self) -> bool:
        """Image attachments are only sent to vendors that accept them, in chat mode."""
        return self.mode == MODE_CHAT and self.adapter.supports_images

    def set_provider(self, provider: str, model: str | None = None) -> None:
        """
        Raises:
            KeyError: For an unknown provider id
        """
        if provider not in PROVIDERS:
            raise KeyError(f"Unknown provider: {provider}")
        self.provider = provider
        self.model = model
        self._adapter = None
        logger.info(f"Provider set to {provider}" + (f" ({model})" if model else ""))

    def set_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode!r} (expected one of {', '.join(MODES)})")
        self.mode = mode

    def set_budget_overrides(self, overrides: Mapping[str, Any] | None) -> None:
        self.budget_overrides = dict(overrides or {})

    def set_active_file(self, path: str | None, content: str | None = None) -> None:
        self.active_file_path = path
        self.active_file_content = content

    def budget_config(self) -> BudgetConfig:
        return BudgetConfig.for_mode(self.mode, self.provider, self.budget_overrides)

    # ==========================================================================
    # Conversations
    # ==========================================================================

    async def open(self) -> None:
        """Load the project memory for the open project."""
        self.project_memory = (await self.memory.get_project_memory(self.project_path)).text

    async def list_conversations(self):
        return await self.memory.list_conversations(self.project_path)

    async def load_conversation(self, conversation_id: str) -> bool:
        """
        Replace the session state with a stored conversation.

        Returns:
            False when no such conversation exists
        """
        self._ensure_idle()
        await self.memory.debouncer.flush("conversation:")
        conversation = await self.memory.get_conversation(self.project_path, conversation_id)
        if conversation is None:
            return False

        self.conversation_id = conversation.id
        self.messages = list(conversation.messages)
        self.summary = conversation.summary or ""
        if conversation.provider in PROVIDERS and conversation.provider != self.provider:
            self.set_provider(conversation.provider, conversation.model)
        elif conversation.model and conversation.model != self.model:
            self.set_provider(self.provider, conversation.model)
        self._notify()
        logger.info(f"Loaded conversation {conversation_id} ({len(self.messages)} messages)")
        return True

    async def new_conversation(self) -> None:
        self._ensure_idle()
        await self.memory.debouncer.flush("conversation:")
        self.conversation_id = new_conversation_id()
        self.messages = []
        self.summary = ""
        self._notify()

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        return await self.memory.rename_conversation(self.project_path, conversation_id, title)

    async def delete_conversation(self, conversation_id: str) -> bool:
        deleted = await self.memory.delete_conversation(self.project_path, conversation_id)
        if deleted and conversation_id == self.conversation_id:
            self.conversation_id = new_conversation_id()
            self.messages = []
            self.summary = ""
            self._notify()
        return deleted

    def snapshot(self) -> Conversation:
        """The current conversation as the store sees it."""
        return Conversation(
            id=self.conversation_id,
            title=derive_title(self.messages),
            provider=self.provider,
            model=self.model,
            summary=self.summary,
            messages=[Message.from_dict(m.to_dict()) for m in self.messages],
        )

    # ==========================================================================
    # Sending
    # ==========================================================================

    def cancel(self) -> None:
        """Cancel the active agent run (takes effect at its next checkpoint)."""
        if self._token is not None:
            self._token.cancel()
            logger.info("Cancellation requested")

    async def send_message(
        self,
        text: str,
        action_label: str | None = None,
        images: list[ImageBlock] | None = None
    ) -> AgentRunResult | None:
        """
        Send one user message and run it in the current mode.

        Args:
            text: The user's message or task
            action_label: Shown instead of the text (quick actions)
            images: Attachments (chat mode with a vendor that accepts them)

        Returns:
            The AgentRunResult in agent mode, otherwise None

        Raises:
            SessionBusyError: While a previous run is still active
        """
        self._ensure_idle()
        text = (text or "").strip()
        images = list(images or [])
        if not text and not images:
            return None

        self._busy = True
        self._token = CancellationToken()
        result = None
        try:
            adapter = self.adapter
            if not adapter.has_credential:
                self._append(Message.assistant(MissingCredentialError(adapter.name, self.provider).user_message))
                return None
            if images and not self.can_use_images:
                self._append(Message.assistant(
                    "Images can only be attached in chat mode with a provider that accepts them (ChatGPT)."
                ))
                return None

            self._append(self._user_message(text, action_label, images[:MAX_IMAGES]))

            config = self.budget_config()
            budgeter = ContextBudgeter(summarize=adapter.summarize)
            context = await budgeter.select_context(
                all_messages=self.messages,
                project_memory=self.project_memory,
                conversation_summary=self.summary,
                file_content=self.active_file_content,
                config=config,
                user_text=text,
                mode=self.mode,
                project_path=self.project_path,
                active_file_path=self.active_file_path,
            )
            self.summary = context.summary
            if context.summarized:
                self._retire(context.dropped)

            if self.mode == MODE_AGENT:
                result = await self._run_agent(adapter, context.messages, context.system_prompt)
            else:
                await self._run_chat(adapter, context.messages, context.system_prompt)

        except ProviderError as e:
            logger.error("Model call failed", e)
            self._drop_empty_reply()
            self._append(Message.assistant(e.user_message))
        except Exception as e:  # noqa: BLE001 - the run boundary reports every failure
            logger.error("Run failed", e)
            self._drop_empty_reply()
            self._append(Message.assistant(f"Error: {e}"))
        finally:
            self._busy = False
            self._token = None
            self._schedule_memory_refresh()
            self._notify()

        return result

    def _user_message(self, text: str, action_label: str | None, images: list[ImageBlock]) -> Message:
        display = f"⚡ {action_label}" if action_label else None
        if not images:
            return Message.user(text, display=display)
        content = ([TextBlock(text)] if text else []) + list(images)
        return Message(role="user", content=content, display=display)

    async def _run_chat(self, adapter: ProviderAdapter, history: list[Message], system_prompt: str) -> None:
        row = Message.assistant("")
        self._append(row)

        def on_text(delta: str, full_text: str) -> None:
            row.content = full_text
            self._notify(save=False)

        response = await adapter.send(
            history,
            system_prompt,
            stream=True,
            on_text=on_text,
            on_retry=self._on_retry,
        )
        row.content = response.text
        self._notify()

        new_content = extract_file_block(response.text)
        if new_content is not None and self.active_file_path:
            await self._apply_file_proposal(self.active_file_path, new_content)

    async def _apply_file_proposal(self, path: str, content: str) -> None:
        if self.on_propose_file_update is not None:
            logger.info(f"Proposing an update to {path}")
            await maybe_await(self.on_propose_file_update(path, content))
            return
        logger.info(f"Applying an update to {path}")
        await self._refresh_active_file(content)
        await self.files.write_file(path, content)
        self.audit.log("info", f"Modified: {path}", {"source": "chat"})

    async def _run_agent(
        self,
        adapter: ProviderAdapter,
        history: list[Message],
        system_prompt: str
    ) -> AgentRunResult:
        executor = ToolExecutor(
            files=self.files,
            terminal=self.terminal,
            audit=self.audit,
            active_file_path=self.active_file_path,
            on_file_update=self._refresh_active_file,
        )
        loop = AgentLoop(
            adapter,
            executor,
            max_iterations=self.config.agent.max_iterations,
            on_event=self._on_agent_event,
        )
        result = await loop.run(
            task=history[-1],
            history=history[:-1],
            system_prompt=system_prompt,
            token=self._token,
        )

        role = ASSISTANT if result.state == AgentState.FAILED else SYSTEM
        self._append(Message(role=role, content=result.summary_line()))
        return result

    async def _refresh_active_file(self, content: str) -> None:
        self.active_file_content = content
        if self.on_file_update is not None:
            await maybe_await(self.on_file_update(content))

    # ==========================================================================
    # Agent events
    # ==========================================================================

    async def _on_agent_event(self, event: AgentEvent) -> None:
        data = event.data
        if event.type == "assistant_text":
            self._append(Message.assistant(data["text"]))
        elif event.type == "tool_started":
            label = tool_row_label(data["name"], data.get("input") or {})
            self._append(Message(
                role=TOOL,
                content=label,
                display=label,
                tool_call_id=data["id"],
                tool_name=data["name"],
                status=STATUS_RUNNING,
                icon=TOOL_ICONS.get(data["name"], "🔧"),
            ))
        elif event.type == "tool_finished":
            for message in reversed(self.messages):
                if message.role == TOOL and message.tool_call_id == data["id"]:
                    message.status = STATUS_DONE
                    message.result_text = data.get("output", "")
                    break
            self._notify()
        elif event.type == "retry_wait":
            self._on_retry(data["attempt"], data["delay"])

        if self.on_event is not None:
            await maybe_await(self.on_event(event))

    def _on_retry(self, attempt: int, delay: float) -> None:
        self._append(Message.system(f"Rate limited, pausing {delay:g}s before retry {attempt}..."))

    # ==========================================================================
    # State changes
    # ==========================================================================

    def _ensure_idle(self) -> None:
        if self._busy:
            raise SessionBusyError("A run is already in progress for this conversation")

    def _retire(self, folded: list[Message]) -> None:
        """Drop turns now carried by the summary; tool and system rows stay."""
        retired = {id(m) for m in folded}
        self.messages = [m for m in self.messages if id(m) not in retired]
        logger.debug(f"Retired {len(retired)} summarized messages")

    def _drop_empty_reply(self) -> None:
        if self.messages and self.messages[-1].role == ASSISTANT and not self.messages[-1].content:
            self.messages.pop()

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        self._notify()

    def _notify(self, save: bool = True) -> None:
        if self.on_update is not None:
            try:
                self.on_update(self.messages)
            except Exception as e:  # noqa: BLE001 - a broken view must not end the run
                logger.warning(f"Update callback failed: {e}")
        if save and self.messages:
            self.memory.schedule_conversation_save(self.project_path, self.snapshot)

    def _schedule_memory_refresh(self) -> None:
        if self.mode != MODE_CHAT or not self.project_path:
            return
        if not self.memory_updater.should_update(self.messages):
            return

        adapter = self._adapter
        if adapter is None or not adapter.has_credential:
            return

        async def refresh():
            text = await self.memory_updater.update(self.messages, self.project_memory, adapter.summarize)
            if text:
                self.project_memory = text
                self.memory.schedule_project_memory_save(self.project_path, text)

        self.memory.schedule_project_memory_refresh(self.project_path, refresh)
