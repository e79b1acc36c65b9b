# tests/conftest.py
"""
Shared pytest fixtures for atelier tests.

Provider SDKs are never called: adapters are exercised either with a fake
SDK client or through ScriptedAdapter, which replays canned responses
behind the real credential and retry logic.
"""

from pathlib import Path

import pytest

from atelier.messages import END_TURN, TOOL_USE, Message, ProviderResponse, TextBlock, ToolUseBlock
from atelier.providers.base import ProviderAdapter, maybe_await
from atelier.tools import DirectoryEntry
from atelier.utils.audit import MemoryAuditLog
from atelier.utils.config import (
    AgentConfig,
    Config,
    ModelConfig,
    PersistenceConfig,
    ProviderKeysConfig,
    RetryConfig,
)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def text_response(text: str, stop_reason: str = END_TURN) -> ProviderResponse:
    return ProviderResponse(content_blocks=[TextBlock(text)], stop_reason=stop_reason, vendor_stop_reason=stop_reason)


def tool_response(*calls: tuple[str, str, dict], text: str = "") -> ProviderResponse:
    blocks = [TextBlock(text)] if text else []
    blocks += [ToolUseBlock(id=call_id, name=name, input=tool_input) for call_id, name, tool_input in calls]
    return ProviderResponse(content_blocks=blocks, stop_reason=TOOL_USE, vendor_stop_reason="tool_use")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedAdapter(ProviderAdapter):
    """Replays scripted responses (or raises scripted exceptions) in order."""

    provider_id = "claude"

    def __init__(self, script=None, summary="- summary line", api_key="test-key", **kwargs):
        kwargs.setdefault("client", object())
        kwargs.setdefault("sleep", self._no_sleep)
        super().__init__(api_key=api_key, **kwargs)
        self.script = list(script or [])
        self.summary_text = summary
        self.calls: list[dict] = []
        self.summary_prompts: list[str] = []
        self.sleeps: list[float] = []

    async def _no_sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    def _next(self):
        if not self.script:
            raise AssertionError("ScriptedAdapter ran out of responses")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def _create(self, messages, system_prompt, tools):
        self.calls.append({
            "messages": list(messages),
            "system_prompt": system_prompt,
            "tools": [t.name for t in tools],
            "stream": False,
        })
        return self._next()

    async def _stream(self, messages, system_prompt, on_text):
        self.calls.append({
            "messages": list(messages),
            "system_prompt": system_prompt,
            "tools": [],
            "stream": True,
        })
        response = self._next()
        text = ""
        for word in response.text.split(" "):
            delta = word if not text else " " + word
            text += delta
            if on_text is not None:
                await maybe_await(on_text(delta, text))
        return response

    async def _complete_text(self, prompt, system, max_tokens):
        self.summary_prompts.append(prompt)
        if isinstance(self.summary_text, BaseException):
            raise self.summary_text
        return self.summary_text


class FakeFileBridge:
    """In-memory filesystem keyed by path."""

    def __init__(self, files: dict[str, str] | None = None, tree: list[DirectoryEntry] | None = None):
        self.files = dict(files or {})
        self.tree = tree or []
        self.writes: list[tuple[str, str]] = []

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(f"No such file: {path}")
        return self.files[path]

    async def write_file(self, path: str, content: str) -> bool:
        self.files[path] = content
        self.writes.append((path, content))
        return True

    async def read_directory(self, path: str) -> list[DirectoryEntry]:
        return self.tree


class FakeTerminalBridge:
    def __init__(self):
        self.inputs: list[str] = []

    async def send_input(self, text: str) -> None:
        self.inputs.append(text)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        keys=ProviderKeysConfig(claude="test-claude", openai="test-openai", grok=None),
        models=ModelConfig(
            default_provider="claude",
            default_model=None,
            max_output_tokens=1024,
            summary_max_tokens=300,
            request_timeout_seconds=30.0,
        ),
        retry=RetryConfig(rate_limit_retries=2, backoff_seconds=15.0),
        agent=AgentConfig(max_iterations=20),
        persistence=PersistenceConfig(
            data_dir=tmp_path / "data",
            conversation_save_delay=0.8,
            memory_save_delay=0.6,
            memory_refresh_delay=4.5,
            audit_max_bytes=1024 * 1024,
            audit_backups=2,
        ),
        log_level="error",
    )


@pytest.fixture
def files() -> FakeFileBridge:
    return FakeFileBridge(
        files={"/p/main.py": "print('hello')\n"},
        tree=[
            DirectoryEntry(name="src", path="/p/src", is_directory=True, children=[
                DirectoryEntry(name="app.py", path="/p/src/app.py", is_directory=False),
            ]),
            DirectoryEntry(name="main.py", path="/p/main.py", is_directory=False),
        ],
    )


@pytest.fixture
def terminal() -> FakeTerminalBridge:
    return FakeTerminalBridge()


@pytest.fixture
def audit() -> MemoryAuditLog:
    return MemoryAuditLog()


@pytest.fixture
def history() -> list[Message]:
    """Alternating user/assistant turns, oldest first."""
    messages = []
    for i in range(20):
        if i % 2 == 0:
            messages.append(Message.user(f"question {i}"))
        else:
            messages.append(Message.assistant(f"answer {i}"))
    return messages
