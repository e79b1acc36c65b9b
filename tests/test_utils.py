# tests/test_utils.py
"""
Tests for configuration loading, the audit log and the message model.
"""

import pytest

from atelier.messages import Message, ProviderResponse, TextBlock, ToolResultBlock, ToolUseBlock, transcript_lines
from atelier.utils.audit import AuditLog, format_audit_line
from atelier.utils.config import get_config, is_provider_configured, load_config, reset_config

_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "XAI_API_KEY",
    "ATELIER_PROVIDER",
    "ATELIER_MODEL",
    "ATELIER_DATA_DIR",
    "AGENT_MAX_ITERATIONS",
    "RATE_LIMIT_BACKOFF_SECONDS",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # No stray .env file is picked up from the working directory
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield monkeypatch
    reset_config()


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfig:
    def test_defaults(self, clean_env):
        config = load_config()
        assert config.keys.claude is None
        assert config.models.default_provider == "claude"
        assert config.retry.rate_limit_retries == 2
        assert config.retry.backoff_seconds == 15.0
        assert config.agent.max_iterations == 20
        assert config.persistence.conversation_save_delay == 0.8
        assert config.persistence.memory_refresh_delay == 4.5

    def test_blank_key_is_unset(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "   ")
        clean_env.setenv("XAI_API_KEY", " xai-123 ")
        config = load_config()
        assert config.keys.openai is None
        assert config.keys.for_provider("grok") == "xai-123"

    def test_invalid_number_falls_back(self, clean_env):
        clean_env.setenv("AGENT_MAX_ITERATIONS", "many")
        clean_env.setenv("RATE_LIMIT_BACKOFF_SECONDS", "2.5")
        config = load_config()
        assert config.agent.max_iterations == 20
        assert config.retry.backoff_seconds == 2.5

    def test_data_dir_files(self, clean_env, tmp_path):
        clean_env.setenv("ATELIER_DATA_DIR", str(tmp_path / "state"))
        persistence = load_config().persistence
        assert persistence.conversations_file == tmp_path / "state" / "conversations.json"
        assert persistence.project_memory_file == tmp_path / "state" / "project_memory.json"

    def test_singleton(self, clean_env):
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant")
        assert get_config() is get_config()
        assert is_provider_configured("claude")
        assert not is_provider_configured("openai")


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class TestAuditLog:
    def test_format(self):
        line = format_audit_line("info", "Read: /p/a.py", {"tool": "read_file"})
        assert line == '[AUDIT] info: Read: /p/a.py {"tool": "read_file"}'

    def test_writes_lines(self, tmp_path):
        audit = AuditLog(tmp_path / "logs" / "audit.log")
        audit.log("info", "Modified: /p/a.py", {"tool": "write_file"})
        audit.log("error", "Unknown tool: nuke")
        audit.close()

        lines = (tmp_path / "logs" / "audit.log").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0].endswith('[AUDIT] info: Modified: /p/a.py {"tool": "write_file"}')
        assert lines[1].endswith("[AUDIT] error: Unknown tool: nuke")

    def test_rotates(self, tmp_path):
        path = tmp_path / "audit.log"
        audit = AuditLog(path, max_bytes=200, backups=2)
        for i in range(50):
            audit.log("info", f"entry {i}")
        audit.close()

        assert (tmp_path / "audit.log.1").exists()
        assert not (tmp_path / "audit.log.3").exists()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestMessages:
    def test_invalid_role(self):
        with pytest.raises(ValueError):
            Message(role="robot")

    def test_dict_round_trip_keeps_blocks(self):
        message = Message.assistant([
            TextBlock("Let me look"),
            ToolUseBlock(id="t1", name="read_file", input={"path": "/p/a.py"}),
        ])
        restored = Message.from_dict(message.to_dict())
        assert restored == message
        assert restored.tool_uses()[0].input == {"path": "/p/a.py"}

    def test_tool_result_message(self):
        message = Message.tool_result("t1", "boom", is_error=True, tool_name="read_file")
        assert message.tool_call_id == "t1"
        assert message.tool_results() == [ToolResultBlock("t1", "boom", True, "read_file")]

    def test_provider_response(self):
        response = ProviderResponse(
            content_blocks=[TextBlock("a"), ToolUseBlock(id="t1", name="list_files"), TextBlock("b")],
            stop_reason="tool_use",
        )
        assert response.text == "ab"
        assert [c.id for c in response.tool_calls] == ["t1"]
        assert response.to_message().role == "assistant"

    def test_transcript_strips_file_payloads(self):
        lines = transcript_lines([
            Message.user("fix it"),
            Message.system("ignored"),
            Message.assistant("Done <file>huge file</file>"),
        ])
        assert lines == "User: fix it\nAssistant: Done "
