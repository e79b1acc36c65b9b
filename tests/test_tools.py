# tests/test_tools.py
"""
Tests for the tool registry, the canonical catalog, the Tool Executor and
the local bridges.
"""

import asyncio
import os

import pytest

from atelier.agent.tools_executor import ToolExecutor, flatten_tree
from atelier.messages import TOOL, ToolUseBlock
from atelier.tools import AGENT_TOOLS, ToolDefinition, ToolRegistry, ToolResult, build_default_registry, safe_text
from atelier.tools.bridges import LocalFileBridge, ShellTerminalBridge, atomic_write_text


@pytest.fixture
def executor(files, terminal, audit):
    return ToolExecutor(files=files, terminal=terminal, audit=audit)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_default_registry_holds_the_five_tools(self):
        registry = build_default_registry()
        assert registry.list_names() == ["read_file", "write_file", "create_file", "list_files", "run_command"]
        assert len(registry) == 5

    def test_duplicate_registration_rejected(self):
        registry = ToolRegistry()
        registry.register(AGENT_TOOLS[0])
        with pytest.raises(ValueError):
            registry.register(AGENT_TOOLS[0])

    def test_validate_accepts_valid_input(self):
        registry = build_default_registry()
        assert registry.validate("write_file", {"path": "/p/a.py", "content": "x"}) is None

    def test_validate_reports_missing_field(self):
        registry = build_default_registry()
        problem = registry.validate("write_file", {"path": "/p/a.py"})
        assert "content" in problem

    def test_validate_reports_wrong_type_with_path(self):
        registry = build_default_registry()
        problem = registry.validate("read_file", {"path": 42})
        assert problem.startswith("path:")

    def test_create_file_content_optional(self):
        registry = build_default_registry()
        assert registry.validate("create_file", {"path": "/p/new.py"}) is None

    def test_openai_function_rekeys_schema(self):
        tool = ToolDefinition(
            name="demo",
            description="Demo tool",
            input_schema={"type": "object", "properties": {}},
        )
        function = tool.to_openai_function()
        assert function["parameters"] == {"type": "object", "properties": {}}
        assert "input_schema" not in function
        assert tool.to_openai_tool() == {"type": "function", "function": function}
        assert tool.to_anthropic_tool()["input_schema"] == {"type": "object", "properties": {}}


class TestToolResult:
    def test_safe_text(self):
        assert safe_text(None) == ""
        assert safe_text("abc") == "abc"
        assert safe_text({"a": 1}) == '{"a": 1}'

    def test_failure_message_is_error(self):
        result = ToolResult.fail("boom")
        assert not result.success
        assert result.to_message() == "boom"


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class TestToolExecutor:
    async def test_unknown_tool(self, executor, audit):
        result = await executor.execute("delete_everything", {})
        assert not result.success
        assert result.error == "Unknown tool: delete_everything"
        assert audit.records[-1][0] == "error"

    async def test_validation_error_reaches_model(self, executor, files):
        result = await executor.execute("write_file", {"path": "/p/a.py"})
        assert not result.success
        assert result.error.startswith("Validation error:")
        assert "content" in result.error
        assert files.writes == []

    async def test_read_file(self, executor):
        result = await executor.execute("read_file", {"path": "/p/main.py"})
        assert result.success
        assert result.output == "print('hello')\n"

    async def test_read_missing_file_becomes_failure(self, executor, audit):
        result = await executor.execute("read_file", {"path": "/p/missing.py"})
        assert not result.success
        assert "missing.py" in result.error
        level, message, meta = audit.records[-1]
        assert level == "error"
        assert message.startswith("Error:")
        assert meta["path"] == "/p/missing.py"

    async def test_write_file_calls_bridge_once(self, executor, files, audit):
        result = await executor.execute("write_file", {"path": "/p/a.py", "content": "x = 1\n"})
        assert result.success
        assert result.output == "File written successfully: /p/a.py"
        assert files.writes == [("/p/a.py", "x = 1\n")]
        assert audit.records[-1][:2] == ("info", "Modified: /p/a.py")

    async def test_broken_audit_sink_does_not_fail_the_call(self, files, terminal):
        class BrokenAudit:
            def log(self, level, message, meta=None):
                raise OSError("disk full")

        executor = ToolExecutor(files=files, terminal=terminal, audit=BrokenAudit())

        result = await executor.execute("write_file", {"path": "/p/a.py", "content": "x = 1\n"})

        assert result.success
        assert files.writes == [("/p/a.py", "x = 1\n")]

        missing = await executor.execute("read_file", {"path": "/p/missing.py"})
        assert not missing.success
        assert "missing.py" in missing.error

    async def test_create_file_defaults_to_empty(self, executor, files):
        result = await executor.execute("create_file", {"path": "/p/empty.py"})
        assert result.success
        assert files.files["/p/empty.py"] == ""

    async def test_list_files_renders_tree(self, executor):
        result = await executor.execute("list_files", {"path": "/p"})
        assert result.output.splitlines() == ["[dir] src", "  [file] app.py", "[file] main.py"]

    async def test_run_command_is_fire_and_forget(self, executor, terminal):
        result = await executor.execute("run_command", {"command": "npm test"})
        assert result.success
        assert result.output == "Command sent to terminal: npm test"
        assert terminal.inputs == ["npm test\r"]

    async def test_write_to_active_file_notifies_editor(self, files, terminal):
        updates = []
        executor = ToolExecutor(
            files=files,
            terminal=terminal,
            active_file_path="/p/main.py",
            on_file_update=updates.append,
        )
        await executor.execute("write_file", {"path": "/p/main.py", "content": "new"})
        await executor.execute("write_file", {"path": "/p/other.py", "content": "other"})
        assert updates == ["new"]

    async def test_failing_editor_refresh_keeps_success(self, files, terminal):
        def broken(content):
            raise RuntimeError("editor gone")

        executor = ToolExecutor(files=files, terminal=terminal, active_file_path="/p/main.py", on_file_update=broken)
        result = await executor.execute("write_file", {"path": "/p/main.py", "content": "new"})
        assert result.success

    async def test_execute_all_preserves_order(self, executor, files):
        calls = [
            ToolUseBlock(id="t1", name="create_file", input={"path": "/p/b.py", "content": "b"}),
            ToolUseBlock(id="t2", name="read_file", input={"path": "/p/b.py"}),
        ]
        results = await executor.execute_all(calls)
        assert [r.tool_call_id for r in results] == ["t1", "t2"]
        assert results[1].result.output == "b"
        assert results[0].modified_path == "/p/b.py"
        assert results[1].modified_path is None

    async def test_call_result_message(self, executor):
        call = ToolUseBlock(id="t9", name="read_file", input={"path": "/p/nope"})
        message = (await executor.execute_call(call)).to_message()
        assert message.role == TOOL
        block = message.tool_results()[0]
        assert block.tool_use_id == "t9"
        assert block.is_error
        assert block.tool_name == "read_file"


def test_flatten_tree_empty():
    assert flatten_tree([]) == []


# ---------------------------------------------------------------------------
# Local bridges
# ---------------------------------------------------------------------------


class TestLocalBridges:
    async def test_concurrent_writes_leave_one_complete_file(self, tmp_path):
        bridge = LocalFileBridge()
        target = tmp_path / "src" / "app.py"
        bodies = [f"version = {i}\n" * 200 for i in range(8)]

        await asyncio.gather(*(bridge.write_file(str(target), body) for body in bodies))

        assert target.read_text(encoding="utf-8") in bodies
        assert [p.name for p in target.parent.iterdir()] == ["app.py"]

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_rewrite_keeps_permissions(self, tmp_path):
        script = tmp_path / "run.sh"
        script.write_text("echo one\n", encoding="utf-8")
        script.chmod(0o755)

        atomic_write_text(script, "echo two\n")

        assert script.read_text(encoding="utf-8") == "echo two\n"
        assert script.stat().st_mode & 0o777 == 0o755

    async def test_terminal_without_process_raises(self, monkeypatch):
        terminal = ShellTerminalBridge(cwd="/")

        async def no_start():
            return None

        monkeypatch.setattr(terminal, "start", no_start)

        with pytest.raises(RuntimeError):
            await terminal.send_input("ls\r")
