"""
Atelier - Main Entry Point
==========================

Runs one turn of the engine headless, the way the editor shell drives it:
1. Loads configuration
2. Initializes the memory stores, the audit log and the local bridges
3. Opens a session on the project
4. Sends the task in chat or agent mode and prints progress
5. Flushes pending saves and shuts down

Run with:
    python -m atelier.main "Add a README" --project ~/code/app --mode agent

Or after installing:
    atelier "Why does main.py crash on empty input?" --project ~/code/app
"""

import argparse
import asyncio
import sys
from pathlib import Path

from atelier.agent.context import MODE_AGENT, MODE_CHAT
from atelier.providers import PROVIDERS
from atelier.utils.config import get_config
from atelier.utils.logger import Logger, set_log_level

main_logger = Logger("Main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atelier",
        description="Run one chat message or agent task against a project.",
    )
    parser.add_argument("task", help="Message (chat) or task (agent)")
    parser.add_argument("--project", default=None, help="Project directory (default: none)")
    parser.add_argument("--provider", choices=sorted(PROVIDERS), default=None, help="Model provider")
    parser.add_argument("--model", default=None, help="Model id (default: the provider's first model)")
    parser.add_argument("--mode", choices=(MODE_CHAT, MODE_AGENT), default=MODE_AGENT, help="Run mode")
    parser.add_argument("--file", default=None, help="Active file, for chat questions about it")
    parser.add_argument("--conversation", default=None, help="Continue a stored conversation by id")
    return parser


def _print_event(event) -> None:
    data = event.data
    if event.type == "tool_started":
        print(f"  -> {data['name']} {data.get('input', {}).get('path') or data.get('input', {}).get('command') or ''}")
    elif event.type == "tool_finished":
        status = "ok" if data.get("success") else "failed"
        print(f"  <- {data['name']} {status}")
    elif event.type == "assistant_text":
        print(data["text"])
    elif event.type == "retry_wait":
        print(f"  (rate limited, waiting {data['delay']:g}s)")


async def main(argv: list[str] | None = None) -> int:
    """
    Main async entry point.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    config = get_config()
    set_log_level(config.log_level)

    from atelier.agent import ChatSession
    from atelier.memory import MemoryManager
    from atelier.tools import LocalFileBridge, ShellTerminalBridge
    from atelier.utils.audit import AuditLog

    project_path = str(Path(args.project).expanduser().resolve()) if args.project else None
    audit = AuditLog(
        config.persistence.audit_log_file,
        max_bytes=config.persistence.audit_max_bytes,
        backups=config.persistence.audit_backups,
    )
    memory = MemoryManager.from_config(config)
    terminal = ShellTerminalBridge(cwd=project_path)
    files = LocalFileBridge()

    streamed = {"message": None, "printed": 0}

    def on_update(messages):
        # Print the streamed chat reply as it grows
        if args.mode != MODE_CHAT or not messages or messages[-1].role != "assistant":
            return
        if messages[-1] is not streamed["message"]:
            streamed["message"], streamed["printed"] = messages[-1], 0
        text = messages[-1].text()
        if len(text) > streamed["printed"]:
            sys.stdout.write(text[streamed["printed"]:])
            sys.stdout.flush()
            streamed["printed"] = len(text)

    async def on_propose(path: str, content: str) -> None:
        print(f"\n[proposed update for {path}: {len(content)} chars, not applied]")

    session = ChatSession(
        memory=memory,
        files=files,
        terminal=terminal,
        project_path=project_path,
        provider=args.provider,
        model=args.model,
        mode=args.mode,
        config=config,
        audit=audit,
        on_update=on_update,
        on_event=_print_event,
        on_propose_file_update=on_propose,
    )

    try:
        await session.open()
        if args.conversation and not await session.load_conversation(args.conversation):
            main_logger.warning(f"Conversation {args.conversation} not found, starting a new one")
        if args.file:
            file_path = str(Path(args.file).expanduser().resolve())
            session.set_active_file(file_path, await files.read_file(file_path))

        main_logger.info(f"Running in {args.mode} mode with {session.provider}")
        result = await session.send_message(args.task)

        if args.mode == MODE_CHAT:
            print()
        elif session.messages:
            print(session.messages[-1].text())

        if result is not None and not result.succeeded:
            return 1
        return 0

    except KeyboardInterrupt:
        session.cancel()
        main_logger.info("Interrupted")
        return 130
    except Exception as e:
        main_logger.error("Run failed", e)
        return 1
    finally:
        await memory.close()
        await terminal.close()
        audit.close()


def run():
    """
    Synchronous entry point.

    This is called when running with the `atelier` command.
    """
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
