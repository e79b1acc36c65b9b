"""
Audit Log
=========

A side channel that records every tool invocation and notable model
response. It has no bearing on control flow: writing to it must never
block or fail the operation being audited, so every failure is swallowed.

Lines look like:

    [2026-10-19T10:30:00] [AUDIT] info: Read file {"tool": "read_file", "path": "/p/a.py"}

The file rotates at a size limit, keeping a fixed number of backups
(audit.log.1 ... audit.log.N).
"""

import json
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Protocol

from atelier.utils.logger import Logger

logger = Logger("Audit")


class AuditSink(Protocol):
    """Anything that accepts audit records."""

    def log(self, level: str, message: str, meta: dict[str, Any] | None = None) -> None:
        ...


def format_audit_line(level: str, message: str, meta: dict[str, Any] | None = None) -> str:
    """Format one audit record (without timestamp)."""
    meta_str = ""
    if meta:
        meta_str = " " + json.dumps(meta, default=str, ensure_ascii=False)
    return f"[AUDIT] {level or 'info'}: {message}{meta_str}"


class AuditLog:
    """
    File-backed audit sink with size-based rotation.

    Example:
        audit = AuditLog(Path("~/.atelier/audit.log").expanduser())
        audit.log("info", "Wrote file", {"tool": "write_file", "path": "/p/a.py"})
    """

    def __init__(self, path: Path, max_bytes: int = 5 * 1024 * 1024, backups: int = 5):
        """
        Args:
            path: Log file location (parent directories are created)
            max_bytes: Size at which the file is rotated
            backups: Number of rotated files to keep
        """
        self.path = path
        self._logger: logging.Logger | None = None

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
            )
            handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%Y-%m-%dT%H:%M:%S"))

            # A private logger so audit lines never reach the console
            audit_logger = logging.getLogger(f"atelier.audit.{path}")
            audit_logger.setLevel(logging.INFO)
            audit_logger.propagate = False
            audit_logger.handlers = [handler]
            self._logger = audit_logger
        except OSError as e:
            logger.warning(f"Audit log unavailable at {path}: {e}")

    def log(self, level: str, message: str, meta: dict[str, Any] | None = None) -> None:
        """Write one record. Never raises."""
        if self._logger is None:
            return
        try:
            self._logger.info(format_audit_line(level, message, meta))
        except Exception as e:  # noqa: BLE001 - audit must never break the caller
            logger.debug(f"Audit write failed: {e}")

    def close(self) -> None:
        """Release the file handle."""
        if self._logger is None:
            return
        for handler in self._logger.handlers:
            handler.close()
        self._logger.handlers = []


class MemoryAuditLog:
    """In-memory sink, handy for tests and headless runs."""

    def __init__(self):
        self.records: list[tuple[str, str, dict[str, Any] | None]] = []

    def log(self, level: str, message: str, meta: dict[str, Any] | None = None) -> None:
        self.records.append((level, message, meta))


class NullAuditLog:
    """Discards everything."""

    def log(self, level: str, message: str, meta: dict[str, Any] | None = None) -> None:
        return None
