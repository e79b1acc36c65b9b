"""
Utilities Module
================

Common utilities shared across the engine:
- logger: Console logging with levels and context
- config: Centralized configuration management
- audit: Best-effort audit trail of tool invocations
"""

from atelier.utils.logger import Logger, logger
from atelier.utils.config import get_config, Config
from atelier.utils.audit import AuditLog, AuditSink, MemoryAuditLog, NullAuditLog

__all__ = [
    "Logger",
    "logger",
    "get_config",
    "Config",
    "AuditLog",
    "AuditSink",
    "MemoryAuditLog",
    "NullAuditLog",
]
