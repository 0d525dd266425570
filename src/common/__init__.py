"""
Common utilities for coinjar-sync.

Modules:
- config: INI + environment configuration models
- debug_log: logging setup and the bounded debug-log buffer
- events: in-process publish/subscribe bus
- formula: restricted arithmetic expression evaluator
- storage: local key/value persistence (file or memory, optional Fernet)
"""

__all__ = [
    "config",
    "debug_log",
    "events",
    "formula",
    "storage",
]
