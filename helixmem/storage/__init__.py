"""helixmem storage.

Local SQLite storage for agents, conversations, memories, consolidation
state, whiteboards and the audit log.
"""

from .memory_crud import escape_like_pattern
from .memory_ops import MemoryOps
from .schema import ALLOWED_TABLES, SCHEMA_VERSION, validate_table_name
from .sqlite import SQLiteStorage

__all__ = [
    "ALLOWED_TABLES",
    "MemoryOps",
    "SCHEMA_VERSION",
    "SQLiteStorage",
    "escape_like_pattern",
    "validate_table_name",
]
