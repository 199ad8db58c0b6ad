"""
Exceptions raised by the persistence layer.
"""
from typing import Optional


class PersistenceCorruptionError(Exception):
    """
    A WAL or snapshot file could not be parsed.

    Raised while loading persisted state at startup. This is fatal:
    the node must not start serving from partial state.
    """

    def __init__(self, path: str, reason: str, line: Optional[int] = None):
        self.path = path
        self.reason = reason
        self.line = line
        location = f"{path}:{line}" if line is not None else path
        super().__init__(f"Corrupted persisted state in {location}: {reason}")
