"""
Error kinds raised by the workspace core.

Every exception carries a ``kind`` tag so callers (the HTTP surface, the
TUI) can branch on the kind without matching on message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    SELF_REFERENCE = "self_reference"
    CYCLE_DETECTED = "cycle_detected"
    CONFLICT_DETECTED = "conflict_detected"
    SERIALIZATION = "serialization"
    DATABASE = "database"
    IO = "io"
    INTERNAL = "internal"


class KanbanError(Exception):
    """Base for all workspace errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class NotFoundError(KanbanError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str) -> None:
        super().__init__(f"Not found: {entity}")
        self.entity = entity


class ValidationError(KanbanError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(f"Validation error: {message}")
        self.message = message


class SelfReferenceError(KanbanError):
    kind = ErrorKind.SELF_REFERENCE

    def __init__(self, node_id: object | None = None) -> None:
        super().__init__("A card cannot depend on itself.")
        self.node_id = node_id


class CycleDetectedError(KanbanError):
    kind = ErrorKind.CYCLE_DETECTED

    def __init__(self, source: object | None = None, target: object | None = None) -> None:
        super().__init__("Adding this dependency would create a cycle.")
        self.source = source
        self.target = target


class ConflictDetectedError(KanbanError):
    """The file on disk was written by someone else since we last looked."""

    kind = ErrorKind.CONFLICT_DETECTED

    def __init__(self, path: str, source: BaseException | None = None) -> None:
        super().__init__(f"File conflict: {path} was modified by another instance")
        self.path = path
        self.source = source
        if source is not None:
            self.__cause__ = source


class SerializationError(KanbanError):
    kind = ErrorKind.SERIALIZATION

    def __init__(self, message: str) -> None:
        super().__init__(f"Serialization error: {message}")
        self.message = message


class DatabaseError(KanbanError):
    kind = ErrorKind.DATABASE

    def __init__(self, message: str) -> None:
        super().__init__(f"Database error: {message}")
        self.message = message


class StorageIOError(KanbanError):
    kind = ErrorKind.IO

    def __init__(self, message: str) -> None:
        super().__init__(f"IO error: {message}")
        self.message = message


class InternalError(KanbanError):
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(f"Internal error: {message}")
        self.message = message
