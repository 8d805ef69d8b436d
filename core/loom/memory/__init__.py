"""Memory gateways used by checkpoint nodes."""

from loom.memory.file_store import FileMemoryGateway
from loom.memory.gateway import (
    Concept,
    FactType,
    InMemoryGateway,
    MemoryGateway,
    MemoryNotFound,
    MemoryRecord,
    MemoryScope,
    MemorySubject,
)

__all__ = [
    "MemoryGateway",
    "InMemoryGateway",
    "FileMemoryGateway",
    "MemoryRecord",
    "MemoryScope",
    "MemorySubject",
    "MemoryNotFound",
    "Concept",
    "FactType",
]
