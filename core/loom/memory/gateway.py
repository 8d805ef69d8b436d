"""
Memory Gateway - load/save of named concept records.

A record is addressed by (concept keyword, subject, scope) and holds free-form
text. The graph engine only touches memory at checkpoint nodes, one call at a
time, so gateways need no locking of their own.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class MemoryScope(StrEnum):
    """How widely a record is shared."""

    AGENT = "agent"
    FEATURE = "feature"
    PRODUCT = "product"
    ORGANIZATION = "organization"


class FactType(StrEnum):
    SINGLE = "single"
    MULTIPLE = "multiple"


class Concept(BaseModel):
    """A named kind of fact kept in memory (e.g. "debate-scripts")."""

    keyword: str
    description: str = ""
    fact_type: FactType = FactType.MULTIPLE

    model_config = ConfigDict(frozen=True)


class MemorySubject(BaseModel):
    """What a record is about. Lower priority values are loaded first."""

    name: str
    prompt_description: str = ""
    priority: int = 1

    model_config = ConfigDict(frozen=True)


class MemoryRecord(BaseModel):
    """One persisted record."""

    concept: str
    subject: str
    scope: MemoryScope
    content: str
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.concept, self.subject, self.scope.value)


class MemoryNotFound(LookupError):
    """No record exists for the requested (concept, subject, scope)."""

    def __init__(self, concept: str, subject: str, scope: MemoryScope | str):
        super().__init__(f"No memory for concept={concept!r} subject={subject!r} scope={scope!s}")
        self.concept = concept
        self.subject = subject
        self.scope = scope


class MemoryGateway(ABC):
    """Storage backend for memory records."""

    @abstractmethod
    async def load(self, concept: str, subject: str, scope: MemoryScope) -> str:
        """Return the stored content. Raises MemoryNotFound."""

    @abstractmethod
    async def save(self, concept: str, subject: str, scope: MemoryScope, content: str) -> None:
        """Create or overwrite a record."""


class InMemoryGateway(MemoryGateway):
    """Process-local gateway, mostly for tests and one-off runs."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], MemoryRecord] = {}

    async def load(self, concept: str, subject: str, scope: MemoryScope) -> str:
        record = self._records.get((concept, subject, MemoryScope(scope).value))
        if record is None:
            raise MemoryNotFound(concept, subject, scope)
        return record.content

    async def save(self, concept: str, subject: str, scope: MemoryScope, content: str) -> None:
        record = MemoryRecord(
            concept=concept, subject=subject, scope=MemoryScope(scope), content=content
        )
        self._records[record.key] = record

    def records(self) -> list[MemoryRecord]:
        return list(self._records.values())
